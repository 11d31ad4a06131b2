"""Landing reads: one overview across the root graph and its child workspaces.

Child workspaces are listed in the root's .claude/qino-config.json:

    {"name": "Lab", "workspaces": {"notes": {"path": "notes"}, "apps": {"path": "repos/apps"}}}

Each path is a directory with its own graph.json (and optionally its own
qino-config.json for a display name). A landing read walks the root graph and
every child workspace, descending into node sub-graphs up to MAX_GRAPH_DEPTH
levels, and gathers:

    arcs            top-level "arc" nodes of the root graph
    navigators      top-level "navigator" nodes of each workspace
    views           top-level nodes with a view.json (or type "view")
    recent_nodes    every other node, most recently modified first
    action_items    open proposals and tensions plus "proposed" nodes
    today_annotations  annotations created today (UTC) that are not closed

Arcs are not descended into. Navigators are, but their own annotations are
not action items. A graph directory reached twice (a child workspace that is
also a sub-graph of the root) is walked once, under the first path seen.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from qino.config import read_config
from qino.files import read_annotations_dir
from qino.graph import (
    ANNOTATIONS_DIR,
    action_items_for,
    annotation_item,
    discover_nodes,
    load_graph_data,
    needs_attention,
    sort_action_items,
)
from qino.models import ActionItem, LandingData, LandingNode, WorkspaceEntry

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path

    from qino.models import GraphNodeEntry

logger = logging.getLogger("qino.landing")

MAX_GRAPH_DEPTH = 8
ARC = "arc"
NAVIGATOR = "navigator"
PROPOSED = "proposed"


def _join(*parts: str) -> str:
    return "/".join(p.strip("/") for p in parts if p)


# ---------------------------------------------------------------------------
# Workspaces
# ---------------------------------------------------------------------------

def read_workspaces(workspace_dir: Path) -> list[WorkspaceEntry]:
    """Child workspaces from the root config, led by a root entry when the root has a name.

    The root entry's node count is the sum over the children that have a
    graph. A child whose directory or graph is missing is still listed, with
    no node count.
    """
    config = read_config(workspace_dir)
    if not config.workspaces:
        return []

    entries: list[WorkspaceEntry] = []
    total = 0
    for key, ws in config.workspaces.items():
        rel = ws.get("path") if isinstance(ws, dict) else None
        if not rel or not isinstance(rel, str):
            logger.warning("workspace %s has no path, skipped", key)
            continue
        ws_dir = workspace_dir / rel
        child = read_config(ws_dir)
        graph = load_graph_data(ws_dir)
        node_count = None
        if graph is not None:
            node_count = len(discover_nodes(ws_dir, graph.nodes_dir, graph))
            total += node_count
        entries.append(WorkspaceEntry(
            name=child.name or key,
            path=rel,
            repo_type=child.repo_type,
            node_count=node_count,
        ))

    if config.name:
        entries.insert(0, WorkspaceEntry(name=config.name, path="", repo_type=config.repo_type, node_count=total))
    return entries


# ---------------------------------------------------------------------------
# Traversal
# ---------------------------------------------------------------------------

def walk_graph(
    graph_dir: Path,
    graph_path: str = "",
    depth: int = MAX_GRAPH_DEPTH,
    seen: set[Path] | None = None,
) -> Iterator[tuple[GraphNodeEntry, Path, str]]:
    """Yield (node, node_dir, graph_path) for a graph and, depth first, its sub-graphs.

    Sub-graphs of arc nodes are not entered. `seen` holds resolved graph
    directories already walked; pass the same set to several calls to walk
    overlapping trees once.
    """
    if depth <= 0:
        return
    if seen is None:
        seen = set()
    resolved = graph_dir.resolve()
    if resolved in seen:
        return
    seen.add(resolved)

    graph = load_graph_data(graph_dir)
    if graph is None:
        return
    for node in discover_nodes(graph_dir, graph.nodes_dir, graph):
        node_dir = graph_dir / graph.nodes_dir / node.dir
        yield node, node_dir, graph_path
        if node.has_sub_graph and node.type != ARC:
            yield from walk_graph(node_dir, _join(graph_path, graph.nodes_dir, node.dir), depth - 1, seen)


def _proposed_item(node: GraphNodeEntry, graph_path: str, workspace_name: str | None) -> ActionItem:
    return ActionItem(
        signal=PROPOSED,
        node_id=node.id,
        node_title=node.title,
        annotation_filename="",
        preview=f"Proposed {node.type or 'node'}",
        source="status",
        created=node.created,
        graph_path=graph_path,
        workspace_name=workspace_name,
    )


# ---------------------------------------------------------------------------
# Landing
# ---------------------------------------------------------------------------

def read_landing(workspace_dir: Path, day: str | None = None) -> LandingData:
    """Assemble the landing overview. `day` (YYYY-MM-DD) defaults to today in UTC."""
    day = day or datetime.now(UTC).date().isoformat()
    workspaces = read_workspaces(workspace_dir)
    root_name = next((ws.name for ws in workspaces if not ws.path), None) or read_config(workspace_dir).name

    scopes: list[tuple[str, str | None]] = [("", root_name)]
    scopes.extend((ws.path, ws.name) for ws in workspaces if ws.path)

    landing = LandingData(workspaces=workspaces)
    seen: set[Path] = set()
    for scope_path, scope_name in scopes:
        scope_dir = workspace_dir / scope_path if scope_path else workspace_dir
        for node, node_dir, graph_path in walk_graph(scope_dir, scope_path, seen=seen):
            top_level = graph_path == scope_path
            entry = LandingNode(node=node, graph_path=graph_path, workspace_name=scope_name)
            if node.type == ARC:
                if top_level and not scope_path:
                    landing.arcs.append(entry)
                continue

            annotations = read_annotations_dir(node_dir / ANNOTATIONS_DIR)
            landing.today_annotations.extend(
                annotation_item(node, ann, graph_path, scope_name)
                for ann in annotations
                if ann.meta.created.startswith(day) and needs_attention(ann.meta.status)
            )

            if node.type == NAVIGATOR:
                if top_level:
                    landing.navigators.append(entry)
                continue

            landing.action_items.extend(action_items_for(node, annotations, graph_path, scope_name))
            if node.status == PROPOSED:
                landing.action_items.append(_proposed_item(node, graph_path, scope_name))

            if top_level and (node.has_view or node.type == "view"):
                landing.views.append(entry)
            else:
                landing.recent_nodes.append(entry)

    landing.action_items = sort_action_items(landing.action_items)
    landing.today_annotations = sort_action_items(landing.today_annotations)
    landing.recent_nodes.sort(key=lambda n: n.node.modified or 0.0, reverse=True)
    logger.debug(
        "landing: %d workspaces, %d recent nodes, %d action items",
        len(workspaces), len(landing.recent_nodes), len(landing.action_items),
    )
    return landing
