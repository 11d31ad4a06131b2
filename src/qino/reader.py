"""Read one node directory into a NodeDetail.

Node layout (every file optional except node.json):

    <nodes_dir>/<node-id>/
        node.json           # identity, open schema, requires "title"
        story.md            # narrative impulse
        content/*.md        # domain files, discovered
        annotations/NNN-slug.md
        view.json           # {focal, includes} for curated views
        journal.md          # node-local journal
        graph.json          # present when the node owns a sub-graph
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from qino.codec import parse_journal_sections
from qino.files import list_dir, read_annotations_dir, read_json, read_text
from qino.graph import (
    ANNOTATIONS_DIR,
    CONTENT_DIR,
    GRAPH_FILE,
    JOURNAL_FILE,
    NODE_FILE,
    STORY_FILE,
    VIEW_FILE,
    load_graph_data,
    node_mtime,
    resolve_node_dir,
)
from qino.models import Annotation, BreadcrumbItem, ContentFile, NodeDetail, ViewData

if TYPE_CHECKING:
    from pathlib import Path

_MAX_ANCESTORS = 16


def _read_content_files(content_dir: Path) -> list[ContentFile]:
    files: list[ContentFile] = []
    for name in list_dir(content_dir):
        path = content_dir / name
        if not path.is_file():
            continue
        text = read_text(path)
        if text is not None:
            files.append(ContentFile(filename=name, content=text))
    return files


def _parent_node(graph_dir: Path) -> tuple[Path, str, str] | None:
    """(parent_graph_dir, node_id, title) when graph_dir is a node's sub-graph."""
    parent_graph_dir = graph_dir.parent.parent
    if parent_graph_dir == graph_dir.parent:
        return None
    parent = load_graph_data(parent_graph_dir)
    if parent is None or graph_dir.parent.name != parent.nodes_dir:
        return None
    node_dir = resolve_node_dir(parent_graph_dir, parent.nodes_dir, graph_dir.name)
    if node_dir is None:
        return None
    identity = read_json(node_dir / NODE_FILE) or {}
    return parent_graph_dir, graph_dir.name, str(identity.get("title") or graph_dir.name)


def build_breadcrumb(graph_dir: Path, graph_title: str) -> list[BreadcrumbItem]:
    """Trail from the workspace root graph down to the graph holding the node."""
    ancestors: list[tuple[Path, str, str]] = []
    current = graph_dir
    root_title = graph_title
    for _ in range(_MAX_ANCESTORS):
        parent = _parent_node(current)
        if parent is None:
            break
        ancestors.append(parent)
        current = parent[0]
    if ancestors:
        root = load_graph_data(current)
        if root is not None:
            root_title = root.title

    trail = [BreadcrumbItem(id=None, title=root_title)]
    for parent_graph_dir, node_id, title in reversed(ancestors):
        at = parent_graph_dir.relative_to(current).as_posix()
        trail.append(BreadcrumbItem(id=node_id, title=title, at=None if at == "." else at))
    return trail


def read_node(graph_dir: Path, node_id: str) -> NodeDetail | None:
    """Full detail for one node, or None if the graph or the node's identity is missing."""
    graph = load_graph_data(graph_dir)
    if graph is None:
        return None
    node_dir = resolve_node_dir(graph_dir, graph.nodes_dir, node_id)
    if node_dir is None:
        return None
    identity = read_json(node_dir / NODE_FILE)
    if identity is None:
        return None

    view_raw = read_json(node_dir / VIEW_FILE)
    journal_raw = read_text(node_dir / JOURNAL_FILE)
    sub_graph = load_graph_data(node_dir) if (node_dir / GRAPH_FILE).is_file() else None

    return NodeDetail(
        id=node_id,
        identity=identity,
        story=read_text(node_dir / STORY_FILE),
        content_files=_read_content_files(node_dir / CONTENT_DIR),
        annotations=read_annotations_dir(node_dir / ANNOTATIONS_DIR),
        graph_title=graph.title,
        breadcrumb=build_breadcrumb(graph_dir, graph.title),
        view=ViewData.from_dict(view_raw) if view_raw is not None else None,
        journal_sections=parse_journal_sections(journal_raw) if journal_raw else [],
        has_sub_graph=sub_graph is not None,
        sub_graph_path=f"{graph.nodes_dir}/{node_id}" if sub_graph is not None else None,
        sub_graph_title=sub_graph.title if sub_graph is not None else None,
        modified=node_mtime(node_dir),
    )


def read_annotations(graph_dir: Path, node_id: str) -> list[Annotation]:
    """Annotations of one node in filename order; empty if the node is unknown."""
    graph = load_graph_data(graph_dir)
    if graph is None:
        return []
    node_dir = resolve_node_dir(graph_dir, graph.nodes_dir, node_id)
    if node_dir is None:
        return []
    return read_annotations_dir(node_dir / ANNOTATIONS_DIR)
