"""Graph assembly: discover nodes on disk and derive graph-level views.

A graph directory holds graph.json and a nodes directory (default "nodes",
overridable via graph.json "nodesDir"):

    <graph_dir>/
        graph.json          # {id, title, nodesDir?, edges: [...], nodes?: [...]}
        journal.md          # graph timeline
        <nodes_dir>/
            <node-id>/      # directory name == node id
                node.json
                ...

Node existence comes only from the filesystem. graph.json's optional "nodes"
array is legacy export data: its entries may decorate a discovered node
(position, display hints) but never add or remove one. Only "edges" is
authoritative in graph.json.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from qino.codec import parse_journal_sections
from qino.errors import no_graph
from qino.files import annotation_files, latest_mtime, list_dir, read_annotations_dir, read_json, read_text, write_json
from qino.models import ActionItem, Annotation, GraphData, GraphNodeEntry, GraphWithJournal

if TYPE_CHECKING:
    from pathlib import Path

GRAPH_FILE = "graph.json"
NODE_FILE = "node.json"
STORY_FILE = "story.md"
VIEW_FILE = "view.json"
JOURNAL_FILE = "journal.md"
CONTENT_DIR = "content"
ANNOTATIONS_DIR = "annotations"

ACTION_SIGNALS = frozenset({"proposal", "tension"})
_ATTENTION_STATUSES = frozenset({"open", "accepted"})
_PREVIEW_LEN = 120

# Fields discovery derives itself; a legacy graph.json entry never overrides them.
_DERIVED_KEYS = frozenset({
    "id", "dir", "title", "type", "status", "created",
    "hasSubGraph", "hasView", "hasJournal", "modified",
})


# ---------------------------------------------------------------------------
# graph.json
# ---------------------------------------------------------------------------

def load_graph_data(graph_dir: Path) -> GraphData | None:
    raw = read_json(graph_dir / GRAPH_FILE)
    if raw is None:
        return None
    return GraphData.from_dict(raw)


def require_graph_data(graph_dir: Path) -> GraphData:
    """Like load_graph_data but raises NotConfiguredError."""
    data = load_graph_data(graph_dir)
    if data is None:
        raise no_graph(graph_dir)
    return data


def save_graph_data(graph_dir: Path, data: GraphData) -> None:
    write_json(graph_dir / GRAPH_FILE, data.to_dict())


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------

def _valid_node_id(node_id: str) -> bool:
    return bool(node_id) and node_id not in (".", "..") and "/" not in node_id and "\\" not in node_id


def resolve_node_dir(graph_dir: Path, nodes_dir: str, node_id: str) -> Path | None:
    """Directory of node_id if it holds a readable node.json, else None."""
    if not _valid_node_id(node_id):
        return None
    node_dir = graph_dir / nodes_dir / node_id
    if read_json(node_dir / NODE_FILE) is None:
        return None
    return node_dir


def node_mtime(node_dir: Path) -> float | None:
    """Latest mtime (epoch ms) over the node's own files."""
    paths = [node_dir / name for name in (NODE_FILE, STORY_FILE, VIEW_FILE, JOURNAL_FILE, GRAPH_FILE)]
    for sub in (CONTENT_DIR, ANNOTATIONS_DIR):
        paths.extend(node_dir / sub / name for name in list_dir(node_dir / sub))
    return latest_mtime(paths)


def _legacy_entries(graph: GraphData | None) -> dict[str, dict[str, Any]]:
    if graph is None or not graph.nodes:
        return {}
    return {str(n["id"]): n for n in graph.nodes if "id" in n}


def discover_nodes(graph_dir: Path, nodes_dir: str, graph: GraphData | None = None) -> list[GraphNodeEntry]:
    """Scan <graph_dir>/<nodes_dir>/ for subdirectories with a node.json, sorted by id."""
    legacy = _legacy_entries(graph)
    root = graph_dir / nodes_dir
    nodes: list[GraphNodeEntry] = []
    for name in list_dir(root):
        node_dir = root / name
        identity = read_json(node_dir / NODE_FILE)
        if identity is None:
            continue
        extra = {k: v for k, v in legacy.get(name, {}).items() if k not in _DERIVED_KEYS}
        nodes.append(GraphNodeEntry(
            id=name,
            dir=name,
            title=str(identity.get("title") or name),
            type=identity.get("type") or None,
            status=identity.get("status") or None,
            created=identity.get("created") or None,
            has_sub_graph=(node_dir / GRAPH_FILE).is_file(),
            has_view=(node_dir / VIEW_FILE).is_file(),
            has_journal=(node_dir / JOURNAL_FILE).is_file(),
            modified=node_mtime(node_dir),
            extra=extra,
        ))
    return nodes


def count_annotations(node_dir: Path) -> int:
    return len(annotation_files(node_dir / ANNOTATIONS_DIR))


# ---------------------------------------------------------------------------
# Derived views
# ---------------------------------------------------------------------------

def needs_attention(status: str | None) -> bool:
    """True while an annotation is open (None) or accepted; False once resolved or dismissed."""
    return (status or "open") in _ATTENTION_STATUSES


def _preview(content: str) -> str:
    for line in content.split("\n"):
        line = line.strip()
        if line:
            return line[:_PREVIEW_LEN]
    return ""


def annotation_item(
    node: GraphNodeEntry,
    ann: Annotation,
    graph_path: str | None = None,
    workspace_name: str | None = None,
) -> ActionItem:
    return ActionItem(
        signal=ann.meta.signal,
        node_id=node.id,
        node_title=node.title,
        annotation_filename=ann.filename,
        preview=_preview(ann.content),
        created=ann.meta.created or None,
        modified=ann.modified,
        target=ann.meta.target,
        status=ann.meta.status,
        graph_path=graph_path,
        workspace_name=workspace_name,
    )


def action_items_for(
    node: GraphNodeEntry,
    annotations: list[Annotation],
    graph_path: str | None = None,
    workspace_name: str | None = None,
) -> list[ActionItem]:
    return [
        annotation_item(node, ann, graph_path, workspace_name)
        for ann in annotations
        if ann.meta.signal in ACTION_SIGNALS and needs_attention(ann.meta.status)
    ]


def sort_action_items(items: list[ActionItem]) -> list[ActionItem]:
    """Most recent first: modified desc, then created desc, then filename."""
    ordered = sorted(items, key=lambda a: (a.node_id, a.annotation_filename))
    ordered.sort(key=lambda a: a.created or "", reverse=True)
    ordered.sort(key=lambda a: a.modified or 0.0, reverse=True)
    return ordered


def signal_types(annotations: list[Annotation]) -> list[str]:
    """Unique signals, first-seen order, ignoring dismissed annotations."""
    seen: list[str] = []
    for ann in annotations:
        if ann.meta.status == "dismissed":
            continue
        if ann.meta.signal not in seen:
            seen.append(ann.meta.signal)
    return seen


def read_graph(graph_dir: Path) -> GraphWithJournal | None:
    """Read graph.json plus its journal, discovered nodes and annotation-derived signals."""
    graph = load_graph_data(graph_dir)
    if graph is None:
        return None

    journal = read_text(graph_dir / JOURNAL_FILE)
    nodes = discover_nodes(graph_dir, graph.nodes_dir, graph)

    agent_signals: dict[str, list[str]] = {}
    action_items: list[ActionItem] = []
    for node in nodes:
        annotations = read_annotations_dir(graph_dir / graph.nodes_dir / node.dir / ANNOTATIONS_DIR)
        signals = signal_types(annotations)
        if signals:
            agent_signals[node.id] = signals
        action_items.extend(action_items_for(node, annotations))

    return GraphWithJournal(
        graph=graph,
        nodes=nodes,
        journal=journal,
        journal_sections=parse_journal_sections(journal) if journal else [],
        agent_signals=agent_signals,
        action_items=sort_action_items(action_items),
    )
