from __future__ import annotations

import json
import threading
from datetime import date
from typing import TYPE_CHECKING

import pytest
from conftest import annotation_text, make_node, read_graph_json, write_graph

from qino import mutations
from qino.codec import parse_annotation, parse_journal_sections
from qino.errors import ConflictError, InvalidInputError, NotConfiguredError, NotFoundError
from qino.graph import read_graph
from qino.models import GraphEdge, JournalSection, ViewData
from qino.mutations import (
    KeyedLock,
    NodeDraft,
    create_node,
    resolve_annotation,
    save_journal,
    update_view,
    write_annotation,
    write_journal_entry,
)

if TYPE_CHECKING:
    from pathlib import Path


# ---------------------------------------------------------------------------
# create_node
# ---------------------------------------------------------------------------

def test_create_node_requires_graph(tmp_path: Path) -> None:
    with pytest.raises(NotConfiguredError, match="No graph.json found in"):
        create_node(tmp_path, NodeDraft(id="a", title="A"))
    assert not (tmp_path / "nodes").exists()


def test_create_node_writes_files(workspace: Path) -> None:
    result = create_node(workspace, NodeDraft(id="emergence", title="Emergence", story="It begins.", type="concept"))
    assert result.node_id == "emergence"
    assert result.status == "active"

    node_dir = workspace / "nodes" / "emergence"
    identity = json.loads((node_dir / "node.json").read_text())
    assert identity["title"] == "Emergence"
    assert identity["type"] == "concept"
    assert identity["status"] == "active"
    date.fromisoformat(identity["created"])
    assert (node_dir / "story.md").read_text() == "It begins."
    assert not (node_dir / "view.json").exists()


def test_create_node_keeps_explicit_status_and_extra_fields(workspace: Path) -> None:
    draft = NodeDraft(id="a", title="A", status="draft", extra={"color": "teal", "title": "ignored"})
    assert create_node(workspace, draft).status == "draft"
    identity = json.loads((workspace / "nodes" / "a" / "node.json").read_text())
    assert identity["status"] == "draft"
    assert identity["color"] == "teal"
    assert identity["title"] == "A"


def test_create_node_conflict(workspace: Path) -> None:
    create_node(workspace, NodeDraft(id="a", title="A"))
    with pytest.raises(ConflictError, match="already exists"):
        create_node(workspace, NodeDraft(id="a", title="Again"))
    identity = json.loads((workspace / "nodes" / "a" / "node.json").read_text())
    assert identity["title"] == "A"


@pytest.mark.parametrize("node_id", ["", "..", "a/b", "a-->b", "a\nb"])
def test_create_node_rejects_bad_ids(workspace: Path, node_id: str) -> None:
    with pytest.raises(InvalidInputError):
        create_node(workspace, NodeDraft(id=node_id, title="X"))


def test_create_node_appends_edges(workspace: Path) -> None:
    write_graph(workspace, id="ws", title="Workspace", edges=[{"source": "x", "target": "y"}])
    draft = NodeDraft(id="a", title="A", edges=[GraphEdge(source="", target="x", type="informs", context="because")])
    create_node(workspace, draft)

    data = read_graph_json(workspace)
    assert data["edges"] == [
        {"source": "x", "target": "y"},
        {"source": "a", "target": "x", "type": "informs", "context": "because"},
    ]
    assert "nodes" not in data


def test_create_node_keeps_unknown_edge_keys(workspace: Path) -> None:
    labelled = {"source": "a", "target": "b", "type": "informs", "label": "keep me", "weight": 3}
    write_graph(workspace, id="ws", title="Workspace", edges=[labelled])
    draft = NodeDraft.from_dict({"id": "n", "title": "N", "edges": [{"target": "b", "type": "informs", "weight": 1}]})
    create_node(workspace, draft)

    assert read_graph_json(workspace)["edges"] == [
        labelled,
        {"source": "n", "target": "b", "type": "informs", "weight": 1},
    ]


def test_create_node_never_adds_to_legacy_nodes(tmp_path: Path) -> None:
    root = tmp_path / "ws"
    write_graph(root, nodes=[{"id": "old", "position": {"x": 0, "y": 0}}])
    create_node(root, NodeDraft(id="a", title="A", edges=[GraphEdge(source="a", target="old")]))
    data = read_graph_json(root)
    assert data["nodes"] == [{"id": "old", "position": {"x": 0, "y": 0}}]


def test_create_view_node_writes_curates_edges(workspace: Path) -> None:
    view = ViewData(focal="b", includes=["a", "b"])
    create_node(workspace, NodeDraft(id="v", title="View", view=view))

    node_dir = workspace / "nodes" / "v"
    assert json.loads((node_dir / "view.json").read_text()) == {"focal": "b", "includes": ["a", "b"]}
    assert read_graph_json(workspace)["edges"] == [
        {"source": "v", "target": "a", "type": "curates"},
        {"source": "v", "target": "b", "type": "curates", "context": "focal"},
    ]


def test_create_view_node_validates_before_writing(workspace: Path) -> None:
    with pytest.raises(InvalidInputError, match="focal"):
        create_node(workspace, NodeDraft(id="v", title="View", view=ViewData(focal="z", includes=["a"])))
    with pytest.raises(InvalidInputError):
        create_node(workspace, NodeDraft(id="v", title="View", view=ViewData(focal="a", includes=[])))
    assert not (workspace / "nodes" / "v").exists()


def test_create_node_echoes_to_journal(workspace: Path) -> None:
    (workspace / "journal.md").write_text("Opening words.\n")
    create_node(workspace, NodeDraft(id="a", title="Alpha"))

    sections = parse_journal_sections((workspace / "journal.md").read_text())
    assert sections[0] == JournalSection("opening", "Opening words.")
    assert sections[-1] == JournalSection("node/a", "created: Alpha\n→ [a](nodes/a/)")


def test_created_node_is_discovered(workspace: Path) -> None:
    create_node(workspace, NodeDraft(id="a", title="Alpha"))
    graph = read_graph(workspace)
    assert graph is not None
    assert [n.id for n in graph.nodes] == ["a"]


def test_node_draft_from_dict() -> None:
    draft = NodeDraft.from_dict({
        "id": "a",
        "title": "A",
        "edges": [{"target": "b", "type": "informs"}],
        "view": {"focal": "b", "includes": ["b"]},
    })
    assert draft.edges == [GraphEdge(source="a", target="b", type="informs")]
    assert draft.view == ViewData(focal="b", includes=["b"])


# ---------------------------------------------------------------------------
# Annotations
# ---------------------------------------------------------------------------

def test_write_annotation_sequence(workspace: Path) -> None:
    make_node(workspace, "a")
    names = [write_annotation(workspace, "a", "reading", f"Note number {i}") for i in range(1, 4)]
    assert names == ["001-note-number-1.md", "002-note-number-2.md", "003-note-number-3.md"]


def test_write_annotation_file_contents(workspace: Path) -> None:
    node_dir = make_node(workspace, "a")
    filename = write_annotation(workspace, "a", "proposal", "Merge with b\\nSecond line", target="b")

    parsed = parse_annotation((node_dir / "annotations" / filename).read_text())
    assert parsed is not None
    meta, content = parsed
    assert meta.author == "agent"
    assert meta.signal == "proposal"
    assert meta.target == "b"
    assert meta.status is None
    assert "T" in meta.created
    assert content == "Merge with b\nSecond line"


def test_write_annotation_counts_existing_files(workspace: Path) -> None:
    make_node(workspace, "a", annotations={"001-x.md": annotation_text("reading", "x"), "002-y.md": "no front matter"})
    assert write_annotation(workspace, "a", "tension", "third").startswith("003-")


def test_write_annotation_errors(tmp_path: Path, workspace: Path) -> None:
    with pytest.raises(NotConfiguredError):
        write_annotation(tmp_path, "a", "reading", "x")
    with pytest.raises(NotFoundError, match="Node not found: ghost"):
        write_annotation(workspace, "ghost", "reading", "x")
    make_node(workspace, "a")
    with pytest.raises(InvalidInputError, match="Invalid signal"):
        write_annotation(workspace, "a", "shout", "x")
    assert not (workspace / "nodes" / "a" / "annotations").exists()


def test_concurrent_annotations_get_unique_numbers(workspace: Path) -> None:
    make_node(workspace, "a")
    names: list[str] = []
    lock = threading.Lock()

    def worker(i: int) -> None:
        name = write_annotation(workspace, "a", "reading", f"parallel {i}")
        with lock:
            names.append(name)

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    prefixes = sorted(n[:3] for n in names)
    assert prefixes == [f"{i:03d}" for i in range(1, 9)]


def test_keyed_lock_drops_released_keys() -> None:
    locks = KeyedLock()
    with locks.hold("a"), locks.hold("b"):
        assert len(locks) == 2
    assert len(locks) == 0

    with pytest.raises(RuntimeError), locks.hold("a"):
        raise RuntimeError("boom")
    assert len(locks) == 0


def test_keyed_lock_serializes_one_key() -> None:
    locks = KeyedLock()
    inside = 0
    overlaps: list[int] = []

    def worker() -> None:
        nonlocal inside
        with locks.hold("k"):
            inside += 1
            overlaps.append(inside)
            inside -= 1

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert overlaps == [1] * 8
    assert len(locks) == 0


def test_write_locks_do_not_accumulate(workspace: Path) -> None:
    for i in range(20):
        make_node(workspace, f"n{i}")
        write_annotation(workspace, f"n{i}", "reading", "note")
    write_journal_entry(workspace, "s1", "body")
    create_node(workspace, NodeDraft(id="fresh", title="Fresh"))
    assert len(mutations._locks) == 0


def test_resolve_annotation_preserves_fields(workspace: Path) -> None:
    original = annotation_text("proposal", "Keep this body", created="2026-02-01T10:00:00+00:00", target="b")
    node_dir = make_node(workspace, "a", annotations={"001-keep.md": original})

    meta = resolve_annotation(workspace, "a", "001-keep.md", "accepted")
    assert meta.status == "accepted"
    assert meta.resolved_at is not None
    date.fromisoformat(meta.resolved_at)

    parsed = parse_annotation((node_dir / "annotations" / "001-keep.md").read_text())
    assert parsed is not None
    stored, content = parsed
    assert stored.signal == "proposal"
    assert stored.target == "b"
    assert stored.created == "2026-02-01T10:00:00+00:00"
    assert stored.status == "accepted"
    assert stored.resolved_at == meta.resolved_at
    assert content == "Keep this body"


def test_resolved_annotation_leaves_action_items(workspace: Path) -> None:
    make_node(workspace, "a", annotations={"001-p.md": annotation_text("proposal", "p")})
    graph = read_graph(workspace)
    assert graph is not None and len(graph.action_items) == 1

    resolve_annotation(workspace, "a", "001-p.md", "resolved")
    graph = read_graph(workspace)
    assert graph is not None
    assert graph.action_items == []


def test_resolve_annotation_errors(workspace: Path) -> None:
    make_node(workspace, "a", annotations={"001-bad.md": "no front matter"})
    with pytest.raises(InvalidInputError, match="Invalid status"):
        resolve_annotation(workspace, "a", "001-bad.md", "open")
    with pytest.raises(NotFoundError, match="Annotation not found: 009-none.md"):
        resolve_annotation(workspace, "a", "009-none.md", "resolved")
    with pytest.raises(InvalidInputError, match="Failed to parse annotation"):
        resolve_annotation(workspace, "a", "001-bad.md", "resolved")
    with pytest.raises(NotFoundError, match="Node not found"):
        resolve_annotation(workspace, "ghost", "001-bad.md", "resolved")


# ---------------------------------------------------------------------------
# Journals
# ---------------------------------------------------------------------------

def test_write_journal_entry_creates_file(workspace: Path) -> None:
    section = write_journal_entry(workspace, "session/2026-02-02", "First entry")
    assert section == JournalSection("session/2026-02-02", "First entry")
    assert (workspace / "journal.md").read_text() == "<!-- context: session/2026-02-02 -->\n\nFirst entry\n"


def test_write_journal_entry_appends(workspace: Path) -> None:
    (workspace / "journal.md").write_text("Opening\n\n<!-- context: s1 -->\n\nOne\n")
    write_journal_entry(workspace, "s2", "Two\\nlines")
    assert parse_journal_sections((workspace / "journal.md").read_text()) == [
        JournalSection("opening", "Opening"),
        JournalSection("s1", "One"),
        JournalSection("s2", "Two\nlines"),
    ]


def test_write_journal_entry_on_node(workspace: Path) -> None:
    node_dir = make_node(workspace, "a")
    write_journal_entry(workspace, "thinking", "Node-local note", node_id="a")
    assert parse_journal_sections((node_dir / "journal.md").read_text()) == [
        JournalSection("thinking", "Node-local note"),
    ]
    assert not (workspace / "journal.md").exists()


def test_write_journal_entry_errors(tmp_path: Path, workspace: Path) -> None:
    with pytest.raises(NotFoundError):
        write_journal_entry(workspace, "x", "body", node_id="ghost")
    with pytest.raises(InvalidInputError):
        write_journal_entry(workspace, "  ", "body")
    with pytest.raises(NotConfiguredError):
        write_journal_entry(tmp_path, "x", "body", node_id="a")


def test_save_journal_rewrites(workspace: Path) -> None:
    (workspace / "journal.md").write_text("old\n")
    save_journal(workspace, [JournalSection("opening", "New top"), JournalSection("s", ""), JournalSection("t", "kept")])
    assert (workspace / "journal.md").read_text() == "New top\n\n<!-- context: t -->\n\nkept\n"


@pytest.mark.parametrize("context", ["a -->\nb", "two\nlines", "closes -->", "carriage\rreturn"])
def test_write_journal_entry_rejects_marker_breaking_context(workspace: Path, context: str) -> None:
    (workspace / "journal.md").write_text("Opening\n")
    with pytest.raises(InvalidInputError, match="single line"):
        write_journal_entry(workspace, context, "body")
    assert (workspace / "journal.md").read_text() == "Opening\n"


def test_save_journal_rejects_marker_breaking_context(workspace: Path) -> None:
    (workspace / "journal.md").write_text("old\n")
    with pytest.raises(InvalidInputError):
        save_journal(workspace, [JournalSection("opening", "top"), JournalSection("x --> y", "body")])
    assert (workspace / "journal.md").read_text() == "old\n"


# ---------------------------------------------------------------------------
# Views
# ---------------------------------------------------------------------------

def _view_workspace(workspace: Path) -> None:
    write_graph(
        workspace,
        id="ws",
        title="Workspace",
        edges=[
            {"source": "v", "target": "a", "type": "curates", "context": "focal"},
            {"source": "v", "target": "b", "type": "curates"},
            {"source": "v", "target": "c", "type": "informs"},
            {"source": "w", "target": "a", "type": "curates"},
        ],
    )
    make_node(workspace, "v", view={"focal": "a", "includes": ["a", "b"]})


def test_update_view_resyncs_edges(workspace: Path) -> None:
    _view_workspace(workspace)
    view = update_view(workspace, "v", "c", ["b", "c"])
    assert view == ViewData(focal="c", includes=["b", "c"])

    assert json.loads((workspace / "nodes" / "v" / "view.json").read_text()) == {"focal": "c", "includes": ["b", "c"]}
    assert read_graph_json(workspace)["edges"] == [
        {"source": "v", "target": "c", "type": "informs"},
        {"source": "w", "target": "a", "type": "curates"},
        {"source": "v", "target": "b", "type": "curates"},
        {"source": "v", "target": "c", "type": "curates", "context": "focal"},
    ]


def test_update_view_is_idempotent(workspace: Path) -> None:
    _view_workspace(workspace)
    update_view(workspace, "v", "a", ["a", "b"])
    first = read_graph_json(workspace)
    update_view(workspace, "v", "a", ["a", "b"])
    assert read_graph_json(workspace) == first


def test_update_view_errors(workspace: Path) -> None:
    _view_workspace(workspace)
    make_node(workspace, "plain")
    with pytest.raises(InvalidInputError, match="Node plain is not a view"):
        update_view(workspace, "plain", "a", ["a"])
    with pytest.raises(NotFoundError):
        update_view(workspace, "ghost", "a", ["a"])
    with pytest.raises(InvalidInputError):
        update_view(workspace, "v", "z", ["a"])
    assert json.loads((workspace / "nodes" / "v" / "view.json").read_text())["focal"] == "a"


def test_update_view_keeps_unknown_edge_keys(workspace: Path) -> None:
    labelled = {"source": "a", "target": "b", "type": "informs", "label": "keep me", "weight": 3}
    write_graph(workspace, id="ws", title="Workspace", edges=[labelled])
    make_node(workspace, "v", view={"focal": "a", "includes": ["a"]})
    update_view(workspace, "v", "a", ["a", "b"])

    edges = read_graph_json(workspace)["edges"]
    assert edges[0] == labelled
    assert edges[1:] == [
        {"source": "v", "target": "a", "type": "curates", "context": "focal"},
        {"source": "v", "target": "b", "type": "curates"},
    ]
