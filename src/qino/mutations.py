"""Write operations on the protocol graph.

Each operation is a short ordered sequence of file writes. Preconditions are
checked before the first write, but there is no rollback: if a later step
fails (disk full, permissions) the earlier writes stay committed. For
create_node the order is

    node.json -> story.md -> view.json? -> graph.json (edges) -> journal.md echo

so a failure after node.json leaves a discoverable node without its edges.

Within one process, writes touching the same node directory, graph.json or
journal.md are serialized through KeyedLock. Annotation writes additionally
hold an exclusive flock on the node's node.json, so separate processes
annotating the same node still get distinct NNN prefixes. graph.json and
journal.md have no cross-process lock.
"""

from __future__ import annotations

import fcntl
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from qino.codec import (
    annotation_slug,
    normalize_escapes,
    parse_annotation,
    parse_journal_sections,
    sections_to_markdown,
    serialize_annotation,
)
from qino.errors import ConflictError, InvalidInputError, NotFoundError, node_not_found
from qino.files import read_json, read_text, write_json, write_text
from qino.graph import (
    ANNOTATIONS_DIR,
    JOURNAL_FILE,
    NODE_FILE,
    STORY_FILE,
    VIEW_FILE,
    count_annotations,
    require_graph_data,
    resolve_node_dir,
    save_graph_data,
)
from qino.models import (
    CURATES,
    RESOLVE_STATUSES,
    VALID_SIGNALS,
    AnnotationMeta,
    GraphEdge,
    JournalSection,
    ViewData,
)

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator
    from pathlib import Path

logger = logging.getLogger("qino.mutations")

_DEFAULT_STATUS = "active"
_RESERVED_IDENTITY_KEYS = frozenset({"title", "type", "status", "created"})


# ---------------------------------------------------------------------------
# Locking
# ---------------------------------------------------------------------------

class KeyedLock:
    """One threading.Lock per key; keys are resolved paths.

    An entry is dropped when its last holder or waiter releases it.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, tuple[threading.Lock, int]] = {}

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            lock, users = self._locks.get(key) or (threading.Lock(), 0)
            self._locks[key] = (lock, users + 1)
        try:
            with lock:
                yield
        finally:
            with self._guard:
                lock, users = self._locks[key]
                if users == 1:
                    del self._locks[key]
                else:
                    self._locks[key] = (lock, users - 1)

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


_locks = KeyedLock()


def _key(kind: str, path: Path) -> str:
    return f"{kind}:{path.resolve()}"


@contextmanager
def _flocked(path: Path) -> Iterator[None]:
    """Exclusive flock on an existing file for the duration of the block."""
    with path.open("rb") as f:
        fcntl.flock(f, fcntl.LOCK_EX)
        try:
            yield
        finally:
            fcntl.flock(f, fcntl.LOCK_UN)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _today() -> str:
    return datetime.now(UTC).date().isoformat()


def _now() -> str:
    return datetime.now(UTC).isoformat(timespec="seconds")


def _require_node_dir(graph_dir: Path, node_id: str) -> Path:
    graph = require_graph_data(graph_dir)
    node_dir = resolve_node_dir(graph_dir, graph.nodes_dir, node_id)
    if node_dir is None:
        raise node_not_found(node_id)
    return node_dir


def validate_view(view: ViewData) -> None:
    if not view.includes:
        msg = "View must include at least one node"
        raise InvalidInputError(msg)
    if len(set(view.includes)) != len(view.includes):
        msg = "View includes must not repeat a node"
        raise InvalidInputError(msg)
    if view.focal not in view.includes:
        msg = f"View focal '{view.focal}' must be one of its includes"
        raise InvalidInputError(msg)


def sync_curates_edges(edges: list[GraphEdge], source: str, view: ViewData) -> list[GraphEdge]:
    """Replace every curates edge from source with the edges the view implies."""
    kept = [e for e in edges if not (e.source == source and e.type == CURATES)]
    return kept + view.curates_edges(source)


# ---------------------------------------------------------------------------
# Nodes
# ---------------------------------------------------------------------------

@dataclass
class NodeDraft:
    """Arguments for create_node. The node id is also its directory name."""

    id: str
    title: str
    story: str = ""
    type: str | None = None
    status: str | None = None
    edges: list[GraphEdge] = field(default_factory=list)
    view: ViewData | None = None
    extra: dict[str, Any] = field(default_factory=dict)   # passthrough node.json fields

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> NodeDraft:
        view = d.get("view")
        return cls(
            id=str(d.get("id", "")),
            title=str(d.get("title", "")),
            story=str(d.get("story", "")),
            type=d.get("type"),
            status=d.get("status"),
            edges=[GraphEdge.from_dict({"source": d.get("id", ""), **e}) for e in d.get("edges") or []],
            view=ViewData.from_dict(view) if isinstance(view, dict) else None,
            extra=dict(d.get("extra") or {}),
        )

    def identity(self, created: str) -> dict[str, Any]:
        ident: dict[str, Any] = {"title": self.title}
        if self.type:
            ident["type"] = self.type
        ident["status"] = self.status or _DEFAULT_STATUS
        ident["created"] = created
        ident.update({k: v for k, v in self.extra.items() if k not in _RESERVED_IDENTITY_KEYS})
        return ident


@dataclass
class CreateResult:
    node_id: str
    status: str


def create_node(graph_dir: Path, draft: NodeDraft) -> CreateResult:
    """Create a node directory, wire its edges into graph.json and echo it to the journal."""
    graph = require_graph_data(graph_dir)
    if not draft.id or draft.id in (".", "..") or "/" in draft.id or "\\" in draft.id:
        msg = f"Invalid node id: {draft.id!r}"
        raise InvalidInputError(msg)
    if not draft.title.strip():
        msg = "Node title is required"
        raise InvalidInputError(msg)
    if draft.view is not None:
        validate_view(draft.view)
    check_journal_context(draft.id)

    with _locks.hold(_key("graph", graph_dir)):
        if resolve_node_dir(graph_dir, graph.nodes_dir, draft.id) is not None:
            msg = f"Node already exists: {draft.id}"
            raise ConflictError(msg)

        node_dir = graph_dir / graph.nodes_dir / draft.id
        identity = draft.identity(_today())
        write_json(node_dir / NODE_FILE, identity)
        write_text(node_dir / STORY_FILE, normalize_escapes(draft.story))
        if draft.view is not None:
            write_json(node_dir / VIEW_FILE, draft.view.to_dict())

        if draft.edges or draft.view is not None:
            # re-read: graph.json may have changed since the precondition check
            graph = require_graph_data(graph_dir)
            for edge in draft.edges:
                graph.edges.append(GraphEdge(
                    source=draft.id, target=edge.target, type=edge.type, context=edge.context,
                    extra=dict(edge.extra),
                ))
            if draft.view is not None:
                graph.edges = sync_curates_edges(graph.edges, draft.id, draft.view)
            save_graph_data(graph_dir, graph)

    echo = f"created: {draft.title}\n→ [{draft.id}]({graph.nodes_dir}/{draft.id}/)"
    write_journal_entry(graph_dir, f"node/{draft.id}", echo)
    logger.info("node created: %s (%s)", draft.id, graph_dir)
    return CreateResult(node_id=draft.id, status=identity["status"])


# ---------------------------------------------------------------------------
# Annotations
# ---------------------------------------------------------------------------

def write_annotation(
    graph_dir: Path,
    node_id: str,
    signal: str,
    body: str,
    target: str | None = None,
) -> str:
    """Write annotations/NNN-slug.md for a node. Returns the filename."""
    if signal not in VALID_SIGNALS:
        msg = f"Invalid signal: {signal} (expected one of {', '.join(sorted(VALID_SIGNALS))})"
        raise InvalidInputError(msg)
    node_dir = _require_node_dir(graph_dir, node_id)
    annotations_dir = node_dir / ANNOTATIONS_DIR

    with _locks.hold(_key("node", node_dir)), _flocked(node_dir / NODE_FILE):
        annotations_dir.mkdir(parents=True, exist_ok=True)
        seq = count_annotations(node_dir) + 1
        filename = f"{seq:03d}-{annotation_slug(body)}.md"
        meta = AnnotationMeta(signal=signal, created=_now(), target=target or None)
        write_text(annotations_dir / filename, serialize_annotation(meta, normalize_escapes(body)))

    logger.info("annotation written: %s/%s", node_id, filename)
    return filename


def resolve_annotation(graph_dir: Path, node_id: str, filename: str, status: str) -> AnnotationMeta:
    """Set status and resolvedAt on an annotation, leaving every other field and the body untouched."""
    if status not in RESOLVE_STATUSES:
        msg = f"Invalid status: {status} (expected one of {', '.join(sorted(RESOLVE_STATUSES))})"
        raise InvalidInputError(msg)
    node_dir = _require_node_dir(graph_dir, node_id)
    if "/" in filename or "\\" in filename:
        msg = f"Annotation not found: {filename}"
        raise NotFoundError(msg)
    path = node_dir / ANNOTATIONS_DIR / filename

    with _locks.hold(_key("node", node_dir)), _flocked(node_dir / NODE_FILE):
        raw = read_text(path)
        if raw is None:
            msg = f"Annotation not found: {filename}"
            raise NotFoundError(msg)
        parsed = parse_annotation(raw)
        if parsed is None:
            msg = f"Failed to parse annotation: {filename}"
            raise InvalidInputError(msg)
        meta, content = parsed
        meta.status = status
        meta.resolved_at = _today()
        write_text(path, serialize_annotation(meta, content))

    logger.info("annotation %s: %s/%s", status, node_id, filename)
    return meta


# ---------------------------------------------------------------------------
# Journals
# ---------------------------------------------------------------------------

def check_journal_context(context: str) -> None:
    """Reject contexts that would break their one-line <!-- context: ... --> marker."""
    if "\n" in context or "\r" in context or "-->" in context:
        msg = f"Journal context must be a single line without '-->': {context!r}"
        raise InvalidInputError(msg)


def _journal_path(graph_dir: Path, node_id: str | None) -> Path:
    if node_id:
        return _require_node_dir(graph_dir, node_id) / JOURNAL_FILE
    return graph_dir / JOURNAL_FILE


def write_journal_entry(graph_dir: Path, context: str, body: str, node_id: str | None = None) -> JournalSection:
    """Append a context section to the graph journal, or to a node's journal when node_id is given."""
    context = context.strip()
    if not context:
        msg = "Journal context is required"
        raise InvalidInputError(msg)
    check_journal_context(context)
    path = _journal_path(graph_dir, node_id)
    section = JournalSection(context=context, body=normalize_escapes(body).strip())

    with _locks.hold(_key("journal", path)):
        sections = parse_journal_sections(read_text(path) or "")
        sections.append(section)
        write_text(path, sections_to_markdown(sections))

    logger.info("journal entry: %s (%s)", context, path)
    return section


def save_journal(graph_dir: Path, sections: Iterable[JournalSection], node_id: str | None = None) -> None:
    """Rewrite a journal wholesale. Sections with empty bodies are dropped."""
    sections = list(sections)
    for section in sections:
        check_journal_context(section.context)
    path = _journal_path(graph_dir, node_id)
    with _locks.hold(_key("journal", path)):
        write_text(path, sections_to_markdown(sections))
    logger.info("journal saved: %s", path)


# ---------------------------------------------------------------------------
# Views
# ---------------------------------------------------------------------------

def update_view(graph_dir: Path, node_id: str, focal: str, includes: list[str]) -> ViewData:
    """Overwrite a view node's view.json and resync its curates edges in graph.json."""
    node_dir = _require_node_dir(graph_dir, node_id)
    view_path = node_dir / VIEW_FILE
    if read_json(view_path) is None:
        msg = f"Node {node_id} is not a view (no view.json)"
        raise InvalidInputError(msg)
    view = ViewData(focal=focal, includes=list(includes))
    validate_view(view)

    with _locks.hold(_key("graph", graph_dir)):
        write_json(view_path, view.to_dict())
        graph = require_graph_data(graph_dir)
        graph.edges = sync_curates_edges(graph.edges, node_id, view)
        save_graph_data(graph_dir, graph)

    logger.info("view updated: %s (%d includes)", node_id, len(view.includes))
    return view
