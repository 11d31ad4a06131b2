"""Data models for the on-disk protocol graph."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

AgentSignal = Literal["reading", "connection", "tension", "proposal"]
AnnotationStatus = Literal["open", "accepted", "resolved", "dismissed"]

VALID_SIGNALS: frozenset[str] = frozenset({"reading", "connection", "tension", "proposal"})
VALID_STATUSES: frozenset[str] = frozenset({"open", "accepted", "resolved", "dismissed"})
RESOLVE_STATUSES: frozenset[str] = frozenset({"accepted", "resolved", "dismissed"})

OPENING_CONTEXT = "opening"
DEFAULT_NODES_DIR = "nodes"
CURATES = "curates"
FOCAL = "focal"


@dataclass
class GraphEdge:
    """A directed edge as stored in graph.json. Unknown keys ride along in extra."""

    source: str
    target: str
    type: str | None = None
    context: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> GraphEdge:
        known = {"source", "target", "type", "context"}
        return cls(
            source=str(d.get("source", "")),
            target=str(d.get("target", "")),
            type=d.get("type"),
            context=d.get("context"),
            extra={k: v for k, v in d.items() if k not in known},
        )

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"source": self.source, "target": self.target}
        if self.type:
            d["type"] = self.type
        if self.context:
            d["context"] = self.context
        d.update(self.extra)
        return d


@dataclass
class GraphNodeEntry:
    """Index-level view of a node: enough to render the graph without reading each directory."""

    id: str
    dir: str
    title: str
    type: str | None = None
    status: str | None = None
    created: str | None = None
    has_sub_graph: bool = False
    has_view: bool = False
    has_journal: bool = False
    modified: float | None = None        # epoch ms
    extra: dict[str, Any] = field(default_factory=dict)   # legacy graph.json fields (position, ...)

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {**self.extra, "id": self.id, "dir": self.dir, "title": self.title}
        for key in ("type", "status", "created"):
            value = getattr(self, key)
            if value:
                d[key] = value
        if self.has_sub_graph:
            d["hasSubGraph"] = True
        if self.has_view:
            d["hasView"] = True
        if self.has_journal:
            d["hasJournal"] = True
        if self.modified:
            d["modified"] = self.modified
        return d


@dataclass
class GraphData:
    """The graph.json document. Unknown keys survive a read-modify-write."""

    id: str
    title: str
    nodes_dir: str = DEFAULT_NODES_DIR
    edges: list[GraphEdge] = field(default_factory=list)
    nodes: list[dict[str, Any]] | None = None     # legacy export, never the source of truth
    extra: dict[str, Any] = field(default_factory=dict)
    nodes_dir_explicit: bool = False

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> GraphData:
        known = {"id", "title", "nodesDir", "edges", "nodes"}
        raw_nodes = d.get("nodes")
        return cls(
            id=str(d.get("id", "")),
            title=str(d.get("title", "")),
            nodes_dir=d.get("nodesDir") or DEFAULT_NODES_DIR,
            edges=[GraphEdge.from_dict(e) for e in d.get("edges") or [] if isinstance(e, dict)],
            nodes=[n for n in raw_nodes if isinstance(n, dict)] if isinstance(raw_nodes, list) else None,
            extra={k: v for k, v in d.items() if k not in known},
            nodes_dir_explicit="nodesDir" in d,
        )

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"id": self.id, "title": self.title}
        if self.nodes_dir_explicit:
            d["nodesDir"] = self.nodes_dir
        d.update(self.extra)
        if self.nodes is not None:
            d["nodes"] = self.nodes
        d["edges"] = [e.to_dict() for e in self.edges]
        return d


@dataclass
class ViewData:
    """A curated subset of the graph: focal must be one of includes."""

    focal: str
    includes: list[str]

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> ViewData:
        return cls(focal=str(d.get("focal", "")), includes=[str(i) for i in d.get("includes") or []])

    def to_dict(self) -> dict[str, Any]:
        return {"focal": self.focal, "includes": list(self.includes)}

    def curates_edges(self, source: str) -> list[GraphEdge]:
        """The exact edge set graph.json must hold for this view."""
        return [
            GraphEdge(source=source, target=t, type=CURATES, context=FOCAL if t == self.focal else None)
            for t in self.includes
        ]


@dataclass
class JournalSection:
    context: str
    body: str

    def to_dict(self) -> dict[str, Any]:
        return {"context": self.context, "body": self.body}


@dataclass
class AnnotationMeta:
    signal: str = "reading"
    created: str = ""
    target: str | None = None
    status: str | None = None          # None means open
    resolved_at: str | None = None
    author: str = "agent"

    @property
    def effective_status(self) -> str:
        return self.status or "open"

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"author": self.author, "signal": self.signal}
        if self.target:
            d["target"] = self.target
        d["created"] = self.created
        if self.status:
            d["status"] = self.status
        if self.resolved_at:
            d["resolvedAt"] = self.resolved_at
        return d


@dataclass
class Annotation:
    filename: str
    meta: AnnotationMeta
    content: str
    modified: float | None = None      # epoch ms

    def to_dict(self) -> dict[str, Any]:
        return {"filename": self.filename, "meta": self.meta.to_dict(), "content": self.content}


@dataclass
class ContentFile:
    filename: str
    content: str


@dataclass
class BreadcrumbItem:
    """An ancestor of the current node; id None is the workspace root."""

    id: str | None
    title: str
    at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"id": self.id, "title": self.title}
        if self.at:
            d["at"] = self.at
        return d


@dataclass
class ActionItem:
    """Something awaiting a human: an open proposal or tension, or (source "status") a proposed node."""

    signal: str
    node_id: str
    node_title: str
    annotation_filename: str
    preview: str
    source: str = "annotation"
    created: str | None = None
    modified: float | None = None
    target: str | None = None
    status: str | None = None
    graph_path: str | None = None       # set by landing reads; "" is the root graph
    workspace_name: str | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "source": self.source,
            "signal": self.signal,
            "nodeId": self.node_id,
            "nodeTitle": self.node_title,
            "preview": self.preview,
        }
        if self.graph_path is not None:
            d["graphPath"] = self.graph_path
        for key, value in (
            ("annotationFilename", self.annotation_filename),
            ("created", self.created),
            ("modified", self.modified),
            ("target", self.target),
            ("status", self.status),
            ("workspaceName", self.workspace_name),
        ):
            if value:
                d[key] = value
        return d


@dataclass
class GraphWithJournal:
    """graph.json enriched with discovered nodes, the journal and derived signals."""

    graph: GraphData
    nodes: list[GraphNodeEntry]
    journal: str | None
    journal_sections: list[JournalSection]
    agent_signals: dict[str, list[str]]
    action_items: list[ActionItem]

    @property
    def id(self) -> str:
        return self.graph.id

    @property
    def title(self) -> str:
        return self.graph.title

    @property
    def edges(self) -> list[GraphEdge]:
        return self.graph.edges

    def node(self, node_id: str) -> GraphNodeEntry | None:
        return next((n for n in self.nodes if n.id == node_id), None)

    def to_dict(self) -> dict[str, Any]:
        d = self.graph.to_dict()
        d["nodes"] = [n.to_dict() for n in self.nodes]
        d["journal"] = self.journal
        d["journalSections"] = [s.to_dict() for s in self.journal_sections]
        d["agentSignals"] = self.agent_signals
        d["actionItems"] = [a.to_dict() for a in self.action_items]
        return d


@dataclass
class NodeDetail:
    """Everything stored in one node directory."""

    id: str
    identity: dict[str, Any]
    story: str | None
    content_files: list[ContentFile]
    annotations: list[Annotation]
    graph_title: str
    breadcrumb: list[BreadcrumbItem]
    view: ViewData | None = None
    journal_sections: list[JournalSection] = field(default_factory=list)
    has_sub_graph: bool = False
    sub_graph_path: str | None = None
    sub_graph_title: str | None = None
    modified: float | None = None

    @property
    def title(self) -> str:
        return str(self.identity.get("title", self.id))

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "id": self.id,
            "identity": self.identity,
            "story": self.story,
            "contentFiles": [{"filename": c.filename, "content": c.content} for c in self.content_files],
            "annotations": [a.to_dict() for a in self.annotations],
            "hasSubGraph": self.has_sub_graph,
            "graphTitle": self.graph_title,
            "breadcrumb": [b.to_dict() for b in self.breadcrumb],
            "view": self.view.to_dict() if self.view else None,
            "journalSections": [s.to_dict() for s in self.journal_sections],
        }
        if self.sub_graph_path:
            d["subGraphPath"] = self.sub_graph_path
        if self.sub_graph_title:
            d["subGraphTitle"] = self.sub_graph_title
        if self.modified:
            d["modified"] = self.modified
        return d


@dataclass
class WorkspaceConfig:
    """.claude/qino-config.json: display settings for a workspace."""

    name: str | None = None
    repo_type: str | None = None
    types: dict[str, Any] = field(default_factory=dict)
    statuses: dict[str, Any] = field(default_factory=dict)
    workspaces: dict[str, dict[str, Any]] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> WorkspaceConfig:
        return cls(
            name=d.get("name"),
            repo_type=d.get("repoType"),
            types=dict(d.get("types") or {}),
            statuses=dict(d.get("statuses") or {}),
            workspaces=dict(d.get("workspaces") or {}),
        )

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {}
        if self.name:
            d["name"] = self.name
        if self.repo_type:
            d["repoType"] = self.repo_type
        if self.types:
            d["types"] = self.types
        if self.statuses:
            d["statuses"] = self.statuses
        if self.workspaces:
            d["workspaces"] = self.workspaces
        return d


@dataclass
class WorkspaceEntry:
    """A child workspace named in the root config; path "" is the root itself."""

    name: str
    path: str
    repo_type: str | None = None
    node_count: int | None = None      # None when the workspace has no graph.json

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"name": self.name, "path": self.path}
        if self.repo_type:
            d["repoType"] = self.repo_type
        if self.node_count is not None:
            d["nodeCount"] = self.node_count
        return d


@dataclass
class LandingNode:
    """A discovered node plus where it lives relative to the workspace root."""

    node: GraphNodeEntry
    graph_path: str
    workspace_name: str | None = None

    def to_dict(self) -> dict[str, Any]:
        d = self.node.to_dict()
        d["graphPath"] = self.graph_path
        if self.workspace_name:
            d["workspaceName"] = self.workspace_name
        return d


@dataclass
class LandingData:
    """Cross-workspace overview: what exists, what changed, what needs attention."""

    workspaces: list[WorkspaceEntry] = field(default_factory=list)
    arcs: list[LandingNode] = field(default_factory=list)
    navigators: list[LandingNode] = field(default_factory=list)
    views: list[LandingNode] = field(default_factory=list)
    recent_nodes: list[LandingNode] = field(default_factory=list)
    action_items: list[ActionItem] = field(default_factory=list)
    today_annotations: list[ActionItem] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "workspaces": [w.to_dict() for w in self.workspaces],
            "arcs": [n.to_dict() for n in self.arcs],
            "navigators": [n.to_dict() for n in self.navigators],
            "views": [n.to_dict() for n in self.views],
            "recentNodes": [n.to_dict() for n in self.recent_nodes],
            "actionItems": [a.to_dict() for a in self.action_items],
            "todayAnnotations": [a.to_dict() for a in self.today_annotations],
        }
