"""ProtocolOps: one capability interface over the protocol store.

Transports (MCP tools, HTTP routes, the CLI) talk to a ProtocolOps and never
to the store modules directly, so the store can be swapped for a remote
backend without touching them. Every operation takes an optional
`graph_path`, the graph directory relative to the workspace root ("" or None
for the root graph).

DirectOps is the filesystem backend. After each successful write it pushes
the matching FileChangeEvent to the watcher, which delivers it immediately
and suppresses the debounced echo of the same write from the OS watcher.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Protocol

from qino import mutations
from qino.config import read_config
from qino.errors import InvalidInputError, NotConfiguredError
from qino.graph import read_graph
from qino.landing import read_landing
from qino.reader import read_node
from qino.watcher import FileChangeEvent

if TYPE_CHECKING:
    from collections.abc import Iterable
    from pathlib import Path

    from qino.config import QinoConfig
    from qino.models import (
        AnnotationMeta,
        GraphWithJournal,
        JournalSection,
        LandingData,
        NodeDetail,
        ViewData,
        WorkspaceConfig,
    )
    from qino.mutations import CreateResult, NodeDraft
    from qino.watcher import FileWatcher

logger = logging.getLogger("qino.ops")


class ProtocolOps(Protocol):
    def read_config(self) -> WorkspaceConfig: ...

    def read_graph(self, graph_path: str | None = None) -> GraphWithJournal | None: ...

    def read_node(self, node_id: str, graph_path: str | None = None) -> NodeDetail | None: ...

    def read_landing(self, day: str | None = None) -> LandingData: ...

    def write_annotation(
        self,
        node_id: str,
        signal: str,
        body: str,
        target: str | None = None,
        graph_path: str | None = None,
    ) -> str: ...

    def resolve_annotation(
        self, node_id: str, filename: str, status: str, graph_path: str | None = None,
    ) -> AnnotationMeta: ...

    def create_node(self, draft: NodeDraft, graph_path: str | None = None) -> CreateResult: ...

    def write_journal_entry(
        self, context: str, body: str, node_id: str | None = None, graph_path: str | None = None,
    ) -> JournalSection: ...

    def save_journal(
        self, sections: Iterable[JournalSection], node_id: str | None = None, graph_path: str | None = None,
    ) -> None: ...

    def update_view(
        self, node_id: str, focal: str, includes: list[str], graph_path: str | None = None,
    ) -> ViewData: ...


class DirectOps:
    """ProtocolOps backed by the local filesystem."""

    def __init__(self, workspace_dir: Path, watcher: FileWatcher | None = None) -> None:
        self.workspace_dir = workspace_dir
        self.watcher = watcher

    def graph_dir(self, graph_path: str | None) -> Path:
        if not graph_path:
            return self.workspace_dir
        candidate = (self.workspace_dir / graph_path).resolve()
        if not candidate.is_relative_to(self.workspace_dir.resolve()):
            msg = f"Graph path escapes the workspace: {graph_path}"
            raise InvalidInputError(msg)
        return candidate

    def _push(self, event: FileChangeEvent) -> None:
        if self.watcher is not None:
            self.watcher.push(event)

    def _push_node(self, event_type: str, node_id: str, graph_path: str | None) -> None:
        self._push(FileChangeEvent(event_type, node_id=node_id, graph_path=graph_path or None))

    # -- reads ---------------------------------------------------------------

    def read_config(self) -> WorkspaceConfig:
        return read_config(self.workspace_dir)

    def read_graph(self, graph_path: str | None = None) -> GraphWithJournal | None:
        return read_graph(self.graph_dir(graph_path))

    def read_node(self, node_id: str, graph_path: str | None = None) -> NodeDetail | None:
        return read_node(self.graph_dir(graph_path), node_id)

    def read_landing(self, day: str | None = None) -> LandingData:
        return read_landing(self.workspace_dir, day)

    # -- writes --------------------------------------------------------------

    def write_annotation(
        self,
        node_id: str,
        signal: str,
        body: str,
        target: str | None = None,
        graph_path: str | None = None,
    ) -> str:
        filename = mutations.write_annotation(self.graph_dir(graph_path), node_id, signal, body, target)
        self._push_node("annotation", node_id, graph_path)
        return filename

    def resolve_annotation(
        self, node_id: str, filename: str, status: str, graph_path: str | None = None,
    ) -> AnnotationMeta:
        meta = mutations.resolve_annotation(self.graph_dir(graph_path), node_id, filename, status)
        self._push_node("annotation", node_id, graph_path)
        return meta

    def create_node(self, draft: NodeDraft, graph_path: str | None = None) -> CreateResult:
        result = mutations.create_node(self.graph_dir(graph_path), draft)
        self._push(FileChangeEvent("graph", graph_path=graph_path or None))
        self._push_node("node", draft.id, graph_path)
        return result

    def write_journal_entry(
        self, context: str, body: str, node_id: str | None = None, graph_path: str | None = None,
    ) -> JournalSection:
        section = mutations.write_journal_entry(self.graph_dir(graph_path), context, body, node_id)
        self._push_journal(node_id, graph_path)
        return section

    def save_journal(
        self, sections: Iterable[JournalSection], node_id: str | None = None, graph_path: str | None = None,
    ) -> None:
        mutations.save_journal(self.graph_dir(graph_path), sections, node_id)
        self._push_journal(node_id, graph_path)

    def _push_journal(self, node_id: str | None, graph_path: str | None) -> None:
        if node_id:
            self._push_node("node", node_id, graph_path)
        else:
            self._push(FileChangeEvent("journal", graph_path=graph_path or None))

    def update_view(
        self, node_id: str, focal: str, includes: list[str], graph_path: str | None = None,
    ) -> ViewData:
        view = mutations.update_view(self.graph_dir(graph_path), node_id, focal, includes)
        self._push(FileChangeEvent("graph", graph_path=graph_path or None))
        self._push_node("node", node_id, graph_path)
        return view


def create_ops(cfg: QinoConfig, watcher: FileWatcher | None = None) -> ProtocolOps:
    """Pick the backend named in qino.toml. Only "direct" is available in-process."""
    backend = cfg.backend
    if backend != "direct":
        msg = f"Unsupported backend: {backend}"
        raise NotConfiguredError(msg)
    logger.debug("using direct backend at %s", cfg.root)
    return DirectOps(cfg.root, watcher)
