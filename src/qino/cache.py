"""In-memory read cache over a ProtocolOps, invalidated by FileWatcher events.

Entries:
    graphs[graph_path]              GraphWithJournal ("" is the root graph)
    nodes[(graph_path, node_id)]    NodeDetail

Misses (None results) are never cached.

Invalidation by event type:
    config                  everything
    graph / journal         that graph, every node read through it, and the
                            parent graph + owning node when it is a sub-graph
    node / annotation       every graph (flags, signals and action items are
                            derived from node files) and every entry for that
                            node id, whatever graph it was read through
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable

    from qino.models import GraphWithJournal, NodeDetail
    from qino.ops import ProtocolOps
    from qino.watcher import FileChangeEvent, FileWatcher

logger = logging.getLogger("qino.cache")


def _owner(graph_path: str) -> tuple[str, str] | None:
    """(parent graph path, node id) for a sub-graph path like "nodes/a"."""
    parts = graph_path.split("/")
    if len(parts) < 2:
        return None
    return "/".join(parts[:-2]), parts[-1]


@dataclass
class CachedReader:
    """Caches read_graph / read_node results of an inner ProtocolOps."""

    ops: ProtocolOps
    hits: int = 0
    misses: int = 0
    _graphs: dict[str, GraphWithJournal] = field(default_factory=dict, init=False, repr=False)
    _nodes: dict[tuple[str, str], NodeDetail] = field(default_factory=dict, init=False, repr=False)
    _generation: int = field(default=0, init=False, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)
    _unsubscribe: Callable[[], None] | None = field(default=None, init=False, repr=False)

    # ------------------------------------------------------------------
    # Wiring
    # ------------------------------------------------------------------

    def attach(self, watcher: FileWatcher) -> None:
        """Invalidate on every event the watcher delivers."""
        self.detach()
        self._unsubscribe = watcher.subscribe(self.invalidate)

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def read_graph(self, graph_path: str | None = None) -> GraphWithJournal | None:
        key = graph_path or ""
        with self._lock:
            cached = self._graphs.get(key)
            if cached is not None:
                self.hits += 1
                return cached
            self.misses += 1
            generation = self._generation
        data = self.ops.read_graph(graph_path)
        if data is not None:
            with self._lock:
                # an invalidation ran while we were reading: the result may be stale
                if generation == self._generation:
                    self._graphs[key] = data
        return data

    def read_node(self, node_id: str, graph_path: str | None = None) -> NodeDetail | None:
        key = (graph_path or "", node_id)
        with self._lock:
            cached = self._nodes.get(key)
            if cached is not None:
                self.hits += 1
                return cached
            self.misses += 1
            generation = self._generation
        detail = self.ops.read_node(node_id, graph_path)
        if detail is not None:
            with self._lock:
                if generation == self._generation:
                    self._nodes[key] = detail
        return detail

    # ------------------------------------------------------------------
    # Invalidation
    # ------------------------------------------------------------------

    def clear(self) -> None:
        with self._lock:
            self._generation += 1
            self._graphs.clear()
            self._nodes.clear()

    def invalidate(self, event: FileChangeEvent) -> None:
        if event.type == "config":
            self.clear()
            return
        with self._lock:
            self._generation += 1
            if event.type in ("graph", "journal"):
                self._drop_graph(event.graph_path or "")
            else:
                self._graphs.clear()
                for key in [k for k in self._nodes if k[1] == event.node_id]:
                    del self._nodes[key]
        logger.debug("invalidated %s", event.to_dict())

    def _drop_graph(self, graph_path: str) -> None:
        self._graphs.pop(graph_path, None)
        for key in [k for k in self._nodes if k[0] == graph_path]:
            del self._nodes[key]
        owner = _owner(graph_path)
        if owner is not None:
            parent_path, node_id = owner
            self._graphs.pop(parent_path, None)
            self._nodes.pop((parent_path, node_id), None)
