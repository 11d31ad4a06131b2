"""Change notifier: turn raw file paths into typed, debounced change events.

Two ways in, one per-key state map:

    enqueue(path)   raw OS events (inotify, or the polling fallback).
                    Debounced per key, so the burst of writes a single
                    create_node produces (node.json, story.md, graph.json,
                    journal.md) arrives as a few events, not a dozen.
    push(event)     internal mutations. Delivered immediately; cancels a
                    pending timer for the same key so the OS echo of the same
                    write is not delivered a second time.

Keys:
    config                      .claude/qino-config.json
    graph:<graph_path>          graph.json and graph-level journal.md
    node:<node_id>              node files and annotations (graph_path ignored:
                                raw paths cannot tell which graph a node is in)

OS watching runs on a daemon thread: inotify_simple on Linux, mtime polling
everywhere else.
"""

from __future__ import annotations

import logging
import os
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger("qino.watcher")

DEFAULT_DEBOUNCE_MS = 300
CONFIG_PATH = ".claude/qino-config.json"

_IGNORED_DIRS = frozenset({".git", "node_modules"})
_INOTIFY_TIMEOUT_MS = 500


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FileChangeEvent:
    type: str                       # graph | node | journal | config | annotation
    node_id: str | None = None
    graph_path: str | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"type": self.type}
        if self.node_id is not None:
            d["nodeId"] = self.node_id
        if self.graph_path is not None:
            d["graphPath"] = self.graph_path
        return d


def _dirname(parts: list[str]) -> str | None:
    return "/".join(parts[:-1]) if len(parts) > 1 else None


def categorize(relative_path: str) -> FileChangeEvent | None:
    """Map a workspace-relative path to the event it implies, or None if irrelevant."""
    path = relative_path.replace("\\", "/").strip("/")
    if not path:
        return None
    parts = path.split("/")
    if any(p in _IGNORED_DIRS for p in parts[:-1]):
        return None
    name = parts[-1]

    if path == CONFIG_PATH:
        return FileChangeEvent("config")

    if name == "graph.json":
        return FileChangeEvent("graph", graph_path=_dirname(parts))

    # files one level under a node subfolder belong to the node two segments up
    if len(parts) >= 3 and parts[-2] == "annotations" and name.endswith(".md"):
        return FileChangeEvent("annotation", node_id=parts[-3])
    if len(parts) >= 3 and parts[-2] == "content":
        return FileChangeEvent("node", node_id=parts[-3])

    if name in ("node.json", "view.json") and len(parts) >= 2:
        return FileChangeEvent("node", node_id=parts[-2])
    if name == "story.md" and len(parts) >= 3:
        return FileChangeEvent("node", node_id=parts[-2])

    if name == "journal.md":
        if len(parts) <= 2:
            return FileChangeEvent("journal", graph_path=_dirname(parts))
        return FileChangeEvent("node", node_id=parts[-2])

    return None


def debounce_key(event: FileChangeEvent) -> str:
    if event.type == "config":
        return "config"
    if event.type in ("graph", "journal"):
        return f"graph:{event.graph_path or ''}"
    return f"node:{event.node_id or ''}"


# ---------------------------------------------------------------------------
# FileWatcher
# ---------------------------------------------------------------------------

class FileWatcher:
    """Subscriber set plus a per-key map of pending debounce timers."""

    def __init__(self, debounce_ms: float = DEFAULT_DEBOUNCE_MS) -> None:
        self.debounce_ms = debounce_ms
        self._lock = threading.Lock()
        self._subscribers: list[Callable[[FileChangeEvent], None]] = []
        self._timers: dict[str, tuple[threading.Timer, FileChangeEvent]] = {}
        self._closed = False
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def closed(self) -> bool:
        return self._closed

    def pending_keys(self) -> list[str]:
        with self._lock:
            return sorted(self._timers)

    # -- subscribers ---------------------------------------------------------

    def subscribe(self, fn: Callable[[FileChangeEvent], None]) -> Callable[[], None]:
        """Register fn; the returned callable unsubscribes it."""
        with self._lock:
            if not self._closed:
                self._subscribers.append(fn)

        def unsubscribe() -> None:
            with self._lock:
                if fn in self._subscribers:
                    self._subscribers.remove(fn)

        return unsubscribe

    def _emit(self, event: FileChangeEvent) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for fn in subscribers:
            try:
                fn(event)
            except Exception:
                logger.exception("subscriber failed for %s", debounce_key(event))

    # -- delivery ------------------------------------------------------------

    def push(self, event: FileChangeEvent) -> None:
        """Deliver now, dropping any pending debounced delivery for the same key."""
        with self._lock:
            if self._closed:
                return
            pending = self._timers.pop(debounce_key(event), None)
        if pending is not None:
            pending[0].cancel()
        self._emit(event)

    def enqueue(self, change: str | FileChangeEvent) -> FileChangeEvent | None:
        """Schedule a debounced delivery; repeats of the same key restart the window."""
        event = categorize(change) if isinstance(change, str) else change
        if event is None:
            return None
        key = debounce_key(event)
        timer = threading.Timer(self.debounce_ms / 1000.0, self._fire, args=(key,))
        timer.daemon = True
        with self._lock:
            if self._closed:
                return None
            previous = self._timers.get(key)
            self._timers[key] = (timer, event)
        if previous is not None:
            previous[0].cancel()
        timer.start()
        return event

    def _fire(self, key: str) -> None:
        with self._lock:
            entry = self._timers.get(key)
            if entry is None or entry[0] is not threading.current_thread():
                return
            del self._timers[key]
        self._emit(entry[1])

    def flush(self) -> None:
        """Deliver every pending event now (used on shutdown and in tests)."""
        with self._lock:
            pending = list(self._timers.values())
            self._timers.clear()
        for timer, event in pending:
            timer.cancel()
            self._emit(event)

    def close(self) -> None:
        """Stop watching, cancel timers and drop subscribers. Idempotent."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            timers = [timer for timer, _ in self._timers.values()]
            self._timers.clear()
            self._subscribers.clear()
        for timer in timers:
            timer.cancel()
        self._stop.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=2.0)

    # -- OS watching ---------------------------------------------------------

    def watch(self, workspace_dir: Path | str, poll_interval: float = 1.0) -> None:
        """Feed enqueue() from filesystem events under workspace_dir on a daemon thread."""
        root = Path(workspace_dir)
        if self._thread is not None or self._closed:
            return
        self._thread = threading.Thread(
            target=self._watch_loop,
            args=(root, poll_interval),
            name="qino-watcher",
            daemon=True,
        )
        self._thread.start()

    def _watch_loop(self, root: Path, poll_interval: float) -> None:
        try:
            watch_inotify(root, self.enqueue, self._stop)
        except ImportError:
            logger.warning("inotify_simple not available, falling back to polling")
            watch_poll(root, self.enqueue, self._stop, interval=poll_interval)
        except OSError:
            logger.exception("inotify failed for %s, falling back to polling", root)
            watch_poll(root, self.enqueue, self._stop, interval=poll_interval)


# ---------------------------------------------------------------------------
# inotify
# ---------------------------------------------------------------------------

def _walk_dirs(root: Path) -> list[Path]:
    dirs: list[Path] = []
    for dirpath, dirnames, _ in os.walk(root):
        dirnames[:] = [d for d in dirnames if d not in _IGNORED_DIRS]
        dirs.append(Path(dirpath))
    return dirs


def _relative(root: Path, path: Path) -> str | None:
    try:
        return path.relative_to(root).as_posix()
    except ValueError:
        return None


def watch_inotify(root: Path, on_change: Callable[[str], object], stop: threading.Event) -> None:
    """Recursive inotify watch (Linux). Returns when stop is set."""
    import inotify_simple  # type: ignore[import]  # raises ImportError on macOS/Docker

    inotify = inotify_simple.INotify()
    flags = inotify_simple.flags  # type: ignore[attr-defined]
    mask = flags.CLOSE_WRITE | flags.MOVED_TO | flags.MOVED_FROM | flags.CREATE | flags.DELETE
    watched: dict[int, Path] = {}

    def add_tree(directory: Path) -> None:
        for d in _walk_dirs(directory):
            try:
                watched[inotify.add_watch(str(d), mask)] = d
            except OSError:
                logger.debug("cannot watch %s", d)

    add_tree(root)
    logger.info("inotify watching %s (%d dirs)", root, len(watched))
    try:
        while not stop.is_set():
            for event in inotify.read(timeout=_INOTIFY_TIMEOUT_MS):
                directory = watched.get(event.wd)
                if directory is None or not event.name:
                    continue
                changed = directory / event.name
                if event.mask & flags.ISDIR:
                    if event.mask & (flags.CREATE | flags.MOVED_TO) and event.name not in _IGNORED_DIRS:
                        add_tree(changed)
                    continue
                rel = _relative(root, changed)
                if rel is not None:
                    on_change(rel)
    finally:
        inotify.close()


# ---------------------------------------------------------------------------
# Polling fallback
# ---------------------------------------------------------------------------

def snapshot(root: Path) -> dict[str, float]:
    """Relative path -> mtime for every file under root, skipping .git and node_modules."""
    seen: dict[str, float] = {}
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = [d for d in dirnames if d not in _IGNORED_DIRS]
        for name in filenames:
            path = Path(dirpath) / name
            try:
                seen[path.relative_to(root).as_posix()] = path.stat().st_mtime
            except OSError:
                continue
    return seen


def diff_snapshots(before: dict[str, float], after: dict[str, float]) -> list[str]:
    """Paths added, removed or modified between two snapshots, sorted."""
    changed = {p for p, m in after.items() if before.get(p) != m}
    changed.update(p for p in before if p not in after)
    return sorted(changed)


def watch_poll(
    root: Path,
    on_change: Callable[[str], object],
    stop: threading.Event,
    interval: float = 1.0,
) -> None:
    """Polling fallback for macOS/Docker. Compares mtimes every interval seconds."""
    logger.info("polling %s interval=%.1fs", root, interval)
    previous = snapshot(root)
    while not stop.wait(interval):
        current = snapshot(root)
        for rel in diff_snapshots(previous, current):
            on_change(rel)
        previous = current


def wait_forever(watcher: FileWatcher, tick: float = 0.5) -> None:
    """Block until the watcher is closed or KeyboardInterrupt."""
    try:
        while not watcher.closed:
            time.sleep(tick)
    except KeyboardInterrupt:
        logger.info("interrupted, closing watcher")
    finally:
        watcher.close()
