"""Filesystem-backed protocol store: the workspace directory tree is the database.

Layout:
    graph.json                  # {id, title, nodesDir?, edges: [...]}; edges are authoritative
    journal.md                  # timeline, sections split by <!-- context: <key> -->
    .claude/qino-config.json    # workspace display config
    nodes/
        <node-id>/
            node.json           # identity (open schema, requires title)
            story.md
            content/*.md
            annotations/NNN-slug.md   # front matter + markdown body
            view.json           # {focal, includes}, mirrored as "curates" edges
            journal.md          # node-local journal
            graph.json          # optional nested sub-graph

Writes are short ordered multi-file sequences with no rollback; see
qino.mutations. Change events for caches come from qino.watcher.
"""

from qino.cache import CachedReader
from qino.codec import parse_annotation, parse_journal_sections, sections_to_markdown, serialize_annotation
from qino.config import QinoConfig, init_config, load_config, read_config
from qino.errors import ConflictError, InvalidInputError, NotConfiguredError, NotFoundError, ProtocolError
from qino.graph import read_graph
from qino.landing import read_landing, read_workspaces
from qino.mutations import (
    NodeDraft,
    create_node,
    resolve_annotation,
    save_journal,
    update_view,
    write_annotation,
    write_journal_entry,
)
from qino.ops import DirectOps, ProtocolOps, create_ops
from qino.reader import read_node
from qino.watcher import FileChangeEvent, FileWatcher, categorize

__all__ = [
    "CachedReader",
    "ConflictError",
    "DirectOps",
    "FileChangeEvent",
    "FileWatcher",
    "InvalidInputError",
    "NodeDraft",
    "NotConfiguredError",
    "NotFoundError",
    "ProtocolError",
    "ProtocolOps",
    "QinoConfig",
    "categorize",
    "create_node",
    "create_ops",
    "init_config",
    "load_config",
    "parse_annotation",
    "parse_journal_sections",
    "read_config",
    "read_graph",
    "read_landing",
    "read_node",
    "read_workspaces",
    "resolve_annotation",
    "save_journal",
    "sections_to_markdown",
    "serialize_annotation",
    "update_view",
    "write_annotation",
    "write_journal_entry",
]
