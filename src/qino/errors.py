"""Typed store errors.

Message text is matched by some callers ("No graph.json found in: ...",
"Node not found: ..."), so keep the formats stable.
"""

from __future__ import annotations


class ProtocolError(Exception):
    """Base class for every error raised by the protocol store."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotConfiguredError(ProtocolError):
    """graph.json is missing at the requested scope."""


class NotFoundError(ProtocolError, LookupError):
    """A node id or annotation filename does not exist."""


class ConflictError(ProtocolError, FileExistsError):
    """A node with the requested id already exists."""


class InvalidInputError(ProtocolError, ValueError):
    """Malformed view, unknown signal or status, unparsable annotation."""


def no_graph(graph_dir: object) -> NotConfiguredError:
    return NotConfiguredError(f"No graph.json found in: {graph_dir}")


def node_not_found(node_id: str) -> NotFoundError:
    return NotFoundError(f"Node not found: {node_id}")
