"""Shared fixtures: build small protocol workspaces under tmp_path."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest


def write_graph(graph_dir: Path, **fields: Any) -> Path:
    data: dict[str, Any] = {"id": graph_dir.name or "ws", "title": "Workspace", "edges": []}
    data.update(fields)
    graph_dir.mkdir(parents=True, exist_ok=True)
    path = graph_dir / "graph.json"
    path.write_text(json.dumps(data, indent=2))
    return path


def read_graph_json(graph_dir: Path) -> dict[str, Any]:
    return json.loads((graph_dir / "graph.json").read_text())


def make_node(
    graph_dir: Path,
    node_id: str,
    *,
    title: str | None = None,
    nodes_dir: str = "nodes",
    story: str | None = None,
    annotations: dict[str, str] | None = None,
    content: dict[str, str] | None = None,
    view: dict[str, Any] | None = None,
    journal: str | None = None,
    **identity: Any,
) -> Path:
    node_dir = graph_dir / nodes_dir / node_id
    node_dir.mkdir(parents=True, exist_ok=True)
    (node_dir / "node.json").write_text(json.dumps({"title": title or node_id, **identity}))
    if story is not None:
        (node_dir / "story.md").write_text(story)
    if annotations:
        (node_dir / "annotations").mkdir(exist_ok=True)
        for name, text in annotations.items():
            (node_dir / "annotations" / name).write_text(text)
    if content:
        (node_dir / "content").mkdir(exist_ok=True)
        for name, text in content.items():
            (node_dir / "content" / name).write_text(text)
    if view is not None:
        (node_dir / "view.json").write_text(json.dumps(view))
    if journal is not None:
        (node_dir / "journal.md").write_text(journal)
    return node_dir


def annotation_text(signal: str, body: str, *, created: str = "2026-02-01", **extra: str) -> str:
    lines = ["author: agent", f"signal: {signal}"]
    if "target" in extra:
        lines.append(f"target: {extra.pop('target')}")
    lines.append(f"created: {created}")
    lines.extend(f"{k}: {v}" for k, v in extra.items())
    return "---\n" + "\n".join(lines) + "\n---\n" + body + "\n"


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    """An empty workspace with a root graph.json."""
    root = tmp_path / "ws"
    write_graph(root, id="ws", title="Workspace")
    return root
