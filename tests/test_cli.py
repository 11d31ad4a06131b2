from __future__ import annotations

import json
from typing import TYPE_CHECKING

import pytest
from click.testing import CliRunner

from qino.cli import cli

if TYPE_CHECKING:
    from pathlib import Path


@pytest.fixture
def run(workspace: Path):
    runner = CliRunner()

    def invoke(*args: str):
        return runner.invoke(cli, ["--root", str(workspace), *args])

    return invoke


def test_init(tmp_path: Path) -> None:
    runner = CliRunner()
    result = runner.invoke(cli, ["--root", str(tmp_path), "init", "research"])
    assert result.exit_code == 0, result.output
    assert (tmp_path / "qino.toml").exists()
    again = runner.invoke(cli, ["--root", str(tmp_path), "init"])
    assert again.exit_code == 0
    assert "Refusing to overwrite" in again.output
    assert "init skipped" in again.output


def test_create_annotate_and_read(run, workspace: Path) -> None:
    result = run("create", "alpha", "Alpha", "--type", "concept", "--story", "It begins")
    assert result.exit_code == 0, result.output
    assert "Created alpha (active)" in result.output

    result = run("create", "beta", "Beta", "--edge", "alpha:informs:shared idea")
    assert result.exit_code == 0, result.output

    result = run("annotate", "alpha", "proposal", "Merge with beta", "--target", "beta")
    assert result.exit_code == 0, result.output
    assert result.output.strip() == "001-merge-with-beta.md"

    result = run("graph")
    assert result.exit_code == 0, result.output
    data = json.loads(result.output)
    assert [n["id"] for n in data["nodes"]] == ["alpha", "beta"]
    assert data["edges"] == [{"source": "beta", "target": "alpha", "type": "informs", "context": "shared idea"}]
    assert data["actionItems"][0]["annotationFilename"] == "001-merge-with-beta.md"

    result = run("node", "alpha")
    assert result.exit_code == 0, result.output
    node = json.loads(result.output)
    assert node["story"] == "It begins"
    assert node["annotations"][0]["meta"]["target"] == "beta"


def test_resolve_and_journal(run, workspace: Path) -> None:
    run("create", "alpha", "Alpha")
    run("annotate", "alpha", "tension", "Unclear")

    result = run("resolve", "alpha", "001-unclear.md", "resolved")
    assert result.exit_code == 0, result.output
    assert result.output.startswith("001-unclear.md: resolved")

    result = run("journal", "session/1", "Worked on alpha")
    assert result.exit_code == 0, result.output
    assert "<!-- context: session/1 -->" in (workspace / "journal.md").read_text()


def test_view_command(run, workspace: Path) -> None:
    run("create", "a", "A")
    result = run("create", "v", "View", "--focal", "a", "--include", "a")
    assert result.exit_code == 0, result.output

    run("create", "b", "B")
    result = run("view", "v", "b", "a", "b")
    assert result.exit_code == 0, result.output
    assert "2 nodes, focal b" in result.output


def test_create_include_without_focal_is_a_usage_error(run, workspace: Path) -> None:
    result = run("create", "v", "View", "--include", "a")
    assert result.exit_code == 2
    assert "--include requires --focal" in result.output
    assert not (workspace / "nodes" / "v").exists()


def test_errors_become_click_errors(run) -> None:
    result = run("node", "ghost")
    assert result.exit_code == 1
    assert "Node not found: ghost" in result.output

    result = run("annotate", "ghost", "reading", "hello")
    assert result.exit_code == 1
    assert "Node not found: ghost" in result.output


def test_missing_graph(tmp_path: Path) -> None:
    result = CliRunner().invoke(cli, ["--root", str(tmp_path), "graph"])
    assert result.exit_code == 1
    assert "No graph.json found in" in result.output


def test_status_table(run) -> None:
    run("create", "alpha", "Alpha")
    run("annotate", "alpha", "proposal", "Split this node")

    result = run("status")
    assert result.exit_code == 0, result.output
    assert "qino: Workspace" in result.output
    assert "Action items" in result.output
    assert "proposal" in result.output


def test_landing_command(run, workspace: Path) -> None:
    (workspace / ".claude").mkdir()
    (workspace / ".claude" / "qino-config.json").write_text(
        json.dumps({"name": "Lab", "workspaces": {"notes": {"path": "notes"}}})
    )
    notes = workspace / "notes"
    notes.mkdir()
    (notes / "graph.json").write_text(json.dumps({"id": "notes", "title": "Notes", "edges": []}))
    run("create", "alpha", "Alpha")
    run("annotate", "alpha", "tension", "Doesn't fit")

    result = run("landing")
    assert result.exit_code == 0, result.output
    data = json.loads(result.output)
    assert [w["name"] for w in data["workspaces"]] == ["Lab", "notes"]
    assert [n["id"] for n in data["recentNodes"]] == ["alpha"]
    assert data["actionItems"][0]["signal"] == "tension"
    assert data["todayAnnotations"][0]["nodeId"] == "alpha"
