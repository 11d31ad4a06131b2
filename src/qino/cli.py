"""qino CLI: read and write a protocol workspace from the shell.

Commands:
    qino init [NAME]                      create qino.toml
    qino graph [--at PATH]                dump a graph (nodes, edges, signals, action items)
    qino node ID [--at PATH]              dump one node
    qino status [--at PATH]               stats table and open action items
    qino landing [--day DATE]             overview across child workspaces
    qino create ID TITLE [--type ...]     create a node
    qino annotate ID SIGNAL BODY          write an annotation
    qino resolve ID FILENAME STATUS       accept / resolve / dismiss an annotation
    qino journal CONTEXT BODY [--node ID] append a journal section
    qino view ID FOCAL INCLUDE...         update a view's focal and includes
    qino watch                            print change events as JSON lines
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any

import click

from qino.config import QinoConfig, init_config, load_config
from qino.errors import ProtocolError
from qino.models import RESOLVE_STATUSES, VALID_SIGNALS, GraphEdge, ViewData
from qino.mutations import NodeDraft
from qino.ops import create_ops
from qino.watcher import FileWatcher, wait_forever

if TYPE_CHECKING:
    from qino.ops import ProtocolOps
    from qino.watcher import FileChangeEvent

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _load_cfg(root: str | None) -> QinoConfig:
    try:
        return load_config(root)
    except Exception as exc:
        raise click.ClickException(str(exc)) from exc


def _ops(ctx: click.Context) -> ProtocolOps:
    try:
        return create_ops(_load_cfg(ctx.obj.get("root")))
    except ProtocolError as exc:
        raise click.ClickException(exc.message) from exc


def _echo_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2, ensure_ascii=False))


# ---------------------------------------------------------------------------
# Root group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(package_name="qino-store")
@click.option("--root", envvar="QINO_ROOT", default=None, help="Workspace root (default: search upward for qino.toml)")
@click.pass_context
def cli(ctx: click.Context, root: str | None) -> None:
    """qino: filesystem-backed research graph."""
    ctx.ensure_object(dict)
    ctx.obj["root"] = root


@cli.command()
@click.argument("name", required=False)
@click.pass_context
def init(ctx: click.Context, name: str | None) -> None:
    """Create qino.toml in the workspace root."""
    root_path = Path(ctx.obj.get("root") or ".").resolve()
    try:
        config_path = init_config(root_path, name=name)
        click.echo(f"Created {config_path}")
    except FileExistsError as exc:
        click.echo(f"{exc}; init skipped")


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--at", "graph_path", default=None, help="Graph path relative to the workspace")
@click.pass_context
def graph(ctx: click.Context, graph_path: str | None) -> None:
    """Show a graph with its discovered nodes."""
    data = _ops(ctx).read_graph(graph_path)
    if data is None:
        raise click.ClickException(f"No graph.json found in: {graph_path or '.'}")
    _echo_json(data.to_dict())


@cli.command()
@click.argument("node_id")
@click.option("--at", "graph_path", default=None, help="Graph path relative to the workspace")
@click.pass_context
def node(ctx: click.Context, node_id: str, graph_path: str | None) -> None:
    """Show everything stored for one node."""
    detail = _ops(ctx).read_node(node_id, graph_path)
    if detail is None:
        raise click.ClickException(f"Node not found: {node_id}")
    _echo_json(detail.to_dict())


@cli.command()
@click.option("--at", "graph_path", default=None, help="Graph path relative to the workspace")
@click.pass_context
def status(ctx: click.Context, graph_path: str | None) -> None:
    """Show graph stats and the annotations that still need attention."""
    from rich.console import Console
    from rich.markup import escape
    from rich.table import Table

    cfg = _load_cfg(ctx.obj.get("root"))
    data = _ops(ctx).read_graph(graph_path)
    if data is None:
        raise click.ClickException(f"No graph.json found in: {graph_path or '.'}")
    console = Console()

    table = Table(title=f"qino: {escape(data.title)}", show_header=True, header_style="bold")
    table.add_column("Metric", style="dim", no_wrap=True)
    table.add_column("Value", justify="right")
    table.add_row("Root", str(cfg.root))
    table.add_row("Backend", cfg.backend)
    table.add_row("Nodes", str(len(data.nodes)))
    table.add_row("Edges", str(len(data.edges)))
    table.add_row("Journal sections", str(len(data.journal_sections)))
    table.add_row("Annotated nodes", str(len(data.agent_signals)))
    if data.action_items:
        table.add_row("Action items", f"[yellow]{len(data.action_items)}[/yellow]")
    else:
        table.add_row("Action items", "[green]0[/green]")
    console.print(table)

    if not data.action_items:
        return
    items = Table(show_header=True, header_style="bold")
    items.add_column("Signal", no_wrap=True)
    items.add_column("Node", no_wrap=True)
    items.add_column("Annotation", style="dim")
    items.add_column("Preview")
    for item in data.action_items:
        color = "red" if item.signal == "tension" else "cyan"
        items.add_row(
            f"[{color}]{item.signal}[/{color}]",
            escape(item.node_id),
            escape(item.annotation_filename),
            escape(item.preview),
        )
    console.print(items)


@cli.command()
@click.option("--day", default=None, help="Date for today's annotations (YYYY-MM-DD, default today UTC)")
@click.pass_context
def landing(ctx: click.Context, day: str | None) -> None:
    """Show the overview across the root graph and its child workspaces."""
    _echo_json(_ops(ctx).read_landing(day).to_dict())


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------


def _parse_edge(raw: str) -> GraphEdge:
    """TARGET[:TYPE[:CONTEXT]]"""
    target, _, rest = raw.partition(":")
    edge_type, _, context = rest.partition(":")
    return GraphEdge(source="", target=target, type=edge_type or None, context=context or None)


@cli.command()
@click.argument("node_id")
@click.argument("title")
@click.option("--type", "node_type", default=None)
@click.option("--status", default=None, help="Defaults to 'active'")
@click.option("--story", default="", help="Narrative text for story.md")
@click.option("--edge", "edges", multiple=True, help="TARGET[:TYPE[:CONTEXT]], repeatable")
@click.option("--focal", default=None, help="Make this a view node focused on FOCAL")
@click.option("--include", "includes", multiple=True, help="View member, repeatable")
@click.option("--at", "graph_path", default=None)
@click.pass_context
def create(
    ctx: click.Context,
    node_id: str,
    title: str,
    node_type: str | None,
    status: str | None,
    story: str,
    edges: tuple[str, ...],
    focal: str | None,
    includes: tuple[str, ...],
    graph_path: str | None,
) -> None:
    """Create a node (node.json, story.md, edges, journal echo)."""
    if includes and not focal:
        msg = "--include requires --focal"
        raise click.UsageError(msg)
    view = ViewData(focal=focal, includes=list(includes)) if focal else None
    draft = NodeDraft(
        id=node_id,
        title=title,
        story=story,
        type=node_type,
        status=status,
        edges=[_parse_edge(e) for e in edges],
        view=view,
    )
    try:
        result = _ops(ctx).create_node(draft, graph_path)
    except ProtocolError as exc:
        raise click.ClickException(exc.message) from exc
    click.echo(f"Created {result.node_id} ({result.status})")


@cli.command()
@click.argument("node_id")
@click.argument("signal", type=click.Choice(sorted(VALID_SIGNALS)))
@click.argument("body")
@click.option("--target", default=None, help="Node the annotation points at")
@click.option("--at", "graph_path", default=None)
@click.pass_context
def annotate(ctx: click.Context, node_id: str, signal: str, body: str, target: str | None, graph_path: str | None) -> None:
    """Write an agent annotation on a node."""
    try:
        filename = _ops(ctx).write_annotation(node_id, signal, body, target, graph_path)
    except ProtocolError as exc:
        raise click.ClickException(exc.message) from exc
    click.echo(filename)


@cli.command()
@click.argument("node_id")
@click.argument("filename")
@click.argument("status", type=click.Choice(sorted(RESOLVE_STATUSES)))
@click.option("--at", "graph_path", default=None)
@click.pass_context
def resolve(ctx: click.Context, node_id: str, filename: str, status: str, graph_path: str | None) -> None:
    """Accept, resolve or dismiss an annotation."""
    try:
        meta = _ops(ctx).resolve_annotation(node_id, filename, status, graph_path)
    except ProtocolError as exc:
        raise click.ClickException(exc.message) from exc
    click.echo(f"{filename}: {meta.status} ({meta.resolved_at})")


@cli.command()
@click.argument("context")
@click.argument("body")
@click.option("--node", "node_id", default=None, help="Write to this node's journal instead")
@click.option("--at", "graph_path", default=None)
@click.pass_context
def journal(ctx: click.Context, context: str, body: str, node_id: str | None, graph_path: str | None) -> None:
    """Append a context section to a journal."""
    try:
        _ops(ctx).write_journal_entry(context, body, node_id, graph_path)
    except ProtocolError as exc:
        raise click.ClickException(exc.message) from exc
    click.echo(f"Appended <!-- context: {context} -->")


@cli.command()
@click.argument("node_id")
@click.argument("focal")
@click.argument("includes", nargs=-1, required=True)
@click.option("--at", "graph_path", default=None)
@click.pass_context
def view(ctx: click.Context, node_id: str, focal: str, includes: tuple[str, ...], graph_path: str | None) -> None:
    """Set a view's focal node and members, resyncing curates edges."""
    try:
        data = _ops(ctx).update_view(node_id, focal, list(includes), graph_path)
    except ProtocolError as exc:
        raise click.ClickException(exc.message) from exc
    click.echo(f"{node_id}: {len(data.includes)} nodes, focal {data.focal}")


# ---------------------------------------------------------------------------
# Watch
# ---------------------------------------------------------------------------


@cli.command()
@click.pass_context
def watch(ctx: click.Context) -> None:
    """Watch the workspace and print change events as JSON lines."""
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(message)s")
    cfg = _load_cfg(ctx.obj.get("root"))
    watcher = FileWatcher(debounce_ms=cfg.watcher.debounce_ms)

    def _print(event: FileChangeEvent) -> None:
        click.echo(json.dumps(event.to_dict()))

    watcher.subscribe(_print)
    watcher.watch(cfg.root, poll_interval=cfg.watcher.poll_interval)
    click.echo(f"Watching {cfg.root} (Ctrl-C to stop)", err=True)
    wait_forever(watcher)


if __name__ == "__main__":
    cli()
