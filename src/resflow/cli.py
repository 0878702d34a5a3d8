"""resflow CLI tools."""

import asyncio
import json
import platform
import sys
from pathlib import Path
from typing import Annotated, Any, Dict, NoReturn, Optional

import dotenv
import typer
from rich.console import Console
from rich.table import Table
from typer import Context, Exit

import resflow
from resflow.builder.constants import TOOL_CATEGORIES, TOOL_DESCRIPTIONS, list_tool_types
from resflow.builder.graph_store import GraphStore
from resflow.builder.graph_validator import GraphValidator
from resflow.builder.json_graph import (
    load_document_from_file,
    save_document_to_file,
    serialize_document,
    snapshot_to_document,
)
from resflow.builder.presets import get_preset, list_presets
from resflow.builder.workflow_manager import WorkflowManager
from resflow.exceptions import ResflowError
from resflow.settings import Settings, get_settings
from resflow.utilities.logging import configure_logging, get_logger

logger = get_logger("cli")
console = Console()

app = typer.Typer(
    name="resflow",
    help="resflow CLI",
    add_completion=False,
    no_args_is_help=True,
)

STATUS_STYLES = {"success": "green", "error": "red", "running": "yellow", "pending": "dim"}


def _fail(message: str, code: int = 1) -> NoReturn:
    console.print(f"[bold red]Error:[/bold red] {message}")
    raise Exit(code)


def _settings(**overrides: Any) -> Settings:
    updates = {key: value for key, value in overrides.items() if value is not None}
    return get_settings().model_copy(update=updates)


@app.callback()
def main(
    log_level: Annotated[
        str,
        typer.Option("--log-level", "-l", help="Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"),
    ] = "WARNING",
    env_file: Annotated[
        Optional[Path],
        typer.Option("--env-file", help="Load environment variables from this file"),
    ] = None,
) -> None:
    """Build, validate and run research workflows."""
    if env_file:
        dotenv.load_dotenv(env_file)
    else:
        dotenv.load_dotenv()
    try:
        configure_logging(log_level)
    except ValueError as e:
        _fail(str(e))


@app.command()
def version(ctx: Context) -> None:
    if ctx.resilient_parsing:
        return
    info = {
        "resflow version": resflow.__version__,
        "Python version": platform.python_version(),
        "Platform": platform.platform(),
    }
    g = Table.grid(padding=(0, 1))
    g.add_column(style="bold", justify="left")
    g.add_column(style="cyan", justify="right")
    for k, v in info.items():
        g.add_row(f"{k}:", str(v).replace("\n", " "))
    console.print(g)


@app.command()
def tools() -> None:
    """List the available tool types."""
    table = Table(title="Tools")
    table.add_column("Tool type", style="bold")
    table.add_column("Category", style="cyan")
    table.add_column("Description")
    for tool in list_tool_types():
        table.add_row(tool.value, TOOL_CATEGORIES[tool].value, TOOL_DESCRIPTIONS[tool])
    console.print(table)


@app.command()
def presets(
    name: Annotated[Optional[str], typer.Argument(help="Preset to print or write")] = None,
    out: Annotated[
        Optional[Path],
        typer.Option("--out", "-o", help="Write the preset as a workflow document to this file"),
    ] = None,
) -> None:
    """List presets, or emit one as a workflow document."""
    if name is None:
        table = Table(title="Presets")
        table.add_column("Name", style="bold")
        table.add_column("Pipeline")
        for preset in list_presets():
            table.add_row(preset["name"], preset["description"])
        console.print(table)
        return
    try:
        nodes, edges = get_preset(name)
    except ResflowError as e:
        _fail(e.message)
    document = snapshot_to_document(GraphStore(nodes, edges).snapshot())
    if out is None:
        typer.echo(serialize_document(document))
        return
    save_document_to_file(document, out)
    console.print(f"Wrote preset [bold]{name}[/bold] to {out}")


@app.command()
def validate(
    file: Annotated[Path, typer.Argument(help="Workflow document (JSON)", exists=True, dir_okay=False)],
) -> None:
    """Check that a workflow document loads and can be scheduled."""
    try:
        nodes, edges = load_document_from_file(file)
        snapshot = GraphStore(nodes, edges).snapshot()
        validator = GraphValidator(snapshot)
        roots = validator.validate()
    except ResflowError as e:
        _fail(e.message)
    for warning in validator.warnings():
        console.print(f"[yellow]Warning:[/yellow] {warning}")
    console.print(
        f"[green]OK[/green]: {len(snapshot.nodes)} nodes, {len(snapshot.edges)} edges, "
        f"entry points: {', '.join(roots)}"
    )


def _print_run(manager: WorkflowManager, record: Dict[str, Any]) -> None:
    table = Table(title=f"Run {record['execution_id']} ({record['status']})")
    table.add_column("Node", style="bold")
    table.add_column("Tool")
    table.add_column("Status")
    table.add_column("Error")
    for node in manager.snapshot().nodes:
        style = STATUS_STYLES.get(node.status.value, "")
        error = ""
        if isinstance(node.output, dict) and node.status.value == "error":
            error = str(node.output.get("error", ""))
        table.add_row(node.id, node.tool_type.value, f"[{style}]{node.status.value}[/{style}]", error)
    console.print(table)


@app.command()
def run(
    file: Annotated[Path, typer.Argument(help="Workflow document (JSON)", exists=True, dir_okay=False)],
    base_url: Annotated[
        Optional[str],
        typer.Option("--base-url", help="Base URL of the tool execution service"),
    ] = None,
    timeout: Annotated[
        Optional[float],
        typer.Option("--timeout", help="Per-tool timeout in seconds"),
    ] = None,
    export_dir: Annotated[
        Optional[str],
        typer.Option("--export-dir", help="Directory receiving exported files"),
    ] = None,
    out: Annotated[
        Optional[Path],
        typer.Option("--out", "-o", help="Write node outputs as JSON to this file"),
    ] = None,
) -> None:
    """Run a workflow document against the tool execution service."""
    settings = _settings(tool_base_url=base_url, tool_timeout=timeout, export_dir=export_dir)
    manager = WorkflowManager(settings=settings)

    async def _run() -> Dict[str, Any]:
        try:
            return dict(await manager.run())
        finally:
            await manager.aclose()

    try:
        manager.load_from_file(file)
        record = asyncio.run(_run())
    except ResflowError as e:
        _fail(e.message)

    _print_run(manager, record)
    if out is not None:
        outputs = {
            node.id: {"status": node.status.value, "output": node.output}
            for node in manager.snapshot().nodes
        }
        out.write_text(json.dumps({"run": record, "nodes": outputs}, indent=2, default=str), encoding="utf-8")
        console.print(f"Wrote outputs to {out}")
    if record.get("errors"):
        raise Exit(1)


@app.command()
def serve(
    host: Annotated[str, typer.Option("--host", help="Host to bind to")] = "127.0.0.1",
    port: Annotated[int, typer.Option("--port", "-p", help="Port to bind to")] = 8000,
) -> None:
    """Serve the HTTP API."""
    import uvicorn

    uvicorn.run("resflow.server:app", host=host, port=port)


if __name__ == "__main__":
    sys.exit(app())
