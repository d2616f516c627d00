"""
CLI interface for notebook-ctl with Rich output.
"""

import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from notebook_ctl import export as exporter
from notebook_ctl.config import ServerSettings
from notebook_ctl.errors import ControlError
from notebook_ctl.files import FileSystem
from notebook_ctl.formatter import format_codes
from notebook_ctl.notebook import NOTEBOOK_SUFFIX, Notebook
from notebook_ctl.usage import get_usage
from notebook_ctl.workspace import RecentFiles

console = Console()

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR"]


def _timestamp(mtime: Optional[float]) -> str:
    if mtime is None:
        return ""
    return datetime.fromtimestamp(mtime).strftime("%Y-%m-%d %H:%M")


def _fail(message: str):
    console.print(f"[red]Error:[/red] {message}")
    sys.exit(1)


def _load(path: str) -> Notebook:
    try:
        return Notebook.load(Path(path))
    except (OSError, ValueError, KeyError) as e:
        _fail(f"Could not read {path}: {e}")


@click.group()
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    default="WARNING",
    show_default=True,
    help="Logging verbosity",
)
@click.pass_context
def main(ctx: click.Context, log_level: str):
    """notebook-ctl: a control backend for notebook editors."""
    logging.basicConfig(
        level=log_level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True)],
        force=True,
    )
    ctx.obj = ServerSettings.from_env()


@main.command()
@click.option("--root", type=click.Path(exists=True, file_okay=False), default=None, help="Workspace root")
@click.option("--host", default=None, help="Interface to bind")
@click.option("--port", "-p", type=int, default=None, help="Port to listen on")
@click.option("--config-dir", type=click.Path(file_okay=False), default=None, help="User config directory")
def serve(root: Optional[str], host: Optional[str], port: Optional[int], config_dir: Optional[str]):
    """Serve the control protocol over HTTP."""
    from notebook_ctl.web import launch_web

    settings = ServerSettings.from_env(root=root, host=host, port=port, config_dir=config_dir)
    console.print(Panel(
        f"[green]Root:[/green] {settings.root}\n"
        f"[dim]Listening on[/dim] http://{settings.host}:{settings.port}",
        title="[bold blue]notebook-ctl[/bold blue]",
        border_style="blue",
    ))
    launch_web(settings)


@main.command()
@click.argument("path", type=click.Path(), default=f"notebook{NOTEBOOK_SUFFIX}")
@click.option("--name", "-n", default=None, help="Notebook name")
def new(path: str, name: Optional[str]):
    """Create a new notebook."""
    target = Path(path)
    if target.exists():
        _fail(f"{path} already exists")
    if name is None:
        name = target.stem

    nb = Notebook.new(name=name)
    nb.add_cell(code="# Welcome to notebook-ctl!\n# Start writing Python code here.\n")
    nb.save(target)

    console.print(Panel(
        f"[green]Created:[/green] {path}\n"
        f"[dim]Name:[/dim] {name}\n"
        f"[dim]Cells:[/dim] {len(nb.cells)}",
        title="[bold blue]notebook-ctl[/bold blue]",
        border_style="green",
    ))


@main.command()
@click.argument("path", required=False, default=None)
@click.option("--root", type=click.Path(exists=True, file_okay=False), default=None, help="Workspace root")
@click.pass_obj
def files(settings: ServerSettings, path: Optional[str], root: Optional[str]):
    """List files in the workspace (or in PATH below it)."""
    fs = FileSystem(Path(root) if root else settings.root)
    try:
        listing = fs.list_files(path)
    except ControlError as e:
        _fail(e.message)

    if not listing.files:
        console.print(f"[yellow]No files in {path or listing.root}[/yellow]")
        return

    table = Table(title=path or listing.root, border_style="blue")
    table.add_column("Name", style="white", no_wrap=True)
    table.add_column("Kind", style="cyan")
    table.add_column("Modified", style="dim")
    for info in listing.files:
        kind = "directory" if info.is_directory else "notebook" if info.is_notebook else "file"
        name = f"[bold]{info.name}/[/bold]" if info.is_directory else info.name
        table.add_row(name, kind, _timestamp(info.last_modified))
    console.print(table)


@main.command()
@click.pass_obj
def recent(settings: ServerSettings):
    """List recently opened notebooks."""
    paths = RecentFiles(settings.recent_files_path).paths()
    if not paths:
        console.print("[yellow]No recent notebooks[/yellow]")
        return

    table = Table(title="Recent Notebooks", border_style="blue", show_lines=True)
    table.add_column("#", style="bold cyan", justify="right")
    table.add_column("Name", style="white", no_wrap=True)
    table.add_column("Path", style="dim")
    table.add_column("Modified", style="dim")
    for i, path in enumerate(paths):
        table.add_row(str(i), path.name, path.as_posix(), _timestamp(path.stat().st_mtime))
    console.print(table)


@main.command()
def usage():
    """Show host memory and CPU usage."""
    stats = get_usage()
    gib = 1024 ** 3
    console.print(Panel(
        f"[bold]Memory:[/bold] {stats.memory.used / gib:.1f} / {stats.memory.total / gib:.1f} GiB "
        f"({stats.memory.percent:.0f}%)\n"
        f"[bold]Available:[/bold] {stats.memory.available / gib:.1f} GiB\n"
        f"[bold]CPU:[/bold] {stats.cpu.percent:.0f}%",
        title="[bold blue]Usage[/bold blue]",
        border_style="blue",
    ))


@main.command(name="export")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--format", "-f", "fmt",
    type=click.Choice(["html", "markdown"]),
    default="html",
    show_default=True,
    help="Output format",
)
@click.option("--output", "-o", type=click.Path(dir_okay=False), default=None, help="Write to a file")
@click.option("--no-code", is_flag=True, help="Leave cell code out of HTML output")
def export_cmd(path: str, fmt: str, output: Optional[str], no_code: bool):
    """Export a notebook as HTML or Markdown."""
    nb = _load(path)
    if fmt == "html":
        text = exporter.export_html(nb, include_code=not no_code)
    else:
        text = exporter.export_markdown(nb)

    if output is None:
        click.echo(text)
        return
    Path(output).write_text(text)
    console.print(f"[green]Exported[/green] {path} [dim]->[/dim] {output}")


@main.command(name="format")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.option("--line-length", "-l", type=click.IntRange(min=1), default=79, show_default=True)
@click.option("--check", is_flag=True, help="Report cells that would change without writing")
def format_cmd(path: str, line_length: int, check: bool):
    """Format the code of every cell in a notebook."""
    nb = _load(path)
    codes = {cell.id: cell.code for cell in nb.cells}
    formatted = format_codes(codes, line_length)
    changed = [cell for cell in nb.cells if cell.id in formatted and formatted[cell.id] != cell.code]
    skipped = len(codes) - len(formatted)

    if check:
        for cell in changed:
            console.print(f"[yellow]would reformat[/yellow] {cell.id}")
        if changed:
            sys.exit(1)
        console.print("[green]All cells formatted[/green]")
        return

    for cell in changed:
        cell.code = formatted[cell.id]
    if changed:
        nb._touch()
        nb.save(Path(path))
    console.print(f"[green]Reformatted {len(changed)} of {len(codes)} cells[/green]")
    if skipped:
        console.print(f"[yellow]Skipped {skipped} cells that could not be parsed[/yellow]")


if __name__ == "__main__":
    main()
