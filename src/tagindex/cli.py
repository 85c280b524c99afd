"""tagindex CLI entry point."""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.tree import Tree

from tagindex import __version__
from tagindex.config import ConfigError, load_settings
from tagindex.store import Vault
from tagindex.updater import IndexUpdater

if TYPE_CHECKING:
    from tagindex.config import IndexSettings
    from tagindex.tree import Node
    from tagindex.updater import ChangeEvent

_vault_option = click.option(
    "--vault",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=None,
    help="Vault root (default: current directory).",
)


def _configure_logging(*, verbose: bool, quiet: bool) -> None:
    level = logging.DEBUG if verbose else logging.ERROR if quiet else logging.WARNING
    handler = RichHandler(console=Console(stderr=True), show_path=False)
    logging.basicConfig(level=level, format="%(message)s", handlers=[handler], force=True)


@click.group()
@click.version_option(version=__version__, prog_name="tagindex")
@click.option("--verbose", "-v", is_flag=True, help="Verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Minimal output (errors only).")
@click.pass_context
def main(ctx: click.Context, *, verbose: bool, quiet: bool) -> None:
    """tagindex - tag-hierarchy indexes for Markdown vaults."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    _configure_logging(verbose=verbose, quiet=quiet)


def _open_vault(vault: Path | None) -> tuple[Vault, IndexSettings]:
    """Load settings and open the vault, exiting with an error message on failure."""
    vault_root = vault or Path.cwd()
    try:
        settings = load_settings(vault_root)
    except ConfigError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)

    store = Vault(vault_root, link_style=settings.link_style)
    if not store.list_documents(settings.exclude_folders):
        click.echo(f"Error: no Markdown documents found in {vault_root}.", err=True)
        sys.exit(1)
    return store, settings


@main.command()
@_vault_option
@click.pass_context
def update(ctx: click.Context, *, vault: Path | None) -> None:
    """Run one update cycle and write index blocks."""
    store, settings = _open_vault(vault)
    updater = IndexUpdater(store, settings)
    result = asyncio.run(updater.update())

    console = Console()
    if result is None or result.error is not None:
        reason = result.error if result is not None else "another update is running"
        click.echo(f"Error: update failed: {reason}", err=True)
        sys.exit(1)

    if not ctx.obj["quiet"]:
        console.print(
            f"[green]Updated[/green] {result.notes_processed} index note(s), "
            f"{result.notes_written} written "
            f"[dim]({result.duration_ms:.0f} ms)[/dim]"
        )
    if result.failures:
        for path in result.failures:
            console.print(f"  [red]failed[/red] {escape(path)}")
        sys.exit(1)


@main.command()
@_vault_option
@click.pass_context
def check(ctx: click.Context, *, vault: Path | None) -> None:
    """List index notes whose blocks are out of date (exit 1 if any)."""
    store, settings = _open_vault(vault)
    stale = asyncio.run(IndexUpdater(store, settings).stale_notes())

    console = Console()
    if not stale:
        if not ctx.obj["quiet"]:
            console.print("[green]All indexes are up to date.[/green]")
        return

    console.print(f"[yellow]{len(stale)} index note(s) out of date:[/yellow]")
    for path in stale:
        console.print(f"  {escape(path)}")
    sys.exit(1)


def _render_tree(node: Node, parent: Tree) -> None:
    """Recursively add documents and child tags of *node* to *parent*."""
    for doc in node.priority_docs:
        parent.add(f"[bold]{escape(doc.path)}[/bold]")
    for doc in node.regular_docs:
        parent.add(escape(doc.path))
    for doc in node.index_priority_docs + node.index_docs:
        parent.add(f"[magenta]{escape(doc.path)}[/magenta] [dim](index)[/dim]")
    for child in node.children:
        label = f"[cyan]#{escape(child.tag_path)}[/cyan]"
        if child.header_doc is not None:
            label += f" [dim]({escape(child.header_doc.path)})[/dim]"
        _render_tree(child, parent.add(label))


@main.command()
@_vault_option
def tree(*, vault: Path | None) -> None:
    """Print the tag hierarchy."""
    store, settings = _open_vault(vault)
    schema = asyncio.run(IndexUpdater(store, settings).scan())

    root = Tree("[bold]Tags[/bold]")
    _render_tree(schema.root, root)
    Console().print(root)


async def _watch(
    store: Vault,
    settings: IndexSettings,
    debounce: int,
    console: Console,
) -> None:
    from tagindex.watcher import watch_vault

    updater = IndexUpdater(store, settings)

    def report(events: list[ChangeEvent]) -> None:
        for event in events:
            console.print(f"[dim]{event.kind.value}[/dim] {escape(event.doc.path)}")

    updater.start()
    try:
        await watch_vault(store, updater, debounce_ms=debounce, callback=report)
    finally:
        updater.close()
        await updater.wait_idle()


@main.command("watch")
@click.option("--debounce", default=200, type=int, help="Debounce delay in ms.")
@_vault_option
@click.pass_context
def watch_cmd(ctx: click.Context, *, debounce: int, vault: Path | None) -> None:
    """Watch the vault and keep indexes up to date until interrupted."""
    store, settings = _open_vault(vault)
    console = Console(quiet=ctx.obj["quiet"])
    console.print(f"[bold blue]Watching:[/bold blue] {escape(str(store.root))}")
    console.print("[dim]Press Ctrl+C to stop[/dim]")

    try:
        asyncio.run(_watch(store, settings, debounce, console))
    except KeyboardInterrupt:
        console.print("\n[yellow]Watch stopped.[/yellow]")
