"""Shared CLI application context and setup helpers."""

from __future__ import annotations

import asyncio
import contextlib
import signal
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import TypeVar

import typer
from rich.console import Console
from rich.table import Table

from groupwarden import __logo__, __version__
from groupwarden.core.errors import DirectoryError
from groupwarden.core.models import BatchItemResult, BatchReport

app = typer.Typer(
    name="groupwarden",
    help=f"{__logo__} groupwarden - WhatsApp group administration",
    no_args_is_help=True,
)

console = Console()


T = TypeVar("T")


def version_callback(value: bool) -> None:
    if value:
        console.print(f"{__logo__} groupwarden v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(None, "--version", "-v", callback=version_callback, is_eager=True),
) -> None:
    """groupwarden - WhatsApp group administration."""


@app.command()
def onboard() -> None:
    """Initialize groupwarden configuration and data directory."""
    from groupwarden.config.loader import get_config_path, save_config
    from groupwarden.config.schema import Config
    from groupwarden.utils.helpers import get_operational_data_path

    config_path = get_config_path()

    if config_path.exists():
        console.print(f"[yellow]Config already exists at {config_path}[/yellow]")
        if not typer.confirm("Overwrite?"):
            raise typer.Exit()

    config = Config()
    save_config(config, config_path)
    console.print(f"[green]✓[/green] Created config at {config_path}")

    data_dir = get_operational_data_path()
    console.print(f"[green]✓[/green] Created data directory at {data_dir}")

    console.print(f"\n{__logo__} groupwarden is ready!")
    console.print("\nNext steps:")
    console.print(f"  1. Set [cyan]bridge.token[/cyan] in [cyan]{config_path}[/cyan]")
    console.print("  2. Add a number: [cyan]groupwarden add <group-id> -p 628123456789[/cyan]")


def load_runtime_config(config_path: Path | None = None):
    from groupwarden.config.loader import load_config

    return load_config(config_path)


def run_async(factory: Callable[[asyncio.Event], Awaitable[T]]) -> T:
    """Run a coroutine with Ctrl-C wired to a cancellation event.

    The first Ctrl-C sets the event so work stops between items; the
    directory call in flight is left to finish.
    """

    async def _main() -> T:
        cancel = asyncio.Event()
        loop = asyncio.get_running_loop()
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(signal.SIGINT, cancel.set)
        try:
            return await factory(cancel)
        finally:
            with contextlib.suppress(NotImplementedError):
                loop.remove_signal_handler(signal.SIGINT)

    try:
        return asyncio.run(_main())
    except DirectoryError as e:
        console.print(f"[red]Directory error: {e}[/red]")
        raise typer.Exit(1) from e


def print_progress(done: int, total: int, item: BatchItemResult) -> None:
    outcome = item.outcome
    mark = "[green]✓[/green]" if outcome.ok else "[red]✗[/red]"
    detail = outcome.reason if outcome.ok else f"{outcome.kind}: {outcome.message}"
    console.print(f"  {mark} [{done}/{total}] {item.intent.group_id} {item.intent.target} [dim]{detail}[/dim]")


def print_batch_report(report: BatchReport, title: str) -> None:
    table = Table(title=title)
    table.add_column("Group", style="cyan")
    table.add_column("Target")
    table.add_column("Result")
    table.add_column("Detail")

    for item in report.items:
        outcome = item.outcome
        if outcome.ok:
            result = "[green]ok[/green]"
            detail = str(outcome.reason or "")
        else:
            result = f"[red]{outcome.kind}[/red]"
            detail = outcome.message
        table.add_row(item.intent.group_id, item.intent.target, result, detail)

    console.print(table)
    console.print(
        f"[green]{report.succeeded} succeeded[/green], [red]{report.failed} failed[/red]"
        + (f" ({report.rate_limited} rate limited)" if report.rate_limited else "")
    )
    if report.cancelled:
        console.print("[yellow]Cancelled before all items were processed.[/yellow]")
