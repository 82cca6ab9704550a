"""Identifier mapping cache CLI commands."""

from __future__ import annotations

import typer
from rich.table import Table

from .core import app, console, load_runtime_config

mappings_app = typer.Typer(help="Inspect and maintain the identifier mapping cache")
app.add_typer(mappings_app, name="mappings")


def _open_store():
    from groupwarden.identity.store import IdentifierMappingStore

    config = load_runtime_config()
    return config, IdentifierMappingStore(config.identity.mapping_path)


@mappings_app.command("show")
def mappings_show(
    group: str = typer.Option(None, "--group", "-g", help="Only show this group's scope"),
) -> None:
    """List cached identifier <-> phone mappings."""
    _, store = _open_store()
    data = store.snapshot()

    rows: list[tuple[str, str, str]] = []
    if group is None:
        rows.extend(("global", identifier, phone) for identifier, phone in sorted(data["global"].items()))
    for group_id, entries in sorted(data["groups"].items()):
        if group is not None and group_id != group:
            continue
        rows.extend((group_id, identifier, phone) for identifier, phone in sorted(entries.items()))

    if not rows:
        console.print("No cached mappings.")
        return

    table = Table(title=f"Identifier mappings ({store.path})")
    table.add_column("Scope", style="cyan")
    table.add_column("Identifier")
    table.add_column("Phone", style="green")
    for scope, identifier, phone in rows:
        table.add_row(scope, identifier, phone)
    console.print(table)


@mappings_app.command("seed")
def mappings_seed(
    identifier: str = typer.Option(None, "--identifier", "-i", help="Identifier to map (e.g. 1234@lid)"),
    phone: str = typer.Option(None, "--phone", "-p", help="Phone number for --identifier"),
) -> None:
    """Write configured seed mappings, or one explicit mapping, into the global scope."""
    from groupwarden.identity.jid import is_valid_phone, normalize_phone

    config, store = _open_store()
    if identifier or phone:
        if not identifier or not phone:
            console.print("[red]--identifier and --phone must be given together[/red]")
            raise typer.Exit(1)
        if not is_valid_phone(normalize_phone(phone)):
            console.print(f"[red]Invalid phone number: {phone}[/red]")
            raise typer.Exit(1)
        changed = store.seed({identifier: phone})
    else:
        changed = store.seed(config.identity.seed_mappings)
    console.print(f"[green]✓[/green] {changed} mapping(s) written to {store.path}")


@mappings_app.command("clear-group")
def mappings_clear_group(
    group: str = typer.Argument(..., help="Group id whose scoped mappings should be dropped"),
) -> None:
    """Drop every group-scoped mapping for one group."""
    _, store = _open_store()
    if store.clear_group(group):
        console.print(f"[green]✓[/green] Cleared mappings for {group}")
    else:
        console.print(f"No mappings cached for {group}")
