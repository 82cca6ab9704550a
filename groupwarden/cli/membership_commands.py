"""Membership mutation and lookup CLI commands."""

from __future__ import annotations

import asyncio
from pathlib import Path

import typer
from rich.table import Table

from groupwarden.core.models import MutationIntent, MutationOperation

from .core import app, console, load_runtime_config, print_batch_report, print_progress, run_async


def _collect_phones(phones: list[str] | None, file: Path | None) -> list[str]:
    from groupwarden.utils.helpers import parse_phone_numbers

    lines = list(phones or [])
    if file is not None:
        lines.extend(file.read_text(encoding="utf-8").splitlines())
    numbers, errors = parse_phone_numbers("\n".join(lines))
    for error in errors:
        console.print(f"[yellow]Skipping {error}[/yellow]")
    if not numbers:
        console.print("[red]No valid phone numbers given.[/red]")
        raise typer.Exit(1)
    return numbers


def _run_membership(operation: MutationOperation, groups: list[str], phones: list[str]) -> None:
    from groupwarden.app.bootstrap import open_runtime
    from groupwarden.membership.batch import plan_batch

    config = load_runtime_config()
    intents = plan_batch(operation, groups, phones)
    console.print(f"{operation.capitalize()}: {len(phones)} number(s) x {len(groups)} group(s)")

    async def _go(cancel: asyncio.Event):
        async with open_runtime(config) as runtime:
            return await runtime.batch.run(intents, cancel=cancel, progress=print_progress)

    report = run_async(_go)
    print_batch_report(report, f"{operation.capitalize()} results")
    if report.failed:
        raise typer.Exit(1)


@app.command()
def add(
    groups: list[str] = typer.Argument(..., help="Group ids (…@g.us)"),
    phone: list[str] = typer.Option(None, "--phone", "-p", help="Phone number (repeatable)"),
    file: Path = typer.Option(None, "--file", "-f", help="File with one phone number per line"),
) -> None:
    """Add phone numbers to groups."""
    _run_membership("add", groups, _collect_phones(phone, file))


@app.command()
def promote(
    groups: list[str] = typer.Argument(..., help="Group ids (…@g.us)"),
    phone: list[str] = typer.Option(None, "--phone", "-p", help="Phone number (repeatable)"),
    file: Path = typer.Option(None, "--file", "-f", help="File with one phone number per line"),
) -> None:
    """Promote participants to admin."""
    _run_membership("promote", groups, _collect_phones(phone, file))


@app.command()
def demote(
    groups: list[str] = typer.Argument(..., help="Group ids (…@g.us)"),
    phone: list[str] = typer.Option(None, "--phone", "-p", help="Phone number (repeatable)"),
    file: Path = typer.Option(None, "--file", "-f", help="File with one phone number per line"),
) -> None:
    """Demote admins to regular members."""
    _run_membership("demote", groups, _collect_phones(phone, file))


@app.command()
def rename(
    groups: list[str] = typer.Argument(..., help="Group ids (…@g.us)"),
    name: str = typer.Option(..., "--name", "-n", help="New group name (or base name with --number-from)"),
    number_from: int = typer.Option(
        None, "--number-from", help="Number groups as '<name> N' starting here, ordered by their current number"
    ),
    first: int = typer.Option(None, "--first", help="Only groups whose current number is >= this"),
    last: int = typer.Option(None, "--last", help="Only groups whose current number is <= this"),
) -> None:
    """Rename groups."""
    from groupwarden.app.bootstrap import open_runtime
    from groupwarden.membership.batch import number_groups_by_name, plan_batch
    from groupwarden.utils.helpers import validate_group_name

    try:
        validate_group_name(name)
    except ValueError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1) from e

    config = load_runtime_config()

    async def _go(cancel: asyncio.Event):
        async with open_runtime(config) as runtime:
            if number_from is None:
                intents = plan_batch("rename", groups, new_name=name)
            else:
                current = []
                for group_id in groups:
                    snapshot = await runtime.mutator.read_group(group_id)
                    current.append((group_id, snapshot.subject))
                numbered = number_groups_by_name(current, name, start=number_from, first=first, last=last)
                intents = [
                    MutationIntent(operation="rename", group_id=gid, new_name=new_name)
                    for gid, new_name in numbered
                ]
            for intent in intents:
                console.print(f"  {intent.group_id} → {intent.new_name}")
            return await runtime.batch.run(intents, cancel=cancel, progress=print_progress)

    report = run_async(_go)
    print_batch_report(report, "Rename results")
    if report.failed:
        raise typer.Exit(1)


@app.command()
def reconcile(
    loop: bool = typer.Option(False, "--loop", "-l", help="Keep sweeping on the configured interval"),
) -> None:
    """Approve pending join requests in groups where the bot is admin."""
    from groupwarden.app.bootstrap import open_runtime

    config = load_runtime_config()

    async def _go(cancel: asyncio.Event):
        async with open_runtime(config) as runtime:
            runtime.reconciler.enabled = True
            if loop:
                console.print(f"Sweeping every {config.reconciler.interval_s:g}s, Ctrl-C to stop")
                await runtime.reconciler.run_forever(cancel)
                return None
            return await runtime.reconciler.sweep()

    report = run_async(_go)
    if report is None:
        return

    table = Table(title="Approved join requests")
    table.add_column("Group", style="cyan")
    table.add_column("Requester")
    table.add_column("Result")
    for group_id, identifier in report.approved:
        table.add_row(group_id, identifier, "[green]approved[/green]")
    for group_id, identifier, message in report.failed:
        table.add_row(group_id, identifier, f"[red]{message}[/red]")
    console.print(table)
    console.print(
        f"{report.groups_checked} group(s) checked, {report.groups_skipped} skipped (not admin), "
        f"{len(report.approved)} approved, {len(report.failed)} failed"
    )


@app.command()
def resolve(
    phone: str = typer.Argument(..., help="Phone number"),
    group: str = typer.Option(None, "--group", "-g", help="Also locate the number in this group"),
) -> None:
    """Show which identifier a phone number resolves to."""
    from groupwarden.app.bootstrap import open_runtime
    from groupwarden.core.errors import IdentityResolutionError

    config = load_runtime_config()

    async def _go(cancel: asyncio.Event) -> None:
        async with open_runtime(config) as runtime:
            try:
                resolution = await runtime.resolver.resolve(phone, group)
            except IdentityResolutionError as e:
                console.print(f"[red]{e}[/red]")
                raise typer.Exit(1) from e
            verified = "[green]verified[/green]" if resolution.verified else "[yellow]unverified[/yellow]"
            console.print(f"{phone} → [cyan]{resolution.identifier}[/cyan] ({resolution.source}, {verified})")
            if group is None:
                return
            snapshot = await runtime.mutator.read_group(group)
            match = await runtime.resolver.find_participant(snapshot, phone)
            if match is None:
                console.print(f"[yellow]Not a participant of {group}[/yellow]")
            else:
                console.print(
                    f"In {group} as [cyan]{match.participant.identifier}[/cyan] "
                    f"({match.participant.role}, matched via {match.strategy})"
                )

    run_async(_go)


@app.command()
def members(
    group: str = typer.Argument(..., help="Group id (…@g.us)"),
    admins_only: bool = typer.Option(False, "--admins", "-a", help="Only list admins"),
) -> None:
    """List group participants with their best-known phone numbers."""
    from groupwarden.app.bootstrap import open_runtime

    config = load_runtime_config()

    async def _go(cancel: asyncio.Event) -> None:
        async with open_runtime(config) as runtime:
            snapshot = await runtime.mutator.read_group(group)
            bot = runtime.matcher.bot
            runtime.store.correlate_snapshot(snapshot, exclude=[bot.jid, bot.lid or ""] if bot else [])
            participants = snapshot.admins() if admins_only else snapshot.participants

            table = Table(title=snapshot.subject or group)
            table.add_column("Phone", style="cyan")
            table.add_column("Identifier")
            table.add_column("Role")
            for participant in participants:
                table.add_row(
                    runtime.resolver.resolve_phone_display(participant.identifier, group),
                    participant.identifier,
                    participant.role,
                )
            console.print(table)

    run_async(_go)
