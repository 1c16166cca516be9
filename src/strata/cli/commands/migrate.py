# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""Migration commands."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import TYPE_CHECKING, Annotated, TypeVar

import typer

from strata.core.exceptions import StrataError

if TYPE_CHECKING:
    from strata.storage.migrations import MigrationManager

app = typer.Typer()

T = TypeVar("T")


async def _with_manager(action: Callable[[MigrationManager], Awaitable[T]]) -> T:
    from strata.core.config import get_settings
    from strata.storage.database import close_database, init_database_from_settings
    from strata.storage.migrations import MigrationManager

    settings = get_settings()
    backend = await init_database_from_settings()
    try:
        manager = MigrationManager(
            backend,
            migrations_dir=settings.migrations_dir,
            ledger_table=settings.migrations_table,
        )
        return await action(manager)
    finally:
        await close_database()


def _run(action: Callable[[MigrationManager], Awaitable[T]]) -> T:
    try:
        return asyncio.run(_with_manager(action))
    except StrataError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(1) from exc


@app.command()
def up(
    count: Annotated[
        int | None,
        typer.Option("--count", "-n", help="Apply at most this many migrations"),
    ] = None,
) -> None:
    """Apply pending migrations in order."""
    names = _run(lambda m: m.up(count))
    if not names:
        typer.echo("No pending migrations.")
        return
    for name in names:
        typer.echo(f"Applied {name}")
    typer.echo(f"{len(names)} migration(s) applied.")


@app.command()
def down(
    count: Annotated[
        int,
        typer.Option("--count", "-n", help="Number of migrations to revert"),
    ] = 1,
) -> None:
    """Revert the most recently applied migrations."""
    names = _run(lambda m: m.down(count))
    if not names:
        typer.echo("Nothing to revert.")
        return
    for name in names:
        typer.echo(f"Reverted {name}")


@app.command()
def status() -> None:
    """Show applied and pending migrations."""
    from rich.console import Console
    from rich.table import Table

    records = _run(lambda m: m.status())

    table = Table(title="Migrations")
    table.add_column("Name", style="bold")
    table.add_column("Status")
    table.add_column("Batch", justify="right")
    table.add_column("Applied at")
    for record in records:
        table.add_row(
            record.name,
            "[green]applied[/green]" if record.applied else "[yellow]pending[/yellow]",
            str(record.batch) if record.batch is not None else "-",
            record.applied_at.isoformat(timespec="seconds") if record.applied_at else "-",
        )
    Console().print(table)


@app.command()
def create(
    name: Annotated[str, typer.Argument(help="Short description, e.g. add_users")],
    directory: Annotated[
        Path | None,
        typer.Option("--dir", "-d", help="Target directory (defaults to STRATA_MIGRATIONS_DIR)"),
    ] = None,
) -> None:
    """Write a new migration stub."""

    async def write(manager: MigrationManager) -> Path:
        return manager.create(name, directory)

    path = _run(write)
    typer.echo(f"Created {path}")
