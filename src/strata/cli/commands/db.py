# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""Database connection commands."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import typer

from strata.core.exceptions import StrataError

if TYPE_CHECKING:
    from strata.storage.backend import HealthCheckResult, PoolStatus

app = typer.Typer()


@app.command()
def health() -> None:
    """Ping the configured database and report latency."""
    try:
        result = asyncio.run(_health())
    except StrataError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(1) from exc

    if result.healthy:
        typer.echo(f"healthy ({result.latency_ms:.1f} ms)")
        return
    typer.echo(f"unhealthy: {result.error}", err=True)
    raise typer.Exit(1)


async def _health() -> HealthCheckResult:
    from strata.storage.database import close_database, init_database_from_settings

    backend = await init_database_from_settings()
    try:
        return await backend.health_check()
    finally:
        await close_database()


@app.command()
def pool() -> None:
    """Show pool occupancy for the configured database."""
    from rich.console import Console
    from rich.table import Table

    try:
        target, status = asyncio.run(_pool())
    except StrataError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(1) from exc

    table = Table(title=f"Pool: {target}")
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")
    table.add_row("Total", str(status.total))
    table.add_row("Active", str(status.active))
    table.add_row("Idle", str(status.idle))
    table.add_row("Waiting", str(status.waiting))
    Console().print(table)


async def _pool() -> tuple[str, PoolStatus]:
    from strata.monitoring.pool_monitor import PoolMonitor
    from strata.storage.database import close_database, init_database_from_settings

    backend = await init_database_from_settings()
    try:
        return backend.describe_target(), PoolMonitor().status("default")
    finally:
        await close_database()
