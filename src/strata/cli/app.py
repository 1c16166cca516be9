# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""Typer CLI application root."""

from __future__ import annotations

from typing import Annotated

import typer

from strata.cli.commands import db, migrate

app = typer.Typer(
    name="strata",
    help="Multi-backend async database toolkit",
    no_args_is_help=True,
)

app.add_typer(migrate.app, name="migrate", help="Apply, revert and inspect migrations")
app.add_typer(db.app, name="db", help="Connection health and pool status")


@app.callback()
def main(
    log_level: Annotated[
        str | None,
        typer.Option("--log-level", help="Override STRATA_LOG_LEVEL"),
    ] = None,
) -> None:
    from strata.core.config import get_settings
    from strata.core.logging import setup_logging

    settings = get_settings()
    setup_logging(log_level or settings.log_level, settings.log_format)


@app.command()
def version() -> None:
    """Show version information."""
    from strata import __version__

    typer.echo(f"strata v{__version__}")
