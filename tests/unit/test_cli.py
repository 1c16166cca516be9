# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""Tests for the strata command line interface."""

from __future__ import annotations

import logging
import textwrap
from collections.abc import Iterator
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest
from typer.testing import CliRunner

from strata import __version__
from strata.cli.app import app
from strata.core.exceptions import ConnectionError
from strata.storage.sqlite_backend import SQLiteBackend

runner = CliRunner()

USERS = """
async def up(db):
    await db.execute("CREATE TABLE users (id INTEGER PRIMARY KEY)")


async def down(db):
    await db.execute("DROP TABLE users")
"""

BROKEN = """
async def up(db):
    raise RuntimeError("disk on fire")
"""


@pytest.fixture(autouse=True)
def _restore_logging() -> Iterator[None]:
    logger = logging.getLogger("strata")
    handlers, level = list(logger.handlers), logger.level
    yield
    logger.handlers[:] = handlers
    logger.setLevel(level)


@pytest.fixture
def migrations_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    directory = tmp_path / "migrations"
    directory.mkdir()
    (directory / "001_create_users.py").write_text(textwrap.dedent(USERS), encoding="utf-8")
    monkeypatch.setenv("STRATA_DB_PATH", str(tmp_path / "cli.db"))
    monkeypatch.setenv("STRATA_MIGRATIONS_DIR", str(directory))
    monkeypatch.setenv("STRATA_LOG_LEVEL", "WARNING")
    return directory


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


class TestRoot:
    def test_version(self) -> None:
        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert f"strata v{__version__}" in result.output

    def test_log_level_option(self) -> None:
        result = runner.invoke(app, ["--log-level", "DEBUG", "version"])
        assert result.exit_code == 0
        assert logging.getLogger("strata").level == logging.DEBUG

    def test_help_lists_groups(self) -> None:
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        assert "migrate" in result.output
        assert "db" in result.output


# ---------------------------------------------------------------------------
# migrate
# ---------------------------------------------------------------------------


class TestMigrateCommands:
    def test_up_then_nothing_pending(self, migrations_dir: Path) -> None:
        result = runner.invoke(app, ["migrate", "up"])
        assert result.exit_code == 0, result.output
        assert "Applied 001_create_users" in result.output
        assert "1 migration(s) applied." in result.output

        again = runner.invoke(app, ["migrate", "up"])
        assert again.exit_code == 0
        assert "No pending migrations." in again.output

    def test_up_with_count(self, migrations_dir: Path) -> None:
        (migrations_dir / "002_more.py").write_text(textwrap.dedent(USERS).replace("users", "more"))
        result = runner.invoke(app, ["migrate", "up", "-n", "1"])
        assert result.exit_code == 0
        assert "Applied 001_create_users" in result.output
        assert "002_more" not in result.output

    def test_status(self, migrations_dir: Path) -> None:
        before = runner.invoke(app, ["migrate", "status"])
        assert before.exit_code == 0
        assert "001_create_users" in before.output
        assert "pending" in before.output

        runner.invoke(app, ["migrate", "up"])
        after = runner.invoke(app, ["migrate", "status"])
        assert "applied" in after.output

    def test_down(self, migrations_dir: Path) -> None:
        runner.invoke(app, ["migrate", "up"])
        result = runner.invoke(app, ["migrate", "down"])
        assert result.exit_code == 0
        assert "Reverted 001_create_users" in result.output

        again = runner.invoke(app, ["migrate", "down"])
        assert "Nothing to revert." in again.output

    def test_create(self, migrations_dir: Path) -> None:
        result = runner.invoke(app, ["migrate", "create", "add orders"])
        assert result.exit_code == 0
        assert "Created" in result.output
        created = sorted(migrations_dir.glob("*_add_orders.py"))
        assert len(created) == 1

    def test_create_in_explicit_dir(self, migrations_dir: Path, tmp_path: Path) -> None:
        target = tmp_path / "other"
        result = runner.invoke(app, ["migrate", "create", "seed", "--dir", str(target)])
        assert result.exit_code == 0
        assert len(list(target.glob("*_seed.py"))) == 1

    def test_failing_migration_exits_nonzero(self, migrations_dir: Path) -> None:
        (migrations_dir / "002_broken.py").write_text(textwrap.dedent(BROKEN))
        result = runner.invoke(app, ["migrate", "up"])
        assert result.exit_code == 1
        assert "Error: Migration 002_broken failed: disk on fire" in result.output


# ---------------------------------------------------------------------------
# db
# ---------------------------------------------------------------------------


class TestDbCommands:
    def test_health(self, migrations_dir: Path) -> None:
        result = runner.invoke(app, ["db", "health"])
        assert result.exit_code == 0
        assert "healthy (" in result.output
        assert "unhealthy" not in result.output

    def test_unhealthy(self, migrations_dir: Path) -> None:
        with patch.object(SQLiteBackend, "_ping", AsyncMock(side_effect=ConnectionError("locked"))):
            result = runner.invoke(app, ["db", "health"])
        assert result.exit_code == 1
        assert "unhealthy: locked" in result.output

    def test_connection_failure(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("STRATA_DB_PATH", str(tmp_path / "missing" / "dir" / "x.db"))
        monkeypatch.setenv("STRATA_POOL_MAX_RETRIES", "0")
        result = runner.invoke(app, ["db", "health"])
        assert result.exit_code == 1
        assert "Error:" in result.output

    def test_pool(self, migrations_dir: Path) -> None:
        result = runner.invoke(app, ["db", "pool"])
        assert result.exit_code == 0
        assert "Pool:" in result.output
        for label in ("Total", "Active", "Idle", "Waiting"):
            assert label in result.output
