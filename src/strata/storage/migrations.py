# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""Versioned schema migrations with a durable ledger.

Migrations are Python files named ``<sequence>_<name>.py`` that define
``async def up(db)`` and optionally ``async def down(db)``, or in-code
:class:`Migration` objects.  Applied migrations are recorded in a ledger
table (collection on MongoDB), ``strata_migrations`` by default, which is
the sole source of truth for what has run.  On relational backends each
migration and its ledger row commit in one transaction.
"""

from __future__ import annotations

import importlib.util
import inspect
import logging
import re
import time
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from strata.core.constants import DEFAULT_LEDGER_TABLE
from strata.core.exceptions import ConfigurationError, MigrationError
from strata.query.sql import quote_identifier
from strata.storage.backend import DatabaseBackend, DocumentCommand

logger = logging.getLogger("strata.storage.migrations")

MigrationFunc = Callable[[DatabaseBackend], Awaitable[None] | None]

_FILE_PATTERN = re.compile(r"^(\d+)_([A-Za-z0-9_]+)\.py$")
_SEQUENCE = re.compile(r"^(\d+)_")


@dataclass(frozen=True, slots=True)
class Migration:
    """A single migration."""

    name: str
    up: MigrationFunc
    down: MigrationFunc | None = None
    path: Path | None = None


@dataclass(frozen=True, slots=True)
class MigrationStatus:
    name: str
    applied: bool
    applied_at: datetime | None = None
    batch: int | None = None


def _sort_key(name: str) -> tuple[int, str]:
    match = _SEQUENCE.match(name)
    return (int(match.group(1)) if match else -1, name)


def _parse_timestamp(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


async def _call(fn: MigrationFunc, db: DatabaseBackend) -> None:
    result = fn(db)
    if inspect.isawaitable(result):
        await result


def load_migration_file(path: Path) -> Migration:
    """Import a migration module from *path*.

    Raises:
        ConfigurationError: If the file is misnamed or defines no ``up``.
    """
    if not _FILE_PATTERN.match(path.name):
        raise ConfigurationError(
            f"Migration file {path.name!r} must be named <sequence>_<name>.py"
        )
    spec = importlib.util.spec_from_file_location(f"strata_migration_{path.stem}", path)
    if spec is None or spec.loader is None:
        raise ConfigurationError(f"Cannot load migration {path}")
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)

    up = getattr(module, "up", None)
    if not callable(up):
        raise ConfigurationError(f"Migration {path.name} does not define up(db)")
    down = getattr(module, "down", None)
    return Migration(name=path.stem, up=up, down=down if callable(down) else None, path=path)


# ---------------------------------------------------------------------------
# Stub templates
# ---------------------------------------------------------------------------

_RELATIONAL_TEMPLATE = '''"""Migration: {title}"""


async def up(db):
    await db.execute(
        """
        CREATE TABLE IF NOT EXISTS {table} (
            id INTEGER PRIMARY KEY,
            created_at TEXT,
            updated_at TEXT
        )
        """
    )


async def down(db):
    await db.execute("DROP TABLE IF EXISTS {table}")
'''

_DOCUMENT_TEMPLATE = '''"""Migration: {title}"""

from strata.storage.backend import DocumentCommand


async def up(db):
    await db.execute(DocumentCommand("create_collection", "{table}"))
    await db.execute(
        DocumentCommand(
            "create_index",
            "{table}",
            document=[("created_at", -1)],
            options={{"name": "{table}_created_at"}},
        )
    )


async def down(db):
    await db.execute(DocumentCommand("drop_collection", "{table}"))
'''


# ---------------------------------------------------------------------------
# Manager
# ---------------------------------------------------------------------------


class MigrationManager:
    """Applies, reverts and reports migrations against one backend.

    Args:
        backend: Target backend.
        migrations_dir: Directory scanned for migration files.
        migrations: In-code migrations, merged with the discovered files.
        ledger_table: Table or collection recording applied migrations.
    """

    def __init__(
        self,
        backend: DatabaseBackend,
        migrations_dir: Path | str | None = None,
        migrations: Iterable[Migration] | None = None,
        ledger_table: str = DEFAULT_LEDGER_TABLE,
    ) -> None:
        quote_identifier(ledger_table)
        self._backend = backend
        self._dir = Path(migrations_dir) if migrations_dir is not None else None
        self._inline = list(migrations or [])
        self._ledger = ledger_table
        self._relational = backend.backend_type.is_relational

    @property
    def migrations_dir(self) -> Path | None:
        return self._dir

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    def discover(self) -> list[Migration]:
        """Every known migration in sequence order."""
        found: dict[str, Migration] = {}
        candidates = list(self._inline)
        if self._dir is not None and self._dir.is_dir():
            candidates.extend(
                load_migration_file(p)
                for p in sorted(self._dir.glob("*.py"))
                if _FILE_PATTERN.match(p.name)
            )
        for migration in candidates:
            if migration.name in found:
                raise ConfigurationError(f"Duplicate migration name: {migration.name}")
            found[migration.name] = migration
        return sorted(found.values(), key=lambda m: _sort_key(m.name))

    # ------------------------------------------------------------------
    # Ledger
    # ------------------------------------------------------------------

    async def _ensure_ledger(self) -> None:
        if self._relational:
            await self._backend.execute(
                f"CREATE TABLE IF NOT EXISTS {quote_identifier(self._ledger)} ("
                "name TEXT PRIMARY KEY, "
                "batch INTEGER NOT NULL, "
                "applied_at TEXT NOT NULL)"
            )
            return
        await self._backend.execute(DocumentCommand("create_collection", self._ledger))
        await self._backend.execute(
            DocumentCommand(
                "create_index",
                self._ledger,
                document=[("name", 1)],
                options={"unique": True, "name": f"{self._ledger}_name_unique"},
            )
        )

    async def _ledger_rows(self) -> list[dict[str, Any]]:
        await self._ensure_ledger()
        if self._relational:
            return await self._backend.query(
                f"SELECT name, batch, applied_at FROM {quote_identifier(self._ledger)}"
            )
        return await self._backend.query(
            DocumentCommand("find", self._ledger, options={"projection": {"_id": 0}})
        )

    async def _record(self, db: DatabaseBackend, name: str, batch: int) -> None:
        applied_at = datetime.now(UTC)
        if self._relational:
            await db.execute(
                f"INSERT INTO {quote_identifier(self._ledger)} (name, batch, applied_at) "
                "VALUES (?, ?, ?)",
                (name, batch, applied_at.isoformat()),
            )
        else:
            await db.execute(
                DocumentCommand(
                    "insert_one",
                    self._ledger,
                    document={"name": name, "batch": batch, "applied_at": applied_at},
                )
            )

    async def _unrecord(self, db: DatabaseBackend, name: str) -> None:
        if self._relational:
            await db.execute(
                f"DELETE FROM {quote_identifier(self._ledger)} WHERE name = ?", (name,)
            )
        else:
            await db.execute(DocumentCommand("delete_one", self._ledger, filter={"name": name}))

    async def _run(self, migration: Migration, step: Callable[[DatabaseBackend], Awaitable[None]]) -> None:
        try:
            if self._backend.supports_transactions:
                await self._backend.transaction(step)
            else:
                await step(self._backend)
        except MigrationError:
            raise
        except Exception as exc:
            logger.error("Migration %s failed: %s", migration.name, exc)
            raise MigrationError(migration.name, str(exc)) from exc

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def applied(self) -> list[MigrationStatus]:
        """Applied migrations, oldest first."""
        rows = await self._ledger_rows()
        records = [
            MigrationStatus(
                name=row["name"],
                applied=True,
                applied_at=_parse_timestamp(row.get("applied_at")),
                batch=int(row["batch"]),
            )
            for row in rows
        ]
        return sorted(records, key=lambda r: (r.batch or 0, _sort_key(r.name)))

    async def pending(self) -> list[Migration]:
        done = {r.name for r in await self.applied()}
        return [m for m in self.discover() if m.name not in done]

    async def status(self) -> list[MigrationStatus]:
        """Every known migration plus ledger entries whose source is gone."""
        records = {r.name: r for r in await self.applied()}
        result = [records.pop(m.name, MigrationStatus(name=m.name, applied=False)) for m in self.discover()]
        result.extend(records.values())
        return sorted(result, key=lambda r: _sort_key(r.name))

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def up(self, count: int | None = None) -> list[str]:
        """Apply pending migrations in order; return the names applied.

        Raises:
            MigrationError: On the first failing migration.  Migrations
                applied before it stay recorded.
        """
        applied = await self.applied()
        done = {r.name for r in applied}
        todo = [m for m in self.discover() if m.name not in done]
        if count is not None:
            todo = todo[: max(count, 0)]
        if not todo:
            logger.info("No pending migrations")
            return []

        batch = max((r.batch or 0 for r in applied), default=0) + 1
        names: list[str] = []
        for migration in todo:
            logger.info("Applying migration %s (batch %d)", migration.name, batch)

            async def step(db: DatabaseBackend, m: Migration = migration) -> None:
                await _call(m.up, db)
                await self._record(db, m.name, batch)

            await self._run(migration, step)
            names.append(migration.name)
        logger.info("Applied %d migration(s)", len(names))
        return names

    async def down(self, count: int = 1) -> list[str]:
        """Revert the *count* most recently applied migrations, newest first."""
        known = {m.name: m for m in self.discover()}
        applied = await self.applied()
        targets = list(reversed(applied))[: max(count, 0)]
        names: list[str] = []
        for record in targets:
            migration = known.get(record.name)
            if migration is None or migration.down is None:
                raise MigrationError(record.name, "no down() available to revert it")
            logger.info("Reverting migration %s", migration.name)

            async def step(db: DatabaseBackend, m: Migration = migration) -> None:
                await _call(m.down, db)  # type: ignore[arg-type]
                await self._unrecord(db, m.name)

            await self._run(migration, step)
            names.append(migration.name)
        return names

    async def reset(self) -> list[str]:
        """Revert every applied migration."""
        return await self.down(len(await self.applied()))

    def create(self, name: str, directory: Path | str | None = None) -> Path:
        """Write a stub migration file and return its path."""
        target = Path(directory) if directory is not None else self._dir
        if target is None:
            raise ConfigurationError("No migrations directory configured")
        sanitized = re.sub(r"[^a-z0-9]+", "_", name.lower()).strip("_")
        if not sanitized:
            raise ConfigurationError(f"Invalid migration name: {name!r}")

        target.mkdir(parents=True, exist_ok=True)
        path = target / f"{int(time.time() * 1000)}_{sanitized}.py"
        template = _RELATIONAL_TEMPLATE if self._relational else _DOCUMENT_TEMPLATE
        path.write_text(template.format(title=name, table=sanitized), encoding="utf-8")
        logger.info("Created migration %s", path)
        return path
