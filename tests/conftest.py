# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""Shared test fixtures and configuration."""

from __future__ import annotations

from collections.abc import AsyncIterator, Iterator
from pathlib import Path

import pytest

from strata.cache.manager import reset_query_cache
from strata.core.config import ConnectionSettings, DatabaseConfig, PoolConfig
from strata.storage.backend import DatabaseBackend
from strata.storage.database import DatabaseRegistry, init_database, use_registry
from strata.storage.sqlite_backend import SQLiteBackend

ITEMS_DDL = """
CREATE TABLE items (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    price REAL,
    qty INTEGER DEFAULT 0,
    category TEXT
)
"""


@pytest.fixture(autouse=True)
def _strata_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Keep settings independent of the developer's environment."""
    monkeypatch.chdir(tmp_path)
    for key in ("STRATA_DB_TYPE", "STRATA_DB_PATH", "STRATA_DB_URI", "STRATA_CACHE_BACKEND"):
        monkeypatch.delenv(key, raising=False)


@pytest.fixture(autouse=True)
async def registry() -> AsyncIterator[DatabaseRegistry]:
    """A fresh process-wide connection registry for every test."""
    fresh = DatabaseRegistry()
    previous = use_registry(fresh)
    yield fresh
    await fresh.close()
    use_registry(previous)


@pytest.fixture(autouse=True)
def _clear_query_cache() -> Iterator[None]:
    reset_query_cache()
    yield
    reset_query_cache()


@pytest.fixture
def sqlite_config(tmp_path: Path) -> DatabaseConfig:
    return DatabaseConfig(
        type="sqlite",
        connection=ConnectionSettings(path=str(tmp_path / "test.db")),
        pool=PoolConfig(min=1, max=4, retry_delay_ms=0),
    )


@pytest.fixture
async def sqlite_backend(sqlite_config: DatabaseConfig) -> AsyncIterator[SQLiteBackend]:
    backend = await SQLiteBackend.connect(sqlite_config)
    yield backend
    await backend.close()


@pytest.fixture
async def db(sqlite_config: DatabaseConfig) -> DatabaseBackend:
    """The registry's ``default`` connection, backed by a temporary SQLite file."""
    return await init_database(sqlite_config)


@pytest.fixture
async def items_table(db: DatabaseBackend) -> DatabaseBackend:
    await db.execute(ITEMS_DDL)
    return db
