# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""SQLite implementation of the abstract :class:`DatabaseBackend`.

Keeps a small pool of :mod:`aiosqlite` connections opened in autocommit
mode.  Transactions are explicit ``BEGIN``/``COMMIT`` on a pinned
connection.  ``:memory:`` databases are private to one connection, so the
pool is capped at one for them.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

import aiosqlite

from strata.core.config import DatabaseConfig
from strata.core.constants import BackendType
from strata.core.exceptions import ConnectionError, DuplicateKeyError, QueryError
from strata.monitoring.query_logger import QueryLogger
from strata.query.sql import SQLQueryBuilder
from strata.storage.backend import DatabaseBackend, ExecuteResult, Params, Statement

logger = logging.getLogger("strata.storage.sqlite")


def _adapt_param(value: Any) -> Any:
    if isinstance(value, datetime | date):
        return value.isoformat()
    if isinstance(value, dict | list):
        return json.dumps(value, default=str)
    if isinstance(value, Decimal | UUID):
        return str(value)
    return value


def _wrap_error(exc: sqlite3.Error, sql: str) -> QueryError:
    if isinstance(exc, sqlite3.IntegrityError) and "UNIQUE" in str(exc).upper():
        return DuplicateKeyError(f"Duplicate key: {exc}")
    return QueryError(f"SQLite error: {exc} [{sql[:200]}]")


class SQLiteBackend(DatabaseBackend):
    """Async SQLite backend backed by a pool of :class:`aiosqlite.Connection`."""

    backend_type = BackendType.SQLITE

    def __init__(
        self,
        config: DatabaseConfig,
        *,
        query_logger: QueryLogger | None = None,
    ) -> None:
        if config.is_memory_sqlite and config.pool.max != 1:
            pool = config.pool.model_copy(update={"max": 1, "min": min(config.pool.min, 1)})
            config = config.model_copy(update={"pool": pool})
        super().__init__(config, query_logger=query_logger)
        self._idle: list[tuple[aiosqlite.Connection, float]] = []
        self._open_count = 0
        self._connect_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Pool management
    # ------------------------------------------------------------------

    async def _new_connection(self, *, set_journal_mode: bool = False) -> aiosqlite.Connection:
        path = self._config.connection.path or ":memory:"
        # Opening and WAL recovery take file locks; open one connection at a time.
        async with self._connect_lock:
            try:
                conn = await aiosqlite.connect(
                    path,
                    isolation_level=None,
                    timeout=self._config.pool.acquire_timeout_seconds,
                )
            except (sqlite3.Error, OSError) as exc:
                raise ConnectionError(f"Failed to open SQLite database at {path}: {exc}") from exc
            try:
                conn.row_factory = aiosqlite.Row
                await conn.execute("PRAGMA foreign_keys=ON")
                # The journal mode persists in the file, so only the first connection sets it.
                if set_journal_mode and not self._config.is_memory_sqlite:
                    await conn.execute("PRAGMA journal_mode=WAL")
            except sqlite3.Error as exc:
                await conn.close()
                raise ConnectionError(f"Failed to configure SQLite database at {path}: {exc}") from exc
        self._open_count += 1
        return conn

    async def _discard(self, conn: aiosqlite.Connection) -> None:
        self._open_count -= 1
        try:
            await conn.close()
        except sqlite3.Error as exc:
            logger.warning("Error closing SQLite connection: %s", exc)

    async def _open(self) -> None:
        opened: list[aiosqlite.Connection] = []
        try:
            for i in range(max(self._config.pool.min, 1)):
                opened.append(await self._new_connection(set_journal_mode=i == 0))
        except ConnectionError:
            for conn in opened:
                await self._discard(conn)
            raise
        now = time.monotonic()
        self._idle.extend((conn, now) for conn in opened)

    async def _close(self) -> None:
        idle, self._idle = self._idle, []
        for conn, _ in idle:
            await self._discard(conn)

    async def _prune_idle(self) -> None:
        keep = self._config.pool.min
        cutoff = time.monotonic() - self._config.pool.idle_timeout_seconds
        while len(self._idle) > keep and self._idle[0][1] < cutoff:
            conn, _ = self._idle.pop(0)
            await self._discard(conn)

    @asynccontextmanager
    async def _acquire_raw(self) -> AsyncIterator[aiosqlite.Connection]:
        await self._prune_idle()
        if self._idle:
            conn, _ = self._idle.pop()
        else:
            conn = await self._new_connection()
        try:
            yield conn
        finally:
            if self._closed:
                await self._discard(conn)
            else:
                self._idle.append((conn, time.monotonic()))

    @asynccontextmanager
    async def _begin(self, conn: aiosqlite.Connection) -> AsyncIterator[aiosqlite.Connection]:
        await conn.execute("BEGIN")
        try:
            yield conn
        except BaseException:
            await conn.execute("ROLLBACK")
            raise
        else:
            await conn.execute("COMMIT")

    def _pool_counts(self) -> tuple[int, int]:
        return self._open_count, len(self._idle)

    # ------------------------------------------------------------------
    # Query execution
    # ------------------------------------------------------------------

    async def _run_query(self, statement: Statement, params: Params) -> list[dict[str, Any]]:
        sql = self._require_sql(statement)
        bound = tuple(_adapt_param(p) for p in params or ())
        async with self.connection() as conn:
            try:
                async with conn.execute(sql, bound) as cursor:
                    rows = await cursor.fetchall()
            except sqlite3.Error as exc:
                raise _wrap_error(exc, sql) from exc
        return [dict(r) for r in rows]

    async def _run_execute(self, statement: Statement, params: Params) -> ExecuteResult:
        sql = self._require_sql(statement)
        bound = tuple(_adapt_param(p) for p in params or ())
        async with self.connection() as conn:
            try:
                async with conn.execute(sql, bound) as cursor:
                    return ExecuteResult(rowcount=cursor.rowcount, last_id=cursor.lastrowid)
            except sqlite3.Error as exc:
                raise _wrap_error(exc, sql) from exc

    async def _ping(self) -> None:
        await self.query("SELECT 1")

    def builder(self, table: str) -> SQLQueryBuilder:
        return SQLQueryBuilder(self, table)
