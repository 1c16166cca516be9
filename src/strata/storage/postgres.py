# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""PostgreSQL implementation of the abstract :class:`DatabaseBackend`.

Wraps an :mod:`asyncpg` connection pool.  Statements are written with ``?``
placeholders and rewritten to ``$N`` before they reach the driver.
Install with ``pip install strata[postgres]``.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from strata.core.config import DatabaseConfig
from strata.core.constants import BackendType
from strata.core.exceptions import (
    ConfigurationError,
    ConnectionError,
    DuplicateKeyError,
    QueryError,
)
from strata.monitoring.query_logger import QueryLogger
from strata.query.sql import SQLQueryBuilder
from strata.storage.backend import DatabaseBackend, ExecuteResult, Params, Statement
from strata.storage.query_adapter import adapt_query, count_placeholders

try:
    import asyncpg  # type: ignore[import-not-found]

    HAS_ASYNCPG = True
except ImportError:  # pragma: no cover
    HAS_ASYNCPG = False
    asyncpg = None  # type: ignore[assignment]

logger = logging.getLogger("strata.storage.postgres")


def _require_asyncpg() -> None:
    """Raise a helpful error when asyncpg is not installed."""
    if not HAS_ASYNCPG:
        msg = (
            "PostgreSQL backend requires the 'asyncpg' package. "
            "Install it with:  pip install strata[postgres]"
        )
        raise ConfigurationError(msg)


def _parse_status(status: str) -> int:
    """Extract the row count from a command tag such as ``UPDATE 3``."""
    try:
        return int(status.rsplit(" ", 1)[-1])
    except (ValueError, AttributeError):
        return 0


class PostgresBackend(DatabaseBackend):
    """Async PostgreSQL backend backed by an :class:`asyncpg.Pool`."""

    backend_type = BackendType.POSTGRESQL

    def __init__(
        self,
        config: DatabaseConfig,
        *,
        query_logger: QueryLogger | None = None,
    ) -> None:
        _require_asyncpg()
        super().__init__(config, query_logger=query_logger)
        self._pool: Any = None

    @property
    def pool(self) -> Any:
        """Return the underlying :class:`asyncpg.Pool`."""
        return self._pool

    # ------------------------------------------------------------------
    # Pool management
    # ------------------------------------------------------------------

    async def _open(self) -> None:
        policy = self._config.pool
        try:
            self._pool = await asyncpg.create_pool(
                self._config.dsn(),
                min_size=policy.min,
                max_size=policy.max,
                max_inactive_connection_lifetime=policy.idle_timeout_seconds,
                timeout=policy.acquire_timeout_seconds,
            )
        except (OSError, asyncpg.PostgresError, asyncpg.InterfaceError) as exc:
            raise ConnectionError(f"Failed to create PostgreSQL connection pool: {exc}") from exc

    async def _close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    @asynccontextmanager
    async def _acquire_raw(self) -> AsyncIterator[Any]:
        if self._pool is None:
            raise ConnectionError("PostgreSQL pool is not open")
        async with self._pool.acquire(timeout=self._config.pool.acquire_timeout_seconds) as conn:
            yield conn

    @asynccontextmanager
    async def _begin(self, conn: Any) -> AsyncIterator[Any]:
        tx = conn.transaction()
        await tx.start()
        try:
            yield conn
        except BaseException:
            await tx.rollback()
            raise
        else:
            await tx.commit()

    def _pool_counts(self) -> tuple[int, int]:
        if self._pool is None:
            return 0, 0
        return self._pool.get_size(), self._pool.get_idle_size()

    # ------------------------------------------------------------------
    # Query execution
    # ------------------------------------------------------------------

    def _prepare(self, statement: Statement, params: Params) -> tuple[str, tuple[Any, ...]]:
        sql = self._require_sql(statement)
        bound = tuple(params or ())
        expected = count_placeholders(sql)
        if expected != len(bound):
            raise QueryError(f"Statement expects {expected} parameter(s), got {len(bound)}")
        return adapt_query(sql, BackendType.POSTGRESQL), bound

    def _wrap_error(self, exc: Exception, sql: str) -> Exception:
        if isinstance(exc, asyncpg.UniqueViolationError):
            return DuplicateKeyError(f"Duplicate key: {exc}")
        if isinstance(exc, asyncpg.PostgresError):
            return QueryError(f"PostgreSQL error: {exc} [{sql[:200]}]")
        return ConnectionError(f"PostgreSQL connection error: {exc}")

    async def _run_query(self, statement: Statement, params: Params) -> list[dict[str, Any]]:
        sql, bound = self._prepare(statement, params)
        async with self.connection() as conn:
            try:
                rows = await conn.fetch(sql, *bound)
            except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as exc:
                raise self._wrap_error(exc, sql) from exc
        return [dict(r) for r in rows]

    async def _run_execute(self, statement: Statement, params: Params) -> ExecuteResult:
        sql, bound = self._prepare(statement, params)
        async with self.connection() as conn:
            try:
                if " RETURNING " in sql.upper():
                    rows = await conn.fetch(sql, *bound)
                    last_id = dict(rows[-1]).get("id") if rows else None
                    return ExecuteResult(rowcount=len(rows), last_id=last_id)
                status = await conn.execute(sql, *bound)
            except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as exc:
                raise self._wrap_error(exc, sql) from exc
        return ExecuteResult(rowcount=_parse_status(status))

    async def _ping(self) -> None:
        await self.query("SELECT 1")

    def builder(self, table: str) -> SQLQueryBuilder:
        return SQLQueryBuilder(self, table)
