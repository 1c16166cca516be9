# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""Abstract database backend interface for pluggable storage engines.

The SQLite (aiosqlite), PostgreSQL (asyncpg) and MongoDB (motor) backends
all implement this interface so that models, migrations and application
code can remain backend-agnostic.

Relational backends accept SQL text with ``?`` placeholders.  The document
backend accepts a :class:`DocumentCommand`.  Every call goes through the
shared connection gate, is timed, and is reported to the attached
:class:`~strata.monitoring.query_logger.QueryLogger`.
"""

from __future__ import annotations

import abc
import asyncio
import json
import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, ClassVar, Self, TypeVar

from pydantic import BaseModel, Field

from strata.core.config import DatabaseConfig
from strata.core.constants import BackendType
from strata.core.exceptions import (
    ConnectionError,
    QueryError,
    StrataError,
    TransactionError,
)
from strata.monitoring.query_logger import QueryKind, QueryLogger
from strata.storage.pool import PoolGate

if TYPE_CHECKING:
    from strata.query.base import QueryBuilder

logger = logging.getLogger("strata.storage.backend")

T = TypeVar("T")

Params = Sequence[Any] | None


# ---------------------------------------------------------------------------
# Result and status types
# ---------------------------------------------------------------------------


class PoolStatus(BaseModel):
    """Point-in-time view of a backend's connection pool."""

    total: int
    active: int
    idle: int
    waiting: int


class HealthCheckResult(BaseModel):
    healthy: bool
    latency_ms: float | None = None
    error: str | None = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))


@dataclass(frozen=True, slots=True)
class ExecuteResult:
    """Outcome of a write: affected row count and generated key, if any."""

    rowcount: int = 0
    last_id: Any = None


@dataclass(frozen=True, slots=True)
class DocumentCommand:
    """A single document-store operation.

    ``document`` carries the insert payload, the update document, the
    aggregation pipeline or the index key list depending on ``operation``.
    """

    operation: str
    collection: str
    filter: dict[str, Any] = field(default_factory=dict)
    document: Any = None
    options: dict[str, Any] = field(default_factory=dict)

    def describe(self) -> str:
        parts = [self.operation, self.collection]
        if self.filter:
            parts.append(json.dumps(self.filter, default=str, sort_keys=True))
        if self.operation == "aggregate" and self.document:
            parts.append(json.dumps(self.document, default=str))
        return " ".join(parts)


Statement = str | DocumentCommand


# ---------------------------------------------------------------------------
# Backend contract
# ---------------------------------------------------------------------------


class DatabaseBackend(abc.ABC):
    """Abstract base class for async database backends.

    Construct instances through :meth:`connect`, which opens the pool with
    the retry policy from ``config.pool``.

    Args:
        config: Immutable connection description.
        query_logger: Optional logger that receives every call's timing.
    """

    backend_type: ClassVar[BackendType]

    def __init__(
        self,
        config: DatabaseConfig,
        *,
        query_logger: QueryLogger | None = None,
    ) -> None:
        self._config = config
        self._gate = PoolGate(config.pool.max, config.pool.acquire_timeout_seconds)
        self._pinned: ContextVar[Any] = ContextVar(
            f"strata_tx_{type(self).__name__}_{id(self)}", default=None
        )
        # Milliseconds the current call spent waiting for a connection.
        self._waits: ContextVar[list[float] | None] = ContextVar(
            f"strata_wait_{type(self).__name__}_{id(self)}", default=None
        )
        self._closed = False
        self.query_logger = query_logger
        self.last_health_check: datetime | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @classmethod
    async def connect(
        cls,
        config: DatabaseConfig,
        *,
        query_logger: QueryLogger | None = None,
    ) -> Self:
        """Create a backend and open its pool.

        Raises:
            ConnectionError: When every attempt allowed by the retry policy failed.
        """
        backend = cls(config, query_logger=query_logger)
        await backend._connect_with_retry()
        return backend

    async def _connect_with_retry(self) -> None:
        policy = self._config.pool
        attempts = policy.max_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                await self._open()
            except ConnectionError as exc:
                if attempt >= attempts:
                    raise ConnectionError(
                        f"Could not connect to {self.backend_type} after "
                        f"{attempts} attempt(s): {exc}"
                    ) from exc
                delay = policy.retry_delay_ms * attempt / 1000
                logger.warning(
                    "Connection attempt %d/%d to %s failed (%s); retrying in %.2fs",
                    attempt,
                    attempts,
                    self.backend_type,
                    exc,
                    delay,
                )
                await asyncio.sleep(delay)
            else:
                logger.info("Connected to %s (%s)", self.backend_type, self.describe_target())
                return

    async def close(self) -> None:
        """Release the underlying pool. Further calls raise :class:`ConnectionError`."""
        if self._closed:
            return
        self._closed = True
        await self._close()
        logger.info("Closed %s connection (%s)", self.backend_type, self.describe_target())

    @property
    def config(self) -> DatabaseConfig:
        return self._config

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def in_transaction(self) -> bool:
        return self._pinned.get() is not None

    @property
    def supports_transactions(self) -> bool:
        return True

    def describe_target(self) -> str:
        """Human readable connection target, used in log lines."""
        conn = self._config.connection
        if self.backend_type is BackendType.SQLITE:
            return conn.path
        if conn.uri:
            return conn.uri
        return f"{conn.host}/{conn.database}"

    # ------------------------------------------------------------------
    # Query execution
    # ------------------------------------------------------------------

    async def query(self, statement: Statement, params: Params = None) -> list[dict[str, Any]]:
        """Run a read statement and return every row as a dict."""
        return await self._timed("query", statement, params, self._run_query)

    async def execute(self, statement: Statement, params: Params = None) -> ExecuteResult:
        """Run a write statement and return the affected count and generated key."""
        return await self._timed("execute", statement, params, self._run_execute)

    async def transaction(self, fn: Callable[[Self], Awaitable[T]]) -> T:
        """Run *fn* on one pinned connection; commit on success, roll back on error.

        Every call made on this backend from inside *fn* uses the pinned
        connection.

        Raises:
            TransactionError: When called while a transaction is already open.
        """
        if self._pinned.get() is not None:
            raise TransactionError(
                f"A transaction is already open on this {self.backend_type} backend; "
                "nested transactions are not supported"
            )
        self._ensure_open()
        async with self._gate.slot():
            async with self._acquire_raw() as conn:
                async with self._begin(conn) as pinned:
                    token = self._pinned.set(pinned)
                    try:
                        return await fn(self)
                    finally:
                        self._pinned.reset(token)

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[Any]:
        """Yield the pinned transaction connection, or a pooled one."""
        pinned = self._pinned.get()
        if pinned is not None:
            yield pinned
            return
        self._ensure_open()
        started = time.perf_counter()
        async with self._gate.slot():
            async with self._acquire_raw() as conn:
                waits = self._waits.get()
                if waits is not None:
                    waits.append(_elapsed_ms(started))
                yield conn

    # ------------------------------------------------------------------
    # Health / pool
    # ------------------------------------------------------------------

    async def health_check(self) -> HealthCheckResult:
        start = time.perf_counter()
        self.last_health_check = datetime.now(UTC)
        try:
            await self._ping()
        except StrataError as exc:
            return HealthCheckResult(
                healthy=False,
                latency_ms=_elapsed_ms(start),
                error=str(exc),
                timestamp=self.last_health_check,
            )
        return HealthCheckResult(
            healthy=True,
            latency_ms=_elapsed_ms(start),
            timestamp=self.last_health_check,
        )

    def pool_status(self) -> PoolStatus:
        total, idle = self._pool_counts()
        active = self._gate.active
        return PoolStatus(
            total=max(total, active),
            active=active,
            idle=idle,
            waiting=self._gate.waiting,
        )

    # ------------------------------------------------------------------
    # Helpers shared by subclasses
    # ------------------------------------------------------------------

    def _ensure_open(self) -> None:
        if self._closed:
            raise ConnectionError(f"The {self.backend_type} backend has been closed")

    def _require_sql(self, statement: Statement) -> str:
        if not isinstance(statement, str):
            raise QueryError(
                f"{self.backend_type} expects SQL text, got {type(statement).__name__}"
            )
        return statement

    def _require_command(self, statement: Statement) -> DocumentCommand:
        if not isinstance(statement, DocumentCommand):
            raise QueryError(
                f"{self.backend_type} expects a DocumentCommand, got {type(statement).__name__}"
            )
        return statement

    async def _timed(
        self,
        kind: QueryKind,
        statement: Statement,
        params: Params,
        call: Callable[[Any, Params], Awaitable[T]],
    ) -> T:
        token = self._waits.set([])
        start = time.perf_counter()
        try:
            result = await call(statement, params)
        except Exception as exc:
            await self._record(kind, statement, params, start, exc)
            raise
        else:
            await self._record(kind, statement, params, start, None)
        finally:
            self._waits.reset(token)
        return result

    async def _record(
        self,
        kind: QueryKind,
        statement: Statement,
        params: Params,
        start: float,
        error: BaseException | None,
    ) -> None:
        wait = sum(self._waits.get() or ())
        duration = max(_elapsed_ms(start) - wait, 0.0)
        text = statement.describe() if isinstance(statement, DocumentCommand) else statement
        if error is not None:
            logger.debug("%s failed after %.1f ms: %s (%s)", kind, duration, text, error)
        if self.query_logger is not None:
            await self.query_logger.log(kind, text, params, duration, error, wait_ms=wait)

    # ------------------------------------------------------------------
    # Driver hooks
    # ------------------------------------------------------------------

    @abc.abstractmethod
    async def _open(self) -> None:
        """Open the pool. Raise :class:`ConnectionError` on a transient failure."""

    @abc.abstractmethod
    async def _close(self) -> None:
        """Release every pooled connection."""

    @abc.abstractmethod
    def _acquire_raw(self) -> AbstractAsyncContextManager[Any]:
        """Check one connection out of the pool for the duration of the block."""

    @abc.abstractmethod
    def _begin(self, conn: Any) -> AbstractAsyncContextManager[Any]:
        """Open a transaction on *conn*; commit on clean exit, roll back otherwise.

        Yields the object stored as the pinned connection.
        """

    @abc.abstractmethod
    async def _run_query(self, statement: Statement, params: Params) -> list[dict[str, Any]]: ...

    @abc.abstractmethod
    async def _run_execute(self, statement: Statement, params: Params) -> ExecuteResult: ...

    @abc.abstractmethod
    async def _ping(self) -> None: ...

    @abc.abstractmethod
    def _pool_counts(self) -> tuple[int, int]:
        """Return ``(total, idle)`` connection counts."""

    @abc.abstractmethod
    def builder(self, table: str) -> QueryBuilder:
        """Return a fresh query builder targeting *table*."""


def _elapsed_ms(start: float) -> float:
    return (time.perf_counter() - start) * 1000
