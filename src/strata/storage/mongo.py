# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""MongoDB implementation of the abstract :class:`DatabaseBackend`.

Wraps a :class:`motor.motor_asyncio.AsyncIOMotorClient`.  Statements are
:class:`DocumentCommand` objects; the pinned "connection" of a transaction
is a client session, which requires a replica set or sharded cluster.
Install with ``pip install strata[mongodb]``.
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
from strata.query.mongo import MongoQueryBuilder
from strata.storage.backend import (
    DatabaseBackend,
    DocumentCommand,
    ExecuteResult,
    Params,
    Statement,
)

try:
    from motor.motor_asyncio import AsyncIOMotorClient  # type: ignore[import-not-found]
    from pymongo.errors import ConnectionFailure, PyMongoError  # type: ignore[import-not-found]
    from pymongo.errors import DuplicateKeyError as MongoDuplicateKeyError

    HAS_MOTOR = True
except ImportError:  # pragma: no cover
    HAS_MOTOR = False
    AsyncIOMotorClient = None  # type: ignore[assignment,misc]

logger = logging.getLogger("strata.storage.mongo")

QUERY_OPERATIONS = frozenset({"find", "count", "aggregate", "distinct", "list_indexes"})
EXECUTE_OPERATIONS = frozenset(
    {
        "insert_one",
        "insert_many",
        "update_one",
        "update_many",
        "delete_one",
        "delete_many",
        "create_index",
        "drop_index",
        "create_collection",
        "drop_collection",
    }
)


def _require_motor() -> None:
    """Raise a helpful error when motor is not installed."""
    if not HAS_MOTOR:
        msg = (
            "MongoDB backend requires the 'motor' package. "
            "Install it with:  pip install strata[mongodb]"
        )
        raise ConfigurationError(msg)


class MongoBackend(DatabaseBackend):
    """Async MongoDB backend backed by an :class:`AsyncIOMotorClient`."""

    backend_type = BackendType.MONGODB

    def __init__(
        self,
        config: DatabaseConfig,
        *,
        query_logger: QueryLogger | None = None,
    ) -> None:
        _require_motor()
        super().__init__(config, query_logger=query_logger)
        self._client: Any = None
        self._db: Any = None

    @property
    def client(self) -> Any:
        return self._client

    @property
    def database(self) -> Any:
        return self._db

    @property
    def supports_transactions(self) -> bool:
        # Sessions need a replica set; callers opt in through transaction().
        return False

    # ------------------------------------------------------------------
    # Pool management
    # ------------------------------------------------------------------

    async def _open(self) -> None:
        policy = self._config.pool
        client = AsyncIOMotorClient(
            self._config.dsn(),
            maxPoolSize=policy.max,
            minPoolSize=policy.min,
            maxIdleTimeMS=int(policy.idle_timeout_seconds * 1000),
            serverSelectionTimeoutMS=int(policy.acquire_timeout_seconds * 1000),
            tz_aware=True,
        )
        try:
            await client.admin.command("ping")
        except PyMongoError as exc:
            client.close()
            raise ConnectionError(f"Failed to connect to MongoDB: {exc}") from exc

        self._client = client
        if self._config.connection.database:
            self._db = client[self._config.connection.database]
        else:
            self._db = client.get_default_database()

    async def _close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
            self._db = None

    @asynccontextmanager
    async def _acquire_raw(self) -> AsyncIterator[Any]:
        if self._db is None:
            raise ConnectionError("MongoDB client is not open")
        # motor pools sockets internally; outside a transaction there is no session.
        yield None

    @asynccontextmanager
    async def _begin(self, conn: Any) -> AsyncIterator[Any]:
        session = await self._client.start_session()
        try:
            session.start_transaction()
            try:
                yield session
            except BaseException:
                await session.abort_transaction()
                raise
            else:
                await session.commit_transaction()
        finally:
            await session.end_session()

    def _pool_counts(self) -> tuple[int, int]:
        # motor does not expose live socket counts; report the configured bound.
        total = self._config.pool.max
        return total, max(total - self._gate.active, 0)

    # ------------------------------------------------------------------
    # Query execution
    # ------------------------------------------------------------------

    def _wrap_error(self, exc: Exception, command: DocumentCommand) -> Exception:
        if isinstance(exc, MongoDuplicateKeyError):
            return DuplicateKeyError(f"Duplicate key: {exc}")
        if isinstance(exc, ConnectionFailure):
            return ConnectionError(f"MongoDB connection error: {exc}")
        return QueryError(f"MongoDB error: {exc} [{command.describe()[:200]}]")

    async def _run_query(self, statement: Statement, params: Params) -> list[dict[str, Any]]:
        command = self._require_command(statement)
        if command.operation not in QUERY_OPERATIONS:
            raise QueryError(f"Unsupported MongoDB query operation: {command.operation!r}")
        async with self.connection() as session:
            try:
                return await self._dispatch_query(command, session)
            except PyMongoError as exc:
                raise self._wrap_error(exc, command) from exc

    async def _run_execute(self, statement: Statement, params: Params) -> ExecuteResult:
        command = self._require_command(statement)
        if command.operation not in EXECUTE_OPERATIONS:
            raise QueryError(f"Unsupported MongoDB write operation: {command.operation!r}")
        async with self.connection() as session:
            try:
                return await self._dispatch_execute(command, session)
            except PyMongoError as exc:
                raise self._wrap_error(exc, command) from exc

    async def _dispatch_query(self, command: DocumentCommand, session: Any) -> list[dict[str, Any]]:
        coll = self._db[command.collection]
        opts = command.options
        op = command.operation

        if op == "find":
            cursor = coll.find(
                command.filter,
                projection=opts.get("projection"),
                sort=opts.get("sort") or None,
                skip=opts.get("skip") or 0,
                limit=opts.get("limit") or 0,
                session=session,
            )
            return await cursor.to_list(length=None)
        if op == "count":
            total = await coll.count_documents(command.filter, session=session)
            return [{"count": total}]
        if op == "aggregate":
            cursor = coll.aggregate(list(command.document or []), session=session)
            return await cursor.to_list(length=None)
        if op == "distinct":
            values = await coll.distinct(opts["field"], command.filter, session=session)
            return [{"value": v} for v in values]
        # list_indexes
        cursor = coll.list_indexes(session=session)
        return [dict(ix) for ix in await cursor.to_list(length=None)]

    async def _dispatch_execute(self, command: DocumentCommand, session: Any) -> ExecuteResult:
        coll = self._db[command.collection]
        opts = command.options
        op = command.operation

        if op == "insert_one":
            result = await coll.insert_one(command.document, session=session)
            return ExecuteResult(rowcount=1, last_id=result.inserted_id)
        if op == "insert_many":
            result = await coll.insert_many(list(command.document), session=session)
            return ExecuteResult(rowcount=len(result.inserted_ids), last_id=result.inserted_ids)
        if op in ("update_one", "update_many"):
            method = coll.update_one if op == "update_one" else coll.update_many
            result = await method(
                command.filter,
                command.document,
                upsert=bool(opts.get("upsert", False)),
                session=session,
            )
            return ExecuteResult(rowcount=result.matched_count, last_id=result.upserted_id)
        if op in ("delete_one", "delete_many"):
            method = coll.delete_one if op == "delete_one" else coll.delete_many
            result = await method(command.filter, session=session)
            return ExecuteResult(rowcount=result.deleted_count)
        if op == "create_index":
            name = await coll.create_index(list(command.document), session=session, **opts)
            return ExecuteResult(last_id=name)
        if op == "drop_index":
            await coll.drop_index(opts["name"], session=session)
            return ExecuteResult()
        if op == "create_collection":
            existing = await self._db.list_collection_names(session=session)
            if command.collection not in existing:
                await self._db.create_collection(command.collection, session=session)
                return ExecuteResult(rowcount=1)
            return ExecuteResult()
        # drop_collection
        await self._db.drop_collection(command.collection, session=session)
        return ExecuteResult()

    async def _ping(self) -> None:
        if self._client is None:
            raise ConnectionError("MongoDB client is not open")
        try:
            await self._client.admin.command("ping")
        except PyMongoError as exc:
            raise ConnectionError(f"MongoDB ping failed: {exc}") from exc

    def builder(self, table: str) -> MongoQueryBuilder:
        return MongoQueryBuilder(self, table)
