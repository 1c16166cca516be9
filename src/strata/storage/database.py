# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""Named database connections with pluggable backend support.

A :class:`DatabaseRegistry` maps connection names to live backends.  The
process-wide registry is used by the module-level helpers and by models,
which look up their backend by ``Model.connection``.  Tests swap it out
with :func:`use_registry`.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable

from strata.core.config import DatabaseConfig, get_settings
from strata.core.constants import DEFAULT_CONNECTION, BackendType
from strata.core.exceptions import ConfigurationError, DatabaseNotInitializedError
from strata.monitoring.query_logger import QueryLogger
from strata.storage.backend import DatabaseBackend

logger = logging.getLogger("strata.storage.database")

ConfigLoader = Callable[[str], DatabaseConfig | None | Awaitable[DatabaseConfig | None]]


def backend_class(backend_type: BackendType) -> type[DatabaseBackend]:
    """Return the backend implementation for *backend_type*."""
    if backend_type is BackendType.SQLITE:
        from strata.storage.sqlite_backend import SQLiteBackend

        return SQLiteBackend
    if backend_type is BackendType.POSTGRESQL:
        from strata.storage.postgres import PostgresBackend

        return PostgresBackend
    if backend_type is BackendType.MONGODB:
        from strata.storage.mongo import MongoBackend

        return MongoBackend
    raise ConfigurationError(f"Unknown database backend: {backend_type!r}")


class DatabaseRegistry:
    """Owns at most one live backend per connection name.

    Args:
        query_logger: Logger attached to every backend this registry opens.
    """

    def __init__(self, *, query_logger: QueryLogger | None = None) -> None:
        self.query_logger = query_logger
        self._backends: dict[str, DatabaseBackend] = {}
        self._loader: ConfigLoader | None = None
        self._lock = asyncio.Lock()

    def set_config_loader(self, loader: ConfigLoader | None) -> None:
        """Register a callable that supplies configs for names used before init."""
        self._loader = loader

    async def init(
        self,
        config: DatabaseConfig,
        name: str = DEFAULT_CONNECTION,
    ) -> DatabaseBackend:
        """Connect *name* with *config*; return the existing backend if already open."""
        async with self._lock:
            existing = self._backends.get(name)
            if existing is not None:
                return existing
            backend = await backend_class(config.type).connect(
                config, query_logger=self.query_logger
            )
            self._backends[name] = backend
            logger.info("Initialized database connection %r (%s)", name, config.type)
            return backend

    def get(self, name: str = DEFAULT_CONNECTION) -> DatabaseBackend:
        try:
            return self._backends[name]
        except KeyError:
            raise DatabaseNotInitializedError(name) from None

    async def get_or_init(self, name: str = DEFAULT_CONNECTION) -> DatabaseBackend:
        """Return *name*, initializing it through the config loader if needed."""
        backend = self._backends.get(name)
        if backend is not None:
            return backend
        if self._loader is None:
            raise DatabaseNotInitializedError(name)
        config = self._loader(name)
        if inspect.isawaitable(config):
            config = await config
        if config is None:
            raise DatabaseNotInitializedError(name)
        return await self.init(config, name)

    def has(self, name: str = DEFAULT_CONNECTION) -> bool:
        return name in self._backends

    def names(self) -> list[str]:
        return list(self._backends)

    def items(self) -> list[tuple[str, DatabaseBackend]]:
        return list(self._backends.items())

    async def close(self, name: str | None = None) -> None:
        """Close *name*, or every connection when *name* is ``None``."""
        if name is None:
            targets = list(self._backends)
        elif name in self._backends:
            targets = [name]
        else:
            return
        for target in targets:
            backend = self._backends.pop(target)
            await backend.close()


# ---------------------------------------------------------------------------
# Process-wide registry
# ---------------------------------------------------------------------------

_registry = DatabaseRegistry()


def get_registry() -> DatabaseRegistry:
    return _registry


def use_registry(registry: DatabaseRegistry) -> DatabaseRegistry:
    """Install *registry* as the process-wide registry; return the previous one."""
    global _registry
    previous, _registry = _registry, registry
    return previous


async def init_database(
    config: DatabaseConfig,
    name: str = DEFAULT_CONNECTION,
) -> DatabaseBackend:
    return await _registry.init(config, name)


def get_database(name: str = DEFAULT_CONNECTION) -> DatabaseBackend:
    """Get an initialized backend.

    Raises :class:`DatabaseNotInitializedError` if *name* was never initialized.
    """
    return _registry.get(name)


async def get_database_async(name: str = DEFAULT_CONNECTION) -> DatabaseBackend:
    """Like :func:`get_database` but initializes lazily through the config loader."""
    return await _registry.get_or_init(name)


async def close_database(name: str | None = None) -> None:
    await _registry.close(name)


def set_config_loader(loader: ConfigLoader | None) -> None:
    _registry.set_config_loader(loader)


async def init_database_from_settings(name: str = DEFAULT_CONNECTION) -> DatabaseBackend:
    """Initialize *name* from the ``STRATA_*`` environment.

    Attaches a :class:`QueryLogger` configured from settings when the
    registry has none yet.
    """
    settings = get_settings()
    if _registry.query_logger is None and settings.query_log_enabled:
        _registry.query_logger = QueryLogger(slow_query_ms=settings.slow_query_ms)
    return await _registry.init(settings.database_config(), name)
