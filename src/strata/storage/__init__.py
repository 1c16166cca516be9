# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""Storage layer -- database backends, connection registry, and migrations."""

from strata.storage.backend import (
    DatabaseBackend,
    DocumentCommand,
    ExecuteResult,
    HealthCheckResult,
    PoolStatus,
)
from strata.storage.database import (
    DatabaseRegistry,
    close_database,
    get_database,
    get_database_async,
    get_registry,
    init_database,
    init_database_from_settings,
    set_config_loader,
    use_registry,
)
from strata.storage.migrations import Migration, MigrationManager, MigrationStatus
from strata.storage.pool import PoolGate
from strata.storage.query_adapter import adapt_query

__all__ = [
    "DatabaseBackend",
    "DatabaseRegistry",
    "DocumentCommand",
    "ExecuteResult",
    "HealthCheckResult",
    "Migration",
    "MigrationManager",
    "MigrationStatus",
    "PoolGate",
    "PoolStatus",
    "adapt_query",
    "close_database",
    "get_database",
    "get_database_async",
    "get_registry",
    "init_database",
    "init_database_from_settings",
    "set_config_loader",
    "use_registry",
]
