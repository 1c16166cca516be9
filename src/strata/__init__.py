# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""strata - multi-backend async database toolkit and Active-Record ORM."""

__version__ = "0.1.0"

from strata.core.config import ConnectionSettings, DatabaseConfig, PoolConfig
from strata.core.constants import BackendType, FieldType, IndexKind
from strata.core.exceptions import (
    ConfigurationError,
    ConnectionError,
    DatabaseNotInitializedError,
    DuplicateKeyError,
    MigrationError,
    NotFoundError,
    PoolTimeoutError,
    QueryError,
    StrataError,
    TransactionError,
    ValidationError,
)
from strata.storage import (
    DatabaseBackend,
    DocumentCommand,
    Migration,
    MigrationManager,
    close_database,
    get_database,
    init_database,
    set_config_loader,
)
from strata.orm import Field, Index, Model, ModelQuery, Page

__all__ = [
    "BackendType",
    "ConfigurationError",
    "ConnectionError",
    "ConnectionSettings",
    "DatabaseBackend",
    "DatabaseConfig",
    "DatabaseNotInitializedError",
    "DocumentCommand",
    "DuplicateKeyError",
    "Field",
    "FieldType",
    "Index",
    "IndexKind",
    "Migration",
    "MigrationError",
    "MigrationManager",
    "Model",
    "ModelQuery",
    "NotFoundError",
    "Page",
    "PoolConfig",
    "PoolTimeoutError",
    "QueryError",
    "StrataError",
    "TransactionError",
    "ValidationError",
    "__version__",
    "close_database",
    "get_database",
    "init_database",
    "set_config_loader",
]
