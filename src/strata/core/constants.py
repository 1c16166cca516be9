# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""Enumerations and default constants shared across the data layer."""

from enum import StrEnum


class BackendType(StrEnum):
    POSTGRESQL = "postgresql"
    SQLITE = "sqlite"
    MONGODB = "mongodb"

    @property
    def is_relational(self) -> bool:
        return self is not BackendType.MONGODB


BACKEND_ALIASES: dict[str, BackendType] = {
    "postgres": BackendType.POSTGRESQL,
    "postgresql": BackendType.POSTGRESQL,
    "pg": BackendType.POSTGRESQL,
    "sqlite": BackendType.SQLITE,
    "sqlite3": BackendType.SQLITE,
    "mongo": BackendType.MONGODB,
    "mongodb": BackendType.MONGODB,
}


class FieldType(StrEnum):
    STRING = "string"
    TEXT = "text"
    INTEGER = "integer"
    NUMBER = "number"
    DECIMAL = "decimal"
    BOOLEAN = "boolean"
    DATE = "date"
    JSON = "json"
    ARRAY = "array"
    OBJECT = "object"
    ENUM = "enum"
    UUID = "uuid"
    BINARY = "binary"
    ANY = "any"


class IndexKind(StrEnum):
    ORDINARY = "ordinary"
    UNIQUE = "unique"
    TEXT = "text"
    GEOSPATIAL = "geospatial"


class TrashedMode(StrEnum):
    """How a query treats soft-deleted rows."""

    EXCLUDE = "exclude"
    INCLUDE = "include"
    ONLY = "only"


HOOK_NAMES: tuple[str, ...] = (
    "before_validate",
    "after_validate",
    "before_save",
    "after_save",
    "before_create",
    "after_create",
    "before_update",
    "after_update",
    "before_delete",
    "after_delete",
)

DEFAULT_CONNECTION = "default"
DEFAULT_LEDGER_TABLE = "strata_migrations"
DEFAULT_SLOW_QUERY_MS = 1000.0
DEFAULT_CACHE_TTL = 3600
DEFAULT_PORTS: dict[BackendType, int] = {
    BackendType.POSTGRESQL: 5432,
    BackendType.MONGODB: 27017,
}
