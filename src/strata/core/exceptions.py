# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""Custom exception hierarchy for strata."""

from __future__ import annotations


class StrataError(Exception):
    """Base exception for all strata errors."""


class ConfigurationError(StrataError):
    """Invalid or missing configuration."""


class DatabaseNotInitializedError(ConfigurationError):
    """A named connection was used before it was initialized."""

    def __init__(self, name: str) -> None:
        super().__init__(
            f"Database connection {name!r} is not initialized. "
            "Call init_database() or register a config loader first."
        )
        self.name = name


class ConnectionError(StrataError):  # noqa: A001
    """Could not establish or obtain a database connection."""


class PoolTimeoutError(ConnectionError):
    """Timed out waiting for a free connection in the pool."""


class QueryError(StrataError):
    """A statement was malformed or rejected by the backend."""


class DuplicateKeyError(QueryError):
    """A unique constraint or unique index rejected the write."""


class TransactionError(QueryError):
    """A transaction could not be started, committed, or was nested."""


class ValidationError(StrataError):
    """One or more fields failed validation.

    ``errors`` maps each failing field to every message produced for it.
    """

    def __init__(self, errors: dict[str, list[str]], model: str | None = None) -> None:
        self.errors = errors
        self.model = model
        details = "; ".join(
            f"{field}: {', '.join(messages)}" for field, messages in errors.items()
        )
        prefix = f"Validation failed for {model}" if model else "Validation failed"
        super().__init__(f"{prefix}: {details}")

    @property
    def fields(self) -> list[str]:
        return list(self.errors)


class NotFoundError(StrataError):
    """The targeted record does not exist."""

    def __init__(self, model: str, key: object) -> None:
        super().__init__(f"{model} with key {key!r} not found")
        self.model = model
        self.key = key


class MigrationError(StrataError):
    """A migration failed; later migrations were not run."""

    def __init__(self, migration: str, message: str) -> None:
        super().__init__(f"Migration {migration} failed: {message}")
        self.migration = migration


class CacheError(StrataError):
    """The cache store failed. Always downgraded to a miss by the cache manager."""
