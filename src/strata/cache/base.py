# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""Abstract store behind the query result cache."""

from __future__ import annotations

import abc


class CacheBackend(abc.ABC):
    """Async key/value store with optional per-key TTL.

    Values are opaque strings; the :class:`~strata.cache.manager.QueryCache`
    handles encoding.  Implementations raise
    :class:`~strata.core.exceptions.CacheError` when the store itself fails.
    """

    @abc.abstractmethod
    async def get(self, key: str) -> str | None:
        """Return the value, or ``None`` if absent or expired."""

    @abc.abstractmethod
    async def set(self, key: str, value: str, ttl: int | None = None) -> None:
        """Store *value*; ``ttl`` of ``None`` means no expiry."""

    @abc.abstractmethod
    async def delete(self, key: str) -> bool:
        """Return ``True`` if the key existed."""

    @abc.abstractmethod
    async def delete_pattern(self, pattern: str) -> int:
        """Delete every key matching the glob *pattern*; return how many."""

    @abc.abstractmethod
    async def exists(self, key: str) -> bool: ...

    @abc.abstractmethod
    async def clear(self) -> int:
        """Remove every key owned by this cache and return the count."""

    @abc.abstractmethod
    async def size(self) -> int:
        """Number of live entries."""

    @abc.abstractmethod
    async def close(self) -> None: ...
