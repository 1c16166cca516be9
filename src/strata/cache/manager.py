# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""Read-through cache for model query results.

The :class:`QueryCache` is the primary public interface for the caching
layer.  It derives deterministic keys from a table name and a compiled
query signature, JSON-encodes result rows (preserving datetimes, decimals,
UUIDs, bytes and ObjectIds), and invalidates a whole table on every write.
Failures of the underlying store are logged and treated as misses.
"""

from __future__ import annotations

import base64
import hashlib
import json
import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from strata.cache.base import CacheBackend
from strata.cache.memory import MemoryCacheBackend
from strata.core.constants import DEFAULT_CACHE_TTL
from strata.core.exceptions import CacheError

try:
    from bson import ObjectId  # type: ignore[import-not-found]
except ImportError:  # pragma: no cover
    ObjectId = None  # type: ignore[assignment,misc]

logger = logging.getLogger("strata.cache.manager")

DEFAULT_PREFIX = "q"

# Module-level singleton
_cache: QueryCache | None = None


class CacheStats:
    """Hit/miss/error counters."""

    __slots__ = ("errors", "hits", "invalidations", "misses", "sets")

    def __init__(self) -> None:
        self.hits: int = 0
        self.misses: int = 0
        self.sets: int = 0
        self.errors: int = 0
        self.invalidations: int = 0

    @property
    def total(self) -> int:
        return self.hits + self.misses

    @property
    def hit_rate(self) -> float:
        return self.hits / self.total if self.total else 0.0

    def to_dict(self) -> dict[str, object]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "sets": self.sets,
            "errors": self.errors,
            "invalidations": self.invalidations,
            "total": self.total,
            "hit_rate": round(self.hit_rate, 4),
        }


# ---------------------------------------------------------------------------
# Row encoding
# ---------------------------------------------------------------------------


def _encode_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return {"$datetime": value.isoformat()}
    if isinstance(value, date):
        return {"$date": value.isoformat()}
    if isinstance(value, Decimal):
        return {"$decimal": str(value)}
    if isinstance(value, UUID):
        return {"$uuid": str(value)}
    if isinstance(value, bytes | bytearray | memoryview):
        return {"$bytes": base64.b64encode(bytes(value)).decode("ascii")}
    if ObjectId is not None and isinstance(value, ObjectId):
        return {"$oid": str(value)}
    raise TypeError(f"Cannot cache value of type {type(value).__name__}")


def _decode_object(obj: dict[str, Any]) -> Any:
    if len(obj) != 1:
        return obj
    (tag, raw), = obj.items()
    if tag == "$datetime":
        return datetime.fromisoformat(raw)
    if tag == "$date":
        return date.fromisoformat(raw)
    if tag == "$decimal":
        return Decimal(raw)
    if tag == "$uuid":
        return UUID(raw)
    if tag == "$bytes":
        return base64.b64decode(raw)
    if tag == "$oid" and ObjectId is not None:
        return ObjectId(raw)
    return obj


def encode_rows(rows: list[dict[str, Any]]) -> str:
    return json.dumps(rows, default=_encode_value, separators=(",", ":"))


def decode_rows(raw: str) -> list[dict[str, Any]]:
    return json.loads(raw, object_hook=_decode_object)


# ---------------------------------------------------------------------------
# Manager
# ---------------------------------------------------------------------------


class QueryCache:
    """Caches query result rows keyed by table and query signature.

    Args:
        backend: The store to use; defaults to an in-memory LRU.
        default_ttl: TTL in seconds when :meth:`set` is called without one.
        prefix: Namespace for every key this cache writes.
    """

    def __init__(
        self,
        backend: CacheBackend | None = None,
        default_ttl: int = DEFAULT_CACHE_TTL,
        prefix: str = DEFAULT_PREFIX,
    ) -> None:
        self._backend = backend or MemoryCacheBackend()
        self._default_ttl = default_ttl
        self._prefix = prefix
        self._stats = CacheStats()

    def make_key(self, table: str, signature: str) -> str:
        """``<prefix>:<table>:<sha256(signature)>``."""
        digest = hashlib.sha256(signature.encode()).hexdigest()
        return f"{self._prefix}:{table}:{digest}"

    async def get(self, key: str) -> list[dict[str, Any]] | None:
        try:
            raw = await self._backend.get(key)
        except CacheError as exc:
            self._stats.errors += 1
            self._stats.misses += 1
            logger.warning("Cache read failed for %s: %s", key, exc)
            return None
        if raw is None:
            self._stats.misses += 1
            logger.debug("Cache MISS for key %s", key)
            return None
        try:
            rows = decode_rows(raw)
        except ValueError as exc:
            self._stats.errors += 1
            self._stats.misses += 1
            logger.warning("Discarding undecodable cache entry %s: %s", key, exc)
            return None
        self._stats.hits += 1
        logger.debug("Cache HIT for key %s", key)
        return rows

    async def set(self, key: str, rows: list[dict[str, Any]], ttl: int | None = None) -> None:
        effective = ttl or self._default_ttl
        try:
            payload = encode_rows(rows)
        except TypeError as exc:
            logger.debug("Not caching %s: %s", key, exc)
            return
        try:
            await self._backend.set(key, payload, ttl=effective)
        except CacheError as exc:
            self._stats.errors += 1
            logger.warning("Cache write failed for %s: %s", key, exc)
            return
        self._stats.sets += 1

    async def invalidate(self, table: str) -> int:
        """Drop every cached result for *table*."""
        try:
            removed = await self._backend.delete_pattern(f"{self._prefix}:{table}:*")
        except CacheError as exc:
            self._stats.errors += 1
            logger.warning("Cache invalidation failed for table %s: %s", table, exc)
            return 0
        self._stats.invalidations += 1
        if removed:
            logger.debug("Invalidated %d cached result(s) for %s", removed, table)
        return removed

    async def clear(self) -> int:
        try:
            count = await self._backend.clear()
        except CacheError as exc:
            self._stats.errors += 1
            logger.warning("Cache clear failed: %s", exc)
            return 0
        logger.info("Cache cleared: %d entries removed", count)
        return count

    async def size(self) -> int:
        return await self._backend.size()

    @property
    def stats(self) -> CacheStats:
        return self._stats

    @property
    def backend(self) -> CacheBackend:
        return self._backend

    @property
    def default_ttl(self) -> int:
        return self._default_ttl

    async def close(self) -> None:
        await self._backend.close()


def _create_backend_from_settings() -> CacheBackend:
    """Instantiate the cache store named by ``STRATA_CACHE_BACKEND``."""
    from strata.core.config import get_settings

    settings = get_settings()

    if settings.cache_backend == "redis":
        from strata.cache.redis import RedisCacheBackend, redis_available

        if not redis_available():
            logger.warning(
                "Redis cache backend requested but redis package not installed. "
                "Falling back to in-memory cache."
            )
            return MemoryCacheBackend(max_size=settings.cache_max_size)
        return RedisCacheBackend(redis_url=settings.redis_url)

    return MemoryCacheBackend(max_size=settings.cache_max_size)


def get_query_cache() -> QueryCache:
    """Return the process-wide :class:`QueryCache`, creating it from settings."""
    global _cache
    if _cache is None:
        from strata.core.config import get_settings

        _cache = QueryCache(
            backend=_create_backend_from_settings(),
            default_ttl=get_settings().cache_ttl,
        )
    return _cache


def set_query_cache(cache: QueryCache | None) -> None:
    global _cache
    _cache = cache


def reset_query_cache() -> None:
    """Drop the singleton (useful for testing)."""
    global _cache
    _cache = None
