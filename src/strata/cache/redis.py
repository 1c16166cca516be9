# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""Redis cache backend using the ``redis`` async client.

Optional: without the ``redis`` package the module imports, but
:class:`RedisCacheBackend` raises a clear error when instantiated.
Every key is namespaced with a prefix so :meth:`clear` never touches
keys owned by other applications.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from strata.cache.base import CacheBackend
from strata.core.exceptions import CacheError, ConfigurationError

if TYPE_CHECKING:
    from redis.asyncio import Redis

logger = logging.getLogger("strata.cache.redis")

DEFAULT_KEY_PREFIX = "strata:"

try:
    import redis.asyncio as aioredis
    from redis.exceptions import RedisError

    _REDIS_AVAILABLE = True
except ImportError:  # pragma: no cover
    aioredis = None  # type: ignore[assignment]
    RedisError = ()  # type: ignore[assignment,misc]
    _REDIS_AVAILABLE = False


def redis_available() -> bool:
    """Return ``True`` if the ``redis`` package is installed."""
    return _REDIS_AVAILABLE


class RedisCacheBackend(CacheBackend):
    """Redis-backed store.

    Args:
        redis_url: Connection URL, e.g. ``redis://localhost:6379/0``.
        key_prefix: Namespace prepended to every key.
        client: Pre-built client, mainly for tests.
    """

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379/0",
        *,
        key_prefix: str = DEFAULT_KEY_PREFIX,
        client: Any = None,
    ) -> None:
        if client is None:
            if not _REDIS_AVAILABLE:
                raise ConfigurationError(
                    "The 'redis' package is required for the Redis cache backend. "
                    "Install it with: pip install 'strata[redis]'"
                )
            client = aioredis.from_url(redis_url, decode_responses=True)
        self._client: Redis = client
        self._prefix = key_prefix

    async def get(self, key: str) -> str | None:
        try:
            result = await self._client.get(self._prefixed(key))
        except RedisError as exc:
            raise CacheError(f"Redis GET failed: {exc}") from exc
        return str(result) if result is not None else None

    async def set(self, key: str, value: str, ttl: int | None = None) -> None:
        try:
            if ttl is not None:
                await self._client.setex(self._prefixed(key), ttl, value)
            else:
                await self._client.set(self._prefixed(key), value)
        except RedisError as exc:
            raise CacheError(f"Redis SET failed: {exc}") from exc

    async def delete(self, key: str) -> bool:
        try:
            return bool(await self._client.delete(self._prefixed(key)))
        except RedisError as exc:
            raise CacheError(f"Redis DEL failed: {exc}") from exc

    async def delete_pattern(self, pattern: str) -> int:
        """Delete matching keys, walking the keyspace with SCAN rather than KEYS."""
        count = 0
        try:
            async for key in self._client.scan_iter(match=self._prefixed(pattern)):
                count += await self._client.delete(key)
        except RedisError as exc:
            raise CacheError(f"Redis pattern delete failed: {exc}") from exc
        return count

    async def exists(self, key: str) -> bool:
        try:
            return bool(await self._client.exists(self._prefixed(key)))
        except RedisError as exc:
            raise CacheError(f"Redis EXISTS failed: {exc}") from exc

    async def clear(self) -> int:
        return await self.delete_pattern("*")

    async def size(self) -> int:
        count = 0
        try:
            async for _key in self._client.scan_iter(match=self._prefixed("*")):
                count += 1
        except RedisError as exc:
            raise CacheError(f"Redis SCAN failed: {exc}") from exc
        return count

    async def close(self) -> None:
        await self._client.aclose()

    def _prefixed(self, key: str) -> str:
        return f"{self._prefix}{key}"
