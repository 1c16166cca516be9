# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""Tests for the caching layer: backends, TTL expiry, row encoding and the query cache."""

from __future__ import annotations

import time
from datetime import UTC, date, datetime
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

import pytest

from strata.cache.base import CacheBackend
from strata.cache.manager import (
    QueryCache,
    decode_rows,
    encode_rows,
    get_query_cache,
    set_query_cache,
)
from strata.cache.memory import MemoryCacheBackend
from strata.core.exceptions import CacheError

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def memory_backend() -> MemoryCacheBackend:
    return MemoryCacheBackend(max_size=128)


@pytest.fixture
def query_cache(memory_backend: MemoryCacheBackend) -> QueryCache:
    return QueryCache(backend=memory_backend, default_ttl=3600)


class _AsyncKeys:
    """Async iterator standing in for ``scan_iter``."""

    def __init__(self, keys: list[str]) -> None:
        self._keys = list(keys)

    def __aiter__(self) -> _AsyncKeys:
        return self

    async def __anext__(self) -> str:
        if not self._keys:
            raise StopAsyncIteration
        return self._keys.pop(0)


# ---------------------------------------------------------------------------
# MemoryCacheBackend
# ---------------------------------------------------------------------------


class TestMemoryCacheBackend:
    def test_is_cache_backend(self) -> None:
        assert issubclass(MemoryCacheBackend, CacheBackend)

    async def test_get_set_delete(self, memory_backend: MemoryCacheBackend) -> None:
        await memory_backend.set("k1", "v1")
        assert await memory_backend.get("k1") == "v1"
        assert await memory_backend.exists("k1")
        assert await memory_backend.delete("k1") is True
        assert await memory_backend.get("k1") is None
        assert await memory_backend.delete("k1") is False

    async def test_ttl_expiry(self, memory_backend: MemoryCacheBackend) -> None:
        with patch("strata.cache.memory.time.monotonic", return_value=1000.0):
            await memory_backend.set("k", "v", ttl=10)
        with patch("strata.cache.memory.time.monotonic", return_value=1005.0):
            assert await memory_backend.get("k") == "v"
        with patch("strata.cache.memory.time.monotonic", return_value=1011.0):
            assert await memory_backend.get("k") is None
            assert await memory_backend.size() == 0

    async def test_lru_eviction(self) -> None:
        backend = MemoryCacheBackend(max_size=2)
        await backend.set("a", "1")
        await backend.set("b", "2")
        await backend.get("a")
        await backend.set("c", "3")
        assert await backend.get("b") is None
        assert await backend.get("a") == "1"
        assert backend.evictions == 1

    async def test_delete_pattern(self, memory_backend: MemoryCacheBackend) -> None:
        for key in ("q:users:1", "q:users:2", "q:orders:1"):
            await memory_backend.set(key, "x")
        assert await memory_backend.delete_pattern("q:users:*") == 2
        assert await memory_backend.size() == 1

    async def test_clear(self, memory_backend: MemoryCacheBackend) -> None:
        await memory_backend.set("a", "1")
        await memory_backend.set("b", "2")
        assert await memory_backend.clear() == 2
        assert await memory_backend.size() == 0

    def test_rejects_zero_size(self) -> None:
        with pytest.raises(ValueError):
            MemoryCacheBackend(max_size=0)


# ---------------------------------------------------------------------------
# RedisCacheBackend
# ---------------------------------------------------------------------------


class TestRedisCacheBackend:
    @pytest.fixture
    def client(self) -> MagicMock:
        client = MagicMock()
        client.get = AsyncMock(return_value="payload")
        client.set = AsyncMock()
        client.setex = AsyncMock()
        client.delete = AsyncMock(return_value=1)
        client.exists = AsyncMock(return_value=1)
        client.aclose = AsyncMock()
        client.scan_iter = MagicMock(side_effect=lambda match: _AsyncKeys(["strata:q:t:1", "strata:q:t:2"]))
        return client

    async def test_keys_are_prefixed(self, client: MagicMock) -> None:
        from strata.cache.redis import RedisCacheBackend

        backend = RedisCacheBackend(client=client)
        assert await backend.get("k") == "payload"
        client.get.assert_awaited_once_with("strata:k")

        await backend.set("k", "v", ttl=30)
        client.setex.assert_awaited_once_with("strata:k", 30, "v")
        await backend.set("k", "v")
        client.set.assert_awaited_once_with("strata:k", "v")

    async def test_pattern_delete_uses_scan(self, client: MagicMock) -> None:
        from strata.cache.redis import RedisCacheBackend

        backend = RedisCacheBackend(client=client)
        assert await backend.delete_pattern("q:t:*") == 2
        client.scan_iter.assert_called_with(match="strata:q:t:*")
        assert await backend.size() == 2

    async def test_redis_errors_become_cache_errors(self, client: MagicMock) -> None:
        from redis.exceptions import ConnectionError as RedisConnectionError

        from strata.cache.redis import RedisCacheBackend

        client.get.side_effect = RedisConnectionError("down")
        backend = RedisCacheBackend(client=client)
        with pytest.raises(CacheError, match="GET failed"):
            await backend.get("k")

    async def test_close(self, client: MagicMock) -> None:
        from strata.cache.redis import RedisCacheBackend

        await RedisCacheBackend(client=client).close()
        client.aclose.assert_awaited_once()


# ---------------------------------------------------------------------------
# Row encoding
# ---------------------------------------------------------------------------


class TestRowEncoding:
    def test_rich_values_survive(self) -> None:
        uid = uuid4()
        rows = [
            {
                "at": datetime(2026, 1, 1, 12, 0, tzinfo=UTC),
                "day": date(2026, 1, 2),
                "price": Decimal("9.99"),
                "uid": uid,
                "blob": b"\x00\x01",
                "plain": {"nested": [1, 2]},
            }
        ]
        decoded = decode_rows(encode_rows(rows))
        assert decoded == rows

    def test_unencodable_value_raises_type_error(self) -> None:
        with pytest.raises(TypeError):
            encode_rows([{"x": object()}])


# ---------------------------------------------------------------------------
# QueryCache
# ---------------------------------------------------------------------------


class TestQueryCache:
    def test_make_key_is_namespaced_and_stable(self, query_cache: QueryCache) -> None:
        key = query_cache.make_key("users", "SELECT 1")
        assert key.startswith("q:users:")
        assert key == query_cache.make_key("users", "SELECT 1")
        assert key != query_cache.make_key("users", "SELECT 2")

    async def test_hit_and_miss_stats(self, query_cache: QueryCache) -> None:
        key = query_cache.make_key("users", "sig")
        assert await query_cache.get(key) is None
        await query_cache.set(key, [{"id": 1}])
        assert await query_cache.get(key) == [{"id": 1}]
        stats = query_cache.stats.to_dict()
        assert (stats["hits"], stats["misses"], stats["sets"]) == (1, 1, 1)
        assert stats["hit_rate"] == 0.5

    async def test_invalidate_drops_only_that_table(self, query_cache: QueryCache) -> None:
        users = query_cache.make_key("users", "a")
        orders = query_cache.make_key("orders", "a")
        await query_cache.set(users, [])
        await query_cache.set(orders, [])
        assert await query_cache.invalidate("users") == 1
        assert await query_cache.get(users) is None
        assert await query_cache.get(orders) == []

    async def test_backend_errors_are_absorbed(self) -> None:
        broken = MagicMock(spec=CacheBackend)
        broken.get = AsyncMock(side_effect=CacheError("down"))
        broken.set = AsyncMock(side_effect=CacheError("down"))
        broken.delete_pattern = AsyncMock(side_effect=CacheError("down"))
        cache = QueryCache(backend=broken)

        assert await cache.get("k") is None
        await cache.set("k", [{"a": 1}])
        assert await cache.invalidate("t") == 0
        assert cache.stats.errors == 3

    async def test_corrupt_entry_is_a_miss(self, memory_backend: MemoryCacheBackend) -> None:
        cache = QueryCache(backend=memory_backend)
        await memory_backend.set("k", "{not json")
        assert await cache.get("k") is None
        assert cache.stats.errors == 1

    async def test_default_ttl_applied(self, memory_backend: MemoryCacheBackend) -> None:
        cache = QueryCache(backend=memory_backend, default_ttl=5)
        with patch("strata.cache.memory.time.monotonic", return_value=time.monotonic()) as clock:
            await cache.set("k", [])
            clock.return_value += 6
            assert await cache.get("k") is None


class TestQueryCacheSingleton:
    def test_created_from_settings(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("STRATA_CACHE_TTL", "42")
        cache = get_query_cache()
        assert cache.default_ttl == 42
        assert isinstance(cache.backend, MemoryCacheBackend)
        assert get_query_cache() is cache

    def test_redis_selected_by_settings(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("STRATA_CACHE_BACKEND", "redis")
        with patch("strata.cache.redis.aioredis.from_url", return_value=MagicMock()) as from_url:
            cache = get_query_cache()
        from strata.cache.redis import RedisCacheBackend

        assert isinstance(cache.backend, RedisCacheBackend)
        from_url.assert_called_once()

    def test_set_query_cache(self, query_cache: QueryCache) -> None:
        set_query_cache(query_cache)
        assert get_query_cache() is query_cache
