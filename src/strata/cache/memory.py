# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""In-memory LRU cache backend with TTL expiry.

The default backend; it needs no external service.  Entries live in an
``OrderedDict`` kept in recency order, and a lock guards every mutation so
the store is safe to share between event loops running in threads.
"""

from __future__ import annotations

import fnmatch
import threading
import time
from collections import OrderedDict

from strata.cache.base import CacheBackend

_DEFAULT_MAX_SIZE = 4096


class _Entry:
    __slots__ = ("expires_at", "value")

    def __init__(self, value: str, expires_at: float | None) -> None:
        self.value = value
        self.expires_at = expires_at

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and now >= self.expires_at


class MemoryCacheBackend(CacheBackend):
    """LRU store; the least recently used entry is evicted past *max_size*."""

    def __init__(self, max_size: int = _DEFAULT_MAX_SIZE) -> None:
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self._store: OrderedDict[str, _Entry] = OrderedDict()
        self._max_size = max_size
        self._lock = threading.Lock()
        self.evictions = 0

    async def get(self, key: str) -> str | None:
        with self._lock:
            entry = self._live(key)
            if entry is None:
                return None
            self._store.move_to_end(key)
            return entry.value

    async def set(self, key: str, value: str, ttl: int | None = None) -> None:
        expires_at = time.monotonic() + ttl if ttl is not None else None
        with self._lock:
            self._store[key] = _Entry(value, expires_at)
            self._store.move_to_end(key)
            while len(self._store) > self._max_size:
                self._store.popitem(last=False)
                self.evictions += 1

    async def delete(self, key: str) -> bool:
        with self._lock:
            return self._store.pop(key, None) is not None

    async def delete_pattern(self, pattern: str) -> int:
        with self._lock:
            doomed = [k for k in self._store if fnmatch.fnmatchcase(k, pattern)]
            for k in doomed:
                del self._store[k]
            return len(doomed)

    async def exists(self, key: str) -> bool:
        with self._lock:
            return self._live(key) is not None

    async def clear(self) -> int:
        with self._lock:
            count = len(self._store)
            self._store.clear()
            return count

    async def size(self) -> int:
        with self._lock:
            now = time.monotonic()
            for k in [k for k, e in self._store.items() if e.is_expired(now)]:
                del self._store[k]
            return len(self._store)

    async def close(self) -> None:
        with self._lock:
            self._store.clear()

    def _live(self, key: str) -> _Entry | None:
        entry = self._store.get(key)
        if entry is None:
            return None
        if entry.is_expired(time.monotonic()):
            del self._store[key]
            return None
        return entry
