# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""Query result caching layer."""

from strata.cache.base import CacheBackend
from strata.cache.manager import QueryCache, get_query_cache, reset_query_cache, set_query_cache
from strata.cache.memory import MemoryCacheBackend

__all__ = [
    "CacheBackend",
    "MemoryCacheBackend",
    "QueryCache",
    "get_query_cache",
    "reset_query_cache",
    "set_query_cache",
]
