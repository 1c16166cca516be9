# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""Query timing and connection pool observation."""

from strata.monitoring.pool_monitor import PoolMonitor
from strata.monitoring.query_logger import QueryLogEntry, QueryLogger

__all__ = ["PoolMonitor", "QueryLogEntry", "QueryLogger"]
