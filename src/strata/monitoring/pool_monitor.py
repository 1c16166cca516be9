# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""Read-only view over the pools of every registered connection."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from strata.storage.backend import HealthCheckResult, PoolStatus
    from strata.storage.database import DatabaseRegistry

logger = logging.getLogger("strata.monitoring.pool_monitor")


class PoolMonitor:
    """Reports pool occupancy and health per connection name.

    Args:
        registry: Registry to observe; the process-wide one when omitted.
    """

    def __init__(self, registry: DatabaseRegistry | None = None) -> None:
        self._registry = registry

    @property
    def registry(self) -> DatabaseRegistry:
        if self._registry is not None:
            return self._registry
        from strata.storage.database import get_registry

        return get_registry()

    def snapshot(self) -> dict[str, PoolStatus]:
        return {name: backend.pool_status() for name, backend in self.registry.items()}

    def status(self, name: str) -> PoolStatus:
        return self.registry.get(name).pool_status()

    async def health(self) -> dict[str, HealthCheckResult]:
        results: dict[str, HealthCheckResult] = {}
        for name, backend in self.registry.items():
            results[name] = await backend.health_check()
            if not results[name].healthy:
                logger.warning("Connection %r is unhealthy: %s", name, results[name].error)
        return results
