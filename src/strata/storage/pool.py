# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""FIFO connection gate shared by every backend.

The gate bounds how many callers may hold a connection at once.  Callers
beyond the bound queue in arrival order; a released slot is handed
directly to the oldest waiter so no late arrival can overtake it.
"""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from strata.core.exceptions import PoolTimeoutError


class PoolGate:
    """Bounded, fair admission to a connection pool.

    Args:
        max_size: Maximum number of simultaneously active connections.
        acquire_timeout: Default seconds to wait for a slot before
            :class:`PoolTimeoutError` is raised.
    """

    def __init__(self, max_size: int, acquire_timeout: float = 30.0) -> None:
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self._max_size = max_size
        self._acquire_timeout = acquire_timeout
        self._active = 0
        self._peak_active = 0
        self._waiters: deque[asyncio.Future[None]] = deque()

    @property
    def max_size(self) -> int:
        return self._max_size

    @property
    def active(self) -> int:
        return self._active

    @property
    def waiting(self) -> int:
        return sum(1 for w in self._waiters if not w.done())

    @property
    def peak_active(self) -> int:
        """Highest number of simultaneously active slots seen so far."""
        return self._peak_active

    async def acquire(self, timeout: float | None = None) -> None:
        if self._active < self._max_size and not self._waiters:
            self._grant()
            return

        waiter: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        limit = self._acquire_timeout if timeout is None else timeout
        try:
            async with asyncio.timeout(limit):
                await waiter
        except TimeoutError:
            self._abandon(waiter)
            raise PoolTimeoutError(
                f"Timed out after {limit:.2f}s waiting for a connection "
                f"({self._active}/{self._max_size} active, {self.waiting} waiting)"
            ) from None
        except asyncio.CancelledError:
            self._abandon(waiter)
            raise

    def release(self) -> None:
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                # The slot passes straight to the waiter; _active is unchanged.
                waiter.set_result(None)
                return
        self._active -= 1

    @asynccontextmanager
    async def slot(self, timeout: float | None = None) -> AsyncIterator[None]:
        await self.acquire(timeout)
        try:
            yield
        finally:
            self.release()

    def _grant(self) -> None:
        self._active += 1
        self._peak_active = max(self._peak_active, self._active)

    def _abandon(self, waiter: asyncio.Future[None]) -> None:
        try:
            self._waiters.remove(waiter)
        except ValueError:
            pass
        if waiter.done() and not waiter.cancelled():
            # The slot was handed over just as we gave up; pass it on.
            self.release()
        else:
            waiter.cancel()
