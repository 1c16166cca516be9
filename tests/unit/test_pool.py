# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""Tests for the FIFO pool gate and the query logger."""

from __future__ import annotations

import asyncio
import time
from unittest.mock import MagicMock

import pytest

from strata.core.exceptions import PoolTimeoutError
from strata.monitoring.query_logger import QueryLogger
from strata.storage.pool import PoolGate

# ---------------------------------------------------------------------------
# PoolGate
# ---------------------------------------------------------------------------


class TestPoolGate:
    def test_rejects_zero_size(self) -> None:
        with pytest.raises(ValueError):
            PoolGate(0)

    async def test_fast_path(self) -> None:
        gate = PoolGate(2)
        await gate.acquire()
        assert gate.active == 1
        gate.release()
        assert gate.active == 0

    async def test_excess_callers_wait_in_waves(self) -> None:
        gate = PoolGate(2)
        concurrent = 0
        peak = 0

        async def work() -> None:
            nonlocal concurrent, peak
            async with gate.slot():
                concurrent += 1
                peak = max(peak, concurrent)
                await asyncio.sleep(0.05)
                concurrent -= 1

        start = time.perf_counter()
        await asyncio.gather(*(work() for _ in range(5)))
        elapsed = time.perf_counter() - start

        assert peak <= 2
        assert gate.peak_active == 2
        # 5 tasks with 2 slots need three waves of 50 ms.
        assert elapsed >= 0.14
        assert gate.active == 0
        assert gate.waiting == 0

    async def test_waiters_served_in_arrival_order(self) -> None:
        gate = PoolGate(1)
        order: list[int] = []
        await gate.acquire()

        async def waiter(n: int) -> None:
            async with gate.slot():
                order.append(n)

        tasks = []
        for n in range(4):
            tasks.append(asyncio.create_task(waiter(n)))
            await asyncio.sleep(0)
        assert gate.waiting == 4

        gate.release()
        await asyncio.gather(*tasks)
        assert order == [0, 1, 2, 3]

    async def test_timeout_raises_pool_timeout(self) -> None:
        gate = PoolGate(1)
        await gate.acquire()
        with pytest.raises(PoolTimeoutError, match="Timed out"):
            await gate.acquire(timeout=0.02)
        assert gate.waiting == 0
        gate.release()
        assert gate.active == 0

    async def test_default_timeout_from_constructor(self) -> None:
        gate = PoolGate(1, acquire_timeout=0.01)
        await gate.acquire()
        with pytest.raises(PoolTimeoutError):
            await gate.acquire()

    async def test_cancelled_waiter_does_not_leak_slot(self) -> None:
        gate = PoolGate(1)
        await gate.acquire()
        task = asyncio.create_task(gate.acquire())
        await asyncio.sleep(0)
        assert gate.waiting == 1

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        gate.release()
        assert gate.active == 0
        assert gate.waiting == 0

    async def test_slot_released_on_error(self) -> None:
        gate = PoolGate(1)
        with pytest.raises(RuntimeError):
            async with gate.slot():
                raise RuntimeError("boom")
        assert gate.active == 0


# ---------------------------------------------------------------------------
# QueryLogger
# ---------------------------------------------------------------------------


class TestQueryLogger:
    async def test_records_entries(self) -> None:
        ql = QueryLogger(slow_query_ms=100)
        entry = await ql.log("query", "SELECT 1", None, 5.0)
        assert entry is not None
        assert entry.params == ()
        assert not entry.slow
        assert ql.entries() == [entry]

    async def test_flags_slow_queries(self, caplog: pytest.LogCaptureFixture) -> None:
        ql = QueryLogger(slow_query_ms=10)
        with caplog.at_level("WARNING", logger="strata.monitoring.query_logger"):
            await ql.log("execute", "UPDATE t SET x = ?", (1,), 25.0)
        assert ql.slow_queries()[0].statement == "UPDATE t SET x = ?"
        assert "Slow execute" in caplog.text

    async def test_disabled_logger_records_nothing(self) -> None:
        ql = QueryLogger(enabled=False)
        assert await ql.log("query", "SELECT 1", None, 1.0) is None
        assert ql.entries() == []

    async def test_ring_is_bounded(self) -> None:
        ql = QueryLogger(max_entries=3)
        for i in range(5):
            await ql.log("query", f"SELECT {i}", None, 1.0)
        assert [e.statement for e in ql.entries()] == ["SELECT 2", "SELECT 3", "SELECT 4"]

    async def test_stats(self) -> None:
        ql = QueryLogger(slow_query_ms=10)
        await ql.log("query", "a", None, 4.0)
        await ql.log("query", "b", None, 20.0)
        await ql.log("execute", "c", None, 6.0, RuntimeError("x"))
        assert ql.stats() == {"total": 3, "slow": 1, "errors": 1, "average_duration_ms": 10.0}
        ql.clear()
        assert ql.stats()["total"] == 0

    async def test_sync_and_async_handlers(self) -> None:
        sync_handler = MagicMock(return_value=None)
        await QueryLogger(handler=sync_handler).log("query", "SELECT 1", None, 1.0)
        sync_handler.assert_called_once()

        seen = []

        async def async_handler(entry) -> None:  # type: ignore[no-untyped-def]
            seen.append(entry.statement)

        await QueryLogger(handler=async_handler).log("query", "SELECT 2", None, 1.0)
        assert seen == ["SELECT 2"]

    async def test_entry_to_dict(self) -> None:
        ql = QueryLogger()
        entry = await ql.log("query", "SELECT ?", [1], 1.23456)
        data = entry.to_dict()  # type: ignore[union-attr]
        assert data["params"] == [1]
        assert data["duration_ms"] == 1.235
        assert data["wait_ms"] == 0.0

    async def test_failing_handler_is_logged_not_raised(self, caplog: pytest.LogCaptureFixture) -> None:
        def broken(entry) -> None:  # type: ignore[no-untyped-def]
            raise RuntimeError("sink offline")

        async def broken_async(entry) -> None:  # type: ignore[no-untyped-def]
            raise RuntimeError("sink offline")

        for handler in (broken, broken_async):
            ql = QueryLogger(handler=handler)
            with caplog.at_level("ERROR", logger="strata.monitoring.query_logger"):
                entry = await ql.log("execute", "INSERT INTO t VALUES (?)", (1,), 2.0)
            assert entry is not None
            assert ql.stats()["total"] == 1
        assert "Query log handler failed" in caplog.text

    async def test_wait_time_recorded_separately(self) -> None:
        ql = QueryLogger(slow_query_ms=50)
        entry = await ql.log("query", "SELECT 1", None, 3.0, wait_ms=400.0)
        assert entry is not None
        assert entry.duration_ms == 3.0
        assert entry.wait_ms == 400.0
        assert not entry.slow
