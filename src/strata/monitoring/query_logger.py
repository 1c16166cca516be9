# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""Per-query timing log with slow-query detection.

Backends call :meth:`QueryLogger.log` once per ``query``/``execute`` with the
measured duration.  Entries are kept in a bounded in-memory ring and
summarised by :meth:`QueryLogger.stats`.
"""

from __future__ import annotations

import inspect
import logging
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Literal

from strata.core.constants import DEFAULT_SLOW_QUERY_MS

logger = logging.getLogger("strata.monitoring.query_logger")

QueryKind = Literal["query", "execute"]
LogHandler = Callable[["QueryLogEntry"], Awaitable[None] | None]

_DEFAULT_MAX_ENTRIES = 1000


@dataclass(slots=True)
class QueryLogEntry:
    """A single timed backend call."""

    kind: QueryKind
    statement: str
    params: tuple[Any, ...]
    duration_ms: float
    wait_ms: float = 0.0
    slow: bool = False
    error: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "statement": self.statement,
            "params": list(self.params),
            "duration_ms": round(self.duration_ms, 3),
            "wait_ms": round(self.wait_ms, 3),
            "slow": self.slow,
            "error": self.error,
            "timestamp": self.timestamp.isoformat(),
        }


class QueryLogger:
    """Records timing for every backend call.

    Args:
        enabled: When ``False`` :meth:`log` is a no-op.
        slow_query_ms: Entries strictly slower than this are flagged slow.
        max_entries: Size of the in-memory ring; the oldest entry is dropped.
        handler: Optional sync or async callable invoked with each entry.
    """

    def __init__(
        self,
        *,
        enabled: bool = True,
        slow_query_ms: float = DEFAULT_SLOW_QUERY_MS,
        max_entries: int = _DEFAULT_MAX_ENTRIES,
        handler: LogHandler | None = None,
    ) -> None:
        self.enabled = enabled
        self.slow_query_ms = slow_query_ms
        self._handler = handler
        self._entries: deque[QueryLogEntry] = deque(maxlen=max_entries)

    async def log(
        self,
        kind: QueryKind,
        statement: str,
        params: tuple[Any, ...] | list[Any] | None,
        duration_ms: float,
        error: BaseException | None = None,
        *,
        wait_ms: float = 0.0,
    ) -> QueryLogEntry | None:
        """Record one call. *duration_ms* excludes the *wait_ms* spent waiting for a connection."""
        if not self.enabled:
            return None

        entry = QueryLogEntry(
            kind=kind,
            statement=statement,
            params=tuple(params or ()),
            duration_ms=duration_ms,
            wait_ms=wait_ms,
            slow=duration_ms > self.slow_query_ms,
            error=str(error) if error is not None else None,
        )
        self._entries.append(entry)

        if entry.slow:
            logger.warning(
                "Slow %s (%.1f ms > %.1f ms): %s",
                kind,
                duration_ms,
                self.slow_query_ms,
                statement[:200],
            )

        if self._handler is not None:
            try:
                result = self._handler(entry)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Query log handler failed for %s: %s", kind, statement[:200])
        return entry

    def entries(self) -> list[QueryLogEntry]:
        return list(self._entries)

    def slow_queries(self, threshold_ms: float | None = None) -> list[QueryLogEntry]:
        limit = self.slow_query_ms if threshold_ms is None else threshold_ms
        return [e for e in self._entries if e.duration_ms > limit]

    def stats(self) -> dict[str, float | int]:
        total = len(self._entries)
        slow = sum(1 for e in self._entries if e.slow)
        errors = sum(1 for e in self._entries if e.error)
        average = sum(e.duration_ms for e in self._entries) / total if total else 0.0
        return {
            "total": total,
            "slow": slow,
            "errors": errors,
            "average_duration_ms": round(average, 2),
        }

    def clear(self) -> None:
        self._entries.clear()
