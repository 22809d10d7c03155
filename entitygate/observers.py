"""In-process query statistics for diagnostic panels."""

from __future__ import annotations

import collections
import dataclasses as dc
import threading
import typing as typ

if typ.TYPE_CHECKING:
    from entitygate.ports import CacheProvider


@dc.dataclass(frozen=True, slots=True)
class ExecutedQuery:
    """One statement reported to :class:`QueryStatistics`."""

    statement: str
    duration: float


class QueryStatistics:
    """Collect cache state and query timings for later rendering.

    Both statement histories are bounded; the oldest entries are discarded
    once a history is full.

    Parameters
    ----------
    slow_threshold : float
        Statements at or above this many seconds are also kept in
        :attr:`slow_queries`.
    max_queries : int
        Number of most recent statements retained in :attr:`queries`.
    max_slow_queries : int
        Number of most recent slow statements retained in
        :attr:`slow_queries`.
    """

    def __init__(
        self,
        *,
        slow_threshold: float = 0.15,
        max_queries: int = 500,
        max_slow_queries: int = 100,
    ) -> None:
        self.slow_threshold = slow_threshold
        self.cache: CacheProvider | None = None
        self.cache_configured_calls = 0
        self.invalid_cache = False
        self.query_count = 0
        self.total_time = 0.0
        self.queries: collections.deque[ExecutedQuery] = collections.deque(
            maxlen=max_queries,
        )
        self.slow_queries: collections.deque[ExecutedQuery] = collections.deque(
            maxlen=max_slow_queries,
        )
        self._lock = threading.Lock()

    def cache_configured(self, cache: CacheProvider | None) -> None:
        """Remember the installed cache backend."""
        self.cache = cache
        self.cache_configured_calls += 1

    def cache_invalidated(self, invalidated: bool) -> None:  # noqa: FBT001
        """Remember whether schema synchronization was requested."""
        self.invalid_cache = invalidated

    def query_executed(self, statement: str, duration: float) -> None:
        """Record one executed statement."""
        entry = ExecutedQuery(statement=statement, duration=duration)
        with self._lock:
            self.query_count += 1
            self.total_time += duration
            self.queries.append(entry)
            if duration >= self.slow_threshold:
                self.slow_queries.append(entry)

    @property
    def has_cache(self) -> bool:
        """Whether a cache backend is installed."""
        return self.cache is not None


__all__ = ("ExecutedQuery", "QueryStatistics")
