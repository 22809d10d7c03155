"""Capture of slow statements and their persistence as ``SlowQuery`` rows.

:class:`SlowQueryMonitor` hooks into SQLAlchemy engine events, times every
statement and buffers those that reach the threshold. The buffer is written
through an :class:`~entitygate.EntityManager` on demand, deduplicated by
:func:`hash_query`.

Examples
--------
Capture slow statements and store them later:

>>> monitor = SlowQueryMonitor(threshold=0.5)
>>> monitor.attach(engine)
>>> ...
>>> monitor.flush_into(manager)
2
"""

from __future__ import annotations

import collections
import dataclasses as dc
import hashlib
import threading
import time
import typing as typ

from sqlalchemy import event

from entitygate.entities import SlowQuery
from entitygate.errors import PersistenceError
from entitygate.logging import get_logger, log_info

if typ.TYPE_CHECKING:
    import sqlalchemy as sa

    from entitygate.manager import EntityManager
    from entitygate.ports import QueryObserver
    from entitygate.repositories import SlowQueryRepository

logger = get_logger(__name__)

_START_TIMES_KEY = "entitygate.query_start_times"


def hash_query(statement: str) -> str:
    """Return the 32-character deduplication hash of ``statement``.

    Runs of whitespace are collapsed before hashing so reformatted copies of
    one statement share a hash.
    """
    normalised = " ".join(statement.split())
    return hashlib.md5(  # noqa: S324
        normalised.encode("utf-8"),
        usedforsecurity=False,
    ).hexdigest()


@dc.dataclass(frozen=True, slots=True)
class CapturedQuery:
    """A slow statement waiting to be stored."""

    statement: str
    duration: float
    hash: str


class SlowQueryMonitor:
    """Time statements on an engine and buffer the slow ones.

    Parameters
    ----------
    threshold : float
        Minimum duration, in seconds, for a statement to be captured.
    observer : QueryObserver | None, optional
        Receives every timed statement, slow or not.
    max_captured : int, optional
        Most captures buffered between flushes. Once full, each new capture
        evicts the oldest one and is counted in :attr:`dropped`.
    """

    def __init__(
        self,
        threshold: float,
        *,
        observer: QueryObserver | None = None,
        max_captured: int = 1000,
    ) -> None:
        self.threshold = threshold
        self.max_captured = max_captured
        self.dropped = 0
        self._observer = observer
        self._captured: collections.deque[CapturedQuery] = collections.deque(
            maxlen=max_captured,
        )
        self._lock = threading.Lock()
        self._local = threading.local()

    @property
    def captured(self) -> tuple[CapturedQuery, ...]:
        """Captures not yet written by :meth:`flush_into`."""
        with self._lock:
            return tuple(self._captured)

    def attach(self, engine: sa.Engine) -> None:
        """Start timing statements executed on ``engine``."""
        event.listen(engine, "before_cursor_execute", self._before_cursor_execute)
        event.listen(engine, "after_cursor_execute", self._after_cursor_execute)

    def detach(self, engine: sa.Engine) -> None:
        """Stop timing statements executed on ``engine``."""
        event.remove(engine, "before_cursor_execute", self._before_cursor_execute)
        event.remove(engine, "after_cursor_execute", self._after_cursor_execute)

    def _before_cursor_execute(  # noqa: PLR0913
        self,
        conn: sa.Connection,
        cursor: object,
        statement: str,
        parameters: object,
        context: object,
        executemany: bool,  # noqa: FBT001
    ) -> None:
        """Stack the statement start time on the connection."""
        conn.info.setdefault(_START_TIMES_KEY, []).append(time.perf_counter())

    def _after_cursor_execute(  # noqa: PLR0913
        self,
        conn: sa.Connection,
        cursor: object,
        statement: str,
        parameters: object,
        context: object,
        executemany: bool,  # noqa: FBT001
    ) -> None:
        """Time the finished statement and report it."""
        started = conn.info[_START_TIMES_KEY].pop()
        self.record(statement, time.perf_counter() - started)

    def record(self, statement: str, duration: float) -> CapturedQuery | None:
        """Report one statement and buffer it when it is slow enough.

        Returns
        -------
        CapturedQuery | None
            The buffered capture, or ``None`` when the statement was fast or
            capturing is suspended.
        """
        if self._observer is not None:
            self._observer.query_executed(statement, duration)
        if getattr(self._local, "suspended", False) or duration < self.threshold:
            return None
        capture = CapturedQuery(
            statement=statement,
            duration=duration,
            hash=hash_query(statement),
        )
        with self._lock:
            if len(self._captured) == self.max_captured:
                self.dropped += 1
            self._captured.append(capture)
        return capture

    def flush_into(self, manager: EntityManager) -> int:
        """Store buffered captures as ``SlowQuery`` rows.

        Hashes already stored, or repeated within the buffer, are skipped.
        Statements issued while storing are not captured.

        Returns
        -------
        int
            Number of rows written.

        Raises
        ------
        PersistenceError
            If the write fails. The captures stay buffered, up to
            ``max_captured``.
        """
        with self._lock:
            pending = list(self._captured)
            self._captured.clear()
        if not pending:
            return 0

        def store(em: EntityManager) -> int:
            repository = typ.cast("SlowQueryRepository", em.get_repository(SlowQuery))
            seen = repository.known_hashes({capture.hash for capture in pending})
            stored = 0
            for capture in pending:
                if capture.hash in seen:
                    continue
                seen.add(capture.hash)
                em.persist(SlowQuery(capture.statement, capture.hash, capture.duration))
                stored += 1
            return stored

        self._local.suspended = True
        try:
            stored = typ.cast("int", manager.transactional(store))
        except PersistenceError:
            with self._lock:
                requeued = [*pending, *self._captured]
                self.dropped += max(0, len(requeued) - self.max_captured)
                self._captured = collections.deque(requeued, maxlen=self.max_captured)
            raise
        finally:
            self._local.suspended = False
        log_info(logger, "Stored %s slow query record(s).", stored)
        return stored


__all__ = ("CapturedQuery", "SlowQueryMonitor", "hash_query")
