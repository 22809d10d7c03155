"""ORM entity for captured slow database statements.

Examples
--------
Record a statement that took longer than the configured threshold:

>>> record = SlowQuery(query="SELECT 1", hash="abc123", duration=1.25)
>>> manager.persist(record).flush_all()
"""

from __future__ import annotations

# SQLAlchemy evaluates mapped annotations at runtime; keep stdlib types imported.
import datetime as dt  # noqa: TC003
import uuid

import sqlalchemy as sa
from sqlalchemy import orm

from .base import Base


class SlowQuery(Base):
    """One statement whose execution time crossed the slow-query threshold.

    All fields except ``id`` are fixed at construction and exposed through
    read-only properties. Uniqueness of ``hash`` is enforced by the database.

    Parameters
    ----------
    query : str
        Statement text as sent to the driver.
    hash : str
        Content hash (32 characters) used to deduplicate captures.
    duration : float
        Execution time in seconds.

    Raises
    ------
    ValueError
        If ``duration`` is negative.
    """

    __tablename__ = "core__database_slow_query"
    __table_args__ = (
        sa.Index("database_slow_query__hash", "hash"),
        sa.Index("database_slow_query__id_hash", "id", "hash"),
    )

    id: orm.Mapped[uuid.UUID] = orm.mapped_column(sa.Uuid, primary_key=True)
    _query: orm.Mapped[str] = orm.mapped_column("query", sa.Text)
    _duration: orm.Mapped[float] = orm.mapped_column("duration", sa.Float)
    _hash: orm.Mapped[str] = orm.mapped_column("hash", sa.String(32), unique=True)
    _inserted_date: orm.Mapped[dt.datetime] = orm.mapped_column(
        "inserted_date",
        sa.DateTime(timezone=True),
    )

    def __init__(self, query: str, hash: str, duration: float) -> None:  # noqa: A002
        if duration < 0:
            msg = f"Slow query duration must be non-negative, got {duration!r}."
            raise ValueError(msg)
        self.id = uuid.uuid4()
        self._query = query
        self._hash = hash
        self._duration = float(duration)
        self._inserted_date = dt.datetime.now(dt.UTC)

    @property
    def query(self) -> str:
        """Statement text."""
        return self._query

    @property
    def duration(self) -> float:
        """Execution time in seconds."""
        return self._duration

    @property
    def hash(self) -> str:
        """Content hash used for deduplication."""
        return self._hash

    @property
    def inserted_date(self) -> dt.datetime:
        """Capture time (UTC)."""
        return self._inserted_date

    def __repr__(self) -> str:
        return f"SlowQuery(hash={self._hash!r}, duration={self._duration!r})"
