"""Construction of a ready-to-use entity manager from a database URL.

Examples
--------
Build a manager for the configured database and install a cache:

>>> runtime = create_entity_manager("sqlite:///app.db")
>>> runtime.manager.set_cache(SqliteCache(runtime.manager.cache_db_path()))
>>> runtime.close()
"""

from __future__ import annotations

import dataclasses as dc
import os
import typing as typ

import sqlalchemy as sa
from sqlalchemy import orm

from entitygate.config import EntityManagerConfiguration
from entitygate.logging import get_logger, log_info
from entitygate.manager import EntityManager
from entitygate.slow_queries import SlowQueryMonitor

if typ.TYPE_CHECKING:
    from entitygate.ports import QueryObserver
    from entitygate.repositories import RepositoryRegistry

logger = get_logger(__name__)

_DATABASE_URL_ENV = "DATABASE_URL"


@dc.dataclass(frozen=True, slots=True)
class PersistenceRuntime:
    """Engine, manager and slow-query monitor created together.

    Attributes
    ----------
    engine : sqlalchemy.Engine
        Engine the manager's session is bound to.
    manager : EntityManager
        The persistence façade.
    monitor : SlowQueryMonitor
        Monitor attached to ``engine``.
    """

    engine: sa.Engine
    manager: EntityManager
    monitor: SlowQueryMonitor

    def close(self) -> None:
        """Close the session, detach the monitor and dispose the engine."""
        self.manager.close()
        self.monitor.detach(self.engine)
        self.engine.dispose()


def create_entity_manager(
    database_url: str | None = None,
    *,
    configuration: EntityManagerConfiguration | None = None,
    repositories: RepositoryRegistry | None = None,
    observer: QueryObserver | None = None,
    echo: bool = False,
) -> PersistenceRuntime:
    """Create an engine, a session and an entity manager around them.

    Parameters
    ----------
    database_url : str | None, optional
        SQLAlchemy URL. Falls back to ``DATABASE_URL``.
    configuration : EntityManagerConfiguration | None, optional
        Shared configuration; loaded from the environment when omitted.
    repositories : RepositoryRegistry | None, optional
        Repository registry handed to the manager.
    observer : QueryObserver | None, optional
        Diagnostic observer for cache state and statement timings.
    echo : bool, optional
        Log every statement through SQLAlchemy's own logger.

    Returns
    -------
    PersistenceRuntime
        The created objects, to be closed together.

    Raises
    ------
    RuntimeError
        If no URL is given and ``DATABASE_URL`` is not set.
    """
    url = database_url or os.getenv(_DATABASE_URL_ENV)
    if not url:
        msg = "DATABASE_URL is not set and no database URL was given."
        raise RuntimeError(msg)
    if configuration is None:
        configuration = EntityManagerConfiguration.from_environment()

    engine = sa.create_engine(url, echo=echo, pool_pre_ping=True)
    monitor = SlowQueryMonitor(configuration.slow_query_threshold, observer=observer)
    monitor.attach(engine)
    session = orm.Session(engine, expire_on_commit=False)
    manager = EntityManager(
        session,
        configuration,
        repositories=repositories,
        observer=observer,
    )
    log_info(logger, "Created entity manager for %s.", engine.url.render_as_string())
    return PersistenceRuntime(engine=engine, manager=manager, monitor=monitor)


__all__ = ("PersistenceRuntime", "create_entity_manager")
