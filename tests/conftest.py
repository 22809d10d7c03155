"""Pytest fixtures for database-backed tests.

Every test gets its own SQLite file under ``tmp_path``. The engine uses the
pysqlite recipe that hands transaction control to SQLAlchemy so SAVEPOINTs
behave as they do on server databases.

Examples
--------
Run the whole suite:

>>> pytest tests
"""

from __future__ import annotations

import typing as typ

import pytest
import sqlalchemy as sa
from _sample_entities import SampleBase
from sqlalchemy import event, orm

from entitygate.config import EntityManagerConfiguration
from entitygate.entities import Base
from entitygate.manager import EntityManager

if typ.TYPE_CHECKING:
    import collections.abc as cabc
    from pathlib import Path


class RecordingSession:
    """Session stand-in that records every method called on it."""

    def __init__(self) -> None:
        self.calls: list[str] = []

    def __getattr__(self, name: str) -> cabc.Callable[..., None]:
        def _record(*args: object, **kwargs: object) -> None:
            self.calls.append(name)

        return _record


class FailingSession(RecordingSession):
    """Session stand-in whose every method raises ``error``."""

    def __init__(self, error: Exception) -> None:
        super().__init__()
        self.error = error

    @property
    def identity_map(self) -> typ.NoReturn:
        self.calls.append("identity_map")
        raise self.error

    def __getattr__(self, name: str) -> cabc.Callable[..., None]:
        def _fail(*args: object, **kwargs: object) -> None:
            self.calls.append(name)
            raise self.error

        return _fail


def _sqlite_engine(path: Path) -> sa.Engine:
    engine = sa.create_engine(f"sqlite:///{path}")

    @event.listens_for(engine, "connect")
    def _disable_driver_transactions(
        dbapi_connection: typ.Any,  # noqa: ANN401
        connection_record: object,
    ) -> None:
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(connection: sa.Connection) -> None:
        connection.exec_driver_sql("BEGIN")

    return engine


@pytest.fixture
def empty_engine(tmp_path: Path) -> cabc.Iterator[sa.Engine]:
    """Yield an engine bound to an empty SQLite file."""
    engine = _sqlite_engine(tmp_path / "entitygate-test.db")
    yield engine
    engine.dispose()


@pytest.fixture
def engine(empty_engine: sa.Engine) -> sa.Engine:
    """Return an engine whose database holds every declared table."""
    SampleBase.metadata.create_all(empty_engine)
    Base.metadata.create_all(empty_engine)
    return empty_engine


@pytest.fixture
def configuration(tmp_path: Path) -> EntityManagerConfiguration:
    """Return a configuration covering the test and entitygate entities."""
    return EntityManagerConfiguration(
        cache_root=tmp_path / "cache",
        registries=(SampleBase.registry, Base.registry),
    )


@pytest.fixture
def session(engine: sa.Engine) -> cabc.Iterator[orm.Session]:
    """Yield a session bound to the populated engine."""
    session = orm.Session(engine, expire_on_commit=False)
    yield session
    session.close()


@pytest.fixture
def manager(
    session: orm.Session,
    configuration: EntityManagerConfiguration,
) -> EntityManager:
    """Return an entity manager over ``session``."""
    return EntityManager(session, configuration)


@pytest.fixture
def recording_session() -> RecordingSession:
    """Return a session stand-in that records calls."""
    return RecordingSession()


@pytest.fixture
def recording_manager(
    recording_session: RecordingSession,
    configuration: EntityManagerConfiguration,
) -> EntityManager:
    """Return an entity manager whose session only records calls."""
    return EntityManager(
        typ.cast("orm.Session", recording_session),
        configuration,
    )


@pytest.fixture
def fresh_session(engine: sa.Engine) -> cabc.Callable[[], orm.Session]:
    """Return a factory for independent sessions used to check committed rows."""

    def _factory() -> orm.Session:
        return orm.Session(engine)

    return _factory


@pytest.fixture
def failing_manager(
    configuration: EntityManagerConfiguration,
) -> cabc.Callable[[Exception], EntityManager]:
    """Return a factory for managers whose session raises the given error."""

    def _build(error: Exception) -> EntityManager:
        return EntityManager(
            typ.cast("orm.Session", FailingSession(error)),
            configuration,
        )

    return _build
