"""Alembic configuration and migration helpers for entitygate's own tables.

Both the test fixtures and deployment tooling use these helpers so the
configuration of the bundled ``alembic/`` scripts lives in one place.

Examples
--------
Migrate a database to the latest revision:

>>> apply_migrations(sa.create_engine("sqlite:///app.db"))
"""

from __future__ import annotations

import pathlib
import typing as typ

import sqlalchemy as sa
from alembic import command
from alembic.config import Config

from entitygate.logging import get_logger, log_info

if typ.TYPE_CHECKING:
    from sqlalchemy.engine import Connection

logger = get_logger(__name__)

_PROJECT_ROOT = pathlib.Path(__file__).resolve().parents[1]


def alembic_config(database_url: str) -> Config:
    """Return an Alembic ``Config`` for the bundled migration scripts.

    ``database_url`` is stored as ``sqlalchemy.url`` with percent signs
    doubled, since Alembic reads the value through ConfigParser.
    """
    cfg = Config(str(_PROJECT_ROOT / "alembic.ini"))
    cfg.set_main_option("script_location", str(_PROJECT_ROOT / "alembic"))
    safe_url = database_url.replace("%", "%%")
    cfg.set_main_option("sqlalchemy.url", safe_url)
    return cfg


def _run_migrations(connection: Connection, cfg: Config, revision: str) -> None:
    """Upgrade ``connection`` to ``revision`` through Alembic."""
    cfg.attributes["connection"] = connection
    command.upgrade(cfg, revision)


def apply_migrations(bind: sa.Engine | Connection, revision: str = "head") -> None:
    """Upgrade ``bind`` to ``revision``.

    Parameters
    ----------
    bind : sqlalchemy.Engine | sqlalchemy.Connection
        Database to migrate. A connection is migrated inside its current
        transaction; an engine gets a transaction of its own.
    revision : str, optional
        Target revision.
    """
    if isinstance(bind, sa.Connection):
        cfg = alembic_config(bind.engine.url.render_as_string(hide_password=False))
        _run_migrations(bind, cfg, revision)
        return
    cfg = alembic_config(bind.url.render_as_string(hide_password=False))
    with bind.begin() as connection:
        _run_migrations(connection, cfg, revision)
    log_info(logger, "Migrated %s to %s.", bind.url.render_as_string(), revision)


__all__ = ("alembic_config", "apply_migrations")
