"""Alembic environment for entitygate's own tables.

A connection placed in ``config.attributes["connection"]`` (see
``entitygate.migrations.apply_migrations``) is migrated in place. Otherwise
the URL comes from ``DATABASE_URL`` or ``sqlalchemy.url`` in ``alembic.ini``.
"""

from __future__ import annotations

import os
import typing as typ
from logging.config import fileConfig

import sqlalchemy as sa

from alembic import context
from entitygate.entities import Base

if typ.TYPE_CHECKING:
    from sqlalchemy.engine import Connection

config = context.config

if config.config_file_name:
    fileConfig(config.config_file_name, disable_existing_loggers=False)


def _database_url() -> str:
    """Return the database URL, preferring ``DATABASE_URL`` over the ini file."""
    from_env = os.environ.get("DATABASE_URL")
    if from_env:
        config.set_main_option("sqlalchemy.url", from_env.replace("%", "%%"))
        return from_env
    configured = config.get_main_option("sqlalchemy.url")
    if not configured:
        msg = "No database URL: set DATABASE_URL or sqlalchemy.url."
        raise RuntimeError(msg)
    return configured


def _migrate(**options: object) -> None:
    """Configure the migration context with ``options`` and run the scripts."""
    context.configure(target_metadata=Base.metadata, compare_type=True, **options)
    with context.begin_transaction():
        context.run_migrations()


def _migrate_connection(connection: Connection) -> None:
    """Run migrations on ``connection``, in batch mode on SQLite."""
    _migrate(
        connection=connection,
        render_as_batch=connection.dialect.name == "sqlite",
    )


def _migrate_online() -> None:
    """Run migrations on a supplied connection or a fresh engine."""
    supplied = config.attributes.get("connection")
    if supplied is not None:
        _migrate_connection(supplied)
        return

    engine = sa.create_engine(_database_url(), poolclass=sa.pool.NullPool)
    try:
        with engine.connect() as connection:
            _migrate_connection(connection)
            connection.commit()
    finally:
        engine.dispose()


if context.is_offline_mode():
    _migrate(url=_database_url(), literal_binds=True)
else:
    _migrate_online()
