"""Cache provisioning and the bundled cache backends.

:func:`provision_cache` installs a backend on the shared configuration (or
warns loudly when none is available). :class:`MemoryCache` keeps values in
the process; :class:`SqliteCache` stores them in a local SQLite file, usually
the entity manager's ``cache_db_path()``.

Examples
--------
Install a file-backed cache on a manager:

>>> manager.set_cache(SqliteCache(manager.cache_db_path()))
"""

from __future__ import annotations

import hashlib
import pickle
import time
import typing as typ
import warnings

import sqlalchemy as sa
from sqlalchemy.dialects import sqlite

from entitygate.config import PRODUCTION_PROXY_MODE
from entitygate.errors import CacheUnavailableWarning
from entitygate.logging import get_logger, log_info, log_warning

if typ.TYPE_CHECKING:
    import os

    from entitygate.config import EntityManagerConfiguration
    from entitygate.ports import CacheProvider, QueryObserver

logger = get_logger(__name__)

# Stable identifier of the façade implementation; namespaces derive from it.
_FACADE_IDENTIFIER = "entitygate.manager.EntityManager"

NO_CACHE_MESSAGE = (
    "entitygate cache is not available. Application will run slowly!\n"
    "Please install a cache backend such as SqliteCache (requires the sqlite3 "
    "module) or MemoryCache."
)


def cache_namespace() -> str:
    """Return the namespace assigned to every provisioned cache."""
    return hashlib.md5(  # noqa: S324
        _FACADE_IDENTIFIER.encode("utf-8"),
        usedforsecurity=False,
    ).hexdigest()


def provision_cache(
    configuration: EntityManagerConfiguration,
    cache: CacheProvider | None,
    *,
    observer: QueryObserver | None = None,
) -> None:
    """Install ``cache`` as the metadata and query cache of ``configuration``.

    Parameters
    ----------
    configuration : EntityManagerConfiguration
        Shared configuration, mutated in place.
    cache : CacheProvider | None
        Backend to install. ``None`` keeps the manager working without a
        cache and emits :class:`CacheUnavailableWarning`.
    observer : QueryObserver | None, optional
        Receives the installed backend.
    """
    if observer is not None:
        observer.cache_configured(cache)

    if cache is None:
        warnings.warn(NO_CACHE_MESSAGE, CacheUnavailableWarning, stacklevel=3)
        log_warning(logger, NO_CACHE_MESSAGE)
    else:
        cache.namespace = cache_namespace()
        configuration.metadata_cache = cache
        configuration.query_cache = cache
        log_info(
            logger,
            "Installed %s with namespace %s.",
            type(cache).__name__,
            cache.namespace,
        )

    configuration.proxy_mode = PRODUCTION_PROXY_MODE


class MemoryCache:
    """Process-local cache backed by a dictionary."""

    def __init__(self, namespace: str = "") -> None:
        self.namespace = namespace
        self._entries: dict[str, tuple[object, float | None]] = {}

    def _key(self, key: str) -> str:
        """Prefix ``key`` with the cache namespace."""
        return f"{self.namespace}[{key}]"

    def get(self, key: str, default: object | None = None) -> object | None:
        """Return the cached value for ``key`` or ``default``."""
        entry = self._entries.get(self._key(key))
        if entry is None:
            return default
        value, expires_at = entry
        if expires_at is not None and expires_at <= time.monotonic():
            del self._entries[self._key(key)]
            return default
        return value

    def set(self, key: str, value: object, ttl: float | None = None) -> None:
        """Store ``value`` under ``key``."""
        expires_at = None if ttl is None else time.monotonic() + ttl
        self._entries[self._key(key)] = (value, expires_at)

    def delete(self, key: str) -> None:
        """Remove ``key`` if present."""
        self._entries.pop(self._key(key), None)

    def clear(self) -> None:
        """Remove every key in the current namespace."""
        prefix = f"{self.namespace}["
        for key in [key for key in self._entries if key.startswith(prefix)]:
            del self._entries[key]


_cache_metadata = sa.MetaData()
_cache_entries = sa.Table(
    "cache_entries",
    _cache_metadata,
    sa.Column("key", sa.String(512), primary_key=True),
    sa.Column("value", sa.LargeBinary, nullable=False),
    sa.Column("expires_at", sa.Float, nullable=True),
)


class SqliteCache:
    """Cache persisted in a local SQLite database file.

    Values are pickled, so only trusted data should be cached. Entries with a
    TTL use wall-clock expiry because the file outlives the process.

    Parameters
    ----------
    path : str | os.PathLike[str]
        SQLite file to use; created on first use.
    namespace : str, optional
        Initial key prefix. Provisioning replaces it.
    """

    def __init__(self, path: str | os.PathLike[str], namespace: str = "") -> None:
        self.namespace = namespace
        self._engine = sa.create_engine(f"sqlite:///{path}")
        _cache_metadata.create_all(self._engine)

    def _key(self, key: str) -> str:
        """Prefix ``key`` with the cache namespace."""
        return f"{self.namespace}[{key}]"

    def get(self, key: str, default: object | None = None) -> object | None:
        """Return the cached value for ``key`` or ``default``."""
        query = sa.select(_cache_entries.c.value, _cache_entries.c.expires_at).where(
            _cache_entries.c.key == self._key(key)
        )
        with self._engine.connect() as connection:
            row = connection.execute(query).first()
        if row is None:
            return default
        if row.expires_at is not None and row.expires_at <= time.time():
            self.delete(key)
            return default
        return pickle.loads(row.value)  # noqa: S301

    def set(self, key: str, value: object, ttl: float | None = None) -> None:
        """Store ``value`` under ``key``, replacing any previous entry."""
        values = {
            "value": pickle.dumps(value),
            "expires_at": None if ttl is None else time.time() + ttl,
        }
        statement = (
            sqlite.insert(_cache_entries)
            .values(key=self._key(key), **values)
            .on_conflict_do_update(index_elements=[_cache_entries.c.key], set_=values)
        )
        with self._engine.begin() as connection:
            connection.execute(statement)

    def delete(self, key: str) -> None:
        """Remove ``key`` if present."""
        with self._engine.begin() as connection:
            connection.execute(
                sa.delete(_cache_entries).where(_cache_entries.c.key == self._key(key))
            )

    def clear(self) -> None:
        """Remove every key in the current namespace."""
        prefix = f"{self.namespace}["
        with self._engine.begin() as connection:
            connection.execute(
                sa.delete(_cache_entries).where(
                    _cache_entries.c.key.startswith(prefix, autoescape=True)
                )
            )

    def close(self) -> None:
        """Release pooled connections to the cache file."""
        self._engine.dispose()


__all__ = (
    "NO_CACHE_MESSAGE",
    "MemoryCache",
    "SqliteCache",
    "cache_namespace",
    "provision_cache",
)
