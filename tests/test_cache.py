"""Unit tests for cache provisioning and the bundled cache backends.

Examples
--------
Run the cache tests:

>>> pytest tests/test_cache.py -v
"""

from __future__ import annotations

import typing as typ
import warnings

import pytest
from _sample_entities import Author

from entitygate.cache import MemoryCache, SqliteCache, cache_namespace
from entitygate.config import (
    PRODUCTION_PROXY_MODE,
    EntityManagerConfiguration,
    ProxyAutoGenerate,
)
from entitygate.errors import CacheUnavailableWarning
from entitygate.manager import EntityManager
from entitygate.observers import QueryStatistics
from entitygate.ports import CacheProvider

if typ.TYPE_CHECKING:
    import collections.abc as cabc
    from pathlib import Path

    from sqlalchemy import orm


@pytest.fixture
def sqlite_cache(tmp_path: Path) -> cabc.Iterator[SqliteCache]:
    """Yield a file-backed cache in ``tmp_path``."""
    cache = SqliteCache(tmp_path / "cache.db")
    yield cache
    cache.close()


def test_set_cache_without_backend_warns_once(manager: EntityManager) -> None:
    """A missing backend degrades gracefully with exactly one warning."""
    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always")
        manager.set_cache(None)

    cache_warnings = [
        warning for warning in caught if warning.category is CacheUnavailableWarning
    ]
    assert len(cache_warnings) == 1, f"Expected one warning, got {caught!r}."
    assert "SqliteCache" in str(cache_warnings[0].message), (
        "Expected the warning to name an installable backend."
    )
    assert manager.configuration.metadata_cache is None, "Expected no cache."
    assert manager.configuration.proxy_mode is PRODUCTION_PROXY_MODE, (
        "Expected the production proxy mode even without a cache."
    )


def test_set_cache_installs_backend_for_metadata_and_queries(
    manager: EntityManager,
) -> None:
    """The same backend serves metadata and queries with a fixed namespace."""
    cache = MemoryCache()

    with warnings.catch_warnings():
        warnings.simplefilter("error", CacheUnavailableWarning)
        manager.set_cache(cache)

    configuration = manager.configuration
    assert configuration.metadata_cache is cache, "Expected the metadata cache."
    assert configuration.query_cache is cache, "Expected the query cache."
    assert cache.namespace == cache_namespace(), "Expected the façade namespace."
    assert configuration.proxy_mode is ProxyAutoGenerate.FILE_NOT_EXISTS_OR_CHANGED, (
        "Expected the production proxy mode."
    )


def test_cache_namespace_is_stable_across_managers(
    session: orm.Session,
    tmp_path: Path,
) -> None:
    """Every manager assigns the same namespace."""
    first, second = MemoryCache(), MemoryCache()
    for cache in (first, second):
        configuration = EntityManagerConfiguration(cache_root=tmp_path)
        EntityManager(session, configuration).set_cache(cache)

    assert first.namespace == second.namespace, "Expected equal namespaces."
    assert len(first.namespace) == 32, "Expected an MD5 hex digest."


def test_set_cache_reports_to_observer(
    session: orm.Session,
    configuration: EntityManagerConfiguration,
) -> None:
    """The observer learns which backend is installed."""
    statistics = QueryStatistics()
    manager = EntityManager(session, configuration, observer=statistics)
    cache = MemoryCache()

    manager.set_cache(cache)

    assert statistics.cache is cache, "Expected the observer to see the cache."
    assert statistics.has_cache, "Expected the observer to report a cache."
    assert statistics.cache_configured_calls == 1, "Expected a single report."


def test_entity_names_are_cached_in_metadata_cache(manager: EntityManager) -> None:
    """Resolving an entity name stores the class in the metadata cache."""
    cache = MemoryCache()
    manager.set_cache(cache)

    manager.find("Author", 1)

    assert cache.get("entity-type:Author") is Author, "Expected the cached class."


def test_bundled_backends_satisfy_cache_protocol(sqlite_cache: SqliteCache) -> None:
    """Both backends implement the cache provider protocol."""
    assert isinstance(MemoryCache(), CacheProvider), "Expected MemoryCache to fit."
    assert isinstance(sqlite_cache, CacheProvider), "Expected SqliteCache to fit."


@pytest.mark.parametrize("backend", ["memory", "sqlite"])
def test_cache_backends_store_and_expire_values(
    backend: str,
    sqlite_cache: SqliteCache,
) -> None:
    """Values are stored, expired, deleted and cleared per namespace."""
    cache: CacheProvider = MemoryCache() if backend == "memory" else sqlite_cache
    cache.namespace = "one"

    cache.set("kept", {"answer": 42})
    cache.set("expired", "gone", ttl=-1)
    cache.set("deleted", "gone")
    cache.delete("deleted")

    assert cache.get("kept") == {"answer": 42}, "Expected the stored value."
    assert cache.get("expired", "default") == "default", "Expected expiry."
    assert cache.get("deleted") is None, "Expected the deleted key to be gone."

    cache.namespace = "two"
    cache.set("kept", "other")
    cache.namespace = "one"
    cache.clear()

    assert cache.get("kept") is None, "Expected the namespace to be cleared."
    cache.namespace = "two"
    assert cache.get("kept") == "other", "Expected other namespaces untouched."


def test_sqlite_cache_persists_across_instances(tmp_path: Path) -> None:
    """Entries survive reopening the cache file."""
    path = tmp_path / "shared.db"
    writer = SqliteCache(path, namespace="ns")
    writer.set("key", [1, 2, 3])
    writer.set("key", [4])
    writer.close()

    reader = SqliteCache(path, namespace="ns")
    try:
        assert reader.get("key") == [4], "Expected the latest stored value."
    finally:
        reader.close()
