"""Ports for collaborators supplied from outside the entity manager.

Cache backends and diagnostic observers are plugged in by the application.
Both are described structurally so any object with the right methods fits.

Examples
--------
Implement a tiny observer that only counts statements:

>>> class Counter:
...     count = 0
...     def cache_configured(self, cache): ...
...     def cache_invalidated(self, invalidated): ...
...     def query_executed(self, statement, duration):
...         self.count += 1
"""

from __future__ import annotations

import typing as typ


@typ.runtime_checkable
class CacheProvider(typ.Protocol):
    """Key/value cache used for mapping metadata and compiled queries.

    Attributes
    ----------
    namespace : str
        Prefix applied to every key so unrelated deployments sharing one
        backend never collide.
    """

    namespace: str

    def get(self, key: str, default: object | None = None) -> object | None:
        """Return the cached value for ``key`` or ``default``."""
        ...

    def set(self, key: str, value: object, ttl: float | None = None) -> None:
        """Store ``value`` under ``key``, optionally expiring after ``ttl`` seconds."""
        ...

    def delete(self, key: str) -> None:
        """Remove ``key`` if present."""
        ...

    def clear(self) -> None:
        """Remove every key in the current namespace."""
        ...


@typ.runtime_checkable
class QueryObserver(typ.Protocol):
    """Receiver of cache state and query statistics, such as a debug panel."""

    def cache_configured(self, cache: CacheProvider | None) -> None:
        """Record which cache backend is installed, if any."""
        ...

    def cache_invalidated(self, invalidated: bool) -> None:  # noqa: FBT001
        """Record whether schema synchronization was requested."""
        ...

    def query_executed(self, statement: str, duration: float) -> None:
        """Record one executed statement and its duration in seconds."""
        ...


__all__ = ("CacheProvider", "QueryObserver")
