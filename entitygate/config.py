"""Configuration shared by an entity manager and its maintenance helpers.

One :class:`EntityManagerConfiguration` instance lives for the whole lifetime
of an :class:`entitygate.EntityManager`. It is mutated in place by cache
provisioning, so every later call observes the new settings.

Examples
--------
Load settings from the environment:

>>> configuration = EntityManagerConfiguration.from_environment()
>>> configuration.slow_query_threshold
0.15
"""

from __future__ import annotations

import dataclasses as dc
import enum
import os
import pathlib
import typing as typ

from entitygate.entities.base import Base
from entitygate.logging import get_logger, log_warning

if typ.TYPE_CHECKING:
    import sqlalchemy as sa
    from sqlalchemy import orm

    from entitygate.ports import CacheProvider

logger = get_logger(__name__)

_CACHE_DIR_ENV = "ENTITYGATE_CACHE_DIR"
_SLOW_QUERY_THRESHOLD_ENV = "ENTITYGATE_SLOW_QUERY_THRESHOLD"
DEFAULT_SLOW_QUERY_THRESHOLD = 0.15


class ProxyAutoGenerate(enum.IntEnum):
    """When lazy-reference proxy classes are regenerated."""

    NEVER = 0
    ALWAYS = 1
    FILE_NOT_EXISTS = 2
    EVAL = 3
    FILE_NOT_EXISTS_OR_CHANGED = 4


PRODUCTION_PROXY_MODE = ProxyAutoGenerate.FILE_NOT_EXISTS_OR_CHANGED


def _default_cache_root() -> pathlib.Path:
    """Return ``temp/cache`` under the working directory."""
    return pathlib.Path.cwd() / "temp" / "cache"


def _parse_positive_float(raw_value: str | None, *, name: str) -> float | None:
    """Parse a positive float, logging and ignoring anything else."""
    if raw_value is None or not raw_value.strip():
        return None
    try:
        value = float(raw_value)
    except ValueError:
        log_warning(logger, "Ignoring non-numeric %s=%r.", name, raw_value)
        return None
    if value <= 0:
        log_warning(logger, "Ignoring non-positive %s=%r.", name, raw_value)
        return None
    return value


@dc.dataclass(slots=True)
class EntityManagerConfiguration:
    """Mutable settings consulted by the entity manager.

    Attributes
    ----------
    metadata_cache : CacheProvider | None
        Cache for mapping metadata lookups.
    query_cache : CacheProvider | None
        Cache for compiled query plans.
    proxy_mode : ProxyAutoGenerate
        Proxy regeneration policy.
    cache_root : pathlib.Path
        Directory under which the on-disk cache directory is created.
    slow_query_threshold : float
        Statements taking at least this many seconds are captured.
    registries : tuple[sqlalchemy.orm.registry, ...]
        Declarative registries whose mappers are the declared entities. They
        drive schema synchronization and resolve entity names.
    """

    metadata_cache: CacheProvider | None = None
    query_cache: CacheProvider | None = None
    proxy_mode: ProxyAutoGenerate = ProxyAutoGenerate.ALWAYS
    cache_root: pathlib.Path = dc.field(default_factory=_default_cache_root)
    slow_query_threshold: float = DEFAULT_SLOW_QUERY_THRESHOLD
    registries: tuple[orm.registry, ...] = (Base.registry,)

    @property
    def metadata(self) -> tuple[sa.MetaData, ...]:
        """Distinct table metadata of the configured registries."""
        return tuple(dict.fromkeys(registry.metadata for registry in self.registries))

    @classmethod
    def from_environment(
        cls,
        *,
        registries: tuple[orm.registry, ...] | None = None,
    ) -> EntityManagerConfiguration:
        """Build a configuration from ``ENTITYGATE_*`` environment variables."""
        raw_cache_dir = os.getenv(_CACHE_DIR_ENV)
        threshold = _parse_positive_float(
            os.getenv(_SLOW_QUERY_THRESHOLD_ENV),
            name=_SLOW_QUERY_THRESHOLD_ENV,
        )
        configuration = cls(
            cache_root=(
                pathlib.Path(raw_cache_dir) if raw_cache_dir else _default_cache_root()
            ),
            slow_query_threshold=threshold or DEFAULT_SLOW_QUERY_THRESHOLD,
        )
        if registries is not None:
            configuration.registries = registries
        return configuration


__all__ = (
    "DEFAULT_SLOW_QUERY_THRESHOLD",
    "PRODUCTION_PROXY_MODE",
    "EntityManagerConfiguration",
    "ProxyAutoGenerate",
)
