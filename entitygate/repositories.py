"""Entity repositories and the registry that picks one per entity type.

:class:`EntityRepository` is the generic repository returned by
:meth:`entitygate.EntityManager.get_repository`. Applications register
specialised repositories with a :class:`RepositoryRegistry`.

Examples
--------
Register a custom repository for an entity:

>>> registry = RepositoryRegistry()
>>> @registry.register(Article)
... class ArticleRepository(EntityRepository[Article]):
...     def published(self) -> list[Article]:
...         return self.find_by({"published": True})
"""

from __future__ import annotations

import typing as typ

import sqlalchemy as sa

from entitygate.entities import SlowQuery
from entitygate.errors import translating

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from sqlalchemy import orm

    from entitygate.manager import EntityManager

    type RepositoryFactory = cabc.Callable[
        [EntityManager, orm.Mapper[typ.Any]],
        EntityRepository[typ.Any],
    ]


class EntityRepository[EntityT]:
    """Generic repository bound to one mapped entity type.

    Parameters
    ----------
    manager : EntityManager
        Manager whose session runs the queries.
    mapper : sqlalchemy.orm.Mapper
        Mapping metadata of the entity type.
    """

    def __init__(self, manager: EntityManager, mapper: orm.Mapper[EntityT]) -> None:
        self._manager = manager
        self._mapper = mapper

    @property
    def entity_type(self) -> type[EntityT]:
        """Mapped class served by this repository."""
        return self._mapper.class_

    @property
    def manager(self) -> EntityManager:
        """Manager the repository is bound to."""
        return self._manager

    def _where(
        self,
        statement: sa.Select[typ.Any],
        criteria: cabc.Mapping[str, object] | None,
    ) -> sa.Select[typ.Any]:
        """Apply ``criteria`` to ``statement`` as equality filters."""
        if criteria:
            statement = statement.filter_by(**criteria)
        return statement

    def find(self, entity_id: object) -> EntityT | None:
        """Return the entity with ``entity_id`` or ``None``."""
        return self._manager.find(self.entity_type, entity_id)

    def find_all(self) -> list[EntityT]:
        """Return every stored entity of this type."""
        return self.find_by({})

    def find_by(
        self,
        criteria: cabc.Mapping[str, object],
        order_by: cabc.Sequence[sa.ColumnElement[typ.Any] | str] | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[EntityT]:
        """Return entities whose attributes equal ``criteria``.

        Parameters
        ----------
        criteria : collections.abc.Mapping[str, object]
            Attribute name to required value.
        order_by : collections.abc.Sequence[...] | None, optional
            Column expressions or attribute names to sort by.
        limit : int | None, optional
            Maximum number of rows.
        offset : int | None, optional
            Rows to skip.

        Returns
        -------
        list[EntityT]
            Matching entities.
        """
        with translating("find_by"):
            statement = self._where(sa.select(self.entity_type), criteria)
            for clause in order_by or ():
                if isinstance(clause, str):
                    clause = getattr(self.entity_type, clause)  # noqa: PLW2901
                statement = statement.order_by(clause)
            if limit is not None:
                statement = statement.limit(limit)
            if offset is not None:
                statement = statement.offset(offset)
            return list(self._manager.session.scalars(statement))

    def find_one_by(self, criteria: cabc.Mapping[str, object]) -> EntityT | None:
        """Return the first entity matching ``criteria`` or ``None``."""
        found = self.find_by(criteria, limit=1)
        return found[0] if found else None

    def count(self, criteria: cabc.Mapping[str, object] | None = None) -> int:
        """Return how many stored entities match ``criteria``."""
        with translating("count"):
            statement = self._where(
                sa.select(sa.func.count()).select_from(self.entity_type),
                criteria,
            )
            return int(self._manager.session.scalar(statement) or 0)


class RepositoryRegistry:
    """Map entity types to repository factories.

    Lookups walk the entity's method resolution order, so a registration for
    a base entity also serves its mapped subclasses.
    """

    def __init__(self, default: RepositoryFactory | None = None) -> None:
        self._default: RepositoryFactory = default or EntityRepository
        self._factories: dict[type[object], RepositoryFactory] = {}

    @typ.overload
    def register(
        self,
        entity_type: type[object],
        factory: None = None,
    ) -> cabc.Callable[[RepositoryFactory], RepositoryFactory]: ...

    @typ.overload
    def register(
        self,
        entity_type: type[object],
        factory: RepositoryFactory,
    ) -> RepositoryFactory: ...

    def register(
        self,
        entity_type: type[object],
        factory: RepositoryFactory | None = None,
    ) -> RepositoryFactory | cabc.Callable[[RepositoryFactory], RepositoryFactory]:
        """Register ``factory`` for ``entity_type``; usable as a decorator."""
        if factory is not None:
            self._factories[entity_type] = factory
            return factory

        def decorator(decorated: RepositoryFactory) -> RepositoryFactory:
            self._factories[entity_type] = decorated
            return decorated

        return decorator

    def resolve(self, entity_type: type[object]) -> RepositoryFactory:
        """Return the factory for ``entity_type`` or the default factory."""
        for candidate in entity_type.__mro__:
            factory = self._factories.get(candidate)
            if factory is not None:
                return factory
        return self._default

    def __contains__(self, entity_type: object) -> bool:
        return entity_type in self._factories


_slow_query = typ.cast("sa.Table", SlowQuery.__table__)


class SlowQueryRepository(EntityRepository[SlowQuery]):
    """Lookups over captured slow queries."""

    def find_by_hash(self, query_hash: str) -> SlowQuery | None:
        """Return the capture stored under ``query_hash``."""
        statement = sa.select(SlowQuery).where(_slow_query.c.hash == query_hash)
        with translating("find_by_hash"):
            return self.manager.session.scalars(statement).first()

    def known_hashes(self, hashes: cabc.Collection[str]) -> set[str]:
        """Return the subset of ``hashes`` that is already stored."""
        if not hashes:
            return set()
        statement = sa.select(_slow_query.c.hash).where(_slow_query.c.hash.in_(hashes))
        with translating("known_hashes"):
            return set(self.manager.session.scalars(statement))

    def find_slowest(self, limit: int = 10) -> list[SlowQuery]:
        """Return the ``limit`` slowest captures, slowest first."""
        return self.find_by({}, order_by=[_slow_query.c.duration.desc()], limit=limit)


def default_registry() -> RepositoryRegistry:
    """Return a registry with entitygate's own repositories registered."""
    registry = RepositoryRegistry()
    registry.register(SlowQuery, SlowQueryRepository)
    return registry


__all__ = (
    "EntityRepository",
    "RepositoryRegistry",
    "SlowQueryRepository",
    "default_registry",
)
