"""Managed persistence façade over a SQLAlchemy session.

:class:`EntityManager` is the single entry point applications use for
persistence. It forwards every operation to an injected
:class:`sqlalchemy.orm.Session` and guarantees that callers only ever see
:class:`~entitygate.errors.InvalidArgumentError` (raised before anything is
delegated) or :class:`~entitygate.errors.PersistenceError`.

The manager is not thread-safe: like the session it wraps, one instance
serves one unit of work at a time.

Examples
--------
Persist an entity inside a transaction:

>>> manager = EntityManager(session, configuration)
>>> manager.transactional(lambda em: em.persist(article))
True
"""

from __future__ import annotations

import enum
import pathlib
import pkgutil
import stat
import typing as typ
import warnings

import sqlalchemy as sa
import sqlalchemy.exc as sa_exc
from sqlalchemy import event
from sqlalchemy.orm.util import identity_key

from entitygate.cache import provision_cache
from entitygate.config import EntityManagerConfiguration
from entitygate.errors import (
    EntityNotFoundError,
    InvalidArgumentError,
    MappingError,
    OptimisticLockError,
    TransactionRequiredError,
    translate_error,
    translating,
)
from entitygate.logging import get_logger, log_debug, log_error, log_info
from entitygate.repositories import default_registry
from entitygate.schema import SchemaSynchronizer

if typ.TYPE_CHECKING:
    import collections.abc as cabc
    from types import TracebackType

    from alembic.operations import ops
    from sqlalchemy import orm

    from entitygate.ports import CacheProvider, QueryObserver
    from entitygate.repositories import EntityRepository, RepositoryRegistry

    type EntityType = type[object] | str

logger = get_logger(__name__)

CACHE_DIR_NAME = "entitygate"
CACHE_DB_NAME = "entitygate.db"
_CACHE_FILE_MODE = 0o664


class LockMode(enum.Enum):
    """Lock requested when loading an entity with :meth:`EntityManager.find`."""

    NONE = "none"
    OPTIMISTIC = "optimistic"
    PESSIMISTIC_READ = "pessimistic_read"
    PESSIMISTIC_WRITE = "pessimistic_write"


_FOR_UPDATE: dict[LockMode, bool | dict[str, bool] | None] = {
    LockMode.NONE: None,
    LockMode.PESSIMISTIC_READ: {"read": True},
    LockMode.PESSIMISTIC_WRITE: True,
}


def _entity_type_name(entity_type: object) -> str:
    """Return a readable name for a class or entity name."""
    if isinstance(entity_type, type):
        return f"{entity_type.__module__}.{entity_type.__qualname__}"
    return str(entity_type)


class EntityManager:
    """Persistence façade with a uniform error surface.

    Parameters
    ----------
    session : sqlalchemy.orm.Session
        Unit of work every operation is delegated to.
    configuration : EntityManagerConfiguration | None, optional
        Shared configuration. The same instance is kept and mutated for the
        manager's lifetime; a default one is created when omitted.
    repositories : RepositoryRegistry | None, optional
        Repository factories per entity type.
    observer : QueryObserver | None, optional
        Diagnostic observer told about cache and schema maintenance.
    """

    def __init__(
        self,
        session: orm.Session,
        configuration: EntityManagerConfiguration | None = None,
        *,
        repositories: RepositoryRegistry | None = None,
        observer: QueryObserver | None = None,
    ) -> None:
        self._session = session
        self._configuration = (
            configuration if configuration is not None else EntityManagerConfiguration()
        )
        self._repositories = (
            repositories if repositories is not None else default_registry()
        )
        self._observer = observer
        self._cache_db_path: pathlib.Path | None = None
        self._transaction_depth = 0

    @property
    def session(self) -> orm.Session:
        """Session the manager delegates to."""
        return self._session

    @property
    def configuration(self) -> EntityManagerConfiguration:
        """Configuration shared by every delegated call."""
        return self._configuration

    @property
    def repositories(self) -> RepositoryRegistry:
        """Registry used by :meth:`get_repository`."""
        return self._repositories

    @property
    def observer(self) -> QueryObserver | None:
        """Diagnostic observer, if any."""
        return self._observer

    # Entity type resolution

    def _lookup_entity_type(self, name: str) -> type[object] | None:
        """Resolve a class name, qualified name or import path."""
        cache = self._configuration.metadata_cache
        cache_key = f"entity-type:{name}"
        if cache is not None:
            cached = cache.get(cache_key)
            if isinstance(cached, type):
                return cached

        resolved: type[object] | None = None
        for registry in self._configuration.registries:
            for mapper in registry.mappers:
                candidate = mapper.class_
                if name in (candidate.__name__, _entity_type_name(candidate)):
                    resolved = candidate
                    break
            if resolved is not None:
                break
        if resolved is None:
            try:
                imported = pkgutil.resolve_name(name)
            except (ImportError, AttributeError, ValueError):
                return None
            if not isinstance(imported, type):
                return None
            resolved = imported

        if cache is not None:
            cache.set(cache_key, resolved)
        return resolved

    def _resolve_entity_type(self, entity_type: EntityType) -> type[object]:
        """Return the mapped class named by ``entity_type`` or fail fast."""
        resolved = (
            self._lookup_entity_type(entity_type)
            if isinstance(entity_type, str)
            else entity_type
        )
        mapped = isinstance(resolved, type) and (
            sa.inspect(resolved, raiseerr=False) is not None
        )
        if not mapped:
            msg = (
                f'Entity name "{_entity_type_name(entity_type)}" must be a valid '
                "mapped class name. Is your class importable?"
            )
            raise InvalidArgumentError(msg)
        return typ.cast("type[object]", resolved)

    def _mapper_for(
        self,
        entity_type: EntityType,
        *,
        operation: str,
    ) -> orm.Mapper[typ.Any]:
        """Return the mapper of ``entity_type``, raising mapping errors."""
        target = (
            self._lookup_entity_type(entity_type)
            if isinstance(entity_type, str)
            else entity_type
        )
        if target is None:
            raise MappingError(
                operation=operation,
                detail=f'Class "{entity_type}" does not exist.',
            )
        with translating(operation):
            return sa.inspect(target)

    # Unit-of-work operations

    def persist(self, entity: object) -> typ.Self:
        """Stage ``entity`` for insertion on the next flush."""
        with translating("persist"):
            self._session.add(entity)
        return self

    def flush(self, entity: object | None = None) -> typ.Self:
        """Write pending changes to the database.

        Passing ``entity`` is deprecated; use :meth:`flush_scoped` instead.
        The scoped flush still runs for backward compatibility.
        """
        if entity is None:
            return self.flush_all()
        warnings.warn(
            "Calling flush() with an entity to flush specific entities is "
            "deprecated; call flush_scoped(entity) or flush_all() instead.",
            DeprecationWarning,
            stacklevel=2,
        )
        return self.flush_scoped(entity)

    def flush_all(self) -> typ.Self:
        """Write every pending change to the database."""
        with translating("flush"):
            self._session.flush()
        return self

    def flush_scoped(self, entities: object) -> typ.Self:
        """Write pending changes of ``entities`` only.

        Parameters
        ----------
        entities : object
            One entity or a list, tuple or set of entities.
        """
        objects = (
            list(entities)
            if isinstance(entities, list | tuple | set | frozenset)
            else [entities]
        )
        with translating("flush"):
            self._session.flush(objects=objects)
        return self

    def find[EntityT](
        self,
        entity_type: type[EntityT] | str,
        entity_id: object,
        lock_mode: LockMode | str | None = None,
        lock_version: object | None = None,
    ) -> EntityT | None:
        """Load one entity by primary key.

        Parameters
        ----------
        entity_type : type | str
            Mapped class, or its name, qualified name or import path.
        entity_id : object
            Primary key value (a tuple for composite keys).
        lock_mode : LockMode | str | None, optional
            Lock to take while loading.
        lock_version : object | None, optional
            Expected version for :attr:`LockMode.OPTIMISTIC`.

        Returns
        -------
        EntityT | None
            The entity, or ``None`` when no row matches.

        Raises
        ------
        InvalidArgumentError
            If ``entity_type`` does not name a mapped class. Nothing is
            delegated in that case.
        TransactionRequiredError
            If a pessimistic lock is requested outside a transaction.
        OptimisticLockError
            If the entity is not versioned or its version differs from
            ``lock_version``.
        """
        resolved = typ.cast("type[EntityT]", self._resolve_entity_type(entity_type))
        mode = self._lock_mode(lock_mode)
        with translating("find"):
            if mode is LockMode.OPTIMISTIC:
                return self._find_with_version(resolved, entity_id, lock_version)
            with_for_update = _FOR_UPDATE[mode]
            if with_for_update is not None and not self._session.in_transaction():
                raise TransactionRequiredError(
                    operation="find",
                    detail="An open transaction is required for pessimistic locks.",
                )
            return self._session.get(
                resolved,
                entity_id,
                with_for_update=with_for_update,
            )

    @staticmethod
    def _lock_mode(lock_mode: LockMode | str | None) -> LockMode:
        """Coerce ``lock_mode`` into a :class:`LockMode`."""
        if lock_mode is None:
            return LockMode.NONE
        try:
            return LockMode(lock_mode)
        except ValueError as exc:
            msg = f"Unknown lock mode {lock_mode!r}."
            raise InvalidArgumentError(msg) from exc

    def _find_with_version[EntityT](
        self,
        entity_type: type[EntityT],
        entity_id: object,
        lock_version: object | None,
    ) -> EntityT | None:
        """Load an entity and check its version column."""
        mapper = sa.inspect(entity_type)
        if mapper.version_id_col is None:
            raise OptimisticLockError(
                operation="find",
                detail=f"Cannot obtain an optimistic lock on unversioned entity "
                f"{entity_type.__name__}.",
            )
        entity = self._session.get(entity_type, entity_id)
        if entity is None or lock_version is None:
            return entity
        version_key = mapper.get_property_by_column(mapper.version_id_col).key
        current = getattr(entity, version_key)
        if current != lock_version:
            raise OptimisticLockError(
                operation="find",
                detail=f"The optimistic lock failed, version {lock_version!r} was "
                f"expected, but is actually {current!r}.",
            )
        return entity

    def remove(self, entity: object) -> typ.Self:
        """Stage ``entity`` for deletion on the next flush."""
        with translating("remove"):
            self._session.delete(entity)
        return self

    def merge[EntityT](self, entity: EntityT) -> EntityT:
        """Copy the state of a detached ``entity`` into the session.

        Returns
        -------
        EntityT
            The managed instance.
        """
        with translating("merge"):
            return self._session.merge(entity)

    def clear(self, entity_type: object | None = None) -> None:
        """Detach every entity, or only entities of one type.

        Parameters
        ----------
        entity_type : object | None, optional
            A mapped class, its name, or an instance whose type is used.

        Raises
        ------
        MappingError
            If the type cannot be resolved to mapping metadata.
        """
        if entity_type is None:
            self._session.expunge_all()
            return
        if not isinstance(entity_type, type | str):
            entity_type = type(entity_type)
        mapper = self._mapper_for(entity_type, operation="clear")
        with translating("clear"):
            managed = [
                item for item in self._session if isinstance(item, mapper.class_)
            ]
            for entity in managed:
                self._session.expunge(entity)

    def refresh(self, entity: object) -> None:
        """Reload ``entity`` from the database, discarding local changes."""
        with translating("refresh"):
            self._session.refresh(entity)

    def contains(self, entity: object) -> bool:
        """Return whether ``entity`` is managed by this manager's session."""
        return entity in self._session

    def get_repository(self, entity_type: EntityType) -> EntityRepository[typ.Any]:
        """Return the repository registered for ``entity_type``.

        Falls back to :class:`~entitygate.repositories.EntityRepository` when
        no custom repository is registered.
        """
        mapper = self._mapper_for(entity_type, operation="get_repository")
        factory = self._repositories.resolve(mapper.class_)
        return factory(self, mapper)

    def transactional[ResultT](
        self,
        work: cabc.Callable[[EntityManager], ResultT],
    ) -> ResultT | bool:
        """Run ``work`` in a transaction and commit it.

        Nested calls run inside a savepoint of the enclosing transaction.

        Parameters
        ----------
        work : collections.abc.Callable[[EntityManager], ResultT]
            Called with this manager.

        Returns
        -------
        ResultT | bool
            The value returned by ``work``, or ``True`` when it returns
            ``None``.

        Raises
        ------
        PersistenceError
            For any exception raised by ``work`` or by the commit. The
            transaction (or savepoint) is rolled back first.
        """
        nested = self._transaction_depth > 0
        self._transaction_depth += 1
        try:
            result = self._run_nested(work) if nested else self._run_outermost(work)
        except Exception as exc:
            error = translate_error(exc, operation="transactional")
            log_error(
                logger,
                "Rolled back transactional work: %s",
                error,
                exc_info=exc,
            )
            if error is exc:
                raise
            raise error from exc
        finally:
            self._transaction_depth -= 1
        return True if result is None else result

    def _run_outermost[ResultT](
        self,
        work: cabc.Callable[[EntityManager], ResultT],
    ) -> ResultT:
        """Run ``work`` in the session transaction and commit it."""
        if not self._session.in_transaction():
            self._session.begin()
        try:
            result = work(self)
            self._session.commit()
        except BaseException:
            self._session.rollback()
            raise
        log_debug(logger, "Committed transactional work.")
        return result

    def _run_nested[ResultT](
        self,
        work: cabc.Callable[[EntityManager], ResultT],
    ) -> ResultT:
        """Run ``work`` inside a savepoint."""
        with self._session.begin_nested():
            return work(self)

    def get_reference[EntityT](
        self,
        entity_type: type[EntityT] | str,
        entity_id: object,
    ) -> EntityT | EntityReference[EntityT]:
        """Return the entity if already loaded, otherwise a lazy reference.

        Raises
        ------
        InvalidArgumentError
            If ``entity_type`` does not name a mapped class.
        """
        resolved = typ.cast("type[EntityT]", self._resolve_entity_type(entity_type))
        with translating("get_reference"):
            key = identity_key(resolved, entity_id)
            existing = self._session.identity_map.get(key)
        if existing is not None:
            return typ.cast("EntityT", existing)
        return EntityReference(self, resolved, entity_id)

    def copy[EntityT](
        self,
        entity: EntityT,
        deep: bool = False,  # noqa: FBT001, FBT002
    ) -> EntityT:
        """Return a new transient copy of ``entity`` without its primary key.

        Parameters
        ----------
        entity : EntityT
            Mapped instance to copy.
        deep : bool, optional
            Also copy loaded related entities instead of sharing them.

        Raises
        ------
        MappingError
            If ``entity`` is not a mapped instance.
        """
        with translating("copy"):
            return typ.cast("EntityT", self._copy(entity, deep=deep, memo={}))

    def _copy(self, entity: object, *, deep: bool, memo: dict[int, object]) -> object:
        """Copy ``entity``, reusing clones from ``memo`` for shared objects."""
        if id(entity) in memo:
            return memo[id(entity)]
        state = sa.inspect(entity)
        mapper = state.mapper
        clone = mapper.class_manager.new_instance()
        memo[id(entity)] = clone

        primary_keys = {
            mapper.get_property_by_column(column).key for column in mapper.primary_key
        }
        for prop in mapper.column_attrs:
            if prop.key in primary_keys:
                continue
            setattr(clone, prop.key, getattr(entity, prop.key))

        if not deep:
            return clone
        for relationship in mapper.relationships:
            if relationship.key in state.unloaded:
                continue
            value = getattr(entity, relationship.key)
            if value is None:
                continue
            if isinstance(value, dict):
                copied: object = {
                    key: self._copy(item, deep=True, memo=memo)
                    for key, item in value.items()
                }
            elif isinstance(value, set):
                copied = {self._copy(item, deep=True, memo=memo) for item in value}
            elif relationship.uselist:
                copied = [self._copy(item, deep=True, memo=memo) for item in value]
            else:
                copied = self._copy(value, deep=True, memo=memo)
            setattr(clone, relationship.key, copied)
        return clone

    def add_event_listener(
        self,
        events: str | cabc.Iterable[str],
        listener: cabc.Callable[..., typ.Any],
    ) -> typ.Self:
        """Listen for session events such as ``"before_flush"``."""
        names = [events] if isinstance(events, str) else list(events)
        with translating("add_event_listener"):
            for name in names:
                event.listen(self._session, name, listener)
        return self

    # Maintenance

    def set_cache(self, cache: CacheProvider | None = None) -> None:
        """Install ``cache`` as metadata and query cache.

        Without a cache the manager keeps working and emits
        :class:`~entitygate.errors.CacheUnavailableWarning`.
        """
        provision_cache(self._configuration, cache, observer=self._observer)

    def schema_synchronizer(self) -> SchemaSynchronizer:
        """Return a synchronizer bound to the session's engine."""
        return SchemaSynchronizer(
            self._session.get_bind(),
            self._configuration.metadata,
            observer=self._observer,
        )

    def build_cache(
        self,
        save_mode: bool = False,  # noqa: FBT001, FBT002
        invalidate: bool = False,  # noqa: FBT001, FBT002
    ) -> list[ops.MigrateOperation]:
        """Synchronize the database schema when ``invalidate`` is set.

        See :meth:`entitygate.schema.SchemaSynchronizer.build_cache`.
        """
        synchronizer = self.schema_synchronizer()
        with translating(
            "build_cache",
            catch=(sa_exc.SQLAlchemyError, NotImplementedError),
        ):
            return synchronizer.build_cache(save_mode=save_mode, invalidate=invalidate)

    def cache_db_path(self) -> pathlib.Path:
        """Return the local cache database path, creating its directory once."""
        if self._cache_db_path is None:
            directory = self._configuration.cache_root / CACHE_DIR_NAME
            directory.mkdir(parents=True, exist_ok=True)
            self._cache_db_path = directory / CACHE_DB_NAME
            log_info(logger, "Using cache database %s.", self._cache_db_path)
        return self._cache_db_path

    def fix_cache_db_permissions(self) -> None:
        """Make the cache database group-writable if it exists."""
        path = self.cache_db_path()
        if not path.is_file():
            return
        mode = stat.S_IMODE(path.stat().st_mode)
        if mode & _CACHE_FILE_MODE != _CACHE_FILE_MODE:
            path.chmod(mode | _CACHE_FILE_MODE)

    def close(self) -> None:
        """Close the underlying session."""
        with translating("close"):
            self._session.close()

    def __enter__(self) -> typ.Self:
        """Return the manager for use in a ``with`` block."""
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        """Close the session when the ``with`` block exits.

        Parameters
        ----------
        exc_type : type[BaseException] | None
            Exception type raised inside the block, if any.
        exc : BaseException | None
            Exception instance raised inside the block, if any.
        traceback : TracebackType | None
            Traceback of the exception, if any.

        Notes
        -----
        Exceptions from the block are never suppressed. Uncommitted work is
        discarded with the session.
        """
        self.close()


class EntityReference[EntityT]:
    """Lazy stand-in for an entity that has not been loaded yet.

    Attribute access loads the entity through the manager on first use and
    forwards to it from then on.
    """

    __slots__ = ("_entity", "_entity_id", "_entity_type", "_manager")

    def __init__(
        self,
        manager: EntityManager,
        entity_type: type[EntityT],
        entity_id: object,
    ) -> None:
        object.__setattr__(self, "_manager", manager)
        object.__setattr__(self, "_entity_type", entity_type)
        object.__setattr__(self, "_entity_id", entity_id)
        object.__setattr__(self, "_entity", None)

    @property
    def reference_initialized(self) -> bool:
        """Whether the referenced entity has been loaded."""
        return self._entity is not None

    @property
    def reference_target(self) -> EntityT:
        """The loaded entity, loading it if needed."""
        return self._load()

    def _load(self) -> EntityT:
        """Load the referenced entity on first use."""
        if self._entity is None:
            entity = self._manager.find(self._entity_type, self._entity_id)
            if entity is None:
                raise EntityNotFoundError(
                    operation="get_reference",
                    detail=f"Entity of type {self._entity_type.__name__} with id "
                    f"{self._entity_id!r} was not found.",
                )
            object.__setattr__(self, "_entity", entity)
        return typ.cast("EntityT", self._entity)

    def __getattr__(self, name: str) -> typ.Any:  # noqa: ANN401
        if name in EntityReference.__slots__:
            raise AttributeError(name)
        return getattr(self._load(), name)

    def __setattr__(self, name: str, value: object) -> None:
        setattr(self._load(), name, value)

    def __repr__(self) -> str:
        return (
            f"<EntityReference {self._entity_type.__name__}({self._entity_id!r})"
            f"{' loaded' if self.reference_initialized else ''}>"
        )


__all__ = (
    "CACHE_DB_NAME",
    "CACHE_DIR_NAME",
    "EntityManager",
    "EntityReference",
    "LockMode",
)
