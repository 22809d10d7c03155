"""Managed persistence façade over the SQLAlchemy ORM.

This package exposes the entity manager together with its error taxonomy,
configuration, cache backends, repositories and slow-query capture.

Examples
--------
Create a manager from ``DATABASE_URL`` and persist an entity:

>>> runtime = create_entity_manager()
>>> runtime.manager.set_cache(MemoryCache())
>>> runtime.manager.transactional(lambda em: em.persist(article))
True
"""

from .cache import MemoryCache, SqliteCache
from .config import EntityManagerConfiguration, ProxyAutoGenerate
from .entities import Base, SlowQuery
from .errors import (
    CacheUnavailableWarning,
    ConnectionFailedError,
    ConstraintViolationError,
    EntityNotFoundError,
    InvalidArgumentError,
    MappingError,
    OptimisticLockError,
    PersistenceError,
    TransactionRequiredError,
)
from .factory import PersistenceRuntime, create_entity_manager
from .manager import EntityManager, EntityReference, LockMode
from .observers import QueryStatistics
from .ports import CacheProvider, QueryObserver
from .repositories import EntityRepository, RepositoryRegistry, SlowQueryRepository
from .schema import SchemaSynchronizer, detect_schema_drift
from .slow_queries import SlowQueryMonitor, hash_query

__all__ = (
    "Base",
    "CacheProvider",
    "CacheUnavailableWarning",
    "ConnectionFailedError",
    "ConstraintViolationError",
    "EntityManager",
    "EntityManagerConfiguration",
    "EntityNotFoundError",
    "EntityReference",
    "EntityRepository",
    "InvalidArgumentError",
    "LockMode",
    "MappingError",
    "MemoryCache",
    "OptimisticLockError",
    "PersistenceError",
    "PersistenceRuntime",
    "ProxyAutoGenerate",
    "QueryObserver",
    "QueryStatistics",
    "RepositoryRegistry",
    "SchemaSynchronizer",
    "SlowQuery",
    "SlowQueryMonitor",
    "SlowQueryRepository",
    "SqliteCache",
    "TransactionRequiredError",
    "create_entity_manager",
    "detect_schema_drift",
    "hash_query",
)
