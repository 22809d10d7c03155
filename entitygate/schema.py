"""Schema synchronization between declared entity metadata and a live database.

The synchronizer asks Alembic's autogenerate machinery which operations would
bring the database in line with the declared metadata, optionally drops the
destructive ones, and applies the rest on a single connection. It is meant
for development and deployment tooling, not for request handling.

Examples
--------
Create missing tables without dropping anything:

>>> SchemaSynchronizer(engine, (Base.metadata,)).build_cache(
...     save_mode=True, invalidate=True
... )
"""

from __future__ import annotations

import contextlib
import itertools
import typing as typ

import sqlalchemy as sa
from alembic.autogenerate import compare_metadata, produce_migrations
from alembic.migration import MigrationContext
from alembic.operations import AbstractOperations, Operations, ops

from entitygate.logging import get_logger, log_debug, log_info

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from entitygate.ports import QueryObserver

logger = get_logger(__name__)

DESTRUCTIVE_OPERATIONS: tuple[type[ops.MigrateOperation], ...] = (
    ops.DropTableOp,
    ops.DropColumnOp,
    ops.DropIndexOp,
    ops.DropConstraintOp,
)

type MetadataTarget = sa.MetaData | list[sa.MetaData]
type TableKey = tuple[str, str | None]

_IN_PLACE_OPERATIONS: tuple[type[ops.MigrateOperation], ...] = (
    ops.AlterColumnOp,
    ops.AddColumnOp,
    ops.DropColumnOp,
    ops.CreatePrimaryKeyOp,
    ops.CreateUniqueConstraintOp,
    ops.CreateCheckConstraintOp,
    ops.DropConstraintOp,
)


def _target(metadata: cabc.Sequence[sa.MetaData]) -> MetadataTarget:
    """Return the metadata in the shape Alembic accepts."""
    if len(metadata) == 1:
        return metadata[0]
    return list(metadata)


def _migration_context(connection: sa.Connection) -> MigrationContext:
    """Return a migration context that also compares column types."""
    return MigrationContext.configure(connection, opts={"compare_type": True})


def _flatten(
    operations: cabc.Iterable[ops.MigrateOperation],
) -> cabc.Iterator[ops.MigrateOperation]:
    """Yield individual operations, unpacking per-table containers."""
    for operation in operations:
        if isinstance(operation, ops.OpContainer):
            yield from _flatten(operation.ops)
        else:
            yield operation


def _altered_table(operation: ops.MigrateOperation) -> TableKey | None:
    """Return the table ``operation`` alters in place, if it alters one."""
    if isinstance(operation, ops.CreateForeignKeyOp):
        return (operation.source_table, operation.kw.get("source_schema"))
    if isinstance(operation, _IN_PLACE_OPERATIONS):
        table = typ.cast("ops.AlterTableOp", operation)
        return (table.table_name, table.schema)
    return None


def _invoke(runner: AbstractOperations, operation: ops.MigrateOperation) -> None:
    """Run one operation, logging its kind."""
    log_debug(logger, "Applying %s.", type(operation).__name__)
    runner.invoke(operation)


@contextlib.contextmanager
def _begin(bind: sa.Engine | sa.Connection) -> cabc.Iterator[sa.Connection]:
    """Yield a connection, opening a transaction when given an engine."""
    if isinstance(bind, sa.Connection):
        yield bind
        return
    with bind.begin() as connection:
        yield connection


def detect_schema_drift(
    bind: sa.Engine | sa.Connection,
    metadata: cabc.Sequence[sa.MetaData],
) -> list[tuple[object, ...]]:
    """Compare the live schema against ``metadata`` without changing it.

    Parameters
    ----------
    bind : sqlalchemy.Engine | sqlalchemy.Connection
        Database to inspect.
    metadata : collections.abc.Sequence[sqlalchemy.MetaData]
        Declared entity metadata.

    Returns
    -------
    list[tuple[object, ...]]
        Alembic difference tuples. Empty when the schema is current.
    """
    with _begin(bind) as connection:
        diffs = compare_metadata(_migration_context(connection), _target(metadata))
    return typ.cast("list[tuple[object, ...]]", diffs)


class SchemaSynchronizer:
    """Bring a database schema into agreement with declared metadata.

    Parameters
    ----------
    bind : sqlalchemy.Engine | sqlalchemy.Connection
        Database to synchronize. An engine is used through one connection
        per call; a connection is used as-is inside its current transaction.
    metadata : collections.abc.Sequence[sqlalchemy.MetaData]
        Declared entity metadata.
    observer : QueryObserver | None, optional
        Told whether each call requested invalidation.
    """

    def __init__(
        self,
        bind: sa.Engine | sa.Connection,
        metadata: cabc.Sequence[sa.MetaData],
        *,
        observer: QueryObserver | None = None,
    ) -> None:
        self._bind = bind
        self._metadata = tuple(metadata)
        self._observer = observer

    def declared_tables(self) -> list[sa.Table]:
        """Return every table declared across the configured metadata."""
        return [
            table for metadata in self._metadata for table in metadata.sorted_tables
        ]

    def pending_operations(
        self,
        *,
        save_mode: bool = False,
    ) -> list[ops.MigrateOperation]:
        """Return the operations needed to synchronize the schema.

        Parameters
        ----------
        save_mode : bool, optional
            Leave out drop operations so existing structures survive.

        Returns
        -------
        list[alembic.operations.ops.MigrateOperation]
            Individual operations in application order.
        """
        with _begin(self._bind) as connection:
            script = produce_migrations(
                _migration_context(connection),
                _target(self._metadata),
            )
        upgrade_ops = script.upgrade_ops
        operations = list(_flatten(upgrade_ops.ops if upgrade_ops is not None else ()))
        if save_mode:
            operations = [
                operation
                for operation in operations
                if not isinstance(operation, DESTRUCTIVE_OPERATIONS)
            ]
        return operations

    def apply(self, operations: cabc.Sequence[ops.MigrateOperation]) -> None:
        """Execute ``operations`` inside one transaction.

        SQLite cannot alter columns or constraints in place, so on SQLite
        consecutive operations on one table run through Alembic's batch mode,
        which recreates the table with the new definition.
        """
        with _begin(self._bind) as connection:
            runner = Operations(_migration_context(connection))
            if connection.dialect.name != "sqlite":
                for operation in operations:
                    _invoke(runner, operation)
                return
            for table, group in itertools.groupby(operations, key=_altered_table):
                if table is None:
                    for operation in group:
                        _invoke(runner, operation)
                    continue
                table_name, schema = table
                with runner.batch_alter_table(table_name, schema=schema) as batch:
                    for operation in group:
                        _invoke(batch, operation)

    def build_cache(
        self,
        *,
        save_mode: bool = False,
        invalidate: bool = False,
    ) -> list[ops.MigrateOperation]:
        """Synchronize the schema when ``invalidate`` is requested.

        Parameters
        ----------
        save_mode : bool, optional
            Additive-only synchronization when true; drops conflicting
            structures when false.
        invalidate : bool, optional
            Without it the schema is assumed current and nothing is inspected.

        Returns
        -------
        list[alembic.operations.ops.MigrateOperation]
            The operations that were applied, empty when nothing ran.
        """
        if self._observer is not None:
            self._observer.cache_invalidated(invalidate)
        if not invalidate:
            return []
        if not self.declared_tables():
            log_debug(logger, "No declared entity metadata; skipping schema sync.")
            return []
        operations = self.pending_operations(save_mode=save_mode)
        if not operations:
            log_debug(logger, "Schema is current; nothing to apply.")
            return []
        self.apply(operations)
        log_info(
            logger,
            "Applied %s schema operation(s) (%s mode).",
            len(operations),
            "additive" if save_mode else "destructive",
        )
        return operations


__all__ = ("DESTRUCTIVE_OPERATIONS", "SchemaSynchronizer", "detect_schema_drift")
