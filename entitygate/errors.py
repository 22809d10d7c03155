"""Error taxonomy and SQLAlchemy failure translation.

Callers of :class:`entitygate.EntityManager` only ever see two failure
types: :class:`InvalidArgumentError`, raised before anything is delegated,
and :class:`PersistenceError` (or one of its subclasses) for everything the
ORM, the driver or transactional work can fail with. The original exception
is always kept as ``__cause__``.

Examples
--------
Wrap a raw session call so SQLAlchemy errors surface as persistence errors:

>>> with translating("flush"):
...     session.flush()
"""

from __future__ import annotations

import contextlib
import typing as typ

import sqlalchemy.exc as sa_exc
from sqlalchemy.orm import exc as orm_exc

from entitygate.logging import get_logger, log_error

if typ.TYPE_CHECKING:
    import collections.abc as cabc

logger = get_logger(__name__)


class InvalidArgumentError(ValueError):
    """Raised when a caller passes an entity type that cannot be loaded."""


class PersistenceError(Exception):
    """Base exception for every failure surfaced by the entity manager.

    Attributes
    ----------
    operation : str
        Name of the façade operation that failed (e.g. ``"flush"``).
    detail : str
        Human-readable description taken from the original failure.
    code : str | int | None
        Engine or driver error code, when the original failure carried one.
    """

    def __init__(
        self,
        *,
        operation: str,
        detail: str,
        code: str | int | None = None,
    ) -> None:
        self.operation = operation
        self.detail = detail
        self.code = code
        super().__init__(f"{operation} failed: {detail}")


class MappingError(PersistenceError):
    """Raised when entity mapping metadata cannot be resolved."""


class OptimisticLockError(PersistenceError):
    """Raised when an entity version no longer matches the stored version."""


class TransactionRequiredError(PersistenceError):
    """Raised when an operation needs a transaction state that is not active."""


class ConstraintViolationError(PersistenceError):
    """Raised when storage rejects a change because of an integrity constraint."""


class ConnectionFailedError(PersistenceError):
    """Raised when the database connection fails or drops."""


class EntityNotFoundError(PersistenceError):
    """Raised when a lazily referenced entity no longer exists."""


class CacheUnavailableWarning(RuntimeWarning):
    """Emitted when the entity manager runs without a cache backend."""


type _Classification = tuple[tuple[type[BaseException], ...], type[PersistenceError]]

_CLASSIFICATION: tuple[_Classification, ...] = (
    ((orm_exc.StaleDataError,), OptimisticLockError),
    (
        (
            orm_exc.UnmappedError,
            orm_exc.UnmappedColumnError,
            sa_exc.NoInspectionAvailable,
            sa_exc.ArgumentError,
        ),
        MappingError,
    ),
    ((orm_exc.ObjectDeletedError, sa_exc.NoResultFound), EntityNotFoundError),
    ((sa_exc.PendingRollbackError,), TransactionRequiredError),
    ((sa_exc.IntegrityError,), ConstraintViolationError),
    ((sa_exc.DisconnectionError,), ConnectionFailedError),
)


def _classify(exc: BaseException) -> type[PersistenceError]:
    """Return the persistence error kind matching ``exc``."""
    if isinstance(exc, sa_exc.DBAPIError) and exc.connection_invalidated:
        return ConnectionFailedError
    for exc_types, kind in _CLASSIFICATION:
        if isinstance(exc, exc_types):
            return kind
    transaction_state = "transaction" in str(exc).lower()
    if isinstance(exc, sa_exc.InvalidRequestError) and transaction_state:
        return TransactionRequiredError
    return PersistenceError


def _error_code(exc: BaseException) -> str | int | None:
    """Return the most specific error code carried by ``exc``."""
    original = getattr(exc, "orig", None)
    for attribute in ("pgcode", "sqlstate", "sqlite_errorcode"):
        value = getattr(original, attribute, None)
        if value is not None:
            return typ.cast("str | int", value)
    return typ.cast("str | None", getattr(exc, "code", None))


def translate_error(exc: BaseException, *, operation: str) -> PersistenceError:
    """Map ``exc`` onto the persistence error taxonomy.

    Parameters
    ----------
    exc : BaseException
        The failure caught at the façade boundary.
    operation : str
        Name of the façade operation that was running.

    Returns
    -------
    PersistenceError
        ``exc`` itself when it already is a persistence error, otherwise a
        new error of the matching kind whose ``__cause__`` is ``exc``.
    """
    if isinstance(exc, PersistenceError):
        return exc
    kind = _classify(exc)
    error = kind(
        operation=operation,
        detail=str(exc) or type(exc).__name__,
        code=_error_code(exc),
    )
    error.__cause__ = exc
    return error


@contextlib.contextmanager
def translating(
    operation: str,
    *,
    catch: tuple[type[Exception], ...] = (sa_exc.SQLAlchemyError,),
) -> cabc.Iterator[None]:
    """Re-raise failures of type ``catch`` as persistence errors.

    Parameters
    ----------
    operation : str
        Name recorded on the raised error.
    catch : tuple[type[Exception], ...], optional
        Exception types to translate. Anything else propagates untouched.

    Raises
    ------
    PersistenceError
        For every caught failure.
    """
    try:
        yield
    except PersistenceError:
        raise
    except catch as exc:
        error = translate_error(exc, operation=operation)
        log_error(logger, "%s: %s", type(error).__name__, error, exc_info=exc)
        raise error from exc


__all__ = (
    "CacheUnavailableWarning",
    "ConnectionFailedError",
    "ConstraintViolationError",
    "EntityNotFoundError",
    "InvalidArgumentError",
    "MappingError",
    "OptimisticLockError",
    "PersistenceError",
    "TransactionRequiredError",
    "translate_error",
    "translating",
)
