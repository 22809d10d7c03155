"""Logging helpers built on femtologging.

Every entitygate module obtains its logger through :func:`get_logger` and
emits through the ``log_*`` helpers so that message formatting stays
percent-style and lazy across the package.

Examples
--------
Configure logging once at start-up and emit a message:

>>> level, used_default = configure_logging("DEBUG")
>>> log_info(get_logger(__name__), "Synchronized %s table(s).", 3)
"""

from __future__ import annotations

import enum
import typing as typ
import warnings

from femtologging import basicConfig, get_logger


class LogLevel(enum.StrEnum):
    """Log levels accepted by :func:`configure_logging`."""

    TRACE = "TRACE"
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARN = "WARN"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


def _normalise_level(level: str | None) -> tuple[LogLevel, bool]:
    """Return the requested level and whether INFO had to be used instead."""
    requested = level.strip().upper() if level else None
    if not requested or requested not in LogLevel.__members__:
        return (LogLevel.INFO, True)
    normalised = LogLevel(requested)
    if normalised is LogLevel.WARN:
        warnings.warn(
            "LogLevel.WARN is deprecated; use LogLevel.WARNING instead.",
            DeprecationWarning,
            stacklevel=3,
        )
        normalised = LogLevel.WARNING
    return (normalised, False)


def configure_logging(level: str | None, *, force: bool = False) -> tuple[str, bool]:
    """Configure femtologging for the process.

    Parameters
    ----------
    level : str | None
        Requested level name. Missing or unknown names fall back to INFO.
    force : bool, optional
        Replace handlers that are already installed.

    Returns
    -------
    tuple[str, bool]
        The effective level and whether the default had to be used.
    """
    normalised, used_default = _normalise_level(level)
    basicConfig(level=normalised, force=force)
    return (normalised, used_default)


class LoggerLike(typ.Protocol):
    """Anything exposing femtologging's ``log`` call."""

    def log(
        self,
        level: str,
        message: str,
        /,
        *,
        exc_info: object | None = None,
        stack_info: bool = False,
    ) -> None: ...


def _emit(
    logger: LoggerLike,
    level: LogLevel,
    template: str,
    args: tuple[object, ...],
    exc_info: object | None,
) -> None:
    """Format ``template`` with ``args`` and hand the record to ``logger``."""
    message = template % args if args else template
    logger.log(level, message, exc_info=exc_info, stack_info=False)


def log_debug(
    logger: LoggerLike,
    template: str,
    *args: object,
    exc_info: object | None = None,
) -> None:
    """Emit ``template % args`` at DEBUG.

    Parameters
    ----------
    logger : LoggerLike
        Logger obtained from :func:`get_logger`.
    template : str
        Percent-style format string.
    *args : object
        Values interpolated into ``template``.
    exc_info : object | None, optional
        Exception whose traceback is attached to the record.
    """
    _emit(logger, LogLevel.DEBUG, template, args, exc_info)


def log_info(
    logger: LoggerLike,
    template: str,
    *args: object,
    exc_info: object | None = None,
) -> None:
    """Emit ``template % args`` at INFO.

    Parameters
    ----------
    logger : LoggerLike
        Logger obtained from :func:`get_logger`.
    template : str
        Percent-style format string.
    *args : object
        Values interpolated into ``template``.
    exc_info : object | None, optional
        Exception whose traceback is attached to the record.
    """
    _emit(logger, LogLevel.INFO, template, args, exc_info)


def log_warning(
    logger: LoggerLike,
    template: str,
    *args: object,
    exc_info: object | None = None,
) -> None:
    """Emit ``template % args`` at WARNING.

    Parameters
    ----------
    logger : LoggerLike
        Logger obtained from :func:`get_logger`.
    template : str
        Percent-style format string.
    *args : object
        Values interpolated into ``template``.
    exc_info : object | None, optional
        Exception whose traceback is attached to the record.
    """
    _emit(logger, LogLevel.WARNING, template, args, exc_info)


def log_error(
    logger: LoggerLike,
    template: str,
    *args: object,
    exc_info: object | None = None,
) -> None:
    """Emit ``template % args`` at ERROR.

    Parameters
    ----------
    logger : LoggerLike
        Logger obtained from :func:`get_logger`.
    template : str
        Percent-style format string.
    *args : object
        Values interpolated into ``template``.
    exc_info : object | None, optional
        Exception whose traceback is attached to the record. Translated
        persistence failures pass their original cause here.

    Raises
    ------
    TypeError
        If ``template`` and ``args`` do not line up. Formatting happens
        eagerly, so the mismatch surfaces at the call site rather than inside
        a handler thread.
    """
    _emit(logger, LogLevel.ERROR, template, args, exc_info)


__all__ = (
    "LogLevel",
    "LoggerLike",
    "configure_logging",
    "get_logger",
    "log_debug",
    "log_error",
    "log_info",
    "log_warning",
)
