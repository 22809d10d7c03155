"""Unit tests for logging configuration helpers.

Examples
--------
Run the logging tests:

>>> pytest tests/test_logging.py -v
"""

from __future__ import annotations

import pytest

from entitygate.logging import (
    LogLevel,
    configure_logging,
    log_debug,
    log_error,
    log_info,
    log_warning,
)


class _RecordingLogger:
    """Logger stand-in that keeps every record it is given."""

    def __init__(self) -> None:
        self.records: list[tuple[str, str]] = []
        self.exc_infos: list[object | None] = []

    def log(
        self,
        level: str,
        message: str,
        /,
        *,
        exc_info: object | None = None,
        stack_info: bool = False,
    ) -> None:
        self.records.append((level, message))
        self.exc_infos.append(exc_info)


@pytest.mark.parametrize(
    ("requested", "expected", "used_default"),
    [
        ("debug", LogLevel.DEBUG, False),
        (" error ", LogLevel.ERROR, False),
        (None, LogLevel.INFO, True),
        ("verbose", LogLevel.INFO, True),
    ],
)
def test_configure_logging_normalises_levels(
    requested: str | None,
    expected: LogLevel,
    *,
    used_default: bool,
) -> None:
    """Level names are case-insensitive and fall back to INFO."""
    level, defaulted = configure_logging(requested, force=True)

    assert level == expected, f"Expected {expected}, got {level}."
    assert defaulted is used_default, "Unexpected default flag."


def test_warn_level_is_deprecated() -> None:
    """``WARN`` maps to ``WARNING`` with a deprecation warning."""
    with pytest.warns(DeprecationWarning, match="WARNING"):
        level, defaulted = configure_logging("WARN", force=True)

    assert level == LogLevel.WARNING, "Expected WARNING."
    assert defaulted is False, "Expected the requested level to be used."


def test_log_helpers_format_and_tag_levels() -> None:
    """Each helper interpolates its arguments at its own level."""
    logger = _RecordingLogger()

    log_debug(logger, "plain")
    log_info(logger, "%d table(s)", 3)
    log_warning(logger, "%s is %s", "cache", "cold")
    log_error(logger, "failed: %r", "flush")

    assert logger.records == [
        (LogLevel.DEBUG, "plain"),
        (LogLevel.INFO, "3 table(s)"),
        (LogLevel.WARNING, "cache is cold"),
        (LogLevel.ERROR, "failed: 'flush'"),
    ], f"Unexpected records {logger.records!r}."


def test_log_helpers_reject_mismatched_arguments() -> None:
    """Templates and arguments that do not line up raise immediately."""
    with pytest.raises(TypeError):
        log_error(_RecordingLogger(), "%s and %s", "one")


def test_log_helpers_forward_exception_info() -> None:
    """An attached exception reaches the logger with the record."""
    logger = _RecordingLogger()
    failure = RuntimeError("boom")

    log_error(logger, "failed")
    log_error(logger, "failed: %s", "flush", exc_info=failure)

    assert logger.exc_infos == [None, failure], (
        f"Unexpected exception info {logger.exc_infos!r}."
    )
