"""Behavioural tests for slow query capture and storage.

Examples
--------
Run the slow query capture BDD scenarios:

>>> pytest tests/steps/test_slow_query_capture_steps.py -k slow
"""

from __future__ import annotations

import typing as typ

import pytest
from pytest_bdd import given, parsers, scenario, then, when

from entitygate.entities import SlowQuery
from entitygate.repositories import SlowQueryRepository
from entitygate.slow_queries import SlowQueryMonitor, hash_query

if typ.TYPE_CHECKING:
    from entitygate.manager import EntityManager


class CaptureContext(typ.TypedDict, total=False):
    """Shared state for slow query capture BDD steps."""

    monitor: SlowQueryMonitor
    stored: int


@scenario(
    "../features/slow_query_capture.feature",
    "Slow statements are stored once per hash",
)
def test_slow_statements_are_stored_once_per_hash() -> None:
    """Run the deduplicated storage scenario."""


@scenario(
    "../features/slow_query_capture.feature",
    "Already stored statements are not stored again",
)
def test_already_stored_statements_are_not_stored_again() -> None:
    """Run the known-hash scenario."""


@pytest.fixture
def capture_context() -> CaptureContext:
    """Share state between slow query capture steps."""
    return typ.cast("CaptureContext", {})


def _repository(manager: EntityManager) -> SlowQueryRepository:
    return typ.cast("SlowQueryRepository", manager.get_repository(SlowQuery))


@given(parsers.parse("a slow query monitor with a threshold of {threshold:f} seconds"))
def monitor_created(capture_context: CaptureContext, threshold: float) -> None:
    """Create a monitor with the given threshold."""
    capture_context["monitor"] = SlowQueryMonitor(threshold)


@given(parsers.parse('a slow query record already stored for "{statement}"'))
def record_stored(manager: EntityManager, statement: str) -> None:
    """Store a capture for ``statement`` and commit it."""
    record = SlowQuery(statement, hash_query(statement), 1.0)
    manager.transactional(lambda em: em.persist(record))


@when(parsers.parse('"{statement}" is reported taking {duration:f} seconds'))
def statement_reported(
    capture_context: CaptureContext,
    statement: str,
    duration: float,
) -> None:
    """Report one executed statement to the monitor."""
    capture_context["monitor"].record(statement, duration)


@when("the captured statements are flushed")
def captures_flushed(capture_context: CaptureContext, manager: EntityManager) -> None:
    """Write the buffered captures through the manager."""
    capture_context["stored"] = capture_context["monitor"].flush_into(manager)


@then(
    parsers.re(r"(?P<count>\d+) slow query records? (?:is|are) written"),
    converters={"count": int},
)
def records_written(capture_context: CaptureContext, count: int) -> None:
    """Assert how many records the flush wrote."""
    stored = capture_context["stored"]
    assert stored == count, f"Expected {count} new record(s), got {stored}."


@then(parsers.parse('a slow query record exists for "{statement}"'))
def record_exists(manager: EntityManager, statement: str) -> None:
    """Assert a record is stored under the statement's hash."""
    record = _repository(manager).find_by_hash(hash_query(statement))
    assert record is not None, f"Expected a stored record for {statement!r}."
    assert record.duration == 1.5, "Expected the first capture to be kept."


@then("the monitor buffer is empty")
def buffer_empty(capture_context: CaptureContext) -> None:
    """Assert nothing is left to flush."""
    captured = capture_context["monitor"].captured
    assert captured == (), f"Expected an empty buffer, got {captured!r}."
