"""Tests for the entitygate public API surface.

Examples
--------
Import the package to inspect its public surface:

>>> import entitygate
"""

from __future__ import annotations

import entitygate


def test_public_api_exports_facade_and_errors() -> None:
    """The façade and its error taxonomy are importable from the package."""
    for name in ("EntityManager", "PersistenceError", "InvalidArgumentError"):
        assert hasattr(entitygate, name), f"Expected entitygate.{name}."


def test_public_api_names_exist() -> None:
    """Every name in ``__all__`` resolves."""
    missing = [name for name in entitygate.__all__ if not hasattr(entitygate, name)]
    assert missing == [], f"Missing exports: {missing}"
