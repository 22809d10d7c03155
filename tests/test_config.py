"""Unit tests for environment-driven configuration.

Examples
--------
Run the configuration tests:

>>> pytest tests/test_config.py -v
"""

from __future__ import annotations

import pathlib
import typing as typ

import pytest
from _sample_entities import SampleBase

from entitygate.config import (
    DEFAULT_SLOW_QUERY_THRESHOLD,
    EntityManagerConfiguration,
    ProxyAutoGenerate,
)
from entitygate.entities import Base

if typ.TYPE_CHECKING:
    from pathlib import Path


def test_defaults_use_working_directory_and_entitygate_registry(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> None:
    """An unconfigured environment yields the documented defaults."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("ENTITYGATE_CACHE_DIR", raising=False)
    monkeypatch.delenv("ENTITYGATE_SLOW_QUERY_THRESHOLD", raising=False)

    configuration = EntityManagerConfiguration.from_environment()

    assert configuration.cache_root == pathlib.Path.cwd() / "temp" / "cache", (
        f"Unexpected cache root {configuration.cache_root}."
    )
    assert configuration.slow_query_threshold == DEFAULT_SLOW_QUERY_THRESHOLD, (
        "Expected the default slow query threshold."
    )
    assert configuration.proxy_mode is ProxyAutoGenerate.ALWAYS, (
        "Expected proxies to regenerate until a cache is installed."
    )
    assert configuration.metadata == (Base.metadata,), "Expected entitygate tables."
    assert configuration.metadata_cache is None, "Expected no cache by default."


def test_environment_overrides(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> None:
    """Cache directory and threshold come from the environment."""
    monkeypatch.setenv("ENTITYGATE_CACHE_DIR", str(tmp_path / "custom"))
    monkeypatch.setenv("ENTITYGATE_SLOW_QUERY_THRESHOLD", "0.75")

    configuration = EntityManagerConfiguration.from_environment(
        registries=(SampleBase.registry, Base.registry),
    )

    assert configuration.cache_root == tmp_path / "custom", "Expected the env path."
    assert configuration.slow_query_threshold == 0.75, "Expected the env threshold."
    assert configuration.metadata == (SampleBase.metadata, Base.metadata), (
        "Expected metadata of both registries."
    )


@pytest.mark.parametrize("raw", ["fast", "0", "-2", "  "])
def test_invalid_threshold_falls_back_to_default(
    monkeypatch: pytest.MonkeyPatch,
    raw: str,
) -> None:
    """Unusable thresholds are ignored."""
    monkeypatch.setenv("ENTITYGATE_SLOW_QUERY_THRESHOLD", raw)

    configuration = EntityManagerConfiguration.from_environment()

    assert configuration.slow_query_threshold == DEFAULT_SLOW_QUERY_THRESHOLD, (
        f"Expected the default for {raw!r}."
    )


def test_metadata_is_deduplicated() -> None:
    """Registries sharing metadata contribute it once."""
    configuration = EntityManagerConfiguration(
        registries=(Base.registry, Base.registry),
    )

    assert configuration.metadata == (Base.metadata,), "Expected one metadata."
