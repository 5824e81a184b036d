from __future__ import annotations

import pytest

from fleetrecon.config import ReconcilerConfig
from fleetrecon.exceptions import ConfigError


def test_defaults() -> None:
    config = ReconcilerConfig()
    assert config.conflict_confidence_threshold == 0.6
    assert config.expiring_soon_days == 30
    assert config.critical_days == 7
    assert config.dashboard_cache_ttl == 300
    assert config.batch_timeout is None
    assert config.strict_document_ids is True


def test_from_env(monkeypatch) -> None:
    monkeypatch.setenv("FLEETRECON_CONFLICT_THRESHOLD", "0.75")
    monkeypatch.setenv("FLEETRECON_EXPIRING_SOON_DAYS", "45")
    monkeypatch.setenv("FLEETRECON_BATCH_TIMEOUT", "12.5")
    monkeypatch.setenv("FLEETRECON_STRICT_DOCUMENT_IDS", "off")

    config = ReconcilerConfig.from_env(critical_days=10)

    assert config.conflict_confidence_threshold == 0.75
    assert config.expiring_soon_days == 45
    assert config.critical_days == 10
    assert config.batch_timeout == 12.5
    assert config.strict_document_ids is False


def test_from_env_explicit_override_wins(monkeypatch) -> None:
    monkeypatch.setenv("FLEETRECON_MAX_CONCURRENT_WRITES", "8")
    assert ReconcilerConfig.from_env(max_concurrent_writes=2).max_concurrent_writes == 2


def test_from_env_rejects_non_numeric(monkeypatch) -> None:
    monkeypatch.setenv("FLEETRECON_CRITICAL_DAYS", "soon")
    with pytest.raises(ConfigError):
        ReconcilerConfig.from_env()


@pytest.mark.parametrize(
    "kwargs",
    [
        {"conflict_confidence_threshold": 1.5},
        {"critical_days": 40},
        {"view_cache_ttl": -1},
        {"max_concurrent_writes": 0},
        {"batch_timeout": 0},
    ],
)
def test_invalid_values_raise(kwargs: dict) -> None:
    with pytest.raises(ConfigError):
        ReconcilerConfig(**kwargs)
