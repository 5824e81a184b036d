"""Engine configuration for fleetrecon."""

from __future__ import annotations

import dataclasses
import os
from typing import Any

from fleetrecon.exceptions import ConfigError


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _env_optional_float(value: str | None) -> float | None:
    if value is None:
        return None
    text = value.strip().lower()
    if text in {"", "none", "off", "0"}:
        return None
    return float(text)


@dataclasses.dataclass(frozen=True)
class ReconcilerConfig:
    """Tunables shared by the reconciler, fleet view and dashboard cache.

    Parameters
    ----------
    conflict_confidence_threshold : float
        Minimum extraction confidence both sides of an identity-field
        disagreement need before it is recorded as a conflict.
    expiring_soon_days : int
        Upper bound (inclusive) of the ``expiring_soon`` status and the
        ``warning`` urgency bucket.
    critical_days : int
        Upper bound (inclusive) of the ``critical`` urgency bucket.
    low_confidence_threshold : float
        Extractions below this confidence produce an ingest warning.
    view_cache_ttl : float
        Seconds the unified fleet view stays fresh before
        ``initialize_data`` reloads it.
    dashboard_cache_ttl : float
        Seconds a computed fleet dashboard is served from cache.
    snapshot_max_age : float
        Seconds after which a committed vehicle snapshot is re-evaluated
        against the clock on read (expiry math is time dependent).
    max_concurrent_writes : int
        Bound on concurrent repository writes during a batch.
    batch_timeout : float or None
        Optional deadline for a whole batch.  Exceeding it is treated as
        a catastrophic failure and rolls the batch back.
    batch_confidence : float
        Confidence assigned to records forwarded into the reconciler by
        ``add_vehicles``.
    event_history_size : int
        Number of events the event bus keeps for inspection.
    recent_activity_limit : int
        Length of the dashboard's recent activity list.
    top_issues_limit : int
        Length of the dashboard's top issues list.
    strict_document_ids : bool
        Reject a re-used ``document_id`` whose content differs.  When
        disabled the later extraction is stored under a derived id.
    """

    conflict_confidence_threshold: float = 0.6
    expiring_soon_days: int = 30
    critical_days: int = 7
    low_confidence_threshold: float = 0.7
    view_cache_ttl: float = 5 * 60
    dashboard_cache_ttl: float = 5 * 60
    snapshot_max_age: float = 60.0
    max_concurrent_writes: int = 4
    batch_timeout: float | None = None
    batch_confidence: float = 0.9
    event_history_size: int = 100
    recent_activity_limit: int = 10
    top_issues_limit: int = 5
    strict_document_ids: bool = True

    def __post_init__(self) -> None:
        for name in ("conflict_confidence_threshold", "low_confidence_threshold", "batch_confidence"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ConfigError(f"{name} must be within [0, 1], got {value}")
        if self.critical_days < 0 or self.expiring_soon_days < self.critical_days:
            raise ConfigError(
                f"expected 0 <= critical_days <= expiring_soon_days, got {self.critical_days} / {self.expiring_soon_days}"
            )
        for name in ("view_cache_ttl", "dashboard_cache_ttl", "snapshot_max_age"):
            if getattr(self, name) < 0:
                raise ConfigError(f"{name} must not be negative")
        if self.max_concurrent_writes < 1:
            raise ConfigError("max_concurrent_writes must be at least 1")
        if self.batch_timeout is not None and self.batch_timeout <= 0:
            raise ConfigError("batch_timeout must be positive when set")
        if self.event_history_size < 0:
            raise ConfigError("event_history_size must not be negative")

    @classmethod
    def from_env(cls, **overrides: Any) -> ReconcilerConfig:
        """Create configuration from ``FLEETRECON_*`` environment variables.

        Explicit keyword arguments override environment values.
        """
        env = os.environ

        _ENV_FLOAT_MAP = {
            "FLEETRECON_CONFLICT_THRESHOLD": "conflict_confidence_threshold",
            "FLEETRECON_LOW_CONFIDENCE": "low_confidence_threshold",
            "FLEETRECON_VIEW_CACHE_TTL": "view_cache_ttl",
            "FLEETRECON_DASHBOARD_CACHE_TTL": "dashboard_cache_ttl",
            "FLEETRECON_SNAPSHOT_MAX_AGE": "snapshot_max_age",
            "FLEETRECON_BATCH_CONFIDENCE": "batch_confidence",
        }
        _ENV_INT_MAP = {
            "FLEETRECON_EXPIRING_SOON_DAYS": "expiring_soon_days",
            "FLEETRECON_CRITICAL_DAYS": "critical_days",
            "FLEETRECON_MAX_CONCURRENT_WRITES": "max_concurrent_writes",
            "FLEETRECON_EVENT_HISTORY_SIZE": "event_history_size",
        }

        config_kwargs: dict[str, Any] = {}
        try:
            for env_key, field_name in _ENV_FLOAT_MAP.items():
                val = env.get(env_key)
                if val is not None and field_name not in overrides:
                    config_kwargs[field_name] = float(val)
            for env_key, field_name in _ENV_INT_MAP.items():
                val = env.get(env_key)
                if val is not None and field_name not in overrides:
                    config_kwargs[field_name] = int(val)
            timeout_env = env.get("FLEETRECON_BATCH_TIMEOUT")
            if timeout_env is not None and "batch_timeout" not in overrides:
                config_kwargs["batch_timeout"] = _env_optional_float(timeout_env)
        except ValueError as exc:
            raise ConfigError(f"Invalid numeric FLEETRECON_* value: {exc}") from exc

        if "strict_document_ids" not in overrides:
            config_kwargs["strict_document_ids"] = _env_bool(env.get("FLEETRECON_STRICT_DOCUMENT_IDS"), True)

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
