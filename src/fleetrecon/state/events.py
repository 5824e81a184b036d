"""Fleet events and the in-process event bus.

The reconciler, fleet view service and dashboard cache publish
:class:`FleetEvent` objects here.  Listeners are UI/dashboard code that
re-reads state on notification; the core does not know who listens.
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Callable
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

_logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class FleetEventType(StrEnum):
    VEHICLE_ADDED = "vehicle_added"
    VEHICLE_UPDATED = "vehicle_updated"
    VEHICLE_DELETED = "vehicle_deleted"
    DOCUMENT_PROCESSED = "document_processed"
    FLEET_CLEARED = "fleet_cleared"
    CACHE_CLEARED = "cache_cleared"
    FLEET_DATA_CHANGED = "fleet_data_changed"


class ViewEvent(StrEnum):
    """Notifications sent to fleet view subscribers."""

    DATA_CHANGED = "data_changed"
    LOADING_CHANGED = "loading_changed"
    ERROR = "error"


# Events after which any cached fleet aggregate is stale.
_DATA_CHANGING: frozenset[FleetEventType] = frozenset(
    {
        FleetEventType.VEHICLE_ADDED,
        FleetEventType.VEHICLE_UPDATED,
        FleetEventType.VEHICLE_DELETED,
        FleetEventType.DOCUMENT_PROCESSED,
        FleetEventType.FLEET_CLEARED,
    }
)


class FleetEvent(BaseModel):
    """An immutable notification.  Carries a hint, never the authoritative delta."""

    model_config = ConfigDict(frozen=True)

    type: FleetEventType
    timestamp: datetime = Field(default_factory=_utcnow)
    source: str
    vin: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("timestamp")
    @classmethod
    def _ensure_tz_aware(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value


FleetEventListener = Callable[[FleetEvent], Any]


class EventBus:
    """Synchronous publish/subscribe with per-listener isolation.

    A listener that raises is logged and skipped; the publisher and the
    remaining listeners are unaffected.
    """

    def __init__(
        self,
        *,
        history_size: int = 100,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._clock = clock
        self._listeners: dict[FleetEventType, list[FleetEventListener]] = {}
        self._global: list[FleetEventListener] = []
        self._history: deque[FleetEvent] = deque(maxlen=history_size)

    def subscribe(self, event_type: FleetEventType | str, listener: FleetEventListener) -> Callable[[], None]:
        """Register *listener* for one event type.  Returns an unsubscribe callable."""
        key = FleetEventType(event_type)
        self._listeners.setdefault(key, []).append(listener)

        def _unsubscribe() -> None:
            listeners = self._listeners.get(key, [])
            if listener in listeners:
                listeners.remove(listener)

        return _unsubscribe

    def subscribe_all(self, listener: FleetEventListener) -> Callable[[], None]:
        """Register *listener* for every event type."""
        self._global.append(listener)

        def _unsubscribe() -> None:
            if listener in self._global:
                self._global.remove(listener)

        return _unsubscribe

    def emit(
        self,
        event_type: FleetEventType | str,
        data: dict[str, Any] | None = None,
        *,
        source: str,
        vin: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> FleetEvent:
        event = FleetEvent(
            type=FleetEventType(event_type),
            timestamp=self._clock(),
            source=source,
            vin=vin,
            data=dict(data or {}),
            metadata=dict(metadata or {}),
        )
        self._dispatch(event)
        if event.type in _DATA_CHANGING:
            self._dispatch(
                FleetEvent(
                    type=FleetEventType.FLEET_DATA_CHANGED,
                    timestamp=event.timestamp,
                    source=source,
                    vin=vin,
                    data={"trigger": event.type.value},
                )
            )
        return event

    def _dispatch(self, event: FleetEvent) -> None:
        self._history.append(event)
        # Copy: listeners may unsubscribe while being notified.
        for listener in [*self._listeners.get(event.type, ()), *self._global]:
            try:
                listener(event)
            except Exception:
                _logger.warning("Listener for %s failed", event.type.value, exc_info=True)

    def history(self, count: int | None = None) -> list[FleetEvent]:
        events = list(self._history)
        if count is not None:
            return events[-count:] if count > 0 else []
        return events

    def clear_history(self) -> None:
        self._history.clear()

    def listener_counts(self) -> dict[str, int]:
        counts = {event_type.value: len(listeners) for event_type, listeners in self._listeners.items() if listeners}
        counts["*"] = len(self._global)
        return counts

    def remove_all_listeners(self) -> None:
        self._listeners.clear()
        self._global.clear()
