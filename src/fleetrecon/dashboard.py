"""Time-boxed memoization of the fleet dashboard aggregate."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from fleetrecon.config import ReconcilerConfig
from fleetrecon.enums import ComplianceBand, ComplianceStatus, RiskLevel
from fleetrecon.models.dashboard import (
    ActivityItem,
    DashboardAlerts,
    DashboardSummary,
    FleetDashboard,
    IssueSummary,
)
from fleetrecon.models.vehicle import VehicleState
from fleetrecon.reconciler import VehicleReconciler, expiration_alerts
from fleetrecon.state.events import EventBus, FleetEvent, FleetEventType

_logger = logging.getLogger(__name__)

_EVENT_SOURCE = "dashboard_cache"


def _issue(issue: str, severity: RiskLevel, vehicles: list[VehicleState]) -> IssueSummary:
    return IssueSummary(issue=issue, count=len(vehicles), severity=severity, vins=tuple(v.vin for v in vehicles))


class DashboardCache:
    """Read-only memoized dashboard derived from the reconciler.

    Within ``dashboard_cache_ttl`` the identical :class:`FleetDashboard`
    object is returned.  When an event bus is given, any fleet data change
    drops the cached aggregate so the next read recomputes it.
    """

    def __init__(
        self,
        reconciler: VehicleReconciler,
        *,
        config: ReconcilerConfig | None = None,
        event_bus: EventBus | None = None,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self._reconciler = reconciler
        self._config = config or reconciler.config
        self._bus = event_bus
        self._monotonic = monotonic
        self._cached: FleetDashboard | None = None
        self._cached_at: float | None = None
        if event_bus is not None:
            event_bus.subscribe(FleetEventType.FLEET_DATA_CHANGED, self._on_data_changed)

    def _on_data_changed(self, event: FleetEvent) -> None:
        self._cached = None
        self._cached_at = None

    @property
    def cache_age(self) -> float | None:
        if self._cached_at is None:
            return None
        return self._monotonic() - self._cached_at

    def get_fleet_dashboard(self) -> FleetDashboard:
        age = self.cache_age
        if self._cached is not None and age is not None and age < self._config.dashboard_cache_ttl:
            _logger.debug("Dashboard cache hit (age=%.1fs)", age)
            return self._cached

        started = self._monotonic()
        dashboard = self._compute()
        self._cached = dashboard
        self._cached_at = self._monotonic()
        _logger.debug(
            "Dashboard recomputed for %d vehicles in %.3fs",
            dashboard.summary.total_vehicles,
            self._cached_at - started,
        )
        return dashboard

    def clear_cache(self) -> None:
        """Force recomputation on the next read."""
        self._cached = None
        self._cached_at = None
        if self._bus is not None:
            self._bus.emit(FleetEventType.CACHE_CLEARED, {"cache": "dashboard"}, source=_EVENT_SOURCE)

    def _compute(self) -> FleetDashboard:
        vehicles = self._reconciler.get_all_vehicles()
        total = len(vehicles)
        bands = [v.compliance_band for v in vehicles]
        buckets = expiration_alerts(vehicles)

        summary = DashboardSummary(
            total_vehicles=total,
            compliant=bands.count(ComplianceBand.COMPLIANT),
            warning=bands.count(ComplianceBand.WARNING),
            non_compliant=bands.count(ComplianceBand.NON_COMPLIANT),
            needs_review=sum(1 for v in vehicles if v.needs_review),
            average_score=round(sum(v.compliance_score for v in vehicles) / total, 1) if total else 0.0,
        )
        alerts = DashboardAlerts(
            expired=buckets.expired,
            expires_today=buckets.expires_today,
            expiring_this_week=buckets.expires_this_week,
            expiring_this_month=buckets.expires_this_month,
            active_conflicts=sum(len(v.active_conflicts) for v in vehicles),
            high_risk_vehicles=sum(1 for v in vehicles if v.risk_level in (RiskLevel.HIGH, RiskLevel.CRITICAL)),
        )

        recent = tuple(
            ActivityItem(
                kind="vehicle_added" if created else "document_processed",
                vin=document.vin,
                document_id=document.document_id,
                document_type=document.document_type,
                source=document.source,
                file_name=document.file_name,
                timestamp=document.received_at,
            )
            for document, created in self._reconciler.recent_documents(self._config.recent_activity_limit)
        )

        def with_status(status: ComplianceStatus) -> list[VehicleState]:
            return [v for v in vehicles if any(item.status == status for item in v.compliance_status.values())]

        issues = [
            _issue(
                "Non-compliant vehicles",
                RiskLevel.CRITICAL,
                [v for v in vehicles if v.compliance_band == ComplianceBand.NON_COMPLIANT],
            ),
            _issue("Expired documents", RiskLevel.CRITICAL, with_status(ComplianceStatus.EXPIRED)),
            _issue("Documents expiring soon", RiskLevel.HIGH, with_status(ComplianceStatus.EXPIRING_SOON)),
            _issue("Unresolved data conflicts", RiskLevel.MEDIUM, [v for v in vehicles if v.has_conflicts]),
            _issue("Fields needing review", RiskLevel.MEDIUM, [v for v in vehicles if v.needs_review]),
        ]
        top_issues = sorted(
            (issue for issue in issues if issue.count > 0),
            key=lambda issue: (-issue.count, issue.severity.severity),
        )[: self._config.top_issues_limit]

        return FleetDashboard(
            summary=summary,
            alerts=alerts,
            recent_activity=recent,
            top_issues=tuple(top_issues),
            generated_at=self._reconciler.now(),
        )
