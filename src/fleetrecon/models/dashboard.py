"""Fleet-level aggregates.  Always re-derivable, never authoritative."""

from __future__ import annotations

from typing import Literal

from pydantic import Field

from fleetrecon.enums import DataSource, DocumentType, RiskLevel
from fleetrecon.models._base import FleetBaseModel, UtcDatetime


class DashboardSummary(FleetBaseModel):
    total_vehicles: int = 0
    compliant: int = 0
    warning: int = 0
    non_compliant: int = 0
    needs_review: int = 0
    average_score: float = 0.0


class DashboardAlerts(FleetBaseModel):
    expired: int = 0
    expires_today: int = 0
    expiring_this_week: int = 0
    expiring_this_month: int = 0
    active_conflicts: int = 0
    high_risk_vehicles: int = 0


class ActivityItem(FleetBaseModel):
    kind: Literal["vehicle_added", "document_processed"]
    vin: str
    document_id: str
    document_type: DocumentType
    source: DataSource
    file_name: str | None = None
    timestamp: UtcDatetime


class IssueSummary(FleetBaseModel):
    issue: str
    count: int
    severity: RiskLevel
    vins: tuple[str, ...] = ()


class FleetDashboard(FleetBaseModel):
    summary: DashboardSummary = Field(default_factory=DashboardSummary)
    alerts: DashboardAlerts = Field(default_factory=DashboardAlerts)
    recent_activity: tuple[ActivityItem, ...] = ()
    top_issues: tuple[IssueSummary, ...] = ()
    generated_at: UtcDatetime


class FleetStats(FleetBaseModel):
    """Counts over the unified fleet view (persisted and reconciled vehicles)."""

    total_vehicles: int = 0
    active_vehicles: int = 0
    reconciled_vehicles: int = 0
    persisted_only: int = 0
    compliant: int = 0
    warning: int = 0
    non_compliant: int = 0
    expired: int = 0
    expiring_soon: int = 0
    with_conflicts: int = 0
    average_score: float = 0.0
    last_updated: UtcDatetime | None = None
