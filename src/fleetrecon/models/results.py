"""Result objects returned by the reconciler and the fleet view service."""

from __future__ import annotations

from collections.abc import Callable
from datetime import date
from typing import Any

from pydantic import Field

from fleetrecon.enums import (
    ComplianceBand,
    ComplianceCategory,
    FieldName,
    RiskLevel,
    Urgency,
    VehicleLifecycle,
)
from fleetrecon.ingestion.normalize import normalize_text
from fleetrecon.models._base import FleetBaseModel, UtcDatetime
from fleetrecon.models.documents import DocumentExtraction
from fleetrecon.models.vehicle import Conflict, VehicleState

VehiclePredicate = Callable[[VehicleState], bool]


class IngestResult(FleetBaseModel):
    """Outcome of ``add_document``: only what this extraction introduced."""

    success: bool = True
    vin: str
    document_id: str
    is_new_vehicle: bool = False
    duplicate: bool = False
    conflicts: tuple[Conflict, ...] = ()
    warnings: tuple[str, ...] = ()


class SyncResult(FleetBaseModel):
    """Outcome of a multi-step fleet operation.

    Always carries counts and a readable error list, never a bare flag.
    """

    success: bool
    processed: int = 0
    failed: int = 0
    errors: tuple[str, ...] = ()
    rollback_available: bool = False


class VehicleSearchFilter(FleetBaseModel):
    """Predicate combinator for ``search_vehicles``.  Unset criteria match everything."""

    vin: str | None = None
    make: str | None = None
    model: str | None = None
    license_plate: str | None = None
    state: str | None = None
    compliance_band: ComplianceBand | None = None
    lifecycle: VehicleLifecycle | None = None
    risk_level: RiskLevel | None = None
    has_conflicts: bool | None = None
    expires_within_days: int | None = None
    needs_review: bool | None = None

    def predicates(self) -> list[VehiclePredicate]:
        checks: list[VehiclePredicate] = []
        if self.vin:
            needle = self.vin.upper()
            checks.append(lambda v: needle in v.vin)
        if self.make:
            checks.append(_substring(FieldName.MAKE, self.make))
        if self.model:
            checks.append(_substring(FieldName.MODEL, self.model))
        if self.license_plate:
            checks.append(_substring(FieldName.LICENSE_PLATE, self.license_plate))
        if self.state:
            wanted = normalize_text(self.state)
            checks.append(lambda v: normalize_text(v.value(FieldName.STATE)) == wanted)
        if self.compliance_band is not None:
            band = self.compliance_band
            checks.append(lambda v: v.compliance_band == band)
        if self.lifecycle is not None:
            lifecycle = self.lifecycle
            checks.append(lambda v: v.lifecycle == lifecycle)
        if self.risk_level is not None:
            risk = self.risk_level
            checks.append(lambda v: v.risk_level == risk)
        if self.has_conflicts is not None:
            flag = self.has_conflicts
            checks.append(lambda v: v.has_conflicts == flag)
        if self.expires_within_days is not None:
            limit = self.expires_within_days
            checks.append(
                lambda v: any(
                    item.days_until_expiry is not None and item.days_until_expiry <= limit
                    for item in v.compliance_status.values()
                )
            )
        if self.needs_review is not None:
            review = self.needs_review
            checks.append(lambda v: v.needs_review == review)
        return checks

    def matches(self, vehicle: VehicleState) -> bool:
        return all(check(vehicle) for check in self.predicates())


def _substring(field: FieldName, needle: str) -> VehiclePredicate:
    folded = normalize_text(needle) or ""

    def check(vehicle: VehicleState) -> bool:
        value = normalize_text(vehicle.value(field))
        return value is not None and folded in value

    return check


class ExpirationAlerts(FleetBaseModel):
    expired: int = 0
    expires_today: int = 0
    expires_this_week: int = 0
    expires_this_month: int = 0


class DocumentsPerVehicle(FleetBaseModel):
    average: float = 0.0
    minimum: int = 0
    maximum: int = 0


class ReconcilerStats(FleetBaseModel):
    total_vehicles: int = 0
    total_documents: int = 0
    documents_per_vehicle: DocumentsPerVehicle = Field(default_factory=DocumentsPerVehicle)
    by_band: dict[ComplianceBand, int] = Field(default_factory=dict)
    by_lifecycle: dict[VehicleLifecycle, int] = Field(default_factory=dict)
    active_conflicts: int = 0
    conflicts_by_field: dict[FieldName, int] = Field(default_factory=dict)
    expiration_alerts: ExpirationAlerts = Field(default_factory=ExpirationAlerts)
    generated_at: UtcDatetime


class CategoryExpiry(FleetBaseModel):
    category: ComplianceCategory
    expiration_date: date
    days_until_expiry: int
    urgency: Urgency


class ExpiringVehicle(FleetBaseModel):
    vin: str
    make: str | None = None
    model: str | None = None
    license_plate: str | None = None
    expirations: tuple[CategoryExpiry, ...]

    @property
    def soonest_days(self) -> int:
        return min(item.days_until_expiry for item in self.expirations)


class ComplianceBreakdownRow(FleetBaseModel):
    category: ComplianceCategory
    current: int = 0
    expiring_soon: int = 0
    expired: int = 0
    missing: int = 0
    compliance_rate: float = 0.0


class FleetExport(FleetBaseModel):
    vehicles: tuple[VehicleState, ...]
    documents: dict[str, tuple[DocumentExtraction, ...]]
    stats: ReconcilerStats
    exported_at: UtcDatetime

    def to_json_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)
