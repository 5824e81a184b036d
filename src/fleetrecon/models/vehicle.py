"""Reconciled vehicle state and the persistence-side vehicle rows."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, ClassVar

from pydantic import Field, computed_field, field_validator

from fleetrecon.enums import (
    ComplianceBand,
    ComplianceCategory,
    ComplianceStatus,
    ConflictFlag,
    DataSource,
    DocumentType,
    FieldName,
    RiskLevel,
    Urgency,
    VehicleLifecycle,
    VehicleStatus,
    ViewSource,
)
from fleetrecon.ingestion.normalize import parse_date, parse_year, safe_str
from fleetrecon.models._base import FleetBaseModel, UtcDatetime
from fleetrecon.models.documents import DocumentExtraction

_IDENTITY_FIELDS = (FieldName.MAKE, FieldName.MODEL, FieldName.YEAR)


def band_for_score(score: int) -> ComplianceBand:
    """Score band: >= 90 compliant, >= 50 warning, below is non-compliant."""
    if score >= 90:
        return ComplianceBand.COMPLIANT
    if score >= 50:
        return ComplianceBand.WARNING
    return ComplianceBand.NON_COMPLIANT


class FieldGap(FleetBaseModel):
    """A value that was extracted but could not be interpreted.

    Gaps are data, not errors: the field degrades to "missing" and is
    flagged for review.
    """

    field: FieldName
    document_id: str
    raw_value: Any = None
    reason: str


class FieldState(FleetBaseModel):
    """Resolved state of one attribute of one vehicle."""

    field: FieldName
    current_value: Any = None
    current_source: DataSource | None = None
    current_confidence: float | None = None
    current_document_id: str | None = None
    current_document_type: DocumentType | None = None
    history: tuple[str, ...] = Field(default=(), description="document_ids populating the field, ingestion order")
    conflicted: bool = False
    needs_review: bool = False
    gaps: tuple[FieldGap, ...] = ()

    @property
    def known(self) -> bool:
        return self.current_value is not None


class Conflict(FleetBaseModel):
    """Two credible extractions disagree on an identity field.

    ``value_a`` is the currently selected value, ``value_b`` the best-ranked
    dissenting one.  Conflicts are never auto-resolved.
    """

    conflict_id: str
    vin: str
    field: FieldName
    value_a: Any
    source_a: DataSource
    document_a: str
    confidence_a: float
    value_b: Any
    source_b: DataSource
    document_b: str
    confidence_b: float
    detected_at: UtcDatetime


class CategoryCompliance(FleetBaseModel):
    category: ComplianceCategory
    status: ComplianceStatus
    expiration_date: date | None = None
    days_until_expiry: int | None = None
    urgency: Urgency | None = None


class VehicleState(FleetBaseModel):
    """The reconciled entity.  Readers always receive frozen snapshots."""

    vin: str
    fields: dict[FieldName, FieldState] = Field(default_factory=dict)
    documents: tuple[DocumentExtraction, ...] = ()
    compliance_status: dict[ComplianceCategory, CategoryCompliance] = Field(default_factory=dict)
    compliance_score: int = Field(default=0, ge=0, le=100)
    risk_level: RiskLevel = RiskLevel.LOW
    active_conflicts: tuple[Conflict, ...] = ()
    first_seen: UtcDatetime
    last_updated: UtcDatetime
    evaluated_at: UtcDatetime

    @computed_field  # type: ignore[prop-decorator]
    @property
    def document_count(self) -> int:
        return len(self.documents)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def needs_review(self) -> bool:
        return any(state.needs_review for state in self.fields.values())

    @computed_field  # type: ignore[prop-decorator]
    @property
    def compliance_band(self) -> ComplianceBand:
        return band_for_score(self.compliance_score)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def lifecycle(self) -> VehicleLifecycle:
        if not any(state.known for state in self.fields.values()):
            return VehicleLifecycle.UNKNOWN
        if not all(self.value(field) is not None for field in _IDENTITY_FIELDS):
            return VehicleLifecycle.PARTIAL
        if all(item.status == ComplianceStatus.MISSING for item in self.compliance_status.values()):
            return VehicleLifecycle.COMPLETE
        band = self.compliance_band
        if band == ComplianceBand.COMPLIANT:
            return VehicleLifecycle.COMPLIANT
        if band == ComplianceBand.WARNING:
            return VehicleLifecycle.AT_RISK
        return VehicleLifecycle.NON_COMPLIANT

    def value(self, field: FieldName) -> Any:
        state = self.fields.get(field)
        return state.current_value if state is not None else None

    def history_values(self, field: FieldName) -> list[tuple[str, Any]]:
        """All ``(document_id, raw value)`` pairs ever extracted for *field*."""
        values: list[tuple[str, Any]] = []
        for document in self.documents:
            canonical = document.canonical_fields()
            if field in canonical:
                values.append((document.document_id, canonical[field]))
        return values

    def category(self, category: ComplianceCategory) -> CategoryCompliance | None:
        return self.compliance_status.get(category)

    @property
    def make(self) -> str | None:
        return self.value(FieldName.MAKE)

    @property
    def model(self) -> str | None:
        return self.value(FieldName.MODEL)

    @property
    def year(self) -> int | None:
        return self.value(FieldName.YEAR)

    @property
    def license_plate(self) -> str | None:
        return self.value(FieldName.LICENSE_PLATE)

    @property
    def has_conflicts(self) -> bool:
        return bool(self.active_conflicts)


class _VehicleAttributes(FleetBaseModel):
    """Attributes the CRUD layer keeps for a vehicle."""

    _STRIP_PLACEHOLDERS: ClassVar[bool] = True

    make: str | None = None
    model: str | None = None
    year: int | None = None
    license_plate: str | None = None
    truck_number: str | None = None
    dot_number: str | None = None
    status: VehicleStatus = VehicleStatus.ACTIVE
    registration_number: str | None = None
    registration_state: str | None = None
    registration_expiration_date: date | None = None
    insurance_carrier: str | None = None
    policy_number: str | None = None
    insurance_expiration_date: date | None = None
    inspection_expiration_date: date | None = None

    @field_validator(
        "make",
        "model",
        "license_plate",
        "truck_number",
        "dot_number",
        "registration_number",
        "registration_state",
        "insurance_carrier",
        "policy_number",
        mode="before",
    )
    @classmethod
    def _clean_text(cls, value: Any) -> str | None:
        return safe_str(value)

    @field_validator("year", mode="before")
    @classmethod
    def _clean_year(cls, value: Any) -> int | None:
        return parse_year(value)

    @field_validator(
        "registration_expiration_date",
        "insurance_expiration_date",
        "inspection_expiration_date",
        mode="before",
    )
    @classmethod
    def _clean_date(cls, value: Any) -> date | None:
        return parse_date(value)

    @field_validator("status", mode="before")
    @classmethod
    def _clean_status(cls, value: Any) -> Any:
        text = safe_str(value)
        return text.lower() if text else VehicleStatus.ACTIVE

    def canonical_fields(self) -> dict[FieldName, Any]:
        """Populated attributes keyed by canonical field name."""
        result: dict[FieldName, Any] = {}
        for field in FieldName:
            value = getattr(self, field.value, None)
            if value is None:
                continue
            result[field] = value.isoformat() if isinstance(value, date) else value
        return result


class VehicleInput(_VehicleAttributes):
    """One item of a bulk ``add_vehicles`` batch.

    ``vin`` is kept raw here; the fleet view validates it per item.
    """

    vin: str | None = None
    source: DataSource = DataSource.BULK_UPLOAD
    file_name: str | None = None

    @field_validator("vin", mode="before")
    @classmethod
    def _raw_vin(cls, value: Any) -> str | None:
        return safe_str(value)

    def to_record(self, *, record_id: str, vin: str, now: datetime) -> VehicleRecord:
        data = self.model_dump(exclude={"vin", "source", "file_name"})
        return VehicleRecord(**data, id=record_id, vin=vin, date_added=now, last_updated=now)


class VehicleRecord(_VehicleAttributes):
    """A vehicle row owned by the persistence layer."""

    id: str
    vin: str | None = None
    date_added: UtcDatetime | None = None
    last_updated: UtcDatetime | None = None

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> str:
        text = safe_str(value)
        if text is None:
            raise ValueError("record id is required")
        return text

    @field_validator("vin", mode="before")
    @classmethod
    def _raw_vin(cls, value: Any) -> str | None:
        text = safe_str(value)
        return text.upper() if text else None


class UnifiedVehicleView(FleetBaseModel):
    """Read-model merging a persisted row with the reconciled state.

    Recomputed on every refresh, never persisted.
    """

    key: str
    vin: str | None = None
    record: VehicleRecord | None = None
    reconciled: VehicleState | None = None
    make: str | None = None
    model: str | None = None
    year: int | None = None
    license_plate: str | None = None
    truck_number: str | None = None
    status: VehicleStatus = VehicleStatus.ACTIVE
    compliance_score: int | None = None
    compliance_band: ComplianceBand | None = None
    risk_level: RiskLevel | None = None
    document_count: int = 0
    data_source: ViewSource
    last_sync: UtcDatetime
    conflict_flags: tuple[ConflictFlag, ...] = ()
