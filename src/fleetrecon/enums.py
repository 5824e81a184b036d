"""Enumerations shared by the fleetrecon models."""

from __future__ import annotations

from enum import StrEnum


class DocumentType(StrEnum):
    REGISTRATION = "registration"
    INSURANCE = "insurance"
    CDL = "cdl"
    MEDICAL = "medical"
    INSPECTION = "inspection"
    OTHER = "other"


class DataSource(StrEnum):
    """Where an extraction came from."""

    DOCUMENT_PROCESSING = "document_processing"
    MANUAL_ENTRY = "manual_entry"
    BULK_UPLOAD = "bulk_upload"
    API_IMPORT = "api_import"
    RECONCILIATION = "reconciliation"


class FieldName(StrEnum):
    """Canonical attribute names tracked per vehicle."""

    # Identity
    MAKE = "make"
    MODEL = "model"
    YEAR = "year"
    # Registration
    LICENSE_PLATE = "license_plate"
    STATE = "state"
    REGISTRATION_NUMBER = "registration_number"
    REGISTRATION_STATE = "registration_state"
    REGISTERED_OWNER = "registered_owner"
    REGISTRATION_EXPIRATION_DATE = "registration_expiration_date"
    # Insurance
    POLICY_NUMBER = "policy_number"
    INSURANCE_CARRIER = "insurance_carrier"
    COVERAGE_AMOUNT = "coverage_amount"
    INSURANCE_EFFECTIVE_DATE = "insurance_effective_date"
    INSURANCE_EXPIRATION_DATE = "insurance_expiration_date"
    # Inspection
    INSPECTION_DATE = "inspection_date"
    INSPECTION_RESULT = "inspection_result"
    INSPECTION_EXPIRATION_DATE = "inspection_expiration_date"
    # Commercial driver's licence
    DRIVER_NAME = "driver_name"
    LICENSE_NUMBER = "license_number"
    LICENSE_CLASS = "license_class"
    CDL_EXPIRATION_DATE = "cdl_expiration_date"
    # Medical certificate
    MEDICAL_CERTIFICATE_NUMBER = "medical_certificate_number"
    MEDICAL_EXAMINER = "medical_examiner"
    MEDICAL_EXPIRATION_DATE = "medical_expiration_date"
    # Fleet bookkeeping
    TRUCK_NUMBER = "truck_number"
    DOT_NUMBER = "dot_number"


class ComplianceCategory(StrEnum):
    REGISTRATION = "registration"
    INSURANCE = "insurance"
    INSPECTION = "inspection"
    LICENSE = "license"
    MEDICAL = "medical"


class ComplianceStatus(StrEnum):
    CURRENT = "current"
    EXPIRING_SOON = "expiring_soon"
    EXPIRED = "expired"
    MISSING = "missing"


class Urgency(StrEnum):
    EXPIRED = "expired"
    CRITICAL = "critical"
    WARNING = "warning"
    NORMAL = "normal"


class RiskLevel(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def severity(self) -> int:
        """Sort key, most severe first."""
        return _RISK_SEVERITY[self]


_RISK_SEVERITY: dict[RiskLevel, int] = {
    RiskLevel.CRITICAL: 0,
    RiskLevel.HIGH: 1,
    RiskLevel.MEDIUM: 2,
    RiskLevel.LOW: 3,
}


class ComplianceBand(StrEnum):
    """Score band: >= 90 compliant, >= 50 warning, below is non-compliant."""

    COMPLIANT = "compliant"
    WARNING = "warning"
    NON_COMPLIANT = "non_compliant"


class VehicleLifecycle(StrEnum):
    """Live reconciliation state of a vehicle (always recomputed)."""

    UNKNOWN = "unknown"
    PARTIAL = "partial"
    COMPLETE = "complete"
    COMPLIANT = "compliant"
    AT_RISK = "at_risk"
    NON_COMPLIANT = "non_compliant"


class VehicleStatus(StrEnum):
    """Operational status kept by the persistence layer."""

    ACTIVE = "active"
    INACTIVE = "inactive"
    MAINTENANCE = "maintenance"
    RETIRED = "retired"


class ViewSource(StrEnum):
    """Provenance of a unified view entry."""

    PERSISTENT = "persistent"
    RECONCILED = "reconciled"
    LEGACY = "legacy"
    MERGED = "merged"


class ConflictFlag(StrEnum):
    """Disagreements between a persisted row and the reconciled state."""

    MAKE_MISMATCH = "make_mismatch"
    MODEL_MISMATCH = "model_mismatch"
    YEAR_MISMATCH = "year_mismatch"
    LICENSE_PLATE_CONFLICT = "license_plate_conflict"
