"""Data models for the reconciliation engine."""

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
from fleetrecon.models._base import FleetBaseModel, UtcDatetime, ensure_utc
from fleetrecon.models.dashboard import (
    ActivityItem,
    DashboardAlerts,
    DashboardSummary,
    FleetDashboard,
    FleetStats,
    IssueSummary,
)
from fleetrecon.models.documents import (
    FIELDS_BY_DOCUMENT_TYPE,
    CdlFields,
    DocumentExtraction,
    DocumentFields,
    GeneralFields,
    InspectionFields,
    InsuranceFields,
    MedicalFields,
    RegistrationFields,
)
from fleetrecon.models.identity import VehicleIdentity, normalize_vin, try_normalize_vin
from fleetrecon.models.results import (
    CategoryExpiry,
    ComplianceBreakdownRow,
    DocumentsPerVehicle,
    ExpirationAlerts,
    ExpiringVehicle,
    FleetExport,
    IngestResult,
    ReconcilerStats,
    SyncResult,
    VehicleSearchFilter,
)
from fleetrecon.models.vehicle import (
    CategoryCompliance,
    Conflict,
    FieldGap,
    FieldState,
    UnifiedVehicleView,
    VehicleInput,
    VehicleRecord,
    VehicleState,
    band_for_score,
)

__all__ = [
    "FIELDS_BY_DOCUMENT_TYPE",
    "ActivityItem",
    "CategoryCompliance",
    "CategoryExpiry",
    "CdlFields",
    "ComplianceBand",
    "ComplianceBreakdownRow",
    "ComplianceCategory",
    "ComplianceStatus",
    "Conflict",
    "ConflictFlag",
    "DashboardAlerts",
    "DashboardSummary",
    "DataSource",
    "DocumentExtraction",
    "DocumentFields",
    "DocumentType",
    "DocumentsPerVehicle",
    "ExpirationAlerts",
    "ExpiringVehicle",
    "FieldGap",
    "FieldName",
    "FieldState",
    "FleetBaseModel",
    "FleetDashboard",
    "FleetExport",
    "FleetStats",
    "GeneralFields",
    "IngestResult",
    "InspectionFields",
    "InsuranceFields",
    "IssueSummary",
    "MedicalFields",
    "ReconcilerStats",
    "RegistrationFields",
    "RiskLevel",
    "SyncResult",
    "UnifiedVehicleView",
    "Urgency",
    "UtcDatetime",
    "VehicleIdentity",
    "VehicleInput",
    "VehicleLifecycle",
    "VehicleRecord",
    "VehicleSearchFilter",
    "VehicleState",
    "VehicleStatus",
    "ViewSource",
    "band_for_score",
    "ensure_utc",
    "normalize_vin",
    "try_normalize_vin",
]
