"""fleetrecon - Multi-source vehicle reconciliation engine for fleet compliance."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("fleetrecon")
except PackageNotFoundError:
    __version__ = "0+local"
from fleetrecon.compliance import ComplianceEvaluator
from fleetrecon.config import ReconcilerConfig
from fleetrecon.dashboard import DashboardCache
from fleetrecon.exceptions import (
    CatastrophicFailureError,
    ConfigError,
    FleetReconError,
    InvalidDocumentError,
    InvalidInputError,
    PersistenceError,
)
from fleetrecon.fleet_view import UnifiedFleetViewService
from fleetrecon.models import (
    ComplianceBand,
    ComplianceCategory,
    ComplianceStatus,
    DataSource,
    DocumentExtraction,
    DocumentType,
    FieldName,
    FleetDashboard,
    FleetStats,
    IngestResult,
    RiskLevel,
    SyncResult,
    UnifiedVehicleView,
    VehicleInput,
    VehicleRecord,
    VehicleSearchFilter,
    VehicleState,
)
from fleetrecon.reconciler import VehicleReconciler
from fleetrecon.repository import (
    InMemoryVehicleRepository,
    PersistResult,
    RestVehicleRepository,
    VehicleRepository,
)
from fleetrecon.state.events import EventBus, FleetEvent, FleetEventType, ViewEvent

__all__ = [
    "CatastrophicFailureError",
    "ComplianceBand",
    "ComplianceCategory",
    "ComplianceEvaluator",
    "ComplianceStatus",
    "ConfigError",
    "DashboardCache",
    "DataSource",
    "DocumentExtraction",
    "DocumentType",
    "EventBus",
    "FieldName",
    "FleetDashboard",
    "FleetEvent",
    "FleetEventType",
    "FleetReconError",
    "FleetStats",
    "InMemoryVehicleRepository",
    "IngestResult",
    "InvalidDocumentError",
    "InvalidInputError",
    "PersistResult",
    "PersistenceError",
    "ReconcilerConfig",
    "RestVehicleRepository",
    "RiskLevel",
    "SyncResult",
    "UnifiedFleetViewService",
    "UnifiedVehicleView",
    "VehicleInput",
    "VehicleReconciler",
    "VehicleRecord",
    "VehicleRepository",
    "VehicleSearchFilter",
    "VehicleState",
    "ViewEvent",
    "__version__",
]
