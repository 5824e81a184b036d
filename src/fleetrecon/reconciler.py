"""Vehicle reconciler.

Owns the VIN -> :class:`VehicleState` map.  Every mutation for one VIN is
serialized by a per-VIN :class:`asyncio.Lock`; different VINs proceed in
parallel.  Readers only ever see committed frozen snapshots.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from collections import Counter
from collections.abc import Callable, Iterable, Mapping
from datetime import UTC, datetime
from typing import Any

from fleetrecon.compliance import ComplianceEvaluator
from fleetrecon.config import ReconcilerConfig
from fleetrecon.enums import (
    ComplianceBand,
    ComplianceCategory,
    ComplianceStatus,
    DataSource,
    VehicleLifecycle,
)
from fleetrecon.exceptions import InvalidDocumentError
from fleetrecon.ingestion.extractions import build_extraction
from fleetrecon.models.documents import DocumentExtraction
from fleetrecon.models.identity import try_normalize_vin
from fleetrecon.models.results import (
    CategoryExpiry,
    ComplianceBreakdownRow,
    DocumentsPerVehicle,
    ExpirationAlerts,
    ExpiringVehicle,
    FleetExport,
    IngestResult,
    ReconcilerStats,
    VehiclePredicate,
    VehicleSearchFilter,
)
from fleetrecon.models.vehicle import Conflict, VehicleState
from fleetrecon.state.events import EventBus, FleetEventType
from fleetrecon.state.policy import CATEGORY_EXPIRY_FIELDS
from fleetrecon.state.resolver import FieldMergeResolver
from fleetrecon.state.store import DocumentRecordStore, StoreMemento

_logger = logging.getLogger(__name__)

_EVENT_SOURCE = "vehicle_reconciler"


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclasses.dataclass(frozen=True)
class ReconcilerMemento:
    """Everything needed to put the reconciler back where it was."""

    store: StoreMemento
    vehicles: dict[str, VehicleState]


def expiration_alerts(vehicles: Iterable[VehicleState]) -> ExpirationAlerts:
    """Bucket every resolved category expiry across *vehicles*."""
    expired = today = week = month = 0
    for vehicle in vehicles:
        for item in vehicle.compliance_status.values():
            days = item.days_until_expiry
            if days is None:
                continue
            if days < 0:
                expired += 1
            elif days == 0:
                today += 1
            elif days <= 7:
                week += 1
            elif days <= 30:
                month += 1
    return ExpirationAlerts(
        expired=expired,
        expires_today=today,
        expires_this_week=week,
        expires_this_month=month,
    )


class VehicleReconciler:
    """Compose the record store, merge resolver and compliance evaluator.

    Parameters
    ----------
    config : ReconcilerConfig, optional
        Thresholds and cache settings.  Defaults to ``ReconcilerConfig()``.
    clock : callable, optional
        Returns the current aware UTC datetime.  Tests inject a fixed clock.
    event_bus : EventBus, optional
        Receives ``vehicle_added``/``vehicle_updated``/``document_processed``.
    """

    def __init__(
        self,
        config: ReconcilerConfig | None = None,
        *,
        clock: Callable[[], datetime] = _utcnow,
        event_bus: EventBus | None = None,
    ) -> None:
        self._config = config or ReconcilerConfig()
        self._clock = clock
        self._bus = event_bus
        self._store = DocumentRecordStore(clock=clock, strict_document_ids=self._config.strict_document_ids)
        self._resolver = FieldMergeResolver(
            conflict_confidence_threshold=self._config.conflict_confidence_threshold,
        )
        self._evaluator = ComplianceEvaluator(self._config)
        self._vehicles: dict[str, VehicleState] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    @property
    def config(self) -> ReconcilerConfig:
        return self._config

    @property
    def evaluator(self) -> ComplianceEvaluator:
        return self._evaluator

    @property
    def event_bus(self) -> EventBus | None:
        return self._bus

    def now(self) -> datetime:
        return self._clock()

    def _lock(self, vin: str) -> asyncio.Lock:
        lock = self._locks.get(vin)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[vin] = lock
        return lock

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    async def add_document(self, extraction: DocumentExtraction) -> IngestResult:
        """Append *extraction* and recompute the vehicle it belongs to.

        Returns only what this extraction introduced: new conflicts and
        warnings.  Business-level problems (unparseable dates, missing
        fields) become warnings and review flags; only structurally invalid
        input raises :class:`InvalidDocumentError`.
        """
        if not isinstance(extraction, DocumentExtraction):
            raise InvalidDocumentError(f"Expected a DocumentExtraction, got {type(extraction).__name__}")

        vin = extraction.vin
        async with self._lock(vin):
            previous = self._vehicles.get(vin)
            ref = self._store.append(extraction)
            if ref.duplicate:
                _logger.debug("Ignoring duplicate document %s for vin=%s", ref.document_id, vin)
                return IngestResult(
                    vin=vin,
                    document_id=ref.document_id,
                    duplicate=True,
                    warnings=("Document was already ingested; state unchanged",),
                )
            now = self._clock()
            state = self._build_state(vin, now, last_updated=now)
            self._vehicles[vin] = state

        known = {c.conflict_id for c in previous.active_conflicts} if previous is not None else set()
        new_conflicts = tuple(c for c in state.active_conflicts if c.conflict_id not in known)
        stored = self._store.get(ref.document_id) or extraction
        warnings = self._warnings(stored, state, new_conflicts)

        if ref.is_new_vehicle:
            _logger.info("New vehicle %s from %s document", vin, stored.document_type.value)
        for conflict in new_conflicts:
            _logger.info(
                "Conflict on vin=%s field=%s: %r (%s) vs %r (%s)",
                vin,
                conflict.field.value,
                conflict.value_a,
                conflict.document_a,
                conflict.value_b,
                conflict.document_b,
            )

        if self._bus is not None:
            self._bus.emit(
                FleetEventType.VEHICLE_ADDED if ref.is_new_vehicle else FleetEventType.VEHICLE_UPDATED,
                {"compliance_score": state.compliance_score, "risk_level": state.risk_level.value},
                source=_EVENT_SOURCE,
                vin=vin,
            )
            self._bus.emit(
                FleetEventType.DOCUMENT_PROCESSED,
                {
                    "document_id": stored.document_id,
                    "document_type": stored.document_type.value,
                    "new_conflicts": len(new_conflicts),
                },
                source=_EVENT_SOURCE,
                vin=vin,
                metadata={"file_name": stored.file_name, "source": stored.source.value},
            )

        return IngestResult(
            vin=vin,
            document_id=stored.document_id,
            is_new_vehicle=ref.is_new_vehicle,
            conflicts=new_conflicts,
            warnings=tuple(warnings),
        )

    async def ingest(
        self,
        payload: Mapping[str, Any],
        *,
        source: DataSource | str | None = None,
        file_name: str | None = None,
        received_at: datetime | None = None,
    ) -> IngestResult:
        """Build an extraction from a raw payload and add it."""
        extraction = build_extraction(
            payload,
            source=source,
            file_name=file_name,
            received_at=received_at,
            default_received_at=self._clock(),
        )
        return await self.add_document(extraction)

    def _build_state(self, vin: str, now: datetime, *, last_updated: datetime) -> VehicleState:
        resolution = self._resolver.resolve(vin, self._store.entries(vin), now)
        evaluation = self._evaluator.evaluate(resolution.fields, now, conflicts=len(resolution.conflicts))
        return VehicleState(
            vin=vin,
            fields=resolution.fields,
            documents=self._store.documents(vin),
            compliance_status=evaluation.categories,
            compliance_score=evaluation.score,
            risk_level=evaluation.risk_level,
            active_conflicts=resolution.conflicts,
            first_seen=self._store.first_seen(vin) or now,
            last_updated=last_updated,
            evaluated_at=now,
        )

    def _warnings(
        self,
        extraction: DocumentExtraction,
        state: VehicleState,
        new_conflicts: tuple[Conflict, ...],
    ) -> list[str]:
        warnings: list[str] = []
        confidence = extraction.extraction_confidence
        if confidence < self._config.low_confidence_threshold:
            warnings.append(f"Low extraction confidence ({confidence:.0%}); review the extracted values")

        populated = extraction.canonical_fields()
        for category, field in CATEGORY_EXPIRY_FIELDS.items():
            if field not in populated:
                continue
            item = state.compliance_status.get(category)
            if item is None or item.days_until_expiry is None:
                continue
            if item.status == ComplianceStatus.EXPIRED:
                warnings.append(f"{category.value.capitalize()} expired on {item.expiration_date.isoformat()}")
            elif item.status == ComplianceStatus.EXPIRING_SOON:
                warnings.append(f"{category.value.capitalize()} expires in {item.days_until_expiry} days")

        for conflict in new_conflicts:
            warnings.append(f"Conflicting {conflict.field.value} values: {conflict.value_a!r} vs {conflict.value_b!r}")

        for field_state in state.fields.values():
            for gap in field_state.gaps:
                if gap.document_id == extraction.document_id:
                    warnings.append(f"Could not interpret {gap.field.value}: {gap.reason}; marked for review")

        if len(state.active_conflicts) > 3:
            warnings.append(f"Vehicle has {len(state.active_conflicts)} unresolved conflicts")
        if state.compliance_score < 50:
            warnings.append(f"Compliance score {state.compliance_score} is below 50")
        return warnings

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def _current(self, vin: str) -> VehicleState | None:
        """Committed snapshot, re-evaluated when older than ``snapshot_max_age``."""
        state = self._vehicles.get(vin)
        if state is None:
            return None
        now = self._clock()
        if (now - state.evaluated_at).total_seconds() > self._config.snapshot_max_age:
            state = self._build_state(vin, now, last_updated=state.last_updated)
            self._vehicles[vin] = state
        return state

    def get_vehicle_summary(self, vin: str) -> VehicleState | None:
        normalized = try_normalize_vin(vin)
        if normalized is None:
            return None
        return self._current(normalized)

    def get_all_vehicles(self) -> list[VehicleState]:
        """All vehicles, most at-risk first."""
        vehicles = [state for vin in list(self._vehicles) if (state := self._current(vin)) is not None]
        return sorted(vehicles, key=lambda v: (v.risk_level.severity, v.vin))

    def search_vehicles(
        self,
        criteria: VehicleSearchFilter | None = None,
        *predicates: VehiclePredicate,
    ) -> list[VehicleState]:
        """Vehicles matching *criteria* and every extra predicate."""
        checks: list[VehiclePredicate] = [*(criteria.predicates() if criteria is not None else ()), *predicates]
        return [vehicle for vehicle in self.get_all_vehicles() if all(check(vehicle) for check in checks)]

    def get_documents(self, vin: str) -> tuple[DocumentExtraction, ...]:
        normalized = try_normalize_vin(vin)
        return self._store.documents(normalized) if normalized else ()

    def get_stats(self) -> ReconcilerStats:
        vehicles = self.get_all_vehicles()
        counts = [v.document_count for v in vehicles]
        conflicts = [c for v in vehicles for c in v.active_conflicts]
        by_band = Counter(v.compliance_band for v in vehicles)
        by_lifecycle = Counter(v.lifecycle for v in vehicles)
        return ReconcilerStats(
            total_vehicles=len(vehicles),
            total_documents=self._store.total_documents,
            documents_per_vehicle=DocumentsPerVehicle(
                average=round(sum(counts) / len(counts), 2) if counts else 0.0,
                minimum=min(counts, default=0),
                maximum=max(counts, default=0),
            ),
            by_band={band: by_band.get(band, 0) for band in ComplianceBand},
            by_lifecycle={state: by_lifecycle.get(state, 0) for state in VehicleLifecycle},
            active_conflicts=len(conflicts),
            conflicts_by_field=dict(Counter(c.field for c in conflicts)),
            expiration_alerts=expiration_alerts(vehicles),
            generated_at=self._clock(),
        )

    def get_expiring_vehicles(self, days: int = 30) -> list[ExpiringVehicle]:
        """Vehicles with a category expiring within *days* (expired included), soonest first."""
        report: list[ExpiringVehicle] = []
        for vehicle in self.get_all_vehicles():
            expirations = tuple(
                CategoryExpiry(
                    category=item.category,
                    expiration_date=item.expiration_date,
                    days_until_expiry=item.days_until_expiry,
                    urgency=item.urgency,
                )
                for item in vehicle.compliance_status.values()
                if item.days_until_expiry is not None
                and item.expiration_date is not None
                and item.urgency is not None
                and item.days_until_expiry <= days
            )
            if not expirations:
                continue
            report.append(
                ExpiringVehicle(
                    vin=vehicle.vin,
                    make=vehicle.make,
                    model=vehicle.model,
                    license_plate=vehicle.license_plate,
                    expirations=tuple(sorted(expirations, key=lambda e: e.days_until_expiry)),
                )
            )
        return sorted(report, key=lambda r: (r.soonest_days, r.vin))

    def get_compliance_breakdown(self) -> list[ComplianceBreakdownRow]:
        vehicles = self.get_all_vehicles()
        rows: list[ComplianceBreakdownRow] = []
        for category in ComplianceCategory:
            statuses = Counter(
                v.compliance_status[category].status for v in vehicles if category in v.compliance_status
            )
            total = sum(statuses.values())
            current = statuses.get(ComplianceStatus.CURRENT, 0)
            rows.append(
                ComplianceBreakdownRow(
                    category=category,
                    current=current,
                    expiring_soon=statuses.get(ComplianceStatus.EXPIRING_SOON, 0),
                    expired=statuses.get(ComplianceStatus.EXPIRED, 0),
                    missing=statuses.get(ComplianceStatus.MISSING, 0),
                    compliance_rate=round(current / total * 100, 1) if total else 0.0,
                )
            )
        return rows

    def recent_documents(self, limit: int) -> list[tuple[DocumentExtraction, bool]]:
        """Latest ingested documents, newest first, flagged when they created their vehicle."""
        entries = self._store.all_entries()
        first_sequence: dict[str, int] = {}
        for entry in entries:
            first_sequence.setdefault(entry.extraction.vin, entry.sequence)
        latest = entries[-limit:] if limit > 0 else []
        return [
            (entry.extraction, first_sequence[entry.extraction.vin] == entry.sequence) for entry in reversed(latest)
        ]

    def export_data(self) -> FleetExport:
        vehicles = self.get_all_vehicles()
        return FleetExport(
            vehicles=tuple(vehicles),
            documents={v.vin: v.documents for v in vehicles},
            stats=self.get_stats(),
            exported_at=self._clock(),
        )

    def __len__(self) -> int:
        return len(self._vehicles)

    def __contains__(self, vin: object) -> bool:
        return isinstance(vin, str) and try_normalize_vin(vin) in self._vehicles

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def snapshot(self) -> ReconcilerMemento:
        return ReconcilerMemento(store=self._store.snapshot(), vehicles=dict(self._vehicles))

    def restore(self, memento: ReconcilerMemento) -> None:
        self._store.restore(memento.store)
        self._vehicles = dict(memento.vehicles)
        _logger.info("Reconciler restored to snapshot with %d vehicles", len(self._vehicles))

    async def clear(self) -> None:
        """Remove every vehicle and document.  Only a fleet clear calls this."""
        self._store.clear()
        self._vehicles.clear()
        self._locks.clear()
        _logger.info("Reconciler cleared")
