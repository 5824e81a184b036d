"""Unified fleet view service.

Merges reconciler output with the persistence layer's vehicle rows into one
map and provides atomic bulk mutation.  Batch writes follow a two-tier
failure model:

* a single item that fails to save (``PersistResult(success=False)`` or
  :class:`PersistenceError`) is counted and reported; the batch continues
* any other exception, or exceeding ``batch_timeout``, is catastrophic: the
  rows written by the batch are compensated, the view and the reconciler
  are restored from the backup taken at the start, and the result reports
  ``success=False``
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import time
from collections.abc import Callable, Iterable, Mapping
from datetime import datetime
from typing import Any

from pydantic import ValidationError

from fleetrecon.compliance import Evaluation
from fleetrecon.config import ReconcilerConfig
from fleetrecon.dashboard import DashboardCache
from fleetrecon.enums import (
    ComplianceBand,
    ComplianceCategory,
    ComplianceStatus,
    ConflictFlag,
    FieldName,
    VehicleStatus,
    ViewSource,
)
from fleetrecon.exceptions import CatastrophicFailureError, InvalidInputError, PersistenceError
from fleetrecon.ingestion.extractions import extraction_from_vehicle_input
from fleetrecon.ingestion.normalize import normalize_text
from fleetrecon.models.dashboard import FleetDashboard, FleetStats
from fleetrecon.models.identity import try_normalize_vin
from fleetrecon.models.results import SyncResult
from fleetrecon.models.vehicle import CategoryCompliance, UnifiedVehicleView, VehicleInput, VehicleRecord, VehicleState
from fleetrecon.reconciler import ReconcilerMemento, VehicleReconciler
from fleetrecon.repository.base import VehicleRepository
from fleetrecon.state.events import EventBus, FleetEvent, FleetEventType, ViewEvent

_logger = logging.getLogger(__name__)

_EVENT_SOURCE = "fleet_view"

ViewListener = Callable[[ViewEvent, dict[str, Any]], Any]

FILTERS = ("all", "active", "inactive", "compliant", "non_compliant")


@dataclasses.dataclass(frozen=True)
class _Backup:
    view: dict[str, UnifiedVehicleView]
    records: dict[str, VehicleRecord]
    reconciler: ReconcilerMemento
    loaded_at: float | None
    invalidated: bool


@dataclasses.dataclass(frozen=True)
class _WriteOutcome:
    index: int
    item: VehicleInput
    vin: str
    record: VehicleRecord | None
    error: str | None = None


def _root_cause(exc: BaseException) -> BaseException:
    while isinstance(exc, BaseExceptionGroup) and exc.exceptions:
        exc = exc.exceptions[0]
    return exc


def _differs(left: Any, right: Any) -> bool:
    if left is None or right is None:
        return False
    if isinstance(left, str) or isinstance(right, str):
        return normalize_text(left) != normalize_text(right)
    return left != right


def conflict_flags(record: VehicleRecord, state: VehicleState) -> tuple[ConflictFlag, ...]:
    """Disagreements between a persisted row and the reconciled state."""
    flags: list[ConflictFlag] = []
    if _differs(record.make, state.make):
        flags.append(ConflictFlag.MAKE_MISMATCH)
    if _differs(record.model, state.model):
        flags.append(ConflictFlag.MODEL_MISMATCH)
    if _differs(record.year, state.year):
        flags.append(ConflictFlag.YEAR_MISMATCH)
    if _differs(record.license_plate, state.license_plate):
        flags.append(ConflictFlag.LICENSE_PLATE_CONFLICT)
    return tuple(flags)


class UnifiedFleetViewService:
    """One merged, memoized map of every vehicle the fleet knows about.

    Parameters
    ----------
    reconciler : VehicleReconciler
        Source of reconciled vehicle state.
    repository : VehicleRepository
        Persistence adapter for the CRUD layer's vehicle rows.
    config : ReconcilerConfig, optional
        Defaults to the reconciler's configuration.
    dashboard : DashboardCache, optional
        Invalidated after every mutation.  Created on demand when omitted.
    event_bus : EventBus, optional
        Receives ``vehicle_deleted``/``document_processed``/``fleet_cleared``.
    clock, monotonic : callable, optional
        Wall clock for compliance math and monotonic clock for the TTL.
    """

    def __init__(
        self,
        reconciler: VehicleReconciler,
        repository: VehicleRepository,
        *,
        config: ReconcilerConfig | None = None,
        dashboard: DashboardCache | None = None,
        event_bus: EventBus | None = None,
        clock: Callable[[], datetime] | None = None,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self._reconciler = reconciler
        self._repository = repository
        self._config = config or reconciler.config
        self._bus = event_bus
        self._dashboard = dashboard or DashboardCache(reconciler, config=self._config, event_bus=event_bus)
        self._clock = clock or reconciler.now
        self._monotonic = monotonic

        self._view: dict[str, UnifiedVehicleView] = {}
        self._records: dict[str, VehicleRecord] = {}
        self._stats: FleetStats | None = None
        self._loaded_at: float | None = None
        self._invalidated = True
        self._loading = False
        self._mutating = False
        self._backup: _Backup | None = None
        # Batches, clears and deletes run one at a time from backup to result.
        self._mutation_lock = asyncio.Lock()
        self._listeners: list[ViewListener] = []

        if event_bus is not None:
            event_bus.subscribe(FleetEventType.FLEET_DATA_CHANGED, self._on_fleet_data_changed)

    # ------------------------------------------------------------------
    # Subscribers
    # ------------------------------------------------------------------

    def subscribe(self, listener: ViewListener) -> Callable[[], None]:
        """Register *listener*; notifications mean "re-read the view", never a delta."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _notify(self, event: ViewEvent, detail: dict[str, Any] | None = None) -> None:
        payload = dict(detail or {})
        for listener in list(self._listeners):
            try:
                listener(event, payload)
            except Exception:
                _logger.warning("Fleet view subscriber failed on %s", event.value, exc_info=True)

    def _set_loading(self, loading: bool) -> None:
        self._loading = loading
        self._notify(ViewEvent.LOADING_CHANGED, {"is_loading": loading})

    def _on_fleet_data_changed(self, event: FleetEvent) -> None:
        # Batches, clears and deletes publish their own notification once done.
        if self._mutating or event.source == _EVENT_SOURCE or self._loaded_at is None:
            return
        self._rebuild(self._records.values())
        self._notify(ViewEvent.DATA_CHANGED, {"trigger": event.data.get("trigger"), "vin": event.vin})

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    @property
    def is_loading(self) -> bool:
        return self._loading

    def invalidate(self) -> None:
        """Force the next ``initialize_data`` to reload."""
        self._invalidated = True

    def _is_fresh(self) -> bool:
        if self._invalidated or self._loaded_at is None:
            return False
        return self._monotonic() - self._loaded_at < self._config.view_cache_ttl

    async def initialize_data(self, force: bool = False) -> bool:
        """Load persisted rows and rebuild the unified map.

        Returns ``False`` without doing anything while a load is running or
        when the view is still fresh.  Raises
        :class:`CatastrophicFailureError` when the load fails.
        """
        if self._loading:
            _logger.debug("Fleet view already loading; skipping refresh")
            return False
        if not force and self._is_fresh():
            _logger.debug("Fleet view within TTL; skipping refresh")
            return False

        started = self._monotonic()
        self._set_loading(True)
        try:
            records = await self._repository.list()
            self._records = {}
            for record in records:
                if record.id in self._records:
                    _logger.warning("Duplicate persisted vehicle id %s; keeping the first row", record.id)
                    continue
                self._records[record.id] = record
            self._rebuild(self._records.values())
        except Exception as exc:
            _logger.error("Fleet view refresh failed", exc_info=True)
            self._notify(ViewEvent.ERROR, {"message": str(exc)})
            raise CatastrophicFailureError(f"Fleet view refresh failed: {exc}") from exc
        finally:
            self._set_loading(False)

        _logger.debug(
            "Fleet view refreshed: %d vehicles in %.3fs",
            len(self._view),
            self._monotonic() - started,
        )
        self._notify(ViewEvent.DATA_CHANGED, {"vehicles": len(self._view)})
        return True

    def _rebuild(self, records: Iterable[VehicleRecord]) -> None:
        now = self._clock()
        reconciled = {state.vin: state for state in self._reconciler.get_all_vehicles()}
        view: dict[str, UnifiedVehicleView] = {}

        for record in sorted(records, key=lambda r: r.id):
            vin = try_normalize_vin(record.vin)
            if vin is None:
                view[record.id] = self._entry(record.id, None, record, None, now)
                continue
            if vin in view:
                _logger.warning("Vehicle %s persisted twice (ids %s, %s)", vin, view[vin].key, record.id)
                continue
            view[vin] = self._entry(vin, vin, record, reconciled.pop(vin, None), now)

        for vin, state in reconciled.items():
            view[vin] = self._entry(vin, vin, None, state, now)

        self._view = view
        self._stats = None
        self._loaded_at = self._monotonic()
        self._invalidated = False

    def _entry(
        self,
        key: str,
        vin: str | None,
        record: VehicleRecord | None,
        state: VehicleState | None,
        now: datetime,
    ) -> UnifiedVehicleView:
        if state is not None:
            score: int = state.compliance_score
            band: ComplianceBand = state.compliance_band
            risk = state.risk_level
        else:
            assert record is not None  # noqa: S101
            evaluation = self._reconciler.evaluator.evaluate_record(record, now)
            score, band, risk = evaluation.score, evaluation.band, evaluation.risk_level

        if record is not None and state is not None:
            source = ViewSource.MERGED
        elif state is not None:
            source = ViewSource.RECONCILED
        elif vin is None:
            source = ViewSource.LEGACY
        else:
            source = ViewSource.PERSISTENT

        def pick(record_value: Any, state_value: Any) -> Any:
            return record_value if record_value is not None else state_value

        return UnifiedVehicleView(
            key=key,
            vin=vin,
            record=record,
            reconciled=state,
            make=pick(record.make if record else None, state.make if state else None),
            model=pick(record.model if record else None, state.model if state else None),
            year=pick(record.year if record else None, state.year if state else None),
            license_plate=pick(record.license_plate if record else None, state.license_plate if state else None),
            truck_number=pick(
                record.truck_number if record else None,
                state.value(FieldName.TRUCK_NUMBER) if state else None,
            ),
            status=record.status if record is not None else VehicleStatus.ACTIVE,
            compliance_score=score,
            compliance_band=band,
            risk_level=risk,
            document_count=state.document_count if state is not None else 0,
            data_source=source,
            last_sync=now,
            conflict_flags=conflict_flags(record, state) if record is not None and state is not None else (),
        )

    # ------------------------------------------------------------------
    # Atomic mutations
    # ------------------------------------------------------------------

    def _take_backup(self) -> _Backup:
        backup = _Backup(
            view=dict(self._view),
            records=dict(self._records),
            reconciler=self._reconciler.snapshot(),
            loaded_at=self._loaded_at,
            invalidated=self._invalidated,
        )
        self._backup = backup
        return backup

    def _restore(self, backup: _Backup) -> None:
        self._reconciler.restore(backup.reconciler)
        self._view = dict(backup.view)
        self._records = dict(backup.records)
        self._loaded_at = backup.loaded_at
        self._invalidated = backup.invalidated
        self._stats = None

    def rollback(self) -> bool:
        """Restore the view and reconciler to the backup of the last batch or clear.

        The persistence layer is not touched.  Returns ``False`` when there
        is no backup or while a batch, clear or delete is still running.
        """
        if self._backup is None:
            return False
        if self._mutation_lock.locked():
            _logger.warning("Rollback refused: a fleet mutation is in progress")
            return False
        self._restore(self._backup)
        self._backup = None
        self._dashboard.clear_cache()
        self._notify(ViewEvent.DATA_CHANGED, {"rollback": True})
        return True

    def _record_for_vin(self, vin: str) -> VehicleRecord | None:
        for record in self._records.values():
            if try_normalize_vin(record.vin) == vin:
                return record
        return None

    async def _write(
        self,
        index: int,
        item: VehicleInput,
        vin: str,
        now: datetime,
        semaphore: asyncio.Semaphore,
        written: list[tuple[str, VehicleRecord | None]],
    ) -> _WriteOutcome:
        previous = self._record_for_vin(vin)
        record = item.to_record(record_id=previous.id if previous else vin, vin=vin, now=now)
        if previous is not None and previous.date_added is not None:
            record = record.model_copy(update={"date_added": previous.date_added})
        async with semaphore:
            # Registered before the save so a cancelled in-flight write is still undone.
            written.append((record.id, previous))
            try:
                result = await self._repository.save(record)
            except PersistenceError as exc:
                return _WriteOutcome(index, item, vin, None, str(exc))
        if not result.success:
            return _WriteOutcome(index, item, vin, None, result.error or "save failed")
        saved = result.record or record
        if saved.id != record.id:
            written.append((saved.id, None))
        return _WriteOutcome(index, item, vin, saved)

    async def _compensate(self, written: list[tuple[str, VehicleRecord | None]]) -> list[str]:
        """Undo repository writes of a failed batch, best effort."""
        problems: list[str] = []
        for record_id, previous in reversed(written):
            try:
                if previous is not None:
                    await self._repository.save(previous)
                else:
                    await self._repository.delete(record_id)
            except Exception as exc:
                _logger.warning("Compensating write for %s failed", record_id, exc_info=True)
                problems.append(f"Could not undo write of {record_id}: {exc}")
        return problems

    async def add_vehicles(self, batch: Iterable[VehicleInput | Mapping[str, Any]]) -> SyncResult:
        """Persist a batch of vehicles and forward them into the reconciler.

        Per-item failures are tolerated and reported.  An unexpected
        exception rolls the whole operation back.
        """
        items = list(batch)
        async with self._mutation_lock:
            return await self._add_vehicles(items)

    async def _add_vehicles(self, items: list[VehicleInput | Mapping[str, Any]]) -> SyncResult:
        backup = self._take_backup()
        errors: list[str] = []
        failed = 0
        pending: list[tuple[int, VehicleInput, str]] = []

        for index, raw in enumerate(items, start=1):
            try:
                item = raw if isinstance(raw, VehicleInput) else VehicleInput.model_validate(raw)
            except ValidationError as exc:
                failed += 1
                errors.append(f"Item {index}: invalid vehicle data ({exc.error_count()} errors)")
                continue
            vin = try_normalize_vin(item.vin)
            if vin is None:
                failed += 1
                errors.append(f"Item {index}: invalid VIN {item.vin!r}")
                continue
            pending.append((index, item, vin))

        written: list[tuple[str, VehicleRecord | None]] = []
        processed = 0
        now = self._clock()
        self._mutating = True
        try:
            async with asyncio.timeout(self._config.batch_timeout):
                semaphore = asyncio.Semaphore(self._config.max_concurrent_writes)
                async with asyncio.TaskGroup() as group:
                    tasks = [
                        group.create_task(self._write(index, item, vin, now, semaphore, written))
                        for index, item, vin in pending
                    ]
                outcomes = sorted((task.result() for task in tasks), key=lambda outcome: outcome.index)

                saved: list[tuple[_WriteOutcome, VehicleRecord]] = []
                for outcome in outcomes:
                    if outcome.record is None:
                        failed += 1
                        errors.append(f"Persistent storage add failed for {outcome.vin}: {outcome.error}")
                        _logger.warning("Item %d (%s) not saved: %s", outcome.index, outcome.vin, outcome.error)
                    else:
                        saved.append((outcome, outcome.record))

                # Reconciler ingestion stays sequential.
                for outcome, _ in saved:
                    extraction = extraction_from_vehicle_input(
                        outcome.item,
                        vin=outcome.vin,
                        confidence=self._config.batch_confidence,
                        received_at=now,
                    )
                    await self._reconciler.add_document(extraction)
                    processed += 1

                records = dict(self._records)
                for _, record in saved:
                    records[record.id] = record
                self._records = records
                self._rebuild(records.values())
        except Exception as exc:
            cause = _root_cause(exc)
            _logger.error("Batch of %d vehicles failed; rolling back", len(items), exc_info=True)
            errors.append(f"Atomic operation failed: {cause!r}")
            errors.extend(await self._compensate(written))
            rollback_ok = True
            try:
                self._restore(backup)
            except Exception:
                _logger.error("Rollback of fleet view failed", exc_info=True)
                rollback_ok = False
            self._notify(ViewEvent.ERROR, {"message": str(cause)})
            return SyncResult(
                success=False,
                processed=0,
                failed=len(items),
                errors=tuple(errors),
                rollback_available=rollback_ok,
            )
        finally:
            self._mutating = False

        self._dashboard.clear_cache()
        if self._bus is not None:
            self._bus.emit(
                FleetEventType.DOCUMENT_PROCESSED,
                {"processed_vehicles": len(items), "successful_vehicles": processed, "failed_vehicles": failed},
                source=_EVENT_SOURCE,
            )
        self._notify(ViewEvent.DATA_CHANGED, {"processed": processed, "failed": failed})
        _logger.info("Added %d of %d vehicles (%d failed)", processed, len(items), failed)
        return SyncResult(
            success=True,
            processed=processed,
            failed=failed,
            errors=tuple(errors),
            rollback_available=True,
        )

    async def clear_all_fleet_data(self) -> SyncResult:
        """Run every clear operation in order; one failing does not stop the rest."""
        async with self._mutation_lock:
            return await self._clear_all()

    async def _clear_all(self) -> SyncResult:
        backup = self._take_backup()

        async def clear_repository() -> None:
            result = await self._repository.clear()
            if not result.success:
                raise PersistenceError(result.error or "repository clear failed", operation="clear")

        async def clear_reconciler() -> None:
            await self._reconciler.clear()

        async def clear_dashboard() -> None:
            self._dashboard.clear_cache()

        async def clear_view() -> None:
            self._view = {}
            self._records = {}

        async def reset_stats() -> None:
            self._stats = None
            self._loaded_at = self._monotonic()
            self._invalidated = False

        operations = (
            ("repository", clear_repository),
            ("reconciler", clear_reconciler),
            ("dashboard cache", clear_dashboard),
            ("fleet view", clear_view),
            ("fleet stats", reset_stats),
        )
        processed = failed = 0
        errors: list[str] = []
        self._mutating = True
        try:
            for name, operation in operations:
                try:
                    await operation()
                    processed += 1
                except Exception as exc:
                    failed += 1
                    errors.append(f"Clear {name} failed: {exc}")
                    _logger.warning("Clear %s failed", name, exc_info=True)
        finally:
            self._mutating = False

        if failed == 0:
            if self._bus is not None:
                self._bus.emit(FleetEventType.FLEET_CLEARED, source=_EVENT_SOURCE)
            _logger.info("Fleet data cleared")
        else:
            _logger.warning("Fleet clear finished with %d failed operations", failed)
        self._backup = backup
        self._notify(ViewEvent.DATA_CHANGED, {"cleared": failed == 0})
        return SyncResult(
            success=failed == 0,
            processed=processed,
            failed=failed,
            errors=tuple(errors),
            rollback_available=True,
        )

    async def delete_vehicle(self, key: str) -> SyncResult:
        """Delete the persisted row for a VIN or record id.

        The reconciled state is kept; only a fleet clear removes it.
        """
        async with self._mutation_lock:
            return await self._delete(key)

    async def _delete(self, key: str) -> SyncResult:
        vin = try_normalize_vin(key)
        record = self._record_for_vin(vin) if vin is not None else None
        if record is None:
            record = self._records.get(key)
        if record is None:
            return SyncResult(success=False, failed=1, errors=(f"No persisted vehicle {key!r}",))

        try:
            result = await self._repository.delete(record.id)
        except PersistenceError as exc:
            _logger.warning("Delete of %s failed: %s", record.id, exc)
            return SyncResult(success=False, failed=1, errors=(str(exc),))
        if not result.success:
            return SyncResult(success=False, failed=1, errors=(result.error or "delete failed",))

        records = dict(self._records)
        records.pop(record.id, None)
        self._records = records
        self._rebuild(records.values())
        self._dashboard.clear_cache()
        if self._bus is not None:
            self._bus.emit(
                FleetEventType.VEHICLE_DELETED,
                {"record_id": record.id},
                source=_EVENT_SOURCE,
                vin=try_normalize_vin(record.vin),
            )
        self._notify(ViewEvent.DATA_CHANGED, {"deleted": record.id})
        return SyncResult(success=True, processed=1)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_vehicles(self) -> list[UnifiedVehicleView]:
        return [self._view[key] for key in sorted(self._view)]

    def get_vehicle(self, key: str) -> UnifiedVehicleView | None:
        vin = try_normalize_vin(key)
        if vin is not None and vin in self._view:
            return self._view[vin]
        return self._view.get(key)

    def search(self, query: str) -> list[UnifiedVehicleView]:
        needle = normalize_text(query)
        if not needle:
            return self.get_vehicles()
        matches: list[UnifiedVehicleView] = []
        for entry in self.get_vehicles():
            haystack = (entry.vin, entry.make, entry.model, entry.license_plate, entry.truck_number)
            if any(needle in (normalize_text(value) or "") for value in haystack):
                matches.append(entry)
        return matches

    def filter_vehicles(self, status: str = "all") -> list[UnifiedVehicleView]:
        if status not in FILTERS:
            raise InvalidInputError(f"Unknown vehicle filter {status!r}; expected one of {', '.join(FILTERS)}")
        vehicles = self.get_vehicles()
        if status == "active":
            return [v for v in vehicles if v.status == VehicleStatus.ACTIVE]
        if status == "inactive":
            return [v for v in vehicles if v.status != VehicleStatus.ACTIVE]
        if status == "compliant":
            return [v for v in vehicles if v.compliance_band == ComplianceBand.COMPLIANT]
        if status == "non_compliant":
            return [v for v in vehicles if v.compliance_band == ComplianceBand.NON_COMPLIANT]
        return vehicles

    def _categories(self, entry: UnifiedVehicleView, now: datetime) -> dict[ComplianceCategory, CategoryCompliance]:
        if entry.reconciled is not None:
            return entry.reconciled.compliance_status
        if entry.record is not None:
            evaluation: Evaluation = self._reconciler.evaluator.evaluate_record(entry.record, now)
            return evaluation.categories
        return {}

    def get_fleet_stats(self) -> FleetStats:
        """Per-vehicle compliance counts over the whole unified view."""
        if self._stats is not None:
            return self._stats
        now = self._clock()
        vehicles = self.get_vehicles()
        expired = expiring = 0
        for entry in vehicles:
            statuses = {item.status for item in self._categories(entry, now).values()}
            if ComplianceStatus.EXPIRED in statuses:
                expired += 1
            if ComplianceStatus.EXPIRING_SOON in statuses:
                expiring += 1
        scores = [v.compliance_score for v in vehicles if v.compliance_score is not None]
        bands = [v.compliance_band for v in vehicles]
        self._stats = FleetStats(
            total_vehicles=len(vehicles),
            active_vehicles=sum(1 for v in vehicles if v.status == VehicleStatus.ACTIVE),
            reconciled_vehicles=sum(1 for v in vehicles if v.reconciled is not None),
            persisted_only=sum(1 for v in vehicles if v.reconciled is None),
            compliant=bands.count(ComplianceBand.COMPLIANT),
            warning=bands.count(ComplianceBand.WARNING),
            non_compliant=bands.count(ComplianceBand.NON_COMPLIANT),
            expired=expired,
            expiring_soon=expiring,
            with_conflicts=sum(
                1 for v in vehicles if v.conflict_flags or (v.reconciled is not None and v.reconciled.has_conflicts)
            ),
            average_score=round(sum(scores) / len(scores), 1) if scores else 0.0,
            last_updated=now,
        )
        return self._stats

    def get_fleet_dashboard(self) -> FleetDashboard:
        return self._dashboard.get_fleet_dashboard()
