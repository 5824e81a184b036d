from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from fleetrecon.config import ReconcilerConfig
from fleetrecon.enums import (
    ComplianceBand,
    ComplianceCategory,
    ComplianceStatus,
    DocumentType,
    FieldName,
    RiskLevel,
    Urgency,
    VehicleLifecycle,
)
from fleetrecon.exceptions import InvalidDocumentError
from fleetrecon.models.documents import DocumentExtraction
from fleetrecon.models.results import VehicleSearchFilter
from fleetrecon.reconciler import VehicleReconciler
from fleetrecon.state.events import EventBus, FleetEvent, FleetEventType

VIN = "1HGCM82633A004352"
OTHER_VIN = "1FTFW1ET5DFC10312"
NOW = datetime(2025, 6, 1, 12, 0, tzinfo=UTC)
TODAY = NOW.date()


class _Clock:
    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def _doc(
    document_type: DocumentType,
    fields: dict,
    *,
    vin: str = VIN,
    confidence: float = 0.9,
    minutes: int = 0,
) -> DocumentExtraction:
    return DocumentExtraction(
        vin=vin,
        document_type=document_type,
        fields=fields,
        extraction_confidence=confidence,
        received_at=NOW + timedelta(minutes=minutes),
    )


def _in_days(days: int) -> str:
    return (TODAY + timedelta(days=days)).isoformat()


@pytest.mark.asyncio
async def test_first_document_creates_vehicle() -> None:
    reconciler = VehicleReconciler(clock=_Clock())

    result = await reconciler.add_document(
        _doc(DocumentType.REGISTRATION, {"make": "Ford", "model": "F-150", "year": "2020"})
    )

    assert result.success is True
    assert result.is_new_vehicle is True
    state = reconciler.get_vehicle_summary(VIN)
    assert state is not None
    assert (state.make, state.model, state.year) == ("Ford", "F-150", 2020)
    assert state.document_count == 1
    assert state.first_seen == NOW
    assert VIN in reconciler
    assert len(reconciler) == 1


@pytest.mark.asyncio
async def test_duplicate_document_is_idempotent() -> None:
    bus = EventBus()
    reconciler = VehicleReconciler(clock=_Clock(), event_bus=bus)
    doc = _doc(DocumentType.REGISTRATION, {"make": "Ford"})

    await reconciler.add_document(doc)
    before = reconciler.get_vehicle_summary(VIN)
    events_before = len(bus.history())
    result = await reconciler.add_document(doc)

    assert result.duplicate is True
    assert result.warnings == ("Document was already ingested; state unchanged",)
    assert reconciler.get_vehicle_summary(VIN) == before
    assert len(bus.history()) == events_before


@pytest.mark.asyncio
async def test_higher_confidence_insurance_wins_make() -> None:
    reconciler = VehicleReconciler(clock=_Clock())
    await reconciler.add_document(_doc(DocumentType.REGISTRATION, {"make": "Ford"}, confidence=0.9))
    await reconciler.add_document(_doc(DocumentType.INSURANCE, {"make": "Ford Motor Co"}, confidence=0.95, minutes=1))

    state = reconciler.get_vehicle_summary(VIN)
    assert state is not None
    assert state.fields[FieldName.MAKE].current_value == "Ford Motor Co"
    assert state.fields[FieldName.MAKE].current_document_type == DocumentType.INSURANCE


@pytest.mark.asyncio
async def test_honda_toyota_conflict() -> None:
    reconciler = VehicleReconciler(clock=_Clock())
    await reconciler.add_document(_doc(DocumentType.REGISTRATION, {"make": "Honda"}, confidence=0.8))

    result = await reconciler.add_document(_doc(DocumentType.INSURANCE, {"make": "Toyota"}, confidence=0.8, minutes=5))

    assert len(result.conflicts) == 1
    assert any("Conflicting make" in warning for warning in result.warnings)
    state = reconciler.get_vehicle_summary(VIN)
    assert state is not None
    assert state.make == "Toyota"
    assert len(state.active_conflicts) == 1
    assert [value for _, value in state.history_values(FieldName.MAKE)] == ["Honda", "Toyota"]


@pytest.mark.asyncio
async def test_known_conflicts_are_not_reported_again() -> None:
    reconciler = VehicleReconciler(clock=_Clock())
    await reconciler.add_document(_doc(DocumentType.REGISTRATION, {"make": "Honda"}, confidence=0.8))
    await reconciler.add_document(_doc(DocumentType.INSURANCE, {"make": "Toyota"}, confidence=0.8, minutes=5))

    result = await reconciler.add_document(_doc(DocumentType.INSPECTION, {"result": "pass"}, minutes=10))

    assert result.conflicts == ()
    state = reconciler.get_vehicle_summary(VIN)
    assert state is not None
    assert len(state.active_conflicts) == 1


@pytest.mark.asyncio
async def test_expiring_registration_warns_and_scores() -> None:
    reconciler = VehicleReconciler(clock=_Clock())

    result = await reconciler.add_document(_doc(DocumentType.REGISTRATION, {"expiration_date": _in_days(5)}))
    await reconciler.add_document(_doc(DocumentType.INSURANCE, {"expiration_date": _in_days(200)}, minutes=1))

    assert "Registration expires in 5 days" in result.warnings
    state = reconciler.get_vehicle_summary(VIN)
    assert state is not None
    registration = state.category(ComplianceCategory.REGISTRATION)
    assert registration is not None
    assert registration.days_until_expiry == 5
    assert registration.status == ComplianceStatus.EXPIRING_SOON
    assert registration.urgency == Urgency.CRITICAL
    assert state.compliance_score == 57
    assert state.risk_level == RiskLevel.HIGH
    assert state.compliance_band == ComplianceBand.WARNING


@pytest.mark.asyncio
async def test_low_confidence_and_gap_warnings() -> None:
    reconciler = VehicleReconciler(clock=_Clock())

    result = await reconciler.add_document(
        _doc(DocumentType.REGISTRATION, {"make": "Ford", "expiration_date": "whenever"}, confidence=0.5)
    )

    assert any(warning.startswith("Low extraction confidence") for warning in result.warnings)
    assert any("Could not interpret registration_expiration_date" in warning for warning in result.warnings)
    state = reconciler.get_vehicle_summary(VIN)
    assert state is not None
    assert state.needs_review is True
    assert state.category(ComplianceCategory.REGISTRATION).status == ComplianceStatus.MISSING


@pytest.mark.asyncio
async def test_invalid_document_is_rejected_without_side_effects() -> None:
    reconciler = VehicleReconciler(clock=_Clock())

    with pytest.raises(InvalidDocumentError):
        await reconciler.ingest({"vin": "short", "documentType": "registration", "fields": {"make": "Ford"}})
    with pytest.raises(InvalidDocumentError):
        await reconciler.add_document({"vin": VIN})  # type: ignore[arg-type]

    assert len(reconciler) == 0


@pytest.mark.asyncio
async def test_ingest_uses_clock_for_missing_timestamp() -> None:
    reconciler = VehicleReconciler(clock=_Clock())
    result = await reconciler.ingest({"vin": VIN, "documentType": "registration", "fields": {"make": "Ford"}})
    assert reconciler.get_documents(VIN)[0].received_at == NOW
    assert result.is_new_vehicle is True


@pytest.mark.asyncio
async def test_reingesting_unstamped_payload_later_is_a_duplicate() -> None:
    clock = _Clock()
    reconciler = VehicleReconciler(clock=clock)
    payload = {"vin": VIN, "documentType": "registration", "fields": {"make": "Ford", "plate": "ABC123"}}

    first = await reconciler.ingest(payload)
    clock.now = NOW + timedelta(minutes=10)
    second = await reconciler.ingest(payload)

    assert second.duplicate is True
    assert second.document_id == first.document_id
    assert reconciler.get_vehicle_summary(VIN).document_count == 1
    assert len(reconciler.get_documents(VIN)) == 1


@pytest.mark.asyncio
async def test_explicitly_stamped_payloads_stay_distinct() -> None:
    reconciler = VehicleReconciler(clock=_Clock())
    payload = {"vin": VIN, "documentType": "registration", "fields": {"make": "Ford"}}

    await reconciler.ingest({**payload, "receivedAt": "2025-05-01T00:00:00Z"})
    result = await reconciler.ingest({**payload, "receivedAt": "2025-05-02T00:00:00Z"})

    assert result.duplicate is False
    assert reconciler.get_vehicle_summary(VIN).document_count == 2


@pytest.mark.asyncio
async def test_events_for_new_and_updated_vehicle() -> None:
    bus = EventBus()
    types: list[FleetEventType] = []
    bus.subscribe_all(lambda event: types.append(event.type))
    reconciler = VehicleReconciler(clock=_Clock(), event_bus=bus)

    await reconciler.add_document(_doc(DocumentType.REGISTRATION, {"make": "Ford"}))
    await reconciler.add_document(_doc(DocumentType.INSURANCE, {"policy_number": "P-1"}, minutes=1))

    assert types == [
        FleetEventType.VEHICLE_ADDED,
        FleetEventType.FLEET_DATA_CHANGED,
        FleetEventType.DOCUMENT_PROCESSED,
        FleetEventType.FLEET_DATA_CHANGED,
        FleetEventType.VEHICLE_UPDATED,
        FleetEventType.FLEET_DATA_CHANGED,
        FleetEventType.DOCUMENT_PROCESSED,
        FleetEventType.FLEET_DATA_CHANGED,
    ]


@pytest.mark.asyncio
async def test_failing_subscriber_does_not_break_ingest() -> None:
    bus = EventBus()

    def broken(event: FleetEvent) -> None:
        raise RuntimeError("subscriber bug")

    bus.subscribe_all(broken)
    reconciler = VehicleReconciler(clock=_Clock(), event_bus=bus)

    result = await reconciler.add_document(_doc(DocumentType.REGISTRATION, {"make": "Ford"}))

    assert result.success is True
    assert VIN in reconciler


@pytest.mark.asyncio
async def test_concurrent_documents_for_one_vin_are_serialized() -> None:
    reconciler = VehicleReconciler(clock=_Clock())
    docs = [_doc(DocumentType.OTHER, {"truck_number": f"T{i}"}, minutes=i) for i in range(10)]

    results = await asyncio.gather(*(reconciler.add_document(doc) for doc in docs))

    assert sum(result.is_new_vehicle for result in results) == 1
    state = reconciler.get_vehicle_summary(VIN)
    assert state is not None
    assert state.document_count == 10


@pytest.mark.asyncio
async def test_stale_snapshot_is_reevaluated_on_read() -> None:
    clock = _Clock()
    reconciler = VehicleReconciler(ReconcilerConfig(snapshot_max_age=60), clock=clock)
    await reconciler.add_document(_doc(DocumentType.REGISTRATION, {"expiration_date": _in_days(40)}))
    assert reconciler.get_vehicle_summary(VIN).category(ComplianceCategory.REGISTRATION).status == (
        ComplianceStatus.CURRENT
    )

    clock.now = NOW + timedelta(days=20)
    state = reconciler.get_vehicle_summary(VIN)

    assert state is not None
    assert state.category(ComplianceCategory.REGISTRATION).days_until_expiry == 20
    assert state.category(ComplianceCategory.REGISTRATION).status == ComplianceStatus.EXPIRING_SOON
    assert state.last_updated == NOW


async def _fleet() -> VehicleReconciler:
    reconciler = VehicleReconciler(clock=_Clock())
    await reconciler.add_document(
        _doc(
            DocumentType.OTHER,
            {
                "make": "Volvo",
                "model": "VNL",
                "year": 2021,
                "license_plate": "TRK-1",
                "registration_expiration_date": _in_days(200),
                "insurance_expiration_date": _in_days(200),
                "inspection_expiration_date": _in_days(200),
            },
        )
    )
    await reconciler.add_document(
        _doc(DocumentType.REGISTRATION, {"make": "Mack", "expiration_date": _in_days(-3)}, vin=OTHER_VIN)
    )
    return reconciler


@pytest.mark.asyncio
async def test_queries() -> None:
    reconciler = await _fleet()

    vehicles = reconciler.get_all_vehicles()
    assert [v.vin for v in vehicles] == [OTHER_VIN, VIN]
    assert vehicles[0].risk_level == RiskLevel.CRITICAL

    assert [v.vin for v in reconciler.search_vehicles(VehicleSearchFilter(make="volv"))] == [VIN]
    assert [v.vin for v in reconciler.search_vehicles(VehicleSearchFilter(compliance_band="compliant"))] == [VIN]
    assert [v.vin for v in reconciler.search_vehicles(None, lambda v: v.year == 2021)] == [VIN]
    assert reconciler.get_vehicle_summary("not-a-vin") is None
    assert VIN in [v.vin for v in reconciler.search_vehicles(VehicleSearchFilter(lifecycle=VehicleLifecycle.COMPLIANT))]

    stats = reconciler.get_stats()
    assert stats.total_vehicles == 2
    assert stats.total_documents == 2
    assert stats.by_band[ComplianceBand.COMPLIANT] == 1
    assert stats.by_band[ComplianceBand.NON_COMPLIANT] == 1
    assert stats.expiration_alerts.expired == 1

    expiring = reconciler.get_expiring_vehicles(30)
    assert [v.vin for v in expiring] == [OTHER_VIN]
    assert expiring[0].expirations[0].urgency == Urgency.EXPIRED
    assert expiring[0].soonest_days == -3

    breakdown = {row.category: row for row in reconciler.get_compliance_breakdown()}
    assert breakdown[ComplianceCategory.REGISTRATION].current == 1
    assert breakdown[ComplianceCategory.REGISTRATION].expired == 1
    assert breakdown[ComplianceCategory.REGISTRATION].compliance_rate == 50.0


@pytest.mark.asyncio
async def test_export_and_recent_documents() -> None:
    reconciler = await _fleet()

    export = reconciler.export_data()
    assert {v.vin for v in export.vehicles} == {VIN, OTHER_VIN}
    assert len(export.documents[VIN]) == 1
    payload = export.to_json_dict()
    assert payload["stats"]["totalVehicles"] == 2

    recent = reconciler.recent_documents(5)
    assert [doc.vin for doc, _ in recent] == [OTHER_VIN, VIN]
    assert all(created for _, created in recent)


@pytest.mark.asyncio
async def test_snapshot_restore_and_clear() -> None:
    reconciler = await _fleet()
    memento = reconciler.snapshot()

    await reconciler.add_document(_doc(DocumentType.INSURANCE, {"policy_number": "X"}, minutes=3))
    reconciler.restore(memento)

    assert reconciler.get_vehicle_summary(VIN).document_count == 1

    await reconciler.clear()
    assert len(reconciler) == 0
    assert reconciler.get_documents(VIN) == ()
