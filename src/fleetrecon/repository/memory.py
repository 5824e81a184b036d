"""In-process repository adapter."""

from __future__ import annotations

from collections.abc import Iterable

from fleetrecon.models.vehicle import VehicleRecord
from fleetrecon.repository.base import PersistResult


class InMemoryVehicleRepository:
    """Dict-backed repository, keyed by record id.

    Useful for tests, demos and the command-line tool.
    """

    def __init__(self, records: Iterable[VehicleRecord] = ()) -> None:
        self._records: dict[str, VehicleRecord] = {record.id: record for record in records}

    async def save(self, vehicle: VehicleRecord) -> PersistResult:
        self._records[vehicle.id] = vehicle
        return PersistResult(success=True, record_id=vehicle.id, record=vehicle)

    async def delete(self, record_id: str) -> PersistResult:
        if self._records.pop(record_id, None) is None:
            return PersistResult(success=False, record_id=record_id, error=f"No vehicle {record_id!r}")
        return PersistResult(success=True, record_id=record_id)

    async def list(self) -> list[VehicleRecord]:
        return sorted(self._records.values(), key=lambda record: record.id)

    async def clear(self) -> PersistResult:
        self._records.clear()
        return PersistResult(success=True)

    def __len__(self) -> int:
        return len(self._records)
