"""Structural repository interface consumed by the fleet view service."""

from __future__ import annotations

from typing import Protocol

from fleetrecon.models._base import FleetBaseModel
from fleetrecon.models.vehicle import VehicleRecord


class PersistResult(FleetBaseModel):
    """Per-item outcome of a repository write."""

    success: bool
    record_id: str | None = None
    record: VehicleRecord | None = None
    error: str | None = None


class VehicleRepository(Protocol):
    """Storage for the CRUD layer's vehicle rows.

    Having a protocol here makes it easy to pass test doubles while keeping
    the production adapters concrete.  Adapters report an item-level
    failure either as ``PersistResult(success=False)`` or by raising
    :class:`~fleetrecon.exceptions.PersistenceError`; anything else is
    treated as a catastrophic failure by batch operations.
    """

    async def save(self, vehicle: VehicleRecord) -> PersistResult: ...

    async def delete(self, record_id: str) -> PersistResult: ...

    async def list(self) -> list[VehicleRecord]: ...

    async def clear(self) -> PersistResult: ...
