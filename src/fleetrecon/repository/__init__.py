"""Persistence repository interface and adapters.

The fleet view service only talks to :class:`VehicleRepository`; storage
technology is chosen by whoever constructs it.
"""

from fleetrecon.repository.base import PersistResult, VehicleRepository
from fleetrecon.repository.memory import InMemoryVehicleRepository
from fleetrecon.repository.rest import RestVehicleRepository

__all__ = [
    "InMemoryVehicleRepository",
    "PersistResult",
    "RestVehicleRepository",
    "VehicleRepository",
]
