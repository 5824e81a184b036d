"""Vehicle identity: the VIN and its normalisation rules."""

from __future__ import annotations

import re
from typing import Annotated, Any

from pydantic import BeforeValidator, Field

from fleetrecon.exceptions import InvalidInputError
from fleetrecon.models._base import FleetBaseModel

# 17 characters; I, O and Q are never used in a VIN.
_VIN_PATTERN = re.compile(r"^[A-HJ-NPR-Z0-9]{17}$")
_VIN_SEPARATORS = re.compile(r"[\s\-]+")


def normalize_vin(value: Any) -> str:
    """Return the canonical (upper-case) form of *value*.

    Whitespace and hyphens are removed before validation.  Raises
    :class:`InvalidInputError` when the result is not a 17-character VIN.
    """
    if value is None:
        raise InvalidInputError("VIN is missing")
    if not isinstance(value, str):
        raise InvalidInputError(f"VIN must be a string, got {type(value).__name__}")
    vin = _VIN_SEPARATORS.sub("", value).upper()
    if not vin:
        raise InvalidInputError("VIN is missing")
    if not _VIN_PATTERN.match(vin):
        raise InvalidInputError(f"Malformed VIN {vin!r}", vin=vin)
    return vin


def try_normalize_vin(value: Any) -> str | None:
    """Like :func:`normalize_vin` but returns ``None`` for invalid input."""
    try:
        return normalize_vin(value)
    except InvalidInputError:
        return None


def _validate_vin(value: Any) -> str:
    try:
        return normalize_vin(value)
    except InvalidInputError as exc:
        # pydantic only converts ValueError/AssertionError into validation errors.
        raise ValueError(str(exc)) from exc


Vin = Annotated[str, BeforeValidator(_validate_vin)]
"""Annotated type that normalises and validates a VIN."""


class VehicleIdentity(FleetBaseModel):
    """Primary and only stable identity key of a vehicle."""

    vin: Vin = Field(..., description="17-character VIN, upper-case")

    def __str__(self) -> str:
        return self.vin

    @property
    def wmi(self) -> str:
        """World manufacturer identifier (first three characters)."""
        return self.vin[:3]

    @property
    def serial(self) -> str:
        """Production sequence number (last six characters)."""
        return self.vin[-6:]
