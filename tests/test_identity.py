from __future__ import annotations

import pytest
from pydantic import ValidationError

from fleetrecon.exceptions import InvalidInputError
from fleetrecon.models.identity import VehicleIdentity, normalize_vin, try_normalize_vin


def test_normalize_vin_strips_separators_and_uppercases() -> None:
    assert normalize_vin(" 1hgcm8-2633a 004352 ") == "1HGCM82633A004352"


@pytest.mark.parametrize(
    "raw",
    [
        None,
        "",
        "1HGCM82633A00435",  # 16 characters
        "1HGCM82633A0043522",  # 18 characters
        "1HGCM82633A00435O",  # letter O is never used
        12345678901234567,
    ],
)
def test_normalize_vin_rejects_malformed(raw: object) -> None:
    with pytest.raises(InvalidInputError):
        normalize_vin(raw)
    assert try_normalize_vin(raw) is None


def test_vehicle_identity_validates_and_exposes_parts() -> None:
    identity = VehicleIdentity(vin="1hgcm82633a004352")
    assert str(identity) == "1HGCM82633A004352"
    assert identity.wmi == "1HG"
    assert identity.serial == "004352"

    with pytest.raises(ValidationError):
        VehicleIdentity(vin="not-a-vin")
