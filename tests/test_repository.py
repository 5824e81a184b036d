from __future__ import annotations

import json
from typing import Any

import aiohttp
import pytest

from fleetrecon.exceptions import PersistenceError
from fleetrecon.models.vehicle import VehicleRecord
from fleetrecon.repository import InMemoryVehicleRepository, RestVehicleRepository

VIN = "1HGCM82633A004352"


class _FakeResponse:
    def __init__(self, status: int, body: Any) -> None:
        self.status = status
        self._text = body if isinstance(body, str) else json.dumps(body)

    async def text(self) -> str:
        return self._text

    async def __aenter__(self) -> _FakeResponse:
        return self

    async def __aexit__(self, *exc: object) -> None:
        return None


class FakeCrudBackend:
    """Minimal stand-in for ``aiohttp.ClientSession.request``."""

    def __init__(self, responses: dict[tuple[str, str], tuple[int, Any]] | None = None) -> None:
        self.responses = responses or {}
        self.calls: list[tuple[str, str, Any]] = []
        self.fail_with: Exception | None = None

    def request(self, method: str, url: str, *, json: Any = None, headers: Any = None) -> _FakeResponse:
        self.calls.append((method, url, json))
        if self.fail_with is not None:
            raise self.fail_with
        path = url.split("://", 1)[-1].split("/", 1)[-1]
        status, body = self.responses.get((method, "/" + path), (200, ""))
        return _FakeResponse(status, body)


def _repo(backend: FakeCrudBackend) -> RestVehicleRepository:
    return RestVehicleRepository("https://crud.example/api/", backend, headers={"x-api-key": "k"})  # type: ignore[arg-type]


@pytest.mark.asyncio
async def test_memory_repository_roundtrip() -> None:
    repo = InMemoryVehicleRepository()
    record = VehicleRecord(id="r1", vin=VIN, make="Ford")

    saved = await repo.save(record)
    assert saved.success is True
    assert await repo.list() == [record]

    missing = await repo.delete("nope")
    assert missing.success is False
    assert (await repo.delete("r1")).success is True
    assert len(repo) == 0


@pytest.mark.asyncio
async def test_rest_save_posts_camel_case_and_merges_response() -> None:
    backend = FakeCrudBackend({("POST", "/api/vehicles"): (201, {"data": {"id": "srv-9", "lastUpdated": None}})})
    record = VehicleRecord(id=VIN, vin=VIN, make="Ford", license_plate="7ABC123")

    result = await _repo(backend).save(record)

    method, url, payload = backend.calls[0]
    assert (method, url) == ("POST", "https://crud.example/api/vehicles")
    assert payload["licensePlate"] == "7ABC123"
    assert result.success is True
    assert result.record_id == "srv-9"
    assert result.record is not None
    assert result.record.make == "Ford"


@pytest.mark.asyncio
async def test_rest_list_unwraps_envelope_and_skips_bad_rows() -> None:
    backend = FakeCrudBackend(
        {
            ("GET", "/api/vehicles"): (
                200,
                {"vehicles": [{"id": "a", "vin": VIN, "make": "Volvo"}, {"vin": "no id"}]},
            )
        }
    )

    records = await _repo(backend).list()

    assert [r.id for r in records] == ["a"]
    assert records[0].make == "Volvo"


@pytest.mark.asyncio
async def test_rest_delete_missing_row_is_soft_failure() -> None:
    backend = FakeCrudBackend({("DELETE", "/api/vehicles/r1"): (404, "not found")})

    result = await _repo(backend).delete("r1")

    assert result.success is False


@pytest.mark.asyncio
async def test_rest_http_error_raises_persistence_error() -> None:
    backend = FakeCrudBackend({("POST", "/api/vehicles"): (500, "boom")})

    with pytest.raises(PersistenceError) as excinfo:
        await _repo(backend).save(VehicleRecord(id="r1", vin=VIN))

    assert excinfo.value.status_code == 500
    assert excinfo.value.record_id == "r1"
    assert excinfo.value.operation == "save"


@pytest.mark.asyncio
async def test_rest_transport_error_is_wrapped() -> None:
    backend = FakeCrudBackend()
    backend.fail_with = aiohttp.ClientConnectionError("refused")

    with pytest.raises(PersistenceError, match="refused"):
        await _repo(backend).clear()


@pytest.mark.asyncio
async def test_rest_invalid_json_raises() -> None:
    backend = FakeCrudBackend({("GET", "/api/vehicles"): (200, "<html>")})

    with pytest.raises(PersistenceError, match="Invalid JSON"):
        await _repo(backend).list()
