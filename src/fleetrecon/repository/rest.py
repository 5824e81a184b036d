"""REST repository adapter over aiohttp."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Any

import aiohttp
from pydantic import ValidationError

from fleetrecon._redact import redact_for_log
from fleetrecon.exceptions import PersistenceError
from fleetrecon.models.vehicle import VehicleRecord
from fleetrecon.repository.base import PersistResult

_logger = logging.getLogger(__name__)


def _unwrap(body: Any, *keys: str) -> Any:
    """Unwrap ``{"data": ...}``-style envelopes used by the CRUD backend."""
    if isinstance(body, dict):
        for key in keys:
            if key in body:
                return body[key]
    return body


class RestVehicleRepository:
    """Repository backed by the CRUD layer's REST API.

    The caller owns ``http_session``; this adapter never closes it.

    Endpoints (relative to ``base_url``):

    * ``GET /vehicles`` list rows
    * ``POST /vehicles`` create or update a row
    * ``DELETE /vehicles/{id}`` delete one row
    * ``DELETE /vehicles`` delete every row
    """

    def __init__(
        self,
        base_url: str,
        http_session: aiohttp.ClientSession,
        *,
        headers: Mapping[str, str] | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._http = http_session
        self._headers: dict[str, str] = {
            "accept": "application/json",
            **(headers or {}),
        }

    async def _request(
        self,
        method: str,
        path: str,
        *,
        operation: str,
        record_id: str | None = None,
        payload: Mapping[str, Any] | None = None,
    ) -> tuple[int, Any]:
        url = f"{self._base_url}{path}"
        _logger.debug("%s %s payload=%s", method, url, redact_for_log(payload))
        try:
            async with self._http.request(method, url, json=payload, headers=self._headers) as resp:
                text = await resp.text()
                status = resp.status
        except aiohttp.ClientError as exc:
            raise PersistenceError(
                f"{operation} request to {path} failed: {exc}",
                record_id=record_id,
                operation=operation,
            ) from exc

        if status == 404 and operation == "delete":
            return status, None
        if not 200 <= status < 300:
            raise PersistenceError(
                f"HTTP {status} from {method} {path}: {text[:200]}",
                record_id=record_id,
                operation=operation,
                status_code=status,
            )
        if not text.strip():
            return status, None
        try:
            return status, json.loads(text)
        except json.JSONDecodeError as exc:
            raise PersistenceError(
                f"Invalid JSON from {method} {path}: {text[:200]}",
                record_id=record_id,
                operation=operation,
                status_code=status,
            ) from exc

    async def save(self, vehicle: VehicleRecord) -> PersistResult:
        payload = vehicle.model_dump(mode="json", by_alias=True, exclude_none=True)
        _, body = await self._request("POST", "/vehicles", operation="save", record_id=vehicle.id, payload=payload)
        data = _unwrap(body, "data", "vehicle")
        record = vehicle
        if isinstance(data, dict):
            try:
                record = VehicleRecord.model_validate({**payload, **data})
            except ValidationError:
                _logger.debug("Unparseable save response for %s; keeping local row", vehicle.id, exc_info=True)
        return PersistResult(success=True, record_id=record.id, record=record)

    async def delete(self, record_id: str) -> PersistResult:
        status, _ = await self._request("DELETE", f"/vehicles/{record_id}", operation="delete", record_id=record_id)
        if status == 404:
            return PersistResult(success=False, record_id=record_id, error=f"No vehicle {record_id!r}")
        return PersistResult(success=True, record_id=record_id)

    async def list(self) -> list[VehicleRecord]:
        _, body = await self._request("GET", "/vehicles", operation="list")
        rows = _unwrap(body, "data", "vehicles")
        if rows is None:
            return []
        if not isinstance(rows, list):
            raise PersistenceError("Vehicle list response is not a list", operation="list")
        records: list[VehicleRecord] = []
        for row in rows:
            try:
                records.append(VehicleRecord.model_validate(row))
            except ValidationError:
                _logger.warning("Skipping unparseable vehicle row %s", redact_for_log(row), exc_info=True)
        return records

    async def clear(self) -> PersistResult:
        await self._request("DELETE", "/vehicles", operation="clear")
        return PersistResult(success=True)
