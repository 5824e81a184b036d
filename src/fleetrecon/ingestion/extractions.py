"""Build document extractions from raw payloads.

This module centralizes the common pattern used across ingestion paths:

- locate the VIN, document type and envelope metadata in the payload
- prune placeholders and unwrap ``{"value": ..., "confidence": ...}`` cells
- map legacy/variant field spellings onto the document's field bundle
- validate into a frozen :class:`DocumentExtraction`

Validation failures surface as :class:`InvalidDocumentError`; the record
store never sees a half-built extraction.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import datetime
from typing import Any

from pydantic import ValidationError
from pydantic.alias_generators import to_snake

from fleetrecon._redact import redact_for_log
from fleetrecon.enums import DataSource, DocumentType
from fleetrecon.exceptions import InvalidDocumentError
from fleetrecon.ingestion.normalize import (
    canonical_field_name,
    data_source_from,
    document_type_from,
    local_field_name,
    prune_fields,
    safe_str,
)
from fleetrecon.models.documents import FIELDS_BY_DOCUMENT_TYPE, DocumentExtraction
from fleetrecon.models.identity import try_normalize_vin
from fleetrecon.models.vehicle import VehicleInput

_logger = logging.getLogger(__name__)

_ENVELOPE_KEYS: dict[str, tuple[str, ...]] = {
    "document_id": ("documentId", "document_id", "id"),
    "vin": ("vin", "VIN", "vehicleVin", "vehicle_vin"),
    "document_type": ("documentType", "document_type", "type"),
    "confidence": ("extractionConfidence", "extraction_confidence", "confidence"),
    "source": ("source",),
    "file_name": ("fileName", "file_name", "filename"),
    "received_at": ("receivedAt", "received_at", "processedAt"),
}
_ALL_ENVELOPE_KEYS = frozenset(key for keys in _ENVELOPE_KEYS.values() for key in keys)


def _first(payload: Mapping[str, Any], name: str) -> Any:
    for key in _ENVELOPE_KEYS[name]:
        if key in payload and payload[key] is not None:
            return payload[key]
    return None


def map_fields(document_type: DocumentType, raw_fields: Mapping[str, Any]) -> tuple[dict[str, Any], list[str]]:
    """Map raw field spellings onto the bundle of *document_type*.

    Returns the mapped fields and the keys that had no home in the bundle.
    The first spelling seen for a field wins.
    """
    bundle = FIELDS_BY_DOCUMENT_TYPE[document_type]
    known = bundle.model_fields
    mapped: dict[str, Any] = {}
    dropped: list[str] = []

    for key, value in prune_fields(dict(raw_fields)).items():
        if key in _ALL_ENVELOPE_KEYS:
            continue
        target: str | None = None
        snake = to_snake(key)
        if snake in known and snake != "document_type":
            target = snake
        else:
            local = local_field_name(key)
            if local is not None and local in known:
                target = local
            else:
                canonical = canonical_field_name(key)
                if canonical is not None:
                    target = bundle.local_name_for(canonical)
        if target is None:
            dropped.append(key)
            continue
        mapped.setdefault(target, value)

    return mapped, dropped


def build_extraction(
    payload: Mapping[str, Any],
    *,
    source: DataSource | str | None = None,
    file_name: str | None = None,
    received_at: datetime | None = None,
    document_type: DocumentType | str | None = None,
    default_received_at: datetime | None = None,
) -> DocumentExtraction:
    """Build a :class:`DocumentExtraction` from an extraction-service payload.

    Accepts both the envelope form (``{"vin", "documentType", "fields",
    "extractionConfidence", ...}``) and a flat mapping where field values sit
    next to the envelope keys.  Keyword arguments take precedence over the
    payload's own metadata.  ``default_received_at`` applies only when
    neither the keyword nor the payload carries a receipt time.

    Raises
    ------
    InvalidDocumentError
        When the VIN is missing or malformed, the document type is not
        recognised, or the payload does not validate.
    """
    if not isinstance(payload, Mapping):
        raise InvalidDocumentError(f"Extraction payload must be a mapping, got {type(payload).__name__}")

    _logger.debug("Building extraction from payload=%s", redact_for_log(dict(payload)))

    raw_fields = payload.get("fields")
    if raw_fields is None:
        raw_fields = payload.get("extractedData")
    if raw_fields is None:
        raw_fields = {k: v for k, v in payload.items() if k not in _ALL_ENVELOPE_KEYS}
    if not isinstance(raw_fields, Mapping):
        raise InvalidDocumentError("Extraction fields must be a mapping")

    raw_vin = _first(payload, "vin")
    if raw_vin is None:
        raw_vin = _first(raw_fields, "vin")
    vin = try_normalize_vin(raw_vin)
    document_id = safe_str(_first(payload, "document_id"))
    if vin is None:
        raise InvalidDocumentError(
            "Extraction has no VIN" if raw_vin is None else f"Malformed VIN {raw_vin!r}",
            vin=safe_str(raw_vin),
            document_id=document_id,
        )

    raw_type = document_type if document_type is not None else _first(payload, "document_type")
    doc_type = document_type_from(raw_type)
    if doc_type is None:
        raise InvalidDocumentError(
            f"Unrecognised document type {raw_type!r}",
            vin=vin,
            document_id=document_id,
        )

    fields, dropped = map_fields(doc_type, raw_fields)
    if dropped:
        _logger.debug("Ignoring fields with no mapping for %s vin=%s: %s", doc_type.value, vin, dropped)

    values: dict[str, Any] = {
        "vin": vin,
        "document_type": doc_type,
        "source": data_source_from(source if source is not None else _first(payload, "source")),
        "fields": fields,
        "file_name": file_name if file_name is not None else safe_str(_first(payload, "file_name")),
    }
    if document_id is not None:
        values["document_id"] = document_id
    confidence = _first(payload, "confidence")
    if confidence is not None:
        values["extraction_confidence"] = confidence
    stamp = received_at if received_at is not None else _first(payload, "received_at")
    defaulted = stamp is None
    if defaulted:
        stamp = default_received_at
    if stamp is not None:
        values["received_at"] = stamp

    try:
        extraction = DocumentExtraction.model_validate(values)
    except ValidationError as exc:
        raise InvalidDocumentError(
            f"Invalid {doc_type.value} extraction for {vin}: {exc.errors(include_url=False)}",
            vin=vin,
            document_id=document_id,
        ) from exc

    if defaulted and document_id is None:
        # A receipt time we made up must not make a re-upload look like a new document.
        extraction = extraction.model_copy(
            update={"document_id": extraction.content_hash(include_received_at=False)}
        )
    return extraction


def extraction_from_vehicle_input(
    item: VehicleInput,
    *,
    vin: str,
    confidence: float,
    received_at: datetime,
) -> DocumentExtraction:
    """Forward a bulk-upload row into the reconciler as an ``other`` extraction."""
    fields = {field.value: value for field, value in item.canonical_fields().items()}
    try:
        return DocumentExtraction(
            vin=vin,
            document_type=DocumentType.OTHER,
            source=item.source,
            fields=fields,
            extraction_confidence=confidence,
            received_at=received_at,
            file_name=item.file_name,
        )
    except ValidationError as exc:
        raise InvalidDocumentError(f"Invalid vehicle row for {vin}: {exc}", vin=vin) from exc
