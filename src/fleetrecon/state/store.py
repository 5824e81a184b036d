"""Append-only document record store.

This is the only component allowed to hold document history.  Stored
extractions are frozen and per-VIN histories are immutable tuples that are
swapped on append, so a memento is just a shallow copy of the indexes.
"""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import NamedTuple

from fleetrecon.exceptions import InvalidDocumentError
from fleetrecon.models._base import FleetBaseModel
from fleetrecon.models.documents import DocumentExtraction

_logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class StoredDocument(NamedTuple):
    sequence: int
    extraction: DocumentExtraction


class VehicleRef(FleetBaseModel):
    """Where an appended extraction landed."""

    vin: str
    document_id: str
    sequence: int
    is_new_vehicle: bool = False
    duplicate: bool = False


@dataclasses.dataclass(frozen=True)
class StoreMemento:
    """Immutable copy of the store indexes, used for rollback."""

    histories: dict[str, tuple[StoredDocument, ...]]
    by_id: dict[str, StoredDocument]
    first_seen: dict[str, datetime]
    sequence: int


class DocumentRecordStore:
    """In-memory append-only log of document extractions per VIN.

    Given the same sequence of appends the store always produces the same
    histories, including the ingestion ``sequence`` used as the final merge
    tie-breaker.
    """

    def __init__(
        self,
        *,
        clock: Callable[[], datetime] = _utcnow,
        strict_document_ids: bool = True,
    ) -> None:
        self._clock = clock
        self._strict_document_ids = strict_document_ids
        self._histories: dict[str, tuple[StoredDocument, ...]] = {}
        self._by_id: dict[str, StoredDocument] = {}
        self._first_seen: dict[str, datetime] = {}
        self._sequence = 0

    def append(self, extraction: DocumentExtraction) -> VehicleRef:
        """Append *extraction* to the history of its VIN.

        Re-appending an extraction with identical content is a no-op that
        reports ``duplicate=True``.  Low-confidence extractions are kept;
        confidence only weights them downstream.
        """
        if not isinstance(extraction, DocumentExtraction):
            raise InvalidDocumentError(f"Expected a DocumentExtraction, got {type(extraction).__name__}")

        existing = self._by_id.get(extraction.document_id)
        if existing is not None:
            if existing.extraction.same_content(extraction):
                return VehicleRef(
                    vin=existing.extraction.vin,
                    document_id=extraction.document_id,
                    sequence=existing.sequence,
                    duplicate=True,
                )
            if self._strict_document_ids:
                raise InvalidDocumentError(
                    f"Document id {extraction.document_id!r} already stored with different content",
                    vin=extraction.vin,
                    document_id=extraction.document_id,
                )
            derived = f"{extraction.document_id}-{extraction.content_hash()[:12]}"
            _logger.warning(
                "Document id %s reused with different content; storing as %s",
                extraction.document_id,
                derived,
            )
            return self.append(extraction.model_copy(update={"document_id": derived}))

        vin = extraction.vin
        is_new = vin not in self._histories
        self._sequence += 1
        entry = StoredDocument(self._sequence, extraction)
        self._histories[vin] = (*self._histories.get(vin, ()), entry)
        self._by_id[extraction.document_id] = entry
        if is_new:
            self._first_seen[vin] = self._clock()

        _logger.debug(
            "Stored %s document %s for vin=%s (sequence=%d confidence=%.2f)",
            extraction.document_type.value,
            extraction.document_id,
            vin,
            self._sequence,
            extraction.extraction_confidence,
        )
        return VehicleRef(
            vin=vin,
            document_id=extraction.document_id,
            sequence=self._sequence,
            is_new_vehicle=is_new,
        )

    def entries(self, vin: str) -> tuple[StoredDocument, ...]:
        return self._histories.get(vin, ())

    def documents(self, vin: str) -> tuple[DocumentExtraction, ...]:
        return tuple(entry.extraction for entry in self.entries(vin))

    def get(self, document_id: str) -> DocumentExtraction | None:
        entry = self._by_id.get(document_id)
        return entry.extraction if entry is not None else None

    def first_seen(self, vin: str) -> datetime | None:
        return self._first_seen.get(vin)

    def has_vehicle(self, vin: str) -> bool:
        return vin in self._histories

    def vins(self) -> list[str]:
        return sorted(self._histories)

    def all_entries(self) -> list[StoredDocument]:
        """Every stored document across the fleet, in ingestion order."""
        return sorted(self._by_id.values(), key=lambda entry: entry.sequence)

    @property
    def total_documents(self) -> int:
        return len(self._by_id)

    def snapshot(self) -> StoreMemento:
        return StoreMemento(
            histories=dict(self._histories),
            by_id=dict(self._by_id),
            first_seen=dict(self._first_seen),
            sequence=self._sequence,
        )

    def restore(self, memento: StoreMemento) -> None:
        self._histories = dict(memento.histories)
        self._by_id = dict(memento.by_id)
        self._first_seen = dict(memento.first_seen)
        self._sequence = memento.sequence

    def clear(self) -> None:
        self._histories.clear()
        self._by_id.clear()
        self._first_seen.clear()
        self._sequence = 0
