"""Field merge resolver.

Given the ordered document history of one VIN, compute the current value
of every attribute, the extractions that disagree on identity fields, and
the values that could not be interpreted at all.

The resolver is pure: the same history and ``now`` always produce the same
:class:`Resolution`.
"""

from __future__ import annotations

import dataclasses
import hashlib
import logging
from collections.abc import Sequence
from datetime import date, datetime
from typing import Any

from fleetrecon.compliance import days_until
from fleetrecon.enums import DocumentType, FieldName
from fleetrecon.ingestion.normalize import normalize_text, parse_amount, parse_date, parse_year, safe_str
from fleetrecon.models.vehicle import Conflict, FieldGap, FieldState
from fleetrecon.state.policy import DOCUMENT_EXPIRY_FIELDS, is_date_field, is_identity_field, rank_key
from fleetrecon.state.store import StoredDocument

_logger = logging.getLogger(__name__)


class _Unparseable(Exception):
    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(reason)


def parse_field_value(field: FieldName, value: Any) -> Any:
    """Interpret a raw extracted value for *field*.

    Returns ``None`` when the value is blank and raises ``_Unparseable`` when
    it is present but cannot be interpreted.
    """
    if is_date_field(field):
        parsed_date = parse_date(value)
        if parsed_date is None:
            raise _Unparseable(f"unparseable date {value!r}")
        return parsed_date
    if field == FieldName.YEAR:
        year = parse_year(value)
        if year is None:
            raise _Unparseable(f"invalid model year {value!r}")
        return year
    if field == FieldName.COVERAGE_AMOUNT:
        amount = parse_amount(value)
        if amount is None:
            raise _Unparseable(f"invalid coverage amount {value!r}")
        return amount
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    text = safe_str(value)
    if text is None:
        return None
    return " ".join(text.split())


def _comparable(value: Any) -> Any:
    if isinstance(value, str):
        return normalize_text(value)
    return value


@dataclasses.dataclass(frozen=True)
class _Candidate:
    field: FieldName
    value: Any
    entry: StoredDocument
    rank: tuple[Any, ...]

    @property
    def confidence(self) -> float:
        return self.entry.extraction.extraction_confidence


@dataclasses.dataclass(frozen=True)
class Resolution:
    fields: dict[FieldName, FieldState]
    conflicts: tuple[Conflict, ...]
    gaps: tuple[FieldGap, ...]


def conflict_id(vin: str, field: FieldName, document_a: str, document_b: str) -> str:
    """Deterministic id: the same pair of documents always yields the same conflict."""
    first, second = sorted((document_a, document_b))
    blob = f"{vin}|{field.value}|{first}|{second}"
    return hashlib.sha256(blob.encode("utf-8")).hexdigest()[:16]


class FieldMergeResolver:
    """Compute :class:`FieldState` per attribute from a document history."""

    def __init__(self, *, conflict_confidence_threshold: float = 0.6) -> None:
        self._threshold = conflict_confidence_threshold

    def resolve(self, vin: str, entries: Sequence[StoredDocument], now: datetime) -> Resolution:
        candidates: dict[FieldName, list[_Candidate]] = {}
        history: dict[FieldName, list[str]] = {}
        gaps: dict[FieldName, list[FieldGap]] = {}

        for entry in entries:
            extraction = entry.extraction
            for field, raw in extraction.canonical_fields().items():
                history.setdefault(field, []).append(extraction.document_id)
                try:
                    value = parse_field_value(field, raw)
                except _Unparseable as exc:
                    gap = FieldGap(
                        field=field,
                        document_id=extraction.document_id,
                        raw_value=raw,
                        reason=exc.reason,
                    )
                    gaps.setdefault(field, []).append(gap)
                    _logger.warning(
                        "Extraction gap for vin=%s field=%s document=%s: %s",
                        vin,
                        field.value,
                        extraction.document_id,
                        exc.reason,
                    )
                    continue
                if value is None:
                    continue
                rank = rank_key(
                    field,
                    document_type=extraction.document_type,
                    confidence=extraction.extraction_confidence,
                    received_at=extraction.received_at,
                    sequence=entry.sequence,
                )
                candidates.setdefault(field, []).append(_Candidate(field, value, entry, rank))

        eligible_sequences = self._eligible_sequences(entries, now)
        fields: dict[FieldName, FieldState] = {}
        conflicts: list[Conflict] = []

        for field in FieldName:
            if field not in history:
                continue
            ranked = sorted(candidates.get(field, ()), key=lambda c: c.rank, reverse=True)
            conflict = None
            if is_identity_field(field):
                conflict = self._detect_conflict(vin, field, ranked, eligible_sequences)
                if conflict is not None:
                    conflicts.append(conflict)
            field_gaps = tuple(gaps.get(field, ()))
            state = FieldState(
                field=field,
                history=tuple(history[field]),
                conflicted=conflict is not None,
                needs_review=bool(field_gaps),
                gaps=field_gaps,
            )
            if ranked:
                winner = ranked[0]
                extraction = winner.entry.extraction
                state = state.model_copy(
                    update={
                        "current_value": winner.value,
                        "current_source": extraction.source,
                        "current_confidence": extraction.extraction_confidence,
                        "current_document_id": extraction.document_id,
                        "current_document_type": extraction.document_type,
                    }
                )
            fields[field] = state

        all_gaps = tuple(gap for field in FieldName for gap in gaps.get(field, ()))
        return Resolution(fields=fields, conflicts=tuple(conflicts), gaps=all_gaps)

    def _eligible_sequences(self, entries: Sequence[StoredDocument], now: datetime) -> set[int]:
        """Sequences of extractions that are neither expired nor superseded."""
        expiries: dict[int, date | None] = {}
        for entry in entries:
            expiry_field = DOCUMENT_EXPIRY_FIELDS.get(entry.extraction.document_type)
            raw = entry.extraction.canonical_fields().get(expiry_field) if expiry_field else None
            expiries[entry.sequence] = parse_date(raw) if raw is not None else None

        eligible: set[int] = set()
        for entry in entries:
            expiry = expiries[entry.sequence]
            if expiry is not None and days_until(expiry, now) < 0:
                continue
            if self._is_superseded(entry, expiry, entries, expiries):
                continue
            eligible.add(entry.sequence)
        return eligible

    @staticmethod
    def _is_superseded(
        entry: StoredDocument,
        expiry: date | None,
        entries: Sequence[StoredDocument],
        expiries: dict[int, date | None],
    ) -> bool:
        doc_type = entry.extraction.document_type
        if doc_type == DocumentType.OTHER:
            return False
        position = (entry.extraction.received_at, entry.sequence)
        for other in entries:
            if other.extraction.document_type != doc_type:
                continue
            if (other.extraction.received_at, other.sequence) <= position:
                continue
            later_expiry = expiries[other.sequence]
            if later_expiry is not None and (expiry is None or later_expiry > expiry):
                return True
        return False

    def _detect_conflict(
        self,
        vin: str,
        field: FieldName,
        ranked: list[_Candidate],
        eligible_sequences: set[int],
    ) -> Conflict | None:
        eligible = [c for c in ranked if c.entry.sequence in eligible_sequences]
        if len(eligible) < 2:
            return None
        top = eligible[0]
        top_value = _comparable(top.value)
        dissent = next((c for c in eligible[1:] if _comparable(c.value) != top_value), None)
        if dissent is None:
            return None
        if top.confidence < self._threshold or dissent.confidence < self._threshold:
            return None

        a, b = top.entry.extraction, dissent.entry.extraction
        return Conflict(
            conflict_id=conflict_id(vin, field, a.document_id, b.document_id),
            vin=vin,
            field=field,
            value_a=top.value,
            source_a=a.source,
            document_a=a.document_id,
            confidence_a=a.extraction_confidence,
            value_b=dissent.value,
            source_b=b.source,
            document_b=b.document_id,
            confidence_b=b.extraction_confidence,
            detected_at=max(a.received_at, b.received_at),
        )
