"""Document extractions and their per-type field bundles.

Every ingested fact-bundle is a :class:`DocumentExtraction`.  Its
``fields`` attribute is a tagged union discriminated on the document type,
so each variant names its fields in the vocabulary of that document
(``RegistrationFields.expiration_date``) and maps them onto canonical
field names through :meth:`canonical`.

Values are kept exactly as the extraction service produced them so the
history stays auditable; parsing happens in the merge resolver.
"""

from __future__ import annotations

import hashlib
import json
from datetime import UTC, date, datetime
from typing import Annotated, Any, ClassVar, Literal

from pydantic import Discriminator, Field, Tag, field_validator, model_validator

from fleetrecon.enums import DataSource, DocumentType, FieldName
from fleetrecon.ingestion.normalize import data_source_from, document_type_from, normalize_confidence
from fleetrecon.models._base import FleetBaseModel, UtcDatetime
from fleetrecon.models.identity import Vin

FieldValue = str | int | float | date
"""A raw extracted value as received."""


def _utcnow() -> datetime:
    return datetime.now(UTC)


class _DocumentFields(FleetBaseModel):
    """Shared behaviour of the per-type field bundles."""

    _STRIP_PLACEHOLDERS: ClassVar[bool] = True
    _CANONICAL: ClassVar[dict[str, FieldName]] = {}

    def canonical(self) -> dict[FieldName, Any]:
        """Return populated fields keyed by canonical field name."""
        result: dict[FieldName, Any] = {}
        for local_name, field_name in self._CANONICAL.items():
            value = getattr(self, local_name)
            if value is not None:
                result[field_name] = value
        return result

    @classmethod
    def local_name_for(cls, field_name: FieldName) -> str | None:
        """Reverse lookup: the local attribute that carries *field_name*."""
        for local_name, canonical in cls._CANONICAL.items():
            if canonical == field_name:
                return local_name
        return None


class _VehicleDescription(_DocumentFields):
    make: FieldValue | None = None
    model: FieldValue | None = None
    year: FieldValue | None = None


_IDENTITY = {"make": FieldName.MAKE, "model": FieldName.MODEL, "year": FieldName.YEAR}


class RegistrationFields(_VehicleDescription):
    document_type: Literal["registration"] = "registration"
    license_plate: FieldValue | None = None
    state: FieldValue | None = None
    registration_number: FieldValue | None = None
    registration_state: FieldValue | None = None
    registered_owner: FieldValue | None = None
    expiration_date: FieldValue | None = None
    truck_number: FieldValue | None = None

    _CANONICAL: ClassVar[dict[str, FieldName]] = {
        **_IDENTITY,
        "license_plate": FieldName.LICENSE_PLATE,
        "state": FieldName.STATE,
        "registration_number": FieldName.REGISTRATION_NUMBER,
        "registration_state": FieldName.REGISTRATION_STATE,
        "registered_owner": FieldName.REGISTERED_OWNER,
        "expiration_date": FieldName.REGISTRATION_EXPIRATION_DATE,
        "truck_number": FieldName.TRUCK_NUMBER,
    }


class InsuranceFields(_VehicleDescription):
    document_type: Literal["insurance"] = "insurance"
    policy_number: FieldValue | None = None
    insurance_carrier: FieldValue | None = None
    coverage_amount: FieldValue | None = None
    effective_date: FieldValue | None = None
    expiration_date: FieldValue | None = None

    _CANONICAL: ClassVar[dict[str, FieldName]] = {
        **_IDENTITY,
        "policy_number": FieldName.POLICY_NUMBER,
        "insurance_carrier": FieldName.INSURANCE_CARRIER,
        "coverage_amount": FieldName.COVERAGE_AMOUNT,
        "effective_date": FieldName.INSURANCE_EFFECTIVE_DATE,
        "expiration_date": FieldName.INSURANCE_EXPIRATION_DATE,
    }


class InspectionFields(_VehicleDescription):
    document_type: Literal["inspection"] = "inspection"
    license_plate: FieldValue | None = None
    inspection_date: FieldValue | None = None
    result: FieldValue | None = None
    expiration_date: FieldValue | None = None

    _CANONICAL: ClassVar[dict[str, FieldName]] = {
        **_IDENTITY,
        "license_plate": FieldName.LICENSE_PLATE,
        "inspection_date": FieldName.INSPECTION_DATE,
        "result": FieldName.INSPECTION_RESULT,
        "expiration_date": FieldName.INSPECTION_EXPIRATION_DATE,
    }


class CdlFields(_DocumentFields):
    """Commercial driver's licence of the driver assigned to the vehicle."""

    document_type: Literal["cdl"] = "cdl"
    driver_name: FieldValue | None = None
    license_number: FieldValue | None = None
    license_class: FieldValue | None = None
    expiration_date: FieldValue | None = None

    _CANONICAL: ClassVar[dict[str, FieldName]] = {
        "driver_name": FieldName.DRIVER_NAME,
        "license_number": FieldName.LICENSE_NUMBER,
        "license_class": FieldName.LICENSE_CLASS,
        "expiration_date": FieldName.CDL_EXPIRATION_DATE,
    }


class MedicalFields(_DocumentFields):
    """DOT medical examiner's certificate."""

    document_type: Literal["medical"] = "medical"
    driver_name: FieldValue | None = None
    certificate_number: FieldValue | None = None
    examiner: FieldValue | None = None
    expiration_date: FieldValue | None = None

    _CANONICAL: ClassVar[dict[str, FieldName]] = {
        "driver_name": FieldName.DRIVER_NAME,
        "certificate_number": FieldName.MEDICAL_CERTIFICATE_NUMBER,
        "examiner": FieldName.MEDICAL_EXAMINER,
        "expiration_date": FieldName.MEDICAL_EXPIRATION_DATE,
    }


class GeneralFields(_DocumentFields):
    """Fields of ``other`` documents, manual entry and bulk uploads.

    Accepts every canonical field under its canonical name.
    """

    document_type: Literal["other"] = "other"
    make: FieldValue | None = None
    model: FieldValue | None = None
    year: FieldValue | None = None
    license_plate: FieldValue | None = None
    state: FieldValue | None = None
    registration_number: FieldValue | None = None
    registration_state: FieldValue | None = None
    registered_owner: FieldValue | None = None
    registration_expiration_date: FieldValue | None = None
    policy_number: FieldValue | None = None
    insurance_carrier: FieldValue | None = None
    coverage_amount: FieldValue | None = None
    insurance_effective_date: FieldValue | None = None
    insurance_expiration_date: FieldValue | None = None
    inspection_date: FieldValue | None = None
    inspection_result: FieldValue | None = None
    inspection_expiration_date: FieldValue | None = None
    driver_name: FieldValue | None = None
    license_number: FieldValue | None = None
    license_class: FieldValue | None = None
    cdl_expiration_date: FieldValue | None = None
    medical_certificate_number: FieldValue | None = None
    medical_examiner: FieldValue | None = None
    medical_expiration_date: FieldValue | None = None
    truck_number: FieldValue | None = None
    dot_number: FieldValue | None = None

    _CANONICAL: ClassVar[dict[str, FieldName]] = {field.value: field for field in FieldName}


FIELDS_BY_DOCUMENT_TYPE: dict[DocumentType, type[_DocumentFields]] = {
    DocumentType.REGISTRATION: RegistrationFields,
    DocumentType.INSURANCE: InsuranceFields,
    DocumentType.INSPECTION: InspectionFields,
    DocumentType.CDL: CdlFields,
    DocumentType.MEDICAL: MedicalFields,
    DocumentType.OTHER: GeneralFields,
}


def _fields_tag(value: Any) -> str | None:
    if isinstance(value, _DocumentFields):
        return str(getattr(value, "document_type"))
    if isinstance(value, dict):
        raw = value.get("document_type", value.get("documentType"))
        doc_type = document_type_from(raw)
        return doc_type.value if doc_type is not None else None
    return None


DocumentFields = Annotated[
    Annotated[RegistrationFields, Tag("registration")]
    | Annotated[InsuranceFields, Tag("insurance")]
    | Annotated[InspectionFields, Tag("inspection")]
    | Annotated[CdlFields, Tag("cdl")]
    | Annotated[MedicalFields, Tag("medical")]
    | Annotated[GeneralFields, Tag("other")],
    Discriminator(_fields_tag),
]
"""Tagged union of the per-type field bundles."""


class DocumentExtraction(FleetBaseModel):
    """One ingested fact-bundle.  Immutable once stored.

    ``document_id`` defaults to a deterministic content hash, so the same
    extraction ingested twice is recognised as a duplicate.
    """

    document_id: str = Field(default="", description="Stable id; content hash when omitted")
    vin: Vin
    document_type: DocumentType
    source: DataSource = DataSource.DOCUMENT_PROCESSING
    fields: DocumentFields
    extraction_confidence: float = Field(default=1.0, ge=0.0, le=1.0)
    received_at: UtcDatetime = Field(default_factory=_utcnow)
    file_name: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _inject_document_type(cls, values: Any) -> Any:
        if not isinstance(values, dict):
            return values
        values = dict(values)
        raw_type = values.get("document_type", values.get("documentType"))
        doc_type = document_type_from(raw_type) if not isinstance(raw_type, DocumentType) else raw_type
        fields = values.get("fields")
        if fields is None:
            fields = {}
        if isinstance(fields, dict) and doc_type is not None:
            fields = {**fields, "document_type": doc_type.value}
            fields.pop("documentType", None)
        values["fields"] = fields
        return values

    @field_validator("document_type", mode="before")
    @classmethod
    def _coerce_document_type(cls, value: Any) -> DocumentType:
        if isinstance(value, DocumentType):
            return value
        doc_type = document_type_from(value)
        if doc_type is None:
            raise ValueError(f"Unrecognised document type {value!r}")
        return doc_type

    @field_validator("source", mode="before")
    @classmethod
    def _coerce_source(cls, value: Any) -> DataSource:
        if isinstance(value, DataSource):
            return value
        return data_source_from(value)

    @field_validator("extraction_confidence", mode="before")
    @classmethod
    def _coerce_confidence(cls, value: Any) -> float:
        confidence = normalize_confidence(value)
        if confidence is None:
            raise ValueError(f"Unusable extraction confidence {value!r}")
        return confidence

    @model_validator(mode="after")
    def _assign_document_id(self) -> DocumentExtraction:
        if self.fields.document_type != self.document_type.value:
            raise ValueError(f"fields are for {self.fields.document_type!r}, document is {self.document_type.value!r}")
        if not self.document_id:
            # Frozen model: the id is derived once, during validation.
            object.__setattr__(self, "document_id", self.content_hash())
        return self

    def canonical_fields(self) -> dict[FieldName, Any]:
        return self.fields.canonical()

    def populates(self, field: FieldName) -> bool:
        return field in self.canonical_fields()

    def content_hash(self, *, include_received_at: bool = True) -> str:
        """SHA-256 over everything except ``document_id``."""
        payload: dict[str, Any] = {
            "vin": self.vin,
            "document_type": self.document_type.value,
            "source": self.source.value,
            "fields": {str(k): v for k, v in self.canonical_fields().items()},
            "extraction_confidence": round(self.extraction_confidence, 6),
            "file_name": self.file_name,
        }
        if include_received_at:
            payload["received_at"] = self.received_at.isoformat()
        blob = json.dumps(payload, sort_keys=True, default=str)
        return hashlib.sha256(blob.encode("utf-8")).hexdigest()

    def same_content(self, other: DocumentExtraction) -> bool:
        """True when both carry the same document, whenever each was received."""
        return self.content_hash(include_received_at=False) == other.content_hash(include_received_at=False)
