"""Deterministic field merge policy.

This module intentionally contains *no* payload parsing.  It answers three
questions for the resolver: what kind of field is this, which document
type is authoritative for it, and how do two extractions rank against each
other for it.
"""

from __future__ import annotations

from datetime import datetime

from fleetrecon.enums import ComplianceCategory, DocumentType, FieldName

IDENTITY_FIELDS: frozenset[FieldName] = frozenset({FieldName.MAKE, FieldName.MODEL, FieldName.YEAR})

DATE_FIELDS: frozenset[FieldName] = frozenset(field for field in FieldName if field.value.endswith("_date"))

_AUTHORITY: dict[FieldName, DocumentType] = {
    FieldName.LICENSE_PLATE: DocumentType.REGISTRATION,
    FieldName.STATE: DocumentType.REGISTRATION,
    FieldName.REGISTRATION_NUMBER: DocumentType.REGISTRATION,
    FieldName.REGISTRATION_STATE: DocumentType.REGISTRATION,
    FieldName.REGISTERED_OWNER: DocumentType.REGISTRATION,
    FieldName.REGISTRATION_EXPIRATION_DATE: DocumentType.REGISTRATION,
    FieldName.POLICY_NUMBER: DocumentType.INSURANCE,
    FieldName.INSURANCE_CARRIER: DocumentType.INSURANCE,
    FieldName.COVERAGE_AMOUNT: DocumentType.INSURANCE,
    FieldName.INSURANCE_EFFECTIVE_DATE: DocumentType.INSURANCE,
    FieldName.INSURANCE_EXPIRATION_DATE: DocumentType.INSURANCE,
    FieldName.INSPECTION_DATE: DocumentType.INSPECTION,
    FieldName.INSPECTION_RESULT: DocumentType.INSPECTION,
    FieldName.INSPECTION_EXPIRATION_DATE: DocumentType.INSPECTION,
    FieldName.DRIVER_NAME: DocumentType.CDL,
    FieldName.LICENSE_NUMBER: DocumentType.CDL,
    FieldName.LICENSE_CLASS: DocumentType.CDL,
    FieldName.CDL_EXPIRATION_DATE: DocumentType.CDL,
    FieldName.MEDICAL_CERTIFICATE_NUMBER: DocumentType.MEDICAL,
    FieldName.MEDICAL_EXAMINER: DocumentType.MEDICAL,
    FieldName.MEDICAL_EXPIRATION_DATE: DocumentType.MEDICAL,
}

# Expiry field that each compliance category is derived from.
CATEGORY_EXPIRY_FIELDS: dict[ComplianceCategory, FieldName] = {
    ComplianceCategory.REGISTRATION: FieldName.REGISTRATION_EXPIRATION_DATE,
    ComplianceCategory.INSURANCE: FieldName.INSURANCE_EXPIRATION_DATE,
    ComplianceCategory.INSPECTION: FieldName.INSPECTION_EXPIRATION_DATE,
    ComplianceCategory.LICENSE: FieldName.CDL_EXPIRATION_DATE,
    ComplianceCategory.MEDICAL: FieldName.MEDICAL_EXPIRATION_DATE,
}

# Expiry field a document of each type carries about itself.
DOCUMENT_EXPIRY_FIELDS: dict[DocumentType, FieldName] = {
    DocumentType.REGISTRATION: FieldName.REGISTRATION_EXPIRATION_DATE,
    DocumentType.INSURANCE: FieldName.INSURANCE_EXPIRATION_DATE,
    DocumentType.INSPECTION: FieldName.INSPECTION_EXPIRATION_DATE,
    DocumentType.CDL: FieldName.CDL_EXPIRATION_DATE,
    DocumentType.MEDICAL: FieldName.MEDICAL_EXPIRATION_DATE,
}

RankKey = tuple[int, float, float, int]


def is_identity_field(field: FieldName) -> bool:
    return field in IDENTITY_FIELDS


def is_date_field(field: FieldName) -> bool:
    return field in DATE_FIELDS


def authoritative_type(field: FieldName) -> DocumentType | None:
    """Document type whose extractions win for *field*, if any."""
    return _AUTHORITY.get(field)


def authority(field: FieldName, document_type: DocumentType) -> int:
    """1 when *document_type* is authoritative for *field*, else 0.

    Identity fields are equally weighted across document types.
    """
    if is_identity_field(field):
        return 0
    return 1 if _AUTHORITY.get(field) == document_type else 0


def rank_key(
    field: FieldName,
    *,
    document_type: DocumentType,
    confidence: float,
    received_at: datetime,
    sequence: int,
) -> RankKey:
    """Sort key for one candidate value; higher wins.

    Non-date fields rank by ``(authority, confidence, recency, sequence)``.
    Date fields rank by ``(authority, recency, confidence, sequence)``: a
    renewed document supersedes the previous one even when it was read
    with lower confidence.
    """
    stamp = received_at.timestamp()
    if is_date_field(field):
        return (authority(field, document_type), stamp, confidence, sequence)
    return (authority(field, document_type), confidence, stamp, sequence)
