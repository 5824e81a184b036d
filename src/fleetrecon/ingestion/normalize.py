"""Normalization helpers.

Centralizes defensive parsing, placeholder handling and the alias tables
that map the many spellings used by extraction services, manual entry and
bulk uploads onto canonical names.
"""

from __future__ import annotations

import calendar
import math
import re
from datetime import date, datetime
from typing import Any

from fleetrecon.enums import DataSource, DocumentType, FieldName

# Placeholder strings extraction services emit for "not found".
_PLACEHOLDERS = frozenset({"", "--", "n/a", "na", "none", "null", "unknown", "nan"})


def safe_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        text = value.strip().replace(",", "").lstrip("$").strip()
        if text.lower() in _PLACEHOLDERS:
            return None
        value = text
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(result) or math.isinf(result):
        return None
    return result


def safe_int(value: Any) -> int | None:
    parsed = safe_float(value)
    if parsed is None:
        return None
    return int(parsed)


def safe_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    if text.lower() in _PLACEHOLDERS:
        return None
    return text


def is_meaningful(value: Any) -> bool:
    """Return True if the value should be kept in an extraction's fields."""

    if value is None:
        return False
    if isinstance(value, str) and value.strip().lower() in _PLACEHOLDERS:
        return False
    if isinstance(value, float) and math.isnan(value):
        return False
    if value == {}:
        return False
    return bool(value != [])


def unwrap_value(value: Any) -> Any:
    """Unwrap ``{"value": ..., "confidence": ...}`` cells from extraction output."""
    if isinstance(value, dict) and "value" in value:
        return value["value"]
    return value


def prune_fields(data: dict[str, Any]) -> dict[str, Any]:
    """Drop placeholder values and unwrap value cells.

    Missing keys mean "this document says nothing about the field"; the
    resolver relies on extractions never carrying placeholders.
    """

    pruned: dict[str, Any] = {}
    for key, value in data.items():
        cleaned = unwrap_value(value)
        if isinstance(cleaned, str):
            cleaned = cleaned.strip()
        if is_meaningful(cleaned):
            pruned[key] = cleaned
    return pruned


# ---------------------------------------------------------------------------
# Dates and numbers
# ---------------------------------------------------------------------------

_DATE_FORMATS: tuple[str, ...] = (
    "%Y-%m-%d",
    "%Y/%m/%d",
    "%m/%d/%Y",
    "%m-%d-%Y",
    "%m/%d/%y",
    "%d.%m.%Y",
    "%B %d, %Y",
    "%b %d, %Y",
    "%B %d %Y",
    "%b %d %Y",
    "%d %B %Y",
    "%d %b %Y",
)

_MONTH_YEAR = re.compile(r"^(\d{1,2})[/-](\d{4})$")


def parse_date(value: Any) -> date | None:
    """Parse an extracted date.

    Accepts ``date``/``datetime`` objects, ISO dates and datetimes, the
    common US layouts and ``MM/YYYY`` (mapped to the last day of the month,
    which is how registration stickers express expiry).  Returns ``None``
    when the value cannot be interpreted.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        return None

    text = value.strip()
    if not text:
        return None

    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        pass

    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue

    match = _MONTH_YEAR.match(text)
    if match:
        month, year = int(match.group(1)), int(match.group(2))
        if 1 <= month <= 12:
            return date(year, month, calendar.monthrange(year, month)[1])
    return None


def parse_year(value: Any) -> int | None:
    parsed = safe_float(value)
    if parsed is None or parsed != int(parsed):
        return None
    year = int(parsed)
    if not 1900 <= year <= 2100:
        return None
    return year


def parse_amount(value: Any) -> float | None:
    parsed = safe_float(value)
    if parsed is None or parsed < 0:
        return None
    return parsed


def normalize_text(value: Any) -> str | None:
    """Comparison form of a text value (case- and whitespace-insensitive)."""
    text = safe_str(value)
    if text is None:
        return None
    return " ".join(text.split()).casefold()


# ---------------------------------------------------------------------------
# Alias tables
# ---------------------------------------------------------------------------

DOCUMENT_TYPE_ALIASES: dict[str, DocumentType] = {
    "registration": DocumentType.REGISTRATION,
    "vehicle_registration": DocumentType.REGISTRATION,
    "title": DocumentType.REGISTRATION,
    "insurance": DocumentType.INSURANCE,
    "auto_insurance": DocumentType.INSURANCE,
    "insurance_card": DocumentType.INSURANCE,
    "certificate_of_insurance": DocumentType.INSURANCE,
    "cdl": DocumentType.CDL,
    "cdl_license": DocumentType.CDL,
    "commercial_drivers_license": DocumentType.CDL,
    "drivers_license": DocumentType.CDL,
    "medical": DocumentType.MEDICAL,
    "medical_certificate": DocumentType.MEDICAL,
    "dot_medical": DocumentType.MEDICAL,
    "inspection": DocumentType.INSPECTION,
    "vehicle_inspection": DocumentType.INSPECTION,
    "annual_inspection": DocumentType.INSPECTION,
    "other": DocumentType.OTHER,
}

SOURCE_ALIASES: dict[str, DataSource] = {
    **{source.value: source for source in DataSource},
    "manual": DataSource.MANUAL_ENTRY,
    "document": DataSource.DOCUMENT_PROCESSING,
    "api": DataSource.API_IMPORT,
    "bulk": DataSource.BULK_UPLOAD,
    "csv": DataSource.BULK_UPLOAD,
    "reconciler": DataSource.RECONCILIATION,
}

# Legacy/variant field spellings -> canonical field.  Keys are compared
# after ``_alias_key`` folding, so camelCase and snake_case both match.
FIELD_ALIASES: dict[str, FieldName] = {
    "manufacturer": FieldName.MAKE,
    "vehiclemake": FieldName.MAKE,
    "vehiclemodel": FieldName.MODEL,
    "modelyear": FieldName.YEAR,
    "vehicleyear": FieldName.YEAR,
    "plate": FieldName.LICENSE_PLATE,
    "platenumber": FieldName.LICENSE_PLATE,
    "licenseplate": FieldName.LICENSE_PLATE,
    "issuingstate": FieldName.STATE,
    "regnumber": FieldName.REGISTRATION_NUMBER,
    "registrationnum": FieldName.REGISTRATION_NUMBER,
    "regstate": FieldName.REGISTRATION_STATE,
    "registeredstate": FieldName.REGISTRATION_STATE,
    "owner": FieldName.REGISTERED_OWNER,
    "registrationexpiry": FieldName.REGISTRATION_EXPIRATION_DATE,
    "registrationexpirationdate": FieldName.REGISTRATION_EXPIRATION_DATE,
    "policy": FieldName.POLICY_NUMBER,
    "policynum": FieldName.POLICY_NUMBER,
    "carrier": FieldName.INSURANCE_CARRIER,
    "inscarrier": FieldName.INSURANCE_CARRIER,
    "insurer": FieldName.INSURANCE_CARRIER,
    "insurancecompany": FieldName.INSURANCE_CARRIER,
    "coverage": FieldName.COVERAGE_AMOUNT,
    "coveragelimit": FieldName.COVERAGE_AMOUNT,
    "liability": FieldName.COVERAGE_AMOUNT,
    "insuranceexpiry": FieldName.INSURANCE_EXPIRATION_DATE,
    "insuranceexpirationdate": FieldName.INSURANCE_EXPIRATION_DATE,
    "inspectionexpiry": FieldName.INSPECTION_EXPIRATION_DATE,
    "nextinspectiondue": FieldName.INSPECTION_EXPIRATION_DATE,
    "lastinspectiondate": FieldName.INSPECTION_DATE,
    "cdlexpiry": FieldName.CDL_EXPIRATION_DATE,
    "cdlnumber": FieldName.LICENSE_NUMBER,
    "cdlclass": FieldName.LICENSE_CLASS,
    "medicalexpiry": FieldName.MEDICAL_EXPIRATION_DATE,
    "certificatenumber": FieldName.MEDICAL_CERTIFICATE_NUMBER,
    "examinername": FieldName.MEDICAL_EXAMINER,
    "vehiclenumber": FieldName.TRUCK_NUMBER,
    "unitnumber": FieldName.TRUCK_NUMBER,
    "trucknum": FieldName.TRUCK_NUMBER,
    "unit": FieldName.TRUCK_NUMBER,
    "dot": FieldName.DOT_NUMBER,
    "usdot": FieldName.DOT_NUMBER,
}

# Type-local spellings used inside a single document.  On an insurance
# card "expirationDate" means the policy expiry, on a registration it means
# the registration expiry, and so on.
LOCAL_FIELD_ALIASES: dict[str, str] = {
    "expirationdate": "expiration_date",
    "expiry": "expiration_date",
    "expirydate": "expiration_date",
    "expires": "expiration_date",
    "expireson": "expiration_date",
    "validuntil": "expiration_date",
    "enddate": "expiration_date",
    "duedate": "expiration_date",
    "renewaldate": "expiration_date",
    "effectivedate": "effective_date",
    "startdate": "effective_date",
    "result": "result",
    "status": "result",
    "name": "driver_name",
    "license": "license_number",
    "class": "license_class",
}


def _alias_key(key: str) -> str:
    return re.sub(r"[^a-z0-9]", "", key.lower())


def canonical_field_name(key: str) -> FieldName | None:
    """Map a global field spelling onto a canonical field, if known."""
    folded = _alias_key(key)
    for field in FieldName:
        if _alias_key(field.value) == folded:
            return field
    return FIELD_ALIASES.get(folded)


def local_field_name(key: str) -> str | None:
    """Map a document-local spelling (``expiry``, ``carrier``...) to its local name."""
    return LOCAL_FIELD_ALIASES.get(_alias_key(key))


def document_type_from(value: Any) -> DocumentType | None:
    text = safe_str(value)
    if text is None:
        return None
    return DOCUMENT_TYPE_ALIASES.get(re.sub(r"[\s\-]+", "_", text.lower()))


def data_source_from(value: Any, default: DataSource = DataSource.DOCUMENT_PROCESSING) -> DataSource:
    text = safe_str(value)
    if text is None:
        return default
    return SOURCE_ALIASES.get(text.lower(), default)


def normalize_confidence(value: Any) -> float | None:
    """Coerce a confidence to [0, 1].

    Extraction services report either a fraction or a percentage; values
    in ``(1, 100]`` are treated as percentages.
    """
    parsed = safe_float(value)
    if parsed is None or parsed < 0:
        return None
    if parsed > 1.0:
        if parsed > 100.0:
            return None
        parsed /= 100.0
    return parsed
