from __future__ import annotations

from datetime import date, datetime

from fleetrecon.enums import DataSource, DocumentType, FieldName
from fleetrecon.ingestion.normalize import (
    canonical_field_name,
    data_source_from,
    document_type_from,
    local_field_name,
    normalize_confidence,
    normalize_text,
    parse_amount,
    parse_date,
    parse_year,
    prune_fields,
    safe_float,
    safe_str,
)


def test_safe_float_strips_currency_and_placeholders() -> None:
    assert safe_float("$1,000,000") == 1_000_000.0
    assert safe_float("N/A") is None
    assert safe_float("--") is None
    assert safe_float(True) is None
    assert safe_float(float("nan")) is None


def test_safe_str_treats_placeholders_as_missing() -> None:
    assert safe_str("  Ford  ") == "Ford"
    assert safe_str("unknown") is None
    assert safe_str("") is None
    assert safe_str(2021) == "2021"


def test_parse_date_accepts_common_layouts() -> None:
    assert parse_date("2026-03-15") == date(2026, 3, 15)
    assert parse_date("03/15/2026") == date(2026, 3, 15)
    assert parse_date("March 15, 2026") == date(2026, 3, 15)
    assert parse_date("2026-03-15T10:00:00Z") == date(2026, 3, 15)
    assert parse_date(datetime(2026, 3, 15, 23, 59)) == date(2026, 3, 15)


def test_parse_date_month_year_maps_to_last_day_of_month() -> None:
    assert parse_date("02/2028") == date(2028, 2, 29)
    assert parse_date("13/2028") is None


def test_parse_date_rejects_garbage() -> None:
    assert parse_date("not a date") is None
    assert parse_date(12345) is None


def test_parse_year_range() -> None:
    assert parse_year("2019") == 2019
    assert parse_year(2019.0) == 2019
    assert parse_year("1850") is None
    assert parse_year("2019.5") is None


def test_parse_amount_rejects_negative() -> None:
    assert parse_amount("$750,000") == 750_000.0
    assert parse_amount("-5") is None


def test_normalize_text_folds_case_and_whitespace() -> None:
    assert normalize_text("  Freight   LINER ") == "freight liner"
    assert normalize_text("n/a") is None


def test_normalize_confidence_accepts_percentages() -> None:
    assert normalize_confidence(0.85) == 0.85
    assert normalize_confidence("92") == 0.92
    assert normalize_confidence(150) is None
    assert normalize_confidence(-0.1) is None


def test_prune_fields_unwraps_value_cells_and_drops_placeholders() -> None:
    pruned = prune_fields(
        {
            "make": {"value": " Volvo ", "confidence": 0.9},
            "model": "N/A",
            "year": None,
            "plate": "ABC123",
        }
    )
    assert pruned == {"make": "Volvo", "plate": "ABC123"}


def test_alias_tables() -> None:
    assert document_type_from("Vehicle Registration") == DocumentType.REGISTRATION
    assert document_type_from("certificate-of-insurance") == DocumentType.INSURANCE
    assert document_type_from("passport") is None
    assert data_source_from("csv") == DataSource.BULK_UPLOAD
    assert data_source_from(None) == DataSource.DOCUMENT_PROCESSING
    assert canonical_field_name("licensePlate") == FieldName.LICENSE_PLATE
    assert canonical_field_name("insurer") == FieldName.INSURANCE_CARRIER
    assert canonical_field_name("colour") is None
    assert local_field_name("validUntil") == "expiration_date"
