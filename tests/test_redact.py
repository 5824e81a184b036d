from __future__ import annotations

from fleetrecon._redact import redact_for_log, redact_text


def test_redact_for_log_masks_personal_and_identifier_keys() -> None:
    payload = {
        "vin": "1HGCM82633A004352",
        "policyNumber": "POL-998877",
        "fields": {"driver_name": "Jane Roe", "License-Number": "D1234567", "make": "Volvo"},
        "token": "secret",
    }

    redacted = redact_for_log(payload)
    assert redacted["vin"] == "1HGCM82633A004352"
    assert redacted["policyNumber"] == "<redacted>…8877"
    assert redacted["token"] == "<redacted>"
    assert redacted["fields"]["driver_name"] == "<redacted>"
    assert redacted["fields"]["License-Number"] == "<redacted>…4567"
    assert redacted["fields"]["make"] == "Volvo"


def test_short_identifiers_are_fully_masked() -> None:
    assert redact_for_log({"dotNumber": "123"}) == {"dotNumber": "<redacted>"}
    assert redact_for_log({"policy_number": None}) == {"policy_number": None}


def test_free_text_is_scanned_for_personal_data() -> None:
    text = "Owner SSN 123-45-6789, call (555) 123-4567 or mail jane.roe@example.com. VIN 1HGCM82633A004352"

    assert redact_text(text) == "Owner SSN <ssn>, call <phone> or mail <email>. VIN 1HGCM82633A004352"
    assert redact_for_log({"rawText": text})["rawText"].startswith("Owner SSN <ssn>")


def test_dates_are_left_alone() -> None:
    assert redact_text("expires 2025-06-01 or 06/01/2025") == "expires 2025-06-01 or 06/01/2025"


def test_redact_for_log_truncates_long_strings() -> None:
    redacted = redact_for_log({"notes": "x" * 400}, max_string=10)
    assert redacted["notes"].startswith("x" * 10)
    assert redacted["notes"].endswith("<truncated>")


def test_redact_for_log_handles_sequences_and_bytes() -> None:
    redacted = redact_for_log([{"ssn": "123-45-6789"}, b"\x00\x01"])
    assert redacted == [{"ssn": "<redacted>"}, "<bytes:2b>"]
