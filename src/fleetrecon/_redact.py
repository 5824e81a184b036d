"""Helpers for safe debug logging.

Extractions carry personal and policy identifiers (driver names, licence
and policy numbers).  Two passes keep them out of DEBUG logs:

* by key: values under a known sensitive key are masked.  Identifier
  numbers keep their last four characters so a document can still be
  matched against its source; names and birth dates are dropped entirely.
* by value: free text (OCR notes, raw extraction text) is scanned for
  social security numbers, e-mail addresses and phone numbers.

VINs are never masked; every log line is keyed by them.
"""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from typing import Any

_REDACTED = "<redacted>"

# Keys are compared after lower-casing and dropping ``_``/``-``/spaces.
_IDENTIFIER_KEYS: frozenset[str] = frozenset(
    {
        "policynumber",
        "licensenumber",
        "registrationnumber",
        "medicalcertificatenumber",
        "dotnumber",
    }
)
_PERSONAL_KEYS: frozenset[str] = frozenset(
    {
        "drivername",
        "registeredowner",
        "ownername",
        "medicalexaminer",
        "dateofbirth",
        "dob",
        "ssn",
        "address",
        "authorization",
        "token",
    }
)

_TEXT_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"\b\d{3}-\d{2}-\d{4}\b"), "<ssn>"),
    (re.compile(r"\b[\w.+-]+@[\w-]+\.[\w.-]+\b"), "<email>"),
    (re.compile(r"(?<!\w)(?:\+?1[ .-]?)?\(?\d{3}\)?[ .-]\d{3}[ .-]\d{4}\b"), "<phone>"),
)


def _normalize_key(key: str) -> str:
    return re.sub(r"[\s_-]", "", key).lower()


def _mask_identifier(value: Any) -> str:
    text = str(value).strip()
    if len(text) <= 4:
        return _REDACTED
    return f"{_REDACTED}…{text[-4:]}"


def redact_text(text: str) -> str:
    """Mask SSNs, e-mail addresses and phone numbers inside free text."""
    for pattern, replacement in _TEXT_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


def redact_for_log(value: Any, *, max_string: int = 200, _depth: int = 0) -> Any:
    """Return a redacted copy of *value* suitable for debug logs."""
    if _depth > 20:
        return "<max-depth>"

    if value is None or isinstance(value, (int, float, bool)):
        return value

    if isinstance(value, str):
        text = redact_text(value)
        if len(text) > max_string:
            return f"{text[:max_string]}…<truncated>"
        return text

    if isinstance(value, bytes):
        return f"<bytes:{len(value)}b>"

    if isinstance(value, Mapping):
        redacted: dict[str, Any] = {}
        for k, v in value.items():
            key = str(k)
            normalized = _normalize_key(key)
            if v is None:
                redacted[key] = None
            elif normalized in _PERSONAL_KEYS:
                redacted[key] = _REDACTED
            elif normalized in _IDENTIFIER_KEYS:
                redacted[key] = _mask_identifier(v)
            else:
                redacted[key] = redact_for_log(v, max_string=max_string, _depth=_depth + 1)
        return redacted

    if isinstance(value, Sequence):
        return [redact_for_log(v, max_string=max_string, _depth=_depth + 1) for v in value]

    return repr(value)
