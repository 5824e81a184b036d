"""Base model for fleetrecon domain types.

Every fleetrecon model inherits from :class:`FleetBaseModel` which
provides:

* ``alias_generator=to_camel`` so camelCase payloads from the extraction
  service and the CRUD layer map automatically to snake_case fields.
* Frozen instances: snapshots handed to readers can never be mutated
  behind the reconciler's back.
* Optional placeholder stripping (``""``, ``"--"``, ``"N/A"``...) for
  input models, so the field default is used instead.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Annotated, Any, ClassVar

from pydantic import AfterValidator, BaseModel, ConfigDict, model_validator
from pydantic.alias_generators import to_camel

from fleetrecon.ingestion.normalize import is_meaningful


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


UtcDatetime = Annotated[datetime, AfterValidator(ensure_utc)]
"""Annotated datetime that is always timezone-aware UTC."""


class FleetBaseModel(BaseModel):
    """Base for fleetrecon models."""

    _STRIP_PLACEHOLDERS: ClassVar[bool] = False
    """Input models set this to drop placeholder values before validation."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
        alias_generator=to_camel,
    )

    @model_validator(mode="before")
    @classmethod
    def _strip_placeholders(cls, values: Any) -> Any:
        if not cls._STRIP_PLACEHOLDERS or not isinstance(values, dict):
            return values
        return {key: value for key, value in values.items() if is_meaningful(value)}
