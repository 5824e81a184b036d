"""Custom exception hierarchy for fleetrecon."""

from __future__ import annotations


class FleetReconError(Exception):
    """Base exception for all fleetrecon errors."""


class ConfigError(FleetReconError):
    """Invalid or missing configuration."""


class InvalidInputError(FleetReconError):
    """Structurally invalid input (malformed VIN, unusable payload).

    Rejected outright and never retried.
    """

    def __init__(
        self,
        message: str,
        *,
        vin: str | None = None,
        document_id: str | None = None,
    ) -> None:
        self.vin = vin
        self.document_id = document_id
        super().__init__(message)


class InvalidDocumentError(InvalidInputError):
    """A document extraction the record store refuses to append.

    Raised for a missing/malformed VIN, an unrecognised document type,
    an out-of-range confidence, or a re-used ``document_id`` whose
    content differs from the extraction already stored under it.
    """


class PersistenceError(FleetReconError):
    """A single repository operation failed.

    Batch operations record these per item and keep going.
    """

    def __init__(
        self,
        message: str,
        *,
        record_id: str | None = None,
        operation: str = "",
        status_code: int | None = None,
    ) -> None:
        self.record_id = record_id
        self.operation = operation
        self.status_code = status_code
        super().__init__(message)


class CatastrophicFailureError(FleetReconError):
    """Unexpected failure inside a multi-step operation.

    Atomic operations translate this into a rollback to the last backup.
    """
