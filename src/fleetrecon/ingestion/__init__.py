"""Ingestion layer.

Adapters that turn extraction-service output, manual entry and bulk
uploads into normalized :class:`~fleetrecon.models.DocumentExtraction`
objects.  Only the reconciler appends them to the record store.
"""

__all__: list[str] = []
