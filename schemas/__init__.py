"""
Pydantic schemas for data validation and serialization.

This package defines the values that flow through the sync pipeline and the
API request/response models:

Schemas:
    source: Record kinds, date windows and normalized Source records
    contact: Target contacts and the drafts mapped from Source records
    results: Per-record outcomes, batch and run results
    api: API endpoint request/response schemas

Usage:
    from schemas.source import DateWindow, RecordKind, SourceRecord
    from schemas.results import BatchResult, OutcomeKind
    from schemas.api import SyncDateRequest, HealthCheckResponse

Example:
    # Inclusive window; end before start is rejected
    window = DateWindow(start=date(2024, 1, 1), end=date(2024, 1, 7))

    # Status flags are normalized to real booleans at the client boundary
    record = SourceRecord(kind=RecordKind.NEW_MEMBERS, identity="m1", is_active=True)
    assert record.is_active is True

Validation:
    Source payloads are inconsistently typed; every schema here holds the
    normalized form, so nothing downstream re-parses strings like "true".
"""

__all__ = [
    "RecordKind",
    "DateWindow",
    "SourceRecord",
    "SkippedRecord",
    "FetchResult",
    "TargetContact",
    "TargetContactDraft",
    "SyncOutcome",
    "BatchResult",
    "RunResult",
]
