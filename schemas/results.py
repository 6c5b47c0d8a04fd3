"""
Pydantic schemas for per-record outcomes and batch/run results
"""

import enum
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from schemas.source import SkippedRecord


class OutcomeKind(str, enum.Enum):
    """Result of upserting one record"""
    CREATED = "created"
    UPDATED = "updated"
    ALREADY_TAGGED = "already_tagged"
    NOT_FOUND = "not_found"
    ERROR = "error"


class SyncOutcome(BaseModel):
    """Per-record result of the upsert engine"""

    kind: OutcomeKind
    email: str = ""
    name: str = ""
    source_identity: str = ""
    contact_id: Optional[str] = None
    reason: Optional[str] = None
    retryable: bool = False

    @property
    def is_error(self) -> bool:
        return self.kind == OutcomeKind.ERROR

    class Config:
        frozen = True


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BatchResult(BaseModel):
    """Counts and per-record details for one (club, record kind) batch"""

    club_number: str
    record_kind: str
    action_tag: str
    window_start: Optional[date] = None
    window_end: Optional[date] = None

    records_fetched: int = 0
    pages_fetched: int = 0
    filtered_out: int = 0
    truncated: bool = False

    skipped: List[SkippedRecord] = Field(default_factory=list)
    details: List[SyncOutcome] = Field(default_factory=list)

    started_at: datetime = Field(default_factory=_utcnow)
    completed_at: Optional[datetime] = None

    def add(self, outcome: SyncOutcome) -> None:
        self.details.append(outcome)

    def count(self, kind: OutcomeKind) -> int:
        return sum(1 for d in self.details if d.kind == kind)

    @property
    def counts(self) -> Dict[str, int]:
        counts = {kind.value: self.count(kind) for kind in OutcomeKind}
        counts["skipped"] = len(self.skipped)
        return counts

    @property
    def errors(self) -> List[SyncOutcome]:
        return [d for d in self.details if d.is_error]

    def to_report(self) -> Dict[str, Any]:
        """JSON-ready summary for API responses and logs"""
        report = self.model_dump(mode="json")
        report["counts"] = self.counts
        return report


class BatchFailure(BaseModel):
    """A batch that could not run because its record set was unavailable"""

    club_number: str
    record_kind: str
    error_type: str
    message: str
    retryable: bool = False


class RunResult(BaseModel):
    """All batches of one run across clubs and record kinds"""

    batches: List[BatchResult] = Field(default_factory=list)
    failures: List[BatchFailure] = Field(default_factory=list)
    started_at: datetime = Field(default_factory=_utcnow)
    completed_at: Optional[datetime] = None

    @property
    def success(self) -> bool:
        return not self.failures

    @property
    def totals(self) -> Dict[str, int]:
        totals: Dict[str, int] = {kind.value: 0 for kind in OutcomeKind}
        totals["skipped"] = 0
        for batch in self.batches:
            for key, value in batch.counts.items():
                totals[key] += value
        return totals

    def to_report(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "totals": self.totals,
            "batches": [batch.to_report() for batch in self.batches],
            "failures": [failure.model_dump() for failure in self.failures],
        }
