"""
Pydantic schemas for Source System (gym management platform) records
"""

import enum
from datetime import date, timedelta
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, validator


class RecordKind(str, enum.Enum):
    """Record sets pulled from the Source System"""
    NEW_MEMBERS = "new_members"
    CANCELLED_MEMBERS = "cancelled_members"
    PAST_DUE_MEMBERS = "past_due_members"
    SERVICE_ACTIVATIONS = "service_activations"
    SERVICE_DEACTIVATIONS = "service_deactivations"

    @property
    def is_service(self) -> bool:
        return self in (RecordKind.SERVICE_ACTIVATIONS, RecordKind.SERVICE_DEACTIVATIONS)


class DateWindow(BaseModel):
    """Inclusive [start, end] window of calendar dates"""

    start: date
    end: date

    @validator("end")
    def end_not_before_start(cls, v, values):
        start = values.get("start")
        if start and v < start:
            raise ValueError("end date must not be before start date")
        return v

    @classmethod
    def single_day(cls, day: date) -> "DateWindow":
        return cls(start=day, end=day)

    @classmethod
    def yesterday(cls, today: Optional[date] = None) -> "DateWindow":
        today = today or date.today()
        return cls.single_day(today - timedelta(days=1))

    def __str__(self) -> str:
        if self.start == self.end:
            return self.start.isoformat()
        return f"{self.start.isoformat()}..{self.end.isoformat()}"

    class Config:
        frozen = True


class SourceRecord(BaseModel):
    """
    A member or recurring-service record, normalized at the Source Client
    boundary. ``is_active`` is always a real boolean (or None when the Source
    did not say); ``raw`` keeps the untouched payload for dotted field paths.
    """

    kind: RecordKind
    identity: str = ""
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    address1: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None

    membership_type: Optional[str] = None
    service_type: Optional[str] = None

    is_active: Optional[bool] = None
    member_status: Optional[str] = None
    join_status: Optional[str] = None

    sign_date: Optional[str] = None
    cancel_date: Optional[str] = None
    next_billing_date: Optional[str] = None
    past_due_balance: Optional[str] = None
    service_sale_date: Optional[str] = None
    service_inactive_date: Optional[str] = None

    raw: Dict[str, Any] = Field(default_factory=dict, repr=False)

    @validator("email", pre=True)
    def clean_email(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        return v or None

    @property
    def name(self) -> str:
        return " ".join(p for p in (self.first_name, self.last_name) if p).strip()

    @property
    def type_value(self) -> Optional[str]:
        """Membership type for member records, service type for services"""
        return self.service_type if self.kind.is_service else self.membership_type

    def lookup(self, path: str) -> Any:
        """
        Resolve a field path: a normalized attribute name, or a dotted path
        into the raw payload.
        """
        if "." not in path and path in type(self).model_fields and path != "raw":
            return getattr(self, path)
        return dig(self.raw, path)

    class Config:
        frozen = True


class SkippedRecord(BaseModel):
    """A fetched record dropped before it reaches the upsert engine"""

    identity: str = ""
    name: str = ""
    type_value: Optional[str] = None
    reason: str


class FetchResult(BaseModel):
    """Everything one fetch produced, including what it dropped."""

    kind: RecordKind
    club_number: str
    records: List[SourceRecord] = Field(default_factory=list)
    skipped: List[SkippedRecord] = Field(default_factory=list)
    total_fetched: int = 0
    filtered_out: int = 0
    pages_fetched: int = 0
    truncated: bool = False


def dig(payload: Any, path: str) -> Any:
    """Walk a dotted path through nested dicts; None when any step is missing"""
    current = payload
    for part in path.split("."):
        if not isinstance(current, dict):
            return None
        current = current.get(part)
        if current is None:
            return None
    return current
