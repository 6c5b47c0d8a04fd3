"""
Per-kind fetch and filter rules for Source System record sets.

Each record kind names the Source resource it is read from, the server-side
filters requested, and the client-side checks a record must pass before it is
mapped. Server filters narrow the download; the client checks decide.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional

from core.exceptions import ConfigurationError
from pipeline.extractors.filters import in_window
from schemas.source import DateWindow, RecordKind, SourceRecord


def _is_past_due(record: SourceRecord) -> bool:
    status = (record.member_status or "").replace(" ", "").replace("_", "").lower()
    if status == "pastdue":
        return True
    try:
        return float(record.past_due_balance or 0) > 0
    except ValueError:
        return False


@dataclass(frozen=True)
class RecordKindSpec:
    kind: RecordKind
    resource: str
    payload_key: str
    expect_active: Optional[bool] = None
    date_field: Optional[str] = None
    date_param: Optional[str] = None
    static_params: Dict[str, str] = field(default_factory=dict)
    predicate: Optional[Callable[[SourceRecord], bool]] = None
    tag_only: bool = False
    create_if_missing: bool = True

    def server_params(self, window: Optional[DateWindow]) -> Dict[str, Any]:
        params: Dict[str, Any] = dict(self.static_params)
        if window and self.date_param:
            params[self.date_param] = f"{window.start.isoformat()},{window.end.isoformat()}"
        return params

    def accepts(self, record: SourceRecord, window: Optional[DateWindow]) -> bool:
        """Client-side status and date checks"""
        if self.expect_active is not None and record.is_active is not self.expect_active:
            return False
        if self.predicate and not self.predicate(record):
            return False
        if window and self.date_field:
            return in_window(getattr(record, self.date_field), window)
        return True


RECORD_KINDS: Dict[RecordKind, RecordKindSpec] = {
    RecordKind.NEW_MEMBERS: RecordKindSpec(
        kind=RecordKind.NEW_MEMBERS,
        resource="members",
        payload_key="members",
        expect_active=True,
        date_field="sign_date",
        date_param="signDateRange",
        static_params={"activeStatus": "Active"},
    ),
    RecordKind.CANCELLED_MEMBERS: RecordKindSpec(
        kind=RecordKind.CANCELLED_MEMBERS,
        resource="members",
        payload_key="members",
        expect_active=False,
        date_field="cancel_date",
        date_param="memberStatusDateRange",
        static_params={"activeStatus": "Inactive"},
    ),
    # Past due is a current state, so the date window does not apply
    RecordKind.PAST_DUE_MEMBERS: RecordKindSpec(
        kind=RecordKind.PAST_DUE_MEMBERS,
        resource="members",
        payload_key="members",
        static_params={"activeStatus": "Active", "memberStatus": "Past Due"},
        predicate=_is_past_due,
    ),
    RecordKind.SERVICE_ACTIVATIONS: RecordKindSpec(
        kind=RecordKind.SERVICE_ACTIVATIONS,
        resource="members/recurringservices",
        payload_key="recurringServices",
        expect_active=True,
        date_field="service_sale_date",
        date_param="saleDateRange",
        static_params={"serviceStatus": "Active"},
    ),
    RecordKind.SERVICE_DEACTIVATIONS: RecordKindSpec(
        kind=RecordKind.SERVICE_DEACTIVATIONS,
        resource="members/recurringservices",
        payload_key="recurringServices",
        expect_active=False,
        date_field="service_inactive_date",
        date_param="inactiveDateRange",
        static_params={"serviceStatus": "Inactive"},
        tag_only=True,
        create_if_missing=False,
    ),
}


def get_spec(kind: RecordKind) -> RecordKindSpec:
    return RECORD_KINDS[RecordKind(kind)]


def parse_kinds(values: Optional[Iterable[str]]) -> List[RecordKind]:
    """Record kinds by name, in the given order; all kinds when empty"""
    if not values:
        return list(RECORD_KINDS)
    try:
        return [RecordKind(v) for v in values]
    except ValueError as e:
        raise ConfigurationError(
            "Unknown record kind",
            context={"requested": list(values), "known": [k.value for k in RecordKind]},
            original_exception=e
        )
