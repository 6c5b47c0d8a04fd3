"""
Client-side filters applied to Source System records.

The Source API types the same flag differently across endpoints (``true``,
``"true"``, ``"Active"``), and its server-side date filters are not reliable
for every field, so the Source Client fetches broad and narrows locally.
"""

import re
from typing import Any, Iterable, List, Optional, Tuple

from schemas.source import DateWindow, SkippedRecord, SourceRecord

EXCLUDED_TYPE_REASON = "Excluded membership type"

_TRUE_STRINGS = {"true", "active"}
_FALSE_STRINGS = {"false", "inactive"}
_US_DATE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})")


def parse_relaxed_bool(value: Any) -> Optional[bool]:
    """
    Relaxed boolean parse used for every Source status flag.

    ``True`` and ``"true"`` are true, ``False`` and ``"false"`` are false
    (strings are stripped and compared case-insensitively; the service status
    words ``"Active"``/``"Inactive"`` read the same way). Anything else,
    including None, is None: the Source did not say.
    """
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        text = value.strip().lower()
        if text in _TRUE_STRINGS:
            return True
        if text in _FALSE_STRINGS:
            return False
    return None


def date_portion(value: Any) -> Optional[str]:
    """
    ``YYYY-MM-DD`` prefix of a Source timestamp, ignoring time of day.

    ``MM/DD/YYYY`` values are rewritten to ISO order first so that string
    comparison matches calendar order.
    """
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    match = _US_DATE.match(text)
    if match:
        month, day, year = match.groups()
        return f"{year}-{int(month):02d}-{int(day):02d}"
    prefix = text[:10]
    if len(prefix) == 10 and prefix[4] == "-" and prefix[7] == "-":
        return prefix
    return None


def in_window(value: Any, window: DateWindow) -> bool:
    """Inclusive ``[start, end]`` check on the date portion of ``value``"""
    day = date_portion(value)
    if day is None:
        return False
    return window.start.isoformat() <= day <= window.end.isoformat()


def is_excluded(record: SourceRecord, excluded_types: Iterable[str]) -> bool:
    type_value = record.type_value
    return bool(type_value) and type_value in set(excluded_types)


def split_excluded(
    records: List[SourceRecord],
    excluded_types: Iterable[str]
) -> Tuple[List[SourceRecord], List[SkippedRecord]]:
    """Separate records whose membership/service type is excluded"""
    excluded_types = set(excluded_types)
    kept: List[SourceRecord] = []
    skipped: List[SkippedRecord] = []

    for record in records:
        if is_excluded(record, excluded_types):
            skipped.append(SkippedRecord(
                identity=record.identity,
                name=record.name,
                type_value=record.type_value,
                reason=EXCLUDED_TYPE_REASON
            ))
        else:
            kept.append(record)

    return kept, skipped
