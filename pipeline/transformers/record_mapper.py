"""
Transform Source records into Target contact drafts
"""

from typing import Any, Dict

from core.config import ClubContext
from core.exceptions import UnmappableRecord
from schemas.contact import CustomFieldValue, TargetContactDraft
from schemas.source import SourceRecord


class RecordMapper:
    """
    Map a SourceRecord to a TargetContactDraft.

    Handles:
    - Flat contact fields (name, email, phone, address)
    - The action tag as a singleton tag set
    - Custom fields from an ordered ``{key: path}`` map per record kind,
      optionally overridden per club

    Pure: no I/O. The only failure is a record without an email.
    """

    def __init__(self, field_maps: Dict[str, Dict[str, str]]):
        self.field_maps = field_maps

    def field_map_for(self, record: SourceRecord, club: ClubContext) -> Dict[str, str]:
        kind = record.kind.value
        if kind in club.custom_field_maps:
            return club.custom_field_maps[kind]
        return self.field_maps.get(kind, {})

    def map_to_contact(
        self,
        record: SourceRecord,
        action_tag: str,
        club: ClubContext,
        tag_only: bool = False,
        create_if_missing: bool = True
    ) -> TargetContactDraft:
        """
        Returns:
            Draft with every configured custom-field key present

        Raises:
            UnmappableRecord: the record has no email
        """
        if not record.email:
            raise UnmappableRecord(
                "Record has no email",
                context={
                    "source_identity": record.identity,
                    "name": record.name,
                    "club_number": club.club_number,
                    "record_kind": record.kind.value,
                }
            )

        custom_fields = [
            CustomFieldValue(key=key, value=_field_value(record.lookup(path)))
            for key, path in self.field_map_for(record, club).items()
        ]

        return TargetContactDraft(
            email=record.email,
            first_name=record.first_name,
            last_name=record.last_name,
            phone=record.phone,
            address1=record.address1,
            city=record.city,
            state=record.state,
            postal_code=record.postal_code,
            tags={action_tag},
            custom_fields=custom_fields,
            tag_only=tag_only,
            create_if_missing=create_if_missing,
            source_identity=record.identity,
        )


def _field_value(value: Any) -> str:
    """Custom field values are always strings; missing becomes empty"""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value).strip()
