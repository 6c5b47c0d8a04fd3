"""
Pydantic schemas for Target System (CRM) contacts and mapped drafts
"""

from typing import Any, Dict, List, Optional, Set

from pydantic import BaseModel, Field, validator


class CustomFieldValue(BaseModel):
    """One custom field write; ``value`` is never None"""

    key: str = Field(..., min_length=1)
    value: str = ""

    class Config:
        frozen = True


class TargetContactDraft(BaseModel):
    """
    A Source record shaped for the Target System.

    Every configured custom-field key is present (empty string when the
    Source had no value) so an update always overwrites the previous value.
    """

    email: str = ""
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    address1: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    tags: Set[str] = Field(default_factory=set)
    custom_fields: List[CustomFieldValue] = Field(default_factory=list)

    # Only apply the tag; never touch names, phone or custom fields
    tag_only: bool = False
    # When False a missing contact is reported as not_found instead of created
    create_if_missing: bool = True

    source_identity: str = ""

    @validator("tags", pre=True)
    def clean_tags(cls, v):
        if v is None:
            return set()
        if isinstance(v, str):
            v = [v]
        return {str(t).strip() for t in v if str(t).strip()}

    @property
    def name(self) -> str:
        return " ".join(p for p in (self.first_name, self.last_name) if p).strip()

    @property
    def field_values(self) -> Dict[str, str]:
        return {f.key: f.value for f in self.custom_fields}

    def contact_fields(self) -> Dict[str, str]:
        """Non-empty flat contact fields; empty values never clear existing data"""
        values = {
            "firstName": self.first_name,
            "lastName": self.last_name,
            "email": self.email,
            "phone": self.phone,
            "address1": self.address1,
            "city": self.city,
            "state": self.state,
            "postalCode": self.postal_code,
        }
        return {k: v for k, v in values.items() if v}


class TargetContact(BaseModel):
    """A contact as currently stored in the Target System"""

    id: str
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    address1: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    tags: Set[str] = Field(default_factory=set)
    # Keyed by whatever the Target returned: usually the field id, not its key
    custom_fields: Dict[str, str] = Field(default_factory=dict)

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "TargetContact":
        """Parse a contact object from the Target's JSON"""
        return cls(
            id=str(data.get("id") or data.get("_id") or ""),
            email=data.get("email"),
            first_name=data.get("firstName"),
            last_name=data.get("lastName"),
            phone=data.get("phone"),
            address1=data.get("address1"),
            city=data.get("city"),
            state=data.get("state"),
            postal_code=data.get("postalCode"),
            tags={t for t in (data.get("tags") or []) if t},
            custom_fields=_parse_custom_fields(data.get("customFields") or data.get("customField")),
        )

    def matches_email(self, email: Optional[str]) -> bool:
        if not email or not self.email:
            return False
        return self.email.strip().lower() == email.strip().lower()


def _parse_custom_fields(raw: Any) -> Dict[str, str]:
    """
    Custom fields come back either as ``[{"id"|"key": ..., "value"|"field_value": ...}]``
    or as a plain mapping.
    """
    if not raw:
        return {}
    if isinstance(raw, dict):
        return {str(k): "" if v is None else str(v) for k, v in raw.items()}

    fields: Dict[str, str] = {}
    for entry in raw:
        if not isinstance(entry, dict):
            continue
        key = entry.get("key") or entry.get("id")
        if not key:
            continue
        value = entry.get("value", entry.get("field_value"))
        fields[str(key)] = "" if value is None else str(value)
    return fields
