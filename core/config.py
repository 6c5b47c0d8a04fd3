"""
Application configuration using Pydantic Settings.

``settings`` is read from the environment (and ``.env``) once by the entry
points: the API app, the scheduler and the CLI. The sync pipeline itself never
reads it; entry points turn it into an immutable ``SyncConfig`` and a list of
``ClubContext`` values and pass those down explicitly.
"""

import json
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, validator
from pydantic_settings import BaseSettings

from core.exceptions import ConfigurationError


DEFAULT_ACTION_TAGS: Dict[str, str] = {
    "new_members": "sale",
    "cancelled_members": "cancelled / past member",
    "past_due_members": "past due",
    "service_activations": "pt current",
    "service_deactivations": "pt past",
}

# Custom field key -> SourceRecord attribute or dotted path into the raw payload
DEFAULT_MEMBER_FIELD_MAP: Dict[str, str] = {
    "member_id": "identity",
    "membership_type": "membership_type",
    "member_status": "member_status",
    "sign_date": "sign_date",
    "cancel_date": "cancel_date",
    "next_billing_date": "next_billing_date",
    "past_due_balance": "past_due_balance",
    "sales_person": "agreement.salesPersonName",
}

DEFAULT_SERVICE_FIELD_MAP: Dict[str, str] = {
    "member_id": "identity",
    "pt_service_type": "service_type",
    "pt_sign_date": "service_sale_date",
    "pt_inactive_date": "service_inactive_date",
    "pt_trainer": "serviceEmployeeName",
}

DEFAULT_CUSTOM_FIELD_MAPS: Dict[str, Dict[str, str]] = {
    "new_members": DEFAULT_MEMBER_FIELD_MAP,
    "cancelled_members": DEFAULT_MEMBER_FIELD_MAP,
    "past_due_members": DEFAULT_MEMBER_FIELD_MAP,
    "service_activations": DEFAULT_SERVICE_FIELD_MAP,
    "service_deactivations": DEFAULT_SERVICE_FIELD_MAP,
}


class Settings(BaseSettings):
    """Application settings with environment variable support"""

    # Source System (gym management platform)
    SOURCE_BASE_URL: str = "https://api.abcfinancial.com/rest"
    SOURCE_APP_ID: Optional[str] = None
    SOURCE_APP_KEY: Optional[str] = None

    # Target System (CRM)
    TARGET_BASE_URL: str = "https://services.leadconnectorhq.com"
    TARGET_API_VERSION: str = "2021-07-28"

    # Single-club setup; CLUBS_FILE takes precedence when set
    DEFAULT_CLUB_NUMBER: Optional[str] = None
    DEFAULT_CLUB_NAME: Optional[str] = None
    DEFAULT_LOCATION_ID: Optional[str] = None
    DEFAULT_TARGET_API_KEY: Optional[str] = None
    CLUBS_FILE: Optional[str] = None

    # Sync behaviour
    PAGE_SIZE: int = 5000
    MAX_PAGES: int = 50
    WRITE_DELAY_SECONDS: float = 0.1
    REQUEST_TIMEOUT: float = 30.0
    EXCLUDED_MEMBERSHIP_TYPES: List[str] = ["NON-MEMBER", "Employee"]
    LOOKUP_MODE: str = "duplicate"
    ACTION_TAGS: Dict[str, str] = {}
    CUSTOM_FIELD_MAPS: Dict[str, Dict[str, str]] = {}
    SYNC_KINDS: List[str] = list(DEFAULT_ACTION_TAGS)

    # Scheduler
    SCHEDULE_ENABLED: bool = False
    SCHEDULE_HOUR: int = 6
    SCHEDULE_MINUTE: int = 0

    # API
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8000

    # Environment
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


settings = Settings()


class ClubContext(BaseModel):
    """
    One club (tenant): all fetches and writes for it happen under these values.

    A record fetched for one club is only ever written with that club's
    location id and API key.
    """

    club_number: str = Field(..., min_length=1)
    location_id: str = Field(..., min_length=1)
    target_api_key: str = Field(..., min_length=1, repr=False)
    name: Optional[str] = None
    custom_field_maps: Dict[str, Dict[str, str]] = Field(default_factory=dict)

    @validator("club_number", pre=True)
    def stringify_club_number(cls, v):
        """Club numbers arrive as ints from JSON files"""
        if v is None:
            return v
        return str(v).strip()

    @property
    def label(self) -> str:
        return f"{self.name} ({self.club_number})" if self.name else self.club_number

    class Config:
        frozen = True


class SyncConfig(BaseModel):
    """Immutable run configuration shared by every pipeline component."""

    source_base_url: str
    source_app_id: str = Field(..., repr=False)
    source_app_key: str = Field(..., repr=False)
    target_base_url: str
    target_api_version: str = "2021-07-28"
    page_size: int = Field(5000, ge=1)
    max_pages: int = Field(50, ge=1)
    write_delay: float = Field(0.1, ge=0)
    request_timeout: float = Field(30.0, gt=0)
    excluded_types: frozenset = frozenset({"NON-MEMBER", "Employee"})
    lookup_mode: str = "duplicate"
    action_tags: Dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_ACTION_TAGS))
    custom_field_maps: Dict[str, Dict[str, str]] = Field(
        default_factory=lambda: {k: dict(v) for k, v in DEFAULT_CUSTOM_FIELD_MAPS.items()}
    )

    @validator("lookup_mode")
    def check_lookup_mode(cls, v):
        if v not in ("duplicate", "query"):
            raise ValueError("lookup_mode must be 'duplicate' or 'query'")
        return v

    @validator("excluded_types", pre=True)
    def freeze_excluded_types(cls, v):
        return frozenset(v or ())

    class Config:
        frozen = True

    @classmethod
    def from_settings(cls, s: Settings) -> "SyncConfig":
        """Build the run configuration, failing fast on missing Source credentials."""
        if not s.SOURCE_APP_ID or not s.SOURCE_APP_KEY:
            raise ConfigurationError(
                "SOURCE_APP_ID and SOURCE_APP_KEY are required",
                context={"source_base_url": s.SOURCE_BASE_URL}
            )

        action_tags = dict(DEFAULT_ACTION_TAGS)
        action_tags.update(s.ACTION_TAGS)

        field_maps = {k: dict(v) for k, v in DEFAULT_CUSTOM_FIELD_MAPS.items()}
        field_maps.update(s.CUSTOM_FIELD_MAPS)

        return cls(
            source_base_url=s.SOURCE_BASE_URL,
            source_app_id=s.SOURCE_APP_ID,
            source_app_key=s.SOURCE_APP_KEY,
            target_base_url=s.TARGET_BASE_URL,
            target_api_version=s.TARGET_API_VERSION,
            page_size=s.PAGE_SIZE,
            max_pages=s.MAX_PAGES,
            write_delay=s.WRITE_DELAY_SECONDS,
            request_timeout=s.REQUEST_TIMEOUT,
            excluded_types=s.EXCLUDED_MEMBERSHIP_TYPES,
            lookup_mode=s.LOOKUP_MODE,
            action_tags=action_tags,
            custom_field_maps=field_maps,
        )


def load_club_contexts(s: Settings) -> List[ClubContext]:
    """
    Load the configured clubs.

    ``CLUBS_FILE`` points at a JSON list of objects with ``club_number``,
    ``location_id``, ``target_api_key`` and optionally ``name`` and
    ``custom_field_maps``. Without it a single club is built from the
    ``DEFAULT_*`` settings.
    """
    if s.CLUBS_FILE:
        path = Path(s.CLUBS_FILE)
        if not path.exists():
            raise ConfigurationError(
                f"Clubs file not found: {path}",
                context={"clubs_file": str(path)}
            )
        try:
            entries = json.loads(path.read_text(encoding="utf-8"))
            clubs = [ClubContext(**entry) for entry in entries]
        except (ValueError, TypeError) as e:
            raise ConfigurationError(
                "Invalid clubs file",
                context={"clubs_file": str(path)},
                original_exception=e
            )
    elif s.DEFAULT_CLUB_NUMBER and s.DEFAULT_LOCATION_ID and s.DEFAULT_TARGET_API_KEY:
        clubs = [
            ClubContext(
                club_number=s.DEFAULT_CLUB_NUMBER,
                name=s.DEFAULT_CLUB_NAME,
                location_id=s.DEFAULT_LOCATION_ID,
                target_api_key=s.DEFAULT_TARGET_API_KEY,
            )
        ]
    else:
        raise ConfigurationError(
            "No clubs configured: set CLUBS_FILE or DEFAULT_CLUB_NUMBER, "
            "DEFAULT_LOCATION_ID and DEFAULT_TARGET_API_KEY"
        )

    numbers = [club.club_number for club in clubs]
    if len(set(numbers)) != len(numbers):
        raise ConfigurationError(
            "Duplicate club numbers in configuration",
            context={"club_numbers": numbers}
        )
    return clubs


def select_clubs(clubs: List[ClubContext], club_number: Optional[str]) -> List[ClubContext]:
    """Narrow to one club number, or return all clubs when none is given."""
    if not club_number:
        return clubs
    selected = [club for club in clubs if club.club_number == str(club_number)]
    if not selected:
        raise ConfigurationError(
            f"Unknown club number: {club_number}",
            context={"configured": [club.club_number for club in clubs]}
        )
    return selected
