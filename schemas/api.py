"""
Pydantic schemas for API request/response models
"""

from datetime import date, datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, validator


def _utcnow() -> datetime:
    return datetime.utcnow()


# ============================================================================
# Request Schemas
# ============================================================================

class SyncRequest(BaseModel):
    """Body for a sync of yesterday's records; empty body syncs everything"""
    club_number: Optional[str] = Field(None, alias="clubNumber", description="Limit to one club")
    kinds: Optional[List[str]] = Field(None, description="Record kinds to sync, default all configured")

    @validator("club_number", pre=True)
    def stringify_club_number(cls, v):
        return str(v) if v is not None else None

    class Config:
        populate_by_name = True


class SyncDateRequest(SyncRequest):
    """Body for a sync over an explicit inclusive date range"""
    start_date: date = Field(..., alias="startDate")
    end_date: date = Field(..., alias="endDate")

    @validator("end_date")
    def end_not_before_start(cls, v, values):
        start = values.get("start_date")
        if start and v < start:
            raise ValueError("endDate must not be before startDate")
        return v

    class Config:
        populate_by_name = True
        json_schema_extra = {
            "example": {
                "startDate": "2024-01-01",
                "endDate": "2024-01-07",
                "clubNumber": "1234",
                "kinds": ["new_members"]
            }
        }


class SourceTestRequest(BaseModel):
    """Fetch preview for one club and record kind"""
    club_number: Optional[str] = Field(None, alias="clubNumber")
    kind: str = "new_members"
    start_date: Optional[date] = Field(None, alias="startDate")
    end_date: Optional[date] = Field(None, alias="endDate")

    @validator("club_number", pre=True)
    def stringify_club_number(cls, v):
        return str(v) if v is not None else None

    class Config:
        populate_by_name = True


class TargetTestRequest(BaseModel):
    """Duplicate-search probe against one club's location"""
    club_number: Optional[str] = Field(None, alias="clubNumber")
    email: str = "test@example.com"

    @validator("club_number", pre=True)
    def stringify_club_number(cls, v):
        return str(v) if v is not None else None

    class Config:
        populate_by_name = True


# ============================================================================
# Health Check Schemas
# ============================================================================

class ClubSummary(BaseModel):
    """Non-secret view of a configured club"""
    club_number: str
    name: Optional[str] = None
    location_id: str


class HealthCheckResponse(BaseModel):
    """Health check response model"""
    status: str = Field(..., description="Overall service status: healthy or misconfigured")
    timestamp: datetime = Field(default_factory=_utcnow)
    environment: str
    source_configured: bool
    clubs: List[ClubSummary] = Field(default_factory=list)
    config_error: Optional[str] = None
    sync_kinds: List[str] = Field(default_factory=list)
    lookup_mode: str
    scheduler_enabled: bool
    schedule: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "status": "healthy",
                "timestamp": "2024-01-15T10:30:00Z",
                "environment": "production",
                "source_configured": True,
                "clubs": [{"club_number": "1234", "name": "Downtown", "location_id": "loc_abc"}],
                "sync_kinds": ["new_members", "cancelled_members"],
                "lookup_mode": "duplicate",
                "scheduler_enabled": True,
                "schedule": "06:00"
            }
        }


# ============================================================================
# Sync Schemas
# ============================================================================

class SyncRunResponse(BaseModel):
    """Outcome counts and per-record details of one run"""
    success: bool
    message: str
    window_start: Optional[date] = None
    window_end: Optional[date] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    totals: Dict[str, int] = Field(default_factory=dict)
    batches: List[Dict[str, Any]] = Field(default_factory=list)
    failures: List[Dict[str, Any]] = Field(default_factory=list)

    class Config:
        json_schema_extra = {
            "example": {
                "success": True,
                "message": "Sync completed for 2024-01-14",
                "window_start": "2024-01-14",
                "window_end": "2024-01-14",
                "totals": {
                    "created": 3,
                    "updated": 5,
                    "already_tagged": 0,
                    "not_found": 0,
                    "error": 1,
                    "skipped": 2
                },
                "batches": [],
                "failures": []
            }
        }


class RecordPreview(BaseModel):
    identity: str
    name: str
    email: Optional[str] = None
    type_value: Optional[str] = None


class SourceTestResponse(BaseModel):
    """What a fetch would hand to the upsert engine"""
    success: bool = True
    club_number: str
    kind: str
    window: Optional[str] = None
    total_fetched: int
    filtered_out: int
    included: int
    excluded: int
    pages_fetched: int
    truncated: bool
    sample: List[RecordPreview] = Field(default_factory=list)
    skipped: List[Dict[str, Any]] = Field(default_factory=list)


class TargetTestResponse(BaseModel):
    success: bool = True
    club_number: str
    location_id: str
    email: str
    found: bool
    contact_id: Optional[str] = None


# ============================================================================
# Error Response Schema
# ============================================================================

class ErrorResponse(BaseModel):
    """Standard error response"""
    error: str
    detail: Optional[str] = None
    context: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=_utcnow)

    class Config:
        json_schema_extra = {
            "example": {
                "error": "SourceUnavailable",
                "detail": "Source System returned HTTP 503",
                "timestamp": "2024-01-15T10:30:00Z"
            }
        }
