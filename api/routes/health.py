"""
Health check endpoint with a non-secret configuration summary
"""

import logging
from datetime import datetime

from fastapi import APIRouter, Depends

from api.dependencies import get_settings
from core.config import Settings, load_club_contexts
from core.exceptions import ConfigurationError
from schemas.api import ClubSummary, HealthCheckResponse

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api", tags=["Health"])


@router.get("/health", response_model=HealthCheckResponse)
async def health_check(app_settings: Settings = Depends(get_settings)):
    """
    Health check endpoint.

    Returns:
    - Whether Source credentials are present
    - Configured clubs (no API keys)
    - Sync kinds, lookup mode and schedule
    """
    source_configured = bool(app_settings.SOURCE_APP_ID and app_settings.SOURCE_APP_KEY)

    clubs = []
    config_error = None
    try:
        clubs = [
            ClubSummary(club_number=c.club_number, name=c.name, location_id=c.location_id)
            for c in load_club_contexts(app_settings)
        ]
    except ConfigurationError as e:
        logger.warning(f"Club configuration invalid: {e.message}")
        config_error = e.message

    schedule = None
    if app_settings.SCHEDULE_ENABLED:
        schedule = f"{app_settings.SCHEDULE_HOUR:02d}:{app_settings.SCHEDULE_MINUTE:02d}"

    return HealthCheckResponse(
        status="healthy" if source_configured and not config_error else "misconfigured",
        timestamp=datetime.utcnow(),
        environment=app_settings.ENVIRONMENT,
        source_configured=source_configured,
        clubs=clubs,
        config_error=config_error,
        sync_kinds=list(app_settings.SYNC_KINDS),
        lookup_mode=app_settings.LOOKUP_MODE,
        scheduler_enabled=app_settings.SCHEDULE_ENABLED,
        schedule=schedule,
    )
