"""
Sync trigger and connectivity probe endpoints
"""

import logging
from typing import List, Optional, Tuple

from fastapi import APIRouter, Depends, HTTPException, Request

from api.dependencies import (
    RunnerFactory,
    get_clubs,
    get_runner_factory,
    get_settings,
    get_sync_config,
)
from core.config import ClubContext, Settings, SyncConfig, select_clubs
from core.exceptions import ConfigurationError
from pipeline.record_kinds import parse_kinds
from schemas.api import (
    RecordPreview,
    SourceTestRequest,
    SourceTestResponse,
    SyncDateRequest,
    SyncRequest,
    SyncRunResponse,
    TargetTestRequest,
    TargetTestResponse,
)
from schemas.results import RunResult
from schemas.source import DateWindow, RecordKind

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api", tags=["Sync"])

SAMPLE_SIZE = 5


def _resolve_scope(
    clubs: List[ClubContext],
    club_number: Optional[str],
    kinds: Optional[List[str]],
    default_kinds: List[str]
) -> Tuple[List[ClubContext], List[RecordKind]]:
    """Clubs and kinds a request asks for; unknown names are a 400"""
    try:
        return select_clubs(clubs, club_number), parse_kinds(kinds or default_kinds)
    except ConfigurationError as e:
        raise HTTPException(status_code=400, detail=e.message)


def _run_response(run: RunResult, window: DateWindow) -> SyncRunResponse:
    if run.success:
        message = f"Sync completed for {window}"
    else:
        message = f"Sync completed for {window} with {len(run.failures)} failed batch(es)"
    return SyncRunResponse(
        message=message,
        window_start=window.start,
        window_end=window.end,
        **run.to_report()
    )


async def _run(
    request: Request,
    body: SyncRequest,
    window: DateWindow,
    default_kinds: List[str],
    config: SyncConfig,
    clubs: List[ClubContext],
    runner_factory: RunnerFactory
) -> SyncRunResponse:
    selected_clubs, kinds = _resolve_scope(clubs, body.club_number, body.kinds, default_kinds)

    request_id = getattr(request.state, "request_id", "-")
    logger.info(
        f"[{request_id}] Sync requested: window {window}, "
        f"clubs {[c.club_number for c in selected_clubs]}, kinds {[k.value for k in kinds]}"
    )

    async with runner_factory(config) as runner:
        run = await runner.run_all(selected_clubs, kinds, window)

    return _run_response(run, window)


@router.post("/sync", response_model=SyncRunResponse)
async def sync_yesterday(
    request: Request,
    body: Optional[SyncRequest] = None,
    app_settings: Settings = Depends(get_settings),
    config: SyncConfig = Depends(get_sync_config),
    clubs: List[ClubContext] = Depends(get_clubs),
    runner_factory: RunnerFactory = Depends(get_runner_factory)
):
    """Sync yesterday's records for all (or one) club(s)"""
    return await _run(
        request,
        body or SyncRequest(),
        DateWindow.yesterday(),
        app_settings.SYNC_KINDS,
        config,
        clubs,
        runner_factory
    )


@router.post("/sync-date", response_model=SyncRunResponse)
async def sync_date_range(
    request: Request,
    body: SyncDateRequest,
    app_settings: Settings = Depends(get_settings),
    config: SyncConfig = Depends(get_sync_config),
    clubs: List[ClubContext] = Depends(get_clubs),
    runner_factory: RunnerFactory = Depends(get_runner_factory)
):
    """Sync an explicit inclusive date range (``startDate``/``endDate``)"""
    window = DateWindow(start=body.start_date, end=body.end_date)
    return await _run(request, body, window, app_settings.SYNC_KINDS, config, clubs, runner_factory)


@router.post("/test-source", response_model=SourceTestResponse)
async def test_source(
    body: Optional[SourceTestRequest] = None,
    config: SyncConfig = Depends(get_sync_config),
    clubs: List[ClubContext] = Depends(get_clubs),
    runner_factory: RunnerFactory = Depends(get_runner_factory)
):
    """
    Fetch one record set without writing anything.

    Reports how many records were fetched, kept and excluded, with a short
    sample of what would be upserted.
    """
    body = body or SourceTestRequest()
    selected, kinds = _resolve_scope(clubs, body.club_number, [body.kind], [])
    club, kind = selected[0], kinds[0]

    if body.start_date and body.end_date:
        window = DateWindow(start=body.start_date, end=body.end_date)
    elif body.start_date:
        window = DateWindow.single_day(body.start_date)
    else:
        window = DateWindow.yesterday()

    async with runner_factory(config) as runner:
        fetched = await runner.source.fetch_records(club, kind, window)

    return SourceTestResponse(
        club_number=club.club_number,
        kind=kind.value,
        window=str(window),
        total_fetched=fetched.total_fetched,
        filtered_out=fetched.filtered_out,
        included=len(fetched.records),
        excluded=len(fetched.skipped),
        pages_fetched=fetched.pages_fetched,
        truncated=fetched.truncated,
        sample=[
            RecordPreview(
                identity=r.identity,
                name=r.name,
                email=r.email,
                type_value=r.type_value,
            )
            for r in fetched.records[:SAMPLE_SIZE]
        ],
        skipped=[s.model_dump() for s in fetched.skipped],
    )


@router.post("/test-target", response_model=TargetTestResponse)
async def test_target(
    body: Optional[TargetTestRequest] = None,
    config: SyncConfig = Depends(get_sync_config),
    clubs: List[ClubContext] = Depends(get_clubs),
    runner_factory: RunnerFactory = Depends(get_runner_factory)
):
    """Probe the Target duplicate search for one club's location"""
    body = body or TargetTestRequest()
    try:
        club = select_clubs(clubs, body.club_number)[0]
    except ConfigurationError as e:
        raise HTTPException(status_code=400, detail=e.message)

    async with runner_factory(config) as runner:
        contact = await runner.target.search_duplicate(club, body.email)

    return TargetTestResponse(
        club_number=club.club_number,
        location_id=club.location_id,
        email=body.email,
        found=contact is not None,
        contact_id=contact.id if contact else None,
    )
