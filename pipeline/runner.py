# ============================================================================
# File: pipeline/runner.py
# Description: Sync orchestrator - fetch, map, upsert, count
# ============================================================================
"""
Sync Runner - drives Source records through mapping and upsert.

This module provides:
- run_batch: sequential per-record mapping + upsert with a fixed delay after each write
- run_sync: the single (club, record kind, date window) entry point
- run_all: the outer record kind x club loop used by the scheduler, API and CLI

Per-record failures become counted error outcomes and never stop a batch.
Only a Source fetch failure stops a (club, kind) batch.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, Iterable, List, Optional

import httpx

from core.config import ClubContext, SyncConfig
from core.exceptions import SourceUnavailable, UnmappableRecord
from pipeline.extractors.source_client import SourceClient
from pipeline.loaders.directory import TargetDirectory
from pipeline.loaders.target_client import TargetClient
from pipeline.loaders.upsert_engine import UpsertEngine
from pipeline.record_kinds import get_spec
from pipeline.transformers.record_mapper import RecordMapper
from schemas.results import BatchFailure, BatchResult, OutcomeKind, RunResult, SyncOutcome
from schemas.source import DateWindow, RecordKind, SourceRecord

logger = logging.getLogger(__name__)

# Outcomes that wrote to the Target; only these are followed by the write delay
WRITE_OUTCOMES = (OutcomeKind.CREATED, OutcomeKind.UPDATED)


class SyncRunner:
    """
    Sync orchestrator for one run.

    Responsibilities:
    - Fetch each (club, kind) record set from the Source System
    - Map and upsert records strictly one at a time
    - Pause between Target writes to stay under its rate limit
    - Record accurate per-outcome counts and per-record details

    A runner holds one UpsertEngine, so identities resolved early in the run
    are reused by later batches of the same run.
    """

    def __init__(self, config: SyncConfig, source: SourceClient, target: TargetClient):
        self.config = config
        self.source = source
        self.target = target
        self.mapper = RecordMapper(config.custom_field_maps)
        self.engine = UpsertEngine(TargetDirectory(target, config.lookup_mode), target)

    def action_tag_for(self, kind: RecordKind) -> str:
        return self.config.action_tags.get(kind.value) or kind.value.replace("_", " ")

    async def run_batch(
        self,
        records: Iterable[SourceRecord],
        action_tag: str,
        club: ClubContext,
        kind: Optional[RecordKind] = None
    ) -> BatchResult:
        """
        Upsert records sequentially.

        Returns:
            BatchResult with counts per outcome and one detail entry per record
        """
        spec = get_spec(kind) if kind else None
        result = BatchResult(
            club_number=club.club_number,
            record_kind=kind.value if kind else "",
            action_tag=action_tag,
        )

        for record in records:
            logger.info(f"Processing: {record.name or record.identity} ({record.type_value})")

            try:
                draft = self.mapper.map_to_contact(
                    record,
                    action_tag,
                    club,
                    tag_only=spec.tag_only if spec else False,
                    create_if_missing=spec.create_if_missing if spec else True,
                )
            except UnmappableRecord as e:
                logger.warning(
                    f"  ✗ Skipping {record.name or record.identity}: {e.message}",
                    extra={"error_context": e.to_dict()}
                )
                result.add(SyncOutcome(
                    kind=OutcomeKind.ERROR,
                    name=record.name,
                    source_identity=record.identity,
                    reason=e.reason,
                    retryable=False,
                ))
                continue

            try:
                outcome = await self.engine.upsert(draft, club)
            except Exception as e:
                # The engine reports its own failures; this is a bug in one record
                logger.exception(f"  ✗ Unexpected error processing {draft.email}")
                outcome = SyncOutcome(
                    kind=OutcomeKind.ERROR,
                    email=draft.email,
                    name=draft.name,
                    source_identity=draft.source_identity,
                    reason=f"WriteFailed: {type(e).__name__}: {e}",
                )

            result.add(outcome)

            if outcome.kind in WRITE_OUTCOMES and self.config.write_delay > 0:
                await asyncio.sleep(self.config.write_delay)

        result.completed_at = datetime.now(timezone.utc)
        counts = result.counts
        logger.info(
            f"Batch completed for club {club.club_number} [{result.record_kind or action_tag}]: "
            f"Created: {counts['created']}, Updated: {counts['updated']}, "
            f"Already tagged: {counts['already_tagged']}, Not found: {counts['not_found']}, "
            f"Errors: {counts['error']}"
        )
        return result

    async def run_sync(
        self,
        club: ClubContext,
        kind: RecordKind,
        window: Optional[DateWindow] = None
    ) -> BatchResult:
        """
        Fetch one record set and upsert it.

        Raises:
            SourceUnavailable: the record set could not be fetched
        """
        kind = RecordKind(kind)
        action_tag = self.action_tag_for(kind)

        logger.info(f"=== SYNC STARTED === club {club.label}, {kind.value}, window {window or 'n/a'}")

        fetched = await self.source.fetch_records(club, kind, window)
        result = await self.run_batch(fetched.records, action_tag, club, kind)

        result.window_start = window.start if window else None
        result.window_end = window.end if window else None
        result.records_fetched = fetched.total_fetched
        result.pages_fetched = fetched.pages_fetched
        result.filtered_out = fetched.filtered_out
        result.truncated = fetched.truncated
        result.skipped = list(fetched.skipped)

        logger.info(
            f"=== SYNC COMPLETED === club {club.club_number}, {kind.value}: "
            f"fetched {fetched.total_fetched}, skipped {len(fetched.skipped)}"
            + (" (truncated at page cap)" if fetched.truncated else "")
        )
        return result

    async def run_all(
        self,
        clubs: List[ClubContext],
        kinds: List[RecordKind],
        window: Optional[DateWindow] = None
    ) -> RunResult:
        """
        Every configured club for each record kind, strictly in sequence.

        A Source failure for one (club, kind) is recorded and the loop moves on.
        """
        run = RunResult()

        for kind in kinds:
            for club in clubs:
                try:
                    run.batches.append(await self.run_sync(club, kind, window))
                except SourceUnavailable as e:
                    logger.error(
                        f"Sync failed for club {club.club_number} [{RecordKind(kind).value}]: {e.message}",
                        extra={"error_context": e.to_dict()}
                    )
                    run.failures.append(BatchFailure(
                        club_number=club.club_number,
                        record_kind=RecordKind(kind).value,
                        error_type=type(e).__name__,
                        message=e.message,
                        retryable=e.retryable,
                    ))

        run.completed_at = datetime.now(timezone.utc)
        totals = run.totals
        logger.info(
            f"Run completed: {len(run.batches)} batches, {len(run.failures)} failed; "
            f"Created: {totals['created']}, Updated: {totals['updated']}, "
            f"Skipped: {totals['skipped']}, Errors: {totals['error']}"
        )
        return run


@asynccontextmanager
async def open_runner(config: SyncConfig) -> AsyncIterator[SyncRunner]:
    """One HTTP client per remote system for the lifetime of a run"""
    async with httpx.AsyncClient(timeout=config.request_timeout) as source_http, \
            httpx.AsyncClient(timeout=config.request_timeout) as target_http:
        yield SyncRunner(
            config,
            SourceClient(config, source_http),
            TargetClient(config, target_http),
        )
