"""
Sync pipeline: gym management records into CRM contacts.

Modules:
    record_kinds: Per-kind fetch parameters and client-side filters
    runner: Orchestrator that fetches, maps and upserts one batch at a time
    scheduler: APScheduler integration for the daily "yesterday" sync

Subpackages:
    extractors: Source System client, pagination and record filters
    transformers: SourceRecord -> TargetContactDraft mapping
    loaders: Target System client, contact directory and upsert engine

Architecture:
    Each (club, record kind, date window) batch runs in three phases:

    1. Fetch - page through the Source System, drop records that fail the
       kind's status/date checks or carry an excluded membership type
    2. Map - build a contact draft with the kind's action tag and custom fields
    3. Upsert - look the contact up by email, then update (tag union, field
       overwrite) or create; a duplicate rejection on create resolves the
       existing contact and updates it instead

    Records are processed strictly one at a time with a fixed pause after each
    Target write. A per-record failure is counted and the batch continues.

Usage:
    from pipeline.runner import open_runner
    from schemas.source import DateWindow, RecordKind

    async with open_runner(config) as runner:
        result = await runner.run_sync(club, RecordKind.NEW_MEMBERS, DateWindow.yesterday())

    print(result.counts)
"""

__all__ = [
    "SyncRunner",
    "open_runner",
    "SyncScheduler",
]
