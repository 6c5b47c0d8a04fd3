"""
Run the member sync for configured clubs from the command line
"""

import asyncio
import logging
import sys
from datetime import date, datetime
from typing import Optional, Tuple

import click

from core.config import settings, SyncConfig, load_club_contexts, select_clubs
from core.exceptions import ConfigurationError
from core.logging import setup_logging
from pipeline.record_kinds import parse_kinds
from pipeline.runner import open_runner
from schemas.results import RunResult
from schemas.source import DateWindow, RecordKind

logger = logging.getLogger(__name__)


async def run_sync(
    club_number: Optional[str],
    kinds: Tuple[str, ...],
    window: DateWindow
) -> RunResult:
    """Run every selected (kind, club) batch over the window"""
    config = SyncConfig.from_settings(settings)
    clubs = select_clubs(load_club_contexts(settings), club_number)
    record_kinds = parse_kinds(list(kinds) or settings.SYNC_KINDS)

    async with open_runner(config) as runner:
        return await runner.run_all(clubs, record_kinds, window)


def _as_date(value: Optional[datetime]) -> Optional[date]:
    return value.date() if value else None


def print_summary(run: RunResult) -> None:
    for batch in run.batches:
        counts = batch.counts
        click.echo(
            f"club {batch.club_number} [{batch.record_kind}] "
            f"fetched={batch.records_fetched} created={counts['created']} "
            f"updated={counts['updated']} already_tagged={counts['already_tagged']} "
            f"not_found={counts['not_found']} skipped={counts['skipped']} errors={counts['error']}"
            + (" TRUNCATED" if batch.truncated else "")
        )
        for outcome in batch.errors:
            click.echo(f"    ✗ {outcome.email or outcome.source_identity}: {outcome.reason}")

    for failure in run.failures:
        click.echo(
            f"club {failure.club_number} [{failure.record_kind}] FAILED "
            f"{failure.error_type}: {failure.message}",
            err=True
        )

    totals = run.totals
    click.echo(
        f"Totals: created={totals['created']} updated={totals['updated']} "
        f"already_tagged={totals['already_tagged']} not_found={totals['not_found']} "
        f"skipped={totals['skipped']} errors={totals['error']}"
    )


@click.command()
@click.option("--club", "club_number", default=None, help="Club number to sync (default: all configured clubs)")
@click.option(
    "--kind",
    "kinds",
    multiple=True,
    type=click.Choice([k.value for k in RecordKind]),
    help="Record kind to sync; repeat for several (default: SYNC_KINDS)",
)
@click.option("--start", default=None, type=click.DateTime(formats=["%Y-%m-%d"]), help="Window start (YYYY-MM-DD)")
@click.option("--end", default=None, type=click.DateTime(formats=["%Y-%m-%d"]), help="Window end, inclusive (default: --start)")
@click.option("--log-level", default=None, help="Override LOG_LEVEL")
def main(
    club_number: Optional[str],
    kinds: Tuple[str, ...],
    start: Optional[datetime],
    end: Optional[datetime],
    log_level: Optional[str],
):
    """Sync Source member records into Target contacts (default window: yesterday)."""
    setup_logging(log_level)

    start_date, end_date = _as_date(start), _as_date(end)
    if end_date and not start_date:
        raise click.BadParameter("--end requires --start", param_hint="--end")

    try:
        if start_date:
            window = DateWindow(start=start_date, end=end_date or start_date)
        else:
            window = DateWindow.yesterday()
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="--end")

    click.echo(f"Starting sync for window {window}")

    try:
        run = asyncio.run(run_sync(club_number, kinds, window))
    except ConfigurationError as e:
        click.echo(f"Configuration error: {e.message}", err=True)
        sys.exit(2)

    print_summary(run)

    if not run.success:
        sys.exit(1)


if __name__ == "__main__":
    main()
