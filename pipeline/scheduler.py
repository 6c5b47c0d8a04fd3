import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from core.config import Settings, SyncConfig, load_club_contexts, settings
from pipeline.record_kinds import parse_kinds
from pipeline.runner import open_runner
from schemas.results import RunResult
from schemas.source import DateWindow

logger = logging.getLogger(__name__)


class SyncScheduler:
    """Daily sync of yesterday's records for every configured club and kind"""

    def __init__(self, app_settings: Settings = settings):
        self.settings = app_settings
        self.scheduler = AsyncIOScheduler()

    async def run_sync_job(self) -> Optional[RunResult]:
        """Job to run the sync"""
        logger.info("Scheduler: Starting sync job")
        try:
            config = SyncConfig.from_settings(self.settings)
            clubs = load_club_contexts(self.settings)
            kinds = parse_kinds(self.settings.SYNC_KINDS)

            async with open_runner(config) as runner:
                result = await runner.run_all(clubs, kinds, DateWindow.yesterday())

            logger.info(f"Scheduler: Sync job finished, totals {result.totals}")
            return result

        except Exception as e:
            logger.exception(f"Scheduler: Sync job failed - {e}")
            return None

    def start(self):
        """Start the scheduler"""
        self.scheduler.add_job(
            self.run_sync_job,
            trigger=CronTrigger(hour=self.settings.SCHEDULE_HOUR, minute=self.settings.SCHEDULE_MINUTE),
            id="daily_member_sync",
            replace_existing=True,
            max_instances=1,
        )
        self.scheduler.start()
        logger.info(
            f"Sync scheduler started (daily at "
            f"{self.settings.SCHEDULE_HOUR:02d}:{self.settings.SCHEDULE_MINUTE:02d})"
        )

    def stop(self):
        if self.scheduler.running:
            self.scheduler.shutdown()
        logger.info("Sync scheduler stopped")
