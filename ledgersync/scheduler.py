"""
Periodic sync jobs.

Uses APScheduler on the running asyncio loop: a short-interval sync that
resumes each connection from its last_synced, and a daily backfill that
re-reads the last BACKFILL_DAYS to pick up late-clearing transactions.
"""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from ledgersync.settings import settings
from ledgersync.sync import SyncOrchestrator

logger = logging.getLogger(__name__)


class SyncScheduler:
    def __init__(self, orchestrator: SyncOrchestrator):
        self.orchestrator = orchestrator
        self.scheduler = AsyncIOScheduler(timezone="UTC")

    def setup_schedules(self):
        self.scheduler.add_job(
            self.orchestrator.scheduled_sync,
            trigger=IntervalTrigger(minutes=settings.SYNC_INTERVAL_MINUTES),
            id="scheduled_sync",
            name=f"Sync all connections every {settings.SYNC_INTERVAL_MINUTES} minutes",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self.scheduler.add_job(
            self.orchestrator.backfill_sync,
            trigger=CronTrigger(hour=settings.BACKFILL_HOUR, minute=0),
            id="backfill_sync",
            name=f"Daily {settings.BACKFILL_DAYS}-day backfill",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )

    def start(self):
        self.setup_schedules()
        self.scheduler.start()
        logger.info("Sync scheduler started")

    def shutdown(self):
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Sync scheduler stopped")
