"""
Timer trigger: one fixed-interval job per enabled source.

Scheduled runs go through the same single-flight guard as manual
triggers; a tick that finds the source busy is skipped, not queued.
"""

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from campaign_sync.config import Settings
from campaign_sync.core.errors import ConfigurationError, SyncInProgressError
from campaign_sync.core.models import SourceTag, SyncType
from campaign_sync.observability.logger import get_logger

from .orchestrator import SyncOrchestrator

logger = get_logger(__name__)

SCHEDULER_IDENTITY = "scheduler"


class SyncScheduler:
    """Runs each enabled source on its configured interval."""

    def __init__(self, settings: Settings, orchestrator: SyncOrchestrator):
        self.settings = settings
        self.orchestrator = orchestrator
        self.scheduler = BackgroundScheduler(timezone=settings.scheduler.timezone)

    def start(self) -> None:
        """Register one interval job per enabled source and start the scheduler."""
        for source in SourceTag:
            source_settings = self.settings.source(source)
            if not source_settings.enabled or source not in self.orchestrator.adapters:
                continue
            self.scheduler.add_job(
                self.run_source,
                IntervalTrigger(minutes=source_settings.interval_minutes),
                args=[source],
                id=f"sync_{source.value}",
                name=f"Sync {source.value}",
                max_instances=1,
                coalesce=True,
                replace_existing=True,
            )
            logger.info(f"Scheduled {source.value} every {source_settings.interval_minutes} minute(s)")

        self.scheduler.start()
        logger.info("Sync scheduler started")

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Sync scheduler stopped")

    def jobs(self) -> list[dict]:
        return [
            {"id": job.id, "name": job.name, "next_run_time": job.next_run_time}
            for job in self.scheduler.get_jobs()
        ]

    def run_source(self, source: SourceTag) -> None:
        """Job body: one scheduled run, conflicts and configuration errors logged."""
        try:
            self.orchestrator.run(source, SyncType.SCHEDULED, SCHEDULER_IDENTITY)
        except SyncInProgressError as e:
            logger.info(f"Skipping scheduled {source.value} sync: {e}")
        except ConfigurationError as e:
            logger.error(f"Scheduled {source.value} sync not started: {e}")
