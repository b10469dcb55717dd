"""
Scheduler: APScheduler-based jobs for periodic snapshot calculation.

Schedule (UTC unless STATS_TIMEZONE says otherwise):
- Daily snapshots: every day at <daily_schedule_hour>:05
- Weekly snapshots: <weekly_schedule_day> at <daily_schedule_hour>:15
- Monthly snapshots: day <monthly_schedule_day> at <daily_schedule_hour>:30
- Expired snapshot cleanup: daily at <cleanup_schedule_hour>:00
"""
import asyncio
import signal
from typing import Optional

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from stats_snapshots.container import StatisticsContainer, build_in_memory_container
from stats_snapshots.exceptions import ConcurrentExecutionError
from stats_snapshots.models import PeriodType
from stats_snapshots.utils.logging import log_error

logger = structlog.get_logger(__name__)


class SnapshotScheduler:
    """Manages scheduled calculation and cleanup jobs."""

    def __init__(self, container: StatisticsContainer):
        self.container = container
        self.settings = container.settings
        self.scheduler = AsyncIOScheduler(
            timezone=self.settings.timezone,
            job_defaults={
                "coalesce": True,
                "max_instances": 1,
                "misfire_grace_time": 300,
            },
        )
        self._running = False

    def _setup_jobs(self) -> None:
        """Configure all scheduled jobs."""
        hour = self.settings.daily_schedule_hour

        # =================================================================
        # SNAPSHOT CALCULATION
        # =================================================================

        triggers = {
            PeriodType.DAILY: CronTrigger(hour=hour, minute=5),
            PeriodType.WEEKLY: CronTrigger(day_of_week=self.settings.weekly_schedule_day, hour=hour, minute=15),
            PeriodType.MONTHLY: CronTrigger(day=self.settings.monthly_schedule_day, hour=hour, minute=30),
        }
        for period_type, trigger in triggers.items():
            self.scheduler.add_job(
                self._run_calculation_job,
                trigger=trigger,
                id=f"calculate_{period_type.value}",
                name=f"Statistics snapshots: {period_type.value}",
                kwargs={"period_type": period_type},
                replace_existing=True,
            )
            logger.info("Scheduled calculation job", period=period_type.value, trigger=str(trigger))

        # =================================================================
        # CLEANUP
        # =================================================================

        self.scheduler.add_job(
            self._cleanup_job,
            trigger=CronTrigger(hour=self.settings.cleanup_schedule_hour, minute=0),
            id="cleanup_expired",
            name="Remove expired statistics snapshots",
            replace_existing=True,
        )
        logger.info("Scheduled cleanup job", hour=self.settings.cleanup_schedule_hour)

    async def _run_calculation_job(self, period_type: PeriodType) -> None:
        logger.info("Starting scheduled calculation", period=period_type.value)
        try:
            command = self.container.calculation_command()
            report = await command.execute(
                [period_type.value],
                max_retries=self.settings.retry_max_attempts,
            )
            logger.info(
                "Completed scheduled calculation",
                period=period_type.value,
                status="success" if report.ok else "partial",
                successful=report.successful_snapshots,
                failed=report.failed_snapshots,
                retries=report.retries,
                duration_ms=report.duration_ms,
            )
        except ConcurrentExecutionError as e:
            logger.warning("Scheduled calculation skipped, run in progress", period=period_type.value, error=str(e))
        except Exception as e:
            log_error(logger, e, {"period": period_type.value}, event="Scheduled calculation failed")

    async def _cleanup_job(self) -> None:
        logger.info("Starting expired snapshot cleanup")
        try:
            removed = await self.container.aggregation_service.clean_expired_snapshots()
            logger.info("Completed expired snapshot cleanup", removed=removed)
        except Exception as e:
            log_error(logger, e, event="Expired snapshot cleanup failed")

    def get_job_status(self) -> list[dict]:
        return [
            {
                "id": job.id,
                "name": job.name,
                "next_run_time": job.next_run_time.isoformat() if getattr(job, "next_run_time", None) else None,
            }
            for job in self.scheduler.get_jobs()
        ]

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def start(self) -> None:
        if self._running:
            logger.warning("Scheduler already running")
            return
        self._setup_jobs()
        self.scheduler.start()
        self._running = True
        logger.info("Scheduler started", jobs=len(self.scheduler.get_jobs()))

    def stop(self) -> None:
        if not self._running:
            return
        self.scheduler.shutdown(wait=False)
        self._running = False
        logger.info("Scheduler stopped")

    @property
    def is_running(self) -> bool:
        return self._running


async def run_scheduler(container: Optional[StatisticsContainer] = None) -> None:
    """Run the scheduler until SIGTERM/SIGINT."""
    container = container or build_in_memory_container()
    scheduler = SnapshotScheduler(container)
    stop_event = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, stop_event.set)

    scheduler.start()
    try:
        await stop_event.wait()
        logger.info("Received shutdown signal")
    finally:
        scheduler.stop()
