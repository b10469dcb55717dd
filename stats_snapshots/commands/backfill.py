"""
Historical snapshot backfill.

Splits ``[start_date, end_date]`` into windows of ``batch_size`` days and
creates one daily snapshot per day and type. A failing task is recorded and
the remaining tasks still run.
"""
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Optional, Union

import structlog

from stats_snapshots.aggregation import StatisticsAggregationService
from stats_snapshots.exceptions import (
    DuplicateSnapshotError,
    FutureBackfillError,
    InvalidBatchSizeError,
    InvalidDateRangeError,
)
from stats_snapshots.models import Period, SnapshotType
from stats_snapshots.sources.base import SnapshotRepository

logger = structlog.get_logger(__name__)

MIN_BATCH_SIZE = 1
MAX_BATCH_SIZE = 365
DEFAULT_BATCH_SIZE = 30
DEFAULT_RANGE_DAYS = 30

DateInput = Union[date, str, None]


@dataclass(frozen=True)
class BackfillConfig:
    types: tuple[SnapshotType, ...]
    start_date: date
    end_date: date
    force: bool = False
    batch_size: int = DEFAULT_BATCH_SIZE
    dry_run: bool = False

    @property
    def total_days(self) -> int:
        return (self.end_date - self.start_date).days + 1


@dataclass
class BackfillTask:
    """One snapshot type over one window of consecutive days."""
    snapshot_type: SnapshotType
    batch_start: date
    batch_end: date
    exists_already: bool = False

    def will_process(self, force: bool) -> bool:
        return force or not self.exists_already

    def status(self, force: bool) -> str:
        return "process" if self.will_process(force) else "skip"

    def days(self) -> list[date]:
        span = (self.batch_end - self.batch_start).days + 1
        return [self.batch_start + timedelta(days=i) for i in range(span)]

    def to_dict(self) -> dict:
        return {
            "type": self.snapshot_type.value,
            "batch_start": self.batch_start.isoformat(),
            "batch_end": self.batch_end.isoformat(),
            "exists_already": self.exists_already,
        }


@dataclass
class BackfillResult:
    tasks: list[BackfillTask] = field(default_factory=list)
    success: int = 0
    failed: int = 0
    skipped: int = 0
    days_created: int = 0
    days_skipped: int = 0
    errors: list[dict] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        """True when nothing failed, including when nothing needed processing."""
        return self.failed == 0

    @property
    def exit_code(self) -> int:
        return 0 if self.ok else 1

    def to_dict(self) -> dict:
        return {
            "tasks": len(self.tasks),
            "success": self.success,
            "failed": self.failed,
            "skipped": self.skipped,
            "days_created": self.days_created,
            "days_skipped": self.days_skipped,
            "errors": self.errors,
        }


def parse_date(value: DateInput, name: str) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip())
    except ValueError as e:
        raise InvalidDateRangeError(f"Invalid {name} '{value}', expected YYYY-MM-DD") from e


class StatisticsBackfillCommand:
    """Recompute daily snapshots over an explicit historical date range."""

    def __init__(
        self,
        aggregation_service: StatisticsAggregationService,
        repository: SnapshotRepository,
        timezone_name: str = "UTC",
        default_batch_size: int = DEFAULT_BATCH_SIZE,
        default_range_days: int = DEFAULT_RANGE_DAYS,
        snapshot_ttl: Optional[timedelta] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.aggregation_service = aggregation_service
        self.repository = repository
        self.timezone_name = timezone_name
        self.default_batch_size = default_batch_size
        self.default_range_days = default_range_days
        self.snapshot_ttl = snapshot_ttl
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def today(self) -> date:
        return Period.daily(self._clock(), self.timezone_name).start_date

    # =========================================================================
    # CONFIGURATION
    # =========================================================================

    def build_config(
        self,
        snapshot_type: Optional[str] = None,
        start_date: DateInput = None,
        end_date: DateInput = None,
        force: bool = False,
        batch_size: Optional[int] = None,
        dry_run: bool = False,
    ) -> BackfillConfig:
        """
        Validate inputs and fill defaults.

        Defaults: every snapshot type; the ``default_range_days`` days ending
        yesterday.

        Raises:
            InvalidSnapshotTypeError: unknown type
            InvalidDateRangeError: unparsable dates or start after end
            FutureBackfillError: end date is today or later
            InvalidBatchSizeError: batch size outside 1..365
        """
        if snapshot_type is None or str(snapshot_type).strip().lower() in ("", "all"):
            types = tuple(SnapshotType)
        else:
            types = tuple(SnapshotType.parse_many([snapshot_type]))

        today = self.today()
        start = parse_date(start_date, "start date") or today - timedelta(days=self.default_range_days)
        end = parse_date(end_date, "end date") or today - timedelta(days=1)

        if start > end:
            raise InvalidDateRangeError(
                f"Start date {start.isoformat()} is after end date {end.isoformat()}"
            )
        if end >= today:
            raise FutureBackfillError(
                f"End date {end.isoformat()} must be before today ({today.isoformat()})"
            )

        size = self.default_batch_size if batch_size is None else batch_size
        if not MIN_BATCH_SIZE <= size <= MAX_BATCH_SIZE:
            raise InvalidBatchSizeError(size, MIN_BATCH_SIZE, MAX_BATCH_SIZE)

        return BackfillConfig(
            types=types,
            start_date=start,
            end_date=end,
            force=force,
            batch_size=size,
            dry_run=dry_run,
        )

    # =========================================================================
    # TASKS
    # =========================================================================

    def windows(self, config: BackfillConfig) -> list[tuple[date, date]]:
        """Consecutive windows of at most ``batch_size`` days covering the range."""
        result = []
        cursor = config.start_date
        while cursor <= config.end_date:
            window_end = min(cursor + timedelta(days=config.batch_size - 1), config.end_date)
            result.append((cursor, window_end))
            cursor = window_end + timedelta(days=1)
        return result

    async def generate_tasks(self, config: BackfillConfig) -> list[BackfillTask]:
        tasks = []
        for window_start, window_end in self.windows(config):
            for snapshot_type in config.types:
                task = BackfillTask(snapshot_type, window_start, window_end)
                task.exists_already = await self._all_days_exist(task)
                tasks.append(task)
        return tasks

    async def _all_days_exist(self, task: BackfillTask) -> bool:
        for day in task.days():
            if not await self.repository.exists(task.snapshot_type, self._period(day)):
                return False
        return True

    def _period(self, day: date) -> Period:
        return Period.daily(day, self.timezone_name)

    async def preview(self, config: BackfillConfig) -> list[BackfillTask]:
        """Dry run: the task list with nothing computed."""
        tasks = await self.generate_tasks(config)
        logger.info(
            "Backfill preview",
            tasks=len(tasks),
            to_process=sum(1 for t in tasks if t.will_process(config.force)),
        )
        return tasks

    # =========================================================================
    # EXECUTION
    # =========================================================================

    async def run(self, config: BackfillConfig) -> BackfillResult:
        tasks = await self.generate_tasks(config)
        result = BackfillResult(tasks=tasks)
        if config.dry_run:
            result.skipped = sum(1 for t in tasks if not t.will_process(config.force))
            return result

        logger.info(
            "Backfill started",
            start=config.start_date.isoformat(),
            end=config.end_date.isoformat(),
            types=[t.value for t in config.types],
            batch_size=config.batch_size,
            tasks=len(tasks),
            force=config.force,
        )

        for task in tasks:
            if not task.will_process(config.force):
                result.skipped += 1
                continue
            await self._run_task(task, config, result)

        logger.info("Backfill finished", **{k: v for k, v in result.to_dict().items() if k != "errors"})
        return result

    async def _run_task(self, task: BackfillTask, config: BackfillConfig, result: BackfillResult) -> None:
        log = logger.bind(
            snapshot_type=task.snapshot_type.value,
            batch_start=task.batch_start.isoformat(),
            batch_end=task.batch_end.isoformat(),
        )
        created = skipped = 0
        try:
            for day in task.days():
                if await self._run_day(task.snapshot_type, day, config.force):
                    created += 1
                else:
                    skipped += 1
        except Exception as e:
            result.failed += 1
            result.errors.append({
                **task.to_dict(),
                "error": str(e),
                "days_created": created,
            })
            log.error("Backfill task failed", error=str(e), days_created=created)
        else:
            result.success += 1
            log.info("Backfill task completed", days_created=created, days_skipped=skipped)
        finally:
            result.days_created += created
            result.days_skipped += skipped

    async def _run_day(self, snapshot_type: SnapshotType, day: date, force: bool) -> bool:
        """Create one daily snapshot; False when the day was skipped."""
        period = self._period(day)
        if not force and await self.repository.exists(snapshot_type, period):
            return False
        try:
            await self.aggregation_service.create_snapshot(
                snapshot_type,
                period,
                {"generated_via": "backfill"},
                self._clock() + self.snapshot_ttl if self.snapshot_ttl else None,
                overwrite=force,
            )
        except DuplicateSnapshotError:
            return False
        return True

    def describe(self, config: BackfillConfig) -> dict[str, Any]:
        return {
            "types": [t.value for t in config.types],
            "start_date": config.start_date.isoformat(),
            "end_date": config.end_date.isoformat(),
            "days": config.total_days,
            "batch_size": config.batch_size,
            "force": config.force,
            "dry_run": config.dry_run,
        }
