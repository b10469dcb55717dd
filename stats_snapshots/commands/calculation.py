"""
Scheduled statistics calculation.

Computes all four snapshot types for the last complete window of each
requested granularity. One run per period set at a time (lease); each
snapshot is retried with linear backoff and failures are recorded without
stopping the run.
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterable, Optional

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_incrementing,
)

from stats_snapshots.aggregation import StatisticsAggregationService
from stats_snapshots.cache import StatisticsCache
from stats_snapshots.exceptions import (
    DuplicateSnapshotError,
    NoDataForPeriodError,
    TransientComputationError,
    UnsupportedPeriodError,
    ValidationError,
)
from stats_snapshots.locking import LeaseStore
from stats_snapshots.models import Period, PeriodType, SnapshotType, StatisticsSnapshot
from stats_snapshots.sources.base import SnapshotRepository
from stats_snapshots.utils.hashing import generate_run_id
from stats_snapshots.utils.logging import LogContext

logger = structlog.get_logger(__name__)


@dataclass
class SnapshotFailure:
    """A snapshot that still failed after all retries."""
    snapshot_type: SnapshotType
    period: Period
    error: str
    retries: int

    def to_dict(self) -> dict:
        return {
            "type": self.snapshot_type.value,
            "period_type": self.period.granularity.value,
            "period": self.period.label(),
            "error": self.error,
            "retries": self.retries,
        }


@dataclass
class CalculationReport:
    """Outcome of one calculation run."""
    run_id: str = field(default_factory=generate_run_id)
    start_time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    end_time: Optional[datetime] = None
    total_snapshots: int = 0
    successful_snapshots: int = 0
    failed_snapshots: int = 0
    skipped_snapshots: int = 0
    retries: int = 0
    errors: list[SnapshotFailure] = field(default_factory=list)

    @property
    def duration_ms(self) -> int:
        if self.end_time is None:
            return 0
        return int((self.end_time - self.start_time) / timedelta(milliseconds=1))

    @property
    def ok(self) -> bool:
        return self.failed_snapshots == 0

    def to_dict(self) -> dict:
        return {
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "duration_ms": self.duration_ms,
            "total_snapshots": self.total_snapshots,
            "successful_snapshots": self.successful_snapshots,
            "failed_snapshots": self.failed_snapshots,
            "skipped_snapshots": self.skipped_snapshots,
            "retries": self.retries,
            "errors": [e.to_dict() for e in self.errors],
        }


class StatisticsCalculationCommand:
    """Periodic snapshot computation guarded by an execution lease."""

    DEFAULT_PERIODS = ("daily",)

    def __init__(
        self,
        aggregation_service: StatisticsAggregationService,
        repository: SnapshotRepository,
        cache: StatisticsCache,
        lease_store: LeaseStore,
        retry_delay_seconds: float = 5.0,
        timezone_name: str = "UTC",
        snapshot_ttl: Optional[timedelta] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.aggregation_service = aggregation_service
        self.repository = repository
        self.cache = cache
        self.lease_store = lease_store
        self.retry_delay_seconds = retry_delay_seconds
        self.timezone_name = timezone_name
        self.snapshot_ttl = snapshot_ttl
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @staticmethod
    def validate_periods(periods: Iterable[str]) -> list[PeriodType]:
        """
        Parse requested period names.

        Raises:
            UnsupportedPeriodError: if the list is empty or has unknown names
        """
        names = [str(getattr(p, "value", p)).strip().lower() for p in periods]
        if not names:
            raise UnsupportedPeriodError("At least one period is required")
        supported = {p.value for p in PeriodType}
        unknown = [n for n in names if n not in supported]
        if unknown:
            raise UnsupportedPeriodError(
                f"Unsupported period(s): {', '.join(unknown)}; expected {', '.join(sorted(supported))}",
                unknown,
            )
        parsed: list[PeriodType] = []
        for name in names:
            if PeriodType(name) not in parsed:
                parsed.append(PeriodType(name))
        return parsed

    async def execute(
        self,
        periods: Optional[Iterable[str]] = None,
        max_retries: int = 3,
        force: bool = False,
    ) -> CalculationReport:
        """
        Run the calculation.

        Args:
            periods: granularities to compute (default: daily)
            max_retries: retries per snapshot after the first attempt
            force: recompute snapshots that already exist

        Raises:
            UnsupportedPeriodError: invalid periods (raised before the lease)
            ConcurrentExecutionError: another live run holds the lease
        """
        period_types = self.validate_periods(self.DEFAULT_PERIODS if periods is None else periods)
        if max_retries < 0:
            raise ValidationError(f"max_retries must be >= 0, got {max_retries}")

        report = CalculationReport(start_time=self._clock())
        names = [p.value for p in period_types]

        with self.lease_store.acquire(names), LogContext(run_id=report.run_id, periods=names):
            logger.info("Statistics calculation started", max_retries=max_retries, force=force)

            for period_type in period_types:
                period = Period.previous(period_type, report.start_time, self.timezone_name)
                for snapshot_type in SnapshotType:
                    await self._process(report, snapshot_type, period, max_retries, force)

            report.end_time = self._clock()
            logger.info(
                "Statistics calculation finished",
                **{k: v for k, v in report.to_dict().items() if k != "errors"},
                failures=len(report.errors),
            )

        return report

    async def _process(
        self,
        report: CalculationReport,
        snapshot_type: SnapshotType,
        period: Period,
        max_retries: int,
        force: bool,
    ) -> None:
        report.total_snapshots += 1
        log = logger.bind(snapshot_type=snapshot_type.value, period=str(period))

        if not force and await self.repository.exists(snapshot_type, period):
            log.info("Snapshot exists, skipping")
            report.successful_snapshots += 1
            report.skipped_snapshots += 1
            return

        retries = 0

        def count_retry(state: RetryCallState) -> None:
            nonlocal retries
            retries += 1
            log.warning(
                "Snapshot calculation failed, retrying",
                attempt=state.attempt_number,
                delay_s=round(state.next_action.sleep, 3) if state.next_action else None,
                error=str(state.outcome.exception()) if state.outcome else None,
            )

        try:
            snapshot = await self._compute_with_retry(snapshot_type, period, max_retries, force, count_retry)
        except DuplicateSnapshotError:
            log.info("Snapshot created concurrently, skipping")
            report.retries += retries
            report.successful_snapshots += 1
            report.skipped_snapshots += 1
            return
        except NoDataForPeriodError as e:
            log.warning("No source data for snapshot", error=str(e))
            self._record_failure(report, snapshot_type, period, e, retries)
            return
        except TransientComputationError as e:
            log.error("Snapshot calculation failed", retries=retries, error=str(e))
            self._record_failure(report, snapshot_type, period, e, retries)
            return

        report.retries += retries
        report.successful_snapshots += 1
        log.info("Snapshot calculated", snapshot_id=snapshot.id, retries=retries)
        self._invalidate_cache(snapshot_type)

    async def _compute_with_retry(
        self,
        snapshot_type: SnapshotType,
        period: Period,
        max_retries: int,
        force: bool,
        before_sleep: Callable[[RetryCallState], None],
    ) -> StatisticsSnapshot:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(max_retries + 1),
            wait=wait_incrementing(start=self.retry_delay_seconds, increment=self.retry_delay_seconds),
            retry=retry_if_exception_type(TransientComputationError),
            before_sleep=before_sleep,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                return await self._compute_once(snapshot_type, period, force)
        raise AssertionError("unreachable")

    async def _compute_once(self, snapshot_type: SnapshotType, period: Period, force: bool) -> StatisticsSnapshot:
        try:
            return await self.aggregation_service.create_snapshot(
                snapshot_type,
                period,
                {"generated_via": "scheduled_calculation"},
                self._expiry(),
                overwrite=force,
            )
        except (DuplicateSnapshotError, NoDataForPeriodError):
            raise
        except Exception as e:
            raise TransientComputationError(snapshot_type, period, e) from e

    def _expiry(self) -> Optional[datetime]:
        return self._clock() + self.snapshot_ttl if self.snapshot_ttl else None

    def _record_failure(
        self,
        report: CalculationReport,
        snapshot_type: SnapshotType,
        period: Period,
        error: Exception,
        retries: int,
    ) -> None:
        report.retries += retries
        report.failed_snapshots += 1
        report.errors.append(SnapshotFailure(snapshot_type, period, str(error), retries))

    def _invalidate_cache(self, snapshot_type: SnapshotType) -> None:
        try:
            self.cache.flush_by_tags(["statistics", snapshot_type.value])
        except Exception as e:
            logger.warning("Cache invalidation failed", snapshot_type=snapshot_type.value, error=str(e))

    def summary(self, report: CalculationReport) -> dict[str, Any]:
        """Report dict plus derived success rate."""
        data = report.to_dict()
        total = report.total_snapshots
        data["success_rate"] = round(report.successful_snapshots / total * 100, 2) if total else 100.0
        return data
