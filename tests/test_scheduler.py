"""Tests for the APScheduler job wiring."""

# pylint: disable=protected-access
# pylint: disable=redefined-outer-name

import pytest

from stats_snapshots.config import Settings
from stats_snapshots.container import StatisticsContainer, build_container
from stats_snapshots.models import PeriodType
from stats_snapshots.scheduler import SnapshotScheduler
from stats_snapshots.sources import InMemoryPostSource, InMemorySnapshotRepository, InMemoryUserSource


@pytest.fixture
def container(tmp_path) -> StatisticsContainer:
    settings = Settings(
        lock_dir=tmp_path / "locks",
        retry_delay_seconds=0,
        retry_max_attempts=0,
        daily_schedule_hour=2,
        weekly_schedule_day="Sunday",
        monthly_schedule_day=3,
    )
    return build_container(InMemorySnapshotRepository(), InMemoryPostSource(), InMemoryUserSource(), settings)


def test_jobs_registered(container: StatisticsContainer) -> None:
    scheduler = SnapshotScheduler(container)

    scheduler._setup_jobs()

    jobs = {job["id"] for job in scheduler.get_job_status()}
    assert jobs == {"calculate_daily", "calculate_weekly", "calculate_monthly", "cleanup_expired"}
    weekly = scheduler.scheduler.get_job("calculate_weekly")
    assert weekly.kwargs == {"period_type": PeriodType.WEEKLY}
    assert "day_of_week='sun'" in str(weekly.trigger)
    assert not scheduler.is_running


async def test_calculation_job_logs_outcome(container: StatisticsContainer, log_output: list[dict]) -> None:
    scheduler = SnapshotScheduler(container)

    await scheduler._run_calculation_job(PeriodType.DAILY)

    done = [e for e in log_output if e["event"] == "Completed scheduled calculation"]
    assert done[0]["status"] == "partial"
    assert done[0]["failed"] == 2


async def test_calculation_job_skips_when_leased(container: StatisticsContainer, log_output: list[dict]) -> None:
    scheduler = SnapshotScheduler(container)

    with container.lease_store.acquire(["daily"]):
        await scheduler._run_calculation_job(PeriodType.DAILY)

    skipped = [e for e in log_output if e["event"] == "Scheduled calculation skipped, run in progress"]
    assert skipped and skipped[0]["log_level"] == "warning"


async def test_cleanup_job(container: StatisticsContainer, log_output: list[dict]) -> None:
    await SnapshotScheduler(container)._cleanup_job()

    assert any(e["event"] == "Completed expired snapshot cleanup" and e["removed"] == 0 for e in log_output)


async def test_calculation_job_logs_unexpected_error(
    container: StatisticsContainer,
    log_output: list[dict],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """A crashing run is logged with its error type and the job returns normally."""

    def broken_command():
        raise RuntimeError("repository offline")

    monkeypatch.setattr(container, "calculation_command", broken_command)

    await SnapshotScheduler(container)._run_calculation_job(PeriodType.WEEKLY)

    failed = [e for e in log_output if e["event"] == "Scheduled calculation failed"]
    assert failed[0]["log_level"] == "error"
    assert failed[0]["period"] == "weekly"
    assert failed[0]["error_type"] == "RuntimeError"
    assert failed[0]["error_message"] == "repository offline"


async def test_cleanup_job_logs_error(
    container: StatisticsContainer,
    log_output: list[dict],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    async def broken_cleanup(before=None):
        raise OSError("disk full")

    monkeypatch.setattr(container.aggregation_service, "clean_expired_snapshots", broken_cleanup)

    await SnapshotScheduler(container)._cleanup_job()

    failed = [e for e in log_output if e["event"] == "Expired snapshot cleanup failed"]
    assert failed[0]["error_type"] == "OSError"
    assert failed[0]["error_message"] == "disk full"
