"""Shared fixtures for the statistics snapshot tests.

The clock is frozen at 2024-01-10 12:00 UTC (a Wednesday), so:
- the previous daily period is 2024-01-09
- the previous weekly period is 2024-01-01 ~ 2024-01-07
- the previous monthly period is 2023-12
"""

# pylint: disable=redefined-outer-name

from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

import pytest
from structlog.testing import capture_logs

from stats_snapshots.aggregation import StatisticsAggregationService
from stats_snapshots.cache import StatisticsCache
from stats_snapshots.commands import StatisticsBackfillCommand, StatisticsCalculationCommand
from stats_snapshots.locking import FileLeaseStore, ProcessLivenessChecker
from stats_snapshots.sources import (
    ActivityRecord,
    InMemoryPostSource,
    InMemorySnapshotRepository,
    InMemoryUserSource,
    PostRecord,
    UserRecord,
)

NOW = datetime(2024, 1, 10, 12, 0, tzinfo=timezone.utc)
LEASE_PID = 4242


def at(day: int, hour: int = 10, month: int = 1, year: int = 2024) -> datetime:
    return datetime(year, month, day, hour, tzinfo=timezone.utc)


class FakeLiveness(ProcessLivenessChecker):
    """Liveness checker driven by an explicit set of live PIDs."""

    def __init__(self, alive: set[int] | None = None):
        self.alive = set(alive or ())

    def is_alive(self, pid: int) -> bool:
        return pid in self.alive


# ============================================================================
# Logging
# ============================================================================


@pytest.fixture(autouse=True)
def log_output():
    """Capture structlog events instead of printing them."""
    with capture_logs() as logs:
        yield logs


# ============================================================================
# Source data
# ============================================================================


@pytest.fixture
def clock() -> Callable[[], datetime]:
    return lambda: NOW


@pytest.fixture
def posts() -> list[PostRecord]:
    return [
        PostRecord(id=1, user_id=1, title="Hello", content="a" * 120, views=50, comments=3, likes=10,
                   created_at=at(9, 9)),
        PostRecord(id=2, user_id=2, title="Second", content="b" * 40, views=80, comments=1, likes=2,
                   source="mobile", created_at=at(9, 14)),
        PostRecord(id=3, user_id=1, title="Draft", content="c" * 10, status="draft", views=0,
                   created_at=at(9, 14)),
        PostRecord(id=4, user_id=3, title="Week", content="d" * 60, views=5, created_at=at(3)),
        PostRecord(id=5, user_id=2, title="Monday", content="e" * 30, views=12, created_at=at(1)),
        PostRecord(id=6, user_id=3, title="December", content="f" * 70, views=7,
                   created_at=at(15, month=12, year=2023)),
    ]


@pytest.fixture
def users() -> list[UserRecord]:
    return [
        UserRecord(id=1, username="alice", registered_at=at(1, month=11, year=2023)),
        UserRecord(id=2, username="bob", registered_at=at(20, month=12, year=2023)),
        UserRecord(id=3, username="carol", registered_at=at(9, 8)),
    ]


@pytest.fixture
def activities() -> list[ActivityRecord]:
    return [
        ActivityRecord(user_id=1, activity_type="login", occurred_at=at(9, 8)),
        ActivityRecord(user_id=1, activity_type="post", occurred_at=at(9, 9)),
        ActivityRecord(user_id=2, activity_type="post", occurred_at=at(9, 14)),
        ActivityRecord(user_id=3, activity_type="login", occurred_at=at(9, 20)),
        ActivityRecord(user_id=3, activity_type="post", occurred_at=at(3)),
        ActivityRecord(user_id=2, activity_type="login", occurred_at=at(1)),
        ActivityRecord(user_id=3, activity_type="login", occurred_at=at(15, month=12, year=2023)),
    ]


@pytest.fixture
def post_source(posts: list[PostRecord]) -> InMemoryPostSource:
    return InMemoryPostSource(posts)


@pytest.fixture
def user_source(users: list[UserRecord], activities: list[ActivityRecord]) -> InMemoryUserSource:
    return InMemoryUserSource(users, activities)


# ============================================================================
# Pipeline components
# ============================================================================


@pytest.fixture
def repository() -> InMemorySnapshotRepository:
    return InMemorySnapshotRepository()


@pytest.fixture
def cache() -> StatisticsCache:
    return StatisticsCache(maxsize=64, default_ttl=60)


@pytest.fixture
def service(
    repository: InMemorySnapshotRepository,
    post_source: InMemoryPostSource,
    user_source: InMemoryUserSource,
    clock,
) -> StatisticsAggregationService:
    return StatisticsAggregationService(repository, post_source, user_source, clock=clock)


@pytest.fixture
def liveness() -> FakeLiveness:
    return FakeLiveness({LEASE_PID})


@pytest.fixture
def lock_dir(tmp_path: Path) -> Path:
    return tmp_path / "locks"


@pytest.fixture
def lease_store(lock_dir: Path, liveness: FakeLiveness, clock) -> FileLeaseStore:
    return FileLeaseStore(lock_dir, liveness=liveness, pid=LEASE_PID, clock=clock)


@pytest.fixture
def calculation_command(
    service: StatisticsAggregationService,
    repository: InMemorySnapshotRepository,
    cache: StatisticsCache,
    lease_store: FileLeaseStore,
    clock,
) -> StatisticsCalculationCommand:
    return StatisticsCalculationCommand(
        service,
        repository,
        cache,
        lease_store,
        retry_delay_seconds=0,
        clock=clock,
    )


@pytest.fixture
def backfill_command(
    service: StatisticsAggregationService,
    repository: InMemorySnapshotRepository,
    clock,
) -> StatisticsBackfillCommand:
    return StatisticsBackfillCommand(service, repository, clock=clock)
