"""
Explicit wiring of the pipeline's collaborators.
"""
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from stats_snapshots.aggregation import StatisticsAggregationService
from stats_snapshots.cache import StatisticsCache
from stats_snapshots.commands import StatisticsBackfillCommand, StatisticsCalculationCommand
from stats_snapshots.config import Settings, get_settings
from stats_snapshots.locking import FileLeaseStore, LeaseStore
from stats_snapshots.sources import (
    InMemoryPostSource,
    InMemorySnapshotRepository,
    InMemoryUserSource,
    PostStatisticsSource,
    SnapshotRepository,
    UserStatisticsSource,
    load_activity_data,
)


@dataclass
class StatisticsContainer:
    settings: Settings
    repository: SnapshotRepository
    post_source: PostStatisticsSource
    user_source: UserStatisticsSource
    cache: StatisticsCache
    lease_store: LeaseStore
    aggregation_service: StatisticsAggregationService

    @property
    def snapshot_ttl(self) -> Optional[timedelta]:
        days = self.settings.snapshot_ttl_days
        return timedelta(days=days) if days > 0 else None

    def calculation_command(self) -> StatisticsCalculationCommand:
        return StatisticsCalculationCommand(
            self.aggregation_service,
            self.repository,
            self.cache,
            self.lease_store,
            retry_delay_seconds=self.settings.retry_delay_seconds,
            timezone_name=self.settings.timezone,
            snapshot_ttl=self.snapshot_ttl,
        )

    def backfill_command(self) -> StatisticsBackfillCommand:
        return StatisticsBackfillCommand(
            self.aggregation_service,
            self.repository,
            timezone_name=self.settings.timezone,
            default_batch_size=self.settings.backfill_batch_size,
            default_range_days=self.settings.backfill_default_days,
            snapshot_ttl=self.snapshot_ttl,
        )


def build_container(
    repository: SnapshotRepository,
    post_source: PostStatisticsSource,
    user_source: UserStatisticsSource,
    settings: Optional[Settings] = None,
) -> StatisticsContainer:
    """Assemble a container around caller-supplied storage and sources."""
    settings = settings or get_settings()
    return StatisticsContainer(
        settings=settings,
        repository=repository,
        post_source=post_source,
        user_source=user_source,
        cache=StatisticsCache(maxsize=settings.cache_max_entries, default_ttl=settings.cache_default_ttl),
        lease_store=FileLeaseStore(settings.lock_dir),
        aggregation_service=StatisticsAggregationService(repository, post_source, user_source),
    )


def build_in_memory_container(settings: Optional[Settings] = None) -> StatisticsContainer:
    """Container over the in-memory sources, seeded from ``activity_data_path``."""
    settings = settings or get_settings()
    posts, users, activities = load_activity_data(settings.activity_data_path)
    return build_container(
        repository=InMemorySnapshotRepository(settings.snapshot_store_path),
        post_source=InMemoryPostSource(posts),
        user_source=InMemoryUserSource(users, activities),
        settings=settings,
    )
