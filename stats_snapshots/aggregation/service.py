"""
Statistics Aggregation Service.

Builds snapshots for a period from the post and user sources, persists them,
refreshes existing snapshots and compares two periods.

Statistics payloads are pure functions of the source data and the period, so
recomputing a snapshot over unchanged data yields identical ``statistics_data``.
Timestamps only go into ``metadata``.
"""
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Optional, Union

import structlog

from stats_snapshots.exceptions import (
    BatchSnapshotError,
    DuplicateSnapshotError,
    ExpiredSnapshotError,
    IntegrityError,
    NoDataForPeriodError,
    SnapshotNotFoundError,
)
from stats_snapshots.models import Period, SnapshotType, StatisticsSnapshot
from stats_snapshots.sources.base import (
    PostStatisticsSource,
    SnapshotRepository,
    UserStatisticsSource,
)

logger = structlog.get_logger(__name__)

TOP_POSTS_LIMIT = 10
TOP_AUTHORS_LIMIT = 5
TOP_USERS_LIMIT = 10


def growth_percentage(current: float, previous: float) -> float:
    """Percent change from ``previous``; 0 when there is no baseline."""
    if previous == 0:
        return 0.0
    return round((current - previous) / previous * 100, 2)


def trend_direction(current: float, previous: float) -> str:
    if previous == 0 or current == previous:
        return "flat"
    return "up" if current > previous else "down"


class StatisticsAggregationService:
    """
    Creates and maintains statistics snapshots.

    Holds no locks: duplicate protection comes from the caller's lease, the
    ``exists`` check and the repository's uniqueness constraint.
    """

    GENERATED_BY = "StatisticsAggregationService"
    VERSION = "1.0.0"

    def __init__(
        self,
        repository: SnapshotRepository,
        post_source: PostStatisticsSource,
        user_source: UserStatisticsSource,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.repository = repository
        self.post_source = post_source
        self.user_source = user_source
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._log = logger.bind(component="aggregation")

    # =========================================================================
    # SINGLE SNAPSHOTS
    # =========================================================================

    async def create_overview_snapshot(
        self,
        period: Period,
        metadata: Optional[dict[str, Any]] = None,
        expires_at: Optional[datetime] = None,
        *,
        overwrite: bool = False,
    ) -> StatisticsSnapshot:
        if not overwrite and await self.repository.exists(SnapshotType.OVERVIEW, period):
            raise DuplicateSnapshotError(SnapshotType.OVERVIEW, period)

        data = await self._aggregate_overview(period)
        return await self._persist(SnapshotType.OVERVIEW, period, data, metadata, expires_at, overwrite)

    async def create_posts_snapshot(
        self,
        period: Period,
        metadata: Optional[dict[str, Any]] = None,
        expires_at: Optional[datetime] = None,
        *,
        overwrite: bool = False,
    ) -> StatisticsSnapshot:
        if not await self.post_source.has_data_for_period(period):
            raise NoDataForPeriodError(SnapshotType.POSTS, period)

        data = await self._aggregate_posts(period)
        return await self._persist(SnapshotType.POSTS, period, data, metadata, expires_at, overwrite)

    async def create_users_snapshot(
        self,
        period: Period,
        metadata: Optional[dict[str, Any]] = None,
        expires_at: Optional[datetime] = None,
        *,
        overwrite: bool = False,
    ) -> StatisticsSnapshot:
        if not await self.user_source.has_data_for_period(period):
            raise NoDataForPeriodError(SnapshotType.USERS, period)

        data = await self._aggregate_users(period)
        return await self._persist(SnapshotType.USERS, period, data, metadata, expires_at, overwrite)

    async def create_popular_snapshot(
        self,
        period: Period,
        metadata: Optional[dict[str, Any]] = None,
        expires_at: Optional[datetime] = None,
        *,
        overwrite: bool = False,
    ) -> StatisticsSnapshot:
        data = await self._aggregate_popular(period)
        return await self._persist(SnapshotType.POPULAR, period, data, metadata, expires_at, overwrite)

    async def create_snapshot(
        self,
        snapshot_type: Union[SnapshotType, str],
        period: Period,
        metadata: Optional[dict[str, Any]] = None,
        expires_at: Optional[datetime] = None,
        *,
        overwrite: bool = False,
    ) -> StatisticsSnapshot:
        """Dispatch to the single-type creator for ``snapshot_type``."""
        snapshot_type = SnapshotType(snapshot_type)
        match snapshot_type:
            case SnapshotType.OVERVIEW:
                creator = self.create_overview_snapshot
            case SnapshotType.POSTS:
                creator = self.create_posts_snapshot
            case SnapshotType.USERS:
                creator = self.create_users_snapshot
            case SnapshotType.POPULAR:
                creator = self.create_popular_snapshot
            case _:
                raise AssertionError(f"Unhandled snapshot type: {snapshot_type}")
        return await creator(period, metadata, expires_at, overwrite=overwrite)

    # =========================================================================
    # BATCH
    # =========================================================================

    async def create_batch_snapshots(
        self,
        period: Period,
        types: Iterable[Union[SnapshotType, str]],
        metadata: Optional[dict[str, Any]] = None,
        expires_at: Optional[datetime] = None,
        *,
        force: bool = False,
    ) -> dict[SnapshotType, StatisticsSnapshot]:
        """
        Create one snapshot per requested type, in order.

        The batch stops at the first failure: snapshots already saved by
        earlier types stay saved, later types are not attempted.

        Raises:
            InvalidSnapshotTypeError: if any type is unknown (nothing is created)
            BatchSnapshotError: wrapping the first failure
        """
        snapshot_types = SnapshotType.parse_many(types)
        created: dict[SnapshotType, StatisticsSnapshot] = {}

        for snapshot_type in snapshot_types:
            try:
                created[snapshot_type] = await self.create_snapshot(
                    snapshot_type, period, metadata, expires_at, overwrite=force
                )
            except Exception as e:
                self._log.warning(
                    "Batch aborted",
                    snapshot_type=snapshot_type.value,
                    period=str(period),
                    completed=[t.value for t in created],
                    error=str(e),
                )
                raise BatchSnapshotError(snapshot_type, e) from e

        return created

    # =========================================================================
    # UPDATE / TRENDS / RETENTION
    # =========================================================================

    async def update_snapshot(self, snapshot: StatisticsSnapshot) -> StatisticsSnapshot:
        """Recompute ``snapshot`` from the sources and persist the merged result."""
        now = self._clock()
        if snapshot.is_expired(now):
            raise ExpiredSnapshotError(snapshot.id)
        if not snapshot.validate_data_integrity():
            raise IntegrityError(snapshot.id)

        data = await self._aggregate(snapshot.snapshot_type, snapshot.period)
        snapshot.update_statistics(data, now=now)
        snapshot.update_metadata(
            {
                "last_updated_by": self.GENERATED_BY,
                "last_updated_at": now.isoformat(),
                "data_points": len(data),
                "calculation_method": "aggregated",
            },
            now=now,
        )
        updated = await self.repository.update(snapshot)
        self._log.info(
            "Snapshot updated",
            snapshot_id=snapshot.id,
            snapshot_type=snapshot.snapshot_type.value,
            period=str(snapshot.period),
        )
        return updated

    async def calculate_trends(
        self,
        current_period: Period,
        previous_period: Period,
        snapshot_type: Union[SnapshotType, str],
    ) -> dict[str, Any]:
        snapshot_type = SnapshotType(snapshot_type)
        current = await self.repository.find_by_type_and_period(snapshot_type, current_period)
        if current is None:
            raise SnapshotNotFoundError(snapshot_type, current_period)
        previous = await self.repository.find_by_type_and_period(snapshot_type, previous_period)
        if previous is None:
            raise SnapshotNotFoundError(snapshot_type, previous_period)

        current_value = current.total_count
        previous_value = previous.total_count
        return {
            "current_value": current_value,
            "previous_value": previous_value,
            "absolute_change": current_value - previous_value,
            "percentage_change": growth_percentage(current_value, previous_value),
            "trend_direction": trend_direction(current_value, previous_value),
            "comparison_period": {
                "current": current_period.label(),
                "previous": previous_period.label(),
            },
        }

    async def clean_expired_snapshots(self, before: Optional[datetime] = None) -> int:
        before = before or self._clock()
        removed = await self.repository.delete_expired_snapshots(before)
        self._log.info("Expired snapshots removed", before=before.isoformat(), removed=removed)
        return removed

    # =========================================================================
    # INTERNALS
    # =========================================================================

    async def _persist(
        self,
        snapshot_type: SnapshotType,
        period: Period,
        data: dict[str, Any],
        metadata: Optional[dict[str, Any]],
        expires_at: Optional[datetime],
        overwrite: bool,
    ) -> StatisticsSnapshot:
        now = self._clock()
        snapshot = StatisticsSnapshot.create(
            snapshot_type,
            period,
            data,
            metadata={**self._base_metadata(now), **(metadata or {})},
            expires_at=expires_at,
            now=now,
        )
        saved = await self.repository.save(snapshot, replace=overwrite)
        self._log.info(
            "Snapshot created",
            snapshot_id=saved.id,
            snapshot_type=snapshot_type.value,
            period=str(period),
            total_count=saved.total_count,
            overwrite=overwrite,
        )
        return saved

    def _base_metadata(self, now: datetime) -> dict[str, Any]:
        return {
            "generated_by": self.GENERATED_BY,
            "version": self.VERSION,
            "generated_at": now.isoformat(),
            "data_sources": {
                "posts": type(self.post_source).__name__,
                "users": type(self.user_source).__name__,
            },
        }

    async def _aggregate(self, snapshot_type: SnapshotType, period: Period) -> dict[str, Any]:
        match snapshot_type:
            case SnapshotType.OVERVIEW:
                return await self._aggregate_overview(period)
            case SnapshotType.POSTS:
                return await self._aggregate_posts(period)
            case SnapshotType.USERS:
                return await self._aggregate_users(period)
            case SnapshotType.POPULAR:
                return await self._aggregate_popular(period)
            case _:
                raise AssertionError(f"Unhandled snapshot type: {snapshot_type}")

    async def _aggregate_overview(self, period: Period) -> dict[str, Any]:
        total_posts = await self.post_source.total_posts_count(period)
        active_users = await self.user_source.active_users_count(period)
        new_users = await self.user_source.new_users_count(period)

        return {
            "total_posts": total_posts,
            "active_users": active_users,
            "new_users": new_users,
            "post_activity": await self.post_source.post_activity_summary(period),
            "user_activity": await self.user_source.user_activity_summary(period),
            "engagement_metrics": {
                "posts_per_active_user": round(total_posts / active_users, 2) if active_users else 0,
                "user_growth_rate": growth_percentage(new_users, active_users),
                "content_velocity": round(total_posts / period.duration_days, 2),
            },
            "period_summary": {
                "type": period.granularity.value,
                "duration_days": period.duration_days,
                "start": period.start_time.isoformat(),
                "end": period.end_time.isoformat(),
            },
            "total_count": total_posts,
        }

    async def _aggregate_posts(self, period: Period) -> dict[str, Any]:
        by_status = await self.post_source.posts_count_by_status(period)
        return {
            "by_status": by_status,
            "by_source": await self.post_source.posts_count_by_source(period),
            "top_posts": await self.post_source.popular_posts(period, TOP_POSTS_LIMIT),
            "length_statistics": await self.post_source.posts_length_statistics(period),
            "time_distribution": await self.post_source.posts_publish_time_distribution(period),
            "top_authors": await self.post_source.posts_count_by_user(period, TOP_AUTHORS_LIMIT),
            "total_count": sum(by_status.values()),
        }

    async def _aggregate_users(self, period: Period) -> dict[str, Any]:
        active_users = await self.user_source.active_users_count(period)
        return {
            "active_users": active_users,
            "new_users": await self.user_source.new_users_count(period),
            "by_activity_type": await self.user_source.active_users_by_activity_type(period),
            "most_active": await self.user_source.most_active_users(period, TOP_USERS_LIMIT),
            "registration_trend": await self.user_source.registration_trend(period),
            "retention": await self.user_source.retention_analysis(period),
            "total_count": active_users,
        }

    async def _aggregate_popular(self, period: Period) -> dict[str, Any]:
        by_views = await self.post_source.popular_posts(period, TOP_POSTS_LIMIT, "views")
        return {
            "top_posts": {
                "by_views": by_views,
                "by_comments": await self.post_source.popular_posts(period, TOP_POSTS_LIMIT, "comments"),
                "by_likes": await self.post_source.popular_posts(period, TOP_POSTS_LIMIT, "likes"),
            },
            "top_users": {
                "by_posts": await self.user_source.most_active_users(period, TOP_USERS_LIMIT, "posts"),
                "by_activity": await self.user_source.most_active_users(period, TOP_USERS_LIMIT, "activity_score"),
            },
            "trending_sources": await self.post_source.posts_count_by_source(period),
            "peak_activity_times": await self.user_source.activity_time_distribution(period),
            "total_count": len(by_views),
        }
