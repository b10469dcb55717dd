"""
Abstract data providers consumed by the aggregation service.
Production deployments implement these over their own storage.
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Optional

from stats_snapshots.models import Period, SnapshotType, StatisticsSnapshot


class PostStatisticsSource(ABC):
    """Post activity provider."""

    @abstractmethod
    async def total_posts_count(self, period: Period) -> int:
        pass

    @abstractmethod
    async def post_activity_summary(self, period: Period) -> dict[str, Any]:
        pass

    @abstractmethod
    async def posts_count_by_status(self, period: Period) -> dict[str, int]:
        pass

    @abstractmethod
    async def posts_count_by_source(self, period: Period) -> dict[str, int]:
        pass

    @abstractmethod
    async def popular_posts(
        self, period: Period, limit: int = 10, metric: str = "views"
    ) -> list[dict[str, Any]]:
        """Top posts ordered by ``metric`` (views, comments or likes)."""
        pass

    @abstractmethod
    async def posts_length_statistics(self, period: Period) -> dict[str, Any]:
        pass

    @abstractmethod
    async def posts_publish_time_distribution(self, period: Period) -> dict[str, int]:
        """Post counts keyed by two-digit hour of day."""
        pass

    @abstractmethod
    async def posts_count_by_user(self, period: Period, limit: int = 5) -> list[dict[str, Any]]:
        pass

    @abstractmethod
    async def has_data_for_period(self, period: Period) -> bool:
        pass


class UserStatisticsSource(ABC):
    """User activity provider."""

    @abstractmethod
    async def active_users_count(self, period: Period) -> int:
        pass

    @abstractmethod
    async def new_users_count(self, period: Period) -> int:
        pass

    @abstractmethod
    async def user_activity_summary(self, period: Period) -> dict[str, Any]:
        pass

    @abstractmethod
    async def active_users_by_activity_type(self, period: Period) -> dict[str, int]:
        pass

    @abstractmethod
    async def most_active_users(
        self, period: Period, limit: int = 10, metric: str = "activity_score"
    ) -> list[dict[str, Any]]:
        """Top users ordered by ``metric`` (activity_score, posts or logins)."""
        pass

    @abstractmethod
    async def registration_trend(self, period: Period) -> list[dict[str, Any]]:
        pass

    @abstractmethod
    async def retention_analysis(self, period: Period) -> dict[str, Any]:
        pass

    @abstractmethod
    async def activity_time_distribution(self, period: Period) -> dict[str, int]:
        pass

    @abstractmethod
    async def has_data_for_period(self, period: Period) -> bool:
        pass


class SnapshotRepository(ABC):
    """
    Snapshot persistence.

    Implementations enforce uniqueness of (snapshot_type, period): ``save``
    raises ``SnapshotConflictError`` when a snapshot already exists unless
    ``replace`` is set.
    """

    @abstractmethod
    async def exists(self, snapshot_type: SnapshotType, period: Period) -> bool:
        pass

    @abstractmethod
    async def save(self, snapshot: StatisticsSnapshot, *, replace: bool = False) -> StatisticsSnapshot:
        pass

    @abstractmethod
    async def update(self, snapshot: StatisticsSnapshot) -> StatisticsSnapshot:
        pass

    @abstractmethod
    async def find_by_type_and_period(
        self, snapshot_type: SnapshotType, period: Period
    ) -> Optional[StatisticsSnapshot]:
        pass

    @abstractmethod
    async def delete_expired_snapshots(self, before: datetime) -> int:
        """Delete snapshots whose expiry is at or before ``before``; return the count."""
        pass

    @abstractmethod
    async def list_snapshots(
        self, snapshot_type: Optional[SnapshotType] = None
    ) -> list[StatisticsSnapshot]:
        pass
