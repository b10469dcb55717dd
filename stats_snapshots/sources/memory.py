"""
In-memory implementations of the data sources and snapshot repository.

Used by the CLI when no external storage is wired in, and by the tests.
"""
import asyncio
import json
from collections import Counter, defaultdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Optional
from zoneinfo import ZoneInfo

import structlog
from pydantic import BaseModel, Field, field_validator

from stats_snapshots.exceptions import SnapshotConflictError, SnapshotNotFoundError
from stats_snapshots.models import Period, SnapshotType, StatisticsSnapshot
from stats_snapshots.sources.base import (
    PostStatisticsSource,
    SnapshotRepository,
    UserStatisticsSource,
)

logger = structlog.get_logger(__name__)


# =============================================================================
# RAW RECORDS
# =============================================================================

class _Record(BaseModel):
    @field_validator("*", mode="after")
    @classmethod
    def ensure_aware(cls, v):
        if isinstance(v, datetime) and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v


class PostRecord(_Record):
    id: int
    user_id: int
    title: str = ""
    content: str = ""
    status: str = "published"
    source: str = "web"
    views: int = Field(default=0, ge=0)
    comments: int = Field(default=0, ge=0)
    likes: int = Field(default=0, ge=0)
    created_at: datetime


class UserRecord(_Record):
    id: int
    username: str
    registered_at: datetime


class ActivityRecord(_Record):
    user_id: int
    activity_type: str  # login, post, comment, view, ...
    occurred_at: datetime


POST_METRICS = ("views", "comments", "likes")


def _hour_histogram(moments: Iterable[datetime], tz: str) -> dict[str, int]:
    zone = ZoneInfo(tz)
    counts = Counter(f"{m.astimezone(zone).hour:02d}" for m in moments)
    return dict(sorted(counts.items()))


class InMemoryPostSource(PostStatisticsSource):
    def __init__(self, posts: Iterable[PostRecord] = ()):
        self.posts = list(posts)

    def _in(self, period: Period) -> list[PostRecord]:
        return [p for p in self.posts if period.contains(p.created_at)]

    async def total_posts_count(self, period: Period) -> int:
        return len(self._in(period))

    async def post_activity_summary(self, period: Period) -> dict[str, Any]:
        posts = self._in(period)
        total_views = sum(p.views for p in posts)
        return {
            "total_posts": len(posts),
            "published_posts": sum(1 for p in posts if p.status == "published"),
            "draft_posts": sum(1 for p in posts if p.status == "draft"),
            "total_views": total_views,
            "avg_views_per_post": round(total_views / len(posts), 2) if posts else 0,
        }

    async def posts_count_by_status(self, period: Period) -> dict[str, int]:
        return dict(sorted(Counter(p.status for p in self._in(period)).items()))

    async def posts_count_by_source(self, period: Period) -> dict[str, int]:
        return dict(sorted(Counter(p.source for p in self._in(period)).items()))

    async def popular_posts(self, period: Period, limit: int = 10, metric: str = "views") -> list[dict[str, Any]]:
        if metric not in POST_METRICS:
            raise ValueError(f"Unknown post metric: {metric}")
        ranked = sorted(self._in(period), key=lambda p: (-getattr(p, metric), p.id))
        return [
            {
                "id": p.id,
                "title": p.title,
                "user_id": p.user_id,
                "views": p.views,
                "comments": p.comments,
                "likes": p.likes,
            }
            for p in ranked[:limit]
        ]

    async def posts_length_statistics(self, period: Period) -> dict[str, Any]:
        lengths = [len(p.content) for p in self._in(period)]
        if not lengths:
            return {"count": 0, "min_length": 0, "max_length": 0, "avg_length": 0}
        return {
            "count": len(lengths),
            "min_length": min(lengths),
            "max_length": max(lengths),
            "avg_length": round(sum(lengths) / len(lengths), 2),
        }

    async def posts_publish_time_distribution(self, period: Period) -> dict[str, int]:
        return _hour_histogram((p.created_at for p in self._in(period)), period.timezone)

    async def posts_count_by_user(self, period: Period, limit: int = 5) -> list[dict[str, Any]]:
        counts = Counter(p.user_id for p in self._in(period))
        ranked = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
        return [{"user_id": user_id, "post_count": count} for user_id, count in ranked[:limit]]

    async def has_data_for_period(self, period: Period) -> bool:
        return any(period.contains(p.created_at) for p in self.posts)


class InMemoryUserSource(UserStatisticsSource):
    METRIC_ACTIVITY = {"posts": "post", "logins": "login"}

    def __init__(self, users: Iterable[UserRecord] = (), activities: Iterable[ActivityRecord] = ()):
        self.users = {u.id: u for u in users}
        self.activities = list(activities)

    def _activities(self, period: Period) -> list[ActivityRecord]:
        return [a for a in self.activities if period.contains(a.occurred_at)]

    def _username(self, user_id: int) -> str:
        user = self.users.get(user_id)
        return user.username if user else f"user-{user_id}"

    async def active_users_count(self, period: Period) -> int:
        return len({a.user_id for a in self._activities(period)})

    async def new_users_count(self, period: Period) -> int:
        return sum(1 for u in self.users.values() if period.contains(u.registered_at))

    async def user_activity_summary(self, period: Period) -> dict[str, Any]:
        activities = self._activities(period)
        active = len({a.user_id for a in activities})
        return {
            "total_activities": len(activities),
            "active_users": active,
            "avg_activities_per_user": round(len(activities) / active, 2) if active else 0,
        }

    async def active_users_by_activity_type(self, period: Period) -> dict[str, int]:
        users_by_type: dict[str, set[int]] = defaultdict(set)
        for a in self._activities(period):
            users_by_type[a.activity_type].add(a.user_id)
        return {k: len(v) for k, v in sorted(users_by_type.items())}

    async def most_active_users(
        self, period: Period, limit: int = 10, metric: str = "activity_score"
    ) -> list[dict[str, Any]]:
        activities = self._activities(period)
        if metric != "activity_score":
            if metric not in self.METRIC_ACTIVITY:
                raise ValueError(f"Unknown user metric: {metric}")
            activities = [a for a in activities if a.activity_type == self.METRIC_ACTIVITY[metric]]
        counts = Counter(a.user_id for a in activities)
        ranked = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
        return [
            {"user_id": user_id, "username": self._username(user_id), metric: score}
            for user_id, score in ranked[:limit]
        ]

    async def registration_trend(self, period: Period) -> list[dict[str, Any]]:
        zone = ZoneInfo(period.timezone)
        per_day = Counter(
            u.registered_at.astimezone(zone).date().isoformat()
            for u in self.users.values()
            if period.contains(u.registered_at)
        )
        return [{"date": day, "count": count} for day, count in sorted(per_day.items())]

    async def retention_analysis(self, period: Period) -> dict[str, Any]:
        previous = {u.id for u in self.users.values() if u.registered_at < period.start_time}
        returning = previous & {a.user_id for a in self._activities(period)}
        return {
            "previous_users": len(previous),
            "returning_users": len(returning),
            "retention_rate": round(len(returning) / len(previous) * 100, 2) if previous else 0,
        }

    async def activity_time_distribution(self, period: Period) -> dict[str, int]:
        return _hour_histogram((a.occurred_at for a in self._activities(period)), period.timezone)

    async def has_data_for_period(self, period: Period) -> bool:
        return any(period.contains(a.occurred_at) for a in self.activities) or any(
            period.contains(u.registered_at) for u in self.users.values()
        )


# =============================================================================
# SNAPSHOT REPOSITORY
# =============================================================================

class InMemorySnapshotRepository(SnapshotRepository):
    """
    Dictionary-backed repository keyed by (snapshot_type, period).

    When ``path`` is given the snapshots are loaded from and written back to a
    JSON file after every change. Stored snapshots are copies; callers never
    share state with the store.
    """

    def __init__(self, path: Optional[Path] = None):
        self._snapshots: dict[tuple[SnapshotType, Period], StatisticsSnapshot] = {}
        self._lock = asyncio.Lock()
        self._path = Path(path) if path else None
        if self._path and self._path.exists():
            self._load()

    def _load(self) -> None:
        raw = json.loads(self._path.read_text(encoding="utf-8") or "[]")
        for item in raw:
            snapshot = StatisticsSnapshot.from_dict(item)
            self._snapshots[(snapshot.snapshot_type, snapshot.period)] = snapshot
        logger.debug("Loaded snapshots", path=str(self._path), count=len(self._snapshots))

    def _flush(self) -> None:
        if not self._path:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        payload = [s.to_dict() for s in self._snapshots.values()]
        self._path.write_text(json.dumps(payload, indent=2, default=str), encoding="utf-8")

    async def exists(self, snapshot_type: SnapshotType, period: Period) -> bool:
        return (SnapshotType(snapshot_type), period) in self._snapshots

    async def save(self, snapshot: StatisticsSnapshot, *, replace: bool = False) -> StatisticsSnapshot:
        key = (snapshot.snapshot_type, snapshot.period)
        async with self._lock:
            if key in self._snapshots and not replace:
                raise SnapshotConflictError(snapshot.snapshot_type, snapshot.period)
            self._snapshots[key] = snapshot.model_copy(deep=True)
            self._flush()
        return snapshot

    async def update(self, snapshot: StatisticsSnapshot) -> StatisticsSnapshot:
        key = (snapshot.snapshot_type, snapshot.period)
        async with self._lock:
            if key not in self._snapshots:
                raise SnapshotNotFoundError(snapshot.snapshot_type, snapshot.period)
            self._snapshots[key] = snapshot.model_copy(deep=True)
            self._flush()
        return snapshot

    async def find_by_type_and_period(
        self, snapshot_type: SnapshotType, period: Period
    ) -> Optional[StatisticsSnapshot]:
        found = self._snapshots.get((SnapshotType(snapshot_type), period))
        return found.model_copy(deep=True) if found else None

    async def delete_expired_snapshots(self, before: datetime) -> int:
        async with self._lock:
            expired = [
                key for key, s in self._snapshots.items()
                if s.expires_at is not None and s.expires_at <= before
            ]
            for key in expired:
                del self._snapshots[key]
            if expired:
                self._flush()
        return len(expired)

    async def list_snapshots(self, snapshot_type: Optional[SnapshotType] = None) -> list[StatisticsSnapshot]:
        snapshots = [
            s.model_copy(deep=True) for s in self._snapshots.values()
            if snapshot_type is None or s.snapshot_type == snapshot_type
        ]
        return sorted(snapshots, key=lambda s: (s.period.start_time, s.snapshot_type.value))


def load_activity_data(
    path: Optional[Path],
) -> tuple[list[PostRecord], list[UserRecord], list[ActivityRecord]]:
    """
    Read ``{"posts": [...], "users": [...], "activities": [...]}`` from JSON.

    A missing path yields empty sources.
    """
    if path is None:
        return [], [], []
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    posts = [PostRecord.model_validate(p) for p in data.get("posts", [])]
    users = [UserRecord.model_validate(u) for u in data.get("users", [])]
    activities = [ActivityRecord.model_validate(a) for a in data.get("activities", [])]
    logger.info(
        "Loaded activity data",
        path=str(path),
        posts=len(posts),
        users=len(users),
        activities=len(activities),
    )
    return posts, users, activities
