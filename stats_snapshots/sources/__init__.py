"""
Data providers and snapshot persistence.
"""
from stats_snapshots.sources.base import (
    PostStatisticsSource,
    SnapshotRepository,
    UserStatisticsSource,
)
from stats_snapshots.sources.memory import (
    ActivityRecord,
    InMemoryPostSource,
    InMemorySnapshotRepository,
    InMemoryUserSource,
    PostRecord,
    UserRecord,
    load_activity_data,
)

__all__ = [
    "PostStatisticsSource",
    "SnapshotRepository",
    "UserStatisticsSource",
    "ActivityRecord",
    "InMemoryPostSource",
    "InMemorySnapshotRepository",
    "InMemoryUserSource",
    "PostRecord",
    "UserRecord",
    "load_activity_data",
]
