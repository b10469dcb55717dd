"""
Domain models for statistics snapshots.
"""
from stats_snapshots.models.period import Period, PeriodType
from stats_snapshots.models.snapshot import SnapshotType, StatisticsSnapshot, utcnow

__all__ = [
    "Period",
    "PeriodType",
    "SnapshotType",
    "StatisticsSnapshot",
    "utcnow",
]
