"""
Statistics snapshot pipeline.

Computes per-period statistics snapshots (overview, posts, users, popular),
backfills history and turns statistics series into chart data.
"""
from stats_snapshots.aggregation import StatisticsAggregationService
from stats_snapshots.commands import StatisticsBackfillCommand, StatisticsCalculationCommand
from stats_snapshots.models import Period, PeriodType, SnapshotType, StatisticsSnapshot

__version__ = "1.0.0"

__all__ = [
    "Period",
    "PeriodType",
    "SnapshotType",
    "StatisticsSnapshot",
    "StatisticsAggregationService",
    "StatisticsBackfillCommand",
    "StatisticsCalculationCommand",
]
