from stats_snapshots.commands.backfill import (
    BackfillConfig,
    BackfillResult,
    BackfillTask,
    StatisticsBackfillCommand,
)
from stats_snapshots.commands.calculation import (
    CalculationReport,
    SnapshotFailure,
    StatisticsCalculationCommand,
)

__all__ = [
    "BackfillConfig",
    "BackfillResult",
    "BackfillTask",
    "StatisticsBackfillCommand",
    "CalculationReport",
    "SnapshotFailure",
    "StatisticsCalculationCommand",
]
