from stats_snapshots.aggregation.service import (
    StatisticsAggregationService,
    growth_percentage,
    trend_direction,
)

__all__ = ["StatisticsAggregationService", "growth_percentage", "trend_direction"]
