"""
Chart and trend processors for statistics series.
"""
from stats_snapshots.processors.category import CategoryProcessor, normalize_category_records
from stats_snapshots.processors.chart import (
    CategoryDataPoint,
    ChartData,
    ChartDataset,
    ChartType,
    TimeSeriesPoint,
)
from stats_snapshots.processors.time_series import TimeSeriesProcessor
from stats_snapshots.processors.trend_analysis import LinearTrend, TrendAnalysisProcessor

__all__ = [
    "CategoryProcessor",
    "normalize_category_records",
    "CategoryDataPoint",
    "ChartData",
    "ChartDataset",
    "ChartType",
    "TimeSeriesPoint",
    "TimeSeriesProcessor",
    "LinearTrend",
    "TrendAnalysisProcessor",
]
