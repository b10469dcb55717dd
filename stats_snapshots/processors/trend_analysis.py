"""
Trend analysis over ordered numeric series: least-squares trend, moving
average, seasonal index, growth rates, forecasting and summary statistics.
"""
import math
from dataclasses import dataclass
from typing import Any, Sequence

import structlog

from stats_snapshots.exceptions import ValidationError
from stats_snapshots.processors.chart import ChartData, ChartDataset, ChartType

logger = structlog.get_logger(__name__)

SEASON_LENGTH = 12
DEFAULT_WINDOW = 7


@dataclass(frozen=True)
class LinearTrend:
    slope: float
    intercept: float
    fitted: list[float]

    def value_at(self, x: float) -> float:
        return self.slope * x + self.intercept


def _floats(data: Sequence[Any]) -> list[float]:
    values = []
    for value in data:
        try:
            values.append(float(value))
        except (TypeError, ValueError):
            values.append(0.0)
    return values


class TrendAnalysisProcessor:
    ANALYSIS_TYPES = ("trend", "moving_average", "seasonal", "growth", "registration")

    # =========================================================================
    # NUMERICAL CORE
    # =========================================================================

    def linear_trend(self, data: Sequence[float]) -> LinearTrend:
        """Ordinary least squares over x = 1..n."""
        y = _floats(data)
        n = len(y)
        if n < 2:
            return LinearTrend(0.0, y[0] if y else 0.0, list(y))

        xs = range(1, n + 1)
        sum_x = n * (n + 1) / 2
        sum_y = sum(y)
        sum_xy = sum(x * v for x, v in zip(xs, y))
        sum_x2 = n * (n + 1) * (2 * n + 1) / 6

        slope = (n * sum_xy - sum_x * sum_y) / (n * sum_x2 - sum_x * sum_x)
        intercept = (sum_y - slope * sum_x) / n
        return LinearTrend(slope, intercept, [slope * x + intercept for x in xs])

    def moving_average(self, data: Sequence[float], window: int = DEFAULT_WINDOW) -> list[float]:
        """Cumulative mean for the first ``window - 1`` points, trailing mean afterwards."""
        if window < 1:
            raise ValidationError(f"Moving average window must be >= 1, got {window}")
        values = _floats(data)
        return [
            math.fsum(values[max(0, i - window + 1): i + 1]) / min(i + 1, window)
            for i in range(len(values))
        ]

    def seasonal_index(self, data: Sequence[float], season_length: int = SEASON_LENGTH) -> list[float]:
        """Mean per phase, scaled so the index averages 1 (all 1.0 when the mean is 0)."""
        values = _floats(data)
        phases: list[list[float]] = [[] for _ in range(season_length)]
        for i, value in enumerate(values):
            phases[i % season_length].append(value)
        means = [sum(p) / len(p) if p else 0.0 for p in phases]
        overall = sum(means) / season_length
        if overall == 0:
            return [1.0] * season_length
        return [m / overall for m in means]

    def seasonal_adjustment(self, data: Sequence[float], season_length: int = SEASON_LENGTH) -> list[float]:
        """
        Multiply each value by its phase index.

        With fewer than ``season_length`` points there is no full season; the
        result is a moving average with window min(7, n) instead.
        """
        values = _floats(data)
        n = len(values)
        if n < season_length:
            if n == 0:
                return []
            return self.moving_average(values, min(DEFAULT_WINDOW, n))
        index = self.seasonal_index(values, season_length)
        return [v * index[i % season_length] for i, v in enumerate(values)]

    def growth_rates(self, data: Sequence[float]) -> list[float]:
        """Percent change against the previous point; 0 for the first point and after a 0."""
        values = _floats(data)
        rates = []
        for i, value in enumerate(values):
            previous = values[i - 1] if i else 0.0
            rates.append((value - previous) / previous * 100 if i and previous != 0 else 0.0)
        return rates

    def predict_future_values(self, data: Sequence[float], periods: int) -> list[float]:
        """Extend the least-squares line ``periods`` steps, never below 0."""
        if periods <= 0:
            return []
        values = _floats(data)
        n = len(values)
        if n < 3:
            last = values[-1] if values else 0.0
            return [max(0.0, last)] * periods
        trend = self.linear_trend(values)
        return [max(0.0, trend.value_at(n + step)) for step in range(1, periods + 1)]

    def statistical_summary(self, data: Sequence[float]) -> dict[str, float]:
        values = _floats(data)
        if not values:
            return {}
        n = len(values)
        total = sum(values)
        mean = total / n
        ordered = sorted(values)
        mid = n // 2
        median = ordered[mid] if n % 2 else (ordered[mid - 1] + ordered[mid]) / 2
        variance = sum((v - mean) ** 2 for v in values) / n
        return {
            "count": n,
            "sum": total,
            "mean": mean,
            "median": median,
            "min": ordered[0],
            "max": ordered[-1],
            "variance": variance,
            "std_dev": math.sqrt(variance),
            "range": ordered[-1] - ordered[0],
        }

    # =========================================================================
    # CHART OVERLAYS
    # =========================================================================

    def add_trend_analysis(self, chart: ChartData, analysis_type: str = "trend") -> ChartData:
        """Append derived datasets computed from the chart's first dataset."""
        if not chart.datasets:
            return chart
        if analysis_type not in self.ANALYSIS_TYPES:
            logger.debug("Unknown analysis type, using linear trend", analysis_type=analysis_type)
            analysis_type = "trend"

        base = _floats(chart.datasets[0].data)
        if analysis_type == "trend":
            extra = [self._trend_dataset(base)]
        elif analysis_type == "moving_average":
            extra = [self._moving_average_dataset(base, DEFAULT_WINDOW)]
        elif analysis_type == "seasonal":
            extra = [self._seasonal_dataset(base)]
        elif analysis_type == "growth":
            extra = [self._growth_dataset(base)]
        else:
            extra = [self._trend_dataset(base), self._growth_dataset(base)]
        return chart.with_datasets(extra)

    def _trend_dataset(self, values: list[float]) -> ChartDataset:
        return ChartDataset(
            label="Trend",
            data=self.linear_trend(values).fitted,
            chart_type=ChartType.LINE,
            background_color="#ff6384",
            border_color="#ff6384",
            border_width=2,
        )

    def _moving_average_dataset(self, values: list[float], window: int) -> ChartDataset:
        return ChartDataset(
            label=f"{window}-period moving average",
            data=self.moving_average(values, window),
            chart_type=ChartType.LINE,
            background_color="#36a2eb",
            border_color="#36a2eb",
            border_width=2,
        )

    def _seasonal_dataset(self, values: list[float]) -> ChartDataset:
        if len(values) < SEASON_LENGTH:
            return self._moving_average_dataset(values, max(1, min(DEFAULT_WINDOW, len(values))))
        return ChartDataset(
            label="Seasonally adjusted",
            data=self.seasonal_adjustment(values),
            chart_type=ChartType.LINE,
            background_color="#4bc0c0",
            border_color="#4bc0c0",
            border_width=2,
        )

    def _growth_dataset(self, values: list[float]) -> ChartDataset:
        return ChartDataset(
            label="Growth rate (%)",
            data=self.growth_rates(values),
            chart_type=ChartType.BAR,
            background_color="#ffce56",
            border_color="#ffce56",
        )
