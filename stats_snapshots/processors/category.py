"""
Category chart processing: ranking, top-N with an "others" bucket,
percentage distributions and multi-series comparison.
"""
from typing import Any, Iterable, Mapping, Optional, Sequence

from stats_snapshots.processors.chart import (
    CategoryDataPoint,
    ChartData,
    ChartDataset,
    ChartType,
)

DEFAULT_COLORS = (
    "#3B82F6",
    "#EF4444",
    "#10B981",
    "#F59E0B",
    "#8B5CF6",
    "#EC4899",
    "#14B8A6",
    "#F97316",
    "#84CC16",
    "#06B6D4",
    "#8B5A2B",
    "#6B7280",
)

COLOR_SCHEMES = {
    "default": DEFAULT_COLORS,
    "pastel": ("#FFB3BA", "#FFDFBA", "#FFFFBA", "#BAFFC9", "#BAE1FF", "#E1BAFF", "#FFBAE1", "#C9BAFF"),
    "vibrant": ("#FF6B6B", "#4ECDC4", "#45B7D1", "#96CEB4", "#FFEAA7", "#DDA0DD", "#98D8C8", "#F7DC6F"),
    "monochrome": ("#2C3E50", "#34495E", "#5D6D7E", "#85929E", "#AEB6BF", "#D5DBDB", "#E8DAEF", "#F4F6F6"),
    "business": ("#1f4e79", "#2f5f8f", "#4472c4", "#5b86db", "#7199e2", "#8fb3ea", "#a6c8f1", "#bdd7f7"),
}

OTHERS_LABEL = "others"


def normalize_category_records(raw: Iterable[Any]) -> list[CategoryDataPoint]:
    """
    Accept ``{"category"|"name": ..., "value"|"count": ...}`` dicts,
    ``(category, value)`` pairs or ``CategoryDataPoint`` objects.
    Records without a usable numeric value count as 0.
    """
    points = []
    for item in raw:
        if isinstance(item, CategoryDataPoint):
            points.append(item)
            continue
        if isinstance(item, Mapping):
            category = item.get("category", item.get("name"))
            value = item.get("value", item.get("count", 0))
        else:
            category, value = item
        try:
            number = float(value)
        except (TypeError, ValueError):
            number = 0.0
        points.append(CategoryDataPoint(category=str(category), value=number))
    return points


class CategoryProcessor:
    """Transforms categorical statistics into chart data."""

    def __init__(self, palette: Sequence[str] = DEFAULT_COLORS):
        self.palette = tuple(palette) or DEFAULT_COLORS

    # =========================================================================
    # CORE TRANSFORMS
    # =========================================================================

    def sort_and_filter(self, data: Iterable[Any], order: str = "desc") -> list[CategoryDataPoint]:
        """Drop negative values and sort by value (stable for ties)."""
        if order not in ("asc", "desc"):
            raise ValueError(f"order must be 'asc' or 'desc', got {order!r}")
        points = [p for p in normalize_category_records(data) if p.value >= 0]
        return sorted(points, key=lambda p: p.value, reverse=order == "desc")

    def top_n(self, data: Iterable[Any], n: int = 10, include_others: bool = True) -> list[CategoryDataPoint]:
        """Top ``n`` categories, plus an ``others`` bucket summing the remainder when it is positive."""
        if n <= 0:
            return []
        ranked = self.sort_and_filter(data)
        top, rest = ranked[:n], ranked[n:]
        if include_others and rest:
            others = sum(p.value for p in rest)
            if others > 0:
                top.append(CategoryDataPoint(category=OTHERS_LABEL, value=others))
        return top

    def to_percentages(self, data: Iterable[Any]) -> list[CategoryDataPoint]:
        """Share of total per category (0-100, 2 dp); empty when the total is 0."""
        points = self.sort_and_filter(data)
        total = sum(p.value for p in points)
        if total <= 0:
            return []
        return [
            CategoryDataPoint(p.category, p.value, p.color, round(p.value / total * 100, 2))
            for p in points
        ]

    def align_series(self, series: Mapping[str, Iterable[Any]]) -> tuple[list[str], dict[str, list[float]]]:
        """
        Align named series on the union of their categories (first-seen order).
        Missing combinations are 0.
        """
        normalized = {name: normalize_category_records(values) for name, values in series.items()}
        labels: list[str] = []
        for points in normalized.values():
            for p in points:
                if p.category not in labels:
                    labels.append(p.category)
        aligned = {}
        for name, points in normalized.items():
            lookup: dict[str, float] = {}
            for p in points:
                lookup.setdefault(p.category, p.value)
            aligned[name] = [lookup.get(label, 0.0) for label in labels]
        return labels, aligned

    def assign_colors(self, count: int, palette: Optional[Sequence[str]] = None) -> list[str]:
        colors = tuple(palette) if palette else self.palette
        return [colors[i % len(colors)] for i in range(count)]

    @staticmethod
    def color_scheme(name: str = "default") -> tuple[str, ...]:
        return COLOR_SCHEMES.get(name, DEFAULT_COLORS)

    # =========================================================================
    # CHART BUILDERS
    # =========================================================================

    def _category_chart(
        self,
        points: list[CategoryDataPoint],
        label: str,
        chart_type: ChartType,
        colors: Optional[Sequence[str]],
        options: Optional[dict[str, Any]],
    ) -> ChartData:
        if not points:
            return ChartData()
        palette = self.assign_colors(len(points), colors)
        dataset = ChartDataset(
            label=label,
            data=[p.value for p in points],
            chart_type=chart_type,
            background_color=palette,
            border_color=palette,
        )
        return ChartData(
            labels=[p.category for p in points],
            datasets=[dataset],
            options={**chart_type.default_options(), **(options or {})},
        )

    def pie_chart(self, data, label: str = "Categories", colors=None, options=None) -> ChartData:
        return self._category_chart(self.sort_and_filter(data), label, ChartType.PIE, colors, options)

    def doughnut_chart(self, data, label: str = "Categories", colors=None, options=None) -> ChartData:
        return self._category_chart(self.sort_and_filter(data), label, ChartType.DOUGHNUT, colors, options)

    def bar_chart(self, data, label: str = "Categories", colors=None, options=None) -> ChartData:
        return self._category_chart(self.sort_and_filter(data), label, ChartType.BAR, colors, options)

    def top_n_chart(
        self,
        data,
        n: int = 10,
        label: str = "Top categories",
        chart_type: ChartType = ChartType.BAR,
        colors=None,
        include_others: bool = True,
        options=None,
    ) -> ChartData:
        return self._category_chart(self.top_n(data, n, include_others), label, chart_type, colors, options)

    def percentage_chart(
        self,
        data,
        label: str = "Distribution",
        chart_type: ChartType = ChartType.PIE,
        colors=None,
        options=None,
    ) -> ChartData:
        points = [
            CategoryDataPoint(p.category, p.percentage, p.color, p.percentage)
            for p in self.to_percentages(data)
        ]
        return self._category_chart(points, label, chart_type, colors, options)

    def comparison_chart(self, series: Mapping[str, Iterable[Any]], options=None) -> ChartData:
        if not series:
            return ChartData()
        labels, aligned = self.align_series(series)
        colors = self.assign_colors(len(aligned))
        datasets = [
            ChartDataset(
                label=name,
                data=values,
                chart_type=ChartType.BAR,
                background_color=color,
                border_color=color,
            )
            for (name, values), color in zip(aligned.items(), colors)
        ]
        return ChartData(labels, datasets, {**ChartType.BAR.default_options(), **(options or {})})

    def stacked_bar_chart(self, series: Mapping[str, Iterable[Any]], options=None) -> ChartData:
        chart = self.comparison_chart(series, options)
        scales = dict(chart.options.get("scales") or {})
        scales["x"] = {**scales.get("x", {}), "stacked": True}
        scales["y"] = {**scales.get("y", {}), "stacked": True}
        return chart.with_options({"scales": scales})
