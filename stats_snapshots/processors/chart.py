"""
Chart containers shared by the processors.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional, Union


class ChartType(str, Enum):
    LINE = "line"
    BAR = "bar"
    PIE = "pie"
    DOUGHNUT = "doughnut"

    def default_options(self) -> dict[str, Any]:
        if self in (ChartType.PIE, ChartType.DOUGHNUT):
            return {"responsive": True, "plugins": {"legend": {"position": "right"}}}
        return {
            "responsive": True,
            "plugins": {"legend": {"position": "top"}},
            "scales": {"y": {"beginAtZero": True}},
        }


Color = Union[str, list[str], None]


@dataclass
class ChartDataset:
    label: str
    data: list[float]
    chart_type: ChartType = ChartType.LINE
    background_color: Color = None
    border_color: Color = None
    border_width: int = 1
    fill: bool = False

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "label": self.label,
            "data": list(self.data),
            "type": self.chart_type.value,
            "borderWidth": self.border_width,
            "fill": self.fill,
        }
        if self.background_color is not None:
            data["backgroundColor"] = self.background_color
        if self.border_color is not None:
            data["borderColor"] = self.border_color
        return data


@dataclass
class ChartData:
    labels: list[str] = field(default_factory=list)
    datasets: list[ChartDataset] = field(default_factory=list)
    options: dict[str, Any] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not self.labels or not self.datasets

    def with_options(self, options: dict[str, Any]) -> "ChartData":
        return ChartData(list(self.labels), list(self.datasets), {**self.options, **options})

    def with_datasets(self, extra: list[ChartDataset]) -> "ChartData":
        return ChartData(list(self.labels), [*self.datasets, *extra], dict(self.options))

    def to_dict(self) -> dict[str, Any]:
        return {
            "labels": list(self.labels),
            "datasets": [d.to_dict() for d in self.datasets],
            "options": self.options,
        }


@dataclass(frozen=True)
class CategoryDataPoint:
    category: str
    value: float
    color: Optional[str] = None
    percentage: Optional[float] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"category": self.category, "value": self.value}
        if self.color is not None:
            data["color"] = self.color
        if self.percentage is not None:
            data["percentage"] = self.percentage
        return data


@dataclass(frozen=True)
class TimeSeriesPoint:
    timestamp: datetime
    value: float

    def to_dict(self) -> dict[str, Any]:
        return {"timestamp": self.timestamp.isoformat(), "value": self.value}
