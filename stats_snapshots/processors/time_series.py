"""
Time-series chart processing.

Raw records from the sources are loosely shaped: the timestamp may be under
``timestamp``, ``date`` or ``period`` and the value under ``value`` or
``count``. Records without a timestamp are dropped; a missing or non-numeric
value counts as 0.
"""
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Iterable, Mapping, Optional

import structlog

from stats_snapshots.exceptions import UnsupportedGranularityError, ValidationError
from stats_snapshots.processors.chart import ChartData, ChartDataset, ChartType, TimeSeriesPoint
from stats_snapshots.processors.category import DEFAULT_COLORS

logger = structlog.get_logger(__name__)

GRANULARITIES = ("hour", "day", "week", "month", "year")
TIMESTAMP_KEYS = ("timestamp", "date", "period")
VALUE_KEYS = ("value", "count")
DEFAULT_RANGE_DAYS = 30
MAX_BUCKETS = 10_000


def _to_datetime(raw: Any) -> Optional[datetime]:
    if raw is None or raw == "":
        return None
    if isinstance(raw, datetime):
        moment = raw
    elif isinstance(raw, date):
        moment = datetime(raw.year, raw.month, raw.day)
    else:
        try:
            moment = datetime.fromisoformat(str(raw).strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def _to_float(raw: Any) -> float:
    try:
        return float(raw)
    except (TypeError, ValueError):
        return 0.0


def truncate(moment: datetime, granularity: str) -> datetime:
    """Start of the bucket containing ``moment``."""
    if granularity == "hour":
        return moment.replace(minute=0, second=0, microsecond=0)
    day = moment.replace(hour=0, minute=0, second=0, microsecond=0)
    if granularity == "day":
        return day
    if granularity == "week":
        return day - timedelta(days=day.weekday())
    if granularity == "month":
        return day.replace(day=1)
    return day.replace(month=1, day=1)


def next_bucket(start: datetime, granularity: str) -> datetime:
    if granularity == "hour":
        return start + timedelta(hours=1)
    if granularity == "day":
        return start + timedelta(days=1)
    if granularity == "week":
        return start + timedelta(days=7)
    if granularity == "month":
        if start.month == 12:
            return start.replace(year=start.year + 1, month=1)
        return start.replace(month=start.month + 1)
    return start.replace(year=start.year + 1)


def bucket_label(start: datetime, granularity: str) -> str:
    if granularity == "hour":
        return start.strftime("%Y-%m-%d %H:00")
    if granularity in ("day", "week"):
        return start.strftime("%Y-%m-%d")
    if granularity == "month":
        return start.strftime("%Y-%m")
    return start.strftime("%Y")


class TimeSeriesProcessor:
    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @staticmethod
    def validate_granularity(granularity: str) -> str:
        value = str(granularity).strip().lower()
        if value not in GRANULARITIES:
            raise UnsupportedGranularityError(str(granularity), GRANULARITIES)
        return value

    def normalize(self, raw: Iterable[Any]) -> list[TimeSeriesPoint]:
        """Turn raw records into points ordered by timestamp."""
        points = []
        dropped = 0
        for record in raw:
            if isinstance(record, TimeSeriesPoint):
                points.append(record)
                continue
            if not isinstance(record, Mapping):
                dropped += 1
                continue
            moment = None
            for key in TIMESTAMP_KEYS:
                moment = _to_datetime(record.get(key))
                if moment is not None:
                    break
            if moment is None:
                dropped += 1
                continue
            value = next((record[k] for k in VALUE_KEYS if k in record), 0)
            points.append(TimeSeriesPoint(moment, _to_float(value)))
        if dropped:
            logger.debug("Dropped time series records without timestamp", dropped=dropped)
        return sorted(points, key=lambda p: p.timestamp)

    def infer_range(
        self,
        points: list[TimeSeriesPoint],
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> tuple[datetime, datetime]:
        """Explicit bounds win; otherwise min/max timestamp, or the trailing 30 days when empty."""
        if points:
            inferred_start = min(p.timestamp for p in points)
            inferred_end = max(p.timestamp for p in points)
        else:
            inferred_end = self._clock()
            inferred_start = inferred_end - timedelta(days=DEFAULT_RANGE_DAYS)
        start = _to_datetime(start) or inferred_start
        end = _to_datetime(end) or inferred_end
        if start > end:
            raise ValidationError(f"Range start {start.isoformat()} is after end {end.isoformat()}")
        return start, end

    def bucket(
        self,
        points: list[TimeSeriesPoint],
        granularity: str,
        start: datetime,
        end: datetime,
    ) -> dict[datetime, float]:
        """Sum point values per bucket; every bucket in ``[start, end]`` is present."""
        granularity = self.validate_granularity(granularity)
        buckets: dict[datetime, float] = {}
        cursor = truncate(start, granularity)
        while cursor <= end:
            buckets[cursor] = 0.0
            if len(buckets) > MAX_BUCKETS:
                raise ValidationError(
                    f"Range too large for '{granularity}' granularity (more than {MAX_BUCKETS} buckets)"
                )
            cursor = next_bucket(cursor, granularity)
        for point in points:
            if start <= point.timestamp <= end:
                key = truncate(point.timestamp, granularity)
                buckets[key] = buckets.get(key, 0.0) + point.value
        return buckets

    def process(
        self,
        raw: Iterable[Any],
        label: str = "Value",
        granularity: str = "day",
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        chart_type: ChartType = ChartType.LINE,
    ) -> ChartData:
        granularity = self.validate_granularity(granularity)
        points = self.normalize(raw)
        range_start, range_end = self.infer_range(points, start, end)
        buckets = self.bucket(points, granularity, range_start, range_end)
        dataset = ChartDataset(
            label=label,
            data=list(buckets.values()),
            chart_type=chart_type,
            background_color=DEFAULT_COLORS[0],
            border_color=DEFAULT_COLORS[0],
            border_width=2,
        )
        return ChartData(
            labels=[bucket_label(b, granularity) for b in buckets],
            datasets=[dataset],
            options={**chart_type.default_options(), "granularity": granularity},
        )

    def process_multi_series(
        self,
        series: Mapping[str, Iterable[Any]],
        granularity: str = "day",
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> ChartData:
        """One dataset per named series, aligned on a shared bucket axis."""
        granularity = self.validate_granularity(granularity)
        normalized = {name: self.normalize(values) for name, values in series.items()}
        all_points = [p for points in normalized.values() for p in points]
        range_start, range_end = self.infer_range(all_points, start, end)

        labels: list[str] = []
        datasets = []
        for index, (name, points) in enumerate(normalized.items()):
            buckets = self.bucket(points, granularity, range_start, range_end)
            if not labels:
                labels = [bucket_label(b, granularity) for b in buckets]
            color = DEFAULT_COLORS[index % len(DEFAULT_COLORS)]
            datasets.append(ChartDataset(
                label=name,
                data=list(buckets.values()),
                chart_type=ChartType.LINE,
                background_color=color,
                border_color=color,
                border_width=2,
            ))
        return ChartData(labels, datasets, {**ChartType.LINE.default_options(), "granularity": granularity})
