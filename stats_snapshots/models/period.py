"""
Statistics period value object.

A period is a half-open window ``[start_time, end_time)`` tagged with a
granularity. Boundaries are local midnights in ``timezone``.
"""
from datetime import date, datetime, timedelta, timezone as dt_timezone
from enum import Enum
from typing import Any, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, field_validator, model_validator

from stats_snapshots.exceptions import InvalidPeriodError


class PeriodType(str, Enum):
    """Supported period granularities."""
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


Anchor = Union[date, datetime]

# Allowed window length per granularity, in hours. DST days are 23 or 25 hours.
_DURATION_BOUNDS = {
    PeriodType.DAILY: (23, 25),
    PeriodType.WEEKLY: (7 * 24 - 1, 7 * 24 + 1),
    PeriodType.MONTHLY: (28 * 24 - 1, 31 * 24 + 1),
}


def _local_date(anchor: Anchor, zone: ZoneInfo) -> date:
    if isinstance(anchor, datetime):
        if anchor.tzinfo is not None:
            return anchor.astimezone(zone).date()
        return anchor.date()
    return anchor


def _midnight(day: date, zone: ZoneInfo) -> datetime:
    return datetime(day.year, day.month, day.day, tzinfo=zone)


def _first_of_next_month(day: date) -> date:
    if day.month == 12:
        return date(day.year + 1, 1, 1)
    return date(day.year, day.month + 1, 1)


class Period(BaseModel):
    """Immutable time window for one snapshot computation."""

    model_config = ConfigDict(frozen=True)

    granularity: PeriodType
    start_time: datetime
    end_time: datetime
    timezone: str = "UTC"

    @field_validator("start_time", "end_time")
    @classmethod
    def ensure_aware(cls, v: datetime) -> datetime:
        """Naive datetimes are taken as UTC."""
        if v.tzinfo is None:
            return v.replace(tzinfo=dt_timezone.utc)
        return v

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise InvalidPeriodError(f"Unknown timezone: {v}") from e
        return v

    @model_validator(mode="after")
    def validate_window(self) -> "Period":
        if self.start_time >= self.end_time:
            raise InvalidPeriodError(
                f"Period start {self.start_time.isoformat()} must be before end {self.end_time.isoformat()}"
            )
        low, high = _DURATION_BOUNDS[self.granularity]
        hours = self.duration_seconds / 3600
        if not low <= hours <= high:
            raise InvalidPeriodError(
                f"A {self.granularity.value} period cannot span {hours:g} hours"
            )
        return self

    # =========================================================================
    # FACTORIES
    # =========================================================================

    @classmethod
    def daily(cls, anchor: Anchor, tz: str = "UTC") -> "Period":
        """The calendar day containing ``anchor``."""
        zone = ZoneInfo(tz)
        day = _local_date(anchor, zone)
        return cls(
            granularity=PeriodType.DAILY,
            start_time=_midnight(day, zone),
            end_time=_midnight(day + timedelta(days=1), zone),
            timezone=tz,
        )

    @classmethod
    def weekly(cls, anchor: Anchor, tz: str = "UTC") -> "Period":
        """The Monday-to-Sunday week containing ``anchor``."""
        zone = ZoneInfo(tz)
        day = _local_date(anchor, zone)
        monday = day - timedelta(days=day.weekday())
        return cls(
            granularity=PeriodType.WEEKLY,
            start_time=_midnight(monday, zone),
            end_time=_midnight(monday + timedelta(days=7), zone),
            timezone=tz,
        )

    @classmethod
    def monthly(cls, anchor: Anchor, tz: str = "UTC") -> "Period":
        """The calendar month containing ``anchor``."""
        zone = ZoneInfo(tz)
        first = _local_date(anchor, zone).replace(day=1)
        return cls(
            granularity=PeriodType.MONTHLY,
            start_time=_midnight(first, zone),
            end_time=_midnight(_first_of_next_month(first), zone),
            timezone=tz,
        )

    @classmethod
    def for_type(cls, granularity: Union[PeriodType, str], anchor: Anchor, tz: str = "UTC") -> "Period":
        granularity = PeriodType(granularity)
        if granularity is PeriodType.DAILY:
            return cls.daily(anchor, tz)
        if granularity is PeriodType.WEEKLY:
            return cls.weekly(anchor, tz)
        return cls.monthly(anchor, tz)

    @classmethod
    def previous(cls, granularity: Union[PeriodType, str], now: datetime, tz: str = "UTC") -> "Period":
        """
        The last complete window before ``now``.

        daily -> yesterday, weekly -> last Monday..Sunday,
        monthly -> the previous calendar month.
        """
        granularity = PeriodType(granularity)
        today = _local_date(now, ZoneInfo(tz))
        if granularity is PeriodType.DAILY:
            return cls.daily(today - timedelta(days=1), tz)
        if granularity is PeriodType.WEEKLY:
            return cls.weekly(today - timedelta(days=7), tz)
        return cls.monthly(today.replace(day=1) - timedelta(days=1), tz)

    # =========================================================================
    # QUERIES
    # =========================================================================

    @property
    def duration_seconds(self) -> float:
        # Same-zone subtraction ignores DST offsets; compare instants
        return self.end_time.timestamp() - self.start_time.timestamp()

    @property
    def duration_days(self) -> int:
        return max(1, round(self.duration_seconds / 86400))

    @property
    def start_date(self) -> date:
        return self.start_time.astimezone(ZoneInfo(self.timezone)).date()

    @property
    def end_date(self) -> date:
        """Last calendar day inside the window."""
        return (self.end_time.astimezone(ZoneInfo(self.timezone)) - timedelta(microseconds=1)).date()

    def contains(self, moment: datetime) -> bool:
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=dt_timezone.utc)
        return self.start_time <= moment < self.end_time

    def days(self) -> list[date]:
        """Calendar days covered by the window."""
        first, last = self.start_date, self.end_date
        return [first + timedelta(days=i) for i in range((last - first).days + 1)]

    def label(self) -> str:
        if self.granularity is PeriodType.DAILY:
            return self.start_date.isoformat()
        if self.granularity is PeriodType.WEEKLY:
            return f"{self.start_date.isoformat()} ~ {self.end_date.isoformat()}"
        return self.start_date.strftime("%Y-%m")

    def __str__(self) -> str:
        return f"{self.granularity.value}: {self.label()}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.granularity.value,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
            "timezone": self.timezone,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Period":
        return cls(
            granularity=data.get("type", data.get("granularity")),
            start_time=data["start_time"],
            end_time=data["end_time"],
            timezone=data.get("timezone", "UTC"),
        )
