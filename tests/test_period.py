"""Tests for the Period value object: factories, validation and labels."""

from datetime import date, datetime, timedelta, timezone

import pytest

from stats_snapshots.exceptions import InvalidPeriodError, ValidationError
from stats_snapshots.models import Period, PeriodType

from tests.conftest import NOW


class TestFactories:
    """Calendar-aligned constructors."""

    def test_daily_covers_one_calendar_day(self) -> None:
        period = Period.daily(date(2024, 1, 9))

        assert period.granularity is PeriodType.DAILY
        assert period.start_time == datetime(2024, 1, 9, tzinfo=timezone.utc)
        assert period.end_time == datetime(2024, 1, 10, tzinfo=timezone.utc)
        assert period.label() == "2024-01-09"
        assert str(period) == "daily: 2024-01-09"

    def test_weekly_starts_on_monday(self) -> None:
        period = Period.weekly(date(2024, 1, 10))

        assert period.start_date == date(2024, 1, 8)
        assert period.end_date == date(2024, 1, 14)
        assert period.label() == "2024-01-08 ~ 2024-01-14"
        assert len(period.days()) == 7

    def test_monthly_handles_leap_february(self) -> None:
        period = Period.monthly(date(2024, 2, 17))

        assert period.start_date == date(2024, 2, 1)
        assert period.end_date == date(2024, 2, 29)
        assert period.duration_days == 29
        assert period.label() == "2024-02"

    def test_monthly_december_rolls_into_next_year(self) -> None:
        period = Period.monthly(date(2023, 12, 5))

        assert period.end_time == datetime(2024, 1, 1, tzinfo=timezone.utc)

    def test_for_type_dispatches_on_granularity(self) -> None:
        assert Period.for_type("weekly", NOW) == Period.weekly(NOW)
        assert Period.for_type(PeriodType.MONTHLY, NOW) == Period.monthly(NOW)

    @pytest.mark.parametrize(
        ("granularity", "expected_start", "expected_label"),
        [
            ("daily", date(2024, 1, 9), "2024-01-09"),
            ("weekly", date(2024, 1, 1), "2024-01-01 ~ 2024-01-07"),
            ("monthly", date(2023, 12, 1), "2023-12"),
        ],
    )
    def test_previous_is_last_complete_window(self, granularity, expected_start, expected_label) -> None:
        period = Period.previous(granularity, NOW)

        assert period.start_date == expected_start
        assert period.label() == expected_label
        assert period.end_time <= NOW

    def test_local_midnights_in_zone(self) -> None:
        period = Period.daily(date(2024, 1, 9), "America/New_York")

        assert period.start_time.utcoffset() == timedelta(hours=-5)
        assert period.start_time.astimezone(timezone.utc) == datetime(2024, 1, 9, 5, tzinfo=timezone.utc)

    def test_dst_day_is_23_hours(self) -> None:
        period = Period.daily(date(2024, 3, 10), "America/New_York")

        assert period.duration_seconds == 23 * 3600
        assert period.duration_days == 1


class TestValidation:
    """Construction rejects inconsistent windows."""

    def test_start_must_precede_end(self) -> None:
        with pytest.raises(InvalidPeriodError):
            Period(
                granularity=PeriodType.DAILY,
                start_time=datetime(2024, 1, 2, tzinfo=timezone.utc),
                end_time=datetime(2024, 1, 1, tzinfo=timezone.utc),
            )

    def test_duration_must_match_granularity(self) -> None:
        with pytest.raises(InvalidPeriodError, match="daily"):
            Period(
                granularity=PeriodType.DAILY,
                start_time=datetime(2024, 1, 1, tzinfo=timezone.utc),
                end_time=datetime(2024, 1, 3, tzinfo=timezone.utc),
            )

    def test_unknown_timezone_rejected(self) -> None:
        with pytest.raises(InvalidPeriodError, match="timezone"):
            Period(
                granularity=PeriodType.DAILY,
                start_time=datetime(2024, 1, 1, tzinfo=timezone.utc),
                end_time=datetime(2024, 1, 2, tzinfo=timezone.utc),
                timezone="Mars/Olympus_Mons",
            )

    def test_invalid_period_is_a_validation_error(self) -> None:
        assert issubclass(InvalidPeriodError, ValidationError)

    def test_naive_datetimes_are_utc(self) -> None:
        period = Period(
            granularity=PeriodType.DAILY,
            start_time=datetime(2024, 1, 1),
            end_time=datetime(2024, 1, 2),
        )

        assert period.start_time.tzinfo is not None
        assert period.start_time.utcoffset() == timedelta(0)


class TestQueries:
    """Membership, equality and serialization."""

    def test_contains_is_half_open(self) -> None:
        period = Period.daily(date(2024, 1, 9))

        assert period.contains(datetime(2024, 1, 9, tzinfo=timezone.utc))
        assert period.contains(datetime(2024, 1, 9, 23, 59, 59, tzinfo=timezone.utc))
        assert not period.contains(datetime(2024, 1, 10, tzinfo=timezone.utc))
        assert not period.contains(datetime(2024, 1, 8, 23, 59, tzinfo=timezone.utc))

    def test_dict_round_trip_keeps_identity(self) -> None:
        period = Period.weekly(date(2024, 1, 3), "Europe/Berlin")

        restored = Period.from_dict(period.to_dict())

        assert restored == period
        assert hash(restored) == hash(period)
        assert period.to_dict()["type"] == "weekly"

    def test_periods_are_hashable_keys(self) -> None:
        seen = {Period.daily(date(2024, 1, 9)): "a"}

        assert seen[Period.daily(datetime(2024, 1, 9, 18, tzinfo=timezone.utc))] == "a"
