"""
Tests for the Business Calendar Resolver

Tests cover:
- Business minutes between two instants
- Forward projection of budgets across nights, weekends and DST
- Window membership and next window lookup
- Calendar configuration validation
- Duration formatting
"""
import pytest
from datetime import datetime, timezone

from sla_engine.core.exceptions import ConfigurationError
from sla_engine.services.calendar import (
    BusinessCalendar,
    business_minutes_between,
    format_duration,
    is_within_business_hours,
    next_window_start,
    project_forward,
)


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


# Friday 2026-10-16, Saturday 17, Sunday 18, Monday 19
FRIDAY = (2026, 10, 16)
SATURDAY = (2026, 10, 17)
MONDAY = (2026, 10, 19)


@pytest.fixture
def office() -> BusinessCalendar:
    """09:00-18:00 UTC, Monday to Friday."""
    return BusinessCalendar.from_config({})


class TestBusinessMinutesBetween:
    """Tests for counting business minutes."""

    def test_inside_one_window(self, office):
        assert business_minutes_between(utc(*MONDAY, 10, 0), utc(*MONDAY, 11, 30), office) == 90

    def test_skips_nights_and_weekends(self, office):
        # 60 minutes Friday evening plus 60 minutes Monday morning
        assert business_minutes_between(utc(*FRIDAY, 17, 0), utc(*MONDAY, 10, 0), office) == 120

    def test_weekend_only_interval_is_zero(self, office):
        assert business_minutes_between(utc(*SATURDAY, 10, 0), utc(2026, 10, 18, 10, 0), office) == 0

    def test_end_before_start_is_zero(self, office):
        assert business_minutes_between(utc(*MONDAY, 12, 0), utc(*MONDAY, 10, 0), office) == 0

    def test_wall_clock_when_business_hours_disabled(self, office):
        total = business_minutes_between(
            utc(*FRIDAY, 17, 0), utc(*MONDAY, 10, 0), office, business_hours_only=False
        )
        assert total == 65 * 60

    def test_counts_in_calendar_timezone(self):
        seoul = BusinessCalendar.from_config({"timezone": "Asia/Seoul"})
        # 09:00-10:00 Seoul time is 00:00-01:00 UTC
        assert business_minutes_between(utc(*MONDAY, 0, 0), utc(*MONDAY, 1, 0), seoul) == 60
        assert business_minutes_between(utc(*MONDAY, 9, 0), utc(*MONDAY, 10, 0), seoul) == 0


class TestProjectForward:
    """Tests for projecting a budget into a due instant."""

    def test_friday_evening_rolls_to_monday(self, office):
        due = project_forward(utc(*FRIDAY, 17, 30), 60, office)
        assert due == utc(*MONDAY, 9, 30)

    def test_start_before_opening_waits_for_window(self, office):
        assert project_forward(utc(*MONDAY, 7, 0), 30, office) == utc(*MONDAY, 9, 30)

    def test_start_on_weekend_waits_for_monday(self, office):
        assert project_forward(utc(*SATURDAY, 12, 0), 90, office) == utc(*MONDAY, 10, 30)

    def test_budget_filling_the_window_ends_at_close(self, office):
        assert project_forward(utc(*MONDAY, 9, 0), 540, office) == utc(*MONDAY, 18, 0)

    def test_multi_day_budget(self, office):
        # Two full days plus one hour
        assert project_forward(utc(*MONDAY, 9, 0), 2 * 540 + 60, office) == utc(2026, 10, 21, 10, 0)

    @pytest.mark.parametrize("budget", [0, -30])
    def test_zero_or_negative_budget_is_due_at_start(self, office, budget):
        start = utc(*SATURDAY, 3, 0)
        assert project_forward(start, budget, office) == start

    def test_wall_clock_when_business_hours_disabled(self, office):
        due = project_forward(utc(*FRIDAY, 17, 30), 60, office, business_hours_only=False)
        assert due == utc(*FRIDAY, 18, 30)

    def test_dst_change_over_weekend(self):
        berlin = BusinessCalendar.from_config({"timezone": "Europe/Berlin"})
        # Friday 17:30 CEST is 15:30 UTC; Monday 09:30 CET is 08:30 UTC
        due = project_forward(utc(2026, 10, 23, 15, 30), 60, berlin)
        assert due == utc(2026, 10, 26, 8, 30)

    def test_projection_inverts_business_minutes(self, office):
        start = utc(*FRIDAY, 11, 17)
        due = project_forward(start, 1234, office)
        assert business_minutes_between(start, due, office) == pytest.approx(1234)

    def test_sunday_written_as_zero(self):
        sundays = BusinessCalendar.from_config({"workdays": [0]})
        assert sundays.workdays == frozenset({7})
        assert project_forward(utc(*SATURDAY, 10, 0), 30, sundays) == utc(2026, 10, 18, 9, 30)


class TestWindowLookup:
    """Tests for window membership and the next window opening."""

    def test_within_business_hours(self, office):
        assert is_within_business_hours(utc(*MONDAY, 10, 0), office) is True
        assert is_within_business_hours(utc(*MONDAY, 18, 0), office) is False
        assert is_within_business_hours(utc(*SATURDAY, 10, 0), office) is False

    def test_always_within_when_business_hours_disabled(self, office):
        assert is_within_business_hours(utc(*SATURDAY, 3, 0), office, business_hours_only=False) is True

    def test_next_window_start(self, office):
        assert next_window_start(utc(*MONDAY, 10, 0), office) == utc(*MONDAY, 10, 0)
        assert next_window_start(utc(*MONDAY, 7, 0), office) == utc(*MONDAY, 9, 0)
        assert next_window_start(utc(*FRIDAY, 18, 30), office) == utc(*MONDAY, 9, 0)


class TestCalendarConfig:
    """Tests for calendar validation."""

    def test_defaults(self, office):
        assert office.to_config() == {
            "start": "09:00",
            "end": "18:00",
            "timezone": "UTC",
            "workdays": [1, 2, 3, 4, 5],
        }
        assert office.window_minutes == 540

    def test_default_timezone_applies_when_missing(self):
        calendar = BusinessCalendar.from_config({"start": "08:00"}, default_timezone="Asia/Seoul")
        assert calendar.timezone == "Asia/Seoul"

    @pytest.mark.parametrize("config", [
        {"timezone": "Mars/Olympus_Mons"},
        {"start": "18:00", "end": "09:00"},
        {"start": "nine"},
        {"workdays": []},
        {"workdays": [8]},
        {"workdays": ["monday"]},
    ])
    def test_invalid_configuration_rejected(self, config):
        with pytest.raises(ConfigurationError):
            BusinessCalendar.from_config(config)

    def test_non_object_rejected(self):
        with pytest.raises(ConfigurationError):
            BusinessCalendar.from_config(["09:00", "18:00"])


class TestFormatDuration:
    """Tests for human-readable durations."""

    @pytest.mark.parametrize("value,expected", [
        (0, "0m"),
        (45, "45m"),
        (120, "2h"),
        (150, "2h 30m"),
        (1440, "1d"),
        (1680, "1d 4h"),
        (-15, "-15m"),
        (-150, "-2h 30m"),
    ])
    def test_format_duration(self, value, expected):
        assert format_duration(value) == expected
