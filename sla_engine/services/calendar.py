"""
Business Calendar Resolver

Converts wall-clock intervals into business minutes and projects business
minute budgets forward into due instants.

Day and window boundaries are resolved in the calendar's timezone; all
durations are measured between UTC instants so DST shifts never add or
remove minutes.
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Dict, FrozenSet, Iterable, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sla_engine.core.clock import ensure_utc
from sla_engine.core.exceptions import ConfigurationError


# Upper bound on days walked by a projection (ten years)
MAX_PROJECTION_DAYS = 3660

SECONDS_PER_MINUTE = 60


def _parse_clock(value: Any, field_name: str) -> time:
    if isinstance(value, time):
        return value
    try:
        hours, minutes = str(value).split(":")
        return time(int(hours), int(minutes))
    except (TypeError, ValueError):
        raise ConfigurationError(
            f"Invalid {field_name} time '{value}', expected HH:MM",
            {"field": field_name, "value": value}
        )


def _normalise_workdays(workdays: Iterable[Any]) -> FrozenSet[int]:
    days = set()
    for day in workdays:
        try:
            day = int(day)
        except (TypeError, ValueError):
            raise ConfigurationError(f"Invalid workday '{day}'", {"field": "workdays"})
        if day == 0:
            day = 7  # Sunday written as 0
        if day < 1 or day > 7:
            raise ConfigurationError(
                f"Workday {day} out of range, expected ISO weekday 1-7",
                {"field": "workdays"}
            )
        days.add(day)
    return frozenset(days)


@dataclass(frozen=True)
class BusinessCalendar:
    """Daily working window, timezone and set of ISO workdays (1=Mon .. 7=Sun)."""

    start: time
    end: time
    timezone: str
    workdays: FrozenSet[int]

    def __post_init__(self):
        if not self.workdays:
            raise ConfigurationError("Business calendar needs at least one workday", {"field": "workdays"})
        if self.end <= self.start:
            raise ConfigurationError(
                f"Business hours end {self.end:%H:%M} must be after start {self.start:%H:%M}",
                {"field": "end"}
            )
        try:
            ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError):
            raise ConfigurationError(f"Unknown timezone '{self.timezone}'", {"field": "timezone"})

    @classmethod
    def from_config(cls, config: Dict[str, Any], default_timezone: str = "UTC") -> "BusinessCalendar":
        """Build a calendar from the JSON shape stored on a policy."""
        if not isinstance(config, dict):
            raise ConfigurationError("Business hours must be an object")
        return cls(
            start=_parse_clock(config.get("start", "09:00"), "start"),
            end=_parse_clock(config.get("end", "18:00"), "end"),
            timezone=config.get("timezone") or default_timezone,
            workdays=_normalise_workdays(config.get("workdays", [1, 2, 3, 4, 5])),
        )

    def to_config(self) -> Dict[str, Any]:
        return {
            "start": self.start.strftime("%H:%M"),
            "end": self.end.strftime("%H:%M"),
            "timezone": self.timezone,
            "workdays": sorted(self.workdays),
        }

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    @property
    def window_minutes(self) -> float:
        """Nominal length of one working day in minutes."""
        delta = datetime.combine(date.min, self.end) - datetime.combine(date.min, self.start)
        return delta.total_seconds() / SECONDS_PER_MINUTE

    def window_for(self, day: date) -> Optional[Tuple[datetime, datetime]]:
        """UTC bounds of the working window on a local calendar day, None on non-workdays."""
        if day.isoweekday() not in self.workdays:
            return None
        tz = self.tzinfo
        opens = datetime.combine(day, self.start, tzinfo=tz).astimezone(timezone.utc)
        closes = datetime.combine(day, self.end, tzinfo=tz).astimezone(timezone.utc)
        return opens, closes

    def local_date(self, at: datetime) -> date:
        return ensure_utc(at).astimezone(self.tzinfo).date()


def business_minutes_between(
    start: datetime,
    end: datetime,
    calendar: BusinessCalendar,
    business_hours_only: bool = True,
) -> float:
    """
    Minutes elapsed between two instants, counting only business windows.

    Returns 0 when end is not after start.
    """
    start = ensure_utc(start)
    end = ensure_utc(end)
    if end <= start:
        return 0.0

    if not business_hours_only:
        return (end - start).total_seconds() / SECONDS_PER_MINUTE

    total_seconds = 0.0
    day = calendar.local_date(start)
    last_day = calendar.local_date(end)

    while day <= last_day:
        window = calendar.window_for(day)
        if window:
            lo = max(window[0], start)
            hi = min(window[1], end)
            if hi > lo:
                total_seconds += (hi - lo).total_seconds()
        day += timedelta(days=1)

    return total_seconds / SECONDS_PER_MINUTE


def project_forward(
    start: datetime,
    budget_minutes: float,
    calendar: BusinessCalendar,
    business_hours_only: bool = True,
) -> datetime:
    """
    Instant at which a budget of business minutes starting at `start` runs out.

    A zero or negative budget is due immediately at `start`. A start outside
    business hours begins consuming at the next window opening.
    """
    start = ensure_utc(start)
    if budget_minutes <= 0:
        return start

    if not business_hours_only:
        return start + timedelta(minutes=budget_minutes)

    remaining = budget_minutes * SECONDS_PER_MINUTE
    day = calendar.local_date(start)

    for _ in range(MAX_PROJECTION_DAYS):
        window = calendar.window_for(day)
        if window:
            opens, closes = window
            begin = max(opens, start)
            if begin < closes:
                available = (closes - begin).total_seconds()
                if remaining <= available:
                    return begin + timedelta(seconds=remaining)
                remaining -= available
        day += timedelta(days=1)

    raise ConfigurationError(
        f"Budget of {budget_minutes} minutes cannot be projected within {MAX_PROJECTION_DAYS} days",
        {"budget_minutes": budget_minutes}
    )


def is_within_business_hours(
    at: datetime,
    calendar: BusinessCalendar,
    business_hours_only: bool = True,
) -> bool:
    """Whether the clock is running at `at` under this calendar."""
    if not business_hours_only:
        return True
    at = ensure_utc(at)
    window = calendar.window_for(calendar.local_date(at))
    if not window:
        return False
    return window[0] <= at < window[1]


def next_window_start(at: datetime, calendar: BusinessCalendar) -> datetime:
    """`at` itself if inside a window, otherwise the next window opening."""
    at = ensure_utc(at)
    day = calendar.local_date(at)
    for _ in range(MAX_PROJECTION_DAYS):
        window = calendar.window_for(day)
        if window and at < window[1]:
            return max(window[0], at)
        day += timedelta(days=1)
    raise ConfigurationError("No business window found", {"calendar": calendar.to_config()})


def format_duration(minutes: float) -> str:
    """Human-readable duration, e.g. '45m', '2h 30m', '1d 4h', '-15m'."""
    minutes = int(minutes)
    if minutes < 0:
        return f"-{format_duration(abs(minutes))}"
    if minutes < 60:
        return f"{minutes}m"
    if minutes < 1440:
        hours, mins = divmod(minutes, 60)
        return f"{hours}h {mins}m" if mins else f"{hours}h"
    days, rest = divmod(minutes, 1440)
    hours = rest // 60
    return f"{days}d {hours}h" if hours else f"{days}d"
