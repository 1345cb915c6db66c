"""
Calendar Utilities

Pure date/time arithmetic for the scheduling core:
- Sunday-first weekday indexing (0=Sunday .. 6=Saturday)
- "Nth weekday of month" resolution
- Recurrence interval stepping with day-of-month clamping
- "HH:mm" <-> minutes-since-midnight conversion

All dates are calendar dates already localized to the clinic timezone.
"""

import calendar
import re
from datetime import date, datetime, timedelta
from typing import Iterator, Optional
from zoneinfo import ZoneInfo

from dateutil.relativedelta import relativedelta

from ..constants import RecurrencePattern
from ..exceptions import InvalidDateSpecError

TIME_PATTERN = re.compile(r"^(?:[01]\d|2[0-3]):[0-5]\d$|^24:00$")

MINUTES_PER_DAY = 24 * 60


def day_of_week(d: date) -> int:
    """Sunday-first weekday index of a date (0=Sunday)."""
    return (d.weekday() + 1) % 7


def to_python_weekday(dow: int) -> int:
    """Convert a Sunday-first index to Python's Monday-first weekday()."""
    return (dow - 1) % 7


def parse_time(value: str) -> int:
    """
    Parse an "HH:mm" string into minutes since midnight ("24:00" is 1440).

    Raises:
        ValueError: If the string is not a valid 24-hour time
    """
    match = TIME_PATTERN.match(value or "")
    if not match:
        raise ValueError(f"Must be in HH:mm format: {value!r}")
    hours, minutes = value.split(":")
    return int(hours) * 60 + int(minutes)


def format_time(minutes: int) -> str:
    """Format minutes since midnight as "HH:mm" (24:00 for end of day)."""
    hours, mins = divmod(minutes, 60)
    return f"{hours:02d}:{mins:02d}"


def days_in_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def clamp_day_of_month(year: int, month: int, day: int) -> date:
    """
    Date for `day` in the given month, clamped to the month's last day.

    Day 31 in February gives Feb 28 (or 29 in a leap year).
    """
    return date(year, month, min(day, days_in_month(year, month)))


def resolve_nth_weekday_of_month(year: int, month: int, weekday: int, n: int) -> date:
    """
    Resolve the n-th occurrence of a weekday within a month.

    Args:
        year: Calendar year
        month: Calendar month (1-12)
        weekday: Sunday-first weekday index (0=Sunday)
        n: 1-based occurrence; negative counts from the end (-1 = last)

    Returns:
        The resolved date

    Raises:
        InvalidDateSpecError: If n is 0 or the month has fewer than |n|
            occurrences of that weekday (e.g. a 5th Monday)

    Example:
        >>> resolve_nth_weekday_of_month(2025, 1, 5, -1)  # last Friday
        datetime.date(2025, 1, 31)
    """
    if n == 0:
        raise InvalidDateSpecError("Week of month cannot be 0")
    if not 0 <= weekday <= 6:
        raise InvalidDateSpecError(f"Weekday must be 0-6, got {weekday}")

    target = to_python_weekday(weekday)
    last_day = days_in_month(year, month)

    if n > 0:
        first = date(year, month, 1)
        offset = (target - first.weekday()) % 7
        day = 1 + offset + (n - 1) * 7
    else:
        last = date(year, month, last_day)
        offset = (last.weekday() - target) % 7
        day = last_day - offset + (n + 1) * 7

    if day < 1 or day > last_day:
        raise InvalidDateSpecError(
            f"{calendar.month_name[month]} {year} has no occurrence {n} "
            f"of weekday {weekday}"
        )
    return date(year, month, day)


def effective_week_step(pattern: RecurrencePattern, interval: int) -> int:
    """
    Number of weeks between active weeks of a weekly-style pattern.

    BIWEEKLY means every second week unless an explicit interval above 1
    overrides it.
    """
    if pattern == RecurrencePattern.BIWEEKLY and interval == 1:
        return 2
    return interval


def add_interval(
    d: date,
    pattern: RecurrencePattern,
    interval: int = 1,
    day_of_month: Optional[int] = None,
) -> date:
    """
    Step a date forward by one recurrence unit.

    Args:
        d: Date to step from
        pattern: DAILY, WEEKLY, BIWEEKLY or MONTHLY
        interval: Step multiplier
        day_of_month: Monthly anchor day; defaults to the day of `d`

    Returns:
        The next date. Monthly steps whose anchor day does not exist in the
        target month are clamped to that month's last day.

    Raises:
        ValueError: For CUSTOM patterns, which have no step
    """
    if interval < 1:
        raise ValueError("Interval must be positive")

    if pattern == RecurrencePattern.DAILY:
        return d + timedelta(days=interval)
    if pattern in (RecurrencePattern.WEEKLY, RecurrencePattern.BIWEEKLY):
        return d + timedelta(weeks=effective_week_step(pattern, interval))
    if pattern == RecurrencePattern.MONTHLY:
        # relativedelta clamps an absolute day to the target month's length
        return d + relativedelta(months=interval, day=day_of_month or d.day)
    raise ValueError(f"Pattern {pattern} has no fixed interval")


def add_months(d: date, months: int) -> date:
    """First day of the month `months` after the month containing `d`."""
    return d + relativedelta(months=months, day=1)


def iter_dates(start: date, end: date) -> Iterator[date]:
    """Yield every date in the inclusive range."""
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


def today_in_timezone(timezone_str: str) -> date:
    """Current calendar date in a clinic timezone."""
    return datetime.now(ZoneInfo(timezone_str)).date()


def day_bounds(d: date) -> tuple:
    """Naive datetimes for the start of `d` and the start of the next day."""
    start = datetime.combine(d, datetime.min.time())
    return start, start + timedelta(days=1)
