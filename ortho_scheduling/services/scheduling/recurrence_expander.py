"""
Recurrence Expander.

Expands a RecurrenceSpec into concrete calendar dates. Daily and weekly
rules are delegated to dateutil's rrule; monthly rules are stepped by hand
because rrule skips months that lack the anchor day instead of clamping.

Expansion is a pure function of its inputs: identical arguments always give
the same strictly ascending, duplicate-free list.
"""

import logging
from datetime import date, datetime, time
from typing import Iterator, List, Optional, Tuple

from dateutil.rrule import DAILY, SU, WEEKLY, rrule

from ...constants import RecurrencePattern
from ...models.scheduling import RecurrenceSpec
from ...utils.calendar_utils import (
    add_interval,
    add_months,
    clamp_day_of_month,
    effective_week_step,
    resolve_nth_weekday_of_month,
    to_python_weekday,
)

logger = logging.getLogger(__name__)


def _rrule_dates(spec: RecurrenceSpec) -> Iterator[date]:
    """Daily and weekly-style rules."""
    options = {
        "dtstart": datetime.combine(spec.start_date, time()),
        "wkst": SU,
    }
    if spec.end_date is not None:
        options["until"] = datetime.combine(spec.end_date, time())
    if spec.max_occurrences is not None:
        options["count"] = spec.max_occurrences

    if spec.pattern == RecurrencePattern.DAILY:
        rule = rrule(DAILY, interval=spec.interval, **options)
    else:
        rule = rrule(
            WEEKLY,
            interval=effective_week_step(spec.pattern, spec.interval),
            byweekday=[to_python_weekday(dow) for dow in spec.days_of_week],
            **options,
        )

    for occurrence in rule:
        yield occurrence.date()


def _monthly_anchors(spec: RecurrenceSpec) -> Iterator[date]:
    """
    One anchor date per active month, starting with the start month.

    Ends quietly when the next step would leave the supported calendar
    (past date.max).
    """
    if spec.day_of_month is not None:
        cursor = clamp_day_of_month(spec.start_date.year, spec.start_date.month, spec.day_of_month)
        while True:
            yield cursor
            try:
                cursor = add_interval(cursor, RecurrencePattern.MONTHLY, spec.interval, spec.day_of_month)
            except (ValueError, OverflowError):
                return
    else:
        month = spec.start_date.replace(day=1)
        while True:
            yield resolve_nth_weekday_of_month(
                month.year, month.month, spec.anchor_weekday, spec.week_of_month,
            )
            try:
                month = add_months(month, spec.interval)
            except (ValueError, OverflowError):
                return


def _monthly_dates(spec: RecurrenceSpec) -> Iterator[date]:
    emitted = 0
    for anchor in _monthly_anchors(spec):
        if anchor < spec.start_date:
            # Anchor fell before the series started in its first month
            continue
        if spec.end_date is not None and anchor > spec.end_date:
            return
        yield anchor
        emitted += 1
        if spec.max_occurrences is not None and emitted >= spec.max_occurrences:
            return


def _custom_dates(spec: RecurrenceSpec) -> Iterator[date]:
    emitted = 0
    for candidate in spec.custom_dates:
        if candidate < spec.start_date:
            continue
        if spec.end_date is not None and candidate > spec.end_date:
            return
        yield candidate
        emitted += 1
        if spec.max_occurrences is not None and emitted >= spec.max_occurrences:
            return


def series_dates(spec: RecurrenceSpec) -> Iterator[date]:
    """
    Every date of the series, bounded only by its own end date or count.

    The iterator is finite because a valid rule always carries one of the two.
    """
    if spec.pattern == RecurrencePattern.MONTHLY:
        return _monthly_dates(spec)
    if spec.pattern == RecurrencePattern.CUSTOM:
        return _custom_dates(spec)
    return _rrule_dates(spec)


def expand_numbered(
    spec: RecurrenceSpec,
    window_start: Optional[date] = None,
    window_end: Optional[date] = None,
) -> List[Tuple[int, date]]:
    """
    Expand a rule inside a window, keeping each date's position in the series.

    Positions are 1-based and count from the series start, so max_occurrences
    bounds the whole series rather than each window.
    """
    results: List[Tuple[int, date]] = []
    for number, occurrence in enumerate(series_dates(spec), start=1):
        if window_end is not None and occurrence > window_end:
            break
        if window_start is not None and occurrence < window_start:
            continue
        results.append((number, occurrence))

    logger.debug(
        f"Expanded {spec.pattern.value} rule from {spec.start_date}: "
        f"{len(results)} date(s) in window {window_start}..{window_end}"
    )
    return results


def expand(
    spec: RecurrenceSpec,
    window_start: Optional[date] = None,
    window_end: Optional[date] = None,
) -> List[date]:
    """
    Expand a recurrence rule into the dates that fall inside a window.

    Args:
        spec: Validated recurrence rule
        window_start: First date of interest (inclusive); defaults to the series start
        window_end: Last date of interest (inclusive); defaults to unbounded

    Returns:
        Strictly ascending list of dates. Expansion stops as soon as the
        series end date, the series occurrence count or window_end is reached.

    Raises:
        InvalidDateSpecError: If a monthly week anchor cannot be resolved
    """
    return [occurrence for _, occurrence in expand_numbered(spec, window_start, window_end)]
