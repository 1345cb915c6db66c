"""
Utility modules for the scheduling service.
"""
from ortho_scheduling.utils.calendar_utils import (
    add_interval,
    day_of_week,
    format_time,
    parse_time,
    resolve_nth_weekday_of_month,
)
from ortho_scheduling.utils.time_ranges import (
    TimeRange,
    merge_ranges,
    overlaps,
    subtract_ranges,
)

__all__ = [
    "add_interval",
    "day_of_week",
    "format_time",
    "parse_time",
    "resolve_nth_weekday_of_month",
    "TimeRange",
    "merge_ranges",
    "overlaps",
    "subtract_ranges",
]
