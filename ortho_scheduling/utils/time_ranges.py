"""
Half-open time range arithmetic.

Ranges are [start, end) in minutes since midnight. Touching ranges
(one ends exactly where the next starts) do not overlap.
"""

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List

from .calendar_utils import format_time, parse_time


def overlaps(a: Any, b: Any, c: Any, d: Any) -> bool:
    """Check if [a, b) and [c, d) overlap. Works for any ordered values."""
    return a < d and c < b


@dataclass(frozen=True, order=True)
class TimeRange:
    """A half-open [start, end) range of minutes within one day."""
    start: int
    end: int

    def __post_init__(self):
        if self.end <= self.start:
            raise ValueError(
                f"End time must be after start time ({format_time(self.start)}"
                f"-{format_time(self.end)})"
            )

    @classmethod
    def from_strings(cls, start_time: str, end_time: str) -> "TimeRange":
        return cls(parse_time(start_time), parse_time(end_time))

    @property
    def duration(self) -> int:
        return self.end - self.start

    @property
    def start_time(self) -> str:
        return format_time(self.start)

    @property
    def end_time(self) -> str:
        return format_time(self.end)

    def overlaps(self, other: "TimeRange") -> bool:
        return overlaps(self.start, self.end, other.start, other.end)

    def contains(self, other: "TimeRange") -> bool:
        return self.start <= other.start and other.end <= self.end

    def contains_minute(self, minute: int) -> bool:
        return self.start <= minute < self.end

    def to_dict(self) -> Dict[str, Any]:
        return {
            "start_time": self.start_time,
            "end_time": self.end_time,
            "duration_minutes": self.duration,
        }

    def __str__(self) -> str:
        return f"{self.start_time}-{self.end_time}"


def merge_ranges(ranges: Iterable[TimeRange]) -> List[TimeRange]:
    """Merge overlapping or touching ranges into a sorted disjoint list."""
    merged: List[TimeRange] = []
    for current in sorted(ranges):
        if merged and current.start <= merged[-1].end:
            last = merged[-1]
            merged[-1] = TimeRange(last.start, max(last.end, current.end))
        else:
            merged.append(current)
    return merged


def subtract_ranges(base: Iterable[TimeRange], cuts: Iterable[TimeRange]) -> List[TimeRange]:
    """
    Remove every cut from the base ranges.

    Returns the maximal contiguous remainders, sorted by start time.
    """
    remaining = merge_ranges(base)
    for cut in merge_ranges(cuts):
        next_remaining: List[TimeRange] = []
        for piece in remaining:
            if not piece.overlaps(cut):
                next_remaining.append(piece)
                continue
            if piece.start < cut.start:
                next_remaining.append(TimeRange(piece.start, cut.start))
            if cut.end < piece.end:
                next_remaining.append(TimeRange(cut.end, piece.end))
        remaining = next_remaining
    return remaining


def clip_range(value: TimeRange, bounds: TimeRange):
    """Intersection of two ranges, or None when they do not overlap."""
    if not value.overlaps(bounds):
        return None
    return TimeRange(max(value.start, bounds.start), min(value.end, bounds.end))
