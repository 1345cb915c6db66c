"""
Conflict Detector.

Decides whether a proposed booking collides with what is already committed
and classifies the collision. Conflicts are returned as values, never raised;
callers decide whether a conflict is fatal.

Checks run in a fixed order and the first match wins:
1. PROVIDER_DOUBLE_BOOKED - overlapping appointment for the same provider
2. CHAIR_DOUBLE_BOOKED    - overlapping appointment in the same chair
3. OUTSIDE_WORKING_HOURS  - not inside the provider's working time
4. EXCEPTION_BLOCK        - overlaps an active/approved exception block
"""

import logging
import math
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from dateutil.rrule import rrulestr

from ...constants import (
    BLOCKING_EXCEPTION_STATUSES,
    NON_BLOCKING_APPOINTMENT_STATUSES,
    NON_WORKING_SHIFT_STATUSES,
    ConflictKind,
)
from ...models.scheduling import (
    BookedAppointment,
    CandidateBooking,
    ExistingCommitments,
    ProviderSchedule,
    ScheduleExceptionBlock,
    StaffShift,
)
from ...utils.calendar_utils import MINUTES_PER_DAY, day_bounds, day_of_week
from ...utils.time_ranges import TimeRange, merge_ranges, subtract_ranges

logger = logging.getLogger(__name__)

WorkingSource = Union[ProviderSchedule, List[StaffShift], None]


@dataclass
class Conflict:
    """A detected booking conflict."""
    kind: ConflictKind
    conflicting_entity: Optional[Any]
    message: str

    def to_dict(self) -> Dict[str, Any]:
        entity = self.conflicting_entity
        if isinstance(entity, list):
            entity_id = ",".join(getattr(item, "id", "") for item in entity)
        else:
            entity_id = getattr(entity, "id", None)
        return {
            "kind": self.kind.value,
            "message": self.message,
            "conflicting_entity_id": entity_id,
        }


# ============================================================================
# Working time
# ============================================================================

def schedule_for_date(
    provider_id: str,
    on: date,
    schedules: Iterable[ProviderSchedule],
) -> Optional[ProviderSchedule]:
    """
    The weekly schedule row in force for a provider on a date.

    When several versions cover the date, the most recently effective wins.
    """
    dow = day_of_week(on)
    candidates = [
        s for s in schedules
        if s.provider_id == provider_id and s.day_of_week == dow and s.is_effective_on(on)
    ]
    if not candidates:
        return None
    return max(candidates, key=lambda s: s.effective_from or date.min)


def working_ranges(
    provider_id: str,
    on: date,
    commitments: ExistingCommitments,
) -> Tuple[List[TimeRange], WorkingSource]:
    """
    Bookable working time for a provider on a date.

    Dated shifts replace the weekly schedule for their date. Weekly schedules
    lose their breaks and lunch window.

    Returns:
        (disjoint sorted ranges, the shifts or schedule they came from)
    """
    shifts = [
        s for s in commitments.shifts
        if s.provider_id == provider_id
        and s.shift_date == on
        and s.status not in NON_WORKING_SHIFT_STATUSES
    ]
    if shifts:
        return merge_ranges(s.time_range for s in shifts), shifts

    schedule = schedule_for_date(provider_id, on, commitments.schedules)
    if schedule is None or not schedule.is_working_day:
        return [], schedule
    return subtract_ranges([schedule.working_range], schedule.unavailable_ranges()), schedule


# ============================================================================
# Exception blocks
# ============================================================================

def _minutes_into_day(moment: datetime, day_start: datetime, round_up: bool) -> int:
    seconds = (moment - day_start).total_seconds()
    minutes = math.ceil(seconds / 60) if round_up else math.floor(seconds / 60)
    return max(0, min(MINUTES_PER_DAY, minutes))


def _clip_to_day(start: datetime, end: datetime, on: date) -> Optional[TimeRange]:
    day_start, day_end = day_bounds(on)
    if not (start < day_end and day_start < end):
        return None
    first = _minutes_into_day(max(start, day_start), day_start, round_up=False)
    last = _minutes_into_day(min(end, day_end), day_start, round_up=True)
    if last <= first:
        return None
    return TimeRange(first, last)


def exception_ranges(block: ScheduleExceptionBlock, on: date) -> List[TimeRange]:
    """
    Minutes of a date covered by an exception block.

    All-day blocks cover every date they touch. Recurring blocks are expanded
    from their RRULE; each instance lasts as long as the first one.
    """
    if block.all_day:
        first_day = block.start_datetime.date()
        last_day = (block.end_datetime - timedelta(microseconds=1)).date()
        if block.is_recurring and block.recurrence_rule:
            span = last_day - first_day
            rule = rrulestr(block.recurrence_rule, dtstart=block.start_datetime)
            window_start, _ = day_bounds(on - span)
            _, window_end = day_bounds(on)
            if rule.between(window_start, window_end - timedelta(microseconds=1), inc=True):
                return [TimeRange(0, MINUTES_PER_DAY)]
            return []
        if first_day <= on <= last_day:
            return [TimeRange(0, MINUTES_PER_DAY)]
        return []

    if not (block.is_recurring and block.recurrence_rule):
        clipped = _clip_to_day(block.start_datetime, block.end_datetime, on)
        return [clipped] if clipped else []

    duration = block.end_datetime - block.start_datetime
    rule = rrulestr(block.recurrence_rule, dtstart=block.start_datetime)
    day_start, day_end = day_bounds(on)
    ranges = []
    for instance in rule.between(day_start - duration, day_end, inc=True):
        clipped = _clip_to_day(instance, instance + duration, on)
        if clipped:
            ranges.append(clipped)
    return merge_ranges(ranges)


def blocking_exceptions(
    provider_id: str,
    on: date,
    blocks: Iterable[ScheduleExceptionBlock],
) -> List[Tuple[ScheduleExceptionBlock, List[TimeRange]]]:
    """Active/approved exception blocks for a provider that touch a date."""
    hits = []
    for block in blocks:
        if block.provider_id != provider_id or block.status not in BLOCKING_EXCEPTION_STATUSES:
            continue
        ranges = exception_ranges(block, on)
        if ranges:
            hits.append((block, ranges))
    return hits


# ============================================================================
# Appointments
# ============================================================================

def active_appointments(
    on: date,
    appointments: Iterable[BookedAppointment],
    exclude_appointment_id: Optional[str] = None,
) -> List[BookedAppointment]:
    """Appointments on a date that still hold their time."""
    return [
        a for a in appointments
        if a.appointment_date == on
        and a.status not in NON_BLOCKING_APPOINTMENT_STATUSES
        and a.id != exclude_appointment_id
    ]


def check_conflict(
    candidate: CandidateBooking,
    existing: ExistingCommitments,
) -> Optional[Conflict]:
    """
    Check a proposed booking against existing commitments.

    Args:
        candidate: Provider, optional chair, date and time range to book
        existing: Schedules, shifts, appointments and exception blocks

    Returns:
        None when the booking is free, otherwise the first Conflict found
    """
    wanted = candidate.time_range
    booked = active_appointments(
        candidate.date, existing.appointments, candidate.exclude_appointment_id,
    )

    for appointment in booked:
        if appointment.provider_id == candidate.provider_id and appointment.time_range.overlaps(wanted):
            return Conflict(
                kind=ConflictKind.PROVIDER_DOUBLE_BOOKED,
                conflicting_entity=appointment,
                message=(
                    f"Provider already booked {appointment.start_time}-{appointment.end_time} "
                    f"on {candidate.date.isoformat()}"
                ),
            )

    if candidate.chair_id:
        for appointment in booked:
            if appointment.chair_id == candidate.chair_id and appointment.time_range.overlaps(wanted):
                return Conflict(
                    kind=ConflictKind.CHAIR_DOUBLE_BOOKED,
                    conflicting_entity=appointment,
                    message=(
                        f"Chair {candidate.chair_id} already booked "
                        f"{appointment.start_time}-{appointment.end_time}"
                    ),
                )

    available, source = working_ranges(candidate.provider_id, candidate.date, existing)
    if not any(r.contains(wanted) for r in available):
        return Conflict(
            kind=ConflictKind.OUTSIDE_WORKING_HOURS,
            conflicting_entity=source,
            message=f"{wanted} is outside the provider's working hours on {candidate.date.isoformat()}",
        )

    for block, ranges in blocking_exceptions(
        candidate.provider_id, candidate.date, existing.exception_blocks,
    ):
        if any(r.overlaps(wanted) for r in ranges):
            return Conflict(
                kind=ConflictKind.EXCEPTION_BLOCK,
                conflicting_entity=block,
                message=f"Provider unavailable: {block.title} ({block.block_type.value})",
            )

    return None
