"""
Availability Resolver.

Finds free time for a provider on a date by starting from working hours and
removing everything that makes time unbookable:
- breaks and lunch
- template blocks that are blocked or do not accept the appointment type
- existing appointments (provider, and chair when one is requested)
- active/approved exception blocks

The result is a snapshot of the commitments passed in.
"""

import logging
from datetime import date
from typing import Iterable, List, Optional

from ...models.scheduling import ExistingCommitments, ScheduleBlock
from ...utils.calendar_utils import day_of_week
from ...utils.time_ranges import TimeRange, subtract_ranges
from .conflict_detector import active_appointments, blocking_exceptions, working_ranges
from .schedule_blocks import blocks_for_day

logger = logging.getLogger(__name__)


def find_free_intervals(
    provider_id: str,
    on: date,
    minimum_duration: int,
    commitments: ExistingCommitments,
    schedule_blocks: Iterable[ScheduleBlock] = (),
    appointment_type_id: Optional[str] = None,
    chair_id: Optional[str] = None,
) -> List[TimeRange]:
    """
    Free intervals of at least `minimum_duration` minutes.

    Args:
        provider_id: Provider to check
        on: Calendar date (clinic timezone)
        minimum_duration: Shortest interval worth returning, in minutes
        commitments: Schedules, shifts, appointments and exception blocks
        schedule_blocks: The provider's template blocks (any weekday)
        appointment_type_id: Type being booked; when None only blocked
            template blocks are removed
        chair_id: Also remove time already booked in this chair

    Returns:
        Maximal free intervals sorted by start time. An empty list means the
        provider is fully booked or not working.
    """
    if minimum_duration <= 0:
        raise ValueError("Minimum duration must be positive")

    available, _ = working_ranges(provider_id, on, commitments)
    if not available:
        return []

    cuts: List[TimeRange] = [
        block.time_range
        for block in blocks_for_day(schedule_blocks, day_of_week(on))
        if not block.permits(appointment_type_id)
    ]

    for appointment in active_appointments(on, commitments.appointments):
        if appointment.provider_id == provider_id or (chair_id and appointment.chair_id == chair_id):
            cuts.append(appointment.time_range)

    for _, ranges in blocking_exceptions(provider_id, on, commitments.exception_blocks):
        cuts.extend(ranges)

    free = [r for r in subtract_ranges(available, cuts) if r.duration >= minimum_duration]
    logger.debug(
        f"Provider {provider_id} on {on.isoformat()}: {len(free)} free interval(s) "
        f">= {minimum_duration} min"
    )
    return free


def split_into_slots(
    intervals: Iterable[TimeRange],
    duration: int,
    step: Optional[int] = None,
) -> List[TimeRange]:
    """
    Cut free intervals into fixed-length bookable slots.

    Args:
        intervals: Free intervals
        duration: Slot length in minutes
        step: Minutes between slot starts (defaults to the slot length)

    Returns:
        Slots in start order; leftovers shorter than `duration` are dropped
    """
    step = step or duration
    if duration <= 0 or step <= 0:
        raise ValueError("Slot duration and step must be positive")

    slots = []
    for interval in sorted(intervals):
        current = interval.start
        while current + duration <= interval.end:
            slots.append(TimeRange(current, current + duration))
            current += step
    return slots
