"""
Schedule Block Model.

Validates weekly template blocks, answers "is this time bookable" questions
and materializes booking templates onto a provider's calendar.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, Iterable, List, Optional, Sequence

from ...exceptions import InvalidScheduleError, OverlapError
from ...models.parsing import parse_model
from ...models.scheduling import AppliedScheduleBlock, BookingTemplate, ScheduleBlock
from ...utils.calendar_utils import day_of_week, iter_dates, parse_time

logger = logging.getLogger(__name__)


def find_overlaps(blocks: Iterable[ScheduleBlock]) -> List[tuple]:
    """
    Every pair of blocks on the same weekday that share at least one minute.

    Blocked and open blocks follow the same rule.
    """
    by_day: Dict[int, List[ScheduleBlock]] = defaultdict(list)
    for block in blocks:
        by_day[block.day_of_week].append(block)

    pairs = []
    for dow in sorted(by_day):
        day_blocks = sorted(by_day[dow], key=lambda b: (b.time_range.start, b.time_range.end))
        for index, first in enumerate(day_blocks):
            for second in day_blocks[index + 1:]:
                if second.time_range.start >= first.time_range.end:
                    break
                pairs.append((first, second))
    return pairs


def validate_blocks(blocks: Sequence[ScheduleBlock]) -> None:
    """
    Check that no two blocks on the same weekday overlap.

    Raises:
        OverlapError: Listing every overlapping pair
    """
    pairs = find_overlaps(blocks)
    if pairs:
        raise OverlapError(pairs)


def blocks_for_day(blocks: Iterable[ScheduleBlock], dow: int) -> List[ScheduleBlock]:
    """Blocks on a weekday, ordered by start time."""
    return sorted(
        (b for b in blocks if b.day_of_week == dow),
        key=lambda b: b.time_range.start,
    )


def is_open_at(
    blocks: Iterable[ScheduleBlock],
    dow: int,
    at_time: str,
    appointment_type_id: Optional[str] = None,
) -> bool:
    """
    Whether a non-blocked block on that weekday covers the time and accepts
    the appointment type (an empty type list accepts any type).
    """
    minute = parse_time(at_time)
    for block in blocks_for_day(blocks, dow):
        if block.is_blocked:
            continue
        if not block.time_range.contains_minute(minute):
            continue
        if not block.appointment_type_ids or appointment_type_id in block.appointment_type_ids:
            return True
    return False


def parse_template(payload: Any) -> BookingTemplate:
    """
    Build a BookingTemplate from a request payload and check its blocks.

    Raises:
        InvalidScheduleError: For field or legacy slot violations
        OverlapError: If blocks on the same weekday overlap
    """
    template = parse_model(BookingTemplate, payload, InvalidScheduleError)
    validate_blocks(template.blocks)
    return template


@dataclass
class TemplateApplication:
    """Outcome of applying a booking template to a date range."""
    template_id: str
    provider_id: Optional[str]
    applied_blocks: List[AppliedScheduleBlock] = field(default_factory=list)
    applied_dates: List[date] = field(default_factory=list)
    replaced_dates: List[date] = field(default_factory=list)
    skipped_dates: List[date] = field(default_factory=list)

    def summary(self) -> Dict[str, Any]:
        return {
            "template_id": self.template_id,
            "provider_id": self.provider_id,
            "blocks_created": len(self.applied_blocks),
            "dates_applied": [d.isoformat() for d in self.applied_dates],
            "dates_replaced": [d.isoformat() for d in self.replaced_dates],
            "dates_skipped": [d.isoformat() for d in self.skipped_dates],
        }


def apply_template(
    template: BookingTemplate,
    provider_id: Optional[str],
    range_start: date,
    range_end: date,
    existing: Iterable[AppliedScheduleBlock] = (),
    override_existing: bool = False,
) -> TemplateApplication:
    """
    Materialize a template's blocks onto every date of an inclusive range.

    Args:
        template: Validated booking template
        provider_id: Target provider, or None for clinic-wide application
        range_start: First date to fill
        range_end: Last date to fill
        existing: Blocks already applied for the same provider
        override_existing: Replace dates that already carry blocks instead of
            leaving them alone

    Returns:
        TemplateApplication with the new dated blocks. Dates without any
        template block for their weekday are neither applied nor skipped.
    """
    if range_end < range_start:
        raise InvalidScheduleError(
            [{"loc": "date_range_end", "msg": "End date must be on or after start date"}],
        )
    validate_blocks(template.blocks)

    occupied = {
        item.block_date for item in existing
        if item.provider_id == provider_id and range_start <= item.block_date <= range_end
    }
    result = TemplateApplication(template_id=template.id, provider_id=provider_id)

    for current in iter_dates(range_start, range_end):
        day_blocks = blocks_for_day(template.blocks, day_of_week(current))
        if not day_blocks:
            continue
        if current in occupied:
            if not override_existing:
                result.skipped_dates.append(current)
                continue
            result.replaced_dates.append(current)

        result.applied_dates.append(current)
        result.applied_blocks.extend(
            AppliedScheduleBlock(
                provider_id=provider_id,
                block_date=current,
                template_id=template.id,
                block=block,
            )
            for block in day_blocks
        )

    logger.debug(
        f"Template {template.id} -> {len(result.applied_dates)} date(s), "
        f"{len(result.skipped_dates)} skipped, {len(result.replaced_dates)} replaced"
    )
    return result
