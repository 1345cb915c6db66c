"""
Recurring Appointment Materializer.

Turns a recurring series into dated Occurrences for a window, checking every
candidate date against existing commitments, and implements the occurrence
and series state machines:

    Occurrence: PENDING -> SCHEDULED -> MODIFIED | SKIPPED | CANCELLED
    Series:     ACTIVE <-> PAUSED, then -> COMPLETED | CANCELLED

Functions here never persist anything. They return new values and leave the
series passed in untouched; the caller commits the result.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

from ...constants import (
    CANCELLABLE_OCCURRENCE_STATUSES,
    DEFAULT_PAGE_SIZE,
    MAX_OCCURRENCES,
    MAX_PAGE_SIZE,
    ConflictKind,
    OccurrenceStatus,
    RecurrencePattern,
    RecurringStatus,
)
from ...exceptions import (
    CannotModifyPastError,
    InvalidOccurrenceTransitionError,
    NotFoundError,
    SeriesNotActiveError,
)
from ...models.scheduling import (
    CandidateBooking,
    ExistingCommitments,
    Occurrence,
    RecurringAppointmentSeries,
)
from ...utils.calendar_utils import MINUTES_PER_DAY, format_time, parse_time
from .conflict_detector import Conflict, check_conflict
from .recurrence_expander import expand_numbered

logger = logging.getLogger(__name__)

# Occurrences that can still be moved or dropped by hand
EDITABLE_OCCURRENCE_STATUSES = frozenset({
    OccurrenceStatus.PENDING,
    OccurrenceStatus.SCHEDULED,
    OccurrenceStatus.MODIFIED,
})

SERIES_TRANSITIONS = {
    RecurringStatus.ACTIVE: {RecurringStatus.PAUSED, RecurringStatus.COMPLETED, RecurringStatus.CANCELLED},
    RecurringStatus.PAUSED: {RecurringStatus.ACTIVE, RecurringStatus.COMPLETED, RecurringStatus.CANCELLED},
    RecurringStatus.COMPLETED: set(),
    RecurringStatus.CANCELLED: set(),
}


@dataclass
class MaterializationResult:
    """Outcome of one materialization run."""
    series_id: str
    created: List[Occurrence] = field(default_factory=list)
    conflicts: List[date] = field(default_factory=list)
    conflict_details: List[Dict[str, Any]] = field(default_factory=list)
    aborted: bool = False
    truncated: bool = False

    def add_conflict(self, on: date, conflict: Conflict):
        self.conflicts.append(on)
        self.conflict_details.append({"date": on.isoformat(), **conflict.to_dict()})

    def summary(self) -> Dict[str, Any]:
        return {
            "series_id": self.series_id,
            "created": len(self.created),
            "conflicts": [d.isoformat() for d in self.conflicts],
            "conflict_details": self.conflict_details,
            "aborted": self.aborted,
            "truncated": self.truncated,
        }


@dataclass
class Page:
    """One page of occurrences or series."""
    items: List[Any]
    total: int
    page: int
    page_size: int

    @property
    def total_pages(self) -> int:
        return (self.total + self.page_size - 1) // self.page_size

    def to_dict(self) -> Dict[str, Any]:
        return {
            "items": [o.model_dump(mode="json") for o in self.items],
            "total": self.total,
            "page": self.page,
            "page_size": self.page_size,
            "total_pages": self.total_pages,
        }


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# Materialization
# ============================================================================

def resolve_window(
    series: RecurringAppointmentSeries,
    window_start: Optional[date] = None,
    window_end: Optional[date] = None,
    default_horizon_days: int = 90,
) -> Tuple[date, Optional[date]]:
    """
    Window to expand. Without an explicit end, an open-ended series (count
    bound only) is limited to the default horizon from the window start.
    """
    spec = series.recurrence
    start = window_start or spec.start_date
    end = window_end
    if end is None and spec.end_date is None:
        end = start + timedelta(days=default_horizon_days)
    return start, end


def _already_materialized(series: RecurringAppointmentSeries, number: int, on: date) -> Optional[Conflict]:
    for occurrence in series.occurrences:
        if occurrence.occurrence_number == number and occurrence.status != OccurrenceStatus.SKIPPED:
            return Conflict(
                kind=ConflictKind.ALREADY_MATERIALIZED,
                conflicting_entity=occurrence,
                message=f"Occurrence #{number} already exists ({occurrence.status.value})",
            )
        if occurrence.scheduled_date == on and occurrence.status != OccurrenceStatus.SKIPPED:
            return Conflict(
                kind=ConflictKind.ALREADY_MATERIALIZED,
                conflicting_entity=occurrence,
                message=f"An occurrence is already scheduled on {on.isoformat()}",
            )
    return None


def materialize(
    series: RecurringAppointmentSeries,
    commitments: ExistingCommitments,
    window_start: Optional[date] = None,
    window_end: Optional[date] = None,
    skip_conflicts: bool = True,
    default_horizon_days: int = 90,
    run_cap: int = MAX_OCCURRENCES,
) -> MaterializationResult:
    """
    Expand a series inside a window and emit SCHEDULED occurrences.

    Args:
        series: ACTIVE recurring series
        commitments: Existing schedules, shifts, appointments and exception blocks
        window_start: First date to materialize (defaults to the series start)
        window_end: Last date to materialize (see resolve_window)
        skip_conflicts: When True conflicting dates are reported and skipped.
            When False the first conflict aborts the run and nothing is created.
        default_horizon_days: Horizon for open-ended series without window_end
        run_cap: Most new dates one run considers when the series has no
            max_occurrences of its own. Only dates after the series'
            last_generated_date count, so the next run picks up where this
            one stopped.

    Returns:
        MaterializationResult. Occurrences already materialized for a date
        come back as ALREADY_MATERIALIZED conflicts, so re-running a window
        creates nothing new. Dates explicitly skipped earlier stay skipped.
        `truncated` is set when run_cap stopped the run early.

    Raises:
        SeriesNotActiveError: If the series is not ACTIVE
    """
    if series.status != RecurringStatus.ACTIVE:
        raise SeriesNotActiveError(series.id, series.status.value)

    start, end = resolve_window(series, window_start, window_end, default_horizon_days)
    skipped_numbers = {
        o.occurrence_number for o in series.occurrences if o.status == OccurrenceStatus.SKIPPED
    }
    limit = None if series.recurrence.max_occurrences is not None else run_cap
    result = MaterializationResult(series_id=series.id)
    considered = 0

    for number, on in expand_numbered(series.recurrence, start, end):
        conflict = _already_materialized(series, number, on)
        if conflict is None and number in skipped_numbers:
            continue
        if conflict is None:
            if limit is not None and (series.last_generated_date is None or on > series.last_generated_date):
                if considered >= limit:
                    result.truncated = True
                    logger.debug(f"Series {series.id}: stopped at {limit} new date(s) before #{number}")
                    break
                considered += 1
            conflict = check_conflict(
                CandidateBooking(
                    provider_id=series.provider_id,
                    chair_id=series.chair_id,
                    appointment_type_id=series.appointment_type_id,
                    date=on,
                    start_time=series.preferred_time,
                    end_time=series.end_time,
                ),
                commitments,
            )

        if conflict is not None:
            result.add_conflict(on, conflict)
            logger.debug(f"Series {series.id} #{number} on {on}: {conflict.kind.value}")
            if not skip_conflicts:
                result.created = []
                result.aborted = True
                return result
            continue

        result.created.append(Occurrence(
            series_id=series.id,
            occurrence_number=number,
            scheduled_date=on,
            scheduled_time=series.preferred_time,
            status=OccurrenceStatus.SCHEDULED,
        ))

    return result


def record_materialization(
    series: RecurringAppointmentSeries,
    result: MaterializationResult,
) -> RecurringAppointmentSeries:
    """Series with the created occurrences and generation bookkeeping added."""
    if result.aborted or not result.created:
        return series
    occurrences = sorted(
        list(series.occurrences) + result.created,
        key=lambda o: (o.scheduled_date, o.occurrence_number),
    )
    last = max(o.scheduled_date for o in result.created)
    if series.last_generated_date and series.last_generated_date > last:
        last = series.last_generated_date
    return series.model_copy(update={
        "occurrences": occurrences,
        "occurrences_created": series.occurrences_created + len(result.created),
        "last_generated_date": last,
    })


# ============================================================================
# Occurrence operations
# ============================================================================

def find_occurrence(series: RecurringAppointmentSeries, occurrence_number: int) -> Occurrence:
    for occurrence in series.occurrences:
        if occurrence.occurrence_number == occurrence_number:
            return occurrence
    raise NotFoundError("occurrence", f"{series.id}#{occurrence_number}")


def _replace_occurrence(series: RecurringAppointmentSeries, updated: Occurrence) -> RecurringAppointmentSeries:
    occurrences = sorted(
        [updated if o.id == updated.id else o for o in series.occurrences],
        key=lambda o: (o.scheduled_date, o.occurrence_number),
    )
    return series.model_copy(update={"occurrences": occurrences})


def _check_editable(occurrence: Occurrence, today: date, action: str):
    if occurrence.status not in EDITABLE_OCCURRENCE_STATUSES:
        raise InvalidOccurrenceTransitionError(
            f"Cannot {action} occurrence #{occurrence.occurrence_number}: "
            f"status is {occurrence.status.value}"
        )
    if occurrence.scheduled_date < today:
        raise CannotModifyPastError(
            f"Cannot {action} occurrence #{occurrence.occurrence_number}: "
            f"{occurrence.scheduled_date.isoformat()} is in the past"
        )


def reschedule_occurrence(
    series: RecurringAppointmentSeries,
    occurrence_number: int,
    today: date,
    new_date: Optional[date] = None,
    new_time: Optional[str] = None,
    modified_by: Optional[str] = None,
) -> Tuple[RecurringAppointmentSeries, Occurrence]:
    """
    Move a single occurrence to a new date and/or time (-> MODIFIED).

    Only that occurrence changes; the rest of the series keeps its rule.
    The caller is responsible for checking the new slot for conflicts.
    """
    if new_date is None and new_time is None:
        raise InvalidOccurrenceTransitionError("Reschedule requires a new date or time")

    occurrence = find_occurrence(series, occurrence_number)
    _check_editable(occurrence, today, "reschedule")
    if new_date is not None and new_date < today:
        raise CannotModifyPastError("Cannot reschedule an occurrence into the past")

    scheduled_time = new_time or occurrence.scheduled_time
    if parse_time(scheduled_time) + series.duration > MINUTES_PER_DAY:
        raise InvalidOccurrenceTransitionError("Appointment must end by midnight")

    updated = occurrence.model_copy(update={
        "scheduled_date": new_date or occurrence.scheduled_date,
        "scheduled_time": scheduled_time,
        "status": OccurrenceStatus.MODIFIED,
        "is_modified": True,
        "modified_at": _utcnow(),
        "modified_by": modified_by,
    })
    return _replace_occurrence(series, updated), updated


def occurrence_end_time(series: RecurringAppointmentSeries, occurrence: Occurrence) -> str:
    return format_time(parse_time(occurrence.scheduled_time) + series.duration)


def skip_occurrence(
    series: RecurringAppointmentSeries,
    occurrence_number: int,
    today: date,
    reason: Optional[str] = None,
    modified_by: Optional[str] = None,
) -> Tuple[RecurringAppointmentSeries, Occurrence]:
    """Drop a single occurrence (-> SKIPPED). Skipped occurrences are kept."""
    occurrence = find_occurrence(series, occurrence_number)
    _check_editable(occurrence, today, "skip")

    updated = occurrence.model_copy(update={
        "status": OccurrenceStatus.SKIPPED,
        "skipped_reason": reason,
        "modified_at": _utcnow(),
        "modified_by": modified_by,
    })
    return _replace_occurrence(series, updated), updated


# ============================================================================
# Series operations
# ============================================================================

def _transition(series: RecurringAppointmentSeries, target: RecurringStatus) -> RecurringAppointmentSeries:
    if target not in SERIES_TRANSITIONS[series.status]:
        raise InvalidOccurrenceTransitionError(
            f"Cannot move series {series.id} from {series.status.value} to {target.value}"
        )
    return series.model_copy(update={"status": target})


def pause_series(series: RecurringAppointmentSeries) -> RecurringAppointmentSeries:
    if series.status != RecurringStatus.ACTIVE:
        raise InvalidOccurrenceTransitionError(f"Only active series can be paused ({series.status.value})")
    return _transition(series, RecurringStatus.PAUSED)


def resume_series(series: RecurringAppointmentSeries) -> RecurringAppointmentSeries:
    if series.status != RecurringStatus.PAUSED:
        raise InvalidOccurrenceTransitionError(f"Only paused series can be resumed ({series.status.value})")
    return _transition(series, RecurringStatus.ACTIVE)


def complete_series(series: RecurringAppointmentSeries) -> RecurringAppointmentSeries:
    return _transition(series, RecurringStatus.COMPLETED)


def cancel_series(
    series: RecurringAppointmentSeries,
    today: date,
) -> Tuple[RecurringAppointmentSeries, List[Occurrence]]:
    """
    Cancel a series and its future PENDING/SCHEDULED occurrences.

    Past occurrences and ones already modified or skipped are left as they are.

    Returns:
        (cancelled series, occurrences that moved to CANCELLED)
    """
    cancelled_series = _transition(series, RecurringStatus.CANCELLED)
    now = _utcnow()

    occurrences = []
    cancelled = []
    for occurrence in series.occurrences:
        if occurrence.scheduled_date >= today and occurrence.status in CANCELLABLE_OCCURRENCE_STATUSES:
            occurrence = occurrence.model_copy(update={
                "status": OccurrenceStatus.CANCELLED,
                "modified_at": now,
            })
            cancelled.append(occurrence)
        occurrences.append(occurrence)

    return cancelled_series.model_copy(update={"occurrences": occurrences}), cancelled


def _paginate(items: List[Any], page: int, page_size: int) -> Page:
    if page < 1:
        raise ValueError("Page must be 1 or greater")
    if not 1 <= page_size <= MAX_PAGE_SIZE:
        raise ValueError(f"Page size must be between 1 and {MAX_PAGE_SIZE}")

    offset = (page - 1) * page_size
    return Page(
        items=items[offset:offset + page_size],
        total=len(items),
        page=page,
        page_size=page_size,
    )


def list_occurrences(
    series: RecurringAppointmentSeries,
    status: Optional[OccurrenceStatus] = None,
    from_date: Optional[date] = None,
    to_date: Optional[date] = None,
    page: int = 1,
    page_size: int = DEFAULT_PAGE_SIZE,
) -> Page:
    """Occurrences filtered by status and date range, ordered by date."""
    matching = [
        o for o in sorted(series.occurrences, key=lambda o: (o.scheduled_date, o.occurrence_number))
        if (status is None or o.status == status)
        and (from_date is None or o.scheduled_date >= from_date)
        and (to_date is None or o.scheduled_date <= to_date)
    ]
    return _paginate(matching, page, page_size)


def filter_series(
    series_list: List[RecurringAppointmentSeries],
    patient_id: Optional[str] = None,
    provider_id: Optional[str] = None,
    appointment_type_id: Optional[str] = None,
    status: Optional[RecurringStatus] = None,
    pattern: Optional[RecurrencePattern] = None,
    search: Optional[str] = None,
    page: int = 1,
    page_size: int = DEFAULT_PAGE_SIZE,
) -> Page:
    """
    Series matching every given filter, ordered by start date.

    `search` is a case-insensitive match on the series name and notes.
    """
    needle = search.strip().lower() if search else None
    matching = [
        s for s in sorted(series_list, key=lambda s: (s.recurrence.start_date, s.id))
        if (patient_id is None or s.patient_id == patient_id)
        and (provider_id is None or s.provider_id == provider_id)
        and (appointment_type_id is None or s.appointment_type_id == appointment_type_id)
        and (status is None or s.status == status)
        and (pattern is None or s.recurrence.pattern == pattern)
        and (not needle or needle in f"{s.name or ''} {s.notes or ''}".lower())
    ]
    return _paginate(matching, page, page_size)
