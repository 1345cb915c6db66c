"""
Pydantic models for the scheduling core and its API.

Every model enforces its invariants at construction, so an instance that
exists is valid. Cross-field checks collect all violations before raising.
"""

import uuid
from datetime import date, datetime
from typing import Annotated, List, Optional

from dateutil.rrule import rrulestr
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ..constants import (
    MAX_APPOINTMENT_MINUTES,
    MAX_INTERVAL,
    MAX_OCCURRENCES,
    AppointmentStatus,
    BookingTemplateType,
    OccurrenceStatus,
    RecurrencePattern,
    RecurringStatus,
    ScheduleBlockStatus,
    ScheduleBlockType,
    ShiftStatus,
)
from ..utils.calendar_utils import MINUTES_PER_DAY, TIME_PATTERN, format_time, parse_time
from ..utils.time_ranges import TimeRange, clip_range
from .parsing import ViolationList, violation

# Time format validation (HH:mm)
TimeStr = Annotated[str, Field(pattern=TIME_PATTERN.pattern, description="24-hour HH:mm")]

# Day of week validation (0-6, Sunday-Saturday)
DayOfWeek = Annotated[int, Field(ge=0, le=6)]

# Alias for models that have a field named "date"
DateType = date

HexColor = Annotated[str, Field(pattern=r"^#[0-9A-Fa-f]{6}$")]

WEEK_OF_MONTH_VALUES = (-1, 1, 2, 3, 4)


def _new_id() -> str:
    return str(uuid.uuid4())


# ============================================================================
# Recurrence
# ============================================================================

class RecurrenceSpec(BaseModel):
    """
    How a recurring appointment repeats.

    Attributes:
        pattern: DAILY, WEEKLY, BIWEEKLY, MONTHLY or CUSTOM
        interval: Step multiplier (every N days/weeks/months)
        days_of_week: Sunday-first weekdays for WEEKLY/BIWEEKLY
        day_of_month: Monthly anchor by day number (clamped in short months)
        week_of_month: Monthly anchor by week (1-4, or -1 for last)
        preferred_day_of_week: Weekday paired with week_of_month
        custom_dates: Explicit dates for CUSTOM
        start_date: First possible occurrence date
        end_date: Inclusive end bound
        max_occurrences: Count bound (counted from start_date)

    Exactly one of end_date / max_occurrences is set, so every rule terminates.
    """
    model_config = ConfigDict(frozen=True)

    pattern: RecurrencePattern
    interval: int = Field(default=1, ge=1, le=MAX_INTERVAL)
    days_of_week: List[DayOfWeek] = Field(default_factory=list)
    day_of_month: Optional[int] = Field(default=None, ge=1, le=31)
    week_of_month: Optional[int] = None
    preferred_day_of_week: Optional[DayOfWeek] = None
    custom_dates: List[date] = Field(default_factory=list)
    start_date: date
    end_date: Optional[date] = None
    max_occurrences: Optional[int] = Field(default=None, ge=1, le=MAX_OCCURRENCES)

    @field_validator("days_of_week")
    @classmethod
    def normalize_days(cls, v: List[int]) -> List[int]:
        """Weekdays are a set; keep them sorted for stable expansion."""
        return sorted(set(v))

    @field_validator("custom_dates")
    @classmethod
    def normalize_custom_dates(cls, v: List[date]) -> List[date]:
        return sorted(set(v))

    @field_validator("week_of_month")
    @classmethod
    def validate_week_of_month(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v not in WEEK_OF_MONTH_VALUES:
            raise ValueError("Week of month must be 1-4, or -1 for the last week")
        return v

    @model_validator(mode="after")
    def check_invariants(self) -> "RecurrenceSpec":
        problems = []

        if self.pattern in (RecurrencePattern.WEEKLY, RecurrencePattern.BIWEEKLY):
            if not self.days_of_week:
                problems.append(violation(
                    "days_of_week",
                    f"{self.pattern.value.capitalize()} pattern requires at least one day selected",
                ))

        if self.pattern == RecurrencePattern.MONTHLY:
            if self.day_of_month is None and self.week_of_month is None:
                problems.append(violation(
                    "day_of_month", "Monthly pattern requires day of month or week of month",
                ))
            elif self.day_of_month is not None and self.week_of_month is not None:
                problems.append(violation(
                    "day_of_month", "Monthly pattern takes day of month or week of month, not both",
                ))
            elif self.week_of_month is not None and self.anchor_weekday is None:
                problems.append(violation(
                    "preferred_day_of_week", "Week of month requires exactly one weekday",
                ))

        if self.pattern == RecurrencePattern.CUSTOM and not self.custom_dates:
            problems.append(violation("custom_dates", "Custom pattern requires at least one date"))

        if self.end_date is None and self.max_occurrences is None:
            problems.append(violation(
                "end_date", "Recurring series must have an end date or max occurrences",
            ))
        elif self.end_date is not None and self.max_occurrences is not None:
            problems.append(violation(
                "end_date", "Recurring series takes an end date or max occurrences, not both",
            ))

        if self.end_date is not None and self.end_date < self.start_date:
            problems.append(violation("end_date", "End date must be on or after start date"))

        if problems:
            raise ViolationList(problems)
        return self

    @property
    def anchor_weekday(self) -> Optional[int]:
        """Weekday used with week_of_month."""
        if self.preferred_day_of_week is not None:
            return self.preferred_day_of_week
        if len(self.days_of_week) == 1:
            return self.days_of_week[0]
        return None


# ============================================================================
# Provider working hours
# ============================================================================

class ScheduleBreak(BaseModel):
    """A break inside a provider's working day."""
    start_time: TimeStr
    end_time: TimeStr
    label: Optional[str] = Field(default=None, max_length=50)

    @model_validator(mode="after")
    def check_order(self) -> "ScheduleBreak":
        if parse_time(self.end_time) <= parse_time(self.start_time):
            raise ValueError("Break end time must be after start time")
        return self

    @property
    def time_range(self) -> TimeRange:
        return TimeRange.from_strings(self.start_time, self.end_time)


class ProviderSchedule(BaseModel):
    """
    Working hours for one provider on one weekday.

    Breaks must lie inside the working hours and not overlap each other.
    The lunch window only removes the part that falls inside working hours.
    """
    id: str = Field(default_factory=_new_id)
    provider_id: str = Field(..., min_length=1)
    day_of_week: DayOfWeek
    start_time: TimeStr
    end_time: TimeStr
    is_working_day: bool = True
    breaks: List[ScheduleBreak] = Field(default_factory=list)
    lunch_start_time: Optional[TimeStr] = None
    lunch_end_time: Optional[TimeStr] = None
    auto_block_lunch: bool = True
    effective_from: Optional[date] = None
    effective_to: Optional[date] = None

    @model_validator(mode="after")
    def check_invariants(self) -> "ProviderSchedule":
        problems = []
        start, end = parse_time(self.start_time), parse_time(self.end_time)
        if end <= start:
            problems.append(violation("end_time", "End time must be after start time"))

        lunch_ok = False
        if (self.lunch_start_time is None) != (self.lunch_end_time is None):
            problems.append(violation("lunch_end_time", "Lunch needs both a start and an end time"))
        elif self.lunch_start_time is not None:
            if parse_time(self.lunch_end_time) <= parse_time(self.lunch_start_time):
                problems.append(violation(
                    "lunch_end_time", "Lunch end time must be after lunch start time",
                ))
            else:
                lunch_ok = True

        if end > start:
            hours = TimeRange(start, end)
            ranges = sorted(b.time_range for b in self.breaks)
            for index, item in enumerate(ranges):
                if not hours.contains(item):
                    problems.append(violation(
                        f"breaks.{index}", f"Break {item} must lie within working hours {hours}",
                    ))
            for first, second in zip(ranges, ranges[1:]):
                if first.overlaps(second):
                    problems.append(violation("breaks", f"Breaks {first} and {second} overlap"))

            lunch = self.lunch_range if lunch_ok else None
            if lunch is not None:
                for item in ranges:
                    if lunch.overlaps(item):
                        problems.append(violation(
                            "lunch_start_time", f"Lunch {lunch} overlaps break {item}",
                        ))

        if self.effective_from and self.effective_to and self.effective_to < self.effective_from:
            problems.append(violation(
                "effective_to", "Effective end date must be on or after start date",
            ))

        if problems:
            raise ViolationList(problems)
        return self

    @property
    def working_range(self) -> TimeRange:
        return TimeRange.from_strings(self.start_time, self.end_time)

    @property
    def lunch_range(self) -> Optional[TimeRange]:
        """Lunch window clipped to working hours, if any part is inside."""
        if not (self.auto_block_lunch and self.lunch_start_time and self.lunch_end_time):
            return None
        lunch = TimeRange.from_strings(self.lunch_start_time, self.lunch_end_time)
        return clip_range(lunch, self.working_range)

    def unavailable_ranges(self) -> List[TimeRange]:
        """Breaks and lunch inside the working day."""
        ranges = [b.time_range for b in self.breaks]
        if self.lunch_range is not None:
            ranges.append(self.lunch_range)
        return sorted(ranges)

    def is_effective_on(self, on: date) -> bool:
        if self.effective_from and on < self.effective_from:
            return False
        if self.effective_to and on > self.effective_to:
            return False
        return True


class StaffShift(BaseModel):
    """A dated shift; replaces the weekly schedule for its provider on that date."""
    id: str = Field(default_factory=_new_id)
    provider_id: str = Field(..., min_length=1)
    shift_date: date
    start_time: TimeStr
    end_time: TimeStr
    break_minutes: int = Field(default=0, ge=0)
    status: ShiftStatus = ShiftStatus.SCHEDULED
    location_id: Optional[str] = None

    @model_validator(mode="after")
    def check_order(self) -> "StaffShift":
        if parse_time(self.end_time) <= parse_time(self.start_time):
            raise ValueError("End time must be after start time")
        return self

    @property
    def time_range(self) -> TimeRange:
        return TimeRange.from_strings(self.start_time, self.end_time)


# ============================================================================
# Booking templates
# ============================================================================

class ScheduleBlock(BaseModel):
    """
    A colored time block inside a weekly template.

    An empty appointment_type_ids list means the block is open to any type.
    Blocked blocks (lunch, meetings, day off) ignore appointment types.
    """
    id: str = Field(default_factory=_new_id)
    day_of_week: DayOfWeek
    start_time: TimeStr
    end_time: TimeStr
    appointment_type_ids: List[str] = Field(default_factory=list)
    is_blocked: bool = False
    block_reason: Optional[str] = Field(default=None, max_length=200)
    label: Optional[str] = Field(default=None, max_length=100)
    color: Optional[HexColor] = None

    @model_validator(mode="after")
    def check_order(self) -> "ScheduleBlock":
        if parse_time(self.end_time) <= parse_time(self.start_time):
            raise ValueError("Block end time must be after start time")
        return self

    @property
    def time_range(self) -> TimeRange:
        return TimeRange.from_strings(self.start_time, self.end_time)

    def permits(self, appointment_type_id: Optional[str]) -> bool:
        """Whether an appointment of this type may be booked inside the block."""
        if self.is_blocked:
            return False
        if not self.appointment_type_ids or appointment_type_id is None:
            return True
        return appointment_type_id in self.appointment_type_ids


class LegacySlot(BaseModel):
    """Older single-type template slot, accepted for backwards compatibility."""
    start_time: TimeStr
    end_time: TimeStr
    day_of_week: Optional[DayOfWeek] = None
    appointment_type_id: Optional[str] = None
    is_blocked: bool = False
    block_reason: Optional[str] = Field(default=None, max_length=200)
    label: Optional[str] = Field(default=None, max_length=100)
    color: Optional[HexColor] = None

    @model_validator(mode="after")
    def check_order(self) -> "LegacySlot":
        if parse_time(self.end_time) <= parse_time(self.start_time):
            raise ValueError("Slot end time must be after start time")
        return self

    def to_blocks(self, days: List[int]) -> List[ScheduleBlock]:
        """Convert to one ScheduleBlock per weekday."""
        return [
            ScheduleBlock(
                day_of_week=dow,
                start_time=self.start_time,
                end_time=self.end_time,
                appointment_type_ids=[self.appointment_type_id] if self.appointment_type_id else [],
                is_blocked=self.is_blocked,
                block_reason=self.block_reason,
                label=self.label,
                color=self.color,
            )
            for dow in days
        ]


class BookingTemplate(BaseModel):
    """
    Named reusable set of schedule blocks.

    Legacy slots are folded into blocks during validation, so the rest of the
    code only ever sees `blocks`. Templates are replaced whole, never patched.
    """
    id: str = Field(default_factory=_new_id)
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=1000)
    template_type: BookingTemplateType
    is_active: bool = True
    is_default: bool = False
    provider_id: Optional[str] = None
    blocks: List[ScheduleBlock] = Field(default_factory=list)
    slots: List[LegacySlot] = Field(default_factory=list, exclude=True)
    color: Optional[HexColor] = None

    @model_validator(mode="after")
    def fold_legacy_slots(self) -> "BookingTemplate":
        if not self.blocks and not self.slots:
            raise ViolationList([
                violation("blocks", "Template must have at least one schedule block"),
            ])

        problems = []
        converted: List[ScheduleBlock] = []
        for index, slot in enumerate(self.slots):
            if slot.day_of_week is not None:
                converted.extend(slot.to_blocks([slot.day_of_week]))
            elif self.template_type == BookingTemplateType.WEEK:
                problems.append(violation(
                    f"slots.{index}.day_of_week", "Week templates require a day of week on every slot",
                ))
            else:
                # Day templates describe any day of the week
                converted.extend(slot.to_blocks(list(range(7))))
        if problems:
            raise ViolationList(problems)

        self.blocks = list(self.blocks) + converted
        self.slots = []
        return self


class AppliedScheduleBlock(BaseModel):
    """A template block materialized onto a concrete date."""
    provider_id: Optional[str] = None
    block_date: date
    template_id: Optional[str] = None
    block: ScheduleBlock


# ============================================================================
# Commitments
# ============================================================================

class BookedAppointment(BaseModel):
    """An appointment already on the books."""
    id: str = Field(default_factory=_new_id)
    provider_id: str
    chair_id: Optional[str] = None
    patient_id: Optional[str] = None
    appointment_type_id: Optional[str] = None
    appointment_date: date
    start_time: TimeStr
    end_time: TimeStr
    status: AppointmentStatus = AppointmentStatus.SCHEDULED

    @model_validator(mode="after")
    def check_order(self) -> "BookedAppointment":
        if parse_time(self.end_time) <= parse_time(self.start_time):
            raise ValueError("End time must be after start time")
        return self

    @property
    def time_range(self) -> TimeRange:
        return TimeRange.from_strings(self.start_time, self.end_time)


class ScheduleExceptionBlock(BaseModel):
    """
    Ad hoc unavailability (vacation, training, meeting).

    Recurring blocks carry an RFC 5545 RRULE, expanded from start_datetime.
    Datetimes are wall-clock times in the clinic timezone.
    """
    id: str = Field(default_factory=_new_id)
    provider_id: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1, max_length=200)
    block_type: ScheduleBlockType = ScheduleBlockType.OTHER
    reason: Optional[str] = Field(default=None, max_length=500)
    start_datetime: datetime
    end_datetime: datetime
    all_day: bool = False
    is_recurring: bool = False
    recurrence_rule: Optional[str] = Field(default=None, max_length=500)
    status: ScheduleBlockStatus = ScheduleBlockStatus.ACTIVE

    @field_validator("start_datetime", "end_datetime")
    @classmethod
    def drop_timezone(cls, v: datetime) -> datetime:
        """Keep wall-clock time; the clinic timezone is already applied."""
        return v.replace(tzinfo=None)

    @model_validator(mode="after")
    def check_invariants(self) -> "ScheduleExceptionBlock":
        problems = []
        if self.end_datetime <= self.start_datetime:
            problems.append(violation(
                "end_datetime", "End date/time must be after start date/time",
            ))
        if self.is_recurring:
            if not self.recurrence_rule:
                problems.append(violation(
                    "recurrence_rule", "Recurring block requires a recurrence rule",
                ))
            else:
                try:
                    rrulestr(self.recurrence_rule, dtstart=self.start_datetime)
                except (ValueError, TypeError) as e:
                    problems.append(violation("recurrence_rule", f"Invalid recurrence rule: {e}"))
        if problems:
            raise ViolationList(problems)
        return self


class ExistingCommitments(BaseModel):
    """Snapshot of everything already committed for the providers involved."""
    schedules: List[ProviderSchedule] = Field(default_factory=list)
    shifts: List[StaffShift] = Field(default_factory=list)
    appointments: List[BookedAppointment] = Field(default_factory=list)
    exception_blocks: List[ScheduleExceptionBlock] = Field(default_factory=list)


class CandidateBooking(BaseModel):
    """A proposed booking checked by the conflict detector."""
    provider_id: str = Field(..., min_length=1)
    chair_id: Optional[str] = None
    appointment_type_id: Optional[str] = None
    date: DateType
    start_time: TimeStr
    end_time: TimeStr
    exclude_appointment_id: Optional[str] = None

    @model_validator(mode="after")
    def check_order(self) -> "CandidateBooking":
        if parse_time(self.end_time) <= parse_time(self.start_time):
            raise ValueError("End time must be after start time")
        return self

    @property
    def time_range(self) -> TimeRange:
        return TimeRange.from_strings(self.start_time, self.end_time)


# ============================================================================
# Recurring series
# ============================================================================

class Occurrence(BaseModel):
    """One dated instance of a recurring series. Never deleted."""
    id: str = Field(default_factory=_new_id)
    series_id: str
    occurrence_number: int = Field(..., ge=1)
    scheduled_date: date
    scheduled_time: TimeStr
    status: OccurrenceStatus = OccurrenceStatus.PENDING
    skipped_reason: Optional[str] = Field(default=None, max_length=500)
    is_modified: bool = False
    modified_at: Optional[datetime] = None
    modified_by: Optional[str] = None
    appointment_id: Optional[str] = None


class RecurringAppointmentSeries(BaseModel):
    """A recurrence rule tied to a patient, provider, type, chair and duration."""
    id: str = Field(default_factory=_new_id)
    clinic_id: Optional[str] = None
    patient_id: str = Field(..., min_length=1)
    provider_id: str = Field(..., min_length=1)
    appointment_type_id: str = Field(..., min_length=1)
    chair_id: Optional[str] = None
    name: Optional[str] = Field(default=None, max_length=200)
    duration: int = Field(..., gt=0, le=MAX_APPOINTMENT_MINUTES)
    preferred_time: TimeStr
    recurrence: RecurrenceSpec
    status: RecurringStatus = RecurringStatus.ACTIVE
    occurrences: List[Occurrence] = Field(default_factory=list)
    occurrences_created: int = 0
    last_generated_date: Optional[date] = None
    notes: Optional[str] = Field(default=None, max_length=1000)

    @model_validator(mode="after")
    def check_fits_in_day(self) -> "RecurringAppointmentSeries":
        if parse_time(self.preferred_time) + self.duration > MINUTES_PER_DAY:
            raise ValueError("Appointment must end by midnight")
        return self

    @property
    def end_time(self) -> str:
        return format_time(parse_time(self.preferred_time) + self.duration)


# ============================================================================
# API request models
# ============================================================================

class RecurrencePreviewRequest(BaseModel):
    recurrence: RecurrenceSpec
    window_start: Optional[date] = None
    window_end: Optional[date] = None


class CreateSeriesRequest(BaseModel):
    """Fields a caller may set when creating a series; bookkeeping stays server-side."""
    patient_id: str = Field(..., min_length=1)
    provider_id: str = Field(..., min_length=1)
    appointment_type_id: str = Field(..., min_length=1)
    chair_id: Optional[str] = None
    name: Optional[str] = Field(default=None, max_length=200)
    duration: int = Field(..., gt=0, le=MAX_APPOINTMENT_MINUTES)
    preferred_time: TimeStr
    recurrence: RecurrenceSpec
    notes: Optional[str] = Field(default=None, max_length=1000)


class MaterializeRequest(BaseModel):
    window_start: Optional[date] = None
    window_end: Optional[date] = None
    skip_conflicts: bool = True

    @model_validator(mode="after")
    def check_window(self) -> "MaterializeRequest":
        if self.window_start and self.window_end and self.window_end < self.window_start:
            raise ValueError("Window end must be on or after window start")
        return self


class OccurrenceUpdate(BaseModel):
    """Reschedule (new date and/or time) or skip a single occurrence."""
    scheduled_date: Optional[date] = None
    scheduled_time: Optional[TimeStr] = None
    status: Optional[OccurrenceStatus] = None
    skipped_reason: Optional[str] = Field(default=None, max_length=500)

    @model_validator(mode="after")
    def check_action(self) -> "OccurrenceUpdate":
        if self.status not in (None, OccurrenceStatus.SKIPPED, OccurrenceStatus.MODIFIED):
            raise ValueError("Occurrence updates may only skip or modify an occurrence")
        if self.status == OccurrenceStatus.SKIPPED and (self.scheduled_date or self.scheduled_time):
            raise ValueError("A skipped occurrence cannot also be rescheduled")
        if self.status != OccurrenceStatus.SKIPPED and not (self.scheduled_date or self.scheduled_time):
            raise ValueError("Reschedule requires a new date or time")
        return self


class AvailabilityQuery(BaseModel):
    provider_id: str = Field(..., min_length=1)
    date: DateType
    duration: int = Field(default=30, gt=0, le=MAX_APPOINTMENT_MINUTES)
    appointment_type_id: Optional[str] = None
    chair_id: Optional[str] = None


class ApplyTemplateRequest(BaseModel):
    # Provider is optional - if not provided, applies clinic-wide
    provider_id: Optional[str] = None
    date_range_start: date
    date_range_end: date
    override_existing: bool = False

    @model_validator(mode="after")
    def check_range(self) -> "ApplyTemplateRequest":
        if self.date_range_end < self.date_range_start:
            raise ValueError("End date must be on or after start date")
        return self
