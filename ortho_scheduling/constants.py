"""
Scheduling Constants Module

Enums and limits shared by the recurrence, availability and materialization
code. Enum values match the stored (upper-case) column values.
"""

from enum import Enum


class RecurrencePattern(str, Enum):
    """How a recurring appointment series repeats."""
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    BIWEEKLY = "BIWEEKLY"
    MONTHLY = "MONTHLY"
    CUSTOM = "CUSTOM"


class RecurringStatus(str, Enum):
    """
    Lifecycle of a recurring series.

    ACTIVE <-> PAUSED, then ACTIVE/PAUSED -> COMPLETED or CANCELLED (terminal).
    """
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class OccurrenceStatus(str, Enum):
    """
    Lifecycle of a single occurrence.

    PENDING -> SCHEDULED -> MODIFIED | SKIPPED | CANCELLED
    """
    PENDING = "PENDING"
    SCHEDULED = "SCHEDULED"
    MODIFIED = "MODIFIED"
    SKIPPED = "SKIPPED"
    CANCELLED = "CANCELLED"


class ScheduleBlockType(str, Enum):
    """Reason category for an ad hoc exception block."""
    VACATION = "VACATION"
    SICK_LEAVE = "SICK_LEAVE"
    PERSONAL = "PERSONAL"
    MEETING = "MEETING"
    TRAINING = "TRAINING"
    CONFERENCE = "CONFERENCE"
    ADMIN_TIME = "ADMIN_TIME"
    LUNCH = "LUNCH"
    BREAK = "BREAK"
    HOLIDAY = "HOLIDAY"
    MAINTENANCE = "MAINTENANCE"
    OTHER = "OTHER"


class ScheduleBlockStatus(str, Enum):
    """Approval state of an exception block."""
    ACTIVE = "ACTIVE"
    PENDING_APPROVAL = "PENDING_APPROVAL"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"


class BookingTemplateType(str, Enum):
    """Shape of a booking template."""
    DAY = "DAY"
    WEEK = "WEEK"
    HALF_DAY_AM = "HALF_DAY_AM"
    HALF_DAY_PM = "HALF_DAY_PM"


class AppointmentStatus(str, Enum):
    SCHEDULED = "SCHEDULED"
    CONFIRMED = "CONFIRMED"
    ARRIVED = "ARRIVED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    NO_SHOW = "NO_SHOW"
    CANCELLED = "CANCELLED"


class ShiftStatus(str, Enum):
    SCHEDULED = "SCHEDULED"
    CONFIRMED = "CONFIRMED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    NO_SHOW = "NO_SHOW"
    SWAP_PENDING = "SWAP_PENDING"


class ConflictKind(str, Enum):
    """
    Conflict classification, listed in the order the detector checks them.
    The first match wins.
    """
    PROVIDER_DOUBLE_BOOKED = "PROVIDER_DOUBLE_BOOKED"
    CHAIR_DOUBLE_BOOKED = "CHAIR_DOUBLE_BOOKED"
    OUTSIDE_WORKING_HOURS = "OUTSIDE_WORKING_HOURS"
    EXCEPTION_BLOCK = "EXCEPTION_BLOCK"
    ALREADY_MATERIALIZED = "ALREADY_MATERIALIZED"


# Weekday indices are Sunday-first throughout (0=Sunday .. 6=Saturday)
WEEKDAY_NAMES = (
    "Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday",
)

# Recurrence limits (one year of weekly visits)
MAX_OCCURRENCES = 52
MAX_INTERVAL = 12

# Longest single appointment (8 hours)
MAX_APPOINTMENT_MINUTES = 480

# Appointments in these states no longer hold their time
NON_BLOCKING_APPOINTMENT_STATUSES = frozenset({
    AppointmentStatus.CANCELLED,
    AppointmentStatus.NO_SHOW,
})

# Shifts in these states do not define working time
NON_WORKING_SHIFT_STATUSES = frozenset({
    ShiftStatus.CANCELLED,
    ShiftStatus.NO_SHOW,
})

# Only these exception blocks take part in conflict detection
BLOCKING_EXCEPTION_STATUSES = frozenset({
    ScheduleBlockStatus.ACTIVE,
    ScheduleBlockStatus.APPROVED,
})

# Occurrences a series cancellation moves to CANCELLED
CANCELLABLE_OCCURRENCE_STATUSES = frozenset({
    OccurrenceStatus.PENDING,
    OccurrenceStatus.SCHEDULED,
})

# Occurrence listing pagination
DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100
