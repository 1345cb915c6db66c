"""Data models for the scheduling service."""
from ortho_scheduling.models.parsing import flatten_errors, parse_model
from ortho_scheduling.models.scheduling import (
    AppliedScheduleBlock,
    BookedAppointment,
    BookingTemplate,
    CandidateBooking,
    ExistingCommitments,
    LegacySlot,
    Occurrence,
    ProviderSchedule,
    RecurrenceSpec,
    RecurringAppointmentSeries,
    ScheduleBlock,
    ScheduleBreak,
    ScheduleExceptionBlock,
    StaffShift,
)

__all__ = [
    "flatten_errors",
    "parse_model",
    "AppliedScheduleBlock",
    "BookedAppointment",
    "BookingTemplate",
    "CandidateBooking",
    "ExistingCommitments",
    "LegacySlot",
    "Occurrence",
    "ProviderSchedule",
    "RecurrenceSpec",
    "RecurringAppointmentSeries",
    "ScheduleBlock",
    "ScheduleBreak",
    "ScheduleExceptionBlock",
    "StaffShift",
]
