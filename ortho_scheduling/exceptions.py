"""
Custom exceptions for the scheduling core.
"""

from typing import Any, Dict, List, Optional, Tuple


class SchedulingError(Exception):
    """Base class for all scheduling errors."""

    code = "SCHEDULING_ERROR"

    def __init__(self, message: str, details: Optional[Any] = None):
        self.message = message
        self.details = details
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Error payload in the shape the API returns."""
        payload: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details is not None:
            payload["details"] = self.details
        return payload


class InvalidRecurrenceSpecError(SchedulingError):
    """Raised when a recurrence rule breaks one or more invariants."""

    code = "INVALID_RECURRENCE"

    def __init__(self, violations: List[Dict[str, str]], message: str = None):
        self.violations = violations
        super().__init__(
            message or f"Invalid recurrence rule ({len(violations)} violation(s))",
            details={"violations": violations},
        )


class InvalidDateSpecError(SchedulingError):
    """Raised when a calendar anchor cannot be resolved (e.g. 5th Monday)."""

    code = "INVALID_DATE_SPEC"


class InvalidScheduleError(SchedulingError):
    """Raised when a provider schedule, template or block payload is invalid."""

    code = "VALIDATION_ERROR"

    def __init__(self, violations: List[Dict[str, str]], message: str = None):
        self.violations = violations
        super().__init__(
            message or f"Invalid schedule data ({len(violations)} violation(s))",
            details={"violations": violations},
        )


class OverlapError(SchedulingError):
    """Raised when two schedule blocks on the same weekday share time."""

    code = "BLOCK_OVERLAP"

    def __init__(self, overlaps: List[Tuple[Any, Any]]):
        self.overlaps = overlaps
        pairs = [
            {
                "day_of_week": first.day_of_week,
                "first": f"{first.start_time}-{first.end_time}",
                "second": f"{second.start_time}-{second.end_time}",
            }
            for first, second in overlaps
        ]
        super().__init__(
            f"{len(overlaps)} overlapping schedule block pair(s)",
            details={"overlaps": pairs},
        )


class InvalidOccurrenceTransitionError(SchedulingError):
    """Raised when an occurrence or series is moved to a state it cannot reach."""

    code = "INVALID_TRANSITION"


class CannotModifyPastError(InvalidOccurrenceTransitionError):
    """Raised when an occurrence dated before today is edited or moved into the past."""

    code = "CANNOT_MODIFY_PAST"


class SeriesNotActiveError(SchedulingError):
    """Raised when materializing a paused, completed or cancelled series."""

    code = "SERIES_NOT_ACTIVE"

    def __init__(self, series_id: str, status: str):
        self.series_id = series_id
        self.status = status
        super().__init__(f"Recurring series {series_id} is {status}")


class NotFoundError(SchedulingError):
    """Raised by repositories when a referenced entity does not exist."""

    code = "NOT_FOUND"

    def __init__(self, entity: str, entity_id: str, label: Optional[str] = None):
        self.entity = entity
        self.entity_id = entity_id
        self.code = f"{entity.upper()}_NOT_FOUND"
        label = label or entity.replace("_", " ").capitalize()
        super().__init__(f"{label} {entity_id} not found")


class DuplicateBookingError(SchedulingError):
    """Raised by storage when a provider already holds the same date and time range."""

    code = "DUPLICATE_BOOKING"

    def __init__(self, provider_id: str, on: Any, time_range: Any):
        super().__init__(
            f"Provider {provider_id} already booked {time_range} on {on}",
            details={"provider_id": provider_id, "date": str(on), "time_range": str(time_range)},
        )
