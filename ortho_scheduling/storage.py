"""
In-memory scheduling store.

Implements the repository and unit-of-work protocols for development and
tests. Writes are staged inside a unit of work and applied on a clean exit;
a store-wide lock serializes units of work so a conflict check and the write
that follows it cannot interleave with another request.
"""

import asyncio
import logging
from datetime import date
from typing import Any, Dict, Iterable, List, Optional

from .constants import NON_BLOCKING_APPOINTMENT_STATUSES, AppointmentStatus, OccurrenceStatus
from .exceptions import DuplicateBookingError, NotFoundError
from .models.scheduling import (
    AppliedScheduleBlock,
    BookedAppointment,
    BookingTemplate,
    ExistingCommitments,
    Occurrence,
    ProviderSchedule,
    RecurringAppointmentSeries,
    ScheduleBlock,
    ScheduleExceptionBlock,
    StaffShift,
)
from .services.scheduling.ports import AuditEvent
from .utils.calendar_utils import format_time, parse_time

logger = logging.getLogger(__name__)

_OCCURRENCE_TO_APPOINTMENT_STATUS = {
    OccurrenceStatus.CANCELLED: AppointmentStatus.CANCELLED,
    OccurrenceStatus.SKIPPED: AppointmentStatus.CANCELLED,
}


def _lookup(registry: Dict[str, Dict[str, Any]], entity: str, entity_id: str) -> Dict[str, Any]:
    try:
        return registry[entity_id]
    except KeyError:
        raise NotFoundError(entity, entity_id)


class InMemorySchedulingStore:
    """Dictionary-backed store for series, templates and commitments."""

    def __init__(self):
        self.series: Dict[str, RecurringAppointmentSeries] = {}
        self.templates: Dict[str, BookingTemplate] = {}
        self.schedules: List[ProviderSchedule] = []
        self.shifts: List[StaffShift] = []
        self.appointments: Dict[str, BookedAppointment] = {}
        self.exception_blocks: List[ScheduleExceptionBlock] = []
        self.applied_blocks: List[AppliedScheduleBlock] = []
        # Reference data owned by other services; only existence is checked here
        self.patients: Dict[str, Dict[str, Any]] = {}
        self.providers: Dict[str, Dict[str, Any]] = {}
        self.appointment_types: Dict[str, Dict[str, Any]] = {}
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Seeding
    # ------------------------------------------------------------------

    def add_series(self, series: RecurringAppointmentSeries) -> RecurringAppointmentSeries:
        self.series[series.id] = series
        return series

    def add_template(self, template: BookingTemplate) -> BookingTemplate:
        self.templates[template.id] = template
        return template

    def add_schedule(self, schedule: ProviderSchedule) -> ProviderSchedule:
        self.schedules.append(schedule)
        self.providers.setdefault(schedule.provider_id, {"id": schedule.provider_id})
        return schedule

    def add_shift(self, shift: StaffShift) -> StaffShift:
        self.shifts.append(shift)
        return shift

    def add_appointment(self, appointment: BookedAppointment) -> BookedAppointment:
        self.appointments[appointment.id] = appointment
        return appointment

    def add_exception_block(self, block: ScheduleExceptionBlock) -> ScheduleExceptionBlock:
        self.exception_blocks.append(block)
        return block

    def add_patient(self, patient_id: str, **fields) -> Dict[str, Any]:
        self.patients[patient_id] = {"id": patient_id, **fields}
        return self.patients[patient_id]

    def add_provider(self, provider_id: str, **fields) -> Dict[str, Any]:
        self.providers[provider_id] = {"id": provider_id, **fields}
        return self.providers[provider_id]

    def add_appointment_type(self, appointment_type_id: str, **fields) -> Dict[str, Any]:
        self.appointment_types[appointment_type_id] = {"id": appointment_type_id, **fields}
        return self.appointment_types[appointment_type_id]

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_series(self, series_id: str) -> RecurringAppointmentSeries:
        try:
            return self.series[series_id]
        except KeyError:
            raise NotFoundError("recurring", series_id, "Recurring series")

    async def get_template(self, template_id: str) -> BookingTemplate:
        try:
            return self.templates[template_id]
        except KeyError:
            raise NotFoundError("template", template_id)

    async def list_series(self, clinic_id: Optional[str] = None) -> List[RecurringAppointmentSeries]:
        return [
            s for s in self.series.values()
            if clinic_id is None or s.clinic_id in (None, clinic_id)
        ]

    async def get_patient(self, patient_id: str) -> Dict[str, Any]:
        return _lookup(self.patients, "patient", patient_id)

    async def get_provider(self, provider_id: str) -> Dict[str, Any]:
        return _lookup(self.providers, "provider", provider_id)

    async def get_appointment_type(self, appointment_type_id: str) -> Dict[str, Any]:
        return _lookup(self.appointment_types, "appointment_type", appointment_type_id)

    def snapshot(
        self,
        provider_id: str,
        start: date,
        end: date,
        chair_id: Optional[str] = None,
    ) -> ExistingCommitments:
        """Commitments relevant to a provider (and chair) between two dates."""
        return ExistingCommitments(
            schedules=[s for s in self.schedules if s.provider_id == provider_id],
            shifts=[
                s for s in self.shifts
                if s.provider_id == provider_id and start <= s.shift_date <= end
            ],
            appointments=[
                a for a in self.appointments.values()
                if start <= a.appointment_date <= end
                and (a.provider_id == provider_id or (chair_id and a.chair_id == chair_id))
            ],
            exception_blocks=[b for b in self.exception_blocks if b.provider_id == provider_id],
        )

    async def get_commitments(
        self,
        provider_id: str,
        start: date,
        end: date,
        chair_id: Optional[str] = None,
    ) -> ExistingCommitments:
        return self.snapshot(provider_id, start, end, chair_id)

    async def get_schedule_blocks(self, provider_id: str, on: date) -> List[ScheduleBlock]:
        """Provider-specific blocks for the date, falling back to clinic-wide ones."""
        dated = [a for a in self.applied_blocks if a.block_date == on]
        own = [a.block for a in dated if a.provider_id == provider_id]
        if own:
            return own
        return [a.block for a in dated if a.provider_id is None]

    async def get_applied_blocks(
        self,
        provider_id: Optional[str],
        start: date,
        end: date,
    ) -> List[AppliedScheduleBlock]:
        return [
            a for a in self.applied_blocks
            if a.provider_id == provider_id and start <= a.block_date <= end
        ]

    def unit_of_work(self) -> "InMemoryUnitOfWork":
        return InMemoryUnitOfWork(self)


class InMemoryUnitOfWork:
    """Stages writes and applies them on exit if no exception was raised."""

    def __init__(self, store: InMemorySchedulingStore):
        self._store = store
        self._series: List[RecurringAppointmentSeries] = []
        self._new_occurrences: Dict[str, List[Occurrence]] = {}
        self._applied: List[tuple] = []
        self._templates: List[BookingTemplate] = []

    async def __aenter__(self) -> "InMemoryUnitOfWork":
        await self._store._lock.acquire()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        try:
            if exc_type is None:
                self._apply()
        finally:
            self._store._lock.release()

    async def load_commitments(
        self,
        provider_id: str,
        start: date,
        end: date,
        chair_id: Optional[str] = None,
    ) -> ExistingCommitments:
        return self._store.snapshot(provider_id, start, end, chair_id)

    async def commit(
        self,
        series: RecurringAppointmentSeries,
        occurrences: Iterable[Occurrence] = (),
    ) -> None:
        self._series.append(series)
        self._new_occurrences[series.id] = list(occurrences)

    async def save_applied_blocks(
        self,
        provider_id: Optional[str],
        blocks: List[AppliedScheduleBlock],
        replaced_dates: List[date],
    ) -> None:
        self._applied.append((provider_id, blocks, replaced_dates))

    async def save_template(self, template: BookingTemplate) -> None:
        self._templates.append(template)

    # ------------------------------------------------------------------
    # Apply
    # ------------------------------------------------------------------

    def _booking_for(self, series: RecurringAppointmentSeries, occurrence: Occurrence) -> BookedAppointment:
        end_time = format_time(parse_time(occurrence.scheduled_time) + series.duration)
        return BookedAppointment(
            provider_id=series.provider_id,
            chair_id=series.chair_id,
            patient_id=series.patient_id,
            appointment_type_id=series.appointment_type_id,
            appointment_date=occurrence.scheduled_date,
            start_time=occurrence.scheduled_time,
            end_time=end_time,
        )

    def _check_duplicate(self, booking: BookedAppointment, staged: List[BookedAppointment], ignore_id: Optional[str]):
        existing = list(self._store.appointments.values()) + staged
        for other in existing:
            if other.id in (booking.id, ignore_id) or other.status in NON_BLOCKING_APPOINTMENT_STATUSES:
                continue
            if (
                other.provider_id == booking.provider_id
                and other.appointment_date == booking.appointment_date
                and other.time_range == booking.time_range
            ):
                raise DuplicateBookingError(booking.provider_id, booking.appointment_date, booking.time_range)

    def _apply(self):
        """Validate every staged write first, then apply them all."""
        staged_bookings: List[BookedAppointment] = []
        final_series: List[RecurringAppointmentSeries] = []

        for series in self._series:
            new_ids = {o.id for o in self._new_occurrences.get(series.id, [])}
            linked = []
            for occurrence in series.occurrences:
                if occurrence.id in new_ids and occurrence.appointment_id is None:
                    booking = self._booking_for(series, occurrence)
                    self._check_duplicate(booking, staged_bookings, None)
                    staged_bookings.append(booking)
                    occurrence = occurrence.model_copy(update={"appointment_id": booking.id})
                elif occurrence.appointment_id in self._store.appointments:
                    current = self._store.appointments[occurrence.appointment_id]
                    booking = self._booking_for(series, occurrence).model_copy(update={
                        "id": current.id,
                        "status": _OCCURRENCE_TO_APPOINTMENT_STATUS.get(occurrence.status, current.status),
                    })
                    if booking.status not in NON_BLOCKING_APPOINTMENT_STATUSES:
                        self._check_duplicate(booking, staged_bookings, current.id)
                    staged_bookings.append(booking)
                linked.append(occurrence)
            final_series.append(series.model_copy(update={"occurrences": linked}))

        for booking in staged_bookings:
            self._store.appointments[booking.id] = booking
        for series in final_series:
            self._store.series[series.id] = series

        for provider_id, blocks, replaced_dates in self._applied:
            replaced = set(replaced_dates)
            self._store.applied_blocks = [
                a for a in self._store.applied_blocks
                if not (a.provider_id == provider_id and a.block_date in replaced)
            ] + list(blocks)

        for template in self._templates:
            self._store.templates[template.id] = template

        logger.debug(
            f"Committed {len(final_series)} series, {len(staged_bookings)} booking(s), "
            f"{sum(len(b) for _, b, _ in self._applied)} applied block(s), "
            f"{len(self._templates)} template(s)"
        )


class InMemoryAuditRecorder:
    """Keeps audit events in a list."""

    def __init__(self):
        self.events: List[AuditEvent] = []

    async def record(self, event: AuditEvent) -> None:
        self.events.append(event)
        logger.debug(f"Audit: {event.action} {event.resource_type}/{event.resource_id} ({event.outcome})")


class StaticClinicContext:
    """Clinic context pinned to one clinic id."""

    def __init__(self, clinic_id: str):
        self.clinic_id = clinic_id

    def get_clinic_id(self) -> str:
        return self.clinic_id
