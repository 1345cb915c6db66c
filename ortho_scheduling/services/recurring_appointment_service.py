"""
Recurring Appointment Service.

Async shell around the pure scheduling core: loads data through the
repository, runs the core, commits through a unit of work and records an
audit event for every write.
"""

import logging
from datetime import date
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..config import SchedulingSettings, get_settings
from ..exceptions import InvalidOccurrenceTransitionError, InvalidRecurrenceSpecError, InvalidScheduleError
from ..models.parsing import parse_model
from ..models.scheduling import (
    ApplyTemplateRequest,
    AvailabilityQuery,
    BookingTemplate,
    CandidateBooking,
    CreateSeriesRequest,
    MaterializeRequest,
    Occurrence,
    OccurrenceUpdate,
    RecurrenceSpec,
    RecurringAppointmentSeries,
)
from ..constants import DEFAULT_PAGE_SIZE, OccurrenceStatus, RecurrencePattern, RecurringStatus
from ..utils.calendar_utils import today_in_timezone
from .scheduling import occurrence_materializer as materializer
from .scheduling.availability_resolver import find_free_intervals, split_into_slots
from .scheduling.conflict_detector import Conflict, check_conflict
from .scheduling.occurrence_materializer import MaterializationResult, Page
from .scheduling.ports import AuditEvent, AuditRecorder, ClinicContext, SchedulingRepository
from .scheduling.recurrence_expander import expand
from .scheduling.schedule_blocks import TemplateApplication, apply_template, parse_template

logger = logging.getLogger(__name__)


class RecurringAppointmentService:
    """
    Recurring appointment and availability operations.

    Handles:
    - Recurrence previews and single-slot conflict checks
    - Provider availability with a bookable slot grid
    - Series creation, listing, materialization, occurrence edits and lifecycle
    - Booking template validation, storage and application
    """

    def __init__(
        self,
        repository: SchedulingRepository,
        clinic_context: ClinicContext,
        audit: AuditRecorder,
        settings: Optional[SchedulingSettings] = None,
        today: Optional[Callable[[], date]] = None,
    ):
        """
        Initialize the service.

        Args:
            repository: Scheduling data access
            clinic_context: Resolves the acting clinic
            audit: Audit sink
            settings: Optional settings (defaults to the cached settings)
            today: Optional clock returning the clinic's current date
        """
        self.repository = repository
        self.clinic_context = clinic_context
        self.audit = audit
        self.settings = settings or get_settings()
        self._today = today or (lambda: today_in_timezone(self.settings.clinic_timezone))

    def today(self) -> date:
        return self._today()

    async def _record(
        self,
        action: str,
        resource_type: str,
        resource_id: Optional[str],
        actor: Optional[str] = None,
        outcome: str = "success",
        metadata: Optional[Dict[str, Any]] = None,
    ):
        await self.audit.record(AuditEvent(
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            clinic_id=self.clinic_context.get_clinic_id(),
            user_id=actor,
            outcome=outcome,
            metadata=metadata or {},
        ))

    # ========================================================================
    # Queries
    # ========================================================================

    async def preview_recurrence(
        self,
        payload: Any,
        window_start: Optional[date] = None,
        window_end: Optional[date] = None,
    ) -> List[date]:
        """Validate a recurrence rule and return the dates it produces."""
        spec = payload if isinstance(payload, RecurrenceSpec) else parse_model(
            RecurrenceSpec, payload, InvalidRecurrenceSpecError,
        )
        self._check_limits(spec)
        return expand(spec, window_start, window_end)

    def _check_limits(self, spec: RecurrenceSpec):
        """Apply the configured caps, which may be tighter than the model's."""
        if spec.max_occurrences and spec.max_occurrences > self.settings.max_occurrences_cap:
            raise InvalidRecurrenceSpecError([{
                "loc": "max_occurrences",
                "msg": f"Max occurrences cannot exceed {self.settings.max_occurrences_cap}",
            }])
        if spec.interval > self.settings.max_interval:
            raise InvalidRecurrenceSpecError([{
                "loc": "interval",
                "msg": f"Interval cannot exceed {self.settings.max_interval}",
            }])

    async def check_conflict(self, candidate: CandidateBooking) -> Optional[Conflict]:
        commitments = await self.repository.get_commitments(
            candidate.provider_id, candidate.date, candidate.date, candidate.chair_id,
        )
        return check_conflict(candidate, commitments)

    async def get_availability(self, query: AvailabilityQuery) -> Dict[str, Any]:
        """
        Free intervals and bookable slots for a provider on a date.

        Returns:
            Dict with the date, free intervals and slot grid
        """
        commitments = await self.repository.get_commitments(
            query.provider_id, query.date, query.date, query.chair_id,
        )
        blocks = await self.repository.get_schedule_blocks(query.provider_id, query.date)
        intervals = find_free_intervals(
            query.provider_id,
            query.date,
            query.duration,
            commitments,
            schedule_blocks=blocks,
            appointment_type_id=query.appointment_type_id,
            chair_id=query.chair_id,
        )
        slots = split_into_slots(intervals, query.duration, self.settings.default_slot_minutes)
        return {
            "provider_id": query.provider_id,
            "date": query.date.isoformat(),
            "duration": query.duration,
            "free_intervals": [i.to_dict() for i in intervals],
            "slots": [s.to_dict() for s in slots],
        }

    async def list_series(
        self,
        patient_id: Optional[str] = None,
        provider_id: Optional[str] = None,
        appointment_type_id: Optional[str] = None,
        status: Optional[RecurringStatus] = None,
        pattern: Optional[RecurrencePattern] = None,
        search: Optional[str] = None,
        page: int = 1,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> Page:
        """The acting clinic's series, filtered and paged."""
        series_list = await self.repository.list_series(self.clinic_context.get_clinic_id())
        return materializer.filter_series(
            series_list,
            patient_id=patient_id,
            provider_id=provider_id,
            appointment_type_id=appointment_type_id,
            status=status,
            pattern=pattern,
            search=search,
            page=page,
            page_size=page_size,
        )

    async def list_occurrences(
        self,
        series_id: str,
        status: Optional[OccurrenceStatus] = None,
        from_date: Optional[date] = None,
        to_date: Optional[date] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> Page:
        series = await self.repository.get_series(series_id)
        return materializer.list_occurrences(series, status, from_date, to_date, page, page_size)

    # ========================================================================
    # Series creation & materialization
    # ========================================================================

    async def create_series(
        self,
        payload: Any,
        actor: Optional[str] = None,
    ) -> Tuple[RecurringAppointmentSeries, MaterializationResult]:
        """
        Create a recurring series and generate its first occurrences.

        The series is saved first and then materialized once with
        conflicting dates skipped, so a busy calendar never blocks creation.

        Raises:
            InvalidScheduleError: If the payload is invalid
            InvalidRecurrenceSpecError: If the rule exceeds the configured caps
            NotFoundError: If the patient, provider or appointment type is unknown
        """
        request = parse_model(CreateSeriesRequest, payload, InvalidScheduleError)
        self._check_limits(request.recurrence)
        if request.duration > self.settings.max_appointment_minutes:
            raise InvalidScheduleError([{
                "loc": "duration",
                "msg": f"Duration cannot exceed {self.settings.max_appointment_minutes} minutes",
            }])

        await self.repository.get_patient(request.patient_id)
        await self.repository.get_provider(request.provider_id)
        await self.repository.get_appointment_type(request.appointment_type_id)

        series = parse_model(
            RecurringAppointmentSeries,
            {**dict(request), "clinic_id": self.clinic_context.get_clinic_id()},
            InvalidScheduleError,
        )
        async with self.repository.unit_of_work() as uow:
            await uow.commit(series)

        logger.info(
            f"Created {series.recurrence.pattern.value} series {series.id} "
            f"for patient {series.patient_id} with {series.provider_id}"
        )
        await self._record("create", "recurring_series", series.id, actor, metadata={
            "patient_id": series.patient_id,
            "provider_id": series.provider_id,
            "pattern": series.recurrence.pattern.value,
        })

        result = await self.materialize(series.id, actor=actor)
        return await self.repository.get_series(series.id), result

    async def materialize(
        self,
        series_id: str,
        request: Optional[MaterializeRequest] = None,
        actor: Optional[str] = None,
    ) -> MaterializationResult:
        """
        Materialize a series for a window.

        The conflict check and the write happen inside one unit of work, so
        two concurrent requests cannot both book the same slot.
        """
        request = request or MaterializeRequest()

        async with self.repository.unit_of_work() as uow:
            series = await self.repository.get_series(series_id)
            start, end = materializer.resolve_window(
                series, request.window_start, request.window_end, self.settings.default_generation_days,
            )
            load_end = end or series.recurrence.end_date or start
            commitments = await uow.load_commitments(series.provider_id, start, load_end, series.chair_id)
            result = materializer.materialize(
                series,
                commitments,
                window_start=start,
                window_end=end,
                skip_conflicts=request.skip_conflicts,
                default_horizon_days=self.settings.default_generation_days,
                run_cap=self.settings.max_occurrences_cap,
            )
            if not result.aborted and result.created:
                await uow.commit(materializer.record_materialization(series, result), result.created)

        summary = result.summary()
        if result.aborted:
            logger.warning(
                f"Materialization of series {series_id} aborted: "
                f"conflict on {result.conflicts[-1].isoformat()}"
            )
            await self._record("materialize", "recurring_series", series_id, actor, "failure", summary)
        else:
            logger.info(
                f"Materialized series {series_id}: {len(result.created)} created, "
                f"{len(result.conflicts)} conflict(s)"
            )
            outcome = "partial" if result.conflicts else "success"
            await self._record("materialize", "recurring_series", series_id, actor, outcome, summary)
        return result

    async def update_occurrence(
        self,
        series_id: str,
        occurrence_number: int,
        update: OccurrenceUpdate,
        actor: Optional[str] = None,
    ) -> Occurrence:
        """
        Reschedule or skip a single occurrence.

        A reschedule is checked against current commitments, ignoring the
        occurrence's own booking.

        Raises:
            InvalidOccurrenceTransitionError: If the move is not allowed or
                the new slot conflicts
        """
        today = self.today()
        async with self.repository.unit_of_work() as uow:
            series = await self.repository.get_series(series_id)

            if update.status == OccurrenceStatus.SKIPPED:
                series, occurrence = materializer.skip_occurrence(
                    series, occurrence_number, today, update.skipped_reason, actor,
                )
                action = "skip_occurrence"
            else:
                current = materializer.find_occurrence(series, occurrence_number)
                series, occurrence = materializer.reschedule_occurrence(
                    series, occurrence_number, today, update.scheduled_date, update.scheduled_time, actor,
                )
                commitments = await uow.load_commitments(
                    series.provider_id, occurrence.scheduled_date, occurrence.scheduled_date, series.chair_id,
                )
                conflict = check_conflict(
                    CandidateBooking(
                        provider_id=series.provider_id,
                        chair_id=series.chair_id,
                        appointment_type_id=series.appointment_type_id,
                        date=occurrence.scheduled_date,
                        start_time=occurrence.scheduled_time,
                        end_time=materializer.occurrence_end_time(series, occurrence),
                        exclude_appointment_id=current.appointment_id,
                    ),
                    commitments,
                )
                if conflict is not None:
                    raise InvalidOccurrenceTransitionError(
                        f"Cannot reschedule occurrence #{occurrence_number}: {conflict.message}",
                        details=conflict.to_dict(),
                    )
                action = "reschedule_occurrence"

            await uow.commit(series)

        await self._record(action, "occurrence", occurrence.id, actor, metadata={
            "series_id": series_id,
            "occurrence_number": occurrence_number,
            "scheduled_date": occurrence.scheduled_date.isoformat(),
            "scheduled_time": occurrence.scheduled_time,
        })
        return occurrence

    # ========================================================================
    # Series lifecycle
    # ========================================================================

    async def cancel_series(self, series_id: str, actor: Optional[str] = None) -> Dict[str, Any]:
        today = self.today()
        async with self.repository.unit_of_work() as uow:
            series = await self.repository.get_series(series_id)
            series, cancelled = materializer.cancel_series(series, today)
            await uow.commit(series)

        logger.info(f"Cancelled series {series_id}: {len(cancelled)} future occurrence(s) cancelled")
        summary = {
            "series_id": series_id,
            "status": series.status.value,
            "cancelled_occurrences": len(cancelled),
        }
        await self._record("cancel", "recurring_series", series_id, actor, metadata=summary)
        return summary

    async def _change_status(self, series_id: str, transition, action: str, actor: Optional[str]):
        async with self.repository.unit_of_work() as uow:
            series = transition(await self.repository.get_series(series_id))
            await uow.commit(series)
        await self._record(action, "recurring_series", series_id, actor, metadata={
            "status": series.status.value,
        })
        return series

    async def pause_series(self, series_id: str, actor: Optional[str] = None):
        return await self._change_status(series_id, materializer.pause_series, "pause", actor)

    async def resume_series(self, series_id: str, actor: Optional[str] = None):
        return await self._change_status(series_id, materializer.resume_series, "resume", actor)

    async def complete_series(self, series_id: str, actor: Optional[str] = None):
        return await self._change_status(series_id, materializer.complete_series, "complete", actor)

    # ========================================================================
    # Booking templates
    # ========================================================================

    async def validate_template(self, payload: Any) -> BookingTemplate:
        return parse_template(payload)

    async def create_template(self, payload: Any, actor: Optional[str] = None) -> BookingTemplate:
        """Validate a booking template and store it for later application."""
        template = parse_template(payload)
        async with self.repository.unit_of_work() as uow:
            await uow.save_template(template)

        logger.info(f"Saved {template.template_type.value} template {template.id} ({len(template.blocks)} block(s))")
        await self._record("create", "booking_template", template.id, actor, metadata={
            "name": template.name,
            "provider_id": template.provider_id,
            "block_count": len(template.blocks),
        })
        return template

    async def apply_template(
        self,
        template_id: str,
        request: ApplyTemplateRequest,
        actor: Optional[str] = None,
    ) -> TemplateApplication:
        """Materialize a stored template onto a provider (or clinic-wide)."""
        template = await self.repository.get_template(template_id)
        provider_id = request.provider_id or template.provider_id

        async with self.repository.unit_of_work() as uow:
            existing = await self.repository.get_applied_blocks(
                provider_id, request.date_range_start, request.date_range_end,
            )
            application = apply_template(
                template,
                provider_id,
                request.date_range_start,
                request.date_range_end,
                existing=existing,
                override_existing=request.override_existing,
            )
            await uow.save_applied_blocks(
                provider_id, application.applied_blocks, application.replaced_dates,
            )

        summary = application.summary()
        logger.info(
            f"Applied template {template_id} to {provider_id or 'clinic'}: "
            f"{len(application.applied_dates)} date(s), {len(application.skipped_dates)} skipped"
        )
        await self._record("apply_template", "booking_template", template_id, actor, metadata=summary)
        return application
