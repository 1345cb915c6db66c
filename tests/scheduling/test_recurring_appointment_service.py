"""
Tests for the async recurring appointment service
"""

import asyncio
from datetime import date

import pytest

from ortho_scheduling.config import SchedulingSettings
from ortho_scheduling.constants import (
    AppointmentStatus,
    ConflictKind,
    OccurrenceStatus,
    RecurrencePattern,
    RecurringStatus,
)
from ortho_scheduling.exceptions import (
    CannotModifyPastError,
    InvalidOccurrenceTransitionError,
    InvalidRecurrenceSpecError,
    InvalidScheduleError,
    NotFoundError,
    OverlapError,
    SeriesNotActiveError,
)
from ortho_scheduling.models.scheduling import (
    ApplyTemplateRequest,
    AvailabilityQuery,
    BookingTemplate,
    CandidateBooking,
    MaterializeRequest,
    OccurrenceUpdate,
    RecurrenceSpec,
)
from ortho_scheduling.services.recurring_appointment_service import RecurringAppointmentService
from ortho_scheduling.storage import StaticClinicContext

from tests.fixtures import (
    ADJUSTMENT_TYPE_ID,
    CONSULT_TYPE_ID,
    MONDAY,
    TEST_CLINIC_ID,
    TEST_PATIENT_ID,
    TEST_PROVIDER_ID,
    create_appointment,
    create_block,
    create_series,
    create_series_payload,
)


def bookings_for(store, series_id):
    series = store.series[series_id]
    return [store.appointments[o.appointment_id] for o in series.occurrences]


class TestQueries:
    """Read-only operations"""

    @pytest.mark.asyncio
    async def test_preview_recurrence(self, service):
        dates = await service.preview_recurrence({
            "pattern": "BIWEEKLY",
            "days_of_week": [2],
            "start_date": "2025-01-07",
            "max_occurrences": 3,
        })

        assert dates == [date(2025, 1, 7), date(2025, 1, 21), date(2025, 2, 4)]

    @pytest.mark.asyncio
    async def test_preview_respects_configured_cap(self, store, audit):
        service = RecurringAppointmentService(
            store, StaticClinicContext(TEST_CLINIC_ID), audit,
            settings=SchedulingSettings(_env_file=None, max_occurrences_cap=10),
        )

        with pytest.raises(InvalidRecurrenceSpecError) as exc_info:
            await service.preview_recurrence({
                "pattern": "DAILY", "start_date": "2025-01-06", "max_occurrences": 20,
            })

        assert exc_info.value.violations[0]["loc"] == "max_occurrences"

    @pytest.mark.asyncio
    async def test_check_conflict_reads_store(self, service, store):
        store.add_appointment(create_appointment(MONDAY, "09:00", "09:30"))

        conflict = await service.check_conflict(CandidateBooking(
            provider_id=TEST_PROVIDER_ID, date=MONDAY, start_time="09:00", end_time="09:45",
        ))

        assert conflict.kind == ConflictKind.PROVIDER_DOUBLE_BOOKED

    @pytest.mark.asyncio
    async def test_availability_slot_grid(self, service, store):
        store.add_appointment(create_appointment(MONDAY, "08:00", "11:00"))

        availability = await service.get_availability(AvailabilityQuery(
            provider_id=TEST_PROVIDER_ID, date=MONDAY, duration=60,
        ))

        assert [i["start_time"] for i in availability["free_intervals"]] == ["11:00", "13:00"]
        assert [s["start_time"] for s in availability["slots"]] == [
            "11:00", "13:00", "13:30", "14:00", "14:30", "15:00", "15:30", "16:00",
        ]

    @pytest.mark.asyncio
    async def test_unknown_series(self, service):
        with pytest.raises(NotFoundError) as exc_info:
            await service.list_occurrences("missing")

        assert exc_info.value.code == "RECURRING_NOT_FOUND"


class TestSeriesCreation:
    """Creating a series and its first occurrences"""

    @pytest.mark.asyncio
    async def test_create_saves_and_materializes_once(self, service, store, audit):
        series, result = await service.create_series(create_series_payload(), actor="front-desk")

        assert series.clinic_id == TEST_CLINIC_ID
        assert series.status == RecurringStatus.ACTIVE
        assert len(result.created) == 6
        assert series.occurrences_created == 6
        assert store.series[series.id].occurrences == series.occurrences
        assert len(store.appointments) == 6
        assert [e.action for e in audit.events] == ["create", "materialize"]
        assert audit.events[0].user_id == "front-desk"

    @pytest.mark.asyncio
    async def test_conflicting_dates_do_not_block_creation(self, service, store):
        store.add_appointment(create_appointment(date(2025, 1, 8), "09:00", "09:30"))

        series, result = await service.create_series(create_series_payload())

        assert result.conflicts == [date(2025, 1, 8)]
        assert len(result.created) == 5
        assert series.id in store.series

    @pytest.mark.asyncio
    async def test_bookkeeping_fields_come_from_the_server(self, service):
        payload = create_series_payload(status="CANCELLED", occurrences_created=40, id="chosen-by-client")

        series, _ = await service.create_series(payload)

        assert series.status == RecurringStatus.ACTIVE
        assert series.id != "chosen-by-client"
        assert series.occurrences_created == 6

    @pytest.mark.asyncio
    @pytest.mark.parametrize("field,code", [
        ("patient_id", "PATIENT_NOT_FOUND"),
        ("provider_id", "PROVIDER_NOT_FOUND"),
        ("appointment_type_id", "APPOINTMENT_TYPE_NOT_FOUND"),
    ])
    async def test_unknown_reference(self, service, store, audit, field, code):
        with pytest.raises(NotFoundError) as exc_info:
            await service.create_series(create_series_payload(**{field: "nobody"}))

        assert exc_info.value.code == code
        assert store.series == {}
        assert audit.events == []

    @pytest.mark.asyncio
    async def test_invalid_payload_reports_every_violation(self, service):
        payload = create_series_payload(duration=0, preferred_time="25:00")

        with pytest.raises(InvalidScheduleError) as exc_info:
            await service.create_series(payload)

        assert {v["loc"] for v in exc_info.value.violations} == {"duration", "preferred_time"}

    @pytest.mark.asyncio
    async def test_configured_caps_apply(self, store, audit):
        service = RecurringAppointmentService(
            store, StaticClinicContext(TEST_CLINIC_ID), audit,
            settings=SchedulingSettings(_env_file=None, max_occurrences_cap=10, max_appointment_minutes=60),
            today=lambda: date(2025, 1, 1),
        )
        too_many = create_series_payload()
        too_many["recurrence"] = {**too_many["recurrence"], "max_occurrences": 12}

        with pytest.raises(InvalidRecurrenceSpecError):
            await service.create_series(too_many)
        with pytest.raises(InvalidScheduleError):
            await service.create_series(create_series_payload(duration=90))
        assert store.series == {}

    @pytest.mark.asyncio
    async def test_end_date_series_is_capped_per_run(self, store, audit):
        """Daily visits for two years: each run books at most the configured cap"""
        service = RecurringAppointmentService(
            store, StaticClinicContext(TEST_CLINIC_ID), audit,
            settings=SchedulingSettings(_env_file=None, max_occurrences_cap=10),
            today=lambda: date(2025, 1, 1),
        )
        payload = create_series_payload(recurrence={
            "pattern": "DAILY", "start_date": "2025-01-06", "end_date": "2026-12-31",
        })

        _, result = await service.create_series(payload)

        assert result.truncated
        assert len(result.created) + len(result.conflicts) == 10


class TestListSeries:
    """Filtering and paging series"""

    @pytest.fixture
    def listed(self, store):
        store.add_series(create_series(id="series-a"))
        store.add_series(create_series(id="series-b", patient_id="patient-002", status="PAUSED"))
        store.add_series(create_series(
            id="series-c",
            recurrence=RecurrenceSpec(pattern="MONTHLY", day_of_month=6, start_date=MONDAY, max_occurrences=3),
        ).model_copy(update={"name": "Upper arch adjustments"}))
        store.add_series(create_series(id="series-d").model_copy(update={"clinic_id": "other-clinic"}))
        return store

    @pytest.mark.asyncio
    async def test_only_the_acting_clinic(self, service, listed):
        page = await service.list_series()

        assert [s.id for s in page.items] == ["series-a", "series-b", "series-c"]
        assert page.total == 3

    @pytest.mark.asyncio
    async def test_filters(self, service, listed):
        by_patient = await service.list_series(patient_id=TEST_PATIENT_ID)
        paused = await service.list_series(status=RecurringStatus.PAUSED)
        monthly = await service.list_series(pattern=RecurrencePattern.MONTHLY)
        by_type = await service.list_series(appointment_type_id=CONSULT_TYPE_ID)
        searched = await service.list_series(search="upper ARCH")

        assert [s.id for s in by_patient.items] == ["series-a", "series-c"]
        assert [s.id for s in paused.items] == ["series-b"]
        assert [s.id for s in monthly.items] == ["series-c"]
        assert by_type.items == []
        assert [s.id for s in searched.items] == ["series-c"]

    @pytest.mark.asyncio
    async def test_paging(self, service, listed):
        page = await service.list_series(page=2, page_size=2)

        assert [s.id for s in page.items] == ["series-c"]
        assert page.total_pages == 2
        with pytest.raises(ValueError):
            await service.list_series(page_size=101)


class TestMaterialize:
    """Materialization through the unit of work"""

    @pytest.mark.asyncio
    async def test_creates_occurrences_and_bookings(self, service, store, audit):
        store.add_series(create_series())

        result = await service.materialize("series-001", actor="front-desk")

        assert len(result.created) == 6
        saved = store.series["series-001"]
        assert saved.occurrences_created == 6
        assert all(o.appointment_id for o in saved.occurrences)
        bookings = bookings_for(store, "series-001")
        assert {(b.start_time, b.end_time) for b in bookings} == {("09:00", "09:30")}
        assert bookings[0].patient_id == saved.patient_id

        event = audit.events[-1]
        assert event.action == "materialize"
        assert event.outcome == "success"
        assert event.clinic_id == TEST_CLINIC_ID
        assert event.user_id == "front-desk"

    @pytest.mark.asyncio
    async def test_second_run_is_idempotent(self, service, store):
        store.add_series(create_series())
        await service.materialize("series-001")

        result = await service.materialize("series-001")

        assert result.created == []
        assert len(store.series["series-001"].occurrences) == 6
        assert len(store.appointments) == 6

    @pytest.mark.asyncio
    async def test_aborted_run_writes_nothing(self, service, store, audit):
        store.add_series(create_series())
        store.add_appointment(create_appointment(date(2025, 1, 10), "09:00", "09:30"))

        result = await service.materialize("series-001", MaterializeRequest(skip_conflicts=False))

        assert result.aborted
        assert store.series["series-001"].occurrences == []
        assert len(store.appointments) == 1
        assert audit.events[-1].outcome == "failure"

    @pytest.mark.asyncio
    async def test_partial_run_is_audited(self, service, store, audit):
        store.add_series(create_series())
        store.add_appointment(create_appointment(date(2025, 1, 10), "09:00", "09:30"))

        result = await service.materialize("series-001")

        assert len(result.created) == 5
        assert audit.events[-1].outcome == "partial"
        assert audit.events[-1].metadata["conflicts"] == ["2025-01-10"]

    @pytest.mark.asyncio
    async def test_concurrent_series_cannot_double_book(self, service, store):
        store.add_series(create_series(id="series-a"))
        store.add_series(create_series(id="series-b", patient_id="patient-002"))

        first, second = await asyncio.gather(
            service.materialize("series-a"),
            service.materialize("series-b"),
        )

        assert sorted([len(first.created), len(second.created)]) == [0, 6]
        assert len(store.appointments) == 6

    @pytest.mark.asyncio
    async def test_paused_series_is_rejected(self, service, store):
        store.add_series(create_series(status="PAUSED"))

        with pytest.raises(SeriesNotActiveError):
            await service.materialize("series-001")


class TestOccurrenceUpdates:
    """Reschedule and skip through the service"""

    @pytest.fixture
    async def booked(self, service, store):
        store.add_series(create_series())
        await service.materialize("series-001")
        return store

    @pytest.mark.asyncio
    async def test_reschedule_moves_booking(self, service, booked):
        occurrence = await service.update_occurrence(
            "series-001", 1, OccurrenceUpdate(scheduled_time="09:15"), actor="front-desk",
        )

        assert occurrence.status == OccurrenceStatus.MODIFIED
        booking = booked.appointments[occurrence.appointment_id]
        assert (booking.start_time, booking.end_time) == ("09:15", "09:45")
        assert len(booked.appointments) == 6

    @pytest.mark.asyncio
    async def test_reschedule_into_conflict_is_rejected(self, service, booked):
        booked.add_appointment(create_appointment(date(2025, 1, 8), "10:00", "10:30"))

        with pytest.raises(InvalidOccurrenceTransitionError) as exc_info:
            await service.update_occurrence("series-001", 2, OccurrenceUpdate(scheduled_time="10:00"))

        assert exc_info.value.details["kind"] == ConflictKind.PROVIDER_DOUBLE_BOOKED.value
        assert booked.series["series-001"].occurrences[1].status == OccurrenceStatus.SCHEDULED

    @pytest.mark.asyncio
    async def test_reschedule_into_lunch_is_rejected(self, service, booked):
        with pytest.raises(InvalidOccurrenceTransitionError):
            await service.update_occurrence("series-001", 3, OccurrenceUpdate(scheduled_time="12:00"))

    @pytest.mark.asyncio
    async def test_past_occurrence_cannot_be_edited(self, store, audit, settings, booked):
        later = RecurringAppointmentService(
            store, StaticClinicContext(TEST_CLINIC_ID), audit, settings=settings,
            today=lambda: date(2025, 1, 9),
        )

        with pytest.raises(CannotModifyPastError) as exc_info:
            await later.update_occurrence("series-001", 1, OccurrenceUpdate(scheduled_time="10:00"))

        assert exc_info.value.code == "CANNOT_MODIFY_PAST"
        assert booked.series["series-001"].occurrences[0].status == OccurrenceStatus.SCHEDULED

    @pytest.mark.asyncio
    async def test_skip_frees_the_slot(self, service, booked):
        occurrence = await service.update_occurrence(
            "series-001", 3, OccurrenceUpdate(status="SKIPPED", skipped_reason="Travel"),
        )

        assert occurrence.status == OccurrenceStatus.SKIPPED
        assert booked.appointments[occurrence.appointment_id].status == AppointmentStatus.CANCELLED
        conflict = await service.check_conflict(CandidateBooking(
            provider_id=TEST_PROVIDER_ID, date=date(2025, 1, 10), start_time="09:00", end_time="09:30",
        ))
        assert conflict is None


class TestSeriesLifecycle:
    """Cancel, pause, resume and complete"""

    @pytest.mark.asyncio
    async def test_cancel_series_cancels_bookings(self, service, store, audit):
        store.add_series(create_series())
        await service.materialize("series-001")

        summary = await service.cancel_series("series-001")

        assert summary == {"series_id": "series-001", "status": "CANCELLED", "cancelled_occurrences": 6}
        assert all(b.status == AppointmentStatus.CANCELLED for b in store.appointments.values())
        assert audit.events[-1].action == "cancel"

    @pytest.mark.asyncio
    async def test_pause_and_resume(self, service, store):
        store.add_series(create_series())

        paused = await service.pause_series("series-001")
        assert paused.status == RecurringStatus.PAUSED
        assert store.series["series-001"].status == RecurringStatus.PAUSED

        resumed = await service.resume_series("series-001")
        assert resumed.status == RecurringStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_complete_is_terminal(self, service, store):
        store.add_series(create_series())
        await service.complete_series("series-001")

        with pytest.raises(InvalidOccurrenceTransitionError):
            await service.resume_series("series-001")


class TestTemplates:
    """Template validation and application"""

    @pytest.mark.asyncio
    async def test_apply_template_restricts_availability(self, service, store, audit):
        store.add_template(BookingTemplate(
            id="tpl-consults",
            name="Consult mornings",
            template_type="WEEK",
            blocks=[
                create_block(1, "08:00", "10:00", appointment_type_ids=[CONSULT_TYPE_ID]),
                create_block(1, "10:00", "17:00"),
            ],
        ))

        application = await service.apply_template("tpl-consults", ApplyTemplateRequest(
            provider_id=TEST_PROVIDER_ID, date_range_start=MONDAY, date_range_end=date(2025, 1, 12),
        ))
        availability = await service.get_availability(AvailabilityQuery(
            provider_id=TEST_PROVIDER_ID, date=MONDAY, appointment_type_id=ADJUSTMENT_TYPE_ID,
        ))

        assert application.applied_dates == [MONDAY]
        assert len(store.applied_blocks) == 2
        assert [i["start_time"] for i in availability["free_intervals"]] == ["10:00", "13:00"]
        assert audit.events[-1].resource_id == "tpl-consults"

    @pytest.mark.asyncio
    async def test_unknown_template(self, service):
        with pytest.raises(NotFoundError):
            await service.apply_template("missing", ApplyTemplateRequest(
                date_range_start=MONDAY, date_range_end=MONDAY,
            ))

    @pytest.mark.asyncio
    async def test_validate_template(self, service):
        template = await service.validate_template({
            "name": "Ortho day",
            "template_type": "DAY",
            "slots": [{"start_time": "08:00", "end_time": "12:00"}],
        })

        assert len(template.blocks) == 7

    @pytest.mark.asyncio
    async def test_create_template_stores_it(self, service, store, audit):
        template = await service.create_template({
            "name": "Consult mornings",
            "template_type": "WEEK",
            "blocks": [{"day_of_week": 1, "start_time": "08:00", "end_time": "10:00",
                        "appointment_type_ids": [CONSULT_TYPE_ID]}],
        }, actor="office-manager")

        assert store.templates[template.id] == template
        assert audit.events[-1].action == "create"
        assert audit.events[-1].resource_type == "booking_template"
        assert await service.repository.get_template(template.id) == template

    @pytest.mark.asyncio
    async def test_invalid_template_is_not_stored(self, service, store):
        with pytest.raises(OverlapError):
            await service.create_template({
                "name": "Clash",
                "template_type": "WEEK",
                "blocks": [
                    {"day_of_week": 1, "start_time": "08:00", "end_time": "10:00"},
                    {"day_of_week": 1, "start_time": "09:00", "end_time": "11:00"},
                ],
            })

        assert store.templates == {}
