"""
Shared pytest fixtures
"""

import pytest

from ortho_scheduling.config import SchedulingSettings
from ortho_scheduling.models.scheduling import ExistingCommitments
from ortho_scheduling.services.recurring_appointment_service import RecurringAppointmentService
from ortho_scheduling.storage import (
    InMemoryAuditRecorder,
    InMemorySchedulingStore,
    StaticClinicContext,
)

from tests.fixtures import (
    ADJUSTMENT_TYPE_ID,
    CONSULT_TYPE_ID,
    MONDAY,
    TEST_CLINIC_ID,
    TEST_PATIENT_ID,
    create_series,
    create_work_week,
)


@pytest.fixture
def settings():
    """Settings that ignore the developer's environment"""
    return SchedulingSettings(_env_file=None, clinic_timezone="America/Los_Angeles")


@pytest.fixture
def work_week():
    """Monday-Friday 08:00-17:00 with lunch 12:00-13:00"""
    return create_work_week()


@pytest.fixture
def commitments(work_week):
    """Commitments with schedules only"""
    return ExistingCommitments(schedules=work_week)


@pytest.fixture
def series():
    """Mon/Wed/Fri 09:00 weekly series, 6 occurrences from 2025-01-06"""
    return create_series()


@pytest.fixture
def store(work_week):
    """In-memory store seeded with the work week, one patient and two visit types"""
    store = InMemorySchedulingStore()
    for schedule in work_week:
        store.add_schedule(schedule)
    store.add_patient(TEST_PATIENT_ID)
    store.add_appointment_type(ADJUSTMENT_TYPE_ID, duration=30)
    store.add_appointment_type(CONSULT_TYPE_ID, duration=60)
    return store


@pytest.fixture
def audit():
    return InMemoryAuditRecorder()


@pytest.fixture
def service(store, audit, settings):
    """Service pinned to 2025-01-01 (before every test series starts)"""
    return RecurringAppointmentService(
        repository=store,
        clinic_context=StaticClinicContext(TEST_CLINIC_ID),
        audit=audit,
        settings=settings,
        today=lambda: MONDAY.replace(day=1),
    )
