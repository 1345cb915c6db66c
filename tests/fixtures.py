"""
Test fixtures for the scheduling core
"""

from datetime import date

from ortho_scheduling.models.scheduling import (
    BookedAppointment,
    ProviderSchedule,
    RecurrenceSpec,
    RecurringAppointmentSeries,
    ScheduleBlock,
)

# Sample test data
TEST_CLINIC_ID = 'test-clinic-001'
TEST_PROVIDER_ID = 'dr-alvarez'
TEST_CHAIR_ID = 'chair-1'
TEST_PATIENT_ID = 'patient-001'
ADJUSTMENT_TYPE_ID = 'adjustment'
CONSULT_TYPE_ID = 'consult'

# Monday 2025-01-06; the week runs Sunday 01-05 .. Saturday 01-11
MONDAY = date(2025, 1, 6)


def create_schedule(day_of_week, **kwargs):
    """Create a provider schedule row (08:00-17:00, lunch 12:00-13:00)"""
    return ProviderSchedule(
        provider_id=kwargs.get('provider_id', TEST_PROVIDER_ID),
        day_of_week=day_of_week,
        start_time=kwargs.get('start_time', '08:00'),
        end_time=kwargs.get('end_time', '17:00'),
        is_working_day=kwargs.get('is_working_day', True),
        breaks=kwargs.get('breaks', []),
        lunch_start_time=kwargs.get('lunch_start_time', '12:00'),
        lunch_end_time=kwargs.get('lunch_end_time', '13:00'),
        auto_block_lunch=kwargs.get('auto_block_lunch', True),
        effective_from=kwargs.get('effective_from'),
        effective_to=kwargs.get('effective_to'),
    )


def create_work_week(**kwargs):
    """Monday-Friday schedule rows"""
    return [create_schedule(dow, **kwargs) for dow in range(1, 6)]


def create_appointment(appointment_date, start_time, end_time, **kwargs):
    """Create a booked appointment"""
    return BookedAppointment(
        provider_id=kwargs.get('provider_id', TEST_PROVIDER_ID),
        chair_id=kwargs.get('chair_id'),
        patient_id=kwargs.get('patient_id', 'patient-999'),
        appointment_type_id=kwargs.get('appointment_type_id', ADJUSTMENT_TYPE_ID),
        appointment_date=appointment_date,
        start_time=start_time,
        end_time=end_time,
        status=kwargs.get('status', 'SCHEDULED'),
    )


def create_block(day_of_week, start_time, end_time, **kwargs):
    """Create a template schedule block"""
    return ScheduleBlock(
        day_of_week=day_of_week,
        start_time=start_time,
        end_time=end_time,
        appointment_type_ids=kwargs.get('appointment_type_ids', []),
        is_blocked=kwargs.get('is_blocked', False),
        block_reason=kwargs.get('block_reason'),
        label=kwargs.get('label'),
    )


def create_series(**kwargs):
    """Create a weekly recurring series (Mon/Wed/Fri 09:00, 30 min)"""
    recurrence = kwargs.get('recurrence') or RecurrenceSpec(
        pattern=kwargs.get('pattern', 'WEEKLY'),
        days_of_week=kwargs.get('days_of_week', [1, 3, 5]),
        start_date=kwargs.get('start_date', MONDAY),
        max_occurrences=kwargs.get('max_occurrences', 6),
    )
    return RecurringAppointmentSeries(
        id=kwargs.get('id', 'series-001'),
        clinic_id=TEST_CLINIC_ID,
        patient_id=kwargs.get('patient_id', TEST_PATIENT_ID),
        provider_id=kwargs.get('provider_id', TEST_PROVIDER_ID),
        appointment_type_id=kwargs.get('appointment_type_id', ADJUSTMENT_TYPE_ID),
        chair_id=kwargs.get('chair_id'),
        duration=kwargs.get('duration', 30),
        preferred_time=kwargs.get('preferred_time', '09:00'),
        recurrence=recurrence,
        status=kwargs.get('status', 'ACTIVE'),
    )


def create_series_payload(**kwargs):
    """Request body for creating a weekly Mon/Wed/Fri series"""
    payload = {
        'patient_id': TEST_PATIENT_ID,
        'provider_id': TEST_PROVIDER_ID,
        'appointment_type_id': ADJUSTMENT_TYPE_ID,
        'duration': 30,
        'preferred_time': '09:00',
        'recurrence': {
            'pattern': 'WEEKLY',
            'days_of_week': [1, 3, 5],
            'start_date': MONDAY.isoformat(),
            'max_occurrences': 6,
        },
    }
    payload.update(kwargs)
    return payload
