"""
Tests for free-interval resolution
"""

from datetime import date, datetime

import pytest

from ortho_scheduling.models.scheduling import ExistingCommitments, ScheduleExceptionBlock
from ortho_scheduling.services.scheduling.availability_resolver import (
    find_free_intervals,
    split_into_slots,
)
from ortho_scheduling.utils.time_ranges import TimeRange

from tests.fixtures import (
    ADJUSTMENT_TYPE_ID,
    CONSULT_TYPE_ID,
    MONDAY,
    TEST_CHAIR_ID,
    TEST_PROVIDER_ID,
    create_appointment,
    create_block,
)


def as_strings(intervals):
    return [str(i) for i in intervals]


class TestFindFreeIntervals:
    """Working hours minus everything already committed"""

    def test_empty_day_has_morning_and_afternoon(self, commitments):
        free = find_free_intervals(TEST_PROVIDER_ID, MONDAY, 30, commitments)

        assert as_strings(free) == ["08:00-12:00", "13:00-17:00"]

    def test_appointments_are_removed(self, work_week):
        existing = ExistingCommitments(schedules=work_week, appointments=[
            create_appointment(MONDAY, "09:00", "10:00"),
            create_appointment(MONDAY, "15:00", "15:30", status="CANCELLED"),
        ])

        free = find_free_intervals(TEST_PROVIDER_ID, MONDAY, 30, existing)

        assert as_strings(free) == ["08:00-09:00", "10:00-12:00", "13:00-17:00"]

    def test_short_gaps_are_dropped(self, work_week):
        existing = ExistingCommitments(schedules=work_week, appointments=[
            create_appointment(MONDAY, "08:20", "12:00"),
        ])

        free = find_free_intervals(TEST_PROVIDER_ID, MONDAY, 30, existing)

        assert as_strings(free) == ["13:00-17:00"]

    def test_chair_bookings_only_count_when_chair_requested(self, work_week):
        existing = ExistingCommitments(schedules=work_week, appointments=[
            create_appointment(MONDAY, "13:00", "15:00", provider_id="dr-other", chair_id=TEST_CHAIR_ID),
        ])

        assert as_strings(find_free_intervals(TEST_PROVIDER_ID, MONDAY, 30, existing)) == [
            "08:00-12:00", "13:00-17:00",
        ]
        assert as_strings(find_free_intervals(
            TEST_PROVIDER_ID, MONDAY, 30, existing, chair_id=TEST_CHAIR_ID,
        )) == ["08:00-12:00", "15:00-17:00"]

    def test_exception_blocks_are_removed(self, work_week):
        block = ScheduleExceptionBlock(
            provider_id=TEST_PROVIDER_ID,
            title="Staff meeting",
            block_type="MEETING",
            start_datetime=datetime(2025, 1, 6, 8),
            end_datetime=datetime(2025, 1, 6, 9, 30),
        )
        existing = ExistingCommitments(schedules=work_week, exception_blocks=[block])

        free = find_free_intervals(TEST_PROVIDER_ID, MONDAY, 30, existing)

        assert as_strings(free)[0] == "09:30-12:00"

    def test_template_blocks_filter_by_type(self, commitments):
        blocks = [
            create_block(1, "08:00", "10:00", appointment_type_ids=[CONSULT_TYPE_ID]),
            create_block(1, "15:00", "17:00", is_blocked=True),
        ]

        consult = find_free_intervals(
            TEST_PROVIDER_ID, MONDAY, 30, commitments, blocks, appointment_type_id=CONSULT_TYPE_ID,
        )
        adjustment = find_free_intervals(
            TEST_PROVIDER_ID, MONDAY, 30, commitments, blocks, appointment_type_id=ADJUSTMENT_TYPE_ID,
        )
        any_type = find_free_intervals(TEST_PROVIDER_ID, MONDAY, 30, commitments, blocks)

        assert as_strings(consult) == ["08:00-12:00", "13:00-15:00"]
        assert as_strings(adjustment) == ["10:00-12:00", "13:00-15:00"]
        assert as_strings(any_type) == ["08:00-12:00", "13:00-15:00"]

    def test_day_off_returns_empty(self, commitments):
        assert find_free_intervals(TEST_PROVIDER_ID, date(2025, 1, 5), 30, commitments) == []

    def test_fully_booked_returns_empty(self, work_week):
        existing = ExistingCommitments(schedules=work_week, appointments=[
            create_appointment(MONDAY, "08:00", "12:00"),
            create_appointment(MONDAY, "13:00", "17:00"),
        ])
        assert find_free_intervals(TEST_PROVIDER_ID, MONDAY, 15, existing) == []

    @pytest.mark.parametrize("minimum", [15, 45, 90, 240])
    def test_duration_floor(self, work_week, minimum):
        existing = ExistingCommitments(schedules=work_week, appointments=[
            create_appointment(MONDAY, "08:40", "09:00"),
            create_appointment(MONDAY, "10:00", "11:15"),
            create_appointment(MONDAY, "14:00", "14:20"),
        ])

        free = find_free_intervals(TEST_PROVIDER_ID, MONDAY, minimum, existing)

        assert all(i.duration >= minimum for i in free)
        assert free == sorted(free)

    def test_minimum_must_be_positive(self, commitments):
        with pytest.raises(ValueError):
            find_free_intervals(TEST_PROVIDER_ID, MONDAY, 0, commitments)


class TestSplitIntoSlots:
    """Slot grids"""

    def test_back_to_back_slots(self):
        slots = split_into_slots([TimeRange(480, 600)], 30)
        assert as_strings(slots) == ["08:00-08:30", "08:30-09:00", "09:00-09:30", "09:30-10:00"]

    def test_step_smaller_than_duration(self):
        slots = split_into_slots([TimeRange(480, 570)], 60, step=15)
        assert as_strings(slots) == ["08:00-09:00", "08:15-09:15", "08:30-09:30"]

    def test_leftover_is_dropped(self):
        assert as_strings(split_into_slots([TimeRange(480, 530)], 30)) == ["08:00-08:30"]

    def test_multiple_intervals_in_order(self):
        slots = split_into_slots([TimeRange(780, 840), TimeRange(480, 510)], 30)
        assert as_strings(slots) == ["08:00-08:30", "13:00-13:30", "13:30-14:00"]
