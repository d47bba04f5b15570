"""Tests for slot generation and busy-time filtering."""

from datetime import date, timedelta

import pytest

from clinic_booking.clinic_time import to_local
from clinic_booking.config import BookingConfig, ClinicConfig, parse_work_hours
from clinic_booking.errors import NoAvailabilityError
from clinic_booking.tools.availability import AvailabilityEngine
from tests.conftest import NOW, TZ, local, make_slot

MONDAY = date(2026, 6, 15)
TUESDAY = date(2026, 6, 16)
WEDNESDAY = date(2026, 6, 17)
SUNDAY = date(2026, 6, 21)


@pytest.fixture
def morning_clinic():
    return ClinicConfig(
        name="Morning Dental",
        address="",
        timezone=TZ,
        work_hours=parse_work_hours({"wed": {"start": "09:00", "end": "12:00"}}),
    )


@pytest.fixture
def morning_engine(calendar, morning_clinic, booking_config, clock):
    return AvailabilityEngine(calendar, morning_clinic, booking_config, clock=clock)


def _local_starts(slots):
    return [to_local(s.start, TZ).strftime("%H:%M") for s in slots]


class TestCandidateGrid:
    @pytest.mark.asyncio
    async def test_three_hour_morning_yields_six_half_hour_slots(self, morning_engine):
        slots = await morning_engine.available_slots("orthodontics", local(WEDNESDAY), local(WEDNESDAY + timedelta(days=1)))
        assert _local_starts(slots) == ["09:00", "09:30", "10:00", "10:30", "11:00", "11:30"]

    @pytest.mark.asyncio
    async def test_slot_length_follows_service_duration(self, availability):
        slots = await availability.available_slots("cleaning_prevention", local(TUESDAY), local(WEDNESDAY))
        assert slots
        assert all(s.end - s.start == timedelta(minutes=45) for s in slots)

    @pytest.mark.asyncio
    async def test_slots_are_step_aligned_and_inside_range(self, availability):
        start, end = local(TUESDAY, 8), local(TUESDAY, 13)
        slots = await availability.available_slots("implants", start, end)
        assert slots
        for slot in slots:
            assert start <= slot.start and slot.end <= end
            assert to_local(slot.start, TZ).minute in (0, 30)

    def test_last_slot_must_end_before_closing(self, morning_engine):
        slots = morning_engine.build_candidate_slots("implants", local(WEDNESDAY), local(WEDNESDAY + timedelta(days=1)))
        assert _local_starts(slots)[-1] == "11:00"

    @pytest.mark.asyncio
    async def test_result_is_capped(self, availability):
        slots = await availability.available_slots("orthodontics", local(TUESDAY), local(WEDNESDAY))
        assert len(slots) == 8
        assert _local_starts(slots)[0] == "09:00"

    @pytest.mark.asyncio
    async def test_closed_day_has_no_slots(self, availability):
        assert await availability.available_slots("orthodontics", local(SUNDAY), local(SUNDAY + timedelta(days=1))) == []

    @pytest.mark.asyncio
    async def test_require_slots_raises_when_empty(self, availability):
        with pytest.raises(NoAvailabilityError):
            await availability.require_slots("orthodontics", local(SUNDAY), local(SUNDAY + timedelta(days=1)))

    @pytest.mark.asyncio
    async def test_configured_duration_overrides_default(self, calendar, clinic_config, clock):
        config = BookingConfig(
            slot_step_minutes=60, max_slots=8, default_window_days=7, min_phone_digits=8,
            history_limit=6, service_durations={"orthodontics": 90, "other": 30},
        )
        engine = AvailabilityEngine(calendar, clinic_config, config, clock=clock)
        slots = await engine.available_slots("orthodontics", local(TUESDAY), local(WEDNESDAY))
        assert all(s.end - s.start == timedelta(minutes=90) for s in slots)
        assert _local_starts(slots)[:2] == ["09:00", "10:00"]


class TestBusyFiltering:
    @pytest.mark.asyncio
    async def test_busy_range_removes_overlapping_slot(self, calendar, morning_engine):
        calendar.block(local(WEDNESDAY, 10), local(WEDNESDAY, 10, 30))
        slots = await morning_engine.available_slots("orthodontics", local(WEDNESDAY), local(WEDNESDAY + timedelta(days=1)))
        assert _local_starts(slots) == ["09:00", "09:30", "10:30", "11:00", "11:30"]

    @pytest.mark.asyncio
    async def test_partial_overlap_removes_both_neighbours(self, calendar, morning_engine):
        calendar.block(local(WEDNESDAY, 10, 15), local(WEDNESDAY, 10, 45))
        slots = await morning_engine.available_slots("orthodontics", local(WEDNESDAY), local(WEDNESDAY + timedelta(days=1)))
        assert "10:00" not in _local_starts(slots)
        assert "10:30" not in _local_starts(slots)

    @pytest.mark.asyncio
    async def test_no_returned_slot_overlaps_busy_time(self, calendar, availability):
        calendar.block(local(TUESDAY, 9, 10), local(TUESDAY, 11, 5))
        busy = await calendar.get_busy_ranges(local(TUESDAY), local(WEDNESDAY))
        slots = await availability.available_slots("cleaning_prevention", local(TUESDAY), local(WEDNESDAY))
        assert slots
        assert not any(s.overlaps(b) for s in slots for b in busy)

    @pytest.mark.asyncio
    async def test_repeated_queries_are_identical(self, availability):
        first = await availability.available_slots("orthodontics", local(TUESDAY), local(WEDNESDAY))
        second = await availability.available_slots("orthodontics", local(TUESDAY), local(WEDNESDAY))
        assert [s.id for s in first] == [s.id for s in second]
        assert first == second


class TestRangePolicy:
    @pytest.mark.asyncio
    async def test_past_range_becomes_default_window(self, availability):
        slots = await availability.available_slots("orthodontics", local(date(2026, 6, 1)), local(date(2026, 6, 2)))
        assert slots
        assert slots[0].start >= NOW
        assert all(s.start < NOW + timedelta(days=8) for s in slots)

    @pytest.mark.asyncio
    async def test_range_already_started_is_clamped_to_now(self, availability):
        slots = await availability.available_slots("orthodontics", local(MONDAY), local(TUESDAY))
        assert _local_starts(slots)[0] == "10:00"
        assert all(s.start >= NOW for s in slots)

    def test_normalize_range_keeps_future_range(self, availability):
        start, end = local(TUESDAY), local(WEDNESDAY)
        assert availability.normalize_range(start, end) == (start, end)


class TestIsBookable:
    @pytest.mark.asyncio
    async def test_grid_slot_on_free_day_is_bookable(self, availability):
        assert await availability.is_bookable(make_slot(TUESDAY, 9, 30))

    @pytest.mark.asyncio
    async def test_off_grid_slot_is_rejected(self, availability):
        assert not await availability.is_bookable(make_slot(TUESDAY, 9, 10))

    @pytest.mark.asyncio
    async def test_wrong_length_is_rejected(self, availability):
        assert not await availability.is_bookable(make_slot(TUESDAY, 9, 0, minutes=45))

    @pytest.mark.asyncio
    async def test_past_slot_is_rejected(self, availability):
        assert not await availability.is_bookable(make_slot(MONDAY, 9, 0))

    @pytest.mark.asyncio
    async def test_busy_slot_is_rejected(self, calendar, availability):
        calendar.block(local(TUESDAY, 9), local(TUESDAY, 10))
        assert not await availability.is_bookable(make_slot(TUESDAY, 9, 30))

    @pytest.mark.asyncio
    async def test_closed_day_slot_is_rejected(self, availability):
        assert not await availability.is_bookable(make_slot(SUNDAY, 10, 0))
