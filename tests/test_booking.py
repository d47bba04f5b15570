"""Tests for booking, rescheduling and cancelling calendar appointments."""

from datetime import date

import pytest

from clinic_booking.errors import AppointmentNotFoundError, ValidationError
from clinic_booking.schemas.booking_schema import AppointmentStatus
from clinic_booking.tools.booking import CANCELLED_PREFIX, AppointmentOverrides
from clinic_booking.tools.calendar import EventPatch
from tests.conftest import USER, local, make_slot

TUESDAY = date(2026, 6, 16)
FRIDAY = date(2026, 6, 19)


async def _book(booking, hour=9, channel_id=USER):
    return await booking.book(
        "Maria Perez", "8295551234", make_slot(TUESDAY, hour),
        service="orthodontics", notes="first visit", channel_id=channel_id,
    )


class TestBook:
    @pytest.mark.asyncio
    async def test_creates_event_with_metadata(self, booking, calendar):
        appt = await _book(booking)
        event = calendar.events[appt.appointment_id]
        assert event.summary == "Appointment - Orthodontics - Maria Perez"
        assert "Notes: first visit" in event.description
        assert event.location == "Av. Winston Churchill 55"
        assert event.private["status"] == "confirmed"
        assert event.private["channel_id"] == USER
        assert event.private["reminder_day_before_sent"] == "false"

    @pytest.mark.asyncio
    async def test_returns_appointment(self, booking):
        appt = await _book(booking)
        assert appt.service == "orthodontics"
        assert appt.patient_name == "Maria Perez"
        assert appt.start == local(TUESDAY, 9)
        assert appt.status == AppointmentStatus.CONFIRMED
        assert not appt.reminder_day_before_sent

    @pytest.mark.asyncio
    async def test_booked_time_becomes_busy(self, booking, calendar):
        await _book(booking)
        busy = await calendar.get_busy_ranges(local(TUESDAY), local(FRIDAY))
        assert [(b.start, b.end) for b in busy] == [(local(TUESDAY, 9), local(TUESDAY, 9, 30))]

    @pytest.mark.asyncio
    async def test_missing_slot(self, booking):
        with pytest.raises(ValidationError, match="slot"):
            await booking.book("Maria Perez", "8295551234", None)

    @pytest.mark.asyncio
    async def test_missing_patient_details(self, booking):
        with pytest.raises(ValidationError, match="patient_name, phone"):
            await booking.book("  ", "", make_slot(TUESDAY, 9))


class TestReschedule:
    @pytest.mark.asyncio
    async def test_keeps_identity_and_resets_reminders(self, booking, calendar):
        appt = await _book(booking)
        await calendar.patch_event(
            appt.appointment_id,
            EventPatch(private={"reminder_day_before_sent": "true", "reminder_hours_before_sent": "true"}),
        )

        result = await booking.reschedule(appt.appointment_id, make_slot(FRIDAY, 11))
        moved = await booking.get(appt.appointment_id)

        assert result.appointment_id == appt.appointment_id
        assert result.new_start == local(FRIDAY, 11)
        assert moved.start == local(FRIDAY, 11)
        assert moved.end == local(FRIDAY, 11, 30)
        assert not moved.reminder_day_before_sent
        assert not moved.reminder_hours_before_sent
        assert moved.patient_name == "Maria Perez"

    @pytest.mark.asyncio
    async def test_overrides_are_merged(self, booking, calendar):
        appt = await _book(booking)
        await booking.reschedule(
            appt.appointment_id, make_slot(FRIDAY, 11), AppointmentOverrides(patient_name="Maria P. Diaz"),
        )
        event = calendar.events[appt.appointment_id]
        assert event.summary == "Appointment - Orthodontics - Maria P. Diaz"
        assert event.private["phone"] == "8295551234"

    @pytest.mark.asyncio
    async def test_cancelled_appointment_cannot_move(self, booking):
        appt = await _book(booking)
        await booking.cancel(appt.appointment_id)
        with pytest.raises(ValidationError):
            await booking.reschedule(appt.appointment_id, make_slot(FRIDAY, 11))

    @pytest.mark.asyncio
    async def test_unknown_appointment(self, booking):
        with pytest.raises(AppointmentNotFoundError):
            await booking.reschedule("evt_missing", make_slot(FRIDAY, 11))


class TestCancel:
    @pytest.mark.asyncio
    async def test_record_survives_cancellation(self, booking, calendar):
        appt = await _book(booking)
        await booking.cancel(appt.appointment_id, "travelling")

        cancelled = await booking.get(appt.appointment_id)
        event = calendar.events[appt.appointment_id]
        assert cancelled.is_cancelled
        assert event.summary.startswith(CANCELLED_PREFIX)
        assert event.description.endswith("Cancellation: travelling")

    @pytest.mark.asyncio
    async def test_cancelled_time_is_free_again(self, booking, calendar):
        appt = await _book(booking)
        await booking.cancel(appt.appointment_id)
        assert await calendar.get_busy_ranges(local(TUESDAY), local(FRIDAY)) == []

    @pytest.mark.asyncio
    async def test_cancel_is_idempotent(self, booking, calendar):
        appt = await _book(booking)
        await booking.cancel(appt.appointment_id)
        await booking.cancel(appt.appointment_id)
        assert calendar.events[appt.appointment_id].summary.count(CANCELLED_PREFIX) == 1


class TestLookup:
    @pytest.mark.asyncio
    async def test_get_unknown(self, booking):
        with pytest.raises(AppointmentNotFoundError):
            await booking.get("evt_9999")

    @pytest.mark.asyncio
    async def test_find_upcoming_for_channel(self, booking):
        later = await _book(booking, hour=11)
        earlier = await _book(booking, hour=9)
        await _book(booking, hour=10, channel_id="other-user")

        found = await booking.find_upcoming(USER)
        assert found.appointment_id == earlier.appointment_id

        await booking.cancel(earlier.appointment_id)
        assert (await booking.find_upcoming(USER)).appointment_id == later.appointment_id

    @pytest.mark.asyncio
    async def test_find_upcoming_none(self, booking):
        assert await booking.find_upcoming("nobody") is None

    @pytest.mark.asyncio
    async def test_handoff_always_succeeds(self, booking):
        result = await booking.handoff_to_human("patient reports swelling")
        assert result.ok and result.routed
        assert result.summary == "patient reports swelling"
