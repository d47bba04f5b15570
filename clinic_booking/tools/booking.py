"""
Booking action handler.

Creates, moves and cancels appointments as calendar events. The event's
private metadata carries everything needed to rebuild an Appointment (and a
lost session) later, so the calendar stays the only source of truth.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from pydantic import BaseModel

from clinic_booking.clinic_time import utc_now
from clinic_booking.config import ClinicConfig, settings
from clinic_booking.errors import ValidationError
from clinic_booking.schemas.booking_schema import (
    META_CHANNEL_ID,
    META_PATIENT_NAME,
    META_PHONE,
    META_REMINDER_DAY_BEFORE,
    META_REMINDER_HOURS_BEFORE,
    META_SERVICE,
    META_SLOT_ID,
    META_STATUS,
    Appointment,
    AppointmentStatus,
    CalendarEvent,
    CancelResult,
    HandoffResult,
    RescheduleResult,
    Slot,
)
from clinic_booking.tools.calendar import CalendarGateway, EventPatch
from clinic_booking.tools.services import FALLBACK_SERVICE, service_title

logger = logging.getLogger(__name__)

CANCELLED_PREFIX = "CANCELLED - "
UPCOMING_LOOKAHEAD_DAYS = 90


class AppointmentOverrides(BaseModel):
    """Metadata to replace while rescheduling; unset fields keep their stored value."""

    service: Optional[str] = None
    patient_name: Optional[str] = None
    phone: Optional[str] = None
    channel_id: Optional[str] = None

    def as_metadata(self) -> dict[str, str]:
        mapping = {
            META_SERVICE: self.service,
            META_PATIENT_NAME: self.patient_name,
            META_PHONE: self.phone,
            META_CHANNEL_ID: self.channel_id,
        }
        return {key: value for key, value in mapping.items() if value}


def _summary(service: str, patient_name: str) -> str:
    return f"Appointment - {service_title(service)} - {patient_name}"


class BookingActionHandler:
    """Book, reschedule, cancel and look up appointments on the clinic calendar."""

    def __init__(
        self,
        calendar: CalendarGateway,
        clinic: Optional[ClinicConfig] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._calendar = calendar
        self._clinic = clinic or settings.clinic
        self._clock = clock

    async def book(
        self,
        patient_name: str,
        phone: str,
        slot: Optional[Slot],
        service: Optional[str] = None,
        notes: str = "",
        channel_id: Optional[str] = None,
    ) -> Appointment:
        """Create the calendar event for a chosen slot.

        Raises:
            ValidationError: If the slot or patient details are missing.
            UpstreamError: If the calendar rejects the write.
        """
        if slot is None or slot.start is None or slot.end is None:
            raise ValidationError("Cannot book without a slot start and end")
        missing = [
            name for name, value in (("patient_name", patient_name), ("phone", phone))
            if not value or not value.strip()
        ]
        if missing:
            raise ValidationError(f"Cannot book - missing required fields: {', '.join(missing)}")

        service = service or slot.service or FALLBACK_SERVICE
        private = {
            META_SERVICE: service,
            META_PATIENT_NAME: patient_name,
            META_PHONE: phone,
            META_SLOT_ID: slot.id,
            META_STATUS: AppointmentStatus.CONFIRMED.value,
            META_REMINDER_DAY_BEFORE: "false",
            META_REMINDER_HOURS_BEFORE: "false",
        }
        if channel_id:
            private[META_CHANNEL_ID] = channel_id

        event = CalendarEvent(
            summary=_summary(service, patient_name),
            description=(
                f"Patient: {patient_name}\nPhone: {phone}\nService: {service_title(service)}\n"
                f"Notes: {notes or ''}\nSlot: {slot.id}"
            ),
            location=self._clinic.address,
            start=slot.start,
            end=slot.end,
            private=private,
        )
        created = await self._calendar.create_event(event)
        logger.info("Appointment booked: %s for %s at %s", created.id, service, slot.start)
        return Appointment.from_event(created)

    async def reschedule(
        self,
        appointment_id: str,
        new_slot: Optional[Slot],
        overrides: Optional[AppointmentOverrides] = None,
    ) -> RescheduleResult:
        """Move an appointment to a new slot, keeping its identity.

        Stored metadata is merged with ``overrides`` and both reminder flags
        are reset so the moved appointment is reminded again.
        """
        if new_slot is None or new_slot.start is None or new_slot.end is None:
            raise ValidationError("Cannot reschedule without a new start and end")

        current = await self._calendar.get_event(appointment_id)
        if Appointment.from_event(current).is_cancelled:
            raise ValidationError(f"Appointment {appointment_id} is cancelled")

        private = dict(current.private)
        if overrides is not None:
            private.update(overrides.as_metadata())
        private[META_SLOT_ID] = new_slot.id
        private[META_REMINDER_DAY_BEFORE] = "false"
        private[META_REMINDER_HOURS_BEFORE] = "false"

        updated = await self._calendar.patch_event(
            appointment_id,
            EventPatch(
                summary=_summary(
                    private.get(META_SERVICE) or FALLBACK_SERVICE,
                    private.get(META_PATIENT_NAME, ""),
                ),
                start=new_slot.start,
                end=new_slot.end,
                private=private,
            ),
        )
        logger.info("Appointment rescheduled: %s to %s", appointment_id, new_slot.start)
        return RescheduleResult(
            appointment_id=updated.id or appointment_id,
            new_start=updated.start,
            new_end=updated.end,
        )

    async def cancel(self, appointment_id: str, reason: str = "") -> CancelResult:
        """Mark an appointment cancelled. The event is kept, and stops counting as busy."""
        current = await self._calendar.get_event(appointment_id)
        if Appointment.from_event(current).is_cancelled:
            logger.info("Appointment %s already cancelled", appointment_id)
            return CancelResult(appointment_id=appointment_id)

        summary = current.summary or "Appointment"
        await self._calendar.patch_event(
            appointment_id,
            EventPatch(
                summary=f"{CANCELLED_PREFIX}{summary}",
                description=f"{current.description or ''}\n\nCancellation: {reason or ''}",
                private={**current.private, META_STATUS: AppointmentStatus.CANCELLED.value},
                transparent=True,
            ),
        )
        logger.info("Appointment cancelled: %s", appointment_id)
        return CancelResult(appointment_id=appointment_id)

    async def get(self, appointment_id: str) -> Appointment:
        return Appointment.from_event(await self._calendar.get_event(appointment_id))

    async def find_upcoming(
        self, channel_id: str, now: Optional[datetime] = None
    ) -> Optional[Appointment]:
        """The next non-cancelled appointment booked from a chat user, if any."""
        now = now or self._clock()
        events = await self._calendar.list_events(
            now,
            now + timedelta(days=UPCOMING_LOOKAHEAD_DAYS),
            private_filter={META_CHANNEL_ID: channel_id},
        )
        for event in events:
            appointment = Appointment.from_event(event)
            if not appointment.is_cancelled and appointment.start > now:
                return appointment
        return None

    async def handoff_to_human(self, summary: str) -> HandoffResult:
        """Route an urgent or out-of-scope case to staff. Always succeeds."""
        logger.warning("Handoff to human requested: %s", summary)
        return HandoffResult(ok=True, routed=True, summary=summary)
