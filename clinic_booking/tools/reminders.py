"""
Reminder sweep.

Run on an external cadence (cron hitting an HTTP endpoint). Idempotency
lives entirely in the per-appointment flags on the calendar event, so
overlapping runs are safe as long as a flag is written after its send.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from pydantic import BaseModel

from clinic_booking.clinic_time import utc_now
from clinic_booking.config import ClinicConfig, ReminderConfig, settings
from clinic_booking.errors import ClinicBookingError
from clinic_booking.prompts.message_templates import day_before_reminder, hours_before_reminder
from clinic_booking.schemas.booking_schema import (
    META_REMINDER_DAY_BEFORE,
    META_REMINDER_HOURS_BEFORE,
    Appointment,
    CalendarEvent,
)
from clinic_booking.tools.calendar import CalendarGateway, EventPatch
from clinic_booking.transport.outbound import OutboundChannel

logger = logging.getLogger(__name__)


class SweepReport(BaseModel):
    """Counts from one sweep run."""

    scanned: int = 0
    skipped: int = 0
    day_before_sent: int = 0
    hours_before_sent: int = 0
    failures: int = 0


def minutes_to_start(start: datetime, now: datetime) -> int:
    return round((start - now).total_seconds() / 60)


class ReminderSweep:
    """Sends day-before and hours-before reminders for upcoming appointments."""

    def __init__(
        self,
        calendar: CalendarGateway,
        outbound: OutboundChannel,
        clinic: Optional[ClinicConfig] = None,
        reminders: Optional[ReminderConfig] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._calendar = calendar
        self._outbound = outbound
        self._clinic = clinic or settings.clinic
        self._config = reminders or settings.reminders
        self._clock = clock

    async def run(self, now: Optional[datetime] = None) -> SweepReport:
        """Scan the lookahead horizon once and send whatever is due.

        Raises:
            UpstreamError: If the calendar cannot be listed. Per-appointment
                failures are logged and counted instead.
        """
        now = now or self._clock()
        report = SweepReport()
        events = await self._calendar.list_events(
            now,
            now + timedelta(minutes=self._config.horizon_minutes),
            limit=self._config.max_events,
        )

        for event in events:
            report.scanned += 1
            appointment = Appointment.from_event(event)
            if appointment.is_cancelled or not appointment.contact:
                report.skipped += 1
                continue

            minutes = minutes_to_start(appointment.start, now)
            cfg = self._config

            if (
                cfg.day_before_enabled
                and cfg.day_before_min <= minutes <= cfg.day_before_max
                and not appointment.reminder_day_before_sent
            ):
                body = day_before_reminder(appointment.start, self._clinic.timezone, self._clinic.name)
                if await self._send_and_flag(event, appointment, body, META_REMINDER_DAY_BEFORE):
                    report.day_before_sent += 1
                else:
                    report.failures += 1

            if (
                cfg.hours_before_enabled
                and cfg.hours_before_min <= minutes <= cfg.hours_before_max
                and not appointment.reminder_hours_before_sent
            ):
                body = hours_before_reminder(
                    appointment.start, self._clinic.timezone, self._clinic.name, self._clinic.address,
                )
                if await self._send_and_flag(event, appointment, body, META_REMINDER_HOURS_BEFORE):
                    report.hours_before_sent += 1
                else:
                    report.failures += 1

        logger.info(
            "Reminder sweep: scanned=%d day_before=%d hours_before=%d failures=%d",
            report.scanned, report.day_before_sent, report.hours_before_sent, report.failures,
        )
        return report

    async def _send_and_flag(
        self, event: CalendarEvent, appointment: Appointment, body: str, flag: str
    ) -> bool:
        try:
            await self._outbound.send_text(appointment.contact, body)
        except ClinicBookingError as exc:
            logger.error("Reminder for %s not sent: %s", appointment.appointment_id, exc)
            return False
        try:
            await self._calendar.patch_event(
                appointment.appointment_id,
                EventPatch(private={**event.private, flag: "true"}),
            )
        except ClinicBookingError as exc:
            logger.error(
                "Reminder for %s sent but %s not recorded: %s",
                appointment.appointment_id, flag, exc,
            )
            return False
        event.private[flag] = "true"
        return True
