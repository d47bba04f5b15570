"""
Availability engine.

Generates bookable slots from the clinic's weekly work hours and the
service duration, on a fixed step grid, then removes anything that
overlaps busy time reported by the calendar.
"""

import logging
import math
from datetime import datetime, time, timedelta
from typing import Callable, Optional

from clinic_booking.clinic_time import (
    add_local_days,
    iter_local_dates,
    local_date,
    start_of_local_day,
    to_local,
    utc_now,
    weekday_key,
    zoned_to_utc,
)
from clinic_booking.config import BookingConfig, ClinicConfig, settings
from clinic_booking.errors import NoAvailabilityError
from clinic_booking.schemas.booking_schema import Slot
from clinic_booking.tools.calendar import CalendarGateway
from clinic_booking.tools.services import duration_for

logger = logging.getLogger(__name__)


class AvailabilityEngine:
    """Computes free slots for a service over an instant range."""

    def __init__(
        self,
        calendar: CalendarGateway,
        clinic: Optional[ClinicConfig] = None,
        booking: Optional[BookingConfig] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._calendar = calendar
        self._clinic = clinic or settings.clinic
        self._booking = booking or settings.booking
        self._clock = clock

    @property
    def timezone(self) -> str:
        return self._clinic.timezone

    def normalize_range(self, start: datetime, end: datetime) -> tuple[datetime, datetime]:
        """Apply the forward-looking policy to a caller-supplied range.

        A range entirely in the past becomes today plus the default window;
        a range that has already started is clamped to begin now.
        """
        now = self._clock()
        tz = self._clinic.timezone
        if end <= now:
            logger.info("Requested range %s..%s is in the past; using default window", start, end)
            start = start_of_local_day(now, tz)
            end = add_local_days(now, self._booking.default_window_days, tz)
        if start < now:
            start = now
        return start, end

    def build_candidate_slots(self, service: str, start: datetime, end: datetime) -> list[Slot]:
        """Every step-aligned slot inside ``[start, end]`` that fits in the day's work hours."""
        tz = self._clinic.timezone
        duration = duration_for(service, self._booking.service_durations)
        step = self._booking.slot_step_minutes
        first_day = local_date(start, tz)
        slots: list[Slot] = []

        for day in iter_local_dates(start, end, tz):
            hours = self._clinic.work_hours.get(weekday_key(day))
            if hours is None:
                continue

            open_min = hours.start.hour * 60 + hours.start.minute
            close_min = hours.end.hour * 60 + hours.end.minute
            cursor = open_min
            if day == first_day:
                cursor = max(cursor, _ceil_minutes(start, tz))
            cursor = math.ceil(cursor / step) * step

            while cursor + duration <= close_min:
                slot_start = zoned_to_utc(day, time(cursor // 60, cursor % 60), tz)
                if slot_start > end:
                    break
                slot_end = slot_start + timedelta(minutes=duration)
                if slot_start >= start and slot_end <= end:
                    slots.append(Slot.build(service, slot_start, slot_end))
                cursor += step

        slots.sort(key=lambda s: s.start)
        return slots

    async def available_slots(self, service: str, start: datetime, end: datetime) -> list[Slot]:
        """Free slots for ``service`` in the range, earliest first, capped at MAX_SLOTS.

        Raises:
            UpstreamError: If the calendar cannot report busy time.
        """
        start, end = self.normalize_range(start, end)
        candidates = self.build_candidate_slots(service, start, end)
        if not candidates:
            logger.info("No candidate slots for %s between %s and %s", service, start, end)
            return []

        busy = await self._calendar.get_busy_ranges(start, end)
        free = [s for s in candidates if not any(s.overlaps(b) for b in busy)]
        logger.debug(
            "%d candidates, %d busy ranges, %d free for %s",
            len(candidates), len(busy), len(free), service,
        )
        return free[: self._booking.max_slots]

    async def is_bookable(self, slot: Slot) -> bool:
        """True if ``slot`` lies on the schedule grid, in the future, and overlaps no busy time."""
        if slot.start < self._clock():
            return False
        on_grid = any(
            c.start == slot.start and c.end == slot.end
            for c in self.build_candidate_slots(slot.service, slot.start, slot.end)
        )
        if not on_grid:
            return False
        busy = await self._calendar.get_busy_ranges(slot.start, slot.end)
        return not any(slot.overlaps(b) for b in busy)

    async def require_slots(self, service: str, start: datetime, end: datetime) -> list[Slot]:
        """Like ``available_slots`` but raises NoAvailabilityError on an empty result."""
        slots = await self.available_slots(service, start, end)
        if not slots:
            raise NoAvailabilityError(f"No availability for {service} in the requested range")
        return slots


def _ceil_minutes(instant: datetime, tz: str) -> int:
    """Minutes since local midnight, rounded up to the next whole minute."""
    local = to_local(instant, tz)
    minutes = local.hour * 60 + local.minute
    if local.second or local.microsecond:
        minutes += 1
    return minutes
