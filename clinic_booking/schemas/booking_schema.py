"""Slot, appointment, and calendar event data models."""

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Optional

from pydantic import AfterValidator, BaseModel, Field, model_validator


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        raise ValueError("datetime must be timezone-aware")
    return value.astimezone(timezone.utc)


UtcDatetime = Annotated[datetime, AfterValidator(_as_utc)]


def slot_id_for(start: datetime) -> str:
    """Deterministic slot identifier derived from the start instant."""
    return f"slot_{int(_as_utc(start).timestamp() * 1000)}"


class DateRange(BaseModel):
    """Half-open ``[start, end)`` instant range, with the phrase it came from."""

    start: UtcDatetime
    end: UtcDatetime
    label: str = ""

    @model_validator(mode="after")
    def _ordered(self) -> "DateRange":
        if self.start >= self.end:
            raise ValueError("range start must be before its end")
        return self


class BusyRange(BaseModel):
    """An externally reported interval during which no slot may be offered."""

    start: UtcDatetime
    end: UtcDatetime


class Slot(BaseModel):
    """A candidate bookable interval for one service."""

    id: str
    service: str
    start: UtcDatetime
    end: UtcDatetime

    @classmethod
    def build(cls, service: str, start: datetime, end: datetime) -> "Slot":
        return cls(id=slot_id_for(start), service=service, start=start, end=end)

    def overlaps(self, other: BusyRange) -> bool:
        return self.start < other.end and self.end > other.start


class AppointmentStatus(str, Enum):
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


# Private metadata keys carried on every calendar event.
META_SERVICE = "service"
META_PATIENT_NAME = "patient_name"
META_PHONE = "phone"
META_CHANNEL_ID = "channel_id"
META_SLOT_ID = "slot_id"
META_STATUS = "status"
META_REMINDER_DAY_BEFORE = "reminder_day_before_sent"
META_REMINDER_HOURS_BEFORE = "reminder_hours_before_sent"


class CalendarEvent(BaseModel):
    """The calendar's view of an appointment: times, texts, and private metadata."""

    id: Optional[str] = None
    summary: str = ""
    description: str = ""
    location: str = ""
    start: UtcDatetime
    end: UtcDatetime
    private: dict[str, str] = Field(default_factory=dict)


class Appointment(BaseModel):
    """A booking reconstructed from its calendar event."""

    appointment_id: str
    service: str
    patient_name: str = ""
    phone: str = ""
    start: UtcDatetime
    end: UtcDatetime
    status: AppointmentStatus = AppointmentStatus.CONFIRMED
    channel_id: Optional[str] = None
    reminder_day_before_sent: bool = False
    reminder_hours_before_sent: bool = False

    @property
    def is_cancelled(self) -> bool:
        return self.status == AppointmentStatus.CANCELLED

    @property
    def contact(self) -> Optional[str]:
        """Where reminders go: the chat channel id, falling back to the typed phone."""
        return self.channel_id or self.phone or None

    @classmethod
    def from_event(cls, event: CalendarEvent) -> "Appointment":
        meta = event.private
        status = (
            AppointmentStatus.CANCELLED
            if meta.get(META_STATUS) == AppointmentStatus.CANCELLED.value
            else AppointmentStatus.CONFIRMED
        )
        return cls(
            appointment_id=event.id or "",
            service=meta.get(META_SERVICE, "") or "other",
            patient_name=meta.get(META_PATIENT_NAME, ""),
            phone=meta.get(META_PHONE, ""),
            start=event.start,
            end=event.end,
            status=status,
            channel_id=meta.get(META_CHANNEL_ID) or None,
            reminder_day_before_sent=meta.get(META_REMINDER_DAY_BEFORE) == "true",
            reminder_hours_before_sent=meta.get(META_REMINDER_HOURS_BEFORE) == "true",
        )


class RescheduleResult(BaseModel):
    appointment_id: str
    new_start: UtcDatetime
    new_end: UtcDatetime


class CancelResult(BaseModel):
    appointment_id: str


class HandoffResult(BaseModel):
    ok: bool = True
    routed: bool = True
    summary: str
