"""
Tool-call fallback bridge.

Handles messages the deterministic flow could not classify by letting the
LLM call a fixed set of tools. Every tool argument payload is validated
with pydantic before anything touches the calendar; a rejected call is fed
back to the model as an error result instead of failing the request.
"""

import json
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from clinic_booking.agents.llm_client import LLMClient, ToolInvocation
from clinic_booking.clinic_time import ensure_aware, format_date, format_time, utc_now
from clinic_booking.config import AppConfig, settings
from clinic_booking.conversation.state_machine import ConversationStateMachine, TransitionTrigger
from clinic_booking.errors import AppointmentNotFoundError, NoAvailabilityError, ValidationError
from clinic_booking.prompts.message_templates import FALLBACK_REPLY, WHICH_SERVICE
from clinic_booking.prompts.system_prompts import build_system_prompt
from clinic_booking.schemas.booking_schema import Appointment, Slot
from clinic_booking.schemas.session_schema import ConversationState, Session
from clinic_booking.tools.availability import AvailabilityEngine
from clinic_booking.tools.booking import BookingActionHandler
from clinic_booking.tools.services import coerce_service
from clinic_booking.utils import extract_digits

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------- #
# Tool argument models
# ---------------------------------------------------------------------- #

class GetAvailableSlotsArgs(BaseModel):
    service: Optional[str] = None
    from_: datetime = Field(alias="from")
    to: datetime


class BookAppointmentArgs(BaseModel):
    patient_name: str = Field(min_length=1)
    phone: str = Field(min_length=1)
    slot_id: Optional[str] = None
    service: Optional[str] = None
    notes: str = ""
    slot_start: datetime
    slot_end: datetime


class RescheduleAppointmentArgs(BaseModel):
    appointment_id: str = Field(min_length=1)
    new_slot_id: Optional[str] = None
    new_start: datetime
    new_end: datetime


class CancelAppointmentArgs(BaseModel):
    appointment_id: str = Field(min_length=1)
    reason: str = ""


class HandoffArgs(BaseModel):
    summary: str = Field(min_length=1)


def _function(name: str, description: str, properties: dict[str, Any], required: list[str]) -> dict:
    return {
        "type": "function",
        "function": {
            "name": name,
            "description": description,
            "parameters": {"type": "object", "properties": properties, "required": required},
        },
    }


TOOL_SCHEMAS: list[dict[str, Any]] = [
    _function(
        "get_available_slots",
        "Get real available times for a service in a date range.",
        {
            "service": {"type": "string"},
            "from": {"type": "string", "description": "Range start, ISO 8601"},
            "to": {"type": "string", "description": "Range end, ISO 8601"},
        },
        ["from", "to"],
    ),
    _function(
        "book_appointment",
        "Book an appointment in the calendar using the chosen slot (exact start/end).",
        {
            "patient_name": {"type": "string"},
            "phone": {"type": "string"},
            "slot_id": {"type": "string"},
            "service": {"type": "string"},
            "notes": {"type": "string"},
            "slot_start": {"type": "string"},
            "slot_end": {"type": "string"},
        },
        ["patient_name", "phone", "slot_id", "service", "slot_start", "slot_end"],
    ),
    _function(
        "reschedule_appointment",
        "Move an appointment to a new slot (exact start/end).",
        {
            "appointment_id": {"type": "string"},
            "new_slot_id": {"type": "string"},
            "new_start": {"type": "string"},
            "new_end": {"type": "string"},
        },
        ["appointment_id", "new_slot_id", "new_start", "new_end"],
    ),
    _function(
        "cancel_appointment",
        "Cancel an appointment by id.",
        {"appointment_id": {"type": "string"}, "reason": {"type": "string"}},
        ["appointment_id"],
    ),
    _function(
        "handoff_to_human",
        "Hand the conversation to staff for emergencies or special cases.",
        {"summary": {"type": "string"}},
        ["summary"],
    ),
]


ToolHandler = Callable[[Session, dict[str, Any]], Awaitable[dict[str, Any]]]


class ToolCallBridge:
    """Runs one LLM turn, executing any tool calls against the booking engine."""

    def __init__(
        self,
        llm: Optional[LLMClient],
        availability: AvailabilityEngine,
        booking: BookingActionHandler,
        config: Optional[AppConfig] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._llm = llm
        self._availability = availability
        self._booking = booking
        self._config = config or settings
        self._clock = clock
        self._handlers: dict[str, ToolHandler] = {
            "get_available_slots": self._get_available_slots,
            "book_appointment": self._book_appointment,
            "reschedule_appointment": self._reschedule_appointment,
            "cancel_appointment": self._cancel_appointment,
            "handoff_to_human": self._handoff_to_human,
        }

    @property
    def _tz(self) -> str:
        return self._config.clinic.timezone

    async def respond(self, session: Session, text: str) -> str:
        """Produce the assistant's reply to ``text``, updating the session.

        Raises:
            UpstreamError: If the LLM or calendar fails. Tool-level problems
                (bad arguments, unknown ids, taken slots) are reported to the
                model instead.
        """
        limit = self._config.booking.history_limit
        session.remember("user", text, limit)

        if self._llm is None:
            session.remember("assistant", FALLBACK_REPLY, limit)
            return FALLBACK_REPLY

        system = build_system_prompt(
            self._config.clinic, self._clock(), session.user_id, session.pending_service,
        )
        messages: list[dict[str, Any]] = [{"role": "system", "content": system}] + [
            m.model_dump() for m in session.messages
        ]

        reply = await self._llm.complete(messages, TOOL_SCHEMAS)
        if not reply.tool_calls:
            answer = reply.text or FALLBACK_REPLY
            session.remember("assistant", answer, limit)
            return answer

        tool_messages = []
        for call in reply.tool_calls:
            result = await self._execute(session, call)
            tool_messages.append({
                "role": "tool",
                "tool_call_id": call.id,
                "name": call.name,
                "content": json.dumps(result, default=str),
            })

        final = await self._llm.complete(messages + [reply.as_message()] + tool_messages)
        answer = final.text or WHICH_SERVICE
        session.remember("assistant", answer, limit)
        return answer

    async def _execute(self, session: Session, call: ToolInvocation) -> dict[str, Any]:
        handler = self._handlers.get(call.name)
        if handler is None:
            logger.warning("LLM requested unknown tool %s", call.name)
            return {"ok": False, "error": f"Unknown tool {call.name}"}
        try:
            args = json.loads(call.arguments or "{}")
        except json.JSONDecodeError:
            return {"ok": False, "error": "Arguments are not valid JSON"}
        if not isinstance(args, dict):
            return {"ok": False, "error": "Arguments must be a JSON object"}

        logger.info("Executing tool %s", call.name)
        try:
            return await handler(session, args)
        except PydanticValidationError as exc:
            fields = sorted({str(err["loc"][0]) for err in exc.errors() if err["loc"]})
            return {"ok": False, "error": f"Invalid arguments: {', '.join(fields)}"}
        except AppointmentNotFoundError:
            return {"ok": False, "error": "Appointment not found"}
        except (ValidationError, NoAvailabilityError) as exc:
            return {"ok": False, "error": str(exc)}

    # ------------------------------------------------------------------ #
    # Tools
    # ------------------------------------------------------------------ #

    async def _get_available_slots(self, session: Session, raw: dict[str, Any]) -> dict[str, Any]:
        args = GetAvailableSlotsArgs.model_validate(raw)
        start, end = ensure_aware(args.from_, self._tz), ensure_aware(args.to, self._tz)
        if start >= end:
            raise ValidationError("'from' must be before 'to'")
        service = coerce_service(args.service or session.pending_service)
        slots = await self._availability.available_slots(service, start, end)
        session.pending_service = service
        session.last_slots = slots
        return {"ok": True, "service": service, "slots": [self._describe(s) for s in slots]}

    async def _book_appointment(self, session: Session, raw: dict[str, Any]) -> dict[str, Any]:
        args = BookAppointmentArgs.model_validate(raw)
        service = coerce_service(args.service)
        slot = Slot.build(
            service, ensure_aware(args.slot_start, self._tz), ensure_aware(args.slot_end, self._tz),
        )
        if not await self._availability.is_bookable(slot):
            raise ValidationError("That time is not available; offer slots from get_available_slots")

        appointment = await self._booking.book(
            args.patient_name, extract_digits(args.phone) or args.phone, slot,
            service=service, notes=args.notes, channel_id=session.user_id,
        )
        session.reset_booking_flow()
        session.active_appointment = appointment
        if session.state == ConversationState.IDLE:
            ConversationStateMachine(session).transition(TransitionTrigger.BOOKED)
        return {"ok": True, "booked": self._describe_appointment(appointment)}

    async def _reschedule_appointment(self, session: Session, raw: dict[str, Any]) -> dict[str, Any]:
        args = RescheduleAppointmentArgs.model_validate(raw)
        current = await self._owned_appointment(session, args.appointment_id)
        slot = Slot.build(
            current.service, ensure_aware(args.new_start, self._tz), ensure_aware(args.new_end, self._tz),
        )
        if not await self._availability.is_bookable(slot):
            raise ValidationError("That time is not available; offer slots from get_available_slots")

        result = await self._booking.reschedule(args.appointment_id, slot)
        session.active_appointment = await self._booking.get(result.appointment_id)
        if session.state == ConversationState.IDLE:
            ConversationStateMachine(session).transition(TransitionTrigger.APPOINTMENT_RESTORED)
        return {"ok": True, **result.model_dump(mode="json")}

    async def _cancel_appointment(self, session: Session, raw: dict[str, Any]) -> dict[str, Any]:
        args = CancelAppointmentArgs.model_validate(raw)
        await self._owned_appointment(session, args.appointment_id)
        result = await self._booking.cancel(args.appointment_id, args.reason)
        active = session.active_appointment
        if active and active.appointment_id == args.appointment_id:
            session.active_appointment = None
        return {"ok": True, **result.model_dump(mode="json")}

    async def _handoff_to_human(self, session: Session, raw: dict[str, Any]) -> dict[str, Any]:
        args = HandoffArgs.model_validate(raw)
        result = await self._booking.handoff_to_human(f"[{session.user_id}] {args.summary}")
        return result.model_dump(mode="json")

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #

    async def _owned_appointment(self, session: Session, appointment_id: str) -> Appointment:
        appointment = await self._booking.get(appointment_id)
        user_digits = extract_digits(session.user_id)
        owned = appointment.channel_id == session.user_id or (
            bool(user_digits) and extract_digits(appointment.phone) == user_digits
        )
        if not owned:
            logger.warning("User %s tried to modify appointment %s", session.user_id, appointment_id)
            raise ValidationError("That appointment does not belong to this user")
        if appointment.is_cancelled:
            raise ValidationError("That appointment is already cancelled")
        return appointment

    def _describe(self, slot: Slot) -> dict[str, str]:
        return {
            "slot_id": slot.id,
            "start": slot.start.isoformat(),
            "end": slot.end.isoformat(),
            "local": f"{format_date(slot.start, self._tz)} {format_time(slot.start, self._tz)}",
        }

    def _describe_appointment(self, appointment: Appointment) -> dict[str, str]:
        return {
            "appointment_id": appointment.appointment_id,
            "service": appointment.service,
            "patient_name": appointment.patient_name,
            "start": appointment.start.isoformat(),
            "end": appointment.end.isoformat(),
            "local": f"{format_date(appointment.start, self._tz)} {format_time(appointment.start, self._tz)}",
        }
