"""
Conversation controller: one step of the booking dialog per inbound text.

Each message is classified once, then handled by the function for the
session's current state. State only changes through the state machine's
transition table; a reply that does not fit the state's expected input
gets a reprompt with a concrete example and leaves the state alone.
"""

import logging
from datetime import datetime
from typing import Callable, Optional

from clinic_booking.agents.tool_bridge import ToolCallBridge
from clinic_booking.clinic_time import utc_now
from clinic_booking.config import AppConfig, settings
from clinic_booking.conversation.intents import Intent, IntentResult, classify
from clinic_booking.conversation.slot_manager import pick_slot, validate_name, validate_phone
from clinic_booking.conversation.state_machine import ConversationStateMachine, TransitionTrigger
from clinic_booking.errors import AppointmentNotFoundError, NoAvailabilityError, ValidationError
from clinic_booking.prompts import message_templates as msg
from clinic_booking.schemas.booking_schema import Appointment, DateRange, Slot
from clinic_booking.schemas.message_schema import OutboundMessage
from clinic_booking.schemas.session_schema import ConversationState, Session
from clinic_booking.tools.availability import AvailabilityEngine
from clinic_booking.tools.booking import BookingActionHandler
from clinic_booking.tools.services import menu_options
from clinic_booking.utils import normalize_text

logger = logging.getLogger(__name__)

Replies = list[OutboundMessage]


class ConversationController:
    """Runs the per-state handlers against the availability and booking tools."""

    def __init__(
        self,
        availability: AvailabilityEngine,
        booking: BookingActionHandler,
        bridge: ToolCallBridge,
        config: Optional[AppConfig] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._availability = availability
        self._booking = booking
        self._bridge = bridge
        self._config = config or settings
        self._clock = clock
        self._handlers = {
            ConversationState.IDLE: self._on_idle,
            ConversationState.AWAITING_DAY: self._on_awaiting_day,
            ConversationState.AWAITING_SLOT_CHOICE: self._on_slot_choice,
            ConversationState.AWAITING_RESCHEDULE_SLOT: self._on_slot_choice,
            ConversationState.AWAITING_NAME: self._on_awaiting_name,
            ConversationState.AWAITING_PHONE: self._on_awaiting_phone,
            ConversationState.POST_BOOKING: self._on_post_booking,
        }

    @property
    def _tz(self) -> str:
        return self._config.clinic.timezone

    async def step(self, session: Session, text: str) -> Replies:
        """
        Advance the conversation by one user message.

        Returns:
            The replies to send, in order.

        Raises:
            UpstreamError: If the calendar or LLM fails. The caller decides
                how to recover; the session may be partially mutated.
        """
        text = (text or "").strip()
        if not text:
            return []

        now = self._clock()
        sm = ConversationStateMachine(session)
        result = classify(text, session.state, self._tz, now, self._config.clinic.day_first)
        logger.info("State %s, intent %s", session.state.value, result.intent.value)

        replies = await self._handlers[session.state](session, sm, text, result)
        session.updated_at = now
        return replies

    # ------------------------------------------------------------------ #
    # Per-state handlers
    # ------------------------------------------------------------------ #

    async def _on_idle(
        self, session: Session, sm: ConversationStateMachine, text: str, result: IntentResult
    ) -> Replies:
        first_contact = not session.greeted
        session.greeted = True
        intent = result.intent

        if intent == Intent.URGENT:
            return await self._handoff(session, text)
        if intent in (Intent.GREETING, Intent.MENU):
            intro = msg.services_intro(self._config.clinic.name) if first_contact else None
            return self._services_menu(session, intro)
        if intent == Intent.BOOKING_REQUEST:
            return self._services_menu(session, msg.WHICH_SERVICE)
        if intent == Intent.SERVICE_SELECT:
            return await self._start_service(session, sm, result.service, result.date_range)
        if intent == Intent.NEW_APPOINTMENT:
            if result.service:
                return await self._start_service(session, sm, result.service, result.date_range)
            return self._services_menu(session, msg.WHICH_SERVICE)

        if intent in (Intent.CANCEL, Intent.RESCHEDULE, Intent.CONFIRM):
            appointment = await self._resolve_appointment(session)
            if appointment is not None:
                if intent == Intent.CANCEL and result.numbered:
                    sm.transition(TransitionTrigger.APPOINTMENT_RESTORED)
                    return [self._text(session, msg.cancel_check(appointment, self._tz))]
                if intent == Intent.CANCEL:
                    return await self._cancel(session, sm, appointment, text)
                if intent == Intent.RESCHEDULE:
                    return await self._begin_reschedule(session, sm, appointment, result.date_range)
                sm.transition(TransitionTrigger.APPOINTMENT_RESTORED)
                return [self._text(session, msg.confirmed_summary(appointment, self._tz))]
            if intent != Intent.CONFIRM:
                return [self._text(session, msg.NO_APPOINTMENT_FOUND)]

        return await self._delegate(session, text)

    async def _on_awaiting_day(
        self, session: Session, sm: ConversationStateMachine, text: str, result: IntentResult
    ) -> Replies:
        intent = result.intent
        if intent == Intent.CANCEL:
            return self._abandon(session, sm)
        if intent == Intent.URGENT:
            return await self._handoff(session, text)
        if (
            intent == Intent.SERVICE_SELECT
            and result.service != session.pending_service
            and not session.reschedule_appointment_id
        ):
            return await self._start_service(session, sm, result.service, result.date_range)
        if result.date_range is not None and session.pending_service:
            return await self._offer_slots(session, sm, result.date_range)
        return [self._text(session, msg.day_reprompt())]

    async def _on_slot_choice(
        self, session: Session, sm: ConversationStateMachine, text: str, result: IntentResult
    ) -> Replies:
        intent = result.intent
        if not session.last_slots:
            sm.transition(TransitionTrigger.NO_AVAILABILITY)
            return [self._text(session, msg.day_reprompt())]

        if intent == Intent.SLOT_SELECT:
            slot = pick_slot(session.last_slots, text, self._tz)
            if slot is None:
                return [self._text(session, msg.SLOT_REPROMPT)]
            if session.reschedule_appointment_id:
                return await self._reschedule(session, sm, slot)
            session.selected_slot = slot
            sm.transition(TransitionTrigger.SLOT_SELECTED)
            return [self._text(session, msg.slot_selected(slot, self._tz))]

        if intent == Intent.CANCEL:
            return self._abandon(session, sm)
        if intent == Intent.URGENT:
            return await self._handoff(session, text)
        if (
            intent == Intent.SERVICE_SELECT
            and result.service != session.pending_service
            and not session.reschedule_appointment_id
        ):
            return await self._start_service(session, sm, result.service, result.date_range)
        if result.date_range is not None:
            return await self._offer_slots(session, sm, result.date_range)
        return [self._text(session, msg.SLOT_REPROMPT)]

    async def _on_awaiting_name(
        self, session: Session, sm: ConversationStateMachine, text: str, result: IntentResult
    ) -> Replies:
        if result.intent == Intent.CANCEL:
            return self._abandon(session, sm)
        if session.selected_slot is None:
            return self._abandon(session, sm)
        try:
            session.pending_name = validate_name(text)
        except ValidationError as exc:
            logger.debug("Name rejected: %s", exc)
            return [self._text(session, msg.ASK_NAME_AGAIN)]
        sm.transition(TransitionTrigger.NAME_ACCEPTED)
        return [self._text(session, msg.ASK_PHONE)]

    async def _on_awaiting_phone(
        self, session: Session, sm: ConversationStateMachine, text: str, result: IntentResult
    ) -> Replies:
        if result.intent == Intent.CANCEL:
            return self._abandon(session, sm)
        slot = session.selected_slot
        if slot is None or not session.pending_name:
            return self._abandon(session, sm)
        try:
            phone = validate_phone(text, self._config.booking.min_phone_digits)
        except ValidationError as exc:
            logger.debug("Phone rejected: %s", exc)
            return [self._text(session, msg.PHONE_REPROMPT)]

        if not await self._availability.is_bookable(slot):
            return self._slot_taken(session, sm)

        appointment = await self._booking.book(
            session.pending_name,
            phone,
            slot,
            service=session.pending_service or slot.service,
            channel_id=session.user_id,
        )
        session.reset_booking_flow()
        session.active_appointment = appointment
        sm.transition(TransitionTrigger.BOOKED)
        return [self._text(
            session,
            msg.booking_confirmation(appointment, self._tz, self._config.clinic.address),
        )]

    async def _on_post_booking(
        self, session: Session, sm: ConversationStateMachine, text: str, result: IntentResult
    ) -> Replies:
        appointment = session.active_appointment
        if appointment is None:
            sm.transition(TransitionTrigger.NEW_APPOINTMENT)
            fresh = classify(
                text, session.state, self._tz, self._clock(), self._config.clinic.day_first
            )
            return await self._on_idle(session, sm, text, fresh)

        intent = result.intent
        if intent == Intent.CANCEL:
            return await self._cancel(session, sm, appointment, text)
        if intent == Intent.RESCHEDULE:
            live = await self._still_live(appointment)
            if live is None:
                return self._appointment_lost(session, sm)
            return await self._begin_reschedule(session, sm, live, result.date_range)
        if intent in (Intent.NEW_APPOINTMENT, Intent.SERVICE_SELECT):
            if result.service:
                return await self._start_service(session, sm, result.service, result.date_range)
            sm.transition(TransitionTrigger.NEW_APPOINTMENT)
            return self._services_menu(session, msg.NEW_APPOINTMENT)
        if intent in (Intent.CONFIRM, Intent.THANKS):
            return [self._text(session, msg.confirmed_summary(appointment, self._tz))]
        if intent == Intent.URGENT:
            return await self._handoff(session, text)
        if intent == Intent.MENU:
            return self._services_menu(session, None)
        return [self._text(session, msg.post_booking_reprompt())]

    # ------------------------------------------------------------------ #
    # Flow actions
    # ------------------------------------------------------------------ #

    async def _start_service(
        self,
        session: Session,
        sm: ConversationStateMachine,
        service: Optional[str],
        date_range: Optional[DateRange],
    ) -> Replies:
        session.reset_booking_flow()
        session.pending_service = service
        if date_range is not None:
            return await self._offer_slots(session, sm, date_range)
        sm.transition(TransitionTrigger.SERVICE_CHOSEN)
        return [self._text(session, msg.ask_for_day(service))]

    async def _offer_slots(
        self, session: Session, sm: ConversationStateMachine, date_range: DateRange
    ) -> Replies:
        service = session.pending_service
        try:
            slots = await self._availability.require_slots(service, date_range.start, date_range.end)
        except NoAvailabilityError:
            logger.info("No availability for %s in %s", service, date_range.label or "range")
            session.last_slots = []
            sm.transition(TransitionTrigger.NO_AVAILABILITY)
            return [self._text(session, msg.NO_AVAILABILITY)]

        session.pending_range = date_range
        session.last_slots = slots
        session.selected_slot = None
        trigger = (
            TransitionTrigger.RESCHEDULE_SLOTS_OFFERED
            if session.reschedule_appointment_id
            else TransitionTrigger.SLOTS_OFFERED
        )
        sm.transition(trigger)
        return [self._text(session, msg.slot_list(service, slots, self._tz))]

    async def _begin_reschedule(
        self,
        session: Session,
        sm: ConversationStateMachine,
        appointment: Appointment,
        date_range: Optional[DateRange],
    ) -> Replies:
        session.reset_booking_flow()
        session.pending_service = appointment.service
        session.reschedule_appointment_id = appointment.appointment_id
        sm.transition(TransitionTrigger.RESCHEDULE_REQUESTED)
        if date_range is not None:
            return await self._offer_slots(session, sm, date_range)
        return [self._text(session, msg.reschedule_start(appointment.service))]

    async def _reschedule(self, session: Session, sm: ConversationStateMachine, slot: Slot) -> Replies:
        appointment_id = session.reschedule_appointment_id
        if not await self._availability.is_bookable(slot):
            return self._slot_taken(session, sm)
        try:
            result = await self._booking.reschedule(appointment_id, slot)
        except (ValidationError, AppointmentNotFoundError) as exc:
            logger.warning("Reschedule of %s refused: %s", appointment_id, exc)
            session.reset_booking_flow()
            session.active_appointment = None
            sm.transition(TransitionTrigger.RESCHEDULE_ABANDONED)
            return [self._text(session, msg.APPOINTMENT_UNAVAILABLE)]

        active = session.active_appointment
        if active is not None and active.appointment_id == appointment_id:
            session.active_appointment = active.model_copy(update={
                "start": result.new_start,
                "end": result.new_end,
                "reminder_day_before_sent": False,
                "reminder_hours_before_sent": False,
            })
        else:
            session.active_appointment = await self._booking.get(appointment_id)
        session.reset_booking_flow()
        sm.transition(TransitionTrigger.RESCHEDULED)
        return [self._text(
            session,
            msg.reschedule_confirmation(session.active_appointment.service, result.new_start, self._tz),
        )]

    async def _cancel(
        self, session: Session, sm: ConversationStateMachine, appointment: Appointment, reason: str
    ) -> Replies:
        try:
            await self._booking.cancel(appointment.appointment_id, reason)
        except AppointmentNotFoundError:
            logger.warning("Appointment %s vanished before cancel", appointment.appointment_id)
            return self._appointment_lost(session, sm)
        session.reset_booking_flow()
        session.active_appointment = None
        sm.transition(TransitionTrigger.CANCELLED)
        return [self._text(session, msg.CANCELLED)]

    def _appointment_lost(self, session: Session, sm: ConversationStateMachine) -> Replies:
        session.reset_booking_flow()
        session.active_appointment = None
        sm.transition(TransitionTrigger.APPOINTMENT_LOST)
        return [self._text(session, msg.APPOINTMENT_UNAVAILABLE)]

    def _abandon(self, session: Session, sm: ConversationStateMachine) -> Replies:
        rescheduling = bool(session.reschedule_appointment_id)
        session.reset_booking_flow()
        if rescheduling:
            sm.transition(TransitionTrigger.RESCHEDULE_ABANDONED)
            return [self._text(session, msg.RESCHEDULE_STOPPED)]
        sm.transition(TransitionTrigger.FLOW_ABANDONED)
        return [self._text(session, msg.BOOKING_STOPPED)]

    def _slot_taken(self, session: Session, sm: ConversationStateMachine) -> Replies:
        session.clear_selection()
        sm.transition(TransitionTrigger.SLOT_TAKEN)
        return [self._text(session, msg.SLOT_TAKEN)]

    async def _handoff(self, session: Session, text: str) -> Replies:
        await self._booking.handoff_to_human(f"[{session.user_id}] {text}")
        return [self._text(session, msg.URGENT_GUIDANCE)]

    async def _delegate(self, session: Session, text: str) -> Replies:
        reply = await self._bridge.respond(session, text)
        replies = [self._text(session, reply)]
        if session.state == ConversationState.IDLE and "service" in normalize_text(reply):
            replies.extend(self._services_menu(session, None))
        return replies

    async def _resolve_appointment(self, session: Session) -> Optional[Appointment]:
        """The user's current appointment: the session's if still live, else the calendar's next."""
        active = session.active_appointment
        if active is not None:
            fresh = await self._still_live(active)
            if fresh is not None:
                session.active_appointment = fresh
                return fresh
        found = await self._booking.find_upcoming(session.user_id, self._clock())
        session.active_appointment = found
        return found

    async def _still_live(self, appointment: Appointment) -> Optional[Appointment]:
        """Re-read an appointment; None once it is gone, cancelled or in the past."""
        try:
            fresh = await self._booking.get(appointment.appointment_id)
        except AppointmentNotFoundError:
            return None
        if fresh.is_cancelled or fresh.start <= self._clock():
            return None
        return fresh

    # ------------------------------------------------------------------ #
    # Reply builders
    # ------------------------------------------------------------------ #

    @staticmethod
    def _text(session: Session, body: str) -> OutboundMessage:
        return OutboundMessage.text(session.user_id, body)

    def _services_menu(self, session: Session, intro: Optional[str]) -> Replies:
        replies = [self._text(session, intro)] if intro else []
        replies.append(OutboundMessage.menu(
            session.user_id, msg.SERVICES_MENU_TITLE, msg.SERVICES_MENU_BODY, menu_options(),
        ))
        return replies
