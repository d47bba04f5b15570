"""
Finite state machine for the booking conversation.

The session's state only changes through an explicit transition declared
in TRANSITIONS. ``idle`` and ``post_booking`` are stable; every other state
waits for one input shape and reprompts (no transition) until it arrives.

Usage:
    sm = ConversationStateMachine(session)
    sm.transition(TransitionTrigger.SERVICE_CHOSEN)
    assert session.state == ConversationState.AWAITING_DAY
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from clinic_booking.schemas.session_schema import ConversationState, Session

logger = logging.getLogger(__name__)

S = ConversationState


class TransitionTrigger(str, Enum):
    """Events that cause state transitions."""
    SERVICE_CHOSEN = "service_chosen"
    SLOTS_OFFERED = "slots_offered"
    RESCHEDULE_SLOTS_OFFERED = "reschedule_slots_offered"
    NO_AVAILABILITY = "no_availability"
    SLOT_SELECTED = "slot_selected"
    NAME_ACCEPTED = "name_accepted"
    BOOKED = "booked"
    RESCHEDULE_REQUESTED = "reschedule_requested"
    RESCHEDULED = "rescheduled"
    CANCELLED = "cancelled"
    NEW_APPOINTMENT = "new_appointment"
    APPOINTMENT_RESTORED = "appointment_restored"
    SLOT_TAKEN = "slot_taken"
    FLOW_ABANDONED = "flow_abandoned"
    RESCHEDULE_ABANDONED = "reschedule_abandoned"
    APPOINTMENT_LOST = "appointment_lost"


@dataclass
class Transition:
    """A single valid state transition."""
    from_state: ConversationState
    to_state: ConversationState
    trigger: TransitionTrigger


@dataclass
class StateEntry:
    """Recorded history entry for a state visit."""
    state: ConversationState
    entered_at: datetime
    trigger: Optional[TransitionTrigger] = None


class InvalidTransitionError(Exception):
    """Raised when a transition is not valid from the current state."""


class ConversationStateMachine:
    """
    Drives ``Session.state`` through the declared transition table.

    Any attempt to move the session along an undeclared edge is rejected
    with an error listing the triggers valid from the current state.
    """

    TRANSITIONS: list[Transition] = [
        # --- Service and date collection ---
        Transition(S.IDLE, S.AWAITING_DAY, TransitionTrigger.SERVICE_CHOSEN),
        Transition(S.AWAITING_DAY, S.AWAITING_DAY, TransitionTrigger.SERVICE_CHOSEN),
        Transition(S.AWAITING_SLOT_CHOICE, S.AWAITING_DAY, TransitionTrigger.SERVICE_CHOSEN),
        Transition(S.POST_BOOKING, S.AWAITING_DAY, TransitionTrigger.SERVICE_CHOSEN),

        Transition(S.IDLE, S.AWAITING_SLOT_CHOICE, TransitionTrigger.SLOTS_OFFERED),
        Transition(S.AWAITING_DAY, S.AWAITING_SLOT_CHOICE, TransitionTrigger.SLOTS_OFFERED),
        Transition(S.AWAITING_SLOT_CHOICE, S.AWAITING_SLOT_CHOICE, TransitionTrigger.SLOTS_OFFERED),
        Transition(S.POST_BOOKING, S.AWAITING_SLOT_CHOICE, TransitionTrigger.SLOTS_OFFERED),

        Transition(S.IDLE, S.AWAITING_DAY, TransitionTrigger.NO_AVAILABILITY),
        Transition(S.AWAITING_DAY, S.AWAITING_DAY, TransitionTrigger.NO_AVAILABILITY),
        Transition(S.AWAITING_SLOT_CHOICE, S.AWAITING_DAY, TransitionTrigger.NO_AVAILABILITY),
        Transition(S.AWAITING_RESCHEDULE_SLOT, S.AWAITING_DAY, TransitionTrigger.NO_AVAILABILITY),
        Transition(S.POST_BOOKING, S.AWAITING_DAY, TransitionTrigger.NO_AVAILABILITY),

        # --- Patient details and booking ---
        Transition(S.AWAITING_SLOT_CHOICE, S.AWAITING_NAME, TransitionTrigger.SLOT_SELECTED),
        Transition(S.AWAITING_NAME, S.AWAITING_PHONE, TransitionTrigger.NAME_ACCEPTED),
        Transition(S.AWAITING_PHONE, S.POST_BOOKING, TransitionTrigger.BOOKED),
        Transition(S.IDLE, S.POST_BOOKING, TransitionTrigger.BOOKED),

        # --- Reschedule ---
        Transition(S.POST_BOOKING, S.AWAITING_DAY, TransitionTrigger.RESCHEDULE_REQUESTED),
        Transition(S.IDLE, S.AWAITING_DAY, TransitionTrigger.RESCHEDULE_REQUESTED),
        Transition(S.AWAITING_DAY, S.AWAITING_RESCHEDULE_SLOT, TransitionTrigger.RESCHEDULE_SLOTS_OFFERED),
        Transition(S.AWAITING_RESCHEDULE_SLOT, S.AWAITING_RESCHEDULE_SLOT,
                   TransitionTrigger.RESCHEDULE_SLOTS_OFFERED),
        Transition(S.AWAITING_RESCHEDULE_SLOT, S.POST_BOOKING, TransitionTrigger.RESCHEDULED),

        # --- Cancel and follow-ups ---
        Transition(S.POST_BOOKING, S.IDLE, TransitionTrigger.CANCELLED),
        Transition(S.IDLE, S.IDLE, TransitionTrigger.CANCELLED),
        Transition(S.POST_BOOKING, S.IDLE, TransitionTrigger.NEW_APPOINTMENT),
        Transition(S.IDLE, S.POST_BOOKING, TransitionTrigger.APPOINTMENT_RESTORED),
        Transition(S.POST_BOOKING, S.IDLE, TransitionTrigger.APPOINTMENT_LOST),
        Transition(S.IDLE, S.IDLE, TransitionTrigger.APPOINTMENT_LOST),

        # --- Slot lost between offer and booking ---
        Transition(S.AWAITING_PHONE, S.AWAITING_DAY, TransitionTrigger.SLOT_TAKEN),
        Transition(S.AWAITING_RESCHEDULE_SLOT, S.AWAITING_DAY, TransitionTrigger.SLOT_TAKEN),

        # --- Leaving a flow midway ---
        Transition(S.AWAITING_DAY, S.IDLE, TransitionTrigger.FLOW_ABANDONED),
        Transition(S.AWAITING_SLOT_CHOICE, S.IDLE, TransitionTrigger.FLOW_ABANDONED),
        Transition(S.AWAITING_NAME, S.IDLE, TransitionTrigger.FLOW_ABANDONED),
        Transition(S.AWAITING_PHONE, S.IDLE, TransitionTrigger.FLOW_ABANDONED),
        Transition(S.AWAITING_DAY, S.POST_BOOKING, TransitionTrigger.RESCHEDULE_ABANDONED),
        Transition(S.AWAITING_RESCHEDULE_SLOT, S.POST_BOOKING, TransitionTrigger.RESCHEDULE_ABANDONED),
    ]

    def __init__(self, session: Session) -> None:
        self._session = session
        self._history: list[StateEntry] = [
            StateEntry(state=session.state, entered_at=datetime.now(timezone.utc))
        ]

    @property
    def current_state(self) -> ConversationState:
        return self._session.state

    def transition(self, trigger: TransitionTrigger) -> ConversationState:
        """
        Execute a state transition on the session.

        Args:
            trigger: The event triggering the transition.

        Returns:
            The new conversation state.

        Raises:
            InvalidTransitionError: If no valid transition exists.
        """
        for t in self.TRANSITIONS:
            if t.from_state == self.current_state and t.trigger == trigger:
                old_state = self.current_state
                self._session.state = t.to_state
                self._history.append(StateEntry(
                    state=t.to_state,
                    entered_at=datetime.now(timezone.utc),
                    trigger=trigger,
                ))
                logger.debug(
                    "State transition: %s -> %s (trigger: %s)",
                    old_state.value, t.to_state.value, trigger.value,
                )
                return t.to_state

        valid = [t.value for t in self.get_valid_triggers()]
        raise InvalidTransitionError(
            f"No valid transition from '{self.current_state.value}' "
            f"with trigger '{trigger.value}'. Valid triggers: {valid}"
        )

    def can_transition(self, trigger: TransitionTrigger) -> bool:
        return trigger in self.get_valid_triggers()

    def get_valid_triggers(self) -> list[TransitionTrigger]:
        """Return all triggers valid from the current state."""
        return [t.trigger for t in self.TRANSITIONS if t.from_state == self.current_state]

    def get_state_trace(self) -> list[str]:
        """Return ordered list of state names visited."""
        return [entry.state.value for entry in self._history]
