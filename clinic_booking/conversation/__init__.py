from clinic_booking.conversation.intents import Intent, IntentResult, classify
from clinic_booking.conversation.slot_manager import pick_slot, validate_name, validate_phone
from clinic_booking.conversation.state_machine import (
    ConversationStateMachine,
    InvalidTransitionError,
    TransitionTrigger,
)

__all__ = [
    "ConversationStateMachine",
    "InvalidTransitionError",
    "TransitionTrigger",
    "Intent",
    "IntentResult",
    "classify",
    "pick_slot",
    "validate_name",
    "validate_phone",
]
