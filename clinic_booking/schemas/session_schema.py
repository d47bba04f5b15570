"""Per-user conversation session persisted between inbound messages."""

import json
import logging
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from clinic_booking.schemas.booking_schema import Appointment, DateRange, Slot

logger = logging.getLogger(__name__)

MAX_REMEMBERED_MESSAGE_IDS = 20


class ConversationState(str, Enum):
    """All possible states of a booking conversation."""
    IDLE = "idle"
    AWAITING_DAY = "awaiting_day"
    AWAITING_SLOT_CHOICE = "awaiting_slot_choice"
    AWAITING_NAME = "awaiting_name"
    AWAITING_PHONE = "awaiting_phone"
    POST_BOOKING = "post_booking"
    AWAITING_RESCHEDULE_SLOT = "awaiting_reschedule_slot"


class ChatMessage(BaseModel):
    """One turn of LLM fallback context."""
    role: str
    content: str


class Session(BaseModel):
    """
    Conversation and booking state for one chat user.

    Mutated only by the conversation controller while one message is
    processed, then saved as JSON. Loading is lenient so that records
    written by older or newer versions never fail to load.
    """

    model_config = ConfigDict(extra="ignore")

    user_id: str = ""
    state: ConversationState = ConversationState.IDLE
    messages: list[ChatMessage] = Field(default_factory=list)
    pending_service: Optional[str] = None
    pending_range: Optional[DateRange] = None
    last_slots: list[Slot] = Field(default_factory=list)
    selected_slot: Optional[Slot] = None
    pending_name: Optional[str] = None
    active_appointment: Optional[Appointment] = None
    reschedule_appointment_id: Optional[str] = None
    last_processed_message_id: Optional[str] = None
    recent_message_ids: list[str] = Field(default_factory=list)
    greeted: bool = False
    updated_at: Optional[datetime] = None

    # ------------------------------------------------------------------ #
    # Message de-duplication
    # ------------------------------------------------------------------ #

    def has_processed(self, message_id: Optional[str]) -> bool:
        if not message_id:
            return False
        return message_id == self.last_processed_message_id or message_id in self.recent_message_ids

    def mark_processed(self, message_id: Optional[str]) -> None:
        if not message_id:
            return
        self.last_processed_message_id = message_id
        self.recent_message_ids = (self.recent_message_ids + [message_id])[-MAX_REMEMBERED_MESSAGE_IDS:]

    # ------------------------------------------------------------------ #
    # Dialog helpers
    # ------------------------------------------------------------------ #

    def remember(self, role: str, content: str, limit: int) -> None:
        """Append to the LLM context, keeping only the last ``limit`` turns."""
        self.messages = (self.messages + [ChatMessage(role=role, content=content)])[-limit:]

    def clear_selection(self) -> None:
        """Forget everything collected for an in-progress booking."""
        self.last_slots = []
        self.selected_slot = None
        self.pending_range = None
        self.pending_name = None

    def reset_booking_flow(self) -> None:
        self.clear_selection()
        self.pending_service = None
        self.reschedule_appointment_id = None

    # ------------------------------------------------------------------ #
    # Serialization
    # ------------------------------------------------------------------ #

    def to_json(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_record(cls, user_id: str, raw: Any) -> "Session":
        """Build a session from a stored record, defaulting whatever does not fit.

        Unknown fields are ignored, missing fields take defaults, and a field
        whose stored value no longer validates is dropped individually.
        Anything unreadable yields a fresh session.
        """
        if isinstance(raw, (str, bytes)):
            try:
                raw = json.loads(raw)
            except json.JSONDecodeError:
                logger.warning("Discarding unreadable session record for %s", user_id)
                return cls(user_id=user_id)
        if not isinstance(raw, dict):
            return cls(user_id=user_id)

        data = dict(raw)
        data["user_id"] = user_id
        while True:
            try:
                return cls.model_validate(data)
            except PydanticValidationError as exc:
                bad_fields = {err["loc"][0] for err in exc.errors() if err["loc"]}
                droppable = (bad_fields & data.keys()) - {"user_id"}
                if not droppable:
                    logger.warning("Session record for %s does not validate; starting fresh", user_id)
                    return cls(user_id=user_id)
                logger.warning(
                    "Session record for %s has stale fields %s; using defaults",
                    user_id, sorted(str(f) for f in droppable),
                )
                for name in droppable:
                    del data[name]
