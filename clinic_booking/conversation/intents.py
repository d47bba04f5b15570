"""
Single classification step for free-text input.

Every inbound text is mapped to exactly one Intent before the state
machine acts on it. Keyword tables are checked in a fixed priority order,
and a few shapes only count in the states that expect them (slot choices,
the numbered post-booking options).

Greeting policy: a message is a greeting only when it is short (at most
40 characters) and every word in it is a greeting word. Anything that also
names a service, a date, or a booking keyword is classified by that instead.
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from clinic_booking.clinic_time import ZoneLike
from clinic_booking.conversation.slot_manager import looks_like_slot_choice
from clinic_booking.schemas.booking_schema import DateRange
from clinic_booking.schemas.session_schema import ConversationState
from clinic_booking.tools.date_parser import parse_date_range
from clinic_booking.tools.services import URGENT_SERVICE, match_service
from clinic_booking.utils import normalize_text

logger = logging.getLogger(__name__)

MAX_GREETING_LENGTH = 40


class Intent(str, Enum):
    """Closed set of things a user message can mean."""
    SERVICE_SELECT = "service_select"
    DATE_EXPRESSION = "date_expression"
    SLOT_SELECT = "slot_select"
    CANCEL = "cancel"
    RESCHEDULE = "reschedule"
    NEW_APPOINTMENT = "new_appointment"
    CONFIRM = "confirm"
    THANKS = "thanks"
    GREETING = "greeting"
    MENU = "menu"
    URGENT = "urgent"
    BOOKING_REQUEST = "booking_request"
    UNKNOWN = "unknown"


@dataclass
class IntentResult:
    """Outcome of classifying one message."""
    intent: Intent
    service: Optional[str] = None
    date_range: Optional[DateRange] = None
    numbered: bool = False


SLOT_STATES = frozenset({
    ConversationState.AWAITING_SLOT_CHOICE,
    ConversationState.AWAITING_RESCHEDULE_SLOT,
})

POST_BOOKING_OPTIONS = {"1": Intent.CONFIRM, "2": Intent.RESCHEDULE, "3": Intent.CANCEL}

# Reminders end with the numbered options, so an idle session accepts them too.
# A numbered cancel from idle is only a request; the controller asks again first.
NUMBERED_OPTION_STATES = frozenset({ConversationState.POST_BOOKING, ConversationState.IDLE})


class IntentClassifier:
    """Keyword tables and the priority order they are checked in."""

    URGENT_KEYWORDS = [
        "emergency", "urgent", "severe pain", "unbearable", "a lot of pain",
        "bleeding", "swelling", "swollen", "fever", "abscess", "trauma",
        "knocked out", "broken tooth", "cracked tooth", "accident",
    ]

    CANCEL_KEYWORDS = ["cancel", "call off", "won't make it", "wont make it", "can't make it", "cant make it"]

    RESCHEDULE_KEYWORDS = [
        "reschedule", "re-schedule", "postpone", "move my appointment",
        "change my appointment", "change the appointment", "change the time",
        "another time", "different time", "another day", "different day",
    ]

    NEW_APPOINTMENT_KEYWORDS = [
        "new appointment", "another appointment", "book another",
        "second appointment", "one more appointment",
    ]

    MENU_KEYWORDS = ["menu", "services", "what do you offer", "options", "treatments"]

    BOOKING_KEYWORDS = ["appointment", "book", "booking", "schedule", "reserve", "visit", "see the dentist"]

    THANKS_KEYWORDS = ["thanks", "thank you", "thx", "ty", "appreciate it", "great", "perfect", "awesome"]

    CONFIRM_KEYWORDS = [
        "yes", "yeah", "yep", "confirm", "confirmed", "ok", "okay",
        "sure", "sounds good", "see you", "i'll be there", "ill be there",
    ]

    GREETING_WORDS = frozenset({
        "hi", "hello", "hey", "hola", "howdy", "greetings", "yo", "good",
        "morning", "afternoon", "evening", "day", "there", "again", "everyone",
    })

    def classify(
        self,
        text: str,
        state: ConversationState = ConversationState.IDLE,
        tz: Optional[ZoneLike] = None,
        now: Optional[datetime] = None,
        day_first: Optional[bool] = None,
    ) -> IntentResult:
        t = normalize_text(text)
        if not t:
            return IntentResult(Intent.UNKNOWN)
        bare = t.strip(" .!?")

        if state in NUMBERED_OPTION_STATES and bare in POST_BOOKING_OPTIONS:
            return IntentResult(POST_BOOKING_OPTIONS[bare], numbered=True)

        if state in SLOT_STATES and looks_like_slot_choice(text):
            return IntentResult(Intent.SLOT_SELECT)

        service = match_service(text)
        padded = " " + re.sub(r"[^\w'-]+", " ", t).strip() + " "

        if service == URGENT_SERVICE or self._has_any(padded, self.URGENT_KEYWORDS):
            return IntentResult(Intent.URGENT, service=URGENT_SERVICE)
        if self._has_any(padded, self.CANCEL_KEYWORDS):
            return IntentResult(Intent.CANCEL)
        date_range = parse_date_range(text, tz, now, day_first)
        if self._has_any(padded, self.RESCHEDULE_KEYWORDS):
            return IntentResult(Intent.RESCHEDULE, service=service, date_range=date_range)
        if self._has_any(padded, self.NEW_APPOINTMENT_KEYWORDS):
            return IntentResult(Intent.NEW_APPOINTMENT, service=service, date_range=date_range)

        if service:
            return IntentResult(Intent.SERVICE_SELECT, service=service, date_range=date_range)
        if date_range:
            return IntentResult(Intent.DATE_EXPRESSION, date_range=date_range)

        if self._has_any(padded, self.MENU_KEYWORDS):
            return IntentResult(Intent.MENU)
        if self._has_any(padded, self.BOOKING_KEYWORDS):
            return IntentResult(Intent.BOOKING_REQUEST)
        if self._has_any(padded, self.THANKS_KEYWORDS):
            return IntentResult(Intent.THANKS)
        if self._has_any(padded, self.CONFIRM_KEYWORDS):
            return IntentResult(Intent.CONFIRM)
        if self.is_greeting(t):
            return IntentResult(Intent.GREETING)
        return IntentResult(Intent.UNKNOWN)

    def is_greeting(self, text: str) -> bool:
        t = normalize_text(text)
        if not t or len(t) > MAX_GREETING_LENGTH:
            return False
        words = re.findall(r"[a-z']+", t)
        return bool(words) and all(w in self.GREETING_WORDS for w in words)

    @staticmethod
    def _has_any(padded: str, keywords: list[str]) -> bool:
        return any(f" {kw} " in padded for kw in keywords)


_classifier = IntentClassifier()


def classify(
    text: str,
    state: ConversationState = ConversationState.IDLE,
    tz: Optional[ZoneLike] = None,
    now: Optional[datetime] = None,
    day_first: Optional[bool] = None,
) -> IntentResult:
    """Classify one message with the shared keyword tables."""
    result = _classifier.classify(text, state, tz, now, day_first)
    logger.debug("Classified %r in %s as %s", text[:60], state.value, result.intent.value)
    return result
