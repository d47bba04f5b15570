"""
Input validation for the booking dialog and slot selection.

Slot choices accept a 1-based ordinal into the offered list or a clock time
matching one slot's local start. A bare number is only ever an ordinal, so
"3" picks the third slot while "3:15 pm" is read as a time.

Usage:
    slot = pick_slot(session.last_slots, "10:00 am", "America/Santo_Domingo")
    name = validate_name("Ana Pérez")
    phone = validate_phone("(829) 555-0142", min_digits=8)
"""

import logging
import re
from typing import Optional

from clinic_booking.clinic_time import ZoneLike, to_local
from clinic_booking.errors import ValidationError
from clinic_booking.schemas.booking_schema import Slot
from clinic_booking.utils import extract_digits, normalize_text

logger = logging.getLogger(__name__)

# Validation thresholds
MIN_NAME_LENGTH = 3
MAX_NAME_LENGTH = 80
MAX_PHONE_DIGITS = 15

CONFIRMATION_WORDS = frozenset({
    "yes", "yeah", "yep", "ok", "okay", "sure", "done", "ready", "confirm",
    "no", "nope", "thanks", "thank you", "hi", "hello",
})

ORDINAL_WORDS = {
    "first": 1, "second": 2, "third": 3, "fourth": 4,
    "fifth": 5, "sixth": 6, "seventh": 7, "eighth": 8,
}

_ORDINAL_RE = re.compile(r"^(?:option|number|no\.?|#)?\s*(\d{1,2})$")
_ORDINAL_WORD_RE = re.compile(
    r"^(?:the\s+)?(" + "|".join(ORDINAL_WORDS) + r")(?:\s+(?:one|option|slot))?$"
)
_CLOCK_RE = re.compile(
    r"^(?:at\s+)?(\d{1,2})(?::(\d{2}))?\s*(am|pm|a\.m\.?|p\.m\.?|a m|p m)?$"
)


def _clean(text: str) -> str:
    return normalize_text(text).strip(" .!?")


def parse_ordinal(text: str) -> Optional[int]:
    """1-based position from "3", "#3", "option 3" or "the third one"."""
    t = _clean(text)
    m = _ORDINAL_RE.match(t)
    if m:
        return int(m.group(1))
    m = _ORDINAL_WORD_RE.match(t)
    if m:
        return ORDINAL_WORDS[m.group(1)]
    return None


def parse_clock(text: str) -> Optional[list[tuple[int, int]]]:
    """Candidate (hour, minute) readings of a clock time, most likely first.

    Requires a colon or an am/pm marker. Without am/pm, an hour below 12
    is tried as written and then as the afternoon hour.
    """
    t = _clean(text)
    m = _CLOCK_RE.match(t)
    if not m:
        return None
    hour_raw, minute_raw, meridiem = m.groups()
    if minute_raw is None and meridiem is None:
        return None

    hour = int(hour_raw)
    minute = int(minute_raw or 0)
    if minute > 59:
        return None

    if meridiem:
        if not 1 <= hour <= 12:
            return None
        is_pm = meridiem.startswith("p")
        return [(hour % 12 + (12 if is_pm else 0), minute)]

    if hour > 23:
        return None
    candidates = [(hour, minute)]
    if hour < 12:
        candidates.append((hour + 12, minute))
    return candidates


def looks_like_slot_choice(text: str) -> bool:
    return parse_ordinal(text) is not None or parse_clock(text) is not None


def pick_slot(slots: list[Slot], text: str, tz: ZoneLike) -> Optional[Slot]:
    """Resolve a user's reply to one of the offered slots, or None."""
    if not slots:
        return None

    ordinal = parse_ordinal(text)
    if ordinal is not None:
        if 1 <= ordinal <= len(slots):
            return slots[ordinal - 1]
        logger.debug("Ordinal %d outside 1..%d", ordinal, len(slots))
        return None

    for hour, minute in parse_clock(text) or []:
        for slot in slots:
            local = to_local(slot.start, tz)
            if local.hour == hour and local.minute == minute:
                return slot
    return None


def validate_name(value: str) -> str:
    """Return the cleaned patient name.

    Raises:
        ValidationError: For numeric, too short, or confirmation-word input.
    """
    name = re.sub(r"\s+", " ", (value or "").strip())
    normalized = normalize_text(name).strip(" .!?")
    if len(normalized) < MIN_NAME_LENGTH:
        raise ValidationError("Name is too short")
    if len(name) > MAX_NAME_LENGTH:
        raise ValidationError("Name is too long")
    if not re.search(r"[^\W\d_]", normalized):
        raise ValidationError("Name must contain letters")
    if normalized in CONFIRMATION_WORDS:
        raise ValidationError("Expected a name, got a confirmation")
    return name


def validate_phone(value: str, min_digits: int = 8) -> str:
    """Return the phone number as digits only.

    Raises:
        ValidationError: If the digit count is outside ``min_digits``..15.
    """
    digits = extract_digits(value)
    if len(digits) < min_digits:
        raise ValidationError(f"Phone number needs at least {min_digits} digits")
    if len(digits) > MAX_PHONE_DIGITS:
        raise ValidationError("Phone number has too many digits")
    return digits
