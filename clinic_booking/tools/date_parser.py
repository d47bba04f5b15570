"""
Natural-language date parser.

Maps phrases like "tomorrow", "next friday", "june 14th", "19/06" or "in june" to a
half-open ``[start, end)`` range of clinic-local days, as UTC instants.
Diacritics and case are ignored. Returns None when nothing date-like is found.
"""

import logging
import re
from datetime import date, datetime, time, timedelta
from typing import Optional

from dateutil import parser as dtparser
from dateutil.relativedelta import relativedelta

from clinic_booking.clinic_time import (
    ZoneLike,
    local_date,
    month_bounds,
    utc_now,
    zoned_to_utc,
)
from clinic_booking.config import settings
from clinic_booking.schemas.booking_schema import DateRange
from clinic_booking.utils import normalize_text

logger = logging.getLogger(__name__)

WEEKDAYS: dict[str, int] = {
    "monday": 0, "mon": 0,
    "tuesday": 1, "tue": 1, "tues": 1,
    "wednesday": 2, "wed": 2,
    "thursday": 3, "thu": 3, "thur": 3, "thurs": 3,
    "friday": 4, "fri": 4,
    "saturday": 5, "sat": 5,
    "sunday": 6, "sun": 6,
}

MONTHS: dict[str, int] = {
    "january": 1, "jan": 1,
    "february": 2, "feb": 2,
    "march": 3, "mar": 3,
    "april": 4, "apr": 4,
    "may": 5,
    "june": 6, "jun": 6,
    "july": 7, "jul": 7,
    "august": 8, "aug": 8,
    "september": 9, "sep": 9, "sept": 9,
    "october": 10, "oct": 10,
    "november": 11, "nov": 11,
    "december": 12, "dec": 12,
}


def _alternation(words: dict[str, int]) -> str:
    return "|".join(sorted(words, key=len, reverse=True))


_WEEKDAY = _alternation(WEEKDAYS)
_MONTH = _alternation(MONTHS)

_DAY_AFTER_TOMORROW_RE = re.compile(r"\bday after tomorrow\b")
_TOMORROW_RE = re.compile(r"\b(?:tomorrow|tmrw|tmr)\b")
_TODAY_RE = re.compile(r"\b(?:today|tonight)\b")
_THIS_WEEK_RE = re.compile(r"\b(?:this|current) week\b")
_NEXT_WEEK_RE = re.compile(r"\b(?:next|following|coming) week\b|\bweek after\b")
_DAY = r"\d{1,2}(?:st|nd|rd|th)?"
# Only these shapes are handed to dateutil; bare numbers and clock times are not dates.
_EXPLICIT_DATE_RE = re.compile(
    r"\b(?P<iso>\d{4}-\d{1,2}-\d{1,2})\b"
    r"|\b(?P<numeric>\d{1,2}/\d{1,2}(?:/(?:\d{4}|\d{2}))?|\d{1,2}([.-])\d{1,2}\1(?:\d{4}|\d{2}))\b"
    rf"|\b(?P<month_day>(?:{_MONTH})\s+{_DAY}(?:\s+(?P<md_year>\d{{4}}))?)\b"
    rf"|\b(?P<day_month>{_DAY}\s+(?:of\s+)?(?:{_MONTH})(?:\s+(?P<dm_year>\d{{4}}))?)\b"
    r"|\b(?P<ordinal>\d{1,2}(?:st|nd|rd|th))\b"
)
_MONTH_ONLY_RE = re.compile(rf"^({_MONTH})$|\b(?:in|for|during)\s+({_MONTH})\b")
_WEEKDAY_RE = re.compile(rf"\b({_WEEKDAY})\b")
_NEXT_WEEKDAY_RE = re.compile(rf"\b(?:next|following)\s+(?:{_WEEKDAY})\b")


def _day_range(day: date, tz: ZoneLike, label: str) -> DateRange:
    return DateRange(
        start=zoned_to_utc(day, time(0, 0), tz),
        end=zoned_to_utc(day + timedelta(days=1), time(0, 0), tz),
        label=label,
    )


def _labelled(day: date) -> str:
    return f"{day.strftime('%A, %B')} {day.day}"


def _explicit_day(match: re.Match, today: date, day_first: bool) -> Optional[date]:
    """Resolve a matched date token with dateutil, filling gaps from ``today``.

    Numeric dates try the configured order first and the other order if that
    is impossible. Without a year, a day already past moves to the next year,
    or to the next month when only the day of month was given.
    """
    token = match.group(0)
    default = datetime(today.year, today.month, today.day)
    if match.group("iso"):
        attempts = [{"yearfirst": True, "dayfirst": False}]
    else:
        if match.group("numeric"):
            token = re.sub(r"[.-]", "/", token)
        attempts = [{"dayfirst": day_first}, {"dayfirst": not day_first}]

    parsed = None
    for options in attempts:
        try:
            parsed = dtparser.parse(token, default=default, **options).date()
            break
        except (ValueError, OverflowError) as exc:
            logger.debug("Could not read %r as a date (%s): %s", token, options, exc)
    if parsed is None:
        return None

    has_year = any(match.group(g) for g in ("iso", "md_year", "dm_year")) or (
        bool(match.group("numeric")) and len(re.findall(r"\d+", token)) == 3
    )
    if not has_year and parsed < today:
        step = relativedelta(months=1) if match.group("ordinal") else relativedelta(years=1)
        parsed = parsed + step
    return parsed


def parse_date_range(
    text: str,
    tz: Optional[ZoneLike] = None,
    now: Optional[datetime] = None,
    day_first: Optional[bool] = None,
) -> Optional[DateRange]:
    """Parse a free-text date expression into a range of whole clinic-local days.

    Args:
        text: User input, in any case, with or without accents.
        tz: Clinic time zone; defaults to the configured one.
        now: Reference instant; defaults to the current time.
        day_first: Read ``04/07`` as 4 July; defaults to the clinic setting.

    Returns:
        A DateRange, or None if no date expression was recognized.
    """
    tz = tz or settings.clinic.timezone
    now = now or utc_now()
    if day_first is None:
        day_first = settings.clinic.day_first
    t = re.sub(r"[,!?]+|\.(?!\d)", " ", normalize_text(text or ""))
    t = re.sub(r"\s+", " ", t).strip()
    if not t:
        return None

    today = local_date(now, tz)

    if _DAY_AFTER_TOMORROW_RE.search(t):
        return _day_range(today + timedelta(days=2), tz, "the day after tomorrow")
    if _TOMORROW_RE.search(t):
        return _day_range(today + timedelta(days=1), tz, "tomorrow")
    if _TODAY_RE.search(t):
        return _day_range(today, tz, "today")

    if _THIS_WEEK_RE.search(t):
        days_left = 7 - today.weekday()
        return DateRange(
            start=zoned_to_utc(today, time(0, 0), tz),
            end=zoned_to_utc(today + timedelta(days=days_left), time(0, 0), tz),
            label="this week",
        )
    if _NEXT_WEEK_RE.search(t):
        first = today + timedelta(days=1)
        return DateRange(
            start=zoned_to_utc(first, time(0, 0), tz),
            end=zoned_to_utc(first + timedelta(days=7), time(0, 0), tz),
            label="next week",
        )

    m = _EXPLICIT_DATE_RE.search(t)
    if m:
        day = _explicit_day(m, today, day_first)
        return _day_range(day, tz, _labelled(day)) if day else None

    m = _MONTH_ONLY_RE.search(t)
    if m:
        month = MONTHS[m.group(1) or m.group(2)]
        year = today.year + 1 if month < today.month else today.year
        start, end = month_bounds(year, month, tz)
        return DateRange(start=start, end=end, label=date(year, month, 1).strftime("%B %Y"))

    m = _WEEKDAY_RE.search(t)
    if m:
        target = WEEKDAYS[m.group(1)]
        diff = (target - today.weekday()) % 7
        if diff == 0 and _NEXT_WEEKDAY_RE.search(t):
            diff = 7
        day = today + timedelta(days=diff)
        return _day_range(day, tz, _labelled(day))

    return None


def contains_date_expression(
    text: str,
    tz: Optional[ZoneLike] = None,
    now: Optional[datetime] = None,
    day_first: Optional[bool] = None,
) -> bool:
    return parse_date_range(text, tz, now, day_first) is not None
