"""
Clinic-time arithmetic.

Every day boundary, weekday lookup, and display string is computed by
projecting an absolute instant onto the clinic's IANA zone and back.
The process's own local time zone is never consulted: all instants
handled here are timezone-aware and normalized to UTC on the way out.
"""

from datetime import date, datetime, time, timedelta, timezone
from functools import lru_cache
from typing import Iterator, Union
from zoneinfo import ZoneInfo

from clinic_booking.config import WEEKDAY_KEYS

ZoneLike = Union[str, ZoneInfo]


@lru_cache(maxsize=32)
def _zone_by_name(name: str) -> ZoneInfo:
    return ZoneInfo(name)


def get_zone(tz: ZoneLike) -> ZoneInfo:
    """Resolve a zone name (or pass through a ZoneInfo)."""
    return tz if isinstance(tz, ZoneInfo) else _zone_by_name(tz)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_aware(value: datetime, tz: ZoneLike) -> datetime:
    """Return ``value`` as a UTC instant; naive values are read as clinic wall-clock time."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=get_zone(tz))
    return value.astimezone(timezone.utc)


def to_local(instant: datetime, tz: ZoneLike) -> datetime:
    """Project an absolute instant onto the clinic's wall clock."""
    return ensure_aware(instant, tz).astimezone(get_zone(tz))


def local_date(instant: datetime, tz: ZoneLike) -> date:
    return to_local(instant, tz).date()


def weekday_key(day: date) -> str:
    """Weekday key (``mon`` .. ``sun``) of a calendar date."""
    return WEEKDAY_KEYS[day.weekday()]


def zoned_to_utc(day: date, clock: time, tz: ZoneLike) -> datetime:
    """Convert a clinic-local date and wall-clock time to a UTC instant."""
    local = datetime.combine(day, clock).replace(tzinfo=get_zone(tz))
    return local.astimezone(timezone.utc)


def start_of_local_day(instant: datetime, tz: ZoneLike) -> datetime:
    """UTC instant of clinic-local midnight on the day containing ``instant``."""
    return zoned_to_utc(local_date(instant, tz), time(0, 0), tz)


def add_local_days(instant: datetime, days: int, tz: ZoneLike) -> datetime:
    """Clinic-local midnight ``days`` calendar days after the day containing ``instant``.

    Calendar days are counted on local dates, so a DST change never shifts
    the result off midnight.
    """
    target = local_date(instant, tz) + timedelta(days=days)
    return zoned_to_utc(target, time(0, 0), tz)


def iter_local_dates(start: datetime, end: datetime, tz: ZoneLike) -> Iterator[date]:
    """Yield every clinic-local date from ``start``'s date to ``end``'s date, inclusive."""
    current = local_date(start, tz)
    last = local_date(end, tz)
    while current <= last:
        yield current
        current += timedelta(days=1)


def month_bounds(year: int, month: int, tz: ZoneLike) -> tuple[datetime, datetime]:
    """``[first day 00:00, first day of next month 00:00)`` in clinic time, as UTC."""
    start = zoned_to_utc(date(year, month, 1), time(0, 0), tz)
    next_year, next_month = (year + 1, 1) if month == 12 else (year, month + 1)
    end = zoned_to_utc(date(next_year, next_month, 1), time(0, 0), tz)
    return start, end


def format_time(instant: datetime, tz: ZoneLike) -> str:
    """``09:30 AM`` style clock time in clinic time."""
    return to_local(instant, tz).strftime("%I:%M %p")


def format_date(instant: datetime, tz: ZoneLike) -> str:
    """``Friday, June 14, 2026`` style date in clinic time."""
    local = to_local(instant, tz)
    return f"{local.strftime('%A, %B')} {local.day}, {local.year}"


def format_short_date(instant: datetime, tz: ZoneLike) -> str:
    """``Fri Jun 14`` style date in clinic time."""
    local = to_local(instant, tz)
    return f"{local.strftime('%a %b')} {local.day}"
