"""Dental service catalog with menu ids, aliases, and appointment durations."""

import logging
import re
from typing import Optional

from clinic_booking.config import settings
from clinic_booking.schemas.message_schema import SelectionOption
from clinic_booking.utils import normalize_text

logger = logging.getLogger(__name__)

FALLBACK_SERVICE = "other"
URGENT_SERVICE = "emergency"

SERVICE_CATALOG: dict[str, dict] = {
    "cosmetic_dentistry": {
        "title": "Cosmetic dentistry",
        "menu_id": "svc_cosmetic",
        "emoji": "✨",
    },
    "orthodontics": {
        "title": "Orthodontics",
        "menu_id": "svc_orthodontics",
        "emoji": "\U0001F9B7",
    },
    "implants": {
        "title": "Implants",
        "menu_id": "svc_implants",
        "emoji": "\U0001F529",
    },
    "emergency": {
        "title": "Emergencies",
        "menu_id": "svc_emergency",
        "emoji": "\U0001F198",
    },
    "cleaning_prevention": {
        "title": "Cleanings & prevention",
        "menu_id": "svc_cleaning_prevention",
        "emoji": "\U0001F9FC",
    },
    "pediatric_dentistry": {
        "title": "Pediatric dentistry",
        "menu_id": "svc_pediatric",
        "emoji": "\U0001F476",
    },
}

SERVICE_ALIASES: dict[str, str] = {
    "cosmetic": "cosmetic_dentistry", "whitening": "cosmetic_dentistry",
    "veneers": "cosmetic_dentistry", "veneer": "cosmetic_dentistry",
    "orthodontic": "orthodontics", "ortho": "orthodontics", "braces": "orthodontics",
    "aligners": "orthodontics", "invisalign": "orthodontics",
    "implant": "implants",
    "emergencies": "emergency", "urgent care": "emergency",
    "cleaning": "cleaning_prevention", "cleanings": "cleaning_prevention",
    "prevention": "cleaning_prevention", "checkup": "cleaning_prevention",
    "check-up": "cleaning_prevention", "check up": "cleaning_prevention",
    "hygiene": "cleaning_prevention",
    "pediatric": "pediatric_dentistry", "paediatric": "pediatric_dentistry",
    "kids": "pediatric_dentistry", "children": "pediatric_dentistry",
    "child": "pediatric_dentistry",
}

_MENU_ID_TO_KEY: dict[str, str] = {
    info["menu_id"]: key for key, info in SERVICE_CATALOG.items()
}


def _padded(text: str) -> str:
    """Space-delimited form used for whole-word containment checks."""
    return " " + re.sub(r"[^\w&-]+", " ", normalize_text(text)).strip() + " "


def get_all_services() -> list[dict]:
    """Return all services with basic info, in menu order."""
    return [
        {"key": key, "title": info["title"], "duration_minutes": duration_for(key)}
        for key, info in SERVICE_CATALOG.items()
    ]


def service_title(service_key: str) -> str:
    info = SERVICE_CATALOG.get(service_key)
    return info["title"] if info else service_key.replace("_", " ")


def duration_for(service_key: Optional[str], durations: Optional[dict[str, int]] = None) -> int:
    """Appointment length in minutes, defaulting to the generic duration."""
    durations = durations or settings.booking.service_durations
    if service_key and service_key in durations:
        return durations[service_key]
    return durations.get(FALLBACK_SERVICE, 30)


def menu_options() -> list[SelectionOption]:
    return [
        SelectionOption(id=info["menu_id"], title=info["title"])
        for info in SERVICE_CATALOG.values()
    ]


def match_service(query: str) -> Optional[str]:
    """Match a menu id, catalog key, title, or alias to a service key. None if no match."""
    raw = (query or "").strip()
    if raw in _MENU_ID_TO_KEY:
        return _MENU_ID_TO_KEY[raw]

    normalized = normalize_text(raw)
    if not normalized:
        return None
    if normalized in SERVICE_CATALOG:
        return normalized

    padded = _padded(normalized)
    for key, info in SERVICE_CATALOG.items():
        if _padded(info["title"]) in padded:
            return key
        if f" {key.replace('_', ' ')} " in padded:
            return key
    # Longest alias first so "urgent care" wins over shorter overlaps.
    for alias in sorted(SERVICE_ALIASES, key=len, reverse=True):
        if f" {alias} " in padded:
            return SERVICE_ALIASES[alias]
    return None


def coerce_service(value: Optional[str]) -> str:
    """Best-effort service key for loosely typed input (tool arguments)."""
    if not value:
        return FALLBACK_SERVICE
    return match_service(value) or FALLBACK_SERVICE
