"""
Centralized configuration with environment variable overrides.

Clinic details, the weekly schedule, service durations, reminder windows,
and collaborator credentials are all configurable here. Nothing is
hardcoded in the conversation or booking logic.
"""

import json
import logging
import os
from dataclasses import dataclass, field
from datetime import time
from typing import Any, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv

from clinic_booking.errors import ConfigurationError
from clinic_booking.logging_context import install_correlation_filter

load_dotenv()

logger = logging.getLogger(__name__)

WEEKDAY_KEYS = ("mon", "tue", "wed", "thu", "fri", "sat", "sun")


def _safe_int(env_var: str, default: str) -> int:
    """Parse an integer from an env var with a clear error on bad values."""
    raw = os.getenv(env_var, default)
    try:
        return int(raw)
    except (ValueError, TypeError):
        raise ValueError(
            f"Invalid integer for {env_var}: {raw!r}"
        ) from None


def _safe_float(env_var: str, default: str) -> float:
    """Parse a float from an env var with a clear error on bad values."""
    raw = os.getenv(env_var, default)
    try:
        return float(raw)
    except (ValueError, TypeError):
        raise ValueError(
            f"Invalid float for {env_var}: {raw!r}"
        ) from None


def _safe_bool(env_var: str, default: str) -> bool:
    """Parse a 1/0 style flag from an env var."""
    raw = os.getenv(env_var, default).strip().lower()
    if raw in ("1", "true", "yes", "on"):
        return True
    if raw in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"Invalid flag for {env_var}: {raw!r}")


def _safe_json(env_var: str, default: Any) -> Any:
    """Parse a JSON document from an env var, returning ``default`` when unset."""
    raw = os.getenv(env_var)
    if raw is None or not raw.strip():
        return default
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        raise ValueError(f"Invalid JSON for {env_var}") from None


@dataclass(frozen=True)
class DayHours:
    """Opening and closing local clock times for one weekday."""

    start: time
    end: time


def _parse_clock(value: str) -> time:
    hour, _, minute = value.strip().partition(":")
    return time(int(hour), int(minute or 0))


def parse_work_hours(raw: dict[str, Any]) -> dict[str, Optional[DayHours]]:
    """Turn ``{"mon": {"start": "09:00", "end": "18:00"}, "sun": null}`` into DayHours.

    Weekdays missing from ``raw`` are treated as closed.
    """
    hours: dict[str, Optional[DayHours]] = {}
    for key in WEEKDAY_KEYS:
        entry = raw.get(key)
        if not entry:
            hours[key] = None
            continue
        try:
            day = DayHours(start=_parse_clock(entry["start"]), end=_parse_clock(entry["end"]))
        except (KeyError, TypeError, ValueError):
            raise ValueError(f"Invalid work hours for '{key}': {entry!r}") from None
        if day.start >= day.end:
            raise ValueError(f"Work hours for '{key}' must open before they close: {entry!r}")
        hours[key] = day
    return hours


DEFAULT_WORK_HOURS: dict[str, Any] = {
    "mon": {"start": "09:00", "end": "18:00"},
    "tue": {"start": "09:00", "end": "18:00"},
    "wed": {"start": "09:00", "end": "18:00"},
    "thu": {"start": "09:00", "end": "18:00"},
    "fri": {"start": "09:00", "end": "18:00"},
    "sat": {"start": "09:00", "end": "13:00"},
    "sun": None,
}

DEFAULT_SERVICE_DURATIONS: dict[str, int] = {
    "cosmetic_dentistry": 60,
    "orthodontics": 30,
    "implants": 60,
    "emergency": 30,
    "cleaning_prevention": 45,
    "pediatric_dentistry": 45,
    "other": 30,
}


@dataclass(frozen=True)
class ClinicConfig:
    """Clinic identity, location, and weekly schedule."""

    name: str = os.getenv("CLINIC_NAME", "Bright Smile Dental")
    address: str = os.getenv("CLINIC_ADDRESS", "")
    timezone: str = os.getenv("CLINIC_TIMEZONE", "America/Santo_Domingo")
    # Numeric dates like 04/07 read as day/month when set.
    day_first: bool = _safe_bool("DATE_DAY_FIRST", "1")
    work_hours: dict[str, Optional[DayHours]] = field(
        default_factory=lambda: parse_work_hours(_safe_json("WORK_HOURS_JSON", DEFAULT_WORK_HOURS))
    )


@dataclass(frozen=True)
class BookingConfig:
    """Slot generation and input validation settings."""

    slot_step_minutes: int = _safe_int("SLOT_STEP_MIN", "15")
    max_slots: int = _safe_int("MAX_SLOTS", "8")
    default_window_days: int = _safe_int("DEFAULT_WINDOW_DAYS", "7")
    min_phone_digits: int = _safe_int("MIN_PHONE_DIGITS", "8")
    history_limit: int = _safe_int("HISTORY_LIMIT", "14")
    service_durations: dict[str, int] = field(
        default_factory=lambda: {
            **DEFAULT_SERVICE_DURATIONS,
            **_safe_json("SERVICE_DURATION_JSON", {}),
        }
    )


@dataclass(frozen=True)
class ReminderConfig:
    """Reminder sweep toggles and tolerance windows (minutes before start)."""

    day_before_enabled: bool = _safe_bool("REMINDER_DAY_BEFORE", "1")
    hours_before_enabled: bool = _safe_bool("REMINDER_HOURS_BEFORE", "1")
    horizon_minutes: int = _safe_int("REMINDER_HORIZON_MIN", str(26 * 60))
    day_before_max: int = _safe_int("REMINDER_DAY_BEFORE_MAX", str(24 * 60))
    day_before_min: int = _safe_int("REMINDER_DAY_BEFORE_MIN", str(24 * 60 - 30))
    hours_before_max: int = _safe_int("REMINDER_HOURS_BEFORE_MAX", "120")
    hours_before_min: int = _safe_int("REMINDER_HOURS_BEFORE_MIN", "105")
    max_events: int = _safe_int("REMINDER_MAX_EVENTS", "50")


@dataclass(frozen=True)
class ModelConfig:
    """Tool-calling LLM settings."""

    api_key: str = os.getenv("OPENAI_API_KEY", "")
    llm_model: str = os.getenv("LLM_MODEL", "gpt-4.1-mini")
    llm_temperature: float = _safe_float("LLM_TEMPERATURE", "0.2")


@dataclass(frozen=True)
class ChannelConfig:
    """WhatsApp Cloud API credentials."""

    access_token: str = os.getenv("WA_TOKEN", "")
    phone_number_id: str = os.getenv("PHONE_NUMBER_ID", "")
    verify_token: str = os.getenv("VERIFY_TOKEN", "")
    app_secret: str = os.getenv("META_APP_SECRET", "")
    graph_api_version: str = os.getenv("GRAPH_API_VERSION", "v20.0")


@dataclass(frozen=True)
class CalendarConfig:
    """Google Calendar target and service account."""

    calendar_id: str = os.getenv("GOOGLE_CALENDAR_ID", "")
    service_account_json: str = os.getenv("GOOGLE_SERVICE_ACCOUNT_JSON", "")


@dataclass(frozen=True)
class StorageConfig:
    """Session persistence settings."""

    redis_url: str = os.getenv("REDIS_URL", "")
    session_ttl_seconds: int = _safe_int("SESSION_TTL_SECONDS", str(24 * 60 * 60))
    key_prefix: str = os.getenv("SESSION_KEY_PREFIX", "clinic:session:")


@dataclass(frozen=True)
class AppConfig:
    """Root configuration aggregating all sub-configs."""

    clinic: ClinicConfig = field(default_factory=ClinicConfig)
    booking: BookingConfig = field(default_factory=BookingConfig)
    reminders: ReminderConfig = field(default_factory=ReminderConfig)
    model: ModelConfig = field(default_factory=ModelConfig)
    channel: ChannelConfig = field(default_factory=ChannelConfig)
    calendar: CalendarConfig = field(default_factory=CalendarConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    cron_token: str = os.getenv("CRON_TOKEN", "")
    port: int = _safe_int("PORT", "3000")


def _validate_config(config: AppConfig) -> None:
    """Validate configuration values are within acceptable ranges."""
    try:
        ZoneInfo(config.clinic.timezone)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValueError(f"CLINIC_TIMEZONE is not a known IANA zone: {config.clinic.timezone!r}") from None

    if not 0.0 <= config.model.llm_temperature <= 2.0:
        raise ValueError(
            f"LLM_TEMPERATURE must be between 0.0 and 2.0, got {config.model.llm_temperature}"
        )
    if not 1 <= config.booking.slot_step_minutes <= 24 * 60:
        raise ValueError(
            f"SLOT_STEP_MIN must be between 1 and 1440, got {config.booking.slot_step_minutes}"
        )
    if config.booking.max_slots < 1:
        raise ValueError(f"MAX_SLOTS must be >= 1, got {config.booking.max_slots}")
    if config.booking.default_window_days < 1:
        raise ValueError(
            f"DEFAULT_WINDOW_DAYS must be >= 1, got {config.booking.default_window_days}"
        )
    if config.booking.min_phone_digits < 4:
        raise ValueError(
            f"MIN_PHONE_DIGITS must be >= 4, got {config.booking.min_phone_digits}"
        )
    if config.booking.history_limit < 2:
        raise ValueError(f"HISTORY_LIMIT must be >= 2, got {config.booking.history_limit}")

    for service, minutes in config.booking.service_durations.items():
        if not isinstance(minutes, int) or minutes < 1:
            raise ValueError(
                f"SERVICE_DURATION_JSON entry '{service}' must be a positive integer, got {minutes!r}"
            )

    rem = config.reminders
    for name, low, high in [
        ("REMINDER_DAY_BEFORE", rem.day_before_min, rem.day_before_max),
        ("REMINDER_HOURS_BEFORE", rem.hours_before_min, rem.hours_before_max),
    ]:
        if not 0 <= low < high:
            raise ValueError(f"{name} window must satisfy 0 <= MIN < MAX, got {low}..{high}")
    if rem.horizon_minutes < rem.day_before_max:
        raise ValueError(
            "REMINDER_HORIZON_MIN must cover the day-before window, "
            f"got {rem.horizon_minutes} < {rem.day_before_max}"
        )

    if config.storage.session_ttl_seconds < 60:
        raise ValueError(
            f"SESSION_TTL_SECONDS must be >= 60, got {config.storage.session_ttl_seconds}"
        )


def require_credentials(config: AppConfig) -> None:
    """Fail fast at startup when a collaborator credential is missing.

    Raises:
        ConfigurationError: Listing every missing variable.
    """
    required = [
        ("WA_TOKEN", config.channel.access_token),
        ("PHONE_NUMBER_ID", config.channel.phone_number_id),
        ("VERIFY_TOKEN", config.channel.verify_token),
        ("OPENAI_API_KEY", config.model.api_key),
        ("GOOGLE_CALENDAR_ID", config.calendar.calendar_id),
        ("GOOGLE_SERVICE_ACCOUNT_JSON", config.calendar.service_account_json),
    ]
    missing = [name for name, value in required if not value]
    if missing:
        raise ConfigurationError(f"Missing required configuration: {', '.join(missing)}")


def load_config() -> AppConfig:
    """Load and validate application configuration."""
    config = AppConfig()
    _validate_config(config)
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(name)s] [%(correlation_id)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    install_correlation_filter()
    logger.info("Configuration loaded for '%s'", config.clinic.name)
    return config


# Singleton instance
settings = load_config()
