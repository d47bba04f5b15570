"""Shared test fixtures and helpers."""

from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Optional

import pytest

from clinic_booking.agents.llm_client import LLMReply, ToolInvocation
from clinic_booking.agents.tool_bridge import ToolCallBridge
from clinic_booking.clinic_time import zoned_to_utc
from clinic_booking.config import (
    DEFAULT_SERVICE_DURATIONS,
    DEFAULT_WORK_HOURS,
    AppConfig,
    BookingConfig,
    ChannelConfig,
    ClinicConfig,
    ReminderConfig,
    StorageConfig,
    parse_work_hours,
)
from clinic_booking.conversation.controller import ConversationController
from clinic_booking.handler import MessageHandler
from clinic_booking.schemas.booking_schema import Slot
from clinic_booking.schemas.message_schema import InboundMessage
from clinic_booking.schemas.session_schema import Session
from clinic_booking.storage.session_store import InMemorySessionStore
from clinic_booking.tools.availability import AvailabilityEngine
from clinic_booking.tools.booking import BookingActionHandler
from clinic_booking.tools.calendar import InMemoryCalendar
from clinic_booking.tools.reminders import ReminderSweep
from clinic_booking.transport.outbound import OutboxRecorder

TZ = "America/Santo_Domingo"
USER = "18095550100"

# Monday, June 15 2026, 10:00 in the clinic (UTC-4, no DST).
NOW = datetime(2026, 6, 15, 14, 0, tzinfo=timezone.utc)


def local(day: date, hour: int = 0, minute: int = 0) -> datetime:
    """UTC instant of a clinic wall-clock time."""
    return zoned_to_utc(day, time(hour, minute), TZ)


def make_slot(day: date, hour: int, minute: int = 0, service: str = "orthodontics", minutes: int = 30) -> Slot:
    start = local(day, hour, minute)
    return Slot.build(service, start, start + timedelta(minutes=minutes))


def make_inbound(text: str = "", message_id: Optional[str] = None, selection_id: Optional[str] = None,
                 user_id: str = USER) -> InboundMessage:
    return InboundMessage(user_id=user_id, text=text, message_id=message_id, selection_id=selection_id)


def tool_call(name: str, arguments: str, call_id: str = "call_1") -> LLMReply:
    return LLMReply(tool_calls=[ToolInvocation(id=call_id, name=name, arguments=arguments)])


class FixedClock:
    """Callable clock the tests can move forward."""

    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class ScriptedLLM:
    """Returns queued replies in order and records every request."""

    def __init__(self, replies: Optional[list[LLMReply]] = None) -> None:
        self.replies = list(replies or [])
        self.calls: list[tuple[list[dict[str, Any]], Optional[list[dict[str, Any]]]]] = []

    async def complete(self, messages, tools=None) -> LLMReply:
        self.calls.append((messages, tools))
        if not self.replies:
            return LLMReply(text="")
        return self.replies.pop(0)


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def clinic_config():
    return ClinicConfig(
        name="Bright Smile Dental",
        address="Av. Winston Churchill 55",
        timezone=TZ,
        work_hours=parse_work_hours(DEFAULT_WORK_HOURS),
    )


@pytest.fixture
def booking_config():
    return BookingConfig(
        slot_step_minutes=30,
        max_slots=8,
        default_window_days=7,
        min_phone_digits=8,
        history_limit=6,
        service_durations=dict(DEFAULT_SERVICE_DURATIONS),
    )


@pytest.fixture
def reminder_config():
    return ReminderConfig(
        day_before_enabled=True,
        hours_before_enabled=True,
        horizon_minutes=26 * 60,
        day_before_max=24 * 60,
        day_before_min=24 * 60 - 30,
        hours_before_max=120,
        hours_before_min=105,
        max_events=50,
    )


@pytest.fixture
def app_config(clinic_config, booking_config, reminder_config):
    return AppConfig(
        clinic=clinic_config,
        booking=booking_config,
        reminders=reminder_config,
        channel=ChannelConfig(
            access_token="wa-token",
            phone_number_id="1234567890",
            verify_token="verify-me",
            app_secret="",
            graph_api_version="v20.0",
        ),
        storage=StorageConfig(redis_url="", session_ttl_seconds=3600, key_prefix="test:session:"),
        cron_token="",
    )


@pytest.fixture
def calendar():
    return InMemoryCalendar()


@pytest.fixture
def outbox():
    return OutboxRecorder()


@pytest.fixture
def availability(calendar, clinic_config, booking_config, clock):
    return AvailabilityEngine(calendar, clinic_config, booking_config, clock=clock)


@pytest.fixture
def booking(calendar, clinic_config, clock):
    return BookingActionHandler(calendar, clinic_config, clock=clock)


@pytest.fixture
def llm():
    return ScriptedLLM()


@pytest.fixture
def bridge(llm, availability, booking, app_config, clock):
    return ToolCallBridge(llm, availability, booking, app_config, clock=clock)


@pytest.fixture
def offline_bridge(availability, booking, app_config, clock):
    return ToolCallBridge(None, availability, booking, app_config, clock=clock)


@pytest.fixture
def controller(availability, booking, offline_bridge, app_config, clock):
    return ConversationController(availability, booking, offline_bridge, app_config, clock=clock)


@pytest.fixture
def store():
    return InMemorySessionStore(ttl_seconds=3600)


@pytest.fixture
def message_handler(controller, store, outbox):
    return MessageHandler(controller, store, outbox)


@pytest.fixture
def reminder_sweep(calendar, outbox, clinic_config, reminder_config, clock):
    return ReminderSweep(calendar, outbox, clinic_config, reminder_config, clock=clock)


@pytest.fixture
def session():
    return Session(user_id=USER)
