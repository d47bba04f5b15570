"""Tests for the LLM tool-call fallback bridge."""

import json
from datetime import date

import pytest

from clinic_booking.agents.llm_client import LLMReply
from clinic_booking.agents.tool_bridge import TOOL_SCHEMAS
from clinic_booking.prompts.message_templates import FALLBACK_REPLY, WHICH_SERVICE
from clinic_booking.schemas.session_schema import ConversationState
from tests.conftest import USER, local, make_slot, tool_call

TUESDAY = date(2026, 6, 16)


def last_tool_result(llm):
    """The JSON payload of the tool message sent with the follow-up completion."""
    messages, _ = llm.calls[-1]
    return json.loads(messages[-1]["content"])


def booking_args(**overrides):
    args = {
        "patient_name": "Maria Perez",
        "phone": "(829) 555-1234",
        "slot_id": "ignored",
        "service": "braces",
        "slot_start": "2026-06-16T10:00:00-04:00",
        "slot_end": "2026-06-16T10:30:00-04:00",
    }
    args.update(overrides)
    return json.dumps(args)


class TestPlainReplies:
    @pytest.mark.asyncio
    async def test_without_llm_returns_fixed_reply(self, offline_bridge, session):
        assert await offline_bridge.respond(session, "random question") == FALLBACK_REPLY

    @pytest.mark.asyncio
    async def test_text_reply(self, bridge, llm, session):
        llm.replies = [LLMReply(text="We are open Monday to Saturday.")]

        answer = await bridge.respond(session, "when are you open?")

        assert answer == "We are open Monday to Saturday."
        messages, tools = llm.calls[0]
        assert messages[0]["role"] == "system"
        assert "Bright Smile Dental" in messages[0]["content"]
        assert messages[-1] == {"role": "user", "content": "when are you open?"}
        assert tools == TOOL_SCHEMAS

    @pytest.mark.asyncio
    async def test_history_is_bounded(self, offline_bridge, session):
        for i in range(5):
            await offline_bridge.respond(session, f"question {i}")
        assert len(session.messages) == 6
        assert session.messages[-2].content == "question 4"


class TestTools:
    @pytest.mark.asyncio
    async def test_get_available_slots(self, bridge, llm, session):
        llm.replies = [
            tool_call("get_available_slots", json.dumps({
                "service": "braces", "from": "2026-06-16T00:00:00", "to": "2026-06-17T00:00:00",
            })),
            LLMReply(text="Here are the times."),
        ]

        answer = await bridge.respond(session, "any braces slots tomorrow?")

        assert answer == "Here are the times."
        result = last_tool_result(llm)
        assert result["ok"] is True
        assert result["service"] == "orthodontics"
        assert len(result["slots"]) == 8
        assert session.pending_service == "orthodontics"
        assert session.last_slots[0].start == local(TUESDAY, 9)

    @pytest.mark.asyncio
    async def test_book_appointment(self, bridge, llm, session, calendar):
        llm.replies = [tool_call("book_appointment", booking_args()), LLMReply(text="Booked!")]

        await bridge.respond(session, "book me at 10")

        result = last_tool_result(llm)
        assert result["ok"] is True
        event = next(iter(calendar.events.values()))
        assert event.start == local(TUESDAY, 10)
        assert event.private["phone"] == "8295551234"
        assert event.private["channel_id"] == USER
        assert session.state == ConversationState.POST_BOOKING
        assert session.active_appointment.appointment_id == event.id

    @pytest.mark.asyncio
    async def test_off_grid_booking_is_refused(self, bridge, llm, session, calendar):
        llm.replies = [
            tool_call("book_appointment", booking_args(
                slot_start="2026-06-16T10:10:00-04:00", slot_end="2026-06-16T10:40:00-04:00",
            )),
            LLMReply(text="Sorry."),
        ]

        await bridge.respond(session, "book me at 10:10")

        assert last_tool_result(llm)["ok"] is False
        assert "not available" in last_tool_result(llm)["error"]
        assert calendar.events == {}

    @pytest.mark.asyncio
    async def test_missing_arguments(self, bridge, llm, session):
        llm.replies = [tool_call("book_appointment", "{}"), LLMReply(text="What is your name?")]
        await bridge.respond(session, "book it")
        error = last_tool_result(llm)["error"]
        assert error.startswith("Invalid arguments")
        assert "patient_name" in error and "slot_start" in error

    @pytest.mark.asyncio
    async def test_invalid_json_arguments(self, bridge, llm, session):
        llm.replies = [tool_call("cancel_appointment", "{not json"), LLMReply(text="Hmm.")]
        await bridge.respond(session, "cancel")
        assert last_tool_result(llm) == {"ok": False, "error": "Arguments are not valid JSON"}

    @pytest.mark.asyncio
    async def test_unknown_tool(self, bridge, llm, session):
        llm.replies = [tool_call("delete_calendar", "{}"), LLMReply(text="I can't do that.")]
        await bridge.respond(session, "wipe everything")
        assert last_tool_result(llm)["error"] == "Unknown tool delete_calendar"

    @pytest.mark.asyncio
    async def test_cannot_cancel_another_users_appointment(self, bridge, llm, session, booking):
        theirs = await booking.book("Someone", "8095550000", make_slot(TUESDAY, 11), channel_id="other-user")
        llm.replies = [
            tool_call("cancel_appointment", json.dumps({"appointment_id": theirs.appointment_id})),
            LLMReply(text="That is not yours."),
        ]

        await bridge.respond(session, "cancel appointment " + theirs.appointment_id)

        assert "does not belong" in last_tool_result(llm)["error"]
        assert not (await booking.get(theirs.appointment_id)).is_cancelled

    @pytest.mark.asyncio
    async def test_cancel_own_appointment(self, bridge, llm, session, booking):
        mine = await booking.book("Maria Perez", "8295551234", make_slot(TUESDAY, 11), channel_id=USER)
        session.active_appointment = mine
        llm.replies = [
            tool_call("cancel_appointment", json.dumps({"appointment_id": mine.appointment_id, "reason": "sick"})),
            LLMReply(text=""),
        ]

        answer = await bridge.respond(session, "please cancel")

        assert last_tool_result(llm)["ok"] is True
        assert session.active_appointment is None
        assert answer == WHICH_SERVICE

    @pytest.mark.asyncio
    async def test_unknown_appointment(self, bridge, llm, session):
        llm.replies = [
            tool_call("reschedule_appointment", json.dumps({
                "appointment_id": "evt_9999", "new_slot_id": "x",
                "new_start": "2026-06-16T11:00:00-04:00", "new_end": "2026-06-16T11:30:00-04:00",
            })),
            LLMReply(text="I can't find it."),
        ]
        await bridge.respond(session, "move evt_9999")
        assert last_tool_result(llm)["error"] == "Appointment not found"
