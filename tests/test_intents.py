"""Tests for the single-step intent classifier."""

import pytest

from clinic_booking.conversation.intents import Intent, IntentClassifier, classify
from clinic_booking.schemas.session_schema import ConversationState
from tests.conftest import NOW, TZ

S = ConversationState


def _intent(text, state=S.IDLE):
    return classify(text, state, TZ, NOW)


class TestGreetings:
    @pytest.mark.parametrize("text", ["hi", "Hello!", "hey there", "good morning"])
    def test_short_greetings(self, text):
        assert _intent(text).intent == Intent.GREETING

    def test_greeting_with_service_is_a_service_request(self):
        result = _intent("hi, I need a cleaning")
        assert result.intent == Intent.SERVICE_SELECT
        assert result.service == "cleaning_prevention"

    def test_long_message_is_never_a_greeting(self):
        assert not IntentClassifier().is_greeting("hello " * 10)


class TestServicesAndDates:
    def test_menu_id_selects_service(self):
        result = _intent("svc_orthodontics")
        assert result.intent == Intent.SERVICE_SELECT
        assert result.service == "orthodontics"

    def test_service_with_date(self):
        result = _intent("braces tomorrow")
        assert result.service == "orthodontics"
        assert result.date_range is not None
        assert result.date_range.label == "tomorrow"

    def test_bare_date(self):
        result = _intent("next friday")
        assert result.intent == Intent.DATE_EXPRESSION
        assert result.date_range is not None


class TestActions:
    @pytest.mark.parametrize("text, intent", [
        ("I want to cancel my appointment", Intent.CANCEL),
        ("I can't make it", Intent.CANCEL),
        ("can I reschedule?", Intent.RESCHEDULE),
        ("I need a different day", Intent.RESCHEDULE),
        ("new appointment", Intent.NEW_APPOINTMENT),
        ("I'd like to book an appointment", Intent.BOOKING_REQUEST),
        ("show me the menu", Intent.MENU),
        ("thank you!", Intent.THANKS),
        ("ok", Intent.CONFIRM),
        ("what's the weather like", Intent.UNKNOWN),
    ])
    def test_keyword_intents(self, text, intent):
        assert _intent(text).intent == intent

    def test_cancel_beats_booking_keywords(self):
        assert _intent("cancel the appointment I booked").intent == Intent.CANCEL


class TestUrgent:
    @pytest.mark.parametrize("text", [
        "I have severe pain",
        "my gum is bleeding a lot",
        "Emergency",
        "svc_emergency",
    ])
    def test_urgent_content(self, text):
        result = _intent(text)
        assert result.intent == Intent.URGENT
        assert result.service == "emergency"


class TestStateDependentShapes:
    def test_number_in_slot_state_is_a_slot_choice(self):
        assert _intent("3", S.AWAITING_SLOT_CHOICE).intent == Intent.SLOT_SELECT
        assert _intent("10:00 am", S.AWAITING_RESCHEDULE_SLOT).intent == Intent.SLOT_SELECT

    def test_number_outside_slot_states_is_unknown(self):
        assert _intent("3", S.AWAITING_DAY).intent == Intent.UNKNOWN

    @pytest.mark.parametrize("text, intent", [
        ("1", Intent.CONFIRM), ("2", Intent.RESCHEDULE), ("3", Intent.CANCEL),
    ])
    def test_numbered_post_booking_options(self, text, intent):
        assert _intent(text, S.POST_BOOKING).intent == intent

    def test_numbered_options_answer_reminders_in_idle(self):
        result = _intent("3", S.IDLE)
        assert result.intent == Intent.CANCEL
        assert result.numbered

    def test_cancel_keyword_is_not_numbered(self):
        assert not _intent("cancel", S.IDLE).numbered

    def test_cancel_during_slot_choice(self):
        assert _intent("cancel", S.AWAITING_SLOT_CHOICE).intent == Intent.CANCEL

    def test_reschedule_carries_requested_day(self):
        result = _intent("can I reschedule to friday?", S.POST_BOOKING)
        assert result.intent == Intent.RESCHEDULE
        assert result.date_range.label == "Friday, June 19"
