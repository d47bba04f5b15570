"""Smoke tests for the offline console demo."""

from clinic_booking.schemas.session_schema import ConversationState
from console_demo import DEMO_USER, ConsoleSession


class TestScenarios:
    def test_booking_scenario_books_one_appointment(self, capsys):
        demo = ConsoleSession()
        demo.run_scenario("booking")

        assert len(demo.calendar.events) == 1
        event = next(iter(demo.calendar.events.values()))
        assert event.private["channel_id"] == DEMO_USER
        assert "Appointment booked" in capsys.readouterr().out

    def test_cancel_scenario_leaves_cancelled_record(self):
        demo = ConsoleSession()
        demo.run_scenario("cancel")

        event = next(iter(demo.calendar.events.values()))
        assert event.private["status"] == "cancelled"

    def test_emergency_scenario_stays_idle(self, capsys):
        demo = ConsoleSession()
        demo.run_scenario("emergency")

        assert demo.calendar.events == {}
        assert f"State: {ConversationState.IDLE.value}" in capsys.readouterr().out

    def test_unknown_scenario(self, capsys):
        ConsoleSession().run_scenario("nope")
        assert "Unknown scenario" in capsys.readouterr().out
