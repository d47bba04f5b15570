"""
Offline console demo. Runs full booking conversations without any API keys.

Uses the real intent classifier, state machine, availability engine and
booking actions against an in-memory calendar and session store. No LLM,
no WhatsApp, no network calls. Replies that would be WhatsApp messages are
printed to the terminal; selection menus are shown as numbered rows with
their ids, which can be typed to simulate a tap.

Usage:
    python console_demo.py
    python console_demo.py --scenario reschedule
    python console_demo.py --scenario cancel
"""

import argparse
import asyncio
import itertools

from clinic_booking.agents.tool_bridge import ToolCallBridge
from clinic_booking.config import settings
from clinic_booking.conversation.controller import ConversationController
from clinic_booking.handler import MessageHandler
from clinic_booking.schemas.message_schema import InboundMessage, OutboundKind, OutboundMessage
from clinic_booking.storage.session_store import InMemorySessionStore
from clinic_booking.tools.availability import AvailabilityEngine
from clinic_booking.tools.booking import BookingActionHandler
from clinic_booking.tools.calendar import InMemoryCalendar
from clinic_booking.transport.outbound import OutboxRecorder

BLUE = "\033[94m"
GREEN = "\033[92m"
YELLOW = "\033[93m"
RED = "\033[91m"
DIM = "\033[2m"
RESET = "\033[0m"
BOLD = "\033[1m"

DEMO_USER = "18095550100"


class ConsoleSession:
    """Plays a WhatsApp conversation against in-memory collaborators."""

    BOOKING_STEPS = [
        "hi",
        "svc_cleaning_prevention",
        "next week",
        "1",
        "Maria Perez",
        "829 555 1234",
    ]

    # Pre-scripted scenarios for --scenario flag
    SCENARIOS: dict[str, list[str]] = {
        "booking": BOOKING_STEPS + ["1", "thanks!"],
        "reschedule": BOOKING_STEPS + ["2", "next friday", "2"],
        "cancel": BOOKING_STEPS + ["3", "hello", "I need braces next week"],
        "emergency": ["hello", "I have severe pain and my gum is bleeding"],
    }

    MAX_INPUT_LENGTH = 500

    def __init__(self) -> None:
        self.calendar = InMemoryCalendar()
        self.outbox = OutboxRecorder()
        self.store = InMemorySessionStore(ttl_seconds=settings.storage.session_ttl_seconds)
        availability = AvailabilityEngine(self.calendar)
        booking = BookingActionHandler(self.calendar)
        bridge = ToolCallBridge(None, availability, booking)
        controller = ConversationController(availability, booking, bridge)
        self.handler = MessageHandler(controller, self.store, self.outbox)
        self._message_ids = itertools.count(1)

    def bot_say(self, message: OutboundMessage) -> None:
        if message.kind == OutboundKind.MENU:
            print(f"{GREEN}{BOLD}[Clinic] {message.title}{RESET}")
            print(f"{GREEN}{message.body}{RESET}")
            for option in message.options:
                print(f"{YELLOW}   - {option.title} {DIM}({option.id}){RESET}")
        else:
            print(f"{GREEN}{BOLD}[Clinic]{RESET} {GREEN}{message.body}{RESET}")

    def system_log(self, text: str) -> None:
        print(f"{DIM}  >> {text}{RESET}")

    async def send(self, text: str) -> None:
        self.outbox.clear()
        await self.handler.handle(InboundMessage(
            user_id=DEMO_USER,
            text=text,
            message_id=f"demo.{next(self._message_ids)}",
        ))
        for message in self.outbox.sent:
            self.bot_say(message)
        session = await self.store.load(DEMO_USER)
        self.system_log(f"State: {session.state.value}")

    def run_scenario(self, scenario: str) -> None:
        """Auto-play a pre-scripted scenario for demo purposes."""
        steps = self.SCENARIOS.get(scenario)
        if not steps:
            print(f"{RED}Unknown scenario: {scenario}{RESET}")
            return

        self._banner(f"Scenario: {scenario}")

        async def play() -> None:
            for step in steps:
                print(f"\n{BLUE}[Patient] {RESET}{step}")
                await self.send(step)

        asyncio.run(play())
        self._summary()

    def run(self) -> None:
        self._banner("Console Demo - type 'quit' to exit")

        async def loop() -> None:
            while True:
                user_input = input(f"\n{BLUE}[Patient] {RESET}").strip()
                if not user_input:
                    continue
                if user_input.lower() in ("quit", "exit", "q"):
                    print(f"\n{DIM}Session ended.{RESET}")
                    return
                if len(user_input) > self.MAX_INPUT_LENGTH:
                    print(f"{RED}Message too long, keep it under {self.MAX_INPUT_LENGTH} characters.{RESET}")
                    continue
                await self.send(user_input)

        asyncio.run(loop())
        self._summary()

    def _banner(self, subtitle: str) -> None:
        print()
        print(f"{BOLD}{'=' * 60}{RESET}")
        print(f"{BOLD}  CLINIC BOOKING - {subtitle}{RESET}")
        print(f"{BOLD}  Clinic: {settings.clinic.name}{RESET}")
        print(f"{BOLD}{'=' * 60}{RESET}")

    def _summary(self) -> None:
        print(f"\n{BOLD}{'=' * 60}{RESET}")
        print(f"{BOLD}  Calendar events: {len(self.calendar.events)}{RESET}")
        for event in self.calendar.events.values():
            print(f"{DIM}  {event.id}: {event.summary} @ {event.start.isoformat()}{RESET}")
        print(f"{BOLD}{'=' * 60}{RESET}")


def main() -> None:
    parser = argparse.ArgumentParser(description="Offline console demo")
    parser.add_argument(
        "--scenario",
        choices=sorted(ConsoleSession.SCENARIOS),
        default=None,
        help="Auto-play a pre-scripted scenario instead of interactive mode",
    )
    args = parser.parse_args()

    session = ConsoleSession()
    if args.scenario:
        session.run_scenario(args.scenario)
    else:
        session.run()


if __name__ == "__main__":
    main()
