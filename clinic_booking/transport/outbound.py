"""Outbound delivery contract and an in-process recorder."""

import logging
from typing import Protocol

from clinic_booking.schemas.message_schema import OutboundKind, OutboundMessage, SelectionOption

logger = logging.getLogger(__name__)


class OutboundChannel(Protocol):
    async def send_text(self, to: str, body: str) -> None: ...

    async def send_selection_menu(
        self, to: str, title: str, body: str, options: list[SelectionOption]
    ) -> None: ...


class OutboxRecorder:
    """Keeps every sent message in order. Used by tests and the console demo."""

    def __init__(self) -> None:
        self.sent: list[OutboundMessage] = []

    async def send_text(self, to: str, body: str) -> None:
        self.sent.append(OutboundMessage.text(to, body))

    async def send_selection_menu(
        self, to: str, title: str, body: str, options: list[SelectionOption]
    ) -> None:
        self.sent.append(OutboundMessage.menu(to, title, body, options))

    def bodies(self, to: str = "") -> list[str]:
        return [m.body for m in self.sent if not to or m.to == to]

    def clear(self) -> None:
        self.sent.clear()


async def deliver(channel: OutboundChannel, messages: list[OutboundMessage]) -> None:
    """Send replies in order; stops at the first delivery failure."""
    for message in messages:
        if message.kind == OutboundKind.MENU:
            await channel.send_selection_menu(message.to, message.title, message.body, message.options)
        else:
            await channel.send_text(message.to, message.body)
    logger.debug("Delivered %d message(s)", len(messages))
