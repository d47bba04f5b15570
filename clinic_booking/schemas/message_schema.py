"""Inbound and outbound chat message models, normalized away from any transport."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class InboundMessage(BaseModel):
    """A single user message as the engine sees it."""

    user_id: str
    text: str = ""
    selection_id: Optional[str] = None
    message_id: Optional[str] = None

    @property
    def effective_text(self) -> str:
        """A menu or list tap counts as typing the selection's canonical id."""
        return (self.selection_id or self.text or "").strip()


class OutboundKind(str, Enum):
    TEXT = "text"
    MENU = "menu"


class SelectionOption(BaseModel):
    id: str
    title: str
    description: str = ""


class OutboundMessage(BaseModel):
    """A reply to deliver: plain text or a selection menu."""

    to: str
    kind: OutboundKind = OutboundKind.TEXT
    body: str = ""
    title: str = ""
    options: list[SelectionOption] = Field(default_factory=list)

    @classmethod
    def text(cls, to: str, body: str) -> "OutboundMessage":
        return cls(to=to, kind=OutboundKind.TEXT, body=body)

    @classmethod
    def menu(cls, to: str, title: str, body: str, options: list[SelectionOption]) -> "OutboundMessage":
        return cls(to=to, kind=OutboundKind.MENU, title=title, body=body, options=options)
