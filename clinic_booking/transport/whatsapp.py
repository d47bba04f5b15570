"""
WhatsApp Cloud API adapter.

Verifies webhook signatures, pulls the first user message out of a webhook
payload, and sends text and list messages through the Graph API.
"""

import hashlib
import hmac
import logging
from typing import Any, Optional

import httpx

from clinic_booking.config import ChannelConfig
from clinic_booking.errors import UpstreamError
from clinic_booking.prompts.message_templates import SERVICES_MENU_BUTTON
from clinic_booking.schemas.message_schema import InboundMessage, SelectionOption

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Hub-Signature-256"
# WhatsApp list rows allow at most 24 characters in a title and 72 in a description.
MAX_ROW_TITLE = 24
MAX_ROW_DESCRIPTION = 72


def verify_signature(raw_body: bytes, signature: Optional[str], app_secret: str) -> bool:
    """Check ``X-Hub-Signature-256`` against the app secret.

    With no secret configured the check is skipped and every body passes.
    """
    if not app_secret:
        return True
    if not signature or not signature.startswith("sha256="):
        return False
    expected = hmac.new(app_secret.encode(), raw_body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(signature[len("sha256="):], expected)


def extract_inbound(payload: Any) -> Optional[InboundMessage]:
    """Normalize the first message of a webhook payload, or None for status updates."""
    if not isinstance(payload, dict):
        return None
    try:
        value = payload["entry"][0]["changes"][0]["value"]
    except (KeyError, IndexError, TypeError):
        return None
    messages = value.get("messages") if isinstance(value, dict) else None
    if not messages:
        return None

    msg = messages[0]
    sender = msg.get("from")
    if not sender:
        return None

    text = (msg.get("text") or {}).get("body", "")
    selection_id = None
    interactive = msg.get("interactive") or {}
    reply = interactive.get("list_reply") or interactive.get("button_reply")
    if msg.get("type") == "interactive" and reply:
        selection_id = reply.get("id") or None
        text = reply.get("title", "") or text
    elif msg.get("type") == "button":
        text = (msg.get("button") or {}).get("text", "") or text

    return InboundMessage(
        user_id=str(sender),
        text=text or "",
        selection_id=selection_id,
        message_id=msg.get("id"),
    )


class WhatsAppSender:
    """Graph API client for outbound messages."""

    def __init__(self, config: ChannelConfig, client: Optional[httpx.AsyncClient] = None) -> None:
        self._config = config
        self._client = client or httpx.AsyncClient(timeout=15.0)
        self._url = (
            f"https://graph.facebook.com/{config.graph_api_version}/{config.phone_number_id}/messages"
        )

    async def send_text(self, to: str, body: str) -> None:
        await self._post({
            "messaging_product": "whatsapp",
            "to": to,
            "type": "text",
            "text": {"body": body},
        })

    async def send_selection_menu(
        self, to: str, title: str, body: str, options: list[SelectionOption]
    ) -> None:
        rows = [
            {
                "id": opt.id,
                "title": opt.title[:MAX_ROW_TITLE],
                **({"description": opt.description[:MAX_ROW_DESCRIPTION]} if opt.description else {}),
            }
            for opt in options
        ]
        await self._post({
            "messaging_product": "whatsapp",
            "to": to,
            "type": "interactive",
            "interactive": {
                "type": "list",
                "header": {"type": "text", "text": title},
                "body": {"text": body or title},
                "action": {"button": SERVICES_MENU_BUTTON, "sections": [{"title": title, "rows": rows}]},
            },
        })

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _post(self, payload: dict[str, Any]) -> None:
        try:
            response = await self._client.post(
                self._url,
                json=payload,
                headers={"Authorization": f"Bearer {self._config.access_token}"},
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.error(
                "WhatsApp send failed with HTTP %s: %s",
                exc.response.status_code, exc.response.text[:500],
            )
            raise UpstreamError(f"WhatsApp API returned {exc.response.status_code}") from exc
        except httpx.RequestError as exc:
            logger.error("WhatsApp request failed: %s", exc)
            raise UpstreamError("WhatsApp request failed") from exc
