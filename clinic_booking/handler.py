"""
Inbound message pipeline.

Wraps one conversation step with session persistence, duplicate
suppression and reply delivery. A failed upstream call during the step
rolls the session back to the snapshot taken before it, so the user can
simply retry. Any other failure is re-raised after the message is marked
as processed.
"""

from clinic_booking.conversation.controller import ConversationController
from clinic_booking.errors import ClinicBookingError, UpstreamError
from clinic_booking.logging_context import get_logger, set_correlation_id
from clinic_booking.prompts.message_templates import TRY_AGAIN
from clinic_booking.schemas.message_schema import InboundMessage, OutboundMessage
from clinic_booking.schemas.session_schema import Session
from clinic_booking.storage.session_store import SessionStore
from clinic_booking.transport.outbound import OutboundChannel, deliver

logger = get_logger(__name__)


class MessageHandler:
    """Processes one inbound message end to end."""

    def __init__(
        self,
        controller: ConversationController,
        store: SessionStore,
        outbound: OutboundChannel,
    ) -> None:
        self._controller = controller
        self._store = store
        self._outbound = outbound

    async def handle(self, inbound: InboundMessage) -> list[OutboundMessage]:
        """
        Run one message through the conversation and send the replies.

        Returns:
            The replies that were produced (delivered or not). Empty for
            duplicates and blank messages.
        """
        set_correlation_id(inbound.user_id, inbound.message_id)
        text = inbound.effective_text

        try:
            session = await self._store.load(inbound.user_id)
        except UpstreamError as exc:
            logger.error("Session unavailable: %s", exc)
            replies = [OutboundMessage.text(inbound.user_id, TRY_AGAIN)]
            await self._send(replies)
            return replies

        if session.has_processed(inbound.message_id):
            logger.info("Duplicate delivery of %s ignored", inbound.message_id)
            return []
        if not text:
            logger.debug("Ignoring message without text")
            return []

        snapshot = session.model_copy(deep=True)
        try:
            replies = await self._controller.step(session, text)
        except UpstreamError as exc:
            logger.error("Upstream failure while handling message: %s", exc)
            session = snapshot
            replies = [OutboundMessage.text(inbound.user_id, TRY_AGAIN)]
        except Exception:
            # A crashed step still counts as processed.
            snapshot.mark_processed(inbound.message_id)
            await self._save(snapshot)
            await self._send([OutboundMessage.text(inbound.user_id, TRY_AGAIN)])
            raise
        session.mark_processed(inbound.message_id)

        await self._save(session)
        await self._send(replies)
        return replies

    async def _save(self, session: Session) -> None:
        try:
            await self._store.save(session)
        except UpstreamError as exc:
            logger.error("Could not save session: %s", exc)

    async def _send(self, replies: list[OutboundMessage]) -> None:
        try:
            await deliver(self._outbound, replies)
        except ClinicBookingError as exc:
            logger.error("Reply delivery failed: %s", exc)

