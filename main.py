"""
WhatsApp booking webhook service entry point.

Wires the calendar, LLM, session store and WhatsApp sender into the
message handler and exposes them over HTTP. The reminder sweep is
triggered by an external cron through ``/tasks/reminders`` or run once
from the command line.

Usage:
    Webhook server:  python main.py serve
    One sweep:       python main.py sweep
    Console mode:    python main.py console
"""

import argparse
import asyncio
import json
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from clinic_booking.agents.llm_client import OpenAIToolClient
from clinic_booking.agents.tool_bridge import ToolCallBridge
from clinic_booking.config import AppConfig, require_credentials, settings
from clinic_booking.conversation.controller import ConversationController
from clinic_booking.errors import UpstreamError
from clinic_booking.handler import MessageHandler
from clinic_booking.storage.session_store import build_session_store
from clinic_booking.tools.availability import AvailabilityEngine
from clinic_booking.tools.booking import BookingActionHandler
from clinic_booking.tools.calendar import GoogleCalendarGateway
from clinic_booking.tools.reminders import ReminderSweep
from clinic_booking.transport.whatsapp import SIGNATURE_HEADER, WhatsAppSender, extract_inbound, verify_signature

logger = logging.getLogger(__name__)

CRON_TOKEN_HEADER = "X-Cron-Token"


@dataclass
class AppServices:
    """Everything the HTTP layer needs, built once per process."""
    config: AppConfig
    handler: MessageHandler
    reminders: ReminderSweep
    closers: list[Callable[[], Awaitable[None]]] = field(default_factory=list)

    async def aclose(self) -> None:
        for close in self.closers:
            await close()


def build_services(config: AppConfig = settings) -> AppServices:
    """Construct the production collaborators.

    Raises:
        ConfigurationError: If a required credential is missing.
    """
    require_credentials(config)

    calendar = GoogleCalendarGateway.from_config(config)
    sender = WhatsAppSender(config.channel)
    store = build_session_store(config.storage)
    llm = OpenAIToolClient(config.model)

    availability = AvailabilityEngine(calendar, config.clinic, config.booking)
    booking = BookingActionHandler(calendar, config.clinic)
    bridge = ToolCallBridge(llm, availability, booking, config)
    controller = ConversationController(availability, booking, bridge, config)

    closers = [sender.aclose]
    if hasattr(store, "aclose"):
        closers.append(store.aclose)

    return AppServices(
        config=config,
        handler=MessageHandler(controller, store, sender),
        reminders=ReminderSweep(calendar, sender, config.clinic, config.reminders),
        closers=closers,
    )


def create_app(services: Optional[AppServices] = None) -> FastAPI:
    """Build the FastAPI app. Production services are created lazily on first use."""
    state: dict[str, AppServices] = {}
    if services is not None:
        state["services"] = services

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        yield
        if "services" in state:
            await state["services"].aclose()

    app = FastAPI(title="Clinic booking webhook", docs_url=None, redoc_url=None, lifespan=lifespan)

    def get_services() -> AppServices:
        if "services" not in state:
            state["services"] = build_services()
        return state["services"]

    @app.get("/healthz")
    async def health_check():
        return {"status": "ok"}

    @app.get("/webhook")
    async def verify_webhook(request: Request):
        params = request.query_params
        expected = get_services().config.channel.verify_token
        if params.get("hub.mode") == "subscribe" and expected and params.get("hub.verify_token") == expected:
            return PlainTextResponse(params.get("hub.challenge", ""))
        logger.warning("Webhook verification rejected")
        return PlainTextResponse("Forbidden", status_code=403)

    @app.post("/webhook")
    async def receive_webhook(request: Request):
        svc = get_services()
        raw = await request.body()
        if not verify_signature(raw, request.headers.get(SIGNATURE_HEADER), svc.config.channel.app_secret):
            logger.warning("Webhook signature mismatch")
            return PlainTextResponse("Invalid signature", status_code=403)

        try:
            payload = json.loads(raw or b"{}")
        except json.JSONDecodeError:
            logger.warning("Webhook body is not JSON")
            return JSONResponse({"ok": True})

        inbound = extract_inbound(payload)
        if inbound is None:
            return JSONResponse({"ok": True})

        # Always acknowledge so the transport does not redeliver.
        try:
            await svc.handler.handle(inbound)
        except Exception:
            logger.exception("Failed to handle message from %s", inbound.user_id)
        return JSONResponse({"ok": True})

    @app.post("/tasks/reminders")
    async def run_reminders(request: Request):
        svc = get_services()
        token = svc.config.cron_token
        if token and request.headers.get(CRON_TOKEN_HEADER) != token:
            return JSONResponse({"ok": False, "error": "unauthorized"}, status_code=401)
        try:
            report = await svc.reminders.run()
        except UpstreamError as exc:
            logger.error("Reminder sweep aborted: %s", exc)
            return JSONResponse({"ok": False, "error": "calendar unavailable"}, status_code=503)
        return JSONResponse({"ok": True, **report.model_dump()})

    return app


def _run_server() -> None:
    import uvicorn

    uvicorn.run(create_app(build_services()), host="0.0.0.0", port=settings.port)


def _run_sweep() -> None:
    async def _once() -> None:
        services = build_services()
        try:
            report = await services.reminders.run()
            logger.info("Reminder sweep finished: %s", report.model_dump())
        finally:
            await services.aclose()

    asyncio.run(_once())


def _run_console_mode() -> None:
    """Start the offline console demo (no API keys required)."""
    from console_demo import ConsoleSession

    ConsoleSession().run()


def main() -> None:
    parser = argparse.ArgumentParser(description="Clinic booking service")
    parser.add_argument("command", nargs="?", choices=["serve", "sweep", "console"], default="serve")
    args = parser.parse_args()

    if args.command == "sweep":
        _run_sweep()
    elif args.command == "console":
        _run_console_mode()
    else:
        _run_server()


if __name__ == "__main__":
    main()
