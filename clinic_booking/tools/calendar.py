"""
Calendar collaborator: the single source of truth for busy time and appointments.

The engine only ever needs five calls (busy ranges, create, patch, get,
list). ``InMemoryCalendar`` backs tests and the console demo;
``GoogleCalendarGateway`` talks to Google Calendar with a service account.
"""

import asyncio
import itertools
import json
import logging
from datetime import datetime
from typing import Any, Optional, Protocol

from pydantic import BaseModel

from clinic_booking.config import AppConfig
from clinic_booking.errors import AppointmentNotFoundError, ConfigurationError, UpstreamError
from clinic_booking.schemas.booking_schema import BusyRange, CalendarEvent, UtcDatetime

logger = logging.getLogger(__name__)

CALENDAR_SCOPES = ["https://www.googleapis.com/auth/calendar"]


class EventPatch(BaseModel):
    """Fields to change on an event; ``None`` leaves a field untouched.

    ``private`` keys are merged into the existing metadata, not replaced.
    """

    summary: Optional[str] = None
    description: Optional[str] = None
    start: Optional[UtcDatetime] = None
    end: Optional[UtcDatetime] = None
    private: Optional[dict[str, str]] = None
    transparent: Optional[bool] = None


class CalendarGateway(Protocol):
    async def get_busy_ranges(self, start: datetime, end: datetime) -> list[BusyRange]: ...

    async def create_event(self, event: CalendarEvent) -> CalendarEvent: ...

    async def patch_event(self, event_id: str, patch: EventPatch) -> CalendarEvent: ...

    async def get_event(self, event_id: str) -> CalendarEvent: ...

    async def list_events(
        self,
        start: datetime,
        end: datetime,
        private_filter: Optional[dict[str, str]] = None,
        limit: int = 50,
    ) -> list[CalendarEvent]: ...


# In-memory stand-in for Google's event "transparency" (free/busy visibility).
_TRANSPARENT_KEY = "_transparent"


def _is_transparent(event: CalendarEvent) -> bool:
    return event.private.get(_TRANSPARENT_KEY) == "true"


class InMemoryCalendar:
    """Process-local calendar with the same semantics as the remote one."""

    def __init__(self, busy: Optional[list[BusyRange]] = None) -> None:
        self.events: dict[str, CalendarEvent] = {}
        self.external_busy: list[BusyRange] = list(busy or [])
        self._ids = itertools.count(1)

    def block(self, start: datetime, end: datetime) -> None:
        """Mark time as busy without an appointment behind it (meetings, holidays)."""
        self.external_busy.append(BusyRange(start=start, end=end))

    async def get_busy_ranges(self, start: datetime, end: datetime) -> list[BusyRange]:
        ranges = list(self.external_busy) + [
            BusyRange(start=e.start, end=e.end)
            for e in self.events.values()
            if not _is_transparent(e)
        ]
        return sorted(
            (r for r in ranges if r.start < end and r.end > start),
            key=lambda r: r.start,
        )

    async def create_event(self, event: CalendarEvent) -> CalendarEvent:
        event_id = f"evt_{next(self._ids):04d}"
        stored = event.model_copy(update={"id": event_id}, deep=True)
        self.events[event_id] = stored
        logger.debug("In-memory event created: %s", event_id)
        return stored.model_copy(deep=True)

    async def patch_event(self, event_id: str, patch: EventPatch) -> CalendarEvent:
        current = self._require(event_id)
        updates = patch.model_dump(exclude_none=True, exclude={"private", "transparent"})
        private = dict(current.private)
        if patch.private is not None:
            private.update(patch.private)
        if patch.transparent is not None:
            private[_TRANSPARENT_KEY] = "true" if patch.transparent else "false"
        updated = current.model_copy(update={**updates, "private": private}, deep=True)
        self.events[event_id] = updated
        return updated.model_copy(deep=True)

    async def get_event(self, event_id: str) -> CalendarEvent:
        return self._require(event_id).model_copy(deep=True)

    async def list_events(
        self,
        start: datetime,
        end: datetime,
        private_filter: Optional[dict[str, str]] = None,
        limit: int = 50,
    ) -> list[CalendarEvent]:
        wanted = private_filter or {}
        matches = [
            e for e in self.events.values()
            if e.end > start and e.start < end
            and all(e.private.get(k) == v for k, v in wanted.items())
        ]
        matches.sort(key=lambda e: e.start)
        return [e.model_copy(deep=True) for e in matches[:limit]]

    def _require(self, event_id: str) -> CalendarEvent:
        if event_id not in self.events:
            raise AppointmentNotFoundError(f"Event {event_id} not found")
        return self.events[event_id]


class GoogleCalendarGateway:
    """Google Calendar v3 gateway authenticated with a service account.

    The Google API client is synchronous, so every request runs in a worker
    thread to keep the event loop free for other users' messages.
    """

    def __init__(self, calendar_id: str, timezone: str, service: Any) -> None:
        self._calendar_id = calendar_id
        self._timezone = timezone
        self._service = service

    @classmethod
    def from_config(cls, config: AppConfig) -> "GoogleCalendarGateway":
        from google.oauth2 import service_account
        from googleapiclient.discovery import build

        try:
            info = json.loads(config.calendar.service_account_json)
        except json.JSONDecodeError:
            raise ConfigurationError("GOOGLE_SERVICE_ACCOUNT_JSON is not valid JSON") from None
        if not info.get("client_email") or not info.get("private_key"):
            raise ConfigurationError("GOOGLE_SERVICE_ACCOUNT_JSON lacks client_email/private_key")

        creds = service_account.Credentials.from_service_account_info(info, scopes=CALENDAR_SCOPES)
        service = build("calendar", "v3", credentials=creds, cache_discovery=False)
        return cls(config.calendar.calendar_id, config.clinic.timezone, service)

    # ------------------------------------------------------------------ #
    # Gateway operations
    # ------------------------------------------------------------------ #

    async def get_busy_ranges(self, start: datetime, end: datetime) -> list[BusyRange]:
        body = {
            "timeMin": start.isoformat(),
            "timeMax": end.isoformat(),
            "timeZone": self._timezone,
            "items": [{"id": self._calendar_id}],
        }
        resp = await self._run("freebusy.query", self._service.freebusy().query(body=body))
        busy = (resp.get("calendars", {}).get(self._calendar_id, {}) or {}).get("busy", [])
        return [BusyRange(start=b["start"], end=b["end"]) for b in busy]

    async def create_event(self, event: CalendarEvent) -> CalendarEvent:
        body = self._to_body(event)
        created = await self._run(
            "events.insert",
            self._service.events().insert(calendarId=self._calendar_id, body=body),
        )
        return self._from_body(created)

    async def patch_event(self, event_id: str, patch: EventPatch) -> CalendarEvent:
        body: dict[str, Any] = {}
        if patch.summary is not None:
            body["summary"] = patch.summary
        if patch.description is not None:
            body["description"] = patch.description
        if patch.start is not None:
            body["start"] = self._when(patch.start)
        if patch.end is not None:
            body["end"] = self._when(patch.end)
        if patch.private is not None:
            body["extendedProperties"] = {"private": patch.private}
        if patch.transparent is not None:
            body["transparency"] = "transparent" if patch.transparent else "opaque"
        updated = await self._run(
            "events.patch",
            self._service.events().patch(calendarId=self._calendar_id, eventId=event_id, body=body),
            event_id=event_id,
        )
        return self._from_body(updated)

    async def get_event(self, event_id: str) -> CalendarEvent:
        found = await self._run(
            "events.get",
            self._service.events().get(calendarId=self._calendar_id, eventId=event_id),
            event_id=event_id,
        )
        return self._from_body(found)

    async def list_events(
        self,
        start: datetime,
        end: datetime,
        private_filter: Optional[dict[str, str]] = None,
        limit: int = 50,
    ) -> list[CalendarEvent]:
        params: dict[str, Any] = {
            "calendarId": self._calendar_id,
            "timeMin": start.isoformat(),
            "timeMax": end.isoformat(),
            "singleEvents": True,
            "orderBy": "startTime",
            "maxResults": limit,
        }
        if private_filter:
            params["privateExtendedProperty"] = [f"{k}={v}" for k, v in private_filter.items()]
        resp = await self._run("events.list", self._service.events().list(**params))
        # All-day events carry no dateTime and are never appointments.
        return [
            self._from_body(item)
            for item in resp.get("items", [])
            if item.get("start", {}).get("dateTime")
        ]

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #

    async def _run(self, operation: str, request: Any, event_id: Optional[str] = None) -> dict:
        from googleapiclient.errors import HttpError

        try:
            return await asyncio.to_thread(request.execute)
        except HttpError as exc:
            status = getattr(exc.resp, "status", None)
            if event_id and status in (404, 410):
                raise AppointmentNotFoundError(f"Event {event_id} not found") from exc
            logger.error("Google Calendar %s failed with HTTP %s", operation, status)
            raise UpstreamError(f"Calendar {operation} failed") from exc
        except OSError as exc:
            logger.error("Google Calendar %s failed: %s", operation, exc)
            raise UpstreamError(f"Calendar {operation} failed") from exc

    def _when(self, instant: datetime) -> dict[str, str]:
        return {"dateTime": instant.isoformat(), "timeZone": self._timezone}

    def _to_body(self, event: CalendarEvent) -> dict[str, Any]:
        body: dict[str, Any] = {
            "summary": event.summary,
            "description": event.description,
            "start": self._when(event.start),
            "end": self._when(event.end),
            "extendedProperties": {"private": dict(event.private)},
        }
        if event.location:
            body["location"] = event.location
        return body

    @staticmethod
    def _from_body(body: dict[str, Any]) -> CalendarEvent:
        return CalendarEvent(
            id=body.get("id"),
            summary=body.get("summary", ""),
            description=body.get("description", ""),
            location=body.get("location", ""),
            start=body["start"]["dateTime"],
            end=body["end"]["dateTime"],
            private=(body.get("extendedProperties") or {}).get("private", {}),
        )
