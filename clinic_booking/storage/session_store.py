"""
Session persistence.

Sessions are JSON records keyed by user id with an inactivity TTL. The
store is last-write-wins; duplicate deliveries are caught by the message
ids kept inside the session itself, not by locking here.
"""

import logging
import time
from typing import Callable, Optional, Protocol

from clinic_booking.config import StorageConfig
from clinic_booking.errors import UpstreamError
from clinic_booking.schemas.session_schema import Session

logger = logging.getLogger(__name__)


class SessionStore(Protocol):
    async def load(self, user_id: str) -> Session: ...

    async def save(self, session: Session) -> None: ...


class InMemorySessionStore:
    """Process-local store. Sessions expire ``ttl_seconds`` after their last save."""

    def __init__(self, ttl_seconds: int = 24 * 60 * 60, clock: Callable[[], float] = time.monotonic) -> None:
        self._ttl = ttl_seconds
        self._clock = clock
        self._records: dict[str, tuple[float, str]] = {}

    async def load(self, user_id: str) -> Session:
        entry = self._records.get(user_id)
        if entry is None:
            return Session(user_id=user_id)
        expires_at, raw = entry
        if self._clock() >= expires_at:
            del self._records[user_id]
            logger.debug("Session for %s expired", user_id)
            return Session(user_id=user_id)
        return Session.from_record(user_id, raw)

    async def save(self, session: Session) -> None:
        self._records[session.user_id] = (self._clock() + self._ttl, session.to_json())

    def raw(self, user_id: str) -> Optional[str]:
        entry = self._records.get(user_id)
        return entry[1] if entry else None

    def put_raw(self, user_id: str, raw: str) -> None:
        """Store an arbitrary record, e.g. one written by another version."""
        self._records[user_id] = (self._clock() + self._ttl, raw)


class RedisSessionStore:
    """Redis-backed store.

    Key format: ``{prefix}{user_id}``
    Value: the session as JSON
    TTL: refreshed on every save with SETEX
    """

    def __init__(self, client, key_prefix: str = "clinic:session:", ttl_seconds: int = 24 * 60 * 60) -> None:
        self._client = client
        self._prefix = key_prefix
        self._ttl = ttl_seconds

    @classmethod
    def from_config(cls, config: StorageConfig) -> "RedisSessionStore":
        import redis.asyncio as redis

        client = redis.from_url(config.redis_url, decode_responses=True)
        return cls(client, key_prefix=config.key_prefix, ttl_seconds=config.session_ttl_seconds)

    def _make_key(self, user_id: str) -> str:
        return f"{self._prefix}{user_id}"

    async def load(self, user_id: str) -> Session:
        from redis.exceptions import RedisError

        try:
            raw = await self._client.get(self._make_key(user_id))
        except RedisError as exc:
            logger.error("Failed to load session for %s: %s", user_id, exc)
            raise UpstreamError("Session store unavailable") from exc
        if raw is None:
            return Session(user_id=user_id)
        return Session.from_record(user_id, raw)

    async def save(self, session: Session) -> None:
        from redis.exceptions import RedisError

        try:
            await self._client.setex(self._make_key(session.user_id), self._ttl, session.to_json())
        except RedisError as exc:
            logger.error("Failed to save session for %s: %s", session.user_id, exc)
            raise UpstreamError("Session store unavailable") from exc

    async def aclose(self) -> None:
        await self._client.aclose()


def build_session_store(config: StorageConfig) -> SessionStore:
    """Redis when ``REDIS_URL`` is set, otherwise process memory."""
    if config.redis_url:
        logger.info("Using Redis session store")
        return RedisSessionStore.from_config(config)
    logger.info("REDIS_URL not set; using in-memory session store")
    return InMemorySessionStore(ttl_seconds=config.session_ttl_seconds)
