"""Correlation ID logging context for tracing one inbound message across modules.

Provides a correlation-aware logger that attaches the current message's
correlation ID (user id plus transport message id) to every log record,
making it easy to follow a single webhook invocation through the session
store, the conversation controller, and the calendar calls it triggers.

Usage:
    from clinic_booking.logging_context import get_logger, set_correlation_id

    set_correlation_id("18095550100/wamid.HBgL")
    logger = get_logger(__name__)
    logger.info("Processing message")  # -> [18095550100/wamid.HBgL] Processing message
"""

import logging
from contextvars import ContextVar
from typing import Optional

_correlation_id: ContextVar[str] = ContextVar("correlation_id", default="-")


def set_correlation_id(user_id: str, message_id: Optional[str] = None) -> str:
    """Set the correlation ID for the current async context and return it."""
    value = f"{user_id}/{message_id}" if message_id else user_id
    _correlation_id.set(value)
    return value


def get_correlation_id() -> str:
    """Retrieve the current correlation ID."""
    return _correlation_id.get()


class CorrelationIdFilter(logging.Filter):
    """Injects correlation_id into every log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = _correlation_id.get()  # type: ignore[attr-defined]
        return True


def install_correlation_filter() -> None:
    """Attach the filter to every root handler so formatters can use ``%(correlation_id)s``."""
    for handler in logging.getLogger().handlers:
        if not any(isinstance(f, CorrelationIdFilter) for f in handler.filters):
            handler.addFilter(CorrelationIdFilter())


def get_logger(name: str) -> logging.Logger:
    """Return a logger with the CorrelationIdFilter attached.

    The filter adds ``correlation_id`` to each record so formatters can
    include ``%(correlation_id)s`` in their format string.
    """
    logger = logging.getLogger(name)
    if not any(isinstance(f, CorrelationIdFilter) for f in logger.filters):
        logger.addFilter(CorrelationIdFilter())
    return logger
