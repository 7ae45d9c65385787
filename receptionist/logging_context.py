"""Correlation IDs for tracing a single call through the orchestrator.

Each session worker binds its call and session IDs once; every record
logged from that task (state machine, tools, metrics) then carries them,
because ``configure_logging`` puts the filter on the root handlers.

Usage:
    configure_logging("INFO")
    bind_call("CA-abc123", "sess-1")
    logger.info("Processing turn")  # → ... [CA-abc123]: Processing turn
"""

import logging
from contextvars import ContextVar

LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s [%(call_id)s]: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_call_id: ContextVar[str] = ContextVar("call_id", default="NO_CALL_ID")
_session_id: ContextVar[str] = ContextVar("session_id", default="NO_SESSION")


def bind_call(call_id: str, session_id: str) -> None:
    """Bind both IDs for the current task."""
    _call_id.set(call_id)
    _session_id.set(session_id)


class CallIdFilter(logging.Filter):
    """Stamps call_id and session_id onto every record it sees."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.call_id = _call_id.get()  # type: ignore[attr-defined]
        record.session_id = _session_id.get()  # type: ignore[attr-defined]
        return True


def configure_logging(level: str) -> None:
    """Install the root handler and attach ``CallIdFilter`` to every root handler."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt=DATE_FORMAT,
    )
    for handler in logging.getLogger().handlers:
        if not any(isinstance(f, CallIdFilter) for f in handler.filters):
            handler.addFilter(CallIdFilter())
