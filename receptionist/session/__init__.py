from receptionist.session.actor import SessionActor, SessionClosedError
from receptionist.session.manager import SessionManager, SessionNotFoundError
from receptionist.session.metrics import SessionMetrics

__all__ = [
    "SessionManager",
    "SessionActor",
    "SessionMetrics",
    "SessionClosedError",
    "SessionNotFoundError",
]
