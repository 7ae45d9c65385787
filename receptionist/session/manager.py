"""
Session lifecycle for concurrent calls.

The manager keeps one ``SessionActor`` per active call, routes turns,
silence and barge-in signals to it, and emits a single telemetry summary
when the call is finalized.

Usage:
    manager = SessionManager(integrations)
    snapshot = await manager.init_session("CA-123")
    output = await manager.process_turn(
        snapshot.session_id, TurnInput(transcript="I need a haircut", call_id="CA-123"),
    )
    summary = await manager.finalize(snapshot.session_id)
"""

import logging
import uuid
from typing import Optional

from receptionist.config import AppConfig, settings
from receptionist.conversation.context import BookingContext
from receptionist.schemas.organization import OrganizationContext, default_organization
from receptionist.schemas.telemetry import SessionSummary
from receptionist.schemas.turn import SessionContextSnapshot, TurnInput, TurnOutput
from receptionist.session.actor import Clock, SessionActor, _utcnow
from receptionist.tools.base import Integrations

logger = logging.getLogger(__name__)


class SessionNotFoundError(KeyError):
    """Raised when a session id is unknown or already finalized."""


class SessionManager:
    """Owns one booking state machine per active call."""

    def __init__(
        self,
        integrations: Integrations,
        config: AppConfig = settings,
        organization: Optional[OrganizationContext] = None,
        clock: Clock = _utcnow,
    ) -> None:
        self._integrations = integrations
        self._config = config
        self._default_organization = organization or default_organization(config)
        self._clock = clock
        self._sessions: dict[str, SessionActor] = {}

    @property
    def active_sessions(self) -> int:
        return len(self._sessions)

    async def init_session(
        self,
        call_id: str,
        organization: Optional[OrganizationContext] = None,
        session_id: Optional[str] = None,
    ) -> SessionContextSnapshot:
        """Create a session for a new call and start its worker."""
        session_id = session_id or f"sess-{uuid.uuid4().hex[:12]}"
        if session_id in self._sessions:
            raise ValueError(f"Session {session_id} already exists")

        features = self._config.features
        now = self._clock()
        context = BookingContext(
            session_id=session_id,
            call_id=call_id,
            organization=organization or self._default_organization,
            policy=self._config.policy,
            digressions_enabled=features.digression_handling,
            location_capture=features.location_capture,
            created_at=now,
            now=now,
        )
        actor = SessionActor(context, self._integrations, self._config, clock=self._clock)
        actor.start()
        self._sessions[session_id] = actor
        logger.info(
            "Session %s started for call %s (%s)",
            session_id, call_id, context.organization.name,
        )
        return actor.snapshot()

    async def process_turn(self, session_id: str, turn: TurnInput) -> TurnOutput:
        """Apply one finalized transcript and return the response to speak."""
        return await self._get(session_id).submit(turn)

    async def handle_silence(self, session_id: str) -> TurnOutput:
        """Reprompt a caller who said nothing, escalating after repeated silence."""
        return await self._get(session_id).silence()

    def handle_barge_in(self, session_id: str) -> int:
        """Count a barge-in. Committed transitions are left as they are."""
        return self._get(session_id).barge_in()

    def get_session_state(self, session_id: str) -> SessionContextSnapshot:
        return self._get(session_id).snapshot()

    async def finalize(self, session_id: str) -> SessionSummary:
        """Stop the session, emit its summary once and forget it."""
        actor = self._sessions.pop(session_id, None)
        if actor is None:
            raise SessionNotFoundError(session_id)
        await actor.stop()
        summary = actor.summarize()

        sink = self._integrations.telemetry
        if sink is not None:
            try:
                sink.emit(summary)
            except Exception as exc:
                logger.warning("Telemetry sink failed for session %s: %s", session_id, exc)

        logger.info(
            "Session %s finalized: %d turns, final state %s, avg %.0fms, escalated=%s",
            session_id, summary.turn_count, summary.final_state,
            summary.avg_turn_latency_ms, summary.was_escalated,
        )
        return summary

    def health_check(self) -> dict:
        return {
            "status": "ok",
            "active_sessions": self.active_sessions,
            "organization": self._default_organization.name,
            "digression_handling": self._config.features.digression_handling,
            "location_capture": self._config.features.location_capture,
        }

    async def shutdown(self) -> list[SessionSummary]:
        """Finalize every active session."""
        summaries = []
        for session_id in list(self._sessions):
            summaries.append(await self.finalize(session_id))
        logger.info("Session manager shut down (%d sessions finalized)", len(summaries))
        return summaries

    def _get(self, session_id: str) -> SessionActor:
        actor = self._sessions.get(session_id)
        if actor is None:
            raise SessionNotFoundError(session_id)
        return actor
