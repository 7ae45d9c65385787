"""
Per-session latency and outcome tracking.

Each processed turn records how long classification, the state machine
and any integration calls took. ``summarize`` folds those records into
the ``SessionSummary`` emitted once when the session is finalized.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from receptionist.schemas.telemetry import PhaseBreakdown, SessionSummary, TurnRecord

logger = logging.getLogger(__name__)


@dataclass
class TurnTimer:
    """Millisecond timings collected while one turn is processed."""

    classify_ms: float = 0.0
    state_ms: float = 0.0
    integration_ms: float = 0.0

    @property
    def total_ms(self) -> float:
        return self.classify_ms + self.state_ms + self.integration_ms


@dataclass
class SessionMetrics:
    """Mutable counters owned by a single session worker."""

    session_id: str
    call_id: str
    organization_id: str
    turn_budget_ms: float
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    turns: list[TurnRecord] = field(default_factory=list)
    barge_in_count: int = 0
    silence_count: int = 0

    def record_turn(
        self,
        turn_index: int,
        intent: str,
        state: str,
        timer: TurnTimer,
        error: Optional[str] = None,
    ) -> TurnRecord:
        record = TurnRecord(
            turn_index=turn_index,
            intent=intent,
            state=state,
            classify_ms=round(timer.classify_ms, 2),
            state_ms=round(timer.state_ms, 2),
            integration_ms=round(timer.integration_ms, 2),
            total_ms=round(timer.total_ms, 2),
            target_met=timer.total_ms <= self.turn_budget_ms,
            error=error,
        )
        self.turns.append(record)
        if not record.target_met:
            logger.warning(
                "Turn %d took %.0fms (budget %.0fms)",
                turn_index, record.total_ms, self.turn_budget_ms,
            )
        return record

    def record_barge_in(self) -> int:
        self.barge_in_count += 1
        return self.barge_in_count

    def record_silence(self) -> int:
        self.silence_count += 1
        return self.silence_count

    def summarize(
        self,
        final_state: str,
        transition_count: int,
        was_successful: bool,
        escalation_reason: Optional[str],
        enhanced_features: bool,
        now: Optional[datetime] = None,
    ) -> SessionSummary:
        """Aggregate the recorded turns into one summary."""
        now = now or datetime.now(timezone.utc)
        totals = [t.total_ms for t in self.turns]
        count = len(self.turns)

        def _avg(values: list[float]) -> float:
            return round(sum(values) / len(values), 2) if values else 0.0

        return SessionSummary(
            session_id=self.session_id,
            call_id=self.call_id,
            organization_id=self.organization_id,
            started_at=self.started_at,
            duration_seconds=round(max((now - self.started_at).total_seconds(), 0.0), 3),
            turn_count=count,
            avg_turn_latency_ms=_avg(totals),
            max_turn_latency_ms=max(totals) if totals else 0.0,
            turns_over_budget=sum(1 for t in self.turns if not t.target_met),
            phase_breakdown=PhaseBreakdown(
                classify_ms=_avg([t.classify_ms for t in self.turns]),
                state_ms=_avg([t.state_ms for t in self.turns]),
                integration_ms=_avg([t.integration_ms for t in self.turns]),
            ),
            barge_in_count=self.barge_in_count,
            silence_count=self.silence_count,
            transition_count=transition_count,
            final_state=final_state,
            was_successful=was_successful,
            was_escalated=escalation_reason is not None,
            escalation_reason=escalation_reason,
            enhanced_features=enhanced_features,
            turns=list(self.turns),
        )
