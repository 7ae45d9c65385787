"""Latency and outcome records emitted per turn and per session."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class TurnRecord(BaseModel):
    """Timing breakdown for one processed turn."""
    turn_index: int
    intent: str
    state: str
    classify_ms: float = 0.0
    state_ms: float = 0.0
    integration_ms: float = 0.0
    total_ms: float = 0.0
    target_met: bool = True
    error: Optional[str] = None


class PhaseBreakdown(BaseModel):
    """Average milliseconds spent in each phase of a turn."""
    classify_ms: float = 0.0
    state_ms: float = 0.0
    integration_ms: float = 0.0


class SessionSummary(BaseModel):
    """Aggregate telemetry emitted once when a session is finalized."""
    session_id: str
    call_id: str
    organization_id: str
    started_at: datetime
    duration_seconds: float
    turn_count: int
    avg_turn_latency_ms: float = 0.0
    max_turn_latency_ms: float = 0.0
    turns_over_budget: int = 0
    phase_breakdown: PhaseBreakdown = Field(default_factory=PhaseBreakdown)
    barge_in_count: int = 0
    silence_count: int = 0
    transition_count: int = 0
    final_state: str
    was_successful: bool = False
    was_escalated: bool = False
    escalation_reason: Optional[str] = None
    enhanced_features: bool = False
    turns: list[TurnRecord] = Field(default_factory=list)
