"""Per-turn input, classification result and output models."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator


class Intent(str, Enum):
    """Intent vocabulary understood by the booking state machine."""
    BOOKING = "booking"
    SERVICE_PROVIDED = "service_provided"
    TIME_PROVIDED = "time_provided"
    CONTACT_PROVIDED = "contact_provided"
    LOCATION_PROVIDED = "location_provided"
    AFFIRMATIVE = "affirmative"
    NEGATIVE = "negative"
    HOURS = "hours"
    LOCATION = "location"
    SERVICES = "services"
    PRICING = "pricing"
    GENERAL_QUESTION = "general_question"
    ESCALATION_REQUEST = "escalation_request"
    OTHER = "other"
    UNCLEAR = "unclear"
    ERROR = "error"


class Entities(BaseModel):
    """Slot values extracted from a single utterance."""
    service: Optional[str] = None
    time_window: Optional[str] = None
    contact: Optional[str] = None
    location: Optional[str] = None
    location_preference: Optional[str] = None

    def slot_values(self) -> dict[str, str]:
        """Non-blank values keyed by slot name."""
        return {
            name: value.strip()
            for name, value in self.model_dump().items()
            if isinstance(value, str) and value.strip()
        }


class IntentResult(BaseModel):
    """What the intent classifier returns for one transcript."""
    intent: str = Intent.UNCLEAR.value
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    entities: Entities = Field(default_factory=Entities)

    @field_validator("intent", mode="before")
    @classmethod
    def _normalize_intent(cls, value: object) -> str:
        if isinstance(value, Intent):
            return value.value
        return str(value or "").strip().lower() or Intent.UNCLEAR.value

    @classmethod
    def error(cls) -> "IntentResult":
        """Pseudo-intent reported when classification fails or times out."""
        return cls(intent=Intent.ERROR.value, confidence=0.0)


class TurnInput(BaseModel):
    """A finalized user utterance from speech-to-text."""
    transcript: str
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)
    call_id: str
    turn_index: int = Field(default=0, ge=0)


class SlotSnapshot(BaseModel):
    value: Optional[str] = None
    status: str = "empty"
    attempts: int = 0


class SessionContextSnapshot(BaseModel):
    """Read-only view of a session handed to classifiers and callers."""
    session_id: str
    call_id: str
    organization_id: str
    state: str
    slots: dict[str, SlotSnapshot] = Field(default_factory=dict)
    retry_count: int = 0
    service_check: str = "unchecked"
    integration: str = "healthy"
    fallback_reason: Optional[str] = None
    digression_depth: int = 0
    escalation_reason: Optional[str] = None
    callback_due: Optional[datetime] = None
    callback_id: Optional[str] = None
    appointment_id: Optional[str] = None
    turn_count: int = 0
    silence_count: int = 0
    enhanced: bool = False


class TurnOutput(BaseModel):
    """What the session manager hands back to the speech layer."""
    state: str
    response: str
    context: SessionContextSnapshot
    turn_index: int = 0
    latency_ms: float = 0.0
