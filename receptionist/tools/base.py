"""Interfaces of the external collaborators the orchestrator talks to."""

from dataclasses import dataclass
from typing import Optional, Protocol

from receptionist.schemas.booking import (
    AppointmentDraft,
    AppointmentResult,
    CallbackDraft,
    CallbackResult,
)
from receptionist.schemas.telemetry import SessionSummary
from receptionist.schemas.turn import IntentResult, SessionContextSnapshot


class IntentClassifier(Protocol):
    async def classify(self, transcript: str, context: SessionContextSnapshot) -> IntentResult:
        ...


class AppointmentCreator(Protocol):
    async def create(self, draft: AppointmentDraft) -> AppointmentResult:
        ...


class CallbackScheduler(Protocol):
    async def schedule(self, draft: CallbackDraft) -> CallbackResult:
        ...


class AvailabilityChecker(Protocol):
    async def is_available(self, context: SessionContextSnapshot) -> bool:
        ...


class TelemetrySink(Protocol):
    def emit(self, summary: SessionSummary) -> None:
        ...


@dataclass(frozen=True)
class Integrations:
    """Bundle of collaborators handed to the session manager."""

    classifier: IntentClassifier
    appointments: AppointmentCreator
    callbacks: CallbackScheduler
    availability: AvailabilityChecker
    telemetry: Optional[TelemetrySink] = None
