"""Shared test fixtures, builders and fake collaborators."""

import asyncio
from datetime import datetime, timezone
from typing import Optional

import pytest

from receptionist.config import (
    AppConfig,
    BusinessConfig,
    FeatureConfig,
    LatencyConfig,
    PolicyConfig,
    TimerConfig,
)
from receptionist.conversation.context import BookingContext
from receptionist.conversation.state_machine import BookingStateMachine, Event
from receptionist.schemas.booking import (
    AppointmentDraft,
    AppointmentResult,
    CallbackDraft,
    CallbackResult,
)
from receptionist.schemas.organization import (
    Branch,
    Integration,
    LocationMode,
    OrganizationContext,
    ServiceEntry,
)
from receptionist.schemas.telemetry import SessionSummary
from receptionist.schemas.turn import Entities, IntentResult, SessionContextSnapshot
from receptionist.tools import availability, booking
from receptionist.tools.base import Integrations
from receptionist.tools.intent import KeywordIntentClassifier

FIXED_NOW = datetime(2025, 3, 14, 9, 0, tzinfo=timezone.utc)

CATALOG = ["Haircut", "Hair Styling", "Consultation", "Color Treatment"]


@pytest.fixture(autouse=True)
def _reset_stores():
    booking.reset()
    availability.reset()
    yield
    booking.reset()
    availability.reset()


def make_org(
    services: Optional[list[str]] = None,
    location_mode: LocationMode = LocationMode.NONE,
    branches: Optional[list[Branch]] = None,
    calendar: bool = True,
    prices: Optional[dict[str, float]] = None,
    **overrides,
) -> OrganizationContext:
    """Helper to create an OrganizationContext with sensible defaults."""
    names = CATALOG if services is None else services
    return OrganizationContext(
        organization_id=overrides.pop("organization_id", "org-test"),
        name=overrides.pop("name", "Riverside Studio"),
        services=[
            ServiceEntry(name=n, duration_minutes=30, price=(prices or {}).get(n))
            for n in names
        ],
        address=overrides.pop("address", "120 Main Street, Springfield"),
        location_mode=location_mode,
        branches=branches or [],
        integrations=[Integration(type="calendar")] if calendar else [],
        **overrides,
    )


def make_policy(**overrides) -> PolicyConfig:
    values = dict(
        confirmation_threshold=3,
        service_retry_limit=3,
        session_retry_ceiling=5,
        low_confidence_threshold=0.3,
        max_digression_depth=5,
        silence_limit=3,
    )
    values.update(overrides)
    return PolicyConfig(**values)


def make_context(organization: Optional[OrganizationContext] = None, **overrides) -> BookingContext:
    """Helper to create a BookingContext pinned to FIXED_NOW."""
    values = dict(
        session_id="sess-test",
        call_id="CA-test",
        organization=organization or make_org(),
        policy=make_policy(),
        digressions_enabled=True,
        location_capture=True,
        created_at=FIXED_NOW,
        now=FIXED_NOW,
    )
    values.update(overrides)
    return BookingContext(**values)


def make_config(
    intent_timeout: float = 0.2,
    integration_timeout: float = 0.2,
    return_delay: float = 30.0,
    **features,
) -> AppConfig:
    """AppConfig with short timeouts and timers long enough not to fire mid-test."""
    return AppConfig(
        business=BusinessConfig(),
        policy=make_policy(),
        latency=LatencyConfig(
            intent_timeout_sec=intent_timeout,
            integration_timeout_sec=integration_timeout,
            turn_budget_sec=1.5,
        ),
        timers=TimerConfig(
            success_return_sec=return_delay,
            callback_return_sec=return_delay,
            fallback_return_sec=return_delay,
            respond_return_sec=return_delay,
            digression_return_sec=return_delay,
        ),
        features=FeatureConfig(
            digression_handling=features.get("digression_handling", True),
            location_capture=features.get("location_capture", True),
        ),
        log_level="DEBUG",
    )


def turn(
    intent: str,
    transcript: str = "",
    confidence: float = 0.9,
    at: datetime = FIXED_NOW,
    **entities: str,
) -> Event:
    """Build a PROCESS_INTENT event from a pre-classified turn."""
    result = IntentResult(intent=intent, confidence=confidence, entities=Entities(**entities))
    return Event.turn(result, transcript, at)


@pytest.fixture
def org():
    return make_org()


@pytest.fixture
def context(org):
    return make_context(org)


@pytest.fixture
def machine(context):
    return BookingStateMachine(context)


# --- Fake collaborators ------------------------------------------------------


class SlowClassifier:
    """Classifier that takes longer than any test timeout."""

    def __init__(self, delay: float = 5.0) -> None:
        self.delay = delay

    async def classify(self, transcript: str, context: SessionContextSnapshot) -> IntentResult:
        await asyncio.sleep(self.delay)
        return IntentResult(intent="booking", confidence=0.9)


class FailingClassifier:
    async def classify(self, transcript: str, context: SessionContextSnapshot) -> IntentResult:
        raise RuntimeError("classifier unavailable")


class RecordingClassifier(KeywordIntentClassifier):
    """Keyword classifier that remembers the order of transcripts it saw."""

    def __init__(self, delay: float = 0.0) -> None:
        super().__init__()
        self.delay = delay
        self.seen: list[str] = []

    async def classify(self, transcript: str, context: SessionContextSnapshot) -> IntentResult:
        if self.delay:
            await asyncio.sleep(self.delay)
        self.seen.append(transcript)
        return await super().classify(transcript, context)


class FakeAppointments:
    """Appointment creator that counts calls and can be told to fail or stall."""

    def __init__(self, fail: bool = False, delay: float = 0.0) -> None:
        self.fail = fail
        self.delay = delay
        self.drafts: list[AppointmentDraft] = []

    async def create(self, draft: AppointmentDraft) -> AppointmentResult:
        self.drafts.append(draft)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise ConnectionError("calendar API returned 503")
        return AppointmentResult(id=f"APT-{len(self.drafts):03d}", status=draft.status)


class FakeCallbacks:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.drafts: list[CallbackDraft] = []

    async def schedule(self, draft: CallbackDraft) -> CallbackResult:
        self.drafts.append(draft)
        if self.fail:
            raise ConnectionError("callback queue unavailable")
        return CallbackResult(id=f"CB-{len(self.drafts):03d}")


class FakeAvailability:
    def __init__(self, available: bool = True) -> None:
        self.available = available
        self.calls = 0

    async def is_available(self, context: SessionContextSnapshot) -> bool:
        self.calls += 1
        return self.available


class ListSink:
    def __init__(self) -> None:
        self.summaries: list[SessionSummary] = []

    def emit(self, summary: SessionSummary) -> None:
        self.summaries.append(summary)


def make_integrations(
    classifier=None,
    appointments=None,
    callbacks=None,
    available: bool = True,
    telemetry=None,
) -> Integrations:
    return Integrations(
        classifier=classifier or KeywordIntentClassifier(),
        appointments=appointments or FakeAppointments(),
        callbacks=callbacks or FakeCallbacks(),
        availability=FakeAvailability(available),
        telemetry=telemetry,
    )

