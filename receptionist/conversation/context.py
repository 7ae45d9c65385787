"""Immutable per-session booking context threaded through the state machine."""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from receptionist.config import PolicyConfig
from receptionist.conversation.digression import DigressionFrame
from receptionist.conversation.escalation import EscalationReason, EscalationRecord
from receptionist.conversation.slot_store import SlotName, SlotStore
from receptionist.schemas.organization import LocationMode, OrganizationContext
from receptionist.schemas.turn import SessionContextSnapshot, SlotSnapshot


class ServiceCheck(str, Enum):
    UNCHECKED = "unchecked"
    VALID = "valid"
    INVALID = "invalid"


class IntegrationHealth(str, Enum):
    HEALTHY = "healthy"
    CALENDAR_UNAVAILABLE = "calendar_unavailable"
    FAILED = "failed"


@dataclass(frozen=True)
class BookingStatus:
    """Validation and integration state of the booking in progress."""

    service_check: ServiceCheck = ServiceCheck.UNCHECKED
    integration: IntegrationHealth = IntegrationHealth.HEALTHY
    retry_count: int = 0
    fallback_reason: Optional[EscalationReason] = None

    @property
    def has_integration_fault(self) -> bool:
        return self.integration != IntegrationHealth.HEALTHY

    @property
    def service_invalid(self) -> bool:
        return self.service_check == ServiceCheck.INVALID

    def with_strike(self) -> "BookingStatus":
        return replace(self, retry_count=self.retry_count + 1)


@dataclass(frozen=True)
class BookingContext:
    """Everything the state machine knows about one call.

    Reducers never mutate a context; they return a new one via ``replace``.
    """

    session_id: str
    call_id: str
    organization: OrganizationContext
    policy: PolicyConfig = field(default_factory=PolicyConfig)
    digressions_enabled: bool = True
    location_capture: bool = True
    slots: SlotStore = field(default_factory=SlotStore)
    status: BookingStatus = field(default_factory=BookingStatus)
    digressions: tuple[DigressionFrame, ...] = ()
    escalation: Optional[EscalationRecord] = None
    focus: SlotName = SlotName.SERVICE
    fresh: frozenset[SlotName] = frozenset()
    intent: Optional[str] = None
    confidence: float = 0.0
    transcript: str = ""
    turn_index: int = 0
    turn_count: int = 0
    silence_count: int = 0
    notice: str = ""
    response: str = ""
    appointment_id: Optional[str] = None
    appointment_status: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    now: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def enhanced(self) -> bool:
        return self.digressions_enabled or self.location_capture

    @property
    def location_required(self) -> bool:
        if not self.location_capture:
            return False
        mode = self.organization.location_mode
        if mode == LocationMode.ON_SITE:
            return True
        return mode == LocationMode.AT_BUSINESS and len(self.organization.branches) > 1

    def required_slots(self) -> list[SlotName]:
        """Slots that must be validated before confirmation, in collection order."""
        required = [SlotName.SERVICE, SlotName.TIME_WINDOW, SlotName.CONTACT]
        if self.location_required:
            required.append(SlotName.LOCATION)
        return required

    def threshold_for(self, slot: SlotName) -> int:
        return self.organization.threshold_for(slot.value, self.policy.confirmation_threshold)

    def snapshot(self, state: str) -> SessionContextSnapshot:
        escalation = self.escalation
        return SessionContextSnapshot(
            session_id=self.session_id,
            call_id=self.call_id,
            organization_id=self.organization.organization_id,
            state=state,
            slots={
                name.value: SlotSnapshot(
                    value=slot.value, status=slot.status.value, attempts=slot.attempts
                )
                for name, slot in self.slots.slots.items()
            },
            retry_count=self.status.retry_count,
            service_check=self.status.service_check.value,
            integration=self.status.integration.value,
            fallback_reason=(
                self.status.fallback_reason.value if self.status.fallback_reason else None
            ),
            digression_depth=len(self.digressions),
            escalation_reason=escalation.reason.value if escalation else None,
            callback_due=escalation.callback_due if escalation else None,
            callback_id=escalation.callback_id if escalation else None,
            appointment_id=self.appointment_id,
            turn_count=self.turn_count,
            silence_count=self.silence_count,
            enhanced=self.enhanced,
        )
