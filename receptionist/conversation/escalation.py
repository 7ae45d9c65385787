"""
Escalation to a human callback when automation cannot finish the booking.

A session escalates at most once: the first EscalationRecord is kept and
any later escalation path reuses it, so a caller is never promised two
callbacks.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING, Optional

from receptionist.conversation.slot_store import SlotName

if TYPE_CHECKING:
    from receptionist.conversation.context import BookingContext

logger = logging.getLogger(__name__)

CALLBACK_OFFSET = timedelta(hours=1)


class EscalationReason(str, Enum):
    SERVICE_INVALID = "service_invalid"
    CALENDAR_FAILURE = "calendar_failure"
    MAX_RETRIES = "max_retries"
    USER_REQUEST = "user_request"
    REPEATED_DIGRESSION = "repeated_digression"
    NO_RESPONSE = "no_response"


class CallbackTemplate(str, Enum):
    SERVICE_INVALID = "service_invalid"
    CALENDAR_FAILURE = "calendar_failure"
    GENERIC = "generic"
    TECHNICAL_FAILURE = "technical_failure"


TEMPLATES: dict[CallbackTemplate, str] = {
    CallbackTemplate.SERVICE_INVALID: (
        "I'm sorry, I couldn't find {service} among our services. "
        "I've asked a team member to call you back within the hour to help you "
        "choose the right one."
    ),
    CallbackTemplate.CALENDAR_FAILURE: (
        "I'm having trouble reaching our calendar right now. "
        "A team member will call you back within the hour to finish booking your {service}."
    ),
    CallbackTemplate.GENERIC: (
        "I've arranged for a team member to call you back within the hour "
        "to help with your booking."
    ),
    CallbackTemplate.TECHNICAL_FAILURE: (
        "I apologize, but I'm experiencing technical difficulties. "
        "Please call us directly or visit our website to schedule your appointment."
    ),
}


@dataclass(frozen=True)
class EscalationRecord:
    """Why and when a human should call the customer back."""

    reason: EscalationReason
    created_at: datetime
    callback_due: datetime
    detail: str = ""
    callback_id: Optional[str] = None

    @property
    def is_scheduled(self) -> bool:
        return self.callback_id is not None


class EscalationManager:
    """Decides when to hand off and what to tell the caller."""

    def __init__(self, callback_offset: timedelta = CALLBACK_OFFSET) -> None:
        self._callback_offset = callback_offset

    def should_fallback_to_callback(self, context: "BookingContext") -> Optional[EscalationReason]:
        """Return the reason the session must go to a callback, if any.

        Checked before any slot collection, in order of precedence: an
        integration fault, then a service that keeps failing the catalog,
        then the session retry ceiling.
        """
        status = context.status
        policy = context.policy
        if status.has_integration_fault:
            return EscalationReason.CALENDAR_FAILURE
        service = context.slots.get(SlotName.SERVICE)
        if (
            service.is_filled
            and status.service_invalid
            and service.attempts >= policy.service_retry_limit
        ):
            return EscalationReason.SERVICE_INVALID
        if status.retry_count >= policy.session_retry_ceiling:
            return EscalationReason.MAX_RETRIES
        return None

    def escalate(
        self,
        context: "BookingContext",
        reason: EscalationReason,
        now: datetime,
        detail: str = "",
    ) -> EscalationRecord:
        """Create the session's escalation record, or return the existing one."""
        if context.escalation is not None:
            logger.info(
                "Escalation (%s) reuses existing record (%s)",
                reason.value, context.escalation.reason.value,
            )
            return context.escalation
        record = EscalationRecord(
            reason=reason,
            created_at=now,
            callback_due=now + self._callback_offset,
            detail=detail,
        )
        logger.info("Escalating session %s: %s", context.session_id, reason.value)
        return record

    def template_for(self, reason: EscalationReason) -> CallbackTemplate:
        if reason == EscalationReason.SERVICE_INVALID:
            return CallbackTemplate.SERVICE_INVALID
        if reason == EscalationReason.CALENDAR_FAILURE:
            return CallbackTemplate.CALENDAR_FAILURE
        return CallbackTemplate.GENERIC

    def callback_message(self, record: EscalationRecord, service: Optional[str]) -> str:
        template = TEMPLATES[self.template_for(record.reason)]
        return template.format(service=service or "that service")

    def failure_message(self) -> str:
        return TEMPLATES[CallbackTemplate.TECHNICAL_FAILURE]
