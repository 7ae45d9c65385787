"""
Off-topic questions in the middle of a booking.

A digression pushes an immutable frame holding the interrupted state and
context, answers the question, and later pops back to exactly where the
caller left off. Answers chained back to back stack up to a fixed depth.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Optional

from receptionist.schemas.organization import LocationMode, OrganizationContext
from receptionist.schemas.turn import Intent

if TYPE_CHECKING:
    from receptionist.conversation.context import BookingContext
    from receptionist.conversation.state_machine import BookingState

logger = logging.getLogger(__name__)

DIGRESSION_INTENTS = frozenset({
    Intent.HOURS.value,
    Intent.LOCATION.value,
    Intent.SERVICES.value,
    Intent.PRICING.value,
    Intent.GENERAL_QUESTION.value,
})

GENERAL_ANSWER = (
    "I don't have that information in front of me, but a team member "
    "will be happy to help with it when they confirm your appointment."
)


class DigressionLimitExceeded(Exception):
    """Raised when a push would take the stack past its cap."""


@dataclass(frozen=True)
class DigressionFrame:
    """Snapshot of the conversation at the moment it was interrupted."""

    state: "BookingState"
    context: "BookingContext"
    intent: str
    pushed_at: datetime
    resumable: bool = True


def _join(items: list[str]) -> str:
    if len(items) <= 1:
        return "".join(items)
    return ", ".join(items[:-1]) + " and " + items[-1]


def _money(amount: float) -> str:
    if amount == int(amount):
        return f"${int(amount)}"
    return f"${amount:.2f}"


class DigressionHandler:
    """Answers side questions and manages the frame stack."""

    def is_digression(self, intent: Optional[str]) -> bool:
        return intent in DIGRESSION_INTENTS

    def answer(self, intent: str, organization: OrganizationContext) -> str:
        if intent == Intent.HOURS.value:
            return organization.describe_hours()
        if intent == Intent.LOCATION.value:
            return self._describe_location(organization)
        if intent == Intent.SERVICES.value:
            names = [s.name for s in organization.active_services()]
            if not names:
                return "I don't have our service list in front of me right now."
            return f"We offer {_join(names)}."
        if intent == Intent.PRICING.value:
            return self._describe_pricing(organization)
        if intent == Intent.GENERAL_QUESTION.value:
            return GENERAL_ANSWER
        raise ValueError(f"Not a digression intent: {intent!r}")

    @staticmethod
    def _describe_pricing(organization: OrganizationContext) -> str:
        services = organization.active_services()
        priced = [f"{s.name} is {_money(s.price)}" for s in services if s.price is not None]
        if not priced:
            return "Prices depend on the details, so we'll confirm the cost when we book you in."
        text = f"{_join(priced)}."
        if len(priced) < len(services):
            text += " Other services are quoted when you book."
        return text

    @staticmethod
    def _describe_location(organization: OrganizationContext) -> str:
        if organization.location_mode == LocationMode.REMOTE_ONLY:
            return "All of our appointments are held remotely, so you won't need to travel."
        parts = []
        if organization.address:
            parts.append(f"We're located at {organization.address}.")
        if organization.branches:
            branches = [f"{b.name} at {b.address}" for b in organization.branches]
            parts.append(f"You can also visit {_join(branches)}.")
        if organization.location_mode == LocationMode.ON_SITE:
            parts.append("We can also come to you.")
        return " ".join(parts) or "I'm sorry, I don't have our address on hand."

    def push(
        self,
        stack: tuple[DigressionFrame, ...],
        frame: DigressionFrame,
        cap: int,
    ) -> tuple[DigressionFrame, ...]:
        if len(stack) >= cap:
            raise DigressionLimitExceeded(
                f"Digression depth {len(stack)} already at cap {cap}"
            )
        logger.debug("Digression pushed from %s (depth %d)", frame.state, len(stack) + 1)
        return stack + (frame,)

    def resume(
        self, stack: tuple[DigressionFrame, ...]
    ) -> tuple[Optional[DigressionFrame], tuple[DigressionFrame, ...]]:
        """Pop through chained answers to the interrupted booking frame."""
        remaining = stack
        while remaining:
            frame = remaining[-1]
            remaining = remaining[:-1]
            if frame.resumable:
                return frame, remaining
        return None, ()
