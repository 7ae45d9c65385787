"""
Calendar availability check used at booking time.

In production this would ping the calendar provider. Here the answer comes
from the organization's configured integrations plus a switch tests can
flip to simulate an outage.
"""

import logging

from receptionist.schemas.turn import SessionContextSnapshot

logger = logging.getLogger(__name__)

_outages: set[str] = set()


def set_outage(organization_id: str, down: bool = True) -> None:
    """Mark an organization's calendar as unreachable (or reachable again)."""
    if down:
        _outages.add(organization_id)
    else:
        _outages.discard(organization_id)


def reset() -> None:
    _outages.clear()


class CalendarAvailability:
    """Reports whether the organization's calendar can take bookings right now."""

    def __init__(self, calendar_orgs: frozenset[str] = frozenset()) -> None:
        self._calendar_orgs = calendar_orgs

    async def is_available(self, context: SessionContextSnapshot) -> bool:
        org_id = context.organization_id
        if org_id in _outages:
            logger.warning("Calendar outage for organization %s", org_id)
            return False
        if self._calendar_orgs and org_id not in self._calendar_orgs:
            logger.info("No calendar integration for organization %s", org_id)
            return False
        return True
