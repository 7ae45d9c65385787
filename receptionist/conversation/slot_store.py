"""
Immutable slot store with a tentative -> read back -> validated lifecycle.

Every update returns a new store, so a snapshot captured in a digression
frame can never be changed by later turns.

Usage:
    store = SlotStore()
    store, fresh = store.merge({"service": "haircut"}, turn=1)
    store = store.mark_read_back(SlotName.SERVICE)
    store = store.mark_validated(SlotName.SERVICE)
"""

import logging
import re
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Iterable, Mapping, Optional

from receptionist.conversation.service_validator import validate as validate_service
from receptionist.schemas.organization import LocationMode, OrganizationContext
from receptionist.utils import extract_email, extract_phone, parse_time_window

logger = logging.getLogger(__name__)

MIN_ADDRESS_LENGTH = 5


class SlotName(str, Enum):
    SERVICE = "service"
    TIME_WINDOW = "time_window"
    CONTACT = "contact"
    LOCATION = "location"
    LOCATION_PREFERENCE = "location_preference"


class SlotStatus(str, Enum):
    """Lifecycle status of a slot value."""

    EMPTY = "empty"
    TENTATIVE = "tentative"
    READ_BACK = "read_back"
    VALIDATED = "validated"


def _validate_time_window(value: str, organization: OrganizationContext) -> bool:
    now = datetime.now(timezone.utc)
    return parse_time_window(value, now, organization.timezone) is not None


def _validate_contact(value: str, organization: OrganizationContext) -> bool:
    return extract_phone(value) is not None or extract_email(value) is not None


def _validate_location(value: str, organization: OrganizationContext) -> bool:
    text = value.strip().lower()
    if organization.location_mode == LocationMode.AT_BUSINESS:
        return any(
            text in branch.name.lower() or branch.name.lower() in text
            or text in branch.address.lower()
            for branch in organization.branches
        )
    return len(text) >= MIN_ADDRESS_LENGTH and re.search(r"\d", text) is not None


def _validate_service(value: str, organization: OrganizationContext) -> bool:
    return validate_service(value, organization.active_services())


@dataclass(frozen=True)
class SlotDefinition:
    """Schema for a single slot to collect."""

    name: SlotName
    display_name: str
    validator: Optional[Callable[[str, OrganizationContext], bool]] = None


SLOT_DEFINITIONS: dict[SlotName, SlotDefinition] = {
    SlotName.SERVICE: SlotDefinition(SlotName.SERVICE, "service", _validate_service),
    SlotName.TIME_WINDOW: SlotDefinition(
        SlotName.TIME_WINDOW, "preferred time", _validate_time_window
    ),
    SlotName.CONTACT: SlotDefinition(
        SlotName.CONTACT, "name and phone number or email", _validate_contact
    ),
    SlotName.LOCATION: SlotDefinition(SlotName.LOCATION, "location", _validate_location),
    SlotName.LOCATION_PREFERENCE: SlotDefinition(
        SlotName.LOCATION_PREFERENCE, "location preference"
    ),
}

# Slots cleared when a booking attempt starts over or finishes.
BOOKING_SLOTS = (
    SlotName.SERVICE,
    SlotName.TIME_WINDOW,
    SlotName.CONTACT,
    SlotName.LOCATION,
    SlotName.LOCATION_PREFERENCE,
)


def validate_slot_value(name: SlotName, value: str, organization: OrganizationContext) -> bool:
    """Run the slot's format or catalog validator; slots without one always pass."""
    definition = SLOT_DEFINITIONS[name]
    if definition.validator is None:
        return bool(value and value.strip())
    return definition.validator(value, organization)


@dataclass(frozen=True)
class Slot:
    """Current value and confirmation bookkeeping of one slot."""

    value: Optional[str] = None
    status: SlotStatus = SlotStatus.EMPTY
    attempts: int = 0
    rejected: bool = False
    updated_turn: Optional[int] = None

    @property
    def is_filled(self) -> bool:
        return self.value is not None

    @property
    def is_validated(self) -> bool:
        return self.status == SlotStatus.VALIDATED


@dataclass(frozen=True)
class SlotStore:
    """Persistent mapping of slot name to Slot."""

    slots: Mapping[SlotName, Slot] = field(
        default_factory=lambda: {name: Slot() for name in SlotName}
    )

    def get(self, name: SlotName) -> Slot:
        return self.slots.get(name, Slot())

    def value(self, name: SlotName) -> Optional[str]:
        return self.get(name).value

    def status(self, name: SlotName) -> SlotStatus:
        return self.get(name).status

    def attempts(self, name: SlotName) -> int:
        return self.get(name).attempts

    def is_validated(self, name: SlotName) -> bool:
        return self.get(name).is_validated

    def _with(self, name: SlotName, slot: Slot) -> "SlotStore":
        updated = dict(self.slots)
        updated[name] = slot
        return SlotStore(slots=updated)

    def merge(
        self, values: Mapping[str, Optional[str]], turn: Optional[int] = None
    ) -> tuple["SlotStore", frozenset[SlotName]]:
        """Apply newly extracted values and report which slots changed.

        Blank values are ignored and validated slots are locked. A new value
        resets the slot's attempt counter unless its previous value was
        rejected, so repeated bad answers still count toward the threshold.
        """
        store = self
        fresh: set[SlotName] = set()
        for raw_name, raw_value in values.items():
            try:
                name = SlotName(raw_name)
            except ValueError:
                logger.debug("Ignoring unknown slot %r", raw_name)
                continue
            if raw_value is None or not str(raw_value).strip():
                continue
            current = store.get(name)
            if current.is_validated:
                continue
            store = store._with(name, Slot(
                value=str(raw_value).strip(),
                status=SlotStatus.TENTATIVE,
                attempts=current.attempts if current.rejected else 0,
                rejected=current.rejected,
                updated_turn=turn,
            ))
            fresh.add(name)
        return store, frozenset(fresh)

    def mark_read_back(self, name: SlotName) -> "SlotStore":
        return self._with(name, replace(self.get(name), status=SlotStatus.READ_BACK))

    def mark_validated(self, name: SlotName) -> "SlotStore":
        slot = self.get(name)
        return self._with(
            name, replace(slot, status=SlotStatus.VALIDATED, attempts=0, rejected=False)
        )

    def record_attempt(self, name: SlotName, rejected: bool = False) -> "SlotStore":
        """Count a strike against ``name``; a rejection also sticks to the slot."""
        slot = self.get(name)
        return self._with(
            name, replace(slot, attempts=slot.attempts + 1, rejected=slot.rejected or rejected)
        )

    def reject(self, name: SlotName, keep_value: bool = False) -> "SlotStore":
        """Record a rejected value, optionally keeping it for the escalation guard."""
        slot = self.get(name)
        return self._with(name, Slot(
            value=slot.value if keep_value else None,
            status=SlotStatus.TENTATIVE if keep_value and slot.value else SlotStatus.EMPTY,
            attempts=slot.attempts + 1,
            rejected=True,
            updated_turn=slot.updated_turn,
        ))

    def clear(self, names: Iterable[SlotName]) -> "SlotStore":
        updated = dict(self.slots)
        for name in names:
            updated[name] = Slot()
        return SlotStore(slots=updated)

    def missing(self, required: Iterable[SlotName]) -> list[SlotName]:
        return [name for name in required if not self.is_validated(name)]

    def values(self) -> dict[str, str]:
        """Filled values keyed by slot name."""
        return {
            name.value: slot.value for name, slot in self.slots.items() if slot.value is not None
        }
