from receptionist.conversation.context import BookingContext, BookingStatus
from receptionist.conversation.slot_store import SlotName, SlotStatus, SlotStore
from receptionist.conversation.state_machine import (
    BookingState,
    BookingStateMachine,
    Event,
    EventType,
    InvalidTransitionError,
)

__all__ = [
    "BookingStateMachine",
    "BookingState",
    "BookingContext",
    "BookingStatus",
    "Event",
    "EventType",
    "InvalidTransitionError",
    "SlotStore",
    "SlotName",
    "SlotStatus",
]
