"""
Finite state machine driving a booking conversation.

Transitions live in one explicit table. Guards are pure predicates over
``(context, event)`` and reducers are pure functions returning a new
context, so a single transition can be tested by feeding ``step`` a
``(state, context, event)`` tuple. Side effects are never performed here:
the ``book`` and ``scheduleCallback`` states only *request* an invocation,
which the session actor runs before feeding back a DONE or ERROR event.

Usage:
    machine = BookingStateMachine(context)
    machine.send(Event.turn(intent_result, "I need a haircut", now))
    assert machine.current_state == BookingState.COLLECT_SERVICE
"""

import logging
import re
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Mapping, Optional

from receptionist.config import TimerConfig
from receptionist.conversation.confirmation_policy import Decision, decide
from receptionist.conversation.context import (
    BookingContext,
    IntegrationHealth,
    ServiceCheck,
)
from receptionist.conversation.digression import DigressionFrame, DigressionHandler
from receptionist.conversation.escalation import EscalationManager, EscalationReason
from receptionist.conversation.service_validator import match_service
from receptionist.conversation.slot_store import (
    BOOKING_SLOTS,
    SlotName,
    SlotStatus,
    validate_slot_value,
)
from receptionist.prompts import responses
from receptionist.schemas.turn import Intent, IntentResult

logger = logging.getLogger(__name__)

MAX_EVENTLESS_STEPS = 32


class BookingState(str, Enum):
    """All states of a booking conversation."""
    IDLE = "idle"
    HANDLE_INTENT = "handleIntent"
    RESPOND_AND_IDLE = "respondAndIdle"
    BOOKING_FLOW = "bookingFlow"
    COLLECT_SERVICE = "collectService"
    VALIDATE_SERVICE = "validateService"
    COLLECT_TIME_WINDOW = "collectTimeWindow"
    COLLECT_CONTACT = "collectContact"
    COLLECT_LOCATION = "collectLocation"
    VALIDATE_SLOT = "validateSlot"
    CONFIRM = "confirm"
    BOOK = "book"
    SUCCESS = "success"
    SCHEDULE_CALLBACK = "scheduleCallback"
    CALLBACK_SCHEDULED = "callbackScheduled"
    FALLBACK = "fallback"
    HANDLE_DIGRESSION = "handleDigression"
    ANSWER_HOURS = "answerHours"
    ANSWER_LOCATION = "answerLocation"
    ANSWER_SERVICES = "answerServices"
    ANSWER_PRICING = "answerPricing"
    ANSWER_GENERAL = "answerGeneral"
    RETURN_FROM_DIGRESSION = "returnFromDigression"


class EventType(str, Enum):
    PROCESS_INTENT = "PROCESS_INTENT"
    ALWAYS = "ALWAYS"
    DONE = "DONE"
    ERROR = "ERROR"
    RESUME = "RESUME"
    SILENCE = "SILENCE"


class Invocation(str, Enum):
    """Side effects requested by invoke states."""
    CREATE_APPOINTMENT = "create_appointment"
    SCHEDULE_CALLBACK = "schedule_callback"


@dataclass(frozen=True)
class Event:
    """Input to the machine: a turn, an invocation outcome or a timer."""
    type: EventType
    at: datetime
    intent: str = ""
    confidence: float = 0.0
    entities: Mapping[str, str] = field(default_factory=dict)
    transcript: str = ""
    turn_index: Optional[int] = None
    payload: Mapping[str, Any] = field(default_factory=dict)
    error: Optional[str] = None

    @classmethod
    def turn(
        cls,
        result: IntentResult,
        transcript: str,
        at: datetime,
        turn_index: Optional[int] = None,
    ) -> "Event":
        return cls(
            EventType.PROCESS_INTENT,
            at,
            intent=result.intent,
            confidence=result.confidence,
            entities=result.entities.slot_values(),
            transcript=transcript,
            turn_index=turn_index,
        )

    @classmethod
    def done(cls, at: datetime, **payload: Any) -> "Event":
        return cls(EventType.DONE, at, payload=payload)

    @classmethod
    def failed(cls, at: datetime, error: str) -> "Event":
        return cls(EventType.ERROR, at, error=error)

    @classmethod
    def resume(cls, at: datetime) -> "Event":
        return cls(EventType.RESUME, at)

    @classmethod
    def silence(cls, at: datetime) -> "Event":
        """The caller said nothing before the no-input timeout."""
        return cls(EventType.SILENCE, at)


Guard = Callable[[BookingContext, Event], bool]
Reducer = Callable[[BookingContext, Event], BookingContext]


@dataclass(frozen=True)
class Transition:
    """A single valid transition. ``to_state`` None keeps the current state."""
    from_state: BookingState
    event: EventType
    to_state: Optional[BookingState]
    guard: Optional[Guard] = None
    reducer: Optional[Reducer] = None


@dataclass
class StateEntry:
    """Recorded history entry for a state visit."""
    state: BookingState
    entered_at: datetime
    event: Optional[EventType] = None


class InvalidTransitionError(Exception):
    """Raised when no transition matches the current state and event."""


COLLECTOR_FOR: dict[SlotName, BookingState] = {
    SlotName.SERVICE: BookingState.COLLECT_SERVICE,
    SlotName.TIME_WINDOW: BookingState.COLLECT_TIME_WINDOW,
    SlotName.CONTACT: BookingState.COLLECT_CONTACT,
    SlotName.LOCATION: BookingState.COLLECT_LOCATION,
}
SLOT_FOR: dict[BookingState, SlotName] = {state: slot for slot, state in COLLECTOR_FOR.items()}
COLLECTOR_STATES = frozenset(COLLECTOR_FOR.values())
MID_BOOKING_STATES = COLLECTOR_STATES | {BookingState.CONFIRM}

ANSWER_FOR: dict[str, BookingState] = {
    Intent.HOURS.value: BookingState.ANSWER_HOURS,
    Intent.LOCATION.value: BookingState.ANSWER_LOCATION,
    Intent.SERVICES.value: BookingState.ANSWER_SERVICES,
    Intent.PRICING.value: BookingState.ANSWER_PRICING,
    Intent.GENERAL_QUESTION.value: BookingState.ANSWER_GENERAL,
}
ANSWER_STATES = frozenset(ANSWER_FOR.values())

TRANSIENT_STATES = frozenset({
    BookingState.HANDLE_INTENT,
    BookingState.BOOKING_FLOW,
    BookingState.VALIDATE_SERVICE,
    BookingState.VALIDATE_SLOT,
    BookingState.HANDLE_DIGRESSION,
    BookingState.RETURN_FROM_DIGRESSION,
})

INVOKE_STATES: dict[BookingState, Invocation] = {
    BookingState.BOOK: Invocation.CREATE_APPOINTMENT,
    BookingState.SCHEDULE_CALLBACK: Invocation.SCHEDULE_CALLBACK,
}

# State -> TimerConfig attribute holding its auto-return delay.
AUTO_RETURN_STATES: dict[BookingState, str] = {
    BookingState.SUCCESS: "success_return_sec",
    BookingState.CALLBACK_SCHEDULED: "callback_return_sec",
    BookingState.FALLBACK: "fallback_return_sec",
    BookingState.RESPOND_AND_IDLE: "respond_return_sec",
    BookingState.ANSWER_HOURS: "digression_return_sec",
    BookingState.ANSWER_LOCATION: "digression_return_sec",
    BookingState.ANSWER_SERVICES: "digression_return_sec",
    BookingState.ANSWER_PRICING: "digression_return_sec",
    BookingState.ANSWER_GENERAL: "digression_return_sec",
}

RESTING_STATES = frozenset({BookingState.IDLE}) | MID_BOOKING_STATES | frozenset(AUTO_RETURN_STATES)
SILENCE_STATES = frozenset({BookingState.IDLE}) | MID_BOOKING_STATES

BOOKING_INTENTS = frozenset({
    Intent.BOOKING.value,
    Intent.SERVICE_PROVIDED.value,
    Intent.TIME_PROVIDED.value,
    Intent.CONTACT_PROVIDED.value,
    Intent.LOCATION_PROVIDED.value,
})
KNOWN_INTENTS = frozenset(i.value for i in Intent)

AFFIRMATIVE_PATTERN = re.compile(
    r"\b(yes|yeah|yep|yup|sure|correct|right|confirm|book|schedule|absolutely|definitely)\b",
    re.IGNORECASE,
)
NEGATIVE_PATTERN = re.compile(
    r"\b(no|nope|nah|wrong|incorrect|not right|change)\b", re.IGNORECASE
)

_escalations = EscalationManager()
_digressions = DigressionHandler()


def is_affirmative(text: str) -> bool:
    """Yes-like wording with no explicit negative in it."""
    text = text or ""
    return NEGATIVE_PATTERN.search(text) is None and AFFIRMATIVE_PATTERN.search(text) is not None


def is_negative(text: str) -> bool:
    return NEGATIVE_PATTERN.search(text or "") is not None


def normalize_turn(event: Event, low_confidence_threshold: float) -> Event:
    """Map unknown intents to ``other`` and weak, entity-free turns to ``unclear``."""
    intent = event.intent if event.intent in KNOWN_INTENTS else Intent.OTHER.value
    if (
        intent != Intent.ERROR.value
        and not event.entities
        and event.confidence < low_confidence_threshold
    ):
        intent = Intent.UNCLEAR.value
    if intent == event.intent:
        return event
    return replace(event, intent=intent)


# --- Guards ---------------------------------------------------------------

def _both(first: Guard, second: Guard) -> Guard:
    return lambda ctx, ev: first(ctx, ev) and second(ctx, ev)


def _is_error(ctx: BookingContext, ev: Event) -> bool:
    return ev.intent == Intent.ERROR.value


def _is_escalation_request(ctx: BookingContext, ev: Event) -> bool:
    return ev.intent == Intent.ESCALATION_REQUEST.value


def _is_booking_intent(ctx: BookingContext, ev: Event) -> bool:
    return ev.intent in BOOKING_INTENTS


def _already_escalated(ctx: BookingContext, ev: Event) -> bool:
    return ctx.escalation is not None and ev.intent in BOOKING_INTENTS


def _intent_is(intent: str) -> Guard:
    return lambda ctx, ev: ev.intent == intent


def _is_digression(ctx: BookingContext, ev: Event) -> bool:
    return ctx.digressions_enabled and _digressions.is_digression(ev.intent)


def _digression_allowed(ctx: BookingContext, ev: Event) -> bool:
    return _is_digression(ctx, ev) and len(ctx.digressions) < ctx.policy.max_digression_depth


def _digression_overflow(ctx: BookingContext, ev: Event) -> bool:
    return _is_digression(ctx, ev) and len(ctx.digressions) >= ctx.policy.max_digression_depth


def _affirmed(ev: Event) -> bool:
    if ev.intent == Intent.NEGATIVE.value or is_negative(ev.transcript):
        return False
    return ev.intent == Intent.AFFIRMATIVE.value or is_affirmative(ev.transcript)


def _rejected(ev: Event) -> bool:
    return ev.intent == Intent.NEGATIVE.value or is_negative(ev.transcript)


def _confirmed(ctx: BookingContext, ev: Event) -> bool:
    return _affirmed(ev)


def _slot_exhausted(slot: SlotName) -> Guard:
    def guard(ctx: BookingContext, ev: Event) -> bool:
        decision = decide(ctx.slots.attempts(slot), ctx.threshold_for(slot))
        return decision == Decision.ESCALATE
    return guard


def _focus_exhausted(ctx: BookingContext, ev: Event) -> bool:
    return _slot_exhausted(ctx.focus)(ctx, ev)


def _has_all_booking_data(ctx: BookingContext, ev: Event) -> bool:
    return not ctx.slots.missing(ctx.required_slots())


def _needs(slot: SlotName) -> Guard:
    return lambda ctx, ev: slot in ctx.required_slots() and not ctx.slots.is_validated(slot)


def _service_unchecked(ctx: BookingContext, ev: Event) -> bool:
    return (
        ctx.slots.status(SlotName.SERVICE) == SlotStatus.TENTATIVE
        and ctx.status.service_check == ServiceCheck.UNCHECKED
    )


def _service_off_catalog(ctx: BookingContext, ev: Event) -> bool:
    if not _service_unchecked(ctx, ev):
        return False
    catalog = ctx.organization.active_services()
    return match_service(ctx.slots.value(SlotName.SERVICE), catalog) is None


def _read_back_affirmed(slot: SlotName) -> Guard:
    def guard(ctx: BookingContext, ev: Event) -> bool:
        confirmed = ctx.slots.status(slot) == SlotStatus.READ_BACK and _affirmed(ev)
        decision = decide(ctx.slots.attempts(slot), ctx.threshold_for(slot), validated=confirmed)
        return decision == Decision.ACCEPT
    return guard


def _focus_is(slot: SlotName) -> Guard:
    return lambda ctx, ev: ctx.focus == slot


def _focus_tentative(ctx: BookingContext, ev: Event) -> bool:
    return ctx.slots.status(ctx.focus) == SlotStatus.TENTATIVE


def _focus_invalid(ctx: BookingContext, ev: Event) -> bool:
    if not _focus_tentative(ctx, ev):
        return False
    value = ctx.slots.value(ctx.focus) or ""
    return not validate_slot_value(ctx.focus, value, ctx.organization)


def _focus_affirmed(ctx: BookingContext, ev: Event) -> bool:
    return _read_back_affirmed(ctx.focus)(ctx, ev)


def _silence_exhausted(ctx: BookingContext, ev: Event) -> bool:
    return ctx.silence_count + 1 >= ctx.policy.silence_limit


def _resumes_to(state: BookingState) -> Guard:
    def guard(ctx: BookingContext, ev: Event) -> bool:
        frame, _ = _digressions.resume(ctx.digressions)
        return frame is not None and frame.state == state
    return guard


# --- Prompts --------------------------------------------------------------

def _slot_text(ctx: BookingContext, slot: SlotName) -> str:
    """Read back a value awaiting confirmation, otherwise ask for it."""
    current = ctx.slots.get(slot)
    if current.status == SlotStatus.READ_BACK and current.value:
        canonical = None
        if slot == SlotName.SERVICE:
            entry = match_service(current.value, ctx.organization.active_services())
            canonical = entry.name if entry else None
        return responses.read_back(slot, current.value, canonical)
    return responses.slot_prompt(slot, ctx.organization)


def _resume_text(ctx: BookingContext, state: BookingState) -> str:
    if state == BookingState.CONFIRM:
        return responses.confirmation_summary(ctx.slots.values(), ctx.organization)
    if state in SLOT_FOR:
        return _slot_text(ctx, SLOT_FOR[state])
    return ""


# --- Reducers -------------------------------------------------------------

def _begin_turn(ctx: BookingContext, ev: Event) -> BookingContext:
    turn_index = ev.turn_index if ev.turn_index is not None else ctx.turn_index + 1
    return replace(
        ctx,
        intent=ev.intent,
        confidence=ev.confidence,
        transcript=ev.transcript,
        turn_index=turn_index,
        turn_count=ctx.turn_count + 1,
        silence_count=0,
        fresh=frozenset(),
        notice="",
        response="",
        now=ev.at,
    )


def _merge_turn(ctx: BookingContext, ev: Event) -> BookingContext:
    slots, fresh = ctx.slots.merge(ev.entities, turn=ctx.turn_index)
    status = ctx.status
    if SlotName.SERVICE in fresh:
        status = replace(status, service_check=ServiceCheck.UNCHECKED)
    return replace(ctx, slots=slots, status=status, fresh=fresh)


def _strike(ctx: BookingContext, slot: SlotName, notice: str) -> BookingContext:
    return replace(
        ctx,
        slots=ctx.slots.record_attempt(slot),
        status=ctx.status.with_strike(),
        notice=notice,
    )


def _classification_failed(ctx: BookingContext, ev: Event) -> BookingContext:
    return replace(ctx, response=responses.TROUBLE_PROCESSING)


def _accept_idle_turn(ctx: BookingContext, ev: Event) -> BookingContext:
    ctx = _merge_turn(ctx, ev)
    if ev.intent == Intent.UNCLEAR.value and not ctx.fresh:
        ctx = _strike(ctx, SlotName.SERVICE, responses.UNCLEAR_NOTICE)
    return ctx


def _collect(slot: SlotName) -> Reducer:
    def reducer(ctx: BookingContext, ev: Event) -> BookingContext:
        ctx = replace(_merge_turn(ctx, ev), focus=slot)
        if slot in ctx.fresh:
            return ctx
        if ctx.slots.status(slot) == SlotStatus.READ_BACK and _rejected(ev):
            status = ctx.status.with_strike()
            if slot == SlotName.SERVICE:
                status = replace(status, service_check=ServiceCheck.UNCHECKED)
            return replace(
                ctx,
                slots=ctx.slots.reject(slot),
                status=status,
                notice=responses.CORRECTION_NOTICE,
            )
        if ev.intent == Intent.UNCLEAR.value:
            return _strike(ctx, slot, responses.UNCLEAR_NOTICE)
        return ctx
    return reducer


def _focus(slot: SlotName) -> Reducer:
    return lambda ctx, ev: replace(ctx, focus=slot)


def _reject_service(ctx: BookingContext, ev: Event) -> BookingContext:
    value = ctx.slots.value(SlotName.SERVICE)
    logger.info("Service %r not in catalog (attempt %d)",
                value, ctx.slots.attempts(SlotName.SERVICE) + 1)
    status = replace(
        ctx.status.with_strike(),
        service_check=ServiceCheck.INVALID,
        fallback_reason=EscalationReason.SERVICE_INVALID,
    )
    return replace(
        ctx,
        slots=ctx.slots.reject(SlotName.SERVICE, keep_value=True),
        status=status,
        notice=responses.rejection_notice(SlotName.SERVICE, value, ctx.organization),
    )


def _read_back_service(ctx: BookingContext, ev: Event) -> BookingContext:
    ctx = replace(
        ctx,
        slots=ctx.slots.mark_read_back(SlotName.SERVICE),
        status=replace(ctx.status, service_check=ServiceCheck.VALID),
    )
    return replace(
        ctx, response=responses.join_sentences(ctx.notice, _slot_text(ctx, SlotName.SERVICE))
    )


def _reject_focus(ctx: BookingContext, ev: Event) -> BookingContext:
    slot = ctx.focus
    value = ctx.slots.value(slot)
    logger.info("Rejected %s value %r", slot.value, value)
    return replace(
        ctx,
        slots=ctx.slots.reject(slot),
        status=ctx.status.with_strike(),
        notice=responses.rejection_notice(slot, value, ctx.organization),
    )


def _read_back_focus(ctx: BookingContext, ev: Event) -> BookingContext:
    ctx = replace(ctx, slots=ctx.slots.mark_read_back(ctx.focus))
    return replace(ctx, response=responses.join_sentences(ctx.notice, _slot_text(ctx, ctx.focus)))


def _prompt_slot(slot: SlotName) -> Reducer:
    def reducer(ctx: BookingContext, ev: Event) -> BookingContext:
        return replace(
            ctx, focus=slot, response=responses.join_sentences(ctx.notice, _slot_text(ctx, slot))
        )
    return reducer


def _prompt_focus(ctx: BookingContext, ev: Event) -> BookingContext:
    return _prompt_slot(ctx.focus)(ctx, ev)


def _accept_slot(slot: SlotName) -> Reducer:
    def reducer(ctx: BookingContext, ev: Event) -> BookingContext:
        status = ctx.status
        if slot == SlotName.SERVICE:
            status = replace(status, service_check=ServiceCheck.VALID, fallback_reason=None)
        logger.debug("Slot %s validated: %r", slot.value, ctx.slots.value(slot))
        return replace(ctx, slots=ctx.slots.mark_validated(slot), status=status, notice="")
    return reducer


def _accept_focus(ctx: BookingContext, ev: Event) -> BookingContext:
    return _accept_slot(ctx.focus)(ctx, ev)


def _prompt_confirmation(ctx: BookingContext, ev: Event) -> BookingContext:
    summary = responses.confirmation_summary(ctx.slots.values(), ctx.organization)
    return replace(ctx, response=responses.join_sentences(ctx.notice, summary))


def _start_over(ctx: BookingContext, ev: Event) -> BookingContext:
    logger.info("Caller rejected the summary, starting over")
    status = replace(
        ctx.status.with_strike(), service_check=ServiceCheck.UNCHECKED, fallback_reason=None
    )
    return replace(
        ctx,
        slots=ctx.slots.clear(BOOKING_SLOTS),
        status=status,
        focus=SlotName.SERVICE,
        notice=responses.START_OVER_NOTICE,
        response=responses.join_sentences(
            responses.START_OVER_NOTICE,
            responses.slot_prompt(SlotName.SERVICE, ctx.organization),
        ),
    )


def _begin_booking(ctx: BookingContext, ev: Event) -> BookingContext:
    return replace(ctx, response=responses.BOOKING_IN_PROGRESS)


def _booked(ctx: BookingContext, ev: Event) -> BookingContext:
    available = bool(ev.payload.get("calendar_available", True))
    integration = IntegrationHealth.HEALTHY if available else IntegrationHealth.CALENDAR_UNAVAILABLE
    response = responses.success_message(
        available,
        ctx.organization,
        ctx.slots.value(SlotName.SERVICE),
        ctx.slots.value(SlotName.TIME_WINDOW),
    )
    return replace(
        ctx,
        appointment_id=ev.payload.get("appointment_id"),
        appointment_status=ev.payload.get("appointment_status"),
        status=replace(ctx.status, integration=integration),
        response=response,
    )


def _escalate(reason: EscalationReason) -> Reducer:
    def reducer(ctx: BookingContext, ev: Event) -> BookingContext:
        record = _escalations.escalate(ctx, reason, ev.at, detail=ev.error or "")
        return replace(
            ctx,
            escalation=record,
            status=replace(ctx.status, fallback_reason=record.reason),
            digressions=(),
        )
    return reducer


def _booking_failed(ctx: BookingContext, ev: Event) -> BookingContext:
    logger.warning("Appointment creation failed: %s", ev.error)
    ctx = replace(ctx, status=replace(ctx.status, integration=IntegrationHealth.FAILED))
    return _escalate(EscalationReason.CALENDAR_FAILURE)(ctx, ev)


def _callback_scheduled(ctx: BookingContext, ev: Event) -> BookingContext:
    if ctx.escalation is None:
        raise InvalidTransitionError("Callback scheduled without an escalation record")
    record = replace(
        ctx.escalation,
        callback_id=ev.payload.get("callback_id") or ctx.escalation.callback_id,
    )
    message = _escalations.callback_message(record, ctx.slots.value(SlotName.SERVICE))
    return replace(ctx, escalation=record, response=message)


def _callback_failed(ctx: BookingContext, ev: Event) -> BookingContext:
    logger.warning("Callback scheduling failed: %s", ev.error)
    return replace(ctx, response=_escalations.failure_message())


def _start_new_topic(ctx: BookingContext, ev: Event) -> BookingContext:
    return replace(
        ctx,
        slots=ctx.slots.clear(BOOKING_SLOTS),
        status=replace(ctx.status, service_check=ServiceCheck.UNCHECKED, fallback_reason=None),
        digressions=(),
        focus=SlotName.SERVICE,
        fresh=frozenset(),
        notice="",
    )


def _finish_booking(ctx: BookingContext, ev: Event) -> BookingContext:
    # The degraded calendar was already handled by booking as pending.
    ctx = _start_new_topic(ctx, ev)
    if ctx.status.integration == IntegrationHealth.CALENDAR_UNAVAILABLE:
        ctx = replace(ctx, status=replace(ctx.status, integration=IntegrationHealth.HEALTHY))
    return ctx


def _reprompt(source: BookingState) -> Reducer:
    def reducer(ctx: BookingContext, ev: Event) -> BookingContext:
        follow_up = _resume_text(ctx, source) or responses.IDLE_HELP
        logger.info("No input from caller in %s (%d)", source.value, ctx.silence_count + 1)
        return replace(
            ctx,
            silence_count=ctx.silence_count + 1,
            response=responses.join_sentences(responses.STILL_THERE, follow_up),
            now=ev.at,
        )
    return reducer


def _give_up_on_silence(ctx: BookingContext, ev: Event) -> BookingContext:
    ctx = replace(ctx, silence_count=ctx.silence_count + 1, now=ev.at)
    return _escalate(EscalationReason.NO_RESPONSE)(ctx, ev)


def _answer_idle(ctx: BookingContext, ev: Event) -> BookingContext:
    answer = None
    if _digressions.is_digression(ev.intent):
        answer = _digressions.answer(ev.intent, ctx.organization)
    return replace(ctx, response=responses.idle_reply(ev.intent, answer))


def _informational(ctx: BookingContext, ev: Event) -> BookingContext:
    return replace(ctx, response=responses.already_escalated(ctx.escalation))


def _push_digression(source: BookingState) -> Reducer:
    def reducer(ctx: BookingContext, ev: Event) -> BookingContext:
        frame = DigressionFrame(
            state=source,
            context=ctx,
            intent=ev.intent,
            pushed_at=ev.at,
            resumable=source not in ANSWER_STATES,
        )
        stack = _digressions.push(ctx.digressions, frame, ctx.policy.max_digression_depth)
        return replace(ctx, digressions=stack)
    return reducer


def _answer_digression(ctx: BookingContext, ev: Event) -> BookingContext:
    answer = _digressions.answer(ev.intent, ctx.organization)
    frame, _ = _digressions.resume(ctx.digressions)
    follow_up = _resume_text(frame.context, frame.state) if frame else ""
    return replace(
        ctx,
        response=responses.join_sentences(answer, responses.RESUME_NOTICE, follow_up),
    )


def _resume_booking(ctx: BookingContext, ev: Event) -> BookingContext:
    frame, remaining = _digressions.resume(ctx.digressions)
    if frame is None:
        raise InvalidTransitionError("Nothing to resume from the digression stack")
    restored = frame.context
    return replace(
        restored,
        digressions=remaining,
        escalation=ctx.escalation,
        intent=ctx.intent,
        confidence=ctx.confidence,
        transcript=ctx.transcript,
        turn_index=ctx.turn_index,
        turn_count=ctx.turn_count,
        fresh=frozenset(),
        notice=responses.RESUME_NOTICE,
        response=responses.join_sentences(
            responses.RESUME_NOTICE, _resume_text(restored, frame.state)
        ),
        now=ctx.now,
    )


# --- Transition table -----------------------------------------------------

def _turn_interrupts(source: BookingState) -> list[Transition]:
    """Checks every mid-booking state applies to a turn before its own handling."""
    return [
        Transition(source, EventType.PROCESS_INTENT, None, _is_error, _classification_failed),
        Transition(source, EventType.PROCESS_INTENT, BookingState.SCHEDULE_CALLBACK,
                   _is_escalation_request, _escalate(EscalationReason.USER_REQUEST)),
        *_digression_entries(source),
    ]


def _silence_entries(source: BookingState) -> list[Transition]:
    return [
        Transition(source, EventType.SILENCE, BookingState.SCHEDULE_CALLBACK,
                   _silence_exhausted, _give_up_on_silence),
        Transition(source, EventType.SILENCE, None, None, _reprompt(source)),
    ]


def _digression_entries(source: BookingState) -> list[Transition]:
    return [
        Transition(source, EventType.PROCESS_INTENT, BookingState.SCHEDULE_CALLBACK,
                   _digression_overflow, _escalate(EscalationReason.REPEATED_DIGRESSION)),
        Transition(source, EventType.PROCESS_INTENT, BookingState.HANDLE_DIGRESSION,
                   _digression_allowed, _push_digression(source)),
    ]


_S = BookingState
_E = EventType

TRANSITIONS: list[Transition] = [
    # --- Idle ---
    Transition(_S.IDLE, _E.PROCESS_INTENT, None, _is_error, _classification_failed),
    Transition(_S.IDLE, _E.PROCESS_INTENT, _S.HANDLE_INTENT, None, _accept_idle_turn),

    # --- Intent routing ---
    Transition(_S.HANDLE_INTENT, _E.ALWAYS, _S.SCHEDULE_CALLBACK,
               _is_escalation_request, _escalate(EscalationReason.USER_REQUEST)),
    Transition(_S.HANDLE_INTENT, _E.ALWAYS, _S.SCHEDULE_CALLBACK,
               _slot_exhausted(SlotName.SERVICE), _escalate(EscalationReason.SERVICE_INVALID)),
    Transition(_S.HANDLE_INTENT, _E.ALWAYS, _S.RESPOND_AND_IDLE, _already_escalated, _informational),
    Transition(_S.HANDLE_INTENT, _E.ALWAYS, _S.BOOKING_FLOW, _is_booking_intent),
    Transition(_S.HANDLE_INTENT, _E.ALWAYS, _S.RESPOND_AND_IDLE, None, _answer_idle),
    Transition(_S.RESPOND_AND_IDLE, _E.RESUME, _S.IDLE),

    # --- Booking flow: fixed priority service -> time -> contact -> location ---
    Transition(_S.BOOKING_FLOW, _E.ALWAYS, _S.CONFIRM, _has_all_booking_data, _prompt_confirmation),
    Transition(_S.BOOKING_FLOW, _E.ALWAYS, _S.VALIDATE_SERVICE,
               _needs(SlotName.SERVICE), _focus(SlotName.SERVICE)),
    Transition(_S.BOOKING_FLOW, _E.ALWAYS, _S.VALIDATE_SLOT,
               _needs(SlotName.TIME_WINDOW), _focus(SlotName.TIME_WINDOW)),
    Transition(_S.BOOKING_FLOW, _E.ALWAYS, _S.VALIDATE_SLOT,
               _needs(SlotName.CONTACT), _focus(SlotName.CONTACT)),
    Transition(_S.BOOKING_FLOW, _E.ALWAYS, _S.VALIDATE_SLOT,
               _needs(SlotName.LOCATION), _focus(SlotName.LOCATION)),
    Transition(_S.BOOKING_FLOW, _E.ALWAYS, _S.VALIDATE_SERVICE, None, _focus(SlotName.SERVICE)),

    # --- Service collection ---
    *_turn_interrupts(_S.COLLECT_SERVICE),
    Transition(_S.COLLECT_SERVICE, _E.PROCESS_INTENT, _S.VALIDATE_SERVICE,
               None, _collect(SlotName.SERVICE)),
    Transition(_S.VALIDATE_SERVICE, _E.ALWAYS, _S.SCHEDULE_CALLBACK,
               _slot_exhausted(SlotName.SERVICE), _escalate(EscalationReason.SERVICE_INVALID)),
    Transition(_S.VALIDATE_SERVICE, _E.ALWAYS, _S.VALIDATE_SERVICE,
               _service_off_catalog, _reject_service),
    Transition(_S.VALIDATE_SERVICE, _E.ALWAYS, _S.COLLECT_SERVICE,
               _service_unchecked, _read_back_service),
    Transition(_S.VALIDATE_SERVICE, _E.ALWAYS, _S.BOOKING_FLOW,
               _read_back_affirmed(SlotName.SERVICE), _accept_slot(SlotName.SERVICE)),
    Transition(_S.VALIDATE_SERVICE, _E.ALWAYS, _S.COLLECT_SERVICE,
               None, _prompt_slot(SlotName.SERVICE)),

    # --- Time window, contact and location collection ---
    *_turn_interrupts(_S.COLLECT_TIME_WINDOW),
    Transition(_S.COLLECT_TIME_WINDOW, _E.PROCESS_INTENT, _S.VALIDATE_SLOT,
               None, _collect(SlotName.TIME_WINDOW)),
    *_turn_interrupts(_S.COLLECT_CONTACT),
    Transition(_S.COLLECT_CONTACT, _E.PROCESS_INTENT, _S.VALIDATE_SLOT,
               None, _collect(SlotName.CONTACT)),
    *_turn_interrupts(_S.COLLECT_LOCATION),
    Transition(_S.COLLECT_LOCATION, _E.PROCESS_INTENT, _S.VALIDATE_SLOT,
               None, _collect(SlotName.LOCATION)),
    Transition(_S.VALIDATE_SLOT, _E.ALWAYS, _S.SCHEDULE_CALLBACK,
               _focus_exhausted, _escalate(EscalationReason.MAX_RETRIES)),
    Transition(_S.VALIDATE_SLOT, _E.ALWAYS, _S.VALIDATE_SLOT, _focus_invalid, _reject_focus),
    *[
        Transition(_S.VALIDATE_SLOT, _E.ALWAYS, COLLECTOR_FOR[slot],
                   _both(_focus_is(slot), _focus_tentative), _read_back_focus)
        for slot in (SlotName.TIME_WINDOW, SlotName.CONTACT, SlotName.LOCATION)
    ],
    Transition(_S.VALIDATE_SLOT, _E.ALWAYS, _S.BOOKING_FLOW, _focus_affirmed, _accept_focus),
    *[
        Transition(_S.VALIDATE_SLOT, _E.ALWAYS, COLLECTOR_FOR[slot], _focus_is(slot), _prompt_focus)
        for slot in (SlotName.TIME_WINDOW, SlotName.CONTACT, SlotName.LOCATION)
    ],

    # --- Confirmation gate ---
    *_turn_interrupts(_S.CONFIRM),
    Transition(_S.CONFIRM, _E.PROCESS_INTENT, _S.BOOK, _confirmed, _begin_booking),
    Transition(_S.CONFIRM, _E.PROCESS_INTENT, _S.COLLECT_SERVICE, None, _start_over),

    # --- Booking result ---
    Transition(_S.BOOK, _E.DONE, _S.SUCCESS, None, _booked),
    Transition(_S.BOOK, _E.ERROR, _S.SCHEDULE_CALLBACK, None, _booking_failed),
    Transition(_S.SUCCESS, _E.RESUME, _S.IDLE, None, _finish_booking),

    # --- Escalation ---
    Transition(_S.SCHEDULE_CALLBACK, _E.DONE, _S.CALLBACK_SCHEDULED, None, _callback_scheduled),
    Transition(_S.SCHEDULE_CALLBACK, _E.ERROR, _S.FALLBACK, None, _callback_failed),
    Transition(_S.CALLBACK_SCHEDULED, _E.RESUME, _S.IDLE, None, _start_new_topic),
    Transition(_S.FALLBACK, _E.RESUME, _S.IDLE, None, _start_new_topic),

    # --- Digressions ---
    *[
        Transition(_S.HANDLE_DIGRESSION, _E.ALWAYS, answer_state,
                   _intent_is(intent), _answer_digression)
        for intent, answer_state in ANSWER_FOR.items()
    ],
    *[
        entry
        for answer_state in ANSWER_FOR.values()
        for entry in [
            *_digression_entries(answer_state),
            Transition(answer_state, _E.RESUME, _S.RETURN_FROM_DIGRESSION),
        ]
    ],
    *[
        Transition(_S.RETURN_FROM_DIGRESSION, _E.ALWAYS, state, _resumes_to(state), _resume_booking)
        for state in (*COLLECTOR_FOR.values(), _S.CONFIRM)
    ],
    Transition(_S.RETURN_FROM_DIGRESSION, _E.ALWAYS, _S.IDLE, None, _start_new_topic),

    # --- Caller silence ---
    *[entry for state in sorted(SILENCE_STATES) for entry in _silence_entries(state)],
]


def _select(
    state: BookingState,
    event_type: EventType,
    ctx: BookingContext,
    ev: Event,
) -> Optional[Transition]:
    for t in TRANSITIONS:
        if t.from_state == state and t.event == event_type:
            if t.guard is None or t.guard(ctx, ev):
                return t
    return None


def _apply(
    transition: Transition,
    state: BookingState,
    ctx: BookingContext,
    ev: Event,
    trace: list[BookingState],
) -> tuple[BookingState, BookingContext]:
    if transition.reducer is not None:
        ctx = transition.reducer(ctx, ev)
    target = transition.to_state or state
    if transition.to_state in COLLECTOR_STATES:
        reason = _escalations.should_fallback_to_callback(ctx)
        if reason is not None:
            logger.info("Escalation guard diverted %s to callback (%s)",
                        target.value, reason.value)
            ctx = _escalate(reason)(ctx, ev)
            target = BookingState.SCHEDULE_CALLBACK
    trace.append(target)
    return target, ctx


def _run(
    state: BookingState,
    ctx: BookingContext,
    ev: Event,
    trace: list[BookingState],
) -> tuple[BookingState, BookingContext]:
    transition = _select(state, ev.type, ctx, ev)
    if transition is None:
        raise InvalidTransitionError(
            f"No valid transition from '{state.value}' on '{ev.type.value}'"
        )
    state, ctx = _apply(transition, state, ctx, ev, trace)

    steps = 0
    while state in TRANSIENT_STATES:
        steps += 1
        if steps > MAX_EVENTLESS_STEPS:
            raise InvalidTransitionError(
                f"Eventless transitions did not settle (stuck in '{state.value}')"
            )
        transition = _select(state, EventType.ALWAYS, ctx, ev)
        if transition is None:
            raise InvalidTransitionError(f"No eventless transition from '{state.value}'")
        state, ctx = _apply(transition, state, ctx, ev, trace)
    return state, ctx


def step(
    state: BookingState,
    ctx: BookingContext,
    ev: Event,
) -> tuple[BookingState, BookingContext, list[BookingState]]:
    """Apply one external event and every eventless transition it triggers.

    Returns the resting (or invoke) state, the new context and the states
    entered along the way. Does not mutate its inputs.
    """
    trace: list[BookingState] = []
    if ev.type == EventType.PROCESS_INTENT:
        if state not in RESTING_STATES:
            raise InvalidTransitionError(f"Cannot accept a turn while in '{state.value}'")
        ev = normalize_turn(ev, ctx.policy.low_confidence_threshold)
        ctx = _begin_turn(ctx, ev)
        if state in AUTO_RETURN_STATES and _select(state, ev.type, ctx, ev) is None:
            state, ctx = _run(state, ctx, Event.resume(ev.at), trace)
    elif ev.type == EventType.RESUME and state not in AUTO_RETURN_STATES:
        return state, ctx, trace
    state, ctx = _run(state, ctx, ev, trace)
    return state, ctx, trace


class BookingStateMachine:
    """
    Stateful wrapper around ``step`` holding one session's state and history.

    The session actor is the only caller, so no locking is needed.
    """

    TRANSITIONS = TRANSITIONS

    def __init__(self, context: BookingContext, state: BookingState = BookingState.IDLE) -> None:
        self._state = state
        self._context = context
        self._history: list[StateEntry] = [StateEntry(state=state, entered_at=context.now)]

    @property
    def current_state(self) -> BookingState:
        return self._state

    @property
    def context(self) -> BookingContext:
        return self._context

    @property
    def pending_invocation(self) -> Optional[Invocation]:
        """The side effect the current state is waiting on, if any."""
        return INVOKE_STATES.get(self._state)

    @property
    def transition_count(self) -> int:
        return len(self._history) - 1

    def send(self, event: Event) -> BookingState:
        """
        Feed an event to the machine.

        Returns:
            The state the machine settled in.

        Raises:
            InvalidTransitionError: If the event is not valid in the current state.
        """
        old_state = self._state
        state, context, trace = step(self._state, self._context, event)
        for entered in trace:
            self._history.append(StateEntry(state=entered, entered_at=event.at, event=event.type))
        self._state, self._context = state, context
        if trace:
            logger.debug(
                "State transition: %s -> %s (event: %s)",
                old_state.value, " -> ".join(s.value for s in trace), event.type.value,
            )
        return state

    def auto_return_delay(self, timers: TimerConfig) -> Optional[float]:
        """Seconds until the current state returns on its own, or None."""
        attribute = AUTO_RETURN_STATES.get(self._state)
        return getattr(timers, attribute) if attribute else None

    def get_valid_events(self) -> list[EventType]:
        return sorted(
            {t.event for t in TRANSITIONS if t.from_state == self._state},
            key=lambda e: e.value,
        )

    def accepts(self, event_type: EventType) -> bool:
        return event_type in self.get_valid_events()

    def get_history(self) -> list[StateEntry]:
        return list(self._history)

    def get_state_trace(self) -> list[str]:
        """Return ordered list of state names visited."""
        return [entry.state.value for entry in self._history]

    def is_resting(self) -> bool:
        return self._state in RESTING_STATES
