"""
One actor per call.

Turns for a session are pushed onto an ``asyncio.Queue`` and consumed by a
single worker task, so a session's state machine is only ever touched by
that worker and turns are applied strictly in arrival order. Different
sessions run their workers concurrently.

Auto-return timers are ``loop.call_later`` callbacks that enqueue a resume
request tagged with a generation number. Any later turn or timer bumps the
generation, so a timer that fires after the caller has moved on is dropped.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional, Union

from receptionist.config import AppConfig, settings
from receptionist.conversation.context import BookingContext
from receptionist.conversation.state_machine import (
    BookingState,
    BookingStateMachine,
    Event,
    EventType,
    Invocation,
)
from receptionist.logging_context import bind_call
from receptionist.prompts import responses
from receptionist.schemas.telemetry import SessionSummary
from receptionist.schemas.turn import (
    Intent,
    IntentResult,
    SessionContextSnapshot,
    TurnInput,
    TurnOutput,
)
from receptionist.session.metrics import SessionMetrics, TurnTimer
from receptionist.tools.base import Integrations
from receptionist.tools.booking import build_appointment_draft, build_callback_draft

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


class SessionClosedError(RuntimeError):
    """Raised when a turn is submitted to a session that is shutting down."""


@dataclass
class _TurnRequest:
    turn: TurnInput
    reply: "asyncio.Future[TurnOutput]"


@dataclass
class _SilenceRequest:
    reply: "asyncio.Future[TurnOutput]"


@dataclass
class _ResumeRequest:
    generation: int


_STOP = object()

_Request = Union[_TurnRequest, _SilenceRequest, _ResumeRequest, object]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _elapsed_ms(started: float) -> float:
    return (time.perf_counter() - started) * 1000


class SessionActor:
    """Owns one booking state machine and the worker that drives it."""

    def __init__(
        self,
        context: BookingContext,
        integrations: Integrations,
        config: AppConfig = settings,
        clock: Clock = _utcnow,
    ) -> None:
        self.session_id = context.session_id
        self.call_id = context.call_id
        self.machine = BookingStateMachine(context)
        self.metrics = SessionMetrics(
            session_id=context.session_id,
            call_id=context.call_id,
            organization_id=context.organization.organization_id,
            turn_budget_ms=config.latency.turn_budget_sec * 1000,
            started_at=context.created_at,
        )
        self.last_response = ""
        self._integrations = integrations
        self._latency = config.latency
        self._timers = config.timers
        self._clock = clock
        self._queue: "asyncio.Queue[_Request]" = asyncio.Queue()
        self._worker: Optional[asyncio.Task] = None
        self._timer: Optional[asyncio.TimerHandle] = None
        self._generation = 0
        self._closed = False

    # --- Lifecycle ---

    def start(self) -> None:
        if self._worker is None:
            self._worker = asyncio.get_running_loop().create_task(
                self._run(), name=f"session-{self.session_id}"
            )

    @property
    def state(self) -> BookingState:
        return self.machine.current_state

    @property
    def is_running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    async def stop(self) -> None:
        """Stop accepting turns, finish the queued ones and end the worker."""
        if self._closed:
            return
        self._closed = True
        self._cancel_timer()
        if self._worker is None:
            return
        await self._queue.put(_STOP)
        await self._worker

    # --- Public operations ---

    async def submit(self, turn: TurnInput) -> TurnOutput:
        """Queue a turn and wait until the worker has processed it."""
        if self._closed:
            raise SessionClosedError(f"Session {self.session_id} is closed")
        reply: "asyncio.Future[TurnOutput]" = asyncio.get_running_loop().create_future()
        await self._queue.put(_TurnRequest(turn=turn, reply=reply))
        return await reply

    async def silence(self) -> TurnOutput:
        """Report that the caller stayed silent and wait for the reprompt."""
        if self._closed:
            raise SessionClosedError(f"Session {self.session_id} is closed")
        reply: "asyncio.Future[TurnOutput]" = asyncio.get_running_loop().create_future()
        await self._queue.put(_SilenceRequest(reply=reply))
        return await reply

    def barge_in(self) -> int:
        count = self.metrics.record_barge_in()
        logger.debug("Barge-in #%d in session %s", count, self.session_id)
        return count

    def snapshot(self) -> SessionContextSnapshot:
        return self.machine.context.snapshot(self.machine.current_state.value)

    def summarize(self) -> SessionSummary:
        ctx = self.machine.context
        return self.metrics.summarize(
            final_state=self.machine.current_state.value,
            transition_count=self.machine.transition_count,
            was_successful=ctx.appointment_id is not None,
            escalation_reason=ctx.escalation.reason.value if ctx.escalation else None,
            enhanced_features=ctx.enhanced,
            now=self._clock(),
        )

    # --- Worker ---

    async def _run(self) -> None:
        bind_call(self.call_id, self.session_id)
        logger.debug("Session worker started")
        while True:
            request = await self._queue.get()
            try:
                if request is _STOP:
                    break
                if isinstance(request, _ResumeRequest):
                    await self._handle_resume(request)
                elif isinstance(request, _TurnRequest):
                    await self._handle_turn(request)
                elif isinstance(request, _SilenceRequest):
                    await self._handle_silence(request)
            finally:
                self._queue.task_done()
        logger.debug("Session worker stopped")

    async def _handle_turn(self, request: _TurnRequest) -> None:
        turn = request.turn
        self._cancel_timer()
        timer = TurnTimer()
        try:
            output = await self._process(turn, timer)
        except Exception as exc:
            logger.exception("Unexpected error processing turn %d", turn.turn_index)
            self.metrics.record_turn(
                turn.turn_index, Intent.ERROR.value, self.machine.current_state.value,
                timer, error=type(exc).__name__,
            )
            output = TurnOutput(
                state=self.machine.current_state.value,
                response=responses.TROUBLE_PROCESSING,
                context=self.snapshot(),
                turn_index=turn.turn_index,
                latency_ms=round(timer.total_ms, 2),
            )
        self.last_response = output.response
        self._arm_timer()
        if not request.reply.done():
            request.reply.set_result(output)

    async def _process(self, turn: TurnInput, timer: TurnTimer) -> TurnOutput:
        started = time.perf_counter()
        result = await self._classify(turn)
        timer.classify_ms = _elapsed_ms(started)

        confidence = min(result.confidence, turn.confidence)
        event = Event.turn(
            result.model_copy(update={"confidence": confidence}),
            turn.transcript,
            self._clock(),
            turn_index=turn.turn_index,
        )
        started = time.perf_counter()
        self.machine.send(event)
        timer.state_ms += _elapsed_ms(started)

        await self._run_invocations(timer)

        ctx = self.machine.context
        state = self.machine.current_state.value
        record = self.metrics.record_turn(turn.turn_index, ctx.intent or result.intent, state, timer)
        logger.info(
            "Turn %d: intent=%s state=%s latency=%.0fms",
            turn.turn_index, ctx.intent, state, record.total_ms,
        )
        return TurnOutput(
            state=state,
            response=ctx.response,
            context=self.snapshot(),
            turn_index=turn.turn_index,
            latency_ms=record.total_ms,
        )

    async def _classify(self, turn: TurnInput) -> IntentResult:
        snapshot = self.snapshot()
        try:
            return await asyncio.wait_for(
                self._integrations.classifier.classify(turn.transcript, snapshot),
                timeout=self._latency.intent_timeout_sec,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "Intent classification timed out after %.2fs", self._latency.intent_timeout_sec
            )
        except Exception as exc:
            logger.warning("Intent classification failed: %s", exc)
        return IntentResult.error()

    async def _handle_silence(self, request: _SilenceRequest) -> None:
        ctx = self.machine.context
        response = ""
        if self.machine.accepts(EventType.SILENCE):
            self._cancel_timer()
            self.metrics.record_silence()
            timer = TurnTimer()
            try:
                started = time.perf_counter()
                self.machine.send(Event.silence(self._clock()))
                timer.state_ms += _elapsed_ms(started)
                await self._run_invocations(timer)
                response = self.machine.context.response
            except Exception:
                logger.exception("Unexpected error handling caller silence")
                response = responses.TROUBLE_PROCESSING
            self.last_response = response
            self._arm_timer()
            ctx = self.machine.context
            logger.info("Silence #%d: state=%s", ctx.silence_count, self.machine.current_state.value)
        else:
            logger.debug("Ignoring silence in %s", self.machine.current_state.value)
        if not request.reply.done():
            request.reply.set_result(TurnOutput(
                state=self.machine.current_state.value,
                response=response,
                context=self.snapshot(),
                turn_index=ctx.turn_index,
            ))

    async def _handle_resume(self, request: _ResumeRequest) -> None:
        if request.generation != self._generation:
            logger.debug("Ignoring stale auto-return timer (generation %d)", request.generation)
            return
        timer = TurnTimer()
        try:
            self.machine.send(Event.resume(self._clock()))
            await self._run_invocations(timer)
        except Exception:
            logger.exception("Unexpected error during auto-return")
            return
        self.last_response = self.machine.context.response
        logger.debug("Auto-returned to %s", self.machine.current_state.value)
        self._arm_timer()

    # --- Invocations ---

    async def _run_invocations(self, timer: TurnTimer) -> None:
        """Run side effects requested by invoke states until the machine rests."""
        while True:
            invocation = self.machine.pending_invocation
            if invocation is None:
                return
            started = time.perf_counter()
            event = await self._invoke(invocation)
            timer.integration_ms += _elapsed_ms(started)
            started = time.perf_counter()
            self.machine.send(event)
            timer.state_ms += _elapsed_ms(started)

    async def _invoke(self, invocation: Invocation) -> Event:
        timeout = self._latency.integration_timeout_sec
        try:
            if invocation == Invocation.CREATE_APPOINTMENT:
                return await self._create_appointment(timeout)
            return await self._schedule_callback(timeout)
        except asyncio.TimeoutError:
            logger.warning("%s timed out after %.2fs", invocation.value, timeout)
            return Event.failed(self._clock(), f"{invocation.value} timed out")
        except Exception as exc:
            logger.warning("%s failed: %s", invocation.value, exc)
            return Event.failed(self._clock(), str(exc) or type(exc).__name__)

    async def _calendar_available(self, ctx: BookingContext, timeout: float) -> bool:
        if not ctx.organization.has_calendar_integration():
            return False
        try:
            return await asyncio.wait_for(
                self._integrations.availability.is_available(self.snapshot()), timeout=timeout
            )
        except asyncio.TimeoutError:
            logger.warning("Availability check timed out after %.2fs", timeout)
        except Exception as exc:
            logger.warning("Availability check failed: %s", exc)
        return False

    async def _create_appointment(self, timeout: float) -> Event:
        ctx = self.machine.context
        available = await self._calendar_available(ctx, timeout)
        draft = build_appointment_draft(ctx, calendar_available=available)
        result = await asyncio.wait_for(
            self._integrations.appointments.create(draft), timeout=timeout
        )
        logger.info("Booked %s (%s)", result.id, result.status.value)
        return Event.done(
            self._clock(),
            appointment_id=result.id,
            appointment_status=result.status.value,
            calendar_available=available,
        )

    async def _schedule_callback(self, timeout: float) -> Event:
        ctx = self.machine.context
        record = ctx.escalation
        if record is None:
            return Event.failed(self._clock(), "no escalation record to schedule")
        if record.is_scheduled:
            logger.info("Callback %s already scheduled, not rescheduling", record.callback_id)
            return Event.done(self._clock(), callback_id=record.callback_id)
        draft = build_callback_draft(ctx)
        result = await asyncio.wait_for(
            self._integrations.callbacks.schedule(draft), timeout=timeout
        )
        logger.info("Callback %s scheduled (%s)", result.id, record.reason.value)
        return Event.done(self._clock(), callback_id=result.id)

    # --- Timers ---

    def _cancel_timer(self) -> None:
        self._generation += 1
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _arm_timer(self) -> None:
        self._cancel_timer()
        if self._closed:
            return
        delay = self.machine.auto_return_delay(self._timers)
        if delay is None:
            return
        request = _ResumeRequest(generation=self._generation)
        self._timer = asyncio.get_running_loop().call_later(
            delay, self._queue.put_nowait, request
        )
        logger.debug(
            "Auto-return from %s in %.1fs", self.machine.current_state.value, delay
        )
