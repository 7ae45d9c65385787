"""
Offline console demo. Runs a full booking conversation without any API keys.

Drives the real session manager and booking state machine with the keyword
intent classifier and the in-memory appointment book. No LLM, no speech
pipeline, no network calls.

Usage:
    python console_demo.py
    python console_demo.py --scenario booking
    python console_demo.py --scenario escalation
"""

import argparse
import asyncio
import uuid

from receptionist.config import settings
from receptionist.schemas.turn import TurnInput, TurnOutput
from receptionist.session.manager import SessionManager
from receptionist.tools import availability, booking
from receptionist.tools.availability import CalendarAvailability
from receptionist.tools.base import Integrations
from receptionist.tools.booking import InMemoryAppointmentBook
from receptionist.tools.intent import KeywordIntentClassifier

BLUE = "\033[94m"
GREEN = "\033[92m"
YELLOW = "\033[93m"
RED = "\033[91m"
DIM = "\033[2m"
RESET = "\033[0m"
BOLD = "\033[1m"


class PrintingSink:
    """Telemetry sink that prints the session summary."""

    def emit(self, summary) -> None:
        print(f"{DIM}  >> Telemetry: {summary.turn_count} turns, "
              f"avg {summary.avg_turn_latency_ms:.1f}ms, "
              f"final state {summary.final_state}, "
              f"escalated={summary.was_escalated}{RESET}")


def build_integrations() -> Integrations:
    book = InMemoryAppointmentBook()
    return Integrations(
        classifier=KeywordIntentClassifier(),
        appointments=book,
        callbacks=book,
        availability=CalendarAvailability(),
        telemetry=PrintingSink(),
    )


class ConsoleSession:
    """Plays one call through the session manager in the terminal."""

    # Pre-scripted scenarios for --scenario flag
    SCENARIOS: dict[str, list[str]] = {
        "booking": [
            "Hi there",
            "I need a haircut",
            "yes",
            "tomorrow at 2pm",
            "yes",
            "John Smith 555-123-4567",
            "yes",
            "yes please book it",
        ],
        "digression": [
            "I'd like to book a consultation",
            "What are your hours?",
            "yes",
            "next Monday morning",
            "that's right",
            "jane@example.com",
            "correct",
            "yes",
        ],
        "escalation": [
            "I want to book a massage",
            "I need a pedicure",
            "Can I get a tattoo?",
        ],
        "start_over": [
            "Can I book a color treatment for Friday afternoon?",
            "yes",
            "yes",
            "Sam 555-987-6543",
            "yes",
            "no",
            "Actually I need a haircut",
        ],
        "human": [
            "I need a haircut",
            "Can I speak to a real person?",
        ],
        "pricing": [
            "I need a haircut",
            "How much is a haircut?",
            "yes",
            "March 20 at 3pm",
            "yes",
        ],
    }

    MAX_INPUT_LENGTH = 500

    def __init__(self) -> None:
        self.manager = SessionManager(build_integrations())
        self.call_id = f"CA-{uuid.uuid4().hex[:8]}"
        self.session_id = ""
        self.turn_index = 0

    def agent_say(self, text: str) -> None:
        print(f"{GREEN}{BOLD}[Agent]{RESET} {GREEN}{text}{RESET}")

    def system_log(self, text: str) -> None:
        print(f"{DIM}  >> {text}{RESET}")

    def _banner(self, title: str) -> None:
        print()
        print(f"{BOLD}{'=' * 60}{RESET}")
        print(f"{BOLD}  BOOKING ORCHESTRATOR - {title}{RESET}")
        print(f"{BOLD}  Business: {settings.business.name}{RESET}")
        print(f"{BOLD}{'=' * 60}{RESET}")
        print()

    async def _start(self) -> None:
        snapshot = await self.manager.init_session(self.call_id)
        self.session_id = snapshot.session_id
        self.agent_say(
            f"Thanks for calling {settings.business.name}. How can I help you today?"
        )
        self.system_log(f"State: {snapshot.state}")

    async def _say(self, text: str) -> TurnOutput:
        self.turn_index += 1
        output = await self.manager.process_turn(
            self.session_id,
            TurnInput(transcript=text, call_id=self.call_id, turn_index=self.turn_index),
        )
        self.agent_say(output.response)
        self.system_log(
            f"State: {output.state} | retries: {output.context.retry_count} "
            f"| {output.latency_ms:.1f}ms"
        )
        return output

    async def _silence(self) -> None:
        output = await self.manager.handle_silence(self.session_id)
        if output.response:
            self.agent_say(output.response)
        self.system_log(f"State: {output.state} | silence: {output.context.silence_count}")

    async def _finish(self, title: str) -> None:
        snapshot = self.manager.get_session_state(self.session_id)
        summary = await self.manager.finalize(self.session_id)
        print(f"\n{BOLD}{'=' * 60}{RESET}")
        print(f"{BOLD}  {title}{RESET}")
        slots = {k: v.value for k, v in snapshot.slots.items() if v.value}
        print(f"{DIM}  Slots: {slots}{RESET}")
        if snapshot.appointment_id:
            print(f"{DIM}  Appointment: {snapshot.appointment_id}{RESET}")
        if snapshot.callback_id:
            print(f"{YELLOW}  Callback: {snapshot.callback_id} "
                  f"({snapshot.escalation_reason}){RESET}")
        print(f"{DIM}  Transitions: {summary.transition_count}{RESET}")
        print(f"{BOLD}{'=' * 60}{RESET}")

    async def run_scenario(self, scenario: str) -> None:
        """Auto-play a pre-scripted scenario for demo purposes."""
        steps = self.SCENARIOS.get(scenario)
        if not steps:
            print(f"{RED}Unknown scenario: {scenario}{RESET}")
            return

        self._banner(f"Scenario: {scenario}")
        await self._start()
        for step in steps:
            print(f"\n{BLUE}[Caller] {RESET}{step}")
            await self._say(step)
        await self._finish(f"Scenario '{scenario}' complete.")

    async def run(self) -> None:
        self._banner("Console Demo (type 'quit' to exit)")
        await self._start()

        while True:
            user_input = (await asyncio.to_thread(input, f"\n{BLUE}[Caller] {RESET}")).strip()
            if not user_input:
                await self._silence()
                continue
            if user_input.lower() in ("quit", "exit", "q"):
                print(f"\n{DIM}Session ended.{RESET}")
                break
            if len(user_input) > self.MAX_INPUT_LENGTH:
                self.agent_say("That was quite long. Could you keep it brief for me?")
                continue
            await self._say(user_input)

        await self._finish("Conversation complete.")


def main() -> None:
    parser = argparse.ArgumentParser(description="Offline console demo")
    parser.add_argument(
        "--scenario",
        choices=sorted(ConsoleSession.SCENARIOS),
        default=None,
        help="Auto-play a pre-scripted scenario instead of interactive mode",
    )
    parser.add_argument(
        "--calendar-down",
        action="store_true",
        help="Simulate a calendar outage so bookings are taken as pending",
    )
    args = parser.parse_args()

    booking.reset()
    availability.reset()
    if args.calendar_down:
        availability.set_outage(settings.business.organization_id)

    session = ConsoleSession()
    if args.scenario:
        asyncio.run(session.run_scenario(args.scenario))
    else:
        asyncio.run(session.run())


if __name__ == "__main__":
    main()
