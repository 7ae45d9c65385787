"""Tests for import chains and module integrity.

Ensures all public modules can be imported without errors and
that re-exports from __init__.py files work correctly.
"""


class TestSchemaImports:
    def test_import_turn_schema(self):
        from receptionist.schemas.turn import Intent, IntentResult, TurnInput, TurnOutput
        assert Intent.ESCALATION_REQUEST == "escalation_request"
        assert IntentResult.error().intent == "error"

    def test_import_organization_schema(self):
        from receptionist.schemas.organization import LocationMode, OrganizationContext
        assert LocationMode.ON_SITE == "on_site"

    def test_import_booking_schema(self):
        from receptionist.schemas.booking import AppointmentDraft, AppointmentStatus
        assert AppointmentStatus.PENDING_CONFIRMATION == "pending_confirmation"

    def test_import_telemetry_schema(self):
        from receptionist.schemas.telemetry import SessionSummary, TurnRecord
        assert "turns" in SessionSummary.model_fields


class TestConversationImports:
    def test_conversation_package_reexports(self):
        from receptionist.conversation import (
            BookingContext, BookingState, BookingStateMachine, Event, SlotName, SlotStore,
        )
        assert BookingState.IDLE == "idle"
        assert SlotName.TIME_WINDOW == "time_window"

    def test_transition_table_is_shared(self):
        from receptionist.conversation.state_machine import TRANSITIONS, BookingStateMachine
        assert BookingStateMachine.TRANSITIONS is TRANSITIONS
        assert len(TRANSITIONS) > 40

    def test_every_collector_has_transitions(self):
        from receptionist.conversation.state_machine import COLLECTOR_STATES, TRANSITIONS
        sources = {t.from_state for t in TRANSITIONS}
        assert COLLECTOR_STATES <= sources


class TestSessionImports:
    def test_session_package_reexports(self):
        from receptionist.session import (
            SessionActor, SessionClosedError, SessionManager, SessionMetrics,
            SessionNotFoundError,
        )
        assert issubclass(SessionNotFoundError, KeyError)


class TestToolImports:
    def test_import_tools(self):
        from receptionist.tools.availability import CalendarAvailability
        from receptionist.tools.base import Integrations
        from receptionist.tools.booking import InMemoryAppointmentBook
        from receptionist.tools.intent import KeywordIntentClassifier
        assert callable(KeywordIntentClassifier().classify)


class TestConfigImport:
    def test_import_config(self):
        from receptionist.config import settings
        assert settings.business.name
        assert settings.policy.session_retry_ceiling >= 1
        assert settings.latency.intent_timeout_sec > 0


class TestConsoleDemo:
    def test_console_session_imports(self):
        from console_demo import ConsoleSession
        session = ConsoleSession()
        assert session.manager.active_sessions == 0
        assert "booking" in ConsoleSession.SCENARIOS
