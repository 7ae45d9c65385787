"""Tests for the booking collaborators and draft builders."""

from dataclasses import replace
from datetime import datetime, timezone
from zoneinfo import ZoneInfo

import pytest

from receptionist.config import settings
from receptionist.conversation.escalation import EscalationManager, EscalationReason
from receptionist.conversation.slot_store import SlotName, SlotStore
from receptionist.schemas.booking import AppointmentStatus
from receptionist.tools import availability, booking
from receptionist.tools.availability import CalendarAvailability
from receptionist.tools.booking import (
    InMemoryAppointmentBook,
    build_appointment_draft,
    build_callback_draft,
)
from tests.conftest import FIXED_NOW, make_context, make_org


def _filled_context(organization=None, **values):
    store, _ = SlotStore().merge(values)
    for name in values:
        store = store.mark_validated(SlotName(name))
    return make_context(organization, slots=store)


def _booking_context():
    return _filled_context(
        service="trim", time_window="tomorrow at 2pm", contact="John 555-123-4567"
    )


class TestAppointmentDraft:
    def test_uses_canonical_service_and_duration(self):
        draft = build_appointment_draft(_booking_context(), calendar_available=True)
        assert draft.service == "Haircut"
        assert draft.start_at == datetime(2025, 3, 15, 14, 0, tzinfo=timezone.utc)
        assert (draft.end_at - draft.start_at).total_seconds() == 30 * 60

    def test_contact_details_are_split_out(self):
        draft = build_appointment_draft(_booking_context(), calendar_available=True)
        assert draft.contact == "John 555-123-4567"
        assert draft.contact_phone == "5551234567"
        assert draft.contact_email is None

    def test_scheduled_when_calendar_available(self):
        draft = build_appointment_draft(_booking_context(), calendar_available=True)
        assert draft.status == AppointmentStatus.SCHEDULED
        assert not draft.requires_callback

    def test_pending_when_calendar_unavailable(self):
        draft = build_appointment_draft(_booking_context(), calendar_available=False)
        assert draft.status == AppointmentStatus.PENDING_CONFIRMATION
        assert draft.requires_callback
        assert "Calendar unavailable" in draft.notes

    def test_unknown_service_keeps_requested_name(self):
        ctx = _filled_context(service="massage", time_window="monday", contact="a@b.io")
        draft = build_appointment_draft(ctx, calendar_available=True)
        assert draft.service == "massage"
        minutes = settings.business.default_duration_minutes
        assert (draft.end_at - draft.start_at).total_seconds() == minutes * 60

    def test_start_time_in_organization_timezone(self):
        ctx = _filled_context(
            organization=make_org(timezone="America/New_York"),
            service="haircut", time_window="tomorrow at 2pm", contact="a@b.io",
        )
        draft = build_appointment_draft(ctx, calendar_available=True)
        assert draft.start_at.astimezone(ZoneInfo("America/New_York")).hour == 14

    def test_unresolvable_time_window_raises(self):
        ctx = _filled_context(service="haircut", time_window="whenever", contact="a@b.io")
        with pytest.raises(ValueError):
            build_appointment_draft(ctx, calendar_available=True)


class TestCallbackDraft:
    def test_requires_escalation_record(self):
        with pytest.raises(ValueError):
            build_callback_draft(make_context())

    def test_includes_reason_and_collected_values(self):
        ctx = _booking_context()
        record = EscalationManager().escalate(
            ctx, EscalationReason.CALENDAR_FAILURE, FIXED_NOW, detail="503"
        )
        draft = build_callback_draft(replace(ctx, escalation=record))
        assert draft.reason == "calendar_failure"
        assert draft.callback_by == datetime(2025, 3, 14, 10, 0, tzinfo=timezone.utc)
        assert draft.service == "trim"
        assert draft.contact_phone == "5551234567"
        assert draft.preferred_time == "tomorrow at 2pm"
        assert "Detail: 503" in draft.notes

    def test_defaults_when_nothing_collected(self):
        ctx = make_context()
        record = EscalationManager().escalate(ctx, EscalationReason.USER_REQUEST, FIXED_NOW)
        draft = build_callback_draft(replace(ctx, escalation=record))
        assert draft.service == "General inquiry"
        assert draft.contact_phone == "Unknown"
        assert draft.preferred_time == "Flexible"
        assert "Collected: nothing" in draft.notes


class TestInMemoryAppointmentBook:
    @pytest.mark.asyncio
    async def test_create_stores_appointment(self):
        book = InMemoryAppointmentBook()
        draft = build_appointment_draft(_booking_context(), calendar_available=True)
        result = await book.create(draft)
        assert result.id.startswith("APT-")
        assert result.status == AppointmentStatus.SCHEDULED
        assert booking.get_appointment(result.id) == draft

    @pytest.mark.asyncio
    async def test_schedule_stores_callback(self):
        ctx = make_context()
        record = EscalationManager().escalate(ctx, EscalationReason.MAX_RETRIES, FIXED_NOW)
        result = await InMemoryAppointmentBook().schedule(
            build_callback_draft(replace(ctx, escalation=record))
        )
        assert result.id.startswith("CB-")
        assert len(booking.list_callbacks()) == 1

    @pytest.mark.asyncio
    async def test_reset_clears_everything(self):
        book = InMemoryAppointmentBook()
        await book.create(build_appointment_draft(_booking_context(), calendar_available=True))
        booking.reset()
        assert booking.list_appointments() == []
        assert booking.list_callbacks() == []


class TestCalendarAvailability:
    @pytest.mark.asyncio
    async def test_available_by_default(self):
        snapshot = make_context().snapshot("idle")
        assert await CalendarAvailability().is_available(snapshot)

    @pytest.mark.asyncio
    async def test_outage_makes_calendar_unavailable(self):
        snapshot = make_context().snapshot("idle")
        availability.set_outage("org-test")
        assert not await CalendarAvailability().is_available(snapshot)
        availability.set_outage("org-test", down=False)
        assert await CalendarAvailability().is_available(snapshot)

    @pytest.mark.asyncio
    async def test_organization_without_calendar(self):
        snapshot = make_context().snapshot("idle")
        checker = CalendarAvailability(calendar_orgs=frozenset({"org-other"}))
        assert not await checker.is_available(snapshot)
