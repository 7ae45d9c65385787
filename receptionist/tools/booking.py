"""
In-memory appointment and callback store plus the draft builders.

In production, ``create`` and ``schedule`` would call the scheduling
backend; here they keep records in module-level dicts so the console demo
and tests can run offline.
"""

import logging
import uuid
from datetime import timedelta
from typing import Optional

from receptionist.config import settings
from receptionist.conversation.context import BookingContext
from receptionist.conversation.service_validator import match_service
from receptionist.conversation.slot_store import SlotName
from receptionist.schemas.booking import (
    AppointmentDraft,
    AppointmentResult,
    AppointmentStatus,
    CallbackDraft,
    CallbackResult,
)
from receptionist.utils import extract_email, extract_phone, parse_time_window

logger = logging.getLogger(__name__)

_appointments: dict[str, AppointmentDraft] = {}
_callbacks: dict[str, CallbackDraft] = {}


def build_appointment_draft(context: BookingContext, calendar_available: bool) -> AppointmentDraft:
    """Turn the validated slots into an appointment request."""
    slots = context.slots
    organization = context.organization
    requested = slots.value(SlotName.SERVICE) or ""
    entry = match_service(requested, organization.active_services())
    service = entry.name if entry else requested
    duration = organization.duration_for(service, settings.business.default_duration_minutes)
    time_window = slots.value(SlotName.TIME_WINDOW) or ""
    contact = slots.value(SlotName.CONTACT) or ""
    start_at = parse_time_window(time_window, context.now, organization.timezone)
    if start_at is None:
        raise ValueError(f"Cannot resolve time window {time_window!r} to a start time")

    notes = f"Booked by voice agent. Requested service: {requested}."
    if not calendar_available:
        notes += " Calendar unavailable at booking time; confirm with customer."

    return AppointmentDraft(
        organization_id=organization.organization_id,
        session_id=context.session_id,
        service=service,
        time_window=time_window,
        contact=contact,
        contact_phone=extract_phone(contact),
        contact_email=extract_email(contact),
        start_at=start_at,
        end_at=start_at + timedelta(minutes=duration),
        status=(
            AppointmentStatus.SCHEDULED if calendar_available
            else AppointmentStatus.PENDING_CONFIRMATION
        ),
        requires_callback=not calendar_available,
        location=slots.value(SlotName.LOCATION),
        location_preference=slots.value(SlotName.LOCATION_PREFERENCE),
        notes=notes,
    )


def build_callback_draft(context: BookingContext) -> CallbackDraft:
    """Describe what a human needs to know to call the customer back."""
    record = context.escalation
    if record is None:
        raise ValueError("Cannot build a callback draft without an escalation record")
    slots = context.slots
    contact = slots.value(SlotName.CONTACT) or ""
    collected = ", ".join(f"{k}={v}" for k, v in slots.values().items()) or "nothing"
    notes = f"Escalated: {record.reason.value}. Collected: {collected}."
    if record.detail:
        notes += f" Detail: {record.detail}."
    return CallbackDraft(
        organization_id=context.organization.organization_id,
        session_id=context.session_id,
        reason=record.reason.value,
        callback_by=record.callback_due,
        service=slots.value(SlotName.SERVICE) or "General inquiry",
        contact_phone=extract_phone(contact) or "Unknown",
        preferred_time=slots.value(SlotName.TIME_WINDOW) or "Flexible",
        notes=notes,
    )


class InMemoryAppointmentBook:
    """Appointment creator and callback scheduler backed by module-level dicts."""

    async def create(self, draft: AppointmentDraft) -> AppointmentResult:
        appointment_id = f"APT-{uuid.uuid4().hex[:6].upper()}"
        _appointments[appointment_id] = draft
        logger.info(
            "Appointment created: %s for %s at %s (%s)",
            appointment_id, draft.service, draft.start_at.isoformat(), draft.status.value,
        )
        return AppointmentResult(id=appointment_id, status=draft.status)

    async def schedule(self, draft: CallbackDraft) -> CallbackResult:
        callback_id = f"CB-{uuid.uuid4().hex[:6].upper()}"
        _callbacks[callback_id] = draft
        logger.info(
            "Callback scheduled: %s (%s) due %s",
            callback_id, draft.reason, draft.callback_by.isoformat(),
        )
        return CallbackResult(id=callback_id)


def get_appointment(appointment_id: str) -> Optional[AppointmentDraft]:
    return _appointments.get(appointment_id)


def list_appointments() -> list[AppointmentDraft]:
    return list(_appointments.values())


def list_callbacks() -> list[CallbackDraft]:
    return list(_callbacks.values())


def reset() -> None:
    """Clear all appointments and callbacks. Used by test fixtures for isolation."""
    _appointments.clear()
    _callbacks.clear()
