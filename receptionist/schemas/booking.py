"""Appointment and callback drafts sent to the booking collaborators."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel


class AppointmentStatus(str, Enum):
    SCHEDULED = "scheduled"
    PENDING_CONFIRMATION = "pending_confirmation"


class AppointmentDraft(BaseModel):
    """Everything needed to create an appointment."""
    organization_id: str
    session_id: str
    service: str
    time_window: str
    contact: str
    contact_phone: Optional[str] = None
    contact_email: Optional[str] = None
    start_at: datetime
    end_at: datetime
    status: AppointmentStatus = AppointmentStatus.SCHEDULED
    requires_callback: bool = False
    location: Optional[str] = None
    location_preference: Optional[str] = None
    notes: str = ""


class AppointmentResult(BaseModel):
    id: str
    status: AppointmentStatus = AppointmentStatus.SCHEDULED


class CallbackDraft(BaseModel):
    """A request for a human to call the customer back."""
    organization_id: str
    session_id: str
    reason: str
    callback_by: datetime
    service: str = "General inquiry"
    contact_phone: str = "Unknown"
    preferred_time: str = "Flexible"
    status: str = "pending_callback"
    notes: str = ""


class CallbackResult(BaseModel):
    id: str
