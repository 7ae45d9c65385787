"""Organization context handed to every session (read-only)."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from receptionist.config import AppConfig, settings

DAY_NAMES = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


class LocationMode(str, Enum):
    """Where appointments take place, which decides if a location is collected."""
    NONE = "none"
    REMOTE_ONLY = "remote_only"
    ON_SITE = "on_site"
    AT_BUSINESS = "at_business"


class ServiceEntry(BaseModel):
    """One bookable service in the catalog."""
    model_config = ConfigDict(frozen=True)

    name: str
    active: bool = True
    duration_minutes: int = Field(default=60, ge=1)
    price: Optional[float] = Field(default=None, ge=0)
    category: str = "general"


class DayHours(BaseModel):
    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    start: str = "09:00"
    end: str = "17:00"


class Branch(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    address: str


class Integration(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: str
    active: bool = True


class ScriptSet(BaseModel):
    """Spoken prompts the organization can customise."""
    model_config = ConfigDict(frozen=True)

    greeting: str = "Thank you for calling. How can I help you today?"
    service: str = "What service would you like to book?"
    time_window: str = "When would you like to come in?"
    contact: str = "What's the best name and phone number or email to reach you?"
    location: str = "Where should the appointment take place?"
    confirmation: str = "Shall I go ahead and book that for you?"
    success: str = "Your appointment is booked. Thank you for calling!"
    fallback: str = "Let me have someone call you back to help with that."


def _default_hours() -> dict[str, DayHours]:
    hours = {day: DayHours() for day in DAY_NAMES[:5]}
    hours["saturday"] = DayHours(start="10:00", end="14:00")
    hours["sunday"] = DayHours(enabled=False)
    return hours


class OrganizationContext(BaseModel):
    """Business configuration shared across sessions of one organization."""
    model_config = ConfigDict(frozen=True)

    organization_id: str
    name: str
    services: list[ServiceEntry] = Field(default_factory=list)
    business_hours: dict[str, DayHours] = Field(default_factory=_default_hours)
    address: str = ""
    timezone: str = "UTC"
    location_mode: LocationMode = LocationMode.NONE
    branches: list[Branch] = Field(default_factory=list)
    integrations: list[Integration] = Field(default_factory=list)
    scripts: ScriptSet = Field(default_factory=ScriptSet)
    confirmation_thresholds: dict[str, int] = Field(default_factory=dict)

    def active_services(self) -> list[ServiceEntry]:
        return [s for s in self.services if s.active]

    def has_calendar_integration(self) -> bool:
        return any(i.active and i.type == "calendar" for i in self.integrations)

    def threshold_for(self, slot: str, default: int) -> int:
        """Per-slot confirmation threshold, falling back to ``default``."""
        value = self.confirmation_thresholds.get(slot)
        return value if value and value > 0 else default

    def duration_for(self, service_name: Optional[str], default: int) -> int:
        """Catalog duration of ``service_name``, or ``default`` when it is not listed."""
        for entry in self.active_services():
            if service_name and entry.name.lower() == service_name.lower():
                return entry.duration_minutes
        return default

    def describe_hours(self) -> str:
        """Spoken summary of the weekly opening hours."""
        open_days = []
        closed_days = []
        for day in DAY_NAMES:
            hours = self.business_hours.get(day)
            if hours is None or not hours.enabled:
                closed_days.append(day.capitalize())
            else:
                open_days.append(f"{day.capitalize()} {hours.start} to {hours.end}")
        text = "We're open " + ", ".join(open_days) if open_days else "We're currently closed"
        if closed_days:
            text += f", and closed {' and '.join(closed_days)}"
        return text + "."


def _service_entry(item: str, duration: int) -> ServiceEntry:
    """Parse one catalog item written as ``Name`` or ``Name:price``."""
    name, _, price = item.partition(":")
    return ServiceEntry(
        name=name.strip(),
        duration_minutes=duration,
        price=float(price) if price.strip() else None,
    )


def default_organization(config: AppConfig = settings) -> OrganizationContext:
    """Build the organization used when a call arrives without its own context."""
    business = config.business
    services = [
        _service_entry(item, business.default_duration_minutes)
        for item in business.services.split(",")
        if item.strip()
    ]
    return OrganizationContext(
        organization_id=business.organization_id,
        name=business.name,
        services=services,
        address=business.address,
        timezone=business.timezone,
        location_mode=LocationMode(business.location_mode),
        integrations=[Integration(type="calendar")],
    )
