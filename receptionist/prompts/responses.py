"""Spoken response construction for each conversation step."""

from typing import Mapping, Optional

from receptionist.conversation.escalation import EscalationRecord
from receptionist.conversation.slot_store import SlotName
from receptionist.schemas.organization import LocationMode, OrganizationContext

TROUBLE_PROCESSING = "I'm sorry, I'm having trouble processing that. Could you please repeat?"
UNCLEAR_NOTICE = "Sorry, I didn't quite catch that."
CORRECTION_NOTICE = "No problem, let's fix that."
START_OVER_NOTICE = "No problem, let's start over."
RESUME_NOTICE = "Now, back to your booking."
BOOKING_IN_PROGRESS = "Great, let me book that for you."
STILL_THERE = "Are you still there?"
IDLE_HELP = (
    "I can help you book an appointment, or answer questions about our hours, "
    "location and services. What would you like to do?"
)
ANYTHING_ELSE = "Is there anything else I can help you with?"


def join_sentences(*parts: Optional[str]) -> str:
    return " ".join(p.strip() for p in parts if p and p.strip())


def _list(items: list[str]) -> str:
    if len(items) <= 1:
        return "".join(items)
    return ", ".join(items[:-1]) + " and " + items[-1]


def slot_prompt(slot: SlotName, organization: OrganizationContext) -> str:
    scripts = organization.scripts
    if slot == SlotName.SERVICE:
        return scripts.service
    if slot == SlotName.TIME_WINDOW:
        return scripts.time_window
    if slot == SlotName.CONTACT:
        return scripts.contact
    if slot == SlotName.LOCATION:
        if organization.location_mode == LocationMode.AT_BUSINESS:
            names = [b.name for b in organization.branches]
            return f"Which of our locations would you like to visit: {_list(names)}?"
        return "What's the address where you'd like us to come?"
    raise ValueError(f"No prompt for slot {slot!r}")


def read_back(slot: SlotName, value: str, canonical: Optional[str] = None) -> str:
    """Repeat a tentative value so the caller can confirm or correct it."""
    if slot == SlotName.SERVICE:
        if canonical and canonical.lower() != value.lower():
            return f"Just to confirm, you'd like to book {value}, that's our {canonical}. Is that right?"
        return f"Just to confirm, you'd like to book {value}. Is that right?"
    if slot == SlotName.TIME_WINDOW:
        return f"I have you down for {value}. Does that work?"
    if slot == SlotName.CONTACT:
        return f"I have your contact details as {value}. Is that correct?"
    return f"The appointment will be at {value}. Is that right?"


def rejection_notice(slot: SlotName, value: Optional[str], organization: OrganizationContext) -> str:
    if slot == SlotName.SERVICE:
        offered = [s.name for s in organization.active_services()]
        lead = f"I'm sorry, we don't offer {value}." if value else "I'm sorry, I didn't recognise that service."
        return join_sentences(lead, f"We offer {_list(offered)}." if offered else None)
    if slot == SlotName.TIME_WINDOW:
        return "I didn't catch a day or time in that."
    if slot == SlotName.CONTACT:
        return "I didn't catch a phone number or email address."
    if organization.location_mode == LocationMode.AT_BUSINESS:
        return "I didn't recognise that location."
    return "I'll need a street address, including the number."


def confirmation_summary(values: Mapping[str, str], organization: OrganizationContext) -> str:
    parts = [f"Let me confirm: {values.get(SlotName.SERVICE.value, 'your appointment')}"]
    if values.get(SlotName.TIME_WINDOW.value):
        parts.append(f"for {values[SlotName.TIME_WINDOW.value]}")
    summary = " ".join(parts)
    if values.get(SlotName.LOCATION.value):
        summary += f" at {values[SlotName.LOCATION.value]}"
    if values.get(SlotName.CONTACT.value):
        summary += f", and we'll reach you at {values[SlotName.CONTACT.value]}"
    return join_sentences(summary + ".", organization.scripts.confirmation)


def success_message(
    calendar_available: bool,
    organization: OrganizationContext,
    service: Optional[str],
    time_window: Optional[str],
) -> str:
    what = service or "appointment"
    when = f" for {time_window}" if time_window else ""
    if calendar_available:
        return join_sentences(f"You're all set. Your {what} is booked{when}.", organization.scripts.success)
    return (
        f"I've taken down your {what}{when}, but I couldn't confirm it with our calendar, "
        "so a team member will call you shortly to confirm the time."
    )


def idle_reply(intent: Optional[str], answer: Optional[str] = None) -> str:
    if answer:
        return join_sentences(answer, ANYTHING_ELSE)
    if intent == "unclear":
        return join_sentences(UNCLEAR_NOTICE, "Were you looking to book an appointment?")
    return IDLE_HELP


def already_escalated(record: EscalationRecord) -> str:
    if record.is_scheduled:
        due = record.callback_due.strftime("%I:%M %p").lstrip("0")
        return join_sentences(
            f"A team member will call you back by {due} to help with your booking.",
            ANYTHING_ELSE,
        )
    return "Please call us directly or visit our website to schedule your appointment."
