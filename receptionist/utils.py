"""Shared text helpers used across the orchestrator."""

import re
from datetime import datetime, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

import dateparser
from dateparser.search import search_dates

MIN_PHONE_DIGITS = 7
MAX_PHONE_DIGITS = 15

DEFAULT_APPOINTMENT_HOUR = 10

_PHONE_CANDIDATE = re.compile(r"\+?\(?\d[\d\s().-]{5,}\d")
_EMAIL = re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")
_MONTHS = (
    r"jan(?:uary)?|feb(?:ruary)?|mar(?:ch)?|apr(?:il)?|may|june?|july?|aug(?:ust)?"
    r"|sep(?:t(?:ember)?)?|oct(?:ober)?|nov(?:ember)?|dec(?:ember)?"
)

TIME_WINDOW_PATTERNS = (
    re.compile(rf"\b(?:{_MONTHS})\.?\s+\d{{1,2}}(?:st|nd|rd|th)?\b", re.IGNORECASE),
    re.compile(r"\bthe\s+\d{1,2}(?:st|nd|rd|th)\b", re.IGNORECASE),
    re.compile(r"\b\d{1,2}/\d{1,2}(?:/\d{2,4})?\b"),
    re.compile(r"\b\d{1,2}:\d{2}\s*(?:am|pm)\b", re.IGNORECASE),
    re.compile(r"\b\d{1,2}\s*(?:am|pm)\b", re.IGNORECASE),
    re.compile(r"\b(?:noon|midday)\b", re.IGNORECASE),
    re.compile(r"\b(?:morning|afternoon|evening)\b", re.IGNORECASE),
    re.compile(r"\b(?:" + "|".join(WEEKDAYS) + r")\b", re.IGNORECASE),
    re.compile(r"\b(?:today|tomorrow|next week)\b", re.IGNORECASE),
)

_CLOCK = re.compile(r"\b\d{1,2}(?::\d{2})?\s*(?:am|pm)\b|\b(?:[01]?\d|2[0-3]):[0-5]\d\b")
_PART_OF_DAY = re.compile(r"\b(?:in the |this )?(morning|afternoon|evening)\b")
_PART_OF_DAY_HOURS = {"morning": 9, "afternoon": 14, "evening": 17}
_DAY_CUE = re.compile(
    rf"\b(?:{_MONTHS}|" + "|".join(WEEKDAYS)
    + r"|today|tomorrow|week|the \d{1,2}|\d{1,2}/\d{1,2})\b"
)

# Rewrites applied before handing a phrase to dateparser.
_REWRITES = (
    (re.compile(r"\b(?:noon|midday)\b"), "12pm"),
    (re.compile(r"\bnext week\b"), "in 1 week"),
    (re.compile(r"\b(?:next|this|on)\s+(?=(?:" + "|".join(WEEKDAYS) + r")\b)"), ""),
    (re.compile(r"\b(\d{1,2})(?:st|nd|rd|th)\b"), r"\1"),
)

_PARSER_SETTINGS = {
    "PREFER_DATES_FROM": "future",
    "RETURN_AS_TIMEZONE_AWARE": False,
}


def normalize_phone(value: str) -> str:
    """Normalize a phone number by stripping everything except digits and a leading +.

    Examples:
        >>> normalize_phone("555 123 4567")
        '5551234567'
        >>> normalize_phone("+1 (555) 123-4567")
        '+15551234567'
    """
    value = value.strip()
    if value.startswith("+"):
        return "+" + re.sub(r"[^\d]", "", value[1:])
    return re.sub(r"[^\d]", "", value)


def extract_phone(text: str) -> Optional[str]:
    """Return the first phone number in ``text``, normalized, or None."""
    for match in _PHONE_CANDIDATE.finditer(text or ""):
        candidate = normalize_phone(match.group(0))
        digits = candidate.lstrip("+")
        if MIN_PHONE_DIGITS <= len(digits) <= MAX_PHONE_DIGITS:
            return candidate
    return None


def extract_email(text: str) -> Optional[str]:
    match = _EMAIL.search(text or "")
    return match.group(0) if match else None


def find_time_reference(text: str) -> Optional[re.Match]:
    """Return the earliest time-window mention in ``text``."""
    matches = [m for m in (p.search(text or "") for p in TIME_WINDOW_PATTERNS) if m]
    if not matches:
        return None
    return min(matches, key=lambda m: m.start())


def _local_now(now: datetime, zone: ZoneInfo) -> datetime:
    if now.tzinfo is None:
        return now.replace(tzinfo=zone)
    return now.astimezone(zone)


def _parse(phrase: str, base: datetime) -> Optional[datetime]:
    settings = dict(_PARSER_SETTINGS, RELATIVE_BASE=base)
    parsed = dateparser.parse(phrase, languages=["en"], settings=settings)
    if parsed is not None:
        return parsed
    found = search_dates(phrase, languages=["en"], settings=settings)
    if not found:
        return None
    matched, value = found[0]
    # A day the parser skipped must not silently become the next day.
    if _DAY_CUE.search(phrase) and not _DAY_CUE.search(matched.lower()):
        return None
    return value


def parse_time_window(text: str, now: datetime, timezone: str = "UTC") -> Optional[datetime]:
    """Turn a spoken time window into a concrete start time in ``timezone``.

    Relative phrases resolve against ``now`` as seen from ``timezone``. A
    part of day without a clock time maps to a fixed hour, and a bare day
    defaults to 10:00. Returns None when nothing in the phrase is a date or
    time.

    Examples:
        >>> parse_time_window("tomorrow at 2pm", datetime(2025, 3, 14, 9, 0))
        datetime.datetime(2025, 3, 15, 14, 0, tzinfo=zoneinfo.ZoneInfo(key='UTC'))
    """
    zone = ZoneInfo(timezone)
    local_now = _local_now(now, zone)
    lower = (text or "").strip().lower()

    part = _PART_OF_DAY.search(lower)
    phrase = _PART_OF_DAY.sub(" ", lower)
    for pattern, replacement in _REWRITES:
        phrase = pattern.sub(replacement, phrase)
    phrase = " ".join(phrase.split())
    if not phrase:
        # "this afternoon" on its own
        if part is None:
            return None
        phrase = "today"

    base = local_now.replace(tzinfo=None)
    parsed = _parse(phrase, base)
    if parsed is None:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(zone).replace(tzinfo=None)
    if parsed.date() == base.date() and WEEKDAYS[base.weekday()] in phrase.split():
        # "Friday" said on a Friday means next week
        parsed += timedelta(days=7)

    if _CLOCK.search(phrase):
        start = parsed.replace(second=0, microsecond=0)
    else:
        hour = _PART_OF_DAY_HOURS[part.group(1)] if part else DEFAULT_APPOINTMENT_HOUR
        start = parsed.replace(hour=hour, minute=0, second=0, microsecond=0)
    if start <= base and not _DAY_CUE.search(phrase):
        start += timedelta(days=1)
    return start.replace(tzinfo=zone)
