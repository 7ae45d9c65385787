"""Tests for shared utility functions."""

from datetime import datetime, timezone
from zoneinfo import ZoneInfo

from receptionist.utils import (
    extract_email,
    extract_phone,
    find_time_reference,
    normalize_phone,
    parse_time_window,
)

# Friday
NOW = datetime(2025, 3, 14, 9, 0, tzinfo=timezone.utc)


class TestNormalizePhone:
    def test_strips_spaces(self):
        assert normalize_phone("0412 345 678") == "0412345678"

    def test_strips_dashes(self):
        assert normalize_phone("555-123-4567") == "5551234567"

    def test_strips_parentheses(self):
        assert normalize_phone("(555) 123 4567") == "5551234567"

    def test_preserves_leading_plus(self):
        assert normalize_phone("+1 555 123 4567") == "+15551234567"

    def test_strips_whitespace(self):
        assert normalize_phone("  5551234567  ") == "5551234567"


class TestExtractContact:
    def test_phone_in_sentence(self):
        assert extract_phone("John Smith 555-123-4567") == "5551234567"

    def test_seven_digit_phone(self):
        assert extract_phone("call 555-1234") == "5551234"

    def test_too_short_is_not_a_phone(self):
        assert extract_phone("room 12") is None

    def test_no_phone(self):
        assert extract_phone("no number here") is None

    def test_email(self):
        assert extract_email("reach me at jane.doe@example.com please") == "jane.doe@example.com"

    def test_no_email(self):
        assert extract_email("jane at example") is None


class TestFindTimeReference:
    def test_clock_time(self):
        assert find_time_reference("around 2pm") is not None

    def test_weekday(self):
        match = find_time_reference("I'd like next Monday morning")
        assert match.group(0).lower() == "monday"

    def test_earliest_mention_wins(self):
        match = find_time_reference("tomorrow at 2pm")
        assert match.group(0).lower() == "tomorrow"

    def test_month_name_date(self):
        match = find_time_reference("how about March 20 at 3pm")
        assert match.group(0) == "March 20"

    def test_no_time(self):
        assert find_time_reference("whenever suits") is None


class TestParseTimeWindow:
    def test_tomorrow_at_two(self):
        assert parse_time_window("tomorrow at 2pm", NOW) == datetime(2025, 3, 15, 14, 0, tzinfo=timezone.utc)

    def test_weekday_afternoon(self):
        # Next Monday after Friday the 14th
        assert parse_time_window("Monday afternoon", NOW) == datetime(2025, 3, 17, 14, 0, tzinfo=timezone.utc)

    def test_same_weekday_means_next_week(self):
        assert parse_time_window("Friday morning", NOW).date() == datetime(2025, 3, 21).date()

    def test_today_evening(self):
        assert parse_time_window("today in the evening", NOW) == datetime(2025, 3, 14, 17, 0, tzinfo=timezone.utc)

    def test_clock_with_minutes(self):
        assert parse_time_window("tomorrow 10:30 am", NOW).hour == 10
        assert parse_time_window("tomorrow 10:30 am", NOW).minute == 30

    def test_twelve_pm_is_noon(self):
        assert parse_time_window("tomorrow at 12pm", NOW).hour == 12

    def test_unrecognised_phrase_is_none(self):
        assert parse_time_window("whenever", NOW) is None

    def test_month_and_day(self):
        assert parse_time_window("March 20 at 3pm", NOW) == datetime(2025, 3, 20, 15, 0, tzinfo=timezone.utc)

    def test_ordinal_day_of_month(self):
        assert parse_time_window("March 20th", NOW).day == 20

    def test_noon(self):
        assert parse_time_window("tomorrow at noon", NOW).hour == 12

    def test_bare_day_defaults_to_ten(self):
        assert parse_time_window("tomorrow", NOW) == datetime(2025, 3, 15, 10, 0, tzinfo=timezone.utc)

    def test_local_hour_in_organization_timezone(self):
        start = parse_time_window("tomorrow at 2pm", NOW, "America/New_York")
        local = start.astimezone(ZoneInfo("America/New_York"))
        assert (local.day, local.hour) == (15, 14)
        # EDT is UTC-4 after the March switch
        assert start.astimezone(timezone.utc).hour == 18

    def test_relative_day_uses_local_date(self):
        # 02:00 UTC on the 15th is still the evening of the 14th in New York
        late = datetime(2025, 3, 15, 2, 0, tzinfo=timezone.utc)
        start = parse_time_window("tomorrow at 2pm", late, "America/New_York")
        assert start.astimezone(ZoneInfo("America/New_York")).day == 15
