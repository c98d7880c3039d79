"""Tests for date parsing and formatting helpers."""

from datetime import datetime

import pytest

from breaking_bot.core.date import friendly_short, human_duration, parse_when, seconds_since

NOW = datetime(2024, 2, 16, 18, 36, 12)


class TestParseWhen:
    """Test parsing user supplied times."""

    def test_now(self):
        assert parse_when("now", NOW) == NOW

    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ("10 min ago", datetime(2024, 2, 16, 18, 26, 12)),
            ("2h ago", datetime(2024, 2, 16, 16, 36, 12)),
            ("30 seconds ago", datetime(2024, 2, 16, 18, 35, 42)),
            ("1 day ago", datetime(2024, 2, 15, 18, 36, 12)),
        ],
    )
    def test_relative(self, text, expected):
        assert parse_when(text, NOW) == expected

    @pytest.mark.parametrize("text", ["14:05", "1405", "14:05 UTC"])
    def test_clock_time_today(self, text):
        assert parse_when(text, NOW) == datetime(2024, 2, 16, 14, 5)

    def test_bare_hour(self):
        assert parse_when("9", NOW) == datetime(2024, 2, 16, 9, 0)

    def test_iso_naive(self):
        assert parse_when("2024-02-15T23:10", NOW) == datetime(2024, 2, 15, 23, 10)

    def test_iso_with_offset_is_converted_to_utc(self):
        assert parse_when("2024-02-15T23:10:00+02:00", NOW) == datetime(2024, 2, 15, 21, 10)

    def test_unparseable(self):
        with pytest.raises(ValueError, match="Unable to parse a time"):
            parse_when("yesterday-ish", NOW)


class TestFormatting:
    """Test rendering times and durations."""

    def test_friendly_short(self):
        assert friendly_short(datetime(2024, 2, 6, 8, 5)) == "Feb 6, 2024 08:05 UTC"

    @pytest.mark.parametrize(
        ("seconds", "expected"),
        [
            (0, "0s"),
            (59, "59s"),
            (125, "2m 5s"),
            (7500, "2h 5m"),
            (90061, "1d 1h"),
            (-5, "0s"),
        ],
    )
    def test_human_duration(self, seconds, expected):
        assert human_duration(seconds) == expected

    def test_seconds_since(self):
        assert seconds_since(datetime(2024, 2, 16, 18, 35, 12), NOW) == 60
