"""
Tests for duration parsing and formatting.
"""

import pytest

from envorch.core.services.durations import format_duration, parse_duration


class TestParseDuration:
    @pytest.mark.parametrize(
        ("text", "seconds"),
        [
            ("90s", 90),
            ("30m", 1800),
            ("12h", 43200),
            ("1d", 86400),
            ("2w", 1209600),
            ("1d12h", 129600),
            ("1h 30m", 5400),
            ("3600", 3600),
            (45, 45),
        ],
    )
    def test_valid(self, text, seconds):
        assert parse_duration(text) == seconds

    @pytest.mark.parametrize("text", ["", "1y", "abc", "0", "-5", "1d-2h", True])
    def test_invalid(self, text):
        with pytest.raises(ValueError):
            parse_duration(text)


class TestFormatDuration:
    def test_compound(self):
        assert format_duration(93784) == "1d2h3m4s"

    def test_whole_day(self):
        assert format_duration(86400) == "1d"

    def test_zero(self):
        assert format_duration(0) == "0s"
