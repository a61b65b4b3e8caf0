"""
Tests for utils.time module - UTC timestamp utilities.

Tests cover:
- All timestamps are timezone-aware (UTC)
- Storage format (ISO 8601, second precision, 'Z' suffix)
- Round trips between format_timestamp() and parse_timestamp()
- Month start computation for the run quota window
- Error handling for naive datetimes and malformed strings
"""

from datetime import UTC, datetime, timedelta, timezone

import pytest
from freezegun import freeze_time

from answer_visibility.utils.time import (
    format_timestamp,
    parse_timestamp,
    start_of_month,
    utc_now,
    utc_timestamp,
)


class TestUtcNow:
    """Test utc_now() function."""

    def test_has_utc_timezone(self):
        """utc_now() should return timezone-aware datetime with UTC."""
        assert utc_now().tzinfo == UTC

    @freeze_time("2025-11-02T08:30:45Z")
    def test_frozen_time(self):
        assert utc_now() == datetime(2025, 11, 2, 8, 30, 45, tzinfo=UTC)


class TestUtcTimestamp:
    @freeze_time("2025-11-02T08:30:45.123456Z")
    def test_second_precision_with_z_suffix(self):
        """Microseconds are dropped so stored timestamps sort lexicographically."""
        assert utc_timestamp() == "2025-11-02T08:30:45Z"


class TestFormatTimestamp:
    def test_converts_other_zones_to_utc(self):
        dt = datetime(2025, 11, 2, 10, 30, tzinfo=timezone(timedelta(hours=2)))
        assert format_timestamp(dt) == "2025-11-02T08:30:00Z"

    def test_rejects_naive_datetime(self):
        with pytest.raises(ValueError, match="timezone-aware"):
            format_timestamp(datetime(2025, 11, 2, 8, 30))


class TestParseTimestamp:
    def test_round_trip(self):
        dt = datetime(2025, 11, 2, 8, 30, 45, tzinfo=UTC)
        assert parse_timestamp(format_timestamp(dt)) == dt

    def test_requires_z_suffix(self):
        with pytest.raises(ValueError, match="must end with 'Z'"):
            parse_timestamp("2025-11-02T08:30:45")

    def test_rejects_garbage(self):
        with pytest.raises(ValueError, match="Invalid ISO 8601"):
            parse_timestamp("not-a-timeZ")


class TestStartOfMonth:
    def test_returns_midnight_on_the_first(self):
        dt = datetime(2025, 11, 17, 14, 5, 9, 123, tzinfo=UTC)
        assert start_of_month(dt) == datetime(2025, 11, 1, tzinfo=UTC)

    def test_uses_utc_month(self):
        """A local time early on the 1st may still belong to the previous UTC month."""
        dt = datetime(2025, 12, 1, 1, 0, tzinfo=timezone(timedelta(hours=3)))
        assert start_of_month(dt) == datetime(2025, 11, 1, tzinfo=UTC)
