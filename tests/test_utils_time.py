"""
Tests for utils.time module - UTC timestamps and the monotonic clock.
"""

from datetime import UTC, datetime, timedelta, timezone

import pytest
from freezegun import freeze_time

from browser_oracle.utils.time import monotonic_ms, run_id_from_timestamp, utc_now, utc_timestamp


class TestUtcNow:
    def test_is_timezone_aware_utc(self):
        result = utc_now()
        assert result.tzinfo == UTC

    @freeze_time("2025-11-02 08:30:45")
    def test_frozen_time(self):
        result = utc_now()
        assert (result.year, result.month, result.day) == (2025, 11, 2)
        assert (result.hour, result.minute, result.second) == (8, 30, 45)


class TestUtcTimestamp:
    @freeze_time("2025-11-02 08:30:45.123456")
    def test_format_has_z_suffix_and_no_fraction(self):
        assert utc_timestamp() == "2025-11-02T08:30:45Z"


class TestRunIdFromTimestamp:
    def test_filesystem_safe(self):
        dt = datetime(2025, 11, 2, 8, 30, 45, tzinfo=UTC)
        assert run_id_from_timestamp(dt) == "2025-11-02T08-30-45Z"

    @freeze_time("2025-01-15 23:59:59")
    def test_defaults_to_now(self):
        assert run_id_from_timestamp() == "2025-01-15T23-59-59Z"

    def test_naive_datetime_rejected(self):
        with pytest.raises(ValueError, match="timezone-aware"):
            run_id_from_timestamp(datetime(2025, 11, 2, 8, 30, 45))

    def test_non_utc_offset_keeps_wall_time(self):
        dt = datetime(2025, 11, 2, 8, 30, 45, tzinfo=timezone(timedelta(hours=2)))
        assert run_id_from_timestamp(dt) == "2025-11-02T08-30-45Z"


class TestMonotonicMs:
    def test_is_non_decreasing_integer(self):
        first = monotonic_ms()
        second = monotonic_ms()
        assert isinstance(first, int)
        assert second >= first
