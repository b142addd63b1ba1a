"""
Time helpers for browser-oracle.

Wall-clock values are always timezone-aware UTC. Durations and deadlines use
the monotonic clock so that a system clock change mid-run cannot stretch or
shrink a poll budget.

Provides:
- utc_now(): current UTC datetime
- utc_timestamp(): ISO 8601 string with 'Z' suffix (logs, lock payloads)
- run_id_from_timestamp(): filesystem-safe slug (bundle and profile dir names)
- monotonic_ms(): monotonic clock reading in milliseconds
"""

import time
from datetime import UTC, datetime


def utc_now() -> datetime:
    """Return the current time as a timezone-aware UTC datetime."""
    return datetime.now(UTC)


def utc_timestamp() -> str:
    """
    Return the current time formatted as ``YYYY-MM-DDTHH:MM:SSZ``.

    Used for log records and for the ``createdAt`` field written into
    profile lock markers.
    """
    return utc_now().strftime("%Y-%m-%dT%H:%M:%SZ")


def run_id_from_timestamp(dt: datetime | None = None) -> str:
    """
    Build a filesystem-safe slug like ``2025-11-02T08-30-45Z``.

    Args:
        dt: Timezone-aware datetime. Defaults to utc_now().

    Raises:
        ValueError: If dt is naive.
    """
    if dt is None:
        dt = utc_now()

    if dt.tzinfo is None:
        raise ValueError(
            "Datetime must be timezone-aware (use timezone.utc). "
            "Got naive datetime. Use utc_now() or ensure dt has tzinfo set."
        )

    return dt.strftime("%Y-%m-%dT%H-%M-%SZ")



def monotonic_ms() -> int:
    """Return the monotonic clock in whole milliseconds."""
    return int(time.monotonic() * 1000)
