"""
Retry configuration for DevTools connections.

Centralized tenacity policies for the two places the engine retries a
connection instead of failing on the first error:

- DevTools readiness: after launching Chrome (or before reusing one), the
  /json/version endpoint is checked a few times with a short linear backoff.
- Auto-reattach: after the protocol connection drops mid-run, the same debug
  endpoint is re-dialled at a fixed interval until a time budget runs out.

Example:
    >>> retrying = create_reattach_retrying(interval_ms=2000, timeout_ms=30000)
    >>> async for attempt in retrying:
    ...     with attempt:
    ...         session = await connect(host, port)
"""

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    stop_after_delay,
    wait_fixed,
    wait_incrementing,
)

from browser_oracle.exceptions import ProtocolError

# ============================================================================
# RETRY CONSTANTS
# ============================================================================

# Total attempts to reach /json/version (1 initial + 2 retries)
DEVTOOLS_MAX_ATTEMPTS = 3

# Linear backoff between readiness checks: 0.5s, 1.0s, ...
DEVTOOLS_WAIT_START_SECONDS = 0.5
DEVTOOLS_WAIT_INCREMENT_SECONDS = 0.5

# Per-request timeout for the readiness check
DEVTOOLS_REQUEST_TIMEOUT = 2.0

# ============================================================================
# RETRY FACTORIES
# ============================================================================


def create_devtools_retrying() -> AsyncRetrying:
    """
    Create an AsyncRetrying controller for DevTools readiness checks.

    Retries on httpx.ConnectError and httpx.TimeoutException only; an HTTP
    error status means something other than Chrome answered and is raised
    immediately.
    """
    return AsyncRetrying(
        stop=stop_after_attempt(DEVTOOLS_MAX_ATTEMPTS),
        wait=wait_incrementing(
            start=DEVTOOLS_WAIT_START_SECONDS,
            increment=DEVTOOLS_WAIT_INCREMENT_SECONDS,
        ),
        retry=retry_if_exception_type((httpx.ConnectError, httpx.TimeoutException)),
        reraise=True,
    )


def create_reattach_retrying(interval_ms: int, timeout_ms: int) -> AsyncRetrying:
    """
    Create an AsyncRetrying controller for reconnecting after a dropped session.

    Retries ProtocolError every interval_ms until timeout_ms has elapsed, then
    re-raises the last ProtocolError.
    """
    return AsyncRetrying(
        stop=stop_after_delay(timeout_ms / 1000),
        wait=wait_fixed(interval_ms / 1000),
        retry=retry_if_exception_type(ProtocolError),
        reraise=True,
    )
