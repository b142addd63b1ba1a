"""
Bounded polling skeleton shared by every wait in the engine.

Chat front ends publish no "done" events, so the engine samples the page on
a fixed interval and stops at the first sample that satisfies a predicate or
at an explicit deadline. Every loop checks at least once and never runs past
its deadline plus one interval.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any


@dataclass
class PollOutcome:
    """Result of poll_until(): the last checked value and whether it satisfied."""

    satisfied: bool
    value: Any
    attempts: int
    elapsed_ms: int


async def sleep_ms(ms: int | float) -> None:
    """asyncio.sleep in milliseconds; non-positive values return immediately."""
    if ms > 0:
        await asyncio.sleep(ms / 1000)


async def poll_until(
    check: Callable[[], Awaitable[Any]],
    *,
    timeout_ms: int,
    interval_ms: int,
    done: Callable[[Any], bool] = bool,
) -> PollOutcome:
    """
    Call check() every interval_ms until done(value) or the deadline passes.

    Exceptions raised by check() propagate; callers that want to tolerate a
    flaky check catch inside it.
    """
    loop = asyncio.get_running_loop()
    started = loop.time()
    deadline = started + timeout_ms / 1000
    attempts = 0

    while True:
        value = await check()
        attempts += 1
        now = loop.time()
        if done(value):
            return PollOutcome(True, value, attempts, int((now - started) * 1000))
        remaining = deadline - now
        if remaining <= 0:
            return PollOutcome(False, value, attempts, int((now - started) * 1000))
        await asyncio.sleep(min(interval_ms / 1000, remaining))
