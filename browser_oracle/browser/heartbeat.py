"""Periodic progress logging while a long wait is in progress."""

import asyncio
import logging
from collections.abc import Callable

logger = logging.getLogger(__name__)


class Heartbeat:
    """
    Background task that logs a progress line every interval_ms.

    The task stops itself once is_active() returns False, and stop() cancels
    it explicitly. A failing message callback is logged at debug level and
    the beat continues.

    Example:
        >>> beat = Heartbeat(10_000, lambda: f"waiting {elapsed()}s", is_active=lambda: waiting)
        >>> beat.start()
        >>> ...
        >>> await beat.stop()
    """

    def __init__(
        self,
        interval_ms: int,
        message: Callable[[], str],
        *,
        is_active: Callable[[], bool] = lambda: True,
        log: logging.Logger | None = None,
    ):
        self.interval_ms = interval_ms
        self._message = message
        self._is_active = is_active
        self._log = log or logger
        self._task: asyncio.Task | None = None
        self.beats = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Begin beating in a background task. No-op when already running or interval <= 0."""
        if self.interval_ms <= 0 or self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_ms / 1000)
            if not self._is_active():
                return
            try:
                text = self._message()
            except Exception as e:  # noqa: BLE001 - message callbacks are caller code
                self._log.debug(f"Heartbeat message failed: {e}")
                continue
            self.beats += 1
            self._log.info(text)

    async def stop(self) -> None:
        """Cancel the beat task and wait for it to finish."""
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
