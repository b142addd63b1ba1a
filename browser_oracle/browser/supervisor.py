"""
Lifecycle supervision of the browser process for one run.

LifecycleSupervisor owns everything that must be undone when a run ends,
normally or not:

- SIGINT/SIGTERM/SIGQUIT handlers, installed on the running event loop and
  removed again at teardown so sequential runs in one process never stack
  handlers. The first signal wins; later ones are ignored.
- The launched Chrome process, killed on teardown unless keep_browser is set
  or an exclusive operation (upload, assistant wait) is in flight.
- The profile directory: an ephemeral profile is deleted, a preserved
  (manual-login) profile only has its stale DevTools state cleared.
- Auto-reattach: re-dial the same DevTools endpoint after a dropped
  connection, at a fixed interval within a time budget.

Exit codes on signal teardown: 130 for SIGINT, 1 for SIGTERM/SIGQUIT.
"""

import asyncio
import logging
import shutil
import signal
import sys
from collections.abc import Awaitable, Callable, Iterator
from contextlib import contextmanager
from pathlib import Path

from browser_oracle.exceptions import ProtocolError

from .launcher import LOCAL_HOST, LaunchedChrome
from .polling import sleep_ms
from .profile_state import cleanup_stale_profile_state, should_cleanup_profile_state
from .protocol import ProtocolSession
from .retry_config import create_reattach_retrying

logger = logging.getLogger(__name__)

HANDLED_SIGNALS = tuple(
    sig for sig in (getattr(signal, name, None) for name in ("SIGINT", "SIGTERM", "SIGQUIT")) if sig
)

EXIT_CODE_INTERRUPT = 130
EXIT_CODE_TERMINATED = 1


def exit_code_for(sig: int) -> int:
    """
    Map a termination signal to the process exit code.

    Args:
        sig: Signal number that triggered teardown

    Returns:
        130 for SIGINT (shell convention for Ctrl-C), 1 for anything else

    Example:
        >>> exit_code_for(signal.SIGINT)
        130
    """
    return EXIT_CODE_INTERRUPT if sig == signal.SIGINT else EXIT_CODE_TERMINATED


class LifecycleSupervisor:
    """
    Per-run owner of signal handlers, the Chrome process and its profile.

    Args:
        keep_browser: Leave Chrome running on teardown
        exit_fn: Called with the exit code after signal teardown (sys.exit)
    """

    def __init__(
        self,
        *,
        keep_browser: bool = False,
        exit_fn: Callable[[int], object] = sys.exit,
    ):
        self.keep_browser = keep_browser
        self.chrome: LaunchedChrome | None = None
        self.user_data_dir: Path | None = None
        self.preserve_profile = False
        self._exit_fn = exit_fn
        self._loop: asyncio.AbstractEventLoop | None = None
        self._installed: list[int] = []
        self._handling = False
        self._in_flight = 0
        self._signal_task: asyncio.Task | None = None
        self.torn_down = False

    # ------------------------------------------------------------------
    # Ownership
    # ------------------------------------------------------------------

    def adopt(
        self,
        chrome: LaunchedChrome | None,
        user_data_dir: Path | None,
        *,
        preserve_profile: bool = False,
    ) -> None:
        """Take ownership of a launched Chrome and its profile directory."""
        self.chrome = chrome
        self.user_data_dir = user_data_dir
        self.preserve_profile = preserve_profile

    @property
    def in_flight(self) -> bool:
        return self._in_flight > 0

    @contextmanager
    def exclusive(self) -> Iterator[None]:
        """Mark an operation that must not lose its browser to a signal."""
        self._in_flight += 1
        try:
            yield
        finally:
            self._in_flight -= 1

    # ------------------------------------------------------------------
    # Signals
    # ------------------------------------------------------------------

    def install(self) -> None:
        """
        Register SIGINT/SIGTERM/SIGQUIT handlers on the running loop.

        Idempotent. Signals the platform cannot hook (Windows, non-main
        thread) are skipped with a debug log.
        """
        if self._installed:
            return
        self._loop = asyncio.get_running_loop()
        for sig in HANDLED_SIGNALS:
            try:
                self._loop.add_signal_handler(sig, self._on_signal, sig)
            except (NotImplementedError, RuntimeError):
                logger.debug(f"Signal handler for {sig} not supported on this platform")
                continue
            self._installed.append(sig)

    def remove(self) -> None:
        """Unregister whatever install() registered."""
        if self._loop is None:
            return
        for sig in self._installed:
            self._loop.remove_signal_handler(sig)
        self._installed.clear()

    @property
    def installed(self) -> bool:
        return bool(self._installed)

    def _on_signal(self, sig: int) -> None:
        if self._handling:
            return
        self._handling = True
        self._signal_task = asyncio.get_running_loop().create_task(self.handle_signal(sig))

    async def handle_signal(self, sig: int) -> None:
        """
        Tear down for a signal, then exit.

        Chrome is left running when keep_browser is set or an exclusive()
        operation is in flight, so a pending answer can still be recovered
        by reattaching. exit_fn is always called.

        Args:
            sig: Received signal number
        """
        name = signal.Signals(sig).name
        leave_running = self.keep_browser or self.in_flight
        try:
            if leave_running:
                suffix = " (assistant response pending)" if self.in_flight else ""
                logger.warning(f"Received {name}; leaving Chrome running{suffix}")
            else:
                logger.warning(f"Received {name}; terminating Chrome process")
                await self._kill_and_clean()
        finally:
            self.remove()
            self._exit_fn(exit_code_for(sig))

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    async def _kill_and_clean(self) -> None:
        chrome = self.chrome
        if chrome is not None:
            await chrome.kill()
        if self.user_data_dir is None:
            return
        if self.preserve_profile:
            stale = await should_cleanup_profile_state(
                self.user_data_dir,
                chrome_stopped=chrome is not None and chrome.stopped,
                host=chrome.host if chrome is not None else LOCAL_HOST,
            )
            if stale:
                cleanup_stale_profile_state(self.user_data_dir)
        else:
            shutil.rmtree(self.user_data_dir, ignore_errors=True)
            logger.debug(f"Removed ephemeral profile {self.user_data_dir}")

    async def teardown(self, session: ProtocolSession | None = None) -> None:
        """Close the session, then stop Chrome and clean the profile unless kept."""
        if self.torn_down:
            return
        self.torn_down = True
        try:
            if session is not None:
                await session.close()
        except ProtocolError as e:
            logger.debug(f"Closing DevTools session failed: {e}")
        finally:
            if self.keep_browser:
                if self.chrome is not None:
                    logger.info(
                        f"Leaving Chrome running on {self.chrome.host}:{self.chrome.port}"
                    )
            else:
                await self._kill_and_clean()
            self.remove()

    # ------------------------------------------------------------------
    # Reattach
    # ------------------------------------------------------------------

    async def reattach(
        self,
        connect: Callable[[], Awaitable[ProtocolSession]],
        *,
        delay_ms: int,
        interval_ms: int,
        timeout_ms: int,
    ) -> ProtocolSession:
        """
        Re-dial DevTools after a dropped connection.

        Raises:
            ProtocolError: If no connection succeeded within timeout_ms
        """
        if timeout_ms <= 0:
            raise ProtocolError("Auto-reattach is disabled")
        await sleep_ms(delay_ms)
        attempts = 0
        try:
            async for attempt in create_reattach_retrying(interval_ms, timeout_ms):
                with attempt:
                    attempts += 1
                    session = await connect()
        except ProtocolError as e:
            raise ProtocolError(
                f"Auto-reattach failed after {attempts} attempts: {e}",
                stage="reattach",
            ) from e
        logger.info(f"Reattached to Chrome DevTools after {attempts} attempt(s)")
        return session
