"""
run_browser_automation(): one prompt in, one BrowserRunResult out.

Flow of a run:

1. Install the LifecycleSupervisor (signal teardown for this run only)
2. Attach: remote Chrome, a reused or freshly launched manual-login Chrome
   under ProfileLock, or a new Chrome on an ephemeral profile (optionally a
   copy of the user's real profile); then replay cookies per the CookiePlan
3. Navigate and classify the page (blocked / logged out / composer ready)
4. Site preparation, model selection and thinking time
5. Clear the composer and upload attachments (marked exclusive)
6. Record the baseline turn count, submit, verify the commit
7. Wait for the assistant answer with heartbeat logging, auto-reattach on a
   dropped connection and one delayed recheck on timeout
8. Capture markdown through the copy control and build the result

Teardown always runs: the DevTools session is closed and, unless the run
keeps the browser, Chrome is stopped and an ephemeral profile deleted.

If the composer truncates the prompt (PromptTooLargeError) and a
FallbackSubmission was supplied, the fallback is submitted once on a fresh
page.
"""

import asyncio
import functools
import logging
import os
import tempfile
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from pathlib import Path

from browser_oracle.config.schema import BrowserAutomationConfig
from browser_oracle.exceptions import (
    AssistantTimeoutError,
    BrowserOracleError,
    PromptTooLargeError,
    ProtocolError,
)
from browser_oracle.utils.cache import TTLCache
from browser_oracle.utils.logging import log_with_context
from browser_oracle.utils.time import monotonic_ms, run_id_from_timestamp

from .actions import (
    AssistantResponseReader,
    capture_markdown,
    clear_composer,
    ensure_logged_in,
    ensure_model_selection,
    ensure_not_blocked,
    ensure_prompt_ready,
    ensure_thinking_time,
    navigate,
    read_turn_count,
    submit_prompt,
    upload_file,
    wait_for_completion,
)
from .cookies import sync_cookies
from .diagnostics import diagnostics_enabled
from .heartbeat import Heartbeat
from .launcher import LOCAL_HOST, LaunchedChrome, hide_chrome_window, launch_chrome
from .models import AssistantAnswer, BrowserAttachment, BrowserRunResult, FallbackSubmission, estimate_tokens
from .polling import poll_until
from .profile_state import (
    ProfileLock,
    cleanup_stale_profile_state,
    is_process_alive,
    read_chrome_pid,
    read_devtools_port,
    verify_devtools_reachable,
)
from .profile_sync import seed_user_data_dir
from .protocol import ProtocolSession, connect, connect_with_new_tab
from .sites import SiteObserver, SiteRegistry
from .supervisor import LifecycleSupervisor

logger = logging.getLogger(__name__)

REUSE_POLL_INTERVAL_MS = 500
# Thinking levels that also switch Grok into its hard mode.
HARD_MODE_LEVELS = ("extended", "heavy")


@dataclass
class BrowserHandle:
    """
    A connected browser for one run.

    Attributes:
        session: Current DevTools session (replaced on reattach)
        reconnect: Opens a new session to the same DevTools endpoint
        chrome: The Chrome process, None for remote Chrome
        user_data_dir: Profile directory Chrome runs on, if known
        cookies_applied: Cookies replayed into the browser
    """

    session: ProtocolSession
    reconnect: Callable[[], Awaitable[ProtocolSession]]
    chrome: LaunchedChrome | None = None
    user_data_dir: Path | None = None
    cookies_applied: int = 0


AttachFn = Callable[[BrowserAutomationConfig, LifecycleSupervisor], Awaitable[BrowserHandle]]


# ============================================================================
# Attach
# ============================================================================


async def find_reusable_chrome(
    profile_dir: Path,
    *,
    wait_ms: int = 0,
) -> LaunchedChrome | None:
    """
    A live Chrome already serving profile_dir, or None.

    When the recorded Chrome is alive but DevTools is not answering yet
    (another run may be starting it), wait up to wait_ms for it.
    """
    pid = read_chrome_pid(profile_dir)
    if pid and not is_process_alive(pid):
        return None

    async def check():
        port = read_devtools_port(profile_dir)
        if not port:
            return None
        ok, error = await verify_devtools_reachable(LOCAL_HOST, port)
        if not ok:
            logger.debug(f"DevTools on port {port} not reachable: {error}")
            return None
        return port

    budget = wait_ms if pid else 0
    outcome = await poll_until(check, timeout_ms=budget, interval_ms=REUSE_POLL_INTERVAL_MS)
    if not outcome.satisfied:
        return None
    logger.info(f"Reusing running Chrome on port {outcome.value} (pid {pid or 'unknown'})")
    return LaunchedChrome(port=outcome.value, host=LOCAL_HOST, pid=pid, user_data_dir=profile_dir)


def _should_sync_cookies(config: BrowserAutomationConfig) -> bool:
    if config.profile_copy:
        return False
    if config.manual_login:
        return config.manual_login_cookie_sync or bool(config.inline_cookies)
    return True


async def attach_browser(
    config: BrowserAutomationConfig,
    supervisor: LifecycleSupervisor,
    *,
    cache: TTLCache | None = None,
    env: Mapping[str, str] | None = None,
) -> BrowserHandle:
    """
    Connect to the browser the config asks for and hand it to supervisor.

    Raises:
        BrowserNotFoundError, ProcessError, ProtocolError, LockTimeoutError,
        ProfileNotFoundError, CookieSyncError
    """
    if config.remote_chrome is not None:
        host, port = config.remote_chrome.host, config.remote_chrome.port
        logger.info(f"Attaching to remote Chrome at {host}:{port}")
        session = await connect_with_new_tab(host, port, strict=config.strict_tab_isolation)
        supervisor.adopt(None, None)
        handle = BrowserHandle(session=session, reconnect=functools.partial(connect, host, port))
    elif config.manual_login:
        profile_dir = config.resolved_profile_dir
        async with ProfileLock(profile_dir, timeout_ms=config.profile_lock_timeout_ms):
            chrome = await find_reusable_chrome(profile_dir, wait_ms=config.reuse_chrome_wait_ms)
            if chrome is None:
                cleanup_stale_profile_state(profile_dir, remove_chrome_locks=True)
                chrome = await launch_chrome(config, profile_dir, env=env)
            supervisor.adopt(chrome, profile_dir, preserve_profile=True)
            session = await connect_with_new_tab(
                chrome.host, chrome.port, strict=config.strict_tab_isolation
            )
        handle = BrowserHandle(
            session=session,
            reconnect=functools.partial(connect, chrome.host, chrome.port),
            chrome=chrome,
            user_data_dir=profile_dir,
        )
    else:
        user_data_dir = Path(tempfile.mkdtemp(prefix=f"oracle-browser-{run_id_from_timestamp()}-"))
        supervisor.adopt(None, user_data_dir)
        if config.profile_copy:
            await asyncio.to_thread(
                seed_user_data_dir,
                user_data_dir,
                config.chrome_profile,
                explicit_path=config.chrome_cookie_path,
            )
        chrome = await launch_chrome(config, user_data_dir, env=env)
        supervisor.adopt(chrome, user_data_dir)
        session = await connect(chrome.host, chrome.port)
        handle = BrowserHandle(
            session=session,
            reconnect=functools.partial(connect, chrome.host, chrome.port),
            chrome=chrome,
            user_data_dir=user_data_dir,
        )

    if config.hide_window and handle.chrome is not None and handle.chrome.running:
        await hide_chrome_window(handle.chrome)

    if _should_sync_cookies(config):
        handle.cookies_applied = await sync_cookies(handle.session, config, cache=cache)
    return handle


# ============================================================================
# Page preparation
# ============================================================================


async def prepare_page(
    session: ProtocolSession,
    observer: SiteObserver,
    config: BrowserAutomationConfig,
    *,
    diagnostics: bool = False,
) -> None:
    """Load the chat page, check it is usable, and apply model settings."""
    await navigate(session, config.url, timeout_ms=config.navigation_timeout_ms)
    await ensure_not_blocked(session, headless=config.headless, diagnostics=diagnostics)
    await ensure_logged_in(
        session, observer, timeout_ms=config.input_timeout_ms, diagnostics=diagnostics
    )
    await ensure_prompt_ready(
        session, observer, timeout_ms=config.input_timeout_ms, diagnostics=diagnostics
    )
    await observer.prepare(session, hard_mode=config.thinking_time in HARD_MODE_LEVELS)

    if observer.supports_model_selection:
        await ensure_model_selection(
            session,
            config.desired_model,
            strategy=config.model_strategy,
            diagnostics=diagnostics,
        )
    if observer.supports_thinking_time and config.thinking_time:
        await ensure_thinking_time(session, config.thinking_time, diagnostics=diagnostics)


# ============================================================================
# One turn
# ============================================================================


class TurnRunner:
    """Performs one submit-and-read turn on a BrowserHandle."""

    def __init__(
        self,
        handle: BrowserHandle,
        observer: SiteObserver,
        config: BrowserAutomationConfig,
        supervisor: LifecycleSupervisor,
        *,
        run_logger: logging.Logger,
        diagnostics: bool = False,
    ):
        self.handle = handle
        self.observer = observer
        self.config = config
        self.supervisor = supervisor
        self.log = run_logger
        self.diagnostics = diagnostics
        self.conversation_url: str | None = None

    @property
    def reattach_enabled(self) -> bool:
        return self.config.auto_reattach_timeout_ms > 0

    async def submit(self, prompt: str, attachments: list[BrowserAttachment]) -> int | None:
        """
        Upload attachments, then type and commit the prompt.

        Uploads run inside supervisor.exclusive() so a signal cannot kill
        Chrome halfway through. Against a remote Chrome files are sent by
        content.

        Args:
            prompt: Final composed prompt text
            attachments: Files to upload before the prompt

        Returns:
            Assistant turn count before submission; read_answer() only accepts
            turns past it
        """
        session = self.handle.session
        await clear_composer(session, diagnostics=self.diagnostics)

        if attachments:
            with self.supervisor.exclusive():
                for attachment in attachments:
                    await upload_file(
                        session,
                        attachment,
                        register_timeout_ms=self.config.attachment_register_timeout_ms,
                        transfer=self.config.remote_chrome is not None,
                        diagnostics=self.diagnostics,
                    )
                await wait_for_completion(
                    session,
                    self.observer,
                    timeout_ms=self.config.attachment_timeout_ms,
                    diagnostics=self.diagnostics,
                )

        baseline = await read_turn_count(session, self.observer)
        committed = await submit_prompt(
            session,
            self.observer,
            prompt,
            attachment_names=[attachment.name for attachment in attachments],
            baseline_turns=baseline,
            commit_timeout_ms=self.config.effective_commit_timeout_ms,
            diagnostics=self.diagnostics,
        )
        self.log.info(f"Prompt committed (baseline turns={baseline}, now={committed})")
        try:
            self.conversation_url = await session.current_url()
        except ProtocolError as e:
            logger.debug(f"Reading conversation URL failed: {e}")
        return baseline

    async def _reattach(self) -> ProtocolSession:
        session = await self.supervisor.reattach(
            self.handle.reconnect,
            delay_ms=self.config.auto_reattach_delay_ms,
            interval_ms=self.config.auto_reattach_interval_ms,
            timeout_ms=self.config.auto_reattach_timeout_ms,
        )
        self.handle.session = session
        if self.conversation_url and await session.current_url() != self.conversation_url:
            await navigate(
                session, self.conversation_url, timeout_ms=self.config.navigation_timeout_ms
            )
        return session

    async def read_answer(self, baseline: int | None) -> AssistantAnswer:
        """Wait for the assistant turn after baseline, logging a heartbeat meanwhile."""
        reader = AssistantResponseReader(
            self.handle.session, self.observer, baseline=baseline, diagnostics=self.diagnostics
        )
        started = monotonic_ms()
        heartbeat = Heartbeat(
            self.config.heartbeat_interval_ms or 0,
            lambda: f"Still waiting for the assistant ({(monotonic_ms() - started) // 1000}s elapsed)",
            is_active=lambda: reader.active,
            log=self.log,
        )
        heartbeat.start()
        try:
            with self.supervisor.exclusive():
                return await self._wait(reader, started)
        finally:
            await heartbeat.stop()

    async def _wait(self, reader: AssistantResponseReader, started: int) -> AssistantAnswer:
        timed_out_once = False
        while True:
            remaining = max(1, self.config.timeout_ms - (monotonic_ms() - started))
            try:
                return await reader.wait(
                    remaining,
                    recheck_delay_ms=self.config.assistant_recheck_delay_ms,
                    recheck_timeout_ms=self.config.assistant_recheck_timeout_ms,
                )
            except ProtocolError as e:
                if not (self.reattach_enabled and self.handle.session.lost):
                    raise
                self.log.warning(f"DevTools connection lost while waiting ({e}); reattaching")
                reader.session = await self._reattach()
            except AssistantTimeoutError:
                if timed_out_once or not self.reattach_enabled:
                    raise
                timed_out_once = True
                self.log.warning("Assistant response timed out; reattaching for a final read")
                reader.session = await self._reattach()
                answer = await reader.poll(self.config.assistant_recheck_timeout_ms or 1)
                if answer is None:
                    raise
                answer.recovered = True
                return answer


# ============================================================================
# Entry point
# ============================================================================


async def run_browser_automation(
    prompt: str,
    attachments: list[BrowserAttachment] | None = None,
    config: BrowserAutomationConfig | None = None,
    logger: logging.Logger | None = None,
    *,
    fallback: FallbackSubmission | None = None,
    attach: AttachFn | None = None,
    supervisor: LifecycleSupervisor | None = None,
    cache: TTLCache | None = None,
) -> BrowserRunResult:
    """
    Send prompt (and attachments) through the chat UI and return the answer.

    Args:
        prompt: Composer text
        attachments: Files to upload before sending
        config: Run settings (defaults apply when omitted)
        logger: Logger for run progress; the module logger when omitted
        fallback: Shorter submission tried once if the composer truncates
        attach: Replacement for attach_browser (remote setups, tests)
        supervisor: Replacement LifecycleSupervisor
        cache: TTL cache for keychain and cookie lookups

    Raises:
        BrowserOracleError: Any failure; non-engine exceptions are wrapped
            with stage "execute-browser"
    """
    config = config or BrowserAutomationConfig()
    run_logger = logger or logging.getLogger(__name__)
    diagnostics = diagnostics_enabled(config.debug, run_logger)
    supervisor = supervisor or LifecycleSupervisor(keep_browser=config.keep_browser)
    attach = attach or functools.partial(attach_browser, cache=cache)
    started = monotonic_ms()
    handle: BrowserHandle | None = None

    supervisor.install()
    try:
        handle = await attach(config, supervisor)
        observer = SiteRegistry.for_url(config.url)
        run_logger.info(f"Driving {observer.name} at {config.url}")
        await prepare_page(handle.session, observer, config, diagnostics=diagnostics)

        turn = TurnRunner(
            handle, observer, config, supervisor, run_logger=run_logger, diagnostics=diagnostics
        )
        try:
            baseline = await turn.submit(prompt, list(attachments or []))
        except PromptTooLargeError:
            if fallback is None:
                raise
            run_logger.warning("Composer truncated the prompt; retrying with the fallback submission")
            await prepare_page(handle.session, observer, config, diagnostics=diagnostics)
            baseline = await turn.submit(fallback.prompt, list(fallback.attachments))

        answer = await turn.read_answer(baseline)
        markdown = await capture_markdown(handle.session, observer, answer)
        answer.markdown = markdown

        tab_url = None
        try:
            tab_url = await handle.session.current_url()
        except ProtocolError as e:
            run_logger.debug(f"Reading tab URL failed: {e}")

        took_ms = monotonic_ms() - started
        log_with_context(
            run_logger,
            logging.INFO,
            f"Captured assistant answer in {took_ms / 1000:.1f}s",
            context={
                "site": observer.name,
                "chars": len(answer.text),
                "turn_index": answer.turn_index,
                "recovered": answer.recovered,
                "markdown": markdown is not None,
            },
        )
        chrome = handle.chrome
        return BrowserRunResult(
            answer_text=answer.text,
            answer_markdown=markdown or answer.text,
            took_ms=took_ms,
            answer_tokens=estimate_tokens(answer.text),
            answer_chars=len(answer.text),
            answer_html=answer.html,
            chrome_pid=chrome.pid if chrome else None,
            chrome_port=handle.session.port,
            chrome_host=handle.session.host,
            user_data_dir=str(handle.user_data_dir) if handle.user_data_dir else None,
            chrome_target_id=handle.session.target_id,
            tab_url=tab_url,
            controller_pid=os.getpid(),
            meta=dict(answer.meta),
        )
    except BrowserOracleError:
        raise
    except Exception as e:
        raise BrowserOracleError(
            str(e) or "Browser automation failed.", stage="execute-browser"
        ) from e
    finally:
        await supervisor.teardown(handle.session if handle else None)
