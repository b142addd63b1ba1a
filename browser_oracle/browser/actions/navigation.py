"""
Page loading and readiness checks.

navigate() loads the chat URL and waits for the document to become ready.
The three ensure_* checks then classify why the composer may be missing:

1. ensure_not_blocked(): a challenge wall (Cloudflare interstitial or a
   generic "access denied" page) raises BlockedError
2. ensure_logged_in(): no composer selector matches within the input
   timeout, so the profile is signed out; raises LoginRequiredError
3. ensure_prompt_ready(): the primary composer selector (then the site's
   fallback list) must be present and enabled; raises ConfigurationError
"""

import json
import logging

from browser_oracle.exceptions import (
    BlockedError,
    ConfigurationError,
    LoginRequiredError,
    ProtocolError,
)

from ..constants import (
    BLOCKED_TITLES,
    CLOUDFLARE_SCRIPT_SELECTOR,
    CLOUDFLARE_TITLE,
    LOGIN_BUTTON_SELECTORS,
    PROMPT_PRIMARY_SELECTOR,
)
from ..diagnostics import maybe_capture
from ..polling import poll_until
from ..protocol import ProtocolSession, tagged_script
from ..sites.base import SiteObserver
from .dom import resolve_first_selector

logger = logging.getLogger(__name__)

READY_STATE_INTERVAL_MS = 100
LOGIN_POLL_INTERVAL_MS = 200
PROMPT_POLL_INTERVAL_MS = 200

READY_STATE_SCRIPT = tagged_script("ready-state", "document.readyState")

BLOCK_PROBE_SCRIPT = tagged_script(
    "block-check",
    f"""(() => ({{
  title: document.title || '',
  challengeScript: Boolean(document.querySelector({json.dumps(CLOUDFLARE_SCRIPT_SELECTOR)})),
  loginButton: {json.dumps(list(LOGIN_BUTTON_SELECTORS))}.some((selector) => Boolean(document.querySelector(selector))),
}}))()""",
)


async def navigate(session: ProtocolSession, url: str, *, timeout_ms: int) -> None:
    """
    Load url and wait until the document is interactive.

    Raises:
        ProtocolError: If navigation fails or the page never becomes ready
    """
    logger.info(f"Navigating to {url}")
    await session.navigate(url)

    async def check():
        return await session.evaluate(READY_STATE_SCRIPT)

    outcome = await poll_until(
        check,
        timeout_ms=timeout_ms,
        interval_ms=READY_STATE_INTERVAL_MS,
        done=lambda state: state in ("interactive", "complete"),
    )
    if not outcome.satisfied:
        raise ProtocolError(
            "Page did not reach ready state in time",
            stage="navigate",
            details={"url": url, "ready_state": outcome.value},
        )


def classify_block(payload: dict | None) -> str | None:
    """
    Classify a block-check payload.

    Returns:
        "challenge" for a recognised interstitial, "unknown" for a generic
        block page, None when the page looks normal
    """
    if not isinstance(payload, dict):
        return None
    title = str(payload.get("title") or "").lower()
    if CLOUDFLARE_TITLE in title or payload.get("challengeScript"):
        return "challenge"
    if any(blocked in title for blocked in BLOCKED_TITLES):
        return "unknown"
    return None


async def ensure_not_blocked(
    session: ProtocolSession,
    *,
    headless: bool,
    diagnostics: bool = False,
) -> None:
    """
    Raises:
        BlockedError: If a challenge wall is in front of the chat UI
    """
    payload = await session.evaluate(BLOCK_PROBE_SCRIPT)
    kind = classify_block(payload)
    if kind is None:
        return

    if kind == "challenge":
        logger.warning("Cloudflare anti-bot page detected")
        if headless:
            message = (
                "Cloudflare challenge detected in headless mode. "
                "Re-run without --headless so you can solve the challenge."
            )
        else:
            message = (
                "Cloudflare challenge detected. Complete the \"Just a moment...\" check "
                "in the open browser, then rerun."
            )
    else:
        title = payload.get("title") or "blocked page"
        logger.warning(f"Blocked page detected: {title}")
        message = f"The chat page is blocked ({title}). Open it in a normal browser to resolve."

    snapshot = await maybe_capture(session, "blocked", enabled=diagnostics, stage="navigate")
    raise BlockedError(message, kind=kind, stage="navigate", snapshot=snapshot)


async def ensure_logged_in(
    session: ProtocolSession,
    observer: SiteObserver,
    *,
    timeout_ms: int,
    diagnostics: bool = False,
) -> str:
    """
    Wait for any of the site's composer selectors to appear.

    Returns:
        The selector that matched first

    Raises:
        LoginRequiredError: If none matched before timeout_ms
    """

    async def check():
        return await resolve_first_selector(session, observer.input_selectors)

    outcome = await poll_until(check, timeout_ms=timeout_ms, interval_ms=LOGIN_POLL_INTERVAL_MS)
    if outcome.satisfied:
        logger.debug(f"Composer found via {outcome.value}")
        return outcome.value

    payload = await session.evaluate(BLOCK_PROBE_SCRIPT)
    hint = " (a login button is showing)" if isinstance(payload, dict) and payload.get("loginButton") else ""
    snapshot = await maybe_capture(session, "login-required", enabled=diagnostics, stage="login")
    raise LoginRequiredError(
        f"No prompt composer appeared within {timeout_ms // 1000}s{hint}. "
        "Sign in to the chat site in this browser profile, then retry.",
        stage="login",
        snapshot=snapshot,
    )


async def ensure_prompt_ready(
    session: ProtocolSession,
    observer: SiteObserver,
    *,
    timeout_ms: int,
    diagnostics: bool = False,
) -> str:
    """
    Wait for an enabled composer: the primary selector first, then the
    site's own list in order.

    Raises:
        ConfigurationError: If no enabled composer appeared before timeout_ms
    """
    candidates = (PROMPT_PRIMARY_SELECTOR,) + tuple(
        selector for selector in observer.input_selectors if selector != PROMPT_PRIMARY_SELECTOR
    )

    async def check():
        return await resolve_first_selector(session, candidates, require_enabled=True)

    outcome = await poll_until(check, timeout_ms=timeout_ms, interval_ms=PROMPT_POLL_INTERVAL_MS)
    if not outcome.satisfied:
        snapshot = await maybe_capture(
            session, "prompt-textarea", enabled=diagnostics, stage="prompt-ready"
        )
        raise ConfigurationError(
            "Prompt textarea did not appear before timeout",
            stage="prompt-ready",
            snapshot=snapshot,
        )
    logger.debug(f"Prompt textarea ready ({outcome.value})")
    return outcome.value
