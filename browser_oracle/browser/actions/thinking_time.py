"""
Thinking-time selection in ChatGPT's composer pill menu.

The "Thinking" pill opens a menu with Light / Standard / Extended / Heavy
entries (which subset appears depends on the model). Selection is best
effort by default: a missing pill, menu or option is logged and the run
continues with the site default. strict=True turns those outcomes into
ElementNotFoundError.
"""

import logging
from dataclasses import dataclass

from browser_oracle.config.schema import THINKING_TIMES
from browser_oracle.exceptions import ElementNotFoundError

from ..constants import THINKING_CHIP_SELECTORS
from ..diagnostics import maybe_capture
from ..protocol import ProtocolSession
from .menus import MenuOption, click_option, close_menu, normalize_label, open_menu

logger = logging.getLogger(__name__)

THINKING_MENU_TIMEOUT_MS = 10_000

FAILURE_MESSAGES = {
    "chip-not-found": "Unable to find the Thinking chip button in the composer area.",
    "menu-not-found": "Unable to find the Thinking time dropdown menu.",
    "option-not-found": "Unable to find the requested option in the Thinking time menu.",
}


@dataclass(frozen=True)
class ThinkingTimeOutcome:
    """status is "already-selected", "switched" or a key of FAILURE_MESSAGES."""

    status: str
    label: str | None = None

    @property
    def applied(self) -> bool:
        return self.status in ("already-selected", "switched")


def match_thinking_option(options: list[MenuOption], level: str) -> MenuOption | None:
    """Exact normalized label first, then the first label containing the level word."""
    target = normalize_label(level)
    for option in options:
        if normalize_label(option.label) == target:
            return option
    for option in options:
        if target in normalize_label(option.label).split():
            return option
    return None


def looks_like_thinking_menu(options: list[MenuOption]) -> bool:
    """At least two labels name a thinking time (light, standard, extended, heavy)."""
    words = {word for option in options for word in normalize_label(option.label).split()}
    return len(words.intersection(THINKING_TIMES)) >= 2


async def _select(session: ProtocolSession, level: str) -> ThinkingTimeOutcome:
    options = await open_menu(
        session,
        THINKING_CHIP_SELECTORS,
        text_filter="thinking",
        timeout_ms=THINKING_MENU_TIMEOUT_MS,
    )
    if options is None:
        return ThinkingTimeOutcome("chip-not-found")
    if not options or not looks_like_thinking_menu(options):
        return ThinkingTimeOutcome("menu-not-found")

    option = match_thinking_option(options, level)
    if option is None:
        await close_menu(session)
        return ThinkingTimeOutcome("option-not-found")

    await click_option(session, option)
    status = "already-selected" if option.selected else "switched"
    return ThinkingTimeOutcome(status, option.label)


async def ensure_thinking_time(
    session: ProtocolSession,
    level: str,
    *,
    strict: bool = False,
    diagnostics: bool = False,
) -> ThinkingTimeOutcome:
    """
    Select the thinking level in the composer pill.

    Raises:
        ValueError: If level is not a known thinking time
        ElementNotFoundError: If strict and the pill, menu or option is missing
    """
    level = level.strip().lower()
    if level not in THINKING_TIMES:
        raise ValueError(f"Unknown thinking time: {level!r}")

    outcome = await _select(session, level)
    if outcome.applied:
        suffix = " (already selected)" if outcome.status == "already-selected" else ""
        logger.info(f"Thinking time: {outcome.label or level}{suffix}")
        return outcome

    snapshot = await maybe_capture(
        session, f"thinking-{outcome.status}", enabled=diagnostics, stage="thinking-time"
    )
    if strict:
        raise ElementNotFoundError(
            FAILURE_MESSAGES[outcome.status],
            stage="thinking-time",
            details={"level": level},
            snapshot=snapshot,
        )
    logger.info(
        f"Thinking time: {outcome.status.replace('-', ' ')}; continuing with default."
    )
    return outcome
