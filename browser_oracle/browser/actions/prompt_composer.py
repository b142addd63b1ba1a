"""
Composer control: clear, fill, send, and verify the turn was committed.

submit_prompt() focuses the composer, types with Input.insertText, checks
the text landed (injecting it directly when the editor swallowed the
insert), refuses prompts the composer visibly truncated, then clicks the
send control or presses Enter.

verify_committed() is the only evidence that a prompt was sent: the
conversation must show a new turn containing the prompt. A cleared
composer with a stop control is not enough on its own, since the page can
clear the composer and still drop the send.
"""

import json
import logging

from browser_oracle.exceptions import (
    ElementNotFoundError,
    PromptNotCommittedError,
    PromptTooLargeError,
    ProtocolError,
)

from ..constants import ATTACHMENT_CHIP_SELECTORS, PROMPT_FALLBACK_SELECTOR, PROMPT_PRIMARY_SELECTOR
from ..diagnostics import maybe_capture
from ..models import ConversationObservation
from ..polling import poll_until, sleep_ms
from ..protocol import ProtocolSession, tagged_script
from ..sites.base import SiteObserver
from .dom import CLICK_DISPATCHER, VALUE_READER

logger = logging.getLogger(__name__)

CLEAR_SETTLE_MS = 250
INSERT_SETTLE_MS = 500
SEND_BUTTON_TIMEOUT_MS = 8_000
SEND_BUTTON_INTERVAL_MS = 100
ATTACHMENT_READY_INTERVAL_MS = 150
COMMIT_POLL_INTERVAL_MS = 100

# Prompts this long are checked for silent truncation by the composer.
LARGE_PROMPT_CHARS = 50_000
TRUNCATION_TOLERANCE_CHARS = 2_000
PROMPT_PREFIX_CHARS = 120
# Shorter prefixes match too much unrelated text.
MIN_PREFIX_MATCH_CHARS = 30

_PRIMARY = json.dumps(PROMPT_PRIMARY_SELECTOR)
_FALLBACK = json.dumps(PROMPT_FALLBACK_SELECTOR)
_CHIPS = json.dumps(", ".join(ATTACHMENT_CHIP_SELECTORS))

# Lowercases, strips markdown code markers (keeping their content) and
# collapses whitespace, so rendered turns compare equal to the raw prompt.
NORMALIZE_JS = r"""const normalize = (value) => {
    let text = String(value || '').toLowerCase();
    text = text.replace(/```[^\n]*\n([\s\S]*?)```/g, ' $1 ');
    text = text.replace(/```/g, ' ');
    text = text.replace(/`([^`]*)`/g, '$1');
    return text.replace(/\s+/g, ' ').trim();
  };"""

CLEAR_SCRIPT = tagged_script(
    "clear-composer",
    f"""(() => {{
  const wipe = (node) => {{
    if (!node) return false;
    if (node instanceof HTMLTextAreaElement || node instanceof HTMLInputElement) node.value = '';
    else node.textContent = '';
    node.dispatchEvent(new InputEvent('input', {{ bubbles: true, data: '', inputType: 'deleteByCut' }}));
    node.dispatchEvent(new Event('change', {{ bubbles: true }}));
    return true;
  }};
  let cleared = false;
  for (const node of [
    document.querySelector({_FALLBACK}),
    document.querySelector({_PRIMARY}),
    document.querySelector('[contenteditable="true"]'),
  ]) {{
    cleared = wipe(node) || cleared;
  }}
  return {{ cleared }};
}})()""",
)


def focus_script(observer: SiteObserver) -> str:
    return tagged_script(
        "focus-composer",
        f"""(() => {{
  {CLICK_DISPATCHER}
  for (const selector of {json.dumps(list(observer.input_selectors))}) {{
    const node = document.querySelector(selector);
    if (!node) continue;
    dispatchClickSequence(node);
    if (typeof node.focus === 'function') node.focus();
    const selection = node.ownerDocument.getSelection && node.ownerDocument.getSelection();
    if (selection) {{
      const range = node.ownerDocument.createRange();
      range.selectNodeContents(node);
      range.collapse(false);
      selection.removeAllRanges();
      selection.addRange(range);
    }}
    return {{ focused: true, selector }};
  }}
  return {{ focused: false }};
}})()""",
    )


def composer_text_script(observer: SiteObserver) -> str:
    """Script returning the longest text currently held by any composer candidate."""
    return tagged_script(
        "composer-text",
        f"""(() => {{
  {VALUE_READER}
  const selectors = {json.dumps(list(observer.input_selectors))};
  const active = document.activeElement;
  const candidates = [
    document.querySelector({_PRIMARY}),
    document.querySelector({_FALLBACK}),
    selectors.map((selector) => document.querySelector(selector)).find(Boolean) || null,
    active && selectors.some((selector) => active.matches && active.matches(selector)) ? active : null,
  ];
  return candidates.map(readValue).reduce((longest, text) => (text.length > longest.length ? text : longest), '');
}})()""",
    )


def inject_text_script(observer: SiteObserver, prompt: str) -> str:
    """Force prompt into the composer with synthetic input events."""
    return tagged_script(
        "inject-prompt",
        f"""(() => {{
  const TEXT = {json.dumps(prompt)};
  const fire = (node) => node.dispatchEvent(new InputEvent('input', {{ bubbles: true, data: TEXT, inputType: 'insertFromPaste' }}));
  const fallback = document.querySelector({_FALLBACK});
  if (fallback) {{
    fallback.value = TEXT;
    fire(fallback);
    fallback.dispatchEvent(new Event('change', {{ bubbles: true }}));
  }}
  const editor = document.querySelector({_PRIMARY});
  if (editor) {{
    editor.textContent = TEXT;
    fire(editor);
  }}
  for (const selector of {json.dumps(list(observer.input_selectors))}) {{
    const node = document.querySelector(selector);
    if (node && node.getAttribute('contenteditable') === 'true') {{
      node.textContent = TEXT;
      fire(node);
      break;
    }}
  }}
  return true;
}})()""",
    )


def send_button_script(observer: SiteObserver) -> str:
    """Click the first send control if it is enabled. Returns clicked, disabled or missing."""
    return tagged_script(
        "send-button",
        f"""(() => {{
  {CLICK_DISPATCHER}
  let button = null;
  for (const selector of {json.dumps(list(observer.send_button_selectors))}) {{
    button = document.querySelector(selector);
    if (button) break;
  }}
  if (!button) return 'missing';
  const style = window.getComputedStyle(button);
  const disabled =
    button.hasAttribute('disabled') ||
    button.getAttribute('aria-disabled') === 'true' ||
    button.getAttribute('data-disabled') === 'true' ||
    style.pointerEvents === 'none' ||
    style.display === 'none';
  if (disabled) return 'disabled';
  dispatchClickSequence(button);
  return 'clicked';
}})()""",
    )


def attachments_ready_script(names: list[str]) -> str:
    """True once every name shows up in an attachment chip or a file input."""
    return tagged_script(
        "attachments-ready",
        f"""(() => {{
  const names = {json.dumps([name.lower() for name in names])};
  const composer = document.querySelector('[data-testid*="composer"]') || document.querySelector('form') || document.body || document;
  const chips = Array.from(composer.querySelectorAll({_CHIPS}));
  const inputs = Array.from(composer.querySelectorAll('input[type="file"]'));
  return names.every((name) =>
    chips.some((node) => (node.textContent || '').toLowerCase().includes(name)) ||
    inputs.some((input) => Array.from(input.files || []).some((file) => (file.name || '').toLowerCase().includes(name)))
  );
}})()""",
    )


def commit_observation_script(
    observer: SiteObserver, prompt: str, baseline_turns: int | None
) -> str:
    """Script producing one ConversationObservation payload."""
    baseline = baseline_turns if baseline_turns is not None and baseline_turns >= 0 else -1
    return tagged_script(
        "commit-observation",
        f"""(() => {{
  {VALUE_READER}
  {NORMALIZE_JS}
  const prompt = normalize({json.dumps(prompt.strip())});
  const prefix = prompt.slice(0, {PROMPT_PREFIX_CHARS});
  const usePrefix = prefix.length > {MIN_PREFIX_MATCH_CHARS};
  const turns = Array.from(document.querySelectorAll({json.dumps(observer.turn_selector)})).map((node) => normalize(node.innerText));
  const lastTurn = turns.length ? turns[turns.length - 1] : '';
  const baseline = {baseline};
  const composerText = [
    document.querySelector({_PRIMARY}),
    document.querySelector({_FALLBACK}),
    document.querySelector('[contenteditable="true"]'),
  ].map((node) => readValue(node).trim()).join('');
  const href = typeof location === 'object' && location.href ? location.href : '';
  return {{
    turnsCount: turns.length,
    userMatched: prompt.length > 0 && turns.some((text) => text.includes(prompt)),
    prefixMatched: usePrefix && turns.some((text) => text.includes(prefix)),
    lastMatched: prompt.length > 0 && (lastTurn.includes(prompt) || (usePrefix && lastTurn.includes(prefix))),
    hasNewTurn: baseline < 0 ? true : turns.length > baseline,
    stopVisible: Boolean(document.querySelector({json.dumps(observer.stop_selector)})),
    assistantVisible: Boolean(document.querySelector({json.dumps(observer.assistant_selector)})),
    composerCleared: composerText.length === 0,
    inConversation: /\\/c(hat)?\\//.test(href),
    href,
  }};
}})()""",
    )


def is_committed(observation: ConversationObservation, baseline_turns: int | None) -> bool:
    """
    A prompt is committed when a new turn holds it, or, without a baseline,
    when any turn holds it.
    """
    if not observation.prompt_matched:
        return False
    if baseline_turns is None:
        return True
    return observation.has_new_turn


async def read_turn_count(session: ProtocolSession, observer: SiteObserver) -> int | None:
    """Number of conversation turns, or None if the page could not be read."""
    try:
        count = await session.evaluate(observer.turn_count_script())
    except ProtocolError as e:
        logger.debug(f"Reading baseline turn count failed: {e}")
        return None
    return count if isinstance(count, int) else None


async def clear_composer(session: ProtocolSession, *, diagnostics: bool = False) -> None:
    """
    Raises:
        ElementNotFoundError: If no composer element exists to clear
    """
    result = await session.evaluate(CLEAR_SCRIPT)
    if not (isinstance(result, dict) and result.get("cleared")):
        snapshot = await maybe_capture(session, "clear-composer", enabled=diagnostics, stage="clear-composer")
        raise ElementNotFoundError(
            "Failed to clear prompt composer", stage="clear-composer", snapshot=snapshot
        )
    await sleep_ms(CLEAR_SETTLE_MS)


async def _click_send(
    session: ProtocolSession, observer: SiteObserver, attachment_names: list[str]
) -> bool:
    script = send_button_script(observer)
    ready_script = attachments_ready_script(attachment_names) if attachment_names else None

    async def check():
        if ready_script is not None and not await session.evaluate(ready_script):
            return None
        return await session.evaluate(script)

    outcome = await poll_until(
        check,
        timeout_ms=SEND_BUTTON_TIMEOUT_MS,
        interval_ms=SEND_BUTTON_INTERVAL_MS,
        done=lambda state: state in ("clicked", "missing"),
    )
    return outcome.value == "clicked"


async def submit_prompt(
    session: ProtocolSession,
    observer: SiteObserver,
    prompt: str,
    *,
    attachment_names: list[str] | None = None,
    baseline_turns: int | None = None,
    commit_timeout_ms: int,
    diagnostics: bool = False,
) -> int | None:
    """
    Type prompt into the composer, send it and wait for the committed turn.

    Returns:
        Turn count observed when the prompt was committed

    Raises:
        ElementNotFoundError: If the composer cannot be focused
        PromptTooLargeError: If the composer truncated a very large prompt
        PromptNotCommittedError: If no new turn with the prompt appeared
    """
    focus = await session.evaluate(focus_script(observer))
    if not (isinstance(focus, dict) and focus.get("focused")):
        snapshot = await maybe_capture(session, "focus-textarea", enabled=diagnostics, stage="submit-prompt")
        raise ElementNotFoundError(
            "Failed to focus prompt textarea", stage="submit-prompt", snapshot=snapshot
        )

    await session.insert_text(prompt)
    await sleep_ms(INSERT_SETTLE_MS)

    text_script = composer_text_script(observer)
    observed = await session.evaluate(text_script)
    if not (isinstance(observed, str) and observed.strip()):
        logger.debug("Input.insertText did not reach the composer; injecting prompt")
        await session.evaluate(inject_text_script(observer, prompt))
        observed = await session.evaluate(text_script)

    observed_length = len(observed) if isinstance(observed, str) else 0
    if (
        len(prompt) >= LARGE_PROMPT_CHARS
        and 0 < observed_length < len(prompt) - TRUNCATION_TOLERANCE_CHARS
    ):
        snapshot = await maybe_capture(session, "prompt-too-large", enabled=diagnostics, stage="submit-prompt")
        raise PromptTooLargeError(
            "Prompt appears truncated in the composer (likely too large).",
            stage="submit-prompt",
            details={"prompt_length": len(prompt), "observed_length": observed_length},
            snapshot=snapshot,
        )

    if await _click_send(session, observer, attachment_names or []):
        logger.info("Clicked send button")
    else:
        await session.press_enter()
        logger.info("Submitted prompt via Enter key")

    return await verify_committed(
        session,
        observer,
        prompt,
        timeout_ms=commit_timeout_ms,
        baseline_turns=baseline_turns,
        diagnostics=diagnostics,
    )


async def verify_committed(
    session: ProtocolSession,
    observer: SiteObserver,
    prompt: str,
    *,
    timeout_ms: int,
    baseline_turns: int | None = None,
    diagnostics: bool = False,
) -> int | None:
    """
    Poll the conversation until the prompt shows up as a committed turn.

    Returns:
        The observed turn count (None if the page did not report one)

    Raises:
        PromptNotCommittedError: On timeout, carrying the last observation
            (PromptTooLargeError for very large prompts)
    """
    script = commit_observation_script(observer, prompt, baseline_turns)

    async def check() -> ConversationObservation:
        return ConversationObservation.from_payload(await session.evaluate(script))

    outcome = await poll_until(
        check,
        timeout_ms=timeout_ms,
        interval_ms=COMMIT_POLL_INTERVAL_MS,
        done=lambda observation: is_committed(observation, baseline_turns),
    )
    observation: ConversationObservation = outcome.value
    if outcome.satisfied:
        logger.debug(f"Prompt committed (turns={observation.turns_count})")
        return observation.turns_count

    logger.warning(f"Prompt commit check failed; latest state: {observation.to_dict()}")
    snapshot = await maybe_capture(
        session,
        "prompt-commit",
        enabled=diagnostics,
        stage="submit-prompt",
        extras=observation.to_dict(),
    )
    error_class = PromptNotCommittedError
    message = "Prompt did not appear in conversation before timeout (send may have failed)"
    if len(prompt.strip()) >= LARGE_PROMPT_CHARS:
        error_class = PromptTooLargeError
        message = "Prompt did not appear in conversation before timeout (likely too large)."
    raise error_class(
        message,
        observation=observation,
        stage="submit-prompt",
        details={"timeout_ms": timeout_ms, "baseline_turns": baseline_turns},
        snapshot=snapshot,
    )
