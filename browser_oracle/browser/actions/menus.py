"""
Dropdown menu primitives: open a trigger, enumerate options, click one.

Model and thinking-time selection both follow the same sequence:
open -> enumerate -> match (in Python) -> click. Options are enumerated in
document order across every open menu container, and clicks address an
option by that index plus its expected label, so a menu that re-rendered
between the two calls is detected instead of clicking the wrong entry.
"""

import json
import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass

from ..constants import MENU_CONTAINER_SELECTOR, MENU_ITEM_SELECTOR
from ..polling import poll_until
from ..protocol import ProtocolSession, tagged_script
from .dom import CLICK_DISPATCHER

logger = logging.getLogger(__name__)

MENU_POLL_INTERVAL_MS = 100
MENU_OPEN_TIMEOUT_MS = 12_000
# Re-click the trigger when the menu has not opened after this many polls.
REOPEN_EVERY_POLLS = 5

_NON_ALNUM = re.compile(r"[^a-z0-9]+")

_SELECTED_TEST = """const isSelected = (node) => {
    if (!(node instanceof HTMLElement)) return false;
    for (const attr of ['aria-checked', 'aria-selected', 'aria-current', 'data-selected']) {
      if (node.getAttribute(attr) === 'true') return true;
    }
    const state = (node.getAttribute('data-state') || '').toLowerCase();
    if (['checked', 'selected', 'on', 'true'].includes(state)) return true;
    return Boolean(node.querySelector('[data-testid*="check"], svg[data-icon="check"], [aria-checked="true"]'));
  };"""

_ENUMERATE = f"""const collectOptions = () => {{
    const seen = new Set();
    const options = [];
    for (const menu of document.querySelectorAll({json.dumps(MENU_CONTAINER_SELECTOR)})) {{
      for (const node of menu.querySelectorAll({json.dumps(MENU_ITEM_SELECTOR)})) {{
        if (seen.has(node)) continue;
        seen.add(node);
        options.push(node);
      }}
    }}
    return options;
  }};"""

LIST_OPTIONS_SCRIPT = tagged_script(
    "menu-options",
    f"""(() => {{
  {_SELECTED_TEST}
  {_ENUMERATE}
  return collectOptions().map((node) => ({{
    label: (node.textContent || '').trim(),
    testId: node.getAttribute('data-testid') || '',
    selected: isSelected(node),
  }}));
}})()""",
)


@dataclass(frozen=True)
class MenuOption:
    index: int
    label: str
    test_id: str = ""
    selected: bool = False


def normalize_label(value: str | None) -> str:
    """Lowercase, collapse every non-alphanumeric run to one space."""
    return _NON_ALNUM.sub(" ", (value or "").lower()).strip()


def trigger_script(selectors: Sequence[str], *, text_filter: str | None = None) -> str:
    """
    Script clicking the first trigger button matching selectors.

    With text_filter, only buttons whose normalized label or aria-label
    contains it qualify. Returns {found, label}.
    """
    return tagged_script(
        "menu-trigger",
        f"""(() => {{
  {CLICK_DISPATCHER}
  const SELECTORS = {json.dumps(list(selectors))};
  const FILTER = {json.dumps(text_filter)};
  const normalize = (value) => String(value || '').toLowerCase().replace(/[^a-z0-9]+/g, ' ').trim();
  for (const selector of SELECTORS) {{
    for (const node of document.querySelectorAll(selector)) {{
      const label = normalize(node.textContent) + ' ' + normalize(node.getAttribute('aria-label'));
      if (FILTER && !label.includes(FILTER)) continue;
      dispatchClickSequence(node);
      return {{ found: true, label: (node.textContent || '').trim() }};
    }}
  }}
  return {{ found: false }};
}})()""",
    )


def click_option_script(index: int, expected_label: str) -> str:
    return tagged_script(
        "menu-click",
        f"""(() => {{
  {CLICK_DISPATCHER}
  {_ENUMERATE}
  const node = collectOptions()[{int(index)}];
  if (!node) return false;
  if ((node.textContent || '').trim() !== {json.dumps(expected_label)}) return false;
  dispatchClickSequence(node);
  return true;
}})()""",
    )


def parse_options(payload) -> list[MenuOption]:
    """Drop malformed entries from the option-listing script result."""
    if not isinstance(payload, list):
        return []
    options = []
    for index, item in enumerate(payload):
        if not isinstance(item, dict):
            continue
        options.append(
            MenuOption(
                index=index,
                label=str(item.get("label") or ""),
                test_id=str(item.get("testId") or ""),
                selected=bool(item.get("selected")),
            )
        )
    return options


async def click_trigger(
    session: ProtocolSession,
    selectors: Sequence[str],
    *,
    text_filter: str | None = None,
) -> dict | None:
    """Click the menu trigger. Returns {found, label} or None if nothing matched."""
    result = await session.evaluate(trigger_script(selectors, text_filter=text_filter))
    if isinstance(result, dict) and result.get("found"):
        return result
    return None


async def open_menu(
    session: ProtocolSession,
    selectors: Sequence[str],
    *,
    text_filter: str | None = None,
    timeout_ms: int = MENU_OPEN_TIMEOUT_MS,
) -> list[MenuOption] | None:
    """
    Click the trigger and wait for menu options to render.

    Returns:
        The enumerated options, [] if the menu never opened, or None if the
        trigger itself was not found
    """
    if await click_trigger(session, selectors, text_filter=text_filter) is None:
        return None

    polls = 0

    async def check():
        nonlocal polls
        polls += 1
        if polls % REOPEN_EVERY_POLLS == 0:
            await click_trigger(session, selectors, text_filter=text_filter)
        return parse_options(await session.evaluate(LIST_OPTIONS_SCRIPT))

    outcome = await poll_until(check, timeout_ms=timeout_ms, interval_ms=MENU_POLL_INTERVAL_MS)
    return outcome.value or []


async def click_option(session: ProtocolSession, option: MenuOption) -> bool:
    """
    Click a previously listed option.

    Returns:
        False when the option vanished before the click landed
    """
    clicked = await session.evaluate(click_option_script(option.index, option.label))
    if not clicked:
        logger.debug(f"Menu changed before clicking option {option.label!r}")
    return bool(clicked)


async def close_menu(session: ProtocolSession) -> None:
    await session.send(
        "Input.dispatchKeyEvent", {"type": "keyDown", "key": "Escape", "code": "Escape"}
    )
    await session.send("Input.dispatchKeyEvent", {"type": "keyUp", "key": "Escape", "code": "Escape"})
