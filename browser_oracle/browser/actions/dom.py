"""
Page-script building blocks shared by the action modules.

The snippets here are spliced into larger scripts: a pointer/mouse click
sequence that React handlers accept, a value reader that works for
textareas, inputs and contenteditable editors, and a first-match selector
resolver.
"""

import json
from collections.abc import Sequence

from ..protocol import ProtocolSession, tagged_script

# Defines dispatchClickSequence(node) in the enclosing script.
CLICK_DISPATCHER = """const dispatchClickSequence = (node) => {
    if (!node) return false;
    const opts = { bubbles: true, cancelable: true, view: window };
    for (const type of ['pointerdown', 'mousedown', 'pointerup', 'mouseup']) {
      const EventType = type.startsWith('pointer') && typeof PointerEvent === 'function' ? PointerEvent : MouseEvent;
      node.dispatchEvent(new EventType(type, { ...opts, pointerId: 1, pointerType: 'mouse' }));
    }
    if (typeof node.click === 'function') node.click();
    else node.dispatchEvent(new MouseEvent('click', opts));
    return true;
  };"""

# Defines readValue(node) in the enclosing script.
VALUE_READER = """const readValue = (node) => {
    if (!node) return '';
    if (node instanceof HTMLTextAreaElement || node instanceof HTMLInputElement) return node.value || '';
    if (node.getAttribute && node.getAttribute('contenteditable') === 'true') return node.textContent || node.innerText || '';
    return node.textContent || '';
  };"""


def first_match_script(selectors: Sequence[str], *, require_enabled: bool = False) -> str:
    """Script returning the index of the first selector that matches, or -1."""
    enabled_check = " && !node.hasAttribute('disabled')" if require_enabled else ""
    return tagged_script(
        "first-match",
        f"""(() => {{
  const selectors = {json.dumps(list(selectors))};
  for (let index = 0; index < selectors.length; index += 1) {{
    const node = document.querySelector(selectors[index]);
    if (node{enabled_check}) return index;
  }}
  return -1;
}})()""",
    )


async def resolve_first_selector(
    session: ProtocolSession,
    selectors: Sequence[str],
    *,
    require_enabled: bool = False,
) -> str | None:
    """
    First selector in list order that matches an element in the page.

    The page is asked for an index, so for a given document the same
    selector always wins.
    """
    if not selectors:
        return None
    index = await session.evaluate(first_match_script(selectors, require_enabled=require_enabled))
    if isinstance(index, int) and 0 <= index < len(selectors):
        return selectors[index]
    return None
