"""
Grok observer (grok.com).

Grok renders every message as a ``message-bubble`` div; user bubbles carry a
surface background class, so the assistant selector is the bubble selector
minus those classes. Grok has no model picker or thinking-time pill; instead
prepare() turns on the strongest reasoning toggle it can find ("Think
Harder", then "DeepSearch") when hard mode is requested.
"""

import json
import logging

from browser_oracle.exceptions import ProtocolError

from ..constants import (
    COPY_BUTTON_SELECTOR,
    FINISHED_ACTIONS_SELECTOR,
    GROK_ASSISTANT_SELECTOR,
    GROK_HARD_MODE_LABELS,
    GROK_INPUT_SELECTORS,
    GROK_SEND_BUTTON_SELECTORS,
    GROK_TURN_SELECTOR,
    STOP_BUTTON_SELECTOR,
)
from ..polling import poll_until
from ..protocol import ProtocolSession, tagged_script
from .base import SiteObserver, SiteRegistry

logger = logging.getLogger(__name__)

HARD_MODE_TIMEOUT_MS = 2_500
HARD_MODE_INTERVAL_MS = 250

HARD_MODE_SCRIPT = tagged_script(
    "grok-hard-mode",
    f"""(() => {{
  const LABELS = {json.dumps(list(GROK_HARD_MODE_LABELS))};
  const normalize = (value) => String(value || '').toLowerCase().replace(/\\s+/g, ' ').trim();
  let best = null;
  let bestRank = LABELS.length;
  let bestLabel = '';
  for (const node of document.querySelectorAll('button,[role="button"]')) {{
    const label = normalize(node.textContent || node.getAttribute('aria-label'));
    if (!label) continue;
    const rank = LABELS.findIndex((needle) => label === needle || label.includes(needle));
    if (rank !== -1 && rank < bestRank) {{
      best = node;
      bestRank = rank;
      bestLabel = label;
    }}
  }}
  if (!best) return {{ clicked: false, reason: 'missing' }};
  const state = best.getAttribute('data-state');
  const className = String(best.className || '');
  const active =
    best.getAttribute('aria-pressed') === 'true' ||
    ['active', 'on', 'selected'].includes(state) ||
    className.includes('bg-button-filled') ||
    className.includes('text-fg-invert');
  if (active) return {{ clicked: false, reason: 'already-active', label: bestLabel }};
  best.click();
  return {{ clicked: true, label: bestLabel }};
}})()""",
)


@SiteRegistry.register
class GrokObserver(SiteObserver):
    name = "grok"
    hosts = ("grok.com",)
    input_selectors = GROK_INPUT_SELECTORS
    send_button_selectors = GROK_SEND_BUTTON_SELECTORS
    turn_selector = GROK_TURN_SELECTOR
    assistant_selector = GROK_ASSISTANT_SELECTOR
    stop_selector = STOP_BUTTON_SELECTOR
    finished_actions_selector = FINISHED_ACTIONS_SELECTOR
    copy_button_selector = COPY_BUTTON_SELECTOR
    supports_model_selection = False
    supports_thinking_time = False

    async def prepare(self, session: ProtocolSession, *, hard_mode: bool = False) -> None:
        """Enable Grok's hard-mode toggle if requested. Best effort."""
        if not hard_mode:
            return

        async def check():
            return await session.evaluate(HARD_MODE_SCRIPT)

        def settled(value) -> bool:
            return isinstance(value, dict) and value.get("reason") != "missing"

        try:
            outcome = await poll_until(
                check,
                timeout_ms=HARD_MODE_TIMEOUT_MS,
                interval_ms=HARD_MODE_INTERVAL_MS,
                done=settled,
            )
        except ProtocolError as e:
            logger.debug(f"Grok hard mode toggle failed: {e}")
            return

        payload = outcome.value if isinstance(outcome.value, dict) else {}
        label = payload.get("label") or "unknown"
        if payload.get("clicked"):
            logger.info(f"Enabled Grok hard mode ({label})")
        elif payload.get("reason") == "already-active":
            logger.debug(f"Grok hard mode already active ({label})")
        else:
            logger.debug("Grok hard mode control not found; continuing.")
