"""
Per-site observers and their registry.

A chat front end is described by a SiteObserver: which selectors find the
composer, the send and stop controls and the conversation turns, how the
newest assistant turn is extracted, and when that turn counts as finished.
The polling loops in browser.actions are shared; supporting another front
end means registering another observer, not copying a loop.

Registration mirrors a plugin registry: observers register at import time
with ``@SiteRegistry.register`` and are looked up by URL host.

Example:
    >>> observer = SiteRegistry.for_url("https://chatgpt.com/")
    >>> observer.name
    'chatgpt'
"""

import json
import logging
from typing import ClassVar
from urllib.parse import urlsplit

from ..models import AssistantSnapshot
from ..protocol import ProtocolSession, tagged_script

logger = logging.getLogger(__name__)


def min_index_literal(min_turn_index: int | None) -> str:
    """JS literal for a minimum turn index; None becomes null, 0 stays 0."""
    if min_turn_index is None:
        return "null"
    return str(int(min_turn_index))


class SiteObserver:
    """
    Selector set, extraction and completion predicate for one chat site.

    Subclasses override the class attributes; the scripts are built from
    them, so most sites need no methods of their own.
    """

    name: ClassVar[str] = ""
    hosts: ClassVar[tuple[str, ...]] = ()
    input_selectors: ClassVar[tuple[str, ...]] = ()
    send_button_selectors: ClassVar[tuple[str, ...]] = ()
    turn_selector: ClassVar[str] = ""
    assistant_selector: ClassVar[str] = ""
    stop_selector: ClassVar[str] = ""
    finished_actions_selector: ClassVar[str] = ""
    copy_button_selector: ClassVar[str] = ""
    supports_model_selection: ClassVar[bool] = True
    supports_thinking_time: ClassVar[bool] = True

    # ------------------------------------------------------------------
    # Scripts
    # ------------------------------------------------------------------

    def _assistant_test(self) -> str:
        return f"""const ASSISTANT_SELECTOR = {json.dumps(self.assistant_selector)};
  const isAssistantTurn = (node) => {{
    if (!(node instanceof HTMLElement)) return false;
    const role = (node.getAttribute('data-message-author-role') || node.getAttribute('data-turn') || '').toLowerCase();
    if (role === 'assistant') return true;
    if (role === 'user') return false;
    const testId = (node.getAttribute('data-testid') || '').toLowerCase();
    if (testId.includes('assistant')) return true;
    if (node.matches(ASSISTANT_SELECTOR)) return true;
    return Boolean(node.querySelector(ASSISTANT_SELECTOR) || node.querySelector('[data-testid*="assistant"]'));
  }};"""

    def snapshot_script(self, min_turn_index: int | None = None) -> str:
        """
        Script returning the newest assistant turn above min_turn_index.

        The result carries text, html, messageId, turnId, the 1-based
        turnIndex, whether a stop control is visible and whether
        finished-turn action controls are present; null when no assistant
        turn with text exists above the minimum.
        """
        return tagged_script(
            "assistant-snapshot",
            f"""(() => {{
  const MIN_TURN_INDEX = {min_index_literal(min_turn_index)};
  const TURN_SELECTOR = {json.dumps(self.turn_selector)};
  const STOP_SELECTOR = {json.dumps(self.stop_selector)};
  const FINISHED_SELECTOR = {json.dumps(self.finished_actions_selector)};
  {self._assistant_test()}
  const turns = Array.from(document.querySelectorAll(TURN_SELECTOR));
  const stopVisible = Boolean(document.querySelector(STOP_SELECTOR));
  for (let index = turns.length - 1; index >= 0; index -= 1) {{
    const turnIndex = index + 1;
    if (MIN_TURN_INDEX !== null && turnIndex <= MIN_TURN_INDEX) break;
    const turn = turns[index];
    if (!isAssistantTurn(turn)) continue;
    const messageRoot = turn.querySelector(ASSISTANT_SELECTOR) || turn;
    const preferred = messageRoot.querySelector('.markdown') || messageRoot.querySelector('[data-message-content]') || messageRoot;
    const text = preferred.innerText || '';
    if (!text.trim()) continue;
    const isLast = index === turns.length - 1;
    const finishedActions = Boolean(
      turn.querySelector(FINISHED_SELECTOR) ||
      (isLast && turn.nextElementSibling && turn.nextElementSibling.querySelector(FINISHED_SELECTOR))
    );
    return {{
      text,
      html: preferred.innerHTML || '',
      messageId: messageRoot.getAttribute('data-message-id'),
      turnId: turn.getAttribute('data-testid') || messageRoot.getAttribute('data-testid'),
      turnIndex,
      isAssistant: true,
      stopVisible,
      finishedActions,
    }};
  }}
  return null;
}})()""",
        )

    def markdown_fallback_script(self, min_turn_index: int | None = None) -> str:
        """
        Script returning the text of the last non-user turn above min_turn_index.

        Used when the structured extractor finds nothing (markup drift): any
        turn not marked as a user turn by role or test id qualifies.
        """
        return tagged_script(
            "assistant-fallback",
            f"""(() => {{
  const MIN_TURN_INDEX = {min_index_literal(min_turn_index)};
  const turns = Array.from(document.querySelectorAll({json.dumps(self.turn_selector)}));
  const stopVisible = Boolean(document.querySelector({json.dumps(self.stop_selector)}));
  const isUserTurn = (node) => {{
    const role = (node.getAttribute('data-message-author-role') || node.getAttribute('data-turn') || '').toLowerCase();
    if (role === 'user') return true;
    const testId = (node.getAttribute('data-testid') || '').toLowerCase();
    return testId.includes('user') || Boolean(node.querySelector('[data-message-author-role="user"]'));
  }};
  for (let index = turns.length - 1; index >= 0; index -= 1) {{
    const turnIndex = index + 1;
    if (MIN_TURN_INDEX !== null && turnIndex <= MIN_TURN_INDEX) break;
    const turn = turns[index];
    if (isUserTurn(turn)) continue;
    const text = (turn.innerText || '').trim();
    if (!text) continue;
    return {{ text, html: turn.innerHTML || '', messageId: null, turnId: turn.getAttribute('data-testid'), turnIndex, isAssistant: true, stopVisible }};
  }}
  return null;
}})()""",
        )

    def copy_markdown_script(self, message_id: str | None, turn_id: str | None) -> str:
        """Click the turn's copy control and capture what it writes to the clipboard."""
        hint = json.dumps({"messageId": message_id, "turnId": turn_id})
        return tagged_script(
            "copy-markdown",
            f"""(() => {{
  const BUTTON_SELECTOR = {json.dumps(self.copy_button_selector)};
  const TIMEOUT_MS = 5000;
  const hint = {hint};
  const lastIn = (node) => node ? Array.from(node.querySelectorAll(BUTTON_SELECTOR)).at(-1) || null : null;
  const locateButton = () => {{
    if (hint.messageId) {{
      const button = lastIn(document.querySelector('[data-message-id="' + CSS.escape(hint.messageId) + '"]')?.closest('article, div[data-testid^="conversation-turn"]'));
      if (button) return button;
    }}
    if (hint.turnId) {{
      const button = lastIn(document.querySelector('[data-testid="' + CSS.escape(hint.turnId) + '"]'));
      if (button) return button;
    }}
    return Array.from(document.querySelectorAll(BUTTON_SELECTOR)).at(-1) || null;
  }};
  const button = locateButton();
  if (!button) return {{ success: false, status: 'missing-button' }};
  const clipboard = navigator.clipboard;
  const state = {{ text: '' }};
  const originalWriteText = clipboard ? clipboard.writeText : null;
  const originalWrite = clipboard ? clipboard.write : null;
  if (clipboard) {{
    clipboard.writeText = (value) => {{ state.text = typeof value === 'string' ? value : ''; return Promise.resolve(); }};
    clipboard.write = async (items) => {{
      const list = Array.isArray(items) ? items : items ? [items] : [];
      for (const item of list) {{
        if (item && Array.isArray(item.types) && item.types.includes('text/plain')) {{
          state.text = await (await item.getType('text/plain')).text();
          break;
        }}
      }}
    }};
  }}
  const restore = () => {{
    if (clipboard) {{ clipboard.writeText = originalWriteText; clipboard.write = originalWrite; }}
  }};
  return new Promise((resolve) => {{
    const started = Date.now();
    button.scrollIntoView({{ block: 'center' }});
    button.click();
    const poll = setInterval(() => {{
      if (state.text.trim()) {{
        clearInterval(poll); restore();
        resolve({{ success: true, markdown: state.text }});
      }} else if (Date.now() - started > TIMEOUT_MS) {{
        clearInterval(poll); restore();
        resolve({{ success: false, status: 'timeout' }});
      }}
    }}, 100);
  }});
}})()""",
        )

    def turn_count_script(self) -> str:
        return tagged_script(
            "turn-count",
            f"document.querySelectorAll({json.dumps(self.turn_selector)}).length",
        )

    # ------------------------------------------------------------------
    # Predicates and hooks
    # ------------------------------------------------------------------

    def is_complete(self, snapshot: AssistantSnapshot | None, baseline: int | None) -> bool:
        """
        A turn is finished when it is a new assistant turn, no stop control
        is showing, and at least one post-render action control exists.
        """
        if snapshot is None or not snapshot.text.strip():
            return False
        if baseline is not None and (snapshot.turn_index is None or snapshot.turn_index <= baseline):
            return False
        return snapshot.is_assistant and not snapshot.stop_visible and snapshot.finished_actions

    async def prepare(self, session: ProtocolSession, *, hard_mode: bool = False) -> None:
        """Site-specific setup after the composer is ready. Default: nothing."""
        return None


class SiteRegistry:
    """
    Registry of SiteObserver classes keyed by name.

    Class attributes:
        _sites: Mapping of site name to observer class
        default_site: Observer used for hosts no site claims
    """

    _sites: dict[str, type[SiteObserver]] = {}
    default_site = "chatgpt"

    @classmethod
    def register(cls, site_class: type[SiteObserver]) -> type[SiteObserver]:
        """
        Decorator registering an observer class.

        Raises:
            AttributeError: If the class declares no name or hosts
        """
        for attribute in ("name", "hosts", "turn_selector", "input_selectors"):
            if not getattr(site_class, attribute, None):
                raise AttributeError(
                    f"Site observer {site_class.__name__} missing required attribute: {attribute}"
                )
        if site_class.name in cls._sites:
            logger.warning(
                f"Site '{site_class.name}' already registered. "
                f"Overwriting with {site_class.__name__}"
            )
        cls._sites[site_class.name] = site_class
        logger.debug(f"Registered site observer: {site_class.name} ({site_class.__name__})")
        return site_class

    @classmethod
    def get(cls, name: str) -> SiteObserver:
        if name not in cls._sites:
            available = ", ".join(sorted(cls._sites)) or "none"
            raise ValueError(f"Unknown site: '{name}'. Available sites: {available}")
        return cls._sites[name]()

    @classmethod
    def for_url(cls, url: str) -> SiteObserver:
        """Observer whose hosts match url; the default site otherwise."""
        host = (urlsplit(url).hostname or "").lower()
        for site_class in cls._sites.values():
            for candidate in site_class.hosts:
                if host == candidate or host.endswith(f".{candidate}"):
                    return site_class()
        logger.debug(f"No site observer claims {host!r}; using {cls.default_site}")
        return cls.get(cls.default_site)

    @classmethod
    def list_sites(cls) -> list[dict]:
        return [
            {"name": name, "hosts": list(site.hosts), "class_name": site.__name__}
            for name, site in cls._sites.items()
        ]

    @classmethod
    def is_registered(cls, name: str) -> bool:
        return name in cls._sites
