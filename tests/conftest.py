"""
Shared fixtures: a scripted DevTools transport and a simulated chat page.

FakeDevTools answers Runtime.evaluate by the ``/* oracle:<name> */`` tag of
the evaluated script, and every other DevTools method by a per-method
handler. ChatPage layers a small conversation model on top of it so the
engine's actions can run end to end against the real ProtocolSession.
"""

import json
import re
from collections.abc import Callable
from typing import Any

import pytest

from browser_oracle.browser.protocol import ProtocolSession, script_name

MIN_TURN_PATTERN = re.compile(r"const MIN_TURN_INDEX = (null|\d+);")
BASELINE_PATTERN = re.compile(r"const baseline = (-?\d+);")
TRANSFER_NAME_PATTERN = re.compile(r'new File\(\[bytes\], ("(?:[^"\\]|\\.)*")')


def sequence(*values) -> Callable[[str], Any]:
    """Script handler returning values in order, then repeating the last."""
    remaining = list(values)

    def handler(_expression: str):
        if len(remaining) > 1:
            return remaining.pop(0)
        return remaining[0]

    return handler


class FakeDevTools:
    """
    Scripted transport for ProtocolSession.

    Attributes:
        calls: Every (method, params) sent, in order
        evaluated: Tag names of every evaluated script, in order
    """

    def __init__(self):
        self.calls: list[tuple[str, dict]] = []
        self.evaluated: list[str | None] = []
        self._scripts: dict[str, Any] = {}
        self._methods: dict[str, Any] = {}
        self._failures: dict[str, Exception] = {}

    def on_script(self, name: str, value) -> None:
        """Answer scripts tagged name with value (or value(expression) if callable)."""
        self._scripts[name] = value

    def on_method(self, method: str, value) -> None:
        """Answer method with value (or value(params) if callable)."""
        self._methods[method] = value

    def fail(self, method: str, exc: Exception) -> None:
        self._failures[method] = exc

    def heal(self, method: str) -> None:
        self._failures.pop(method, None)

    def count(self, name: str) -> int:
        return self.evaluated.count(name)

    def methods(self) -> list[str]:
        return [method for method, _ in self.calls]

    async def send(self, method: str, params: dict | None = None) -> dict:
        params = params or {}
        self.calls.append((method, params))
        if method in self._failures:
            raise self._failures[method]

        if method == "Runtime.evaluate":
            expression = params["expression"]
            name = script_name(expression)
            self.evaluated.append(name)
            if name in self._failures:
                raise self._failures[name]
            handler = self._scripts.get(name)
            value = handler(expression) if callable(handler) else handler
            return {"result": {"type": "object", "value": value}}

        handler = self._methods.get(method)
        if handler is None:
            return {}
        return handler(params) if callable(handler) else handler


class ChatPage:
    """
    A ChatGPT-like conversation behind a FakeDevTools transport.

    Clicking send moves the composer text into a user turn and, unless
    drop_send is set, the assistant replies with ``answer`` in the next
    turn. Turn indexes are 1-based, matching the page scripts.
    """

    def __init__(self, devtools: FakeDevTools, *, answer: str = "Hi there"):
        self.devtools = devtools
        self.answer = answer
        self.markdown: str | None = answer
        self.turns: list[tuple[str, str]] = []
        self.composer = ""
        self.last_prompt = ""
        self.href = "https://chatgpt.com/"
        self.drop_send = False
        self.register_files = True
        self.assigned_files: list[str] = []
        self.stop_visible = False
        self.finished_actions = True
        self._install()

    def _install(self) -> None:
        d = self.devtools
        d.on_script("ready-state", "complete")
        d.on_script("block-check", {"title": "ChatGPT", "challengeScript": False, "loginButton": False})
        d.on_script("first-match", 0)
        d.on_script("menu-trigger", {"found": True, "label": "ChatGPT 5.2 Pro"})
        d.on_script(
            "menu-options",
            [
                {"label": "GPT-5.2", "testId": "model-switcher-gpt-5-2", "selected": False},
                {"label": "GPT-5.2 Pro", "testId": "model-switcher-gpt-5-2-pro", "selected": True},
            ],
        )
        d.on_script("menu-click", True)
        d.on_script("current-model", "ChatGPT 5.2 Pro")
        d.on_script("clear-composer", self._clear)
        d.on_script("focus-composer", {"focused": True, "selector": "#prompt-textarea"})
        d.on_script("composer-text", lambda _: self.composer)
        d.on_script("send-button", self._click_send)
        d.on_script("attachments-ready", True)
        d.on_script("turn-count", lambda _: len(self.turns))
        d.on_script("commit-observation", self._observe)
        d.on_script("assistant-snapshot", self._snapshot)
        d.on_script("assistant-fallback", None)
        d.on_script("copy-markdown", self._copy)
        d.on_script("location", lambda _: self.href)
        d.on_script("reveal-file-input", False)
        d.on_script("file-input-change", True)
        d.on_script("file-transfer", self._transfer)
        d.on_script("file-input-names", lambda _: list(self.assigned_files) if self.register_files else [])
        d.on_script("upload-state", {"state": "ready", "uploading": False, "filesAttached": True})
        d.on_method("Input.insertText", self._insert)
        d.on_method("DOM.getDocument", {"root": {"nodeId": 1}})
        d.on_method("DOM.querySelector", {"nodeId": 7})
        d.on_method("DOM.setFileInputFiles", self._set_files)
        d.on_method("Network.setCookie", {"success": True})

    # Handlers

    def _clear(self, _expression):
        self.composer = ""
        return {"cleared": True}

    def _insert(self, params):
        self.composer += params["text"]
        return {}

    def _set_files(self, params):
        self.assigned_files.extend(path.rsplit("/", 1)[-1] for path in params["files"])
        return {}

    def _transfer(self, expression):
        self.assigned_files.append(json.loads(TRANSFER_NAME_PATTERN.search(expression).group(1)))
        return {"success": True, "size": 0}

    def _click_send(self, _expression):
        if not self.composer:
            return "disabled"
        self.last_prompt = self.composer
        self.composer = ""
        if self.drop_send:
            self.stop_visible = True
            return "clicked"
        self.turns.append(("user", self.last_prompt))
        self.turns.append(("assistant", self.answer))
        self.href = "https://chatgpt.com/c/abc123"
        return "clicked"

    def _observe(self, expression):
        baseline = int(BASELINE_PATTERN.search(expression).group(1))
        prompt = self.last_prompt.strip().lower()
        matched = bool(prompt) and any(
            role == "user" and prompt in text.lower() for role, text in self.turns
        )
        return {
            "turnsCount": len(self.turns),
            "userMatched": matched,
            "prefixMatched": False,
            "lastMatched": False,
            "hasNewTurn": baseline < 0 or len(self.turns) > baseline,
            "stopVisible": self.stop_visible,
            "assistantVisible": any(role == "assistant" for role, _ in self.turns),
            "composerCleared": not self.composer,
            "inConversation": "/c/" in self.href,
            "href": self.href,
        }

    def _snapshot(self, expression):
        raw = MIN_TURN_PATTERN.search(expression).group(1)
        minimum = None if raw == "null" else int(raw)
        for index in range(len(self.turns), 0, -1):
            if minimum is not None and index <= minimum:
                break
            role, text = self.turns[index - 1]
            if role != "assistant" or not text.strip():
                continue
            return {
                "text": text,
                "html": f"<p>{text}</p>",
                "messageId": f"msg-{index}",
                "turnId": f"conversation-turn-{index}",
                "turnIndex": index,
                "isAssistant": True,
                "stopVisible": self.stop_visible,
                "finishedActions": self.finished_actions,
            }
        return None

    def _copy(self, _expression):
        if self.markdown is None:
            return {"success": False, "status": "missing-button"}
        return {"success": True, "markdown": self.markdown}


@pytest.fixture
def devtools() -> FakeDevTools:
    return FakeDevTools()


@pytest.fixture
def session(devtools) -> ProtocolSession:
    return ProtocolSession(devtools, host="127.0.0.1", port=9222, target_id="target-1")


@pytest.fixture
def chat_page(devtools) -> ChatPage:
    return ChatPage(devtools)


@pytest.fixture
def chatgpt():
    from browser_oracle.browser.sites import SiteRegistry

    return SiteRegistry.get("chatgpt")
