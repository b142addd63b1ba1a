"""
Data structures shared across the browser engine.

- BrowserAttachment: a local file to upload into the composer
- ConversationObservation: one poll of the conversation during prompt commit
- AssistantSnapshot: one poll of the newest assistant turn
- AssistantAnswer: the captured answer (text, html, markdown, identifiers)
- BrowserRunResult: what run_browser_automation() returns to the caller
- FallbackSubmission: alternate prompt used after composer truncation

Observations and snapshots are transient; only BrowserRunResult leaves the
engine.
"""

from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any


@dataclass(frozen=True)
class BrowserAttachment:
    """
    A file to attach to the prompt.

    Attributes:
        path: Absolute local path (sent by content to a remote Chrome)
        display_path: Path shown to the user (usually relative to cwd)
        size_bytes: File size at planning time, if known
    """

    path: Path
    display_path: str = ""
    size_bytes: int | None = None

    @property
    def name(self) -> str:
        return self.path.name

    @classmethod
    def from_path(cls, path: str | Path, cwd: Path | None = None) -> "BrowserAttachment":
        resolved = Path(path).expanduser().resolve()
        display = str(path)
        if cwd is not None:
            try:
                display = str(resolved.relative_to(cwd.resolve()))
            except ValueError:
                display = str(resolved)
        size = resolved.stat().st_size if resolved.exists() else None
        return cls(path=resolved, display_path=display, size_bytes=size)


@dataclass(frozen=True)
class ConversationObservation:
    """
    What one commit-verification poll saw in the page.

    The ``*_matched`` flags compare a normalized form of the sent prompt
    against user turns: full text anywhere, a 120-char prefix anywhere, or
    either in the last turn.
    """

    turns_count: int | None = None
    user_matched: bool = False
    prefix_matched: bool = False
    last_matched: bool = False
    has_new_turn: bool = False
    stop_visible: bool = False
    assistant_visible: bool = False
    composer_cleared: bool = False
    in_conversation: bool = False
    href: str = ""

    @property
    def prompt_matched(self) -> bool:
        return self.user_matched or self.prefix_matched or self.last_matched

    @classmethod
    def from_payload(cls, payload: dict[str, Any] | None) -> "ConversationObservation":
        payload = payload or {}
        turns = payload.get("turnsCount")
        return cls(
            turns_count=turns if isinstance(turns, int) else None,
            user_matched=bool(payload.get("userMatched")),
            prefix_matched=bool(payload.get("prefixMatched")),
            last_matched=bool(payload.get("lastMatched")),
            has_new_turn=bool(payload.get("hasNewTurn")),
            stop_visible=bool(payload.get("stopVisible")),
            assistant_visible=bool(payload.get("assistantVisible")),
            composer_cleared=bool(payload.get("composerCleared")),
            in_conversation=bool(payload.get("inConversation")),
            href=str(payload.get("href") or ""),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class AssistantSnapshot:
    """
    The newest assistant turn as seen by one response poll.

    ``turn_index`` is the 1-based position of the turn among all
    conversation turns, so it is directly comparable with the turn count
    returned by prompt commit verification.
    """

    text: str = ""
    html: str | None = None
    message_id: str | None = None
    turn_id: str | None = None
    turn_index: int | None = None
    is_assistant: bool = False
    stop_visible: bool = False
    finished_actions: bool = False

    @classmethod
    def from_payload(cls, payload: dict[str, Any] | None) -> "AssistantSnapshot | None":
        if not isinstance(payload, dict):
            return None
        index = payload.get("turnIndex")
        return cls(
            text=str(payload.get("text") or ""),
            html=payload.get("html") if isinstance(payload.get("html"), str) else None,
            message_id=payload.get("messageId") if isinstance(payload.get("messageId"), str) else None,
            turn_id=payload.get("turnId") if isinstance(payload.get("turnId"), str) else None,
            turn_index=index if isinstance(index, int) else None,
            is_assistant=bool(payload.get("isAssistant", True)),
            stop_visible=bool(payload.get("stopVisible")),
            finished_actions=bool(payload.get("finishedActions")),
        )


@dataclass
class AssistantAnswer:
    """A completed assistant turn."""

    text: str
    html: str | None = None
    markdown: str | None = None
    meta: dict[str, str | None] = field(default_factory=dict)
    turn_index: int | None = None
    recovered: bool = False

    @classmethod
    def from_snapshot(cls, snapshot: AssistantSnapshot, recovered: bool = False) -> "AssistantAnswer":
        return cls(
            text=snapshot.text.strip(),
            html=snapshot.html,
            meta={"message_id": snapshot.message_id, "turn_id": snapshot.turn_id},
            turn_index=snapshot.turn_index,
            recovered=recovered,
        )


@dataclass
class BrowserRunResult:
    """
    Result of one browser automation run.

    Attributes:
        answer_text: Plain text of the assistant answer
        answer_markdown: Markdown captured through the copy control, falling
            back to answer_text
        answer_html: Inner HTML of the answer node, if captured
        took_ms: Wall time of the run
        answer_tokens: Estimated tokens in the answer (chars / 4)
        answer_chars: Length of answer_text
        chrome_pid / chrome_port / chrome_host: Browser process identifiers
        user_data_dir: Profile directory the browser ran with
        chrome_target_id: DevTools target id of the tab used
        tab_url: URL of the tab when the answer was captured
        controller_pid: PID of the process that drove the run
    """

    answer_text: str
    answer_markdown: str
    took_ms: int
    answer_tokens: int
    answer_chars: int
    answer_html: str | None = None
    chrome_pid: int | None = None
    chrome_port: int | None = None
    chrome_host: str | None = None
    user_data_dir: str | None = None
    chrome_target_id: str | None = None
    tab_url: str | None = None
    controller_pid: int | None = None
    meta: dict[str, str | None] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def estimate_tokens(text: str) -> int:
    """Rough token estimate used for browser runs (no tokenizer available)."""
    if not text:
        return 0
    return max(1, round(len(text) / 4))


@dataclass
class FallbackSubmission:
    """
    A shorter submission tried once when the composer truncates the prompt.

    Typically the bare user prompt with the files moved from inline text to
    uploads.
    """

    prompt: str
    attachments: list[BrowserAttachment] = field(default_factory=list)
