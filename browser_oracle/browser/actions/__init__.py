"""
Page actions that make up one chat turn.

Modules:
    navigation: navigate, ensure_not_blocked, ensure_logged_in, ensure_prompt_ready
    model_selection: ensure_model_selection (select / current / ignore)
    thinking_time: ensure_thinking_time
    prompt_composer: clear_composer, submit_prompt, verify_committed
    attachments: upload_file, wait_for_completion
    assistant_response: AssistantResponseReader, capture_markdown
"""

from .assistant_response import AssistantResponseReader, capture_markdown, parse_snapshot
from .attachments import upload_file, wait_for_completion
from .model_selection import ensure_model_selection
from .navigation import ensure_logged_in, ensure_not_blocked, ensure_prompt_ready, navigate
from .prompt_composer import clear_composer, read_turn_count, submit_prompt, verify_committed
from .thinking_time import ensure_thinking_time

__all__ = [
    "AssistantResponseReader",
    "capture_markdown",
    "parse_snapshot",
    "upload_file",
    "wait_for_completion",
    "ensure_model_selection",
    "navigate",
    "ensure_not_blocked",
    "ensure_logged_in",
    "ensure_prompt_ready",
    "clear_composer",
    "read_turn_count",
    "submit_prompt",
    "verify_committed",
    "ensure_thinking_time",
]
