"""ChatGPT observer (chatgpt.com, chat.openai.com, atlas.openai.com)."""

from ..constants import (
    ASSISTANT_ROLE_SELECTOR,
    CONVERSATION_TURN_SELECTOR,
    COPY_BUTTON_SELECTOR,
    FINISHED_ACTIONS_SELECTOR,
    INPUT_SELECTORS,
    SEND_BUTTON_SELECTORS,
    STOP_BUTTON_SELECTOR,
)
from .base import SiteObserver, SiteRegistry


@SiteRegistry.register
class ChatGPTObserver(SiteObserver):
    name = "chatgpt"
    hosts = ("chatgpt.com", "chat.openai.com", "atlas.openai.com")
    input_selectors = INPUT_SELECTORS
    send_button_selectors = SEND_BUTTON_SELECTORS
    turn_selector = CONVERSATION_TURN_SELECTOR
    assistant_selector = ASSISTANT_ROLE_SELECTOR
    stop_selector = STOP_BUTTON_SELECTOR
    finished_actions_selector = FINISHED_ACTIONS_SELECTOR
    copy_button_selector = COPY_BUTTON_SELECTOR
