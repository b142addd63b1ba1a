"""
DOM selectors for the supported chat front ends.

Lists are ordered: callers try entries first to last and the first match
wins, so more specific selectors come before generic fallbacks.
"""

INPUT_SELECTORS = (
    'textarea[aria-label="Ask Grok anything"]',
    'textarea[data-id="prompt-textarea"]',
    'textarea[placeholder*="Send a message"]',
    'textarea[aria-label="Message ChatGPT"]',
    "textarea:not([disabled])",
    'textarea[name="prompt-textarea"]',
    "#prompt-textarea",
    ".ProseMirror",
    '[contenteditable="true"]',
    '[contenteditable="true"][data-virtualkeyboard="true"]',
)

PROMPT_PRIMARY_SELECTOR = "#prompt-textarea"
PROMPT_FALLBACK_SELECTOR = 'textarea[name="prompt-textarea"]'

CONVERSATION_TURN_SELECTOR = (
    'article[data-testid^="conversation-turn"], div[data-testid^="conversation-turn"], '
    'section[data-testid^="conversation-turn"], '
    "article[data-message-author-role], div[data-message-author-role], "
    "section[data-message-author-role], "
    "article[data-turn], div[data-turn], section[data-turn]"
)

ASSISTANT_ROLE_SELECTOR = (
    '[data-message-author-role="assistant"], [data-turn="assistant"], .message-assistant'
)

CLOUDFLARE_SCRIPT_SELECTOR = 'script[src*="/challenge-platform/"]'
CLOUDFLARE_TITLE = "just a moment"
BLOCKED_TITLES = ("access denied", "attention required", "request blocked")

LOGIN_BUTTON_SELECTORS = (
    'button[data-testid="login-button"]',
    'a[href*="/auth/login"]',
)

FILE_INPUT_SELECTORS = (
    'form input[type="file"]:not([accept])',
    'input[type="file"][multiple]:not([accept])',
    'input[type="file"][multiple]',
    'input[type="file"]:not([accept])',
    'form input[type="file"][accept]',
    'input[type="file"][accept]',
    'input[type="file"]',
    'input[type="file"][data-testid*="file"]',
)

COMPOSER_PLUS_SELECTORS = (
    "#composer-plus-btn",
    'button[data-testid="composer-plus-btn"]',
    'button[aria-label*="attachment"]',
    'button[aria-label*="file"]',
)

MENU_CONTAINER_SELECTOR = '[role="menu"], [data-radix-collection-root]'
MENU_ITEM_SELECTOR = (
    'button, [role="menuitem"], [role="menuitemradio"], [data-testid*="model-switcher-"]'
)

UPLOAD_STATUS_SELECTORS = (
    '[data-testid*="upload"]',
    '[data-testid*="attachment"]',
    '[data-testid*="progress"]',
    '[data-state="loading"]',
    '[data-state="uploading"]',
    '[data-state="pending"]',
    '[aria-live="polite"]',
    '[aria-live="assertive"]',
)

ATTACHMENT_CHIP_SELECTORS = (
    '[data-testid*="chip"]',
    '[data-testid*="attachment"]',
    '[data-testid*="upload"]',
    '[aria-label="Remove file"]',
)

STOP_BUTTON_SELECTOR = (
    '[data-testid="stop-button"], button[aria-label*="Stop"], '
    'button[aria-label*="Cancel"], button[aria-label*="Abort"]'
)

SEND_BUTTON_SELECTORS = (
    'button[data-testid="send-button"]',
    'button[data-testid*="composer-send"]',
    'form button[type="submit"]',
    'button[type="submit"][data-testid*="send"]',
    'button[aria-label*="Send"]',
)

MODEL_BUTTON_SELECTOR = (
    '[data-testid="model-switcher-dropdown-button"], button[aria-label="Model select"]'
)

THINKING_CHIP_SELECTORS = (
    '[data-testid="composer-footer-actions"] button[aria-haspopup="menu"]',
    'button.__composer-pill[aria-haspopup="menu"]',
    '.__composer-pill-composite button[aria-haspopup="menu"]',
)

COPY_BUTTON_SELECTOR = (
    'button[data-testid="copy-turn-action-button"], button[aria-label="Copy"], '
    'button[aria-label*="Copy"]'
)

# Action controls that only render once a turn has finished streaming.
FINISHED_ACTIONS_SELECTOR = (
    'button[data-testid="copy-turn-action-button"], '
    'button[data-testid="good-response-turn-action-button"], '
    'button[data-testid="bad-response-turn-action-button"], '
    'button[aria-label="Share"], button[aria-label="Copy"], '
    'button[aria-label*="Copy"], button[aria-label="Regenerate"]'
)

# Grok (grok.com)
GROK_TURN_SELECTOR = 'div[class*="message-bubble"]'
GROK_ASSISTANT_SELECTOR = ".message-bubble:not(.bg-surface-l1):not(.text-primary-inverse)"
GROK_INPUT_SELECTORS = ('textarea[aria-label="Ask Grok anything"]',) + INPUT_SELECTORS[1:]
GROK_SEND_BUTTON_SELECTORS = ('button[aria-label="Submit"]',) + SEND_BUTTON_SELECTORS
GROK_HARD_MODE_LABELS = ("think harder", "deepsearch", "deep search")
