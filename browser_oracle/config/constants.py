"""
Configuration constants for browser-oracle.

Defaults and environment variable names shared by the config loader, the CLI
and the browser engine.
"""

from pathlib import Path

CHATGPT_URL = "https://chatgpt.com/"
GROK_URL = "https://grok.com/"

DEFAULT_MODEL_TARGET = "GPT-5.2 Pro"
DEFAULT_CHROME_PROFILE = "Default"
DEFAULT_MANUAL_LOGIN_PROFILE_DIR = Path.home() / ".oracle" / "browser-profile"

# Origins whose cookies are replayed into the automation browser.
COOKIE_URLS = (
    "https://chatgpt.com",
    "https://chat.openai.com",
    "https://atlas.openai.com",
    "https://grok.com",
)

# Timeouts (milliseconds)
DEFAULT_TIMEOUT_MS = 1_200_000
DEFAULT_NAVIGATION_TIMEOUT_MS = 45_000
DEFAULT_INPUT_TIMEOUT_MS = 30_000
DEFAULT_COMMIT_TIMEOUT_MS = 60_000
DEFAULT_ATTACHMENT_REGISTER_TIMEOUT_MS = 10_000
DEFAULT_ATTACHMENT_TIMEOUT_MS = 120_000
DEFAULT_ASSISTANT_RECHECK_TIMEOUT_MS = 120_000
DEFAULT_REUSE_CHROME_WAIT_MS = 10_000
DEFAULT_PROFILE_LOCK_TIMEOUT_MS = 300_000
DEFAULT_AUTO_REATTACH_INTERVAL_MS = 2_000

# More than this many files are bundled into one upload.
MAX_ATTACHMENTS = 10

# Environment overrides
ENV_CHROME_PATH = "CHROME_PATH"
ENV_BROWSER_PORT = "ORACLE_BROWSER_PORT"
ENV_BROWSER_DEBUG_PORT = "ORACLE_BROWSER_DEBUG_PORT"
ENV_PROFILE_DIR = "ORACLE_BROWSER_PROFILE_DIR"
ENV_ALLOW_COOKIE_ERRORS = "ORACLE_BROWSER_ALLOW_COOKIE_ERRORS"
ENV_REMOTE_DEBUG_HOST = "ORACLE_BROWSER_REMOTE_DEBUG_HOST"
ENV_REMOTE_CHROME = "ORACLE_BROWSER_REMOTE_CHROME"
ENV_KEYCHAIN_LABELS = "ORACLE_KEYCHAIN_LABELS"
