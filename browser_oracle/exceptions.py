"""
Custom exceptions for browser-oracle.

Every failure the browser engine surfaces is one of these types, so callers
can tell "the site asked for a login" apart from "Chrome died" without
parsing messages. All inherit from BrowserOracleError, which carries the
pipeline stage that failed, free-form details and, when verbose diagnostics
were enabled, a DOM snapshot captured at the moment of failure.

Exception Hierarchy:
    BrowserOracleError (base)
    ├── ConfigurationError
    │   ├── ConfigFileNotFoundError
    │   ├── ConfigValidationError
    │   ├── BrowserNotFoundError
    │   └── ProfileNotFoundError
    ├── PageStateError
    │   ├── BlockedError
    │   ├── LoginRequiredError
    │   └── ElementNotFoundError
    ├── PromptNotCommittedError
    │   └── PromptTooLargeError
    ├── AttachmentError
    │   ├── AttachmentInputNotFoundError
    │   ├── AttachmentNotRegisteredError
    │   └── AttachmentUploadTimeoutError
    ├── AssistantTimeoutError
    ├── ProtocolError
    ├── LockTimeoutError
    ├── ProcessError
    └── CookieSyncError

Usage:
    from browser_oracle.exceptions import BlockedError, LoginRequiredError

    try:
        result = await run_browser_automation(prompt, config=config)
    except (BlockedError, LoginRequiredError) as e:
        console.error(f"Browser needs a human: {e}")
"""

from typing import Any


class BrowserOracleError(Exception):
    """
    Base exception for all browser-oracle errors.

    Attributes:
        stage: Pipeline stage that raised (e.g. "submit-prompt"), if known
        details: Structured extra data for logs and JSON output
        snapshot: Best-effort DiagnosticSnapshot (None unless verbose)
    """

    def __init__(
        self,
        message: str,
        *,
        stage: str | None = None,
        details: dict[str, Any] | None = None,
        snapshot: Any = None,
    ):
        super().__init__(message)
        self.stage = stage
        self.details = details or {}
        self.snapshot = snapshot


# ============================================================================
# Configuration Errors
# ============================================================================


class ConfigurationError(BrowserOracleError):
    """
    Base class for configuration and environment errors.

    Also raised when the composer never becomes reachable, since that almost
    always means the URL or profile is wrong rather than a transient fault.
    """

    pass


class ConfigFileNotFoundError(ConfigurationError):
    """
    Configuration file does not exist at the specified path.

    Example:
        raise ConfigFileNotFoundError("Configuration file not found: oracle.yaml")
    """

    pass


class ConfigValidationError(ConfigurationError):
    """
    Configuration is invalid (bad YAML, schema validation, bad env value).

    Example:
        raise ConfigValidationError("debug_port: must be between 1 and 65535")
    """

    pass


class BrowserNotFoundError(ConfigurationError):
    """No Chrome/Chromium executable was found by any detection step."""

    pass


class ProfileNotFoundError(ConfigurationError):
    """
    The source browser profile to copy does not exist.

    Example:
        raise ProfileNotFoundError(
            "Chrome profile not found at ~/.config/google-chrome/Default. "
            "Log in once in Chrome, then retry."
        )
    """

    pass


# ============================================================================
# Page State Errors
# ============================================================================


class PageStateError(BrowserOracleError):
    """Base class for pages that are not in a state the engine can drive."""

    pass


class BlockedError(PageStateError):
    """
    An anti-automation challenge wall is in front of the chat UI.

    Attributes:
        kind: "challenge" for a recognised interstitial, "unknown" otherwise
    """

    def __init__(self, message: str, kind: str = "challenge", **kwargs: Any):
        super().__init__(message, **kwargs)
        self.kind = kind


class LoginRequiredError(PageStateError):
    """No composer appeared; the profile is not signed in."""

    pass


class ElementNotFoundError(PageStateError):
    """
    Every selector in an ordered selector list was tried and none matched.

    Example:
        raise ElementNotFoundError('Unable to find model option matching "GPT-5"')
    """

    pass


# ============================================================================
# Prompt Errors
# ============================================================================


class PromptNotCommittedError(BrowserOracleError):
    """
    The prompt was sent but never showed up as a new conversation turn.

    Attributes:
        observation: Last ConversationObservation seen before the timeout
    """

    def __init__(self, message: str, observation: Any = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.observation = observation


class PromptTooLargeError(PromptNotCommittedError):
    """The composer silently truncated the prompt (very large inputs)."""

    pass


# ============================================================================
# Attachment Errors
# ============================================================================


class AttachmentError(BrowserOracleError):
    """Base class for file attachment failures."""

    pass


class AttachmentInputNotFoundError(AttachmentError):
    """No file-input element matched any configured selector."""

    pass


class AttachmentNotRegisteredError(AttachmentError):
    """
    The file was assigned but the input never listed it.

    Example:
        raise AttachmentNotRegisteredError("Attachment did not register: notes.md")
    """

    pass


class AttachmentUploadTimeoutError(AttachmentError):
    """Uploads were still in progress (or send stayed disabled) at the deadline."""

    pass


# ============================================================================
# Response Errors
# ============================================================================


class AssistantTimeoutError(BrowserOracleError):
    """No completed assistant turn was observed, including the recheck window."""

    pass


# ============================================================================
# Infrastructure Errors
# ============================================================================


class ProtocolError(BrowserOracleError):
    """
    DevTools connection failure: domain unavailable, connection dropped,
    target closed, or a script raised inside the page.
    """

    pass


class LockTimeoutError(BrowserOracleError):
    """
    A shared profile lock was still held when the acquire budget ran out.

    Example:
        raise LockTimeoutError("profile lock still held by pid 4242 after 300s")
    """

    pass


class ProcessError(BrowserOracleError):
    """The browser process failed to start, exited early, or never exposed DevTools."""

    pass


class CookieSyncError(BrowserOracleError):
    """Cookies could not be read, decrypted, or applied (unless errors are allowed)."""

    pass
