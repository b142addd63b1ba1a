"""
Configuration schema models for browser-oracle.

Pydantic v2 models that validate the merged configuration (YAML file,
environment, CLI flags) into one immutable BrowserAutomationConfig per run.

Models:
    RemoteChrome: host/port of an already-running Chrome to attach to
    InlineCookie: one cookie supplied directly in config instead of read
                  from a browser profile
    BrowserAutomationConfig: fully-resolved, frozen run settings
"""

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .constants import (
    CHATGPT_URL,
    DEFAULT_ASSISTANT_RECHECK_TIMEOUT_MS,
    DEFAULT_ATTACHMENT_REGISTER_TIMEOUT_MS,
    DEFAULT_ATTACHMENT_TIMEOUT_MS,
    DEFAULT_AUTO_REATTACH_INTERVAL_MS,
    DEFAULT_CHROME_PROFILE,
    DEFAULT_COMMIT_TIMEOUT_MS,
    DEFAULT_INPUT_TIMEOUT_MS,
    DEFAULT_MANUAL_LOGIN_PROFILE_DIR,
    DEFAULT_MODEL_TARGET,
    DEFAULT_NAVIGATION_TIMEOUT_MS,
    DEFAULT_PROFILE_LOCK_TIMEOUT_MS,
    DEFAULT_REUSE_CHROME_WAIT_MS,
    DEFAULT_TIMEOUT_MS,
)

ModelStrategy = Literal["select", "current", "ignore"]
ThinkingTime = Literal["light", "standard", "extended", "heavy"]

MODEL_STRATEGIES = ("select", "current", "ignore")
THINKING_TIMES = ("light", "standard", "extended", "heavy")


def _validate_port(v: int | None) -> int | None:
    if v is not None and not 1 <= v <= 65535:
        raise ValueError(f"port must be between 1 and 65535, got: {v}")
    return v


class RemoteChrome(BaseModel):
    """
    An externally managed Chrome exposing DevTools on host:port.

    When set, the engine attaches instead of launching and never kills the
    process on teardown.
    """

    model_config = ConfigDict(frozen=True)

    host: str = "127.0.0.1"
    port: int

    @field_validator("port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        return _validate_port(v)

    @classmethod
    def parse(cls, value: str) -> "RemoteChrome":
        """Parse ``host:port`` or a bare ``port``."""
        host, sep, port = value.rpartition(":")
        if not sep:
            host, port = "127.0.0.1", value
        try:
            return cls(host=host or "127.0.0.1", port=int(port))
        except ValueError as e:
            raise ValueError(f"Invalid remote Chrome address: {value!r}") from e


class InlineCookie(BaseModel):
    """
    A cookie supplied in configuration.

    Accepts both snake_case and the DevTools camelCase spellings
    (``httpOnly``, ``sameSite``) so exported cookie JSON can be pasted in.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str
    value: str
    domain: str | None = None
    path: str | None = None
    url: str | None = None
    secure: bool | None = None
    http_only: bool | None = Field(default=None, alias="httpOnly")
    expires: float | None = None
    same_site: Literal["Strict", "Lax", "None"] | None = Field(
        default=None, alias="sameSite"
    )

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Validate cookie name is non-empty."""
        if not v or v.isspace():
            raise ValueError("cookie name cannot be empty")
        return v.strip()


class BrowserAutomationConfig(BaseModel):
    """
    Immutable, fully-resolved settings for one browser automation run.

    Built once by config.loader.resolve_config() from defaults, YAML,
    environment and explicit overrides. All durations are milliseconds.

    Attributes (selected):
        url: Chat front end to drive
        chrome_profile: Source profile name for cookie or profile copy
        profile_dir: Persistent manual-login profile directory
        timeout_ms: Budget for the assistant answer
        assistant_recheck_delay_ms / assistant_recheck_timeout_ms: Delayed
            second poll window after an answer timeout (timeout 0 disables)
        auto_reattach_*: Reconnect policy after a dropped DevTools connection
            (timeout 0 disables)
        model_strategy: "select" picks desired_model, "current" only reports
            the active model, "ignore" skips the picker
        thinking_time: Optional thinking level to select after the model
        remote_chrome: Attach to an existing Chrome instead of launching
        strict_tab_isolation: Fail instead of falling back to the default
            target when a dedicated tab cannot be opened
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    url: str = CHATGPT_URL
    chrome_profile: str = DEFAULT_CHROME_PROFILE
    chrome_path: str | None = None
    chrome_cookie_path: str | None = None
    profile_dir: Path | None = None

    timeout_ms: int = DEFAULT_TIMEOUT_MS
    navigation_timeout_ms: int = DEFAULT_NAVIGATION_TIMEOUT_MS
    input_timeout_ms: int = DEFAULT_INPUT_TIMEOUT_MS
    commit_timeout_ms: int = DEFAULT_COMMIT_TIMEOUT_MS
    attachment_register_timeout_ms: int = DEFAULT_ATTACHMENT_REGISTER_TIMEOUT_MS
    attachment_timeout_ms: int = DEFAULT_ATTACHMENT_TIMEOUT_MS
    assistant_recheck_delay_ms: int = 0
    assistant_recheck_timeout_ms: int = DEFAULT_ASSISTANT_RECHECK_TIMEOUT_MS
    reuse_chrome_wait_ms: int = DEFAULT_REUSE_CHROME_WAIT_MS
    profile_lock_timeout_ms: int = DEFAULT_PROFILE_LOCK_TIMEOUT_MS
    auto_reattach_delay_ms: int = 0
    auto_reattach_interval_ms: int = DEFAULT_AUTO_REATTACH_INTERVAL_MS
    auto_reattach_timeout_ms: int = 0

    cookie_sync: bool = True
    cookie_names: tuple[str, ...] | None = None
    cookie_sync_wait_ms: int = 0
    inline_cookies: tuple[InlineCookie, ...] | None = None
    allow_cookie_errors: bool = False

    headless: bool = False
    hide_window: bool = False
    keep_browser: bool = False
    manual_login: bool = False
    manual_login_cookie_sync: bool = False
    profile_copy: bool = False

    desired_model: str | None = DEFAULT_MODEL_TARGET
    model_strategy: ModelStrategy = "select"
    thinking_time: ThinkingTime | None = None

    remote_chrome: RemoteChrome | None = None
    strict_tab_isolation: bool = False
    debug_port: int | None = None
    heartbeat_interval_ms: int | None = None
    debug: bool = False

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate url is http(s)."""
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"url must start with http:// or https://, got: {v}")
        return v

    @field_validator("debug_port")
    @classmethod
    def validate_debug_port(cls, v: int | None) -> int | None:
        return _validate_port(v)

    @field_validator(
        "timeout_ms",
        "navigation_timeout_ms",
        "input_timeout_ms",
        "commit_timeout_ms",
        "attachment_register_timeout_ms",
        "attachment_timeout_ms",
        "profile_lock_timeout_ms",
        "auto_reattach_interval_ms",
    )
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError(f"must be positive, got: {v}")
        return v

    @field_validator(
        "assistant_recheck_delay_ms",
        "assistant_recheck_timeout_ms",
        "reuse_chrome_wait_ms",
        "auto_reattach_delay_ms",
        "auto_reattach_timeout_ms",
        "cookie_sync_wait_ms",
    )
    @classmethod
    def validate_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError(f"must not be negative, got: {v}")
        return v

    @field_validator("heartbeat_interval_ms")
    @classmethod
    def validate_heartbeat(cls, v: int | None) -> int | None:
        if v is not None and v <= 0:
            return None
        return v

    @field_validator("model_strategy", mode="before")
    @classmethod
    def normalize_model_strategy(cls, v):
        if v is None:
            return "select"
        normalized = str(v).strip().lower()
        if not normalized:
            return "select"
        if normalized not in MODEL_STRATEGIES:
            raise ValueError(
                f'Invalid browser model strategy: "{v}". '
                'Expected "select", "current", or "ignore".'
            )
        return normalized

    @field_validator("thinking_time", mode="before")
    @classmethod
    def normalize_thinking_time(cls, v):
        if v is None:
            return None
        normalized = str(v).strip().lower()
        if not normalized:
            return None
        if normalized not in THINKING_TIMES:
            raise ValueError(
                f'Invalid thinking time: "{v}". Expected one of: {", ".join(THINKING_TIMES)}'
            )
        return normalized

    @field_validator("cookie_names", mode="before")
    @classmethod
    def normalize_cookie_names(cls, v):
        if v is None:
            return None
        if isinstance(v, str):
            v = v.split(",")
        names = tuple(name.strip() for name in v if name and name.strip())
        return names or None

    @model_validator(mode="after")
    def validate_profile_modes(self) -> "BrowserAutomationConfig":
        if self.manual_login and self.profile_copy:
            raise ValueError(
                "profile_copy cannot be combined with manual_login "
                "(the manual-login profile is already persistent)"
            )
        if self.model_strategy == "select" and not self.desired_model:
            raise ValueError("desired_model is required when model_strategy is 'select'")
        return self

    @property
    def effective_commit_timeout_ms(self) -> int:
        return max(self.commit_timeout_ms, self.input_timeout_ms)

    @property
    def resolved_profile_dir(self) -> Path:
        """Manual-login profile directory, defaulting to ~/.oracle/browser-profile."""
        return self.profile_dir or DEFAULT_MANUAL_LOGIN_PROFILE_DIR
