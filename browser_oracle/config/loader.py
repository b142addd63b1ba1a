"""
Configuration loader for browser-oracle.

Merges four layers into one frozen BrowserAutomationConfig, highest
precedence first:

1. explicit overrides (CLI flags, library callers)
2. environment variables (ORACLE_BROWSER_*, CHROME_PATH)
3. YAML configuration file
4. model defaults

Functions:
    load_config_file: Read and sanity-check a YAML file into a dict
    resolve_env_overrides: Map environment variables to config fields
    resolve_config: Main entrypoint returning BrowserAutomationConfig
"""

import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from browser_oracle.exceptions import ConfigFileNotFoundError, ConfigValidationError

from .constants import (
    ENV_ALLOW_COOKIE_ERRORS,
    ENV_BROWSER_DEBUG_PORT,
    ENV_BROWSER_PORT,
    ENV_CHROME_PATH,
    ENV_PROFILE_DIR,
    ENV_REMOTE_CHROME,
)
from .schema import BrowserAutomationConfig, RemoteChrome

_TRUTHY = {"1", "true", "yes", "on"}


def load_config_file(config_path: str | Path) -> dict[str, Any]:
    """
    Load a YAML configuration file.

    The file may either hold the config fields at the top level or nest them
    under a ``browser:`` key.

    Raises:
        ConfigFileNotFoundError: If the file does not exist
        ConfigValidationError: If the YAML is malformed or not a mapping

    Security:
        Uses yaml.safe_load(); inline cookie values in the file are never logged.
    """
    config_path = Path(config_path)

    if not config_path.exists():
        raise ConfigFileNotFoundError(f"Configuration file not found: {config_path}")

    try:
        with config_path.open(encoding="utf-8") as f:
            raw_config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigValidationError(f"Invalid YAML syntax in {config_path}: {e}") from e
    except OSError as e:
        raise ConfigValidationError(
            f"Failed to read configuration file {config_path}: {e}"
        ) from e

    if raw_config is None:
        raise ConfigValidationError(f"Configuration file is empty: {config_path}")

    if not isinstance(raw_config, dict):
        raise ConfigValidationError(
            f"Configuration root must be a mapping in {config_path}, "
            f"got {type(raw_config).__name__}"
        )

    browser_section = raw_config.get("browser", raw_config)
    if not isinstance(browser_section, dict):
        raise ConfigValidationError(f"'browser' section must be a mapping in {config_path}")

    return dict(browser_section)


def resolve_env_overrides(env: Mapping[str, str] | None = None) -> dict[str, Any]:
    """
    Translate supported environment variables into config fields.

    Unset or blank variables contribute nothing.

    Raises:
        ConfigValidationError: If a port or remote address is malformed
    """
    env = os.environ if env is None else env
    overrides: dict[str, Any] = {}

    chrome_path = env.get(ENV_CHROME_PATH, "").strip()
    if chrome_path:
        overrides["chrome_path"] = chrome_path

    for var in (ENV_BROWSER_PORT, ENV_BROWSER_DEBUG_PORT):
        raw_port = env.get(var, "").strip()
        if raw_port:
            try:
                overrides["debug_port"] = int(raw_port)
            except ValueError as e:
                raise ConfigValidationError(
                    f"Invalid {var}={raw_port!r}: expected an integer port"
                ) from e
            break

    profile_dir = env.get(ENV_PROFILE_DIR, "").strip()
    if profile_dir:
        overrides["profile_dir"] = Path(profile_dir).expanduser()

    allow_errors = env.get(ENV_ALLOW_COOKIE_ERRORS, "").strip().lower()
    if allow_errors:
        overrides["allow_cookie_errors"] = allow_errors in _TRUTHY

    remote = env.get(ENV_REMOTE_CHROME, "").strip()
    if remote:
        try:
            overrides["remote_chrome"] = RemoteChrome.parse(remote)
        except ValueError as e:
            raise ConfigValidationError(f"Invalid {ENV_REMOTE_CHROME}: {e}") from e

    return overrides


def resolve_config(
    config_path: str | Path | None = None,
    overrides: Mapping[str, Any] | None = None,
    env: Mapping[str, str] | None = None,
) -> BrowserAutomationConfig:
    """
    Build the run's BrowserAutomationConfig.

    Args:
        config_path: Optional YAML file
        overrides: Explicit values; keys whose value is None are ignored so
            unset CLI options do not mask lower layers
        env: Environment mapping (defaults to os.environ)

    Returns:
        Frozen, validated BrowserAutomationConfig

    Raises:
        ConfigFileNotFoundError: If config_path does not exist
        ConfigValidationError: If any layer fails validation

    Example:
        >>> config = resolve_config(overrides={"headless": True})
        >>> config.headless
        True
    """
    merged: dict[str, Any] = {}

    if config_path is not None:
        merged.update(load_config_file(config_path))

    merged.update(resolve_env_overrides(env))

    if overrides:
        merged.update({k: v for k, v in overrides.items() if v is not None})

    try:
        return BrowserAutomationConfig.model_validate(merged)
    except ValidationError as e:
        error_messages = []
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"]) or "<root>"
            error_messages.append(f"  - {loc}: {error['msg']}")

        source = f" in {config_path}" if config_path is not None else ""
        raise ConfigValidationError(
            f"Configuration validation failed{source}:\n" + "\n".join(error_messages)
        ) from e
