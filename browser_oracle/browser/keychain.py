"""
Secure-storage lookup of the Chrome cookie encryption password.

Chrome-family browsers store the key that encrypts their cookie database in
the OS credential store under a "<Browser> Safe Storage" service. Which
label holds it depends on the browser, so the lookup tries the primary
label first, then labels from ORACLE_KEYCHAIN_LABELS, then the built-in
list below. Results are memoized in the TTLCache the caller passes in.
"""

import json
import logging
import os
from collections.abc import Callable, Mapping
from typing import NamedTuple

import keyring
from keyring.errors import KeyringError

from browser_oracle.config.constants import ENV_KEYCHAIN_LABELS
from browser_oracle.utils.cache import TTLCache

logger = logging.getLogger(__name__)


class KeychainLabel(NamedTuple):
    service: str
    account: str


DEFAULT_LABELS = (
    KeychainLabel("Chrome Safe Storage", "Chrome"),
    KeychainLabel("Chromium Safe Storage", "Chromium"),
    KeychainLabel("Microsoft Edge Safe Storage", "Microsoft Edge"),
    KeychainLabel("Brave Safe Storage", "Brave"),
    KeychainLabel("Vivaldi Safe Storage", "Vivaldi"),
)


def load_env_labels(env: Mapping[str, str] | None = None) -> list[KeychainLabel]:
    """Parse ORACLE_KEYCHAIN_LABELS; malformed payloads contribute nothing."""
    env = os.environ if env is None else env
    raw = env.get(ENV_KEYCHAIN_LABELS, "").strip()
    if not raw:
        return []
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning(f"Ignoring {ENV_KEYCHAIN_LABELS}: not valid JSON")
        return []
    if not isinstance(parsed, list):
        logger.warning(f"Ignoring {ENV_KEYCHAIN_LABELS}: expected a JSON list")
        return []
    labels = []
    for entry in parsed:
        if isinstance(entry, dict) and entry.get("service") and entry.get("account"):
            labels.append(KeychainLabel(str(entry["service"]), str(entry["account"])))
    return labels


def candidate_labels(
    primary: KeychainLabel = DEFAULT_LABELS[0], env: Mapping[str, str] | None = None
) -> list[KeychainLabel]:
    """Primary label, then env labels, then defaults; duplicates removed."""
    ordered: list[KeychainLabel] = []
    for label in [primary, *load_env_labels(env), *DEFAULT_LABELS]:
        if label not in ordered:
            ordered.append(label)
    return ordered


def read_safe_storage_password(
    primary: KeychainLabel = DEFAULT_LABELS[0],
    *,
    cache: TTLCache | None = None,
    env: Mapping[str, str] | None = None,
    get_password: Callable[[str, str], str | None] = keyring.get_password,
) -> str | None:
    """
    Return the first password found across the candidate labels.

    Backend errors for one label are logged and the next label is tried.
    """

    def lookup() -> str | None:
        for label in candidate_labels(primary, env):
            try:
                value = get_password(label.service, label.account)
            except KeyringError as e:
                logger.debug(f"Keychain lookup for {label.service!r} failed: {e}")
                continue
            if value:
                logger.debug(f"Found cookie encryption password under {label.service!r}")
                return value
        return None

    if cache is None:
        return lookup()
    return cache.get_or_set(("safe-storage", primary), lookup)
