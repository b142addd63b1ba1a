"""
Cookie replay into the automation browser.

Session cookies reach Chrome one of two ways, chosen by the CookiePlan:

- inline: cookies from config are normalized (domain defaults to the target
  host, path "/", secure on) and replayed as-is
- profile: the user's Chrome Cookies database is read, values are decrypted
  with the Safe Storage password from the OS credential store, and the
  result is filtered to the chat origins (and optional name allowlist)

Each cookie is applied with Network.setCookie. A cookie that Chrome rejects
is counted and logged but never aborts the batch; only failing to read the
cookie store at all raises CookieSyncError (unless allow_cookie_errors).

Decryption (Chrome on macOS/Linux):
    key = PBKDF2-HMAC-SHA1(password, salt=b"saltysalt", 16 bytes,
                           iterations=1003 on macOS, 1 on Linux)
    value = AES-128-CBC(key, iv=16 spaces) over the blob after its v10/v11
            prefix, PKCS7-unpadded; databases at meta version >= 24 prefix
            the plaintext with a 32-byte SHA-256 of the host, which is dropped
"""

import asyncio
import logging
import shutil
import sqlite3
import sys
import tempfile
from collections.abc import Awaitable, Callable, Iterable
from pathlib import Path
from typing import Any
from urllib.parse import urlsplit, urlunsplit

from cryptography.hazmat.primitives import hashes, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from browser_oracle.config.constants import COOKIE_URLS
from browser_oracle.config.schema import BrowserAutomationConfig, InlineCookie
from browser_oracle.exceptions import CookieSyncError, ProtocolError
from browser_oracle.utils.cache import TTLCache

from .detect import detect_cookie_store
from .keychain import read_safe_storage_password
from .policies import build_cookie_plan
from .protocol import ProtocolSession

logger = logging.getLogger(__name__)

SALT = b"saltysalt"
IV = b" " * 16
KEY_LENGTH = 16
MACOS_ITERATIONS = 1003
LINUX_ITERATIONS = 1
LINUX_DEFAULT_PASSWORD = "peanuts"
HOST_DIGEST_LENGTH = 32
HOST_DIGEST_META_VERSION = 24

# Seconds between 1601-01-01 (WebKit epoch) and 1970-01-01
WEBKIT_EPOCH_OFFSET = 11_644_473_600

SAME_SITE_VALUES = {0: "None", 1: "Lax", 2: "Strict"}

CookieReader = Callable[..., list[dict[str, Any]]]


# ============================================================================
# Normalization
# ============================================================================


def normalize_expiration(expires: float | None) -> int | None:
    """
    Convert an expiry timestamp to Unix seconds.

    Accepts WebKit microseconds (Chrome cookie DB), Unix milliseconds
    (browser extensions, JS Date) or Unix seconds, told apart by magnitude.
    Returns None for session cookies.
    """
    if not expires or expires <= 0:
        return None
    if expires > 100_000_000_000_000:
        return round(expires / 1_000_000 - WEBKIT_EPOCH_OFFSET)
    if expires > 100_000_000_000:
        return round(expires / 1000)
    return round(expires)


def _dedupe(cookies: Iterable[dict[str, Any]]) -> list[dict[str, Any]]:
    merged: dict[str, dict[str, Any]] = {}
    for cookie in cookies:
        key = f"{cookie.get('domain') or ''}:{cookie['name']}"
        merged.setdefault(key, cookie)
    return list(merged.values())


def normalize_inline_cookies(
    cookies: Iterable[InlineCookie], fallback_host: str
) -> list[dict[str, Any]]:
    """Fill defaults for config-supplied cookies and drop duplicates."""
    normalized = []
    for cookie in cookies:
        param: dict[str, Any] = {
            "name": cookie.name,
            "value": cookie.value or "",
            "domain": cookie.domain or fallback_host,
            "path": cookie.path or "/",
            "secure": True if cookie.secure is None else cookie.secure,
            "httpOnly": False if cookie.http_only is None else cookie.http_only,
        }
        if cookie.url:
            param["url"] = cookie.url
        expires = normalize_expiration(cookie.expires)
        if expires is not None:
            param["expires"] = expires
        if cookie.same_site:
            param["sameSite"] = cookie.same_site
        normalized.append(param)
    return _dedupe(normalized)


def attach_url(cookie: dict[str, Any], fallback_url: str) -> dict[str, Any]:
    """
    Give the cookie a url so Chrome does not silently drop it.

    When a url is present the domain is removed; Chrome derives the host
    from the url and rejects some url + domain combinations.
    """
    result = dict(cookie)
    if not result.get("url"):
        domain = result.get("domain")
        if not domain or domain == "localhost":
            result["url"] = fallback_url
        elif not domain.startswith("."):
            result["url"] = f"https://{domain}"
    if result.get("url"):
        result.pop("domain", None)
    return result


def strip_query(url: str) -> str:
    parts = urlsplit(url)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))


def cookie_origins(url: str) -> list[str]:
    """The target url (query stripped) followed by every known ChatGPT/Grok origin, deduplicated."""
    origins = [strip_query(url)]
    for origin in COOKIE_URLS:
        if origin not in origins:
            origins.append(origin)
    return origins


def host_matches(host_key: str, hosts: Iterable[str]) -> bool:
    """
    Whether a cookie host_key covers any of hosts.

    Leading dots are ignored. A cookie for ".chatgpt.com" matches the hosts
    "chatgpt.com" and "auth.chatgpt.com".
    """
    bare = host_key.lstrip(".")
    for host in hosts:
        if host == bare or host.endswith(f".{bare}"):
            return True
    return False


# ============================================================================
# Chrome Cookies database
# ============================================================================


def derive_key(password: str, platform: str = sys.platform) -> bytes:
    """
    Derive the AES-128 key Chrome uses for v10/v11 cookie values.

    Args:
        password: Safe Storage password (keychain on macOS, "peanuts" on Linux)
        platform: 1003 PBKDF2 iterations on darwin, 1 elsewhere

    Returns:
        16-byte key
    """
    iterations = MACOS_ITERATIONS if platform == "darwin" else LINUX_ITERATIONS
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA1(),
        length=KEY_LENGTH,
        salt=SALT,
        iterations=iterations,
    )
    return kdf.derive(password.encode("utf-8"))


def decrypt_value(encrypted: bytes, key: bytes, meta_version: int = 0) -> str:
    """
    Decrypt one encrypted_value blob.

    Raises:
        ValueError: If the blob is not a v10/v11 value or fails to unpad
    """
    prefix = encrypted[:3]
    if prefix not in (b"v10", b"v11"):
        raise ValueError(f"unsupported cookie encryption prefix {prefix!r}")
    decryptor = Cipher(algorithms.AES(key), modes.CBC(IV)).decryptor()
    padded = decryptor.update(encrypted[3:]) + decryptor.finalize()
    unpadder = padding.PKCS7(128).unpadder()
    plain = unpadder.update(padded) + unpadder.finalize()
    if meta_version >= HOST_DIGEST_META_VERSION:
        plain = plain[HOST_DIGEST_LENGTH:]
    return plain.decode("utf-8")


def _meta_version(connection: sqlite3.Connection) -> int:
    try:
        row = connection.execute("SELECT value FROM meta WHERE key = 'version'").fetchone()
    except sqlite3.Error:
        return 0
    try:
        return int(row[0]) if row else 0
    except (TypeError, ValueError):
        return 0


def read_cookie_database(
    db_path: Path,
    hosts: Iterable[str],
    *,
    password: str | None,
    names: Iterable[str] | None = None,
    platform: str = sys.platform,
) -> list[dict[str, Any]]:
    """
    Read and decrypt cookies for hosts from a Chrome Cookies database.

    The database is copied first because a running Chrome keeps it locked.
    Cookies that fail to decrypt are skipped and counted in the log.

    Raises:
        CookieSyncError: If the database cannot be opened or queried
    """
    hosts = list(hosts)
    wanted = set(names) if names else None
    linux_key = derive_key(LINUX_DEFAULT_PASSWORD, platform)
    keyring_key = derive_key(password, platform) if password else None

    with tempfile.TemporaryDirectory(prefix="oracle-cookies-") as tmp:
        copy_path = Path(tmp) / "Cookies"
        try:
            shutil.copy2(db_path, copy_path)
            connection = sqlite3.connect(copy_path)
        except (OSError, sqlite3.Error) as e:
            raise CookieSyncError(f"Failed to open cookie database {db_path}: {e}") from e

        try:
            version = _meta_version(connection)
            rows = connection.execute(
                "SELECT host_key, name, value, encrypted_value, path, expires_utc, "
                "is_secure, is_httponly, samesite FROM cookies"
            ).fetchall()
        except sqlite3.Error as e:
            raise CookieSyncError(f"Failed to query cookie database {db_path}: {e}") from e
        finally:
            connection.close()

    cookies = []
    failures = 0
    for host_key, name, value, encrypted, path, expires, secure, http_only, same_site in rows:
        if not host_matches(host_key, hosts):
            continue
        if wanted is not None and name not in wanted:
            continue
        if not value and encrypted:
            if encrypted.startswith(b"v10") and platform != "darwin":
                key = linux_key
            else:
                key = keyring_key or linux_key
            try:
                value = decrypt_value(encrypted, key, version)
            except (ValueError, UnicodeDecodeError) as e:
                failures += 1
                logger.debug(f"Could not decrypt cookie {name} for {host_key}: {e}")
                continue
        cookie: dict[str, Any] = {
            "name": name,
            "value": value,
            "domain": host_key,
            "path": path or "/",
            "secure": bool(secure),
            "httpOnly": bool(http_only),
        }
        expiry = normalize_expiration(expires)
        if expiry is not None:
            cookie["expires"] = expiry
        if same_site in SAME_SITE_VALUES:
            cookie["sameSite"] = SAME_SITE_VALUES[same_site]
        cookies.append(cookie)

    if failures:
        logger.warning(f"Skipped {failures} cookies that could not be decrypted")
    return _dedupe(cookies)


def read_chrome_cookies(
    url: str,
    profile: str | None,
    *,
    names: Iterable[str] | None = None,
    cookie_path: str | None = None,
    cache: TTLCache | None = None,
    platform: str = sys.platform,
) -> list[dict[str, Any]]:
    """
    Read the user's Chrome cookies for the chat origins.

    Raises:
        CookieSyncError: If no cookie database is found or it cannot be read
    """
    db_path = Path(cookie_path).expanduser() if cookie_path else detect_cookie_store(profile, platform)
    if db_path is not None and db_path.is_dir():
        direct = db_path / "Cookies"
        db_path = direct if direct.is_file() else db_path / "Network" / "Cookies"
    if db_path is None or not db_path.is_file():
        raise CookieSyncError(
            f"No Chrome cookie database found for profile {profile or 'Default'!r}"
        )

    password = read_safe_storage_password(cache=cache)
    if password is None and platform == "darwin":
        raise CookieSyncError("Chrome Safe Storage password not found in the keychain")

    hosts = [urlsplit(origin).hostname or "" for origin in cookie_origins(url)]
    return read_cookie_database(db_path, hosts, password=password, names=names, platform=platform)


# ============================================================================
# Replay
# ============================================================================


async def _read_with_wait(
    read: Callable[[], list[dict[str, Any]]],
    wait_ms: int,
    sleep: Callable[[float], Awaitable[None]],
) -> list[dict[str, Any]]:
    if wait_ms <= 0:
        return await asyncio.to_thread(read)

    first_error: CookieSyncError | None = None
    cookies: list[dict[str, Any]] = []
    try:
        cookies = await asyncio.to_thread(read)
    except CookieSyncError as e:
        first_error = e

    if cookies and first_error is None:
        return cookies

    label = f"{round(wait_ms / 1000)}s" if wait_ms >= 1000 else f"{wait_ms}ms"
    if first_error is not None:
        logger.info(f"Cookie read failed ({first_error}); waiting {label} then retrying once")
    else:
        logger.info(f"No cookies found; waiting {label} then retrying once")
    await sleep(wait_ms / 1000)
    return await asyncio.to_thread(read)


async def sync_cookies(
    session: ProtocolSession,
    config: BrowserAutomationConfig,
    *,
    cache: TTLCache | None = None,
    reader: CookieReader = read_chrome_cookies,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    platform: str = sys.platform,
) -> int:
    """
    Replay cookies into the browser according to the run's CookiePlan.

    Returns:
        Number of cookies Chrome accepted

    Raises:
        CookieSyncError: If the cookie store cannot be read and
            allow_cookie_errors is off
    """
    plan = build_cookie_plan(config)
    logger.info(plan.description)
    if plan.kind == "disabled":
        return 0

    url = config.url
    try:
        if plan.kind == "inline":
            cookies = normalize_inline_cookies(
                config.inline_cookies or (), urlsplit(url).hostname or ""
            )
        elif platform == "win32":
            logger.warning("Cookie sync from a Chrome profile is not supported on Windows")
            return 0
        else:

            def read() -> list[dict[str, Any]]:
                return reader(
                    url,
                    plan.profile_name,
                    names=plan.allowlist,
                    cookie_path=config.chrome_cookie_path,
                    cache=cache,
                    platform=platform,
                )

            cookies = await _read_with_wait(read, config.cookie_sync_wait_ms, sleep)
    except CookieSyncError as e:
        if config.allow_cookie_errors:
            logger.warning(f"Cookie sync failed (continuing): {e}")
            return 0
        raise

    applied = 0
    failed = 0
    for cookie in cookies:
        try:
            if await session.set_cookie(attach_url(cookie, url)):
                applied += 1
            else:
                failed += 1
        except ProtocolError as e:
            failed += 1
            logger.warning(f"Failed to set cookie {cookie['name']}: {e}")

    logger.info(f"Applied {applied} cookies ({failed} rejected)")
    return applied
