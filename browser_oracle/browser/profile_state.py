"""
On-disk state of automation profiles.

A manual-login profile outlives the run that created it, so the next run
needs to know whether a Chrome is still serving it and whether another run
is using it right now. This module owns the files that answer that:

- ``oracle-automation.lock``: ProfileLock marker ({pid, lockId, createdAt,
  sessionId}); serializes runs sharing one profile
- ``DevToolsActivePort`` (root and Default/): debug port of the live Chrome
- ``chrome.pid``: pid of the Chrome launched for the profile

Lock protocol:
    acquire() creates the marker with O_EXCL. When it already exists, the
    owner is checked: an unreadable marker is re-read once after 200ms and
    then deleted, a marker whose pid is dead is deleted, and a live owner is
    waited on at a fixed interval until the timeout, after which
    LockTimeoutError is raised. A held lock is never overridden.
    release() removes the marker only when it still records this lock's pid
    and lockId; anything else is a no-op.
"""

import asyncio
import json
import logging
import os
import sys
import uuid
from collections.abc import Callable
from pathlib import Path
from typing import Any

import httpx
import psutil

from browser_oracle.exceptions import LockTimeoutError
from browser_oracle.utils.time import utc_timestamp

from .retry_config import DEVTOOLS_REQUEST_TIMEOUT, create_devtools_retrying

logger = logging.getLogger(__name__)

DEVTOOLS_ACTIVE_PORT_FILENAME = "DevToolsActivePort"
CHROME_PID_FILENAME = "chrome.pid"
PROFILE_LOCK_FILENAME = "oracle-automation.lock"

DEFAULT_LOCK_POLL_MS = 1000
UNREADABLE_LOCK_REREAD_MS = 200

CHROME_LOCK_FILES = ("lockfile", "SingletonLock", "SingletonSocket", "SingletonCookie")


def is_process_alive(pid: int) -> bool:
    """True if pid exists (a process we may not signal still counts as alive)."""
    if pid <= 0:
        return False
    try:
        return psutil.pid_exists(pid)
    except psutil.AccessDenied:
        return True


# ============================================================================
# DevToolsActivePort / chrome.pid
# ============================================================================


def devtools_active_port_paths(user_data_dir: Path) -> list[Path]:
    """Locations Chrome may write DevToolsActivePort to, root first."""
    return [
        user_data_dir / DEVTOOLS_ACTIVE_PORT_FILENAME,
        user_data_dir / "Default" / DEVTOOLS_ACTIVE_PORT_FILENAME,
    ]


def read_devtools_port(user_data_dir: Path) -> int | None:
    """
    Read the DevTools port recorded in a profile directory.

    Args:
        user_data_dir: Chrome user-data directory

    Returns:
        Port from the first line of the first readable DevToolsActivePort
        file, or None when no file holds a valid port

    Example:
        >>> write_devtools_active_port(Path("/tmp/profile"), 9222)
        >>> read_devtools_port(Path("/tmp/profile"))
        9222
    """
    for candidate in devtools_active_port_paths(user_data_dir):
        try:
            first_line = candidate.read_text(encoding="utf-8").splitlines()[0].strip()
            return int(first_line)
        except (OSError, IndexError, ValueError):
            continue
    return None


def write_devtools_active_port(user_data_dir: Path, port: int) -> None:
    """Record port in every DevToolsActivePort location, creating Default/ if needed."""
    contents = f"{port}\n/devtools/browser"
    for candidate in devtools_active_port_paths(user_data_dir):
        candidate.parent.mkdir(parents=True, exist_ok=True)
        candidate.write_text(contents, encoding="utf-8")


def read_chrome_pid(user_data_dir: Path) -> int | None:
    """Return the pid in chrome.pid, or None when missing, garbled or non-positive."""
    try:
        pid = int((user_data_dir / CHROME_PID_FILENAME).read_text(encoding="utf-8").strip())
    except (OSError, ValueError):
        return None
    return pid if pid > 0 else None


def write_chrome_pid(user_data_dir: Path, pid: int) -> None:
    if pid <= 0:
        return
    user_data_dir.mkdir(parents=True, exist_ok=True)
    (user_data_dir / CHROME_PID_FILENAME).write_text(f"{pid}\n", encoding="utf-8")


async def verify_devtools_reachable(
    host: str,
    port: int,
    *,
    client: httpx.AsyncClient | None = None,
    retrying=None,
) -> tuple[bool, str | None]:
    """
    Probe http://host:port/json/version.

    Returns:
        (True, None) when Chrome answered, (False, error message) otherwise
    """
    url = f"http://{host}:{port}/json/version"
    owns_client = client is None
    client = client or httpx.AsyncClient(timeout=DEVTOOLS_REQUEST_TIMEOUT)
    try:
        async for attempt in retrying or create_devtools_retrying():
            with attempt:
                response = await client.get(url)
                response.raise_for_status()
        return True, None
    except httpx.HTTPError as e:
        return False, str(e) or type(e).__name__
    finally:
        if owns_client:
            await client.aclose()


def is_chrome_using_profile(user_data_dir: Path) -> bool:
    """True if some running Chrome was started with --user-data-dir=<user_data_dir>."""
    if sys.platform == "win32":
        return False
    needle = str(user_data_dir)
    for proc in psutil.process_iter(["cmdline"]):
        cmdline = " ".join(proc.info.get("cmdline") or [])
        lower = cmdline.lower()
        if ("chrome" in lower or "chromium" in lower) and "user-data-dir" in lower:
            if needle in cmdline:
                return True
    return False


async def should_cleanup_profile_state(
    user_data_dir: Path,
    *,
    chrome_stopped: bool,
    host: str = "127.0.0.1",
    check: Callable[..., Any] | None = None,
) -> bool:
    """
    Decide whether a manual-login profile's DevTools state files are stale.

    Args:
        user_data_dir: The manual-login profile directory
        chrome_stopped: True when this run launched the Chrome and it has exited
        host: Host the recorded DevTools port is checked on
        check: verify_devtools_reachable-compatible callable

    Returns:
        True if DevToolsActivePort may be removed. A reused or surviving
        Chrome keeps its state while the recorded port still answers, so the
        next run can attach to it.
    """
    if chrome_stopped:
        return True
    port = read_devtools_port(user_data_dir)
    if not port:
        return True
    ok, error = await (check or verify_devtools_reachable)(host, port)
    if ok:
        logger.info(f"DevTools port {port} still reachable; preserving manual-login profile state")
        return False
    logger.info(f"DevTools port {port} unreachable ({error}); clearing stale profile state")
    return True


def cleanup_stale_profile_state(user_data_dir: Path, *, remove_chrome_locks: bool = False) -> None:
    """
    Remove DevToolsActivePort files and, optionally, Chrome's own lock files.

    Chrome lock files are only touched when the recorded chrome.pid is dead
    and no other Chrome process is using the profile.
    """
    for candidate in devtools_active_port_paths(user_data_dir):
        if candidate.exists():
            candidate.unlink()
            logger.debug(f"Removed stale DevToolsActivePort: {candidate}")

    if not remove_chrome_locks:
        return

    pid = read_chrome_pid(user_data_dir)
    if not pid:
        return
    if is_process_alive(pid):
        logger.debug(f"Chrome pid {pid} still alive; skipping profile lock cleanup")
        return
    if is_chrome_using_profile(user_data_dir):
        logger.debug("Detected running Chrome using this profile; skipping profile lock cleanup")
        return

    for name in CHROME_LOCK_FILES:
        lock = user_data_dir / name
        if lock.is_symlink() or lock.exists():
            lock.unlink()
    logger.info("Cleaned up stale Chrome profile locks")


# ============================================================================
# ProfileLock
# ============================================================================


def _parse_lock(payload: str | None) -> dict[str, Any] | None:
    if not payload:
        return None
    try:
        record = json.loads(payload)
    except json.JSONDecodeError:
        return None
    if not isinstance(record, dict):
        return None
    pid = record.get("pid")
    if not isinstance(pid, int) or pid <= 0:
        return None
    if not isinstance(record.get("lockId"), str) or not record["lockId"]:
        return None
    return record


def _read_lock(path: Path) -> dict[str, Any] | None:
    try:
        return _parse_lock(path.read_text(encoding="utf-8"))
    except OSError:
        return None


def _remove(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass


class ProfileLock:
    """
    Exclusive lock over a shared profile directory.

    Example:
        >>> lock = ProfileLock(profile_dir, timeout_ms=300_000)
        >>> async with lock:
        ...     ...  # launch or reuse Chrome on profile_dir
    """

    def __init__(
        self,
        user_data_dir: str | Path,
        *,
        timeout_ms: int,
        poll_ms: int = DEFAULT_LOCK_POLL_MS,
        session_id: str | None = None,
        pid: int | None = None,
        is_alive: Callable[[int], bool] = is_process_alive,
    ):
        self.user_data_dir = Path(user_data_dir)
        self.path = self.user_data_dir / PROFILE_LOCK_FILENAME
        self.timeout_ms = timeout_ms
        self.poll_ms = poll_ms if poll_ms > 0 else DEFAULT_LOCK_POLL_MS
        self.session_id = session_id
        self.pid = pid or os.getpid()
        self.lock_id = str(uuid.uuid4())
        self.acquired = False
        self._is_alive = is_alive

    def _try_create(self) -> bool:
        self.user_data_dir.mkdir(parents=True, exist_ok=True)
        record = {
            "pid": self.pid,
            "lockId": self.lock_id,
            "createdAt": utc_timestamp(),
            "sessionId": self.session_id,
        }
        try:
            fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            return False
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(record, f)
        return True

    async def acquire(self) -> "ProfileLock":
        """
        Wait for and take the lock.

        Raises:
            LockTimeoutError: If a live owner still holds it after timeout_ms
        """
        loop = asyncio.get_running_loop()
        started = loop.time()
        warned = False

        while True:
            if self._try_create():
                self.acquired = True
                logger.info(f"Acquired profile lock at {self.path}")
                return self

            existing = _read_lock(self.path)
            if existing is None:
                await asyncio.sleep(UNREADABLE_LOCK_REREAD_MS / 1000)
                existing = _read_lock(self.path)
                if existing is None:
                    logger.warning("Profile lock unreadable; deleting lockfile")
                    _remove(self.path)
                    continue

            if not self._is_alive(existing["pid"]):
                logger.info(f"Removing stale profile lock left by dead pid {existing['pid']}")
                _remove(self.path)
                continue

            if not warned:
                logger.info(
                    f"Profile lock held by pid {existing['pid']}; "
                    f"waiting up to {round(self.timeout_ms / 1000)}s"
                )
                warned = True

            elapsed_ms = (loop.time() - started) * 1000
            if elapsed_ms >= self.timeout_ms:
                raise LockTimeoutError(
                    f"profile lock still held by pid {existing['pid']} "
                    f"after {round(elapsed_ms / 1000)}s",
                    details={"lock_path": str(self.path), "owner_pid": existing["pid"]},
                )
            await asyncio.sleep(min(self.poll_ms, self.timeout_ms - elapsed_ms) / 1000)

    def release(self) -> None:
        """Remove the marker if this lock still owns it; otherwise do nothing."""
        existing = _read_lock(self.path)
        if not existing or existing["lockId"] != self.lock_id or existing["pid"] != self.pid:
            return
        _remove(self.path)
        self.acquired = False
        logger.info(f"Released profile lock {self.path}")

    async def __aenter__(self) -> "ProfileLock":
        return await self.acquire()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.release()
