"""
Chrome process launch.

Chrome is started with a fixed flag set that turns off background
networking, throttling, crash reporting, first-run UI, translation and
popups, pins the window size and locale, and mutes audio, so that runs are
repeatable and look less like automation. DevTools listens on a free (or
configured) port; on WSL the port is bound to an address the Windows host
can reach.
"""

import asyncio
import logging
import os
import platform as platform_module
import socket
import sys
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

import httpx

from browser_oracle.config.constants import ENV_REMOTE_DEBUG_HOST
from browser_oracle.config.schema import BrowserAutomationConfig
from browser_oracle.exceptions import BrowserNotFoundError, ProcessError

from .detect import detect_browser_binary
from .polling import poll_until
from .profile_state import write_chrome_pid, write_devtools_active_port
from .retry_config import DEVTOOLS_REQUEST_TIMEOUT

logger = logging.getLogger(__name__)

LOCAL_HOST = "127.0.0.1"
DEVTOOLS_STARTUP_TIMEOUT_MS = 30_000
DEVTOOLS_STARTUP_INTERVAL_MS = 250
KILL_GRACE_SECONDS = 5.0

BASE_FLAGS = (
    "--disable-background-networking",
    "--disable-background-timer-throttling",
    "--disable-breakpad",
    "--disable-client-side-phishing-detection",
    "--disable-default-apps",
    "--disable-hang-monitor",
    "--disable-popup-blocking",
    "--disable-prompt-on-repost",
    "--disable-sync",
    "--disable-translate",
    "--metrics-recording-only",
    "--no-first-run",
    "--safebrowsing-disable-auto-update",
    "--disable-features=TranslateUI,AutomationControlled",
    "--mute-audio",
    "--window-size=1280,720",
    "--lang=en-US",
    "--accept-lang=en-US,en",
)


@dataclass
class LaunchedChrome:
    """A Chrome process started (or adopted) by this run."""

    port: int
    host: str = LOCAL_HOST
    pid: int | None = None
    user_data_dir: Path | None = None
    process: asyncio.subprocess.Process | None = field(default=None, repr=False)

    @property
    def running(self) -> bool:
        return self.process is not None and self.process.returncode is None

    @property
    def stopped(self) -> bool:
        """True once a process this run started has exited. Adopted Chromes never stop."""
        return self.process is not None and self.process.returncode is not None

    async def kill(self) -> None:
        """Terminate Chrome, escalating to SIGKILL after a grace period."""
        if not self.running:
            return
        self.process.terminate()
        try:
            await asyncio.wait_for(self.process.wait(), timeout=KILL_GRACE_SECONDS)
        except asyncio.TimeoutError:
            logger.warning(f"Chrome pid {self.pid} ignored SIGTERM; killing")
            self.process.kill()
            await self.process.wait()


def is_wsl(
    platform: str = sys.platform,
    env: Mapping[str, str] | None = None,
    release: str | None = None,
) -> bool:
    """
    Detect Windows Subsystem for Linux.

    Checks WSL_DISTRO_NAME first, then the kernel release string. Always
    False off Linux.
    """
    if not platform.startswith("linux"):
        return False
    env = os.environ if env is None else env
    if env.get("WSL_DISTRO_NAME"):
        return True
    release = platform_module.release() if release is None else release
    return "microsoft" in release.lower()


def resolve_remote_debug_host(
    env: Mapping[str, str] | None = None,
    *,
    platform: str = sys.platform,
    resolv_conf: Path = Path("/etc/resolv.conf"),
    release: str | None = None,
) -> str | None:
    """
    Host the DevTools endpoint must be reachable on, or None for localhost.

    Order: ORACLE_BROWSER_REMOTE_DEBUG_HOST, WSL_HOST_IP, then (on WSL only)
    the first nameserver in /etc/resolv.conf.
    """
    env = os.environ if env is None else env
    override = env.get(ENV_REMOTE_DEBUG_HOST, "").strip() or env.get("WSL_HOST_IP", "").strip()
    if override:
        return override
    if not is_wsl(platform, env, release):
        return None
    try:
        lines = resolv_conf.read_text(encoding="utf-8").splitlines()
    except OSError:
        return None
    for line in lines:
        parts = line.split()
        if len(parts) >= 2 and parts[0] == "nameserver":
            return parts[1]
    return None


def build_chrome_flags(
    headless: bool,
    debug_bind_address: str | None = None,
    *,
    platform: str = sys.platform,
    wsl: bool = False,
) -> list[str]:
    """
    Assemble Chrome command-line flags for an automation run.

    Args:
        headless: Add --headless=new
        debug_bind_address: Value for --remote-debugging-address (WSL needs 0.0.0.0)

    Returns:
        Flag list without --remote-debugging-port or --user-data-dir, which
        the launcher adds itself
    """
    flags = list(BASE_FLAGS)
    if platform != "win32" and not wsl:
        flags.extend(["--password-store=basic", "--use-mock-keychain"])
    if debug_bind_address:
        flags.append(f"--remote-debugging-address={debug_bind_address}")
    if headless:
        flags.append("--headless=new")
    return flags


def find_free_port(host: str = LOCAL_HOST) -> int:
    """Ask the OS for an unused TCP port on host."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind((host, 0))
        return sock.getsockname()[1]


async def wait_for_devtools(
    host: str,
    port: int,
    process: asyncio.subprocess.Process | None = None,
    *,
    timeout_ms: int = DEVTOOLS_STARTUP_TIMEOUT_MS,
    interval_ms: int = DEVTOOLS_STARTUP_INTERVAL_MS,
) -> None:
    """
    Wait until http://host:port/json/version answers.

    Raises:
        ProcessError: If Chrome exits first or the endpoint never answers
    """
    url = f"http://{host}:{port}/json/version"

    async with httpx.AsyncClient(timeout=DEVTOOLS_REQUEST_TIMEOUT) as client:

        async def check() -> bool:
            if process is not None and process.returncode is not None:
                raise ProcessError(
                    f"Chrome exited with code {process.returncode} before DevTools was ready"
                )
            try:
                response = await client.get(url)
            except httpx.TransportError:
                return False
            return response.status_code == 200

        outcome = await poll_until(check, timeout_ms=timeout_ms, interval_ms=interval_ms)

    if not outcome.satisfied:
        raise ProcessError(
            f"Chrome DevTools did not become reachable at {host}:{port} "
            f"within {timeout_ms // 1000}s"
        )


async def launch_chrome(
    config: BrowserAutomationConfig,
    user_data_dir: Path,
    *,
    env: Mapping[str, str] | None = None,
    platform: str = sys.platform,
) -> LaunchedChrome:
    """
    Start Chrome on user_data_dir and wait for DevTools.

    Raises:
        BrowserNotFoundError: If no Chrome binary is configured or detected
        ProcessError: If Chrome fails to start or never exposes DevTools
    """
    chrome_path = config.chrome_path or detect_browser_binary(env)
    if not chrome_path:
        raise BrowserNotFoundError(
            "No Chrome or Chromium executable found. Install Chrome or set CHROME_PATH."
        )

    connect_host = resolve_remote_debug_host(env, platform=platform)
    bind_address = "0.0.0.0" if connect_host and connect_host != LOCAL_HOST else connect_host
    host = connect_host or LOCAL_HOST
    port = config.debug_port or find_free_port()

    user_data_dir.mkdir(parents=True, exist_ok=True)
    args = [
        chrome_path,
        *build_chrome_flags(
            config.headless,
            bind_address,
            platform=platform,
            wsl=is_wsl(platform, env),
        ),
        f"--remote-debugging-port={port}",
        f"--user-data-dir={user_data_dir}",
        "about:blank",
    ]

    try:
        process = await asyncio.create_subprocess_exec(
            *args,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.DEVNULL,
        )
    except OSError as e:
        raise ProcessError(f"Failed to start Chrome at {chrome_path}: {e}") from e

    chrome = LaunchedChrome(
        port=port, host=host, pid=process.pid, user_data_dir=user_data_dir, process=process
    )
    try:
        await wait_for_devtools(host, port, process)
    except ProcessError:
        await chrome.kill()
        raise

    write_chrome_pid(user_data_dir, process.pid)
    write_devtools_active_port(user_data_dir, port)
    host_label = f" on {connect_host}" if connect_host else ""
    logger.info(f"Launched Chrome (pid {process.pid}) on port {port}{host_label}")
    return chrome


async def hide_chrome_window(chrome: LaunchedChrome, platform: str = sys.platform) -> bool:
    """
    Hide the Chrome window (macOS only); elsewhere a logged no-op.

    Returns:
        True if the window was hidden
    """
    if platform != "darwin":
        logger.info("Window hiding is only supported on macOS")
        return False
    if not chrome.pid:
        logger.info("Unable to hide window: missing Chrome PID")
        return False
    script = (
        'tell application "System Events"\n'
        "  try\n"
        f"    set visible of (first process whose unix id is {chrome.pid}) to false\n"
        "  end try\n"
        "end tell"
    )
    try:
        proc = await asyncio.create_subprocess_exec(
            "osascript",
            "-e",
            script,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
        )
        _, stderr = await proc.communicate()
    except OSError as e:
        logger.warning(f"Failed to hide Chrome window: {e}")
        return False
    if proc.returncode != 0:
        logger.warning(f"Failed to hide Chrome window: {stderr.decode(errors='replace').strip()}")
        return False
    logger.info("Chrome window hidden")
    return True
