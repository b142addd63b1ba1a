"""
Browser binary and cookie store detection.

detect_browser_binary() walks, in order:
    1. CHROME_PATH (if it points at an executable)
    2. Playwright-managed Chromium installs (PLAYWRIGHT_BROWSERS_PATH or the
       per-OS ms-playwright cache)
    3. Well-known absolute install paths for the current OS
    4. A PATH search by binary name

detect_cookie_store() locates the Cookies database of a Chrome-family
profile. Cookie decryption is not supported on Windows, so detection
returns None there.
"""

import os
import shutil
import sys
from collections.abc import Mapping
from pathlib import Path

from browser_oracle.config.constants import DEFAULT_CHROME_PROFILE, ENV_CHROME_PATH

LINUX_BINARY_NAMES = (
    "google-chrome",
    "google-chrome-stable",
    "chromium",
    "chromium-browser",
    "brave-browser",
    "microsoft-edge",
    "microsoft-edge-stable",
)

LINUX_ABSOLUTE_PATHS = (
    "/usr/bin/google-chrome",
    "/usr/bin/google-chrome-stable",
    "/usr/bin/google-chrome-beta",
    "/usr/bin/google-chrome-unstable",
    "/usr/bin/chromium",
    "/usr/bin/chromium-browser",
    "/usr/bin/brave-browser",
    "/usr/bin/microsoft-edge",
    "/usr/bin/microsoft-edge-stable",
    "/snap/bin/chromium",
    "/snap/bin/brave",
    "/snap/bin/microsoft-edge",
    "/opt/google/chrome/chrome",
)

MACOS_ABSOLUTE_PATHS = (
    "/Applications/Google Chrome.app/Contents/MacOS/Google Chrome",
    "/Applications/Chromium.app/Contents/MacOS/Chromium",
    "/Applications/Microsoft Edge.app/Contents/MacOS/Microsoft Edge",
    "/Applications/Brave Browser.app/Contents/MacOS/Brave Browser",
)

# Relative location of the browser executable inside a Playwright chromium-* dir
PLAYWRIGHT_EXECUTABLES = {
    "linux": ("chrome-linux64/chrome", "chrome-linux/chrome"),
    "darwin": (
        "chrome-mac-arm64/Chromium.app/Contents/MacOS/Chromium",
        "chrome-mac/Chromium.app/Contents/MacOS/Chromium",
    ),
    "win32": ("chrome-win64/chrome.exe", "chrome-win/chrome.exe"),
}


def _platform_key(platform: str) -> str:
    return "linux" if platform.startswith("linux") else platform


def is_executable(candidate: str | Path, platform: str = sys.platform) -> bool:
    """File exists and, off Windows, has an execute bit."""
    path = Path(candidate)
    if not path.is_file():
        return False
    if platform == "win32":
        return True
    return os.access(path, os.X_OK)


def _windows_paths(env: Mapping[str, str], home: Path) -> tuple[str, ...]:
    program_files = env.get("ProgramFiles", r"C:\Program Files")
    program_files_x86 = env.get("ProgramFiles(x86)", r"C:\Program Files (x86)")
    local_app_data = env.get("LOCALAPPDATA", str(home / "AppData" / "Local"))
    return (
        os.path.join(program_files, "Google", "Chrome", "Application", "chrome.exe"),
        os.path.join(program_files_x86, "Google", "Chrome", "Application", "chrome.exe"),
        os.path.join(local_app_data, "Google", "Chrome", "Application", "chrome.exe"),
        os.path.join(program_files, "Microsoft", "Edge", "Application", "msedge.exe"),
        os.path.join(program_files_x86, "Microsoft", "Edge", "Application", "msedge.exe"),
    )


def _absolute_candidates(platform: str, env: Mapping[str, str], home: Path) -> tuple[str, ...]:
    key = _platform_key(platform)
    if key == "linux":
        return LINUX_ABSOLUTE_PATHS
    if key == "darwin":
        return MACOS_ABSOLUTE_PATHS
    if key == "win32":
        return _windows_paths(env, home)
    return ()


def playwright_browsers_root(platform: str, env: Mapping[str, str], home: Path) -> Path:
    override = env.get("PLAYWRIGHT_BROWSERS_PATH", "").strip()
    if override and override != "0":
        return Path(override).expanduser()
    key = _platform_key(platform)
    if key == "darwin":
        return home / "Library" / "Caches" / "ms-playwright"
    if key == "win32":
        return Path(env.get("LOCALAPPDATA", str(home / "AppData" / "Local"))) / "ms-playwright"
    return home / ".cache" / "ms-playwright"


def detect_playwright_chromium(
    platform: str = sys.platform,
    env: Mapping[str, str] | None = None,
    home: Path | None = None,
) -> str | None:
    """Newest Playwright-managed Chromium executable, if any is installed."""
    env = os.environ if env is None else env
    home = home or Path.home()
    root = playwright_browsers_root(platform, env, home)
    if not root.is_dir():
        return None
    relatives = PLAYWRIGHT_EXECUTABLES.get(_platform_key(platform), ())
    for install in sorted(root.glob("chromium-*"), reverse=True):
        for relative in relatives:
            candidate = install / relative
            if is_executable(candidate, platform):
                return str(candidate)
    return None


def detect_browser_binary(
    env: Mapping[str, str] | None = None,
    platform: str = sys.platform,
    home: Path | None = None,
) -> str | None:
    """
    Find a Chrome-family executable.

    Returns:
        Path of the first executable found, or None
    """
    env = os.environ if env is None else env
    home = home or Path.home()

    env_path = env.get(ENV_CHROME_PATH, "").strip()
    if env_path and is_executable(env_path, platform):
        return env_path

    managed = detect_playwright_chromium(platform, env, home)
    if managed:
        return managed

    for candidate in _absolute_candidates(platform, env, home):
        if is_executable(candidate, platform):
            return candidate

    if _platform_key(platform) == "linux":
        search_path = env.get("PATH", "")
        for name in LINUX_BINARY_NAMES:
            found = shutil.which(name, path=search_path)
            if found:
                return found

    return None


def profile_roots(platform: str = sys.platform, home: Path | None = None) -> list[Path]:
    """User-data roots of Chrome-family browsers, most common first."""
    home = home or Path.home()
    key = _platform_key(platform)
    if key == "darwin":
        support = home / "Library" / "Application Support"
        return [
            support / "Google" / "Chrome",
            support / "Chromium",
            support / "Microsoft Edge",
            support / "BraveSoftware" / "Brave-Browser",
        ]
    if key == "linux":
        config = home / ".config"
        return [
            config / "google-chrome",
            config / "google-chrome-beta",
            config / "google-chrome-unstable",
            config / "chromium",
            config / "microsoft-edge",
            config / "BraveSoftware" / "Brave-Browser",
            home / "snap" / "chromium" / "common" / "chromium",
            home / "snap" / "chromium" / "current" / "chromium",
        ]
    return []


def default_profile_root(platform: str = sys.platform, home: Path | None = None) -> Path:
    """First existing user-data root, or the Chrome default for the OS."""
    roots = profile_roots(platform, home)
    for root in roots:
        if root.is_dir():
            return root
    if roots:
        return roots[0]
    home = home or Path.home()
    return home / "AppData" / "Local" / "Google" / "Chrome" / "User Data"


def detect_cookie_store(
    profile: str | None = None,
    platform: str = sys.platform,
    home: Path | None = None,
) -> Path | None:
    """
    Locate the Cookies database for a profile.

    Args:
        profile: Profile directory name (default "Default") or a path to a
            profile directory
    """
    if platform == "win32":
        return None

    profile_name = (profile or "").strip() or DEFAULT_CHROME_PROFILE
    if looks_like_path(profile_name):
        directories = [Path(profile_name).expanduser()]
    else:
        directories = [root / profile_name for root in profile_roots(platform, home)]

    for directory in directories:
        for candidate in (directory / "Cookies", directory / "Network" / "Cookies"):
            if candidate.is_file():
                return candidate
    return None


def looks_like_path(value: str) -> bool:
    """Treat the value as a filesystem path rather than a command name."""
    return "/" in value or "\\" in value or value.startswith("~")
