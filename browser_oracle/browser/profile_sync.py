"""
Copy a signed-in Chrome profile into an automation profile directory.

rsync (robocopy on Windows) does the bulk copy with caches, crash dumps and
session files excluded. If the utility is missing or fails, an in-process
filtered copy runs instead. Either way, Chrome's single-instance artifacts
(SingletonLock, DevToolsActivePort, ...) are removed from the copy afterwards
so it can be launched next to the user's own browser.
"""

import fnmatch
import logging
import os
import shutil
import subprocess
import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any, TypedDict

from browser_oracle.config.constants import DEFAULT_CHROME_PROFILE
from browser_oracle.exceptions import ProfileNotFoundError

from .detect import default_profile_root, looks_like_path

logger = logging.getLogger(__name__)

DIR_EXCLUDES = (
    "Cache",
    "Code Cache",
    "GPUCache",
    "Service Worker",
    "Crashpad",
    "BrowserMetrics*",
    "GrShaderCache",
    "ShaderCache",
    "OptimizationGuide",
)

FILE_EXCLUDES = (
    "SingletonLock",
    "SingletonSocket",
    "SingletonCookie",
    "*.lock",
    "lockfile",
    "Lock",
    "*.tmp",
    "DevToolsActivePort",
    "Default/DevToolsActivePort",
    "Sessions/*",
    "Current Session",
    "Current Tabs",
    "Last Session",
    "Last Tabs",
)

LOCK_ARTIFACTS = ("SingletonLock", "SingletonSocket", "SingletonCookie", "DevToolsActivePort")
LOCAL_STATE_FILE = "Local State"

# robocopy exit codes below 8 mean success or partial success
ROBOCOPY_FAILURE_CODE = 8

Runner = Callable[..., subprocess.CompletedProcess]


class ProfileSyncResult(TypedDict):
    source: str
    profile_name: str
    method: str
    status: str


def is_excluded(relative_path: str) -> bool:
    """True if a path (relative to the profile root) is left out of the copy."""
    normalized = relative_path.replace("\\", "/")
    name = normalized.rsplit("/", 1)[-1]
    for entry in DIR_EXCLUDES:
        if normalized == entry or normalized.startswith(f"{entry}/"):
            return True
        if "*" in entry and fnmatch.fnmatch(normalized.split("/", 1)[0], entry):
            return True
    for entry in FILE_EXCLUDES:
        if "/" in entry:
            if fnmatch.fnmatch(normalized, entry):
                return True
        elif fnmatch.fnmatch(name, entry):
            return True
    return False


def copy_tree_filtered(source: Path, target: Path) -> None:
    """Recursive copy skipping everything is_excluded() rejects."""

    def ignore(directory: str, names: list[str]) -> set[str]:
        relative_dir = os.path.relpath(directory, source)
        ignored = set()
        for name in names:
            relative = name if relative_dir == "." else f"{relative_dir}/{name}"
            if is_excluded(relative):
                ignored.add(name)
        return ignored

    shutil.copytree(source, target, ignore=ignore, dirs_exist_ok=True, symlinks=True)


def rsync_command(source: Path, target: Path) -> list[str]:
    """
    Build the rsync argv that mirrors source into target.

    Trailing slashes make rsync copy the directory contents rather than
    nesting source inside target. Cache directories and lock files are
    excluded so a running Chrome's profile can be copied.

    Args:
        source: Profile directory to copy from
        target: Destination directory (mirrored, extra files deleted)

    Returns:
        Argument list for subprocess.run

    Example:
        >>> rsync_command(Path("/src"), Path("/dst"))[:3]
        ['rsync', '-a', '--delete']
    """
    args = ["rsync", "-a", "--delete"]
    for entry in DIR_EXCLUDES + FILE_EXCLUDES:
        args.extend(["--exclude", entry])
    args.extend([f"{source}/", f"{target}/"])
    return args


def robocopy_command(source: Path, target: Path) -> list[str]:
    """Windows counterpart of rsync_command (robocopy /MIR with the same excludes)."""
    args = ["robocopy", str(source), str(target), "/MIR", "/NFL", "/NDL", "/NJH", "/NJS", "/NP", "/Z"]
    args.extend(["/XD", *DIR_EXCLUDES])
    args.extend(["/XF", *FILE_EXCLUDES])
    return args


def remove_lock_artifacts(target: Path) -> None:
    """
    Delete Singleton*/lockfile entries left by the source Chrome.

    Chrome refuses to open a profile whose SingletonLock points at another
    live process, so copies must not carry them. Dangling symlinks count.

    Args:
        target: Copied user-data directory (root and Default/ are checked)
    """
    for name in LOCK_ARTIFACTS:
        for candidate in (target / name, target / "Default" / name):
            if candidate.is_symlink() or candidate.exists():
                candidate.unlink()


def resolve_profile_source(
    profile: str | None, explicit_path: str | None = None, source_root: Path | None = None
) -> tuple[Path, str]:
    """Return (profile directory, profile name) for a name, path or Cookies file."""
    profile_name = (profile or "").strip() or DEFAULT_CHROME_PROFILE
    if explicit_path and explicit_path.strip():
        resolved = Path(explicit_path.strip()).expanduser()
        if resolved.name.lower() == "cookies":
            parent = resolved.parent
            if parent.name == "Network":
                parent = parent.parent
            return parent, profile_name
        return resolved, profile_name
    if looks_like_path(profile_name):
        return Path(profile_name).expanduser(), profile_name
    root = source_root or default_profile_root()
    return root / profile_name, profile_name


def sync_profile(
    target_dir: str | Path,
    profile: str | None = None,
    *,
    explicit_path: str | None = None,
    source_root: Path | None = None,
    runner: Runner = subprocess.run,
    fallback_copy: Callable[[Path, Path], Any] = copy_tree_filtered,
    platform: str = sys.platform,
) -> ProfileSyncResult:
    """
    Copy a Chrome profile into target_dir.

    Args:
        target_dir: Automation user-data directory (emptied first)
        profile: Profile name under the user-data root, or a path
        explicit_path: Profile directory or Cookies file overriding profile
        source_root: User-data root to resolve profile names against
        runner: subprocess.run-compatible callable for the copy utility
        fallback_copy: In-process copy used when the utility fails

    Returns:
        {"source", "profile_name", "method": rsync|robocopy|python, "status"}

    Raises:
        ProfileNotFoundError: If the source profile directory does not exist
    """
    target = Path(target_dir)
    source, profile_name = resolve_profile_source(profile, explicit_path, source_root)

    if not source.exists():
        raise ProfileNotFoundError(
            f"Chrome profile not found at {source}. Log in once in Chrome, then retry."
        )

    shutil.rmtree(target, ignore_errors=True)
    target.mkdir(parents=True, exist_ok=True)

    if platform == "win32":
        method = "robocopy"
        command = robocopy_command(source, target)
    else:
        method = "rsync"
        command = rsync_command(source, target)

    try:
        completed = runner(command, capture_output=True, check=False)
        succeeded = (
            completed.returncode < ROBOCOPY_FAILURE_CODE
            if method == "robocopy"
            else completed.returncode == 0
        )
    except FileNotFoundError:
        succeeded = False
        logger.debug(f"{method} is not installed")

    if not succeeded:
        logger.info(f"{method} unavailable or failed; falling back to in-process copy")
        fallback_copy(source, target)
        method = "python"

    remove_lock_artifacts(target)
    logger.info(f"Copied Chrome profile {profile_name} from {source} via {method}")

    return {
        "source": str(source),
        "profile_name": profile_name,
        "method": method,
        "status": "copied",
    }


def seed_user_data_dir(
    user_data_dir: str | Path,
    profile: str | None = None,
    *,
    explicit_path: str | None = None,
    source_root: Path | None = None,
    runner: Runner = subprocess.run,
    platform: str = sys.platform,
) -> ProfileSyncResult:
    """
    Seed a fresh Chrome user-data directory from a signed-in profile.

    Chrome launched with ``--user-data-dir`` opens ``<dir>/Default`` and reads
    the cookie encryption key from ``<dir>/Local State``. The profile is
    copied into ``Default`` whatever its source name, and the source root's
    ``Local State`` is copied next to it when present.

    Returns:
        The ProfileSyncResult of the profile copy

    Raises:
        ProfileNotFoundError: If the source profile directory does not exist
    """
    root = Path(user_data_dir)
    result = sync_profile(
        root / DEFAULT_CHROME_PROFILE,
        profile,
        explicit_path=explicit_path,
        source_root=source_root,
        runner=runner,
        platform=platform,
    )

    local_state = Path(result["source"]).parent / LOCAL_STATE_FILE
    if local_state.is_file():
        shutil.copy2(local_state, root / LOCAL_STATE_FILE)
    else:
        logger.debug(f"No {LOCAL_STATE_FILE} next to {result['source']}; cookies may not decrypt")
    return result
