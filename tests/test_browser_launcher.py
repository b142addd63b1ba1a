"""
Tests for browser.launcher.

Chrome is never started: process creation and the DevTools wait are
patched, and the readiness check is served by pytest-httpx.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from browser_oracle.browser.launcher import (
    BASE_FLAGS,
    LaunchedChrome,
    build_chrome_flags,
    hide_chrome_window,
    is_wsl,
    launch_chrome,
    resolve_remote_debug_host,
    wait_for_devtools,
)
from browser_oracle.browser.profile_state import read_chrome_pid, read_devtools_port
from browser_oracle.config.schema import BrowserAutomationConfig
from browser_oracle.exceptions import BrowserNotFoundError, ProcessError


def _process(pid=4321, returncode=None):
    process = MagicMock(spec=asyncio.subprocess.Process)
    process.pid = pid
    process.returncode = returncode
    process.wait = AsyncMock(return_value=0)
    return process


class TestFlags:
    def test_headful_linux(self):
        flags = build_chrome_flags(False, platform="linux")

        assert flags[: len(BASE_FLAGS)] == list(BASE_FLAGS)
        assert "--password-store=basic" in flags
        assert "--use-mock-keychain" in flags
        assert "--headless=new" not in flags

    def test_headless_with_bind_address(self):
        flags = build_chrome_flags(True, "0.0.0.0", platform="linux")

        assert "--headless=new" in flags
        assert "--remote-debugging-address=0.0.0.0" in flags

    @pytest.mark.parametrize("platform, wsl", [("win32", False), ("linux", True)])
    def test_no_mock_keychain_on_windows_or_wsl(self, platform, wsl):
        assert "--use-mock-keychain" not in build_chrome_flags(False, platform=platform, wsl=wsl)


class TestRemoteDebugHost:
    def test_explicit_override(self):
        env = {"ORACLE_BROWSER_REMOTE_DEBUG_HOST": "10.0.0.2", "WSL_HOST_IP": "10.0.0.3"}

        assert resolve_remote_debug_host(env, platform="linux") == "10.0.0.2"

    def test_not_wsl(self):
        assert resolve_remote_debug_host({}, platform="linux", release="6.8.0-generic") is None

    def test_wsl_nameserver(self, tmp_path):
        resolv = tmp_path / "resolv.conf"
        resolv.write_text("# generated\nnameserver 172.22.16.1\n")

        host = resolve_remote_debug_host(
            {}, platform="linux", resolv_conf=resolv, release="5.15.90.1-microsoft-standard-WSL2"
        )

        assert host == "172.22.16.1"

    def test_is_wsl_from_env(self):
        assert is_wsl("linux", {"WSL_DISTRO_NAME": "Ubuntu"}, release="")
        assert not is_wsl("darwin", {"WSL_DISTRO_NAME": "Ubuntu"})


class TestWaitForDevtools:
    @pytest.mark.asyncio
    async def test_ready(self, httpx_mock):
        httpx_mock.add_response(url="http://127.0.0.1:9222/json/version", json={})

        await wait_for_devtools("127.0.0.1", 9222, timeout_ms=1_000, interval_ms=10)

    @pytest.mark.asyncio
    async def test_process_exited(self):
        with pytest.raises(ProcessError, match="exited with code 1"):
            await wait_for_devtools("127.0.0.1", 9222, _process(returncode=1), timeout_ms=1_000)


class TestLaunchChrome:
    @pytest.mark.asyncio
    async def test_no_binary(self, tmp_path):
        with patch("browser_oracle.browser.launcher.detect_browser_binary", return_value=None):
            with pytest.raises(BrowserNotFoundError, match="set CHROME_PATH"):
                await launch_chrome(BrowserAutomationConfig(), tmp_path, env={})

    @pytest.mark.asyncio
    @patch("browser_oracle.browser.launcher.wait_for_devtools", new_callable=AsyncMock)
    @patch("browser_oracle.browser.launcher.asyncio.create_subprocess_exec", new_callable=AsyncMock)
    async def test_launch_args_and_pid_file(self, mock_exec, mock_wait, tmp_path):
        mock_exec.return_value = _process(pid=4321)
        config = BrowserAutomationConfig(chrome_path="/opt/chrome", debug_port=9333, headless=True)

        chrome = await launch_chrome(config, tmp_path / "profile", env={}, platform="linux")

        args = mock_exec.call_args[0]
        assert args[0] == "/opt/chrome"
        assert "--remote-debugging-port=9333" in args
        assert f"--user-data-dir={tmp_path / 'profile'}" in args
        assert "--headless=new" in args
        assert args[-1] == "about:blank"
        assert chrome.port == 9333
        assert chrome.pid == 4321
        assert read_chrome_pid(tmp_path / "profile") == 4321
        assert read_devtools_port(tmp_path / "profile") == 9333
        mock_wait.assert_awaited_once()

    @pytest.mark.asyncio
    @patch("browser_oracle.browser.launcher.wait_for_devtools", new_callable=AsyncMock)
    @patch("browser_oracle.browser.launcher.asyncio.create_subprocess_exec", new_callable=AsyncMock)
    async def test_kills_chrome_when_devtools_never_ready(self, mock_exec, mock_wait, tmp_path):
        process = _process()
        mock_exec.return_value = process
        mock_wait.side_effect = ProcessError("not reachable")
        config = BrowserAutomationConfig(chrome_path="/opt/chrome", debug_port=9333)

        with pytest.raises(ProcessError):
            await launch_chrome(config, tmp_path, env={}, platform="linux")

        process.terminate.assert_called_once()
        assert read_chrome_pid(tmp_path) is None
        assert read_devtools_port(tmp_path) is None

    @pytest.mark.asyncio
    @patch("browser_oracle.browser.launcher.asyncio.create_subprocess_exec", new_callable=AsyncMock)
    async def test_start_failure(self, mock_exec, tmp_path):
        mock_exec.side_effect = PermissionError("denied")
        config = BrowserAutomationConfig(chrome_path="/opt/chrome", debug_port=9333)

        with pytest.raises(ProcessError, match="Failed to start Chrome"):
            await launch_chrome(config, tmp_path, env={}, platform="linux")


class TestLaunchedChrome:
    @pytest.mark.asyncio
    async def test_kill_not_running_is_noop(self):
        await LaunchedChrome(port=9222).kill()

    def test_adopted_chrome_never_counts_as_stopped(self):
        assert not LaunchedChrome(port=9222, pid=1).stopped

    def test_exited_process_is_stopped(self):
        assert LaunchedChrome(port=9222, process=_process(returncode=0)).stopped
        assert not LaunchedChrome(port=9222, process=_process()).stopped

    @pytest.mark.asyncio
    async def test_kill_escalates(self):
        waits = []

        async def wait():
            waits.append(1)
            if len(waits) == 1:
                await asyncio.sleep(10)
            return 0

        process = _process()
        process.wait = wait
        chrome = LaunchedChrome(port=9222, pid=1, process=process)

        with patch("browser_oracle.browser.launcher.KILL_GRACE_SECONDS", 0.01):
            await chrome.kill()

        process.terminate.assert_called_once()
        process.kill.assert_called_once()
        assert len(waits) == 2


class TestHideWindow:
    @pytest.mark.asyncio
    async def test_noop_off_macos(self):
        assert await hide_chrome_window(LaunchedChrome(port=9222, pid=1), platform="linux") is False

    @pytest.mark.asyncio
    async def test_requires_pid(self):
        assert await hide_chrome_window(LaunchedChrome(port=9222), platform="darwin") is False

    @pytest.mark.asyncio
    @patch("browser_oracle.browser.launcher.asyncio.create_subprocess_exec", new_callable=AsyncMock)
    async def test_runs_osascript(self, mock_exec):
        proc = MagicMock()
        proc.returncode = 0
        proc.communicate = AsyncMock(return_value=(b"", b""))
        mock_exec.return_value = proc

        assert await hide_chrome_window(LaunchedChrome(port=9222, pid=77), platform="darwin") is True
        assert mock_exec.call_args[0][0] == "osascript"
        assert "unix id is 77" in mock_exec.call_args[0][2]
