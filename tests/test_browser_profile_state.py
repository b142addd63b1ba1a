"""
Tests for browser.profile_state.

Covers DevToolsActivePort / chrome.pid bookkeeping, the DevTools
reachability check (via pytest-httpx), stale-state cleanup decisions and the
ProfileLock acquire/release protocol.
"""

import json
from unittest.mock import AsyncMock

import httpx
import pytest
from tenacity import AsyncRetrying, stop_after_attempt

from browser_oracle.browser.profile_state import (
    CHROME_PID_FILENAME,
    PROFILE_LOCK_FILENAME,
    ProfileLock,
    cleanup_stale_profile_state,
    read_chrome_pid,
    read_devtools_port,
    should_cleanup_profile_state,
    verify_devtools_reachable,
    write_chrome_pid,
    write_devtools_active_port,
)
from browser_oracle.exceptions import LockTimeoutError


def _single_attempt() -> AsyncRetrying:
    return AsyncRetrying(stop=stop_after_attempt(1), reraise=True)


class TestPortAndPidFiles:
    def test_port_round_trip(self, tmp_path):
        write_devtools_active_port(tmp_path, 9333)

        assert read_devtools_port(tmp_path) == 9333
        assert (tmp_path / "Default" / "DevToolsActivePort").exists()

    def test_port_falls_back_to_default_subdir(self, tmp_path):
        (tmp_path / "Default").mkdir()
        (tmp_path / "Default" / "DevToolsActivePort").write_text("9444\n/devtools/browser/x")

        assert read_devtools_port(tmp_path) == 9444

    def test_garbage_port(self, tmp_path):
        (tmp_path / "DevToolsActivePort").write_text("not-a-port")

        assert read_devtools_port(tmp_path) is None

    def test_pid_round_trip(self, tmp_path):
        write_chrome_pid(tmp_path, 4242)

        assert read_chrome_pid(tmp_path) == 4242

    def test_non_positive_pid_not_written(self, tmp_path):
        write_chrome_pid(tmp_path, 0)

        assert not (tmp_path / CHROME_PID_FILENAME).exists()
        assert read_chrome_pid(tmp_path) is None


class TestVerifyDevtoolsReachable:
    @pytest.mark.asyncio
    async def test_reachable(self, httpx_mock):
        httpx_mock.add_response(
            url="http://127.0.0.1:9222/json/version", json={"Browser": "Chrome/140"}
        )

        ok, error = await verify_devtools_reachable("127.0.0.1", 9222, retrying=_single_attempt())

        assert ok is True
        assert error is None

    @pytest.mark.asyncio
    async def test_connection_refused(self, httpx_mock):
        httpx_mock.add_exception(httpx.ConnectError("Connection refused"))

        ok, error = await verify_devtools_reachable("127.0.0.1", 9222, retrying=_single_attempt())

        assert ok is False
        assert "Connection refused" in error

    @pytest.mark.asyncio
    async def test_http_error_status(self, httpx_mock):
        httpx_mock.add_response(url="http://127.0.0.1:9222/json/version", status_code=500)

        ok, error = await verify_devtools_reachable("127.0.0.1", 9222, retrying=_single_attempt())

        assert ok is False
        assert "500" in error


class TestShouldCleanupProfileState:
    @pytest.mark.asyncio
    async def test_stopped_chrome_always_cleans(self, tmp_path):
        write_devtools_active_port(tmp_path, 9222)
        check = AsyncMock()

        assert await should_cleanup_profile_state(tmp_path, chrome_stopped=True, check=check)
        check.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_no_recorded_port_cleans(self, tmp_path):
        assert await should_cleanup_profile_state(tmp_path, chrome_stopped=False)

    @pytest.mark.asyncio
    async def test_reachable_port_preserves_state(self, tmp_path):
        write_devtools_active_port(tmp_path, 9222)

        async def check(host, port):
            return True, None

        assert not await should_cleanup_profile_state(
            tmp_path, chrome_stopped=False, check=check
        )

    @pytest.mark.asyncio
    async def test_unreachable_port_cleans(self, tmp_path):
        write_devtools_active_port(tmp_path, 9222)

        async def check(host, port):
            return False, "refused"

        assert await should_cleanup_profile_state(
            tmp_path, chrome_stopped=False, check=check
        )


class TestCleanupStaleProfileState:
    def test_removes_port_files_only_by_default(self, tmp_path):
        write_devtools_active_port(tmp_path, 9222)
        (tmp_path / "SingletonLock").write_text("")

        cleanup_stale_profile_state(tmp_path)

        assert read_devtools_port(tmp_path) is None
        assert (tmp_path / "SingletonLock").exists()

    def test_removes_chrome_locks_for_dead_pid(self, tmp_path, monkeypatch):
        write_chrome_pid(tmp_path, 999_999)
        (tmp_path / "SingletonLock").write_text("")
        (tmp_path / "lockfile").write_text("")
        monkeypatch.setattr(
            "browser_oracle.browser.profile_state.is_process_alive", lambda pid: False
        )
        monkeypatch.setattr(
            "browser_oracle.browser.profile_state.is_chrome_using_profile", lambda path: False
        )

        cleanup_stale_profile_state(tmp_path, remove_chrome_locks=True)

        assert not (tmp_path / "SingletonLock").exists()
        assert not (tmp_path / "lockfile").exists()

    def test_keeps_chrome_locks_for_live_pid(self, tmp_path, monkeypatch):
        write_chrome_pid(tmp_path, 4242)
        (tmp_path / "SingletonLock").write_text("")
        monkeypatch.setattr(
            "browser_oracle.browser.profile_state.is_process_alive", lambda pid: True
        )

        cleanup_stale_profile_state(tmp_path, remove_chrome_locks=True)

        assert (tmp_path / "SingletonLock").exists()


class TestProfileLock:
    def _write_lock(self, directory, pid, lock_id="other"):
        (directory / PROFILE_LOCK_FILENAME).write_text(
            json.dumps({"pid": pid, "lockId": lock_id, "createdAt": "x", "sessionId": None})
        )

    @pytest.mark.asyncio
    async def test_acquire_and_release(self, tmp_path):
        lock = ProfileLock(tmp_path, timeout_ms=1_000, session_id="run-1")

        async with lock:
            record = json.loads((tmp_path / PROFILE_LOCK_FILENAME).read_text())
            assert record["lockId"] == lock.lock_id
            assert record["sessionId"] == "run-1"
            assert lock.acquired

        assert not (tmp_path / PROFILE_LOCK_FILENAME).exists()

    @pytest.mark.asyncio
    async def test_stale_lock_from_dead_pid_is_replaced(self, tmp_path):
        self._write_lock(tmp_path, pid=999_999)
        lock = ProfileLock(tmp_path, timeout_ms=1_000, is_alive=lambda pid: False)

        await lock.acquire()

        record = json.loads((tmp_path / PROFILE_LOCK_FILENAME).read_text())
        assert record["lockId"] == lock.lock_id

    @pytest.mark.asyncio
    async def test_unreadable_lock_is_deleted(self, tmp_path):
        (tmp_path / PROFILE_LOCK_FILENAME).write_text("{not json")
        lock = ProfileLock(tmp_path, timeout_ms=1_000)

        await lock.acquire()

        assert lock.acquired

    @pytest.mark.asyncio
    async def test_live_owner_times_out(self, tmp_path):
        self._write_lock(tmp_path, pid=4242)
        lock = ProfileLock(tmp_path, timeout_ms=50, poll_ms=10, is_alive=lambda pid: True)

        with pytest.raises(LockTimeoutError, match="held by pid 4242") as exc_info:
            await lock.acquire()

        assert exc_info.value.details["owner_pid"] == 4242
        # A held lock is never overridden
        assert json.loads((tmp_path / PROFILE_LOCK_FILENAME).read_text())["lockId"] == "other"

    def test_release_ignores_foreign_lock(self, tmp_path):
        self._write_lock(tmp_path, pid=4242)
        lock = ProfileLock(tmp_path, timeout_ms=1_000)

        lock.release()

        assert (tmp_path / PROFILE_LOCK_FILENAME).exists()
