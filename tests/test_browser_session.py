"""
End-to-end tests for browser.session.run_browser_automation.

The browser is replaced by the simulated chat page from conftest through
the ``attach`` hook, so every action module runs for real against it.
"""

import shutil
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from browser_oracle.browser.launcher import LaunchedChrome
from browser_oracle.browser.models import BrowserAttachment, FallbackSubmission
from browser_oracle.browser.protocol import ProtocolSession
from browser_oracle.browser.session import (
    BrowserHandle,
    _should_sync_cookies,
    attach_browser,
    find_reusable_chrome,
    run_browser_automation,
)
from browser_oracle.browser.supervisor import LifecycleSupervisor
from browser_oracle.config.schema import BrowserAutomationConfig, RemoteChrome
from browser_oracle.exceptions import (
    AttachmentNotRegisteredError,
    BrowserOracleError,
    LoginRequiredError,
    PromptTooLargeError,
)
from conftest import ChatPage, FakeDevTools

FAST = {
    "navigation_timeout_ms": 1_000,
    "input_timeout_ms": 500,
    "commit_timeout_ms": 500,
    "timeout_ms": 2_000,
    "attachment_register_timeout_ms": 200,
    "attachment_timeout_ms": 500,
    "assistant_recheck_timeout_ms": 0,
}


@pytest.fixture(autouse=True)
def no_settle_delays():
    with patch("browser_oracle.browser.actions.prompt_composer.sleep_ms", new_callable=AsyncMock):
        yield


@pytest.fixture
def run_config():
    return BrowserAutomationConfig(**FAST)


@pytest.fixture
def supervisor():
    return LifecycleSupervisor(exit_fn=MagicMock())


def attach_to(session, reconnect=None):
    async def attach(config, supervisor):
        supervisor.adopt(None, None)
        return BrowserHandle(session=session, reconnect=reconnect or AsyncMock(return_value=session))

    return attach


class TestRunBrowserAutomation:
    """Full runs against the simulated chat page."""

    @pytest.mark.asyncio
    async def test_hello_round_trip(self, chat_page, session, run_config, supervisor):
        chat_page.markdown = "**Hi** there"

        result = await run_browser_automation(
            "Hello", config=run_config, attach=attach_to(session), supervisor=supervisor
        )

        assert result.answer_text == "Hi there"
        assert result.answer_markdown == "**Hi** there"
        assert result.answer_chars == 8
        assert result.answer_tokens == 2
        assert result.tab_url == "https://chatgpt.com/c/abc123"
        assert result.chrome_port == 9222
        assert result.chrome_pid is None
        assert result.chrome_target_id == "target-1"
        assert result.meta["message_id"] == "msg-2"
        assert chat_page.turns[0] == ("user", "Hello")
        assert supervisor.torn_down
        assert not supervisor.installed
        assert session.closed

    @pytest.mark.asyncio
    async def test_markdown_falls_back_to_text(self, chat_page, session, run_config, supervisor):
        chat_page.markdown = None

        result = await run_browser_automation(
            "Hello", config=run_config, attach=attach_to(session), supervisor=supervisor
        )

        assert result.answer_markdown == "Hi there"

    @pytest.mark.asyncio
    async def test_answer_only_from_turns_after_baseline(
        self, chat_page, session, run_config, supervisor
    ):
        """An earlier answer already in the conversation is never returned."""
        chat_page.turns = [("user", "Earlier"), ("assistant", "Old answer")]
        chat_page.answer = "Fresh answer"

        result = await run_browser_automation(
            "Hello", config=run_config, attach=attach_to(session), supervisor=supervisor
        )

        assert result.answer_text == "Fresh answer"
        assert result.meta["message_id"] == "msg-4"

    @pytest.mark.asyncio
    async def test_uploads_attachments(self, chat_page, devtools, session, run_config, supervisor, tmp_path):
        path = tmp_path / "report.txt"
        path.write_text("numbers")

        await run_browser_automation(
            "Summarize the report",
            [BrowserAttachment(path=path)],
            config=run_config,
            attach=attach_to(session),
            supervisor=supervisor,
        )

        assert chat_page.assigned_files == ["report.txt"]
        assert devtools.count("upload-state") >= 1
        assert devtools.count("attachments-ready") >= 1

    @pytest.mark.asyncio
    async def test_remote_chrome_receives_file_content(self, chat_page, devtools, session, supervisor, tmp_path):
        path = tmp_path / "report.txt"
        path.write_text("numbers")
        config = BrowserAutomationConfig(**FAST, remote_chrome=RemoteChrome(host="10.0.0.5", port=9333))

        await run_browser_automation(
            "Summarize the report",
            [BrowserAttachment(path=path)],
            config=config,
            attach=attach_to(session),
            supervisor=supervisor,
        )

        assert chat_page.assigned_files == ["report.txt"]
        assert devtools.count("file-transfer") == 1
        assert "DOM.setFileInputFiles" not in devtools.methods()

    @pytest.mark.asyncio
    async def test_unregistered_attachment_fails(self, chat_page, session, run_config, supervisor, tmp_path):
        path = tmp_path / "report.txt"
        path.write_text("numbers")
        chat_page.register_files = False

        with pytest.raises(AttachmentNotRegisteredError, match="Attachment did not register: report.txt"):
            await run_browser_automation(
                "Summarize",
                [BrowserAttachment(path=path)],
                config=run_config,
                attach=attach_to(session),
                supervisor=supervisor,
            )

        assert chat_page.turns == []
        assert supervisor.torn_down

    @pytest.mark.asyncio
    async def test_login_required(self, chat_page, devtools, session, run_config, supervisor):
        devtools.on_script("first-match", -1)

        with pytest.raises(LoginRequiredError):
            await run_browser_automation(
                "Hello", config=run_config, attach=attach_to(session), supervisor=supervisor
            )

        assert "send-button" not in devtools.evaluated

    @pytest.mark.asyncio
    async def test_unexpected_errors_are_wrapped(self, run_config, supervisor):
        async def broken_attach(config, supervisor):
            raise RuntimeError("boom")

        with pytest.raises(BrowserOracleError, match="boom") as exc_info:
            await run_browser_automation(
                "Hello", config=run_config, attach=broken_attach, supervisor=supervisor
            )

        assert exc_info.value.stage == "execute-browser"
        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert supervisor.torn_down


class TestFallbackSubmission:
    """The composer truncated the prompt; the shorter fallback is sent instead."""

    @pytest.fixture
    def truncating_page(self, chat_page, devtools):
        def insert(params):
            chat_page.composer += params["text"][:1_000]
            return {}

        devtools.on_method("Input.insertText", insert)
        return chat_page

    @pytest.mark.asyncio
    async def test_fallback_is_submitted(self, truncating_page, session, run_config, supervisor):
        huge = "z" * 60_000

        result = await run_browser_automation(
            huge,
            config=run_config,
            fallback=FallbackSubmission(prompt="Read the attached file"),
            attach=attach_to(session),
            supervisor=supervisor,
        )

        assert result.answer_text == "Hi there"
        assert truncating_page.turns[0] == ("user", "Read the attached file")

    @pytest.mark.asyncio
    async def test_without_fallback_raises(self, truncating_page, session, run_config, supervisor):
        with pytest.raises(PromptTooLargeError):
            await run_browser_automation(
                "z" * 60_000, config=run_config, attach=attach_to(session), supervisor=supervisor
            )


class TestReattach:
    """Recovery from a dropped DevTools connection while waiting."""

    @pytest.fixture
    def second_session(self):
        devtools = FakeDevTools()
        page = ChatPage(devtools)
        page.turns = [("user", "Hello"), ("assistant", "Hi there")]
        page.href = "https://chatgpt.com/c/abc123"
        return ProtocolSession(devtools, host="127.0.0.1", port=9222, target_id="target-2")

    @pytest.mark.asyncio
    async def test_reattaches_and_reads_answer(
        self, chat_page, devtools, session, second_session, supervisor
    ):
        devtools.fail("assistant-snapshot", ConnectionError("WebSocket connection closed"))
        config = BrowserAutomationConfig(
            **FAST, auto_reattach_timeout_ms=1_000, auto_reattach_interval_ms=10
        )
        reconnect = AsyncMock(return_value=second_session)

        result = await run_browser_automation(
            "Hello", config=config, attach=attach_to(session, reconnect), supervisor=supervisor
        )

        assert session.lost
        reconnect.assert_awaited_once()
        assert result.answer_text == "Hi there"
        assert result.chrome_target_id == "target-2"

    @pytest.mark.asyncio
    async def test_connection_loss_without_reattach(self, chat_page, devtools, session, run_config, supervisor):
        devtools.fail("assistant-snapshot", ConnectionError("WebSocket connection closed"))

        with pytest.raises(BrowserOracleError, match="closed"):
            await run_browser_automation(
                "Hello", config=run_config, attach=attach_to(session), supervisor=supervisor
            )


class TestShouldSyncCookies:
    @pytest.mark.parametrize(
        "overrides, expected",
        [
            ({}, True),
            ({"profile_copy": True}, False),
            ({"manual_login": True}, False),
            ({"manual_login": True, "manual_login_cookie_sync": True}, True),
            ({"manual_login": True, "inline_cookies": [{"name": "a", "value": "b"}]}, True),
        ],
    )
    def test_modes(self, overrides, expected):
        assert _should_sync_cookies(BrowserAutomationConfig(**overrides)) is expected


class TestFindReusableChrome:
    @pytest.mark.asyncio
    async def test_no_state(self, tmp_path):
        assert await find_reusable_chrome(tmp_path) is None

    @pytest.mark.asyncio
    async def test_dead_pid(self, tmp_path):
        with patch("browser_oracle.browser.session.read_chrome_pid", return_value=4242), patch(
            "browser_oracle.browser.session.is_process_alive", return_value=False
        ):
            assert await find_reusable_chrome(tmp_path) is None

    @pytest.mark.asyncio
    async def test_live_chrome(self, tmp_path):
        with patch("browser_oracle.browser.session.read_chrome_pid", return_value=4242), patch(
            "browser_oracle.browser.session.is_process_alive", return_value=True
        ), patch("browser_oracle.browser.session.read_devtools_port", return_value=9333), patch(
            "browser_oracle.browser.session.verify_devtools_reachable",
            new=AsyncMock(return_value=(True, None)),
        ):
            chrome = await find_reusable_chrome(tmp_path)

        assert chrome.port == 9333
        assert chrome.pid == 4242
        assert chrome.user_data_dir == tmp_path


class TestAttachBrowser:
    @pytest.mark.asyncio
    async def test_remote_chrome(self, session, supervisor):
        config = BrowserAutomationConfig(remote_chrome=RemoteChrome(host="10.0.0.5", port=9333))

        with patch(
            "browser_oracle.browser.session.connect_with_new_tab", new=AsyncMock(return_value=session)
        ) as mock_connect, patch(
            "browser_oracle.browser.session.sync_cookies", new=AsyncMock(return_value=3)
        ):
            handle = await attach_browser(config, supervisor)

        mock_connect.assert_awaited_once_with("10.0.0.5", 9333, strict=False)
        assert handle.chrome is None
        assert handle.cookies_applied == 3
        assert supervisor.chrome is None
        assert supervisor.user_data_dir is None

    @pytest.mark.asyncio
    async def test_ephemeral_profile(self, session, supervisor):
        config = BrowserAutomationConfig(cookie_sync=False)

        async def fake_launch(config, user_data_dir, env=None):
            return LaunchedChrome(port=9333, pid=77, user_data_dir=user_data_dir)

        with patch("browser_oracle.browser.session.launch_chrome", new=fake_launch), patch(
            "browser_oracle.browser.session.connect", new=AsyncMock(return_value=session)
        ), patch("browser_oracle.browser.session.sync_cookies", new=AsyncMock(return_value=0)):
            handle = await attach_browser(config, supervisor)

        try:
            assert handle.user_data_dir.name.startswith("oracle-browser-")
            assert handle.user_data_dir.is_dir()
            assert supervisor.chrome is handle.chrome
            assert not supervisor.preserve_profile
        finally:
            shutil.rmtree(handle.user_data_dir, ignore_errors=True)

    @pytest.mark.asyncio
    async def test_profile_copy_is_loadable_by_chrome(self, session, supervisor, tmp_path):
        """Chrome reads <user-data-dir>/Default/Cookies, so the copy must land there."""
        source = tmp_path / "chrome"
        (source / "Default").mkdir(parents=True)
        (source / "Default" / "Cookies").write_text("cookies")
        (source / "Local State").write_text("{}")
        config = BrowserAutomationConfig(profile_copy=True, chrome_profile=str(source / "Default"))
        launched_with = []

        async def fake_launch(config, user_data_dir, env=None):
            launched_with.append(user_data_dir)
            return LaunchedChrome(port=9333, pid=77, user_data_dir=user_data_dir)

        with patch("browser_oracle.browser.session.launch_chrome", new=fake_launch), patch(
            "browser_oracle.browser.session.connect", new=AsyncMock(return_value=session)
        ), patch("browser_oracle.browser.session.sync_cookies", new=AsyncMock()) as mock_sync:
            handle = await attach_browser(config, supervisor)

        try:
            assert launched_with == [handle.user_data_dir]
            assert (handle.user_data_dir / "Default" / "Cookies").read_text() == "cookies"
            assert (handle.user_data_dir / "Local State").exists()
            mock_sync.assert_not_awaited()
        finally:
            shutil.rmtree(handle.user_data_dir, ignore_errors=True)

    @pytest.mark.asyncio
    async def test_strict_tab_isolation_reaches_connect(self, session, supervisor):
        config = BrowserAutomationConfig(
            remote_chrome=RemoteChrome(host="10.0.0.5", port=9333),
            strict_tab_isolation=True,
            cookie_sync=False,
        )

        with patch(
            "browser_oracle.browser.session.connect_with_new_tab", new=AsyncMock(return_value=session)
        ) as mock_connect, patch("browser_oracle.browser.session.sync_cookies", new=AsyncMock(return_value=0)):
            await attach_browser(config, supervisor)

        mock_connect.assert_awaited_once_with("10.0.0.5", 9333, strict=True)
