"""
Tests for the CLI module.

Commands:
    - ask: prompt assembly, config overrides, exit codes, output modes
    - sync-profile: profile copy outcome and failures
    - detect: binary and cookie store detection
    - main callback: version flag and help output

The browser engine itself is mocked; these tests cover the CLI contract.
"""

import json
from contextlib import contextmanager
from unittest.mock import AsyncMock, patch

import pytest
from typer.testing import CliRunner

from browser_oracle.browser.models import BrowserRunResult
from browser_oracle.cli import (
    EXIT_AUTOMATION_ERROR,
    EXIT_CONFIG_ERROR,
    EXIT_INTERRUPTED,
    EXIT_PAGE_STATE_ERROR,
    EXIT_SUCCESS,
    app,
    exit_code_for_error,
)
from browser_oracle.config.schema import BrowserAutomationConfig
from browser_oracle.exceptions import (
    AssistantTimeoutError,
    BlockedError,
    BrowserNotFoundError,
    ConfigValidationError,
    LoginRequiredError,
    ProfileNotFoundError,
    PromptNotCommittedError,
)
from browser_oracle.utils.console import output_mode

# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def cli_runner():
    """Return CliRunner for testing Typer apps."""
    return CliRunner()


@pytest.fixture(autouse=True)
def reset_output_mode():
    """Reset global output_mode between invocations."""
    output_mode.format = "text"
    output_mode.quiet = False
    output_mode._json_buffer.clear()
    yield
    output_mode.format = "text"
    output_mode.quiet = False
    output_mode._json_buffer.clear()


@pytest.fixture(autouse=True)
def no_logging_setup():
    """Keep the CLI from reconfiguring the root logger during tests."""
    with patch("browser_oracle.cli.setup_logging") as mock_setup:
        yield mock_setup


@pytest.fixture(autouse=True)
def noop_spinner():
    @contextmanager
    def spinner(*args, **kwargs):
        yield None

    with patch("browser_oracle.cli.spinner", side_effect=spinner):
        yield


@pytest.fixture
def run_result():
    return BrowserRunResult(
        answer_text="Hi there",
        answer_markdown="**Hi** there",
        took_ms=4200,
        answer_tokens=2,
        answer_chars=8,
        chrome_port=9222,
        chrome_host="127.0.0.1",
        tab_url="https://chatgpt.com/c/abc123",
    )


@pytest.fixture
def mock_engine(run_result):
    with patch(
        "browser_oracle.cli.run_browser_automation", new=AsyncMock(return_value=run_result)
    ) as mock_run, patch(
        "browser_oracle.cli.resolve_config", return_value=BrowserAutomationConfig()
    ) as mock_resolve:
        yield mock_run, mock_resolve


# ============================================================================
# Exit code mapping
# ============================================================================


class TestExitCodeForError:
    @pytest.mark.parametrize(
        "exc, code",
        [
            (ConfigValidationError("bad"), EXIT_CONFIG_ERROR),
            (BrowserNotFoundError("no chrome"), EXIT_CONFIG_ERROR),
            (ProfileNotFoundError("no profile"), EXIT_CONFIG_ERROR),
            (BlockedError("challenge"), EXIT_PAGE_STATE_ERROR),
            (LoginRequiredError("logged out"), EXIT_PAGE_STATE_ERROR),
            (PromptNotCommittedError("dropped"), EXIT_AUTOMATION_ERROR),
            (AssistantTimeoutError("slow"), EXIT_AUTOMATION_ERROR),
        ],
    )
    def test_mapping(self, exc, code):
        assert exit_code_for_error(exc) == code


# ============================================================================
# ask
# ============================================================================


class TestAskCommand:
    """Test the ask command."""

    def test_success_human_mode(self, cli_runner, mock_engine):
        result = cli_runner.invoke(app, ["ask", "Hello"])

        assert result.exit_code == EXIT_SUCCESS
        assert "Hi" in result.output
        mock_run, _ = mock_engine
        assert "Hello" in mock_run.await_args.args[0]
        assert mock_run.await_args.args[1] == []

    def test_overrides_reach_config(self, cli_runner, mock_engine):
        _, mock_resolve = mock_engine

        cli_runner.invoke(
            app,
            [
                "ask",
                "Hello",
                "--url",
                "https://grok.com/",
                "--model",
                "GPT-5.2",
                "--thinking-time",
                "heavy",
                "--headless",
            ],
        )

        config_path, overrides = mock_resolve.call_args.args
        assert config_path is None
        assert overrides["url"] == "https://grok.com/"
        assert overrides["desired_model"] == "GPT-5.2"
        assert overrides["thinking_time"] == "heavy"
        assert overrides["headless"] is True
        assert overrides["keep_browser"] is None
        assert overrides["debug"] is None

    def test_verbose_enables_debug(self, cli_runner, mock_engine, no_logging_setup):
        _, mock_resolve = mock_engine

        cli_runner.invoke(app, ["ask", "Hello", "--verbose"])

        assert mock_resolve.call_args.args[1]["debug"] is True
        assert no_logging_setup.call_args.kwargs["verbose"] is True

    def test_file_is_uploaded(self, cli_runner, mock_engine, tmp_path):
        notes = tmp_path / "notes.md"
        notes.write_text("# Notes\n")

        result = cli_runner.invoke(app, ["ask", "Summarize", "--file", str(notes)])

        assert result.exit_code == EXIT_SUCCESS
        mock_run, _ = mock_engine
        attachments = mock_run.await_args.args[1]
        assert [a.name for a in attachments] == ["notes.md"]

    def test_inline_files_go_into_prompt(self, cli_runner, mock_engine, tmp_path):
        notes = tmp_path / "notes.md"
        notes.write_text("remember the milk")

        cli_runner.invoke(app, ["ask", "Summarize", "--file", str(notes), "--inline-files"])

        mock_run, _ = mock_engine
        assert "remember the milk" in mock_run.await_args.args[0]
        assert mock_run.await_args.args[1] == []

    def test_missing_file_is_config_error(self, cli_runner, mock_engine, tmp_path):
        result = cli_runner.invoke(app, ["ask", "Hi", "--file", str(tmp_path / "nope.txt")])

        assert result.exit_code == EXIT_CONFIG_ERROR
        assert "Attachment not found" in result.output
        mock_run, _ = mock_engine
        mock_run.assert_not_awaited()

    def test_invalid_config_is_config_error(self, cli_runner):
        with patch(
            "browser_oracle.cli.resolve_config",
            side_effect=ConfigValidationError("Invalid browser configuration"),
        ):
            result = cli_runner.invoke(app, ["ask", "Hi"])

        assert result.exit_code == EXIT_CONFIG_ERROR

    def test_login_required_exit_code(self, cli_runner, mock_engine):
        mock_run, _ = mock_engine
        mock_run.side_effect = LoginRequiredError("Sign in first", stage="login")

        result = cli_runner.invoke(app, ["ask", "Hi"])

        assert result.exit_code == EXIT_PAGE_STATE_ERROR
        assert "Sign in first" in result.output

    def test_automation_failure_exit_code(self, cli_runner, mock_engine):
        mock_run, _ = mock_engine
        mock_run.side_effect = PromptNotCommittedError("send may have failed", stage="submit-prompt")

        result = cli_runner.invoke(app, ["ask", "Hi"])

        assert result.exit_code == EXIT_AUTOMATION_ERROR

    def test_keyboard_interrupt(self, cli_runner, mock_engine):
        mock_run, _ = mock_engine
        mock_run.side_effect = KeyboardInterrupt

        result = cli_runner.invoke(app, ["ask", "Hi"])

        assert result.exit_code == EXIT_INTERRUPTED

    def test_quiet_prints_bare_answer(self, cli_runner, mock_engine):
        result = cli_runner.invoke(app, ["ask", "Hi", "--quiet"])

        assert result.exit_code == EXIT_SUCCESS
        assert result.output.strip() == "**Hi** there"


class TestAskJsonOutput:
    """Agent mode writes exactly one JSON object."""

    def test_success_payload(self, cli_runner, mock_engine):
        result = cli_runner.invoke(app, ["ask", "Hi", "--format", "json"])

        assert result.exit_code == EXIT_SUCCESS
        data = json.loads(result.output)
        assert data["status"] == "success"
        assert data["result"]["answer_text"] == "Hi there"
        assert data["result"]["tab_url"] == "https://chatgpt.com/c/abc123"

    def test_no_ansi_codes(self, cli_runner, mock_engine):
        result = cli_runner.invoke(app, ["ask", "Hi", "--format", "json"])

        assert "\x1b[" not in result.output

    def test_error_payload(self, cli_runner, mock_engine):
        mock_run, _ = mock_engine
        mock_run.side_effect = BlockedError("Cloudflare challenge detected", kind="challenge", stage="navigate")

        result = cli_runner.invoke(app, ["ask", "Hi", "--format", "json"])

        assert result.exit_code == EXIT_PAGE_STATE_ERROR
        data = json.loads(result.output)
        assert data["status"] == "error"
        assert data["error_type"] == "BlockedError"
        assert data["stage"] == "navigate"
        assert "Cloudflare challenge detected" in data["error"]


# ============================================================================
# sync-profile
# ============================================================================


class TestSyncProfileCommand:
    def test_success(self, cli_runner, tmp_path):
        outcome = {
            "source": "/home/me/.config/google-chrome/Default",
            "profile_name": "Default",
            "method": "rsync",
            "status": "copied",
        }
        with patch("browser_oracle.cli.sync_profile", return_value=outcome) as mock_sync:
            result = cli_runner.invoke(
                app, ["sync-profile", str(tmp_path / "auto"), "--profile", "Default", "--format", "json"]
            )

        assert result.exit_code == EXIT_SUCCESS
        data = json.loads(result.output)
        assert data["result"]["method"] == "rsync"
        assert mock_sync.call_args.args == (tmp_path / "auto", "Default")

    def test_missing_profile(self, cli_runner, tmp_path):
        with patch(
            "browser_oracle.cli.sync_profile",
            side_effect=ProfileNotFoundError("Chrome profile not found: /nowhere/Default"),
        ):
            result = cli_runner.invoke(app, ["sync-profile", str(tmp_path / "auto")])

        assert result.exit_code == EXIT_CONFIG_ERROR
        assert "Chrome profile not found" in result.output

    def test_copy_os_error(self, cli_runner, tmp_path):
        with patch("browser_oracle.cli.sync_profile", side_effect=PermissionError("denied")):
            result = cli_runner.invoke(app, ["sync-profile", str(tmp_path / "auto")])

        assert result.exit_code == EXIT_CONFIG_ERROR
        assert "Profile copy failed" in result.output


# ============================================================================
# detect
# ============================================================================


class TestDetectCommand:
    def test_found(self, cli_runner, tmp_path):
        with patch(
            "browser_oracle.cli.detect_browser_binary", return_value="/usr/bin/google-chrome"
        ), patch("browser_oracle.cli.detect_cookie_store", return_value=tmp_path / "Cookies"):
            result = cli_runner.invoke(app, ["detect", "--format", "json"])

        assert result.exit_code == EXIT_SUCCESS
        data = json.loads(result.output)
        assert data["detected"] == {
            "Chrome binary": "/usr/bin/google-chrome",
            "Cookie store": str(tmp_path / "Cookies"),
        }

    def test_no_binary(self, cli_runner):
        with patch("browser_oracle.cli.detect_browser_binary", return_value=None), patch(
            "browser_oracle.cli.detect_cookie_store", return_value=None
        ):
            result = cli_runner.invoke(app, ["detect"])

        assert result.exit_code == EXIT_CONFIG_ERROR
        assert "No Chrome or Chromium executable found" in result.output


# ============================================================================
# main callback
# ============================================================================


class TestMainCallback:
    def test_version_flag_prints_version(self, cli_runner):
        result = cli_runner.invoke(app, ["--version"])

        assert result.exit_code == EXIT_SUCCESS
        assert "browser-oracle" in result.output
        assert "version" in result.output

    def test_no_command_lists_commands(self, cli_runner):
        result = cli_runner.invoke(app, [])

        assert "sync-profile" in result.output
