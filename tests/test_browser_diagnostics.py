"""Tests for browser.diagnostics."""

import logging

import pytest

from browser_oracle.browser.diagnostics import capture_snapshot, diagnostics_enabled, maybe_capture
from browser_oracle.exceptions import ProtocolError


class TestDiagnosticsEnabled:
    def test_debug_flag(self):
        assert diagnostics_enabled(True) is True

    def test_follows_logger_level(self):
        run_logger = logging.getLogger("test.diagnostics.verbose")
        run_logger.setLevel(logging.DEBUG)
        assert diagnostics_enabled(False, run_logger) is True

        run_logger.setLevel(logging.WARNING)
        assert diagnostics_enabled(False, run_logger) is False


class TestCaptureSnapshot:
    @pytest.mark.asyncio
    async def test_reads_page_state(self, devtools, session):
        devtools.on_script(
            "diagnostics",
            {
                "url": "https://chatgpt.com/c/1",
                "title": "ChatGPT",
                "readyState": "complete",
                "turnCount": 4,
                "fileInputCount": 1,
                "stopVisible": True,
                "text": "Hello",
            },
        )

        snapshot = await capture_snapshot(session, "commit timeout", stage="submit-prompt")

        assert snapshot.turn_count == 4
        assert snapshot.stop_visible is True
        assert snapshot.stage == "submit-prompt"
        assert snapshot.error is None
        assert snapshot.to_dict()["reason"] == "commit timeout"

    @pytest.mark.asyncio
    async def test_never_raises(self, devtools, session):
        devtools.fail("diagnostics", ProtocolError("target closed"))

        snapshot = await capture_snapshot(session, "lost")

        assert snapshot.error == "target closed"
        assert snapshot.url == ""

    @pytest.mark.asyncio
    async def test_maybe_capture_disabled(self, devtools, session):
        assert await maybe_capture(session, "x", enabled=False) is None
        assert devtools.calls == []
