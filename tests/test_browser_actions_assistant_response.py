"""
Tests for browser.actions.assistant_response.

Covers:
- Structured snapshots completing on the site's predicate
- Baseline filtering of earlier turns
- Fallback extractor stability cycles
- Delayed recheck after a timeout
- Copy-to-markdown capture
"""

from unittest.mock import AsyncMock, patch

import pytest

from browser_oracle.browser.actions.assistant_response import (
    COMPLETE,
    FAILED,
    TIMEOUT,
    WAITING,
    AssistantResponseReader,
    capture_markdown,
    parse_snapshot,
)
from browser_oracle.browser.models import AssistantAnswer
from browser_oracle.exceptions import AssistantTimeoutError, ProtocolError
from conftest import sequence

FALLBACK_PAYLOAD = {"text": "Partial answer", "turnIndex": 2, "stopVisible": False}


@pytest.fixture
def answered(chat_page):
    chat_page.turns = [("user", "Hello"), ("assistant", "Hi there")]
    return chat_page


def _reader(session, observer, **kwargs):
    kwargs.setdefault("interval_ms", 5)
    return AssistantResponseReader(session, observer, **kwargs)


class TestParseSnapshot:
    def test_blank_text(self):
        assert parse_snapshot({"text": "  "}) is None
        assert parse_snapshot(None) is None

    def test_strips_text(self):
        answer = parse_snapshot({"text": " Hi \n", "messageId": "m1", "turnIndex": 3})

        assert answer.text == "Hi"
        assert answer.meta["message_id"] == "m1"
        assert answer.turn_index == 3

    def test_meta_is_exactly_the_page_identifiers(self):
        answer = parse_snapshot(
            {"text": "Hi there", "html": "<p>Hi there</p>", "messageId": "m1", "turnId": "t1"}
        )

        assert answer.text == "Hi there"
        assert answer.html == "<p>Hi there</p>"
        assert answer.meta == {"message_id": "m1", "turn_id": "t1"}


class TestStructuredSnapshot:
    @pytest.mark.asyncio
    async def test_completes_on_new_turn(self, answered, session, chatgpt):
        reader = _reader(session, chatgpt, baseline=0)
        assert reader.state == WAITING

        answer = await reader.wait(1_000)

        assert answer.text == "Hi there"
        assert answer.turn_index == 2
        assert answer.meta == {"message_id": "msg-2", "turn_id": "conversation-turn-2"}
        assert not answer.recovered
        assert reader.state == COMPLETE

    @pytest.mark.asyncio
    async def test_ignores_turns_at_or_below_baseline(self, answered, session, chatgpt):
        reader = _reader(session, chatgpt, baseline=2)

        with pytest.raises(AssistantTimeoutError):
            await reader.wait(50)

        assert reader.state == FAILED

    @pytest.mark.asyncio
    async def test_waits_while_streaming(self, answered, devtools, session, chatgpt):
        streaming = {"text": "Hi", "turnIndex": 2, "stopVisible": True, "finishedActions": False}
        done = {"text": "Hi there", "turnIndex": 2, "stopVisible": False, "finishedActions": True}
        devtools.on_script("assistant-snapshot", sequence(streaming, streaming, done))

        answer = await _reader(session, chatgpt, baseline=0).wait(1_000)

        assert answer.text == "Hi there"
        assert devtools.count("assistant-snapshot") == 3
        assert devtools.count("assistant-fallback") == 0


class TestFallbackExtractor:
    @pytest.mark.asyncio
    async def test_settles_after_stable_cycles(self, chat_page, devtools, session, chatgpt):
        devtools.on_script("assistant-fallback", FALLBACK_PAYLOAD)
        reader = _reader(session, chatgpt, baseline=0, stable_cycles=2)

        answer = await reader.wait(1_000)

        assert answer.text == "Partial answer"
        assert reader.polls == 3

    @pytest.mark.asyncio
    async def test_growing_text_resets_stability(self, chat_page, devtools, session, chatgpt):
        devtools.on_script(
            "assistant-fallback",
            sequence(
                {**FALLBACK_PAYLOAD, "text": "Part"},
                {**FALLBACK_PAYLOAD, "text": "Partial"},
                FALLBACK_PAYLOAD,
            ),
        )
        reader = _reader(session, chatgpt, baseline=0, stable_cycles=2)

        await reader.wait(1_000)

        assert reader.polls == 5

    @pytest.mark.asyncio
    async def test_stop_control_blocks_completion(self, chat_page, devtools, session, chatgpt):
        devtools.on_script("assistant-fallback", {**FALLBACK_PAYLOAD, "stopVisible": True})

        with pytest.raises(AssistantTimeoutError) as exc_info:
            await _reader(session, chatgpt, baseline=0, stable_cycles=2).wait(100)

        assert exc_info.value.details["partial_text"] == "Partial answer"


class TestRecheck:
    @pytest.mark.asyncio
    async def test_recovered_on_recheck(self, chat_page, devtools, session, chatgpt):
        done = {"text": "Late answer", "turnIndex": 2, "stopVisible": False, "finishedActions": True}
        devtools.on_script("assistant-snapshot", sequence(None, done))

        with patch(
            "browser_oracle.browser.actions.assistant_response.sleep_ms", new_callable=AsyncMock
        ) as mock_sleep:
            answer = await _reader(session, chatgpt, baseline=0).wait(
                0, recheck_delay_ms=30_000, recheck_timeout_ms=1_000
            )

        assert answer.text == "Late answer"
        assert answer.recovered
        mock_sleep.assert_awaited_once_with(30_000)

    @pytest.mark.asyncio
    async def test_stays_active_through_recheck_delay(self, chat_page, devtools, session, chatgpt):
        """The heartbeat keeps reporting while the reader sleeps before its recheck."""
        done = {"text": "Late answer", "turnIndex": 2, "stopVisible": False, "finishedActions": True}
        devtools.on_script("assistant-snapshot", sequence(None, done))
        reader = _reader(session, chatgpt, baseline=0)
        seen = []

        async def delay(ms):
            seen.append((reader.state, reader.active))

        with patch("browser_oracle.browser.actions.assistant_response.sleep_ms", new=delay):
            await reader.wait(0, recheck_delay_ms=30_000, recheck_timeout_ms=1_000)

        assert seen[0] == (TIMEOUT, True)
        assert reader.state == COMPLETE
        assert not reader.active

    @pytest.mark.asyncio
    async def test_timeout_after_recheck(self, chat_page, session, chatgpt):
        with patch(
            "browser_oracle.browser.actions.assistant_response.sleep_ms", new_callable=AsyncMock
        ):
            with pytest.raises(AssistantTimeoutError) as exc_info:
                await _reader(session, chatgpt, baseline=0).wait(
                    20, recheck_delay_ms=10, recheck_timeout_ms=20
                )

        details = exc_info.value.details
        assert details["recheck_timeout_ms"] == 20
        assert details["partial_text"] is None
        assert exc_info.value.stage == "assistant-response"

    @pytest.mark.asyncio
    async def test_connection_loss_propagates(self, chat_page, devtools, session, chatgpt):
        devtools.fail("assistant-snapshot", ProtocolError("WebSocket closed"))

        with pytest.raises(ProtocolError):
            await _reader(session, chatgpt, baseline=0).wait(1_000)


class TestCaptureMarkdown:
    @pytest.mark.asyncio
    async def test_copy_button_markdown(self, chat_page, session, chatgpt):
        chat_page.markdown = "**Hi** there"
        answer = AssistantAnswer(text="Hi there", meta={"message_id": "msg-2", "turn_id": None})

        assert await capture_markdown(session, chatgpt, answer) == "**Hi** there"

    @pytest.mark.asyncio
    async def test_missing_button(self, chat_page, session, chatgpt):
        chat_page.markdown = None

        assert await capture_markdown(session, chatgpt, AssistantAnswer(text="Hi")) is None

    @pytest.mark.asyncio
    async def test_protocol_error_is_tolerated(self, chat_page, devtools, session, chatgpt):
        devtools.fail("copy-markdown", ProtocolError("Promise was collected"))

        assert await capture_markdown(session, chatgpt, AssistantAnswer(text="Hi")) is None
