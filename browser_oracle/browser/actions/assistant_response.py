"""
Assistant response reader.

Waits for the assistant turn that answers the submitted prompt and extracts
it. One reader handles one turn and moves through the states

    waiting -> polling -> complete
                       -> timeout -> recheck -> complete | failed

Each poll runs the site observer's snapshot script for turns above the
pre-submission baseline. A structured snapshot completes when the site's
predicate holds (new assistant turn, no stop control, finished-turn action
controls present). When the structured extractor finds nothing, the
markdown fallback extractor is read instead; a fallback snapshot completes
only once no stop control shows and its text has stayed the same length
for STABLE_CYCLES consecutive polls.

After a timeout the reader optionally sleeps recheck_delay_ms and polls
once more for recheck_timeout_ms; an answer found there is marked
``recovered``. A second miss raises AssistantTimeoutError.
"""

import logging

from browser_oracle.exceptions import AssistantTimeoutError, ProtocolError

from ..diagnostics import maybe_capture
from ..models import AssistantAnswer, AssistantSnapshot
from ..polling import poll_until, sleep_ms
from ..protocol import ProtocolSession
from ..sites.base import SiteObserver

logger = logging.getLogger(__name__)

POLL_INTERVAL_MS = 250
STABLE_CYCLES = 6

# Reader states
WAITING = "waiting"
POLLING = "polling"
COMPLETE = "complete"
TIMEOUT = "timeout"
RECHECK = "recheck"
FAILED = "failed"


def parse_snapshot(payload) -> AssistantAnswer | None:
    """Turn a raw extractor payload into an answer; None when it holds no text."""
    snapshot = AssistantSnapshot.from_payload(payload)
    if snapshot is None or not snapshot.text.strip():
        return None
    return AssistantAnswer.from_snapshot(snapshot)


class AssistantResponseReader:
    """
    Polls one conversation for the assistant turn after baseline.

    Attributes:
        state: Current reader state (see module docstring)
        polls: Total snapshot polls issued
        last_snapshot: Most recent snapshot seen, complete or not
    """

    def __init__(
        self,
        session: ProtocolSession,
        observer: SiteObserver,
        *,
        baseline: int | None = None,
        interval_ms: int = POLL_INTERVAL_MS,
        stable_cycles: int = STABLE_CYCLES,
        diagnostics: bool = False,
    ):
        self.session = session
        self.observer = observer
        self.baseline = baseline
        self.interval_ms = interval_ms
        self.stable_cycles = stable_cycles
        self.diagnostics = diagnostics
        self.state = WAITING
        self.polls = 0
        self.last_snapshot: AssistantSnapshot | None = None
        self._stable = 0
        self._last_length = 0

    @property
    def active(self) -> bool:
        return self.state in (WAITING, POLLING, TIMEOUT, RECHECK)

    async def read_snapshot(self) -> tuple[AssistantSnapshot | None, bool]:
        """
        Read the newest assistant turn above the baseline.

        Returns:
            (snapshot, structured): structured is False when the snapshot came
            from the markdown fallback extractor
        """
        payload = await self.session.evaluate(self.observer.snapshot_script(self.baseline))
        snapshot = AssistantSnapshot.from_payload(payload)
        if snapshot is not None:
            return snapshot, True
        payload = await self.session.evaluate(self.observer.markdown_fallback_script(self.baseline))
        return AssistantSnapshot.from_payload(payload), False

    def _is_new_turn(self, snapshot: AssistantSnapshot) -> bool:
        if self.baseline is None:
            return True
        return snapshot.turn_index is not None and snapshot.turn_index > self.baseline

    def _fallback_settled(self, snapshot: AssistantSnapshot | None) -> bool:
        if snapshot is None or not snapshot.text.strip() or not self._is_new_turn(snapshot):
            self._stable = 0
            self._last_length = 0
            return False
        length = len(snapshot.text)
        if length > self._last_length:
            self._last_length = length
            self._stable = 0
        else:
            self._stable += 1
        return not snapshot.stop_visible and self._stable >= self.stable_cycles

    async def _probe(self) -> AssistantSnapshot | None:
        snapshot, structured = await self.read_snapshot()
        self.polls += 1
        self.last_snapshot = snapshot
        if structured:
            self._stable = 0
            self._last_length = 0
            return snapshot if self.observer.is_complete(snapshot, self.baseline) else None
        if self._fallback_settled(snapshot):
            logger.debug("Assistant turn settled via fallback extractor")
            return snapshot
        return None

    async def poll(self, timeout_ms: int) -> AssistantAnswer | None:
        """One bounded polling pass. Returns the answer, or None on timeout."""
        outcome = await poll_until(self._probe, timeout_ms=timeout_ms, interval_ms=self.interval_ms)
        if not outcome.satisfied:
            return None
        return AssistantAnswer.from_snapshot(outcome.value)

    async def wait(
        self,
        timeout_ms: int,
        *,
        recheck_delay_ms: int = 0,
        recheck_timeout_ms: int = 0,
    ) -> AssistantAnswer:
        """
        Wait for the answer, with one delayed recheck after a timeout.

        Raises:
            AssistantTimeoutError: If neither pass saw a completed turn
            ProtocolError: If the connection dropped while polling
        """
        logger.info("Waiting for assistant response")
        self.state = POLLING
        answer = await self.poll(timeout_ms)
        if answer is not None:
            self.state = COMPLETE
            return answer

        self.state = TIMEOUT
        if recheck_timeout_ms > 0:
            logger.warning(
                f"Assistant response timed out after {timeout_ms // 1000}s; "
                f"rechecking in {recheck_delay_ms // 1000}s"
            )
            await sleep_ms(recheck_delay_ms)
            self.state = RECHECK
            answer = await self.poll(recheck_timeout_ms)
            if answer is not None:
                logger.info("Recovered assistant response on recheck")
                answer.recovered = True
                self.state = COMPLETE
                return answer

        self.state = FAILED
        snapshot = await maybe_capture(
            self.session,
            "assistant-response",
            enabled=self.diagnostics,
            stage="assistant-response",
            extras={"baseline": self.baseline, "polls": self.polls},
        )
        raise AssistantTimeoutError(
            "Timed out waiting for the assistant response",
            stage="assistant-response",
            details={
                "timeout_ms": timeout_ms,
                "recheck_timeout_ms": recheck_timeout_ms,
                "baseline": self.baseline,
                "partial_text": self.last_snapshot.text if self.last_snapshot else None,
            },
            snapshot=snapshot,
        )


async def capture_markdown(
    session: ProtocolSession,
    observer: SiteObserver,
    answer: AssistantAnswer,
) -> str | None:
    """
    Markdown of the answer via the turn's copy control, or None.

    Best effort: a missing button or a clipboard timeout falls back to the
    plain text already captured.
    """
    script = observer.copy_markdown_script(answer.meta.get("message_id"), answer.meta.get("turn_id"))
    try:
        result = await session.evaluate(script, await_promise=True)
    except ProtocolError as e:
        logger.warning(f"Copy-to-markdown failed: {e}")
        return None
    if isinstance(result, dict) and result.get("success") and isinstance(result.get("markdown"), str):
        return result["markdown"]
    status = result.get("status") if isinstance(result, dict) else None
    logger.debug(f"Copy button fallback status: {status or 'unknown'}")
    return None
