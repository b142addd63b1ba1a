"""
Best-effort DOM diagnostics attached to failures.

When a run fails with verbose diagnostics on (config.debug or the run logger
at DEBUG), the failing step captures a DiagnosticSnapshot of the page: URL,
title, ready state, how many conversation turns and file inputs exist, and a
short text excerpt. Capture never raises; a page that cannot be read yields a
snapshot with ``error`` set instead.
"""

import json
import logging
import time
from dataclasses import asdict, dataclass, field
from typing import Any

from browser_oracle.exceptions import ProtocolError

from .constants import CONVERSATION_TURN_SELECTOR, FILE_INPUT_SELECTORS, STOP_BUTTON_SELECTOR
from .protocol import ProtocolSession, tagged_script

logger = logging.getLogger(__name__)

TEXT_EXCERPT_CHARS = 2000
_ALL_FILE_INPUTS = ", ".join(FILE_INPUT_SELECTORS)

_SNAPSHOT_SCRIPT = tagged_script(
    "diagnostics",
    f"""(() => {{
  const turns = document.querySelectorAll({json.dumps(CONVERSATION_TURN_SELECTOR)});
  const fileInputs = document.querySelectorAll({json.dumps(_ALL_FILE_INPUTS)});
  const body = document.body ? document.body.innerText || '' : '';
  return {{
    url: location.href,
    title: document.title,
    readyState: document.readyState,
    turnCount: turns.length,
    fileInputCount: fileInputs.length,
    stopVisible: Boolean(document.querySelector({json.dumps(STOP_BUTTON_SELECTOR)})),
    text: body.slice(0, {TEXT_EXCERPT_CHARS}),
  }};
}})()""",
)


@dataclass
class DiagnosticSnapshot:
    """Page state at the moment a step failed."""

    reason: str
    stage: str | None = None
    url: str = ""
    title: str = ""
    ready_state: str = ""
    turn_count: int = 0
    file_input_count: int = 0
    stop_visible: bool = False
    text_excerpt: str = ""
    error: str | None = None
    extras: dict[str, Any] = field(default_factory=dict)
    captured_at: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def diagnostics_enabled(debug: bool, run_logger: logging.Logger | None = None) -> bool:
    target = run_logger or logger
    return debug or target.isEnabledFor(logging.DEBUG)


async def capture_snapshot(
    session: ProtocolSession,
    reason: str,
    *,
    stage: str | None = None,
    extras: dict[str, Any] | None = None,
) -> DiagnosticSnapshot:
    """Capture page diagnostics. Never raises."""
    snapshot = DiagnosticSnapshot(reason=reason, stage=stage, extras=extras or {})
    try:
        payload = await session.evaluate(_SNAPSHOT_SCRIPT)
    except ProtocolError as e:
        snapshot.error = str(e)
        return snapshot

    if isinstance(payload, dict):
        snapshot.url = str(payload.get("url") or "")
        snapshot.title = str(payload.get("title") or "")
        snapshot.ready_state = str(payload.get("readyState") or "")
        snapshot.turn_count = int(payload.get("turnCount") or 0)
        snapshot.file_input_count = int(payload.get("fileInputCount") or 0)
        snapshot.stop_visible = bool(payload.get("stopVisible"))
        snapshot.text_excerpt = str(payload.get("text") or "")
    return snapshot


async def maybe_capture(
    session: ProtocolSession,
    reason: str,
    *,
    enabled: bool,
    stage: str | None = None,
    extras: dict[str, Any] | None = None,
) -> DiagnosticSnapshot | None:
    """Capture and log a snapshot only when verbose diagnostics are on."""
    if not enabled:
        return None
    snapshot = await capture_snapshot(session, reason, stage=stage, extras=extras)
    logger.debug(f"Diagnostic snapshot ({reason}): {snapshot.to_dict()}")
    return snapshot
