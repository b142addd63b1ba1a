"""
File attachment upload through the composer's file input.

upload_file() resolves a file input with DOM.querySelector over an ordered
selector list (first match wins), assigns the file with
DOM.setFileInputFiles and waits until the input's FileList holds an entry
with exactly the file's base name. A remote Chrome cannot read local paths, so
there the file content is sent base64-encoded and placed on the input through
a DataTransfer instead. wait_for_completion() then waits for the server
side: the send control must be enabled and no upload indicator may report
activity.
"""

import asyncio
import base64
import json
import logging
import mimetypes
from collections.abc import Sequence

from browser_oracle.exceptions import (
    AttachmentInputNotFoundError,
    AttachmentNotRegisteredError,
    AttachmentUploadTimeoutError,
)

from ..constants import COMPOSER_PLUS_SELECTORS, FILE_INPUT_SELECTORS, UPLOAD_STATUS_SELECTORS
from ..diagnostics import maybe_capture
from ..models import BrowserAttachment
from ..polling import poll_until, sleep_ms
from ..protocol import ProtocolSession, tagged_script
from ..sites.base import SiteObserver

logger = logging.getLogger(__name__)

REGISTER_POLL_INTERVAL_MS = 200
COMPLETION_POLL_INTERVAL_MS = 250
MENU_SETTLE_MS = 250

_UPLOAD_STATUS = json.dumps(list(UPLOAD_STATUS_SELECTORS))

# Newer composers hide the file input behind a "+" menu.
REVEAL_INPUT_SCRIPT = tagged_script(
    "reveal-file-input",
    f"""(() => {{
  for (const selector of {json.dumps(list(COMPOSER_PLUS_SELECTORS))}) {{
    const node = document.querySelector(selector);
    if (node instanceof HTMLElement) {{
      node.click();
      return true;
    }}
  }}
  return false;
}})()""",
)


def file_names_script(selector: str) -> str:
    """Script returning the names in the FileList of the input matching selector."""
    return tagged_script(
        "file-input-names",
        f"""(() => {{
  const input = document.querySelector({json.dumps(selector)});
  if (!(input instanceof HTMLInputElement) || !input.files) return [];
  return Array.from(input.files).map((file) => file.name);
}})()""",
    )


def dispatch_change_script(selector: str) -> str:
    return tagged_script(
        "file-input-change",
        f"""(() => {{
  const input = document.querySelector({json.dumps(selector)});
  if (!input) return false;
  input.dispatchEvent(new Event('input', {{ bubbles: true }}));
  input.dispatchEvent(new Event('change', {{ bubbles: true }}));
  return true;
}})()""",
    )


def transfer_file_script(selector: str, name: str, mime_type: str, content: bytes) -> str:
    """Script building a File from base64 content and assigning it to the input."""
    encoded = base64.b64encode(content).decode("ascii")
    return tagged_script(
        "file-transfer",
        f"""(() => {{
  const input = document.querySelector({json.dumps(selector)});
  if (!(input instanceof HTMLInputElement)) return {{ success: false, error: 'File input not found' }};
  const binary = atob({json.dumps(encoded)});
  const bytes = new Uint8Array(binary.length);
  for (let i = 0; i < binary.length; i++) bytes[i] = binary.charCodeAt(i);
  const file = new File([bytes], {json.dumps(name)}, {{ type: {json.dumps(mime_type)}, lastModified: Date.now() }});
  const transfer = new DataTransfer();
  transfer.items.add(file);
  input.files = transfer.files;
  input.dispatchEvent(new Event('input', {{ bubbles: true }}));
  input.dispatchEvent(new Event('change', {{ bubbles: true }}));
  return {{ success: true, size: file.size }};
}})()""",
    )


def upload_state_script(observer: SiteObserver) -> str:
    """Script reporting send-control state (ready/disabled/missing) and upload activity."""
    return tagged_script(
        "upload-state",
        f"""(() => {{
  let button = null;
  for (const selector of {json.dumps(list(observer.send_button_selectors))}) {{
    button = document.querySelector(selector);
    if (button) break;
  }}
  const disabled = button
    ? button.hasAttribute('disabled') ||
      button.getAttribute('aria-disabled') === 'true' ||
      button.getAttribute('data-disabled') === 'true' ||
      window.getComputedStyle(button).pointerEvents === 'none'
    : null;
  const uploading = {_UPLOAD_STATUS}.some((selector) =>
    Array.from(document.querySelectorAll(selector)).some((node) => {{
      const state = node.getAttribute('data-state');
      if (node.getAttribute('aria-busy') === 'true' || ['loading', 'uploading', 'pending'].includes(state)) return true;
      const text = (node.textContent || '').toLowerCase();
      return text.includes('uploading') || text.includes('processing');
    }})
  );
  const filesAttached = Array.from(document.querySelectorAll('input[type="file"]')).some((input) => input.files && input.files.length > 0);
  return {{ state: button ? (disabled ? 'disabled' : 'ready') : 'missing', uploading, filesAttached }};
}})()""",
    )


def upload_finished(state) -> bool:
    """True when nothing is uploading and the send control (or a queued file) says ready."""
    if not isinstance(state, dict) or state.get("uploading"):
        return False
    if state.get("state") == "ready":
        return True
    return state.get("state") == "missing" and bool(state.get("filesAttached"))


async def upload_file(
    session: ProtocolSession,
    attachment: BrowserAttachment,
    *,
    register_timeout_ms: int,
    selectors: Sequence[str] = FILE_INPUT_SELECTORS,
    transfer: bool = False,
    diagnostics: bool = False,
) -> str:
    """
    Attach one file to the composer.

    Args:
        session: DevTools session on the chat page
        attachment: Local file to attach
        register_timeout_ms: Budget for the input to list the file
        selectors: File-input selectors, tried in order
        transfer: Send the file content instead of its path (remote Chrome)
        diagnostics: Capture a DOM snapshot on failure

    Returns:
        The file-input selector that received the file

    Raises:
        AttachmentInputNotFoundError: If no selector resolves a file input;
            no files are assigned in that case
        AttachmentNotRegisteredError: If the input never lists the file
            (or, with transfer, the page rejected the content)
    """
    if await session.evaluate(REVEAL_INPUT_SCRIPT):
        await sleep_ms(MENU_SETTLE_MS)

    node_id = None
    matched = None
    for selector in selectors:
        node_id = await session.query_selector(selector)
        if node_id:
            matched = selector
            break

    if matched is None:
        snapshot = await maybe_capture(
            session, "file-input-missing", enabled=diagnostics, stage="upload-attachment"
        )
        raise AttachmentInputNotFoundError(
            "Unable to locate a file attachment input in the composer.",
            stage="upload-attachment",
            details={"selectors": list(selectors)},
            snapshot=snapshot,
        )

    expected = attachment.name
    if transfer:
        await _transfer_file(session, attachment, matched)
    else:
        await session.set_file_input_files(node_id, [str(attachment.path)])
        await session.evaluate(dispatch_change_script(matched))

    names_script = file_names_script(matched)

    async def check():
        names = await session.evaluate(names_script)
        return isinstance(names, list) and expected in names

    outcome = await poll_until(
        check, timeout_ms=register_timeout_ms, interval_ms=REGISTER_POLL_INTERVAL_MS
    )
    if not outcome.satisfied:
        snapshot = await maybe_capture(
            session, "file-upload-missing", enabled=diagnostics, stage="upload-attachment"
        )
        raise AttachmentNotRegisteredError(
            f"Attachment did not register: {expected}",
            stage="upload-attachment",
            details={"file": expected, "selector": matched},
            snapshot=snapshot,
        )

    logger.info(f"Attachment queued: {attachment.display_path or expected}")
    return matched


async def _transfer_file(session: ProtocolSession, attachment: BrowserAttachment, selector: str) -> None:
    content = await asyncio.to_thread(attachment.path.read_bytes)
    mime_type = mimetypes.guess_type(attachment.name)[0] or "application/octet-stream"
    logger.info(f"Transferring {attachment.name} ({len(content)} bytes) to remote browser")

    result = await session.evaluate(
        transfer_file_script(selector, attachment.name, mime_type, content)
    )
    if not isinstance(result, dict) or not result.get("success"):
        reason = result.get("error") if isinstance(result, dict) else None
        raise AttachmentNotRegisteredError(
            f"Failed to transfer {attachment.name} to remote browser: {reason or 'unknown error'}",
            stage="upload-attachment",
            details={"file": attachment.name, "selector": selector},
        )


async def wait_for_completion(
    session: ProtocolSession,
    observer: SiteObserver,
    *,
    timeout_ms: int,
    diagnostics: bool = False,
) -> None:
    """
    Wait until every queued upload finished and the send control is enabled.

    Raises:
        AttachmentUploadTimeoutError: If uploads were still running at timeout
    """
    script = upload_state_script(observer)

    async def check():
        return await session.evaluate(script)

    outcome = await poll_until(
        check,
        timeout_ms=timeout_ms,
        interval_ms=COMPLETION_POLL_INTERVAL_MS,
        done=upload_finished,
    )
    if outcome.satisfied:
        logger.debug(f"Attachments uploaded after {outcome.elapsed_ms}ms")
        return

    snapshot = await maybe_capture(
        session, "file-upload-timeout", enabled=diagnostics, stage="upload-attachment"
    )
    raise AttachmentUploadTimeoutError(
        "Attachments did not finish uploading before timeout.",
        stage="upload-attachment",
        details={"timeout_ms": timeout_ms, "last_state": outcome.value},
        snapshot=snapshot,
    )
