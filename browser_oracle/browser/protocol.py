"""
Chrome DevTools protocol session.

ProtocolSession is the only object in the engine that talks to the browser.
It wraps any transport exposing ``async send(method, params) -> dict`` (a
Playwright CDPSession in production, a scripted fake in tests) and turns the
raw JSON-RPC calls the engine needs into typed methods:

- evaluate(): Runtime.evaluate with returnByValue, page exceptions raised
- query_selector(): DOM.getDocument + DOM.querySelector, None on no match
- set_file_input_files(): DOM.setFileInputFiles
- set_cookie(): Network.setCookie, returns the success flag
- navigate(), insert_text(), press_enter()

Every transport failure (dropped socket, closed target, unavailable domain)
is re-raised as ProtocolError so callers handle exactly one error type.

connect() / connect_with_new_tab() attach to a running Chrome over
``http://host:port`` with Playwright's connect_over_cdp and open a CDP
session on either a fresh tab (isolated) or the first existing one.

Scripts sent through evaluate() start with a ``/* oracle:<name> */`` tag so
logs (and test doubles) can tell which script produced a result.
"""

import asyncio
import logging
import re
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import async_playwright

from browser_oracle.exceptions import ProtocolError

logger = logging.getLogger(__name__)

REQUIRED_DOMAINS = ("Runtime", "DOM", "Network", "Page")

# Attempts to open an isolated tab before giving up (or falling back).
NEW_TAB_ATTEMPTS = 3
NEW_TAB_RETRY_DELAY_SECONDS = 0.25

SCRIPT_TAG_PATTERN = re.compile(r"/\* oracle:([\w-]+) \*/")


class Transport(Protocol):
    """Anything that can issue a DevTools command and return its result."""

    async def send(self, method: str, params: dict[str, Any] | None = None) -> dict: ...


def tagged_script(name: str, body: str) -> str:
    """Prefix a page script with its script name."""
    return f"/* oracle:{name} */ {body.strip()}"


def script_name(expression: str) -> str | None:
    match = SCRIPT_TAG_PATTERN.search(expression)
    return match.group(1) if match else None


class ProtocolSession:
    """
    One live DevTools connection, owned by exactly one run.

    Attributes:
        target_id: DevTools target id of the attached tab
        host / port: Debug endpoint the session was opened against
        lost: True once the connection dropped; every later call raises
    """

    def __init__(
        self,
        transport: Transport,
        *,
        host: str = "127.0.0.1",
        port: int | None = None,
        target_id: str | None = None,
        on_close: Callable[[], Awaitable[None]] | None = None,
    ):
        self._transport = transport
        self.host = host
        self.port = port
        self.target_id = target_id
        self._on_close = on_close
        self.lost = False
        self.closed = False

    def mark_lost(self, reason: str = "disconnected") -> None:
        if not self.lost:
            logger.warning(f"DevTools connection lost ({reason})")
        self.lost = True

    async def send(self, method: str, params: dict[str, Any] | None = None) -> dict:
        """
        Send one CDP command and wait for its result.

        Raises:
            ProtocolError: The connection is closed or lost, or the transport
                failed (a closed socket also marks the session lost)
        """
        if self.lost or self.closed:
            raise ProtocolError(
                f"DevTools connection is not available for {method}",
                details={"method": method},
            )
        try:
            result = await self._transport.send(method, params or {})
        except ProtocolError:
            raise
        except (PlaywrightError, ConnectionError, OSError) as e:
            message = str(e)
            if "closed" in message.lower() or "disconnected" in message.lower():
                self.mark_lost(message)
            raise ProtocolError(f"{method} failed: {message}", details={"method": method}) from e
        return result or {}

    async def enable_domains(self, domains: tuple[str, ...] = REQUIRED_DOMAINS) -> None:
        """Enable Runtime, Page, Network and DOM; failures name the domain that refused."""
        for domain in domains:
            try:
                await self.send(f"{domain}.enable")
            except ProtocolError as e:
                raise ProtocolError(f"DevTools domain {domain} is unavailable: {e}") from e

    async def evaluate(self, expression: str, *, await_promise: bool = False) -> Any:
        """
        Evaluate a script in the page and return its JSON value.

        Raises:
            ProtocolError: If the transport fails or the script throws
        """
        result = await self.send(
            "Runtime.evaluate",
            {
                "expression": expression,
                "awaitPromise": await_promise,
                "returnByValue": True,
            },
        )
        details = result.get("exceptionDetails")
        if details:
            exception = details.get("exception") or {}
            text = exception.get("description") or details.get("text") or "script error"
            name = script_name(expression) or "anonymous"
            raise ProtocolError(
                f"Page script '{name}' raised: {text}", details={"script": name}
            )
        return (result.get("result") or {}).get("value")

    async def query_selector(self, selector: str) -> int | None:
        """Return the DOM nodeId of the first element matching selector, or None."""
        document = await self.send("DOM.getDocument", {"depth": 0})
        root_id = (document.get("root") or {}).get("nodeId")
        if not root_id:
            raise ProtocolError("DOM.getDocument returned no root node")
        found = await self.send("DOM.querySelector", {"nodeId": root_id, "selector": selector})
        node_id = found.get("nodeId") or 0
        return node_id or None

    async def set_file_input_files(self, node_id: int, files: list[str]) -> None:
        await self.send("DOM.setFileInputFiles", {"nodeId": node_id, "files": files})

    async def set_cookie(self, cookie: dict[str, Any]) -> bool:
        """True when Chrome accepted the cookie."""
        result = await self.send("Network.setCookie", cookie)
        return bool(result.get("success", False))

    async def navigate(self, url: str) -> None:
        result = await self.send("Page.navigate", {"url": url})
        error_text = result.get("errorText")
        if error_text:
            raise ProtocolError(f"Navigation to {url} failed: {error_text}")

    async def insert_text(self, text: str) -> None:
        await self.send("Input.insertText", {"text": text})

    async def press_enter(self) -> None:
        key = {"key": "Enter", "code": "Enter", "windowsVirtualKeyCode": 13}
        await self.send("Input.dispatchKeyEvent", {"type": "keyDown", "text": "\r", **key})
        await self.send("Input.dispatchKeyEvent", {"type": "keyUp", **key})

    async def current_url(self) -> str:
        value = await self.evaluate(tagged_script("location", "location.href"))
        return value if isinstance(value, str) else ""

    async def close(self) -> None:
        """Close the websocket. Safe to call more than once."""
        if self.closed:
            return
        self.closed = True
        if self._on_close is not None:
            await self._on_close()


async def _open_isolated_page(context, attempts: int = NEW_TAB_ATTEMPTS):
    for attempt in range(1, attempts + 1):
        try:
            return await context.new_page()
        except PlaywrightError as e:
            logger.debug(f"Opening isolated tab failed (attempt {attempt}/{attempts}): {e}")
            if attempt < attempts:
                await asyncio.sleep(NEW_TAB_RETRY_DELAY_SECONDS * attempt)
    return None


async def connect(
    host: str,
    port: int,
    *,
    new_tab: bool = False,
    strict: bool = False,
) -> ProtocolSession:
    """
    Attach to Chrome's DevTools endpoint and return a ready session.

    Args:
        host: DevTools host
        port: DevTools port
        new_tab: Open a dedicated tab instead of driving the first one
        strict: With new_tab, fail rather than fall back to the default tab

    Raises:
        ProtocolError: Endpoint unreachable, isolation failed in strict mode,
            or a required domain could not be enabled
    """
    playwright = await async_playwright().start()
    endpoint = f"http://{host}:{port}"
    try:
        browser = await playwright.chromium.connect_over_cdp(endpoint)
    except PlaywrightError as e:
        await playwright.stop()
        raise ProtocolError(f"Failed to connect to Chrome DevTools at {host}:{port}: {e}") from e

    try:
        context = browser.contexts[0] if browser.contexts else await browser.new_context()

        page = None
        if new_tab:
            page = await _open_isolated_page(context)
            if page is None:
                if strict:
                    raise ProtocolError(
                        "Failed to open isolated browser tab; refusing to attach to default target."
                    )
                logger.warning("Failed to open isolated browser tab; using the default target")
        owns_page = page is not None
        if page is None:
            page = context.pages[0] if context.pages else await context.new_page()

        cdp = await context.new_cdp_session(page)
        info = await cdp.send("Target.getTargetInfo")
    except PlaywrightError as e:
        await browser.close()
        await playwright.stop()
        raise ProtocolError(f"Failed to open a DevTools session at {host}:{port}: {e}") from e
    except ProtocolError:
        await browser.close()
        await playwright.stop()
        raise

    async def _close() -> None:
        try:
            if owns_page and not page.is_closed():
                await page.close()
            await cdp.detach()
            await browser.close()
        except PlaywrightError as e:
            logger.debug(f"Closing DevTools session: {e}")
        finally:
            await playwright.stop()

    session = ProtocolSession(
        cdp,
        host=host,
        port=port,
        target_id=(info.get("targetInfo") or {}).get("targetId"),
        on_close=_close,
    )
    browser.on("disconnected", lambda _browser: session.mark_lost("browser disconnected"))

    try:
        await session.enable_domains()
    except ProtocolError:
        await session.close()
        raise

    logger.debug(f"Connected to DevTools at {endpoint} (target {session.target_id})")
    return session


async def connect_with_new_tab(host: str, port: int, *, strict: bool = False) -> ProtocolSession:
    """Connect using a dedicated tab so concurrent runs never share a target."""
    return await connect(host, port, new_tab=True, strict=strict)
