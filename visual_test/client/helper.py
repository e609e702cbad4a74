"""Client capture helper: used by the test running against the page under test.

The same test code runs in two modes:

* assertion mode: the helper asks the capture server to photograph this page
  (reloaded with ``capture=true``) and turns the verdict into an assertion;
* capture mode: the page was loaded by the capture server. The helper marks
  the DOM as ready and suspends the test until the harness releases it.
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from typing import Any, Callable, Optional, Protocol
from urllib.parse import parse_qsl, quote, urlsplit, urlunsplit

import httpx
from playwright.async_api import Page

from visual_test.errors import CaptureRequestError
from visual_test.models.capture import SCREENSHOT_ROUTE
from visual_test.naming import dasherize

logger = logging.getLogger(__name__)

CAPTURE_MODE_CLASS = "visual-test-capture-mode"
READY_SENTINEL_ID = "visual-test-has-loaded"

PREPARE_CAPTURE_MODE_SCRIPT = f"""
() => {{
    document.body.classList.add('{CAPTURE_MODE_CLASS}');
    window.dispatchEvent(new CustomEvent('pageLoaded'));
    if (!document.getElementById('{READY_SENTINEL_ID}')) {{
        const div = document.createElement('div');
        div.setAttribute('id', '{READY_SENTINEL_ID}');
        document.body.appendChild(div);
    }}
}}
"""

AssertFn = Callable[[bool, str], None]


class PageHost(Protocol):
    """The page under test as seen by the helper."""

    @property
    def url(self) -> str: ...

    async def mark_ready(self) -> None: ...


class PlaywrightPageHost:
    """``PageHost`` backed by a Playwright page."""

    def __init__(self, page: Page):
        self.page = page

    @property
    def url(self) -> str:
        return self.page.url

    async def mark_ready(self) -> None:
        await self.page.evaluate(PREPARE_CAPTURE_MODE_SCRIPT)


class CaptureSuspension:
    """A test held open in capture mode until the harness releases it."""

    def __init__(self, name: str):
        self.name = name
        self._future: asyncio.Future = asyncio.get_running_loop().create_future()

    @property
    def released(self) -> bool:
        return self._future.done()

    def release(self) -> None:
        if not self._future.done():
            self._future.cancel()

    async def wait(self) -> None:
        """Block until released; the release surfaces as ``CancelledError``."""
        await self._future


def capture_url(page_url: str, name: str, test_id: str) -> str:
    """The current page URL with the capture-mode parameters appended."""
    parts = urlsplit(page_url)
    params = [parts.query] if parts.query else []
    params += [
        f"testId={quote(test_id, safe='')}",
        "devmode",
        f"fileName={quote(name, safe='')}",
        "capture=true",
    ]
    return urlunsplit((parts.scheme, parts.netloc, parts.path, "&".join(params), ""))


def _query_params(page_url: str) -> list[tuple[str, str]]:
    return parse_qsl(urlsplit(page_url).query, keep_blank_values=True)


class CaptureClient:
    """Issues capture requests to the capture server for a test suite."""

    def __init__(
        self,
        base_url: str,
        http_client: Optional[httpx.AsyncClient] = None,
        on_suspend: Optional[Callable[[CaptureSuspension], None]] = None,
        timeout: float = 120.0,
    ):
        self.base_url = base_url.rstrip("/")
        self._http_client = http_client
        self._timeout = timeout
        self.on_suspend = on_suspend
        self.suspensions: list[CaptureSuspension] = []

    async def capture(
        self,
        assert_fn: AssertFn,
        host: PageHost,
        name: str,
        *,
        test_id: Optional[str] = None,
        selector: Optional[str] = None,
        full_page: bool = True,
        delay_ms: int = 100,
        window_width: Optional[int] = None,
        window_height: Optional[int] = None,
    ) -> Any:
        """Capture ``host`` under ``name`` and assert it matches its baseline.

        ``name`` must be unique across the suite. It becomes the image file
        name; ``/`` creates subdirectories.

        Returns the server's response body in assertion mode (a dict, or the
        raw text if it was not JSON), and ``None`` when the page is in capture
        mode for a different name. In capture mode for this name the call
        does not return until the harness releases the suspension, at which
        point ``asyncio.CancelledError`` is raised.
        """
        params = _query_params(host.url)
        if ("capture", "true") in params:
            if ("fileName", name) not in params:
                return None
            await self._suspend(host, name)

        url = capture_url(host.url, name, test_id or uuid.uuid4().hex[:8])
        response = await self.request_capture(
            url,
            name,
            selector=selector,
            full_page=full_page,
            delay_ms=delay_ms,
            window_width=window_width,
            window_height=window_height,
        )

        status = response.get("status") if isinstance(response, dict) else None
        if status == "SUCCESS":
            assert_fn(True, f"visual-test: {name} has not changed")
        else:
            error = response.get("error") if isinstance(response, dict) else response
            assert_fn(False, f"visual-test: {name} has changed: {error}")
        return response

    async def _suspend(self, host: PageHost, name: str) -> None:
        await host.mark_ready()
        suspension = CaptureSuspension(name)
        self.suspensions.append(suspension)
        logger.debug("Capture mode for %s: waiting to be released", name)
        if self.on_suspend is not None:
            self.on_suspend(suspension)
        await suspension.wait()

    def release_suspended(self) -> int:
        """Release every suspended capture-mode test. Returns how many."""
        pending = [s for s in self.suspensions if not s.released]
        for suspension in pending:
            suspension.release()
        self.suspensions.clear()
        return len(pending)

    async def request_capture(
        self,
        url: str,
        name: str,
        *,
        selector: Optional[str] = None,
        full_page: bool = True,
        delay_ms: int = 100,
        window_width: Optional[int] = None,
        window_height: Optional[int] = None,
    ) -> Any:
        payload = {
            "url": url,
            "name": dasherize(name),
            "selector": selector,
            "fullPage": full_page,
            "delayMs": delay_ms,
            "windowWidth": window_width,
            "windowHeight": window_height,
        }
        endpoint = f"{self.base_url}{SCREENSHOT_ROUTE}"

        if self._http_client is not None:
            response = await self._http_client.post(endpoint, json=payload)
        else:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(endpoint, json=payload)

        data = _parse_body(response.text)
        if not response.is_success:
            message = json.dumps(data, indent=2) if isinstance(data, dict) else data
            logger.warning("Couldn't post data, data is: %s", message)
            raise CaptureRequestError(response.status_code, data)
        return data


def _parse_body(text: str) -> Any:
    try:
        return json.loads(text)
    except ValueError as e:
        logger.warning("Capture response is not JSON: %s", e)
        return text
