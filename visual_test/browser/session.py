"""Browser session: one lazily launched Chromium shared by all captures."""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any, Callable, Optional

from playwright.async_api import Browser, ConsoleMessage, Page, Playwright, async_playwright

from visual_test.errors import BrowserLaunchError
from visual_test.models.config import ViewportConfig, VisualTestConfig

logger = logging.getLogger(__name__)

_ALWAYS_FLAGS = ("--enable-logging", "--start-maximized")


class SessionState(str, Enum):
    UNINITIALIZED = "uninitialized"
    LAUNCHING = "launching"
    READY = "ready"


def build_launch_args(config: VisualTestConfig, viewport: ViewportConfig) -> list[str]:
    """Chromium command line flags for the configured session."""
    args = list(config.chrome_flags)
    for flag in _ALWAYS_FLAGS:
        if flag not in args:
            args.append(flag)
    args.append(f"--window-size={viewport.width},{viewport.height}")
    if config.no_sandbox:
        args.extend(["--no-sandbox", "--disable-setuid-sandbox"])
    if config.chrome_port:
        args.append(f"--remote-debugging-port={config.chrome_port}")
    return args


class BrowserSession:
    """Owns the shared browser handle.

    The first caller launches Chromium; callers arriving while the launch is
    in flight wait on the same lock and reuse the result, so there is only
    ever one browser process. A failed launch leaves the session
    uninitialized so a later request can try again.
    """

    def __init__(
        self,
        config: VisualTestConfig,
        playwright_factory: Callable[[], Any] = async_playwright,
    ):
        self.config = config
        self._playwright_factory = playwright_factory
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._launch_lock = asyncio.Lock()
        self.state = SessionState.UNINITIALIZED
        self.launch_count = 0

    async def get_browser(self, viewport: Optional[ViewportConfig] = None) -> Browser:
        if self._browser is not None:
            return self._browser

        async with self._launch_lock:
            if self._browser is not None:
                return self._browser

            viewport = viewport or self.config.viewport
            self.state = SessionState.LAUNCHING
            logger.debug("Starting Chromium (%dx%d)...", viewport.width, viewport.height)
            try:
                if self._playwright is None:
                    self._playwright = await self._playwright_factory().start()
                self.launch_count += 1
                self._browser = await self._playwright.chromium.launch(
                    headless=True,
                    args=build_launch_args(self.config, viewport),
                )
            except Exception as e:
                self.state = SessionState.UNINITIALIZED
                logger.error("Error when launching browser: %s", e)
                raise BrowserLaunchError(str(e)) from e

            self.state = SessionState.READY
            logger.debug("Chromium ready (version %s)", self._browser.version)
            return self._browser

    async def open_page(self, viewport: Optional[ViewportConfig] = None) -> Page:
        """Open a page in its own browser context."""
        viewport = viewport or self.config.viewport
        browser = await self.get_browser(viewport)
        try:
            page = await browser.new_page(viewport=viewport.as_dict())
        except Exception as e:
            raise BrowserLaunchError(f"Could not open a page: {e}") from e
        page.on("console", self._log_console)
        return page

    def _log_console(self, msg: ConsoleMessage) -> None:
        level = logging.INFO if self.config.debug_logging else logging.DEBUG
        logger.log(level, "Browser log: [%s] %s", msg.type, msg.text)

    async def close(self) -> None:
        """Close the browser and stop Playwright."""
        async with self._launch_lock:
            browser, self._browser = self._browser, None
            playwright, self._playwright = self._playwright, None
            self.state = SessionState.UNINITIALIZED
            if browser is not None:
                try:
                    await browser.close()
                except Exception as e:
                    logger.warning("Error closing browser: %s", e)
            if playwright is not None:
                await playwright.stop()
