"""Capture engine: navigate, wait for the readiness sentinel, settle, screenshot."""

from __future__ import annotations

import asyncio
import logging

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from visual_test.artifacts.store import ArtifactStore
from visual_test.browser.session import BrowserSession
from visual_test.errors import BrowserLaunchError, ReadinessTimeoutError
from visual_test.models.capture import CaptureOutcome, CaptureRequest, ImageAsset
from visual_test.models.config import VisualTestConfig

logger = logging.getLogger(__name__)

# Inserted into the DOM by the page under test once it has rendered
READY_SENTINEL_SELECTOR = "#visual-test-has-loaded"


class CaptureEngine:
    """Drives one page through a capture and persists baseline/temp images."""

    def __init__(self, config: VisualTestConfig, session: BrowserSession, store: ArtifactStore):
        self.config = config
        self.session = session
        self.store = store

    async def make_screenshots(self, request: CaptureRequest, asset: ImageAsset) -> CaptureOutcome:
        viewport = request.viewport_for(self.config)
        try:
            page = await self.session.open_page(viewport)
        except BrowserLaunchError as e:
            return CaptureOutcome(chrome_error=True, error=str(e))

        try:
            if not await self._navigate(page, request.url):
                logger.warning("Continuing capture of %s after navigation error", asset.file_name)
            await self._wait_until_ready(page, request.url)

            delay_ms = request.resolved_delay_ms(self.config)
            if delay_ms:
                await asyncio.sleep(delay_ms / 1000)

            image = await self._screenshot(page, request)
            new_baseline = await asyncio.to_thread(self._persist, asset, image)
            return CaptureOutcome(new_baseline=new_baseline)
        except ReadinessTimeoutError as e:
            logger.error("%s", e)
            return CaptureOutcome(chrome_error=True, error=str(e))
        except PlaywrightError as e:
            logger.error("Error capturing %s: %s", asset.file_name, e)
            return CaptureOutcome(chrome_error=True, error=f"Screenshot failed: {e}")
        finally:
            await self._close(page)

    async def _navigate(self, page: Page, url: str) -> bool:
        """Load ``url``. Returns False on error; the caller goes on regardless,
        since the screenshot will show whatever did render."""
        try:
            await page.goto(url)
            return True
        except PlaywrightError as e:
            logger.error("Error opening page %s: %s", url, e)
            return False

    async def _wait_until_ready(self, page: Page, url: str) -> None:
        timeout_ms = self.config.readiness_timeout_ms
        try:
            await page.wait_for_selector(READY_SENTINEL_SELECTOR, state="attached", timeout=timeout_ms)
        except PlaywrightTimeoutError as e:
            raise ReadinessTimeoutError(url, timeout_ms) from e

    async def _screenshot(self, page: Page, request: CaptureRequest) -> bytes:
        if request.selector:
            return await page.locator(request.selector).first.screenshot()
        return await page.screenshot(full_page=request.resolved_full_page(self.config))

    def _persist(self, asset: ImageAsset, image: bytes) -> bool:
        """Write the temp image, and the baseline too when one is needed.
        Returns whether a new baseline was written."""
        new_baseline = self.store.needs_baseline(asset)
        if new_baseline:
            self._image_log("Making base screenshot %s", asset.file_name)
            self.store.write_bytes(asset.baseline, image)
        self._image_log("Making comparison screenshot %s", asset.file_name)
        self.store.write_bytes(asset.temp, image)
        return new_baseline

    async def _close(self, page: Page) -> None:
        try:
            await page.close()
        except Exception as e:
            logger.error("Error closing a page: %s", e)

    def _image_log(self, msg: str, *args) -> None:
        level = logging.INFO if self.config.image_logging else logging.DEBUG
        logger.log(level, msg, *args)
