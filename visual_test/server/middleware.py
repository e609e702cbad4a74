"""Capture middleware: one request in, one comparison result out."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional

from visual_test.artifacts.store import ArtifactStore
from visual_test.browser.session import BrowserSession
from visual_test.capture.engine import CaptureEngine
from visual_test.comparator.pixel_diff import compare_asset
from visual_test.errors import ComparisonIOError
from visual_test.models.capture import CaptureRequest, ComparisonResult, ComparisonStatus
from visual_test.models.config import VisualTestConfig

logger = logging.getLogger(__name__)


class CaptureMiddleware:
    """Composes session, engine, store and comparator for the HTTP handler.

    Every expected failure (browser launch, readiness timeout, unreadable
    images, visual mismatch) ends up as an ``ERROR`` result, never as an
    exception escaping ``handle``.
    """

    def __init__(
        self,
        config: VisualTestConfig,
        session: Optional[BrowserSession] = None,
        store: Optional[ArtifactStore] = None,
    ):
        self.config = config
        self.session = session or BrowserSession(config)
        self.store = store or ArtifactStore(config)
        self.engine = CaptureEngine(config, self.session, self.store)

    async def handle(self, request: CaptureRequest) -> ComparisonResult:
        # InvalidCaptureName propagates: the request itself is malformed
        asset = self.store.asset(request.name)
        logger.info("Capturing %s from %s", asset.file_name, request.url)

        async with self.store.lock(asset.file_name):
            outcome = await self.engine.make_screenshots(request, asset)
            if outcome.failed:
                return ComparisonResult(
                    status=ComparisonStatus.ERROR,
                    new_baseline=outcome.new_baseline,
                    chrome_error=outcome.chrome_error or None,
                    error=outcome.error or "Browser could not capture the page",
                )

            try:
                comparison = await asyncio.to_thread(compare_asset, asset, self.config, self.store)
            except ComparisonIOError as e:
                logger.error("%s", e)
                return ComparisonResult(
                    status=ComparisonStatus.ERROR,
                    new_baseline=outcome.new_baseline,
                    error=str(e),
                )

        if comparison.passed:
            logger.info("%s has not changed (%d pixels differ)", asset.file_name, comparison.diff_pixel_count)
            return ComparisonResult(
                status=ComparisonStatus.SUCCESS,
                new_baseline=outcome.new_baseline,
                diff_pixel_count=comparison.diff_pixel_count,
            )

        diff_path = str(comparison.diff_path) if comparison.diff_path else None
        if diff_path:
            error = f"{comparison.diff_pixel_count} pixels differ - diff: {diff_path}, img: {asset.temp}"
        else:
            error = f"{comparison.diff_pixel_count} pixels differ - img: {asset.temp}"
        if comparison.dimension_mismatch:
            error += " (image dimensions differ from the baseline)"
        logger.warning("%s has changed: %s", asset.file_name, error)
        return ComparisonResult(
            status=ComparisonStatus.ERROR,
            new_baseline=outcome.new_baseline,
            diff_pixel_count=comparison.diff_pixel_count,
            diff_path=diff_path,
            full_diff_path=str(Path(diff_path).resolve()) if diff_path else None,
            error=error,
        )

    async def close(self) -> None:
        await self.session.close()
