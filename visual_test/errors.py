"""Exceptions raised by the capture pipeline."""

from __future__ import annotations

from typing import Any


class VisualTestError(Exception):
    """Base class for visual test failures."""


class BrowserLaunchError(VisualTestError):
    """The browser process could not be started."""


class ReadinessTimeoutError(VisualTestError):
    """The page never inserted the readiness sentinel."""

    def __init__(self, url: str, timeout_ms: int):
        super().__init__(f"Page did not signal readiness within {timeout_ms}ms: {url}")
        self.url = url
        self.timeout_ms = timeout_ms


class ComparisonIOError(VisualTestError):
    """A baseline or temp image could not be read."""


class InvalidCaptureName(VisualTestError, ValueError):
    """A capture name that cannot be mapped to a file path."""


class CaptureRequestError(VisualTestError):
    """The capture endpoint answered with a non-2xx status."""

    def __init__(self, status_code: int, body: Any):
        super().__init__(f"Capture request failed with HTTP {status_code}")
        self.status_code = status_code
        self.body = body
