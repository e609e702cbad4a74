"""Pytest configuration and shared fixtures."""

import asyncio
import io
from pathlib import Path
from typing import Optional
from unittest.mock import AsyncMock, Mock

import pytest
from PIL import Image, ImageDraw

from visual_test.artifacts.store import ArtifactStore
from visual_test.browser.session import BrowserSession
from visual_test.models.capture import CaptureRequest
from visual_test.models.config import VisualTestConfig


# ============================================================================
# Image helpers
# ============================================================================


def make_image(
    size: tuple[int, int] = (100, 100),
    color: str = "white",
    square: Optional[tuple[int, int, int]] = None,
) -> Image.Image:
    """Solid image, optionally with a black ``(x, y, side)`` square."""
    img = Image.new("RGBA", size, color)
    if square:
        x, y, side = square
        ImageDraw.Draw(img).rectangle([x, y, x + side - 1, y + side - 1], fill="black")
    return img


def png_bytes(image: Image.Image) -> bytes:
    buf = io.BytesIO()
    image.save(buf, format="PNG")
    return buf.getvalue()


def write_png(path: Path, image: Image.Image) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    image.save(path, format="PNG")
    return path


# ============================================================================
# Configuration Fixtures
# ============================================================================


@pytest.fixture
def output_dir(tmp_path: Path) -> Path:
    return tmp_path / "visual-test-output"


@pytest.fixture
def visual_config(output_dir: Path) -> VisualTestConfig:
    """Config writing into a temp dir, without OS grouping."""
    return VisualTestConfig(
        image_directory=str(output_dir / "baseline"),
        image_diff_directory=str(output_dir / "diff"),
        image_tmp_directory=str(output_dir / "tmp"),
        group_by_os=False,
        os_tag="linux",
        readiness_timeout_ms=1000,
    )


@pytest.fixture
def store(visual_config: VisualTestConfig) -> ArtifactStore:
    return ArtifactStore(visual_config)


@pytest.fixture
def capture_request() -> CaptureRequest:
    return CaptureRequest(
        url="http://localhost:4200/tests?capture=true&fileName=login",
        name="login",
        delay_ms=0,
    )


# ============================================================================
# Playwright Fixtures
# ============================================================================


def make_page(screenshot: bytes = b"") -> AsyncMock:
    """A Playwright page whose screenshots return ``screenshot``."""
    page = AsyncMock()
    page.on = Mock()
    page.url = "about:blank"
    page.screenshot = AsyncMock(return_value=screenshot)
    locator = Mock()
    locator.first.screenshot = AsyncMock(return_value=screenshot)
    page.locator = Mock(return_value=locator)
    return page


def make_playwright_factory(browser: Mock, launch_delay: float = 0.0) -> Mock:
    """Stand-in for ``async_playwright`` that launches ``browser``."""

    async def _launch(**kwargs):
        if launch_delay:
            await asyncio.sleep(launch_delay)
        return browser

    playwright = Mock()
    playwright.chromium.launch = AsyncMock(side_effect=_launch)
    playwright.stop = AsyncMock()
    starter = Mock()
    starter.start = AsyncMock(return_value=playwright)
    return Mock(return_value=starter)


@pytest.fixture
def mock_page() -> AsyncMock:
    return make_page(png_bytes(make_image()))


@pytest.fixture
def mock_browser(mock_page: AsyncMock) -> Mock:
    browser = Mock()
    browser.version = "122.0.0.0"
    browser.new_page = AsyncMock(return_value=mock_page)
    browser.close = AsyncMock()
    return browser


@pytest.fixture
def playwright_factory(mock_browser: Mock) -> Mock:
    return make_playwright_factory(mock_browser)


@pytest.fixture
def session(visual_config: VisualTestConfig, playwright_factory: Mock) -> BrowserSession:
    return BrowserSession(visual_config, playwright_factory=playwright_factory)
