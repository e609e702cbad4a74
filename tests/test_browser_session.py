"""Tests for the shared browser session."""

import asyncio
from unittest.mock import AsyncMock, Mock

import pytest

from visual_test.browser.session import BrowserSession, SessionState, build_launch_args
from visual_test.errors import BrowserLaunchError
from visual_test.models.config import ViewportConfig, VisualTestConfig

from conftest import make_playwright_factory


class TestBuildLaunchArgs:

    def test_default_flags(self):
        args = build_launch_args(VisualTestConfig(), ViewportConfig(width=800, height=600))
        assert args == ["--enable-logging", "--start-maximized", "--window-size=800,600"]

    def test_flags_not_duplicated(self):
        config = VisualTestConfig(chrome_flags=["--start-maximized", "--mute-audio"])
        args = build_launch_args(config, config.viewport)
        assert args.count("--start-maximized") == 1
        assert args[0] == "--start-maximized"
        assert "--mute-audio" in args

    def test_no_sandbox(self):
        args = build_launch_args(VisualTestConfig(no_sandbox=True), ViewportConfig())
        assert "--no-sandbox" in args

    def test_ci_environment_disables_sandbox(self):
        config = VisualTestConfig.resolve(environ={"CI": "1"})
        assert "--no-sandbox" in build_launch_args(config, config.viewport)

    def test_debugging_port(self):
        args = build_launch_args(VisualTestConfig(chrome_port=9222), ViewportConfig())
        assert "--remote-debugging-port=9222" in args


class TestGetBrowser:

    @pytest.mark.asyncio
    async def test_starts_uninitialized(self, session: BrowserSession):
        assert session.state == SessionState.UNINITIALIZED
        assert session.launch_count == 0

    @pytest.mark.asyncio
    async def test_launch_and_reuse(self, session: BrowserSession, mock_browser: Mock):
        first = await session.get_browser()
        second = await session.get_browser()
        assert first is mock_browser
        assert second is mock_browser
        assert session.state == SessionState.READY
        assert session.launch_count == 1

    @pytest.mark.asyncio
    async def test_launch_options(self, session: BrowserSession, playwright_factory: Mock):
        await session.get_browser(ViewportConfig(width=640, height=480))
        playwright = await playwright_factory.return_value.start()
        kwargs = playwright.chromium.launch.call_args.kwargs
        assert kwargs["headless"] is True
        assert "--window-size=640,480" in kwargs["args"]

    @pytest.mark.asyncio
    async def test_concurrent_first_use_launches_once(self, visual_config: VisualTestConfig, mock_browser: Mock):
        factory = make_playwright_factory(mock_browser, launch_delay=0.05)
        session = BrowserSession(visual_config, playwright_factory=factory)

        browsers = await asyncio.gather(*(session.get_browser() for _ in range(8)))

        assert all(b is mock_browser for b in browsers)
        assert session.launch_count == 1
        playwright = await factory.return_value.start()
        assert playwright.chromium.launch.await_count == 1

    @pytest.mark.asyncio
    async def test_concurrent_pages_share_browser(self, visual_config: VisualTestConfig):
        browser = Mock()
        browser.new_page = AsyncMock(side_effect=lambda **kw: AsyncMock(on=Mock()))
        factory = make_playwright_factory(browser, launch_delay=0.05)
        session = BrowserSession(visual_config, playwright_factory=factory)

        pages = await asyncio.gather(*(session.open_page() for _ in range(5)))

        assert session.launch_count == 1
        assert browser.new_page.await_count == 5
        assert len({id(p) for p in pages}) == 5

    @pytest.mark.asyncio
    async def test_launch_failure(self, visual_config: VisualTestConfig, mock_browser: Mock):
        factory = make_playwright_factory(mock_browser)
        playwright = await factory.return_value.start()
        playwright.chromium.launch = AsyncMock(side_effect=RuntimeError("no chrome"))
        session = BrowserSession(visual_config, playwright_factory=factory)

        with pytest.raises(BrowserLaunchError, match="no chrome"):
            await session.get_browser()
        assert session.state == SessionState.UNINITIALIZED

    @pytest.mark.asyncio
    async def test_retry_after_failure(self, visual_config: VisualTestConfig, mock_browser: Mock):
        factory = make_playwright_factory(mock_browser)
        playwright = await factory.return_value.start()
        playwright.chromium.launch = AsyncMock(side_effect=[RuntimeError("no chrome"), mock_browser])
        session = BrowserSession(visual_config, playwright_factory=factory)

        with pytest.raises(BrowserLaunchError):
            await session.get_browser()
        assert await session.get_browser() is mock_browser
        assert session.state == SessionState.READY


class TestOpenPage:

    @pytest.mark.asyncio
    async def test_viewport(self, session: BrowserSession, mock_browser: Mock, mock_page):
        page = await session.open_page(ViewportConfig(width=320, height=240))
        assert page is mock_page
        mock_browser.new_page.assert_awaited_once_with(viewport={"width": 320, "height": 240})

    @pytest.mark.asyncio
    async def test_default_viewport(self, session: BrowserSession, mock_browser: Mock):
        await session.open_page()
        mock_browser.new_page.assert_awaited_once_with(viewport={"width": 1024, "height": 768})

    @pytest.mark.asyncio
    async def test_console_listener(self, session: BrowserSession, mock_page):
        await session.open_page()
        event, callback = mock_page.on.call_args.args
        assert event == "console"
        callback(Mock(type="log", text="hello"))

    @pytest.mark.asyncio
    async def test_new_page_failure(self, session: BrowserSession, mock_browser: Mock):
        mock_browser.new_page = AsyncMock(side_effect=RuntimeError("target closed"))
        with pytest.raises(BrowserLaunchError):
            await session.open_page()
        assert session.state == SessionState.READY


class TestClose:

    @pytest.mark.asyncio
    async def test_close(self, session: BrowserSession, mock_browser: Mock, playwright_factory: Mock):
        await session.get_browser()
        await session.close()
        mock_browser.close.assert_awaited_once()
        playwright = await playwright_factory.return_value.start()
        playwright.stop.assert_awaited_once()
        assert session.state == SessionState.UNINITIALIZED

    @pytest.mark.asyncio
    async def test_close_unlaunched(self, session: BrowserSession, mock_browser: Mock):
        await session.close()
        mock_browser.close.assert_not_awaited()
