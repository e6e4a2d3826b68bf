"""
Browser Automation Module
Playwright wrapper owning the single headless browser session of a run.
"""

import asyncio
import logging
from typing import Optional, List, Dict, Any
from playwright.async_api import async_playwright, Browser, BrowserContext, Page, Error as PlaywrightError

from .api_utils import USER_AGENT
from .errors import LaunchFailure, NavigationFailure

logger = logging.getLogger(__name__)


class BrowserManager:
    """
    Manages the headless browser used to drive the quiz platform.
    One manager holds one browser process, one context and one page.
    """

    def __init__(self, headless: bool = True, timeout: int = 30000,
                 executable_path: str = '', close_grace: float = 0.5):
        """
        Initialize browser manager.

        Args:
            headless: Run browser in headless mode
            timeout: Default timeout in milliseconds
            executable_path: Local Chrome/Chromium binary; empty uses Playwright's build
            close_grace: Seconds between closing the session and killing the process
        """
        self.headless = headless
        self.timeout = timeout
        self.executable_path = executable_path
        self.close_grace = close_grace
        self.playwright = None
        self.browser: Optional[Browser] = None
        self.context: Optional[BrowserContext] = None
        self._page: Optional[Page] = None

    @property
    def page(self) -> Page:
        if self._page is None:
            raise NavigationFailure("Browser session is not running")
        return self._page

    async def start(self):
        """Start the browser process and open the session page."""
        try:
            self.playwright = await async_playwright().start()
            launch_args = {
                'headless': self.headless,
                'args': [
                    '--no-sandbox',
                    '--disable-setuid-sandbox',
                    '--disable-dev-shm-usage',
                    '--disable-gpu',
                    '--disable-blink-features=AutomationControlled',
                ],
            }
            if self.executable_path:
                launch_args['executable_path'] = self.executable_path
            self.browser = await self.playwright.chromium.launch(**launch_args)
            self.context = await self.browser.new_context(
                viewport={'width': 1920, 'height': 1080},
                user_agent=USER_AGENT,
            )
            self._page = await self.context.new_page()
            self._page.set_default_timeout(self.timeout)
            logger.info("Browser started successfully")
        except Exception as e:
            logger.error(f"Failed to start browser: {e}")
            await self.close()
            raise LaunchFailure(f"启动浏览器失败: {e}") from e

    async def close(self):
        """
        Tear the session down: close the context first, give it a moment, then
        close the browser process and stop Playwright. Safe to call repeatedly.
        """
        context, browser, playwright = self.context, self.browser, self.playwright
        self.context = self.browser = self.playwright = None
        self._page = None

        if context is None and browser is None and playwright is None:
            return

        if context is not None:
            try:
                await context.close()
            except PlaywrightError as e:
                logger.debug(f"Context close: {e}")
            await asyncio.sleep(self.close_grace)
        if browser is not None:
            try:
                await browser.close()
            except PlaywrightError as e:
                logger.debug(f"Browser close: {e}")
        if playwright is not None:
            try:
                await playwright.stop()
            except PlaywrightError as e:
                logger.debug(f"Playwright stop: {e}")
        logger.info("Browser closed")

    async def goto(self, url: str, wait_for: str = 'domcontentloaded'):
        """
        Load a page.

        Args:
            url: URL to load
            wait_for: Wait condition ('load', 'domcontentloaded', 'networkidle')
        """
        try:
            logger.debug(f"Loading page: {url}")
            await self.page.goto(url, wait_until=wait_for, timeout=self.timeout)
        except PlaywrightError as e:
            raise NavigationFailure(f"加载页面失败: {e}") from e

    async def get_html(self) -> str:
        """Get full HTML content."""
        return await self.page.content()

    async def wait_visible(self, selector: str, timeout: float) -> bool:
        """Wait up to `timeout` seconds for `selector` to become visible."""
        try:
            await self.page.wait_for_selector(selector, state='visible', timeout=timeout * 1000)
            return True
        except PlaywrightError as e:
            logger.debug(f"Waiting for {selector} failed: {e}")
            return False

    async def fill(self, selector: str, value: str):
        await self.page.fill(selector, value)

    async def click(self, selector: str):
        await self.page.click(selector)

    async def cookies(self) -> List[Dict[str, Any]]:
        if self.context is None:
            return []
        return await self.context.cookies()

    async def cookie_string(self) -> str:
        """Session cookies as a `name=value; ...` header string."""
        return '; '.join(f"{c['name']}={c['value']}" for c in await self.cookies())
