# -*- coding: utf-8 -*-
"""
Headless browser session shared by the merchant scrapers.

One Chromium instance per session, fixed viewport and user agent, one
context. Navigation retries with linear backoff and raises
NavigationError once every attempt has failed.
"""
from __future__ import annotations
import asyncio
from typing import Optional

from playwright.async_api import (
    async_playwright, Browser, BrowserContext,
    Page, Playwright,
    Error as PlaywrightError,
    TimeoutError as PWTimeout,
)

from dealhub.config import settings
from dealhub.errors import NavigationError, PageGone
from dealhub.utils.logger import get_logger

logger = get_logger(__name__)

_LAUNCH_ARGS = [
    "--disable-blink-features=AutomationControlled",
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-accelerated-2d-canvas",
    "--disable-gpu",
    "--no-first-run",
    "--disable-notifications",
]

_STEALTH_JS = """
Object.defineProperty(navigator, 'webdriver', {get: () => undefined});
Object.defineProperty(navigator, 'languages', {get: () => ['en-IN','en-US','en']});
window.chrome = {runtime: {}, loadTimes: function() {}, csi: function() {}};
"""

_BLOCKED_RESOURCES = ("font", "media")

# Statuses that mean the listing is gone for good
GONE_STATUSES = (404, 410)


class BrowserSession:

    def __init__(
        self,
        headless:        Optional[bool]  = None,
        user_agent:      Optional[str]   = None,
        timeout_ms:      Optional[int]   = None,
        max_retries:     Optional[int]   = None,
        backoff_seconds: Optional[float] = None,
    ):
        self.headless        = settings.playwright_headless if headless is None else headless
        self.user_agent      = user_agent or settings.browser_user_agent
        self.timeout_ms      = timeout_ms or settings.navigation_timeout_ms
        self.max_retries     = max_retries or settings.navigation_max_retries
        self.backoff_seconds = (
            settings.navigation_backoff_seconds if backoff_seconds is None else backoff_seconds
        )
        self.viewport = {
            "width":  settings.browser_viewport_width,
            "height": settings.browser_viewport_height,
        }
        self._playwright: Optional[Playwright]     = None
        self._browser:    Optional[Browser]        = None
        self._context:    Optional[BrowserContext] = None

    async def __aenter__(self) -> "BrowserSession":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    @property
    def is_open(self) -> bool:
        return self._browser is not None

    async def open(self):
        if self._browser:
            return
        self._playwright = await async_playwright().start()
        self._browser    = await self._playwright.chromium.launch(
            headless=self.headless,
            args=_LAUNCH_ARGS + [
                f"--window-size={self.viewport['width']},{self.viewport['height']}",
            ],
        )
        self._context = await self._browser.new_context(
            viewport=self.viewport,
            user_agent=self.user_agent,
            locale="en-IN",
            timezone_id="Asia/Kolkata",
            extra_http_headers={
                "Accept-Language": "en-IN,en-US;q=0.9,en;q=0.8",
            },
        )
        await self._context.add_init_script(_STEALTH_JS)
        await self._context.route(
            "**/*",
            lambda route: route.abort()
            if route.request.resource_type in _BLOCKED_RESOURCES
            else route.continue_(),
        )
        logger.info("Browser session opened (headless=%s)", self.headless)

    async def close(self):
        """Release the browser. Safe to call more than once."""
        if self._context:
            try:
                await self._context.close()
            except PlaywrightError as e:
                logger.debug("Context close error: %s", e)
            self._context = None
        if self._browser:
            try:
                await self._browser.close()
            except PlaywrightError as e:
                logger.debug("Browser close error: %s", e)
            self._browser = None
        if self._playwright:
            await self._playwright.stop()
            self._playwright = None
            logger.info("Browser session closed")

    async def new_page(self) -> Page:
        if not self._browser:
            await self.open()
        page = await self._context.new_page()
        page.set_default_navigation_timeout(self.timeout_ms)
        page.set_default_timeout(self.timeout_ms)
        return page

    async def navigate(
        self,
        page: Page,
        url: str,
        retries: Optional[int] = None,
        wait_until: str = "domcontentloaded",
    ) -> None:
        """Load *url*, retrying up to *retries* attempts in total.

        Waits backoff * attempt seconds between attempts. A 404 or 410 answer
        raises PageGone at once.
        """
        retries = retries or self.max_retries
        last_error: Optional[BaseException] = None
        for i in range(retries):
            try:
                response = await page.goto(url, wait_until=wait_until, timeout=self.timeout_ms)
            except (PWTimeout, PlaywrightError) as e:
                last_error = e
                if i == retries - 1:
                    break
                logger.warning(
                    "Retry %d/%d for %s: %s", i + 1, retries, url, str(e)[:120],
                )
                await asyncio.sleep(self.backoff_seconds * (i + 1))
            else:
                if response is not None and response.status in GONE_STATUSES:
                    raise PageGone(url, response.status)
                return
        raise NavigationError(url, retries, last_error) from last_error

    async def fetch_html(
        self,
        url: str,
        ready_selector: Optional[str] = None,
        scroll: bool = False,
    ) -> str:
        """Navigate a fresh page to *url* and return its rendered HTML."""
        page = await self.new_page()
        try:
            await self.navigate(page, url)
            if ready_selector:
                try:
                    await page.wait_for_selector(ready_selector, timeout=10000)
                except PWTimeout:
                    logger.info("No ready element on %s", url)
            if scroll:
                await self._scroll(page)
            return await page.content()
        finally:
            try:
                await page.close()
            except PlaywrightError as e:
                logger.debug("Page close error: %s", e)

    async def _scroll(self, page: Page):
        # Lazy-loaded cards only render once scrolled into view
        for pct in (0.3, 0.6, 1.0):
            await page.evaluate(
                f"window.scrollTo(0, document.body.scrollHeight * {pct})"
            )
            await asyncio.sleep(0.5)
