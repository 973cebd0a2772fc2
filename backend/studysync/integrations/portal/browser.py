"""
Browser automation capability used by the session manager and the scraper.

The portal only renders its agenda and grades with JavaScript, so pages are
driven through a real headless Chromium. Extraction never runs inside the
page: callers take ``content()`` and hand the HTML to the extraction
strategies.
"""

import logging
from typing import Optional, Protocol

from playwright.async_api import (
    async_playwright,
    Browser,
    BrowserContext,
    Page,
    Playwright,
    Error as PlaywrightError,
    TimeoutError as PlaywrightTimeoutError,
)

from studysync.core.config import settings
from .error_handler import NavigationFailure

logger = logging.getLogger(__name__)


USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
VIEWPORT = {"width": 1280, "height": 800}
LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
]


class BrowserAutomation(Protocol):
    """Minimal page-driving capability; timeouts are in seconds."""

    async def goto(self, url: str, timeout: Optional[float] = None) -> None: ...

    async def type(self, selector: str, text: str) -> None: ...

    async def click(self, selector: str) -> None: ...

    async def wait_for(self, selector: str, timeout: Optional[float] = None) -> bool: ...

    async def wait_for_navigation(self, timeout: Optional[float] = None) -> None: ...

    async def content(self) -> str: ...

    async def current_url(self) -> str: ...

    async def close(self) -> None: ...


def _ms(seconds: Optional[float], default: float) -> float:
    return (seconds if seconds is not None else default) * 1000


class PlaywrightBrowser:
    """
    ``BrowserAutomation`` backed by Playwright Chromium.

    Use ``await PlaywrightBrowser.launch()`` or ``async with PlaywrightBrowser()``.
    Playwright timeouts surface as ``NavigationFailure`` so callers can degrade
    a single page type instead of failing the run.
    """

    def __init__(self, headless: Optional[bool] = None):
        self.headless = settings.BROWSER_HEADLESS if headless is None else headless
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None
        self._page: Optional[Page] = None

    @classmethod
    async def launch(cls, headless: Optional[bool] = None) -> 'PlaywrightBrowser':
        browser = cls(headless=headless)
        await browser.start()
        return browser

    async def start(self) -> None:
        if self._page is not None:
            return
        self._playwright = await async_playwright().start()
        self._browser = await self._playwright.chromium.launch(
            headless=self.headless,
            args=LAUNCH_ARGS,
        )
        self._context = await self._browser.new_context(
            viewport=VIEWPORT,
            user_agent=USER_AGENT,
            locale="it-IT",
        )
        self._page = await self._context.new_page()
        logger.info("Started headless Chromium for portal automation")

    async def __aenter__(self) -> 'PlaywrightBrowser':
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    @property
    def page(self) -> Page:
        if self._page is None:
            raise RuntimeError("Browser not started")
        return self._page

    async def goto(self, url: str, timeout: Optional[float] = None) -> None:
        try:
            await self.page.goto(
                url,
                wait_until="networkidle",
                timeout=_ms(timeout, settings.NAVIGATION_TIMEOUT_SECONDS),
            )
        except PlaywrightTimeoutError as e:
            raise NavigationFailure(f"Timed out loading {url}", url=url, original_exception=e)
        except PlaywrightError as e:
            raise NavigationFailure(f"Could not load {url}: {e}", url=url, original_exception=e)

    async def type(self, selector: str, text: str) -> None:
        await self.page.fill(selector, text)

    async def click(self, selector: str) -> None:
        await self.page.click(selector)

    async def wait_for(self, selector: str, timeout: Optional[float] = None) -> bool:
        try:
            await self.page.wait_for_selector(
                selector, timeout=_ms(timeout, settings.SELECTOR_TIMEOUT_SECONDS)
            )
            return True
        except PlaywrightTimeoutError:
            return False

    async def wait_for_navigation(self, timeout: Optional[float] = None) -> None:
        try:
            await self.page.wait_for_load_state(
                "networkidle", timeout=_ms(timeout, settings.NAVIGATION_TIMEOUT_SECONDS)
            )
        except PlaywrightTimeoutError as e:
            raise NavigationFailure("Timed out waiting for navigation", url=self.page.url, original_exception=e)

    async def content(self) -> str:
        return await self.page.content()

    async def current_url(self) -> str:
        return self.page.url

    async def close(self) -> None:
        try:
            if self._browser is not None:
                await self._browser.close()
        finally:
            if self._playwright is not None:
                await self._playwright.stop()
            self._playwright = None
            self._browser = None
            self._context = None
            self._page = None
