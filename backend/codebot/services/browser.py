"""
Headless browser collaborator used by the secondary page resolver.

The resolver only talks to the BrowsingSession protocol below. The concrete
implementation drives headless Chromium through Playwright; tests substitute an
in-memory fake.

Every session is opened with ``async with fetcher.open() as browser`` and the
browser process is torn down when the block exits, whatever the outcome.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncContextManager, AsyncIterator, Optional, Protocol

from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from playwright.async_api import async_playwright

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

BROWSER_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-blink-features=AutomationControlled",
]


class BrowsingSession(Protocol):
    """A single page plus the browser context (cookies) it lives in."""

    async def goto(self, url: str) -> None: ...

    async def text(self) -> str: ...

    async def title(self) -> str: ...

    async def query_single(self, selector: str) -> Optional[str]: ...

    async def has_element(self, selector: str) -> bool: ...

    async def fill(self, selector: str, value: str) -> None: ...

    async def submit(self, selector: str) -> None: ...

    async def export_state(self) -> dict: ...

    async def apply_state(self, state: dict) -> None: ...


class PageFetcher(Protocol):
    def open(self) -> AsyncContextManager[BrowsingSession]: ...


class PlaywrightSession:
    """BrowsingSession backed by a Playwright page and its browser context."""

    def __init__(self, context, page, timeout_ms: int, selector_timeout_ms: int):
        self._context = context
        self._page = page
        self._timeout_ms = timeout_ms
        self._selector_timeout_ms = selector_timeout_ms

    async def goto(self, url: str) -> None:
        await self._page.goto(url, wait_until="networkidle", timeout=self._timeout_ms)

    async def text(self) -> str:
        return await self._page.inner_text("body")

    async def title(self) -> str:
        return await self._page.title()

    async def query_single(self, selector: str) -> Optional[str]:
        """
        Wait briefly for selector and return its text content.

        Returns None when the element never appears.
        """
        try:
            element = await self._page.wait_for_selector(
                selector, state="attached", timeout=self._selector_timeout_ms
            )
        except PlaywrightTimeoutError:
            return None
        if element is None:
            return None
        return await element.text_content()

    async def has_element(self, selector: str) -> bool:
        return await self._page.query_selector(selector) is not None

    async def fill(self, selector: str, value: str) -> None:
        await self._page.fill(selector, value)

    async def submit(self, selector: str) -> None:
        """Click selector and wait for the resulting navigation to settle."""
        async with self._page.expect_navigation(
            wait_until="networkidle", timeout=self._timeout_ms
        ):
            await self._page.click(selector)

    async def export_state(self) -> dict:
        return await self._context.storage_state()

    async def apply_state(self, state: dict) -> None:
        cookies = state.get("cookies") or []
        if cookies:
            await self._context.add_cookies(cookies)


class PlaywrightPageFetcher:
    """Launches a fresh headless Chromium per session."""

    def __init__(
        self,
        headless: bool = True,
        timeout_seconds: float = 30.0,
        selector_timeout_seconds: float = 10.0,
        user_agent: str = DEFAULT_USER_AGENT,
    ):
        self.headless = headless
        self.timeout_ms = int(timeout_seconds * 1000)
        self.selector_timeout_ms = int(selector_timeout_seconds * 1000)
        self.user_agent = user_agent

    @asynccontextmanager
    async def open(self) -> AsyncIterator[PlaywrightSession]:
        async with async_playwright() as pw:
            browser = await pw.chromium.launch(headless=self.headless, args=BROWSER_ARGS)
            try:
                context = await browser.new_context(user_agent=self.user_agent)
                page = await context.new_page()
                page.set_default_timeout(self.timeout_ms)
                yield PlaywrightSession(
                    context, page, self.timeout_ms, self.selector_timeout_ms
                )
            finally:
                await browser.close()
                logger.debug("Browser closed")
