"""Playwright-backed page driver for the pagination walk."""
from __future__ import annotations

import asyncio
import contextlib
from typing import AsyncIterator, Optional

import structlog
from playwright.async_api import Browser, Page, Playwright, async_playwright
from playwright.async_api import Error as PlaywrightError

from discovery.config import SnapshotSettings
from discovery.errors import FetchError
from discovery.fetch.snapshot import Affordance

LOGGER = structlog.get_logger(__name__)


class PlaywrightDriver:
    """Implements the walk's driver operations on a live Playwright page."""

    def __init__(self, page: Page) -> None:
        self._page = page

    async def capture(self, content_selector: str) -> str:
        locator = self._page.locator(content_selector).first
        if await locator.count() == 0:
            return await self._page.content()
        return await locator.inner_html()

    async def find_next(self, selector: str) -> Optional[Affordance]:
        candidates = self._page.locator(selector)
        total = await candidates.count()
        for index in range(total):
            candidate = candidates.nth(index)
            if not await candidate.is_visible():
                continue
            disabled = await candidate.is_disabled() or (await candidate.get_attribute("aria-disabled")) == "true"
            label = (await candidate.inner_text()).strip()
            return Affordance(handle=candidate, disabled=disabled, label=label[:80])
        return None

    async def activate(self, affordance: Affordance) -> None:
        await affordance.handle.scroll_into_view_if_needed()
        await affordance.handle.click()

    async def wait_for_change(self, content_selector: str, previous_html: str, timeout_ms: int) -> bool:
        deadline = asyncio.get_running_loop().time() + timeout_ms / 1000
        while asyncio.get_running_loop().time() < deadline:
            try:
                current = await self.capture(content_selector)
            except PlaywrightError:
                # Navigation replaced the document; a new page counts as changed.
                return True
            if current != previous_html:
                return True
            await asyncio.sleep(0.25)
        return False

    async def settle(self, delay_ms: int) -> None:
        await asyncio.sleep(delay_ms / 1000)


class BrowserPool:
    """Owns one headless Chromium for the worker process and hands out fresh pages."""

    def __init__(self, *, user_agent: str, headless: bool = True) -> None:
        self._user_agent = user_agent
        self._headless = headless
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None

    async def start(self) -> Browser:
        if self._browser is None:
            self._playwright = await async_playwright().start()
            self._browser = await self._playwright.chromium.launch(headless=self._headless)
            LOGGER.info("browser_started", headless=self._headless)
        return self._browser

    async def close(self) -> None:
        if self._browser is not None:
            await self._browser.close()
            self._browser = None
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None

    @contextlib.asynccontextmanager
    async def driver(self, url: str, config: SnapshotSettings) -> AsyncIterator[PlaywrightDriver]:
        """Open ``url`` in a new browser context and yield a driver for it."""
        browser = await self.start()
        context = await browser.new_context(user_agent=self._user_agent)
        try:
            page = await context.new_page()
            try:
                await page.goto(url, wait_until="domcontentloaded", timeout=config.navigation_timeout_ms)
            except PlaywrightError as exc:
                raise FetchError(f"Could not load {url} in the browser", meta={"url": url, "reason": str(exc)}) from exc
            yield PlaywrightDriver(page)
        finally:
            await context.close()
