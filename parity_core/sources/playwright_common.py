"""Reusable Playwright helpers shared by the listing and reference scrapers."""
from __future__ import annotations

from contextlib import asynccontextmanager
import logging
from typing import AsyncContextManager, AsyncIterator, Callable, Optional, Sequence

from playwright.async_api import Browser, Error as PlaywrightError, Page, async_playwright

from ..retry import async_retrying

LOGGER = logging.getLogger(__name__)

PageFactory = Callable[[], AsyncContextManager[Page]]

SCROLL_TO_BOTTOM_SCRIPT = "() => window.scrollTo(0, document.body.scrollHeight)"

USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/120.0.0.0 Safari/537.36"
)

CONSENT_BUTTONS = (
    "button:has-text('Accept all')",
    "button:has-text('Reject all')",
    "button:has-text('I agree')",
    "button:has-text('Accept')",
)


class NavigationError(RuntimeError):
    """Raised when a page could not be opened after all attempts."""


class BrowserSession:
    """Handle around one launched browser.

    Every page is opened in its own context and closed again when the
    ``open_page`` block exits, whatever way it exits.
    """

    def __init__(self, browser: Browser, locale: str = "en-US") -> None:
        self.browser = browser
        self.locale = locale

    @asynccontextmanager
    async def open_page(self) -> AsyncIterator[Page]:
        context = await self.browser.new_context(
            locale=self.locale,
            viewport={"width": 1920, "height": 1080},
            user_agent=USER_AGENT,
        )
        try:
            page = await context.new_page()
            yield page
        finally:
            await context.close()


@asynccontextmanager
async def launch_browser(headless: bool = True) -> AsyncIterator[BrowserSession]:
    """Launch Chromium for the duration of the block."""

    async with async_playwright() as playwright:  # pragma: no cover - needs a real browser
        browser = await playwright.chromium.launch(headless=headless, args=["--no-sandbox"])
        try:
            yield BrowserSession(browser)
        finally:
            await browser.close()


async def navigate(
    page: Page,
    url: str,
    *,
    wait_until: str = "domcontentloaded",
    timeout_ms: int = 120_000,
    attempts: int = 2,
    base_delay: float = 2.0,
) -> None:
    """Open ``url`` with bounded retries, raising :class:`NavigationError` on failure."""

    controller = async_retrying(
        max_attempts=attempts,
        base_delay=base_delay,
        retry_on=(PlaywrightError,),
        logger=LOGGER,
    )
    try:
        await controller(page.goto, url, wait_until=wait_until, timeout=timeout_ms)
    except PlaywrightError as exc:
        raise NavigationError(f"Could not open {url}: {exc}") from exc


async def click_first_available(page: Page, selectors: Sequence[str], timeout_ms: int = 2000) -> Optional[str]:
    """Click the first selector that resolves to an element, returning it."""

    for selector in selectors:
        locator = page.locator(selector)
        try:
            if not await locator.count():
                continue
            await locator.first.click(timeout=timeout_ms)
        except PlaywrightError:
            continue
        return selector
    return None


async def dismiss_common_banners(page: Page, selectors: Sequence[str] = CONSENT_BUTTONS) -> None:
    """Attempt to dismiss cookie/consent banners that block results."""

    dismissed = await click_first_available(page, selectors, timeout_ms=1500)
    if dismissed:
        LOGGER.debug("Dismissed consent banner via %s", dismissed)


async def scroll_to_bottom(page: Page, passes: int = 2, settle_ms: int = 600) -> None:
    """Scroll to the end of the document repeatedly to trigger lazy rendering."""

    for _ in range(passes):
        await page.evaluate(SCROLL_TO_BOTTOM_SCRIPT)
        await page.wait_for_timeout(settle_ms)
