"""Tests for the reference price resolver and its fallback chain."""

from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import date
import unittest
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

import pytest
from playwright.async_api import Error as PlaywrightError, TimeoutError as PlaywrightTimeoutError

from parity_core.models import DateWindow
from parity_core.sources.playwright_common import SCROLL_TO_BOTTOM_SCRIPT, NavigationError
from parity_core.sources.reference_prices import (
    BODY_TEXT_SCRIPT,
    DATE_INPUTS_SCRIPT,
    GOOGLE_HOTELS,
    LABELLED_ANCHORS_SCRIPT,
    PROVIDER_BLOCKS_SCRIPT,
    TITLED_CARDS_SCRIPT,
    DateAlignment,
    ReferencePriceResolver,
    build_search_url,
    lowest_major_provider_price,
    pick_nightly_price,
    price_near_name,
)

WINDOW = DateWindow(date(2025, 11, 26), date(2025, 11, 28))
SITE = replace(
    GOOGLE_HOTELS,
    navigation_retry_delay=0,
    initial_settle_ms=0,
    calendar_open_ms=0,
    price_refresh_ms=0,
)
EXTRACTION_SCRIPTS = {LABELLED_ANCHORS_SCRIPT, TITLED_CARDS_SCRIPT, BODY_TEXT_SCRIPT, PROVIDER_BLOCKS_SCRIPT}
HOTEL = "Grand Plaza Hotel"


class _StubLocator:
    def __init__(self, page: "_StubSearchPage", selector: str, count: int) -> None:
        self._page = page
        self._selector = selector
        self._count = count

    @property
    def first(self) -> "_StubLocator":
        return self

    async def count(self) -> int:
        return self._count

    async def click(self, timeout: Optional[int] = None) -> None:
        if not self._count:
            raise PlaywrightError(f"no element for {self._selector}")
        self._page.clicks.append(self._selector)

    async def wait_for(self, timeout: Optional[int] = None) -> None:
        if not self._count:
            raise PlaywrightTimeoutError("Timeout")


class _StubSearchPage:
    """Serves canned results for each page-context script the resolver runs."""

    def __init__(
        self,
        displayed: Sequence[str] = ("Wed, Nov 26", "Fri, Nov 28"),
        anchors: Sequence[Dict[str, Any]] = (),
        cards: Sequence[Dict[str, Any]] = (),
        body: str = "",
        blocks: Any = (),
        goto_error: Optional[Exception] = None,
    ) -> None:
        self.displayed = displayed
        self.anchors = list(anchors)
        self.cards = list(cards)
        self.body = body
        self.blocks = blocks
        self.goto_error = goto_error
        self.scripts: List[str] = []
        self.clicks: List[str] = []
        self.goto_calls: List[str] = []
        self.present = {
            SITE.check_in_input,
            'button:has-text("Done")',
            SITE.view_prices_button,
        }

    async def goto(self, url: str, wait_until: Optional[str] = None, timeout: Optional[int] = None) -> None:
        self.goto_calls.append(url)
        if self.goto_error is not None:
            raise self.goto_error

    async def wait_for_timeout(self, timeout: int) -> None:
        return None

    def locator(self, selector: str) -> _StubLocator:
        if selector.startswith(SITE.date_cell) or selector in self.present:
            return _StubLocator(self, selector, 1)
        return _StubLocator(self, selector, 0)

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        self.scripts.append(script)
        if script == DATE_INPUTS_SCRIPT:
            return {"checkIn": self.displayed[0], "checkOut": self.displayed[1]}
        if script == SCROLL_TO_BOTTOM_SCRIPT:
            return None
        if script == LABELLED_ANCHORS_SCRIPT:
            return self.anchors
        if script == TITLED_CARDS_SCRIPT:
            return self.cards
        if script == BODY_TEXT_SCRIPT:
            return self.body
        if script == PROVIDER_BLOCKS_SCRIPT:
            if isinstance(self.blocks, Exception):
                raise self.blocks
            return list(self.blocks)
        raise AssertionError(f"unexpected script {script!r}")


class _PageFactory:
    def __init__(self, page: _StubSearchPage) -> None:
        self.page = page
        self.opened = 0
        self.closed = 0

    @asynccontextmanager
    async def __call__(self) -> AsyncIterator[_StubSearchPage]:
        self.opened += 1
        try:
            yield self.page
        finally:
            self.closed += 1


@pytest.fixture
def anyio_backend() -> str:
    """Restrict anyio tests to the asyncio backend for deterministic behaviour."""

    return "asyncio"


async def _resolve(page: _StubSearchPage):
    factory = _PageFactory(page)
    resolver = ReferencePriceResolver(factory, site=SITE)
    result = await resolver.resolve(HOTEL, "New York, US - 5385.12 mi away", WINDOW)
    return result, factory


@pytest.mark.anyio
async def test_date_mismatch_skips_extraction() -> None:
    page = _StubSearchPage(
        displayed=("Thu, Nov 27", "Sat, Nov 29"),
        anchors=[{"label": HOTEL, "texts": ["$120 nightly"]}],
        body=f"{HOTEL} $130",
    )

    result, factory = await _resolve(page)

    assert result.best_price is None
    assert result.major_provider_price is None
    assert result.check_in == WINDOW.check_in
    assert result.source_url == build_search_url(HOTEL, "New York, US")
    assert not EXTRACTION_SCRIPTS.intersection(page.scripts)
    assert factory.closed == 1


@pytest.mark.anyio
async def test_calendar_cells_are_picked_by_long_date_label() -> None:
    page = _StubSearchPage(anchors=[{"label": HOTEL, "texts": ["$120 nightly"]}])

    await _resolve(page)

    assert f'{SITE.date_cell}[aria-label*="November 26, 2025"]' in page.clicks
    assert f'{SITE.date_cell}[aria-label*="November 28, 2025"]' in page.clicks
    assert 'button:has-text("Done")' in page.clicks


@pytest.mark.anyio
async def test_labelled_anchor_prefers_nightly_fragment() -> None:
    page = _StubSearchPage(
        anchors=[
            {"label": "Harbor Inn", "texts": ["$80 nightly"]},
            {"label": f"{HOTEL}, 4-star hotel", "texts": ["4.4 (1,203)", "$260 total", "$130 nightly"]},
        ],
        body=f"{HOTEL} $999",
    )

    result, _ = await _resolve(page)

    assert result.best_price == 130
    assert result.strategy == "aria-label"


@pytest.mark.anyio
async def test_card_title_wins_over_body_text() -> None:
    page = _StubSearchPage(
        anchors=[{"label": "Harbor Inn", "texts": ["$80 nightly"]}],
        cards=[{"title": HOTEL, "texts": ["Free Wi-Fi", "$189", "$210 nightly"]}],
        body=f"Top pick {HOTEL} from $999 per night",
    )

    result, _ = await _resolve(page)

    assert result.best_price == 210
    assert result.strategy == "card-title"
    assert BODY_TEXT_SCRIPT not in page.scripts


@pytest.mark.anyio
async def test_body_text_is_the_last_resort() -> None:
    page = _StubSearchPage(body=f"Results\n{HOTEL}\n4.1 stars\n$175\nOther Hotel $60")

    result, _ = await _resolve(page)

    assert result.best_price == 175
    assert result.strategy == "body-text"


@pytest.mark.anyio
async def test_no_match_anywhere_gives_no_price() -> None:
    page = _StubSearchPage(body="Some other hotel $55")

    result, _ = await _resolve(page)

    assert result.best_price is None
    assert result.strategy is None


@pytest.mark.anyio
async def test_major_provider_price_is_lowest_allow_listed_price() -> None:
    page = _StubSearchPage(
        anchors=[{"label": HOTEL, "texts": ["$120 nightly"]}],
        blocks=[
            {"provider": "Expedia.com", "prices": ["$150", "$141"]},
            {"provider": "Booking.com", "prices": ["$145"]},
            {"provider": "Grand Plaza Direct", "prices": ["$90"]},
        ],
    )

    result, _ = await _resolve(page)

    assert result.best_price == 120
    assert result.major_provider_price == 141
    assert SITE.view_prices_button in page.clicks


@pytest.mark.anyio
async def test_major_provider_failure_keeps_best_price() -> None:
    page = _StubSearchPage(
        anchors=[{"label": HOTEL, "texts": ["$120 nightly"]}],
        blocks=RuntimeError("panel detached"),
    )

    result, _ = await _resolve(page)

    assert result.best_price == 120
    assert result.major_provider_price is None


@pytest.mark.anyio
async def test_navigation_failure_raises_and_closes_page() -> None:
    page = _StubSearchPage(goto_error=PlaywrightTimeoutError("Timeout 120000ms exceeded."))

    with pytest.raises(NavigationError):
        await _resolve(page)

    assert len(page.goto_calls) == SITE.navigation_attempts
    assert page.scripts == []


class HelperTests(unittest.TestCase):
    def test_search_url_uses_clean_city(self) -> None:
        self.assertEqual(
            build_search_url(HOTEL, "New York, US - 5385.12 mi away"),
            "https://www.google.com/travel/search?hl=en&gl=us&q=Grand%20Plaza%20Hotel%20New%20York%2C%20US",
        )

    def test_short_date_must_match_whole_day(self) -> None:
        alignment = DateAlignment(True, True, "Sun, Nov 26", "Tue, Nov 28")
        self.assertFalse(alignment.matches(DateWindow(date(2025, 11, 2), date(2025, 11, 28))))
        self.assertTrue(alignment.matches(DateWindow(date(2025, 11, 26), date(2025, 11, 28))))

    def test_pick_nightly_price(self) -> None:
        self.assertEqual(pick_nightly_price(["$300 total", "$150 nightly"]), 150)
        self.assertEqual(pick_nightly_price(["Deal", "$300 total", "$280"]), 300)
        self.assertIsNone(pick_nightly_price(["4.5 stars", "Free cancellation"]))

    def test_price_near_name_is_bounded(self) -> None:
        body = f"{HOTEL} " + "x" * 50 + " $99"
        self.assertEqual(price_near_name(body, HOTEL, window=100), 99)
        self.assertIsNone(price_near_name(body, HOTEL, window=20))
        self.assertIsNone(price_near_name(body, "Harbor Inn"))

    def test_lowest_major_provider_price_ignores_unlisted(self) -> None:
        blocks = [
            {"provider": "Tiny Direct", "prices": ["$70"]},
            {"provider": "Priceline", "prices": ["n/a"]},
        ]
        self.assertIsNone(lowest_major_provider_price(blocks))
