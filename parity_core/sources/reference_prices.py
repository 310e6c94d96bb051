"""Reference nightly rates from the hotel search engine for one property."""
from __future__ import annotations

from dataclasses import dataclass
import logging
import re
from typing import Any, Awaitable, Callable, Iterable, List, Mapping, Optional, Sequence, Tuple
from urllib.parse import quote

from playwright.async_api import Error as PlaywrightError, Page

from ..models import DateWindow, ReferencePriceResult
from ..normalizer import (
    PRICE_PATTERN,
    clean_location,
    collapse_whitespace,
    long_date_label,
    names_match,
    parse_currency,
    short_date_label,
)
from .playwright_common import (
    PageFactory,
    click_first_available,
    dismiss_common_banners,
    navigate,
    scroll_to_bottom,
)

LOGGER = logging.getLogger(__name__)

DATE_INPUTS_SCRIPT = """
(selectors) => {
  const read = (selector) => {
    const input = document.querySelector(selector);
    return input && input.value ? input.value : "";
  };
  return { checkIn: read(selectors.checkIn), checkOut: read(selectors.checkOut) };
}
"""

LABELLED_ANCHORS_SCRIPT = """
(selectors) => {
  const clean = (s) => (s || "").replace(/\\s+/g, " ").trim();
  return Array.from(document.querySelectorAll(selectors.anchor)).map((anchor) => ({
    label: anchor.getAttribute("aria-label") || "",
    texts: Array.from(anchor.querySelectorAll(selectors.fragment))
      .map((node) => clean(node.textContent))
      .filter(Boolean),
  }));
}
"""

TITLED_CARDS_SCRIPT = """
(selectors) => {
  const clean = (s) => (s || "").replace(/\\s+/g, " ").trim();
  return Array.from(document.querySelectorAll(selectors.card)).map((card) => {
    const title = card.querySelector(selectors.title);
    return {
      title: clean(title && title.textContent),
      texts: Array.from(card.querySelectorAll(selectors.fragment))
        .map((node) => clean(node.textContent))
        .filter(Boolean),
    };
  });
}
"""

BODY_TEXT_SCRIPT = "() => (document.body ? document.body.innerText : \"\")"

PROVIDER_BLOCKS_SCRIPT = """
(selectors) => {
  const clean = (s) => (s || "").replace(/\\s+/g, " ").trim();
  return Array.from(document.querySelectorAll(selectors.block)).map((block) => {
    const name = block.querySelector(selectors.name);
    return {
      provider: clean(name && name.textContent),
      prices: Array.from(block.querySelectorAll(selectors.price)).map((node) => clean(node.textContent)),
    };
  });
}
"""

MAJOR_PROVIDERS = (
    "expedia",
    "booking.com",
    "priceline",
    "kayak",
    "hotels.com",
    "orbitz",
    "travelocity",
)


@dataclass(frozen=True)
class ReferenceSiteConfig:
    """Selectors and timings describing the reference search engine.

    The markup of the target site changes regularly; these values are
    expected to need manual updates.
    """

    provider: str
    search_url: str
    check_in_input: str
    check_out_input: str
    date_cell: str
    confirm_buttons: Sequence[str]
    labelled_anchor: str
    listing_card: str
    listing_title: str
    price_fragment: str
    view_prices_button: str
    provider_block: str
    provider_name: str
    provider_price: str
    navigation_timeout_ms: int = 120_000
    navigation_attempts: int = 2
    navigation_retry_delay: float = 2.0
    initial_settle_ms: int = 3_000
    calendar_open_ms: int = 1_500
    calendar_cell_timeout_ms: int = 5_000
    between_cells_ms: int = 300
    price_refresh_ms: int = 4_000
    scroll_passes: int = 2
    scroll_settle_ms: int = 600
    provider_panel_ms: int = 3_000
    body_text_window: int = 600


GOOGLE_HOTELS = ReferenceSiteConfig(
    provider="google.com/travel",
    search_url="https://www.google.com/travel/search?hl=en&gl=us&q={query}",
    check_in_input='input[aria-label*="Check-in"], input[aria-label*="Check in"]',
    check_out_input='input[aria-label*="Check-out"], input[aria-label*="Check out"]',
    date_cell='div[role="button"] div[jsname="nEWxA"]',
    confirm_buttons=(
        'button:has-text("Done")',
        'button:has-text("Apply")',
        'button:has-text("Save")',
    ),
    labelled_anchor="a[aria-label]",
    listing_card="c-wiz div[data-hveid]",
    listing_title="h2, h3",
    price_fragment="span, div",
    view_prices_button='button:has-text("View prices")',
    provider_block=".ADs2Tc",
    provider_name="h3.RjilDd",
    provider_price="span.iqYCVb",
)


@dataclass(frozen=True)
class DateAlignment:
    """What the date picker shows after trying to select the stay window."""

    picked_check_in: bool
    picked_check_out: bool
    displayed_check_in: str
    displayed_check_out: str

    def matches(self, window: DateWindow) -> bool:
        return _shows_date(self.displayed_check_in, short_date_label(window.check_in)) and _shows_date(
            self.displayed_check_out, short_date_label(window.check_out)
        )


def _shows_date(displayed: str, label: str) -> bool:
    # "Nov 2" must not match "Nov 26"
    return re.search(rf"(?<!\w){re.escape(label)}(?!\d)", displayed or "") is not None


def build_search_url(name: str, city: str, site: ReferenceSiteConfig = GOOGLE_HOTELS) -> str:
    parts = [part for part in (collapse_whitespace(name), clean_location(city)) if part]
    return site.search_url.format(query=quote(" ".join(parts), safe="!~*'()"))


def pick_nightly_price(texts: Iterable[str]) -> Optional[float]:
    """Prefer a fragment mentioning "nightly", otherwise the first priced fragment."""

    priced = [text for text in texts if PRICE_PATTERN.search(text or "")]
    if not priced:
        return None
    nightly = next((text for text in priced if "nightly" in text.lower()), None)
    return parse_currency(nightly or priced[0])


def price_near_name(body_text: str, name: str, window: int = 600) -> Optional[float]:
    """First amount within ``window`` characters after the first mention of ``name``."""

    text = collapse_whitespace(body_text)
    target = collapse_whitespace(name).lower()
    if not text or not target:
        return None
    start = text.lower().find(target)
    if start < 0:
        return None
    return parse_currency(text[start : start + len(target) + window])


def lowest_major_provider_price(
    blocks: Iterable[Mapping[str, Any]], providers: Sequence[str] = MAJOR_PROVIDERS
) -> Optional[float]:
    """Minimum over allow-listed provider blocks of each block's minimum price."""

    block_minimums: List[float] = []
    for block in blocks:
        provider = collapse_whitespace(block.get("provider")).lower()
        if not provider or not any(brand in provider for brand in providers):
            continue
        prices = [price for price in (parse_currency(text) for text in block.get("prices") or []) if price is not None]
        if prices:
            block_minimums.append(min(prices))
    return min(block_minimums) if block_minimums else None


async def _click_date_cell(page: Page, site: ReferenceSiteConfig, label: str) -> bool:
    cells = page.locator(f'{site.date_cell}[aria-label*="{label}"]')
    try:
        if not await cells.count():
            LOGGER.warning("No calendar cell labelled %r", label)
            return False
        await cells.first.click()
    except PlaywrightError as exc:
        LOGGER.warning("Failed clicking calendar cell %r: %s", label, exc)
        return False
    return True


async def align_dates(page: Page, window: DateWindow, site: ReferenceSiteConfig = GOOGLE_HOTELS) -> DateAlignment:
    """Select ``window`` in the date picker and read back what the inputs display."""

    inputs = page.locator(site.check_in_input)
    try:
        if not await inputs.count():
            LOGGER.warning("No check-in input found; cannot open the calendar")
            return DateAlignment(False, False, "", "")
        await inputs.first.click()
    except PlaywrightError as exc:
        LOGGER.warning("Could not open the calendar: %s", exc)
        return DateAlignment(False, False, "", "")
    await page.wait_for_timeout(site.calendar_open_ms)

    try:
        await page.locator(f"{site.date_cell}[aria-label]").first.wait_for(timeout=site.calendar_cell_timeout_ms)
    except PlaywrightError:
        LOGGER.warning("No calendar cells appeared after opening the date picker")

    picked_in = await _click_date_cell(page, site, long_date_label(window.check_in))
    await page.wait_for_timeout(site.between_cells_ms)
    picked_out = await _click_date_cell(page, site, long_date_label(window.check_out))

    await click_first_available(page, site.confirm_buttons)
    await page.wait_for_timeout(site.price_refresh_ms)

    displayed = await page.evaluate(
        DATE_INPUTS_SCRIPT, {"checkIn": site.check_in_input, "checkOut": site.check_out_input}
    ) or {}
    alignment = DateAlignment(
        picked_check_in=picked_in,
        picked_check_out=picked_out,
        displayed_check_in=str(displayed.get("checkIn") or ""),
        displayed_check_out=str(displayed.get("checkOut") or ""),
    )
    LOGGER.debug("Date inputs now show %r / %r", alignment.displayed_check_in, alignment.displayed_check_out)
    return alignment


async def price_from_labelled_anchor(page: Page, name: str, site: ReferenceSiteConfig) -> Optional[float]:
    anchors = await page.evaluate(
        LABELLED_ANCHORS_SCRIPT, {"anchor": site.labelled_anchor, "fragment": site.price_fragment}
    )
    for anchor in anchors or []:
        if not names_match(anchor.get("label"), name):
            continue
        price = pick_nightly_price(anchor.get("texts") or [])
        if price is not None:
            return price
    return None


async def price_from_titled_card(page: Page, name: str, site: ReferenceSiteConfig) -> Optional[float]:
    cards = await page.evaluate(
        TITLED_CARDS_SCRIPT,
        {"card": site.listing_card, "title": site.listing_title, "fragment": site.price_fragment},
    )
    for card in cards or []:
        if not names_match(card.get("title"), name):
            continue
        price = pick_nightly_price(card.get("texts") or [])
        if price is not None:
            return price
    return None


async def price_from_body_text(page: Page, name: str, site: ReferenceSiteConfig) -> Optional[float]:
    body_text = await page.evaluate(BODY_TEXT_SCRIPT)
    return price_near_name(body_text or "", name, site.body_text_window)


PriceStrategy = Callable[[Page, str, ReferenceSiteConfig], Awaitable[Optional[float]]]

# Ordered from most to least trustworthy.
PRICE_STRATEGIES: Tuple[Tuple[str, PriceStrategy], ...] = (
    ("aria-label", price_from_labelled_anchor),
    ("card-title", price_from_titled_card),
    ("body-text", price_from_body_text),
)


async def extract_best_price(
    page: Page,
    name: str,
    site: ReferenceSiteConfig = GOOGLE_HOTELS,
    strategies: Sequence[Tuple[str, PriceStrategy]] = PRICE_STRATEGIES,
) -> Tuple[Optional[float], Optional[str]]:
    """Run the strategies in order and return the first price with its strategy name."""

    for label, strategy in strategies:
        try:
            price = await strategy(page, name, site)
        except PlaywrightError as exc:
            LOGGER.debug("Price strategy %s failed for %s: %s", label, name, exc)
            continue
        if price is not None:
            return price, label
        LOGGER.debug("Price strategy %s found nothing for %s", label, name)
    return None, None


async def extract_major_provider_price(
    page: Page,
    site: ReferenceSiteConfig = GOOGLE_HOTELS,
    providers: Sequence[str] = MAJOR_PROVIDERS,
) -> Optional[float]:
    """Lowest allow-listed provider price; any failure yields ``None``."""

    try:
        if await click_first_available(page, (site.view_prices_button,)):
            await page.wait_for_timeout(site.provider_panel_ms)
        blocks = await page.evaluate(
            PROVIDER_BLOCKS_SCRIPT,
            {"block": site.provider_block, "name": site.provider_name, "price": site.provider_price},
        )
        return lowest_major_provider_price(blocks or [], providers)
    except Exception as exc:
        LOGGER.warning("Major-provider extraction failed: %s", exc)
        return None


class ReferencePriceResolver:
    """Look up reference rates one property at a time."""

    def __init__(
        self,
        open_page: PageFactory,
        site: ReferenceSiteConfig = GOOGLE_HOTELS,
        providers: Sequence[str] = MAJOR_PROVIDERS,
    ) -> None:
        self._open_page = open_page
        self.site = site
        self.providers = tuple(providers)

    def search_url(self, name: str, city: str) -> str:
        return build_search_url(name, city, self.site)

    async def resolve(self, name: str, city: str, window: DateWindow) -> ReferencePriceResult:
        """Return reference prices for ``name`` in ``city`` during ``window``.

        Raises :class:`~parity_core.sources.playwright_common.NavigationError`
        when the search page cannot be opened. A date picker that does not
        confirm ``window`` gives an empty result without any extraction.
        """

        url = self.search_url(name, city)
        LOGGER.info("Opening reference search for %s: %s", name, url)

        async with self._open_page() as page:
            await navigate(
                page,
                url,
                timeout_ms=self.site.navigation_timeout_ms,
                attempts=self.site.navigation_attempts,
                base_delay=self.site.navigation_retry_delay,
            )
            await page.wait_for_timeout(self.site.initial_settle_ms)
            await dismiss_common_banners(page)

            alignment = await align_dates(page, window, self.site)
            if not alignment.matches(window):
                LOGGER.warning(
                    "Date mismatch for %s: requested %s to %s, picker shows %r / %r; skipping price",
                    name,
                    window.check_in.isoformat(),
                    window.check_out.isoformat(),
                    alignment.displayed_check_in,
                    alignment.displayed_check_out,
                )
                return ReferencePriceResult.empty(window, url)

            await scroll_to_bottom(page, self.site.scroll_passes, self.site.scroll_settle_ms)

            best_price, strategy = await extract_best_price(page, name, self.site)
            major_price = await extract_major_provider_price(page, self.site, self.providers)

        LOGGER.info(
            "Reference prices for %s: best=%s (%s), major=%s",
            name,
            best_price,
            strategy or "none",
            major_price,
        )
        return ReferencePriceResult(
            check_in=window.check_in,
            check_out=window.check_out,
            source_url=url,
            best_price=best_price,
            major_provider_price=major_price,
            strategy=strategy,
        )
