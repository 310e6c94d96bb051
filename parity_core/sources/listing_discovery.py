"""Discovery of property cards on the listing site's paginated explore page."""
from __future__ import annotations

from dataclasses import dataclass
import json
import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence, Set, Tuple
from urllib.parse import quote, urljoin

from playwright.async_api import Error as PlaywrightError, Page, TimeoutError as PlaywrightTimeoutError

from ..models import DateWindow, ListingCandidate
from ..normalizer import clean_location, collapse_whitespace, extract_price_text
from .playwright_common import navigate

LOGGER = logging.getLogger(__name__)

# Page-context functions; they only read their argument and the DOM.
LISTING_CARDS_SCRIPT = """
(selectors) => {
  const clean = (s) => (s || "").replace(/\\s+/g, " ").trim();
  return Array.from(document.querySelectorAll(selectors.card)).map((card) => {
    const heading = card.querySelector(selectors.heading);
    const location = card.querySelector(selectors.location);
    const price = card.querySelector(selectors.price);
    const link = card.closest(selectors.link) || card.querySelector(selectors.link);
    return {
      name: clean(heading && heading.textContent),
      location: clean(location && location.textContent),
      price: clean(price && price.textContent),
      href: link ? link.getAttribute("href") : null,
    };
  });
}
"""

PAGE_ADVANCED_SCRIPT = """
(state) => {
  const cards = document.querySelectorAll(state.card);
  if (cards.length > state.previousCount) return true;
  const heading = document.querySelector(state.card + " " + state.heading);
  const now = heading ? (heading.textContent || "").replace(/\\s+/g, " ").trim() : "";
  return Boolean(now) && now !== state.previousFirst;
}
"""

FIRST_HEADING_IS_SCRIPT = """
(state) => {
  const heading = document.querySelector(state.card + " " + state.heading);
  const now = heading ? (heading.textContent || "").replace(/\\s+/g, " ").trim() : "";
  return now === state.expected;
}
"""


@dataclass(frozen=True)
class ListingSiteConfig:
    """Endpoint, selectors and timings describing a listing site."""

    provider: str
    base_url: str
    explore_path: str
    card: str
    heading: str
    location: str
    price: str
    link: str = "a[href]"
    next_button: str = 'button:has-text("→")'
    adults: int = 2
    navigation_timeout_ms: int = 120_000
    navigation_attempts: int = 2
    navigation_retry_delay: float = 2.0
    first_card_timeout_ms: int = 15_000
    page_change_timeout_ms: int = 8_000
    page_change_poll_ms: int = 200
    settle_ms: int = 800
    click_timeout_ms: int = 5_000
    empty_page_retries: int = 3
    empty_page_delay_ms: int = 1_000
    url_capture_timeout_ms: int = 10_000

    def card_selectors(self) -> Dict[str, str]:
        return {
            "card": self.card,
            "heading": self.heading,
            "location": self.location,
            "price": self.price,
            "link": self.link,
        }


SPARROWBID = ListingSiteConfig(
    provider="sparrowbid.com",
    base_url="https://www.sparrowbid.com",
    explore_path="/explore",
    card=".sb_todays_deals_card_ctn",
    heading=".sb_todays_deals_card_heading",
    location=".sb_todays_deals_card_country_ctn p",
    price=".sb_todays_deals_card_price",
)


def _encode_component(value: str) -> str:
    """Percent-encode like JavaScript's ``encodeURIComponent``."""

    return quote(value, safe="!~*'()")


def build_listing_filters(window: DateWindow, adults: int = 2) -> Dict[str, Any]:
    return {
        "check_in_date": f"{window.check_in.isoformat()}T06:00:00.000Z",
        "check_out_date": f"{window.check_out.isoformat()}T06:00:00.000Z",
        "dateRange": "Exact dates",
        "adults": adults,
        "child": 0,
        "place": {
            "geoLocation": {"lat": "", "lng": ""},
            "address_1": "",
            "city": "",
            "state": "",
            "country": "",
            "zip": "",
            "label": "",
        },
        "page": 1,
    }


def build_listing_url(window: DateWindow, site: ListingSiteConfig = SPARROWBID) -> str:
    """Return the explore URL with the date filter encoded twice.

    The site ignores the date filter unless the JSON object is
    percent-encoded twice.
    """

    filters_json = json.dumps(build_listing_filters(window, site.adults), separators=(",", ":"))
    encoded = _encode_component(_encode_component(filters_json))
    return f"{urljoin(site.base_url, site.explore_path)}?filters={encoded}"


def card_to_candidate(raw: Mapping[str, Any], site: ListingSiteConfig = SPARROWBID) -> Optional[ListingCandidate]:
    """Convert one scraped card into a candidate; cards without a heading are dropped."""

    name = collapse_whitespace(raw.get("name"))
    if not name:
        return None
    href = raw.get("href")
    return ListingCandidate(
        name=name,
        city=clean_location(raw.get("location")),
        price_raw=extract_price_text(raw.get("price")),
        url=urljoin(site.base_url, href) if href else None,
    )


class CandidateCollector:
    """Keeps the first occurrence of every (name, city) pair up to a limit."""

    def __init__(self, limit: int) -> None:
        self.limit = limit
        self.results: List[ListingCandidate] = []
        self._seen: Set[str] = set()

    @property
    def full(self) -> bool:
        return len(self.results) >= self.limit

    def add(self, candidates: Sequence[ListingCandidate]) -> List[ListingCandidate]:
        """Add unseen candidates and return the ones that were new."""

        added: List[ListingCandidate] = []
        for candidate in candidates:
            if self.full:
                break
            if candidate.key in self._seen:
                continue
            self._seen.add(candidate.key)
            self.results.append(candidate)
            added.append(candidate)
        return added


async def read_cards(page: Page, site: ListingSiteConfig = SPARROWBID) -> Tuple[List[ListingCandidate], int]:
    """Read the rendered cards, re-reading a transiently empty page a few times.

    Returns the candidates and the number of rendered card elements.
    """

    raw_cards: List[Mapping[str, Any]] = []
    for attempt in range(1, site.empty_page_retries + 1):
        raw_cards = await page.evaluate(LISTING_CARDS_SCRIPT, site.card_selectors()) or []
        if raw_cards:
            break
        if attempt < site.empty_page_retries:
            LOGGER.debug(
                "No cards rendered yet (attempt %d/%d); waiting %d ms",
                attempt,
                site.empty_page_retries,
                site.empty_page_delay_ms,
            )
            await page.wait_for_timeout(site.empty_page_delay_ms)

    candidates = [candidate for candidate in (card_to_candidate(raw, site) for raw in raw_cards) if candidate]
    return candidates, len(raw_cards)


async def _is_disabled(button: Any) -> bool:
    if await button.get_attribute("disabled") is not None:
        return True
    return (await button.get_attribute("aria-disabled") or "").lower() == "true"


async def advance_page(
    page: Page, site: ListingSiteConfig, first_name: str, rendered_count: int
) -> bool:
    """Click the next-page control and wait for the card list to change.

    Returns ``False`` when there is no usable control or the list did not
    change within the timeout, which ends pagination.
    """

    buttons = page.locator(site.next_button)
    count = await buttons.count()
    if not count:
        LOGGER.info("No next-page control found")
        return False

    for index in range(count):
        button = buttons.nth(index)
        try:
            if await _is_disabled(button):
                continue
            await button.click(timeout=site.click_timeout_ms)
        except PlaywrightError as exc:
            LOGGER.debug("Next-page control %d not clickable: %s", index, exc)
            continue

        try:
            await page.wait_for_function(
                PAGE_ADVANCED_SCRIPT,
                arg={
                    "card": site.card,
                    "heading": site.heading,
                    "previousFirst": first_name,
                    "previousCount": rendered_count,
                },
                timeout=site.page_change_timeout_ms,
                polling=site.page_change_poll_ms,
            )
        except PlaywrightTimeoutError:
            LOGGER.info(
                "Card list did not change within %d ms; assuming pagination is exhausted",
                site.page_change_timeout_ms,
            )
            return False
        return True

    LOGGER.info("All next-page controls are disabled")
    return False


async def capture_listing_url(page: Page, candidate: ListingCandidate, site: ListingSiteConfig) -> Optional[str]:
    """Click through to a property's page, return its URL and go back.

    A failed way back is only logged; the caller checks whether the list
    was restored.
    """

    listing_url = page.url
    heading = page.locator(f"{site.card} {site.heading}", has_text=candidate.name).first
    try:
        await heading.click(timeout=site.click_timeout_ms)
        await page.wait_for_url(
            lambda url: url != listing_url,
            timeout=site.url_capture_timeout_ms,
            wait_until="commit",
        )
    except PlaywrightError as exc:
        LOGGER.debug("URL capture failed for %s: %s", candidate.name, exc)
        return None

    captured = page.url
    try:
        await page.go_back(wait_until="domcontentloaded")
    except PlaywrightError as exc:
        LOGGER.warning("Could not go back to the listing page from %s: %s", captured, exc)
    return captured


async def _restored(page: Page, site: ListingSiteConfig, expected_first: str) -> bool:
    try:
        await page.wait_for_function(
            FIRST_HEADING_IS_SCRIPT,
            arg={"card": site.card, "heading": site.heading, "expected": expected_first},
            timeout=site.page_change_timeout_ms,
            polling=site.page_change_poll_ms,
        )
    except PlaywrightError:
        return False
    return True


async def _capture_urls(
    page: Page, candidates: Sequence[ListingCandidate], site: ListingSiteConfig, first_name: str
) -> bool:
    """Fill in missing URLs for ``candidates``; returns ``False`` if the page state was lost."""

    for candidate in candidates:
        if candidate.url:
            continue
        captured = await capture_listing_url(page, candidate, site)
        if captured:
            candidate.url = captured
        if not await _restored(page, site, first_name):
            LOGGER.warning(
                "Listing page was not restored after opening %s; stopping discovery",
                candidate.name,
            )
            return False
    return True


async def discover_listings(
    page: Page,
    max_listings: int,
    max_pages: int,
    window: DateWindow,
    site: ListingSiteConfig = SPARROWBID,
    *,
    capture_urls: bool = False,
) -> List[ListingCandidate]:
    """Collect unique property cards for ``window`` across the paginated explore page.

    With ``capture_urls``, a list that is not restored after opening a
    property ends discovery with the cards collected so far.
    """

    url = build_listing_url(window, site)
    LOGGER.info("Loading %s explore page: %s", site.provider, url)
    await navigate(
        page,
        url,
        wait_until="networkidle",
        timeout_ms=site.navigation_timeout_ms,
        attempts=site.navigation_attempts,
        base_delay=site.navigation_retry_delay,
    )

    try:
        await page.wait_for_selector(site.card, timeout=site.first_card_timeout_ms)
    except PlaywrightTimeoutError:
        LOGGER.warning("No listing card appeared within %d ms", site.first_card_timeout_ms)

    collector = CandidateCollector(max_listings)
    cards, rendered = await read_cards(page, site)
    added = collector.add(cards)
    LOGGER.info("Page 1: collected %d cards, total %d", len(cards), len(collector.results))
    if capture_urls and cards and not await _capture_urls(page, added, site, cards[0].name):
        return collector.results

    for page_index in range(2, max_pages + 1):
        if collector.full:
            break
        first_name = cards[0].name if cards else ""
        if not await advance_page(page, site, first_name, rendered):
            LOGGER.info("Stopping pagination at page %d", page_index - 1)
            break
        await page.wait_for_timeout(site.settle_ms)

        cards, rendered = await read_cards(page, site)
        added = collector.add(cards)
        LOGGER.info(
            "Page %d: collected %d cards, %d new, total %d",
            page_index,
            len(cards),
            len(added),
            len(collector.results),
        )
        if capture_urls and cards and not await _capture_urls(page, added, site, cards[0].name):
            break

    return collector.results
