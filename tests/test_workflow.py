import asyncio
from contextlib import asynccontextmanager
from datetime import date
import random
import unittest
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

from parity_core.config import ConfigurationError, RunConfig
from parity_core.models import DateWindow, ListingCandidate, ReferencePriceResult
from parity_core.sources.reference_prices import (
    LABELLED_ANCHORS_SCRIPT,
    ReferencePriceResolver,
    build_search_url,
)
from parity_core.workflow import (
    _run_async,
    collect_rows,
    politeness_delay,
    run_parity_workflow,
    scrape_comparison_rows,
)
from tests.test_reference_prices import SITE as SEARCH_SITE, _StubSearchPage

TODAY = date(2025, 11, 19)
WINDOW = DateWindow(date(2025, 11, 26), date(2025, 11, 28))
WEBHOOK = "https://script.example.com/macros/s/abc/exec"


class _StubResponse:
    def __init__(self, status_code: int) -> None:
        self.status_code = status_code
        self.text = "ok"


class _StubSession:
    def __init__(self) -> None:
        self.calls: List[Dict[str, Any]] = []

    def post(self, url: str, json: Any = None, timeout: Optional[float] = None) -> _StubResponse:
        self.calls.append({"url": url, "json": json})
        return _StubResponse(200)


class _StubResolver:
    """Returns canned reference results keyed by property name."""

    def __init__(self, results: Dict[str, Any]) -> None:
        self.results = results
        self.calls: List[str] = []

    async def resolve(self, name: str, city: str, window: DateWindow) -> ReferencePriceResult:
        self.calls.append(name)
        outcome = self.results[name]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def search_url(self, name: str, city: str) -> str:
        return build_search_url(name, city)


def _reference(best: Optional[float] = None, major: Optional[float] = None) -> ReferencePriceResult:
    return ReferencePriceResult(
        check_in=WINDOW.check_in,
        check_out=WINDOW.check_out,
        source_url="https://www.google.com/travel/search?q=x",
        best_price=best,
        major_provider_price=major,
        strategy="aria-label" if best is not None else None,
    )


CANDIDATES = [
    ListingCandidate("Hotel Alpha", "Miami, US", "$100"),
    ListingCandidate("Hotel Bravo", "Orlando, US", "$200"),
]


class _SearchPages:
    """Hands out one prepared search page per lookup, in order."""

    def __init__(self, pages: Sequence[_StubSearchPage]) -> None:
        self._pages = list(pages)

    @asynccontextmanager
    async def __call__(self) -> AsyncIterator[_StubSearchPage]:
        yield self._pages.pop(0)


def _scrape_with(resolver: Any):
    async def scrape(config: RunConfig, window: DateWindow, run_date: date):
        rows = await collect_rows(CANDIDATES, resolver, window, run_date)
        return list(CANDIDATES), rows

    return scrape


async def _no_sleep(_: float) -> None:
    return None


class CollectRowsTests(unittest.TestCase):
    def test_failed_lookup_becomes_empty_row(self) -> None:
        resolver = _StubResolver({"Hotel Alpha": RuntimeError("page crashed"), "Hotel Bravo": _reference(250.0)})
        delays: List[float] = []

        async def record(seconds: float) -> None:
            delays.append(seconds)

        rows = asyncio.run(
            collect_rows(CANDIDATES, resolver, WINDOW, TODAY, delay=lambda: 0.5, sleep=record)
        )

        self.assertEqual([row.property_name for row in rows], ["Hotel Alpha", "Hotel Bravo"])
        self.assertIsNone(rows[0].reference_best_price)
        self.assertEqual(rows[0].check_in, WINDOW.check_in)
        self.assertEqual(rows[0].reference_url, build_search_url("Hotel Alpha", "Miami, US"))
        self.assertEqual(rows[0].own_price, 100.0)
        self.assertEqual(rows[1].advantage_amount, 50.0)
        self.assertEqual(delays, [0.5, 0.5])


class RunParityWorkflowTests(unittest.TestCase):
    def test_rows_are_delivered_in_discovery_order(self) -> None:
        mismatched = _StubSearchPage(
            displayed=("Thu, Nov 27", "Sat, Nov 29"),
            anchors=[{"label": "Hotel Alpha", "texts": ["$150 nightly"]}],
        )
        matched = _StubSearchPage(
            anchors=[{"label": "Hotel Bravo", "texts": ["$240 nightly"]}],
            blocks=[{"provider": "Expedia", "prices": ["$260"]}],
        )
        resolver = ReferencePriceResolver(_SearchPages([mismatched, matched]), site=SEARCH_SITE)
        session = _StubSession()
        config = RunConfig(webhook_url=WEBHOOK)

        result = run_parity_workflow(config, today=TODAY, scrape=_scrape_with(resolver), session=session)

        self.assertEqual(len(session.calls), 1)
        posted = session.calls[0]["json"]["rows"]
        self.assertEqual([values[3] for values in posted], ["Hotel Alpha", "Hotel Bravo"])
        self.assertEqual(posted[0][6:10], ["", "", "", ""])
        self.assertEqual(posted[0][11], build_search_url("Hotel Alpha", "Miami, US"))
        self.assertNotIn(LABELLED_ANCHORS_SCRIPT, mismatched.scripts)
        self.assertEqual(posted[1][6], 240.0)
        self.assertEqual(posted[1][7], 260.0)
        self.assertEqual(posted[1][8], 40.0)
        self.assertTrue(result.delivery.complete)
        self.assertEqual(result.summary["with_reference"], 1)
        self.assertIn("Rate Parity Report", result.report)
        self.assertIn("2 rows delivered", result.report)

    def test_dry_run_skips_delivery(self) -> None:
        resolver = _StubResolver({"Hotel Alpha": _reference(120.0), "Hotel Bravo": _reference(180.0)})
        session = _StubSession()

        result = run_parity_workflow(
            RunConfig(dry_run=True), today=TODAY, scrape=_scrape_with(resolver), session=session
        )

        self.assertEqual(session.calls, [])
        self.assertIsNone(result.delivery)
        self.assertEqual(len(result.rows), 2)
        self.assertIn("Dry run", result.report)

    def test_invalid_configuration_stops_before_scraping(self) -> None:
        scraped: List[bool] = []

        async def scrape(*_: Any):
            scraped.append(True)
            return [], []

        with self.assertRaises(ConfigurationError):
            run_parity_workflow(RunConfig(webhook_url="not-a-url"), today=TODAY, scrape=scrape)
        self.assertEqual(scraped, [])

    def test_no_properties_is_fatal(self) -> None:
        async def scrape(*_: Any):
            return [], []

        with self.assertRaises(RuntimeError):
            run_parity_workflow(RunConfig(dry_run=True), today=TODAY, scrape=scrape)


class _FakeBrowserSession:
    def __init__(self) -> None:
        self.opened = 0
        self.closed = 0

    @asynccontextmanager
    async def open_page(self):
        self.opened += 1
        try:
            yield object()
        finally:
            self.closed += 1


class ScrapeComparisonRowsTests(unittest.TestCase):
    def test_discovery_and_lookups_share_one_browser(self) -> None:
        browser = _FakeBrowserSession()
        launches: List[bool] = []
        discover_args: List[Any] = []
        resolver = _StubResolver({"Hotel Alpha": _reference(90.0), "Hotel Bravo": _reference(210.0)})

        @asynccontextmanager
        async def launch(headless: bool = True):
            launches.append(headless)
            yield browser

        async def discover(page, max_listings, max_pages, window, capture_urls=False):
            discover_args.append((max_listings, max_pages, window, capture_urls))
            return list(CANDIDATES)

        def resolver_factory(open_page):
            self.assertEqual(open_page.__self__, browser)
            return resolver

        config = RunConfig(webhook_url=WEBHOOK, max_listings=2, max_pages=3, headless=False)
        candidates, rows = asyncio.run(
            scrape_comparison_rows(
                config,
                WINDOW,
                TODAY,
                launch=launch,
                discover=discover,
                resolver_factory=resolver_factory,
                sleep=_no_sleep,
            )
        )

        self.assertEqual(launches, [False])
        self.assertEqual(discover_args, [(2, 3, WINDOW, False)])
        self.assertEqual(resolver.calls, ["Hotel Alpha", "Hotel Bravo"])
        self.assertEqual(len(candidates), 2)
        self.assertEqual(rows[0].advantage_amount, -10.0)
        self.assertEqual(browser.opened, browser.closed)

    def test_empty_discovery_skips_lookups(self) -> None:
        browser = _FakeBrowserSession()

        @asynccontextmanager
        async def launch(headless: bool = True):
            yield browser

        async def discover(*_: Any, **__: Any):
            return []

        def resolver_factory(open_page):
            raise AssertionError("resolver should not be created")

        candidates, rows = asyncio.run(
            scrape_comparison_rows(
                RunConfig(dry_run=True),
                WINDOW,
                TODAY,
                launch=launch,
                discover=discover,
                resolver_factory=resolver_factory,
                sleep=_no_sleep,
            )
        )

        self.assertEqual((candidates, rows), ([], []))
        self.assertEqual(browser.closed, 1)


class RunAsyncTests(unittest.TestCase):
    def test_runs_without_a_loop(self) -> None:
        async def answer() -> int:
            return 42

        self.assertEqual(_run_async(answer), 42)

    def test_runs_under_a_running_loop(self) -> None:
        async def answer() -> int:
            await asyncio.sleep(0)
            return 42

        async def caller() -> int:
            return _run_async(answer)

        self.assertEqual(asyncio.run(caller()), 42)


class PolitenessDelayTests(unittest.TestCase):
    def test_delay_grows_with_run_size(self) -> None:
        for max_listings, low in [(5, 0.3), (20, 0.8), (21, 1.4)]:
            with self.subTest(max_listings=max_listings):
                delay = politeness_delay(max_listings, random.Random(7))
                self.assertGreaterEqual(delay, low)
                self.assertLessEqual(delay, low + 0.25)


if __name__ == "__main__":
    unittest.main()
