"""High level orchestration for one rate-parity run."""
from __future__ import annotations

import asyncio
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date
import logging
import random
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from .config import RunConfig
from .delivery import deliver
from .models import ComparisonRow, DateWindow, DeliveryReport, ListingCandidate, ReferencePriceResult
from .normalizer import parse_currency
from .processor import build_row, summarise_rows
from .reporter import build_report
from .sources.listing_discovery import discover_listings
from .sources.playwright_common import launch_browser
from .sources.reference_prices import ReferencePriceResolver

LOGGER = logging.getLogger(__name__)

ScrapeFn = Callable[[RunConfig, DateWindow, date], Awaitable[Tuple[List[ListingCandidate], List[ComparisonRow]]]]


@dataclass
class ParityResult:
    """Result returned by :func:`run_parity_workflow`."""

    config: RunConfig
    run_date: date
    window: DateWindow
    candidates: List[ListingCandidate]
    rows: List[ComparisonRow]
    delivery: Optional[DeliveryReport]
    summary: Dict[str, float] = field(default_factory=dict)
    report: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "config": self.config.to_dict(),
            "run_date": self.run_date.isoformat(),
            "window": self.window.to_dict(),
            "candidates": len(self.candidates),
            "rows": [row.to_dict() for row in self.rows],
            "delivery": self.delivery.to_dict() if self.delivery else None,
            "summary": self.summary,
            "report": self.report,
        }


def politeness_delay(max_listings: int, rng: random.Random | None = None) -> float:
    """Seconds to wait before a lookup; smaller runs can afford to go faster."""

    if max_listings <= 5:
        base = 0.3
    elif max_listings <= 20:
        base = 0.8
    else:
        base = 1.4
    return base + (rng or random).uniform(0, 0.25)


async def collect_rows(
    candidates: Sequence[ListingCandidate],
    resolver: Any,
    window: DateWindow,
    run_date: date,
    *,
    delay: Callable[[], float] = lambda: 0.0,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> List[ComparisonRow]:
    """Resolve reference prices one property at a time and build the rows.

    A failed lookup becomes a row without reference prices; it never stops
    the loop.
    """

    rows: List[ComparisonRow] = []
    for position, candidate in enumerate(candidates, start=1):
        LOGGER.info(
            "[%d/%d] %s (%s), listing price %s",
            position,
            len(candidates),
            candidate.name,
            candidate.city or "no city",
            parse_currency(candidate.price_raw),
        )
        await sleep(delay())
        try:
            reference = await resolver.resolve(candidate.name, candidate.city, window)
        except Exception as exc:
            LOGGER.warning(
                "Reference lookup failed for %s (%s to %s): %s",
                candidate.name,
                window.check_in.isoformat(),
                window.check_out.isoformat(),
                exc,
            )
            reference = ReferencePriceResult.empty(window, resolver.search_url(candidate.name, candidate.city))
        rows.append(build_row(run_date, candidate, reference))
    return rows


async def scrape_comparison_rows(
    config: RunConfig,
    window: DateWindow,
    run_date: date,
    *,
    launch: Callable[..., Any] = launch_browser,
    discover: Callable[..., Awaitable[List[ListingCandidate]]] = discover_listings,
    resolver_factory: Callable[..., Any] = ReferencePriceResolver,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> Tuple[List[ListingCandidate], List[ComparisonRow]]:
    """Discover listings and resolve their reference prices within one browser session."""

    async with launch(headless=config.headless) as session:
        async with session.open_page() as page:
            candidates = await discover(
                page,
                config.max_listings,
                config.max_pages,
                window,
                capture_urls=config.capture_listing_urls,
            )
        LOGGER.info("Discovered %d properties", len(candidates))
        if not candidates:
            return [], []

        resolver = resolver_factory(session.open_page)
        rows = await collect_rows(
            candidates,
            resolver,
            window,
            run_date,
            delay=lambda: politeness_delay(config.max_listings),
            sleep=sleep,
        )
    return candidates, rows


def _run_async(factory: Callable[[], Awaitable[Any]]) -> Any:
    """Run a coroutine from synchronous code, even under a running loop.

    Under a running loop the coroutine gets its own loop in a worker thread.
    """

    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(factory())
    with ThreadPoolExecutor(max_workers=1) as executor:
        return executor.submit(lambda: asyncio.run(factory())).result()


def run_parity_workflow(
    config: RunConfig,
    *,
    today: Optional[date] = None,
    scrape: ScrapeFn = scrape_comparison_rows,
    session: Optional[Any] = None,
    sleep: Callable[[float], None] | None = None,
) -> ParityResult:
    """Execute discovery, price resolution, delivery and reporting."""

    config.validate()
    run_date = today or date.today()
    window = config.date_window(run_date)
    LOGGER.info("Starting rate-parity run: %s, window %s", config.to_dict(), window.to_dict())

    candidates, rows = _run_async(lambda: scrape(config, window, run_date))
    if not candidates:
        raise RuntimeError("Listing discovery returned no properties; check the listing selectors")

    delivery: Optional[DeliveryReport] = None
    if config.dry_run:
        for row in rows:
            LOGGER.info("[DRY_RUN] Would append row: %s", row.to_values())
        LOGGER.info("[DRY_RUN] Built %d rows but not sending them to the webhook", len(rows))
    else:
        delivery_kwargs: Dict[str, Any] = {"base_delay": config.retry_base_delay, "session": session}
        if sleep is not None:
            delivery_kwargs["sleep"] = sleep
        delivery = deliver(
            rows,
            config.webhook_url or "",
            config.batch_size,
            config.max_retries,
            **delivery_kwargs,
        )

    result = ParityResult(
        config=config,
        run_date=run_date,
        window=window,
        candidates=candidates,
        rows=rows,
        delivery=delivery,
        summary=summarise_rows(rows),
    )
    result.report = build_report(result)
    return result
