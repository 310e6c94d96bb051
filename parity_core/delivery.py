"""Batching and webhook delivery of comparison rows."""
from __future__ import annotations

from dataclasses import dataclass
import logging
import time
from typing import Any, Callable, List, Optional, Sequence

import requests

from .models import ABANDONED, DELIVERED, ComparisonRow, DeliveryBatch, DeliveryReport
from .retry import retrying

LOGGER = logging.getLogger(__name__)

_BODY_LOG_LIMIT = 500


@dataclass(frozen=True)
class PostOutcome:
    """Result of one POST attempt."""

    status: Optional[int]
    body: str = ""
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status is not None and 200 <= self.status < 300

    @property
    def retryable(self) -> bool:
        """429 and 5xx are the failures the receiver expects callers to retry."""

        return self.status is not None and (self.status == 429 or 500 <= self.status < 600)


def chunk_rows(rows: Sequence[ComparisonRow], batch_size: int) -> List[Sequence[ComparisonRow]]:
    if batch_size < 1:
        raise ValueError("batch_size must be at least 1")
    return [rows[start : start + batch_size] for start in range(0, len(rows), batch_size)]


class WebhookClient:
    """Posts row batches as ``{"rows": [[...], ...]}`` JSON documents."""

    def __init__(self, url: str, session: Optional[Any] = None, timeout: float = 30) -> None:
        self.url = url
        self.session = session or requests.Session()
        self.timeout = timeout

    def post_rows(self, rows: Sequence[ComparisonRow]) -> PostOutcome:
        payload = {"rows": [row.to_values() for row in rows]}
        try:
            response = self.session.post(self.url, json=payload, timeout=self.timeout)
        except requests.RequestException as exc:
            return PostOutcome(status=None, error=str(exc))
        return PostOutcome(status=response.status_code, body=response.text or "")


def _send_batch(
    client: WebhookClient,
    batch: DeliveryBatch,
    max_retries: int,
    base_delay: float,
    sleep: Callable[[float], None],
) -> None:
    def attempt() -> PostOutcome:
        batch.attempts += 1
        outcome = client.post_rows(batch.rows)
        batch.last_status = outcome.status
        batch.last_error = outcome.error
        if outcome.ok:
            LOGGER.info(
                "Batch %d delivered (%d rows) with HTTP %s", batch.index, len(batch.rows), outcome.status
            )
        elif outcome.error is not None:
            LOGGER.warning(
                "Batch %d attempt %d/%d failed: %s", batch.index, batch.attempts, max_retries, outcome.error
            )
        else:
            LOGGER.warning(
                "Batch %d attempt %d/%d got %s HTTP %s: %s",
                batch.index,
                batch.attempts,
                max_retries,
                "retryable" if outcome.retryable else "unexpected",
                outcome.status,
                outcome.body[:_BODY_LOG_LIMIT],
            )
        return outcome

    controller = retrying(
        max_attempts=max_retries,
        base_delay=base_delay,
        retry_if=lambda outcome: not outcome.ok,
        sleep=sleep,
        logger=LOGGER,
    )
    final = controller(attempt)
    batch.outcome = DELIVERED if final.ok else ABANDONED
    if batch.outcome == ABANDONED:
        LOGGER.error(
            "Abandoning batch %d (%d rows) after %d attempts; last status %s, last error %s",
            batch.index,
            len(batch.rows),
            batch.attempts,
            batch.last_status,
            batch.last_error,
        )


def deliver(
    rows: Sequence[ComparisonRow],
    webhook_url: str,
    batch_size: int,
    max_retries: int,
    *,
    base_delay: float = 1.0,
    session: Optional[Any] = None,
    sleep: Callable[[float], None] = time.sleep,
    timeout: float = 30,
) -> DeliveryReport:
    """Send ``rows`` in order, batch by batch.

    A batch that still fails after ``max_retries`` attempts is abandoned and
    the remaining batches are still sent.
    """

    client = WebhookClient(webhook_url, session=session, timeout=timeout)
    report = DeliveryReport()
    for index, chunk in enumerate(chunk_rows(list(rows), batch_size), start=1):
        batch = DeliveryBatch(index=index, rows=chunk)
        report.batches.append(batch)
        _send_batch(client, batch, max_retries, base_delay, sleep)

    LOGGER.info(
        "Delivery finished: %d/%d rows delivered, %d batch(es) abandoned",
        report.delivered_rows,
        len(rows),
        len(report.abandoned_batches),
    )
    return report
