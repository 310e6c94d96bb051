"""Retry-with-backoff policies shared by delivery and navigation."""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, List, Optional, Sequence, Type

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    Retrying,
    before_sleep_log,
    retry_any,
    retry_if_exception_type,
    retry_if_result,
    stop_after_attempt,
    wait_exponential,
)

LOGGER = logging.getLogger(__name__)


def _last_outcome(retry_state: RetryCallState) -> Any:
    """Return the final result, or re-raise the final exception, once attempts run out."""

    if retry_state.outcome is None:
        raise RuntimeError("retry finished without an attempt outcome")
    return retry_state.outcome.result()


def _policy(
    *,
    max_attempts: int,
    base_delay: float,
    retry_if: Optional[Callable[[Any], bool]],
    retry_on: Sequence[Type[BaseException]],
    logger: logging.Logger,
) -> dict:
    conditions: List[Any] = []
    if retry_if is not None:
        conditions.append(retry_if_result(retry_if))
    if retry_on:
        conditions.append(retry_if_exception_type(tuple(retry_on)))
    if not conditions:
        raise ValueError("retry policy needs a result predicate or exception types")
    return {
        "retry": retry_any(*conditions),
        "stop": stop_after_attempt(max_attempts),
        # base_delay * 2 ** (attempt - 1)
        "wait": wait_exponential(multiplier=base_delay, exp_base=2),
        "before_sleep": before_sleep_log(logger, logging.WARNING),
        "retry_error_callback": _last_outcome,
    }


def retrying(
    *,
    max_attempts: int,
    base_delay: float,
    retry_if: Optional[Callable[[Any], bool]] = None,
    retry_on: Sequence[Type[BaseException]] = (),
    sleep: Callable[[float], None] = time.sleep,
    logger: logging.Logger = LOGGER,
) -> Retrying:
    """Build a synchronous retry controller.

    ``retry_if`` decides whether a returned value is a failure worth
    retrying; ``retry_on`` lists exception types that are retried. After
    ``max_attempts`` the last value is returned or the last exception raised.
    """

    return Retrying(
        sleep=sleep,
        **_policy(
            max_attempts=max_attempts,
            base_delay=base_delay,
            retry_if=retry_if,
            retry_on=retry_on,
            logger=logger,
        ),
    )


def async_retrying(
    *,
    max_attempts: int,
    base_delay: float,
    retry_if: Optional[Callable[[Any], bool]] = None,
    retry_on: Sequence[Type[BaseException]] = (),
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    logger: logging.Logger = LOGGER,
) -> AsyncRetrying:
    """Asynchronous counterpart of :func:`retrying`."""

    return AsyncRetrying(
        sleep=sleep,
        **_policy(
            max_attempts=max_attempts,
            base_delay=base_delay,
            retry_if=retry_if,
            retry_on=retry_on,
            logger=logger,
        ),
    )
