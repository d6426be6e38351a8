"""Deadline and bounded-retry combinator for every external call.

Extraction, each embedding batch, each storage write and the query
embedding all go through :func:`with_deadline`, so timeout and retry
semantics are uniform across collaborators:

- each attempt is bounded by ``timeout`` and, when given, by the time left
  before an absolute ``deadline`` (``time.monotonic()`` based);
- a timed-out attempt raises :class:`DeadlineExceededError` and is never
  retried;
- exceptions listed in ``retry_on`` are retried at most ``retries`` times
  with exponential backoff, and only while the overall deadline allows
  both the sleep and another attempt.
"""

from __future__ import annotations

import asyncio
import random
import time
from typing import Awaitable, Callable, TypeVar

import structlog

from docrag.utils.errors import DeadlineExceededError
from docrag.utils.logging import get_logger

_T = TypeVar("_T")

_logger: structlog.BoundLogger = get_logger(__name__)


def calculate_backoff(
    attempt: int,
    initial_backoff: float,
    backoff_multiplier: float = 2.0,
    max_backoff: float = 30.0,
    jitter_percent: float = 0.0,
) -> float:
    """Return the sleep before retry number *attempt* (0-indexed).

    Exponential growth capped at *max_backoff*, with optional symmetric
    jitter (``0.25`` means +/-25%).
    """
    backoff = min(initial_backoff * (backoff_multiplier ** attempt), max_backoff)
    if jitter_percent > 0:
        jitter_range = backoff * jitter_percent
        backoff += random.uniform(-jitter_range, jitter_range)
    return max(0.0, backoff)


def remaining(deadline: float | None) -> float | None:
    """Seconds left before *deadline*, or ``None`` when there is no deadline."""
    if deadline is None:
        return None
    return deadline - time.monotonic()


async def with_deadline(
    call: Callable[[], Awaitable[_T]],
    *,
    timeout: float,
    operation: str,
    deadline: float | None = None,
    retries: int = 0,
    backoff: float = 0.0,
    retry_on: tuple[type[BaseException], ...] = (),
    provider_name: str | None = None,
) -> _T:
    """Await ``call()`` under a per-attempt timeout with bounded retries.

    Parameters
    ----------
    call:
        Zero-argument factory returning a fresh awaitable per attempt.
    timeout:
        Per-attempt budget in seconds.
    operation:
        Name used in log events and in the raised error.
    deadline:
        Optional absolute ``time.monotonic()`` value no attempt may run past.
    retries:
        Maximum number of retries after the first attempt.
    backoff:
        Initial backoff in seconds; doubles per retry.
    retry_on:
        Exception types considered transient.
    provider_name:
        Attached to :class:`DeadlineExceededError` for log scanning.

    Returns
    -------
    _T
        Whatever the awaitable returned.

    Raises
    ------
    DeadlineExceededError
        When an attempt times out or the overall deadline is already spent.
    """
    attempt = 0
    while True:
        budget = timeout
        left = remaining(deadline)
        if left is not None:
            if left <= 0:
                raise DeadlineExceededError(operation, 0.0, provider_name=provider_name)
            budget = min(budget, left)

        try:
            return await asyncio.wait_for(call(), timeout=budget)
        except asyncio.TimeoutError as exc:
            _logger.warning(
                "deadline_exceeded",
                operation=operation,
                timeout=round(budget, 3),
                attempt=attempt + 1,
            )
            raise DeadlineExceededError(operation, budget, provider_name=provider_name) from exc
        except retry_on as exc:
            if attempt >= retries:
                raise
            sleep_for = calculate_backoff(attempt, backoff)
            left = remaining(deadline)
            if left is not None and left <= sleep_for:
                _logger.warning(
                    "retry_skipped_no_budget",
                    operation=operation,
                    error=str(exc),
                    remaining=round(left, 3),
                )
                raise
            _logger.info(
                "retrying_after_error",
                operation=operation,
                attempt=attempt + 1,
                backoff=round(sleep_for, 3),
                error=str(exc),
            )
            attempt += 1
            await asyncio.sleep(sleep_for)
