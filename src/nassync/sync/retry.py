"""Retry logic with exponential backoff.

This module provides:
- backoff_delays: The delay schedule used between attempts
- retry_with_backoff: Exponential backoff retry that can be interrupted
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterator
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_INITIAL_BACKOFF = 1.0  # seconds
DEFAULT_MAX_BACKOFF = 60.0  # seconds
DEFAULT_BACKOFF_MULTIPLIER = 2.0


def backoff_delays(
    initial_backoff: float = DEFAULT_INITIAL_BACKOFF,
    max_backoff: float = DEFAULT_MAX_BACKOFF,
    backoff_multiplier: float = DEFAULT_BACKOFF_MULTIPLIER,
) -> Iterator[float]:
    """Yield an endless exponential backoff schedule."""
    backoff = initial_backoff
    while True:
        yield backoff
        backoff = min(backoff * backoff_multiplier, max_backoff)


def retry_with_backoff(
    func: Callable[[], Any],
    max_retries: int,
    initial_backoff: float = DEFAULT_INITIAL_BACKOFF,
    max_backoff: float = DEFAULT_MAX_BACKOFF,
    backoff_multiplier: float = DEFAULT_BACKOFF_MULTIPLIER,
    should_retry: Callable[[Exception], bool] = lambda e: True,
    retryable_exceptions: tuple[type[Exception], ...] = (Exception,),
    stop_event: threading.Event | None = None,
    description: str = "operation",
) -> Any:
    """Execute a function with exponential backoff retry.

    Args:
        func: Function to execute.
        max_retries: Maximum number of retry attempts after the first call.
        initial_backoff: Initial backoff time in seconds.
        max_backoff: Maximum backoff time in seconds.
        backoff_multiplier: Multiplier for each retry.
        should_retry: Predicate deciding whether a caught exception is retried.
        retryable_exceptions: Tuple of exception types to catch.
        stop_event: When set during a backoff wait, the last error is raised
            immediately instead of retrying.
        description: Label used in log messages.

    Returns:
        Result of the function.

    Raises:
        The last exception if all retries fail or it is not retryable.
    """
    delays = backoff_delays(initial_backoff, max_backoff, backoff_multiplier)

    for attempt in range(max_retries + 1):
        try:
            return func()
        except retryable_exceptions as e:
            if attempt == max_retries or not should_retry(e):
                raise

            backoff = next(delays)
            logger.warning(
                "%s attempt %d/%d failed: %s. Retrying in %.1fs...",
                description,
                attempt + 1,
                max_retries + 1,
                e,
                backoff,
            )
            if stop_event is not None:
                if stop_event.wait(backoff):
                    logger.info("Shutdown requested, abandoning %s retries", description)
                    raise
            else:
                time.sleep(backoff)

    raise RuntimeError("Unexpected retry loop exit")
