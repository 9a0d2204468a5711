"""Retry policy shared by all remote calls.

This module provides:
- The fixed backoff schedule and retryable status codes
- NETWORK_EXCEPTIONS: httpx errors that indicate connectivity issues
- parse_retry_after: server-supplied backoff hints
- retry_with_backoff: generic retry helper for calls outside the transport
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from typing import Any

import httpx

logger = logging.getLogger(__name__)

MAX_RETRIES = 3
RETRY_DELAYS: tuple[float, ...] = (1.0, 3.0, 5.0)  # seconds

RETRYABLE_STATUS_CODES = frozenset({401, 408, 429, 500, 502, 503, 504})

# Timeouts, refused/reset connections and DNS failures
NETWORK_EXCEPTIONS: tuple[type[Exception], ...] = (
    httpx.TimeoutException,
    httpx.NetworkError,
    httpx.RemoteProtocolError,
)


def backoff_delay(attempt: int, delays: Sequence[float] = RETRY_DELAYS) -> float:
    """Delay before retry number ``attempt`` (0-based), clamped to the schedule."""
    if not delays:
        return 0.0
    return delays[min(attempt, len(delays) - 1)]


def parse_retry_after(value: str | None, now: datetime | None = None) -> float | None:
    """Parse a Retry-After header into seconds.

    Accepts both delta-seconds and HTTP-date forms. Returns None when the
    header is absent or unparseable.
    """
    if not value:
        return None
    value = value.strip()
    if value.isdigit():
        return float(value)
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=UTC)
    now = now or datetime.now(UTC)
    return max(0.0, (when - now).total_seconds())


def retry_with_backoff(
    func: Callable[[], Any],
    max_retries: int = MAX_RETRIES,
    delays: Sequence[float] = RETRY_DELAYS,
    retryable_exceptions: tuple[type[Exception], ...] = NETWORK_EXCEPTIONS,
    sleep: Callable[[float], None] = time.sleep,
) -> Any:
    """Execute a function, retrying on the given exceptions.

    Args:
        func: Function to execute.
        max_retries: Maximum number of retries after the first attempt.
        delays: Backoff schedule in seconds.
        retryable_exceptions: Tuple of exception types to retry on.
        sleep: Sleep function (injectable for tests).

    Returns:
        Result of the function.

    Raises:
        The last exception if all retries fail.
    """
    for attempt in range(max_retries + 1):
        try:
            return func()
        except retryable_exceptions as e:
            if attempt == max_retries:
                logger.error(f"All {max_retries} retries failed: {e}")
                raise
            delay = backoff_delay(attempt, delays)
            logger.warning(
                f"Attempt {attempt + 1}/{max_retries + 1} failed: {e}. "
                f"Retrying in {delay:.1f}s..."
            )
            sleep(delay)
    raise RuntimeError("Unexpected retry loop exit")
