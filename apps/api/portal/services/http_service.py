"""HTTP helpers with retry/backoff for outbound integrations (edge functions, email service)."""

from __future__ import annotations

import logging
import random
from typing import Awaitable, Callable

import anyio
import httpx

logger = logging.getLogger(__name__)

RETRYABLE_STATUSES = frozenset({429, 500, 502, 503, 504})


def backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """Exponential delay for `attempt` (0-based) with up to 50% jitter."""
    delay = min(max_delay, base_delay * (2 ** attempt))
    if delay:
        delay += random.uniform(0, delay / 2)
    return delay


async def request_with_retries(
    request_fn: Callable[[], Awaitable[httpx.Response]],
    *,
    max_attempts: int = 3,
    base_delay: float = 0.5,
    max_delay: float = 4.0,
    retry_statuses: frozenset[int] | set[int] | None = None,
) -> httpx.Response:
    """
    Run `request_fn` until it returns a non-retryable response.

    Transport errors are retried and re-raised after the last attempt; a
    retryable status on the last attempt is returned to the caller as is.
    """
    statuses = retry_statuses or RETRYABLE_STATUSES
    last_attempt = max_attempts - 1

    for attempt in range(max_attempts):
        try:
            response = await request_fn()
        except httpx.RequestError as exc:
            if attempt >= last_attempt:
                raise
            logger.warning("HTTP request failed, retrying", exc_info=exc)
        else:
            if response.status_code not in statuses or attempt >= last_attempt:
                return response
            logger.warning("HTTP request returned %s, retrying", response.status_code)

        delay = backoff_delay(attempt, base_delay, max_delay)
        if delay:
            await anyio.sleep(delay)

    raise RuntimeError("request_with_retries requires max_attempts >= 1")
