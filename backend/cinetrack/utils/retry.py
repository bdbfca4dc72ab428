"""
retry.py

Exponential-backoff retry for outbound HTTP calls that hit transient
429/5xx responses or transport errors.
"""
import asyncio
import logging
import random
from typing import Optional

import httpx

logger = logging.getLogger(__name__)


def is_retryable_status(status_code: int) -> bool:
    return status_code == 429 or status_code >= 500


def compute_delay(attempt: int, factor: float = 2, min_timeout: float = 0.1,
                  max_timeout: float = 10.0, jitter: bool = False) -> float:
    """Delay in seconds before the next attempt (attempt numbers start at 1)."""
    delay = min(min_timeout * (factor ** (attempt - 1)), max_timeout)
    if jitter:
        delay = random.random() * delay
    return delay


async def fetch_with_retry(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    retries: int = 3,
    factor: float = 2,
    min_timeout: float = 0.1,
    max_timeout: float = 10.0,
    jitter: bool = False,
    timeout: Optional[float] = None,
    **kwargs,
) -> httpx.Response:
    """Send a request, retrying retryable responses up to ``retries`` attempts.

    Returns the first non-retryable response. After the last attempt the
    last error is raised: an ``httpx.HTTPStatusError`` for a retryable
    status, or the transport exception itself.
    """
    if timeout is not None:
        kwargs["timeout"] = timeout

    last_error: Optional[Exception] = None
    for attempt in range(1, retries + 1):
        delay = compute_delay(attempt, factor, min_timeout, max_timeout, jitter)
        try:
            response = await client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            last_error = e
            logger.error(f"Fetch error on attempt {attempt}/{retries} for {url}: {e}")
        else:
            if not is_retryable_status(response.status_code):
                return response
            logger.warning(
                f"Retryable response {response.status_code} on attempt {attempt}/{retries} for {url}, delay {delay:.3f}s"
            )
            last_error = httpx.HTTPStatusError(
                f"HTTP {response.status_code}", request=response.request, response=response
            )

        if attempt < retries:
            await asyncio.sleep(delay)

    raise last_error or RuntimeError(f"No attempts made for {url}")
