"""
Exponential backoff shared by every provider client.

Attempt ``n`` (1-based) that fails with a retryable error is followed by a
delay of ``retry_delay * 2 ** (n - 1)``: with the defaults (1 s base, 3
retries) that is 1 s, 2 s, 4 s and four attempts in total.  After the last
attempt the final exception is re-raised.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from tft_meta_sync.errors import FetchError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def build_retrying(
    max_retries: int,
    retry_delay_seconds: float,
    retry_on: tuple[type[BaseException], ...] = (FetchError,),
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> AsyncRetrying:
    """Return a configured ``AsyncRetrying`` controller.

    Args:
        max_retries: Retries after the first attempt (``0`` disables retrying).
        retry_delay_seconds: Delay before the first retry; doubles each time.
        retry_on: Exception types that trigger a retry; anything else
            propagates immediately.
        sleep: Awaitable sleep, injectable for tests.
    """
    return AsyncRetrying(
        stop=stop_after_attempt(max_retries + 1),
        wait=wait_exponential(multiplier=retry_delay_seconds, exp_base=2),
        retry=retry_if_exception_type(retry_on),
        reraise=True,
        sleep=sleep,
        before_sleep=before_sleep_log(logger, logging.WARNING),
    )


async def retry_async(
    fn: Callable[[], Awaitable[T]],
    max_retries: int,
    retry_delay_seconds: float,
    retry_on: tuple[type[BaseException], ...] = (FetchError,),
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Await ``fn()`` with retry and exponential backoff.

    Raises:
        The last exception raised by ``fn`` once retries are exhausted, or the
        first non-retryable one.
    """
    retrying = build_retrying(max_retries, retry_delay_seconds, retry_on, sleep)
    return await retrying(fn)
