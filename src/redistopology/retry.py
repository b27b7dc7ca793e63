"""Retry utilities with exponential backoff."""

import asyncio
import random
from collections.abc import Awaitable, Callable
from typing import TypeVar

from loguru import logger

from redistopology.exceptions import TopologyError

T = TypeVar("T")


def is_retryable(error: Exception) -> bool:
    """Unreachable servers and unconverged sentinels are worth another try."""
    return isinstance(error, TopologyError) and error.retryable


async def retry_with_backoff(
    func: Callable[[], Awaitable[T]],
    max_attempts: int = 5,
    base_delay: float = 0.1,
    max_delay: float = 10.0,
    jitter: float = 0.1,
    retry_if: Callable[[Exception], bool] = is_retryable,
) -> T:
    """Retry an async function with exponential backoff.

    Args:
        func: Async function to retry
        max_attempts: Maximum number of attempts
        base_delay: Initial delay between retries in seconds
        max_delay: Maximum delay between retries
        jitter: Random jitter factor (0-1)
        retry_if: Errors for which this returns False are raised immediately

    Returns:
        Result of the function

    Raises:
        The last exception if all attempts fail
    """
    last_error: Exception | None = None

    for attempt in range(max_attempts):
        try:
            return await func()
        except Exception as e:
            if not retry_if(e):
                raise
            last_error = e

            if attempt == max_attempts - 1:
                break

            # Calculate delay with exponential backoff
            delay = min(base_delay * (2**attempt), max_delay)

            # Add jitter
            if jitter > 0:
                delay = delay * (1 + random.uniform(-jitter, jitter))

            logger.debug("attempt {} failed ({}), retrying in {:.2f}s", attempt + 1, e, delay)
            await asyncio.sleep(delay)

    assert last_error is not None
    raise last_error
