"""
Retry decorator for network lookups.

Provides automatic retry with exponential backoff for HTTP and RPC reads.
Swaps are never retried through this decorator; the executor owns its own
venue fallback.
"""

import asyncio
import logging
from functools import wraps
from typing import Any, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar('T')


def async_retry(
    max_attempts: int = 3,
    delay: float = 0.5,
    backoff: float = 2.0,
    exceptions: tuple = (Exception,)
):
    """
    Retry async function with exponential backoff.

    Args:
        max_attempts: Maximum number of attempts
        delay: Initial delay between retries (seconds)
        backoff: Multiplier for delay on each retry
        exceptions: Tuple of exception types to catch

    Example:
        @async_retry(max_attempts=2, exceptions=(httpx.HTTPError,))
        async def fetch_metadata(mint):
            ...
    """
    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(func)
        async def wrapper(*args, **kwargs):
            for attempt in range(max_attempts):
                try:
                    return await func(*args, **kwargs)
                except exceptions as e:
                    if attempt == max_attempts - 1:
                        logger.warning(
                            "%s failed after %d attempts: %s",
                            func.__name__, max_attempts, e,
                        )
                        raise

                    current_delay = delay * (backoff ** attempt)
                    logger.debug(
                        "%s failed (attempt %d/%d), retrying in %.1fs: %s",
                        func.__name__, attempt + 1, max_attempts, current_delay, e,
                    )
                    await asyncio.sleep(current_delay)

        return wrapper
    return decorator
