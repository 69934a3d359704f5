"""
Retry decorator with exponential backoff for shardkv commands.

Routing information goes stale whenever a region splits, merges or changes
leader. Commands that fail for such a reason are retried with exponential
backoff and jitter until they succeed or a retry ceiling is reached.
"""
import asyncio
import functools
import inspect
import logging
import random
from typing import Awaitable, Callable, Optional, Type, TypeVar

from typing_extensions import ParamSpec

from shardkv.exceptions import RetryError

P = ParamSpec("P")
R = TypeVar("R")

logger = logging.getLogger(__name__)


def retry(
    *exceptions: Type[BaseException],
    max_retries: int = 3,
    initial_delay: float = 1.0,
    max_delay: float = 30.0,
    backoff_factor: float = 2.0,
    jitter: float = 0.1,
) -> Callable[[Callable[P, Awaitable[R]]], Callable[P, Awaitable[R]]]:
    """
    Decorator that retries the wrapped coroutine function with exponential backoff.

    Exceptions not listed in ``exceptions`` propagate immediately.

    Args:
        exceptions: Exception types to catch and retry on.
        max_retries: Maximum number of retry attempts after the first call.
        initial_delay: Initial delay between retries in seconds.
        max_delay: Maximum delay between retries in seconds.
        backoff_factor: Multiplier for the delay between retries.
        jitter: Random jitter factor to avoid thundering herd problem.

    Returns:
        A decorator for coroutine functions.

    Raises:
        RetryError: From the wrapped function once every attempt failed, with the
            last caught exception attached as ``original_exception``.
    """
    if not exceptions:
        exceptions = (Exception,)

    def decorator(func: Callable[P, Awaitable[R]]) -> Callable[P, Awaitable[R]]:
        if not inspect.iscoroutinefunction(func):
            raise TypeError(f"retry() expects a coroutine function, got {func!r}")

        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            last_exception: Optional[BaseException] = None
            delay = initial_delay

            for attempt in range(max_retries + 1):
                try:
                    return await func(*args, **kwargs)
                except exceptions as e:
                    last_exception = e
                    if attempt == max_retries:
                        break

                    jitter_amount = random.uniform(1 - jitter, 1 + jitter)
                    current_delay = min(delay * jitter_amount, max_delay)

                    logger.warning(
                        "Attempt %s/%s of %s failed: %s. Retrying in %.3fs...",
                        attempt + 1,
                        max_retries + 1,
                        func.__name__,
                        str(e),
                        current_delay,
                    )

                    await asyncio.sleep(current_delay)
                    delay = min(delay * backoff_factor, max_delay)

            logger.error(
                "All %s attempts of %s failed. Last error: %s",
                max_retries + 1,
                func.__name__,
                str(last_exception),
            )
            raise RetryError(
                f"{func.__name__} failed after {max_retries + 1} attempts",
                last_exception,
            ) from last_exception

        return wrapper

    return decorator
