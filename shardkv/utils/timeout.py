"""
Timeout utilities for shardkv operations.

Lock resolution talks to a cluster whose topology can keep shifting; these
helpers put an upper bound on how long a caller waits for it.
"""
import asyncio
from typing import Awaitable, Optional, TypeVar

from shardkv.exceptions import OperationError

R = TypeVar("R")


class TimeoutError(OperationError):
    """Raised when an operation times out."""
    pass


class TimeoutContext:
    """
    Runs awaitables under a deadline.

    The awaited task is cancelled when the deadline passes, so cancellation
    reaches every suspension point inside it.
    """

    def __init__(self, seconds: float, timeout_error_message: Optional[str] = None):
        """
        Initialize timeout context.

        Args:
            seconds: Timeout duration in seconds
            timeout_error_message: Custom error message for timeout
        """
        self.seconds = seconds
        self.timeout_error_message = timeout_error_message

    async def run_async(self, coro: Awaitable[R]) -> R:
        """
        Run an async operation with timeout.

        Args:
            coro: Coroutine to run

        Returns:
            Result of the coroutine

        Raises:
            TimeoutError: If the operation times out
        """
        try:
            return await asyncio.wait_for(coro, timeout=self.seconds)
        except asyncio.TimeoutError:
            message = self.timeout_error_message or f"Async operation timed out after {self.seconds}s"
            raise TimeoutError(message)


def with_timeout(seconds: float, timeout_error_message: Optional[str] = None) -> TimeoutContext:
    """
    Create a timeout context.

    Args:
        seconds: Timeout duration in seconds
        timeout_error_message: Custom error message for timeout

    Returns:
        TimeoutContext instance
    """
    return TimeoutContext(seconds, timeout_error_message)
