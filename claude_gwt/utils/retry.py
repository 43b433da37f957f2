"""
Retry Module

Bounded exponential backoff for idempotent git and tmux queries.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from ..core.errors import CommandTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_MESSAGES = [
    "unable to access",
    "could not read",
    "cannot lock ref",
    "resource temporarily unavailable",
    "device or resource busy",
    "index.lock",
    "ebusy",
    "eagain",
]


def is_retryable_error(error: BaseException) -> bool:
    """True for timeouts and transient git/filesystem failures."""
    if isinstance(error, CommandTimeoutError):
        return True
    text = str(error).lower()
    stderr = getattr(error, "stderr", "") or ""
    text = f"{text} {stderr.lower()}"
    return any(marker in text for marker in RETRYABLE_MESSAGES)


async def retry_async(operation: Callable[[], Awaitable[T]],
                      max_attempts: int = 3,
                      initial_delay: float = 0.1,
                      max_delay: float = 5.0,
                      backoff_factor: float = 2.0,
                      should_retry: Optional[Callable[[BaseException], bool]] = None,
                      on_retry: Optional[Callable[[BaseException, int], None]] = None) -> T:
    """
    Await ``operation()`` until it succeeds or attempts run out.

    The delay before attempt n+1 is ``min(initial_delay * backoff_factor**(n-1), max_delay)``.
    The last error is re-raised unchanged, and an error rejected by
    ``should_retry`` is re-raised immediately.

    Args:
        operation: Zero-argument coroutine factory
        max_attempts: Total attempts including the first
        initial_delay: Delay in seconds after the first failure
        max_delay: Upper bound for any single delay
        backoff_factor: Multiplier applied per attempt
        should_retry: Predicate deciding whether an error is transient
        on_retry: Called with (error, attempt) before each wait

    Returns:
        The operation's result
    """
    attempt = 1
    while True:
        try:
            return await operation()
        except asyncio.CancelledError:
            raise
        except Exception as error:
            if attempt >= max_attempts:
                raise
            if should_retry is not None and not should_retry(error):
                raise

            delay = min(initial_delay * (backoff_factor ** (attempt - 1)), max_delay)
            logger.debug("Retrying after failure", extra={"context": {
                "attempt": attempt, "delay": delay, "error": str(error)}})
            if on_retry is not None:
                on_retry(error, attempt)
            await asyncio.sleep(delay)
            attempt += 1
