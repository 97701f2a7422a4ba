"""
Retry and timeout policy for upstream calls.

Each GitHub and LLM call is awaited under a timeout and retried a bounded
number of times with exponential backoff (backoff, 2x backoff, 4x backoff,
...). When every attempt fails the last error is re-raised so callers can
apply their own partial-failure handling.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def call_with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    attempts: int = 3,
    backoff_seconds: float = 1.0,
    timeout: Optional[float] = None,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    description: str = "upstream call",
) -> T:
    """
    Await ``operation()`` with a per-attempt timeout and bounded retries.

    Args:
        operation: Zero-argument coroutine factory (called once per attempt)
        attempts: Total number of attempts (>= 1)
        backoff_seconds: Delay before the second attempt; doubles afterwards
        timeout: Per-attempt timeout in seconds (None disables it)
        retry_on: Exception types that trigger another attempt
        description: Human readable name used in log messages

    Returns:
        The operation's result

    Raises:
        asyncio.TimeoutError: If the last attempt timed out
        Exception: The last error raised by the operation, or any error not
            listed in ``retry_on`` immediately
    """
    if attempts < 1:
        raise ValueError("attempts must be at least 1")

    for attempt in range(attempts):
        try:
            if timeout is None:
                return await operation()
            return await asyncio.wait_for(operation(), timeout=timeout)
        except asyncio.TimeoutError:
            if attempt == attempts - 1:
                logger.error(
                    f"{description} timed out after {timeout}s "
                    f"({attempts} attempt(s))"
                )
                raise
            logger.warning(
                f"{description} timed out (attempt {attempt + 1}/{attempts})"
            )
        except retry_on as e:
            if attempt == attempts - 1:
                logger.error(
                    f"{description} failed after {attempts} attempt(s): {str(e)}"
                )
                raise
            logger.warning(
                f"{description} failed (attempt {attempt + 1}/{attempts}): {str(e)}"
            )

        delay = backoff_seconds * (2 ** attempt)
        if delay > 0:
            logger.debug(f"Retrying {description} in {delay:.1f}s")
            await asyncio.sleep(delay)

    # Unreachable: the loop either returns or raises on the last attempt
    raise RuntimeError(f"{description} exhausted retries")
