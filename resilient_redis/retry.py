"""
Result-aware retry for caller coroutines returning ``CacheResult``.

This is the only retry layer: redis-py's internal retries are disabled on
every client the session builds, and the atomic primitives run exactly once
per invocation.
"""

import asyncio
import logging
import random
from functools import wraps
from typing import Callable, Optional

from redis.exceptions import (
    BusyLoadingError,
    ConnectionError,
    ReadOnlyError,
    TimeoutError,
)

from .errors import CacheResult, ErrorCode

RETRYABLE_CODES = frozenset({ErrorCode.CONNECTION_FAILED, ErrorCode.TIMEOUT})

RETRYABLE_EXCEPTIONS = (
    ConnectionError,
    TimeoutError,
    ReadOnlyError,
    BusyLoadingError,
)


def is_retryable(result: CacheResult) -> bool:
    """A failure worth another attempt: no connection, a timeout, or a transient store error."""
    if result.ok:
        return False
    return result.code in RETRYABLE_CODES or isinstance(result.error, RETRYABLE_EXCEPTIONS)


def backoff_delay(attempt: int, base: float, cap: float) -> float:
    """Exponential backoff with up to 10% jitter, capped at ``cap`` seconds."""
    backoff = min(base * (2 ** attempt), cap)
    return backoff + random.uniform(0, 0.1 * backoff)


def retry_result(
    max_retries: int = 3,
    base_delay: float = 0.008,
    max_delay: float = 0.512,
    logger: Optional[logging.Logger] = None,
) -> Callable:
    """
    Retry a coroutine while it returns a retryable failure.

    Retried: ``CONNECTION_FAILED`` and ``TIMEOUT`` results, and results whose
    error is a transient redis-py exception (connection reset, timeout,
    read-only replica after failover, dataset still loading).

    Args:
        max_retries: Retries after the first attempt
        base_delay: Delay before the first retry, in seconds (doubles each retry)
        max_delay: Upper bound for a single delay, in seconds
        logger: Logger for retry messages

    Example:
        @retry_result(max_retries=3)
        async def reserve_slot():
            return await manager.safe_incr("slots", 1, 10)
    """
    log = logger or logging.getLogger("retry_result")

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(*args, **kwargs) -> CacheResult:
            result = await func(*args, **kwargs)
            for attempt in range(max_retries):
                if not isinstance(result, CacheResult) or not is_retryable(result):
                    return result
                sleep_time = backoff_delay(attempt, base_delay, max_delay)
                log.warning(
                    f"Redis operation failed with {result.code.name} "
                    f"(attempt {attempt + 1}/{max_retries + 1}), "
                    f"retrying in {sleep_time:.3f}s"
                )
                await asyncio.sleep(sleep_time)
                result = await func(*args, **kwargs)

            if isinstance(result, CacheResult) and is_retryable(result):
                log.error(
                    f"Redis operation failed after {max_retries + 1} attempts: {result.code.name}"
                )
            return result

        return wrapper
    return decorator
