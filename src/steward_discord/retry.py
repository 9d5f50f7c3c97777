"""Retry helpers for startup dependencies that may come up late."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from functools import wraps
from typing import ParamSpec, TypeVar

from loguru import logger

P = ParamSpec("P")
T = TypeVar("T")


def exponential_backoff_retry(
    max_retries: int = 5,
    base_delay: float = 1.0,
    operation_name: str = "operation",
    *,
    max_delay: float = 30.0,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> Callable[[Callable[P, Awaitable[T]]], Callable[P, Awaitable[T]]]:
    """Retry an async callable, doubling the delay after each failure.

    Args:
        max_retries: Total attempts before the last error is re-raised
        base_delay: Delay after the first failure, in seconds
        operation_name: Used in log lines
        max_delay: Upper bound for a single delay
        retry_on: Exception types worth retrying; anything else raises at once
        sleep: Awaitable sleep, replaceable in tests
    """

    def decorator(func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            attempt = 1
            while True:
                try:
                    return await func(*args, **kwargs)
                except retry_on as exc:
                    if attempt >= max_retries:
                        logger.error("{} failed after {} attempts: {}", operation_name, attempt, exc)
                        raise
                    delay = min(base_delay * 2 ** (attempt - 1), max_delay)
                    logger.warning(
                        "{} failed (attempt {}/{}): {}; retrying in {}s",
                        operation_name,
                        attempt,
                        max_retries,
                        exc,
                        delay,
                    )
                    await sleep(delay)
                    attempt += 1

        return wrapper

    return decorator
