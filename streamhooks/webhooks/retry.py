"""
Retry with exponential backoff for hub and Helix requests.

Used by the subscription seeding policy, whose individual requests can
fail transiently (rate limiting, connection resets) without the whole
seeding run being abandoned.

Example:
    policy = RetryPolicy(max_retries=3, initial_delay=1.0)
    streams = await retry_call(manager.api_get, "/streams", policy=policy)
"""

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import httpx

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_RETRYABLE: tuple[type[Exception], ...] = (httpx.TransportError, httpx.HTTPStatusError)


class RetryExhausted(Exception):
    """Raised when all retry attempts are exhausted.

    The exception that caused the final failure is chained as __cause__.

    Attributes:
        attempts: Number of attempts made before exhaustion
    """

    def __init__(self, message: str, attempts: int = 0):
        super().__init__(message)
        self.message = message
        self.attempts = attempts


class RetryPolicy:
    """Exponential backoff with jitter.

    The delay for retry N (0-indexed) is
    ``min(initial_delay * multiplier ** N, max_delay)`` varied by
    ``+/- jitter`` as a fraction of that delay.
    """

    def __init__(
        self,
        max_retries: int = 3,
        initial_delay: float = 1.0,
        max_delay: float = 60.0,
        multiplier: float = 2.0,
        jitter: float = 0.1,
    ):
        if max_retries < 0:
            raise ValueError("max_retries must be non-negative")
        if initial_delay < 0:
            raise ValueError("initial_delay must be non-negative")
        if max_delay < 0:
            raise ValueError("max_delay must be non-negative")
        if multiplier < 1:
            raise ValueError("multiplier must be at least 1.0")
        if not 0.0 <= jitter <= 1.0:
            raise ValueError("jitter must be between 0.0 and 1.0")

        self.max_retries = max_retries
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self.multiplier = multiplier
        self.jitter = jitter

    def get_delay(self, attempt: int) -> float:
        base_delay = min(
            self.initial_delay * (self.multiplier**attempt),
            self.max_delay,
        )
        if self.jitter > 0:
            jitter_range = base_delay * self.jitter
            return max(0.0, base_delay + random.uniform(-jitter_range, jitter_range))
        return base_delay

    def __repr__(self) -> str:
        return (
            f"RetryPolicy("
            f"max_retries={self.max_retries}, "
            f"initial_delay={self.initial_delay}, "
            f"max_delay={self.max_delay}, "
            f"multiplier={self.multiplier}, "
            f"jitter={self.jitter})"
        )


async def retry_call(
    func: Callable[..., Awaitable[T]],
    *args: Any,
    policy: RetryPolicy | None = None,
    retryable_exceptions: tuple[type[Exception], ...] = DEFAULT_RETRYABLE,
    **kwargs: Any,
) -> T:
    """Await ``func(*args, **kwargs)``, retrying on ``retryable_exceptions``.

    Other exceptions propagate immediately.

    Raises:
        RetryExhausted: When every attempt failed; the last error is the cause.
    """
    retry_policy = policy or RetryPolicy()
    name = getattr(func, "__name__", repr(func))
    total_attempts = retry_policy.max_retries + 1
    last_exception: Exception | None = None

    for attempt in range(total_attempts):
        try:
            return await func(*args, **kwargs)
        except retryable_exceptions as e:
            last_exception = e
            if attempt < retry_policy.max_retries:
                delay = retry_policy.get_delay(attempt)
                logger.warning(
                    "Retry attempt %d/%d failed for %s: %s. Retrying in %.2fs...",
                    attempt + 1,
                    total_attempts,
                    name,
                    str(e),
                    delay,
                    extra={"function": name, "error_type": type(e).__name__},
                )
                await asyncio.sleep(delay)

    logger.error(
        "All %d retry attempts exhausted for %s",
        total_attempts,
        name,
        extra={"function": name, "final_error": str(last_exception)},
    )
    raise RetryExhausted(
        f"Exhausted {retry_policy.max_retries} retries for {name}",
        attempts=total_attempts,
    ) from last_exception
