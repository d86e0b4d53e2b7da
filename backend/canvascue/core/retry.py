"""Retry with exponential backoff for transient failures."""

import asyncio
import logging
import math
from typing import Awaitable, Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class TransientError(Exception):
    """A retryable failure: timeout, connectivity, rate limit or lost race."""

    pass


class RetryConfig:
    """Configuration for retry behavior with exponential backoff."""

    def __init__(
        self,
        max_attempts: int = 3,
        initial_delay: float = 1.0,
        max_delay: float = 60.0,
        backoff_multiplier: float = 2.0,
    ):
        self.max_attempts = max_attempts
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self.backoff_multiplier = backoff_multiplier

    def calculate_delay(self, attempt: int) -> float:
        """Calculate delay for a given attempt using exponential backoff.

        Args:
            attempt: The current attempt number (1-indexed).

        Returns:
            The delay in seconds, capped at max_delay.
        """
        if attempt < 1:
            return self.initial_delay

        delay = self.initial_delay * math.pow(self.backoff_multiplier, attempt - 1)
        return min(delay, self.max_delay)

    def should_retry(self, attempt: int) -> bool:
        """Whether another attempt is allowed after ``attempt`` failed."""
        return attempt < self.max_attempts

    @classmethod
    def from_settings(cls, settings) -> "RetryConfig":
        return cls(
            max_attempts=settings.BILLING_RETRY_MAX_ATTEMPTS,
            initial_delay=settings.BILLING_RETRY_INITIAL_DELAY_SECONDS,
            max_delay=settings.BILLING_RETRY_MAX_DELAY_SECONDS,
            backoff_multiplier=settings.BILLING_RETRY_BACKOFF_MULTIPLIER,
        )


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    *,
    config: RetryConfig,
    retry_on: tuple[type[BaseException], ...] = (TransientError,),
    timeout: Optional[float] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    description: str = "operation",
) -> T:
    """Run ``operation`` until it succeeds or attempts are exhausted.

    Each attempt is bounded by ``timeout`` when given; a timed-out attempt
    counts as a ``TransientError``. Errors outside ``retry_on`` propagate
    immediately. The last retryable error is re-raised once
    ``config.max_attempts`` is reached.

    Args:
        operation: Zero-argument coroutine factory, called once per attempt
        config: Backoff configuration
        retry_on: Exception types that trigger another attempt
        timeout: Per-attempt timeout in seconds
        sleep: Awaitable sleep, injectable for tests
        description: Name used in log messages

    Returns:
        The operation's result
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            if timeout is not None:
                try:
                    return await asyncio.wait_for(operation(), timeout=timeout)
                except asyncio.TimeoutError as e:
                    raise TransientError(
                        f"{description} timed out after {timeout}s"
                    ) from e
            return await operation()
        except retry_on as e:
            if not config.should_retry(attempt):
                logger.warning(
                    f"{description} failed after {attempt} attempt(s): {e}"
                )
                raise
            delay = config.calculate_delay(attempt)
            logger.info(
                f"{description} attempt {attempt} failed ({e}), retrying in {delay:.2f}s"
            )
            await sleep(delay)
