"""Exponential backoff for platform calls.

Only :class:`~launchpad.core.exceptions.PlatformError` instances flagged
``retryable`` are repeated; authorization failures and programming errors
propagate on the first attempt.
"""

import asyncio
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from launchpad.config import Settings
from launchpad.core.exceptions import PlatformError
from launchpad.utils.logging import get_logger

T = TypeVar("T")

logger = get_logger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff with jitter.

    Delay before retry ``n`` (zero-based) is
    ``min(base_delay * multiplier ** n, max_delay)`` +/- ``jitter_range``.
    """

    max_attempts: int = 3
    base_delay: float = 2.0
    max_delay: float = 30.0
    multiplier: float = 2.0
    jitter_range: float = 0.25

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.retry_max_attempts,
            base_delay=settings.retry_base_delay_seconds,
            max_delay=settings.retry_max_delay_seconds,
        )

    def next_delay(self, attempt: int) -> float:
        delay = min(self.base_delay * (self.multiplier**attempt), self.max_delay)
        if self.jitter_range and delay:
            jitter = delay * self.jitter_range
            delay += random.uniform(-jitter, jitter)
        return max(0.0, delay)

    def should_retry(self, attempt: int, error: Exception) -> bool:
        """``attempt`` is the one-based number of the attempt that just failed."""
        if attempt >= self.max_attempts:
            return False
        return isinstance(error, PlatformError) and error.retryable


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    description: str,
    on_retry: Callable[[int, Exception], None] | None = None,
) -> T:
    """Run ``operation`` until it succeeds or the policy gives up.

    ``on_retry`` is called with the failed attempt number before sleeping,
    which lets callers keep a resource's ``retry_count`` current.
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            return await operation()
        except Exception as e:
            if not policy.should_retry(attempt, e):
                raise
            delay = policy.next_delay(attempt - 1)
            logger.warning(
                "retry.attempt_failed",
                operation=description,
                attempt=attempt,
                max_attempts=policy.max_attempts,
                delay_s=round(delay, 2),
                error=str(e),
            )
            if on_retry is not None:
                on_retry(attempt, e)
            await asyncio.sleep(delay)
