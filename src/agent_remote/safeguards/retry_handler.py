"""Retry handler with exponential backoff for provider calls."""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from ..core.errors import ProviderAPIError, RateLimitError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryHandler:
    """
    Retries provider calls.

    Logic:
    - Rate-limit failures: wait min(initial * multiplier^attempt, max) and retry,
      up to max_retries attempts (attempt is 0-indexed)
    - Any other failure: retry once, then propagate
    """

    def __init__(
        self,
        initial_backoff_ms: int = 2000,
        max_backoff_ms: int = 30000,
        multiplier: float = 2,
        max_retries: int = 3,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self.initial_backoff_ms = initial_backoff_ms
        self.max_backoff_ms = max_backoff_ms
        self.multiplier = multiplier
        self.max_retries = max_retries
        self._sleep = sleep or asyncio.sleep

    def calculate_backoff(self, attempt: int) -> int:
        """
        Calculate backoff in milliseconds for a 0-indexed attempt.

        Formula: initial * multiplier^attempt, capped at max_backoff
        """
        backoff = self.initial_backoff_ms * (self.multiplier ** attempt)
        return int(min(backoff, self.max_backoff_ms))

    async def call_with_retry(
        self,
        func: Callable[[], Awaitable[T]],
        description: str = "provider call",
    ) -> T:
        """Await ``func()`` applying the retry policy."""
        attempt = 0
        generic_retried = False
        while True:
            try:
                return await func()
            except RateLimitError as e:
                if attempt >= self.max_retries - 1:
                    logger.error(f"❌ {description} rate limited after {attempt + 1} attempts")
                    raise
                wait_ms = self.calculate_backoff(attempt)
                logger.warning(
                    f"⏳ {description} rate limited, retrying in {wait_ms / 1000:.1f}s "
                    f"(attempt {attempt + 1}/{self.max_retries}): {e}"
                )
                await self._sleep(wait_ms / 1000)
                attempt += 1
            except ProviderAPIError as e:
                if generic_retried:
                    raise
                generic_retried = True
                logger.warning(f"⚠️ {description} failed, retrying once: {e}")
