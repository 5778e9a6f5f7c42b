"""Retry policy: attempt budget and inter-attempt delay.

delay(attempt) resolves the configured RetryDelay for the zero-based index of
the attempt that just failed. should_retry(attempt) is False after the last
permitted attempt, so no delay ever follows the final failure.

Backoff helper:
  delay = min(base * 2^attempt + jitter, max_delay)
  jitter = random(0, base * 0.5)
"""

from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from batchgpt.core.metrics import record_retry_wait
from batchgpt.gateway.errors import ConfigurationError
from batchgpt.gateway.types import ComputedDelay, FixedDelay, RetryDelay


@dataclass(frozen=True)
class RetryPolicy:
    """Number of retries plus the delay between attempts."""

    retry_count: int = 0
    delay: RetryDelay = field(default_factory=FixedDelay)
    sleep: Callable[[float], Awaitable[None]] = field(default=asyncio.sleep, compare=False)

    def __post_init__(self):
        if self.retry_count < 0:
            raise ConfigurationError(f"retry_count must be >= 0, got {self.retry_count}")

    def should_retry(self, attempt: int) -> bool:
        """True if another attempt is permitted after ``attempt`` (zero-based) failed."""
        return attempt < self.retry_count

    def delay_for(self, attempt: int) -> float:
        """Resolve the delay after failed attempt ``attempt``.

        A computed delay that raises or returns a negative duration surfaces as
        ConfigurationError.
        """
        try:
            return self.delay.resolve(attempt)
        except ConfigurationError:
            raise
        except Exception as e:
            raise ConfigurationError(f"retry_delay failed for attempt {attempt}: {e}") from e

    async def wait(self, attempt: int, seconds: float | None = None) -> float:
        """Await the delay that follows failed attempt ``attempt``. Returns seconds waited.

        Pass ``seconds`` when the delay was already resolved for this attempt.
        """
        if seconds is None:
            seconds = self.delay_for(attempt)
        if seconds > 0:
            await self.sleep(seconds)
            record_retry_wait(seconds)
        return seconds


def calculate_backoff(attempt: int, base_delay: float = 1.0, max_delay: float = 60.0, jitter: bool = True) -> float:
    """Exponential backoff with optional jitter, capped at max_delay."""
    exponential = base_delay * (2**attempt)
    if jitter:
        exponential += random.uniform(0, base_delay * 0.5)
    return min(exponential, max_delay)


def exponential_backoff(base_delay: float = 1.0, max_delay: float = 60.0, jitter: bool = True) -> ComputedDelay:
    """A ComputedDelay doubling from ``base_delay`` on every failed attempt."""
    if base_delay < 0 or max_delay < 0:
        raise ConfigurationError("backoff delays must be non-negative")
    return ComputedDelay(lambda attempt: calculate_backoff(attempt, base_delay, max_delay, jitter))
