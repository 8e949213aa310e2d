"""
Exponential backoff for ledger RPC calls.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, TypeVar

from .errors import RpcError

__all__ = ["Clock", "RetryPolicy", "Sleep", "is_retryable"]

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]
Clock = Callable[[], float]
OnRetry = Callable[[BaseException, int, float], None]


def is_retryable(error: BaseException) -> bool:
    """Only errors the RPC boundary classified as transient are retried."""
    return isinstance(error, RpcError) and error.retryable


@dataclass(frozen=True)
class RetryPolicy:
    """
    Retry schedule for network-bound operations.

    Delays follow ``initial_delay * multiplier ** attempt`` with equal jitter
    (50-100% of the base), capped at ``max_delay``. Because the jittered
    floor of each step equals the ceiling of the previous one, the schedule
    never decreases.
    """

    max_retries: int = 3
    initial_delay: float = 0.5
    max_delay: float = 10.0
    multiplier: float = 2.0
    jitter: bool = True
    rng: random.Random = field(default_factory=random.Random, compare=False, repr=False)

    def delay_for(self, attempt: int) -> float:
        base = self.initial_delay * (self.multiplier ** attempt)
        if self.jitter:
            base *= 0.5 + self.rng.random() * 0.5
        return min(base, self.max_delay)

    def should_retry(self, error: BaseException) -> bool:
        return is_retryable(error)

    async def run(
        self,
        fn: Callable[[], Awaitable[T]],
        operation: str,
        *,
        sleep: Sleep = asyncio.sleep,
        on_retry: Optional[OnRetry] = None,
    ) -> T:
        attempt = 0
        while True:
            try:
                return await fn()
            except RpcError as exc:
                if not self.should_retry(exc):
                    logging.warning(
                        "%s failed with non-retryable %s: %s", operation, exc.kind.value, exc
                    )
                    raise
                if attempt >= self.max_retries:
                    logging.error(
                        "%s failed after %d attempts: %s", operation, attempt + 1, exc
                    )
                    raise
                delay = self.delay_for(attempt)
                logging.info(
                    "Retrying %s after %s (attempt %d, waiting %.2fs)",
                    operation,
                    exc.kind.value,
                    attempt + 1,
                    delay,
                )
                if on_retry is not None:
                    on_retry(exc, attempt, delay)
                await sleep(delay)
                attempt += 1
