"""
Timeout and retry for capability calls
"""
import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar


logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryStrategy:
    """Backoff strategies"""
    FIXED_DELAY = "fixed"
    LINEAR_BACKOFF = "linear"
    EXPONENTIAL_BACKOFF = "exponential"


@dataclass
class RetryPolicy:
    """Retry policy for a single blocking call"""
    max_attempts: int = 3
    timeout: float = 10.0        # seconds per attempt
    initial_delay: float = 0.5   # seconds
    max_delay: float = 5.0       # seconds
    backoff_factor: float = 2.0
    strategy: str = RetryStrategy.EXPONENTIAL_BACKOFF
    jitter: bool = True

    @classmethod
    def single_attempt(cls, timeout: float = 10.0) -> "RetryPolicy":
        return cls(max_attempts=1, timeout=timeout)

    def delay_for(self, retry_count: int) -> float:
        """Delay before retry number ``retry_count`` (0-based)"""
        if self.strategy == RetryStrategy.FIXED_DELAY:
            delay = self.initial_delay
        elif self.strategy == RetryStrategy.LINEAR_BACKOFF:
            delay = self.initial_delay * (retry_count + 1)
        else:
            delay = self.initial_delay * (self.backoff_factor ** retry_count)

        delay = min(delay, self.max_delay)

        if self.jitter and delay > 0:
            delay += random.uniform(0, delay * 0.1)

        return delay


async def call_with_retry(
    func: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    description: str = "capability call"
) -> T:
    """Await ``func()`` under a timeout, retrying failed attempts with backoff"""
    attempts = max(1, policy.max_attempts)
    last_error: Exception = None

    for attempt in range(attempts):
        try:
            return await asyncio.wait_for(func(), timeout=policy.timeout)
        except asyncio.TimeoutError as e:
            last_error = TimeoutError(f"{description} timed out after {policy.timeout}s")
            last_error.__cause__ = e
        except Exception as e:
            last_error = e

        if attempt + 1 < attempts:
            delay = policy.delay_for(attempt)
            logger.warning(
                f"{description} failed (attempt {attempt + 1}/{attempts}): {last_error}; "
                f"retrying in {delay:.2f}s"
            )
            if delay > 0:
                await asyncio.sleep(delay)

    raise last_error
