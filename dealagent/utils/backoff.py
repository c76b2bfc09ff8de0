"""
Reusable retry/backoff policy.

WHAT: Exponential backoff schedule shared by every retrying caller
WHY: Discovery and LLM providers retry transient failures the same way
HOW: Frozen dataclass computing capped delays, with optional jitter
"""

import asyncio
import random
from dataclasses import dataclass


@dataclass(frozen=True)
class BackoffPolicy:
    """
    Exponential backoff: base * 2^(attempt-1), capped at max_delay.

    Attempts are 1-based. With the defaults the waits between attempts
    are 1s and 2s; the cap only matters for larger attempt counts.
    """
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 10.0
    jitter: float = 0.0  # fraction of the delay added at random, 0 disables

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must be non-negative")

    def attempts(self) -> range:
        """Attempt numbers, 1..max_attempts."""
        return range(1, self.max_attempts + 1)

    def should_retry(self, attempt: int) -> bool:
        """True if another attempt remains after `attempt`."""
        return attempt < self.max_attempts

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after a failed `attempt` before the next one."""
        delay = min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)
        if self.jitter > 0 and delay > 0:
            delay = min(delay + random.uniform(0, delay * self.jitter), self.max_delay)
        return delay

    async def wait(self, attempt: int) -> None:
        """Sleep for the delay following `attempt`."""
        delay = self.delay_for(attempt)
        if delay > 0:
            await asyncio.sleep(delay)
