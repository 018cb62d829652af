"""Feed fetch retry strategies.

Exponential backoff with additive jitter, bounded by a fixed attempt budget:

    delay(i) = min(base_delay * 2**i, max_delay) + uniform(0, jitter_max)

where i is the zero-based index of the attempt that just failed. With the
feed defaults (3 attempts, 0.5s base, 0.2s jitter) the waits are roughly
0.5s and 1s; a third wait would be 2s.

Usage:
    strategy = RETRY_PRESETS["feed"]
    for attempt in range(strategy.max_attempts):
        try:
            return await fetch()
        except FeedError:
            if strategy.is_last(attempt):
                raise
            await asyncio.sleep(strategy.compute_delay(attempt))

Callers wait with a plain asyncio.sleep, so cancelling the surrounding
task aborts the wait immediately with CancelledError.
"""

import random
from dataclasses import dataclass
from typing import Callable


@dataclass
class RetryStrategy:
    """Configurable retry strategy for a single feed page."""
    max_attempts: int = 3
    base_delay: float = 0.5
    max_delay: float = 30.0
    jitter_max: float = 0.2
    random_fn: Callable[[], float] = random.random

    @classmethod
    def immediate(cls, max_attempts: int = 3) -> 'RetryStrategy':
        """Retry without waiting between attempts."""
        return cls(max_attempts=max_attempts, base_delay=0.0, jitter_max=0.0)

    @classmethod
    def exponential(
        cls,
        max_attempts: int = 3,
        base_delay: float = 0.5,
        max_delay: float = 30.0,
        jitter_max: float = 0.2,
    ) -> 'RetryStrategy':
        """Exponential backoff with additive jitter."""
        return cls(
            max_attempts=max_attempts,
            base_delay=base_delay,
            max_delay=max_delay,
            jitter_max=jitter_max,
        )

    def is_last(self, attempt_index: int) -> bool:
        return attempt_index >= self.max_attempts - 1

    def compute_delay(self, attempt_index: int) -> float:
        """Compute the wait after the zero-based attempt `attempt_index` failed."""
        delay = min(self.base_delay * (2 ** attempt_index), self.max_delay)
        if self.jitter_max > 0:
            # random() is in [0, 1), so jitter stays strictly below jitter_max
            delay += self.random_fn() * self.jitter_max
        return max(0.0, delay)


# ─── Preset strategies ───

RETRY_PRESETS: dict[str, RetryStrategy] = {
    'feed': RetryStrategy.exponential(max_attempts=3, base_delay=0.5, jitter_max=0.2),
}
