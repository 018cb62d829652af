"""Circuit breaker pattern for resilient feed polling.

Prevents hammering a feed that keeps failing. After N consecutive
failures for a target, the breaker opens and skips polls for
a cooldown period, then lets a single trial through (half-open).

One breaker instance guards one target; the poller keeps a map of them.
"""

import threading
import time
from enum import Enum
from typing import Callable, Optional

import structlog

logger = structlog.get_logger(__name__)

DEFAULT_FAILURE_THRESHOLD = 3
DEFAULT_COOLDOWN_SECONDS = 60.0


class BreakerState(str, Enum):
    """Breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """Per-target circuit breaker.

    Closed: polls run normally.
    Open: polls are rejected until the cooldown deadline passes.
    Half-open: one trial poll; success closes, failure reopens.
    """

    def __init__(
        self,
        failure_threshold: int = DEFAULT_FAILURE_THRESHOLD,
        cooldown_seconds: float = DEFAULT_COOLDOWN_SECONDS,
        name: str = "",
        clock: Callable[[], float] = time.monotonic,
    ):
        self.failure_threshold = failure_threshold if failure_threshold > 0 else DEFAULT_FAILURE_THRESHOLD
        self.cooldown_seconds = cooldown_seconds if cooldown_seconds > 0 else DEFAULT_COOLDOWN_SECONDS
        self.name = name
        self._clock = clock
        self._lock = threading.Lock()
        self._state = BreakerState.CLOSED
        self._failures = 0
        self._open_until: Optional[float] = None

    @property
    def state(self) -> BreakerState:
        with self._lock:
            return self._state

    @property
    def failures(self) -> int:
        with self._lock:
            return self._failures

    def allow(self) -> bool:
        """Check if a poll is allowed right now."""
        with self._lock:
            if self._state == BreakerState.CLOSED:
                return True

            if self._state == BreakerState.OPEN:
                now = self._clock()
                if self._open_until is not None and now > self._open_until:
                    self._state = BreakerState.HALF_OPEN
                    logger.info("Circuit half-open, allowing trial poll", target=self.name)
                    return True
                return False

            # half-open: the poller guarantees a single in-flight trial
            return True

    def success(self) -> None:
        """Record a successful page fetch. Resets the counter, closes if half-open."""
        with self._lock:
            self._failures = 0
            if self._state == BreakerState.HALF_OPEN:
                self._state = BreakerState.CLOSED
                self._open_until = None
                logger.info("Circuit CLOSED after successful trial", target=self.name)

    def failure(self) -> None:
        """Record a failed poll iteration. May trip the breaker."""
        with self._lock:
            self._failures += 1

            if self._state == BreakerState.CLOSED:
                if self._failures >= self.failure_threshold:
                    self._trip()
                    logger.error(
                        "Circuit OPENED",
                        target=self.name,
                        failures=self._failures,
                        cooldown_seconds=self.cooldown_seconds,
                    )
            elif self._state == BreakerState.HALF_OPEN:
                self._trip()
                logger.warning("Circuit re-OPENED after failed trial", target=self.name)
            # open: stays open, the counter keeps counting

    def _trip(self) -> None:
        self._state = BreakerState.OPEN
        self._open_until = self._clock() + self.cooldown_seconds

    def get_status(self) -> dict:
        """Snapshot of breaker state for status endpoints."""
        with self._lock:
            remaining = None
            if self._state == BreakerState.OPEN and self._open_until is not None:
                remaining = max(0.0, round(self._open_until - self._clock(), 1))
            return {
                "state": self._state.value,
                "failures": self._failures,
                "open_remaining_seconds": remaining,
            }
