"""Review Poller: one long-lived polling task per configured target.

The ReviewPoller:
1. Starts one asyncio task per (appId, country) target at startup
2. Polls each target immediately, then every poll interval
3. Guards each target with its own circuit breaker
4. Walks feed pages newest-first, deduplicating against the store
5. Persists an iteration's findings only when every page succeeded
6. Accepts fire-and-forget manual triggers from the API
"""

import asyncio
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

import structlog

from app.config import PollerConfig
from core.circuit_breaker import CircuitBreaker
from core.exceptions import StoreError
from ingestion.feed import RETRYABLE_ERRORS, FeedFetcher
from ingestion.models import Review, Target, format_rfc3339
from ingestion.store import FileStore

logger = structlog.get_logger(__name__)

MAX_PAGES = 10
PAGE_TIMEOUT_SECONDS = 15.0
PAGE_PAUSE_SECONDS = 0.3


def next_tick(previous: float, now: float, interval: float) -> float:
    """Next tick of a fixed cadence started at `previous`.

    Ticks missed by a long iteration are skipped, not queued.
    """
    tick = previous + interval
    while tick <= now:
        tick += interval
    return tick


class PollStatus(str, Enum):
    """Outcome of one poll iteration."""

    COMPLETED = "completed"
    SKIPPED = "skipped"            # another iteration for the target is running
    CIRCUIT_OPEN = "circuit_open"  # breaker rejected the iteration
    FAILED = "failed"              # a page failed, nothing persisted
    STORE_ERROR = "store_error"    # pages fetched but persisting failed


@dataclass
class PollResult:
    target: Target
    status: PollStatus
    new_reviews: int = 0
    pages: int = 0
    error: Optional[str] = None


class ReviewPoller:
    """Schedules and runs poll iterations for every configured target."""

    def __init__(
        self,
        config: PollerConfig,
        store: FileStore,
        fetcher: FeedFetcher,
        max_pages: int = MAX_PAGES,
        page_timeout: float = PAGE_TIMEOUT_SECONDS,
        page_pause: float = PAGE_PAUSE_SECONDS,
        poll_interval: Optional[float] = None,
    ):
        self.config = config
        self.store = store
        self.fetcher = fetcher
        self.max_pages = max_pages
        self.page_timeout = page_timeout
        self.page_pause = page_pause
        self.poll_interval = poll_interval or config.poll_interval_seconds

        self._targets = [Target(app_id=a.app_id, country=a.country) for a in config.apps]

        # breakers and in-progress flags share one lock, never held across I/O
        self._lock = threading.Lock()
        self._breakers: dict[str, CircuitBreaker] = {}
        self._running: dict[str, bool] = {}

        self._workers: dict[str, asyncio.Task] = {}
        self._manual: set[asyncio.Task] = set()
        self._started = False

    # =========================================================================
    # Registry
    # =========================================================================

    @property
    def targets(self) -> list[Target]:
        """The static list of configured targets."""
        return list(self._targets)

    @property
    def is_running(self) -> bool:
        return self._started

    def breaker_for(self, target: Target) -> CircuitBreaker:
        with self._lock:
            return self._breaker_for_locked(target)

    def _breaker_for_locked(self, target: Target) -> CircuitBreaker:
        breaker = self._breakers.get(target.key)
        if breaker is None:
            breaker = CircuitBreaker(
                failure_threshold=self.config.circuit_breaker.failure_threshold,
                cooldown_seconds=self.config.circuit_breaker.open_cooldown_seconds,
                name=target.key,
            )
            self._breakers[target.key] = breaker
        return breaker

    def _acquire(self, target: Target) -> Optional[CircuitBreaker]:
        """Mark the target as in progress. Returns None if it already was."""
        with self._lock:
            if self._running.get(target.key):
                return None
            self._running[target.key] = True
            return self._breaker_for_locked(target)

    def _release(self, target: Target) -> None:
        with self._lock:
            self._running[target.key] = False

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self) -> None:
        """Launch one polling task per configured target."""
        if self._started:
            logger.warning("Poller already started")
            return
        self._started = True
        for target in self._targets:
            if target.key in self._workers:
                continue
            self._workers[target.key] = asyncio.create_task(
                self._worker(target), name=f"poll-{target.key}"
            )
        logger.info(
            "Poller started",
            targets=len(self._workers),
            interval_minutes=self.config.poll_interval_minutes,
        )

    async def stop(self, grace_period: Optional[float] = None) -> None:
        """Cancel every target task and in-flight manual poll, then wait for them."""
        tasks = list(self._workers.values()) + list(self._manual)
        for task in tasks:
            task.cancel()

        if tasks:
            done, pending = await asyncio.wait(tasks, timeout=grace_period)
            if pending:
                logger.warning("Poll tasks still running after grace period", pending=len(pending))

        self._workers.clear()
        self._manual.clear()
        self._started = False
        logger.info("Poller stopped")

    async def _worker(self, target: Target) -> None:
        loop = asyncio.get_running_loop()
        interval = self.poll_interval
        next_run = loop.time()

        while True:
            try:
                await self.poll_once(target)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("Unexpected poll error", target=target.key, error=str(e), exc_info=True)

            now = loop.time()
            next_run = next_tick(next_run, now, interval)
            await asyncio.sleep(next_run - now)

    def trigger(self, target: Target) -> bool:
        """Schedule a manual poll without waiting for it.

        The per-target in-progress flag makes an overlapping trigger a no-op.
        """
        task = asyncio.create_task(self.poll_once(target), name=f"manual-poll-{target.key}")
        self._manual.add(task)
        task.add_done_callback(self._manual_done)
        logger.info("Manual poll scheduled", target=target.key)
        return True

    def _manual_done(self, task: asyncio.Task) -> None:
        self._manual.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Manual poll crashed", task=task.get_name(), error=str(exc))

    # =========================================================================
    # One poll iteration
    # =========================================================================

    async def poll_once(self, target: Target) -> PollResult:
        """Run one poll iteration for a target.

        All-or-nothing per iteration: if any page fails, reviews found on
        earlier pages of the same iteration are discarded and the breaker
        records one failure.
        """
        breaker = self._acquire(target)
        if breaker is None:
            logger.debug("Poll already in progress, skipping", target=target.key)
            return PollResult(target=target, status=PollStatus.SKIPPED)

        try:
            return await self._run_iteration(target, breaker)
        finally:
            self._release(target)

    async def _run_iteration(self, target: Target, breaker: CircuitBreaker) -> PollResult:
        log = logger.bind(target=target.key)

        if not breaker.allow():
            log.info("Circuit breaker open, skipping iteration", breaker=breaker.state.value)
            return PollResult(target=target, status=PollStatus.CIRCUIT_OPEN)

        seen = await asyncio.to_thread(self.store.get_seen_set, target)
        found: list[Review] = []
        new_ids: list[str] = []
        pages = 0

        for page in range(1, self.max_pages + 1):
            try:
                reviews = await asyncio.wait_for(
                    self.fetcher.fetch_page_with_retry(target.country, target.app_id, page),
                    timeout=self.page_timeout,
                )
            except (asyncio.TimeoutError, *RETRYABLE_ERRORS) as e:
                breaker.failure()
                log.warning(
                    "Page fetch failed, abandoning iteration",
                    page=page,
                    discarded=len(found),
                    error=str(e) or type(e).__name__,
                )
                return PollResult(
                    target=target,
                    status=PollStatus.FAILED,
                    pages=pages,
                    error=str(e) or type(e).__name__,
                )

            breaker.success()
            pages += 1

            if not reviews:
                break

            page_new = 0
            for review in reviews:
                if review.id in seen:
                    continue
                seen.add(review.id)
                found.append(review)
                new_ids.append(review.id)
                page_new += 1

            # the feed is newest-first: a page with nothing new means older pages are known
            if page_new == 0:
                break

            if page < self.max_pages:
                await asyncio.sleep(self.page_pause)

        try:
            written = await asyncio.to_thread(self.store.append_reviews, target, found, new_ids)
        except StoreError as e:
            log.error("Persisting poll results failed", error=str(e))
            return PollResult(target=target, status=PollStatus.STORE_ERROR, pages=pages, error=str(e))

        if written:
            log.info("Appended new reviews", count=written, pages=pages)
        else:
            log.info("No new reviews", pages=pages)

        return PollResult(target=target, status=PollStatus.COMPLETED, new_reviews=written, pages=pages)

    # =========================================================================
    # Status
    # =========================================================================

    def get_status(self) -> dict[str, Any]:
        """Per-target breaker and poll status."""
        with self._lock:
            running = dict(self._running)
            breakers = dict(self._breakers)

        targets = []
        for target in self._targets:
            breaker = breakers.get(target.key)
            last_poll = self.store.last_poll(target)
            targets.append({
                **target.to_dict(),
                "running": running.get(target.key, False),
                "breaker": breaker.get_status() if breaker else {
                    "state": "closed",
                    "failures": 0,
                    "open_remaining_seconds": None,
                },
                "lastPoll": format_rfc3339(last_poll) if last_poll else None,
            })

        return {
            "started": self._started,
            "pollIntervalMinutes": self.config.poll_interval_minutes,
            "targets": targets,
        }
