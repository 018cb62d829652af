"""
File-backed review store.

Layout under the data directory:
  {base_dir}/
    ├── state.json                      # seen ids + last poll per target
    └── reviews/
        └── {appId}-{country}.jsonl     # append-only review log per target

state.json is rewritten on every successful poll iteration through a
temporary file and an atomic os.replace, so a crash mid-write leaves the
previous document intact. Review logs are only ever appended to.

The store assumes a single writer process.
"""

import json
import os
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Iterable, Optional, Union

import structlog

from core.exceptions import StoreError
from ingestion.models import Review, Target, format_rfc3339, parse_rfc3339, utc_now

logger = structlog.get_logger(__name__)

STATE_FILE = "state.json"
REVIEWS_DIR = "reviews"


@dataclass
class SeenRecord:
    """Seen ids for one target, in ingestion order, plus the last poll time."""
    seen_ids: list[str] = field(default_factory=list)
    last_poll: Optional[datetime] = None
    _index: set[str] = field(default_factory=set, repr=False)

    def __post_init__(self):
        deduped: list[str] = []
        for review_id in self.seen_ids:
            if review_id not in self._index:
                self._index.add(review_id)
                deduped.append(review_id)
        self.seen_ids = deduped

    def __contains__(self, review_id: str) -> bool:
        return review_id in self._index

    def merge(self, ids: Iterable[str]) -> int:
        """Append ids not seen yet, keeping order. Returns how many were added."""
        added = 0
        for review_id in ids:
            if review_id not in self._index:
                self._index.add(review_id)
                self.seen_ids.append(review_id)
                added += 1
        return added

    def snapshot(self) -> set[str]:
        return set(self._index)

    def to_dict(self) -> dict:
        return {
            "seenIds": list(self.seen_ids),
            "lastPoll": format_rfc3339(self.last_poll) if self.last_poll else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SeenRecord":
        last_poll = data.get("lastPoll")
        return cls(
            seen_ids=[str(i) for i in (data.get("seenIds") or [])],
            last_poll=parse_rfc3339(last_poll) if last_poll else None,
        )


class FileStore:
    """Durable seen-id state and per-target review logs."""

    def __init__(self, base_dir: Union[str, Path], clock: Callable[[], datetime] = utc_now):
        self.base_dir = Path(base_dir)
        self.state_path = self.base_dir / STATE_FILE
        self.reviews_dir = self.base_dir / REVIEWS_DIR
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[str, SeenRecord] = {}

        try:
            self.reviews_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StoreError(f"Cannot create data directory {self.reviews_dir}: {e}") from e

        self._load_state()

    # =========================================================================
    # State document
    # =========================================================================

    def _load_state(self) -> None:
        """Load state.json if present. Missing is fine, corrupt is fatal."""
        if not self.state_path.exists():
            logger.info("No state file yet, starting empty", path=str(self.state_path))
            return

        try:
            with open(self.state_path, "r", encoding="utf-8") as f:
                data = json.load(f)
            entries = data.get("entries") or {}
            self._entries = {key: SeenRecord.from_dict(value) for key, value in entries.items()}
        except (OSError, ValueError, AttributeError, TypeError) as e:
            raise StoreError(f"Cannot load state file {self.state_path}: {e}") from e

        logger.info("Loaded review state", path=str(self.state_path), targets=len(self._entries))

    def _save_state(self) -> None:
        """Persist the whole document via temp file + atomic replace. Caller holds the lock."""
        document = {"entries": {key: record.to_dict() for key, record in self._entries.items()}}
        tmp_path = self.state_path.with_name(self.state_path.name + ".tmp")
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(document, f, indent=2)
                f.write("\n")
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.state_path)
        except OSError as e:
            raise StoreError(f"Failed to persist state to {self.state_path}: {e}") from e

    # =========================================================================
    # Public API
    # =========================================================================

    def now(self) -> datetime:
        """Current time according to the store clock."""
        return self._clock()

    def reviews_path(self, target: Target) -> Path:
        return self.reviews_dir / f"{target.key}.jsonl"

    def get_seen_set(self, target: Target) -> set[str]:
        """Snapshot of ids already ingested for a target. Safe to mutate."""
        with self._lock:
            record = self._entries.get(target.key)
            return record.snapshot() if record else set()

    def last_poll(self, target: Target) -> Optional[datetime]:
        with self._lock:
            record = self._entries.get(target.key)
            return record.last_poll if record else None

    def append_reviews(self, target: Target, reviews: list[Review], new_ids: list[str]) -> int:
        """Append new reviews, merge their ids and advance the last poll time.

        Called with empty lists to record a poll that found nothing new.
        Reviews whose id is already in the seen sequence are not written
        again. Returns the number of records appended to the log.

        Raises:
            StoreError: If the log append or the state write fails
        """
        with self._lock:
            record = self._entries.get(target.key)
            if record is None:
                record = SeenRecord()

            fresh: list[Review] = []
            batch: set[str] = set()
            for review in reviews:
                if review.id in record or review.id in batch:
                    continue
                batch.add(review.id)
                fresh.append(review)

            if fresh:
                self._append_log(target, fresh)

            record.merge(new_ids)
            record.last_poll = self._clock()
            self._entries[target.key] = record
            self._save_state()

        return len(fresh)

    def _append_log(self, target: Target, reviews: list[Review]) -> None:
        path = self.reviews_path(target)
        try:
            with open(path, "a", encoding="utf-8") as f:
                for review in reviews:
                    f.write(json.dumps(review.to_dict(), ensure_ascii=False))
                    f.write("\n")
                f.flush()
                os.fsync(f.fileno())
        except OSError as e:
            raise StoreError(f"Failed to append to review log {path}: {e}") from e

    def read_recent(
        self, target: Target, horizon: timedelta, now: Optional[datetime] = None
    ) -> list[Review]:
        """Reviews submitted within `horizon` of `now` (default: store clock), newest first.

        Corrupted lines are skipped. A target without a log yet yields [].

        Raises:
            StoreError: If the log exists but cannot be read
        """
        path = self.reviews_path(target)
        cutoff = (now or self.now()) - horizon
        results: list[Review] = []
        seen: set[str] = set()
        skipped = 0

        try:
            with open(path, "r", encoding="utf-8", errors="replace") as f:
                for line in f:
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        review = Review.from_dict(json.loads(line))
                    except ValueError:
                        skipped += 1
                        continue
                    if review.id in seen:
                        continue
                    seen.add(review.id)
                    if review.submitted_at >= cutoff:
                        results.append(review)
        except FileNotFoundError:
            return []
        except OSError as e:
            raise StoreError(f"Failed to read review log {path}: {e}") from e

        if skipped:
            logger.warning("Skipped corrupted review records", target=target.key, skipped=skipped)

        results.sort(key=lambda r: r.submitted_at, reverse=True)
        return results
