"""Domain types for the ingestion pipeline: targets, reviews, timestamps."""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

# Fallback layout some feed entries use when the primary RFC3339 parse fails
SECONDARY_TIME_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_rfc3339(value: datetime) -> str:
    """Format an aware datetime as RFC3339 UTC with a trailing Z."""
    value = value.astimezone(timezone.utc)
    if value.microsecond:
        return value.strftime("%Y-%m-%dT%H:%M:%S.%fZ")
    return value.strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_rfc3339(value: str) -> datetime:
    """Parse an RFC3339 timestamp (offset or Z required) into aware UTC.

    Raises:
        ValueError: If the value is not RFC3339
    """
    if not isinstance(value, str) or "T" not in value:
        raise ValueError(f"not an RFC3339 timestamp: {value!r}")
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        raise ValueError(f"RFC3339 timestamp without offset: {value!r}")
    try:
        return parsed.astimezone(timezone.utc)
    except OverflowError as e:
        # e.g. 0001-01-01T00:00:00+01:00 falls before datetime.min in UTC
        raise ValueError(f"RFC3339 timestamp out of range: {value!r}") from e


def parse_feed_timestamp(value: Optional[str], now: Optional[datetime] = None) -> datetime:
    """Parse a feed entry's updated timestamp.

    Tries RFC3339, then the fixed secondary layout; when both fail the
    current UTC time is returned so a bad timestamp never blocks ingestion.
    """
    if value:
        try:
            return parse_rfc3339(value)
        except ValueError:
            pass
        try:
            return datetime.strptime(value, SECONDARY_TIME_FORMAT).replace(tzinfo=timezone.utc)
        except ValueError:
            pass
    return now or utc_now()


@dataclass(frozen=True)
class Target:
    """An (application, country) pair under independent polling."""

    app_id: str
    country: str

    @property
    def key(self) -> str:
        return f"{self.app_id}-{self.country}"

    def to_dict(self) -> Dict[str, str]:
        return {"appId": self.app_id, "country": self.country}

    def __str__(self) -> str:
        return self.key


@dataclass(frozen=True)
class Review:
    """A single customer review. Immutable once stored."""

    id: str
    app_id: str
    country: str
    author: str
    rating: int
    title: str
    content: str
    submitted_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the on-disk / wire record."""
        return {
            "id": self.id,
            "appId": self.app_id,
            "country": self.country,
            "author": self.author,
            "rating": self.rating,
            "title": self.title,
            "content": self.content,
            "submittedAt": format_rfc3339(self.submitted_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Review":
        """Rebuild a review from its serialized record.

        Raises:
            ValueError: If a required field is missing or malformed
        """
        if not isinstance(data, dict):
            raise ValueError("review record must be an object")
        try:
            review_id = data["id"]
            submitted = data["submittedAt"]
        except KeyError as e:
            raise ValueError(f"review record missing field {e}") from e
        if not isinstance(review_id, str) or not review_id:
            raise ValueError("review record has no id")
        rating = data.get("rating", 0)
        if isinstance(rating, bool) or not isinstance(rating, int):
            raise ValueError("review rating must be an integer")
        return cls(
            id=review_id,
            app_id=str(data.get("appId", "")),
            country=str(data.get("country", "")),
            author=str(data.get("author", "")),
            rating=rating,
            title=str(data.get("title", "")),
            content=str(data.get("content", "")),
            submitted_at=parse_rfc3339(submitted),
        )
