"""App Store customer-review feed fetcher.

Fetches one page of the public reviews feed for (country, app_id, page),
normalizes entries into Review objects and retries transient failures
with exponential backoff. When every attempt fails the final error is
classified and a best-effort alert goes out before the error is re-raised.
"""

import asyncio
import json
from datetime import datetime
from typing import Any, Optional

import httpx
import structlog

from core.exceptions import FeedDecodeError, FeedError, FeedHTTPError
from ingestion.models import Review, Target, parse_feed_timestamp, utc_now
from ingestion.retry_strategies import RETRY_PRESETS, RetryStrategy
from notifications.channels import BaseChannel, FetchFailureAlert

logger = structlog.get_logger(__name__)

FEED_URL_TEMPLATE = (
    "https://itunes.apple.com/{country}/rss/customerreviews/"
    "id={app_id}/sortBy=mostRecent/page={page}/json"
)
USER_AGENT = "review-poller/1.1"
MAX_ERROR_BODY = 2048

RETRYABLE_ERRORS = (httpx.HTTPError, FeedError)


def classify_error(exc: BaseException) -> str:
    """Map a fetch failure onto the alert error type."""
    if isinstance(exc, FeedHTTPError):
        return f"http_status_{exc.status}"
    if isinstance(exc, (httpx.TimeoutException, asyncio.TimeoutError, TimeoutError)):
        return "network_timeout"
    return "network_error"


def _label(node: Any) -> str:
    """Read the {"label": "..."} wrapper the feed uses for scalar fields."""
    if isinstance(node, dict):
        value = node.get("label")
        return value if isinstance(value, str) else ""
    return ""


def _parse_rating(text: str) -> int:
    digits = "".join(ch for ch in text if "0" <= ch <= "9")
    return int(digits) if digits else 0


def parse_feed_document(data: Any, app_id: str, country: str, now: Optional[datetime] = None) -> list[Review]:
    """Turn a decoded feed document into reviews.

    Entries without a rating are app metadata and are dropped. Rated
    entries without an id cannot be deduplicated and are dropped too.

    Raises:
        FeedDecodeError: If the document does not have the feed shape
    """
    if not isinstance(data, dict):
        raise FeedDecodeError("feed document is not an object")
    feed = data.get("feed", {})
    if not isinstance(feed, dict):
        raise FeedDecodeError("feed node is not an object")

    entries = feed.get("entry", [])
    if isinstance(entries, dict):
        # a page with a single entry is not wrapped in a list
        entries = [entries]
    elif entries is None:
        entries = []
    elif not isinstance(entries, list):
        raise FeedDecodeError("feed.entry is neither a list nor an object")

    now = now or utc_now()
    reviews: list[Review] = []
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        rating = _label(entry.get("im:rating"))
        if not rating:
            continue
        review_id = _label(entry.get("id"))
        if not review_id:
            logger.warning("Skipping rated feed entry without an id", app_id=app_id, country=country)
            continue
        author = entry.get("author")
        reviews.append(
            Review(
                id=review_id,
                app_id=app_id,
                country=country,
                author=_label(author.get("name")) if isinstance(author, dict) else "",
                rating=_parse_rating(rating),
                title=_label(entry.get("title")),
                content=_label(entry.get("content")),
                submitted_at=parse_feed_timestamp(_label(entry.get("updated")), now=now),
            )
        )
    return reviews


class FeedFetcher:
    """Fetches and parses review feed pages.

    The HTTP client is injected so a single client is shared across all
    targets and tests can substitute a mock transport.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        alerts: Optional[BaseChannel] = None,
        retry: Optional[RetryStrategy] = None,
        request_timeout: float = 10.0,
        url_template: str = FEED_URL_TEMPLATE,
    ):
        self._client = client
        self._alerts = alerts
        self.retry = retry or RETRY_PRESETS["feed"]
        self.request_timeout = request_timeout
        self.url_template = url_template

    def feed_url(self, country: str, app_id: str, page: int) -> str:
        return self.url_template.format(country=country, app_id=app_id, page=page)

    async def fetch_page(self, country: str, app_id: str, page: int) -> list[Review]:
        """Fetch a single page, single attempt.

        Raises:
            httpx.HTTPError: Transport failure or timeout
            FeedHTTPError: Non-200 response
            FeedDecodeError: Body is not a feed document
        """
        url = self.feed_url(country, app_id, page)
        response = await self._client.get(
            url,
            headers={"User-Agent": USER_AGENT},
            timeout=self.request_timeout,
        )

        if response.status_code != 200:
            raise FeedHTTPError(response.status_code, response.text[:MAX_ERROR_BODY], url)

        try:
            data = response.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise FeedDecodeError(f"invalid JSON from {url}: {e}", url=url) from e

        return parse_feed_document(data, app_id=app_id, country=country)

    async def fetch_page_with_retry(self, country: str, app_id: str, page: int) -> list[Review]:
        """Fetch a page with bounded retries and backoff.

        Cancellation during a request or a backoff wait propagates as
        asyncio.CancelledError and is never reported as a fetch failure.
        """
        target_id = Target(app_id=app_id, country=country).key
        last_error: Optional[BaseException] = None

        for attempt in range(self.retry.max_attempts):
            try:
                return await self.fetch_page(country, app_id, page)
            except RETRYABLE_ERRORS as e:
                last_error = e
                if self.retry.is_last(attempt):
                    break
                delay = self.retry.compute_delay(attempt)
                logger.debug(
                    "Feed fetch attempt failed, backing off",
                    target=target_id,
                    page=page,
                    attempt=attempt + 1,
                    delay=round(delay, 3),
                    error=str(e),
                )
                await asyncio.sleep(delay)

        error_type = classify_error(last_error)
        logger.warning(
            "Feed fetch failed after retries",
            target=target_id,
            page=page,
            attempts=self.retry.max_attempts,
            error_type=error_type,
        )
        await self._alert(target_id, error_type)
        raise last_error

    async def _alert(self, target_id: str, error_type: str) -> None:
        if self._alerts is None:
            return
        try:
            await self._alerts.send(FetchFailureAlert(target_id=target_id, error_type=error_type))
        except Exception as e:
            logger.error("Alert delivery raised", target=target_id, error=str(e))
