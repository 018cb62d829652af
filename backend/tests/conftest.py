"""Shared pytest fixtures for the review poller test suite.

Provides:
- Controllable clocks (wall clock for the store, monotonic for breakers)
- A temporary FileStore
- A fake review feed served through httpx.MockTransport
- Poller / fetcher builders wired to the fake feed
- FastAPI test client (httpx.AsyncClient over ASGITransport)
"""

import os
import re
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncGenerator, Callable

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Override settings BEFORE any app imports
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("LOG_FORMAT", "text")

from app.config import PollerConfig, get_settings  # noqa: E402
from ingestion.feed import FeedFetcher  # noqa: E402
from ingestion.models import Target  # noqa: E402
from ingestion.poller import ReviewPoller  # noqa: E402
from ingestion.retry_strategies import RetryStrategy  # noqa: E402
from ingestion.store import FileStore  # noqa: E402

NOW = datetime(2026, 10, 18, 12, 0, 0, tzinfo=timezone.utc)

APP_INFO_ENTRY = {
    "id": {"label": "https://apps.apple.com/us/app/id595068606"},
    "im:name": {"label": "Example App"},
    "title": {"label": "Example App - Example Inc."},
    "updated": {"label": "2026-10-18T04:00:00-07:00"},
}


# ---------------------------------------------------------------------------
# Clocks
# ---------------------------------------------------------------------------

class FakeClock:
    """Wall clock that only moves when told to."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeMonotonic:
    """Monotonic seconds counter for breaker tests."""

    def __init__(self, start: float = 1000.0):
        self.value = start

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def monotonic() -> FakeMonotonic:
    return FakeMonotonic()


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------

@pytest.fixture
def data_dir(tmp_path):
    return tmp_path / "data"


@pytest.fixture
def store(data_dir, clock) -> FileStore:
    return FileStore(data_dir, clock=clock)


@pytest.fixture
def target() -> Target:
    return Target(app_id="595068606", country="us")


# ---------------------------------------------------------------------------
# Fake feed
# ---------------------------------------------------------------------------

def make_entry(
    review_id: str,
    rating: int = 5,
    updated: str = "2026-10-18T04:00:00-07:00",
    title: str = "Great",
    content: str = "Works well",
    author: str = "someone",
) -> dict[str, Any]:
    """One review entry in the feed's label-wrapped shape."""
    return {
        "id": {"label": review_id},
        "im:rating": {"label": str(rating)},
        "updated": {"label": updated},
        "title": {"label": title},
        "content": {"label": content, "attributes": {"type": "text"}},
        "author": {"name": {"label": author}, "uri": {"label": "https://example.com"}},
    }


def feed_doc(*entries: dict, app_info: bool = True) -> dict[str, Any]:
    """A feed document; the first page of the real feed leads with an app-info entry."""
    items = ([APP_INFO_ENTRY] if app_info else []) + list(entries)
    return {"feed": {"entry": items}}


class FeedServer:
    """Scripted responses per page number.

    Each page holds a queue of responses consumed one per request; the
    last one repeats. A response is a dict (served as a 200 JSON body),
    an httpx.Response, or an exception instance to raise. Pages without
    a script serve an empty feed.
    """

    _page_re = re.compile(r"/page=(\d+)/")

    def __init__(self):
        self.pages: dict[int, list[Any]] = {}
        self.requests: list[httpx.Request] = []

    def set_page(self, page: int, *responses: Any) -> None:
        self.pages[page] = list(responses)

    def requested_pages(self) -> list[int]:
        return [int(self._page_re.search(str(r.url)).group(1)) for r in self.requests]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        page = int(self._page_re.search(str(request.url)).group(1))
        queue = self.pages.get(page)
        if not queue:
            return httpx.Response(200, json={"feed": {}})
        response = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(response, BaseException):
            raise response
        if isinstance(response, httpx.Response):
            return response
        return httpx.Response(200, json=response)


@pytest.fixture
def feed_server() -> FeedServer:
    return FeedServer()


@pytest_asyncio.fixture
async def http_client(feed_server) -> AsyncGenerator[httpx.AsyncClient, None]:
    async with httpx.AsyncClient(transport=httpx.MockTransport(feed_server.handler)) as client:
        yield client


@pytest.fixture
def fetcher(http_client) -> FeedFetcher:
    return FeedFetcher(http_client, retry=RetryStrategy.immediate())


@pytest.fixture
def poller_config(target) -> PollerConfig:
    return PollerConfig.model_validate({
        "pollIntervalMinutes": 15,
        "circuitBreaker": {"failureThreshold": 3, "openCooldownSeconds": 60},
        "apps": [target.to_dict(), {"appId": "284882215", "country": "gb"}],
    })


@pytest.fixture
def make_poller(poller_config, store, fetcher) -> Callable[..., ReviewPoller]:
    def _make(**kwargs) -> ReviewPoller:
        kwargs.setdefault("page_pause", 0)
        return ReviewPoller(
            kwargs.pop("config", poller_config),
            kwargs.pop("store", store),
            kwargs.pop("fetcher", fetcher),
            **kwargs,
        )
    return _make


@pytest_asyncio.fixture
async def poller(make_poller) -> AsyncGenerator[ReviewPoller, None]:
    p = make_poller()
    yield p
    await p.stop(grace_period=1)


# ---------------------------------------------------------------------------
# App / HTTP client fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def settings_env(monkeypatch, tmp_path, poller_config):
    """Point settings at a temporary targets file and data directory."""
    targets_file = tmp_path / "apps.json"
    targets_file.write_text(poller_config.model_dump_json(by_alias=True), encoding="utf-8")
    monkeypatch.setenv("TARGETS_FILE", str(targets_file))
    monkeypatch.setenv("DATA_DIR", str(tmp_path / "app-data"))
    get_settings.cache_clear()
    yield targets_file
    get_settings.cache_clear()


@pytest_asyncio.fixture
async def app(settings_env, store, poller):
    """A FastAPI app with poller and store attached, lifespan not run."""
    from app.main import create_app

    test_app = create_app()
    test_app.state.store = store
    test_app.state.poller = poller
    yield test_app


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
