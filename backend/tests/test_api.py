"""Tests for the HTTP query surface."""

import asyncio
import threading
import time
from datetime import timedelta

import pytest

from conftest import NOW, feed_doc, make_entry
from core.exceptions import ConfigError, StoreError
from ingestion.models import Review


def _review(review_id: str, hours_ago: float, rating: int = 5) -> Review:
    return Review(
        id=review_id,
        app_id="595068606",
        country="us",
        author="someone",
        rating=rating,
        title=f"title {review_id}",
        content="content",
        submitted_at=NOW - timedelta(hours=hours_ago),
    )


@pytest.fixture
def seeded_store(store, target):
    reviews = [_review("fresh", 1, rating=5), _review("older", 2, rating=2), _review("stale", 72, rating=4)]
    store.append_reviews(target, reviews, [r.id for r in reviews])
    return store


async def _wait_for(predicate, timeout: float = 2.0) -> None:
    async def _poll():
        while not predicate():
            await asyncio.sleep(0.01)
    await asyncio.wait_for(_poll(), timeout)


# ─── Health / tracking ───

class TestHealth:
    async def test_health(self, client):
        resp = await client.get("/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}

    async def test_response_has_tracking_headers(self, client):
        resp = await client.get("/health")
        assert "x-request-id" in resp.headers
        assert resp.headers["x-process-time"].endswith("ms")

    async def test_custom_request_id_propagated(self, client):
        resp = await client.get("/health", headers={"X-Request-ID": "test-request-12345"})
        assert resp.headers.get("x-request-id") == "test-request-12345"

    async def test_cors_preflight(self, client):
        resp = await client.options(
            "/reviews",
            headers={"Origin": "http://localhost:5173", "Access-Control-Request-Method": "GET"},
        )
        assert resp.status_code == 200
        assert resp.headers["access-control-allow-origin"] == "*"


# ─── Targets and manual polls ───

class TestApps:
    async def test_lists_configured_targets(self, client):
        resp = await client.get("/apps")
        assert resp.status_code == 200
        assert resp.json() == [
            {"appId": "595068606", "country": "us"},
            {"appId": "284882215", "country": "gb"},
        ]


class TestPoll:
    @pytest.mark.parametrize("method", ["GET", "POST"])
    async def test_poll_is_accepted(self, client, store, target, feed_server, method):
        feed_server.set_page(1, feed_doc(make_entry("r1")))

        resp = await client.request(method, "/poll", params={"appId": "595068606", "country": "us"})

        assert resp.status_code == 202
        assert resp.json() == {"status": "poll started"}
        await _wait_for(lambda: store.last_poll(target) is not None)
        assert store.get_seen_set(target) == {"r1"}

    @pytest.mark.parametrize("params", [{}, {"appId": "595068606"}, {"country": "us"}, {"appId": "", "country": "us"}])
    async def test_missing_parameters_rejected(self, client, params):
        resp = await client.post("/poll", params=params)
        assert resp.status_code == 400
        assert resp.json() == {"error": "appId and country are required"}


# ─── Recent reviews ───

class TestReviews:
    async def test_default_window(self, client, seeded_store):
        resp = await client.get("/reviews", params={"appId": "595068606", "country": "us"})
        assert resp.status_code == 200
        data = resp.json()
        assert data["appId"] == "595068606"
        assert data["country"] == "us"
        assert data["from"] == "2026-10-16T12:00:00Z"
        assert data["to"] == "2026-10-18T12:00:00Z"
        assert data["count"] == 2
        assert [r["id"] for r in data["reviews"]] == ["fresh", "older"]
        assert data["reviews"][0] == {
            "id": "fresh",
            "appId": "595068606",
            "country": "us",
            "author": "someone",
            "rating": 5,
            "title": "title fresh",
            "content": "content",
            "submittedAt": "2026-10-18T11:00:00Z",
        }

    async def test_custom_window(self, client, seeded_store):
        resp = await client.get("/reviews", params={"appId": "595068606", "country": "us", "hours": "100"})
        data = resp.json()
        assert data["count"] == 3
        assert data["from"] == "2026-10-14T08:00:00Z"

    @pytest.mark.parametrize("hours", ["0", "-3", "abc", "2161", "1.5"])
    async def test_invalid_hours_fall_back_to_default(self, client, seeded_store, hours):
        resp = await client.get("/reviews", params={"appId": "595068606", "country": "us", "hours": hours})
        assert resp.status_code == 200
        assert resp.json()["count"] == 2
        assert resp.json()["from"] == "2026-10-16T12:00:00Z"

    async def test_window_matches_reported_bounds(self, client, store, target, monkeypatch):
        store.append_reviews(target, [_review("edge", 48)], ["edge"])
        ticks = iter(range(1000))
        monkeypatch.setattr(store, "_clock", lambda: NOW + timedelta(seconds=next(ticks)))

        resp = await client.get("/reviews", params={"appId": "595068606", "country": "us"})

        data = resp.json()
        assert data["from"] == "2026-10-16T12:00:00Z"
        assert [r["id"] for r in data["reviews"]] == ["edge"]

    async def test_min_rating_filter(self, client, seeded_store):
        resp = await client.get(
            "/reviews", params={"appId": "595068606", "country": "us", "hours": "100", "minRating": "4"}
        )
        assert [r["id"] for r in resp.json()["reviews"]] == ["fresh", "stale"]
        assert resp.json()["count"] == 2

    async def test_invalid_min_rating_rejected(self, client, seeded_store):
        resp = await client.get("/reviews", params={"appId": "595068606", "country": "us", "minRating": "9"})
        assert resp.status_code == 400

    async def test_unknown_target_is_empty(self, client):
        resp = await client.get("/reviews", params={"appId": "1", "country": "fr"})
        assert resp.status_code == 200
        assert resp.json()["count"] == 0
        assert resp.json()["reviews"] == []

    async def test_missing_parameters_rejected(self, client):
        resp = await client.get("/reviews", params={"appId": "595068606"})
        assert resp.status_code == 400
        assert resp.json() == {"error": "appId and country are required"}

    async def test_read_failure_is_generic_500(self, client, store, monkeypatch):
        def broken_read(*args, **kwargs):
            raise StoreError("permission denied on /var/data/reviews/secret.jsonl")

        monkeypatch.setattr(store, "read_recent", broken_read)

        resp = await client.get("/reviews", params={"appId": "595068606", "country": "us"})

        assert resp.status_code == 500
        assert resp.json() == {"error": "internal error"}


class TestStatus:
    async def test_status(self, client):
        resp = await client.get("/status")
        assert resp.status_code == 200
        data = resp.json()
        assert data["started"] is False
        assert len(data["targets"]) == 2
        assert data["targets"][0]["breaker"]["state"] == "closed"

    async def test_status_does_not_block_event_loop(self, client, store):
        locked = threading.Event()

        def hold_store_lock():
            with store._lock:
                locked.set()
                time.sleep(0.3)

        holder = threading.Thread(target=hold_store_lock)
        holder.start()
        await asyncio.to_thread(locked.wait)

        ticks = 0

        async def ticker():
            nonlocal ticks
            while True:
                await asyncio.sleep(0.01)
                ticks += 1

        ticking = asyncio.create_task(ticker())
        try:
            resp = await client.get("/status")
        finally:
            ticking.cancel()
            holder.join()

        assert resp.status_code == 200
        assert ticks >= 5


# ─── Lifespan ───

class TestLifespan:
    async def test_startup_wires_poller_and_store(self, settings_env):
        from app.main import create_app

        settings_env.write_text('{"pollIntervalMinutes": 30, "apps": []}', encoding="utf-8")
        app = create_app()

        async with app.router.lifespan_context(app):
            assert app.state.poller.is_running is True
            assert app.state.poller.config.poll_interval_minutes == 30
            assert app.state.store.state_path.parent.exists()

        assert app.state.poller.is_running is False

    async def test_bad_targets_file_aborts_startup(self, settings_env):
        from app.main import create_app

        settings_env.write_text("{not json", encoding="utf-8")
        app = create_app()

        with pytest.raises(ConfigError):
            async with app.router.lifespan_context(app):
                pass
