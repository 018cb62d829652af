"""FastAPI dependency injection functions."""

from fastapi import Request

from ingestion.poller import ReviewPoller
from ingestion.store import FileStore


def get_poller(request: Request) -> ReviewPoller:
    """The poller created by the application lifespan."""
    return request.app.state.poller


def get_store(request: Request) -> FileStore:
    """The review store created by the application lifespan."""
    return request.app.state.store
