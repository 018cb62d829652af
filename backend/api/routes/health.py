"""Health check endpoint. Used as a liveness probe."""

from fastapi import APIRouter

from api.schemas.common import StatusMessage

router = APIRouter(tags=["health"])


@router.get("/health", response_model=StatusMessage)
async def health_check() -> StatusMessage:
    """Liveness probe. Does not touch the feed or the store."""
    return StatusMessage(status="ok")
