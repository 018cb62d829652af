"""Target, manual poll and recent review endpoints."""

import asyncio
import logging
from datetime import timedelta
from typing import Any, List, Optional

from fastapi import APIRouter, Depends, Query, status as http_status

from api.schemas.common import ErrorResponse, StatusMessage
from api.schemas.reviews import ReviewListResponse, ReviewResponse, TargetResponse
from app.dependencies import get_poller, get_store
from core.exceptions import ValidationError
from ingestion.models import Target, format_rfc3339
from ingestion.poller import ReviewPoller
from ingestion.store import FileStore

logger = logging.getLogger(__name__)

router = APIRouter(tags=["reviews"])

DEFAULT_HOURS = 48
MAX_HOURS = 90 * 24


def _require_target(app_id: Optional[str], country: Optional[str]) -> Target:
    app_id = (app_id or "").strip()
    country = (country or "").strip()
    if not app_id or not country:
        raise ValidationError("appId and country are required")
    return Target(app_id=app_id, country=country)


def _parse_hours(raw: Optional[str]) -> int:
    """Hours window; anything missing, non-integer or out of range means the default."""
    if not raw:
        return DEFAULT_HOURS
    try:
        hours = int(raw)
    except ValueError:
        return DEFAULT_HOURS
    if hours < 1 or hours > MAX_HOURS:
        return DEFAULT_HOURS
    return hours


def _parse_min_rating(raw: Optional[str]) -> Optional[int]:
    if not raw:
        return None
    try:
        value = int(raw)
    except ValueError:
        raise ValidationError("minRating must be an integer between 1 and 5")
    if value < 1 or value > 5:
        raise ValidationError("minRating must be an integer between 1 and 5")
    return value


@router.get("/apps", response_model=List[TargetResponse])
async def list_apps(poller: ReviewPoller = Depends(get_poller)) -> List[TargetResponse]:
    """List the configured targets."""
    return [TargetResponse(app_id=t.app_id, country=t.country) for t in poller.targets]


@router.api_route(
    "/poll",
    methods=["GET", "POST"],
    status_code=http_status.HTTP_202_ACCEPTED,
    response_model=StatusMessage,
    responses={400: {"model": ErrorResponse}},
)
async def trigger_poll(
    app_id: Optional[str] = Query(None, alias="appId"),
    country: Optional[str] = Query(None, alias="country"),
    poller: ReviewPoller = Depends(get_poller),
) -> StatusMessage:
    """
    Schedule a poll for one target and return immediately.

    The response acknowledges scheduling only; it says nothing about
    whether the poll ran, was skipped as already in progress, or failed.
    """
    target = _require_target(app_id, country)
    poller.trigger(target)
    logger.info(f"Manual poll requested for {target.key}")
    return StatusMessage(status="poll started")


@router.get(
    "/reviews",
    response_model=ReviewListResponse,
    responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
async def recent_reviews(
    app_id: Optional[str] = Query(None, alias="appId"),
    country: Optional[str] = Query(None, alias="country"),
    hours: Optional[str] = Query(None, description="Window size in hours (1-2160, default 48)"),
    min_rating: Optional[str] = Query(None, alias="minRating", description="Only ratings >= this (1-5)"),
    store: FileStore = Depends(get_store),
) -> ReviewListResponse:
    """
    Reviews for a target submitted within the last `hours`, newest first.

    A target that has never been polled yields an empty list.
    """
    target = _require_target(app_id, country)
    window = _parse_hours(hours)
    threshold = _parse_min_rating(min_rating)

    now = store.now().replace(microsecond=0)
    reviews = await asyncio.to_thread(store.read_recent, target, timedelta(hours=window), now)
    if threshold is not None:
        reviews = [r for r in reviews if r.rating >= threshold]

    return ReviewListResponse(
        app_id=target.app_id,
        country=target.country,
        from_=format_rfc3339(now - timedelta(hours=window)),
        to=format_rfc3339(now),
        count=len(reviews),
        reviews=[ReviewResponse.model_validate(r.to_dict()) for r in reviews],
    )


@router.get("/status", response_model=dict[str, Any])
async def poller_status(poller: ReviewPoller = Depends(get_poller)) -> dict[str, Any]:
    """Per-target breaker state, in-progress flag and last poll time."""
    return await asyncio.to_thread(poller.get_status)
