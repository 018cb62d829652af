"""Aggregated API router.

All endpoints are registered here and mounted at the application root
in main.py.
"""

from fastapi import APIRouter

from api.routes import health, reviews

api_router = APIRouter()

# Health (liveness probe)
api_router.include_router(
    health.router,
    tags=["Health"],
)

# Targets, manual polls and recent reviews
api_router.include_router(
    reviews.router,
    tags=["Reviews"],
)
