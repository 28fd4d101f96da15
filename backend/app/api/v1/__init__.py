"""
NaviStream API v1 Router Aggregator.

Combines the v1 endpoint routers into a single APIRouter, registered by the
application under the /api/v1 prefix.

Router Structure:
    - /videos: Upload pipeline and video record operations
"""

import logging

from fastapi import APIRouter

from app.api.v1.videos import router as videos_router


logger = logging.getLogger(__name__)

api_router = APIRouter()

api_router.include_router(
    videos_router,
    prefix="/videos",
    tags=["videos"],
)

loaded_routers: list[str] = ["videos"]


__all__ = ["api_router", "loaded_routers"]
