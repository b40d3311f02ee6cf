from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends

from app.api.dependencies import get_cache, get_settings
from app.core.config import Settings
from app.utils.simple_cache import TaggedTTLCache

router = APIRouter(tags=["Health"])


@router.get("/health")
def health_check(
    settings: Annotated[Settings, Depends(get_settings)],
    cache: Annotated[TaggedTTLCache, Depends(get_cache)],
) -> dict:
    """Health check endpoint.

    Used by load balancers and monitoring systems to determine service health.

    Returns:
        dict: ``status``, the running environment and cache statistics.
    """

    return {
        "status": "ok",
        "environment": settings.app_env,
        "cache": cache.stats(),
    }
