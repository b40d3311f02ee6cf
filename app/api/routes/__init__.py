from __future__ import annotations

from app.api.routes.health import router as health_router
from app.api.routes.images import router as images_router
from app.api.routes.records import router as records_router
from app.api.routes.tracking import router as tracking_router

__all__ = ["health_router", "images_router", "records_router", "tracking_router"]
