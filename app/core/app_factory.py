"""Application factory for the FastAPI app.

Centralizes app construction (metadata, middleware, handlers, routers) and
owns the long-lived service objects: rate limiters, cache, record store,
image service and record service are built once here and attached to
``app.state``. Route handlers reach them through dependencies.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from app.adapters.image import ImageService, create_image_service
from app.adapters.store import AbstractRecordStore, create_record_store
from app.api.routes import health_router, images_router, records_router, tracking_router
from app.core.config import Settings, settings as default_settings
from app.core.exception_handlers import setup_exception_handlers
from app.core.logging import configure_logging
from app.core.middleware import request_id_middleware
from app.core.openapi import apply_openapi_customizations
from app.core.rate_limit import RateLimiters, build_rate_limiters
from app.services.record_service import RecordService
from app.utils.simple_cache import RecordCache, TaggedTTLCache
from app.utils.sweeper import PeriodicSweeper

logger = logging.getLogger(__name__)


def build_record_service(
    cfg: Settings,
    store: AbstractRecordStore,
    images: ImageService,
    cache: TaggedTTLCache,
) -> RecordService:
    record_cache = RecordCache(
        cache,
        record_ttl_seconds=cfg.cache.record_ttl_seconds,
        image_ttl_seconds=cfg.cache.image_ttl_seconds,
        owner_list_ttl_seconds=cfg.cache.owner_list_ttl_seconds,
    )
    return RecordService(
        store,
        images,
        record_cache,
        public_base_url=cfg.app.public_base_url,
        tracking_path=cfg.app.tracking_path,
        image_prefix=cfg.image.prefix,
        image_extension=cfg.image.extension,
        allow_private_destinations=cfg.allow_private_destinations,
        max_destination_length=cfg.app.max_destination_length,
        generate_timeout_seconds=cfg.app.generate_timeout_seconds,
        track_timeout_seconds=cfg.app.track_timeout_seconds,
        url_expiry_seconds=cfg.image.url_expiry_seconds,
    )


def create_app(
    app_settings: Settings | None = None,
    *,
    store: AbstractRecordStore | None = None,
    image_service: ImageService | None = None,
    rate_limiters: RateLimiters | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        app_settings: Settings to use; defaults to the environment settings.
        store: Record store override (tests inject in-memory stores).
        image_service: Image service override.
        rate_limiters: Limiter override (tests inject fake clocks).

    Returns:
        Configured FastAPI app with middleware, handlers, routers and docs.
    """
    cfg = app_settings or default_settings

    # Logging first so subsequent init logs are formatted as desired
    configure_logging(cfg.log)

    limiters = rate_limiters or build_rate_limiters(cfg.rate_limit)
    cache = TaggedTTLCache(
        default_ttl_seconds=cfg.cache.record_ttl_seconds,
        max_entries=cfg.cache.max_entries,
    )
    record_store = store or create_record_store(cfg.storage)
    images = image_service or create_image_service(cfg)

    sweepers = [
        PeriodicSweeper("rate_limit", limiters.sweep, cfg.rate_limit.sweep_interval_seconds),
        PeriodicSweeper("cache", cache.sweep, cfg.cache.sweep_interval_seconds),
    ]

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        for sweeper in sweepers:
            sweeper.start()
        logger.info(
            "app.started",
            extra={"environment": cfg.app_env, "storage_backend": cfg.storage.backend},
        )
        try:
            yield
        finally:
            for sweeper in sweepers:
                sweeper.stop()

    app = FastAPI(
        title="QR Tracker API",
        description=(
            "Generates QR codes for destination addresses, redirects scans "
            "through a tracking address and counts every scan. Owners can list "
            "and delete their codes and read the scan history."
        ),
        version="0.1.0",
        debug=cfg.app.debug,
        license_info={
            "name": "MIT License",
            "url": "https://opensource.org/licenses/MIT",
        },
        lifespan=lifespan,
    )

    app.state.settings = cfg
    app.state.rate_limiters = limiters
    app.state.cache = cache
    app.state.record_store = record_store
    app.state.image_service = images
    app.state.record_service = build_record_service(cfg, record_store, images, cache)
    app.state.sweepers = sweepers

    # Middleware
    app.middleware("http")(request_id_middleware)

    # Exception handlers
    setup_exception_handlers(app)

    # Routers
    app.include_router(records_router, prefix="/v1")
    app.include_router(images_router, prefix="/v1")
    app.include_router(tracking_router, prefix=f"/{cfg.app.tracking_path.strip('/')}")
    app.include_router(health_router)

    # OpenAPI customizations (security scheme, tags, exemptions)
    apply_openapi_customizations(app, api_key_required=cfg.app.api_key_required)

    return app
