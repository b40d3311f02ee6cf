"""QR image rendering and storage."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime

from app.adapters.image.base import AbstractObjectStorage
from app.adapters.image.renderer import render_qr_png
from app.core.errors import UpstreamAppError

logger = logging.getLogger(__name__)

PNG_CONTENT_TYPE = "image/png"


class ImageService:
    """Render QR images and keep them in object storage.

    Attributes:
        storage: Object storage adapter.
        scale: Pixels per QR module.
        border: Quiet zone in modules.
        error_level: QR error correction level.
    """

    def __init__(
        self,
        storage: AbstractObjectStorage,
        *,
        scale: int = 10,
        border: int = 2,
        error_level: str = "m",
    ) -> None:
        self.storage = storage
        self.scale = scale
        self.border = border
        self.error_level = error_level

    async def render(self, content: str) -> bytes:
        """Render ``content`` as a PNG QR code in a worker thread.

        Raises:
            UpstreamAppError: If rendering fails.
        """
        try:
            return await asyncio.to_thread(
                render_qr_png,
                content,
                scale=self.scale,
                border=self.border,
                error=self.error_level,
            )
        except ValueError as exc:
            logger.error("image.render_failed", extra={"error_msg": str(exc)})
            raise UpstreamAppError(
                code="image_render_failed",
                message="Failed to render QR image.",
            ) from exc

    async def store(self, data: bytes, key: str) -> str:
        return await self.storage.put(key, data, content_type=PNG_CONTENT_TYPE)

    async def render_and_store(self, content: str, key: str) -> str:
        data = await self.render(content)
        stored_key = await self.store(data, key)
        logger.info("image.stored", extra={"image_key": stored_key, "size_bytes": len(data)})
        return stored_key

    async def delete(self, key: str) -> None:
        await self.storage.delete(key)

    async def fetch(self, key: str) -> bytes | None:
        return await self.storage.get(key)

    async def access_url(self, key: str, *, expires_in: int) -> tuple[str, datetime]:
        return await self.storage.access_url(key, expires_in=expires_in)
