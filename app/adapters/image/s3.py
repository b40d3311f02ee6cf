"""S3 object storage adapter."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from botocore.exceptions import BotoCoreError, ClientError

from app.adapters.image.base import AbstractObjectStorage
from app.core.errors import UpstreamAppError

logger = logging.getLogger(__name__)

# Rendered images never change once written
_CACHE_CONTROL = "public, max-age=31536000"


class S3ObjectStorage(AbstractObjectStorage):
    """Client for storing QR images in an S3 bucket.

    Uses the synchronous boto3 client from worker threads.
    """

    def __init__(self, client: Any, bucket: str) -> None:
        """Initialize the adapter.

        Args:
            client: boto3 S3 client (``boto3.client("s3")``).
            bucket: Bucket holding the images.
        """
        self.client = client
        self.bucket = bucket

    def _unavailable(self, operation: str, exc: Exception) -> UpstreamAppError:
        logger.error(
            "object_storage.error",
            extra={"operation": operation, "error_type": type(exc).__name__},
        )
        return UpstreamAppError(
            code="image_storage_unavailable",
            message="Image storage is temporarily unavailable.",
        )

    async def put(self, key: str, data: bytes, *, content_type: str) -> str:
        try:
            await asyncio.to_thread(
                self.client.put_object,
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
                CacheControl=_CACHE_CONTROL,
            )
        except (BotoCoreError, ClientError) as exc:
            raise self._unavailable("put_object", exc) from exc
        return key

    async def get(self, key: str) -> bytes | None:
        try:
            response = await asyncio.to_thread(
                self.client.get_object, Bucket=self.bucket, Key=key
            )
            return await asyncio.to_thread(response["Body"].read)
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") in ("NoSuchKey", "404"):
                return None
            raise self._unavailable("get_object", exc) from exc
        except BotoCoreError as exc:
            raise self._unavailable("get_object", exc) from exc

    async def delete(self, key: str) -> None:
        try:
            await asyncio.to_thread(self.client.delete_object, Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as exc:
            raise self._unavailable("delete_object", exc) from exc

    async def access_url(self, key: str, *, expires_in: int) -> tuple[str, datetime]:
        try:
            url = await asyncio.to_thread(
                self.client.generate_presigned_url,
                "get_object",
                Params={"Bucket": self.bucket, "Key": key},
                ExpiresIn=expires_in,
            )
        except (BotoCoreError, ClientError) as exc:
            raise self._unavailable("generate_presigned_url", exc) from exc
        return url, datetime.now(timezone.utc) + timedelta(seconds=expires_in)
