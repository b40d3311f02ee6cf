"""Tests for QR rendering, object storage adapters and ImageService."""

import io
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from app.adapters.image import ImageService, InMemoryObjectStorage, create_object_storage
from app.adapters.image.renderer import render_qr_png
from app.adapters.image.s3 import S3ObjectStorage
from app.core.config import Settings, StorageSettings
from app.core.errors import UpstreamAppError, ValidationAppError

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"


def test_render_qr_png_produces_png() -> None:
    data = render_qr_png("https://qr.example.com/q/01HV6Z8K3Q0J8X9Y2T4B5N6M7P", scale=2)

    assert data.startswith(PNG_SIGNATURE)


def test_render_qr_png_rejects_empty_content() -> None:
    with pytest.raises(ValueError):
        render_qr_png("")


@pytest.mark.asyncio
async def test_render_and_store_puts_png_under_key() -> None:
    storage = InMemoryObjectStorage()
    service = ImageService(storage, scale=2, border=1)

    key = await service.render_and_store("https://qr.example.com/q/abc", "qr-images/abc.png")

    assert key == "qr-images/abc.png"
    data = await service.fetch(key)
    assert data is not None and data.startswith(PNG_SIGNATURE)


@pytest.mark.asyncio
async def test_render_failure_is_upstream_error() -> None:
    service = ImageService(InMemoryObjectStorage())

    with pytest.raises(UpstreamAppError) as exc_info:
        await service.render("")

    assert exc_info.value.code == "image_render_failed"


@pytest.mark.asyncio
async def test_delete_and_fetch_missing() -> None:
    storage = InMemoryObjectStorage()
    service = ImageService(storage)
    await service.store(b"png", "k.png")

    await service.delete("k.png")
    await service.delete("k.png")

    assert await service.fetch("k.png") is None
    assert storage.keys() == []


@pytest.mark.asyncio
async def test_in_memory_access_url_expires_in_future() -> None:
    service = ImageService(InMemoryObjectStorage())

    url, expires_at = await service.access_url("qr-images/abc.png", expires_in=600)

    assert "qr-images/abc.png" in url
    assert expires_at.tzinfo is not None


class TestS3ObjectStorage:
    @pytest.mark.asyncio
    async def test_put_sets_content_type(self) -> None:
        client = MagicMock()
        storage = S3ObjectStorage(client, "bucket")

        assert await storage.put("k.png", b"data", content_type="image/png") == "k.png"

        kwargs = client.put_object.call_args.kwargs
        assert kwargs["Bucket"] == "bucket"
        assert kwargs["Key"] == "k.png"
        assert kwargs["ContentType"] == "image/png"

    @pytest.mark.asyncio
    async def test_get_reads_body(self) -> None:
        client = MagicMock()
        client.get_object.return_value = {"Body": io.BytesIO(b"png-bytes")}

        assert await S3ObjectStorage(client, "bucket").get("k.png") == b"png-bytes"

    @pytest.mark.asyncio
    async def test_get_missing_key_returns_none(self) -> None:
        client = MagicMock()
        client.get_object.side_effect = ClientError(
            {"Error": {"Code": "NoSuchKey", "Message": "missing"}}, "GetObject"
        )

        assert await S3ObjectStorage(client, "bucket").get("k.png") is None

    @pytest.mark.asyncio
    async def test_put_failure_is_upstream_error(self) -> None:
        client = MagicMock()
        client.put_object.side_effect = ClientError(
            {"Error": {"Code": "AccessDenied", "Message": "denied"}}, "PutObject"
        )

        with pytest.raises(UpstreamAppError) as exc_info:
            await S3ObjectStorage(client, "bucket").put("k.png", b"x", content_type="image/png")

        assert exc_info.value.code == "image_storage_unavailable"

    @pytest.mark.asyncio
    async def test_access_url_is_presigned(self) -> None:
        client = MagicMock()
        client.generate_presigned_url.return_value = "https://bucket.s3/k.png?sig=1"

        url, _ = await S3ObjectStorage(client, "bucket").access_url("k.png", expires_in=300)

        assert url == "https://bucket.s3/k.png?sig=1"
        client.generate_presigned_url.assert_called_once_with(
            "get_object",
            Params={"Bucket": "bucket", "Key": "k.png"},
            ExpiresIn=300,
        )


def test_factory_requires_bucket_for_aws() -> None:
    cfg = Settings(storage=StorageSettings(backend="aws", bucket=None))

    with pytest.raises(ValidationAppError) as exc_info:
        create_object_storage(cfg)

    assert exc_info.value.code == "storage_missing_bucket"


def test_factory_defaults_to_memory() -> None:
    cfg = Settings(storage=StorageSettings(backend="memory"))

    assert isinstance(create_object_storage(cfg), InMemoryObjectStorage)
