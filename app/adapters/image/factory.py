"""Factory for the configured image service."""

from app.adapters.image.base import AbstractObjectStorage
from app.adapters.image.in_memory import InMemoryObjectStorage
from app.adapters.image.service import ImageService
from app.core.config import Settings, settings as default_settings
from app.core.errors import ValidationAppError


def create_object_storage(settings: Settings | None = None) -> AbstractObjectStorage:
    """Instantiate the object storage selected by ``STORAGE_BACKEND``.

    Raises:
        ValidationAppError: If the aws backend has no bucket or the backend
            is unknown.
    """
    cfg = (settings or default_settings).storage
    backend = cfg.backend.lower()

    if backend == "memory":
        return InMemoryObjectStorage()

    if backend == "aws":
        if not cfg.bucket:
            raise ValidationAppError(
                code="storage_missing_bucket",
                message="The aws storage backend requires STORAGE_BUCKET",
            )

        import boto3

        from app.adapters.image.s3 import S3ObjectStorage

        client = boto3.client(
            "s3",
            region_name=cfg.aws_region,
            endpoint_url=cfg.endpoint_url,
        )
        return S3ObjectStorage(client, cfg.bucket)

    raise ValidationAppError(
        code="storage_unknown_backend",
        message=f"Unknown storage backend: '{backend}'. Supported backends: memory, aws",
    )


def create_image_service(settings: Settings | None = None) -> ImageService:
    cfg = settings or default_settings
    return ImageService(
        create_object_storage(cfg),
        scale=cfg.image.scale,
        border=cfg.image.border,
        error_level=cfg.image.error_level,
    )
