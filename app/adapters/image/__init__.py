"""Image adapter layer - QR rendering plus object storage backends."""

from app.adapters.image.base import AbstractObjectStorage
from app.adapters.image.factory import create_image_service, create_object_storage
from app.adapters.image.in_memory import InMemoryObjectStorage
from app.adapters.image.service import ImageService

__all__ = [
    "AbstractObjectStorage",
    "ImageService",
    "InMemoryObjectStorage",
    "create_image_service",
    "create_object_storage",
]
