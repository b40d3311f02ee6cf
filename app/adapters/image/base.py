from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime


class AbstractObjectStorage(ABC):
    """Interface for object stores holding rendered QR images."""

    @abstractmethod
    async def put(self, key: str, data: bytes, *, content_type: str) -> str:
        """Store ``data`` under ``key`` and return the key.

        Raises:
            UpstreamAppError: If the store is unavailable.
        """
        ...

    @abstractmethod
    async def get(self, key: str) -> bytes | None:
        """Return the object bytes, or None if the key does not exist."""
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove an object. Deleting a missing key is not an error."""
        ...

    @abstractmethod
    async def access_url(self, key: str, *, expires_in: int) -> tuple[str, datetime]:
        """Build a time-boxed URL for reading ``key``.

        Returns:
            Tuple of (url, expiry as an aware UTC datetime).
        """
        ...
