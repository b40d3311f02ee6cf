"""In-memory object storage for development and tests."""

from __future__ import annotations

import threading
import time
from datetime import datetime, timedelta, timezone
from urllib.parse import quote

from app.adapters.image.base import AbstractObjectStorage


class InMemoryObjectStorage(AbstractObjectStorage):
    """Dict-backed object store.

    Access URLs point at ``base_url`` and carry an ``expires`` query
    parameter; nothing serves them, they only stand in for presigned URLs.
    """

    def __init__(self, base_url: str = "memory://qr-images") -> None:
        self._base_url = base_url.rstrip("/")
        self._objects: dict[str, tuple[bytes, str]] = {}
        self._lock = threading.Lock()

    async def put(self, key: str, data: bytes, *, content_type: str) -> str:
        with self._lock:
            self._objects[key] = (data, content_type)
        return key

    async def get(self, key: str) -> bytes | None:
        with self._lock:
            stored = self._objects.get(key)
        return stored[0] if stored else None

    async def delete(self, key: str) -> None:
        with self._lock:
            self._objects.pop(key, None)

    async def access_url(self, key: str, *, expires_in: int) -> tuple[str, datetime]:
        expires_at = datetime.now(timezone.utc) + timedelta(seconds=expires_in)
        url = f"{self._base_url}/{quote(key)}?expires={int(time.time()) + expires_in}"
        return url, expires_at

    def keys(self) -> list[str]:
        with self._lock:
            return sorted(self._objects)
