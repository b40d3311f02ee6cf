"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
It pins the testing environment before anything imports the settings, so
no .env.development file is picked up and private destinations are rejected
as in production.
"""

import os

# CRITICAL: Set this before any imports that might load settings
os.environ["APP_ENV"] = "testing"
os.environ["STORAGE_BACKEND"] = "memory"
os.environ.setdefault("APP_API_KEY_REQUIRED", "false")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from collections.abc import Iterator
from datetime import datetime, timedelta, timezone
from typing import Callable

import pytest
from fastapi.testclient import TestClient

from app.adapters.image import ImageService, InMemoryObjectStorage
from app.adapters.store import InMemoryRecordStore
from app.core.app_factory import create_app
from app.core.config import AppSettings, RateLimitSettings, Settings
from app.services.record_service import RecordService
from app.utils.simple_cache import RecordCache, TaggedTTLCache

PUBLIC_BASE_URL = "https://qr.example.com"


class FakeClock:
    """Manually advanced UTC clock for scan timestamps."""

    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += timedelta(seconds=seconds)


@pytest.fixture
def store() -> InMemoryRecordStore:
    return InMemoryRecordStore()


@pytest.fixture
def object_storage() -> InMemoryObjectStorage:
    return InMemoryObjectStorage()


@pytest.fixture
def images(object_storage: InMemoryObjectStorage) -> ImageService:
    return ImageService(object_storage, scale=2, border=1)


@pytest.fixture
def cache() -> TaggedTTLCache:
    return TaggedTTLCache(default_ttl_seconds=600, max_entries=1000)


@pytest.fixture
def record_cache(cache: TaggedTTLCache) -> RecordCache:
    return RecordCache(
        cache,
        record_ttl_seconds=600,
        image_ttl_seconds=3600,
        owner_list_ttl_seconds=300,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def service(
    store: InMemoryRecordStore,
    images: ImageService,
    record_cache: RecordCache,
    clock: FakeClock,
) -> RecordService:
    return RecordService(
        store,
        images,
        record_cache,
        public_base_url=PUBLIC_BASE_URL,
        clock=clock,
    )


@pytest.fixture
def make_settings() -> Callable[..., Settings]:
    """Build Settings with overridden app/rate limit sections."""

    def _make(*, app: dict | None = None, rate_limit: dict | None = None) -> Settings:
        return Settings(
            app=AppSettings(public_base_url=PUBLIC_BASE_URL, **(app or {})),
            rate_limit=RateLimitSettings(**(rate_limit or {})),
        )

    return _make


@pytest.fixture
def make_client(
    make_settings: Callable[..., Settings],
    store: InMemoryRecordStore,
    images: ImageService,
) -> Iterator[Callable[..., TestClient]]:
    """Factory for TestClients over a fresh app sharing the test's store."""
    clients: list[TestClient] = []

    def _make(**overrides) -> TestClient:
        app = create_app(make_settings(**overrides), store=store, image_service=images)
        client = TestClient(app, raise_server_exceptions=False)
        client.__enter__()
        clients.append(client)
        return client

    yield _make

    for client in clients:
        client.__exit__(None, None, None)


@pytest.fixture
def client(make_client: Callable[..., TestClient]) -> TestClient:
    return make_client()
