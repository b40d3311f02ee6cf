"""Settings for the QR tracker, read from the environment.

``APP_ENV`` (development, testing, staging, production) selects the
``.env.<env>`` file at the project root. Each concern below is its own
settings class with its own env prefix.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


APP_ENV = os.getenv("APP_ENV", "development")

PROJECT_ROOT = Path(__file__).resolve().parents[2]

ENV_FILES = {
    env: f".env.{env}" for env in ("development", "testing", "staging", "production")
}

_env_path = PROJECT_ROOT / ENV_FILES.get(APP_ENV, ENV_FILES["development"])

# Nested BaseSettings ignore env_file, so the file is pushed into os.environ
# before any section is instantiated. A missing file means env vars only.
if _env_path.is_file():
    from dotenv import load_dotenv
    load_dotenv(_env_path, override=True)


class AppSettings(BaseSettings):
    """Application-wide configuration."""

    debug: bool = Field(
        False,
        description="Run FastAPI in debug mode (tracebacks on unhandled errors)",
    )
    public_base_url: str = Field(
        "http://localhost:8000",
        description="Public base URL used to build tracking addresses",
    )
    tracking_path: str = Field(
        "q",
        description="Path segment of the tracking route (tracking address is {base}/{path}/{id})",
    )
    max_destination_length: int = Field(
        2048,
        description="Maximum accepted destination length in characters",
        ge=16,
    )
    owner_header: str = Field(
        "X-Owner-Id",
        description="Header carrying the caller identity set by the upstream auth layer",
    )
    region_header: str = Field(
        "CloudFront-Viewer-Country",
        description="Header carrying the viewer region for scan metadata",
    )
    api_key_required: bool = Field(
        False,
        description="Whether API key authentication is required on record management endpoints",
    )
    api_keys: str | None = Field(
        None,
        description="Comma-separated list of valid API keys for authentication",
    )
    generate_timeout_seconds: float = Field(
        15.0,
        description="Upper bound for a single record generation",
        gt=0,
    )
    track_timeout_seconds: float = Field(
        5.0,
        description="Upper bound for a single scan accounting",
        gt=0,
    )

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        case_sensitive=False,
    )


class RateLimitSettings(BaseSettings):
    """Fixed-window limits, one pair per operation class."""

    enabled: bool = Field(
        True,
        description="Enable rate limiting on creation and tracking",
    )
    creation_requests: int = Field(
        10,
        description="Maximum record creations per window (per owner or client address)",
        ge=1,
    )
    creation_window_seconds: int = Field(
        900,
        description="Creation window size in seconds",
        ge=1,
    )
    tracking_requests: int = Field(
        100,
        description="Maximum scans per window (per client address)",
        ge=1,
    )
    tracking_window_seconds: int = Field(
        60,
        description="Tracking window size in seconds",
        ge=1,
    )
    include_headers: bool = Field(
        True,
        description="Include X-RateLimit-* and Retry-After headers when throttling",
    )
    skip_failed_requests: bool = Field(
        False,
        description="Refund the caller's budget when the guarded operation fails upstream",
    )
    sweep_interval_seconds: float = Field(
        60.0,
        description="Interval between sweeps of elapsed windows",
        gt=0,
    )

    model_config = SettingsConfigDict(
        env_prefix="RATE_LIMIT_",
        case_sensitive=False,
    )


class CacheSettings(BaseSettings):
    """Process-local cache configuration."""

    record_ttl_seconds: int = Field(600, ge=1)
    image_ttl_seconds: int = Field(3600, ge=1)
    owner_list_ttl_seconds: int = Field(300, ge=1)
    max_entries: int | None = Field(
        10_000,
        description="Maximum cached entries (LRU eviction beyond this)",
    )
    sweep_interval_seconds: float = Field(
        300.0,
        description="Interval between sweeps of expired entries",
        gt=0,
    )

    model_config = SettingsConfigDict(
        env_prefix="CACHE_",
        case_sensitive=False,
    )


class StorageSettings(BaseSettings):
    """Record store and object storage backends."""

    backend: Literal["memory", "aws"] = Field(
        "memory",
        description="memory (single process, non-durable) or aws (DynamoDB + S3)",
    )
    aws_region: str | None = Field(None, description="AWS region for DynamoDB and S3")
    endpoint_url: str | None = Field(
        None,
        description="Custom endpoint (e.g., localstack) for DynamoDB and S3",
    )
    records_table: str = Field("qr-records")
    scans_table: str = Field("qr-scans")
    owner_index: str = Field(
        "byOwner",
        description="Records table GSI keyed by owner_id, sorted by created_at",
    )
    bucket: str | None = Field(None, description="S3 bucket holding rendered images")

    model_config = SettingsConfigDict(
        env_prefix="STORAGE_",
        case_sensitive=False,
    )


class ImageSettings(BaseSettings):
    """QR rendering and image key conventions."""

    prefix: str = Field("qr-images", description="Object key prefix for rendered images")
    extension: str = Field("png")
    scale: int = Field(10, ge=1, description="Pixels per QR module")
    border: int = Field(2, ge=0, description="Quiet zone size in modules")
    error_level: Literal["l", "m", "q", "h"] = Field("m")
    url_expiry_seconds: int = Field(
        3600,
        ge=1,
        description="Lifetime of time-boxed image access URLs",
    )

    model_config = SettingsConfigDict(
        env_prefix="IMAGE_",
        case_sensitive=False,
    )


class LogSettings(BaseSettings):
    """Logging output configuration."""

    level: str = Field("INFO")
    format: Literal["json", "plain"] = Field("json")
    output: Literal["stdout", "file"] = Field("stdout")
    file_path: str | None = Field(None)
    max_bytes: int | None = Field(10 * 1024 * 1024)
    backup_count: int = Field(5)
    request_id_header: str = Field("X-Request-ID")

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class Settings(BaseSettings):
    """All settings sections. Invalid values fail at startup.

    ``development`` is the only environment that accepts private-network
    destinations.
    """

    app_env: str = APP_ENV
    app: AppSettings = Field(default_factory=AppSettings)
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    image: ImageSettings = Field(default_factory=ImageSettings)
    log: LogSettings = Field(default_factory=LogSettings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )

    @property
    def allow_private_destinations(self) -> bool:
        """Loopback/private destinations are only accepted in development."""
        return self.app_env == "development"


# Default for create_app(); tests build their own Settings
settings = Settings()
