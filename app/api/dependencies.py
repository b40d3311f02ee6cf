from __future__ import annotations

from fastapi import Request

from app.core.config import Settings
from app.services.record_service import RecordService
from app.utils.simple_cache import TaggedTTLCache


def get_record_service(request: Request) -> RecordService:
    return request.app.state.record_service


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_cache(request: Request) -> TaggedTTLCache:
    return request.app.state.cache
