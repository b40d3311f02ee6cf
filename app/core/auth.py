"""Caller identity and API key checks.

The service does not authenticate end users itself. An upstream auth proxy
sets the owner header (``X-Owner-Id`` by default) and the service trusts it.
Record management endpoints can additionally be gated by a static API key
list from the environment.
"""

from __future__ import annotations

import hashlib
import logging
from typing import Annotated

from fastapi import Header, Request

from app.core.config import AppSettings
from app.core.errors import AuthorizationAppError, ValidationAppError

logger = logging.getLogger(__name__)

MAX_OWNER_ID_LENGTH = 128


def parse_api_keys(keys_string: str | None) -> set[str]:
    """Parse comma-separated API keys into a set.

    Examples:
        >>> parse_api_keys("key1, key2 , key3 ") == {"key1", "key2", "key3"}
        True
        >>> parse_api_keys(None)
        set()
    """
    if not keys_string:
        return set()

    return {key.strip() for key in keys_string.split(",") if key.strip()}


def get_owner_id(request: Request) -> str | None:
    """Owner identity from the configured header; None when anonymous.

    Raises:
        ValidationAppError: If the header value is longer than 128 characters.
    """
    app_settings: AppSettings = request.app.state.settings.app
    raw = request.headers.get(app_settings.owner_header, "").strip()
    if not raw:
        return None

    if len(raw) > MAX_OWNER_ID_LENGTH:
        raise ValidationAppError(
            code="invalid_owner_id",
            message="Owner identity is too long.",
            details={"max_length": MAX_OWNER_ID_LENGTH, "actual_length": len(raw)},
        )
    return raw


def validate_api_key(provided_key: str | None, app_settings: AppSettings) -> None:
    """Validate a provided API key against the configured keys.

    Pure validation logic without FastAPI dependencies for easy testing.

    Raises:
        AuthorizationAppError: If the key is missing/invalid, or auth is
            required but no keys are configured.
    """
    if not app_settings.api_key_required:
        return

    valid_keys = parse_api_keys(app_settings.api_keys)
    if not valid_keys:
        logger.error(
            "auth.failed",
            extra={"reason": "api_keys_not_configured"},
        )
        raise AuthorizationAppError(
            code="api_keys_not_configured",
            message="API key authentication is enabled but no valid keys are configured",
            details={"hint": "Set APP_API_KEYS or disable auth with APP_API_KEY_REQUIRED=false"},
        )

    if not provided_key:
        logger.warning("auth.missing_key", extra={"api_key_present": False})
        raise AuthorizationAppError(
            code="missing_api_key",
            message="Missing API key. Provide X-API-Key header.",
        )

    if provided_key not in valid_keys:
        logger.warning(
            "auth.failed",
            extra={
                "reason": "invalid_api_key",
                "api_key_hash": hashlib.sha256(provided_key.encode()).hexdigest()[:16],
            },
        )
        raise AuthorizationAppError(
            code="invalid_api_key",
            message="Invalid or missing API key",
        )


async def verify_api_key(
    request: Request,
    x_api_key: Annotated[str | None, Header(alias="X-API-Key")] = None,
) -> None:
    """FastAPI dependency gating record management endpoints.

    Usage:
        @router.get("/records", dependencies=[Depends(verify_api_key)])
    """
    validate_api_key(x_api_key, request.app.state.settings.app)
