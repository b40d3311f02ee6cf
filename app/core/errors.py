"""Application-level exception types.

This module defines domain errors used across services/adapters, enabling
consistent error handling, logging, and API responses.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal, NotRequired, TypedDict


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients.

    Fields are optional to keep shapes consistent across the codebase
    without forcing every error to carry every field.
    """

    code: str
    message: str
    hint: str
    reason: str
    max_length: int
    actual_length: int
    http_status: int
    retry_after: int
    reset_at: int
    limit: int
    record_id: str
    request_id: str
    context: NotRequired[dict[str, Any]]


@dataclass
class AppError(Exception):
    """Base error for application/domain failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


class ValidationAppError(AppError):
    """Raised when input/config validation fails."""


class InvalidDestinationAppError(ValidationAppError):
    """Raised when a destination is malformed, uses a disallowed scheme or
    points at a private network host. ``details["reason"]`` names the rule."""


class AuthorizationAppError(AppError):
    """Raised when the caller may not perform the requested operation."""


class NotFoundAppError(AppError):
    """Raised when a record id is unknown (or not yet resolvable)."""


@dataclass
class ConflictAppError(AppError):
    """Raised by a record store when a uniqueness constraint is violated.

    Attributes:
        conflict_on: ``"id"`` for a duplicate record id, ``"dedup_key"`` for a
            duplicate ``(owner_id, destination)`` pair.
    """

    conflict_on: Literal["id", "dedup_key"] = "id"


class RateLimitedAppError(AppError):
    """Raised when a rate limit guard trips. Details carry ``retry_after``,
    ``reset_at`` and ``limit``."""


class UpstreamAppError(AppError):
    """Raised when the record store, object storage or renderer fails or
    times out. Safe to retry with backoff."""
