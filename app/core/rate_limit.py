"""Rate limiting dependencies for FastAPI routes.

This module wires the rate limiting adapter into the HTTP layer.

- Two independent limiters: ``creation`` (record generation) and
  ``tracking`` (scan redirects), built once by the app factory and kept on
  ``app.state.rate_limiters``.
- Callers are keyed by owner id when one is present, otherwise by client
  address.
- Switched by ``RATE_LIMIT_ENABLED`` (on by default).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from fastapi import Request, Response

from app.adapters.rate_limit.base import AbstractRateLimiter, RateLimitResult
from app.adapters.rate_limit.in_memory import InMemoryFixedWindowRateLimiter
from app.core.auth import get_owner_id
from app.core.config import RateLimitSettings, Settings
from app.core.errors import RateLimitedAppError
from app.core.logging import hash_identifier

logger = logging.getLogger(__name__)


@dataclass
class RateLimiters:
    """The process-wide limiter instances."""

    creation: AbstractRateLimiter
    tracking: AbstractRateLimiter

    def sweep(self) -> int:
        return self.creation.sweep() + self.tracking.sweep()


def build_rate_limiters(cfg: RateLimitSettings) -> RateLimiters:
    return RateLimiters(
        creation=InMemoryFixedWindowRateLimiter(
            limit=cfg.creation_requests,
            window_seconds=cfg.creation_window_seconds,
            name="creation",
        ),
        tracking=InMemoryFixedWindowRateLimiter(
            limit=cfg.tracking_requests,
            window_seconds=cfg.tracking_window_seconds,
            name="tracking",
        ),
    )


def get_client_address(request: Request) -> str:
    """Best-effort client address behind proxies.

    Order: first ``X-Forwarded-For`` entry, ``X-Real-IP``, socket peer.
    """

    forwarded = request.headers.get("x-forwarded-for", "")
    first = forwarded.split(",")[0].strip()
    if first:
        return first

    real_ip = request.headers.get("x-real-ip", "").strip()
    if real_ip:
        return real_ip

    return request.client.host if request.client else "unknown"


def _rate_limit_identity(request: Request, owner_id: str | None) -> str:
    if owner_id:
        return f"owner:{owner_id}"
    return f"ip:{get_client_address(request)}"


def rate_limit_headers(result: RateLimitResult) -> dict[str, str]:
    headers = {
        "X-RateLimit-Limit": str(result.limit),
        "X-RateLimit-Remaining": str(result.remaining),
        "X-RateLimit-Reset": str(int(result.reset_at)),
    }
    if result.retry_after_seconds is not None:
        headers["Retry-After"] = str(result.retry_after_seconds)
    return headers


@dataclass
class RateLimitTicket:
    """Outcome of an admitted request, handed to the route.

    ``limiter`` is None when rate limiting is disabled.
    """

    limiter: AbstractRateLimiter | None = None
    identity: str = ""
    result: RateLimitResult | None = None
    include_headers: bool = False
    refund_on_failure: bool = False

    def apply(self, response: Response) -> None:
        """Copy the X-RateLimit-* headers onto a successful response."""
        if self.result is not None and self.include_headers:
            response.headers.update(rate_limit_headers(self.result))

    def refund(self) -> None:
        """Give the charge back after an upstream failure, when configured."""
        if self.limiter is not None and self.refund_on_failure:
            self.limiter.reset(self.identity)
            logger.info(
                "rate_limit.refunded",
                extra={"limiter": _limiter_name(self.limiter), "key_hash": hash_identifier(self.identity)},
            )


def _limiter_name(limiter: AbstractRateLimiter) -> str:
    return getattr(limiter, "name", type(limiter).__name__)


def _enforce(request: Request, limiter: AbstractRateLimiter, owner_id: str | None) -> RateLimitTicket:
    cfg: Settings = request.app.state.settings
    if not cfg.rate_limit.enabled:
        return RateLimitTicket()

    identity = _rate_limit_identity(request, owner_id)
    key_hash = hash_identifier(identity)
    key_type = "owner" if owner_id else "ip"

    result = limiter.check(identity)
    if result.allowed:
        logger.debug(
            "rate_limit.allowed",
            extra={
                "limiter": _limiter_name(limiter),
                "key_type": key_type,
                "key_hash": key_hash,
                "remaining": result.remaining,
            },
        )
        return RateLimitTicket(
            limiter=limiter,
            identity=identity,
            result=result,
            include_headers=cfg.rate_limit.include_headers,
            refund_on_failure=cfg.rate_limit.skip_failed_requests,
        )

    retry_after = result.retry_after_seconds or 1
    logger.warning(
        "rate_limit.exceeded",
        extra={
            "limiter": _limiter_name(limiter),
            "key_type": key_type,
            "key_hash": key_hash,
            "limit": result.limit,
            "window_s": limiter.window_seconds,
            "retry_after_s": retry_after,
        },
    )
    raise RateLimitedAppError(
        code="rate_limited",
        message="Too many requests. Please try again later.",
        details={
            "retry_after": retry_after,
            "reset_at": int(result.reset_at),
            "limit": result.limit,
        },
    )


def enforce_creation_limit(request: Request) -> RateLimitTicket:
    """Dependency guarding record generation."""
    limiters: RateLimiters = request.app.state.rate_limiters
    return _enforce(request, limiters.creation, get_owner_id(request))


def enforce_tracking_limit(request: Request) -> RateLimitTicket:
    """Dependency guarding tracking redirects (keyed by client address)."""
    limiters: RateLimiters = request.app.state.rate_limiters
    return _enforce(request, limiters.tracking, None)
