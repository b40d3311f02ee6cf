"""Rate limiter interfaces.

Routes depend on this abstraction (not the concrete implementation) so the
in-memory limiter can be swapped for a shared store later without touching
the HTTP layer.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class RateLimitResult:
    """Result of a rate limit check.

    Attributes:
        allowed: Whether the request is allowed to proceed.
        limit: Max requests per window.
        remaining: Remaining requests in the current window (0 when blocked).
        reset_at: UNIX epoch seconds when the current window ends.
        retry_after_seconds: Suggested wait time in seconds when blocked.
    """

    allowed: bool
    limit: int
    remaining: int
    reset_at: float
    retry_after_seconds: int | None


class AbstractRateLimiter(ABC):
    """Interface for per-identity rate limiters."""

    @property
    @abstractmethod
    def limit(self) -> int:
        """Maximum requests per window."""

    @property
    @abstractmethod
    def window_seconds(self) -> int:
        """Window length in seconds."""

    @abstractmethod
    def check(self, identity: str) -> RateLimitResult:
        """Charge one request to ``identity`` and report whether it may proceed.

        Args:
            identity: Namespaced caller key (e.g. ``owner:<hash>``, ``ip:<addr>``).

        Returns:
            RateLimitResult describing the decision.
        """
        raise NotImplementedError

    @abstractmethod
    def reset(self, identity: str) -> None:
        """Forget the counter of a single identity."""
        raise NotImplementedError

    @abstractmethod
    def sweep(self) -> int:
        """Drop counters whose window has elapsed; return how many were dropped."""
        raise NotImplementedError
