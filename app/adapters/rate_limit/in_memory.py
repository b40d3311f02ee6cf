"""In-memory fixed-window rate limiter.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Thread-safe: uses a lock around shared state.
- The window of an identity opens on its first request and lasts
  ``window_seconds``; it is not aligned to wall-clock boundaries.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable

from app.adapters.rate_limit.base import AbstractRateLimiter, RateLimitResult

logger = logging.getLogger(__name__)


@dataclass
class _WindowState:
    count: int
    reset_at: float


class InMemoryFixedWindowRateLimiter(AbstractRateLimiter):
    """Fixed-window counter keyed by caller identity.

    A counter is created on the first request of an identity with
    ``reset_at = now + window``. Requests within the window increment it until
    it reaches ``limit``; further requests are rejected until ``now`` passes
    ``reset_at``, at which point the next request starts a fresh window.

    Important:
        Expired counters are only dropped lazily (on the identity's next
        request) or by :meth:`sweep`; run the sweep periodically so memory is
        bounded by active identities.
    """

    def __init__(
        self,
        *,
        limit: int,
        window_seconds: int,
        name: str = "default",
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the limiter.

        Args:
            limit: Maximum number of requests per window.
            window_seconds: Window length in seconds.
            name: Label used in logs (e.g. ``creation``, ``tracking``).
            clock: Time source returning UNIX time in seconds.

        Raises:
            ValueError: If limit or window_seconds are invalid.
        """
        if limit < 1:
            raise ValueError("limit must be >= 1")
        if window_seconds < 1:
            raise ValueError("window_seconds must be >= 1")

        self._limit = limit
        self._window_seconds = window_seconds
        self.name = name
        self._clock = clock
        self._lock = threading.RLock()
        self._state_by_identity: dict[str, _WindowState] = {}

    def __repr__(self) -> str:  # pragma: no cover - representation only
        return (
            f"InMemoryFixedWindowRateLimiter(name={self.name!r}, limit={self._limit}, "
            f"window_seconds={self._window_seconds}, tracked={len(self._state_by_identity)})"
        )

    @property
    def limit(self) -> int:
        return self._limit

    @property
    def window_seconds(self) -> int:
        return self._window_seconds

    def check(self, identity: str) -> RateLimitResult:
        """Charge one request to ``identity``.

        Args:
            identity: Caller key.

        Returns:
            RateLimitResult with allowance decision and metadata.

        Raises:
            ValueError: If identity is empty.
        """
        if not identity:
            raise ValueError("identity must be a non-empty string")

        now = self._clock()

        with self._lock:
            state = self._state_by_identity.get(identity)

            if state is None or now > state.reset_at:
                state = _WindowState(count=1, reset_at=now + self._window_seconds)
                self._state_by_identity[identity] = state
                return RateLimitResult(
                    allowed=True,
                    limit=self._limit,
                    remaining=self._limit - 1,
                    reset_at=state.reset_at,
                    retry_after_seconds=None,
                )

            if state.count >= self._limit:
                return RateLimitResult(
                    allowed=False,
                    limit=self._limit,
                    remaining=0,
                    reset_at=state.reset_at,
                    retry_after_seconds=max(1, int(math.ceil(state.reset_at - now))),
                )

            state.count += 1
            return RateLimitResult(
                allowed=True,
                limit=self._limit,
                remaining=self._limit - state.count,
                reset_at=state.reset_at,
                retry_after_seconds=None,
            )

    def reset(self, identity: str) -> None:
        with self._lock:
            self._state_by_identity.pop(identity, None)

    def sweep(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [
                identity
                for identity, state in self._state_by_identity.items()
                if now > state.reset_at
            ]
            for identity in expired:
                del self._state_by_identity[identity]

        if expired:
            logger.debug(
                "rate_limit.swept",
                extra={"limiter": self.name, "removed": len(expired)},
            )
        return len(expired)

    def tracked_identities(self) -> int:
        """Number of identities currently holding a counter."""
        with self._lock:
            return len(self._state_by_identity)
