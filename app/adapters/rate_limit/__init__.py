"""Rate limiting adapters.

An in-memory fixed-window limiter behind a small abstraction, so the service
can later move counters to a shared store without changing the API layer.
"""

from app.adapters.rate_limit.base import AbstractRateLimiter, RateLimitResult
from app.adapters.rate_limit.in_memory import InMemoryFixedWindowRateLimiter

__all__ = [
    "AbstractRateLimiter",
    "InMemoryFixedWindowRateLimiter",
    "RateLimitResult",
]
