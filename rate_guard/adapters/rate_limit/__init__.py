"""Rate limiting adapters.

This package provides a small abstraction layer so the HTTP layer can use the
shared Redis limiter in production and an in-memory limiter in development
and tests without changing the API layer.
"""

from rate_guard.adapters.rate_limit.base import (
    AbstractRateLimiter,
    RateLimiterOptions,
    RateLimitResult,
)
from rate_guard.adapters.rate_limit.factory import create_rate_limiter
from rate_guard.adapters.rate_limit.in_memory import InMemoryRateLimiter
from rate_guard.adapters.rate_limit.redis_limiter import RedisRateLimiter

__all__ = [
    "AbstractRateLimiter",
    "InMemoryRateLimiter",
    "RateLimitResult",
    "RateLimiterOptions",
    "RedisRateLimiter",
    "create_rate_limiter",
]
