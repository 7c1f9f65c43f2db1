"""Factory pattern for creating rate limiter instances."""

from rate_guard.adapters.rate_limit.base import AbstractRateLimiter, RateLimiterOptions
from rate_guard.adapters.rate_limit.in_memory import InMemoryRateLimiter
from rate_guard.adapters.rate_limit.redis_limiter import RedisRateLimiter, create_redis_client
from rate_guard.core.config import Settings, settings as default_settings
from rate_guard.core.errors import ValidationAppError


def build_limiter_options(config: Settings) -> RateLimiterOptions:
    """Translate rate limit settings into limiter options."""
    rl = config.rate_limit
    return RateLimiterOptions(
        points=rl.points,
        duration_seconds=rl.duration_seconds,
        block_duration_seconds=rl.block_duration_seconds,
        key_prefix=rl.key_prefix,
    )


def create_rate_limiter(config: Settings | None = None) -> AbstractRateLimiter:
    """Factory function to instantiate the configured rate limiter backend.

    Reads configuration from rate_guard.core.config.settings unless an explicit
    Settings object is given.

    Returns:
        AbstractRateLimiter: Configured limiter instance.

    Raises:
        ValidationAppError: If the backend is not supported.
    """
    cfg = config or default_settings
    backend = cfg.rate_limit.backend.lower()
    options = build_limiter_options(cfg)

    if backend == "redis":
        return RedisRateLimiter(
            create_redis_client(cfg.redis),
            options,
            timeout_seconds=cfg.redis.timeout_seconds,
        )

    if backend == "memory":
        return InMemoryRateLimiter(options)

    raise ValidationAppError(
        code="rate_limit_unknown_backend",
        message=(
            f"Unknown rate limit backend: '{backend}'. Supported backends: redis, memory"
        ),
    )
