"""Application factory for FastAPI app.

Centralizes app construction (metadata, lifespan, middleware, handlers,
routers) so tests can build isolated apps with their own settings or limiter.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from rate_guard.adapters.rate_limit.base import AbstractRateLimiter
from rate_guard.adapters.rate_limit.factory import create_rate_limiter
from rate_guard.api.routes import health_router, home_router
from rate_guard.core.config import Settings, settings as default_settings
from rate_guard.core.exception_handlers import setup_exception_handlers
from rate_guard.core.logging import configure_logging, mask_url_credentials
from rate_guard.core.middleware import request_id_middleware
from rate_guard.core.openapi import apply_openapi_customizations

logger = logging.getLogger(__name__)


def _describe_store(config: Settings) -> str:
    if config.rate_limit.backend == "memory":
        return "memory"
    if config.redis.url:
        return mask_url_credentials(config.redis.url)
    return f"redis://{config.redis.host}:{config.redis.port}/{config.redis.db}"


def _build_lifespan(config: Settings, rate_limiter: AbstractRateLimiter | None):
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """Create the shared limiter on startup and release it on shutdown.

        An unreachable store at startup is logged, not fatal: requests are then
        handled according to the configured failure policy.
        """
        limiter = rate_limiter or create_rate_limiter(config)
        app.state.rate_limiter = limiter

        store = _describe_store(config)
        if await limiter.ping():
            logger.info("store.ping_ok", extra={"store": store})
        else:
            logger.error(
                "store.ping_failed",
                extra={"store": store, "failure_policy": config.rate_limit.failure_policy},
            )

        logger.info(
            "rate_limit.configured",
            extra={
                "backend": config.rate_limit.backend,
                "points": config.rate_limit.points,
                "duration_s": config.rate_limit.duration_seconds,
                "block_duration_s": config.rate_limit.block_duration_seconds,
                "key_prefix": config.rate_limit.key_prefix,
                "failure_policy": config.rate_limit.failure_policy,
            },
        )
        try:
            yield
        finally:
            await limiter.close()
            app.state.rate_limiter = None

    return lifespan


def create_app(
    config: Settings | None = None,
    *,
    rate_limiter: AbstractRateLimiter | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        config: Settings to use; defaults to the global settings.
        rate_limiter: Pre-built limiter (tests); otherwise built from settings
            when the lifespan starts.

    Returns:
        Configured FastAPI app with lifespan, middleware, handlers and routers.
    """
    cfg = config or default_settings

    # Logging first so subsequent init logs are formatted as desired
    configure_logging(cfg.log)

    app = FastAPI(
        title=cfg.app.title,
        description=(
            "HTTP service protected by a shared, cross-process request quota. "
            "Each client address gets a Redis-backed counter; clients over the "
            "quota receive 429 with a Retry-After hint."
        ),
        version="0.1.0",
        debug=cfg.app.debug,
        lifespan=_build_lifespan(cfg, rate_limiter),
    )
    app.state.settings = cfg
    app.state.rate_limiter = None

    # Middleware
    app.middleware("http")(request_id_middleware)

    # Exception handlers
    setup_exception_handlers(app)

    # Routers
    app.include_router(home_router)
    app.include_router(health_router)

    apply_openapi_customizations(app)

    return app
