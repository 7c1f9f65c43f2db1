"""Rate limiting dependency for FastAPI routes.

This module wires the rate limiting adapter into the HTTP layer.

Design goals:
- Minimal coupling: API routes depend on a dependency function only.
- Swap-friendly: the limiter instance lives on ``app.state`` and is built by
  the application lifespan from settings.
- Explicit failure policy: when the shared store is unavailable the request
  is either admitted (``open``) or rejected with 503 (``closed``) as
  configured. There is no implicit fallback.

Rate limiting strategy:
- One shared counter per client address (normalized, see
  rate_guard.utils.client_address).
- Denied requests get HTTP 429 with a Retry-After hint in whole seconds.
"""

from __future__ import annotations

import logging

from fastapi import HTTPException, Request, status

from rate_guard.adapters.rate_limit.base import AbstractRateLimiter, RateLimitResult
from rate_guard.core.config import Settings, settings as default_settings
from rate_guard.core.errors import StoreUnavailableError
from rate_guard.core.logging import hash_identifier
from rate_guard.utils.client_address import extract_client_address, normalize_client_key

logger = logging.getLogger(__name__)


def _get_settings(request: Request) -> Settings:
    return getattr(request.app.state, "settings", None) or default_settings


def get_rate_limiter(request: Request) -> AbstractRateLimiter:
    """Return the process-wide limiter created by the application lifespan.

    Raises:
        RuntimeError: If the application was started without a limiter.
    """
    limiter = getattr(request.app.state, "rate_limiter", None)
    if limiter is None:
        raise RuntimeError("Rate limiter is not initialized; was the app lifespan run?")
    return limiter


def build_denied_headers(result: RateLimitResult, *, include_headers: bool) -> dict[str, str]:
    """Headers for a 429 response. Retry-After is always present."""
    retry_after = result.retry_after_seconds or 1
    headers = {"Retry-After": str(retry_after)}
    if include_headers:
        headers["X-RateLimit-Limit"] = str(result.limit)
        headers["X-RateLimit-Remaining"] = str(result.remaining)
    return headers


async def enforce_rate_limit(request: Request) -> None:
    """FastAPI dependency enforcing rate limits.

    When enabled, consumes 1 point from the requester's budget. If the requester
    exceeds the configured rate, raises HTTP 429.

    Args:
        request: FastAPI request.

    Raises:
        HTTPException: 429 Too Many Requests when rate limit is exceeded.
        InvalidKeyError: When no client address can be determined (400).
        StoreUnavailableError: When the store is down and the failure policy
            is ``closed`` (503).
    """

    cfg = _get_settings(request)
    if not cfg.rate_limit.enabled:
        return

    limiter = get_rate_limiter(request)
    raw_address = extract_client_address(
        request, trust_forwarded_for=cfg.rate_limit.trust_forwarded_for
    )
    key = normalize_client_key(raw_address)
    key_hash = hash_identifier(key)

    try:
        result = await limiter.consume(key)
    except StoreUnavailableError as exc:
        policy = cfg.rate_limit.failure_policy
        logger.warning(
            "rate_limit.store_unavailable",
            extra={
                "key_hash": key_hash,
                "failure_policy": policy,
                "error_code": exc.code,
            },
        )
        if policy == "open":
            return
        raise

    if result.allowed:
        logger.info(
            "rate_limit.allowed",
            extra={
                "key_hash": key_hash,
                "limit": result.limit,
                "remaining": result.remaining,
            },
        )
        return

    retry_after = result.retry_after_seconds or 1
    logger.warning(
        "rate_limit.exceeded",
        extra={
            "key_hash": key_hash,
            "limit": result.limit,
            "consumed": result.consumed,
            "blocked": result.blocked,
            "retry_after_s": retry_after,
        },
    )

    raise HTTPException(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        detail=f"Too many requests... Wait for {retry_after} sec",
        headers=build_denied_headers(result, include_headers=cfg.rate_limit.include_headers),
    )
