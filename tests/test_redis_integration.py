"""Integration tests against a real Redis server.

Skipped unless REDIS_TEST_URL is set, e.g.:
    REDIS_TEST_URL=redis://localhost:6379/15 pytest tests/test_redis_integration.py
"""

import asyncio
import os
import uuid

import pytest

from rate_guard.adapters.rate_limit.base import RateLimiterOptions
from rate_guard.adapters.rate_limit.redis_limiter import RedisRateLimiter, create_redis_client
from rate_guard.core.config import RedisSettings

REDIS_TEST_URL = os.getenv("REDIS_TEST_URL")

pytestmark = pytest.mark.skipif(not REDIS_TEST_URL, reason="REDIS_TEST_URL not set")


def _limiter(*, points: int, duration: int = 60, block: int = 0) -> RedisRateLimiter:
    client = create_redis_client(RedisSettings(url=REDIS_TEST_URL, timeout_seconds=2.0))
    options = RateLimiterOptions(
        points=points,
        duration_seconds=duration,
        block_duration_seconds=block,
        key_prefix=f"rate-guard-test-{uuid.uuid4().hex[:8]}",
    )
    return RedisRateLimiter(client, options, timeout_seconds=2.0)


@pytest.mark.asyncio
async def test_concurrent_consumes_are_linearizable() -> None:
    limiter = _limiter(points=10, block=5)
    try:
        results = await asyncio.gather(*(limiter.consume("10.0.0.1") for _ in range(40)))
        assert sum(r.allowed for r in results) == 10
        assert sum(not r.allowed for r in results) == 30
        assert all(r.retry_after_seconds >= 1 for r in results if not r.allowed)
    finally:
        await limiter.delete("10.0.0.1")
        await limiter.close()


@pytest.mark.asyncio
async def test_block_then_reset() -> None:
    limiter = _limiter(points=1, block=30)
    try:
        assert (await limiter.consume("10.0.0.2")).allowed is True
        denied = await limiter.consume("10.0.0.2")
        assert denied.blocked is True
        assert denied.retry_after_seconds == 30

        snapshot = await limiter.get("10.0.0.2")
        assert snapshot.blocked is True

        assert await limiter.delete("10.0.0.2") is True
        assert (await limiter.consume("10.0.0.2")).allowed is True
    finally:
        await limiter.delete("10.0.0.2")
        await limiter.close()


@pytest.mark.asyncio
async def test_window_expires() -> None:
    limiter = _limiter(points=1, duration=1)
    try:
        assert (await limiter.consume("10.0.0.3")).allowed is True
        assert (await limiter.consume("10.0.0.3")).allowed is False
        await asyncio.sleep(1.1)
        assert (await limiter.consume("10.0.0.3")).allowed is True
    finally:
        await limiter.delete("10.0.0.3")
        await limiter.close()
