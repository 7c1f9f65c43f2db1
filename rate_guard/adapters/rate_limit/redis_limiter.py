"""Redis-backed rate limiter shared by every server process.

Each consume is a single Lua script execution, so the block check, the
increment, the window initialization and the over-limit decision are one
atomic step on the Redis server. No lock is held in-process.

Key layout (``{prefix}`` is the configured key prefix):
- ``{prefix}:{key}``          integer counter, TTL = remaining window
- ``{prefix}:{key}:blocked``  block marker, TTL = remaining block
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, TypeVar

from redis.asyncio import Redis
from redis.exceptions import RedisError

from rate_guard.adapters.rate_limit.base import (
    AbstractRateLimiter,
    RateLimiterOptions,
    RateLimitResult,
)
from rate_guard.core.config import RedisSettings
from rate_guard.core.errors import StoreUnavailableError

logger = logging.getLogger(__name__)

T = TypeVar("T")


# KEYS[1] counter, KEYS[2] block marker
# ARGV: points, duration_ms, block_ms, cost
# Returns {allowed, consumed, wait_ms, blocked}
CONSUME_SCRIPT = """
local points = tonumber(ARGV[1])
local duration_ms = tonumber(ARGV[2])
local block_ms = tonumber(ARGV[3])
local cost = tonumber(ARGV[4])

local block_ttl = redis.call('PTTL', KEYS[2])
if block_ttl > 0 then
  local blocked_at = tonumber(redis.call('GET', KEYS[2]) or points)
  return {0, blocked_at, block_ttl, 1}
end

local consumed = redis.call('INCRBY', KEYS[1], cost)
local window_ttl = redis.call('PTTL', KEYS[1])
if window_ttl < 0 then
  redis.call('PEXPIRE', KEYS[1], duration_ms)
  window_ttl = duration_ms
end

if consumed <= points then
  return {1, consumed, window_ttl, 0}
end

if block_ms > 0 then
  redis.call('SET', KEYS[2], consumed, 'PX', block_ms)
  redis.call('PEXPIRE', KEYS[1], block_ms)
  return {0, consumed, block_ms, 1}
end

redis.call('DECRBY', KEYS[1], cost)
return {0, consumed, window_ttl, 0}
"""

# KEYS[1] counter, KEYS[2] block marker
# Returns {consumed, window_ttl_ms, block_value, block_ttl_ms}; -1 for absent
GET_SCRIPT = """
local consumed = tonumber(redis.call('GET', KEYS[1]) or -1)
local window_ttl = redis.call('PTTL', KEYS[1])
local blocked_at = tonumber(redis.call('GET', KEYS[2]) or -1)
local block_ttl = redis.call('PTTL', KEYS[2])
return {consumed, window_ttl, blocked_at, block_ttl}
"""


def create_redis_client(redis_settings: RedisSettings) -> Redis:
    """Build the shared asyncio Redis client (connection pool).

    Socket timeouts are set to the configured store timeout so a stalled
    connection cannot outlive the per-operation bound.
    """
    timeout = redis_settings.timeout_seconds
    if redis_settings.url:
        return Redis.from_url(
            redis_settings.url,
            socket_timeout=timeout,
            socket_connect_timeout=timeout,
            decode_responses=True,
        )
    return Redis(
        host=redis_settings.host,
        port=redis_settings.port,
        db=redis_settings.db,
        password=redis_settings.password,
        socket_timeout=timeout,
        socket_connect_timeout=timeout,
        decode_responses=True,
    )


class RedisRateLimiter(AbstractRateLimiter):
    """Rate limiter whose state lives in Redis.

    Important:
        Every store round trip is bounded by ``timeout_seconds``. Failures and
        timeouts surface as StoreUnavailableError; cancellation of the calling
        task propagates unchanged.
    """

    def __init__(
        self,
        redis: Redis,
        options: RateLimiterOptions,
        *,
        timeout_seconds: float = 0.3,
    ) -> None:
        super().__init__(options)
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        self._redis = redis
        self._timeout = timeout_seconds
        self._consume_script = redis.register_script(CONSUME_SCRIPT)
        self._get_script = redis.register_script(GET_SCRIPT)

    def _counter_key(self, key: str) -> str:
        return f"{self._options.key_prefix}:{key}"

    def _block_key(self, key: str) -> str:
        return f"{self._options.key_prefix}:{key}:blocked"

    async def _run(self, operation: str, awaitable: Awaitable[T]) -> T:
        """Await a store call under the timeout, translating store failures.

        Raises:
            StoreUnavailableError: On timeout or any Redis error.
        """
        try:
            return await asyncio.wait_for(awaitable, timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            logger.warning(
                "store.timeout",
                extra={"operation": operation, "timeout_seconds": self._timeout},
            )
            raise StoreUnavailableError(
                code="store_timeout",
                message="Rate limit store did not respond in time",
                details={"operation": operation, "timeout_seconds": self._timeout},
            ) from exc
        except (RedisError, OSError) as exc:
            logger.warning(
                "store.error",
                extra={
                    "operation": operation,
                    "error_type": type(exc).__name__,
                    "error_msg": str(exc),
                },
            )
            raise StoreUnavailableError(
                code="store_unavailable",
                message="Rate limit store is unavailable",
                details={"operation": operation, "error_type": type(exc).__name__},
            ) from exc

    async def consume(self, key: str, *, cost: int = 1) -> RateLimitResult:
        """Atomically consume ``cost`` points for key in a single round trip.

        Raises:
            InvalidKeyError: If key is empty.
            ValueError: If cost is invalid.
            StoreUnavailableError: If Redis cannot complete the script.
        """
        self._validate(key, cost)
        opts = self._options
        raw: list[Any] = await self._run(
            "consume",
            self._consume_script(
                keys=[self._counter_key(key), self._block_key(key)],
                args=[
                    opts.points,
                    opts.duration_seconds * 1000,
                    opts.block_duration_seconds * 1000,
                    cost,
                ],
            ),
        )
        allowed, consumed, wait_ms, blocked = (int(v) for v in raw)

        if allowed:
            return self._build_allowed_result(consumed=consumed)
        return self._build_denied_result(
            consumed=consumed,
            wait_ms=wait_ms,
            blocked=bool(blocked),
        )

    async def get(self, key: str) -> RateLimitResult | None:
        """Return the current state of key without consuming.

        ``allowed`` reports whether one more point would currently fit.
        """
        self._validate(key)
        raw: list[Any] = await self._run(
            "get",
            self._get_script(keys=[self._counter_key(key), self._block_key(key)]),
        )
        consumed, window_ttl, blocked_at, block_ttl = (int(v) for v in raw)

        if block_ttl > 0:
            return self._build_denied_result(
                consumed=max(blocked_at, 0),
                wait_ms=block_ttl,
                blocked=True,
            )
        if consumed < 0:
            return None
        if consumed < self._options.points:
            return self._build_allowed_result(consumed=consumed)
        return self._build_denied_result(
            consumed=consumed,
            wait_ms=max(window_ttl, 0),
            blocked=False,
        )

    async def delete(self, key: str) -> bool:
        self._validate(key)
        removed = await self._run(
            "delete",
            self._redis.delete(self._counter_key(key), self._block_key(key)),
        )
        return int(removed) > 0

    async def block(self, key: str, seconds: int) -> RateLimitResult:
        """Block key for ``seconds`` regardless of its current counter."""
        self._validate(key)
        if seconds < 1:
            raise ValueError("seconds must be >= 1")
        points = self._options.points
        await self._run(
            "block",
            self._redis.set(self._block_key(key), points, px=seconds * 1000),
        )
        return self._build_denied_result(
            consumed=points,
            wait_ms=seconds * 1000,
            blocked=True,
        )

    async def ping(self) -> bool:
        try:
            return bool(await self._run("ping", self._redis.ping()))
        except StoreUnavailableError:
            return False

    async def close(self) -> None:
        await self._redis.aclose()
