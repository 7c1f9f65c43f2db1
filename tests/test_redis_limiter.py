"""Unit tests for the Redis rate limiter with a mocked client.

The atomic decision itself lives in the Lua script; these tests pin the
protocol around it: keys, arguments, one round trip per consume, result
decoding, timeouts and error translation.
"""

import asyncio
from unittest.mock import AsyncMock, Mock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import ResponseError

from rate_guard.adapters.rate_limit.base import RateLimiterOptions
from rate_guard.adapters.rate_limit.redis_limiter import (
    CONSUME_SCRIPT,
    GET_SCRIPT,
    RedisRateLimiter,
    create_redis_client,
)
from rate_guard.core.config import RedisSettings
from rate_guard.core.errors import InvalidKeyError, StoreUnavailableError


@pytest.fixture
def consume_script() -> AsyncMock:
    return AsyncMock(return_value=[1, 1, 60000, 0])


@pytest.fixture
def get_script() -> AsyncMock:
    return AsyncMock(return_value=[-1, -2, -1, -2])


@pytest.fixture
def redis_client(consume_script: AsyncMock, get_script: AsyncMock) -> Mock:
    client = Mock()
    client.register_script.side_effect = [consume_script, get_script]
    client.delete = AsyncMock(return_value=0)
    client.set = AsyncMock(return_value=True)
    client.ping = AsyncMock(return_value=True)
    client.aclose = AsyncMock()
    return client


@pytest.fixture
def limiter(redis_client: Mock) -> RedisRateLimiter:
    options = RateLimiterOptions(
        points=10,
        duration_seconds=60,
        block_duration_seconds=120,
        key_prefix="middleware",
    )
    return RedisRateLimiter(redis_client, options, timeout_seconds=0.05)


def test_registers_both_scripts(limiter: RedisRateLimiter, redis_client: Mock) -> None:
    registered = [c.args[0] for c in redis_client.register_script.call_args_list]
    assert registered == [CONSUME_SCRIPT, GET_SCRIPT]


def test_consume_script_checks_block_before_incrementing() -> None:
    assert CONSUME_SCRIPT.index("PTTL', KEYS[2]") < CONSUME_SCRIPT.index("INCRBY")


@pytest.mark.asyncio
async def test_consume_is_a_single_script_call(
    limiter: RedisRateLimiter, consume_script: AsyncMock
) -> None:
    result = await limiter.consume("1.2.3.4")

    consume_script.assert_awaited_once_with(
        keys=["middleware:1.2.3.4", "middleware:1.2.3.4:blocked"],
        args=[10, 60000, 120000, 1],
    )
    assert result.allowed is True
    assert result.consumed == 1
    assert result.remaining == 9
    assert result.retry_after_seconds is None


@pytest.mark.asyncio
async def test_consume_passes_cost(limiter: RedisRateLimiter, consume_script: AsyncMock) -> None:
    consume_script.return_value = [1, 4, 59000, 0]

    result = await limiter.consume("k", cost=4)

    assert consume_script.await_args.kwargs["args"][3] == 4
    assert result.remaining == 6


@pytest.mark.asyncio
async def test_over_limit_triggers_block(limiter: RedisRateLimiter, consume_script: AsyncMock) -> None:
    consume_script.return_value = [0, 11, 120000, 1]

    result = await limiter.consume("k")

    assert result.allowed is False
    assert result.blocked is True
    assert result.consumed == 11
    assert result.remaining == 0
    assert result.retry_after_seconds == 120


@pytest.mark.asyncio
async def test_active_block_reports_remaining_time(
    limiter: RedisRateLimiter, consume_script: AsyncMock
) -> None:
    consume_script.return_value = [0, 11, 25_400, 1]

    result = await limiter.consume("k")

    assert result.allowed is False
    assert result.retry_after_seconds == 26


@pytest.mark.asyncio
async def test_denied_without_block_uses_window_ttl(
    limiter: RedisRateLimiter, consume_script: AsyncMock
) -> None:
    consume_script.return_value = [0, 11, 12, 0]

    result = await limiter.consume("k")

    assert result.allowed is False
    assert result.blocked is False
    assert result.retry_after_seconds == 1


@pytest.mark.asyncio
async def test_decodes_string_replies(limiter: RedisRateLimiter, consume_script: AsyncMock) -> None:
    consume_script.return_value = ["1", "3", "30000", "0"]

    result = await limiter.consume("k")

    assert result.allowed is True
    assert result.consumed == 3


@pytest.mark.asyncio
async def test_timeout_raises_store_unavailable(
    limiter: RedisRateLimiter, consume_script: AsyncMock
) -> None:
    async def stall(*args, **kwargs):
        await asyncio.sleep(1)

    consume_script.side_effect = stall

    with pytest.raises(StoreUnavailableError) as exc_info:
        await limiter.consume("k")

    assert exc_info.value.code == "store_timeout"
    assert exc_info.value.details["operation"] == "consume"


@pytest.mark.asyncio
async def test_connection_error_raises_store_unavailable(
    limiter: RedisRateLimiter, consume_script: AsyncMock
) -> None:
    consume_script.side_effect = RedisConnectionError("Connection refused")

    with pytest.raises(StoreUnavailableError) as exc_info:
        await limiter.consume("k")

    assert exc_info.value.code == "store_unavailable"
    assert isinstance(exc_info.value.__cause__, RedisConnectionError)


@pytest.mark.asyncio
async def test_script_error_raises_store_unavailable(
    limiter: RedisRateLimiter, consume_script: AsyncMock
) -> None:
    consume_script.side_effect = ResponseError("NOSCRIPT")

    with pytest.raises(StoreUnavailableError):
        await limiter.consume("k")


@pytest.mark.asyncio
async def test_cancellation_propagates(limiter: RedisRateLimiter, consume_script: AsyncMock) -> None:
    consume_script.side_effect = asyncio.CancelledError()

    with pytest.raises(asyncio.CancelledError):
        await limiter.consume("k")


@pytest.mark.asyncio
async def test_empty_key_never_reaches_store(
    limiter: RedisRateLimiter, consume_script: AsyncMock
) -> None:
    with pytest.raises(InvalidKeyError):
        await limiter.consume("")

    consume_script.assert_not_awaited()


@pytest.mark.asyncio
async def test_get_absent_key(limiter: RedisRateLimiter) -> None:
    assert await limiter.get("k") is None


@pytest.mark.asyncio
async def test_get_active_window(limiter: RedisRateLimiter, get_script: AsyncMock) -> None:
    get_script.return_value = [4, 30000, -1, -2]

    result = await limiter.get("k")

    get_script.assert_awaited_once_with(keys=["middleware:k", "middleware:k:blocked"])
    assert result.allowed is True
    assert result.consumed == 4
    assert result.remaining == 6


@pytest.mark.asyncio
async def test_get_blocked_key(limiter: RedisRateLimiter, get_script: AsyncMock) -> None:
    get_script.return_value = [-1, -2, 11, 90000]

    result = await limiter.get("k")

    assert result.allowed is False
    assert result.blocked is True
    assert result.consumed == 11
    assert result.retry_after_seconds == 90


@pytest.mark.asyncio
async def test_delete_removes_both_keys(limiter: RedisRateLimiter, redis_client: Mock) -> None:
    redis_client.delete.return_value = 2

    assert await limiter.delete("k") is True
    redis_client.delete.assert_awaited_once_with("middleware:k", "middleware:k:blocked")


@pytest.mark.asyncio
async def test_block_sets_marker_with_ttl(limiter: RedisRateLimiter, redis_client: Mock) -> None:
    result = await limiter.block("k", 30)

    redis_client.set.assert_awaited_once_with("middleware:k:blocked", 10, px=30000)
    assert result.blocked is True
    assert result.retry_after_seconds == 30


@pytest.mark.asyncio
async def test_ping_failure_returns_false(limiter: RedisRateLimiter, redis_client: Mock) -> None:
    redis_client.ping.side_effect = RedisConnectionError("down")

    assert await limiter.ping() is False


@pytest.mark.asyncio
async def test_close_releases_client(limiter: RedisRateLimiter, redis_client: Mock) -> None:
    await limiter.close()

    redis_client.aclose.assert_awaited_once()


def test_invalid_timeout(redis_client: Mock) -> None:
    with pytest.raises(ValueError):
        RedisRateLimiter(redis_client, RateLimiterOptions(points=1, duration_seconds=1), timeout_seconds=0)


def test_create_client_from_host_settings() -> None:
    client = create_redis_client(RedisSettings(host="cache", port=6380, db=2, timeout_seconds=0.5))

    kwargs = client.connection_pool.connection_kwargs
    assert kwargs["host"] == "cache"
    assert kwargs["port"] == 6380
    assert kwargs["db"] == 2
    assert kwargs["socket_timeout"] == 0.5


def test_create_client_from_url() -> None:
    client = create_redis_client(RedisSettings(url="redis://cache:6390/3", timeout_seconds=0.2))

    kwargs = client.connection_pool.connection_kwargs
    assert kwargs["host"] == "cache"
    assert kwargs["port"] == 6390
    assert kwargs["db"] == 3
    assert kwargs["socket_connect_timeout"] == 0.2
