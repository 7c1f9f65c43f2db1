"""Rate limiter interfaces.

The API depends on this abstraction (not the concrete implementation) so the
shared Redis store and the per-process memory store stay interchangeable.
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass

from rate_guard.core.errors import InvalidKeyError


@dataclass(frozen=True)
class RateLimiterOptions:
    """Limiter configuration, fixed at construction.

    Attributes:
        points: Max consumable points per window.
        duration_seconds: Window length.
        block_duration_seconds: Extra denial period after exceeding the quota,
            measured from the over-limit attempt. 0 disables blocking.
        key_prefix: Namespace applied to every key written to the store.
    """

    points: int
    duration_seconds: int
    block_duration_seconds: int = 0
    key_prefix: str = "middleware"

    def __post_init__(self) -> None:
        if self.points < 1:
            raise ValueError("points must be >= 1")
        if self.duration_seconds < 1:
            raise ValueError("duration_seconds must be >= 1")
        if self.block_duration_seconds < 0:
            raise ValueError("block_duration_seconds must be >= 0")
        if not self.key_prefix:
            raise ValueError("key_prefix must be a non-empty string")


@dataclass(frozen=True)
class RateLimitResult:
    """Result of a rate limit check/consume operation.

    Attributes:
        allowed: Whether the request is allowed to proceed.
        limit: Max points per window.
        consumed: Points consumed in the current window (post-increment value
            for the decision being reported).
        remaining: Points left in the current window (0 when denied).
        retry_after_seconds: Whole seconds until the next admissible attempt
            when denied, always >= 1. None when allowed.
        blocked: Whether the key is in (or just entered) the blocked state.
    """

    allowed: bool
    limit: int
    consumed: int
    remaining: int
    retry_after_seconds: int | None
    blocked: bool = False


def retry_after_from_ms(ms: float) -> int:
    """Round a millisecond wait up to whole seconds, never below 1."""
    return max(1, int(math.ceil(ms / 1000.0)))


class AbstractRateLimiter(ABC):
    """Interface for rate limiters."""

    def __init__(self, options: RateLimiterOptions) -> None:
        self._options = options

    @property
    def options(self) -> RateLimiterOptions:
        return self._options

    def _validate(self, key: str, cost: int = 1) -> None:
        """Reject unusable keys and costs before touching the store.

        Raises:
            InvalidKeyError: If key is empty.
            ValueError: If cost is < 1.
        """
        if cost < 1:
            raise ValueError("cost must be >= 1")
        if not key:
            raise InvalidKeyError(
                code="invalid_client_key",
                message="Rate limit key must be a non-empty string",
            )

    def _build_allowed_result(self, *, consumed: int) -> RateLimitResult:
        """Build a RateLimitResult for an admitted request."""
        return RateLimitResult(
            allowed=True,
            limit=self._options.points,
            consumed=consumed,
            remaining=max(0, self._options.points - consumed),
            retry_after_seconds=None,
        )

    def _build_denied_result(
        self, *, consumed: int, wait_ms: float, blocked: bool
    ) -> RateLimitResult:
        """Build a RateLimitResult for a denied request."""
        return RateLimitResult(
            allowed=False,
            limit=self._options.points,
            consumed=consumed,
            remaining=0,
            retry_after_seconds=retry_after_from_ms(wait_ms),
            blocked=blocked,
        )

    @abstractmethod
    async def consume(self, key: str, *, cost: int = 1) -> RateLimitResult:
        """Consume rate limit budget for a given key.

        Args:
            key: Normalized client key (e.g., IP address).
            cost: Points to consume (default 1).

        Returns:
            RateLimitResult describing whether it was allowed.

        Raises:
            InvalidKeyError: If key is empty.
            StoreUnavailableError: If the backing store cannot complete the
                operation.
        """
        raise NotImplementedError

    @abstractmethod
    async def get(self, key: str) -> RateLimitResult | None:
        """Return the current state for key without consuming, or None."""
        raise NotImplementedError

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Reset key (counter and block). Returns True if state existed."""
        raise NotImplementedError

    @abstractmethod
    async def block(self, key: str, seconds: int) -> RateLimitResult:
        """Block key for the given number of seconds."""
        raise NotImplementedError

    async def ping(self) -> bool:
        """Check that the backing store is reachable."""
        return True

    async def close(self) -> None:
        """Release store resources."""
        return None
