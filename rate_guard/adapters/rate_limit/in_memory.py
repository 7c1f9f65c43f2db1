"""In-memory rate limiter with window and block state.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
  Use the Redis limiter for anything beyond local development and tests.
- Thread-safe: uses a lock around shared state.
- Mirrors the Redis limiter decision rules exactly, so the same tests describe
  both.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable

from rate_guard.adapters.rate_limit.base import (
    AbstractRateLimiter,
    RateLimiterOptions,
    RateLimitResult,
)


@dataclass
class RateRecord:
    count: int
    window_expires_at: float
    blocked_until: float | None = None

    def is_blocked(self, now: float) -> bool:
        return self.blocked_until is not None and self.blocked_until > now

    def is_expired(self, now: float) -> bool:
        return self.window_expires_at <= now and not self.is_blocked(now)


class InMemoryRateLimiter(AbstractRateLimiter):
    """Rate limiter keeping one RateRecord per key in a dict.

    Block state is checked strictly before window state. A block outlives the
    window that triggered it; once both have elapsed the record is dropped and
    the next consume starts a fresh window.
    """

    def __init__(
        self,
        options: RateLimiterOptions,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the in-memory rate limiter.

        Args:
            options: Limiter configuration.
            clock: Time source function returning UNIX time in seconds.
        """
        super().__init__(options)
        self._clock = clock
        self._lock = threading.RLock()
        self._records: dict[str, RateRecord] = {}

    def _live_record(self, key: str, now: float) -> RateRecord | None:
        """Return the record for key, dropping it if fully expired."""
        record = self._records.get(key)
        if record is not None and record.is_expired(now):
            del self._records[key]
            return None
        return record

    async def consume(self, key: str, *, cost: int = 1) -> RateLimitResult:
        """Consume rate limit budget for the provided key.

        Raises:
            InvalidKeyError: If key is empty.
            ValueError: If cost is invalid.
        """
        self._validate(key, cost)
        opts = self._options
        with self._lock:
            now = self._clock()
            record = self._live_record(key, now)

            if record is not None and record.is_blocked(now):
                return self._build_denied_result(
                    consumed=record.count,
                    wait_ms=(record.blocked_until - now) * 1000,
                    blocked=True,
                )

            if record is None or record.window_expires_at <= now:
                record = RateRecord(count=0, window_expires_at=now + opts.duration_seconds)
                self._records[key] = record

            record.count += cost
            consumed = record.count
            if consumed <= opts.points:
                return self._build_allowed_result(consumed=consumed)

            if opts.block_duration_seconds > 0:
                record.blocked_until = now + opts.block_duration_seconds
                # window restarts once the block lifts
                record.window_expires_at = record.blocked_until
                return self._build_denied_result(
                    consumed=consumed,
                    wait_ms=opts.block_duration_seconds * 1000,
                    blocked=True,
                )

            record.count -= cost
            return self._build_denied_result(
                consumed=consumed,
                wait_ms=(record.window_expires_at - now) * 1000,
                blocked=False,
            )

    async def get(self, key: str) -> RateLimitResult | None:
        """Return the current state of key without consuming.

        ``allowed`` reports whether one more point would currently fit.
        """
        self._validate(key)
        with self._lock:
            now = self._clock()
            record = self._live_record(key, now)
            if record is None:
                return None
            if record.is_blocked(now):
                return self._build_denied_result(
                    consumed=record.count,
                    wait_ms=(record.blocked_until - now) * 1000,
                    blocked=True,
                )
            if record.count < self._options.points:
                return self._build_allowed_result(consumed=record.count)
            return self._build_denied_result(
                consumed=record.count,
                wait_ms=(record.window_expires_at - now) * 1000,
                blocked=False,
            )

    async def delete(self, key: str) -> bool:
        self._validate(key)
        with self._lock:
            return self._records.pop(key, None) is not None

    async def block(self, key: str, seconds: int) -> RateLimitResult:
        """Block key for ``seconds`` regardless of its current counter."""
        self._validate(key)
        if seconds < 1:
            raise ValueError("seconds must be >= 1")
        with self._lock:
            now = self._clock()
            record = self._live_record(key, now)
            if record is None:
                record = RateRecord(count=self._options.points, window_expires_at=now)
                self._records[key] = record
            record.blocked_until = now + seconds
            return self._build_denied_result(
                consumed=record.count,
                wait_ms=seconds * 1000,
                blocked=True,
            )
