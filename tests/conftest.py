"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
Environment variables are set before any import that might build settings.
"""

import os

# CRITICAL: Set this before any imports that might load settings
os.environ["APP_ENV"] = "testing"

# Set default env vars that all tests might need
os.environ.setdefault("RATE_LIMIT_FAILURE_POLICY", "closed")
os.environ.setdefault("RATE_LIMIT_BACKEND", "memory")
os.environ.setdefault("LOG_FORMAT", "plain")

from unittest.mock import Mock  # noqa: E402

import pytest  # noqa: E402

from rate_guard.core.config import (  # noqa: E402
    AppSettings,
    LogSettings,
    RateLimitSettings,
    RedisSettings,
    Settings,
)


def make_settings(**rate_limit_overrides) -> Settings:
    """Build an isolated Settings object with rate limit overrides."""
    rate_limit = {
        "backend": "memory",
        "points": 3,
        "duration_seconds": 60,
        "block_duration_seconds": 120,
        "key_prefix": "test",
        "failure_policy": "closed",
    }
    rate_limit.update(rate_limit_overrides)
    return Settings(
        app=AppSettings(),
        rate_limit=RateLimitSettings(**rate_limit),
        redis=RedisSettings(),
        log=LogSettings(format="plain"),
    )


@pytest.fixture
def clock() -> Mock:
    """Controllable UNIX clock starting at t=1000s."""
    return Mock(return_value=1000.0)


@pytest.fixture
def settings_factory():
    """Factory fixture returning make_settings."""
    return make_settings
