from __future__ import annotations

from rate_guard.api.routes.health import router as health_router
from rate_guard.api.routes.home import router as home_router

__all__ = ["health_router", "home_router"]
