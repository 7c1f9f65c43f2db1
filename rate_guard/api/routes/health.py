from __future__ import annotations

import logging

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse

router = APIRouter(tags=["Health"])

logger = logging.getLogger(__name__)


@router.get("/health")
def health_check() -> dict:
    """Liveness check.

    Not rate limited and never touches the store, so load balancers can probe
    it freely.

    Returns:
        dict: A dictionary with a single "status" key set to "ok".
    """

    return {"status": "ok"}


@router.get("/health/ready")
async def readiness_check(request: Request) -> JSONResponse:
    """Readiness check: verifies the rate limit store answers a ping.

    Returns:
        JSONResponse: 200 with ``{"status": "ready"}`` or 503 with
            ``{"status": "unavailable"}``.
    """

    limiter = getattr(request.app.state, "rate_limiter", None)
    store_ok = limiter is not None and await limiter.ping()
    if not store_ok:
        logger.warning("health.store_unreachable")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "unavailable", "store": "unreachable"},
        )
    return JSONResponse(content={"status": "ready", "store": "ok"})
