from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse

from rate_guard.core.rate_limit import enforce_rate_limit

router = APIRouter(tags=["Demo"], dependencies=[Depends(enforce_rate_limit)])


@router.get(
    "/",
    response_class=PlainTextResponse,
    responses={
        429: {"description": "Client exceeded its request quota; see Retry-After"},
        503: {"description": "Rate limit store unavailable (fail-closed policy)"},
    },
)
async def hello() -> str:
    """Rate limited demo endpoint."""

    return "Hello World!"
