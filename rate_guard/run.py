"""Process entry point: ``python -m rate_guard.run`` or ``rate-guard``."""

from __future__ import annotations

import os

import uvicorn


def main() -> None:
    uvicorn.run(
        "rate_guard.main:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "5555")),
        workers=int(os.getenv("WEB_CONCURRENCY", "1")),
        log_config=None,
    )


if __name__ == "__main__":
    main()
