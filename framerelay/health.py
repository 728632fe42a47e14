"""Health endpoint for FrameRelay.

``GET /health`` returns 503 until the lifespan startup has finished (config
loaded, upstream client created) and 200 with a short status body afterwards.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException, Request

from framerelay.config import Config

router = APIRouter(tags=["health"])


@router.get("/health")
async def health(request: Request) -> dict[str, Any]:
    """Primary health check.

    Response body (200):
        {
          "status": "ok",
          "relay": "running",
          "open_relay": true,
          "timeout_ms": 15000,
          "max_redirects": 20
        }
    """
    if not getattr(request.app.state, "ready", False):
        raise HTTPException(
            status_code=503,
            detail={"status": "starting", "relay": "initializing"},
        )

    config: Config = request.app.state.config
    return {
        "status": "ok",
        "relay": "running",
        "open_relay": config.relay.open_relay,
        "timeout_ms": config.relay.timeout_ms,
        "max_redirects": config.relay.max_redirects,
    }
