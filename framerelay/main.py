"""FrameRelay FastAPI application factory + lifespan lifecycle.

This module implements:
  - create_app() — testable application factory
  - lifespan — @asynccontextmanager startup/shutdown sequence
  - /health router — delegated to framerelay/health.py
  - /        route  — service discovery root
  - /proxy   route  — delegated to framerelay/relay/engine.py
  - app = create_app() — module-level instance for uvicorn

Startup sequence:
  1. app.state.config (set by create_app; loaded from YAML unless injected)
  2. create_http_client() → app.state.http_client
  3. app.state.ready = True

Shutdown sequence (reverse):
  app.state.ready = False → close the upstream client

Uvicorn defaults (see framerelay/run.py):
  uvicorn framerelay.main:app \\
    --host 127.0.0.1 \\
    --port 3000 \\
    --limit-concurrency 100 \\
    --backlog 50 \\
    --timeout-keep-alive 5
"""

from __future__ import annotations

import os
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import httpx
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.routing import APIRouter

from framerelay import __version__
from framerelay.config import Config, load_config
from framerelay.constants import RELAY_PATH, TARGET_PARAM
from framerelay.health import router as health_router
from framerelay.relay.engine import router as relay_router
from framerelay.relay.fetcher import create_http_client
from framerelay.relay.middleware import RelayLoopbackMiddleware
from framerelay.utils.logger import configure_logging, get_logger

# ─── Logging Setup ────────────────────────────────────────────────────────────
DEBUG = os.getenv("DEBUG", "false").lower() == "true"
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO" if not DEBUG else "DEBUG")
JSON_LOGS = os.getenv("JSON_LOGS", "true").lower() == "true"

configure_logging(log_level=LOG_LEVEL, json_output=JSON_LOGS)
logger = get_logger(__name__)


root_router = APIRouter(tags=["root"])


# ─── Dependencies ─────────────────────────────────────────────────────────────


async def require_ready(request: Request) -> None:
    """FastAPI dependency: raises HTTP 503 if app.state.ready is not True."""
    if not getattr(request.app.state, "ready", False):
        raise HTTPException(
            status_code=503,
            detail={
                "status": "starting",
                "message": "FrameRelay is starting up.",
            },
        )


# ─── Root Endpoint ────────────────────────────────────────────────────────────


@root_router.get("/")
async def root() -> dict[str, str]:
    """Root endpoint — service identity / discovery."""
    return {
        "service": "FrameRelay",
        "version": __version__,
        "relay": f"{RELAY_PATH}?{TARGET_PARAM}=<percent-encoded absolute URL>",
        "health": "/health",
    }


# ─── Lifespan ─────────────────────────────────────────────────────────────────


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan — startup and shutdown sequence."""
    logger.info("FrameRelay starting up...")

    config: Config = app.state.config

    # Single shared upstream client; redirects are never followed by httpx.
    http_client: httpx.AsyncClient = create_http_client(config.relay.timeout_s)
    app.state.http_client = http_client
    logger.info(
        "HTTP upstream client created",
        timeout_ms=config.relay.timeout_ms,
        max_redirects=config.relay.max_redirects,
        open_relay=config.relay.open_relay,
    )

    app.state.ready = True
    logger.info("FrameRelay ready", host=config.proxy.host, port=config.proxy.port)

    yield

    logger.info("FrameRelay shutting down...")
    app.state.ready = False

    try:
        await http_client.aclose()
        logger.info("HTTP upstream client closed")
    except Exception as exc:
        logger.warning("HTTP upstream client close error (non-fatal)", error=str(exc))

    logger.info("FrameRelay shutdown complete")


# ─── Application Factory ──────────────────────────────────────────────────────


def create_app(config: Optional[Config] = None) -> FastAPI:
    """Create and configure the FrameRelay FastAPI application.

    Call this directly in tests to get an isolated app instance:
        app = create_app(Config.defaults())

    Args:
        config: Configuration to run with. Loaded via load_config() when omitted
                (CORS origins are needed before the lifespan runs).

    Returns:
        Configured FastAPI application with lifespan, routers and middleware.
    """
    if config is None:
        config = load_config()

    application = FastAPI(
        title="FrameRelay",
        description="Relays web pages with frame-blocking headers removed so they embed in iframes",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if DEBUG else None,
        redoc_url="/redoc" if DEBUG else None,
        openapi_url="/openapi.json" if DEBUG else None,
    )

    application.state.config = config
    # Ensures /health and /proxy answer 503 until startup completes.
    application.state.ready = False

    # Cross-origin access to /proxy is unrestricted unless cors.allow_origins
    # narrows it. Wildcard origins cannot be combined with credentials.
    wildcard = "*" in config.cors.allow_origins
    application.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors.allow_origins,
        allow_credentials=not wildcard,
        allow_methods=["GET", "OPTIONS"],
        allow_headers=["*"],
    )

    # Closed relay: /proxy serves loopback clients only. Registered last so it
    # runs first, before CORS handling or the route.
    if not config.relay.open_relay:
        application.add_middleware(RelayLoopbackMiddleware)

    application.include_router(root_router)
    application.include_router(health_router)
    application.include_router(relay_router, dependencies=[Depends(require_ready)])

    # Global exception handlers
    @application.exception_handler(HTTPException)
    async def http_exception_handler(
        request: Request, exc: HTTPException
    ) -> JSONResponse:
        logger.warning(
            "HTTP exception",
            status_code=exc.status_code,
            detail=exc.detail,
            path=str(request.url.path),
        )
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})

    @application.exception_handler(Exception)
    async def unhandled_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        logger.error(
            "Unhandled exception",
            error=str(exc),
            error_type=type(exc).__name__,
            path=str(request.url.path),
        )
        return JSONResponse(
            status_code=500, content={"error": "Internal server error"}
        )

    return application


# ─── Module-Level App (for uvicorn) ───────────────────────────────────────────

app = create_app()


if __name__ == "__main__":
    from framerelay.run import main

    main()
