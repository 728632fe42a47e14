"""Loopback restriction for the relay endpoint.

By default ``/proxy`` is an open relay: any client that can reach the port can
make FrameRelay fetch any URL. That is the intended mode for a local,
single-user tool bound to 127.0.0.1. When ``relay.open_relay`` is false,
create_app() installs this middleware, which restricts ``/proxy`` to loopback
clients regardless of the binding host and answers HTTP 403 to everyone else.

Non-relay routes are passed through unchanged.
"""

from __future__ import annotations

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from framerelay.constants import RELAY_PATH
from framerelay.utils.logger import get_logger

logger = get_logger(__name__)

# Loopback addresses, IPv4 and IPv6
_LOOPBACK_HOSTS: frozenset[str] = frozenset({"127.0.0.1", "::1", "localhost"})

_FORBIDDEN_BODY: dict = {
    "error": {
        "message": "Relay access is restricted to localhost",
        "code": "forbidden",
    }
}


class RelayLoopbackMiddleware(BaseHTTPMiddleware):
    """Restrict ``/proxy`` to loopback clients.

    Only registered by create_app() when ``relay.open_relay`` is false.
    """

    async def dispatch(self, request: Request, call_next) -> Response:  # type: ignore[override]
        if request.url.path != RELAY_PATH:
            return await call_next(request)

        client_host = request.client.host if request.client else None

        if client_host not in _LOOPBACK_HOSTS:
            logger.warning(
                "relay_access_denied",
                client_host=client_host,
                path=request.url.path,
            )
            return JSONResponse(
                status_code=403,
                content=_FORBIDDEN_BODY,
            )

        return await call_next(request)
