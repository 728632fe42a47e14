"""Upstream fetch for the relay.

``create_http_client()`` builds the shared ``httpx.AsyncClient`` at lifespan
startup (stored in ``app.state.http_client``). It never follows redirects: 3xx
responses come back to the engine so they can be remapped through ``/proxy``.

The client keeps no cookies: an upstream ``Set-Cookie`` is relayed to the
caller that received it and never replayed on a later relay request.

``fetch_upstream()`` sends one GET with the fixed browser header set and
returns as soon as response headers arrive. The body is left unread
(``stream=True``); the caller owns the response and must close it.
"""

from __future__ import annotations

from http.cookiejar import CookieJar, DefaultCookiePolicy
from typing import Optional

import httpx

from framerelay.constants import (
    BROWSER_HEADERS,
    DEFAULT_UPSTREAM_TIMEOUT_MS,
    POOL_KEEPALIVE_EXPIRY,
    POOL_MAX_CONNECTIONS,
    POOL_MAX_KEEPALIVE,
)
from framerelay.relay.target import ProxyTarget


def create_http_client(
    timeout_s: float = DEFAULT_UPSTREAM_TIMEOUT_MS / 1000.0,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.AsyncClient:
    """Create the shared upstream client.

    ``timeout_s`` also bounds each read while the body streams, so a stalled
    upstream cannot hold a caller connection open indefinitely after headers
    have arrived.

    Args:
        timeout_s: Connect/read/write/pool timeout in seconds.
        transport: Transport override (tests inject ``httpx.MockTransport``).

    Returns:
        Configured httpx.AsyncClient ready for use.
    """
    return httpx.AsyncClient(
        transport=transport,
        cookies=_discarding_cookie_jar(),
        limits=httpx.Limits(
            max_connections=POOL_MAX_CONNECTIONS,
            max_keepalive_connections=POOL_MAX_KEEPALIVE,
            keepalive_expiry=POOL_KEEPALIVE_EXPIRY,
        ),
        timeout=httpx.Timeout(timeout_s),
        follow_redirects=False,
    )


def _discarding_cookie_jar() -> CookieJar:
    # no domain is allowed, so Set-Cookie is never stored or sent back
    return CookieJar(policy=DefaultCookiePolicy(allowed_domains=[]))


def build_upstream_request(client: httpx.AsyncClient, target: ProxyTarget) -> httpx.Request:
    """Build the outbound GET for ``target`` with the browser header set."""
    return client.build_request("GET", target.url, headers=BROWSER_HEADERS)


async def fetch_upstream(client: httpx.AsyncClient, target: ProxyTarget) -> httpx.Response:
    """Send the upstream GET and return once response headers are in.

    Raises:
        httpx.TimeoutException: httpx-level connect/read timeout.
        httpx.TransportError:   DNS, refused connection, TLS, reset, protocol error.
    """
    request = build_upstream_request(client, target)
    return await client.send(request, stream=True, follow_redirects=False)
