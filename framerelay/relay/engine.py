"""Relay endpoint for FrameRelay.

``GET /proxy?url=<percent-encoded absolute URL>`` fetches the target and hands
it back in a form an iframe will display:

  - Target validation happens first; a missing or invalid ``url`` is answered
    without opening any upstream connection (400).
  - Redirect chains are bounded by hop tokens (508 past relay.max_redirects).
  - The upstream GET runs as its own task, raced against a timeout timer armed
    on the event loop. Headers arriving disarm the timer; the timer firing
    answers 504 and cancels the fetch task, which closes the connection.
  - Upstream 3xx + Location → 302 back into ``/proxy`` (never followed here).
  - Any other upstream status → same status, headers filtered by the header
    policy, body streamed through with ``aiter_raw()``.
  - Transport failures → 500 error page naming the target.

Every terminal path goes through ``RelayExchange.finish()``: exactly one of
them produces the response, the rest are no-ops.
"""

from __future__ import annotations

import asyncio
from functools import partial
from typing import AsyncGenerator, Optional

import httpx
from fastapi import APIRouter, Query, Request, Response
from fastapi.responses import RedirectResponse, StreamingResponse
from starlette.types import Receive, Scope, Send

from framerelay.config import Config, RelayConfig
from framerelay.constants import RELAY_PATH
from framerelay.models.error_page import build_error_page
from framerelay.relay.completion import RelayExchange
from framerelay.relay.errors import (
    RelayError,
    TooManyRedirects,
    UpstreamConnectionError,
    UpstreamTimeout,
)
from framerelay.relay.fetcher import fetch_upstream
from framerelay.relay.headers import DEFAULT_HEADER_POLICY, build_relay_headers
from framerelay.relay.redirects import (
    build_relay_location,
    clear_hop_cookie,
    is_relay_redirect,
    read_hop_count,
    resolve_location,
    set_hop_cookie,
)
from framerelay.relay.target import ProxyTarget, resolve_target
from framerelay.utils.logger import get_logger, set_request_id
from framerelay.utils.ulid import generate_ulid

logger = get_logger(__name__)

router = APIRouter(tags=["relay"])

# Strong references to in-flight upstream releases started by cancelled handlers.
_pending_releases: set[asyncio.Task] = set()


# ─── Relay handler ────────────────────────────────────────────────────────────


@router.get(RELAY_PATH)
async def relay_handler(
    request: Request,
    url: Optional[str] = Query(None, description="Absolute http(s) URL to relay"),
) -> Response:
    """Fetch ``url`` and relay it with frame-blocking headers removed.

    Returns:
        The single response produced by whichever terminal path won the
        completion guard.
    """
    request_id: str = generate_ulid()
    set_request_id(request_id)

    config: Config = request.app.state.config
    http_client: httpx.AsyncClient = request.app.state.http_client
    exchange = RelayExchange(request_id)

    # ── Validate target + redirect depth (no network access) ─────────────────
    try:
        target = resolve_target(url)
        hops = _redirect_depth(request, target, config.relay)
    except RelayError as exc:
        if isinstance(exc, TooManyRedirects):
            logger.warning("relay_loop_detected", target=exc.target, hops=exc.hops)
        else:
            logger.info("relay_rejected", kind=exc.kind, error=exc.message, target=exc.target)
        exchange.finish(exc.kind, build_error_page(exc))
        return await exchange.outcome

    logger.info(
        "relay_started",
        target=target.url,
        transport=target.transport.value,
        hops=hops,
    )

    # ── Race the fetch against the timeout timer ─────────────────────────────
    fetch_task = asyncio.create_task(
        _fetch_and_relay(exchange, http_client, target, hops, config.relay)
    )
    fetch_task.add_done_callback(partial(_on_fetch_done, exchange))
    exchange.arm_timer(
        config.relay.timeout_s,
        partial(_on_timeout, exchange, fetch_task, target, config.relay.timeout_ms),
    )

    try:
        return await exchange.outcome
    except asyncio.CancelledError:
        # settled but never handed to the server
        _release_unsent(exchange)
        raise
    finally:
        exchange.disarm_timer()
        if not fetch_task.done():
            fetch_task.cancel()


# ─── Terminal paths ───────────────────────────────────────────────────────────


async def _fetch_and_relay(
    exchange: RelayExchange,
    client: httpx.AsyncClient,
    target: ProxyTarget,
    hops: Optional[int],
    relay_config: RelayConfig,
) -> None:
    """Fetch the upstream and settle the exchange with redirect, relay or error."""
    try:
        upstream = await fetch_upstream(client, target)
    except httpx.TimeoutException as exc:
        logger.warning(
            "upstream_timeout",
            target=target.url,
            error_type=type(exc).__name__,
        )
        exchange.finish(
            "timeout",
            build_error_page(UpstreamTimeout(str(exc), target=target.url)),
        )
        return
    except httpx.TransportError as exc:
        logger.warning(
            "upstream_connection_error",
            target=target.url,
            error_type=type(exc).__name__,
            error=str(exc),
        )
        exchange.finish(
            "connection_error",
            build_error_page(
                UpstreamConnectionError(str(exc) or type(exc).__name__, target=target.url)
            ),
        )
        return

    # headers are in; the timeout no longer applies
    exchange.disarm_timer()

    if is_relay_redirect(upstream.status_code, upstream.headers):
        await upstream.aclose()
        response = _build_redirect_response(upstream, target, hops, relay_config)
        if exchange.finish("redirect", response):
            logger.info(
                "relay_redirect",
                target=target.url,
                upstream_status=upstream.status_code,
                location=response.headers["location"],
            )
        return

    response = _build_relay_response(upstream, target, hops)
    if not exchange.finish("relay", response):
        await upstream.aclose()
        return
    logger.info(
        "relay_completed",
        target=target.url,
        status_code=upstream.status_code,
    )


def _on_timeout(
    exchange: RelayExchange,
    fetch_task: asyncio.Task,
    target: ProxyTarget,
    timeout_ms: int,
) -> None:
    """Timer callback: answer 504 and abort the in-flight fetch."""
    if exchange.finish(
        "timeout",
        build_error_page(
            UpstreamTimeout(f"No response within {timeout_ms} ms", target=target.url)
        ),
    ):
        logger.warning("upstream_timeout", target=target.url, timeout_ms=timeout_ms)
    fetch_task.cancel()


def _on_fetch_done(exchange: RelayExchange, task: asyncio.Task) -> None:
    """Surface an unexpected fetch-task failure instead of waiting for the timer."""
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error(
            "relay_internal_error",
            error=str(exc),
            error_type=type(exc).__name__,
        )
        exchange.fail("internal_error", exc)


# ─── Response builders ────────────────────────────────────────────────────────


def _redirect_depth(
    request: Request, target: ProxyTarget, relay_config: RelayConfig
) -> Optional[int]:
    """Return the hop count carried for this target, enforcing the bound.

    Returns None when no hop token is present or tracking is disabled.

    Raises:
        TooManyRedirects: the chain has already taken more than
                          ``relay.max_redirects`` redirects.
    """
    if relay_config.max_redirects == 0:
        return None
    hops = read_hop_count(request.cookies, target.url)
    if hops is not None and hops > relay_config.max_redirects:
        raise TooManyRedirects(target.url, hops)
    return hops


def _build_redirect_response(
    upstream: httpx.Response,
    target: ProxyTarget,
    hops: Optional[int],
    relay_config: RelayConfig,
) -> RedirectResponse:
    resolved = resolve_location(target.url, upstream.headers["location"])
    response = RedirectResponse(build_relay_location(resolved), status_code=302)
    if relay_config.max_redirects > 0:
        set_hop_cookie(response, resolved, (hops or 0) + 1)
    return response


def _release_unsent(exchange: RelayExchange) -> None:
    """Close the upstream behind a settled relay response that was never sent.

    Runs as its own task: the cancelled handler cannot await it.
    """
    response = exchange.settled_response()
    if isinstance(response, RelayStreamingResponse):
        task = asyncio.get_running_loop().create_task(response.upstream.aclose())
        _pending_releases.add(task)
        task.add_done_callback(_pending_releases.discard)


def _build_relay_response(
    upstream: httpx.Response,
    target: ProxyTarget,
    hops: Optional[int],
) -> RelayStreamingResponse:
    response = RelayStreamingResponse(upstream)
    response.raw_headers.extend(build_relay_headers(upstream.headers, DEFAULT_HEADER_POLICY))
    if hops is not None:
        clear_hop_cookie(response, target.url)
    return response


async def _stream_body(upstream: httpx.Response) -> AsyncGenerator[bytes, None]:
    """Yield the upstream body as received; close the upstream when done.

    Pulled by the ASGI server one chunk at a time, so the relay never reads
    ahead of what the caller has accepted.
    """
    try:
        async for chunk in upstream.aiter_raw():
            yield chunk
    except httpx.HTTPError as exc:
        # headers already sent: the caller sees a truncated body
        logger.warning(
            "relay_stream_interrupted",
            error_type=type(exc).__name__,
            error=str(exc),
        )
        raise
    finally:
        await upstream.aclose()


class RelayStreamingResponse(StreamingResponse):
    """Streams an upstream body and releases the upstream however the send ends.

    The body generator only closes the upstream once it has been started. A
    caller that disconnects before the first chunk is pulled, or a send that
    fails, would otherwise leave the connection checked out of the pool.
    """

    def __init__(self, upstream: httpx.Response) -> None:
        super().__init__(_stream_body(upstream), status_code=upstream.status_code)
        self.upstream = upstream

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            # idempotent: a no-op once the body generator has closed it
            await self.upstream.aclose()
