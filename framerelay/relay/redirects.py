"""Redirect remapping for the relay.

The relay never follows upstream redirects itself. An upstream 3xx carrying a
``Location`` is turned into a 302 pointing back at ``/proxy`` with the resolved
absolute URL as the target, so the browser inside the iframe issues a fresh
request through the relay and the pane stays same-origin.

Redirect chains are bounded with a hop token: a short-lived cookie scoped to
the relay path, named after a digest of the *next* target URL and holding the
number of redirects taken so far in the chain. The remapped ``Location`` itself
is left exactly ``/proxy?url=<encoded>``.
"""

from __future__ import annotations

import hashlib
from typing import Mapping, Optional
from urllib.parse import quote, urljoin, urlsplit

import httpx

from framerelay.constants import (
    HOP_COOKIE_MAX_AGE,
    HOP_COOKIE_PREFIX,
    RELAY_PATH,
    TARGET_PARAM,
)

# Characters JavaScript's encodeURIComponent leaves unescaped, beyond the
# alphanumerics and "_.-~" that quote() always keeps.
_URI_COMPONENT_SAFE = "!*'()"


def is_relay_redirect(status_code: int, headers: httpx.Headers) -> bool:
    """Return True if the upstream response should be remapped.

    A 3xx without a ``Location`` header is relayed like any other response.
    """
    return 300 <= status_code < 400 and bool(headers.get("location"))


def resolve_location(target_url: str, location: str) -> str:
    """Resolve an upstream ``Location`` against the URL that produced it.

    Absolute http(s) locations are returned verbatim; anything else (path,
    relative path, query-only, protocol-relative) goes through standard
    base-URL resolution.
    """
    parts = urlsplit(location)
    if parts.scheme.lower() in ("http", "https") and parts.netloc:
        return location
    return urljoin(target_url, location)


def encode_target(url: str) -> str:
    """Percent-encode a URL for use as the ``url`` query value."""
    return quote(url, safe=_URI_COMPONENT_SAFE)


def build_relay_location(resolved_url: str) -> str:
    """Return the same-origin relay path that fetches ``resolved_url``."""
    return f"{RELAY_PATH}?{TARGET_PARAM}={encode_target(resolved_url)}"


# ─── Hop tokens ───────────────────────────────────────────────────────────────


def hop_cookie_name(target_url: str) -> str:
    """Cookie name carrying the hop count for requests to ``target_url``."""
    digest = hashlib.sha256(target_url.encode("utf-8")).hexdigest()[:16]
    return f"{HOP_COOKIE_PREFIX}{digest}"


def read_hop_count(cookies: Mapping[str, str], target_url: str) -> Optional[int]:
    """Return the hop count recorded for ``target_url``, or None if absent.

    A malformed cookie value counts as absent.
    """
    value = cookies.get(hop_cookie_name(target_url))
    if value is None:
        return None
    try:
        hops = int(value)
    except ValueError:
        return None
    return hops if hops >= 0 else None


def set_hop_cookie(response, target_url: str, hops: int) -> None:
    """Record ``hops`` on ``response`` for the follow-up request to ``target_url``."""
    response.set_cookie(
        hop_cookie_name(target_url),
        str(hops),
        max_age=HOP_COOKIE_MAX_AGE,
        path=RELAY_PATH,
        httponly=True,
        samesite="lax",
    )


def clear_hop_cookie(response, target_url: str) -> None:
    """Expire the hop token for ``target_url`` once its chain has ended."""
    response.delete_cookie(
        hop_cookie_name(target_url),
        path=RELAY_PATH,
        httponly=True,
        samesite="lax",
    )
