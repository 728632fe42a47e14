"""Target URL resolution for the relay endpoint.

``resolve_target()`` turns the caller-supplied ``url`` query parameter into a
validated ``ProxyTarget``. It is pure: no DNS lookups, no network access. A
request that fails here never opens an upstream connection.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional
from urllib.parse import urlsplit

import httpx

from framerelay.relay.errors import InvalidTarget, MissingTarget


class Transport(str, Enum):
    PLAINTEXT = "plaintext"
    ENCRYPTED = "encrypted"


# Scheme → transport. Anything else is rejected as InvalidTarget.
SCHEME_TRANSPORTS: dict[str, Transport] = {
    "http": Transport.PLAINTEXT,
    "https": Transport.ENCRYPTED,
}


@dataclass(frozen=True)
class ProxyTarget:
    """A validated absolute target URL.

    url:       The URL as it will be requested (caller string, trimmed).
    scheme:    Lower-cased scheme, ``http`` or ``https``.
    host:      Lower-cased host name or IP literal.
    transport: Plaintext or encrypted, derived from the scheme.
    """

    url: str
    scheme: str
    host: str
    transport: Transport


def resolve_target(raw: Optional[str]) -> ProxyTarget:
    """Validate the caller-supplied target URL.

    Args:
        raw: Value of the ``url`` query parameter, or None when absent.

    Returns:
        ProxyTarget for an absolute http(s) URL with a host.

    Raises:
        MissingTarget: ``raw`` is None, empty, or whitespace only.
        InvalidTarget: ``raw`` is not an absolute URL, has no host, uses an
                       unsupported scheme, or cannot be sent by httpx.
    """
    if raw is None or not raw.strip():
        raise MissingTarget()

    candidate = raw.strip()

    try:
        parts = urlsplit(candidate)
        # .port raises ValueError for non-numeric or out-of-range ports
        _ = parts.port
    except ValueError as exc:
        raise InvalidTarget(f"Invalid URL: {exc}", target=candidate) from exc

    scheme = parts.scheme.lower()
    if not scheme:
        raise InvalidTarget(f"Invalid URL: {candidate}", target=candidate)
    if scheme not in SCHEME_TRANSPORTS:
        raise InvalidTarget(
            f"Unsupported URL scheme '{scheme}': only http and https can be relayed",
            target=candidate,
        )
    if not parts.hostname:
        raise InvalidTarget(f"Invalid URL: missing host in {candidate}", target=candidate)

    # reject anything httpx would refuse to send
    try:
        httpx.URL(candidate)
    except httpx.InvalidURL as exc:
        raise InvalidTarget(f"Invalid URL: {exc}", target=candidate) from exc

    return ProxyTarget(
        url=candidate,
        scheme=scheme,
        host=parts.hostname.lower(),
        transport=SCHEME_TRANSPORTS[scheme],
    )
