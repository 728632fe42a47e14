"""Response header policy for the relay.

Two disjoint categories of upstream response headers are never forwarded to
the caller:

  - frame-blocking: X-Frame-Options and the CSP variants. These tell the
    browser to refuse iframe embedding, which is the one thing the relay exists
    to allow.
  - hop-by-hop: Transfer-Encoding, Connection, Keep-Alive. They describe the
    upstream transport leg and are invalid across an intermediary
    (RFC 7230 §6.1). The ASGI server frames the caller-facing leg itself.

Everything else passes through with its original bytes, duplicates included
(e.g. several Set-Cookie lines).

The policy is an immutable table built once at import time. It is exported as
``DEFAULT_HEADER_POLICY`` and can be unit-tested without any fetch or relay.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable

import httpx

from framerelay.utils.logger import get_logger

logger = get_logger(__name__)

# ─── Constants ────────────────────────────────────────────────────────────────

FRAME_BLOCKING_HEADERS: frozenset[str] = frozenset(
    {
        "x-frame-options",
        "content-security-policy",
        "content-security-policy-report-only",
    }
)

HOP_BY_HOP_HEADERS: frozenset[str] = frozenset(
    {
        "transfer-encoding",
        "connection",
        "keep-alive",
    }
)

# RFC 7230 §3.2.6 token
_HEADER_NAME_RE = re.compile(rb"^[!#$%&'*+\-.^_`|~0-9A-Za-z]+$")
# CR, LF and NUL cannot be written on an HTTP/1.1 header line
_INVALID_VALUE_RE = re.compile(rb"[\r\n\x00]")


# ─── Policy ───────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class HeaderPolicy:
    """Immutable deny table for upstream response headers.

    Names are stored lower-case; all lookups are case-insensitive.
    """

    frame_blocking: frozenset[str] = FRAME_BLOCKING_HEADERS
    hop_by_hop: frozenset[str] = HOP_BY_HOP_HEADERS

    def __post_init__(self) -> None:
        for category in (self.frame_blocking, self.hop_by_hop):
            if any(name != name.lower() for name in category):
                raise ValueError("HeaderPolicy names must be lower-case")
        overlap = self.frame_blocking & self.hop_by_hop
        if overlap:
            raise ValueError(f"HeaderPolicy categories overlap: {sorted(overlap)}")

    @property
    def stripped(self) -> frozenset[str]:
        """Every header name the relay refuses to forward."""
        return self.frame_blocking | self.hop_by_hop

    def forwards(self, name: str | bytes) -> bool:
        """Return True if a header with this name may reach the caller."""
        if isinstance(name, bytes):
            name = name.decode("latin-1")
        return name.lower() not in self.stripped

    def filter(
        self, raw_headers: Iterable[tuple[bytes, bytes]]
    ) -> list[tuple[bytes, bytes]]:
        """Apply the policy to raw ``(name, value)`` header pairs.

        Headers denied by the policy are dropped. A header the caller-facing
        transport could not write (name not an HTTP token, value containing CR,
        LF or NUL) is skipped individually and logged; the remaining headers are
        still forwarded.

        Returns:
            Header pairs in upstream order, names lower-cased, values untouched.
        """
        forwarded: list[tuple[bytes, bytes]] = []
        for name, value in raw_headers:
            if not self.forwards(name):
                continue
            if not _HEADER_NAME_RE.match(name) or _INVALID_VALUE_RE.search(value):
                logger.warning(
                    "relay_header_skipped",
                    header=name.decode("latin-1", errors="replace"),
                )
                continue
            forwarded.append((name.lower(), value))
        return forwarded


DEFAULT_HEADER_POLICY: HeaderPolicy = HeaderPolicy()


# ─── Public API ───────────────────────────────────────────────────────────────


def build_relay_headers(
    upstream_headers: httpx.Headers,
    policy: HeaderPolicy = DEFAULT_HEADER_POLICY,
) -> list[tuple[bytes, bytes]]:
    """Build the caller-facing raw header list from an upstream response.

    Args:
        upstream_headers: ``httpx.Response.headers`` from the upstream fetch.
        policy:           Header policy to apply.

    Returns:
        Raw header pairs suitable for ``Response.raw_headers``.
    """
    return policy.filter(upstream_headers.raw)
