"""ULID generation for relay request tracing.

Every inbound ``/proxy`` request is assigned a 26-character ULID at handler
entry. It is bound into the logging context (``request_id``) and returned to
the caller as ``X-Relay-Request-ID`` so a browser-side report can be matched to
the relay's log lines.

Backed by the ``python-ulid`` library.
"""

from __future__ import annotations

from ulid import ULID


def generate_ulid() -> str:
    """Generate a new ULID as a 26-character uppercase string.

    Returns:
        str: Crockford Base32 ULID, charset ``[0-9A-HJKMNP-TV-Z]``, 26 chars.
    """
    return str(ULID())
