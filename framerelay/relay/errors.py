"""Relay failure taxonomy.

Every failure that ends a relay request is a ``RelayError`` subclass carrying
the HTTP status the caller receives and the title shown on the error page:

  MissingTarget            400  no ``url`` parameter (plain-text body)
  InvalidTarget            400  unparseable URL or unsupported scheme
  UpstreamConnectionError  500  DNS / refused / TLS / reset / protocol error
  UpstreamTimeout          504  no response headers within the timeout
  TooManyRedirects         508  redirect chain exceeded relay.max_redirects

All are terminal; none is retried.
"""

from __future__ import annotations


class RelayError(Exception):
    """Base class for terminal relay failures."""

    status_code: int = 500
    title: str = "Relay error"
    kind: str = "relay_error"

    def __init__(self, message: str, target: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.target = target


class MissingTarget(RelayError):
    status_code = 400
    title = "Missing url parameter"
    kind = "missing_target"

    def __init__(self) -> None:
        super().__init__("Missing url parameter")


class InvalidTarget(RelayError):
    status_code = 400
    title = "Invalid URL"
    kind = "invalid_target"


class UpstreamConnectionError(RelayError):
    status_code = 500
    title = "Failed to load page"
    kind = "connection_error"


class UpstreamTimeout(RelayError):
    status_code = 504
    title = "Request timed out"
    kind = "timeout"


class TooManyRedirects(RelayError):
    status_code = 508
    title = "Too many redirects"
    kind = "too_many_redirects"

    def __init__(self, target: str, hops: int) -> None:
        super().__init__(f"Redirect chain exceeded {hops} hops", target=target)
        self.hops = hops
