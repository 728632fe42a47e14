"""Error response builders for the relay endpoint.

Every failure that ends a relay request is rendered here, so the status codes
and page format live in one place:

  build_missing_target_response():
      HTTP 400, ``text/plain`` body ``Missing url parameter``.

  build_error_page(exc):
      A minimal styled HTML page for the remaining RelayError kinds:
      InvalidTarget (400), UpstreamConnectionError (500), UpstreamTimeout (504),
      TooManyRedirects (508). The pages are rendered inside the caller's iframe
      pane, so they match its dark theme.

All interpolated text (target URL, upstream error message) is HTML-escaped:
both come from outside the relay.
"""

from __future__ import annotations

import html

from fastapi.responses import HTMLResponse, PlainTextResponse, Response

from framerelay.relay.errors import (
    MissingTarget,
    RelayError,
    TooManyRedirects,
    UpstreamConnectionError,
    UpstreamTimeout,
)

_PAGE_TEMPLATE = """<html>
<body style="font-family: sans-serif; padding: 40px; background: #1a1a2e; color: #eee;">
    <h2>{title}</h2>
    <p>{message}</p>
</body>
</html>
"""

_ERROR_DETAIL_STYLE = "color: #e94560;"


def render_error_page(title: str, message_html: str) -> str:
    """Render the page shell. ``message_html`` must already be escaped."""
    return _PAGE_TEMPLATE.format(title=html.escape(title), message=message_html)


def _message_html(exc: RelayError) -> str:
    target = html.escape(exc.target or "")
    if isinstance(exc, UpstreamConnectionError):
        return (
            f"Could not connect to: {target}<br>"
            f'<span style="{_ERROR_DETAIL_STYLE}">{html.escape(exc.message)}</span>'
        )
    if isinstance(exc, UpstreamTimeout):
        return f"The page took too long to respond: {target}"
    if isinstance(exc, TooManyRedirects):
        return f"The page redirected too many times: {target}"
    return html.escape(exc.message)


def build_missing_target_response() -> PlainTextResponse:
    """HTTP 400 for a request without a ``url`` parameter."""
    return PlainTextResponse(MissingTarget().message, status_code=MissingTarget.status_code)


def build_error_page(exc: RelayError) -> Response:
    """Build the HTML error response for a terminal relay failure.

    Args:
        exc: The RelayError that ended the request.

    Returns:
        HTMLResponse with ``exc.status_code`` and a page titled ``exc.title``
        (plain text for MissingTarget).
    """
    if isinstance(exc, MissingTarget):
        # Missing parameter keeps its plain-text body.
        return build_missing_target_response()
    return HTMLResponse(
        content=render_error_page(exc.title, _message_html(exc)),
        status_code=exc.status_code,
    )
