"""Exactly-once completion for relay requests.

A relay request can end along several paths that race each other: the upstream
answers, the connection fails, the timeout timer fires, or an unexpected error
escapes the fetch task. ``CompletionGuard`` is the single atomic test-and-set
that all of them pass through; the first path to claim it writes the response
and every later path becomes a no-op.

``RelayExchange`` binds one guard to one outcome future and the request's
timeout timer. The route handler awaits ``exchange.outcome``; terminal paths
call ``exchange.finish()`` (or ``exchange.fail()``) and never touch the future
directly.
"""

from __future__ import annotations

import asyncio
import threading
from typing import Callable, Optional

from starlette.responses import Response

from framerelay.utils.logger import get_logger

logger = get_logger(__name__)


class CompletionGuard:
    """One-shot gate: exactly one ``claim()`` ever returns True."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._claimed = False
        self._winner: Optional[str] = None

    def claim(self, path: str) -> bool:
        """Atomically claim the right to respond.

        Args:
            path: Name of the terminal path claiming (e.g. ``"timeout"``).

        Returns:
            True for the first caller only.
        """
        with self._lock:
            if self._claimed:
                return False
            self._claimed = True
            self._winner = path
            return True

    @property
    def claimed(self) -> bool:
        return self._claimed

    @property
    def winner(self) -> Optional[str]:
        """Name of the path that claimed the guard, if any."""
        return self._winner


class RelayExchange:
    """Per-request completion state: guard, outcome future and timeout timer."""

    def __init__(self, request_id: str) -> None:
        self.request_id = request_id
        self.guard = CompletionGuard()
        self.outcome: asyncio.Future[Response] = asyncio.get_running_loop().create_future()
        self._timer: Optional[asyncio.TimerHandle] = None

    def finish(self, path: str, response: Response) -> bool:
        """Settle the request with ``response`` if no other path got there first.

        Returns:
            True if this call produced the response; False if it was suppressed.
        """
        if not self.guard.claim(path):
            logger.debug(
                "completion_suppressed",
                path=path,
                winner=self.guard.winner,
            )
            return False
        self.disarm_timer()
        if self.outcome.done():
            # handler already gone (caller disconnected)
            return False
        response.headers["X-Relay-Request-ID"] = self.request_id
        self.outcome.set_result(response)
        return True

    def fail(self, path: str, exc: BaseException) -> bool:
        """Settle the request with an exception (handled by the app's error handler)."""
        if not self.guard.claim(path):
            logger.debug(
                "completion_suppressed",
                path=path,
                winner=self.guard.winner,
                error=str(exc),
            )
            return False
        self.disarm_timer()
        if self.outcome.done():
            return False
        self.outcome.set_exception(exc)
        return True

    def settled_response(self) -> Optional[Response]:
        """The response this exchange settled with, or None if it has none."""
        if not self.outcome.done() or self.outcome.cancelled():
            return None
        if self.outcome.exception() is not None:
            return None
        return self.outcome.result()

    def arm_timer(self, delay_s: float, callback: Callable[[], None]) -> None:
        """Schedule ``callback`` after ``delay_s`` seconds on the running loop."""
        self._timer = asyncio.get_running_loop().call_later(delay_s, callback)

    def disarm_timer(self) -> None:
        """Cancel the timeout timer; safe to call repeatedly."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
