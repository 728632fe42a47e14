"""Unit tests for the request-id logging context."""

from __future__ import annotations

import asyncio

import pytest

from framerelay.utils.logger import (
    add_request_id,
    add_timestamp,
    get_logger,
    request_id_var,
    set_request_id,
)


class TestRequestIdProcessor:
    def test_added_when_set(self) -> None:
        token = request_id_var.set(None)
        try:
            set_request_id("01HREQUEST")
            event = add_request_id(None, "info", {"event": "relay_started"})  # type: ignore[arg-type]
        finally:
            request_id_var.reset(token)
        assert event["request_id"] == "01HREQUEST"

    def test_absent_when_unset(self) -> None:
        token = request_id_var.set(None)
        try:
            event = add_request_id(None, "info", {"event": "relay_started"})  # type: ignore[arg-type]
        finally:
            request_id_var.reset(token)
        assert "request_id" not in event

    def test_timestamp_added(self) -> None:
        event = add_timestamp(None, "info", {"event": "x"})  # type: ignore[arg-type]
        assert isinstance(event["timestamp"], float)


@pytest.mark.asyncio
async def test_request_id_isolated_per_task() -> None:
    """Concurrent requests each see only their own request_id."""

    async def handler(request_id: str) -> str | None:
        set_request_id(request_id)
        await asyncio.sleep(0)
        return request_id_var.get()

    results = await asyncio.gather(handler("A"), handler("B"), handler("C"))
    assert results == ["A", "B", "C"]


def test_get_logger_usable() -> None:
    logger = get_logger("framerelay.test")
    logger.debug("test_event", value=1)
