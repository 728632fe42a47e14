"""Unit tests for the response header policy.

Covers:
  - Frame-blocking headers stripped (X-Frame-Options, CSP, CSP-Report-Only)
  - Hop-by-hop headers stripped (Transfer-Encoding, Connection, Keep-Alive)
  - Case-insensitive matching
  - All other headers forwarded unchanged, duplicates preserved
  - Headers the caller-facing transport cannot write are skipped one by one
  - Policy table is immutable and its categories disjoint
"""

from __future__ import annotations

import dataclasses

import httpx
import pytest

from framerelay.relay.headers import (
    DEFAULT_HEADER_POLICY,
    FRAME_BLOCKING_HEADERS,
    HOP_BY_HOP_HEADERS,
    HeaderPolicy,
    build_relay_headers,
)

STRIPPED = {
    "x-frame-options",
    "content-security-policy",
    "content-security-policy-report-only",
    "transfer-encoding",
    "connection",
    "keep-alive",
}


def _names(raw: list[tuple[bytes, bytes]]) -> set[str]:
    return {name.decode("latin-1").lower() for name, _ in raw}


# ─── Policy table ─────────────────────────────────────────────────────────────


class TestPolicyTable:
    def test_stripped_set_is_exactly_the_six_names(self) -> None:
        assert DEFAULT_HEADER_POLICY.stripped == STRIPPED

    def test_categories_disjoint(self) -> None:
        assert not (FRAME_BLOCKING_HEADERS & HOP_BY_HOP_HEADERS)

    def test_policy_is_frozen(self) -> None:
        with pytest.raises(dataclasses.FrozenInstanceError):
            DEFAULT_HEADER_POLICY.frame_blocking = frozenset()  # type: ignore[misc]

    def test_overlapping_categories_rejected(self) -> None:
        with pytest.raises(ValueError):
            HeaderPolicy(
                frame_blocking=frozenset({"x-frame-options", "connection"}),
                hop_by_hop=frozenset({"connection"}),
            )

    def test_upper_case_names_rejected(self) -> None:
        with pytest.raises(ValueError):
            HeaderPolicy(frame_blocking=frozenset({"X-Frame-Options"}))


class TestForwards:
    @pytest.mark.parametrize("name", sorted(STRIPPED))
    def test_stripped_names(self, name: str) -> None:
        assert DEFAULT_HEADER_POLICY.forwards(name) is False

    @pytest.mark.parametrize(
        "name",
        ["X-Frame-Options", "CONTENT-SECURITY-POLICY", "Transfer-Encoding", "Keep-Alive"],
    )
    def test_case_insensitive(self, name: str) -> None:
        assert DEFAULT_HEADER_POLICY.forwards(name) is False

    def test_bytes_names(self) -> None:
        assert DEFAULT_HEADER_POLICY.forwards(b"X-Frame-Options") is False
        assert DEFAULT_HEADER_POLICY.forwards(b"Content-Type") is True

    @pytest.mark.parametrize(
        "name",
        ["content-type", "content-length", "content-encoding", "set-cookie", "cache-control", "location"],
    )
    def test_other_names_forwarded(self, name: str) -> None:
        assert DEFAULT_HEADER_POLICY.forwards(name) is True


# ─── filter() ─────────────────────────────────────────────────────────────────


class TestFilter:
    def test_strips_and_keeps(self) -> None:
        raw = [
            (b"Content-Type", b"text/html"),
            (b"X-Frame-Options", b"DENY"),
            (b"Content-Security-Policy", b"frame-ancestors 'none'"),
            (b"Content-Security-Policy-Report-Only", b"default-src 'self'"),
            (b"Transfer-Encoding", b"chunked"),
            (b"Connection", b"keep-alive"),
            (b"Keep-Alive", b"timeout=5"),
            (b"Cache-Control", b"no-store"),
        ]
        result = DEFAULT_HEADER_POLICY.filter(raw)
        assert result == [
            (b"content-type", b"text/html"),
            (b"cache-control", b"no-store"),
        ]

    def test_duplicates_preserved_in_order(self) -> None:
        raw = [
            (b"Set-Cookie", b"a=1"),
            (b"Set-Cookie", b"b=2"),
        ]
        assert DEFAULT_HEADER_POLICY.filter(raw) == [
            (b"set-cookie", b"a=1"),
            (b"set-cookie", b"b=2"),
        ]

    def test_values_untouched(self) -> None:
        raw = [(b"Link", b'<https://example.com/style.css>; rel="preload"')]
        assert DEFAULT_HEADER_POLICY.filter(raw) == [
            (b"link", b'<https://example.com/style.css>; rel="preload"'),
        ]

    def test_invalid_value_skipped_rest_forwarded(self) -> None:
        raw = [
            (b"X-Injected", b"a\r\nX-Evil: 1"),
            (b"X-Nul", b"a\x00b"),
            (b"Content-Type", b"text/html"),
        ]
        assert DEFAULT_HEADER_POLICY.filter(raw) == [(b"content-type", b"text/html")]

    def test_invalid_name_skipped(self) -> None:
        raw = [
            (b"Bad Header", b"x"),
            (b"X-Ok", b"y"),
        ]
        assert DEFAULT_HEADER_POLICY.filter(raw) == [(b"x-ok", b"y")]

    def test_empty(self) -> None:
        assert DEFAULT_HEADER_POLICY.filter([]) == []


# ─── build_relay_headers() ────────────────────────────────────────────────────


class TestBuildRelayHeaders:
    def test_from_httpx_headers(self) -> None:
        headers = httpx.Headers(
            [
                ("Content-Type", "text/html; charset=utf-8"),
                ("X-Frame-Options", "SAMEORIGIN"),
                ("Set-Cookie", "sid=1; Path=/"),
                ("Set-Cookie", "theme=dark; Path=/"),
                ("Connection", "close"),
            ]
        )
        result = build_relay_headers(headers)
        assert _names(result).isdisjoint(STRIPPED)
        assert (b"content-type", b"text/html; charset=utf-8") in result
        assert [v for n, v in result if n == b"set-cookie"] == [
            b"sid=1; Path=/",
            b"theme=dark; Path=/",
        ]

    def test_custom_policy(self) -> None:
        policy = HeaderPolicy(
            frame_blocking=frozenset({"x-frame-options"}),
            hop_by_hop=frozenset(),
        )
        headers = httpx.Headers({"X-Frame-Options": "DENY", "Connection": "close"})
        assert _names(build_relay_headers(headers, policy)) == {"connection"}
