"""Tests for client identifier resolution."""

from __future__ import annotations

import pytest
from starlette.datastructures import Headers

from admission_gate.core.client_identity import (
    hash_client_id,
    parse_forwarded_for,
    resolve_client_id,
)


class TestParseForwardedFor:
    def test_splits_and_trims_entries(self) -> None:
        assert parse_forwarded_for(" 203.0.113.7 ,10.0.0.2,  10.0.0.3") == [
            "203.0.113.7",
            "10.0.0.2",
            "10.0.0.3",
        ]

    @pytest.mark.parametrize("value", [None, "", " , ", "unknown", "Unknown, "])
    def test_empty_and_placeholder_values(self, value) -> None:
        assert parse_forwarded_for(value) == []


class TestResolveClientId:
    def test_uses_first_forwarded_entry_without_trusted_proxies(self) -> None:
        headers = {"x-forwarded-for": "203.0.113.7, 10.0.0.2"}
        assert resolve_client_id(headers, "10.0.0.9") == "203.0.113.7"

    def test_trusted_proxy_count_picks_entry_from_the_right(self) -> None:
        # A client spoofing an extra entry cannot displace the address the
        # trusted proxy recorded.
        headers = {"x-forwarded-for": "198.51.100.1, 203.0.113.7, 10.0.0.2"}

        assert resolve_client_id(headers, "10.0.0.9", trusted_proxy_count=1) == "10.0.0.2"
        assert resolve_client_id(headers, "10.0.0.9", trusted_proxy_count=2) == "203.0.113.7"

    def test_trusted_proxy_count_larger_than_chain_uses_first_entry(self) -> None:
        headers = {"x-forwarded-for": "203.0.113.7"}
        assert resolve_client_id(headers, None, trusted_proxy_count=5) == "203.0.113.7"

    def test_falls_back_to_real_ip(self) -> None:
        headers = {"x-forwarded-for": " , ", "x-real-ip": "198.51.100.4"}
        assert resolve_client_id(headers, "10.0.0.9") == "198.51.100.4"

    def test_falls_back_to_direct_address(self) -> None:
        assert resolve_client_id({}, "192.0.2.10") == "192.0.2.10"

    def test_falls_back_to_anonymous_bucket(self) -> None:
        assert resolve_client_id({}, None) == "anonymous"
        assert resolve_client_id({"x-real-ip": "unknown"}, "  ", anonymous_id="shared") == "shared"

    def test_header_lookup_is_case_insensitive_with_starlette_headers(self) -> None:
        headers = Headers({"X-Forwarded-For": "203.0.113.7"})
        assert resolve_client_id(headers, None) == "203.0.113.7"

    def test_is_pure(self) -> None:
        headers = {"x-forwarded-for": "203.0.113.7"}
        assert resolve_client_id(headers, "x") == resolve_client_id(headers, "x")
        assert headers == {"x-forwarded-for": "203.0.113.7"}


def test_hash_client_id_is_stable_and_opaque() -> None:
    hashed = hash_client_id("203.0.113.7")

    assert hashed == hash_client_id("203.0.113.7")
    assert hashed != hash_client_id("203.0.113.8")
    assert len(hashed) == 16
