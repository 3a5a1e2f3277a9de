"""
Tests for outbound request headers and relayed response headers.
"""

import httpx
import pytest

from cors_gateway.models import ForwardedContext
from cors_gateway.proxy.headers import (
    build_outbound_headers,
    declared_exposed_headers,
    expose_headers_value,
    filter_upstream_headers,
)


@pytest.fixture
def forwarded():
    return ForwardedContext(
        client_host="192.168.1.100",
        inbound_host="gateway.test:8080",
        gateway_port="8080",
        gateway_proto="http",
    )


class TestBuildOutboundHeaders:
    def test_copies_end_to_end_headers(self, make_config, forwarded):
        inbound = [("user-agent", "test-agent"), ("accept", "text/plain")]
        headers = build_outbound_headers(
            inbound, make_config(forward_headers=False), forwarded
        )
        assert headers["user-agent"] == "test-agent"
        assert headers["accept"] == "text/plain"

    def test_drops_hop_by_hop_and_client_managed_headers(self, make_config, forwarded):
        inbound = [
            ("host", "gateway.test:8080"),
            ("connection", "keep-alive"),
            ("keep-alive", "timeout=5"),
            ("transfer-encoding", "chunked"),
            ("content-length", "12"),
            ("proxy-authorization", "Basic abc"),
            ("x-kept", "yes"),
        ]
        headers = build_outbound_headers(
            inbound, make_config(forward_headers=False), forwarded
        )
        assert list(headers.keys()) == ["x-kept"]

    def test_remove_headers(self, make_config, forwarded):
        config = make_config(
            remove_headers=frozenset({"Cookie", "cookie2"}), forward_headers=False
        )
        inbound = [("cookie", "a=1"), ("cookie2", "b=2"), ("x-kept", "yes")]
        headers = build_outbound_headers(inbound, config, forwarded)
        assert "cookie" not in headers
        assert "cookie2" not in headers
        assert headers["x-kept"] == "yes"

    def test_set_headers_override_client_values(self, make_config, forwarded):
        config = make_config(
            set_headers={"x-api-key": "secret", "user-agent": "gateway"},
            forward_headers=False,
        )
        inbound = [("user-agent", "browser")]
        headers = build_outbound_headers(inbound, config, forwarded)
        assert headers.get_list("user-agent") == ["gateway"]
        assert headers["x-api-key"] == "secret"

    def test_set_headers_win_over_removal(self, make_config, forwarded):
        config = make_config(
            remove_headers=frozenset({"cookie"}),
            set_headers={"cookie": "fixed=1"},
            forward_headers=False,
        )
        headers = build_outbound_headers([("cookie", "a=1")], config, forwarded)
        assert headers["cookie"] == "fixed=1"

    def test_injects_forwarded_headers(self, make_config, forwarded):
        headers = build_outbound_headers([], make_config(), forwarded)
        assert headers["x-forwarded-for"] == "192.168.1.100"
        assert headers["x-forwarded-host"] == "gateway.test:8080"
        assert headers["x-forwarded-port"] == "8080"
        assert headers["x-forwarded-proto"] == "http"

    def test_chains_existing_forwarded_for(self, make_config, forwarded):
        inbound = [("x-forwarded-for", "10.0.0.1")]
        headers = build_outbound_headers(inbound, make_config(), forwarded)
        assert headers["x-forwarded-for"] == "10.0.0.1, 192.168.1.100"

    def test_forwarded_headers_disabled(self, make_config, forwarded):
        headers = build_outbound_headers(
            [], make_config(forward_headers=False), forwarded
        )
        assert "x-forwarded-for" not in headers
        assert "x-forwarded-proto" not in headers

    def test_drop_content_type(self, make_config, forwarded):
        inbound = [("content-type", "application/json"), ("accept", "*/*")]
        headers = build_outbound_headers(
            inbound, make_config(forward_headers=False), forwarded, drop_content_type=True
        )
        assert "content-type" not in headers
        assert headers["accept"] == "*/*"


class TestFilterUpstreamHeaders:
    def test_removes_cookies_and_hop_by_hop(self):
        upstream = httpx.Headers(
            [
                ("content-type", "text/plain"),
                ("set-cookie", "a=1"),
                ("set-cookie2", "b=2"),
                ("set-cookie3", "c=3"),
                ("transfer-encoding", "chunked"),
                ("connection", "close"),
            ]
        )
        assert filter_upstream_headers(upstream) == [
            ("content-type", "text/plain"),
            ("set-cookie3", "c=3"),
        ]

    def test_removes_upstream_cors_headers(self):
        upstream = httpx.Headers(
            {
                "access-control-allow-origin": "https://only.me",
                "access-control-expose-headers": "x-a",
                "access-control-allow-credentials": "true",
            }
        )
        assert filter_upstream_headers(upstream) == [
            ("access-control-allow-credentials", "true")
        ]

    def test_keeps_repeated_headers(self):
        upstream = httpx.Headers([("x-multi", "1"), ("x-multi", "2")])
        assert filter_upstream_headers(upstream) == [("x-multi", "1"), ("x-multi", "2")]


class TestExposeHeaders:
    def test_declared_exposed_headers(self):
        upstream = httpx.Headers(
            [
                ("access-control-expose-headers", "x-one, x-two"),
                ("access-control-expose-headers", "x-three"),
            ]
        )
        assert declared_exposed_headers(upstream) == ["x-one", "x-two", "x-three"]

    def test_lists_response_headers_in_order(self):
        items = [("Some-Header", "value"), ("x-final-url", "http://example.com/")]
        assert expose_headers_value(items) == "some-header,x-final-url"

    def test_skips_cors_and_safelisted_headers(self):
        items = [
            ("access-control-allow-origin", "*"),
            ("content-type", "text/plain"),
            ("content-length", "3"),
            ("x-request-url", "http://example.com/"),
        ]
        assert expose_headers_value(items) == "x-request-url"

    def test_deduplicates_with_declared_headers(self):
        items = [("x-one", "1"), ("x-one", "2")]
        assert expose_headers_value(items, ["X-One", "x-two"]) == "x-one,x-two"

    def test_empty(self):
        assert expose_headers_value([]) == ""
