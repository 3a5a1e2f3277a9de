import pytest

from cors_gateway.errors import ErrorKind, InvalidHostError
from cors_gateway.models import (
    AccessDecision,
    ChaseState,
    ForwardedContext,
    ProxyOutcome,
    RedirectChain,
)
from cors_gateway.proxy.composer import (
    compose_response,
    denial_response,
    error_response,
    gateway_url,
    help_response,
    same_origin_redirect_response,
)


@pytest.fixture
def forwarded():
    return ForwardedContext(
        client_host="127.0.0.1",
        inbound_host="gateway.test:8080",
        gateway_port="8080",
        gateway_proto="http",
    )


def chain_of(*hops, max_hops=5):
    chain = RedirectChain(max_hops=max_hops)
    for status, location in hops:
        chain.record(status, location)
    return chain


class TestGatewayUrl:
    def test_points_back_through_gateway(self, make_config, forwarded):
        assert (
            gateway_url(forwarded, make_config(), "http://example.com/a?b=1")
            == "http://gateway.test:8080/http://example.com/a?b=1"
        )

    def test_includes_base_path(self, make_config, forwarded):
        assert (
            gateway_url(forwarded, make_config(base_path="/proxy/"), "http://x.test/")
            == "http://gateway.test:8080/proxy/http://x.test/"
        )

    def test_uses_public_scheme(self, make_config):
        behind_tls = ForwardedContext(
            client_host=None,
            inbound_host="gateway.test",
            gateway_port="80",
            gateway_proto="http",
            public_proto="https",
        )
        assert (
            gateway_url(behind_tls, make_config(), "http://x.test/")
            == "https://gateway.test/http://x.test/"
        )


class TestSimpleResponses:
    def test_help_response(self, make_config):
        response = help_response(make_config(help_text="usage"))
        assert response.status_code == 200
        assert response.body == b"usage"
        assert response.headers["access-control-allow-origin"] == "*"

    def test_error_response(self):
        response = error_response(InvalidHostError("favicon.ico"))
        assert response.status_code == 404
        assert response.body == b"Invalid host: favicon.ico"
        assert response.headers["access-control-allow-origin"] == "*"
        assert response.headers["content-type"].startswith("text/plain")

    def test_denial_without_message_has_empty_body(self):
        response = denial_response(AccessDecision.deny(403, ErrorKind.ORIGIN_DENIED))
        assert response.status_code == 403
        assert response.body == b""
        assert response.headers["access-control-allow-origin"] == "*"

    def test_denial_with_message(self):
        response = denial_response(
            AccessDecision.deny(400, ErrorKind.MISSING_REQUIRED_HEADER, "missing")
        )
        assert response.status_code == 400
        assert response.body == b"missing"

    def test_same_origin_redirect(self):
        response = same_origin_redirect_response("http://example.com/page")
        assert response.status_code == 301
        assert response.headers["location"] == "http://example.com/page"
        assert response.headers["vary"] == "origin"
        assert response.headers["cache-control"] == "private"


class TestComposeSyntheticResponses:
    def test_transport_failure(self, make_config, forwarded):
        outcome = ProxyOutcome(
            state=ChaseState.FAILED,
            request_url="http://example.com/proxyerror",
            final_url="http://example.com/proxyerror",
            chain=chain_of(),
            error=ErrorKind.UPSTREAM_TRANSPORT_FAILURE,
            error_detail="ConnectError: throw node",
        )
        response = compose_response(outcome, forwarded, make_config())
        assert response.status_code == 404
        assert response.body == b"Not found because of proxy error: ConnectError: throw node"
        assert response.headers["access-control-allow-origin"] == "*"
        assert response.headers["x-request-url"] == "http://example.com/proxyerror"
        assert response.headers["x-final-url"] == "http://example.com/proxyerror"
        assert (
            response.headers["access-control-expose-headers"]
            == "x-final-url,x-request-url"
        )

    def test_loop(self, make_config, forwarded):
        outcome = ProxyOutcome(
            state=ChaseState.LOOP_DETECTED,
            request_url="http://example.com/redirectloop",
            final_url="http://example.com/redirectloop",
            chain=chain_of((302, "http://example.com/redirectloop")),
            error=ErrorKind.REDIRECT_LOOP,
            location="http://example.com/redirectloop",
        )
        response = compose_response(outcome, forwarded, make_config())
        assert response.status_code == 302
        assert response.body == b"redirecting ad infinitum..."
        assert (
            response.headers["location"]
            == "http://gateway.test:8080/http://example.com/redirectloop"
        )
        assert (
            response.headers["x-cors-redirect-1"]
            == "302 http://example.com/redirectloop"
        )
        assert response.headers["access-control-expose-headers"] == (
            "location,x-final-url,x-request-url,x-cors-redirect-1"
        )
