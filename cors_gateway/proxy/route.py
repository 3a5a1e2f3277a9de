import logging
from typing import Optional

import httpx
from fastapi import Request
from fastapi.responses import Response
from opentelemetry import trace
from starlette.routing import Route
from starlette.types import Receive, Scope, Send

from cors_gateway.config import ProxyConfig
from cors_gateway.errors import ClientDisconnectedError
from cors_gateway.models import ForwardedContext, TargetRequest, TargetUrl
from cors_gateway.proxy.access import evaluate_access
from cors_gateway.proxy.composer import (
    compose_response,
    denial_response,
    help_response,
    preflight_response,
    same_origin_redirect_response,
)
from cors_gateway.proxy.cors import is_preflight
from cors_gateway.proxy.redirects import RedirectChaser
from cors_gateway.proxy.target import resolve_target, target_from_path
from cors_gateway.proxy.upstream import ClientFactory, default_client_factory

tracer = trace.get_tracer(__name__)
logger = logging.getLogger("uvicorn.error")


def get_target_path(request: Request, config: ProxyConfig) -> str:
    """The encoded target: undecoded path after the base path, plus the query string."""
    raw_path = request.scope.get("raw_path")
    path = raw_path.decode("latin-1") if raw_path else request.url.path
    query_string = request.scope.get("query_string", b"").decode("latin-1")
    return target_from_path(path, query_string, config.base_path)


def get_forwarded_context(request: Request) -> ForwardedContext:
    gateway_proto = "https" if request.url.scheme in ("https", "wss") else "http"
    forwarded_proto = request.headers.get("x-forwarded-proto", "")
    public_proto = "https" if forwarded_proto.strip().startswith("https") else None

    server = request.scope.get("server")
    port = request.url.port
    if port is None and server and server[1]:
        port = server[1]
    if port is None:
        port = 443 if gateway_proto == "https" else 80

    inbound_host = request.headers.get("host")
    if not inbound_host:
        inbound_host = f"{server[0]}:{server[1]}" if server else "localhost"

    return ForwardedContext(
        client_host=request.client.host if request.client else None,
        inbound_host=inbound_host,
        gateway_port=str(port),
        gateway_proto=gateway_proto,
        public_proto=public_proto,
    )


def is_same_origin(origin: Optional[str], target: TargetUrl) -> bool:
    href = target.href
    return bool(origin) and href.startswith(origin) and href[len(origin):][:1] == "/"


async def wait_for_disconnect(request: Request) -> None:
    """Return once the server reports that the client has gone away.

    Only valid after the request body has been read.
    """
    while True:
        message = await request.receive()
        if message["type"] == "http.disconnect":
            return


async def forward_to_target(
    request: Request, config: ProxyConfig, client_factory: ClientFactory
) -> Response:
    """
    Handle one inbound request.

    Preflights are answered straight away. Otherwise the target is resolved
    from the path (no target means the help document), access rules are
    applied, and the request is forwarded with its redirects chased.

    Raises:
        GatewayError: the path encodes an unusable target; turned into a
            plain-text response by the application's exception handler.
    """
    if is_preflight(request.method):
        return preflight_response(request.headers, config)

    target = resolve_target(get_target_path(request, config))
    if target is None:
        return help_response(config)

    decision = evaluate_access(request.headers, config)
    if not decision.allowed:
        return denial_response(decision)

    if config.redirect_same_origin and is_same_origin(
        request.headers.get("origin"), target
    ):
        return same_origin_redirect_response(target.href)

    with tracer.start_as_current_span("cors_proxy_request") as span:
        span.set_attribute("proxy.target_url", target.href)
        span.set_attribute("proxy.method", request.method)
        logger.debug(f"[Gateway] Proxying {request.method} {request.url.path} -> {target}")

        forwarded = get_forwarded_context(request)
        target_request = TargetRequest(
            url=target,
            method=request.method,
            headers=httpx.Headers(request.headers.raw),
            body=await request.body(),
        )
        chaser = RedirectChaser(config, client_factory)
        try:
            outcome = await chaser.chase(
                target_request,
                forwarded,
                wait_for_disconnect=lambda: wait_for_disconnect(request),
            )
        except ClientDisconnectedError:
            span.set_attribute("proxy.state", "client_disconnected")
            # Nobody is listening any more; this response is never delivered
            return Response(status_code=499)

        span.set_attribute("proxy.state", outcome.state.value)
        if outcome.final_status is not None:
            span.set_attribute("proxy.status_code", outcome.final_status)
        if outcome.error_detail:
            span.set_attribute("proxy.error", outcome.error_detail)
        return compose_response(outcome, forwarded, config)


class GatewayEndpoint:
    """ASGI endpoint proxying requests of every method to the encoded target."""

    def __init__(self, config: ProxyConfig, client_factory: ClientFactory):
        self.config = config
        self.client_factory = client_factory

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        request = Request(scope, receive)
        response = await forward_to_target(request, self.config, self.client_factory)
        await response(scope, receive, send)


def build_route(
    config: ProxyConfig, client_factory: Optional[ClientFactory] = None
) -> Route:
    """Catch-all route below the configured base path.

    No method filter is set, so WebDAV and custom verbs are proxied too.
    """
    factory = client_factory or default_client_factory(config.timeout)
    return Route(
        f"{config.base_path}/{{path:path}}",
        endpoint=GatewayEndpoint(config, factory),
        name="proxy_all",
    )
