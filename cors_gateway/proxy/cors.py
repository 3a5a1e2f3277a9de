"""CORS response headers and preflight answers."""

from typing import Dict, Mapping

from starlette.datastructures import MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from cors_gateway.config import ProxyConfig

ALLOW_ORIGIN = "access-control-allow-origin"


def base_cors_headers() -> Dict[str, str]:
    # Always a wildcard: the caller's origin is never reflected
    return {ALLOW_ORIGIN: "*"}


def is_preflight(method: str) -> bool:
    return method.upper() == "OPTIONS"


def preflight_headers(
    request_headers: Mapping[str, str], config: ProxyConfig
) -> Dict[str, str]:
    """Headers answering a preflight: requested method and headers are echoed verbatim."""
    headers = base_cors_headers()
    if config.cors_max_age:
        headers["access-control-max-age"] = str(config.cors_max_age)

    requested_method = request_headers.get("access-control-request-method")
    if requested_method:
        headers["access-control-allow-methods"] = requested_method

    requested_headers = request_headers.get("access-control-request-headers")
    if requested_headers:
        headers["access-control-allow-headers"] = requested_headers
    return headers


class AllowAnyOriginMiddleware:
    """Adds the wildcard allow-origin header to responses that lack it.

    Covers responses produced outside the proxy route, such as the trailing
    slash redirect to the base path and 404s for paths outside it.
    """

    def __init__(self, app: ASGIApp):
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        async def send_with_allow_origin(message: Message) -> None:
            if message["type"] == "http.response.start":
                message["headers"] = list(message.get("headers", []))
                headers = MutableHeaders(raw=message["headers"])
                if ALLOW_ORIGIN not in headers:
                    headers[ALLOW_ORIGIN] = "*"
            await send(message)

        await self.app(scope, receive, send_with_allow_origin)
