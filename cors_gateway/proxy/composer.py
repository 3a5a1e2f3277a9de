import logging
from typing import AsyncIterator, Mapping

from fastapi.responses import PlainTextResponse, Response, StreamingResponse
from starlette.background import BackgroundTask

from cors_gateway.config import ProxyConfig
from cors_gateway.errors import GatewayError
from cors_gateway.models import AccessDecision, ChaseState, ForwardedContext, ProxyOutcome
from cors_gateway.proxy.cors import base_cors_headers, preflight_headers
from cors_gateway.proxy.headers import (
    FINAL_URL_HEADER,
    REQUEST_URL_HEADER,
    HeaderItems,
    declared_exposed_headers,
    expose_headers_value,
    filter_upstream_headers,
)

logger = logging.getLogger("uvicorn.error")

LOOP_BODY = "redirecting ad infinitum..."
PROXY_ERROR_PREFIX = "Not found because of proxy error: "


def gateway_url(forwarded: ForwardedContext, config: ProxyConfig, target_href: str) -> str:
    """URL that routes ``target_href`` back through this gateway."""
    return f"{forwarded.proxy_base_url}{config.base_path}/{target_href}"


def _metadata_items(outcome: ProxyOutcome) -> HeaderItems:
    return [
        (FINAL_URL_HEADER, outcome.final_url),
        (REQUEST_URL_HEADER, outcome.request_url),
        *outcome.chain.header_items(),
    ]


def _append_headers(response: Response, items: HeaderItems, declared=()) -> Response:
    for name, value in base_cors_headers().items():
        response.headers[name] = value
    for name, value in items:
        response.headers.append(name, value)
    exposed = expose_headers_value(items, declared)
    if exposed:
        response.headers["access-control-expose-headers"] = exposed
    return response


def help_response(config: ProxyConfig) -> Response:
    return PlainTextResponse(config.help_text, status_code=200, headers=base_cors_headers())


def preflight_response(request_headers: Mapping[str, str], config: ProxyConfig) -> Response:
    return Response(status_code=200, headers=preflight_headers(request_headers, config))


def error_response(exc: GatewayError) -> Response:
    return PlainTextResponse(
        exc.message, status_code=exc.status_code, headers=base_cors_headers()
    )


def denial_response(decision: AccessDecision) -> Response:
    if decision.message:
        return PlainTextResponse(
            decision.message,
            status_code=decision.status_code,
            headers=base_cors_headers(),
        )
    return Response(status_code=decision.status_code, headers=base_cors_headers())


def same_origin_redirect_response(target_href: str) -> Response:
    headers = base_cors_headers()
    headers.update(
        {"vary": "origin", "cache-control": "private", "location": target_href}
    )
    return Response(status_code=301, headers=headers)


async def _relay_body(outcome: ProxyOutcome) -> AsyncIterator[bytes]:
    # Raw bytes: no decompression, no re-encoding
    try:
        async for chunk in outcome.response.aiter_raw():
            yield chunk
    finally:
        await outcome.aclose()


def compose_response(
    outcome: ProxyOutcome, forwarded: ForwardedContext, config: ProxyConfig
) -> Response:
    """
    Turn a finished redirect chase into the single response for the client.

    Relayed upstream responses are streamed; loop and transport failures get
    synthetic plain-text bodies. Every variant carries the CORS header, the
    request/final URL headers, one header per followed redirect and the
    matching Access-Control-Expose-Headers list.
    """
    metadata = _metadata_items(outcome)

    if outcome.state is ChaseState.FAILED:
        response = PlainTextResponse(
            PROXY_ERROR_PREFIX + (outcome.error_detail or ""), status_code=404
        )
        return _append_headers(response, metadata)

    if outcome.state is ChaseState.LOOP_DETECTED:
        response = PlainTextResponse(LOOP_BODY, status_code=302)
        items = [("location", gateway_url(forwarded, config, outcome.location))]
        return _append_headers(response, items + metadata)

    upstream = outcome.response
    items = filter_upstream_headers(upstream.headers)
    if outcome.state is ChaseState.REDIRECT_NOT_FOLLOWED and outcome.location:
        rewritten = gateway_url(forwarded, config, outcome.location)
        items = [
            (name, rewritten if name.lower() == "location" else value)
            for name, value in items
        ]

    response = StreamingResponse(
        _relay_body(outcome),
        status_code=upstream.status_code,
        background=BackgroundTask(outcome.aclose),
    )
    return _append_headers(
        response, items + metadata, declared_exposed_headers(upstream.headers)
    )
