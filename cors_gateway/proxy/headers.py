from typing import Iterable, List, Tuple

import httpx

from cors_gateway.config import ProxyConfig
from cors_gateway.models import ForwardedContext

# Hop-by-hop headers that should NOT be forwarded (RFC 2616)
HOP_BY_HOP_HEADERS = {
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "proxy-connection",
    "te",
    "trailers",
    "transfer-encoding",
    "upgrade",
}

# Derived by httpx from the target URL and the body of each hop
CLIENT_MANAGED_HEADERS = {"host", "content-length"}

# Never forwarded to the browser
COOKIE_HEADERS = {"set-cookie", "set-cookie2"}

# Replaced by the gateway's own values on every response
GATEWAY_CORS_HEADERS = {
    "access-control-allow-origin",
    "access-control-expose-headers",
}

# Readable by browser script without being exposed
CORS_SAFELISTED_RESPONSE_HEADERS = {
    "cache-control",
    "content-language",
    "content-length",
    "content-type",
    "expires",
    "last-modified",
    "pragma",
}

REQUEST_URL_HEADER = "x-request-url"
FINAL_URL_HEADER = "x-final-url"

HeaderItems = List[Tuple[str, str]]


def build_outbound_headers(
    inbound: Iterable[Tuple[str, str]],
    config: ProxyConfig,
    forwarded: ForwardedContext,
    drop_content_type: bool = False,
) -> httpx.Headers:
    """
    Build a fresh header set for one outbound hop.

    Order of operations: drop hop-by-hop and ``remove_headers`` entries, inject
    X-Forwarded-* when enabled, then apply ``set_headers``, which override both
    removal and client-supplied values.
    """
    kept = []
    for name, value in inbound:
        name_lower = name.lower()
        if (
            name_lower in HOP_BY_HOP_HEADERS
            or name_lower in CLIENT_MANAGED_HEADERS
            or name_lower in config.remove_headers
        ):
            continue
        if drop_content_type and name_lower == "content-type":
            continue
        kept.append((name, value))
    headers = httpx.Headers(kept)

    if config.forward_headers:
        client_ip = forwarded.client_host or "unknown"
        existing_xff = headers.get("x-forwarded-for", "")
        headers["x-forwarded-for"] = f"{existing_xff}, {client_ip}".strip(", ")
        headers["x-forwarded-host"] = forwarded.inbound_host
        headers["x-forwarded-port"] = forwarded.gateway_port
        headers["x-forwarded-proto"] = forwarded.gateway_proto

    for name, value in config.set_headers.items():
        headers[name] = value

    return headers


def filter_upstream_headers(upstream: httpx.Headers) -> HeaderItems:
    """Upstream response headers that may be relayed to the browser."""
    return [
        (name, value)
        for name, value in upstream.multi_items()
        if name.lower() not in HOP_BY_HOP_HEADERS
        and name.lower() not in COOKIE_HEADERS
        and name.lower() not in GATEWAY_CORS_HEADERS
    ]


def declared_exposed_headers(upstream: httpx.Headers) -> List[str]:
    names = []
    for value in upstream.get_list("access-control-expose-headers"):
        names.extend(part.strip() for part in value.split(",") if part.strip())
    return names


def expose_headers_value(
    response_items: HeaderItems, declared: Iterable[str] = ()
) -> str:
    """Comma-joined list of every header the browser script should be able to read."""
    names = []
    seen = set()
    for name in [name for name, _ in response_items] + list(declared):
        name_lower = name.lower()
        if (
            name_lower.startswith("access-control-")
            or name_lower in CORS_SAFELISTED_RESPONSE_HEADERS
            or name_lower in seen
        ):
            continue
        seen.add(name_lower)
        names.append(name_lower)
    return ",".join(names)
