"""
Upstream proxy selection.

The gateway can reach targets through another HTTP proxy, chosen per hop from
``http_proxy`` / ``https_proxy`` / ``no_proxy`` style settings. Matching is
scheme-specific and ``no_proxy`` entries are exact ``host`` or ``host:port``
strings; there is no suffix or CIDR matching.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, FrozenSet, Mapping, Optional

import httpx

from cors_gateway.models import DEFAULT_PORTS

logger = logging.getLogger("uvicorn.error")


def _env_lookup(environ: Mapping[str, str], name: str) -> str:
    # lower-case wins, matching curl and most proxy-aware tools
    return environ.get(name.lower()) or environ.get(name.upper()) or ""


def _normalize_proxy_url(proxy: str, scheme: str) -> Optional[str]:
    proxy = proxy.strip()
    if not proxy:
        return None
    if "://" not in proxy:
        proxy = f"{scheme}://{proxy}"
    return proxy


def _parse_no_proxy(raw: str) -> FrozenSet[str]:
    entries = set()
    for entry in raw.replace(" ", ",").split(","):
        entry = entry.strip().lower()
        if entry:
            entries.add(entry)
    return frozenset(entries)


@dataclass(frozen=True)
class EnvironmentProxyResolver:
    """Callable ``(scheme, host, port) -> proxy URL`` seeded from proxy settings."""

    http_proxy: Optional[str] = None
    https_proxy: Optional[str] = None
    no_proxy: FrozenSet[str] = field(default_factory=frozenset)

    @classmethod
    def from_environ(cls, environ: Mapping[str, str]) -> "EnvironmentProxyResolver":
        return cls(
            http_proxy=_normalize_proxy_url(_env_lookup(environ, "http_proxy"), "http"),
            https_proxy=_normalize_proxy_url(
                _env_lookup(environ, "https_proxy"), "https"
            ),
            no_proxy=_parse_no_proxy(_env_lookup(environ, "no_proxy")),
        )

    def proxy_for_scheme(self, scheme: str) -> Optional[str]:
        if scheme == "http":
            return self.http_proxy
        if scheme == "https":
            return self.https_proxy
        return None

    def bypasses(self, scheme: str, host: str, port: Optional[int]) -> bool:
        if not self.no_proxy:
            return False
        if "*" in self.no_proxy:
            return True
        host = host.lower()
        effective_port = port if port else DEFAULT_PORTS.get(scheme)
        return host in self.no_proxy or f"{host}:{effective_port}" in self.no_proxy

    def __call__(self, scheme: str, host: str, port: Optional[int]) -> Optional[str]:
        proxy = self.proxy_for_scheme(scheme)
        if not proxy or self.bypasses(scheme, host, port):
            return None
        return proxy


ClientFactory = Callable[[Optional[str]], httpx.AsyncClient]


def default_client_factory(timeout: float) -> ClientFactory:
    """Create one outbound client per hop, optionally tunnelled through a proxy."""

    def _factory(proxy_url: Optional[str]) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            proxy=proxy_url,
            timeout=httpx.Timeout(timeout),
            # Redirects are handled by the chaser, proxy settings by the resolver
            follow_redirects=False,
            trust_env=False,
        )

    return _factory


def select_upstream_proxy(resolver, scheme: str, host: str, port: Optional[int]):
    proxy = resolver(scheme, host, port)
    if proxy:
        logger.debug(f"[Upstream] {scheme}://{host}:{port or ''} via proxy {proxy}")
    return proxy
