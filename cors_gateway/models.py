from dataclasses import dataclass, field
from enum import Enum
import string
from typing import Optional, List, Tuple
from urllib.parse import quote, urlsplit

import httpx

from cors_gateway.errors import ErrorKind

DEFAULT_PORTS = {"http": 80, "https": 443}


def _percent_encode(text: str) -> str:
    """Escape whitespace, control and non-ASCII characters as UTF-8 octets."""
    return quote(text, safe=string.punctuation)


@dataclass(frozen=True)
class TargetUrl:
    """Absolute http(s) URL of the site being proxied."""

    scheme: str
    host: str
    port: Optional[int]
    path: str = "/"

    @property
    def default_port(self) -> int:
        return DEFAULT_PORTS[self.scheme]

    @property
    def effective_port(self) -> int:
        return self.port if self.port is not None else self.default_port

    @property
    def hostname(self) -> str:
        # IPv6 literals need brackets inside a URL
        return f"[{self.host}]" if ":" in self.host else self.host

    @property
    def netloc(self) -> str:
        if self.port is None:
            return self.hostname
        return f"{self.hostname}:{self.port}"

    @property
    def origin(self) -> str:
        return f"{self.scheme}://{self.netloc}"

    @property
    def href(self) -> str:
        return f"{self.origin}{self.path}"

    @classmethod
    def from_absolute(cls, url: str) -> Optional["TargetUrl"]:
        """Parse an absolute URL, returning None when it cannot be proxied.

        The result is always ASCII: a Unicode host is IDNA-encoded and the
        path and query are percent-encoded.
        """
        try:
            parts = urlsplit(url)
            port = parts.port
        except ValueError:
            return None
        scheme = parts.scheme.lower()
        host = parts.hostname
        if scheme not in DEFAULT_PORTS or not host:
            return None
        if not host.isascii():
            try:
                host = host.encode("idna").decode("ascii")
            except UnicodeError:
                return None
        path = _percent_encode(parts.path or "/")
        if parts.query:
            path = f"{path}?{_percent_encode(parts.query)}"
        return cls(scheme=scheme, host=host, port=port, path=path)

    def __str__(self) -> str:
        return self.href


@dataclass(frozen=True)
class TargetRequest:
    url: TargetUrl
    method: str
    headers: httpx.Headers
    body: Optional[bytes] = None


@dataclass(frozen=True)
class ForwardedContext:
    """What the gateway knows about the inbound connection."""

    client_host: Optional[str]
    inbound_host: str
    gateway_port: str
    gateway_proto: str
    # Scheme the client used to reach us, possibly through a TLS-terminating front end
    public_proto: Optional[str] = None

    @property
    def proxy_base_url(self) -> str:
        return f"{self.public_proto or self.gateway_proto}://{self.inbound_host}"


@dataclass(frozen=True)
class AccessDecision:
    allowed: bool
    status_code: Optional[int] = None
    message: Optional[str] = None
    kind: Optional[ErrorKind] = None

    @classmethod
    def allow(cls) -> "AccessDecision":
        return cls(allowed=True)

    @classmethod
    def deny(
        cls, status_code: int, kind: ErrorKind, message: str = ""
    ) -> "AccessDecision":
        return cls(allowed=False, status_code=status_code, message=message, kind=kind)


@dataclass(frozen=True)
class RedirectHop:
    index: int
    status_code: int
    location: str

    @property
    def header_name(self) -> str:
        return f"x-cors-redirect-{self.index}"

    @property
    def header_value(self) -> str:
        return f"{self.status_code} {self.location}"


@dataclass
class RedirectChain:
    max_hops: int
    hops: List[RedirectHop] = field(default_factory=list)

    def record(self, status_code: int, location: str) -> RedirectHop:
        if len(self.hops) >= self.max_hops:
            raise ValueError(f"Redirect chain is limited to {self.max_hops} hops")
        hop = RedirectHop(len(self.hops) + 1, status_code, location)
        self.hops.append(hop)
        return hop

    def header_items(self) -> List[Tuple[str, str]]:
        return [(hop.header_name, hop.header_value) for hop in self.hops]

    def __len__(self) -> int:
        return len(self.hops)

    def __iter__(self):
        return iter(self.hops)


class ChaseState(str, Enum):
    REQUESTING = "requesting"
    REDIRECTED = "redirected"
    DONE = "done"
    REDIRECT_NOT_FOLLOWED = "redirect_not_followed"
    LOOP_DETECTED = "loop_detected"
    FAILED = "failed"


@dataclass
class ProxyOutcome:
    """Result of chasing one inbound request through its redirects.

    When ``response`` is set it is an open, streamed upstream response whose
    client is still alive; ``aclose`` releases both.
    """

    state: ChaseState
    request_url: str
    final_url: str
    chain: RedirectChain
    response: Optional[httpx.Response] = None
    client: Optional[httpx.AsyncClient] = None
    error: Optional[ErrorKind] = None
    error_detail: Optional[str] = None
    location: Optional[str] = None

    @property
    def final_status(self) -> Optional[int]:
        return self.response.status_code if self.response is not None else None

    async def aclose(self) -> None:
        if self.response is not None:
            await self.response.aclose()
        if self.client is not None:
            await self.client.aclose()
