"""Per-origin request quota.

Configured with ``<max requests per period> <period in minutes> [hosts...]``
where each host is either a literal host (ports listed explicitly when
relevant) or a ``/regex/`` matching the whole host. Listed hosts are never
limited. Examples::

    1 5                      any origin: one request per 5 minutes
    1 5 example.com          example.com unlimited, others one per 5 minutes
    0 1 /(.*\\.)?example\\.com/  only example.com and its subdomains
"""

import re
import time
from typing import Callable, Dict, Optional

from cors_gateway.errors import ConfigurationError

_CONFIG_PATTERN = re.compile(r"^(\d+) (\d+)(?:\s*$|\s+(.+)$)")
_SCHEME_PATTERN = re.compile(r"^[\w\-]+://", re.IGNORECASE)


def _compile_unlimited_hosts(raw: str) -> "re.Pattern[str]":
    parts = []
    for index, host in enumerate(raw.split()):
        starts, ends = host.startswith("/"), host.endswith("/")
        if starts or ends:
            if len(host) == 1 or not (starts and ends):
                raise ConfigurationError(
                    f"Invalid CORS_RATELIMIT. Regex at index {index} must start "
                    'and end with a slash ("/").'
                )
            host = host[1:-1]
            try:
                re.compile(host)
            except re.error as e:
                raise ConfigurationError(
                    f"Invalid CORS_RATELIMIT. Regex at index {index}: {e}"
                ) from e
        else:
            host = re.escape(host)
        parts.append(host)
    return re.compile("^(?:" + "|".join(parts) + ")$", re.IGNORECASE)


def _limit_message(max_requests: int, period_minutes: int) -> str:
    period = "minute" if period_minutes == 1 else f"{period_minutes} minutes"
    return (
        f"The number of requests is limited to {max_requests} per {period}. "
        "Please self-host this gateway if you need more quota."
    )


class RateLimiter:
    """Fixed-window request counter keyed by origin host.

    Counters live on the event loop thread, so no locking is needed.
    """

    def __init__(
        self,
        max_requests: int,
        period_minutes: int,
        unlimited_hosts: Optional["re.Pattern[str]"] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if period_minutes <= 0:
            raise ConfigurationError("Invalid CORS_RATELIMIT. Period cannot be zero.")
        self.max_requests = max_requests
        self.period_seconds = period_minutes * 60
        self.unlimited_hosts = unlimited_hosts
        self.message = _limit_message(max_requests, period_minutes)
        self._clock = clock
        self._window_start = clock()
        self._counts: Dict[str, int] = {}

    def _roll_window(self) -> None:
        now = self._clock()
        if now - self._window_start >= self.period_seconds:
            self._window_start = now
            self._counts = {}

    def __call__(self, origin: str) -> Optional[str]:
        host = _SCHEME_PATTERN.sub("", origin)
        if self.unlimited_hosts is not None and self.unlimited_hosts.match(host):
            return None
        self._roll_window()
        count = self._counts.get(host, 0) + 1
        if count > self.max_requests:
            return self.message
        self._counts[host] = count
        return None


def create_rate_limit_checker(raw: str) -> Optional[RateLimiter]:
    """Parse a rate limit setting; an empty setting disables limiting."""
    if not raw or not raw.strip():
        return None
    match = _CONFIG_PATTERN.match(raw.strip())
    if not match:
        raise ConfigurationError(f"Invalid CORS_RATELIMIT: {raw!r}")
    unlimited = _compile_unlimited_hosts(match.group(3)) if match.group(3) else None
    return RateLimiter(int(match.group(1)), int(match.group(2)), unlimited)
