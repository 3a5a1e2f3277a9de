import logging
import os
from types import MappingProxyType
from typing import Callable, FrozenSet, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from cors_gateway import vars as env_vars
from cors_gateway.errors import ConfigurationError
from cors_gateway.proxy.ratelimit import create_rate_limit_checker
from cors_gateway.proxy.upstream import EnvironmentProxyResolver

logger = logging.getLogger("uvicorn.error")

DEFAULT_HELP_FILE = os.path.join(os.path.dirname(__file__), "help.txt")

# (scheme, host, port) -> proxy URL or None for a direct connection
UpstreamProxyResolver = Callable[[str, str, Optional[int]], Optional[str]]
# origin -> message when the origin is over its quota
RateLimitChecker = Callable[[str], Optional[str]]


def read_help_text(path: str = DEFAULT_HELP_FILE) -> str:
    with open(path, "r", encoding="utf-8") as fh:
        return fh.read()


def _direct_connection(
    _scheme: str, _host: str, _port: Optional[int]
) -> Optional[str]:
    return None


class ProxyConfig(BaseModel):
    """Process-wide gateway settings, built once at startup and never mutated."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    origin_blacklist: FrozenSet[str] = frozenset()
    origin_whitelist: FrozenSet[str] = frozenset()
    require_headers: Tuple[str, ...] = ()
    remove_headers: FrozenSet[str] = frozenset()
    set_headers: Mapping[str, str] = Field(default_factory=dict)
    forward_headers: bool = True
    max_redirects: int = Field(default=5, ge=0)
    cors_max_age: int = Field(default=0, ge=0)
    redirect_same_origin: bool = False
    base_path: str = ""
    timeout: float = Field(default=30.0, gt=0)
    help_text: str = Field(default_factory=read_help_text)
    upstream_proxy_resolver: UpstreamProxyResolver = _direct_connection
    rate_limit_checker: Optional[RateLimitChecker] = None

    @field_validator("remove_headers", mode="before")
    @classmethod
    def _lowercase_names(cls, value):
        return frozenset(name.lower() for name in value)

    @field_validator("set_headers")
    @classmethod
    def _read_only_set_headers(cls, value: Mapping[str, str]) -> Mapping[str, str]:
        return MappingProxyType(dict(value))

    @field_validator("base_path")
    @classmethod
    def _normalize_base_path(cls, value: str) -> str:
        value = value.rstrip("/")
        if value and not value.startswith("/"):
            value = "/" + value
        return value


def load_config(environ: Optional[Mapping[str, str]] = None) -> ProxyConfig:
    """Build the gateway configuration from the process environment.

    Raises ConfigurationError for values the gateway cannot run with; this is
    meant to abort startup.
    """
    environ = os.environ if environ is None else environ
    try:
        config = ProxyConfig(
            origin_blacklist=env_vars.CORS_ORIGIN_BLACKLIST,
            origin_whitelist=env_vars.CORS_ORIGIN_WHITELIST,
            require_headers=env_vars.CORS_REQUIRE_HEADER,
            remove_headers=env_vars.CORS_REMOVE_HEADERS,
            set_headers=env_vars.CORS_SET_HEADERS,
            forward_headers=env_vars.CORS_FORWARD_HEADERS,
            max_redirects=env_vars.CORS_MAX_REDIRECTS,
            cors_max_age=env_vars.CORS_MAX_AGE,
            redirect_same_origin=env_vars.CORS_REDIRECT_SAME_ORIGIN,
            base_path=env_vars.CORS_BASE_PATH,
            timeout=env_vars.CORS_PROXY_TIMEOUT,
            help_text=read_help_text(env_vars.CORS_HELP_FILE),
            upstream_proxy_resolver=EnvironmentProxyResolver.from_environ(environ),
            rate_limit_checker=create_rate_limit_checker(env_vars.CORS_RATELIMIT),
        )
    except (ValidationError, OSError) as e:
        raise ConfigurationError(f"Invalid gateway configuration: {e}") from e

    if config.origin_blacklist:
        logger.info(f"[Config] Origin blacklist: {sorted(config.origin_blacklist)}")
    if config.origin_whitelist:
        logger.info(f"[Config] Origin whitelist: {sorted(config.origin_whitelist)}")
    if config.require_headers:
        logger.info(f"[Config] Required headers: {list(config.require_headers)}")
    return config
