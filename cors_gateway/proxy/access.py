import logging
from typing import Mapping

from cors_gateway.config import ProxyConfig
from cors_gateway.errors import ErrorKind
from cors_gateway.models import AccessDecision

logger = logging.getLogger("uvicorn.error")


def evaluate_access(headers: Mapping[str, str], config: ProxyConfig) -> AccessDecision:
    """
    Decide whether the inbound request may be proxied.

    Checks, in order: origin blacklist, origin whitelist, required headers and
    the optional rate limit. Origins are compared as exact strings, so
    ``http://a.test`` and ``https://a.test`` are different origins.

    Args:
        headers: Case-insensitive inbound request headers
        config: Gateway configuration

    Returns:
        The AccessDecision for this request
    """
    origin = headers.get("origin")

    if config.origin_blacklist and origin in config.origin_blacklist:
        logger.warning(f"[Access] Origin {origin} is blacklisted")
        return AccessDecision.deny(403, ErrorKind.ORIGIN_DENIED)

    if config.origin_whitelist and origin not in config.origin_whitelist:
        logger.warning(f"[Access] Origin {origin} is not whitelisted")
        return AccessDecision.deny(403, ErrorKind.ORIGIN_DENIED)

    if config.require_headers and not any(
        name in headers for name in config.require_headers
    ):
        message = "Missing required request header. Must specify one of: " + ",".join(
            config.require_headers
        )
        return AccessDecision.deny(400, ErrorKind.MISSING_REQUIRED_HEADER, message)

    if config.rate_limit_checker is not None:
        limit_message = config.rate_limit_checker(origin or "")
        if limit_message:
            logger.warning(f"[Access] Origin {origin} exceeded its rate limit")
            return AccessDecision.deny(
                429,
                ErrorKind.RATE_LIMITED,
                f'The origin "{origin or ""}" has sent too many requests.\n'
                f"{limit_message}",
            )

    return AccessDecision.allow()
