"""
Target resolution: turn the inbound request path into the URL to proxy.

The path after the gateway's base path is ``/<scheme://>host[:port][/path][?query]``.
A path that does not encode a target (``/``, ``//host``) is not an error: the
caller serves the help document instead.
"""

import ipaddress
import re
from typing import Optional

from cors_gateway.errors import (
    InvalidHostError,
    MissingSlashError,
    PortTooLargeError,
)
from cors_gateway.models import TargetUrl

MAX_PORT = 65535

#                          1:scheme            3:hostname 4:port                5:path + query
_TARGET_PATTERN = re.compile(
    r"^(?:(https?:)?//)?(([^/?]+?)(?::(\d*)(?=[/?]|$))?)([/?][\s\S]*|$)",
    re.IGNORECASE,
)
_SCHEME_PREFIX = re.compile(r"^https?:", re.IGNORECASE)
_MISSING_SLASH = re.compile(r"^https?:/[^/]", re.IGNORECASE)

_DNS_LABEL = re.compile(r"^(?!-)[a-z0-9-]{1,63}(?<!-)$")
# Names browsers request on their own; they look like hosts but never are
_FILE_EXTENSIONS = frozenset(
    {
        "css",
        "gif",
        "htm",
        "html",
        "ico",
        "jpeg",
        "jpg",
        "js",
        "json",
        "map",
        "php",
        "png",
        "svg",
        "txt",
        "webmanifest",
        "webp",
        "xml",
    }
)


def target_from_path(raw_path: str, query_string: str = "", base_path: str = "") -> str:
    """Strip the base path and one leading slash, keeping the query string."""
    path = raw_path
    if base_path and (path == base_path or path.startswith(base_path + "/")):
        path = path[len(base_path):]
    if path.startswith("/"):
        path = path[1:]
    if query_string:
        path = f"{path}?{query_string}"
    return path


def is_valid_hostname(hostname: str) -> bool:
    try:
        ipaddress.ip_address(hostname.strip("[]"))
        return True
    except ValueError:
        pass

    try:
        ascii_host = hostname.encode("idna").decode("ascii").lower()
    except UnicodeError:
        return False

    labels = ascii_host.rstrip(".").split(".")
    if len(labels) < 2 or not all(_DNS_LABEL.match(label) for label in labels):
        return False
    tld = labels[-1]
    if tld.startswith("xn--"):
        return True
    return tld.isalpha() and tld not in _FILE_EXTENSIONS


def resolve_target(target: str) -> Optional[TargetUrl]:
    """
    Parse a target such as ``example.com``, ``example.com:8080/a?b=1`` or
    ``https://example.com/``.

    Returns None when the string does not encode a target at all.

    Raises:
        MissingSlashError: ``http:/host`` (one slash after the scheme)
        PortTooLargeError: port above 65535
        InvalidHostError: a scheme-less target whose host is not a plausible
            host name (``favicon.ico``)
    """
    if not target:
        return None

    match = _TARGET_PATTERN.match(target)
    if match is None:
        if _MISSING_SLASH.match(target):
            raise MissingSlashError()
        return None

    scheme_text, _, hostname, port_text, path = match.groups()
    if scheme_text:
        scheme = scheme_text[:-1].lower()
    else:
        if _SCHEME_PREFIX.match(target):
            # "http:/host" or "http:///" parsed with "http" as host name
            if _MISSING_SLASH.match(target):
                raise MissingSlashError()
            return None
        scheme = "https" if port_text == "443" else "http"

    if "@" in hostname:
        hostname = hostname.rsplit("@", 1)[1]
    if not hostname:
        return None

    if port_text and int(port_text) > MAX_PORT:
        raise PortTooLargeError(port_text)
    port = int(port_text) if port_text else None

    if not scheme_text and not is_valid_hostname(hostname):
        raise InvalidHostError(hostname)

    if not path or path.startswith("?"):
        path = "/" + path
    return TargetUrl(
        scheme=scheme,
        host=hostname.strip("[]").lower(),
        port=port,
        path=path,
    )
