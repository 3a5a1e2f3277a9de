"""Errors raised while resolving and guarding a proxied request.

Every ``GatewayError`` maps directly to the client-visible response: the
exception handler registered in ``server.create_app`` writes ``message`` as a
plain-text body with ``status_code``.
"""

from enum import Enum


class ErrorKind(str, Enum):
    PORT_TOO_LARGE = "PortTooLarge"
    INVALID_HOST = "InvalidHost"
    MISSING_SLASH = "MissingSlash"
    ORIGIN_DENIED = "OriginDenied"
    MISSING_REQUIRED_HEADER = "MissingRequiredHeader"
    RATE_LIMITED = "RateLimited"
    REDIRECT_LOOP = "RedirectLoop"
    UPSTREAM_TRANSPORT_FAILURE = "UpstreamTransportFailure"
    REDIRECT_NOT_FOLLOWED = "RedirectNotFollowed"


class GatewayError(Exception):
    kind: ErrorKind
    status_code: int = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class PortTooLargeError(GatewayError):
    kind = ErrorKind.PORT_TOO_LARGE
    status_code = 400

    def __init__(self, port: str):
        super().__init__(f"Port number too large: {port}")
        self.port = port


class InvalidHostError(GatewayError):
    kind = ErrorKind.INVALID_HOST
    status_code = 404

    def __init__(self, host: str):
        super().__init__(f"Invalid host: {host}")
        self.host = host


class MissingSlashError(GatewayError):
    kind = ErrorKind.MISSING_SLASH
    status_code = 400

    def __init__(self):
        super().__init__(
            "The URL is invalid: two slashes are needed after the http(s):."
        )


class ConfigurationError(ValueError):
    """Raised at startup when the gateway configuration cannot be used."""


class ClientDisconnectedError(Exception):
    """The inbound client went away while its request was being proxied."""
