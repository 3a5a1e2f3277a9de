import os

SERVICE_NAME = os.getenv("SERVICE_NAME", "cors-gateway")
HOST = os.environ.get("HOST", "0.0.0.0")
PORT = int(os.environ.get("PORT", "8080"))

CORS_BASE_PATH = os.environ.get("CORS_BASE_PATH", "").rstrip("/")


def _split_list(raw: str) -> list[str]:
    return [entry.strip() for entry in raw.split(",") if entry.strip()]


def _parse_set_headers(raw: str) -> dict:
    mapping: dict = {}
    if not raw:
        return mapping
    for entry in raw.split(","):
        entry = entry.strip()
        if not entry:
            continue
        if "=" in entry:
            key, val = entry.split("=", 1)
            key = key.strip()
            if key:
                mapping[key] = val.strip()
    return mapping


CORS_ORIGIN_BLACKLIST = _split_list(os.getenv("CORS_ORIGIN_BLACKLIST", ""))
CORS_ORIGIN_WHITELIST = _split_list(os.getenv("CORS_ORIGIN_WHITELIST", ""))
CORS_REQUIRE_HEADER = _split_list(os.getenv("CORS_REQUIRE_HEADER", ""))
CORS_REMOVE_HEADERS = _split_list(os.getenv("CORS_REMOVE_HEADERS", "cookie,cookie2"))
CORS_SET_HEADERS = _parse_set_headers(os.getenv("CORS_SET_HEADERS", ""))
CORS_FORWARD_HEADERS = os.getenv("CORS_FORWARD_HEADERS", "true").lower() == "true"
CORS_REDIRECT_SAME_ORIGIN = (
    os.getenv("CORS_REDIRECT_SAME_ORIGIN", "false").lower() == "true"
)
CORS_MAX_REDIRECTS = int(os.getenv("CORS_MAX_REDIRECTS", "5"))
CORS_MAX_AGE = int(os.getenv("CORS_MAX_AGE", "0"))
CORS_RATELIMIT = os.getenv("CORS_RATELIMIT", "")
CORS_PROXY_TIMEOUT = float(os.getenv("CORS_PROXY_TIMEOUT", "30"))
CORS_HELP_FILE = os.getenv(
    "CORS_HELP_FILE", os.path.join(os.path.dirname(__file__), "help.txt")
)

SSL_KEYFILE = os.getenv("SSL_KEYFILE", "")
SSL_CERTFILE = os.getenv("SSL_CERTFILE", "")

OTLP_ENDPOINT = os.getenv("OTLP_ENDPOINT")
OTLP_HEADERS = os.getenv("OTLP_HEADERS", "")
