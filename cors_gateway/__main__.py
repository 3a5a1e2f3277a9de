import logging

import uvicorn

from cors_gateway.vars import HOST, PORT, SSL_CERTFILE, SSL_KEYFILE

logger = logging.getLogger("uvicorn.error")


def main() -> None:
    ssl_options = {}
    if SSL_KEYFILE and SSL_CERTFILE:
        # X-Forwarded-Proto becomes "https" for every proxied request
        ssl_options = {"ssl_keyfile": SSL_KEYFILE, "ssl_certfile": SSL_CERTFILE}
    elif SSL_KEYFILE or SSL_CERTFILE:
        raise SystemExit("Both SSL_KEYFILE and SSL_CERTFILE are needed to serve https")

    uvicorn.run("cors_gateway.server:app", host=HOST, port=PORT, **ssl_options)


if __name__ == "__main__":
    main()
