import gzip
import json
from typing import List, Optional, Union

import httpx

GZIP_TEXT = "compressed upstream body"
TEST_HELP_TEXT = "Help text for the test gateway\n"


def reply(
    status_code: int,
    body: Union[str, bytes] = b"",
    headers=None,
) -> httpx.Response:
    """Upstream response with an unread stream, like one coming off the wire."""
    if isinstance(body, str):
        body = body.encode()
    headers = httpx.Headers(headers or {})
    if "content-length" not in headers:
        headers["content-length"] = str(len(body))
    return httpx.Response(status_code, headers=headers, stream=httpx.ByteStream(body))


class FakeUpstream:
    """Simulated target sites behind ``httpx.MockTransport``.

    Every outbound client the gateway creates goes through ``client_factory``,
    which records the upstream proxy chosen for the hop. Requests made through
    a proxy are answered by a fake forward proxy that reports what it received.
    """

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.proxies: List[Optional[str]] = []
        self.clients: List[httpx.AsyncClient] = []

    def client_factory(self, proxy_url: Optional[str]) -> httpx.AsyncClient:
        self.proxies.append(proxy_url)

        def handler(request: httpx.Request) -> httpx.Response:
            return self.handle(request, proxy_url)

        client = httpx.AsyncClient(
            transport=httpx.MockTransport(handler), follow_redirects=False
        )
        self.clients.append(client)
        return client

    @property
    def urls(self) -> List[str]:
        return [str(request.url) for request in self.requests]

    def handle(self, request: httpx.Request, proxy_url: Optional[str]) -> httpx.Response:
        self.requests.append(request)
        if proxy_url:
            return reply(
                200,
                f"{request.method} {request.url} Host={request.headers['host']}",
            )

        host = request.url.host
        path = request.url.path
        body = request.read()

        if host == "robots.txt":
            return reply(200, "this is http://robots.txt")
        if path == "/proxyerror":
            raise httpx.ConnectError("throw node", request=request)
        if host == "slow.test":
            raise httpx.ReadTimeout("timed out", request=request)
        if host != "example.com":
            return reply(200, f"Response from {host}")

        if path == "/":
            if request.url.scheme == "https":
                return reply(200, "Response from https://example.com")
            return reply(200, "Response from example.com")
        if path == "/echopost":
            return reply(200, body)
        if path == "/echomethod":
            content_type = request.headers.get("content-type", "")
            return reply(
                200, f"{request.method} {body.decode()} content-type={content_type}"
            )
        if path == "/echoheaders":
            return reply(
                200,
                json.dumps(dict(request.headers)),
                {"content-type": "application/json"},
            )
        if path == "/redirect":
            return reply(
                302,
                "redirecting",
                {"location": "/redirecttarget", "x-at-redirect": "yes"},
            )
        if path == "/redirecttarget":
            return reply(200, "redirect target", {"some-header": "value"})
        if path == "/redirectrelative":
            return reply(302, headers={"location": "redirecttarget"})
        if path == "/redirectloop":
            return reply(
                302, "redirecting ad infinitum...", {"location": "/redirectloop"}
            )
        if path == "/redirectpost":
            return reply(302, headers={"location": "/redirectposttarget"})
        if path == "/redirectposttarget":
            return reply(200, "post target")
        if path == "/redirect303":
            return reply(303, headers={"location": "/echomethod"})
        if path == "/redirect301":
            return reply(301, headers={"location": "/echomethod"})
        if path == "/redirect307":
            return reply(307, "redirecting...", {"location": "/redirectposttarget"})
        if path == "/redirect308":
            return reply(308, "moved", {"location": "https://example.org/moved"})
        if path == "/utf8redirect":
            return reply(302, headers={"location": "/日本?q=é".encode()})
        if path == "/日本":
            return reply(200, f"unicode target {request.url.query.decode()}")
        if path == "/nolocation":
            return reply(302, "no location")
        if path == "/redirecterror":
            return reply(302, headers={"location": "/proxyerror"})
        if path.startswith("/chain/"):
            remaining = int(path.rsplit("/", 1)[1])
            if remaining == 0:
                return reply(200, "end of chain")
            return reply(302, headers={"location": f"/chain/{remaining - 1}"})
        if path == "/pingpong/a":
            return reply(302, headers={"location": "/pingpong/b"})
        if path == "/pingpong/b":
            return reply(302, headers={"location": "/pingpong/a"})
        if path == "/setcookie":
            return reply(
                200,
                headers=[
                    ("set-cookie", "x"),
                    ("set-cookie2", "y"),
                    ("set-cookie3", "z"),
                ],
            )
        if path == "/exposed":
            return reply(
                200,
                "exposed",
                {
                    "access-control-expose-headers": "x-upstream-one, x-upstream-two",
                    "access-control-allow-origin": "https://only.me",
                    "x-upstream-one": "1",
                },
            )
        if path == "/gzip":
            return reply(
                200,
                gzip.compress(GZIP_TEXT.encode()),
                {"content-encoding": "gzip", "content-type": "text/plain"},
            )
        return reply(404, f"No route for {path}")
