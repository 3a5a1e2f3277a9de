"""
Redirect chasing.

One inbound request becomes a strictly sequential chain of outbound hops:

    Requesting --301/302/303 + Location--> Redirected --> Requesting ...
    Requesting --other status--> Done
    Requesting --307/308--> RedirectNotFollowed (the browser follows itself)
    Redirected --revisit or too many hops--> LoopDetected
    Requesting --transport error--> Failed

Every followed hop is recorded in a RedirectChain and later surfaces as an
``x-cors-redirect-<n>`` response header.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Tuple
from urllib.parse import urljoin

import httpx
from opentelemetry import trace
from prometheus_client import Counter

from cors_gateway.config import ProxyConfig
from cors_gateway.errors import ClientDisconnectedError, ErrorKind
from cors_gateway.models import (
    ChaseState,
    ForwardedContext,
    ProxyOutcome,
    RedirectChain,
    TargetRequest,
    TargetUrl,
)
from cors_gateway.proxy.headers import build_outbound_headers
from cors_gateway.proxy.upstream import ClientFactory, select_upstream_proxy
from cors_gateway.utils import mask_credentials
from cors_gateway.utils.exception_logging import (
    format_exception_message,
    log_exception_with_details,
)
from cors_gateway.utils.traced_requests import traced_request

logger = logging.getLogger("uvicorn.error")
tracer = trace.get_tracer(__name__)

FOLLOWED_REDIRECT_STATUSES = {301, 302, 303}
UNFOLLOWED_REDIRECT_STATUSES = {307, 308}

CHASE_OUTCOMES = Counter(
    "cors_gateway_chase_total",
    "Proxied requests by the state that ended their redirect chase",
    ["state"],
)

# Completes once the inbound client has gone away
DisconnectWaiter = Callable[[], Awaitable[None]]


def resolve_location(current: TargetUrl, response: httpx.Response) -> Optional[TargetUrl]:
    """Absolute target named by a redirect's Location header, if usable."""
    location = response.headers.get("location")
    if not location:
        return None
    return TargetUrl.from_absolute(urljoin(current.href, location.strip()))


class RedirectChaser:
    """Issues the outbound hops for one request and follows 301/302/303 redirects."""

    def __init__(self, config: ProxyConfig, client_factory: ClientFactory):
        self.config = config
        self.client_factory = client_factory

    async def _send_hop(
        self,
        hop: int,
        target: TargetUrl,
        method: str,
        headers: httpx.Headers,
        body: Optional[bytes],
    ) -> Tuple[httpx.AsyncClient, httpx.Response]:
        proxy_url = select_upstream_proxy(
            self.config.upstream_proxy_resolver, target.scheme, target.host, target.port
        )
        with traced_request(
            tracer,
            operation="cors_proxy_hop",
            start_message=f"[Redirect] Hop {hop}: {method} {target.href}",
            extra_attrs={
                "proxy.hop": hop,
                "proxy.method": method,
                "proxy.target_url": target.href,
                "proxy.upstream_proxy": mask_credentials(proxy_url) if proxy_url else None,
            },
            level=logging.DEBUG,
        ) as span:
            client = self.client_factory(proxy_url)
            try:
                outbound = client.build_request(
                    method, target.href, headers=headers, content=body or None
                )
                response = await client.send(outbound, stream=True)
            except BaseException:
                await client.aclose()
                raise
            span.set_attribute("proxy.status_code", response.status_code)
            return client, response

    async def _send_hop_until_disconnect(
        self,
        watcher: "asyncio.Task[None]",
        hop: int,
        target: TargetUrl,
        method: str,
        headers: httpx.Headers,
        body: Optional[bytes],
    ) -> Tuple[httpx.AsyncClient, httpx.Response]:
        """Send one hop, cancelling it as soon as the inbound client disconnects."""
        hop_task = asyncio.create_task(
            self._send_hop(hop, target, method, headers, body)
        )
        try:
            await asyncio.wait({hop_task, watcher}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            if not hop_task.done():
                hop_task.cancel()
                await asyncio.wait({hop_task})

        if not watcher.done():
            return hop_task.result()

        # The hop may have finished in the same step the disconnect arrived
        if not hop_task.cancelled() and hop_task.exception() is None:
            client, response = hop_task.result()
            await response.aclose()
            await client.aclose()
        raise ClientDisconnectedError(target.href)

    def _finish(self, outcome: ProxyOutcome) -> ProxyOutcome:
        CHASE_OUTCOMES.labels(state=outcome.state.value).inc()
        logger.info(
            f"[Redirect] {outcome.request_url} ended in {outcome.state.value} "
            f"after {len(outcome.chain)} redirect(s) at {outcome.final_url}"
        )
        return outcome

    async def chase(
        self,
        request: TargetRequest,
        forwarded: ForwardedContext,
        wait_for_disconnect: Optional[DisconnectWaiter] = None,
    ) -> ProxyOutcome:
        """
        Run the request through its redirect chain.

        Raises:
            ClientDisconnectedError: the inbound client disconnected. A hop in
                flight is cancelled, and every hop opened so far has been
                released.
        """
        if wait_for_disconnect is None:
            return await self._chase(request, forwarded, None)

        watcher = asyncio.create_task(wait_for_disconnect())
        try:
            return await self._chase(request, forwarded, watcher)
        except ClientDisconnectedError:
            logger.info(f"[Redirect] Client disconnected, abandoning {request.url.href}")
            raise
        finally:
            if not watcher.done():
                watcher.cancel()
                try:
                    await watcher
                except asyncio.CancelledError:
                    pass

    async def _chase(
        self,
        request: TargetRequest,
        forwarded: ForwardedContext,
        watcher: "Optional[asyncio.Task[None]]",
    ) -> ProxyOutcome:
        request_url = request.url.href
        chain = RedirectChain(max_hops=self.config.max_redirects)
        visited = set()
        current = request.url
        method = request.method
        body = request.body
        drop_content_type = False
        hop_count = 0
        state = ChaseState.REQUESTING

        while state is ChaseState.REQUESTING:
            if watcher is not None and watcher.done():
                raise ClientDisconnectedError(request_url)

            headers = build_outbound_headers(
                request.headers.multi_items(),
                self.config,
                forwarded,
                drop_content_type=drop_content_type,
            )
            try:
                if watcher is None:
                    client, response = await self._send_hop(
                        hop_count + 1, current, method, headers, body
                    )
                else:
                    client, response = await self._send_hop_until_disconnect(
                        watcher, hop_count + 1, current, method, headers, body
                    )
            except (httpx.TransportError, httpx.InvalidURL) as e:
                log_exception_with_details(
                    logger, f"[Redirect] Hop to {current.href} failed.", e
                )
                return self._finish(
                    ProxyOutcome(
                        state=ChaseState.FAILED,
                        request_url=request_url,
                        final_url=current.href,
                        chain=chain,
                        error=ErrorKind.UPSTREAM_TRANSPORT_FAILURE,
                        error_detail=format_exception_message(e),
                    )
                )

            status = response.status_code
            if status in UNFOLLOWED_REDIRECT_STATUSES:
                location = resolve_location(current, response)
                return self._finish(
                    ProxyOutcome(
                        state=ChaseState.REDIRECT_NOT_FOLLOWED,
                        request_url=request_url,
                        final_url=current.href,
                        chain=chain,
                        response=response,
                        client=client,
                        error=ErrorKind.REDIRECT_NOT_FOLLOWED,
                        location=location.href if location else None,
                    )
                )

            location = (
                resolve_location(current, response)
                if status in FOLLOWED_REDIRECT_STATUSES
                else None
            )
            if location is None:
                return self._finish(
                    ProxyOutcome(
                        state=ChaseState.DONE,
                        request_url=request_url,
                        final_url=current.href,
                        chain=chain,
                        response=response,
                        client=client,
                    )
                )

            state = ChaseState.REDIRECTED
            await response.aclose()
            await client.aclose()
            hop_count += 1

            looping = hop_count > self.config.max_redirects
            if not looping:
                chain.record(status, location.href)
                looping = location.href in visited
            if looping:
                logger.warning(
                    f"[Redirect] Loop detected for {request_url} at hop {hop_count}: "
                    f"{location.href}"
                )
                return self._finish(
                    ProxyOutcome(
                        state=ChaseState.LOOP_DETECTED,
                        request_url=request_url,
                        final_url=current.href,
                        chain=chain,
                        error=ErrorKind.REDIRECT_LOOP,
                        location=location.href,
                    )
                )

            visited.add(location.href)
            if status == 303:
                if method != "HEAD":
                    method = "GET"
                body = None
                drop_content_type = True
            current = location
            state = ChaseState.REQUESTING

        raise AssertionError(f"Redirect chase stopped in state {state}")
