"""Read-through relay between inbound requests and the fixed upstream.

:class:`ProxyRelay` runs one request through the whole pipeline:

1. Build the upstream URL and the cache key (``"<METHOD>:<upstream URL>"``).
2. Look the key up in the :class:`~ttlproxy.cache.FreshnessCache`. A fresh
   payload is answered immediately with status 200 and an
   ``application/json`` content type; the upstream is not contacted.
3. Otherwise forward the request with :class:`httpx.AsyncClient`, streaming
   the inbound body upstream chunk by chunk, and buffer the complete
   upstream body.
4. Store the body under the key and relay status, headers and body.

Cache reads and writes block on SQLite, so they run in Starlette's worker
thread pool. A cache failure never fails the request: a read error is a
miss, a write error is logged. Upstream failures are raised as
:class:`~ttlproxy.exceptions.UpstreamError` subclasses and turned into 500
responses by the application's exception handlers.
"""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Optional

import httpx
from starlette.concurrency import run_in_threadpool
from starlette.requests import ClientDisconnect, Request
from starlette.responses import Response

from ttlproxy.cache import FreshnessCache
from ttlproxy.exceptions import CacheIOError, UpstreamConnectError, UpstreamTransportError
from ttlproxy.models import UpstreamConfig

logger = logging.getLogger(__name__)

CACHE_HIT_MEDIA_TYPE = "application/json"

HOP_BY_HOP_HEADERS = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailer",
        "trailers",
        "transfer-encoding",
        "upgrade",
    }
)
# httpx sets Host for the upstream itself, and advertises only the
# content codings it can decode; the body is relayed decoded.
_REQUEST_SKIP = HOP_BY_HOP_HEADERS | {"host", "accept-encoding"}
# The body is relayed decoded and re-framed, so these no longer describe it.
_RESPONSE_SKIP = HOP_BY_HOP_HEADERS | {"content-length", "content-encoding"}


def make_cache_key(method: str, url: str) -> str:
    """Return the cache key for *method* on the fully-qualified upstream *url*.

    Example::

        make_cache_key("get", "https://target-server.com/foo")
        # 'GET:https://target-server.com/foo'
    """
    return f"{method.upper()}:{url}"


def _has_body(request: Request) -> bool:
    length = request.headers.get("content-length")
    if length is not None:
        return length.strip() != "0"
    return "transfer-encoding" in request.headers


class ProxyRelay:
    """Serve requests from the cache or the upstream, filling the cache on a miss.

    Holds no per-request state; one instance serves every concurrent request.

    Args:
        upstream: The fixed upstream target.
        cache: The freshness cache, or ``None`` to proxy without caching.
        client: Shared async client used for every upstream call. Its
            timeout bounds each upstream exchange.
        ttl_seconds: Freshness window for entries written on a miss.
        disconnect_poll_interval: Seconds between checks for a caller that
            hung up while the upstream response was still pending.
    """

    def __init__(
        self,
        upstream: UpstreamConfig,
        cache: Optional[FreshnessCache],
        client: httpx.AsyncClient,
        ttl_seconds: float = 60,
        disconnect_poll_interval: float = 0.1,
    ) -> None:
        self._upstream = upstream
        self._cache = cache
        self._client = client
        self._ttl = ttl_seconds
        self._poll_interval = disconnect_poll_interval

    def upstream_url(self, request: Request) -> str:
        """Upstream URL for *request*: upstream scheme/host/port plus inbound path and query.

        The path is taken still percent-encoded so ``/a%2Fb`` is not turned
        into ``/a/b`` on the way through.
        """
        raw_path = request.scope.get("raw_path")
        if raw_path:
            path = raw_path.split(b"?", 1)[0].decode("latin-1")
        else:
            path = request.url.path
        return self._upstream.url_for(path, request.url.query)

    async def handle(self, request: Request) -> Response:
        """Answer *request* from the cache or by forwarding it upstream.

        Raises:
            UpstreamConnectError: If the upstream could not be reached.
            UpstreamTransportError: If the upstream exchange failed or timed out.
            ClientDisconnect: If the caller went away before the upstream answered.
        """
        url = self.upstream_url(request)
        key = make_cache_key(request.method, url)

        cached = await self._cache_get(key)
        if cached is not None:
            logger.debug("Cache hit for %s", key)
            return Response(content=cached, status_code=200, media_type=CACHE_HIT_MEDIA_TYPE)

        logger.debug("Cache miss for %s", key)
        upstream_response, body = await self._forward(request, url)
        await self._cache_set(key, body)
        return self._relay(upstream_response, body)

    # ------------------------------------------------------------------ #
    # Cache access
    # ------------------------------------------------------------------ #

    async def _cache_get(self, key: str) -> Optional[bytes]:
        if self._cache is None:
            return None
        try:
            return await run_in_threadpool(self._cache.get, key)
        except CacheIOError as exc:
            logger.warning("Cache read failed for %s, treating as miss: %s", key, exc)
            return None

    async def _cache_set(self, key: str, body: bytes) -> None:
        if self._cache is None:
            return
        try:
            await run_in_threadpool(self._cache.set, key, body, self._ttl)
        except CacheIOError as exc:
            logger.warning("Cache write failed for %s: %s", key, exc)

    # ------------------------------------------------------------------ #
    # Upstream exchange
    # ------------------------------------------------------------------ #

    async def _forward(self, request: Request, url: str) -> tuple[httpx.Response, bytes]:
        headers = [
            (name, value)
            for name, value in request.headers.raw
            if name.decode("latin-1").lower() not in _REQUEST_SKIP
        ]
        body_sent = asyncio.Event()

        async def stream_body() -> AsyncIterator[bytes]:
            async for chunk in request.stream():
                if chunk:
                    yield chunk
            body_sent.set()

        content: Optional[AsyncIterator[bytes]] = None
        if _has_body(request):
            content = stream_body()
        else:
            body_sent.set()

        upstream_request = self._client.build_request(
            request.method, url, headers=headers, content=content
        )

        fetch = asyncio.ensure_future(self._fetch(upstream_request))
        watch = asyncio.ensure_future(self._wait_for_disconnect(request, body_sent))
        try:
            done, _ = await asyncio.wait({fetch, watch}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (fetch, watch):
                if not task.done():
                    task.cancel()
            await asyncio.gather(fetch, watch, return_exceptions=True)

        if fetch in done:
            return fetch.result()
        watch.result()
        logger.info("Client disconnected, abandoned upstream request to %s", url)
        raise ClientDisconnect()

    async def _fetch(self, upstream_request: httpx.Request) -> tuple[httpx.Response, bytes]:
        """Send *upstream_request* and buffer the whole (decoded) response body."""
        url = str(upstream_request.url)
        try:
            response = await self._client.send(upstream_request, stream=True)
            try:
                body = await response.aread()
            finally:
                await response.aclose()
        except (httpx.ConnectError, httpx.ConnectTimeout) as exc:
            raise UpstreamConnectError(f"Cannot connect to {url}: {exc!r}") from exc
        except httpx.HTTPError as exc:
            raise UpstreamTransportError(f"Upstream exchange with {url} failed: {exc!r}") from exc
        return response, body

    async def _wait_for_disconnect(self, request: Request, body_sent: asyncio.Event) -> None:
        # Only poll once the body is consumed; both read the same receive channel.
        await body_sent.wait()
        while not await request.is_disconnected():
            await asyncio.sleep(self._poll_interval)

    @staticmethod
    def _relay(upstream_response: httpx.Response, body: bytes) -> Response:
        response = Response(content=body, status_code=upstream_response.status_code)
        response.raw_headers.extend(
            (name.lower(), value)
            for name, value in upstream_response.headers.raw
            if name.decode("latin-1").lower() not in _RESPONSE_SKIP
        )
        return response
