"""ASGI application and uvicorn runner for the caching proxy.

:func:`create_app` wires an explicitly constructed
:class:`~ttlproxy.cache.FreshnessCache` and :class:`httpx.AsyncClient` into
a :class:`~ttlproxy.proxy.relay.ProxyRelay` and exposes it on a FastAPI
catch-all route, so every path and the common HTTP methods are proxied.
Nothing is module-global: tests build as many independent apps as they
like, each with its own cache directory and mock upstream transport.

Exception handlers turn per-request failures into responses:

* :class:`~ttlproxy.exceptions.UpstreamError` -> 500 ``text/plain``
* :class:`starlette.requests.ClientDisconnect` -> 499, nobody is listening
* anything else -> 500 ``text/plain``; the traceback is logged by uvicorn
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import httpx
import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse, Response
from starlette.requests import ClientDisconnect
from starlette.types import ASGIApp, Receive, Scope, Send

from ttlproxy import __version__
from ttlproxy.cache import FreshnessCache
from ttlproxy.exceptions import UpstreamError
from ttlproxy.models import GlobalConfig
from ttlproxy.proxy.relay import ProxyRelay

logger = logging.getLogger(__name__)

PROXY_ERROR_MESSAGE = "An error occurred while proxying the request."

PROXIED_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS", "TRACE"]


class AbsoluteFormMiddleware:
    """Rewrite absolute-form request targets to origin form.

    A client using the proxy as a forward proxy sends the whole URL as the
    request target (``GET http://host/foo HTTP/1.1``). Only the path is
    kept; scheme and authority are dropped, because every request goes to
    the configured upstream whatever host it names. The query string is
    already split off by the server.
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        path = scope.get("path", "")
        if scope["type"] == "http" and "://" in path and not path.startswith("/"):
            raw = scope.get("raw_path") or path.encode("latin-1")
            try:
                target = httpx.URL(raw.decode("latin-1"))
            except httpx.InvalidURL:
                logger.debug("Unparseable request target %r", raw)
            else:
                scope = dict(scope)
                scope["path"] = target.path
                scope["raw_path"] = target.raw_path.split(b"?", 1)[0]
        await self.app(scope, receive, send)


def build_upstream_client(config: GlobalConfig) -> httpx.AsyncClient:
    """Create the shared client for upstream calls.

    Redirects are relayed to the caller rather than followed.
    """
    return httpx.AsyncClient(
        timeout=config.request.timeout,
        verify=config.request.verify_ssl,
        follow_redirects=False,
    )


def create_app(
    config: GlobalConfig,
    cache: Optional[FreshnessCache] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> FastAPI:
    """Build the proxy application.

    Args:
        config: Effective configuration (upstream target, TTL, timeouts).
        cache: Cache to read through. Ignored when ``config.cache.enabled``
            is false; ``None`` proxies without caching.
        client: Upstream client. When omitted one is built from *config*
            and closed on application shutdown; a caller-supplied client is
            left for the caller to close.

    Returns:
        The configured :class:`fastapi.FastAPI` instance.
    """
    owns_client = client is None
    upstream_client = client if client is not None else build_upstream_client(config)
    relay = ProxyRelay(
        config.upstream,
        cache if config.cache.enabled else None,
        upstream_client,
        ttl_seconds=config.cache.ttl_seconds,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info("Proxying to %s", config.upstream.base_url)
        try:
            yield
        finally:
            if owns_client:
                await upstream_client.aclose()

    app = FastAPI(
        title="ttlproxy",
        version=__version__,
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.relay = relay
    app.add_middleware(AbsoluteFormMiddleware)

    @app.exception_handler(UpstreamError)
    async def upstream_error_handler(request: Request, exc: UpstreamError) -> Response:
        logger.error("Error proxying %s %s: %s", request.method, request.url.path, exc)
        return PlainTextResponse(PROXY_ERROR_MESSAGE, status_code=500)

    @app.exception_handler(ClientDisconnect)
    async def client_disconnect_handler(request: Request, exc: ClientDisconnect) -> Response:
        return Response(status_code=499)

    # Starlette re-raises after this handler so uvicorn logs the traceback.
    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception) -> Response:
        return PlainTextResponse(PROXY_ERROR_MESSAGE, status_code=500)

    @app.api_route("/{path:path}", methods=PROXIED_METHODS, include_in_schema=False)
    async def proxy(request: Request) -> Response:
        return await relay.handle(request)

    return app


def run_server(app: FastAPI, config: GlobalConfig) -> None:
    """Serve *app* with uvicorn until the process is terminated.

    ``log_config=None`` keeps the handlers installed by
    :func:`~ttlproxy.output.configure_logging`.
    """
    uvicorn.run(
        app,
        host=config.server.host,
        port=config.server.port,
        log_level=config.logging.level.lower(),
        access_log=config.logging.access_log,
        log_config=None,
    )
