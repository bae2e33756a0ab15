"""HTTP proxy relay for ttlproxy.

Classes and functions:
    :class:`ProxyRelay` -- cache check, upstream forwarding, cache fill.
    :func:`make_cache_key` -- ``"<METHOD>:<upstream URL>"`` key derivation.
    :func:`create_app` -- FastAPI application exposing the relay.
    :func:`run_server` -- serve an application with uvicorn.
"""

from ttlproxy.proxy.relay import ProxyRelay, make_cache_key
from ttlproxy.proxy.server import create_app, run_server

__all__ = ["ProxyRelay", "create_app", "make_cache_key", "run_server"]
