"""Serve command -- run the caching proxy in the foreground.

Resolves the effective configuration (flags over ``TTLPROXY_*`` environment
variables over the config file over defaults), opens the cache store, and
hands a freshly built application to uvicorn. Any configuration problem,
including a cache directory that cannot be created, stops startup with
:data:`~ttlproxy.exit_codes.EXIT_CONFIG_ERROR` before a port is bound.
"""

from __future__ import annotations

from typing import Optional

import typer

from ttlproxy.output import error, info


def serve_command(
    host: Optional[str] = typer.Option(None, "--host", help="Interface to bind."),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Port to listen on."),
    upstream_host: Optional[str] = typer.Option(
        None, "--upstream-host", help="Upstream hostname."
    ),
    upstream_port: Optional[int] = typer.Option(
        None, "--upstream-port", help="Upstream port."
    ),
    upstream_scheme: Optional[str] = typer.Option(
        None, "--upstream-scheme", help="Upstream scheme: http or https."
    ),
    cache_dir: Optional[str] = typer.Option(
        None, "--cache-dir", help="Directory for cached responses."
    ),
    ttl: Optional[int] = typer.Option(
        None, "--ttl", help="Seconds a cached response stays fresh."
    ),
    timeout: Optional[float] = typer.Option(
        None, "--timeout", help="Upstream timeout in seconds."
    ),
    insecure: bool = typer.Option(
        False, "--insecure", help="Skip upstream TLS certificate verification."
    ),
    no_cache: bool = typer.Option(
        False, "--no-cache", help="Proxy without reading or writing the cache."
    ),
) -> None:
    """Start the proxy and serve until interrupted.

    Example::

        ttlproxy serve --upstream-host api.internal --upstream-scheme http \\
            --upstream-port 8000 --ttl 30
    """
    from ttlproxy.cache import FreshnessCache
    from ttlproxy.config import resolve_cache_dir, resolve_config
    from ttlproxy.exceptions import CacheIOError, ConfigError
    from ttlproxy.output import configure_logging, get_output
    from ttlproxy.proxy import create_app, run_server

    overrides = {
        "server.host": host,
        "server.port": port,
        "upstream.host": upstream_host,
        "upstream.port": upstream_port,
        "upstream.scheme": upstream_scheme,
        "cache.directory": cache_dir,
        "cache.ttl_seconds": ttl,
        "request.timeout": timeout,
    }
    if insecure:
        overrides["request.verify_ssl"] = False
    if no_cache:
        overrides["cache.enabled"] = False

    try:
        config = resolve_config(overrides)
    except ConfigError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None

    output = get_output()
    level = config.logging.level
    if output.is_verbose:
        level = "DEBUG"
    elif output.is_quiet:
        level = "WARNING"
    configure_logging(level, no_color=output.no_color)

    cache: Optional[FreshnessCache] = None
    if config.cache.enabled:
        try:
            cache = FreshnessCache(resolve_cache_dir(config), config.cache.ttl_seconds)
        except CacheIOError as exc:
            err = ConfigError(f"Cache directory is not usable: {exc}")
            error(str(err))
            raise typer.Exit(code=err.exit_code) from None

    info(
        f"ttlproxy listening on {config.server.host}:{config.server.port} "
        f"-> {config.upstream.base_url}"
    )
    if cache is not None:
        info(f"Cache: {cache.directory} (ttl {config.cache.ttl_seconds}s)")
    else:
        info("Cache disabled")

    try:
        run_server(create_app(config, cache=cache), config)
    finally:
        if cache is not None:
            cache.close()
