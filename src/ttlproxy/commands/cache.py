"""Cache commands -- inspect and maintain the on-disk response cache.

Provides the ``ttlproxy cache`` sub-command group. The commands open the
same store the proxy uses (resolved from ``--cache-dir``,
``TTLPROXY_CACHE_DIR``, the config file, or the XDG default) and are safe to
run while a proxy is serving from it.

Entries are addressed the way the proxy addresses them: an HTTP method and
the fully-qualified upstream URL, e.g.
``ttlproxy cache get GET https://target-server.com/foo``.
"""

from __future__ import annotations

from typing import Optional

import typer

from ttlproxy.cache import FreshnessCache
from ttlproxy.output import error, format_response, get_output, info, success

cache_app = typer.Typer(no_args_is_help=True)

_CACHE_DIR_OPTION = typer.Option(
    None, "--cache-dir", help="Cache directory (defaults to the configured one)."
)


def _open_cache(cache_dir: Optional[str]) -> FreshnessCache:
    """Open the configured cache, exiting with the error's code when that fails."""
    from ttlproxy.config import resolve_cache_dir, resolve_config
    from ttlproxy.exceptions import TtlProxyError

    try:
        config = resolve_config({"cache.directory": cache_dir})
        return FreshnessCache(resolve_cache_dir(config), config.cache.ttl_seconds)
    except TtlProxyError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None


@cache_app.command("clear")
def cache_clear(cache_dir: Optional[str] = _CACHE_DIR_OPTION) -> None:
    """Remove every cached response.

    Example::

        ttlproxy cache clear
    """
    with _open_cache(cache_dir) as cache:
        removed = cache.clear()
    success(f"Removed {removed} cached entr{'y' if removed == 1 else 'ies'}.")


@cache_app.command("stats")
def cache_stats(cache_dir: Optional[str] = _CACHE_DIR_OPTION) -> None:
    """Show the number of stored entries, the directory, and the TTL.

    The count includes expired entries that have not been read since they
    expired.
    """
    with _open_cache(cache_dir) as cache:
        stats = cache.stats()
    format_response(stats)


@cache_app.command("delete")
def cache_delete(
    method: str = typer.Argument(help="HTTP method, e.g. GET."),
    url: str = typer.Argument(help="Fully-qualified upstream URL."),
    cache_dir: Optional[str] = _CACHE_DIR_OPTION,
) -> None:
    """Remove the cached response for METHOD and URL, if any."""
    from ttlproxy.proxy.relay import make_cache_key

    key = make_cache_key(method, url)
    with _open_cache(cache_dir) as cache:
        removed = cache.delete(key)
    if removed:
        success(f"Removed {key}")
    else:
        info(f"No entry for {key}")


@cache_app.command("get")
def cache_get(
    method: str = typer.Argument(help="HTTP method, e.g. GET."),
    url: str = typer.Argument(help="Fully-qualified upstream URL."),
    cache_dir: Optional[str] = _CACHE_DIR_OPTION,
) -> None:
    """Print the fresh cached payload for METHOD and URL to stdout.

    Reading an expired entry removes it, exactly as a proxied request would.

    Raises:
        typer.Exit: With code 1 if there is no fresh entry.
    """
    from ttlproxy.proxy.relay import make_cache_key

    key = make_cache_key(method, url)
    with _open_cache(cache_dir) as cache:
        payload = cache.get(key)
    if payload is None:
        error(f"No fresh entry for {key}")
        raise typer.Exit(code=1)
    get_output().print_bytes(payload)
