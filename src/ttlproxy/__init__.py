"""ttlproxy -- a caching HTTP proxy with an on-disk, time-to-live response cache.

Requests are forwarded to one fixed upstream server. Each upstream response
body is stored on disk under ``"<METHOD>:<upstream URL>"`` and replayed for
identical requests until its TTL runs out, cutting redundant upstream calls
for idempotent traffic inside a short freshness window.

Typical usage::

    ttlproxy serve --upstream-host api.internal --upstream-port 8000 \\
        --upstream-scheme http --ttl 60
    ttlproxy cache stats
    ttlproxy cache clear

Modules:
    app: Typer application and CLI entry point.
    cache: Disk-backed freshness cache.
    proxy: Relay, ASGI application and server runner.
    models: Pydantic configuration and storage models.
    config: XDG-aware configuration loading and precedence resolution.
    exceptions: Exception hierarchy with exit-code mapping.
    exit_codes: Numeric exit codes.
    output: stdout/stderr formatting and logging setup.
"""

__version__ = "0.1.0"
