"""Canonical Pydantic models shared across all ttlproxy modules.

This is the single source of truth for data shapes in the project. The models
fall into two groups:

**Configuration models** -- serialised as JSON in the user's config directory:
    :class:`ServerConfig`, :class:`UpstreamConfig`, :class:`CacheConfig`,
    :class:`RequestConfig`, :class:`LoggingConfig`, and :class:`GlobalConfig`.

**Storage models** -- the record the cache writes for every key:
    :class:`CacheEntry`.

All models use Pydantic v2. Field constraints (port ranges, positive TTLs,
the scheme literal) do the "must be well-formed" checking so that
:func:`~ttlproxy.config.resolve_config` only has to turn a
:class:`pydantic.ValidationError` into a :class:`~ttlproxy.exceptions.ConfigError`.
"""

from __future__ import annotations

import time
from typing import Literal, Optional

from pydantic import BaseModel, Field

_DEFAULT_PORTS = {"http": 80, "https": 443}


# --- Config ---


class ServerConfig(BaseModel):
    """Where the proxy listens for inbound HTTP/1.1 traffic."""

    host: str = Field(default="0.0.0.0", description="Interface to bind")
    port: int = Field(default=8080, ge=1, le=65535, description="Port to listen on")


class UpstreamConfig(BaseModel):
    """The fixed upstream target every cache miss is forwarded to.

    Example::

        UpstreamConfig(host="api.internal", port=8000, scheme="http").base_url
        # 'http://api.internal:8000'
    """

    host: str = Field(default="target-server.com", min_length=1, description="Upstream hostname")
    port: int = Field(default=443, ge=1, le=65535, description="Upstream port")
    scheme: Literal["http", "https"] = Field(default="https", description="http or https")

    @property
    def base_url(self) -> str:
        """``scheme://host[:port]`` with the port omitted when it is the scheme default."""
        if _DEFAULT_PORTS[self.scheme] == self.port:
            return f"{self.scheme}://{self.host}"
        return f"{self.scheme}://{self.host}:{self.port}"

    def url_for(self, path: str, query: str = "") -> str:
        """Build the fully-qualified upstream URL for an inbound *path* and raw *query*."""
        if not path.startswith("/"):
            path = "/" + path
        url = f"{self.base_url}{path}"
        if query:
            url = f"{url}?{query}"
        return url


class CacheConfig(BaseModel):
    """Response cache settings."""

    enabled: bool = Field(default=True, description="Serve and store responses through the cache")
    ttl_seconds: int = Field(default=60, gt=0, description="Freshness window in seconds")
    directory: Optional[str] = Field(
        default=None,
        description="Cache directory; defaults to the XDG cache directory",
    )


class RequestConfig(BaseModel):
    """Outbound request settings applied to every upstream call."""

    timeout: float = Field(default=30, gt=0, description="Upstream timeout in seconds")
    verify_ssl: bool = Field(default=True, description="Verify upstream TLS certificates")


class LoggingConfig(BaseModel):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    access_log: bool = Field(default=False, description="Emit uvicorn access log lines")


class GlobalConfig(BaseModel):
    """User-wide configuration persisted at ``~/.config/ttlproxy/config.json``.

    Loaded and saved by :func:`~ttlproxy.config.load_global_config` and
    :func:`~ttlproxy.config.save_global_config`. Fields here have the
    lowest precedence and can be overridden by environment variables or CLI
    flags. See :func:`~ttlproxy.config.resolve_config` for the full
    precedence chain.
    """

    server: ServerConfig = Field(default_factory=ServerConfig)
    upstream: UpstreamConfig = Field(default_factory=UpstreamConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    request: RequestConfig = Field(default_factory=RequestConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


# --- Storage ---


def now_ms() -> int:
    """Current wall-clock time as integer epoch milliseconds."""
    return int(time.time() * 1000)


class CacheEntry(BaseModel):
    """One stored response body and the moment it stops being fresh.

    ``key`` is kept inside the record so that a read can confirm the record
    really belongs to the key that was asked for.
    """

    key: str
    payload: bytes
    expires_at: int = Field(description="Expiry as epoch milliseconds")

    @classmethod
    def create(cls, key: str, payload: bytes, ttl_seconds: float) -> CacheEntry:
        return cls(key=key, payload=payload, expires_at=now_ms() + int(ttl_seconds * 1000))

    def is_fresh(self, at_ms: Optional[int] = None) -> bool:
        """Return True while *at_ms* (default: now) is strictly before ``expires_at``."""
        if at_ms is None:
            at_ms = now_ms()
        return at_ms < self.expires_at
