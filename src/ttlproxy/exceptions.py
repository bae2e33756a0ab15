"""Exception hierarchy for ttlproxy.

All exceptions inherit from :class:`TtlProxyError`, which carries an
``exit_code`` attribute mapped to a constant from :mod:`ttlproxy.exit_codes`.
The top-level error handler in :func:`ttlproxy.app.main` catches
``TtlProxyError`` and exits with the appropriate code, while unexpected
exceptions produce a crash log and exit with :data:`EXIT_GENERIC_FAILURE`.

Inside the running proxy the same types travel between layers: the cache
raises :class:`CacheIOError`, the relay raises :class:`UpstreamError`
subclasses, and the ASGI app turns them into responses.

Subclass hierarchy::

    TtlProxyError (exit 1)
    +-- InvalidUsageError        (exit 2)
    +-- ConfigError              (exit 3)
    +-- CacheIOError             (exit 4)
    |   +-- MalformedRecordError (exit 4)
    +-- UpstreamError            (exit 5)
        +-- UpstreamConnectError
        +-- UpstreamTransportError
"""

from ttlproxy.exit_codes import (
    EXIT_CACHE_ERROR,
    EXIT_CONFIG_ERROR,
    EXIT_GENERIC_FAILURE,
    EXIT_INVALID_USAGE,
    EXIT_UPSTREAM_ERROR,
)


class TtlProxyError(Exception):
    """Base exception for all ttlproxy errors.

    Every subclass sets a class-level ``exit_code`` corresponding to one of
    the constants in :mod:`ttlproxy.exit_codes`. The entry point catches
    this exception type and calls ``sys.exit(exc.exit_code)``.

    Args:
        message: Human-readable error description printed to stderr.
        exit_code: Optional override for the class-level exit code.
    """

    exit_code: int = EXIT_GENERIC_FAILURE

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class InvalidUsageError(TtlProxyError):
    """Raised for invalid CLI arguments or missing required parameters."""

    exit_code = EXIT_INVALID_USAGE


class ConfigError(TtlProxyError):
    """Raised for configuration problems (bad port, invalid JSON, unwritable cache directory)."""

    exit_code = EXIT_CONFIG_ERROR


class CacheIOError(TtlProxyError):
    """Raised when the cache store cannot be read, written, or deleted from.

    Distinct from a cache miss: :meth:`~ttlproxy.cache.FreshnessCache.get`
    returns ``None`` for an absent key and raises this only when storage
    itself failed (permission denied, disk full, database locked).
    """

    exit_code = EXIT_CACHE_ERROR


class MalformedRecordError(CacheIOError):
    """Raised when a stored record cannot be parsed back into a cache entry."""


class UpstreamError(TtlProxyError):
    """Base class for failures talking to the upstream server."""

    exit_code = EXIT_UPSTREAM_ERROR


class UpstreamConnectError(UpstreamError):
    """Raised when no connection to the upstream could be established (DNS, refused, connect timeout)."""


class UpstreamTransportError(UpstreamError):
    """Raised when the exchange fails after connecting (read timeout, reset, protocol error)."""
