"""Disk-based freshness caching for ttlproxy.

This package provides :class:`FreshnessCache`, a key to bytes store backed
by :mod:`diskcache` with a time-to-live per entry and lazy expiry on read.
It has no knowledge of HTTP; the proxy relay derives keys with
:func:`~ttlproxy.proxy.relay.make_cache_key` and stores whole response
bodies.
"""

from ttlproxy.cache.cache import FreshnessCache

__all__ = ["FreshnessCache"]
