"""Disk-backed freshness cache with lazy TTL expiry.

Uses :mod:`diskcache` to persist response bodies on the filesystem. Each
record is a :class:`~ttlproxy.models.CacheEntry` (``key``, ``payload``,
``expires_at`` in epoch milliseconds) stored under the SHA-256 digest of its
key, so keys containing ``/``, ``:`` or any other character map to a safe,
deterministic storage address.

Expiry is enforced on read: an entry whose ``expires_at`` has passed is
deleted and reported as absent. There is no background sweep, and
diskcache's own size-based eviction is switched off.

A record that cannot be parsed back into a ``CacheEntry`` is treated the
same way as an expired one: logged, removed, reported as absent. Genuine
storage failures (permissions, disk full, a locked or corrupt database)
raise :class:`~ttlproxy.exceptions.CacheIOError` instead.
"""

from __future__ import annotations

import hashlib
import logging
import pickle
import sqlite3
from pathlib import Path
from typing import Any, Optional

import diskcache
from pydantic import ValidationError

from ttlproxy.exceptions import CacheIOError, MalformedRecordError
from ttlproxy.models import CacheEntry

logger = logging.getLogger(__name__)

_STORAGE_ERRORS = (OSError, sqlite3.Error, diskcache.Timeout)
_DECODE_ERRORS = (pickle.UnpicklingError, EOFError, AttributeError, ImportError, ValueError)


class FreshnessCache:
    """Key to bytes store with a per-entry time-to-live.

    Safe to share between threads and processes: diskcache commits every
    write in a SQLite transaction and writes large values to a file before
    publishing the row that points at it, so a concurrent :meth:`get` sees
    either the previous record or the new one in full.

    Args:
        cache_dir: Root directory for the cache. A ``responses/``
            subdirectory is created inside it.
        default_ttl_seconds: TTL applied by :meth:`set` when the caller
            does not pass one.

    Example::

        from ttlproxy.cache import FreshnessCache

        with FreshnessCache("/tmp/ttlproxy") as cache:
            cache.set("GET:https://api.example.com/users", b'[{"id": 1}]', 60)
            body = cache.get("GET:https://api.example.com/users")
    """

    def __init__(self, cache_dir: str | Path, default_ttl_seconds: float = 60) -> None:
        if default_ttl_seconds <= 0:
            raise ValueError("default_ttl_seconds must be positive")
        self._cache_dir = Path(cache_dir)
        self._default_ttl = default_ttl_seconds
        self._cache: Optional[diskcache.Cache] = None
        self.ensure_store()

    @property
    def directory(self) -> Path:
        """Directory holding the diskcache database and value files."""
        return self._cache_dir / "responses"

    def ensure_store(self) -> None:
        """Create the backing directory and open the store if not already open.

        Idempotent. An existing directory is not an error.

        Raises:
            CacheIOError: If the directory cannot be created or the database
                cannot be opened (e.g. the path is a file, or is read-only).
        """
        if self._cache is not None:
            return
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            self._cache = diskcache.Cache(str(self.directory), eviction_policy="none")
        except _STORAGE_ERRORS as exc:
            raise CacheIOError(f"Cannot open cache store at {self.directory}: {exc}") from exc

    # ------------------------------------------------------------------ #
    # Public operations
    # ------------------------------------------------------------------ #

    def get(self, key: str) -> Optional[bytes]:
        """Return the payload stored for *key* if it is still fresh.

        Expired and malformed records are deleted before ``None`` is
        returned, so they cannot reappear on a later read.

        Raises:
            CacheIOError: If the store could not be read.
        """
        address = self._address(key)
        try:
            raw = self._store.get(address, default=None, retry=True)
        except _STORAGE_ERRORS as exc:
            raise CacheIOError(f"Cannot read cache entry for {key!r}: {exc}") from exc
        except _DECODE_ERRORS as exc:
            logger.warning("Discarding undecodable cache record for %s: %s", key, exc)
            self._evict(address, None, unconditional=True)
            return None

        if raw is None:
            return None

        try:
            entry = self._parse(key, raw)
        except MalformedRecordError as exc:
            logger.warning("Discarding malformed cache record for %s: %s", key, exc)
            self._evict(address, raw)
            return None

        if not entry.is_fresh():
            logger.debug("Cache entry expired: %s", key)
            self._evict(address, raw)
            return None
        return entry.payload

    def set(self, key: str, value: bytes, ttl_seconds: Optional[float] = None) -> None:
        """Store *value* under *key* for *ttl_seconds* (default: the cache's TTL).

        Overwrites any existing record for the key.

        Raises:
            ValueError: If the TTL is not positive.
            CacheIOError: If the record could not be written.
        """
        ttl = self._default_ttl if ttl_seconds is None else ttl_seconds
        if ttl <= 0:
            raise ValueError("ttl_seconds must be positive")
        entry = CacheEntry.create(key, bytes(value), ttl)
        try:
            self._store.set(self._address(key), entry.model_dump(), retry=True)
        except _STORAGE_ERRORS as exc:
            raise CacheIOError(f"Cannot write cache entry for {key!r}: {exc}") from exc

    def delete(self, key: str) -> bool:
        """Remove the entry for *key*. Missing keys are not an error.

        Returns:
            ``True`` if a record was removed.
        """
        try:
            return bool(self._store.delete(self._address(key), retry=True))
        except _STORAGE_ERRORS as exc:
            raise CacheIOError(f"Cannot delete cache entry for {key!r}: {exc}") from exc

    def clear(self) -> int:
        """Remove every entry, keeping the store directory. Returns the number removed."""
        try:
            return self._store.clear(retry=True)
        except _STORAGE_ERRORS as exc:
            raise CacheIOError(f"Cannot clear cache at {self.directory}: {exc}") from exc

    def stats(self) -> dict[str, Any]:
        """Return ``entries`` (records on disk, fresh or not), ``directory`` and ``ttl_seconds``."""
        try:
            size = len(self._store)
        except _STORAGE_ERRORS as exc:
            raise CacheIOError(f"Cannot read cache at {self.directory}: {exc}") from exc
        return {
            "entries": size,
            "directory": str(self.directory),
            "ttl_seconds": self._default_ttl,
        }

    def close(self) -> None:
        """Close the underlying :class:`diskcache.Cache` and release resources."""
        if self._cache is not None:
            self._cache.close()
            self._cache = None

    def __contains__(self, key: str) -> bool:
        """Raw storage check: True if any record exists for *key*, fresh or not."""
        try:
            return self._address(key) in self._store
        except _STORAGE_ERRORS as exc:
            raise CacheIOError(f"Cannot read cache entry for {key!r}: {exc}") from exc

    def __enter__(self) -> FreshnessCache:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    # ------------------------------------------------------------------ #
    # Private helpers
    # ------------------------------------------------------------------ #

    @property
    def _store(self) -> diskcache.Cache:
        if self._cache is None:
            self.ensure_store()
        assert self._cache is not None
        return self._cache

    @staticmethod
    def _address(key: str) -> str:
        """Storage address for *key*: hex SHA-256 of its UTF-8 bytes."""
        return hashlib.sha256(key.encode("utf-8")).hexdigest()

    @staticmethod
    def _parse(key: str, raw: Any) -> CacheEntry:
        if not isinstance(raw, dict):
            raise MalformedRecordError(f"expected a mapping, got {type(raw).__name__}")
        try:
            entry = CacheEntry.model_validate(raw)
        except ValidationError as exc:
            raise MalformedRecordError(str(exc)) from exc
        if entry.key != key:
            raise MalformedRecordError(f"record belongs to {entry.key!r}")
        return entry

    def _evict(self, address: str, seen: Any, unconditional: bool = False) -> None:
        """Delete the record at *address* unless a newer one replaced *seen* meanwhile."""
        try:
            with self._store.transact(retry=True):
                if not unconditional:
                    try:
                        current = self._store.get(address, default=None)
                    except _DECODE_ERRORS:
                        current = seen
                    if current != seen:
                        return
                self._store.delete(address)
        except _STORAGE_ERRORS as exc:
            raise CacheIOError(f"Cannot evict cache record {address}: {exc}") from exc
