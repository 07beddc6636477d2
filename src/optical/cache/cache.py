"""Disk-based response cache keyed by request URI.

Uses :mod:`diskcache` to persist raw Optica response bodies on the
filesystem.  Each body is stored as plain bytes under the exact rendered
request URI, and the time it was stored goes in the entry's diskcache
``tag``, so staleness can be judged without loading the body.  An entry
older than ``max_age`` seconds is stale and is deleted when read or by
:meth:`purge_expired`.

The cache is a pure memoization layer:

* a failing fetch writes nothing and its exception propagates unchanged;
* cache I/O problems (unwritable directory, locked or corrupt database)
  are logged and treated as a miss, so they never abort a query;
* malformed or unreadable entries, including truncated value files, are
  deleted and treated as absent.

There is no cross-process locking.  Two invocations racing on the same key
may both fetch; the last writer wins.

See Also:
    :class:`~optical.models.CacheConfig` -- ``enabled`` and
    ``max_age_seconds``.
"""

from __future__ import annotations

import io
import logging
import pickle
import sqlite3
import time
from pathlib import Path
from typing import Any, Callable, Optional

import diskcache

from optical.models import CACHE_MAX_AGE, CacheConfig

logger = logging.getLogger(__name__)

_CACHE_ERRORS = (OSError, sqlite3.Error, diskcache.Timeout)

# Raised while unpickling an entry written by an older layout or cut short on disk.
_CORRUPT_ERRORS = (pickle.UnpicklingError, EOFError, AttributeError, ImportError, ValueError, TypeError)

_MISSING = object()


class ResponseCache:
    """Disk-backed cache of Optica response bodies.

    Args:
        cache_dir: Root directory for the cache.  A ``requests/``
            subdirectory is created inside it.
        config: Cache configuration (``enabled`` flag and
            ``max_age_seconds``).  Defaults to a 15 minute window.
        clock: Returns the current time in seconds; injectable for tests.

    Example::

        cache = ResponseCache("/tmp/optical-cache")
        body = cache.get_or_fetch(uri, lambda: fetcher.fetch(uri))
    """

    def __init__(
        self,
        cache_dir: str | Path,
        config: Optional[CacheConfig] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._config = config or CacheConfig()
        self._clock = clock
        self._directory = Path(cache_dir) / "requests"
        self._cache: Optional[diskcache.Cache] = None
        if self._config.enabled:
            try:
                self._cache = diskcache.Cache(str(self._directory))
            except _CACHE_ERRORS as exc:
                logger.warning("Response cache disabled, cannot open %s: %s", self._directory, exc)

    @property
    def max_age(self) -> int:
        return self._config.max_age_seconds

    @property
    def directory(self) -> Path:
        return self._directory

    def get_or_fetch(self, key: str, fetch_fn: Callable[[], bytes]) -> bytes:
        """Return the fresh cached payload for *key*, or fetch and store it.

        *fetch_fn* is called at most once, and only on a miss.  If it raises,
        nothing is stored and the exception propagates.
        """
        cached = self.get(key)
        if cached is not None:
            logger.debug("Cache hit: %s", key)
            return cached

        logger.debug("Cache miss: %s", key)
        payload = fetch_fn()
        self.set(key, payload)
        return payload

    def get(self, key: str) -> Optional[bytes]:
        """Return the payload stored under *key* if present and fresh."""
        if self._cache is None:
            return None
        try:
            payload, tag = self._cache.get(key, tag=True)
        except _CORRUPT_ERRORS as exc:
            logger.warning("Discarding unreadable cache entry %s: %s", key, exc)
            self.invalidate(key)
            return None
        except _CACHE_ERRORS as exc:
            logger.warning("Cache read failed for %s: %s", key, exc)
            return None
        if payload is None:
            return None

        stored_at = self._stored_at(tag)
        if stored_at is None or not isinstance(payload, bytes):
            logger.debug("Discarding malformed cache entry: %s", key)
            self.invalidate(key)
            return None
        if self._is_stale(stored_at):
            self.invalidate(key)
            return None
        return payload

    def set(self, key: str, payload: bytes) -> None:
        """Store *payload* under *key*, tagged with the current time."""
        if self._cache is None:
            return
        try:
            self._cache.set(key, bytes(payload), tag=self._clock())
        except _CACHE_ERRORS as exc:
            logger.warning("Cache write failed for %s: %s", key, exc)

    def invalidate(self, key: str) -> None:
        """Remove the entry stored under *key*, if any."""
        if self._cache is None:
            return
        try:
            self._cache.delete(key)
        except _CACHE_ERRORS as exc:
            logger.warning("Cache delete failed for %s: %s", key, exc)

    def purge_expired(self) -> int:
        """Delete every stale, malformed or unreadable entry.

        Only the timestamp tag is inspected; large payloads are opened as
        files and closed again without being read.

        Returns:
            The number of entries removed.
        """
        if self._cache is None:
            return 0
        removed = 0
        try:
            for key in list(self._cache.iterkeys()):
                if self._is_expired(key):
                    self._cache.delete(key)
                    removed += 1
        except _CACHE_ERRORS as exc:
            logger.warning("Cache purge failed: %s", exc)
        return removed

    def clear_all(self) -> None:
        """Remove all entries, fresh ones included."""
        if self._cache is None:
            return
        try:
            self._cache.clear()
        except _CACHE_ERRORS as exc:
            logger.warning("Cache clear failed: %s", exc)

    def stats(self) -> dict[str, Any]:
        """Return cache statistics.

        Returns:
            A ``dict`` with ``enabled`` (bool), and when enabled:
            ``size`` (number of entries), ``directory`` (str path), and
            ``max_age_seconds`` (int).
        """
        if self._cache is None:
            return {"enabled": False}
        return {
            "enabled": True,
            "size": len(self._cache),
            "directory": str(self._directory),
            "max_age_seconds": self.max_age,
        }

    def close(self) -> None:
        """Close the underlying :class:`diskcache.Cache` and release resources."""
        if self._cache is not None:
            self._cache.close()

    def __enter__(self) -> ResponseCache:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def _is_stale(self, stored_at: float) -> bool:
        return self._clock() - stored_at > self.max_age

    def _is_expired(self, key: str) -> bool:
        try:
            value, tag = self._cache.get(key, default=_MISSING, read=True, tag=True)
        except _CORRUPT_ERRORS as exc:
            logger.debug("Purging unreadable cache entry %s: %s", key, exc)
            return True
        if value is _MISSING:
            return False
        if isinstance(value, io.IOBase):
            value.close()
        elif not isinstance(value, bytes):
            return True
        stored_at = self._stored_at(tag)
        return stored_at is None or self._is_stale(stored_at)

    @staticmethod
    def _stored_at(tag: Any) -> Optional[float]:
        """Return the entry's timestamp, or ``None`` if the tag is not one."""
        if isinstance(tag, bool) or not isinstance(tag, (int, float)):
            return None
        return float(tag)


__all__ = ["CACHE_MAX_AGE", "ResponseCache"]
