"""
cache/store.py -- Process-local TTL cache for read-heavy queries.

Memoizes paginated list queries so repeat page loads skip the database. Each
entry carries its own expiry; a background task in the API lifespan calls
purge_expired() periodically, and get() treats an expired-but-unswept entry
as absent so readers never see stale data.

Keys for one logical collection share a prefix ("users:all:page:1:limit:10",
"users:all:page:2:limit:10", ...) so a single delete_prefix() after a write
clears the whole family.

The cache is per-process. Horizontally scaled instances each hold their own
copy; a shared external cache would be needed for cross-instance coherence.

Usage:
    cache = CacheStore(default_ttl=3600)
    cache.set("users:all:page:1:limit:10", payload, ttl=300)
    cache.get("users:all:page:1:limit:10")       # payload or None
    cache.delete_prefix("users:")                # after a mutation
    cache.purge_expired()                        # call periodically
"""

from __future__ import annotations

import json
import logging
import threading
import time
from collections.abc import Callable
from typing import Any, Optional, TypeVar

logger = logging.getLogger("starterapi.cache")

_DEFAULT_TTL = 60 * 60  # 1 hour in seconds
_MISSING = object()

T = TypeVar("T")


class CacheStore:
    """In-memory key/value store with per-entry TTL and prefix invalidation.

    A lock guards the dict because sync route handlers run in the FastAPI
    threadpool. Individual operations are atomic; get_or_compute() is not:
    two concurrent misses on one key may both run the producer, and the last
    write wins. A family-scoped get_or_compute() refuses to store a value
    computed across an invalidation of that family.
    """

    def __init__(self, default_ttl: int = _DEFAULT_TTL) -> None:
        self.default_ttl = default_ttl
        self._entries: dict[str, tuple[Any, float]] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        # prefix -> count of invalidations; see generation()
        self._generations: dict[str, int] = {}

    def get(self, key: str, default: Any = None) -> Any:
        """Return the cached value for key, or default if absent or expired."""
        try:
            with self._lock:
                entry = self._entries.get(key)
                if entry is None:
                    self._misses += 1
                    return default
                value, expires_at = entry
                if time.monotonic() >= expires_at:
                    del self._entries[key]
                    self._misses += 1
                    logger.debug("Cache key expired: %s", key)
                    return default
                self._hits += 1
                return value
        except Exception:
            logger.exception("Cache get error for key %s", key)
            return default

    def has(self, key: str) -> bool:
        return self.get(key, _MISSING) is not _MISSING

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """Store value under key for ttl seconds (default_ttl when omitted or 0)."""
        duration = ttl if ttl and ttl > 0 else self.default_ttl
        try:
            with self._lock:
                self._entries[key] = (value, time.monotonic() + duration)
            logger.debug("Cache key set: %s (ttl=%ds)", key, duration)
            return True
        except Exception:
            logger.exception("Cache set error for key %s", key)
            return False

    def delete(self, key: str) -> int:
        """Remove key. Returns 1 if an entry was removed, 0 otherwise."""
        try:
            with self._lock:
                return 1 if self._entries.pop(key, _MISSING) is not _MISSING else 0
        except Exception:
            logger.exception("Cache delete error for key %s", key)
            return 0

    def delete_prefix(self, prefix: str) -> int:
        """Remove every key starting with prefix. Returns the number removed."""
        try:
            with self._lock:
                doomed = [k for k in self._entries if k.startswith(prefix)]
                for k in doomed:
                    del self._entries[k]
                for family in self._generations:
                    if family.startswith(prefix) or prefix.startswith(family):
                        self._generations[family] += 1
        except Exception:
            logger.exception("Cache prefix delete error for prefix %s", prefix)
            return 0
        if doomed:
            logger.debug("Deleted %d cache keys with prefix: %s", len(doomed), prefix)
        return len(doomed)

    def generation(self, prefix: str) -> int:
        """Invalidation counter for a key family, bumped by every overlapping delete_prefix()."""
        with self._lock:
            return self._generations.setdefault(prefix, 0)

    def set_if_current(self, key: str, value: Any, prefix: str, generation: int, ttl: Optional[int] = None) -> bool:
        """Store value only if prefix has not been invalidated since generation was read.

        Returns False (and stores nothing) when the value was computed from data
        a concurrent write has since replaced.
        """
        duration = ttl if ttl and ttl > 0 else self.default_ttl
        try:
            with self._lock:
                if self._generations.get(prefix, 0) != generation:
                    logger.debug("Cache write skipped, %s invalidated mid-compute: %s", prefix, key)
                    return False
                self._entries[key] = (value, time.monotonic() + duration)
            return True
        except Exception:
            logger.exception("Cache set error for key %s", key)
            return False

    def get_or_compute(
        self,
        key: str,
        producer: Callable[[], T],
        ttl: Optional[int] = None,
        family: Optional[str] = None,
    ) -> T:
        """Return the cached value for key, computing and storing it on a miss.

        With family set, the computed value is only stored if no delete_prefix()
        touched that family while producer ran.

        Errors raised by producer propagate to the caller; nothing is cached.
        """
        cached = self.get(key, _MISSING)
        if cached is not _MISSING:
            return cached
        if family is None:
            value = producer()
            self.set(key, value, ttl)
            return value
        generation = self.generation(family)
        value = producer()
        self.set_if_current(key, value, family, generation, ttl)
        return value

    def purge_expired(self) -> int:
        """Delete all entries past their expiry. Returns number of entries removed."""
        now = time.monotonic()
        with self._lock:
            expired = [k for k, (_, expires_at) in self._entries.items() if now >= expires_at]
            for k in expired:
                del self._entries[k]
        if expired:
            logger.debug("Purged %d expired cache keys", len(expired))
        return len(expired)

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            for family in self._generations:
                self._generations[family] += 1
        logger.info("Cache flushed")

    def stats(self) -> dict[str, int]:
        with self._lock:
            return {"keys": len(self._entries), "hits": self._hits, "misses": self._misses}

    @staticmethod
    def make_key(prefix: str, params: dict[str, Any]) -> str:
        """Build a stable key from prefix and params (param order does not matter)."""
        return f"{prefix}:{json.dumps(params, sort_keys=True, default=str)}"
