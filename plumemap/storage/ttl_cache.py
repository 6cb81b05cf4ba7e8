"""
In-memory key → value store with per-entry expiry.

Backs the tile resolver: search registrations and TileJSON descriptors
are kept for ``ttl_s`` seconds and refetched after that.  Entries are
never invalidated on error: a failed fetch writes nothing, so
the next request tries the network again.

No locking.  Single reads and writes are atomic under the GIL, which
covers the mosaic tile source resolving on a worker thread; a whole
get_or_fetch call is not.

Usage
-----
    cache = TTLCache(default_ttl_s=3600)
    data = cache.get_or_fetch("register:emit-ch4plume", lambda: post(...))
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

log = logging.getLogger(__name__)

_MISSING = object()


@dataclass
class CacheEntry:
    value: Any
    expires_at: float


class TTLCache:
    """Keyed store whose entries expire after a fixed duration."""

    def __init__(
        self,
        default_ttl_s: float = 3600.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if default_ttl_s <= 0:
            raise ValueError("default_ttl_s must be positive")
        self._ttl = float(default_ttl_s)
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._hits = 0
        self._misses = 0

    @property
    def default_ttl_s(self) -> float:
        return self._ttl

    def _lookup(self, key: str) -> Any:
        entry = self._entries.get(key)
        if entry is None:
            self._misses += 1
            return _MISSING
        if entry.expires_at <= self._clock():
            del self._entries[key]
            self._misses += 1
            log.debug("Cache entry expired: %s", key)
            return _MISSING
        self._hits += 1
        return entry.value

    def get(self, key: str) -> Optional[Any]:
        """Return the cached value, or None if missing or expired."""
        value = self._lookup(key)
        return None if value is _MISSING else value

    def set(self, key: str, value: Any, ttl_s: Optional[float] = None) -> None:
        ttl = self._ttl if ttl_s is None else float(ttl_s)
        self._entries[key] = CacheEntry(value, self._clock() + ttl)

    def get_or_fetch(self, key: str, fetch: Callable[[], Any]) -> Any:
        """Return the cached value for *key*, fetching and storing it on a miss.

        The read and the fetch-then-write are separate steps: two calls
        that overlap before the first fetch completes will both fetch.
        Exceptions from *fetch* propagate and leave no entry behind.
        """
        value = self._lookup(key)
        if value is not _MISSING:
            return value
        value = fetch()
        self.set(key, value)
        return value

    def prune_expired(self) -> int:
        """Drop every expired entry.  Returns the number removed."""
        now = self._clock()
        stale = [k for k, e in self._entries.items() if e.expires_at <= now]
        for k in stale:
            del self._entries[k]
        if stale:
            log.debug("Pruned %d expired cache entries", len(stale))
        return len(stale)

    def clear(self) -> None:
        self._entries.clear()

    def stats(self) -> dict:
        return {
            "entries": len(self._entries),
            "hits": self._hits,
            "misses": self._misses,
            "ttl_s": self._ttl,
        }

    def __contains__(self, key: str) -> bool:
        entry = self._entries.get(key)
        return entry is not None and entry.expires_at > self._clock()

    def __len__(self) -> int:
        return len(self._entries)
