"""Read-through cache for bill period documents.

Keys are ``(client_id, domain, period_id)`` tuples. The cache is owned by
whoever constructs the services and passed in explicitly; there is no module
level instance.
"""

import logging
import threading
from typing import Any, Callable, Hashable

logger = logging.getLogger(__name__)

BillCacheKey = tuple[str, str, str]


class BillCache:
    """Thread-safe in-memory cache with explicit invalidation."""

    def __init__(self):
        self._entries: dict[Hashable, Any] = {}
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get(self, key: BillCacheKey, loader: Callable[[], Any]) -> Any:
        """Return the cached value for ``key``, calling ``loader`` on a miss.

        ``None`` results are not cached so a later generation is picked up.
        """
        with self._lock:
            if key in self._entries:
                self.hits += 1
                return self._entries[key]
        value = loader()
        with self._lock:
            self.misses += 1
            if value is not None:
                self._entries[key] = value
        return value

    def invalidate(self, key: BillCacheKey) -> bool:
        with self._lock:
            removed = self._entries.pop(key, None) is not None
        if removed:
            logger.debug("Invalidated bill cache entry %s", key)
        return removed

    def invalidate_client(self, client_id: str) -> int:
        """Drop every entry of one client."""
        with self._lock:
            keys = [k for k in self._entries if k[0] == client_id]
            for k in keys:
                del self._entries[k]
        return len(keys)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __contains__(self, key: BillCacheKey) -> bool:
        with self._lock:
            return key in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


__all__ = ["BillCache", "BillCacheKey"]
