"""
Read-through cache for organization listings.

Entries are keyed by composite tuples such as ``(organization_id,
"citizens")`` and expire after a fixed TTL. The clock is injected so tests
can control time, and ``invalidate`` drops every key under a prefix after a
sync makes the listings stale.
"""

import logging
import threading
import time
from collections.abc import Callable, Hashable
from typing import Any

logger = logging.getLogger(__name__)


class ViewCache:
    """Short-lived read-through cache keyed by composite ids."""

    def __init__(self, ttl_seconds: float = 60, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[tuple, tuple[float, Any]] = {}
        # Bumped on invalidation; a load started under an older generation is not stored
        self._generations: dict[tuple, int] = {}
        self._lock = threading.Lock()

    def get(self, key: tuple) -> Any | None:
        """Return the cached value for key, or None if absent or expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                return None
            return value

    def set(self, key: tuple, value: Any) -> None:
        with self._lock:
            self._entries[key] = (self._clock() + self.ttl_seconds, value)

    def get_or_load(self, key: tuple, loader: Callable[[], Any]) -> Any:
        """
        Return the cached value or call loader and cache its result.

        If the key is invalidated while loader runs, the loaded value is
        returned but not cached, since it may predate the invalidating write.
        """
        value = self.get(key)
        if value is not None:
            return value

        with self._lock:
            generation = self._generations.setdefault(key, 0)

        value = loader()

        with self._lock:
            if self._generations.get(key, 0) == generation:
                self._entries[key] = (self._clock() + self.ttl_seconds, value)
            else:
                logger.debug(f"Discarded stale load for {key}")
        return value

    def invalidate(self, *prefix: Hashable) -> int:
        """
        Remove every key that starts with prefix.

        Returns:
            Number of entries removed
        """
        with self._lock:
            for key in self._generations:
                if key[: len(prefix)] == prefix:
                    self._generations[key] += 1

            stale = [k for k in self._entries if k[: len(prefix)] == prefix]
            for key in stale:
                del self._entries[key]

        if stale:
            logger.debug(f"Invalidated {len(stale)} cached views for {prefix}")
        return len(stale)

    def clear(self) -> None:
        with self._lock:
            for key in self._generations:
                self._generations[key] += 1
            self._entries.clear()


# Process-wide listing cache used by the HTTP layer and the sync job
view_cache = ViewCache()
