"""In-memory response cache keyed by canonical request URL.

The cache is an explicitly constructed object owned by whoever issues the
requests (normally one :class:`ConditionalFetcher`).  There is no module
level instance.

Only bodies from 2xx responses are ever stored.  Without ``max_entries``
the cache grows for the lifetime of its owner; with it, the least recently
used entry is evicted once the bound is exceeded.
"""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from typing import Any, Optional

logger = logging.getLogger(__name__)


def is_success(status_code: int) -> bool:
    return 200 <= status_code < 300


class RequestCache:
    """URL → response body mapping with serialized access."""

    def __init__(self, max_entries: Optional[int] = None) -> None:
        if max_entries is not None and max_entries < 1:
            raise ValueError("max_entries must be positive or None")
        self.max_entries = max_entries
        self._entries: OrderedDict[str, bytes] = OrderedDict()
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def lookup(self, url: str) -> Optional[bytes]:
        """Return the cached body for *url*, or ``None``."""
        with self._lock:
            body = self._entries.get(url)
            if body is None:
                self._misses += 1
                return None
            self._hits += 1
            if self.max_entries is not None:
                self._entries.move_to_end(url)
            return body

    def store(self, url: str, body: bytes, status_code: int) -> bool:
        """Cache *body* under *url* if *status_code* is 2xx.

        Returns ``True`` when the body was stored.
        """
        if not is_success(status_code):
            return False
        with self._lock:
            self._entries[url] = bytes(body)
            self._entries.move_to_end(url)
            if self.max_entries is not None:
                while len(self._entries) > self.max_entries:
                    evicted, _ = self._entries.popitem(last=False)
                    self._evictions += 1
                    logger.debug("Evicted %s from request cache", evicted)
        return True

    def invalidate(self, url: str) -> bool:
        """Drop the entry for *url*.  Returns ``True`` if one existed."""
        with self._lock:
            return self._entries.pop(url, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def stats(self) -> dict[str, Any]:
        with self._lock:
            total = self._hits + self._misses
            return {
                "entries": len(self._entries),
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
                "hit_rate_percent": round(self._hits / total * 100, 1) if total else 0,
                "max_entries": self.max_entries,
            }

    def __contains__(self, url: object) -> bool:
        with self._lock:
            return url in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
