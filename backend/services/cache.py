"""In-memory token cache keyed by source URL.

Freshness is checked lazily on read against a fixed TTL. Memory is bounded
two ways: the store evicts least-recently-used entries past ``max_entries``,
and ``sweep()`` drops stale entries (run periodically by the token service).

Note: Each uvicorn worker has its own cache instance. With --workers 2,
a token may be extracted twice (once per worker).
"""

import logging
from collections import OrderedDict
from dataclasses import dataclass

logger = logging.getLogger(__name__)

DEFAULT_TTL_MS = 120_000


@dataclass
class CacheEntry:
    source_url: str
    token_url: str
    created_at: int  # ms


class TokenCache:
    def __init__(self, ttl_ms: int = DEFAULT_TTL_MS, max_entries: int = 1000):
        self.ttl_ms = ttl_ms
        self.max_entries = max(1, max_entries)
        self._store: OrderedDict[str, CacheEntry] = OrderedDict()

    def __len__(self) -> int:
        return len(self._store)

    def get(self, source_url: str) -> CacheEntry | None:
        return self._store.get(source_url)

    def touch(self, source_url: str) -> None:
        """Mark an entry as most recently used."""
        if source_url in self._store:
            self._store.move_to_end(source_url)

    def is_fresh(self, entry: CacheEntry, now: int) -> bool:
        return now - entry.created_at < self.ttl_ms

    def remaining_ttl(self, entry: CacheEntry, now: int) -> int:
        return max(0, self.ttl_ms - (now - entry.created_at))

    def put(self, source_url: str, token_url: str, now: int) -> CacheEntry:
        entry = CacheEntry(source_url=source_url, token_url=token_url, created_at=now)
        self._store[source_url] = entry
        self._store.move_to_end(source_url)
        while len(self._store) > self.max_entries:
            evicted, _ = self._store.popitem(last=False)
            logger.debug("Evicted LRU cache entry: %s", evicted[:50])
        return entry

    def remove(self, source_url: str) -> bool:
        return self._store.pop(source_url, None) is not None

    def remove_matching(self, fragment: str) -> int:
        """Remove every entry whose key contains ``fragment``. Returns count removed."""
        keys = [key for key in self._store if fragment in key]
        for key in keys:
            del self._store[key]
        return len(keys)

    def clear(self) -> int:
        size = len(self._store)
        self._store.clear()
        return size

    def sweep(self, now: int) -> int:
        """Drop stale entries. Returns count removed."""
        stale = [key for key, entry in self._store.items() if not self.is_fresh(entry, now)]
        for key in stale:
            del self._store[key]
        return len(stale)

    def entries(self) -> list[CacheEntry]:
        return list(self._store.values())
