"""
In-memory age cache with TTL expiry and least-recently-used eviction.

Optionally writes through to a CacheStore so results survive restarts.
"""

import time
import logging
from collections import OrderedDict
from typing import Optional, Callable, Dict, Any

from age_verifier.models import AgeRecord, CacheEntry, RecordSource
from age_verifier.store import CacheStore


class AgeCache:
    """
    Capacity-bounded TTL cache of AgeRecords keyed by normalized handle.

    Entry order in the OrderedDict is recency order: the first entry is the
    least recently used.
    """

    def __init__(
        self,
        max_entries: int = 5000,
        ttl_seconds: float = 7 * 24 * 60 * 60,
        store: Optional[CacheStore] = None,
        clock: Callable[[], float] = time.time
    ):
        """
        Initialize cache.

        Args:
            max_entries: Maximum number of entries held
            ttl_seconds: Entry lifetime in seconds
            store: Optional persistent store to load from and write through to
            clock: Epoch time source
        """
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")

        self.max_entries = max_entries
        self.ttl_seconds = ttl_seconds
        self.store = store
        self.clock = clock

        self._entries: 'OrderedDict[str, CacheEntry]' = OrderedDict()

        # Statistics
        self.hits = 0
        self.misses = 0
        self.expirations = 0
        self.evictions = 0

        if store is not None:
            self._load_from_store()

    @classmethod
    def from_config(cls, config, store: Optional[CacheStore] = None) -> 'AgeCache':
        return cls(
            max_entries=config.max_cache_entries,
            ttl_seconds=config.cache_ttl_seconds,
            store=store,
        )

    def _load_from_store(self):
        loaded = self.store.load(self.clock())
        for handle, entry in loaded.items():
            self._entries[handle] = entry
        self._evict_over_capacity()
        if loaded:
            logging.info(f"Loaded {len(self._entries)} cached ages")

    def get(self, handle: str) -> Optional[AgeRecord]:
        """
        Look up a handle.

        Args:
            handle: Normalized handle

        Returns:
            Cached record (source=cache), or None if absent or expired
        """
        entry = self._entries.get(handle)
        if entry is None:
            self.misses += 1
            return None

        if entry.is_expired(self.clock()):
            self._remove(handle)
            self.expirations += 1
            self.misses += 1
            logging.debug(f"Cache entry for u/{handle} expired")
            return None

        self._entries.move_to_end(handle)
        self.hits += 1
        return entry.record.with_source(RecordSource.CACHE)

    def put(self, handle: str, record: AgeRecord):
        """
        Store a record, replacing any prior entry and resetting its TTL.

        Args:
            handle: Normalized handle
            record: Record to cache
        """
        entry = CacheEntry.create(record, self.clock(), self.ttl_seconds)
        self._entries[handle] = entry
        self._entries.move_to_end(handle)

        if self.store is not None:
            self.store.save(handle, entry)

        self.evict()
        self._evict_over_capacity()

    def evict(self) -> int:
        """
        Remove expired entries.

        Returns:
            Number of entries removed
        """
        now = self.clock()
        expired = [handle for handle, entry in self._entries.items() if entry.is_expired(now)]
        for handle in expired:
            self._remove(handle)

        self.expirations += len(expired)
        if expired:
            logging.debug(f"Evicted {len(expired)} expired cache entries")
        return len(expired)

    def _evict_over_capacity(self):
        while len(self._entries) > self.max_entries:
            handle = next(iter(self._entries))
            self._remove(handle)
            self.evictions += 1
            logging.debug(f"Evicted least recently used cache entry u/{handle}")

    def invalidate(self, handle: str) -> bool:
        """
        Drop one handle's entry, in memory and in the store.

        Returns:
            True if an entry was removed
        """
        removed = self._entries.pop(handle, None) is not None
        if self.store is not None:
            removed = self.store.delete(handle) or removed
        if removed:
            logging.debug(f"Invalidated cache entry for u/{handle}")
        return removed

    def _remove(self, handle: str):
        del self._entries[handle]
        if self.store is not None:
            self.store.delete(handle)

    def clear(self) -> int:
        """Remove every entry, including persisted ones."""
        count = len(self._entries)
        self._entries.clear()
        if self.store is not None:
            count = max(count, self.store.clear())
        return count

    def get_stats(self) -> Dict[str, Any]:
        lookups = self.hits + self.misses
        return {
            'entries': len(self._entries),
            'max_entries': self.max_entries,
            'hits': self.hits,
            'misses': self.misses,
            'hit_rate': self.hits / lookups if lookups > 0 else 0,
            'expirations': self.expirations,
            'evictions': self.evictions,
        }

    def close(self):
        if self.store is not None:
            self.store.close()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, handle: str) -> bool:
        entry = self._entries.get(handle)
        return entry is not None and not entry.is_expired(self.clock())
