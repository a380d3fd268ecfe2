"""
Resolution coordinator.

Coordinates extraction, the age cache and the fetcher, deduplicating
concurrent requests for the same handle and notifying the annotation sink.
"""

import time
import asyncio
import logging
from enum import Enum
from typing import Optional, Dict, Any, Set

from age_verifier.annotation import AnnotationSink
from age_verifier.cache import AgeCache
from age_verifier.config import Config
from age_verifier.extractor import HandleExtractor
from age_verifier.fetcher import RateLimitedFetcher
from age_verifier.models import AgeRecord, FailureKind, normalize_handle
from age_verifier.store import CacheStore


class ResolutionState(str, Enum):
    """Per-handle resolution state."""

    IDLE = 'idle'
    CACHE_CHECK = 'cache_check'
    CACHE_HIT = 'cache_hit'
    CACHE_MISS = 'cache_miss'
    FETCHING = 'fetching'
    RESOLVED = 'resolved'
    DONE = 'done'


class ResolutionCoordinator:
    """
    Main orchestrator for age resolution.

    Handles:
    - Cache checks before any outbound lookup
    - At most one in-flight fetch per handle, shared by every caller
    - Exactly one sink notification per completed resolution
    - Explicit initialization and graceful shutdown

    Shared state is only mutated synchronously between awaits on one event loop.
    """

    def __init__(
        self,
        config: Config,
        fetcher: Optional[RateLimitedFetcher] = None,
        cache: Optional[AgeCache] = None,
        sink: Optional[AnnotationSink] = None,
        extractor: Optional[HandleExtractor] = None
    ):
        """
        Initialize coordinator.

        Components left as None are built from config on initialize().

        Args:
            config: Configuration object
            fetcher: Fetcher used for cache misses
            cache: Age cache
            sink: Receives every completed resolution
            extractor: Handle extractor used by rescan()
        """
        self.config = config
        self.fetcher = fetcher
        self.cache = cache
        self.sink = sink
        self.extractor = extractor or HandleExtractor()

        self.initialized = False
        self.closed = False
        self._init_lock = asyncio.Lock()

        # In-flight resolutions: handle -> future shared by every attached caller
        self._in_flight: Dict[str, asyncio.Future] = {}
        self._tasks: Dict[str, asyncio.Task] = {}
        self._states: Dict[str, ResolutionState] = {}
        self._rescans: Set[asyncio.Task] = set()
        self._pending_rescan: Optional[asyncio.Task] = None

        # Statistics
        self.requests = 0
        self.cache_hits = 0
        self.fetches = 0
        self.attached = 0
        self.refreshes = 0
        self.debounced = 0
        self.notifications = 0
        self.dropped = 0

    async def initialize(self):
        """Build missing components and open the HTTP client."""
        async with self._init_lock:
            if self.initialized or self.closed:
                return

            if self.cache is None:
                store = CacheStore(self.config.db_path) if self.config.db_path else None
                self.cache = AgeCache.from_config(self.config, store)

            if self.fetcher is None:
                self.fetcher = RateLimitedFetcher(self.config)
            await self.fetcher.initialize()

            self.initialized = True
            logging.debug("Coordinator initialized")

    def state(self, handle: str) -> ResolutionState:
        return self._states.get(normalize_handle(handle), ResolutionState.IDLE)

    async def request(self, handle: str, refresh: bool = False) -> Optional[AgeRecord]:
        """
        Resolve a handle, attaching to an in-flight resolution if one exists.

        Args:
            handle: User handle (any case, optional u/ prefix)
            refresh: Drop any cached entry and fetch again

        Returns:
            The resolved record, or None if the coordinator shut down first

        Raises:
            ValueError: If the handle is not a valid username
        """
        key = normalize_handle(handle)

        if not self.initialized:
            await self.initialize()
        if self.closed:
            logging.debug(f"Ignoring request for u/{key}: coordinator is shut down")
            return None

        self.requests += 1

        pending = self._in_flight.get(key)
        if pending is not None:
            self.attached += 1
            logging.debug(f"u/{key}: attached to in-flight resolution")
            return await asyncio.shield(pending)

        self._states[key] = ResolutionState.CACHE_CHECK
        if refresh:
            self.cache.invalidate(key)
            self.refreshes += 1
            cached = None
        else:
            cached = self.cache.get(key)
        if cached is not None:
            self.cache_hits += 1
            self._states[key] = ResolutionState.CACHE_HIT
            self._finish(key, cached)
            return cached

        self._states[key] = ResolutionState.CACHE_MISS
        future = asyncio.get_running_loop().create_future()
        self._in_flight[key] = future
        self._states[key] = ResolutionState.FETCHING
        self.fetches += 1
        self._tasks[key] = asyncio.create_task(self._fetch(key, future))

        return await asyncio.shield(future)

    async def _fetch(self, key: str, future: asyncio.Future):
        try:
            record = await self.fetcher.resolve(key)
        except Exception as e:
            logging.error(f"u/{key}: fetcher raised: {e}", exc_info=True)
            record = AgeRecord.unknown(key, time.time(), FailureKind.TRANSIENT, str(e))
        finally:
            self._tasks.pop(key, None)

        if self.closed or future.done():
            return

        self._states[key] = ResolutionState.RESOLVED
        self._in_flight.pop(key, None)

        if record.cacheable:
            try:
                self.cache.put(key, record)
            except Exception as e:
                logging.error(f"u/{key}: failed to cache result: {e}")

        future.set_result(record)
        self._finish(key, record)

    def _finish(self, key: str, record: AgeRecord):
        self._states[key] = ResolutionState.DONE
        self.notifications += 1

        if self.sink is None:
            return
        try:
            self.sink.on_resolved(key, record)
        except Exception as e:
            logging.error(f"Annotation sink failed for u/{key}: {e}", exc_info=True)

    async def rescan(self, snapshot, refresh: bool = False) -> Dict[str, Optional[AgeRecord]]:
        """
        Extract handles from a content snapshot and resolve them all.

        Args:
            snapshot: HTML or plain text
            refresh: Bypass the cache for every handle found

        Returns:
            Mapping of handle to record (None for resolutions dropped by shutdown)
        """
        handles = list(self.extractor.extract(snapshot))
        if not handles:
            logging.debug("Rescan found no handles")
            return {}

        logging.debug(f"Rescan found {len(handles)} handles")
        results = await asyncio.gather(*(self.request(handle, refresh) for handle in handles))
        return dict(zip(handles, results))

    def schedule_rescan(self, snapshot, delay: Optional[float] = None) -> asyncio.Task:
        """
        Rescan in the background after a quiet period.

        A call made while an earlier scheduled rescan is still waiting cancels
        it, so a burst of content changes produces a single rescan of the
        latest snapshot.

        Args:
            snapshot: HTML or plain text
            delay: Seconds to wait (defaults to config.rescan_debounce_seconds)

        Returns:
            Task resolving to the rescan result
        """
        if delay is None:
            delay = self.config.rescan_debounce_seconds

        pending = self._pending_rescan
        if pending is not None and not pending.done():
            pending.cancel()
            self.debounced += 1

        task = asyncio.create_task(self._debounced_rescan(snapshot, delay))
        self._pending_rescan = task
        self._rescans.add(task)
        task.add_done_callback(self._rescans.discard)
        return task

    async def _debounced_rescan(self, snapshot, delay: float) -> Dict[str, Optional[AgeRecord]]:
        await asyncio.sleep(delay)
        # Past the quiet period; later calls no longer cancel this rescan
        if self._pending_rescan is asyncio.current_task():
            self._pending_rescan = None
        return await self.rescan(snapshot)

    def get_stats(self) -> Dict[str, Any]:
        stats = {
            'requests': self.requests,
            'cache_hits': self.cache_hits,
            'fetches': self.fetches,
            'attached': self.attached,
            'refreshes': self.refreshes,
            'debounced_rescans': self.debounced,
            'notifications': self.notifications,
            'dropped': self.dropped,
            'in_flight': len(self._in_flight),
        }
        if self.cache is not None:
            stats['cache'] = self.cache.get_stats()
        if self.fetcher is not None:
            stats['fetcher'] = self.fetcher.get_stats()
        return stats

    async def shutdown(self):
        """
        Stop issuing fetches, drop pending resolutions and release resources.

        Callers waiting on a dropped resolution receive None; the sink is not
        notified for it.
        """
        if self.closed:
            return

        logging.debug("Shutting down coordinator...")
        self.closed = True

        if self._pending_rescan is not None:
            self._pending_rescan.cancel()
            self._pending_rescan = None

        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()

        for key, future in self._in_flight.items():
            if not future.done():
                future.set_result(None)
                self.dropped += 1
            self._states.pop(key, None)
        self._in_flight.clear()

        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        if self.dropped:
            logging.info(f"Dropped {self.dropped} pending resolutions on shutdown")

        if self.fetcher is not None:
            await self.fetcher.close()
        if self.cache is not None:
            self.cache.close()

        logging.debug("Coordinator shutdown complete")

    async def __aenter__(self) -> 'ResolutionCoordinator':
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.shutdown()
