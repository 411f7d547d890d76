from __future__ import annotations

import threading
from typing import Any, Callable, Dict, Hashable, TypeVar

import cachetools

from themis.metric import cache_tag_invalidation_counter

T = TypeVar("T")

CHECKS_TAG = "checks"
DASHBOARD_STATS_TAG = "dashboard-stats"
CHECK_HISTORY_TAG = "check-history"


class TaggedCache:
    """Aggregate results grouped under invalidation tags.

    Each tag owns its own TTL cache. ``invalidate`` drops every entry of the
    given tags; readers recompute on their next call.
    """

    def __init__(self, maxsize: int = 256, ttl: float = 30.0):
        self.maxsize = maxsize
        self.ttl = ttl
        self._caches: Dict[str, cachetools.TTLCache] = {}
        self._lock = threading.Lock()

    def get_or_compute(self, tag: str, key: Hashable, compute: Callable[[], T]) -> T:
        with self._lock:
            cache = self._caches.get(tag)
            if cache is None:
                cache = cachetools.TTLCache(maxsize=self.maxsize, ttl=self.ttl)
                self._caches[tag] = cache
            try:
                return cache[key]
            except KeyError:
                pass

        value = compute()

        with self._lock:
            # invalidated while computing: keep the value out of any newer cache
            if self._caches.get(tag) is cache:
                cache[key] = value
        return value

    def cached(self, tag: str) -> Dict[Hashable, Any]:
        with self._lock:
            cache = self._caches.get(tag)
            return {} if cache is None else dict(cache.items())

    def invalidate(self, *tags: str) -> None:
        with self._lock:
            for tag in tags:
                self._caches.pop(tag, None)
                cache_tag_invalidation_counter.labels(tag=tag).inc()
