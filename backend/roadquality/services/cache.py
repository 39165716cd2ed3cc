"""Query result cache keyed by a quantized (center, radius, limit) fingerprint.

Entries expire after a TTL and are additionally dropped when a newly written
record falls inside the bounding box implied by their key. Backend failures
never reach the read path: they are logged and treated as a miss.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol, TypeVar

from roadquality.core.errors import CacheUnavailableError
from roadquality.services.geo import BoundingBox, bounding_box_for_radius

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_TTL_S = 300.0
DEFAULT_PRECISION = 4
DEFAULT_MAX_ENTRIES = 10_000
DEFAULT_SWEEP_INTERVAL_S = 60.0


@dataclass(frozen=True)
class CacheKey:
    lat: float
    lon: float
    radius_m: float
    limit: int

    def bounding_box(self, precision: int) -> BoundingBox:
        """Box covering every query center that rounds to this key."""
        half_step = 0.5 * 10.0 ** (-precision)
        return bounding_box_for_radius(self.lat, self.lon, self.radius_m).expanded(half_step)


class CacheBackend(Protocol):
    def get(self, key: CacheKey) -> Any | None: ...

    def set(self, key: CacheKey, value: Any, ttl_s: float) -> None: ...

    def delete_matching(self, predicate: Callable[[CacheKey], bool]) -> int: ...


class InMemoryCacheBackend:
    """Dict-backed TTL store; ``clock`` is injectable for tests.

    Expired entries are swept on ``set`` at most once per ``sweep_interval_s``.
    Past ``max_entries`` the oldest write is evicted first.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        sweep_interval_s: float = DEFAULT_SWEEP_INTERVAL_S,
    ) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[CacheKey, tuple[Any, float]] = {}
        self.max_entries = max(1, int(max_entries))
        self.sweep_interval_s = sweep_interval_s
        self._next_sweep_at = clock() + sweep_interval_s

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: CacheKey) -> Any | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                return None
            return value

    def set(self, key: CacheKey, value: Any, ttl_s: float) -> None:
        with self._lock:
            now = self._clock()
            if now >= self._next_sweep_at:
                self._sweep_expired(now)
            # Re-inserting moves the key to the end of the eviction order.
            self._entries.pop(key, None)
            while len(self._entries) >= self.max_entries:
                del self._entries[next(iter(self._entries))]
            self._entries[key] = (value, now + ttl_s)

    def _sweep_expired(self, now: float) -> None:
        expired = [key for key, (_, expires_at) in self._entries.items() if now >= expires_at]
        for key in expired:
            del self._entries[key]
        self._next_sweep_at = now + self.sweep_interval_s
        if expired:
            logger.debug("Swept expired cache entries", extra={"expired": len(expired)})

    def delete_matching(self, predicate: Callable[[CacheKey], bool]) -> int:
        with self._lock:
            doomed = [key for key in self._entries if predicate(key)]
            for key in doomed:
                del self._entries[key]
        return len(doomed)


class QueryCache:
    def __init__(
        self,
        backend: CacheBackend,
        ttl_s: float = DEFAULT_TTL_S,
        precision: int = DEFAULT_PRECISION,
    ) -> None:
        self._backend = backend
        self.ttl_s = ttl_s
        self.precision = precision
        self._inflight_lock = threading.Lock()
        self._inflight: dict[CacheKey, threading.Lock] = {}
        self._stats_lock = threading.Lock()
        self._stats = {"hits": 0, "misses": 0, "invalidated": 0, "backend_errors": 0, "stale_skipped": 0}
        # Bumped by every invalidation; a result computed across a bump is not stored.
        self._generation_lock = threading.Lock()
        self._generation = 0

    def _count(self, name: str, amount: int = 1) -> None:
        with self._stats_lock:
            self._stats[name] += amount

    def make_key(self, lat: float, lon: float, radius_m: float, limit: int) -> CacheKey:
        return CacheKey(
            lat=round(lat, self.precision),
            lon=round(lon, self.precision),
            radius_m=float(radius_m),
            limit=int(limit),
        )

    def get(self, key: CacheKey) -> Any | None:
        try:
            value = self._backend.get(key)
        except CacheUnavailableError:
            logger.warning("Cache backend unavailable on get; treating as miss", exc_info=True)
            self._count("backend_errors")
            value = None
        self._count("hits" if value is not None else "misses")
        return value

    def put(self, key: CacheKey, value: Any, ttl_s: float | None = None) -> None:
        try:
            self._backend.set(key, value, self.ttl_s if ttl_s is None else ttl_s)
        except CacheUnavailableError:
            logger.warning("Cache backend unavailable on set; result not cached", exc_info=True)
            self._count("backend_errors")

    def invalidate(self, bbox: BoundingBox) -> int:
        """Drop every entry whose implied bounding box intersects ``bbox``."""
        with self._generation_lock:
            self._generation += 1
            try:
                dropped = self._backend.delete_matching(
                    lambda key: key.bounding_box(self.precision).intersects(bbox)
                )
            except CacheUnavailableError:
                logger.warning("Cache backend unavailable on invalidate", exc_info=True)
                self._count("backend_errors")
                return 0
        if dropped:
            logger.debug("Invalidated cache entries", extra={"dropped": dropped})
        self._count("invalidated", dropped)
        return dropped

    def get_or_compute(self, key: CacheKey, compute: Callable[[], T]) -> T:
        """Return the cached value for ``key`` or compute, store and return it.

        Concurrent callers for the same key wait on a per-key lock so one of
        them computes while the others reuse its result. A value computed
        while an invalidation ran is returned but not cached, since it may
        predate the write that triggered it.
        """
        cached = self.get(key)
        if cached is not None:
            return cached

        with self._inflight_lock:
            key_lock = self._inflight.setdefault(key, threading.Lock())
        with key_lock:
            try:
                cached = self._backend.get(key)
            except CacheUnavailableError:
                cached = None
            if cached is not None:
                return cached
            with self._generation_lock:
                started_at = self._generation
            value = compute()
            with self._generation_lock:
                if self._generation == started_at:
                    self.put(key, value)
                else:
                    self._count("stale_skipped")
                    logger.debug("Result computed across an invalidation; not cached")
        with self._inflight_lock:
            if not key_lock.locked():
                self._inflight.pop(key, None)
        return value

    def stats(self) -> dict[str, int]:
        with self._stats_lock:
            return dict(self._stats)
