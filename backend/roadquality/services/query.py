from __future__ import annotations

import logging
import math
import threading
from dataclasses import dataclass

from roadquality.core.errors import InvalidQueryError, InvalidRadiusError
from roadquality.services.cache import QueryCache
from roadquality.services.geo import bounding_box_for_radius, distance_m
from roadquality.services.record_store import ConditionRecord, RecordStore

logger = logging.getLogger(__name__)

DEFAULT_MAX_LIMIT = 500


@dataclass(frozen=True)
class NearbyCondition:
    record: ConditionRecord
    distance_m: float


def _sort_key(item: NearbyCondition) -> tuple:
    record = item.record
    return (item.distance_m, record.recorded_at, record.record_id or 0, record.batch_id)


def validate_query(lat: float, lon: float, radius_m: float, limit: int, max_limit: int) -> None:
    if not (isinstance(radius_m, (int, float)) and math.isfinite(radius_m)) or radius_m <= 0:
        raise InvalidRadiusError("radius must be a positive number of meters")
    if not (math.isfinite(lat) and -90.0 <= lat <= 90.0):
        raise InvalidQueryError("latitude must be within [-90, 90]")
    if not (math.isfinite(lon) and -180.0 <= lon <= 180.0):
        raise InvalidQueryError("longitude must be within [-180, 180]")
    if limit < 1 or limit > max_limit:
        raise InvalidQueryError(f"limit must be within [1, {max_limit}]")


class ConditionQueryEngine:
    """Nearest-first lookups over the record store, memoized by the cache.

    Candidates come from a bounding-box range lookup, corner false positives
    are pruned by exact distance, and ties are broken by record time and id.
    """

    def __init__(
        self,
        store: RecordStore,
        cache: QueryCache | None = None,
        max_limit: int = DEFAULT_MAX_LIMIT,
    ) -> None:
        self._store = store
        self._cache = cache
        self.max_limit = max_limit
        self._lock = threading.Lock()
        self._computations = 0

    @property
    def computations(self) -> int:
        """Number of queries answered from the store rather than the cache."""
        return self._computations

    def nearby(self, lat: float, lon: float, radius_m: float, limit: int) -> tuple[NearbyCondition, ...]:
        validate_query(lat, lon, radius_m, limit, self.max_limit)
        if self._cache is None:
            return self._compute(lat, lon, radius_m, limit)
        key = self._cache.make_key(lat, lon, radius_m, limit)
        return self._cache.get_or_compute(key, lambda: self._compute(lat, lon, radius_m, limit))

    def _compute(self, lat: float, lon: float, radius_m: float, limit: int) -> tuple[NearbyCondition, ...]:
        with self._lock:
            self._computations += 1

        bbox = bounding_box_for_radius(lat, lon, radius_m)
        candidates = self._store.range_query(bbox)

        hits = []
        for record in candidates:
            d = distance_m(lat, lon, record.lat, record.lon)
            if d <= radius_m:
                hits.append(NearbyCondition(record=record, distance_m=d))
        hits.sort(key=_sort_key)

        logger.debug(
            "Computed nearby conditions",
            extra={"candidates": len(candidates), "matched": len(hits), "limit": limit},
        )
        return tuple(hits[:limit])
