import threading

import pytest

from roadquality.core.errors import CacheUnavailableError
from roadquality.services.cache import CacheKey, InMemoryCacheBackend, QueryCache
from roadquality.services.geo import BoundingBox


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class BrokenBackend:
    def get(self, key):
        raise CacheUnavailableError("down")

    def set(self, key, value, ttl_s):
        raise CacheUnavailableError("down")

    def delete_matching(self, predicate):
        raise CacheUnavailableError("down")


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def backend(clock) -> InMemoryCacheBackend:
    return InMemoryCacheBackend(clock=clock)


@pytest.fixture()
def cache(backend) -> QueryCache:
    return QueryCache(backend, ttl_s=300.0, precision=4)


def test_key_collapses_nearby_centers(cache):
    a = cache.make_key(40.000012, -73.000041, 200, 10)
    b = cache.make_key(40.000049, -72.999951, 200.0, 10)
    assert a == b == CacheKey(lat=40.0, lon=-73.0, radius_m=200.0, limit=10)


def test_key_distinguishes_radius_and_limit(cache):
    base = cache.make_key(40.0, -73.0, 200, 10)
    assert cache.make_key(40.0, -73.0, 201, 10) != base
    assert cache.make_key(40.0, -73.0, 200, 11) != base


def test_put_get_and_ttl_expiry(cache, clock):
    key = cache.make_key(40.0, -73.0, 200, 10)
    cache.put(key, ("result",))

    clock.now += 299.0
    assert cache.get(key) == ("result",)

    clock.now += 1.0
    assert cache.get(key) is None
    assert cache.stats()["hits"] == 1
    assert cache.stats()["misses"] == 1


def test_empty_result_is_a_hit(cache):
    key = cache.make_key(1.0, 1.0, 50, 5)
    cache.put(key, ())
    assert cache.get(key) == ()
    assert cache.stats()["hits"] == 1


def test_invalidate_drops_entries_covering_the_point(cache, backend):
    near = cache.make_key(40.0, -73.0, 200, 10)
    far = cache.make_key(41.0, -73.0, 200, 10)
    cache.put(near, ("near",))
    cache.put(far, ("far",))

    dropped = cache.invalidate(BoundingBox.around_point(40.001, -73.001))

    assert dropped == 1
    assert cache.get(near) is None
    assert cache.get(far) == ("far",)
    assert len(backend) == 1


def test_invalidate_covers_rounding_of_the_key(cache):
    # A query centered at 40.00004 rounds to 40.0; a write 200m north of the
    # original center must still drop the entry.
    key = cache.make_key(40.00004, -73.0, 200, 10)
    cache.put(key, ("x",))
    assert cache.invalidate(BoundingBox.around_point(40.00004 + 0.0018, -73.0)) == 1


def test_get_or_compute_computes_once(cache):
    calls = []
    key = cache.make_key(40.0, -73.0, 200, 10)

    def compute():
        calls.append(1)
        return ("value",)

    assert cache.get_or_compute(key, compute) == ("value",)
    assert cache.get_or_compute(key, compute) == ("value",)
    assert len(calls) == 1


def test_concurrent_misses_share_one_computation(cache):
    key = cache.make_key(40.0, -73.0, 200, 10)
    release = threading.Event()
    calls = []
    results = []

    def compute():
        calls.append(1)
        release.wait(timeout=5)
        return ("shared",)

    threads = [threading.Thread(target=lambda: results.append(cache.get_or_compute(key, compute))) for _ in range(4)]
    for t in threads:
        t.start()
    release.set()
    for t in threads:
        t.join(timeout=5)

    assert results == [("shared",)] * 4
    assert len(calls) == 1


def test_backend_failure_degrades_to_miss():
    cache = QueryCache(BrokenBackend())
    key = cache.make_key(40.0, -73.0, 200, 10)

    assert cache.get(key) is None
    cache.put(key, ("x",))
    assert cache.invalidate(BoundingBox.around_point(40.0, -73.0)) == 0
    assert cache.get_or_compute(key, lambda: ("computed",)) == ("computed",)
    assert cache.stats()["backend_errors"] >= 4


def test_result_computed_across_invalidation_is_not_cached(cache, backend):
    key = cache.make_key(40.0, -73.0, 200, 10)

    def compute_racing_a_write():
        snapshot = ("before-write",)
        cache.invalidate(BoundingBox.around_point(40.0, -73.0))
        return snapshot

    assert cache.get_or_compute(key, compute_racing_a_write) == ("before-write",)
    assert cache.get(key) is None
    assert len(backend) == 0
    assert cache.stats()["stale_skipped"] == 1

    assert cache.get_or_compute(key, lambda: ("after-write",)) == ("after-write",)
    assert cache.get(key) == ("after-write",)


def test_unrelated_invalidation_before_compute_still_caches(cache):
    key = cache.make_key(40.0, -73.0, 200, 10)
    cache.invalidate(BoundingBox.around_point(10.0, 10.0))

    cache.get_or_compute(key, lambda: ("value",))

    assert cache.get(key) == ("value",)


def test_expired_entries_are_swept_on_write(clock):
    backend = InMemoryCacheBackend(clock=clock, sweep_interval_s=60.0)
    for i in range(1000):
        backend.set(CacheKey(lat=float(i), lon=0.0, radius_m=100.0, limit=10), ("r",), 1.0)

    clock.now += 10_000.0
    backend.set(CacheKey(lat=0.0, lon=1.0, radius_m=100.0, limit=10), ("fresh",), 1.0)

    assert len(backend) == 1


def test_sweep_keeps_live_entries(clock):
    backend = InMemoryCacheBackend(clock=clock, sweep_interval_s=60.0)
    short = CacheKey(lat=1.0, lon=1.0, radius_m=100.0, limit=10)
    long = CacheKey(lat=2.0, lon=2.0, radius_m=100.0, limit=10)
    backend.set(short, ("short",), 10.0)
    backend.set(long, ("long",), 1000.0)

    clock.now += 100.0
    backend.set(CacheKey(lat=3.0, lon=3.0, radius_m=100.0, limit=10), ("new",), 10.0)

    assert len(backend) == 2
    assert backend.get(long) == ("long",)


def test_oldest_entry_is_evicted_past_capacity(clock):
    backend = InMemoryCacheBackend(clock=clock, max_entries=3)
    keys = [CacheKey(lat=float(i), lon=0.0, radius_m=100.0, limit=10) for i in range(4)]
    for key in keys[:3]:
        backend.set(key, ("r",), 300.0)
    backend.set(keys[0], ("rewritten",), 300.0)

    backend.set(keys[3], ("r",), 300.0)

    assert len(backend) == 3
    assert backend.get(keys[1]) is None
    assert backend.get(keys[0]) == ("rewritten",)
