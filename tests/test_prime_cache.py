from __future__ import annotations

import pytest

import delta_codec
from prime_cache import InsertionOrderCache, PrimeLookup
from prime_errors import NotFoundError, OutOfRangeError
from segment_store import Segment, StoreStats


class _CountingStore:
    """Serves fixed segments and counts every access."""

    def __init__(self, runs) -> None:
        self.segments = []
        index = 1
        for seg_id, primes in enumerate(runs):
            self.segments.append(
                Segment(
                    seg_id,
                    index,
                    index + len(primes) - 1,
                    primes[0],
                    len(primes),
                    delta_codec.compress(delta_codec.gaps_from_primes(primes)),
                )
            )
            index += len(primes)
        self.find_calls = 0
        self.stats_calls = 0
        self.closed = False

    def find_segment_for_index(self, index: int) -> Segment:
        self.find_calls += 1
        for seg in self.segments:
            if seg.contains(index):
                return seg
        raise NotFoundError(index)

    def get_stats(self) -> StoreStats:
        self.stats_calls += 1
        end = self.segments[-1].end_index if self.segments else 0
        return StoreStats(end, len(self.segments), "completed", end)

    def close(self) -> None:
        self.closed = True


RUNS = [[2, 3, 5, 7], [11, 13, 17, 19], [23, 29, 31, 37]]


def test_fifo_eviction_order() -> None:
    cache = InsertionOrderCache(3)
    for k in "abc":
        cache.put(k, k.upper())
    cache.get("a")  # reading does not protect "a"
    cache.put("d", "D")
    assert cache.keys() == ["b", "c", "d"]
    cache.put("e", "E")
    assert "b" not in cache
    assert cache.keys() == ["c", "d", "e"]
    assert cache.evictions == 2


def test_overwrite_keeps_slot() -> None:
    cache = InsertionOrderCache(2)
    cache.put("a", 1)
    cache.put("b", 2)
    cache.put("a", 10)
    cache.put("c", 3)
    assert cache.keys() == ["b", "c"]


def test_zero_capacity_stores_nothing() -> None:
    cache = InsertionOrderCache(0)
    cache.put("a", 1)
    assert len(cache) == 0
    with pytest.raises(ValueError):
        InsertionOrderCache(-1)


def test_lookup_values() -> None:
    lookup = PrimeLookup(_CountingStore(RUNS))
    assert [lookup.get_prime_by_index(i) for i in range(1, 13)] == [
        2, 3, 5, 7, 11, 13, 17, 19, 23, 29, 31, 37
    ]


def test_second_call_skips_store() -> None:
    store = _CountingStore(RUNS)
    lookup = PrimeLookup(store)
    assert lookup.get_prime_by_index(6) == 13
    assert store.find_calls == 1
    assert lookup.get_prime_by_index(6) == 13
    assert store.find_calls == 1
    assert lookup.hits == 1 and lookup.misses == 1


def test_segment_decoded_once() -> None:
    store = _CountingStore(RUNS)
    lookup = PrimeLookup(store)
    for i in (5, 6, 7, 8):
        lookup.get_prime_by_index(i)
    # Each index needs the store once, but the segment is only decoded once
    assert store.find_calls == 4
    assert lookup.segment_decodes == 1


def test_segment_tier_eviction() -> None:
    store = _CountingStore(RUNS)
    lookup = PrimeLookup(store, segment_cache_size=2, point_cache_multiplier=1)
    lookup.get_prime_by_index(1)
    lookup.get_prime_by_index(5)
    lookup.get_prime_by_index(9)
    assert lookup.segments.keys() == [1, 2]
    assert lookup.points.keys() == [5, 9]
    lookup.get_prime_by_index(2)  # segment 0 was evicted, decode again
    assert lookup.segment_decodes == 4


def test_point_tier_larger_than_segment_tier() -> None:
    lookup = PrimeLookup(_CountingStore(RUNS), segment_cache_size=5)
    assert lookup.points.capacity == 50


def test_boundary_errors() -> None:
    store = _CountingStore(RUNS)
    lookup = PrimeLookup(store)
    for bad in (0, -1, -100):
        with pytest.raises(OutOfRangeError):
            lookup.get_prime_by_index(bad)
    with pytest.raises(OutOfRangeError):
        lookup.get_prime_by_index(True)
    with pytest.raises(NotFoundError):
        lookup.get_prime_by_index(13)
    assert store.find_calls == 1


def test_range_reports_errors_inline() -> None:
    lookup = PrimeLookup(_CountingStore(RUNS))
    results = lookup.get_primes_by_index_range(11, 13)
    assert results[0] == {"index": 11, "prime": 31}
    assert results[1] == {"index": 12, "prime": 37}
    assert results[2]["index"] == 13 and "error" in results[2]


def test_availability_and_stats() -> None:
    lookup = PrimeLookup(_CountingStore(RUNS))
    assert lookup.is_index_available(12)
    assert not lookup.is_index_available(13)
    assert not lookup.is_index_available(0)
    assert not lookup.is_index_available(True)
    assert not lookup.is_index_available(2.0)
    assert lookup.get_stats().max_prime_index == 12

    lookup.get_prime_by_index(1)
    lookup.get_prime_by_index(1)
    cs = lookup.cache_stats()
    assert cs["hit_rate"] == 0.5
    assert cs["segment_entries"] == 1 and cs["point_entries"] == 1


def test_close_clears_and_closes_store() -> None:
    store = _CountingStore(RUNS)
    lookup = PrimeLookup(store)
    lookup.get_prime_by_index(3)
    lookup.close()
    assert store.closed
    assert len(lookup.points) == 0 and len(lookup.segments) == 0
