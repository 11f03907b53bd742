"""
Bounded caches in front of the segment store and the k-th prime lookup.

Two tiers:
  segment tier  segment_id -> decoded list of primes
  point tier    prime index -> prime

Both evict the oldest *inserted* entry once over capacity. Reads do not
refresh an entry, so a hot entry still ages out. Known limitation: a
recency-ordered LRU would keep hot segments longer.

Concurrent callers may both miss on the same segment and decode it twice.
Decoding is a pure function of an immutable segment, so the result is the
same either way; no lock is taken.
"""

from __future__ import annotations

from typing import Dict, Hashable, List

import delta_codec
from prime_errors import IndexLookupError, OutOfRangeError
from segment_store import SegmentStore


DEFAULT_SEGMENT_CACHE_SIZE = 100  # ~100MB at 1M primes per segment
POINT_CACHE_MULTIPLIER = 10

_MISSING = object()


class InsertionOrderCache:
    """dict-backed FIFO cache. get() never changes eviction order."""

    def __init__(self, capacity: int):
        if capacity < 0:
            raise ValueError("capacity must be >= 0")
        self.capacity = capacity
        self._data: Dict[Hashable, object] = {}
        self.evictions = 0

    def __len__(self) -> int:
        return len(self._data)

    def __contains__(self, key) -> bool:
        return key in self._data

    def get(self, key, default=None):
        return self._data.get(key, default)

    def put(self, key, value) -> None:
        if self.capacity == 0:
            return
        if key in self._data:
            # Overwrite keeps the original insertion slot
            self._data[key] = value
            return
        self._data[key] = value
        while len(self._data) > self.capacity:
            oldest = next(iter(self._data))
            del self._data[oldest]
            self.evictions += 1

    def keys(self) -> List[Hashable]:
        return list(self._data)

    def clear(self) -> None:
        self._data.clear()


class PrimeLookup:
    """
    get_prime_by_index() and friends over any store exposing
    find_segment_for_index() and get_stats().

    The store is passed in; close() closes it as well.
    """

    def __init__(
        self,
        store,
        segment_cache_size: int = DEFAULT_SEGMENT_CACHE_SIZE,
        point_cache_multiplier: int = POINT_CACHE_MULTIPLIER,
    ):
        self.store = store
        self.segments = InsertionOrderCache(segment_cache_size)
        self.points = InsertionOrderCache(segment_cache_size * point_cache_multiplier)
        self.hits = 0
        self.misses = 0
        self.segment_decodes = 0

    def _segment_primes(self, segment) -> List[int]:
        primes = self.segments.get(segment.segment_id)
        if primes is None:
            primes = delta_codec.decode_segment(
                segment.start_prime, segment.compressed_deltas, segment.segment_size
            )
            self.segment_decodes += 1
            self.segments.put(segment.segment_id, primes)
        return primes

    def get_prime_by_index(self, index: int) -> int:
        """
        The index-th prime (1-based). Raises OutOfRangeError for index < 1 and
        NotFoundError when no segment has been generated that far.
        """
        if not isinstance(index, int) or isinstance(index, bool) or index < 1:
            raise OutOfRangeError(index, f"Prime index must be a positive integer, got {index!r}")

        prime = self.points.get(index, _MISSING)
        if prime is not _MISSING:
            self.hits += 1
            return prime
        self.misses += 1

        segment = self.store.find_segment_for_index(index)
        primes = self._segment_primes(segment)
        prime = primes[index - segment.start_index]
        self.points.put(index, prime)
        return prime

    def get_primes_by_index_range(self, start_index: int, end_index: int) -> List[dict]:
        """One dict per index; failures are reported inline instead of raised."""
        results = []
        for i in range(start_index, end_index + 1):
            try:
                results.append({"index": i, "prime": self.get_prime_by_index(i)})
            except IndexLookupError as exc:
                results.append({"index": i, "error": str(exc)})
        return results

    def get_stats(self):
        return self.store.get_stats()

    def is_index_available(self, index: int) -> bool:
        if not isinstance(index, int) or isinstance(index, bool) or index < 1:
            return False
        return index <= self.store.get_stats().max_prime_index

    def cache_stats(self) -> dict:
        lookups = self.hits + self.misses
        return {
            "segment_entries": len(self.segments),
            "segment_capacity": self.segments.capacity,
            "point_entries": len(self.points),
            "point_capacity": self.points.capacity,
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": self.hits / lookups if lookups else 0.0,
            "segment_decodes": self.segment_decodes,
        }

    def clear(self) -> None:
        self.segments.clear()
        self.points.clear()

    def close(self) -> None:
        self.clear()
        close = getattr(self.store, "close", None)
        if close is not None:
            close()


def open_lookup(path: str, segment_cache_size: int = DEFAULT_SEGMENT_CACHE_SIZE) -> PrimeLookup:
    """Read-only PrimeLookup over the database at path."""
    return PrimeLookup(SegmentStore.open(path, readonly=True), segment_cache_size)

