#!/usr/bin/env python3
"""
Segmented sieve of Eratosthenes over an unbounded range.

Numbers are sieved in fixed-width windows [low, low + W). Each window only
needs the base primes <= sqrt(window end), so memory stays at
O(W + sqrt(end)) no matter how many primes have already been produced.
Base primes are recomputed only when a window end outgrows the range they
cover, and then with headroom so it happens rarely.

    >>> primes_in_range(2, 30)
    [2, 3, 5, 7, 11, 13, 17, 19, 23, 29]
"""

from __future__ import annotations

import argparse
import itertools
import math
import sys
from typing import Iterator, List


DEFAULT_SIEVE_WINDOW = 100_000_000


def simple_sieve(n: int) -> List[int]:
    """Return all primes <= n using a simple sieve (for base primes up to sqrt(limit))."""
    if n < 2:
        return []
    bs = bytearray(b"\x01") * (n + 1)
    bs[0:2] = b"\x00\x00"
    r = int(math.isqrt(n))
    for p in range(2, r + 1):
        if bs[p]:
            step = p
            start = p * p
            bs[start : n + 1 : step] = b"\x00" * (((n - start) // step) + 1)
    return list(itertools.compress(range(n + 1), bs))


def sieve_window(low: int, high: int, base_primes: List[int]) -> List[int]:
    """
    Primes in [low, high). base_primes must be ascending and contain every
    prime <= isqrt(high - 1).
    """
    if low < 0:
        raise ValueError("low must be >= 0")
    size = high - low
    if size <= 0:
        return []

    # One byte per candidate, index i <-> n = low + i
    is_prime = bytearray(b"\x01") * size
    for n in range(low, min(2, high)):
        is_prime[n - low] = 0

    for p in base_primes:
        p2 = p * p
        if p2 >= high:
            break
        start = max(p2, ((low + p - 1) // p) * p)
        idx0 = start - low
        if idx0 >= size:
            continue
        is_prime[idx0:size:p] = b"\x00" * (((size - 1 - idx0) // p) + 1)

    return list(itertools.compress(range(low, high), is_prime))


def primes_in_range(low: int, high: int) -> List[int]:
    """Primes p with low <= p <= high."""
    if high < 2 or high < low:
        return []
    return sieve_window(max(low, 0), high + 1, simple_sieve(math.isqrt(high)))


class SegmentedSieve:
    """
    Lazily yields every prime >= start in ascending order, one window at a
    time. Iterating twice continues where the previous iteration stopped.

    cursor is the highest number sieved so far (window_end - 1).
    """

    def __init__(self, window_size: int = DEFAULT_SIEVE_WINDOW, start: int = 2):
        if window_size < 1:
            raise ValueError("window_size must be >= 1")
        if start < 0:
            raise ValueError("start must be >= 0")
        self.window_size = window_size
        self.window_start = start
        self.window_end = start
        self._base_primes: List[int] = []
        self._base_limit = 1
        self.windows_sieved = 0

    @property
    def cursor(self) -> int:
        return self.window_end - 1

    @property
    def base_primes(self) -> List[int]:
        return self._base_primes

    def _ensure_base_primes(self, high: int) -> None:
        need = math.isqrt(high - 1)
        if need <= self._base_limit:
            return
        limit = max(need, 2 * self._base_limit)
        self._base_primes = simple_sieve(limit)
        self._base_limit = limit

    def next_window(self) -> List[int]:
        """Sieve the next window and advance. Returns its primes (possibly none)."""
        low = self.window_end
        high = low + self.window_size
        self._ensure_base_primes(high)
        primes = sieve_window(low, high, self._base_primes)
        self.window_start, self.window_end = low, high
        self.windows_sieved += 1
        return primes

    def __iter__(self) -> Iterator[int]:
        while True:
            yield from self.next_window()


def iter_primes(window_size: int = DEFAULT_SIEVE_WINDOW, start: int = 2) -> Iterator[int]:
    return iter(SegmentedSieve(window_size, start))


def main() -> int:
    ap = argparse.ArgumentParser(description="Print primes in [low, high] using the segmented sieve.")
    ap.add_argument("low", type=int)
    ap.add_argument("high", type=int)
    ap.add_argument("--window", type=int, default=1_000_000, help="Sieve window width")
    args = ap.parse_args()

    if args.window < 1:
        ap.error("--window must be >= 1")

    count = 0
    for p in SegmentedSieve(args.window, start=max(args.low, 0)):
        if p > args.high:
            break
        print(p)
        count += 1
    print(f"{count:,} primes in [{args.low:,}, {args.high:,}]", file=sys.stderr)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
