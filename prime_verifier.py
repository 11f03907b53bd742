#!/usr/bin/env python3
"""
Spot-check a prime segment database and time its lookups.

Random indices are drawn from [1, max_prime_index]. Each stored value is
checked with a deterministic Miller-Rabin test and sympy.isprime, values up to
--naive-limit by trial division, and indices up to --exact-limit are also
compared with sympy.prime(index). Every index is looked up twice (cold,
then served from the cache) and the timings are written to CSV and
optionally plotted.
"""

from __future__ import annotations

import argparse
import csv
import gc
import math
import random
import sys
import time
from typing import List, Tuple

import matplotlib.pyplot as plt
import numpy as np
import sympy
from tqdm import tqdm

from prime_cache import PrimeLookup, open_lookup
from prime_errors import PrimeStoreError
from segment_store import DEFAULT_DB_PATH


def naive_prime_verifier(n: int) -> bool:
    """
    Trial division by 2 and the odd numbers up to isqrt(n).
    O(sqrt(n)) time, so only used below --naive-limit.
    """
    if n < 2:
        return False
    if n % 2 == 0:
        return n == 2
    for i in range(3, math.isqrt(n) + 1, 2):
        if n % i == 0:
            return False
    return True


def miller_rabin_verifier(n: int) -> bool:
    """
    Deterministic primality test for n < 2^64.
    O(log n)^3 worst-case time.
    """
    if n < 2:
        return False

    # Small primes (cheap filters)
    small_primes = (
        2, 3, 5, 7, 11, 13, 17, 19, 23, 29,
        31, 37
    )
    if n in small_primes:
        return True
    for p in small_primes:
        if n % p == 0:
            return n == p

    # Write n−1 = d * 2^s
    d = n - 1
    s = 0
    while d & 1 == 0:
        d >>= 1
        s += 1

    # Deterministic Miller–Rabin bases for 64-bit ints
    test_bases = (
        2, 325, 9375, 28178, 450775, 9780504, 1795265022
    )

    for a in test_bases:
        if a % n == 0:
            continue
        x = pow(a, d, n)
        if x == 1 or x == n - 1:
            continue
        for _ in range(s - 1):
            x = (x * x) % n
            if x == n - 1:
                break
        else:
            return False

    return True


def sample_indices(max_index: int, count: int, rng: random.Random = None) -> List[int]:
    rng = rng or random.Random()
    if max_index < 1:
        return []
    return rng.sample(range(1, max_index + 1), min(count, max_index))


def verify_samples(
    lookup: PrimeLookup,
    indices: List[int],
    exact_limit: int = 100_000,
    naive_limit: int = 10_000_000,
    show_progress: bool = True,
) -> Tuple[List[Tuple[int, int, int, int]], List[str]]:
    """
    Returns (rows, failures). rows are (index, prime, cold_ns, warm_ns).
    Values up to naive_limit are also trial-divided, independently of both
    probabilistic checks.
    """
    rows = []
    failures = []
    clock = time.perf_counter_ns

    gc_was_enabled = gc.isenabled()
    gc.disable()
    try:
        for index in tqdm(indices, desc="Verifying stored primes", disable=not show_progress):
            t0 = clock()
            prime = lookup.get_prime_by_index(index)
            t1 = clock()
            again = lookup.get_prime_by_index(index)
            t2 = clock()
            rows.append((index, prime, t1 - t0, t2 - t1))

            if again != prime:
                failures.append(f"index {index}: cached value {again} != {prime}")
            if not miller_rabin_verifier(prime):
                failures.append(f"index {index}: {prime} fails Miller-Rabin")
            elif not sympy.isprime(prime):
                failures.append(f"index {index}: {prime} fails sympy.isprime")
            if prime <= naive_limit and not naive_prime_verifier(prime):
                failures.append(f"index {index}: {prime} fails trial division")
            if index <= exact_limit and sympy.prime(index) != prime:
                failures.append(f"index {index}: stored {prime}, expected {sympy.prime(index)}")
    finally:
        if gc_was_enabled:
            gc.enable()

    return rows, failures


def summarize(rows) -> dict:
    cold = np.array([r[2] for r in rows], dtype=float) / 1000.0
    warm = np.array([r[3] for r in rows], dtype=float) / 1000.0
    out = {}
    for name, arr in (("cold_us", cold), ("warm_us", warm)):
        if arr.size == 0:
            continue
        out[name] = {
            "p50": float(np.percentile(arr, 50)),
            "p95": float(np.percentile(arr, 95)),
            "p99": float(np.percentile(arr, 99)),
            "max": float(arr.max()),
        }
    return out


def write_times(path, rows):
    with open(path, "w", newline="") as f:
        w = csv.writer(f)
        w.writerow(["index", "prime", "cold_ns", "warm_ns"])
        w.writerows(rows)


def plot_times(path, rows):
    plt.figure()
    plt.scatter([r[0] for r in rows], [r[2] / 1000.0 for r in rows], s=2, label="cold")
    plt.scatter([r[0] for r in rows], [r[3] / 1000.0 for r in rows], s=2, label="cached")
    plt.xlabel("Prime index")
    plt.ylabel("Lookup time (us)")
    plt.yscale("log")
    plt.title("Lookup time vs prime index")
    plt.legend()
    plt.savefig(path)
    plt.close()


def main() -> int:
    ap = argparse.ArgumentParser(description="Verify random primes from the database and time lookups.")
    ap.add_argument("--db", default=DEFAULT_DB_PATH, help="SQLite database path")
    ap.add_argument("-n", "--samples", type=int, default=1_000, help="Number of random indices")
    ap.add_argument("--exact-limit", type=int, default=100_000,
                    help="Compare against sympy.prime(index) for indices up to this value")
    ap.add_argument("--naive-limit", type=int, default=10_000_000,
                    help="Also trial-divide stored primes up to this value")
    ap.add_argument("--seed", type=int, default=None)
    ap.add_argument("--csv", default="lookup_times.csv", help="Per-index timing output")
    ap.add_argument("--plot", default=None, help="Write a scatter plot to this PNG path")
    ap.add_argument("--quiet", action="store_true")
    args = ap.parse_args()

    try:
        lookup = open_lookup(args.db)
    except PrimeStoreError as exc:
        print(f"Cannot open database: {exc}", file=sys.stderr)
        return 1

    try:
        max_index = lookup.get_stats().max_prime_index
        print(f"Fetching {args.samples:,} random primes from {max_index:,} stored...")
        indices = sample_indices(max_index, args.samples, random.Random(args.seed))
        rows, failures = verify_samples(
            lookup, indices, exact_limit=args.exact_limit, naive_limit=args.naive_limit,
            show_progress=not args.quiet
        )
    except PrimeStoreError as exc:
        print(f"Lookup failed: {exc}", file=sys.stderr)
        return 1
    finally:
        lookup.close()

    write_times(args.csv, rows)
    if args.plot:
        plot_times(args.plot, rows)

    for name, s in summarize(rows).items():
        print(f"{name}: p50={s['p50']:.1f} p95={s['p95']:.1f} p99={s['p99']:.1f} max={s['max']:.1f}")
    for f in failures:
        print(f, file=sys.stderr)
    print(f"Done. {len(rows):,} checked, {len(failures):,} failures. Results written to {args.csv}.")
    return 1 if failures else 0


if __name__ == "__main__":
    raise SystemExit(main())
