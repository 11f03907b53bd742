#!/usr/bin/env python3
"""
Print statistics for a prime segment database: stored primes, target,
progress, status, segment count, file size, a few timed lookups and the
cache counters afterwards.

  --fix-status   a database that has segments but still says not_started
                 (builder killed before its first status write) is moved
                 to in_progress.
  --check        walk every segment boundary and report gaps or overlaps,
                 then decode every segment and check primes keep ascending.
"""

from __future__ import annotations

import argparse
import os
import sys
import time
from typing import List, Tuple

import delta_codec
from prime_cache import PrimeLookup, open_lookup
from prime_errors import MalformedEncodingError, PrimeStoreError
from segment_store import (
    DEFAULT_DB_PATH,
    STATUS_IN_PROGRESS,
    STATUS_NOT_STARTED,
    SegmentStore,
)


TEST_INDICES = (1, 100, 10_000, 1_000_000)


def repair_status(store: SegmentStore) -> Tuple[bool, str]:
    """Returns (changed, status after the call)."""
    stats = store.get_stats()
    if stats.total_segments > 0 and stats.status == STATUS_NOT_STARTED:
        store.set_status(STATUS_IN_PROGRESS)
        return True, STATUS_IN_PROGRESS
    return False, stats.status


def check_partition(store: SegmentStore) -> List[str]:
    """Problems with the segment index ranges; empty when they tile [1, max] exactly."""
    problems = []
    expected_id, expected_start = 0, 1
    for segment_id, start_index, end_index in store.segment_boundaries():
        if segment_id != expected_id:
            problems.append(f"segment id {segment_id}: expected {expected_id}")
        if start_index != expected_start:
            problems.append(
                f"segment {segment_id}: starts at {start_index:,}, expected {expected_start:,}"
            )
        if end_index < start_index:
            problems.append(f"segment {segment_id}: empty range [{start_index:,}, {end_index:,}]")
        expected_id, expected_start = segment_id + 1, end_index + 1
    return problems


def check_segments(store: SegmentStore) -> List[str]:
    """
    Decode every segment. Reports blocks that do not decode to their declared
    size and segments whose first prime does not lie above the previous
    segment's last prime.
    """
    problems = []
    last_prime = 0
    try:
        for seg in store.iter_segments():
            try:
                primes = delta_codec.decode_segment(seg.start_prime, seg.compressed_deltas, seg.segment_size)
            except MalformedEncodingError as exc:
                problems.append(f"segment {seg.segment_id}: {exc}")
                last_prime = seg.start_prime
                continue
            if primes[0] <= last_prime:
                problems.append(
                    f"segment {seg.segment_id}: starts at prime {primes[0]:,}, not above {last_prime:,}"
                )
            last_prime = primes[-1]
    except MalformedEncodingError as exc:
        problems.append(str(exc))
    return problems


def time_lookups(lookup: PrimeLookup, max_index: int, indices=TEST_INDICES) -> List[Tuple[int, int, float]]:
    """(index, prime, ms) for every test index that has been generated."""
    out = []
    for index in indices:
        if index > max_index:
            continue
        t0 = time.perf_counter_ns()
        prime = lookup.get_prime_by_index(index)
        t1 = time.perf_counter_ns()
        out.append((index, prime, (t1 - t0) / 1_000_000.0))
    return out


def display_stats(db_path: str) -> int:
    if not os.path.exists(db_path):
        print("Prime database not found!")
        print("   Run: python gen_primes.py --db " + db_path)
        return 1

    lookup = open_lookup(db_path)
    try:
        stats = lookup.get_stats()
        size_bytes = os.path.getsize(db_path)
        target = stats.target_count or 0
        percent = stats.max_prime_index / target * 100 if target else 0.0

        print("")
        print("PRIME DATABASE STATISTICS")
        print("=" * 50)
        print(f"Total Primes: {stats.max_prime_index:,}")
        print(f"Target Count: {target:,}")
        print(f"Progress: {percent:.2f}%")
        print(f"Status: {stats.status}")
        print(f"Segments: {stats.total_segments:,}")
        print(f"File Size: {size_bytes / 1024 ** 3:.2f} GB ({size_bytes / 1024 ** 2:.1f} MB)")
        print(f"Location: {db_path}")

        progress = lookup.store.read_progress()
        if progress is not None:
            print(f"Last update: {progress.last_update}  (sieve at {progress.current_number:,})")
            if progress.estimated_completion:
                print(f"Estimated completion: {progress.estimated_completion}")

        if stats.max_prime_index > 0:
            print("")
            print("PERFORMANCE TEST")
            print("-" * 30)
            for index, prime, ms in time_lookups(lookup, stats.max_prime_index):
                print(f"Prime #{index:,}: {prime:,} ({ms:.3f}ms)")

            cs = lookup.cache_stats()
            print("")
            print("CACHE STATISTICS")
            print("-" * 30)
            print(f"Segments cached: {cs['segment_entries']}/{cs['segment_capacity']}")
            print(f"Points cached: {cs['point_entries']}/{cs['point_capacity']}")
            print(f"Hit rate: {cs['hit_rate']:.1%}")
        print("")
    finally:
        lookup.close()
    return 0


def main() -> int:
    ap = argparse.ArgumentParser(description="Prime database statistics.")
    ap.add_argument("--db", default=DEFAULT_DB_PATH, help="SQLite database path")
    ap.add_argument("--fix-status", action="store_true",
                    help="Set status to in_progress if segments exist but status is not_started.")
    ap.add_argument("--check", action="store_true", help="Verify segment ranges are contiguous and every segment decodes.")
    args = ap.parse_args()

    try:
        if args.fix_status:
            if not os.path.exists(args.db):
                print(f"Prime database not found: {args.db}", file=sys.stderr)
                return 1
            with SegmentStore.open(args.db, readonly=False) as store:
                changed, status = repair_status(store)
            if changed:
                print(f'Status updated to "{status}"')
            else:
                print(f"Status is already correct: {status}")
            return 0

        if args.check:
            with SegmentStore.open(args.db, readonly=True) as store:
                problems = check_partition(store) + check_segments(store)
            for p in problems:
                print(p, file=sys.stderr)
            print(f"{len(problems)} problem(s) found")
            return 1 if problems else 0

        return display_stats(args.db)
    except PrimeStoreError as exc:
        print(f"Error reading database: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
