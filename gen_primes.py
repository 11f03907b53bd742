#!/usr/bin/env python3
"""
Segmented sieve -> SQLite prime segment database.

Primes are sieved window by window, grouped SEGMENT_SIZE at a time, gap
encoded and varint packed, and written as one immutable row per group:

  prime_segments(segment_id, start_index, end_index, start_prime,
                 segment_size, compressed_deltas)

A segment is the unit of durability. Primes buffered for a segment that has
not been written yet are lost if the build is interrupted; --resume picks up
after the last written segment.

Default target is 10 billion primes.
"""

from __future__ import annotations

import argparse
import os
import sys
import time
from typing import List

from tqdm import tqdm

import delta_codec
from prime_errors import GenerationFailureError, PrimeStoreError
from prime_sieve import DEFAULT_SIEVE_WINDOW, SegmentedSieve
from progress_tracker import ProgressTracker
from segment_store import (
    DEFAULT_DB_PATH,
    STATUS_COMPLETED,
    STATUS_IN_PROGRESS,
    Segment,
    SegmentStore,
    initialize_store,
)


DEFAULT_TARGET_PRIME_COUNT = 10_000_000_000
DEFAULT_SEGMENT_SIZE = 1_000_000     # primes per stored segment
PROGRESS_LOG_INTERVAL = 100          # print a progress line every N segments


class PrimeStoreBuilder:
    def __init__(
        self,
        store: SegmentStore,
        target_count: int,
        segment_size: int = DEFAULT_SEGMENT_SIZE,
        sieve_window_size: int = DEFAULT_SIEVE_WINDOW,
        resume: bool = False,
        progress_every: int = PROGRESS_LOG_INTERVAL,
        show_progress: bool = True,
        tracker: ProgressTracker = None,
    ):
        for name, value in (
            ("target_count", target_count),
            ("segment_size", segment_size),
            ("sieve_window_size", sieve_window_size),
            ("progress_every", progress_every),
        ):
            if value < 1:
                raise ValueError(f"{name} must be >= 1")
        self.store = store
        self.target_count = target_count
        self.segment_size = segment_size
        self.sieve_window_size = sieve_window_size
        self.resume = resume
        self.progress_every = progress_every
        self.show_progress = show_progress
        self.tracker = tracker or ProgressTracker(store, target_count)

        self.next_segment_id = 0
        self.next_index = 1
        self.last_prime = 0
        self.primes_generated = 0
        self.segments_written = 0

    def _load_position(self) -> None:
        last = self.store.last_segment()
        if last is None:
            return
        if not self.resume:
            raise GenerationFailureError(
                f"{self.store.path} already holds {last.segment_id + 1:,} segments; "
                "use resume to continue it"
            )
        primes = delta_codec.decode_segment(last.start_prime, last.compressed_deltas, last.segment_size)
        self.next_segment_id = last.segment_id + 1
        self.next_index = last.end_index + 1
        self.last_prime = primes[-1]
        self.primes_generated = last.end_index
        self.tracker.baseline = last.end_index

    def _flush(self, buffer: List[int], cursor: int) -> Segment:
        if buffer[0] <= self.last_prime:
            raise GenerationFailureError(
                f"segment {self.next_segment_id}: first prime {buffer[0]} does not follow "
                f"previous prime {self.last_prime}"
            )
        start_index = self.next_index
        end_index = start_index + len(buffer) - 1
        segment = Segment(
            segment_id=self.next_segment_id,
            start_index=start_index,
            end_index=end_index,
            start_prime=buffer[0],
            segment_size=len(buffer),
            compressed_deltas=delta_codec.compress(delta_codec.gaps_from_primes(buffer)),
        )
        reading = self.tracker.measure(segment.segment_id, cursor, end_index)
        self.store.append_segment(segment, reading.progress)
        self.tracker.accept(reading)

        self.next_segment_id += 1
        self.next_index = end_index + 1
        self.last_prime = buffer[-1]
        self.primes_generated = end_index
        self.segments_written += 1
        return segment

    def generate(self) -> int:
        """Build until target_count primes are stored. Returns the number of primes stored."""
        self._load_position()
        if self.primes_generated >= self.target_count:
            self.store.set_status(STATUS_COMPLETED)
            return self.primes_generated

        self.store.set_metadata("target_prime_count", self.target_count)
        self.store.set_status(STATUS_IN_PROGRESS)

        sieve = SegmentedSieve(self.sieve_window_size, start=self.last_prime + 1)
        buffer: List[int] = []
        bar = tqdm(
            total=self.target_count,
            initial=self.primes_generated,
            unit="primes",
            unit_scale=True,
            desc="Generating primes",
            disable=not self.show_progress,
        )
        try:
            while self.primes_generated < self.target_count:
                window = sieve.next_window()
                pos = 0
                while pos < len(window):
                    room = min(
                        self.segment_size - len(buffer),
                        self.target_count - self.primes_generated - len(buffer),
                    )
                    take = window[pos : pos + room]
                    buffer.extend(take)
                    pos += len(take)

                    if len(buffer) == self.segment_size or (
                        self.primes_generated + len(buffer) == self.target_count
                    ):
                        segment = self._flush(buffer, sieve.cursor)
                        bar.update(segment.segment_size)
                        buffer = []
                        if self.show_progress and segment.segment_id % self.progress_every == 0:
                            tqdm.write(self.tracker.summary())
                        if self.primes_generated >= self.target_count:
                            break
        finally:
            bar.close()

        self.store.set_status(STATUS_COMPLETED)
        return self.primes_generated


def generate(
    store: SegmentStore,
    target_count: int,
    segment_size: int = DEFAULT_SEGMENT_SIZE,
    sieve_window_size: int = DEFAULT_SIEVE_WINDOW,
    **kwargs,
) -> int:
    return PrimeStoreBuilder(store, target_count, segment_size, sieve_window_size, **kwargs).generate()


def run(
    target: int,
    db_path: str,
    segment_size: int,
    sieve_window: int,
    resume: bool,
    quiet: bool,
    progress_every: int,
) -> None:
    if not quiet:
        print("Starting prime database generation...")
        print(f"Target: {target:,} primes")
        print(f"Segment size: {segment_size:,} primes")
        print(f"Sieve window: {sieve_window:,} numbers")
        print(f"Database: {db_path}")
        print("")

    t0 = time.time()
    store = initialize_store(db_path)
    try:
        builder = PrimeStoreBuilder(
            store,
            target,
            segment_size=segment_size,
            sieve_window_size=sieve_window,
            resume=resume,
            progress_every=progress_every,
            show_progress=not quiet,
        )
        generated = builder.generate()
        stats = store.get_stats()
    finally:
        store.close()

    dt = time.time() - t0
    size_gb = os.path.getsize(db_path) / 1024 / 1024 / 1024
    print(f"Done. Generated {generated:,} primes in {dt / 60:.1f} minutes.")
    print(f"Total segments: {stats.total_segments:,} (this run: {builder.segments_written:,})")
    print(f"Database size: {size_gb:.2f} GB")


def main() -> int:
    ap = argparse.ArgumentParser(description="Build the compressed prime segment database.")
    ap.add_argument("--db", default=DEFAULT_DB_PATH, help="SQLite database path")
    ap.add_argument("--target", type=int, default=DEFAULT_TARGET_PRIME_COUNT,
                    help="Number of primes to store (default 10 billion)")
    ap.add_argument("--segment-size", type=int, default=DEFAULT_SEGMENT_SIZE,
                    help="Primes per stored segment. Default 1M.")
    ap.add_argument("--sieve-window", type=int, default=DEFAULT_SIEVE_WINDOW,
                    help="Integers sieved per window. Default 100M (~100MB).")
    ap.add_argument("--progress-every", type=int, default=PROGRESS_LOG_INTERVAL,
                    help="Print a progress line every N segments.")
    ap.add_argument("--resume", action="store_true",
                    help="Continue after the last segment already in the database.")
    ap.add_argument("--quiet", action="store_true", help="No banner or progress bar.")
    args = ap.parse_args()

    for flag, value in (
        ("--target", args.target),
        ("--segment-size", args.segment_size),
        ("--sieve-window", args.sieve_window),
        ("--progress-every", args.progress_every),
    ):
        if value < 1:
            ap.error(f"{flag} must be >= 1")

    try:
        run(
            target=args.target,
            db_path=args.db,
            segment_size=args.segment_size,
            sieve_window=args.sieve_window,
            resume=args.resume,
            quiet=args.quiet,
            progress_every=args.progress_every,
        )
    except KeyboardInterrupt:
        print("\nInterrupted. Segments written so far are kept; buffered primes were discarded.",
              file=sys.stderr)
        return 130
    except PrimeStoreError as exc:
        print(f"Error during database generation: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
