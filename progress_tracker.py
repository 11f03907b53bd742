"""
Generation progress: cursor, throughput and ETA for a running build.

The tracker keeps the single generation_progress row up to date. Nothing
on the lookup path reads it; it only feeds status reports and the
builder's console output.
"""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Callable, NamedTuple, Optional

from segment_store import GenerationProgress


def _iso(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat(timespec="milliseconds")


class Reading(NamedTuple):
    """A measured progress record plus the figures derived with it."""

    progress: GenerationProgress
    rate: float
    percent: float
    eta: Optional[float]


class ProgressTracker:
    def __init__(
        self,
        store=None,
        target_count: int = None,
        start_time: float = None,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.target_count = target_count
        self.clock = clock
        self.start_time = clock() if start_time is None else start_time
        # Primes that were already in the store when this run started (resume)
        self.baseline = 0
        self.last: Optional[GenerationProgress] = None
        self.rate = 0.0
        self.percent = 0.0
        self.eta: Optional[float] = None

    def measure(self, segment_id: int, cursor: int, total_generated: int) -> Reading:
        """Compute a progress record without touching the tracker or the store."""
        now = self.clock()
        elapsed = now - self.start_time
        made = total_generated - self.baseline
        rate = made / elapsed if elapsed > 0 else 0.0

        percent = self.percent
        eta = None
        if self.target_count:
            percent = min(100.0, total_generated / self.target_count * 100)
            remaining = max(0, self.target_count - total_generated)
            if remaining == 0:
                eta = now
            elif rate > 0:
                eta = now + remaining / rate

        progress = GenerationProgress(
            current_segment=segment_id,
            current_number=cursor,
            primes_generated=total_generated,
            start_time=_iso(self.start_time),
            last_update=_iso(now),
            estimated_completion=None if eta is None else _iso(eta),
        )
        return Reading(progress, rate, percent, eta)

    def accept(self, reading: Reading) -> GenerationProgress:
        """Make reading the current state, once its record has been committed."""
        self.last = reading.progress
        self.rate = reading.rate
        self.percent = reading.percent
        self.eta = reading.eta
        return self.last

    def record_progress(self, segment_id: int, cursor: int, total_generated: int) -> GenerationProgress:
        """Overwrite the progress record. A failed write leaves the tracker unchanged."""
        reading = self.measure(segment_id, cursor, total_generated)
        if self.store is not None:
            self.store.write_progress(reading.progress)
        return self.accept(reading)

    def summary(self) -> str:
        """One console line, the same shape the builder prints every N segments."""
        if self.last is None:
            return "Progress: no segments written yet"
        eta = "unknown"
        if self.eta is not None:
            eta = datetime.fromtimestamp(self.eta, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")
        return (
            f"Progress: {self.percent:.2f}% | Segment {self.last.current_segment:,} | "
            f"{self.last.primes_generated:,} primes | Rate: {self.rate:,.0f}/sec | ETA: {eta}"
        )
