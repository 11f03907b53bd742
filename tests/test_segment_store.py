from __future__ import annotations

import sqlite3

import pytest

import delta_codec
from prime_errors import (
    GenerationFailureError,
    MalformedEncodingError,
    NotFoundError,
    OutOfRangeError,
    StorageUnavailableError,
)
from segment_store import (
    STATUS_COMPLETED,
    STATUS_IN_PROGRESS,
    STATUS_NOT_STARTED,
    GenerationProgress,
    Segment,
    SegmentStore,
    initialize_store,
)


def make_segment(segment_id: int, start_index: int, primes) -> Segment:
    return Segment(
        segment_id=segment_id,
        start_index=start_index,
        end_index=start_index + len(primes) - 1,
        start_prime=primes[0],
        segment_size=len(primes),
        compressed_deltas=delta_codec.compress(delta_codec.gaps_from_primes(primes)),
    )


def test_fresh_store_stats(store) -> None:
    stats = store.get_stats()
    assert stats.max_prime_index == 0
    assert stats.total_segments == 0
    assert stats.status == STATUS_NOT_STARTED
    assert stats.target_count is None


def test_target_count_recorded(db_path) -> None:
    with initialize_store(db_path, target_prime_count=5000) as s:
        assert s.get_target_count() == 5000
        assert s.get_stats().target_count == 5000


def test_initialize_is_idempotent(db_path) -> None:
    with initialize_store(db_path) as s:
        s.set_status(STATUS_IN_PROGRESS)
    with initialize_store(db_path) as s:
        assert s.get_status() == STATUS_IN_PROGRESS


def test_append_and_find(store) -> None:
    store.append_segment(make_segment(0, 1, [2, 3, 5, 7]))
    store.append_segment(make_segment(1, 5, [11, 13, 17]))

    seg = store.find_segment_for_index(6)
    assert seg.segment_id == 1
    assert (seg.start_index, seg.end_index, seg.start_prime) == (5, 7, 11)
    assert store.find_segment_for_index(1).segment_id == 0
    assert store.find_segment_for_index(4).segment_id == 0
    assert store.find_segment_for_index(5).segment_id == 1

    stats = store.get_stats()
    assert stats.max_prime_index == 7
    assert stats.total_segments == 2


def test_find_errors(store) -> None:
    with pytest.raises(NotFoundError):
        store.find_segment_for_index(1)
    store.append_segment(make_segment(0, 1, [2, 3, 5, 7]))
    with pytest.raises(NotFoundError):
        store.find_segment_for_index(5)
    with pytest.raises(OutOfRangeError):
        store.find_segment_for_index(0)
    with pytest.raises(OutOfRangeError):
        store.find_segment_for_index(-3)


def test_boundary_mismatch_not_committed(store) -> None:
    store.append_segment(make_segment(0, 1, [2, 3, 5, 7]))
    with pytest.raises(GenerationFailureError):
        store.append_segment(make_segment(1, 6, [11, 13]))  # skips index 5
    with pytest.raises(GenerationFailureError):
        store.append_segment(make_segment(0, 5, [11, 13]))  # reused id
    with pytest.raises(GenerationFailureError):
        store.append_segment(make_segment(1, 5, [2, 3]))  # primes go backwards
    with pytest.raises(GenerationFailureError):
        store.append_segment(make_segment(1, 1, [11, 13]))
    assert store.get_stats().total_segments == 1


def test_first_segment_must_start_at_one(store) -> None:
    with pytest.raises(GenerationFailureError):
        store.append_segment(make_segment(0, 2, [3, 5]))


def test_progress_committed_with_segment(store) -> None:
    assert store.read_progress() is None
    progress = GenerationProgress(0, 10, 4, "2026-01-01T00:00:00", "2026-01-01T00:00:01", None)
    store.append_segment(make_segment(0, 1, [2, 3, 5, 7]), progress)
    assert store.read_progress() == progress

    newer = progress._replace(current_segment=1, primes_generated=7)
    store.write_progress(newer)
    assert store.read_progress() == newer


def test_status_values(store) -> None:
    store.set_status(STATUS_COMPLETED)
    assert store.get_status() == STATUS_COMPLETED
    with pytest.raises(ValueError):
        store.set_status("bogus")


def test_iter_segments_and_boundaries(store) -> None:
    store.append_segment(make_segment(0, 1, [2, 3]))
    store.append_segment(make_segment(1, 3, [5, 7]))
    store.append_segment(make_segment(2, 5, [11]))
    assert [s.segment_id for s in store.iter_segments(batch=2)] == [0, 1, 2]
    assert store.segment_boundaries() == [(0, 1, 2), (1, 3, 4), (2, 5, 5)]
    assert store.last_segment().segment_id == 2


def test_readonly_reader_sees_committed_segments(store, db_path) -> None:
    store.append_segment(make_segment(0, 1, [2, 3, 5]))
    reader = SegmentStore.open(db_path, readonly=True)
    try:
        assert reader.get_stats().max_prime_index == 3
        store.append_segment(make_segment(1, 4, [7, 11]))
        assert reader.find_segment_for_index(5).segment_id == 1
        with pytest.raises(GenerationFailureError):
            reader.append_segment(make_segment(2, 6, [13]))
    finally:
        reader.close()


def test_missing_database(tmp_path) -> None:
    with pytest.raises(StorageUnavailableError):
        SegmentStore.open(str(tmp_path / "nope.db"), readonly=True)


def test_not_a_prime_database(tmp_path) -> None:
    path = tmp_path / "other.db"
    conn = sqlite3.connect(str(path))
    conn.execute("CREATE TABLE t (x INTEGER);")
    conn.commit()
    conn.close()
    with pytest.raises(StorageUnavailableError):
        SegmentStore.open(str(path), readonly=True)


def test_row_validation() -> None:
    good = (0, 1, 4, 2, 4, b"\x01\x02\x02")
    assert Segment.from_row(good).end_index == 4
    with pytest.raises(MalformedEncodingError):
        Segment.from_row((0, 1, 4, 2, 5, b"\x01\x02\x02"))  # size disagrees with range
    with pytest.raises(MalformedEncodingError):
        Segment.from_row((0, 1, 4, "2", 4, b"\x01\x02\x02"))
    with pytest.raises(MalformedEncodingError):
        Segment.from_row((0, 1, 4, 2, 4, "not bytes"))
