from __future__ import annotations

import delta_codec
from db_stats import check_partition, check_segments, display_stats, repair_status, time_lookups
from prime_cache import PrimeLookup
from segment_store import STATUS_COMPLETED, STATUS_IN_PROGRESS, STATUS_NOT_STARTED, Segment


def append_primes(store, segment_id: int, start_index: int, primes) -> None:
    store.append_segment(
        Segment(
            segment_id,
            start_index,
            start_index + len(primes) - 1,
            primes[0],
            len(primes),
            delta_codec.compress(delta_codec.gaps_from_primes(primes)),
        )
    )


def test_repair_status_moves_to_in_progress(store) -> None:
    append_primes(store, 0, 1, [2, 3, 5])
    assert store.get_status() == STATUS_NOT_STARTED
    assert repair_status(store) == (True, STATUS_IN_PROGRESS)
    assert store.get_status() == STATUS_IN_PROGRESS


def test_repair_status_leaves_empty_store(store) -> None:
    assert repair_status(store) == (False, STATUS_NOT_STARTED)


def test_repair_status_leaves_completed(built_store) -> None:
    assert repair_status(built_store) == (False, STATUS_COMPLETED)


def test_check_partition_clean(built_store) -> None:
    assert check_partition(built_store) == []


def test_check_partition_reports_gap(store) -> None:
    # Write a bad row directly; the store API itself refuses it
    append_primes(store, 0, 1, [2, 3])
    store.conn.execute(
        "INSERT INTO prime_segments (segment_id, start_index, end_index, start_prime, "
        "segment_size, compressed_deltas) VALUES (1, 5, 5, 11, 1, x'');"
    )
    store.conn.commit()
    problems = check_partition(store)
    assert len(problems) == 1
    assert "expected 3" in problems[0]


def test_check_segments_clean(built_store) -> None:
    assert check_segments(built_store) == []


def test_check_segments_reports_truncated_block(store) -> None:
    append_primes(store, 0, 1, [2, 3])
    # Declares two primes but the block ends inside a varint
    store.conn.execute(
        "INSERT INTO prime_segments (segment_id, start_index, end_index, start_prime, "
        "segment_size, compressed_deltas) VALUES (1, 3, 4, 5, 2, x'80');"
    )
    store.conn.commit()
    problems = check_segments(store)
    assert len(problems) == 1
    assert problems[0].startswith("segment 1:")
    assert check_partition(store) == []


def test_check_segments_reports_descending_start(store) -> None:
    append_primes(store, 0, 1, [2, 3, 5])
    store.conn.execute(
        "INSERT INTO prime_segments (segment_id, start_index, end_index, start_prime, "
        "segment_size, compressed_deltas) VALUES (1, 4, 4, 3, 1, x'');"
    )
    store.conn.commit()
    problems = check_segments(store)
    assert problems == ["segment 1: starts at prime 3, not above 5"]


def test_time_lookups_skips_missing(built_store) -> None:
    rows = time_lookups(PrimeLookup(built_store), 1000)
    assert [(i, p) for i, p, _ in rows] == [(1, 2), (100, 541)]


def test_display_stats(built_store, db_path, capsys) -> None:
    assert display_stats(db_path) == 0
    out = capsys.readouterr().out
    assert "Total Primes: 1,000" in out
    assert "Status: completed" in out
    assert "Prime #100: 541" in out


def test_display_stats_missing(tmp_path, capsys) -> None:
    assert display_stats(str(tmp_path / "missing.db")) == 1
    assert "not found" in capsys.readouterr().out
