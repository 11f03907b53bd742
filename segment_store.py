"""
SQLite segment store.

Schema:
  prime_segments(segment_id INTEGER PRIMARY KEY, start_index, end_index,
                 start_prime, segment_size, compressed_deltas BLOB, created_at)
  database_metadata(key TEXT PRIMARY KEY, value TEXT, updated_at)
  generation_progress(id = 1, current_segment, current_number,
                      primes_generated, start_time, last_update,
                      estimated_completion)

Segments are append-only. Each append commits the segment row (and,
optionally, the progress row) in a single transaction, so a reader on
another connection sees either the whole segment or nothing.
"""

from __future__ import annotations

import os
import sqlite3
import threading
from pathlib import Path
from typing import Iterator, List, NamedTuple, Optional

from prime_errors import (
    GenerationFailureError,
    MalformedEncodingError,
    NotFoundError,
    OutOfRangeError,
    StorageUnavailableError,
)


DEFAULT_DB_PATH = os.path.join("database", "primes.db")

STATUS_NOT_STARTED = "not_started"
STATUS_IN_PROGRESS = "in_progress"
STATUS_COMPLETED = "completed"
STATUSES = (STATUS_NOT_STARTED, STATUS_IN_PROGRESS, STATUS_COMPLETED)

SCHEMA = """
CREATE TABLE IF NOT EXISTS prime_segments (
    segment_id        INTEGER PRIMARY KEY,
    start_index       INTEGER NOT NULL,
    end_index         INTEGER NOT NULL,
    start_prime       INTEGER NOT NULL,
    segment_size      INTEGER NOT NULL,
    compressed_deltas BLOB    NOT NULL,
    created_at        TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ','now'))
);
CREATE UNIQUE INDEX IF NOT EXISTS idx_segments_start ON prime_segments(start_index);
CREATE INDEX IF NOT EXISTS idx_segments_end ON prime_segments(end_index);

CREATE TABLE IF NOT EXISTS database_metadata (
    key        TEXT PRIMARY KEY,
    value      TEXT NOT NULL,
    updated_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ','now'))
);

CREATE TABLE IF NOT EXISTS generation_progress (
    id                   INTEGER PRIMARY KEY CHECK (id = 1),
    current_segment      INTEGER NOT NULL,
    current_number       INTEGER NOT NULL,
    primes_generated     INTEGER NOT NULL,
    start_time           TEXT    NOT NULL,
    last_update          TEXT    NOT NULL,
    estimated_completion TEXT
);
"""

_SEGMENT_COLUMNS = "segment_id, start_index, end_index, start_prime, segment_size, compressed_deltas"


class Segment(NamedTuple):
    segment_id: int
    start_index: int
    end_index: int
    start_prime: int
    segment_size: int
    compressed_deltas: bytes

    @classmethod
    def from_row(cls, row) -> "Segment":
        """Validate a prime_segments row."""
        segment_id, start_index, end_index, start_prime, segment_size, blob = row
        for name, value in (
            ("segment_id", segment_id),
            ("start_index", start_index),
            ("end_index", end_index),
            ("start_prime", start_prime),
            ("segment_size", segment_size),
        ):
            if not isinstance(value, int):
                raise MalformedEncodingError(f"segment column {name} is not an integer: {value!r}")
        if not isinstance(blob, (bytes, bytearray, memoryview)):
            raise MalformedEncodingError(f"segment {segment_id}: compressed_deltas is not a blob")
        if start_index < 1 or end_index < start_index:
            raise MalformedEncodingError(
                f"segment {segment_id}: bad index range [{start_index}, {end_index}]"
            )
        if segment_size != end_index - start_index + 1:
            raise MalformedEncodingError(
                f"segment {segment_id}: segment_size {segment_size} does not match "
                f"range [{start_index}, {end_index}]"
            )
        return cls(segment_id, start_index, end_index, start_prime, segment_size, bytes(blob))

    def contains(self, index: int) -> bool:
        return self.start_index <= index <= self.end_index


class StoreStats(NamedTuple):
    max_prime_index: int
    total_segments: int
    status: Optional[str]
    target_count: Optional[int]


class GenerationProgress(NamedTuple):
    current_segment: int
    current_number: int
    primes_generated: int
    start_time: str
    last_update: str
    estimated_completion: Optional[str]


def _connect(path: str, readonly: bool) -> sqlite3.Connection:
    if readonly:
        if not os.path.exists(path):
            raise StorageUnavailableError(f"Prime database not found: {path}")
        uri = Path(path).resolve().as_uri() + "?mode=ro"
        return sqlite3.connect(uri, uri=True, check_same_thread=False)
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    return sqlite3.connect(path, check_same_thread=False)


class SegmentStore:
    """
    Owns one sqlite connection. Use initialize_store() to create a database
    for building, SegmentStore.open() for read-only query access.
    """

    def __init__(self, conn: sqlite3.Connection, path: str = None, readonly: bool = False):
        self.conn = conn
        self.path = path
        self.readonly = readonly
        self._lock = threading.Lock()

    @classmethod
    def open(cls, path: str = DEFAULT_DB_PATH, readonly: bool = True) -> "SegmentStore":
        try:
            conn = _connect(path, readonly)
            store = cls(conn, path, readonly)
            if readonly:
                # Fail now rather than on first lookup if this is not a prime database
                store._fetchone("SELECT COUNT(*) FROM prime_segments;")
            return store
        except sqlite3.Error as exc:
            raise StorageUnavailableError(f"Cannot open prime database {path}: {exc}") from exc
        except OSError as exc:
            raise StorageUnavailableError(f"Cannot open prime database {path}: {exc}") from exc

    # -- low level -------------------------------------------------------

    def _fetchone(self, sql: str, params=()):
        with self._lock:
            try:
                return self.conn.execute(sql, params).fetchone()
            except sqlite3.Error as exc:
                raise StorageUnavailableError(f"Query failed: {exc}") from exc

    def _fetchall(self, sql: str, params=()):
        with self._lock:
            try:
                return self.conn.execute(sql, params).fetchall()
            except sqlite3.Error as exc:
                raise StorageUnavailableError(f"Query failed: {exc}") from exc

    def close(self) -> None:
        if self.conn is not None:
            self.conn.close()
            self.conn = None

    def __enter__(self) -> "SegmentStore":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # -- schema / metadata -----------------------------------------------

    def create_schema(self, target_prime_count: int = None) -> None:
        with self._lock:
            try:
                cur = self.conn.cursor()
                # Speed-oriented pragmas for bulk building; WAL lets readers run alongside
                cur.execute("PRAGMA journal_mode = WAL;")
                cur.execute("PRAGMA synchronous = NORMAL;")
                cur.execute("PRAGMA temp_store = MEMORY;")
                cur.execute("PRAGMA cache_size = -200000;")  # ~200MB cache (negative = KB)
                cur.executescript(SCHEMA)
                cur.execute(
                    "INSERT OR IGNORE INTO database_metadata(key, value) VALUES ('generation_status', ?);",
                    (STATUS_NOT_STARTED,),
                )
                if target_prime_count is not None:
                    cur.execute(
                        """
                        INSERT INTO database_metadata(key, value) VALUES ('target_prime_count', ?)
                        ON CONFLICT(key) DO UPDATE SET
                            value=excluded.value,
                            updated_at=strftime('%Y-%m-%dT%H:%M:%fZ','now');
                        """,
                        (str(int(target_prime_count)),),
                    )
                self.conn.commit()
            except sqlite3.Error as exc:
                raise StorageUnavailableError(f"Cannot create schema: {exc}") from exc

    def get_metadata(self, key: str) -> Optional[str]:
        row = self._fetchone("SELECT value FROM database_metadata WHERE key = ?;", (key,))
        return None if row is None else row[0]

    def set_metadata(self, key: str, value) -> None:
        with self._lock:
            try:
                with self.conn:
                    self.conn.execute(
                        """
                        INSERT INTO database_metadata(key, value) VALUES (?, ?)
                        ON CONFLICT(key) DO UPDATE SET
                            value=excluded.value,
                            updated_at=strftime('%Y-%m-%dT%H:%M:%fZ','now');
                        """,
                        (key, str(value)),
                    )
            except sqlite3.Error as exc:
                raise StorageUnavailableError(f"Cannot write metadata {key}: {exc}") from exc

    def get_status(self) -> Optional[str]:
        return self.get_metadata("generation_status")

    def set_status(self, status: str) -> None:
        if status not in STATUSES:
            raise ValueError(f"unknown generation status {status!r}")
        self.set_metadata("generation_status", status)

    def get_target_count(self) -> Optional[int]:
        value = self.get_metadata("target_prime_count")
        return None if value is None else int(value)

    # -- segments: write side --------------------------------------------

    def last_segment(self) -> Optional[Segment]:
        row = self._fetchone(
            f"SELECT {_SEGMENT_COLUMNS} FROM prime_segments ORDER BY segment_id DESC LIMIT 1;"
        )
        return None if row is None else Segment.from_row(row)

    def append_segment(self, segment: Segment, progress: GenerationProgress = None) -> None:
        """
        Commit one segment (and optionally the progress row) atomically.
        Raises GenerationFailureError if the segment does not continue the
        store exactly: next segment_id, start_index = previous end_index + 1,
        start_prime above the previous segment's first prime.
        """
        if self.readonly:
            raise GenerationFailureError("store was opened read-only")
        if segment.segment_size != segment.end_index - segment.start_index + 1:
            raise GenerationFailureError(
                f"segment {segment.segment_id}: size {segment.segment_size} does not match "
                f"range [{segment.start_index}, {segment.end_index}]"
            )

        with self._lock:
            try:
                with self.conn:
                    prev = self.conn.execute(
                        "SELECT segment_id, end_index, start_prime FROM prime_segments "
                        "ORDER BY segment_id DESC LIMIT 1;"
                    ).fetchone()
                    if prev is None:
                        expected_id, expected_start = 0, 1
                    else:
                        expected_id, expected_start = prev[0] + 1, prev[1] + 1
                        if segment.start_prime <= prev[2]:
                            raise GenerationFailureError(
                                f"segment {segment.segment_id}: start_prime {segment.start_prime} "
                                f"does not follow previous segment"
                            )
                    if segment.segment_id != expected_id or segment.start_index != expected_start:
                        raise GenerationFailureError(
                            f"segment boundary mismatch: got id={segment.segment_id} "
                            f"start_index={segment.start_index}, expected id={expected_id} "
                            f"start_index={expected_start}"
                        )

                    self.conn.execute(
                        f"INSERT INTO prime_segments ({_SEGMENT_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?);",
                        (
                            segment.segment_id,
                            segment.start_index,
                            segment.end_index,
                            segment.start_prime,
                            segment.segment_size,
                            sqlite3.Binary(segment.compressed_deltas),
                        ),
                    )
                    if progress is not None:
                        self._write_progress(progress)
            except sqlite3.Error as exc:
                raise StorageUnavailableError(
                    f"Cannot write segment {segment.segment_id}: {exc}"
                ) from exc

    # -- progress --------------------------------------------------------

    def _write_progress(self, p: GenerationProgress) -> None:
        self.conn.execute(
            """
            INSERT OR REPLACE INTO generation_progress
                (id, current_segment, current_number, primes_generated,
                 start_time, last_update, estimated_completion)
            VALUES (1, ?, ?, ?, ?, ?, ?);
            """,
            tuple(p),
        )

    def write_progress(self, progress: GenerationProgress) -> None:
        with self._lock:
            try:
                with self.conn:
                    self._write_progress(progress)
            except sqlite3.Error as exc:
                raise StorageUnavailableError(f"Cannot write progress: {exc}") from exc

    def read_progress(self) -> Optional[GenerationProgress]:
        row = self._fetchone(
            "SELECT current_segment, current_number, primes_generated, start_time, "
            "last_update, estimated_completion FROM generation_progress WHERE id = 1;"
        )
        return None if row is None else GenerationProgress(*row)

    # -- segments: query side --------------------------------------------

    def find_segment_for_index(self, index: int) -> Segment:
        """
        Return the segment whose [start_index, end_index] contains index.
        Range lookup on the start_index B-tree, O(log S).
        """
        if not isinstance(index, int) or isinstance(index, bool) or index < 1:
            raise OutOfRangeError(index)
        row = self._fetchone(
            f"SELECT {_SEGMENT_COLUMNS} FROM prime_segments "
            "WHERE start_index <= ? ORDER BY start_index DESC LIMIT 1;",
            (index,),
        )
        if row is None:
            raise NotFoundError(index, f"Prime index {index} not found in database")
        segment = Segment.from_row(row)
        if not segment.contains(index):
            raise NotFoundError(index, f"Prime index {index} not found in database")
        return segment

    def iter_segments(self, batch: int = 256) -> Iterator[Segment]:
        """All segments in segment_id order, fetched in batches."""
        last_id = -1
        while True:
            rows = self._fetchall(
                f"SELECT {_SEGMENT_COLUMNS} FROM prime_segments "
                "WHERE segment_id > ? ORDER BY segment_id LIMIT ?;",
                (last_id, batch),
            )
            if not rows:
                return
            for row in rows:
                yield Segment.from_row(row)
            last_id = rows[-1][0]

    def segment_boundaries(self) -> List[tuple]:
        """(segment_id, start_index, end_index) for every segment, ascending."""
        return self._fetchall(
            "SELECT segment_id, start_index, end_index FROM prime_segments ORDER BY segment_id;"
        )

    def get_stats(self) -> StoreStats:
        row = self._fetchone(
            """
            SELECT
                (SELECT COALESCE(MAX(end_index), 0) FROM prime_segments),
                (SELECT COUNT(*) FROM prime_segments),
                (SELECT value FROM database_metadata WHERE key = 'generation_status'),
                (SELECT value FROM database_metadata WHERE key = 'target_prime_count');
            """
        )
        max_index, total, status, target = row
        return StoreStats(
            max_prime_index=int(max_index),
            total_segments=int(total),
            status=status,
            target_count=None if target is None else int(target),
        )


def initialize_store(path: str = DEFAULT_DB_PATH, target_prime_count: int = None) -> SegmentStore:
    """Open (creating if needed) a writable store and make sure the schema exists."""
    store = SegmentStore.open(path, readonly=False)
    try:
        store.create_schema(target_prime_count)
    except StorageUnavailableError:
        store.close()
        raise
    return store
