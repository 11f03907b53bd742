from __future__ import annotations

import pytest

from gen_primes import generate
from segment_store import initialize_store


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "primes.db")


@pytest.fixture
def store(db_path):
    s = initialize_store(db_path)
    yield s
    s.close()


@pytest.fixture
def built_store(store):
    # 1000 primes in segments of 64 -> 15 full segments + one of 40
    generate(store, 1000, segment_size=64, sieve_window_size=500, show_progress=False)
    return store
