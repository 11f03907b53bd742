"""
Gap (delta) encoding of ascending prime runs.

A segment stores only its first prime plus the varint-packed gaps to each
following prime:

    [2, 3, 5, 7, 11] -> start 2, gaps [1, 2, 2, 4] -> b"\\x01\\x02\\x02\\x04"
"""

from __future__ import annotations

from typing import Iterable, List, Sequence

import varint
from prime_errors import MalformedEncodingError


def gaps_from_primes(primes: Sequence[int]) -> List[int]:
    return [primes[i] - primes[i - 1] for i in range(1, len(primes))]


def primes_from_start(start_prime: int, gaps: Iterable[int]) -> List[int]:
    primes = [start_prime]
    current = start_prime
    for gap in gaps:
        current += gap
        primes.append(current)
    return primes


def compress(gaps: Iterable[int]) -> bytes:
    out = bytearray()
    for gap in gaps:
        out += varint.encode(gap)
    return bytes(out)


def decompress(block: bytes) -> List[int]:
    """Decode every gap in block. A truncated trailing varint raises MalformedEncodingError."""
    gaps: List[int] = []
    offset = 0
    end = len(block)
    while offset < end:
        value, offset = varint.decode(block, offset)
        gaps.append(value)
    return gaps


def decode_segment(start_prime: int, block: bytes, expected_count: int = None) -> List[int]:
    """
    Rebuild the primes of one segment. When expected_count is given the block
    must hold exactly expected_count - 1 gaps.
    """
    gaps = decompress(block)
    if expected_count is not None and len(gaps) != expected_count - 1:
        raise MalformedEncodingError(
            f"gap block holds {len(gaps)} gaps, segment declares {expected_count} primes"
        )
    return primes_from_start(start_prime, gaps)
