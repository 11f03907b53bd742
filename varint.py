"""
Variable-length unsigned integers: 7 payload bits per byte, least significant
group first, high bit set on every byte except the last.

    encode(300) == b"\\xac\\x02"
"""

from __future__ import annotations

from typing import Tuple

from prime_errors import MalformedEncodingError


def encode(value: int) -> bytes:
    if value < 0:
        raise ValueError("varint.encode expects a non-negative integer")
    out = bytearray()
    while value >= 0x80:
        out.append((value & 0x7F) | 0x80)
        value >>= 7
    out.append(value)
    return bytes(out)


def decode(data: bytes, offset: int = 0) -> Tuple[int, int]:
    """Decode one varint starting at data[offset]. Returns (value, next_offset)."""
    result = 0
    shift = 0
    i = offset
    n = len(data)
    while i < n:
        b = data[i]
        i += 1
        result |= (b & 0x7F) << shift
        if not b & 0x80:
            return result, i
        shift += 7
    raise MalformedEncodingError(
        f"varint starting at offset {offset} runs past end of buffer ({n} bytes)"
    )
