"""
Exception types raised by the prime index store.

  PrimeStoreError
    MalformedEncodingError     bad varint / gap block
    IndexLookupError           index has no prime (reason: not_found | out_of_range)
      NotFoundError
      OutOfRangeError
    StorageUnavailableError    sqlite file missing or unusable (retryable)
    GenerationFailureError     builder invariant violated, build must stop
"""

from __future__ import annotations


class PrimeStoreError(Exception):
    """Base class for every error raised by the store."""


class MalformedEncodingError(PrimeStoreError, ValueError):
    pass


class IndexLookupError(PrimeStoreError, LookupError):
    reason = "lookup"

    def __init__(self, index, message: str = None):
        self.index = index
        if message is None:
            message = f"Prime index {index} not available ({self.reason})"
        super().__init__(message)


class NotFoundError(IndexLookupError):
    """No committed segment covers the index (not generated yet, or empty store)."""

    reason = "not_found"


class OutOfRangeError(IndexLookupError):
    """Index is not a positive integer."""

    reason = "out_of_range"


class StorageUnavailableError(PrimeStoreError):
    """The database could not be opened or queried. Callers may retry."""


class GenerationFailureError(PrimeStoreError):
    pass
