"""
Error types raised by the market-data layer.

Hierarchy:
    FetchError
        TransientFetchError      retried with backoff (network, timeout, non-2xx)
            RateLimitedError     retried after the server's Retry-After
        FatalFetchError          retries exhausted, wraps the last cause
        DataValidationError      malformed payload, never retried
    AssemblyError
        NoDataError              no candle survived range assembly
    InvalidDateRangeError        unparseable request dates
"""

from typing import Optional


class FetchError(Exception):
    """Base class for candle fetch failures."""


class TransientFetchError(FetchError):
    """Failure that may succeed on a later attempt."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class RateLimitedError(TransientFetchError):
    """HTTP 429 from the quote source."""

    def __init__(self, retry_after: float):
        super().__init__(f"Rate limited, retry after {retry_after:g}s", status_code=429)
        self.retry_after = retry_after


class FatalFetchError(FetchError):
    """All attempts failed. The last failure is attached as __cause__."""

    def __init__(self, message: str, attempts: int):
        super().__init__(message)
        self.attempts = attempts


class DataValidationError(FetchError):
    """Quote-source payload does not have the expected shape."""


class AssemblyError(Exception):
    """Base class for historical range assembly failures."""


class NoDataError(AssemblyError):
    """The requested range produced no candles."""


class InvalidDateRangeError(ValueError):
    """A request date could not be parsed."""
