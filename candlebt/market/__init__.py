"""
Market data access: candle model, cached repository and range assembly.
"""

from candlebt.market.candle_repository import CacheStats, CandleRepository, RetryPolicy
from candlebt.market.errors import (
    AssemblyError,
    DataValidationError,
    FatalFetchError,
    FetchError,
    InvalidDateRangeError,
    NoDataError,
    RateLimitedError,
    TransientFetchError,
)
from candlebt.market.models import Candle, Interval, candles_to_frame
from candlebt.market.range_assembler import HistoricalRangeAssembler

__all__ = [
    "AssemblyError",
    "CacheStats",
    "Candle",
    "CandleRepository",
    "DataValidationError",
    "FatalFetchError",
    "FetchError",
    "HistoricalRangeAssembler",
    "Interval",
    "InvalidDateRangeError",
    "NoDataError",
    "RateLimitedError",
    "RetryPolicy",
    "TransientFetchError",
    "candles_to_frame",
]
