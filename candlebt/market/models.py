"""
Candle model, interval vocabulary and wire-row parsing.

The quote source returns each candle as a 12-element JSON array:

    [open_time_ms, "open", "high", "low", "close", "volume",
     close_time_ms, "quote_volume", trade_count,
     "taker_buy_base_volume", "taker_buy_quote_volume", "ignore"]

Prices and volumes arrive as decimal strings. The trailing element carries
no information and is dropped.
"""

from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Iterable, Sequence

import pandas as pd

from candlebt.market.errors import DataValidationError

WIRE_ROW_LENGTH = 12

FRAME_COLUMNS = [
    "open_time",
    "open",
    "high",
    "low",
    "close",
    "volume",
    "close_time",
    "quote_volume",
    "trade_count",
    "taker_buy_base_volume",
    "taker_buy_quote_volume",
]


class Interval(str, Enum):
    """Candle durations understood by the quote source."""
    ONE_MINUTE = "1m"
    FIVE_MINUTES = "5m"
    FIFTEEN_MINUTES = "15m"
    THIRTY_MINUTES = "30m"
    ONE_HOUR = "1h"
    TWO_HOURS = "2h"
    FOUR_HOURS = "4h"
    SIX_HOURS = "6h"
    EIGHT_HOURS = "8h"
    TWELVE_HOURS = "12h"
    ONE_DAY = "1d"
    THREE_DAYS = "3d"
    ONE_WEEK = "1w"
    ONE_MONTH = "1M"  # Treated as a fixed 30 days

    @property
    def duration(self) -> timedelta:
        return _DURATIONS[self]

    @classmethod
    def parse(cls, token: "str | Interval") -> "Interval":
        """Parse an interval token. Case matters: 1m is a minute, 1M a month."""
        if isinstance(token, Interval):
            return token
        try:
            return cls(token)
        except ValueError:
            valid = ", ".join(member.value for member in cls)
            raise ValueError(f"Unknown interval '{token}'. Valid intervals: {valid}") from None


_DURATIONS = {
    Interval.ONE_MINUTE: timedelta(minutes=1),
    Interval.FIVE_MINUTES: timedelta(minutes=5),
    Interval.FIFTEEN_MINUTES: timedelta(minutes=15),
    Interval.THIRTY_MINUTES: timedelta(minutes=30),
    Interval.ONE_HOUR: timedelta(hours=1),
    Interval.TWO_HOURS: timedelta(hours=2),
    Interval.FOUR_HOURS: timedelta(hours=4),
    Interval.SIX_HOURS: timedelta(hours=6),
    Interval.EIGHT_HOURS: timedelta(hours=8),
    Interval.TWELVE_HOURS: timedelta(hours=12),
    Interval.ONE_DAY: timedelta(days=1),
    Interval.THREE_DAYS: timedelta(days=3),
    Interval.ONE_WEEK: timedelta(weeks=1),
    Interval.ONE_MONTH: timedelta(days=30),
}


def to_epoch_ms(moment: datetime) -> int:
    """Convert a datetime to epoch milliseconds. Naive values are taken as UTC."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return int(moment.timestamp() * 1000)


def from_epoch_ms(value: int) -> datetime:
    """Convert epoch milliseconds to an aware UTC datetime."""
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc)


@dataclass(frozen=True)
class Candle:
    """One OHLCV bar. Immutable once parsed."""

    open_time: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float
    close_time: datetime
    quote_volume: float
    trade_count: int
    taker_buy_base_volume: float
    taker_buy_quote_volume: float

    @classmethod
    def from_wire(cls, row: Sequence[Any]) -> "Candle":
        """
        Parse one quote-source row.

        Args:
            row: 12-element array as returned by the klines endpoint

        Returns:
            Parsed Candle

        Raises:
            DataValidationError: If the row has the wrong arity or a field is
                not numeric
        """
        if not isinstance(row, (list, tuple)) or len(row) != WIRE_ROW_LENGTH:
            raise DataValidationError(
                f"Expected a {WIRE_ROW_LENGTH}-element candle row, got {row!r:.120}"
            )
        try:
            return cls(
                open_time=from_epoch_ms(int(row[0])),
                open=float(row[1]),
                high=float(row[2]),
                low=float(row[3]),
                close=float(row[4]),
                volume=float(row[5]),
                close_time=from_epoch_ms(int(row[6])),
                quote_volume=float(row[7]),
                trade_count=int(float(row[8])),
                taker_buy_base_volume=float(row[9]),
                taker_buy_quote_volume=float(row[10]),
            )
        except (TypeError, ValueError, OverflowError) as e:
            raise DataValidationError(f"Non-numeric field in candle row {row!r:.120}") from e

    @property
    def open_time_ms(self) -> int:
        return to_epoch_ms(self.open_time)


def parse_rows(rows: Any) -> list[Candle]:
    """Parse a klines payload (a JSON array of rows) into candles."""
    if not isinstance(rows, list):
        raise DataValidationError(f"Expected a JSON array of candles, got {type(rows).__name__}")
    return [Candle.from_wire(row) for row in rows]


def candles_to_frame(candles: Iterable[Candle]) -> pd.DataFrame:
    """
    Convert candles to a DataFrame with one column per field.

    The frame keeps the input order; callers pass ascending series.
    """
    records = [asdict(candle) for candle in candles]
    return pd.DataFrame.from_records(records, columns=FRAME_COLUMNS)
