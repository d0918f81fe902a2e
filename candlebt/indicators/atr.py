"""
Average True Range (ATR) indicator.

ATR measures market volatility by calculating the average of true ranges.
Higher ATR indicates higher volatility, lower ATR indicates lower volatility.

Algorithm:
    True Range (TR) = max(high-low, |high-prev_close|, |low-prev_close|)

    The first bar has no previous close, so its true range is undefined.
    ATR is the simple moving average of the last `period` true ranges and
    is therefore defined from bar `period` onwards.

Uses:
    - Take-profit placement: Target at entry + (ATR * multiplier)
    - Stop-loss placement: Stop at entry - (ATR * multiplier)
    - Trendline slope: ATR / length drives how fast pivot trendlines decay
    - SuperTrend bands

Parameters:
    - period: 14
"""

from dataclasses import dataclass

import pandas as pd


@dataclass
class ATRResult:
    """ATR calculation result."""

    atr: pd.Series
    true_range: pd.Series


def calculate_true_range(
    high: pd.Series,
    low: pd.Series,
    close: pd.Series,
) -> pd.Series:
    """True range per bar, NaN on the first bar."""
    prev_close = close.shift(1)

    tr1 = high - low
    tr2 = (high - prev_close).abs()
    tr3 = (low - prev_close).abs()

    true_range = pd.concat([tr1, tr2, tr3], axis=1).max(axis=1)
    true_range[prev_close.isna()] = float("nan")
    return true_range


def calculate_atr(
    high: pd.Series,
    low: pd.Series,
    close: pd.Series,
    period: int = 14,
) -> ATRResult:
    """
    Calculate Average True Range as the SMA of true range.

    Args:
        high: Series of high prices
        low: Series of low prices
        close: Series of closing prices
        period: ATR calculation period (default: 14)

    Returns:
        ATRResult with ATR and true range series
    """
    true_range = calculate_true_range(high, low, close)
    atr = true_range.rolling(window=period, min_periods=period).mean()
    return ATRResult(atr=atr, true_range=true_range)


def get_atr_stop_loss(
    entry_price: float,
    atr_value: float,
    multiplier: float = 1.2,
) -> float:
    """
    Calculate a long stop-loss price based on ATR.

    Args:
        entry_price: Trade entry price
        atr_value: Current ATR value
        multiplier: ATR multiplier for distance (default: 1.2)

    Returns:
        Stop-loss price
    """
    return entry_price - atr_value * multiplier


def get_atr_take_profit(
    entry_price: float,
    atr_value: float,
    multiplier: float = 2.0,
) -> float:
    """
    Calculate a long take-profit price based on ATR.

    Args:
        entry_price: Trade entry price
        atr_value: Current ATR value
        multiplier: ATR multiplier for distance (default: 2.0)

    Returns:
        Take-profit price
    """
    return entry_price + atr_value * multiplier
