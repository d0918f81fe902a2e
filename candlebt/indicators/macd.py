"""
Moving Average Convergence Divergence (MACD) indicator.

MACD shows the relationship between two exponential moving averages and is used
to identify momentum, trend direction, and potential reversal points.

Algorithm:
    MACD Line = Fast EMA - Slow EMA
    Signal Line = EMA of MACD Line
    Histogram = MACD Line - Signal Line

    This implementation uses standard EMA (alpha = 2/(period+1)) which is
    the conventional method for MACD calculation, as opposed to Wilder's
    smoothing used in RSI.

Histogram Momentum:
    Each histogram bar is labelled against the bar before it:
    - dark-green:  histogram >= 0 and rising (bullish momentum building)
    - light-green: histogram >= 0 and not rising (bullish momentum fading)
    - light-red:   histogram < 0 and rising (bearish momentum fading)
    - dark-red:    histogram < 0 and not rising (bearish momentum building)

Parameters:
    - fast_period: 12 (standard)
    - slow_period: 26 (standard)
    - signal_period: 9 (standard)

Integration:
    The MACD/EMA strategy requires a below-zero bullish cross on a dark-green
    bar; the confluence strategy counts MACD momentum as one condition.
"""

from dataclasses import dataclass

import numpy as np
import pandas as pd

DARK_GREEN = "dark-green"
LIGHT_GREEN = "light-green"
LIGHT_RED = "light-red"
DARK_RED = "dark-red"


@dataclass
class MACDResult:
    """MACD calculation result."""

    macd_line: pd.Series
    signal_line: pd.Series
    histogram: pd.Series


def calculate_macd(
    prices: pd.Series,
    fast_period: int = 12,
    slow_period: int = 26,
    signal_period: int = 9,
) -> MACDResult:
    """
    Calculate MACD indicator.

    Args:
        prices: Series of closing prices
        fast_period: Fast EMA period (default: 12)
        slow_period: Slow EMA period (default: 26)
        signal_period: Signal line EMA period (default: 9)

    Returns:
        MACDResult with macd_line, signal_line, and histogram
    """
    if fast_period >= slow_period:
        raise ValueError("slow_period must be greater than fast_period")

    ema_fast = prices.ewm(span=fast_period, adjust=False).mean()
    ema_slow = prices.ewm(span=slow_period, adjust=False).mean()

    macd_line = ema_fast - ema_slow
    signal_line = macd_line.ewm(span=signal_period, adjust=False).mean()
    histogram = macd_line - signal_line

    return MACDResult(
        macd_line=macd_line,
        signal_line=signal_line,
        histogram=histogram,
    )


def classify_histogram(histogram: pd.Series) -> pd.Series:
    """
    Label each histogram bar by sign and direction.

    Args:
        histogram: MACD histogram

    Returns:
        Series of labels aligned with the input; the first bar has no
        predecessor and is labelled None
    """
    current = histogram.to_numpy(dtype=float)
    previous = np.concatenate([[np.nan], current[:-1]])
    rising = current > previous

    labels = np.where(
        current >= 0,
        np.where(rising, DARK_GREEN, LIGHT_GREEN),
        np.where(rising, LIGHT_RED, DARK_RED),
    ).astype(object)
    if len(labels):
        labels[0] = None
    return pd.Series(labels, index=histogram.index, dtype=object)
