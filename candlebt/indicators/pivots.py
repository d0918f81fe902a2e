"""
Swing pivots and support/resistance levels.

Pivot detection:
    A bar is a pivot high when its high is strictly greater than the highs of
    the `length` bars on each side (pivot low: strictly lower low). A pivot
    can only be confirmed `length` bars after it formed, so the last
    `length` bars of any window never carry a pivot.

Support / resistance:
    Support is the lowest low of the last `lookback` bars, kept only when it
    lies below the close and within `max_distance` of it. Resistance is the
    highest high, kept only above the close and within `max_distance`.
    Levels outside those bands are too far away to act on and are reported
    as None.
"""

from typing import Optional

import numpy as np
import pandas as pd


def _detect_pivots(values: pd.Series, length: int, highs: bool) -> pd.Series:
    data = values.to_numpy(dtype=float)
    n = len(data)
    pivots = np.full(n, np.nan)

    for i in range(length, n - length):
        center = data[i]
        neighbours = np.concatenate([data[i - length:i], data[i + 1:i + length + 1]])
        if highs and np.all(neighbours < center):
            pivots[i] = center
        elif not highs and np.all(neighbours > center):
            pivots[i] = center

    return pd.Series(pivots, index=values.index)


def detect_pivot_highs(highs: pd.Series, length: int = 14) -> pd.Series:
    """
    Detect pivot highs.

    Args:
        highs: Series of high prices
        length: Bars required on each side

    Returns:
        Series holding the pivot value at pivot bars and NaN elsewhere
    """
    return _detect_pivots(highs, length, highs=True)


def detect_pivot_lows(lows: pd.Series, length: int = 14) -> pd.Series:
    """
    Detect pivot lows.

    Args:
        lows: Series of low prices
        length: Bars required on each side

    Returns:
        Series holding the pivot value at pivot bars and NaN elsewhere
    """
    return _detect_pivots(lows, length, highs=False)


def find_support_level(
    lows: pd.Series,
    close: float,
    lookback: int = 20,
    max_distance: float = 0.15,
) -> Optional[float]:
    """Lowest recent low if it sits below close and within max_distance of it."""
    if len(lows) < lookback:
        return None
    support = float(lows.iloc[-lookback:].min())
    if close * (1 - max_distance) < support < close:
        return support
    return None


def find_resistance_level(
    highs: pd.Series,
    close: float,
    lookback: int = 20,
    max_distance: float = 0.08,
) -> Optional[float]:
    """Highest recent high if it sits above close and within max_distance of it."""
    if len(highs) < lookback:
        return None
    resistance = float(highs.iloc[-lookback:].max())
    if close < resistance <= close * (1 + max_distance):
        return resistance
    return None
