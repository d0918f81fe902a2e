"""
SuperTrend indicator.

SuperTrend is a trailing volatility band that flips between below-price
(uptrend) and above-price (downtrend).

Algorithm:
    mid         = (high + low) / 2
    basic_upper = mid + multiplier * ATR
    basic_lower = mid - multiplier * ATR

    final_upper tightens only: it takes basic_upper when that is lower, or
    when the previous close broke above the previous final_upper.
    final_lower rises only, mirrored.

    The line follows final_lower while in an uptrend and final_upper while in
    a downtrend. The trend turns up when close crosses above final_upper and
    down when close crosses below final_lower.

Parameters:
    - atr_period: 10
    - multiplier: 3.0
"""

from dataclasses import dataclass

import numpy as np
import pandas as pd

from candlebt.indicators.atr import calculate_atr


@dataclass
class SuperTrendResult:
    """SuperTrend calculation result."""

    line: pd.Series
    uptrend: pd.Series  # Boolean, NaN-free once ATR is defined
    atr: pd.Series


def calculate_supertrend(
    high: pd.Series,
    low: pd.Series,
    close: pd.Series,
    atr_period: int = 10,
    multiplier: float = 3.0,
) -> SuperTrendResult:
    """
    Calculate the SuperTrend line.

    Args:
        high: Series of high prices
        low: Series of low prices
        close: Series of closing prices
        atr_period: ATR period (default: 10)
        multiplier: Band width in ATRs (default: 3.0)

    Returns:
        SuperTrendResult; values are NaN until ATR is defined
    """
    atr = calculate_atr(high, low, close, period=atr_period).atr
    mid = ((high + low) / 2).to_numpy(dtype=float)
    atr_values = atr.to_numpy(dtype=float)
    closes = close.to_numpy(dtype=float)

    basic_upper = mid + multiplier * atr_values
    basic_lower = mid - multiplier * atr_values

    n = len(closes)
    final_upper = np.full(n, np.nan)
    final_lower = np.full(n, np.nan)
    line = np.full(n, np.nan)
    uptrend = np.zeros(n, dtype=bool)

    start = None
    for i in range(n):
        if np.isnan(atr_values[i]):
            continue
        if start is None:
            start = i
            final_upper[i] = basic_upper[i]
            final_lower[i] = basic_lower[i]
            uptrend[i] = closes[i] > mid[i]
        else:
            prev = i - 1
            if basic_upper[i] < final_upper[prev] or closes[prev] > final_upper[prev]:
                final_upper[i] = basic_upper[i]
            else:
                final_upper[i] = final_upper[prev]

            if basic_lower[i] > final_lower[prev] or closes[prev] < final_lower[prev]:
                final_lower[i] = basic_lower[i]
            else:
                final_lower[i] = final_lower[prev]

            if uptrend[prev]:
                uptrend[i] = closes[i] >= final_lower[i]
            else:
                uptrend[i] = closes[i] > final_upper[i]

        line[i] = final_lower[i] if uptrend[i] else final_upper[i]

    return SuperTrendResult(
        line=pd.Series(line, index=close.index),
        uptrend=pd.Series(uptrend, index=close.index),
        atr=atr,
    )
