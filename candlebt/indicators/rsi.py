"""
Relative Strength Index (RSI) indicator.

RSI measures momentum by comparing the magnitude of recent gains to recent losses.
Values range from 0 to 100:
- < 30: Oversold (potential buy signal)
- > 70: Overbought (potential sell signal)

Algorithm:
    This implementation uses Wilder's Smoothed Moving Average (SMMA), which is
    the standard RSI calculation method. Wilder's smoothing uses alpha = 1/period
    rather than the standard EMA formula of alpha = 2/(period+1).

    Wilder's SMMA formula:
        SMMA(i) = ((SMMA(i-1) * (period - 1)) + current_value) / period

    Degenerate windows:
        - no losses and some gains: RSI = 100
        - no gains and no losses (flat prices): RSI = 50

Parameters:
    - period: 14 (Wilder's original recommendation)
    - oversold: 30

Integration:
    The RSI strategy buys when RSI climbs back above the oversold level; the
    confluence strategy counts a 30-70 RSI as one of its conditions.
"""

import pandas as pd
import numpy as np


def calculate_rsi(
    prices: pd.Series,
    period: int = 14,
) -> pd.Series:
    """
    Calculate RSI using Wilder's Smoothed Moving Average.

    Args:
        prices: Series of closing prices
        period: RSI calculation period (default: 14, Wilder's recommendation)

    Returns:
        Series of RSI values (0-100)
    """
    delta = prices.diff()

    gains = delta.where(delta > 0, 0.0)
    losses = (-delta.where(delta < 0, 0.0))

    alpha = 1.0 / period
    avg_gains = gains.ewm(alpha=alpha, adjust=False).mean()
    avg_losses = losses.ewm(alpha=alpha, adjust=False).mean()

    with np.errstate(divide="ignore", invalid="ignore"):
        rs = avg_gains / avg_losses
        rsi = 100 - (100 / (1 + rs))

    rsi = rsi.where(avg_losses > 0, np.where(avg_gains > 0, 100.0, 50.0))
    return rsi.astype(float)


def crossed_above(series: pd.Series, level: float) -> bool:
    """True when the last value is above `level` and the one before is below it."""
    if len(series) < 2:
        return False
    previous, current = series.iloc[-2], series.iloc[-1]
    if pd.isna(previous) or pd.isna(current):
        return False
    return bool(previous < level < current)
