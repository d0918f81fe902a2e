"""
Moving averages: exponential (EMA), simple (SMA) and EMA crossovers.

EMA gives more weight to recent prices, making it more responsive than SMA.

Algorithm:
    EMA = price * alpha + EMA_prev * (1 - alpha)
    where alpha = 2 / (period + 1)

    This is the standard EMA calculation used in most trading platforms.
    Unlike Wilder's smoothing (used in RSI), standard EMA gives more
    weight to recent prices. The first value seeds the average, so an EMA
    is defined from the first bar; short windows simply weigh fewer bars.

    SMA = mean of the last `period` values (undefined before that).

Crossovers:
    A crossover up is the bar where fast > slow after a bar where it was not.

Parameters:
    - fast_period: 9 (more responsive to price changes)
    - slow_period: 21 (smoother, represents medium-term trend)

Integration:
    EMA(9/21) crossover gates the confluence strategy, EMA(50/200) act as
    trend filters, and SMA(20) of volume is the participation baseline for
    every volume condition.
"""

from dataclasses import dataclass
import pandas as pd
import numpy as np


@dataclass
class EMAResult:
    """EMA calculation result."""

    ema_fast: pd.Series
    ema_slow: pd.Series
    crossover_up: pd.Series  # Boolean: fast crosses above slow
    crossover_down: pd.Series  # Boolean: fast crosses below slow


def calculate_ema(
    prices: pd.Series,
    period: int,
) -> pd.Series:
    """
    Calculate single EMA.

    Uses standard EMA formula: alpha = 2 / (period + 1)

    Args:
        prices: Series of prices
        period: EMA period

    Returns:
        EMA series
    """
    return prices.ewm(span=period, adjust=False).mean()


def calculate_sma(
    values: pd.Series,
    period: int,
) -> pd.Series:
    """
    Calculate simple moving average.

    Args:
        values: Series of prices or volumes
        period: Averaging window

    Returns:
        SMA series, NaN until `period` values are available
    """
    return values.rolling(window=period, min_periods=period).mean()


def detect_crossovers(fast: pd.Series, slow: pd.Series) -> tuple[pd.Series, pd.Series]:
    """
    Detect where `fast` crosses above and below `slow`.

    Returns:
        Tuple of boolean Series (crossover_up, crossover_down)
    """
    # numpy avoids pandas nullable-bool dtype surprises
    fast_above_slow = (fast > slow).to_numpy().astype(bool)
    fast_above_slow_prev = np.concatenate([[False], fast_above_slow[:-1]])

    crossover_up = pd.Series(fast_above_slow & ~fast_above_slow_prev, index=fast.index)
    crossover_down = pd.Series(~fast_above_slow & fast_above_slow_prev, index=fast.index)
    return crossover_up, crossover_down


def calculate_ema_crossover(
    prices: pd.Series,
    fast_period: int = 9,
    slow_period: int = 21,
) -> EMAResult:
    """
    Calculate EMA crossover system.

    Args:
        prices: Series of closing prices
        fast_period: Fast EMA period (default: 9)
        slow_period: Slow EMA period (default: 21)

    Returns:
        EMAResult with both EMAs and crossover signals
    """
    ema_fast = calculate_ema(prices, fast_period)
    ema_slow = calculate_ema(prices, slow_period)
    crossover_up, crossover_down = detect_crossovers(ema_fast, ema_slow)

    return EMAResult(
        ema_fast=ema_fast,
        ema_slow=ema_slow,
        crossover_up=crossover_up,
        crossover_down=crossover_down,
    )
