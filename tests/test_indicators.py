"""
Tests for technical indicators.

Tests cover:
- RSI (Relative Strength Index) and level crosses
- MACD (Moving Average Convergence Divergence) and histogram momentum
- EMA/SMA and crossovers
- ATR (Average True Range) and ATR-based exits
- Swing pivots and support/resistance
- SuperTrend

Each indicator is tested for:
- Calculation accuracy on hand-checked inputs
- Edge cases (insufficient data, NaN values, flat prices)
"""

import numpy as np
import pandas as pd
import pytest

from candlebt.indicators.atr import (
    calculate_atr,
    calculate_true_range,
    get_atr_stop_loss,
    get_atr_take_profit,
)
from candlebt.indicators.ema import (
    calculate_ema,
    calculate_ema_crossover,
    calculate_sma,
    detect_crossovers,
)
from candlebt.indicators.macd import (
    DARK_GREEN,
    DARK_RED,
    LIGHT_GREEN,
    LIGHT_RED,
    calculate_macd,
    classify_histogram,
)
from candlebt.indicators.pivots import (
    detect_pivot_highs,
    detect_pivot_lows,
    find_resistance_level,
    find_support_level,
)
from candlebt.indicators.rsi import calculate_rsi, crossed_above
from candlebt.indicators.supertrend import calculate_supertrend


# ============================================================================
# RSI Tests
# ============================================================================

def test_calculate_rsi_basic(sample_ohlcv_data):
    """Test RSI calculation returns valid range 0-100."""
    df = sample_ohlcv_data(length=100, base_price=50000.0, volatility=0.02)
    rsi = calculate_rsi(df['close'], period=14)

    assert len(rsi) == len(df)
    assert (rsi >= 0).all()
    assert (rsi <= 100).all()


def test_calculate_rsi_downtrend():
    """Test RSI in strong downtrend produces low values."""
    prices = pd.Series([100 - i * 2 for i in range(50)], dtype=float)
    rsi = calculate_rsi(prices, period=14)

    assert rsi.tail(10).mean() < 50


def test_rsi_without_losses_is_100():
    """A series that only rises has RSI 100, not NaN."""
    prices = pd.Series([100 + i for i in range(30)], dtype=float)
    rsi = calculate_rsi(prices, period=14)

    assert rsi.iloc[-1] == 100.0
    assert not rsi.isna().any()


def test_rsi_flat_prices_is_50():
    """No gains and no losses is neutral."""
    rsi = calculate_rsi(pd.Series([100.0] * 30), period=14)

    assert (rsi == 50.0).all()


def test_crossed_above():
    assert crossed_above(pd.Series([25.0, 35.0]), 30)
    assert not crossed_above(pd.Series([35.0, 40.0]), 30)
    assert not crossed_above(pd.Series([25.0, 29.0]), 30)
    assert not crossed_above(pd.Series([25.0, np.nan]), 30)
    assert not crossed_above(pd.Series([35.0]), 30)


# ============================================================================
# MACD Tests
# ============================================================================

def test_calculate_macd_basic(sample_ohlcv_data):
    """Test MACD calculation returns aligned series."""
    df = sample_ohlcv_data(length=100, base_price=50000.0, volatility=0.02)
    result = calculate_macd(df['close'])

    assert len(result.macd_line) == len(df)
    assert len(result.signal_line) == len(df)
    assert len(result.histogram) == len(df)


def test_macd_histogram_equals_difference():
    """Test MACD histogram = macd_line - signal_line."""
    prices = pd.Series([100 + i * 0.5 for i in range(50)])
    result = calculate_macd(prices)

    pd.testing.assert_series_equal(
        result.histogram,
        result.macd_line - result.signal_line,
        check_names=False,
    )


def test_macd_rejects_inverted_periods():
    with pytest.raises(ValueError):
        calculate_macd(pd.Series([1.0, 2.0, 3.0]), fast_period=26, slow_period=12)


def test_classify_histogram_labels():
    """Bars are labelled by sign and by direction against the previous bar."""
    histogram = pd.Series([-2.0, -3.0, -1.0, 1.0, 2.0, 1.5])

    labels = classify_histogram(histogram).tolist()

    assert labels == [None, DARK_RED, LIGHT_RED, DARK_GREEN, DARK_GREEN, LIGHT_GREEN]


def test_classify_histogram_empty():
    assert classify_histogram(pd.Series([], dtype=float)).empty


# ============================================================================
# EMA / SMA Tests
# ============================================================================

def test_calculate_ema_basic():
    """EMA is seeded by the first price and follows the trend."""
    prices = pd.Series([100 + i * 0.5 for i in range(50)])
    ema = calculate_ema(prices, period=12)

    assert len(ema) == len(prices)
    assert ema.iloc[0] == prices.iloc[0]
    assert ema.iloc[-1] > ema.iloc[0]


def test_calculate_sma_needs_full_window():
    sma = calculate_sma(pd.Series([1.0, 2.0, 3.0, 4.0]), period=2)

    assert np.isnan(sma.iloc[0])
    assert sma.iloc[1:].tolist() == [1.5, 2.5, 3.5]


def test_detect_crossovers():
    fast = pd.Series([1.0, 1.0, 3.0, 3.0, 1.0])
    slow = pd.Series([2.0] * 5)

    up, down = detect_crossovers(fast, slow)

    assert up.tolist() == [False, False, True, False, False]
    assert down.tolist() == [False, False, False, False, True]


def test_ema_crossover_up_detection():
    """A jump after a flat stretch makes the fast EMA cross the slow one."""
    prices = pd.Series([100.0] * 30 + [105.0 + i for i in range(20)])
    result = calculate_ema_crossover(prices, fast_period=5, slow_period=10)

    assert result.crossover_up.any()
    assert not result.crossover_down.any()
    assert result.crossover_up.idxmax() == 30


# ============================================================================
# ATR Tests
# ============================================================================

def test_true_range_calculation():
    """TR is the widest of the bar range and both gaps to the previous close."""
    high = pd.Series([10.0, 12.0, 11.0])
    low = pd.Series([8.0, 9.0, 7.0])
    close = pd.Series([9.0, 11.0, 8.0])

    tr = calculate_true_range(high, low, close)

    assert np.isnan(tr.iloc[0])
    assert tr.iloc[1:].tolist() == [3.0, 4.0]


def test_atr_is_sma_of_true_range():
    high = pd.Series([10.0, 12.0, 11.0])
    low = pd.Series([8.0, 9.0, 7.0])
    close = pd.Series([9.0, 11.0, 8.0])

    result = calculate_atr(high, low, close, period=2)

    assert np.isnan(result.atr.iloc[1])
    assert result.atr.iloc[2] == pytest.approx(3.5)


def test_calculate_atr_basic(sample_ohlcv_data):
    df = sample_ohlcv_data(length=100, base_price=50000.0, volatility=0.02)
    result = calculate_atr(df['high'], df['low'], df['close'], period=14)

    assert result.atr.iloc[:14].isna().all()
    assert (result.atr.iloc[14:] > 0).all()


def test_atr_exit_levels():
    assert get_atr_stop_loss(100.0, 5.0) == pytest.approx(94.0)
    assert get_atr_take_profit(100.0, 5.0) == pytest.approx(110.0)
    assert get_atr_take_profit(100.0, 5.0, multiplier=3.0) == pytest.approx(115.0)


# ============================================================================
# Pivot and Level Tests
# ============================================================================

def test_detect_pivot_highs_and_lows():
    highs = pd.Series([1.0, 2.0, 5.0, 2.0, 1.0, 3.0, 1.0])
    lows = pd.Series([5.0, 4.0, 1.0, 4.0, 5.0, 3.0, 5.0])

    pivot_highs = detect_pivot_highs(highs, length=2)
    pivot_lows = detect_pivot_lows(lows, length=2)

    assert pivot_highs.dropna().to_dict() == {2: 5.0}
    assert pivot_lows.dropna().to_dict() == {2: 1.0}


def test_pivots_require_strict_extremes():
    """Equal neighbours do not confirm a pivot."""
    highs = pd.Series([1.0, 5.0, 5.0, 1.0, 1.0])

    assert detect_pivot_highs(highs, length=1).isna().all()


def test_find_support_level():
    lows = pd.Series([96.0] * 19 + [95.0])

    assert find_support_level(lows, close=100.0) == 95.0
    assert find_support_level(pd.Series([80.0] * 20), close=100.0) is None
    assert find_support_level(pd.Series([101.0] * 20), close=100.0) is None
    assert find_support_level(lows.iloc[:10], close=100.0) is None


def test_find_resistance_level():
    highs = pd.Series([101.0] * 19 + [105.0])

    assert find_resistance_level(highs, close=100.0) == 105.0
    assert find_resistance_level(pd.Series([110.0] * 20), close=100.0) is None


# ============================================================================
# SuperTrend Tests
# ============================================================================

def _trending_bars(step: float, length: int = 40):
    close = pd.Series([100.0 + step * i for i in range(length)])
    return close + 1.0, close - 1.0, close


def test_supertrend_flips_up_in_rising_market():
    high, low, close = _trending_bars(step=1.0)

    result = calculate_supertrend(high, low, close, atr_period=10, multiplier=3.0)

    assert result.line.iloc[:10].isna().all()
    assert bool(result.uptrend.iloc[-1])
    assert result.line.iloc[-1] < close.iloc[-1]


def test_supertrend_stays_down_in_falling_market():
    high, low, close = _trending_bars(step=-1.0)

    result = calculate_supertrend(high, low, close, atr_period=10, multiplier=3.0)

    assert not result.uptrend.iloc[10:].any()
    assert (result.line.iloc[10:] > close.iloc[10:]).all()


# ============================================================================
# Edge Cases
# ============================================================================

def test_indicators_with_insufficient_data():
    """Short inputs produce aligned, mostly undefined output rather than errors."""
    short_prices = pd.Series([100.0, 101.0, 102.0])

    assert len(calculate_rsi(short_prices, period=14)) == 3
    assert len(calculate_macd(short_prices).macd_line) == 3
    assert calculate_sma(short_prices, period=20).isna().all()
    assert calculate_atr(short_prices, short_prices, short_prices).atr.isna().all()
    assert detect_pivot_highs(short_prices, length=14).isna().all()


def test_indicators_with_nan_values():
    """NaN inputs do not crash and keep alignment."""
    prices = pd.Series([100, np.nan, 102, 103, np.nan, 105], dtype=float)

    assert len(calculate_rsi(prices, period=3)) == len(prices)
    assert len(calculate_macd(prices, fast_period=2, slow_period=3).macd_line) == len(prices)
    assert len(calculate_ema(prices, period=2)) == len(prices)


def test_atr_flat_prices_is_zero():
    flat = pd.Series([100.0] * 30)

    result = calculate_atr(flat, flat, flat)

    assert result.atr.iloc[-1] == 0.0
