"""
Trendline breakout strategy.

Pivot highs and lows anchor two trendlines. From each pivot the line
decays by a per-bar slope (upper falls, lower rises) until the next pivot
of the same kind resets it. The slope is measured when the pivot is found:

- atr:    ATR(length) / length * mult
- stdev:  population stdev of the last `length` closes / length * mult
- linreg: |least-squares slope of all closes so far| * mult

A bar "breaks up" when the close exceeds the projected upper line; that
state holds until the next pivot high. A buy needs all of:

1. Close crosses above the last confirmed pivot high (horizontal breakout)
2. Price is in the broken-up state of the upper trendline
3. Close above EMA(200)
4. Volume above its 20-bar SMA

Target is the larger of close + 2 * ATR(14) and the minimum ROI multiple;
the stop goes under the lower trendline or the recent low, whichever is
lower.
"""

from typing import Optional

import numpy as np
import pandas as pd

from candlebt.indicators.atr import calculate_atr, get_atr_take_profit
from candlebt.indicators.ema import calculate_ema, calculate_sma
from candlebt.indicators.pivots import detect_pivot_highs, detect_pivot_lows
from candlebt.strategy.base import DEFAULT_TARGET_ROI, BuySignal, Strategy, build_buy_signal

SLOPE_METHODS = ("atr", "stdev", "linreg")


def calculate_slopes(window: pd.DataFrame, length: int, mult: float, method: str) -> np.ndarray:
    """Per-bar trendline slope using only data up to each bar."""
    close = window["close"]
    if method == "atr":
        atr = calculate_atr(window["high"], window["low"], close, period=length).atr
        return (atr.fillna(0.0) / length * mult).to_numpy(dtype=float)
    if method == "stdev":
        stdev = close.rolling(window=length, min_periods=1).std(ddof=0)
        return (stdev.fillna(0.0) / length * mult).to_numpy(dtype=float)
    if method == "linreg":
        y = close.to_numpy(dtype=float)
        n = np.arange(1, len(y) + 1, dtype=float)
        x = n - 1
        sum_x = n * (n - 1) / 2
        sum_x2 = (n - 1) * n * (2 * n - 1) / 6
        sum_y = np.cumsum(y)
        sum_xy = np.cumsum(x * y)
        denominator = n * sum_x2 - sum_x ** 2
        with np.errstate(divide="ignore", invalid="ignore"):
            slope = np.where(denominator > 0, (n * sum_xy - sum_x * sum_y) / denominator, 0.0)
        return np.abs(slope) * mult
    raise ValueError(f"Unknown slope method '{method}'. Valid methods: {', '.join(SLOPE_METHODS)}")


class TrendlineBreakoutStrategy(Strategy):
    """Horizontal pivot breakout confirmed by a broken descending trendline."""

    name = "trendline-breakout"

    def __init__(
        self,
        length: int = 14,
        mult: float = 1.0,
        slope_method: str = "atr",
        atr_period: int = 14,
        target_roi: float = DEFAULT_TARGET_ROI,
    ):
        if slope_method not in SLOPE_METHODS:
            raise ValueError(f"slope_method must be one of {SLOPE_METHODS}, got {slope_method!r}")
        if length < 1:
            raise ValueError(f"length must be >= 1, got {length}")
        self.length = length
        self.mult = mult
        self.slope_method = slope_method
        self.atr_period = atr_period
        self.target_roi = target_roi
        self.min_window = 2 * length + 1

    def trendlines(self, window: pd.DataFrame) -> dict[str, np.ndarray]:
        """
        Build both trendlines and the breakout state for every bar.

        Returns:
            Dict with arrays upper, lower, upos, dnos, pivot_highs
        """
        highs = window["high"].to_numpy(dtype=float)
        lows = window["low"].to_numpy(dtype=float)
        closes = window["close"].to_numpy(dtype=float)
        pivot_highs = detect_pivot_highs(window["high"], self.length).to_numpy()
        pivot_lows = detect_pivot_lows(window["low"], self.length).to_numpy()
        slopes = calculate_slopes(window, self.length, self.mult, self.slope_method)

        n = len(closes)
        upper = np.empty(n)
        lower = np.empty(n)
        upos = np.zeros(n, dtype=int)
        dnos = np.zeros(n, dtype=int)

        current_upper = current_lower = None
        slope_ph = slope_pl = 0.0
        for i in range(n):
            is_ph = not np.isnan(pivot_highs[i])
            is_pl = not np.isnan(pivot_lows[i])

            if is_ph:
                current_upper = pivot_highs[i]
                slope_ph = slopes[i]
            elif current_upper is not None:
                current_upper -= slope_ph
            else:
                current_upper = highs[i]
            upper[i] = current_upper

            if is_pl:
                current_lower = pivot_lows[i]
                slope_pl = slopes[i]
            elif current_lower is not None:
                current_lower += slope_pl
            else:
                current_lower = lows[i]
            lower[i] = current_lower

            previous_upos = upos[i - 1] if i else 0
            previous_dnos = dnos[i - 1] if i else 0
            if is_ph:
                upos[i] = 0
            elif closes[i] > upper[i] - slope_ph * self.length:
                upos[i] = 1
            else:
                upos[i] = previous_upos

            if is_pl:
                dnos[i] = 0
            elif closes[i] < lower[i] + slope_pl * self.length:
                dnos[i] = 1
            else:
                dnos[i] = previous_dnos

        return {
            "upper": upper,
            "lower": lower,
            "upos": upos,
            "dnos": dnos,
            "pivot_highs": pivot_highs,
        }

    def _evaluate(self, window: pd.DataFrame) -> Optional[BuySignal]:
        lines = self.trendlines(window)
        close = window["close"]
        entry = float(close.iloc[-1])
        previous_close = float(close.iloc[-2])

        confirmed = lines["pivot_highs"][:-1]
        confirmed = confirmed[~np.isnan(confirmed)]
        if not len(confirmed):
            return None
        last_pivot_high = float(confirmed[-1])

        horizontal_breakout = previous_close <= last_pivot_high < entry
        above_trendline = lines["upos"][-1] == 1
        if not (horizontal_breakout and above_trendline):
            return None

        if not entry > calculate_ema(close, 200).iloc[-1]:
            return None
        volume_sma = calculate_sma(window["volume"], 20).iloc[-1]
        if pd.isna(volume_sma) or not window["volume"].iloc[-1] > volume_sma:
            return None

        atr = calculate_atr(window["high"], window["low"], close, self.atr_period).atr.iloc[-1]
        atr = 0.0 if pd.isna(atr) else float(atr)
        target = max(get_atr_take_profit(entry, atr, 2.0), entry * self.target_roi)

        recent_low = float(window["low"].iloc[-self.length:].min())
        stop = min(lines["lower"][-1] * 0.995, recent_low * 0.99)

        return build_buy_signal(entry, target, stop_loss=stop)
