"""
SuperTrend flip strategy.

Buys on the bar where the close crosses from below the SuperTrend line to
above it, i.e. the indicator flips into an uptrend. The target is an ATR
multiple above entry (at least the minimum ROI multiple) and the stop is
the SuperTrend line itself.
"""

from typing import Optional

import pandas as pd

from candlebt.indicators.atr import get_atr_take_profit
from candlebt.indicators.supertrend import calculate_supertrend
from candlebt.strategy.base import DEFAULT_TARGET_ROI, BuySignal, Strategy, build_buy_signal


class SuperTrendStrategy(Strategy):
    """Long entries on SuperTrend uptrend flips."""

    name = "supertrend"

    def __init__(
        self,
        atr_period: int = 10,
        multiplier: float = 3.0,
        target_atr_multiplier: float = 2.0,
        target_roi: float = DEFAULT_TARGET_ROI,
    ):
        if multiplier <= 0:
            raise ValueError(f"multiplier must be positive, got {multiplier}")
        self.atr_period = atr_period
        self.multiplier = multiplier
        self.target_atr_multiplier = target_atr_multiplier
        self.target_roi = target_roi
        # ATR needs atr_period bars after the first, plus one bar to see the flip
        self.min_window = atr_period + 2

    def _evaluate(self, window: pd.DataFrame) -> Optional[BuySignal]:
        close = window["close"]
        result = calculate_supertrend(
            window["high"], window["low"], close, self.atr_period, self.multiplier
        )
        line_now, line_prev = result.line.iloc[-1], result.line.iloc[-2]
        if pd.isna(line_now) or pd.isna(line_prev):
            return None

        entry = float(close.iloc[-1])
        if not (close.iloc[-2] < line_prev and entry > line_now):
            return None

        atr = float(result.atr.iloc[-1])
        target = max(get_atr_take_profit(entry, atr, self.target_atr_multiplier), entry * self.target_roi)
        return build_buy_signal(entry, target, stop_loss=float(line_now))
