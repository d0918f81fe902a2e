"""
RSI oversold-recovery strategy.

Buys when RSI(14) climbs back above the oversold level: the previous bar
was below it and the current bar is above. The target is a fixed ROI
multiple of the entry and no stop-loss is set.
"""

from typing import Optional

import pandas as pd

from candlebt.indicators.rsi import calculate_rsi, crossed_above
from candlebt.strategy.base import DEFAULT_TARGET_ROI, BuySignal, Strategy, build_buy_signal


class RSIStrategy(Strategy):
    """Oversold recovery on RSI."""

    name = "rsi"

    def __init__(
        self,
        period: int = 14,
        oversold: float = 30.0,
        target_roi: float = DEFAULT_TARGET_ROI,
    ):
        if not 0 < oversold < 100:
            raise ValueError(f"oversold must be between 0 and 100, got {oversold}")
        self.period = period
        self.oversold = oversold
        self.target_roi = target_roi
        self.min_window = period + 1

    def _evaluate(self, window: pd.DataFrame) -> Optional[BuySignal]:
        rsi = calculate_rsi(window["close"], self.period)
        if not crossed_above(rsi, self.oversold):
            return None

        entry = float(window["close"].iloc[-1])
        return build_buy_signal(entry, entry * self.target_roi)
