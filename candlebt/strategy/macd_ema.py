"""
MACD/EMA pullback strategy.

Looks for a bullish MACD cross while both lines are still below zero, in a
pullback below the long EMA:

1. MACD < 0 and signal < 0
2. MACD crossed above the signal line on this bar
3. Histogram bar is dark-green (non-negative and rising)
4. Volume above its 20-bar average
5. Close below EMA(long_period)

The stop sits at the swing low of the last few bars. The target aims for
`risk_reward` times the distance to that stop, never less than the
minimum ROI multiple.
"""

from typing import Optional

import pandas as pd

from candlebt.indicators.ema import calculate_ema, calculate_sma
from candlebt.indicators.macd import DARK_GREEN, calculate_macd, classify_histogram
from candlebt.strategy.base import DEFAULT_TARGET_ROI, BuySignal, Strategy, build_buy_signal


class MacdEmaStrategy(Strategy):
    """Below-zero MACD cross in a pullback."""

    name = "macdsma"

    def __init__(
        self,
        fast_period: int = 12,
        slow_period: int = 26,
        signal_period: int = 9,
        long_period: int = 200,
        volume_period: int = 20,
        swing_lookback: int = 5,
        risk_reward: float = 2.0,
        target_roi: float = DEFAULT_TARGET_ROI,
    ):
        if slow_period <= fast_period:
            raise ValueError("slow_period must be greater than fast_period")
        self.fast_period = fast_period
        self.slow_period = slow_period
        self.signal_period = signal_period
        self.long_period = long_period
        self.volume_period = volume_period
        self.swing_lookback = swing_lookback
        self.risk_reward = risk_reward
        self.target_roi = target_roi
        self.min_window = slow_period + signal_period

    def _evaluate(self, window: pd.DataFrame) -> Optional[BuySignal]:
        close = window["close"]
        volume = window["volume"]

        macd = calculate_macd(close, self.fast_period, self.slow_period, self.signal_period)
        macd_now, macd_prev = macd.macd_line.iloc[-1], macd.macd_line.iloc[-2]
        signal_now, signal_prev = macd.signal_line.iloc[-1], macd.signal_line.iloc[-2]

        below_zero = macd_now < 0 and signal_now < 0
        fresh_cross = macd_now > signal_now and macd_prev < signal_prev
        if not (below_zero and fresh_cross):
            return None

        if classify_histogram(macd.histogram).iloc[-1] != DARK_GREEN:
            return None

        average_volume = calculate_sma(volume, self.volume_period).iloc[-1]
        if pd.isna(average_volume) or not volume.iloc[-1] > average_volume:
            return None

        entry = float(close.iloc[-1])
        long_ema = calculate_ema(close, self.long_period).iloc[-1]
        if not entry < long_ema:
            return None

        swing_low = float(window["low"].iloc[-self.swing_lookback:].min())
        risking = (swing_low - entry) / entry * 100  # negative when the swing low is below entry
        roi = max(self.target_roi, risking * -self.risk_reward / 100 + 1)

        return build_buy_signal(
            entry,
            entry * roi,
            stop_loss=swing_low,
            risk_reward_ratio=self.risk_reward,
        )
