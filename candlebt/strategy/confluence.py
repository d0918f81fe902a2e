"""
Multi-indicator confluence strategy for spot trading.

Scores six conditions and buys when at least `min_score` hold and the
EMA(9/21) bullish crossover is one of them:

1. EMA crossover: EMA(9) crossed above EMA(21) on this bar (mandatory)
2. Uptrend: close > EMA(50) > EMA(200); without 200 bars of history,
   close > EMA(50) and EMA(9) > EMA(21)
3. RSI: recovered through 45, or between 45 and 75
4. MACD: bullish cross, positive and rising histogram, or above signal
   with a positive histogram
5. Volume: at least 90% of the 20-bar average
6. Room: more than 1% below the nearest resistance (5% assumed if none)

Targets and stops:
    target = close + 2 * ATR, or 1.5% under a nearer resistance,
             floored at the minimum ROI multiple
    stop   = 0.5% under support when support is below close, else
             close - 1.2 * ATR
"""

from typing import Optional

import pandas as pd

from candlebt.indicators.atr import calculate_atr, get_atr_stop_loss, get_atr_take_profit
from candlebt.indicators.ema import calculate_ema, calculate_ema_crossover, calculate_sma
from candlebt.indicators.macd import calculate_macd
from candlebt.indicators.pivots import find_resistance_level, find_support_level
from candlebt.indicators.rsi import calculate_rsi
from candlebt.strategy.base import DEFAULT_TARGET_ROI, BuySignal, Strategy, build_buy_signal

# Distance to resistance assumed when no resistance is in range (percent)
_DEFAULT_RESISTANCE_DISTANCE = 5.0


class ConfluenceStrategy(Strategy):
    """Scored EMA/RSI/MACD/volume confluence with ATR targets."""

    name = "btc-spot"
    min_window = 50

    def __init__(
        self,
        min_score: int = 4,
        atr_period: int = 14,
        target_atr_multiplier: float = 2.0,
        stop_atr_multiplier: float = 1.2,
        min_volume_ratio: float = 0.9,
        min_resistance_distance: float = 1.0,
        target_roi: float = DEFAULT_TARGET_ROI,
    ):
        if not 1 <= min_score <= 6:
            raise ValueError(f"min_score must be between 1 and 6, got {min_score}")
        self.min_score = min_score
        self.atr_period = atr_period
        self.target_atr_multiplier = target_atr_multiplier
        self.stop_atr_multiplier = stop_atr_multiplier
        self.min_volume_ratio = min_volume_ratio
        self.min_resistance_distance = min_resistance_distance
        self.target_roi = target_roi

    def score(self, window: pd.DataFrame) -> tuple[int, bool]:
        """
        Count satisfied conditions.

        Returns:
            Tuple of (score, ema_crossover)
        """
        close = window["close"]
        volume = window["volume"]
        last_close = float(close.iloc[-1])

        crossover = calculate_ema_crossover(close, 9, 21)
        ema9, ema21 = crossover.ema_fast, crossover.ema_slow
        ema50 = calculate_ema(close, 50)

        ema_crossover = bool(crossover.crossover_up.iloc[-1])

        if len(window) >= 200:
            ema200 = calculate_ema(close, 200)
            uptrend = last_close > ema50.iloc[-1] > ema200.iloc[-1]
        else:
            uptrend = last_close > ema50.iloc[-1] and ema9.iloc[-1] > ema21.iloc[-1]

        rsi = calculate_rsi(close, 14)
        rsi_now, rsi_prev = rsi.iloc[-1], rsi.iloc[-2]
        rsi_bullish = (rsi_prev < 45 < rsi_now) or (45 < rsi_now < 75)

        macd = calculate_macd(close)
        macd_now, macd_prev = macd.macd_line.iloc[-1], macd.macd_line.iloc[-2]
        signal_now, signal_prev = macd.signal_line.iloc[-1], macd.signal_line.iloc[-2]
        hist_now, hist_prev = macd.histogram.iloc[-1], macd.histogram.iloc[-2]
        macd_bullish = (
            (macd_prev <= signal_prev and macd_now > signal_now)
            or (macd_now > 0 and hist_now > hist_prev)
            or (macd_now > signal_now and hist_now > 0)
        )

        average_volume = calculate_sma(volume, 20).iloc[-1]
        volume_ok = average_volume > 0 and volume.iloc[-1] / average_volume > self.min_volume_ratio

        resistance = find_resistance_level(window["high"], last_close)
        if resistance is not None:
            distance = (resistance - last_close) / last_close * 100
        else:
            distance = _DEFAULT_RESISTANCE_DISTANCE
        room = distance > self.min_resistance_distance

        conditions = (ema_crossover, uptrend, rsi_bullish, macd_bullish, volume_ok, room)
        return sum(bool(c) for c in conditions), ema_crossover

    def _evaluate(self, window: pd.DataFrame) -> Optional[BuySignal]:
        score, ema_crossover = self.score(window)
        if not (ema_crossover and score >= self.min_score):
            return None

        entry = float(window["close"].iloc[-1])
        atr = calculate_atr(window["high"], window["low"], window["close"], self.atr_period).atr.iloc[-1]
        if pd.isna(atr):
            return None

        target = get_atr_take_profit(entry, atr, self.target_atr_multiplier)
        resistance = find_resistance_level(window["high"], entry)
        if resistance is not None and resistance < target:
            target = resistance * 0.985
        target = max(target, entry * self.target_roi)

        support = find_support_level(window["low"], entry)
        if support is not None:
            stop = support * 0.995
        else:
            stop = get_atr_stop_loss(entry, atr, self.stop_atr_multiplier)

        return build_buy_signal(entry, target, stop_loss=stop)
