"""
Strategy contract and the buy-signal value type.

A strategy is a pure function of a trailing candle window: it reads the
window, never mutates it, and answers either None (no signal) or a
BuySignal. The window is a DataFrame produced by candles_to_frame; its last
row is the most recent closed candle, whose close is the entry price.

Every BuySignal passes through build_buy_signal, which enforces the
risk clamps shared by all strategies:

- target at most MAX_TARGET_PERCENT above entry
- stop-loss at most MAX_STOP_PERCENT below entry
- a stop at or above entry is replaced by entry - FALLBACK_STOP_PERCENT
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import numpy as np
import pandas as pd

# Shared risk clamps (percent of entry)
MAX_TARGET_PERCENT = 5.0
MAX_STOP_PERCENT = 3.0
FALLBACK_STOP_PERCENT = 2.0

# Minimum target as a multiple of entry
DEFAULT_TARGET_ROI = 1.01

REQUIRED_COLUMNS = ("open", "high", "low", "close", "volume")


@dataclass(frozen=True)
class BuySignal:
    """Request to open a long position at the window's last close."""

    target_price: float
    stop_loss: Optional[float] = None
    roi_at_target: float = 0.0  # target / entry
    risk_reward_ratio: float = 0.0
    risk_percent: float = 0.0  # distance entry -> stop, percent of entry


def build_buy_signal(
    entry: float,
    target: float,
    stop_loss: Optional[float] = None,
    risk_reward_ratio: Optional[float] = None,
) -> BuySignal:
    """
    Apply the shared clamps and derive ROI and risk figures.

    Args:
        entry: Entry price (last close)
        target: Raw target price from the strategy
        stop_loss: Raw stop-loss price, None when the strategy sets none
        risk_reward_ratio: Ratio to report; derived from target/stop if None

    Returns:
        Clamped BuySignal
    """
    target = min(target, entry * (1 + MAX_TARGET_PERCENT / 100))

    risk_percent = 0.0
    if stop_loss is not None:
        stop_loss = max(stop_loss, entry * (1 - MAX_STOP_PERCENT / 100))
        if stop_loss >= entry:
            stop_loss = entry * (1 - FALLBACK_STOP_PERCENT / 100)
        risk_percent = (entry - stop_loss) / entry * 100

    if risk_reward_ratio is None:
        reward_percent = (target - entry) / entry * 100
        risk_reward_ratio = reward_percent / risk_percent if reward_percent > 0 and risk_percent > 0 else 0.0

    return BuySignal(
        target_price=target,
        stop_loss=stop_loss,
        roi_at_target=target / entry,
        risk_reward_ratio=risk_reward_ratio,
        risk_percent=risk_percent,
    )


class Strategy(ABC):
    """
    Base class for entry strategies.

    Subclasses set `name` and `min_window` and implement `_evaluate`.
    `evaluate` rejects windows that are too short, incomplete or
    degenerate (flat prices or no traded volume) before the rule runs, so
    `_evaluate` can assume usable data.
    """

    name: str = ""
    min_window: int = 2

    def evaluate(self, window: pd.DataFrame) -> Optional[BuySignal]:
        """
        Evaluate the strategy on a trailing window.

        Args:
            window: Candle DataFrame, oldest row first

        Returns:
            BuySignal, or None for no signal
        """
        if len(window) < self.min_window:
            return None
        prices = window.loc[:, list(REQUIRED_COLUMNS)]
        if prices.isna().to_numpy().any():
            return None
        if not np.isfinite(prices.to_numpy(dtype=float)).all():
            return None
        if prices["close"].nunique() < 2 or prices["volume"].sum() <= 0:
            return None
        # Entry is the last close; targets and ROI are ratios of it
        if prices["close"].iloc[-1] <= 0:
            return None

        signal = self._evaluate(window)
        if signal is None or not np.isfinite(signal.target_price):
            return None
        return signal

    @abstractmethod
    def _evaluate(self, window: pd.DataFrame) -> Optional[BuySignal]:
        """Strategy-specific rule on a validated window."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, min_window={self.min_window})"
