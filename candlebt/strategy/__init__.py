"""
Entry strategies and the name-based registry.

Provides:
- Strategy: base class, evaluate(window) -> BuySignal | None
- BuySignal: clamped target/stop proposal
- StrategyRegistry / default_registry: name lookup without fallback
"""

from candlebt.strategy.base import BuySignal, Strategy, build_buy_signal
from candlebt.strategy.registry import StrategyRegistry, UnknownStrategyError, default_registry

__all__ = [
    "BuySignal",
    "Strategy",
    "StrategyRegistry",
    "UnknownStrategyError",
    "build_buy_signal",
    "default_registry",
]
