"""
Strategy registry.

Maps configuration names to strategy factories. Lookup is
case-insensitive. An unknown name is a configuration error and raises
UnknownStrategyError; there is no fallback strategy.
"""

from typing import Callable

import structlog

from candlebt.strategy.base import Strategy
from candlebt.strategy.confluence import ConfluenceStrategy
from candlebt.strategy.macd_ema import MacdEmaStrategy
from candlebt.strategy.rsi_strategy import RSIStrategy
from candlebt.strategy.supertrend_strategy import SuperTrendStrategy
from candlebt.strategy.trendline_breakout import TrendlineBreakoutStrategy

logger = structlog.get_logger(__name__)

StrategyFactory = Callable[[], Strategy]


class UnknownStrategyError(ValueError):
    """Requested strategy name is not registered."""

    def __init__(self, name: str, available: list[str]):
        super().__init__(f"Unknown strategy: {name!r}. Available strategies: {', '.join(available)}")
        self.name = name
        self.available = available


class StrategyRegistry:
    """
    Name -> strategy factory lookup.

    Example:
        >>> registry = default_registry()
        >>> strategy = registry.create("rsi")
    """

    def __init__(self):
        self._factories: dict[str, StrategyFactory] = {}

    def register(self, name: str, factory: StrategyFactory) -> None:
        """Register a factory under a name. Names must be unique."""
        key = name.strip().lower()
        if not key:
            raise ValueError("Strategy name must not be empty")
        if key in self._factories:
            raise ValueError(f"Strategy {key!r} is already registered")
        self._factories[key] = factory

    def create(self, name: str) -> Strategy:
        """
        Build a fresh strategy instance.

        Raises:
            UnknownStrategyError: If no strategy is registered under name
        """
        key = (name or "").strip().lower()
        factory = self._factories.get(key)
        if factory is None:
            logger.error("unknown_strategy", requested=name, available=self.names())
            raise UnknownStrategyError(name, self.names())
        return factory()

    def names(self) -> list[str]:
        return sorted(self._factories)

    def max_min_window(self) -> int:
        """Largest minimum window across registered strategies (simulation warm-up)."""
        if not self._factories:
            return 0
        return max(factory().min_window for factory in self._factories.values())

    def __contains__(self, name: str) -> bool:
        return (name or "").strip().lower() in self._factories

    def __len__(self) -> int:
        return len(self._factories)


def default_registry() -> StrategyRegistry:
    """Registry with every built-in strategy."""
    registry = StrategyRegistry()
    registry.register(RSIStrategy.name, RSIStrategy)
    registry.register(MacdEmaStrategy.name, MacdEmaStrategy)
    registry.register(ConfluenceStrategy.name, ConfluenceStrategy)
    registry.register(TrendlineBreakoutStrategy.name, TrendlineBreakoutStrategy)
    registry.register(SuperTrendStrategy.name, SuperTrendStrategy)
    return registry
