"""
Historical backtesting: deterministic simulator and the backtest service.

Replays a registered strategy over assembled candle history with
target-exit positions, fees and drawdown/Sharpe metrics.
"""

from candlebt.backtest.backtester import (
    BacktestCancelledError,
    BacktestConfig,
    BacktestResult,
    BacktestSimulator,
    PositionStatus,
    TradeRecord,
)
from candlebt.backtest.roi_sweep import RoiSweepResult, calculate_compounded_pnl, roi_range, sweep_target_roi
from candlebt.backtest.service import BacktestReport, BacktestRequest, BacktestService

__all__ = [
    "BacktestCancelledError",
    "BacktestConfig",
    "BacktestReport",
    "BacktestRequest",
    "BacktestResult",
    "BacktestService",
    "BacktestSimulator",
    "PositionStatus",
    "RoiSweepResult",
    "TradeRecord",
    "calculate_compounded_pnl",
    "roi_range",
    "sweep_target_roi",
]
