"""
Target-ROI sweep: rerun one strategy over the same candles with a range of
target-ROI floors and compare the compounded outcome of each.

Each run uses a fresh strategy instance so no state leaks between targets.
The compounded PnL chains the closed trades' percentage returns:

    compounded = (prod(1 + pnl_percent / 100) - 1) * 100
"""

import math
from dataclasses import dataclass, replace
from typing import Any, Callable, Optional, Sequence

import structlog

from candlebt.backtest.backtester import BacktestConfig, BacktestResult, BacktestSimulator, TradeRecord
from candlebt.market.models import Candle
from candlebt.strategy.base import Strategy

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class RoiSweepResult:
    """Outcome of one target-ROI run."""

    target_roi_percent: float
    total_trades: int
    winning_trades: int
    losing_trades: int
    win_rate: float  # Percent
    compounded_pnl_percent: float
    total_roi: float  # Percent, balance based

    @classmethod
    def from_result(cls, target_roi_percent: float, result: BacktestResult) -> "RoiSweepResult":
        return cls(
            target_roi_percent=target_roi_percent,
            total_trades=result.total_trades,
            winning_trades=result.winning_trades,
            losing_trades=result.losing_trades,
            win_rate=result.win_rate,
            compounded_pnl_percent=calculate_compounded_pnl(result.trades),
            total_roi=result.total_roi,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "target_roi_percent": self.target_roi_percent,
            "total_trades": self.total_trades,
            "winning_trades": self.winning_trades,
            "losing_trades": self.losing_trades,
            "win_rate": round(self.win_rate, 1),
            "compounded_pnl_percent": round(self.compounded_pnl_percent, 2),
            "total_roi": round(self.total_roi, 2),
        }


def calculate_compounded_pnl(trades: Sequence[TradeRecord]) -> float:
    """Chain per-trade percentage returns into one total percentage."""
    total = 1.0
    for trade in trades:
        total *= 1 + trade.pnl_percent / 100
    return (total - 1) * 100


def roi_range(start: float, stop: float, step: float) -> list[float]:
    """
    Inclusive range of target ROIs in percent, rounded to 4 decimals.

    Raises:
        ValueError: If step is not positive, start is negative or stop < start
    """
    if step <= 0:
        raise ValueError(f"step must be positive, got {step}")
    if start < 0 or stop < start:
        raise ValueError(f"Invalid ROI range {start}..{stop}")
    count = int(math.floor((stop - start) / step + 1e-9)) + 1
    return [round(start + k * step, 4) for k in range(count)]


def sweep_target_roi(
    candles: Sequence[Candle],
    strategy_factory: Callable[[], Strategy],
    target_rois: Sequence[float],
    config: Optional[BacktestConfig] = None,
) -> list[RoiSweepResult]:
    """
    Run the simulator once per target ROI.

    Args:
        candles: Ascending candle series, shared by every run
        strategy_factory: Returns a fresh strategy for each run
        target_rois: Target-ROI floors in percent
        config: Base configuration; its target_roi_percent is replaced per run

    Returns:
        One RoiSweepResult per target, in the order given
    """
    if not target_rois:
        raise ValueError("target_rois must not be empty")
    base = config or BacktestConfig()

    results = []
    for target in target_rois:
        simulator = BacktestSimulator(replace(base, target_roi_percent=target))
        outcome = RoiSweepResult.from_result(target, simulator.run(candles, strategy_factory()))
        results.append(outcome)
        logger.debug(
            "roi_sweep_step",
            target_roi_percent=target,
            trades=outcome.total_trades,
            compounded_pnl=round(outcome.compounded_pnl_percent, 2),
        )

    best = max(results, key=lambda r: r.compounded_pnl_percent)
    logger.info(
        "roi_sweep_complete",
        runs=len(results),
        best_target_roi=best.target_roi_percent,
        best_compounded_pnl=round(best.compounded_pnl_percent, 2),
    )
    return results
