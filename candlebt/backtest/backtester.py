"""
Candle-by-candle backtest simulator.

Replays a strategy over an ascending candle series with long-only,
target-exit positions:

    for each candle i after the warm-up:
        1. close positions opened earlier whose target lies within the
           candle's range (fill exactly at the target)
        2. if capacity remains and nothing closed on this candle, evaluate
           the strategy on the trailing window and open a position on a buy
        3. on the final candle, force-close what is still open at its close
        4. update balance, peak balance and maximum drawdown

Profit per trade, in percent of the invested amount:

    pnl_percent = (exit - entry) / entry * 100 - fee_percent

The simulator is deterministic: it reads no clock and no random source, so
the same series, strategy and configuration always produce the same result.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Optional, Sequence

import numpy as np
import pandas as pd
import structlog

from config.settings import SizingMode
from candlebt.market.models import Candle, candles_to_frame
from candlebt.strategy.base import BuySignal, Strategy

logger = structlog.get_logger(__name__)

TRADING_DAYS_PER_YEAR = 252


class PositionStatus(str, Enum):
    """Lifecycle of a simulated position."""
    OPEN = "open"
    CLOSED_AT_TARGET = "closed_at_target"
    CLOSED_AT_END = "closed_at_end"


class BacktestCancelledError(Exception):
    """Run aborted by the caller's cancellation check."""


@dataclass
class BacktestConfig:
    """Simulation parameters."""

    initial_balance: float = 1000.0
    fee_percent: float = 0.36  # Percentage points per round trip
    sizing_mode: SizingMode = SizingMode.FULL_BALANCE
    position_fraction_percent: float = 25.0  # fixed_fraction only
    max_open_positions: int = 1
    max_lookback: int = 200  # Trailing candles handed to the strategy
    warmup: Optional[int] = None  # Defaults to the strategy's minimum window
    target_roi_percent: Optional[float] = None  # Floor for every target

    def __post_init__(self):
        self.sizing_mode = SizingMode(self.sizing_mode)
        if self.initial_balance <= 0:
            raise ValueError(f"initial_balance must be positive, got {self.initial_balance}")
        if not (0 <= self.fee_percent <= 100):
            raise ValueError(f"fee_percent must be between 0 and 100, got {self.fee_percent}")
        if not (0 < self.position_fraction_percent <= 100):
            raise ValueError(
                f"position_fraction_percent must be in (0, 100], got {self.position_fraction_percent}"
            )
        if self.max_open_positions < 1:
            raise ValueError(f"max_open_positions must be >= 1, got {self.max_open_positions}")
        if self.sizing_mode == SizingMode.FULL_BALANCE and self.max_open_positions != 1:
            raise ValueError("full_balance sizing holds a single position; use fixed_fraction")
        if self.max_lookback < 2:
            raise ValueError(f"max_lookback must be >= 2, got {self.max_lookback}")
        if self.warmup is not None and self.warmup < 0:
            raise ValueError(f"warmup must be >= 0, got {self.warmup}")
        if self.target_roi_percent is not None and self.target_roi_percent < 0:
            raise ValueError(f"target_roi_percent must be >= 0, got {self.target_roi_percent}")


@dataclass
class Position:
    """Open simulated position."""

    entry_time: datetime
    entry_price: float
    target_price: float
    stop_loss: Optional[float]
    quantity: float
    invested: float
    opened_index: int
    status: PositionStatus = PositionStatus.OPEN


@dataclass(frozen=True)
class TradeRecord:
    """Closed position."""

    entry_time: datetime
    exit_time: datetime
    entry_price: float
    exit_price: float
    target_price: float
    stop_loss: Optional[float]
    quantity: float
    invested: float
    pnl: float
    pnl_percent: float
    balance_after: float
    status: PositionStatus

    @property
    def holding_duration(self) -> timedelta:
        return self.exit_time - self.entry_time

    @property
    def is_win(self) -> bool:
        return self.pnl > 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "entry_time": self.entry_time.isoformat(),
            "exit_time": self.exit_time.isoformat(),
            "entry_price": self.entry_price,
            "exit_price": self.exit_price,
            "target_price": self.target_price,
            "stop_loss": self.stop_loss,
            "quantity": self.quantity,
            "invested": round(self.invested, 2),
            "pnl": round(self.pnl, 2),
            "pnl_percent": round(self.pnl_percent, 2),
            "balance_after": round(self.balance_after, 2),
            "holding_hours": round(self.holding_duration.total_seconds() / 3600, 2),
            "status": self.status.value,
        }


@dataclass(frozen=True)
class EquityPoint:
    """Balance bookkeeping after one simulation step."""

    time: datetime
    balance: float
    peak_balance: float
    max_drawdown: float  # Percent, running maximum


@dataclass
class BacktestResult:
    """Complete results from a backtest run."""

    initial_balance: float
    final_balance: float
    total_roi: float  # Percent
    total_pnl: float
    total_trades: int
    winning_trades: int
    losing_trades: int
    win_rate: float  # Percent
    max_drawdown: float  # Percent
    sharpe_ratio: float
    trades: list[TradeRecord] = field(default_factory=list)
    equity_curve: list[EquityPoint] = field(default_factory=list)
    buy_signals: int = 0
    evaluation_errors: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Report shape with display rounding."""
        return {
            "initial_balance": round(self.initial_balance, 2),
            "final_balance": round(self.final_balance, 2),
            "total_roi": round(self.total_roi, 2),
            "total_pnl": round(self.total_pnl, 2),
            "total_trades": self.total_trades,
            "winning_trades": self.winning_trades,
            "losing_trades": self.losing_trades,
            "win_rate": round(self.win_rate, 1),
            "max_drawdown": round(self.max_drawdown, 2),
            "sharpe_ratio": round(self.sharpe_ratio, 2),
            "trades": [trade.to_dict() for trade in self.trades],
        }

    def summary(self) -> str:
        """Generate human-readable summary."""
        hours = [t.holding_duration.total_seconds() / 3600 for t in self.trades]
        avg_duration = sum(hours) / len(hours) if hours else 0.0
        return f"""
Backtest Results
================
Total ROI: {self.total_roi:.2f}%
Sharpe Ratio: {self.sharpe_ratio:.2f}
Max Drawdown: {self.max_drawdown:.2f}%
Win Rate: {self.win_rate:.1f}%
Total Trades: {self.total_trades} ({self.winning_trades} won, {self.losing_trades} lost)

Balance:
  Initial: ${self.initial_balance:,.2f}
  Final: ${self.final_balance:,.2f}
  PnL: ${self.total_pnl:,.2f}

Trade Stats:
  Buy Signals: {self.buy_signals}
  Avg Duration: {avg_duration:.1f}h
""".strip()


class BacktestSimulator:
    """
    Deterministic backtest simulator.

    Features:
    - Intrabar target fills: a target inside [low, high] fills exactly at target
    - Percentage fee deducted from every closed trade
    - Full-balance single position, or fixed-fraction multi-position sizing
    - Running maximum drawdown and Sharpe ratio of per-trade returns
    - Strategy errors on one candle are logged and treated as no signal

    Limitations:
    - Long-only; exits happen at the target or at the end of the series.
      Stop-loss prices are recorded but not traded.

    Example:
        >>> sim = BacktestSimulator(BacktestConfig(initial_balance=1000, fee_percent=0.36))
        >>> result = sim.run(candles, default_registry().create("rsi"))
        >>> print(result.summary())
    """

    def __init__(self, config: Optional[BacktestConfig] = None):
        self.config = config or BacktestConfig()

    def run(
        self,
        candles: Sequence[Candle],
        strategy: Strategy,
        cancelled: Optional[Callable[[], bool]] = None,
    ) -> BacktestResult:
        """
        Run the strategy over a candle series.

        Args:
            candles: Ascending, unique-by-open_time series
            strategy: Strategy to evaluate on each trailing window
            cancelled: Optional check polled once per candle

        Returns:
            BacktestResult with metrics, trades and equity curve

        Raises:
            ValueError: If the series is empty
            BacktestCancelledError: If `cancelled()` returned True
        """
        if not candles:
            raise ValueError("Candle series cannot be empty")

        cfg = self.config
        frame = candles_to_frame(candles)
        warmup = cfg.warmup if cfg.warmup is not None else strategy.min_window
        last_index = len(candles) - 1

        logger.info(
            "backtest_starting",
            strategy=strategy.name,
            candles=len(candles),
            warmup=warmup,
            start=candles[0].open_time.isoformat(),
            end=candles[-1].open_time.isoformat(),
            initial_balance=cfg.initial_balance,
        )

        cash = cfg.initial_balance
        peak = cfg.initial_balance
        max_drawdown = 0.0
        open_positions: list[Position] = []
        trades: list[TradeRecord] = []
        equity_curve: list[EquityPoint] = []
        buy_signals = 0
        evaluation_errors = 0

        for i in range(warmup, len(candles)):
            if cancelled is not None and cancelled():
                logger.info("backtest_cancelled", strategy=strategy.name, index=i)
                raise BacktestCancelledError(f"Backtest cancelled at candle {i}")

            candle = candles[i]
            closed_this_candle = False

            for position in list(open_positions):
                if position.opened_index < i and candle.high >= position.target_price:
                    open_positions.remove(position)
                    cash += self._close(
                        position, candle.open_time, position.target_price,
                        PositionStatus.CLOSED_AT_TARGET, trades, cash, open_positions,
                    )
                    closed_this_candle = True

            can_enter = (
                not closed_this_candle
                and len(open_positions) < cfg.max_open_positions
                and cash > 0
            )
            if can_enter:
                window = frame.iloc[max(0, i + 1 - cfg.max_lookback): i + 1]
                try:
                    signal = strategy.evaluate(window)
                except Exception as e:
                    evaluation_errors += 1
                    logger.warning(
                        "strategy_evaluation_failed",
                        strategy=strategy.name,
                        index=i,
                        time=candle.open_time.isoformat(),
                        error=str(e),
                    )
                    signal = None

                if signal is not None:
                    buy_signals += 1
                    equity = cash + sum(p.invested for p in open_positions)
                    position = self._open(signal, candle, i, cash, equity)
                    if position is not None:
                        cash -= position.invested
                        open_positions.append(position)
                        logger.debug(
                            "backtest_position_opened",
                            time=candle.open_time.isoformat(),
                            entry=position.entry_price,
                            target=position.target_price,
                            invested=round(position.invested, 2),
                        )

            # An entry on the final candle closes at once, paying only the fee
            if i == last_index:
                for position in list(open_positions):
                    open_positions.remove(position)
                    cash += self._close(
                        position, candle.open_time, candle.close,
                        PositionStatus.CLOSED_AT_END, trades, cash, open_positions,
                    )

            balance = cash + sum(p.invested for p in open_positions)
            peak = max(peak, balance)
            drawdown = (peak - balance) / peak * 100 if peak > 0 else 0.0
            max_drawdown = max(max_drawdown, drawdown)
            equity_curve.append(EquityPoint(candle.open_time, balance, peak, max_drawdown))

        final_balance = cash + sum(p.invested for p in open_positions)
        result = self._build_result(final_balance, max_drawdown, trades, equity_curve)
        result.buy_signals = buy_signals
        result.evaluation_errors = evaluation_errors

        logger.info(
            "backtest_complete",
            strategy=strategy.name,
            trades=result.total_trades,
            total_roi=f"{result.total_roi:.2f}%",
            win_rate=f"{result.win_rate:.1f}%",
            max_drawdown=f"{result.max_drawdown:.2f}%",
            sharpe=f"{result.sharpe_ratio:.2f}",
            evaluation_errors=evaluation_errors,
        )
        return result

    def _open(
        self,
        signal: BuySignal,
        candle: Candle,
        index: int,
        cash: float,
        equity: float,
    ) -> Optional[Position]:
        cfg = self.config
        entry = candle.close
        target = signal.target_price
        if cfg.target_roi_percent:
            target = max(target, entry * (1 + cfg.target_roi_percent / 100))
        if target <= entry:
            logger.debug("backtest_signal_ignored", reason="target_not_above_entry", entry=entry, target=target)
            return None

        if cfg.sizing_mode == SizingMode.FULL_BALANCE:
            invested = cash
        else:
            invested = min(cash, equity * cfg.position_fraction_percent / 100)
        if invested <= 0:
            return None

        return Position(
            entry_time=candle.open_time,
            entry_price=entry,
            target_price=target,
            stop_loss=signal.stop_loss,
            quantity=invested / entry,
            invested=invested,
            opened_index=index,
        )

    def _close(
        self,
        position: Position,
        exit_time: datetime,
        exit_price: float,
        status: PositionStatus,
        trades: list[TradeRecord],
        cash: float,
        still_open: list[Position],
    ) -> float:
        """Record the trade and return the cash it releases."""
        pnl_percent = (exit_price - position.entry_price) / position.entry_price * 100 - self.config.fee_percent
        pnl = position.invested * pnl_percent / 100
        proceeds = position.invested + pnl
        position.status = status

        balance_after = cash + proceeds + sum(p.invested for p in still_open)
        trades.append(
            TradeRecord(
                entry_time=position.entry_time,
                exit_time=exit_time,
                entry_price=position.entry_price,
                exit_price=exit_price,
                target_price=position.target_price,
                stop_loss=position.stop_loss,
                quantity=position.quantity,
                invested=position.invested,
                pnl=pnl,
                pnl_percent=pnl_percent,
                balance_after=balance_after,
                status=status,
            )
        )
        logger.debug(
            "backtest_position_closed",
            time=exit_time.isoformat(),
            status=status.value,
            exit=exit_price,
            pnl=round(pnl, 2),
            pnl_percent=round(pnl_percent, 2),
        )
        return proceeds

    def _build_result(
        self,
        final_balance: float,
        max_drawdown: float,
        trades: list[TradeRecord],
        equity_curve: list[EquityPoint],
    ) -> BacktestResult:
        initial = self.config.initial_balance
        total_trades = len(trades)
        winning = sum(1 for t in trades if t.is_win)

        return BacktestResult(
            initial_balance=initial,
            final_balance=final_balance,
            total_roi=(final_balance - initial) / initial * 100,
            total_pnl=final_balance - initial,
            total_trades=total_trades,
            winning_trades=winning,
            losing_trades=total_trades - winning,
            win_rate=winning / total_trades * 100 if total_trades else 0.0,
            max_drawdown=max_drawdown,
            sharpe_ratio=calculate_sharpe_ratio([t.pnl_percent / 100 for t in trades]),
            trades=trades,
            equity_curve=equity_curve,
        )


def calculate_sharpe_ratio(returns: Sequence[float]) -> float:
    """
    Annualized Sharpe ratio of per-trade returns.

    mean / population stdev * sqrt(252); 0 when there are no returns or
    they do not vary.
    """
    if len(returns) == 0:
        return 0.0
    values = np.asarray(returns, dtype=float)
    std = values.std()
    if std == 0 or not np.isfinite(std):
        return 0.0
    return float(values.mean() / std * np.sqrt(TRADING_DAYS_PER_YEAR))


def equity_frame(result: BacktestResult) -> pd.DataFrame:
    """Equity curve as a DataFrame indexed by candle time."""
    frame = pd.DataFrame(
        [(p.time, p.balance, p.peak_balance, p.max_drawdown) for p in result.equity_curve],
        columns=["time", "balance", "peak_balance", "max_drawdown"],
    )
    return frame.set_index("time")
