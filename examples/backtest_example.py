"""
Example demonstrating an offline backtest with the built-in strategies.

This script shows how to:
1. Build a candle series (here: synthetic, no network access)
2. Pick strategies from the registry
3. Run the simulator in both sizing modes
4. Inspect metrics, trades and the equity curve
"""

import math
from datetime import datetime, timedelta, timezone

from config.settings import SizingMode
from candlebt.backtest.backtester import BacktestConfig, BacktestSimulator, equity_frame
from candlebt.market.models import Candle
from candlebt.strategy.registry import default_registry


def generate_sample_candles(days: int = 60) -> list[Candle]:
    """
    Generate hourly candles with a slow trend and repeating swings.

    In production, assemble real history with HistoricalRangeAssembler.
    """
    start = datetime(2024, 1, 1, tzinfo=timezone.utc)
    candles = []

    price = 50000.0
    for i in range(days * 24):
        open_time = start + timedelta(hours=i)
        swing = math.sin(i / 9) * 0.012 + math.sin(i / 41) * 0.02
        close = 50000.0 * (1 + i * 0.0002 + swing)
        high = max(price, close) * 1.003
        low = min(price, close) * 0.997
        volume = 900 + 400 * abs(math.sin(i / 5))

        candles.append(
            Candle(
                open_time=open_time,
                open=price,
                high=high,
                low=low,
                close=close,
                volume=volume,
                close_time=open_time + timedelta(hours=1) - timedelta(milliseconds=1),
                quote_volume=volume * close,
                trade_count=int(volume * 3),
                taker_buy_base_volume=volume / 2,
                taker_buy_quote_volume=volume * close / 2,
            )
        )
        price = close

    return candles


def main():
    """Run backtest example."""
    candles = generate_sample_candles()
    registry = default_registry()
    warmup = registry.max_min_window()

    print(f"Candles: {len(candles)}  warm-up: {warmup}\n")

    # 1. Every strategy with the full-balance single-position model
    simulator = BacktestSimulator(BacktestConfig(initial_balance=1000.0, fee_percent=0.36, warmup=warmup))
    for name in registry.names():
        result = simulator.run(candles, registry.create(name))
        print(
            f"{name:<20} trades={result.total_trades:<4} roi={result.total_roi:7.2f}%  "
            f"win={result.win_rate:5.1f}%  dd={result.max_drawdown:5.2f}%  sharpe={result.sharpe_ratio:6.2f}"
        )

    # 2. Fixed-fraction sizing with up to four concurrent positions
    fractional = BacktestSimulator(
        BacktestConfig(
            sizing_mode=SizingMode.FIXED_FRACTION,
            position_fraction_percent=25.0,
            max_open_positions=4,
            warmup=warmup,
        )
    )
    result = fractional.run(candles, registry.create("rsi"))
    print("\nRSI, 25% fixed fraction, 4 positions:\n")
    print(result.summary())

    # 3. Trades and equity curve
    for trade in result.trades[:5]:
        print(
            f"  {trade.entry_time:%Y-%m-%d %H:%M} -> {trade.exit_time:%Y-%m-%d %H:%M} "
            f"{trade.status.value:<16} pnl={trade.pnl_percent:6.2f}%"
        )
    curve = equity_frame(result)
    if not curve.empty:
        print(f"\nEquity curve: {len(curve)} points, low {curve['balance'].min():,.2f}")


if __name__ == "__main__":
    main()
