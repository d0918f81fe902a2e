"""
Tests for the target-ROI sweep.
"""

from types import SimpleNamespace

import pytest

from candlebt.backtest.backtester import BacktestConfig
from candlebt.backtest.roi_sweep import (
    RoiSweepResult,
    calculate_compounded_pnl,
    roi_range,
    sweep_target_roi,
)
from candlebt.strategy.base import BuySignal, Strategy


class BuyOnce(Strategy):
    """Buys once, on the second candle, with a target just above entry."""

    name = "buy-once"
    min_window = 2

    def _evaluate(self, window):
        if int(window.index[-1]) != 1:
            return None
        return BuySignal(target_price=float(window["close"].iloc[-1]) * 1.005)


CLOSES = [99.0, 100.0, 101.0, 102.0, 103.0, 104.0, 105.0]


def test_compounded_pnl_chains_returns():
    trades = [SimpleNamespace(pnl_percent=10.0), SimpleNamespace(pnl_percent=-5.0)]

    assert calculate_compounded_pnl(trades) == pytest.approx(4.5)
    assert calculate_compounded_pnl([]) == 0.0


class TestRoiRange:
    """Tests for the inclusive target range."""

    def test_inclusive_steps(self):
        assert roi_range(0.5, 1.0, 0.25) == [0.5, 0.75, 1.0]
        assert roi_range(0.1, 0.3, 0.1) == [0.1, 0.2, 0.3]

    def test_single_value(self):
        assert roi_range(1.0, 1.0, 0.1) == [1.0]

    @pytest.mark.parametrize("args", [(0.5, 1.0, 0.0), (0.5, 1.0, -0.1), (2.0, 1.0, 0.1), (-1.0, 1.0, 0.5)])
    def test_invalid_ranges(self, args):
        with pytest.raises(ValueError):
            roi_range(*args)


def test_sweep_reruns_simulator_per_target(flat_candles):
    candles = flat_candles(CLOSES)
    created = []

    def factory():
        created.append(BuyOnce())
        return created[-1]

    results = sweep_target_roi(
        candles,
        factory,
        [1.0, 3.0, 10.0],
        BacktestConfig(warmup=0, fee_percent=0.36),
    )

    assert len(created) == 3
    assert [r.target_roi_percent for r in results] == [1.0, 3.0, 10.0]
    assert [r.total_trades for r in results] == [1, 1, 1]
    # 101 and 103 are reached; 110 never is and the position closes at 105
    assert [r.compounded_pnl_percent for r in results] == pytest.approx([0.64, 2.64, 4.64])
    assert all(r.win_rate == 100.0 for r in results)


def test_sweep_leaves_base_config_untouched(flat_candles):
    config = BacktestConfig(warmup=0, target_roi_percent=50.0)

    sweep_target_roi(flat_candles(CLOSES), BuyOnce, [1.0], config)

    assert config.target_roi_percent == 50.0


def test_sweep_requires_targets(flat_candles):
    with pytest.raises(ValueError):
        sweep_target_roi(flat_candles(CLOSES), BuyOnce, [])


def test_sweep_result_serialization():
    row = RoiSweepResult(
        target_roi_percent=1.5,
        total_trades=3,
        winning_trades=2,
        losing_trades=1,
        win_rate=66.6667,
        compounded_pnl_percent=2.34567,
        total_roi=2.3,
    )

    assert row.to_dict() == {
        "target_roi_percent": 1.5,
        "total_trades": 3,
        "winning_trades": 2,
        "losing_trades": 1,
        "win_rate": 66.7,
        "compounded_pnl_percent": 2.35,
        "total_roi": 2.3,
    }


def test_unreached_target_closes_at_end(flat_candles):
    results = sweep_target_roi(flat_candles(CLOSES), BuyOnce, [10.0], BacktestConfig(warmup=0))

    assert results[0].losing_trades == 0
    assert results[0].total_roi == pytest.approx(4.64)
