"""
Pytest configuration and shared fixtures for candlebt tests.
"""

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

# Add project root to path for imports
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

import pytest
from unittest.mock import MagicMock
import numpy as np

# Silence structlog during tests
import structlog

from candlebt.market.models import Candle, candles_to_frame


def _mock_logger_factory(*args):
    """Factory that creates mock loggers for testing."""
    mock = MagicMock()
    # Configure mock methods to return the mock itself (for chaining)
    mock.bind.return_value = mock
    return mock


structlog.configure(
    processors=[],
    logger_factory=_mock_logger_factory,
)


START = datetime(2024, 1, 1, tzinfo=timezone.utc)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_candle(
    index: int,
    close: float,
    high: float = None,
    low: float = None,
    open_: float = None,
    volume: float = 1000.0,
    start: datetime = START,
    interval: timedelta = timedelta(hours=1),
) -> Candle:
    """Build a candle at start + index * interval."""
    open_time = start + index * interval
    open_ = close if open_ is None else open_
    return Candle(
        open_time=open_time,
        open=open_,
        high=max(open_, close) if high is None else high,
        low=min(open_, close) if low is None else low,
        close=close,
        volume=volume,
        close_time=open_time + interval - timedelta(milliseconds=1),
        quote_volume=volume * close,
        trade_count=100,
        taker_buy_base_volume=volume / 2,
        taker_buy_quote_volume=volume * close / 2,
    )


def wire_row(open_time_ms: int, close: float = 100.0, interval_ms: int = 3_600_000) -> list:
    """Quote-source row for a candle opening at open_time_ms."""
    return [
        open_time_ms,
        f"{close:.2f}",
        f"{close * 1.01:.2f}",
        f"{close * 0.99:.2f}",
        f"{close:.2f}",
        "10.5",
        open_time_ms + interval_ms - 1,
        "1050.0",
        42,
        "5.0",
        "500.0",
        "0",
    ]


# ============================================================================
# Shared Fixtures
# ============================================================================

@pytest.fixture
def fake_clock():
    """Monotonic clock advanced by hand."""
    return FakeClock()


@pytest.fixture
def candle_factory():
    """Single-candle builder."""
    return make_candle


@pytest.fixture
def flat_candles():
    """Series builder from a list of closes (high/low hug the close)."""
    def _build(closes, volume=1000.0):
        return [make_candle(i, c, volume=volume) for i, c in enumerate(closes)]
    return _build


@pytest.fixture
def sample_candles():
    """Generate a deterministic random-walk candle series."""
    def _generate(length=300, base_price=100.0, volatility=0.01, seed=42):
        rng = np.random.default_rng(seed)
        candles = []
        price = base_price
        for i in range(length):
            open_ = price
            price = max(1.0, price * (1 + rng.normal(0, volatility)))
            high = max(open_, price) * (1 + abs(rng.normal(0, volatility / 2)))
            low = min(open_, price) * (1 - abs(rng.normal(0, volatility / 2)))
            volume = float(rng.uniform(500, 1500))
            candles.append(make_candle(i, price, high=high, low=low, open_=open_, volume=volume))
        return candles
    return _generate


@pytest.fixture
def sample_ohlcv_data(sample_candles):
    """Random-walk series as a DataFrame, for indicator tests."""
    def _generate(length=100, base_price=100.0, volatility=0.02):
        return candles_to_frame(sample_candles(length=length, base_price=base_price, volatility=volatility))
    return _generate


@pytest.fixture
def wire_rows():
    """Quote-source row builder."""
    return wire_row
