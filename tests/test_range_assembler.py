"""
Tests for historical range assembly.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest
from freezegun import freeze_time

from candlebt.market.errors import FatalFetchError, InvalidDateRangeError, NoDataError
from candlebt.market.models import Interval, to_epoch_ms
from candlebt.market.range_assembler import (
    HistoricalRangeAssembler,
    find_gaps,
    parse_date,
)

START = datetime(2024, 1, 1, tzinfo=timezone.utc)
NOW = datetime(2024, 3, 1, tzinfo=timezone.utc)
HOUR = timedelta(hours=1)


class FakeRepository:
    """
    In-memory candle source answering like the klines endpoint.

    Paged requests (with end_time) only see candles up to `paged_cutoff`,
    which imitates a lagging page.
    """

    def __init__(self, candles, paged_cutoff=None, latest_error=None):
        self.candles = candles
        self.paged_cutoff = paged_cutoff
        self.latest_error = latest_error
        self.calls = []

    async def fetch(self, symbol, interval, limit=500, end_time=None):
        self.calls.append((symbol, interval, limit, end_time))
        if end_time is None:
            if self.latest_error is not None:
                raise self.latest_error
            return list(self.candles[-limit:])

        visible = [c for c in self.candles if c.open_time_ms <= end_time]
        if self.paged_cutoff is not None:
            visible = [c for c in visible if c.open_time <= self.paged_cutoff]
        return visible[-limit:]


@pytest.fixture
def history(candle_factory):
    """Hourly candles from START up to and including `until`."""
    def _build(until=NOW - HOUR):
        count = int((until - START) / HOUR) + 1
        return [candle_factory(i, 100.0 + (i % 50)) for i in range(count)]
    return _build


def _assembler(repository, **kwargs):
    kwargs.setdefault("sleep", AsyncMock())
    return HistoricalRangeAssembler(repository, clock=lambda: NOW, **kwargs)


@pytest.mark.asyncio
async def test_assemble_pages_backwards_and_normalizes(history):
    repo = FakeRepository(history())
    sleep = AsyncMock()
    assembler = _assembler(repo, batch_size=10, sleep=sleep)

    candles = await assembler.assemble(
        "BTCUSDT", "1h", "2024-02-01T00:00:00Z", "2024-02-02T00:00:00Z"
    )

    times = [c.open_time for c in candles]
    assert len(candles) == 25
    assert times[0] == datetime(2024, 2, 1, tzinfo=timezone.utc)
    assert times[-1] == datetime(2024, 2, 2, tzinfo=timezone.utc)
    assert times == sorted(set(times))

    assert len(repo.calls) == 3
    assert repo.calls[0][3] == to_epoch_ms(datetime(2024, 2, 2, tzinfo=timezone.utc))
    # Each page ends where the previous one started
    assert repo.calls[1][3] == to_epoch_ms(datetime(2024, 2, 1, 15, tzinfo=timezone.utc))
    assert sleep.await_count == 2
    sleep.assert_awaited_with(1.0)


@pytest.mark.asyncio
async def test_assemble_stops_at_start_of_history(history):
    """A page that does not move the cursor ends the walk."""
    repo = FakeRepository(history())
    assembler = _assembler(repo, batch_size=4)

    candles = await assembler.assemble(
        "BTCUSDT", "1h", "2023-12-31T00:00:00Z", "2024-01-01T05:00:00Z"
    )

    assert [c.open_time for c in candles] == [START + i * HOUR for i in range(6)]
    paged = [call for call in repo.calls if call[3] is not None]
    assert len(paged) == 3


@pytest.mark.asyncio
async def test_assemble_without_data_raises():
    repo = FakeRepository([])
    assembler = _assembler(repo)

    with pytest.raises(NoDataError):
        await assembler.assemble("BTCUSDT", "1h", "2024-02-01", "2024-02-02")


@pytest.mark.asyncio
async def test_stale_result_is_topped_up_with_latest_candles(history):
    repo = FakeRepository(history(), paged_cutoff=NOW - 5 * HOUR)
    assembler = _assembler(repo)

    candles = await assembler.assemble("BTCUSDT", "1h", NOW - timedelta(days=1), NOW)

    assert candles[-1].open_time == NOW - HOUR
    assert len(candles) == 24
    assert repo.calls[-1] == ("BTCUSDT", Interval.ONE_HOUR, 100, None)


@pytest.mark.asyncio
async def test_failed_freshness_fetch_keeps_paged_result(history):
    repo = FakeRepository(
        history(),
        paged_cutoff=NOW - 5 * HOUR,
        latest_error=FatalFetchError("down", attempts=3),
    )
    assembler = _assembler(repo)

    candles = await assembler.assemble("BTCUSDT", "1h", NOW - timedelta(days=1), NOW)

    assert candles[-1].open_time == NOW - 5 * HOUR
    assert len(candles) == 20


@pytest.mark.asyncio
async def test_fresh_result_skips_freshness_fetch(history):
    repo = FakeRepository(history())
    assembler = _assembler(repo)

    await assembler.assemble("BTCUSDT", "1h", NOW - timedelta(hours=10), NOW)

    assert all(call[3] is not None for call in repo.calls)


@pytest.mark.asyncio
async def test_page_fetch_errors_propagate():
    repo = AsyncMock()
    repo.fetch.side_effect = FatalFetchError("down", attempts=3)
    assembler = _assembler(repo)

    with pytest.raises(FatalFetchError):
        await assembler.assemble("BTCUSDT", "1h")


@pytest.mark.asyncio
async def test_assemble_rejects_bad_dates_before_fetching(history):
    repo = FakeRepository(history())
    assembler = _assembler(repo)

    with pytest.raises(InvalidDateRangeError):
        await assembler.assemble("BTCUSDT", "1h", "yesterday", None)
    assert repo.calls == []


class TestResolveRange:
    """Tests for range clamping."""

    def test_defaults_to_lookback_ending_now(self):
        assembler = _assembler(FakeRepository([]))

        assert assembler.resolve_range() == (NOW - timedelta(days=30), NOW)

    def test_future_end_is_clamped_to_now(self):
        assembler = _assembler(FakeRepository([]))

        start, end = assembler.resolve_range("2024-02-20T00:00:00Z", "2025-01-01T00:00:00Z")

        assert end == NOW
        assert start == datetime(2024, 2, 20, tzinfo=timezone.utc)

    def test_start_not_before_end_uses_default_lookback(self):
        assembler = _assembler(FakeRepository([]))

        start, end = assembler.resolve_range("2024-02-10", "2024-02-05")

        assert end == datetime(2024, 2, 5, tzinfo=timezone.utc)
        assert start == end - timedelta(days=30)

    def test_start_is_clamped_to_max_lookback(self):
        assembler = _assembler(FakeRepository([]))

        start, _ = assembler.resolve_range("2015-01-01", None)

        assert start == NOW - timedelta(days=730)

    def test_invalid_date_string(self):
        assembler = _assembler(FakeRepository([]))

        with pytest.raises(InvalidDateRangeError) as exc_info:
            assembler.resolve_range(None, "01/02/2024")

        assert isinstance(exc_info.value, ValueError)
        assert "end date" in str(exc_info.value)

    @freeze_time("2024-03-01 00:00:00")
    def test_default_clock_is_utc_now(self):
        assembler = HistoricalRangeAssembler(FakeRepository([]))

        _, end = assembler.resolve_range()

        assert end == NOW


def test_parse_date_accepts_z_suffix_and_naive_values():
    assert parse_date("2024-02-01T12:00:00Z") == datetime(2024, 2, 1, 12, tzinfo=timezone.utc)
    assert parse_date("2024-02-01T12:00:00") == datetime(2024, 2, 1, 12, tzinfo=timezone.utc)
    assert parse_date(datetime(2024, 2, 1)) == datetime(2024, 2, 1, tzinfo=timezone.utc)
    assert parse_date(None) is None


def test_expected_points():
    assembler = _assembler(FakeRepository([]))

    assert assembler.expected_points(NOW - timedelta(days=1), NOW, Interval.ONE_HOUR) == 24
    assert assembler.expected_points(NOW, NOW, Interval.ONE_HOUR) == 1


def test_find_gaps_reports_missing_candles(candle_factory):
    candles = [candle_factory(i, 100.0) for i in (0, 1, 2, 5, 6)]

    gaps = find_gaps(candles, Interval.ONE_HOUR)

    assert gaps == [(START + 2 * HOUR, START + 5 * HOUR)]


def test_invalid_construction():
    with pytest.raises(ValueError):
        HistoricalRangeAssembler(FakeRepository([]), batch_size=0)
    with pytest.raises(ValueError):
        HistoricalRangeAssembler(
            FakeRepository([]),
            default_lookback=timedelta(days=30),
            max_lookback=timedelta(days=7),
        )
