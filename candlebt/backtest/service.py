"""
Backtest service: the entry point used by the CLI and by callers that
drive live loops.

run_backtest resolves the strategy first, so a configuration mistake fails
before any network traffic, then assembles the candle range, runs the
simulator and wraps the result with the effective request parameters.
The most recent reports are kept in a bounded in-memory history.
"""

from collections import deque
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Any, Callable, Optional, Union

import structlog

from config.settings import Settings
from candlebt.backtest.backtester import BacktestConfig, BacktestResult, BacktestSimulator
from candlebt.backtest.roi_sweep import RoiSweepResult, sweep_target_roi
from candlebt.market.candle_repository import CandleRepository, RetryPolicy
from candlebt.market.models import Candle, Interval
from candlebt.market.range_assembler import HistoricalRangeAssembler, utc_now
from candlebt.strategy.base import Strategy
from candlebt.strategy.registry import StrategyRegistry, default_registry

logger = structlog.get_logger(__name__)

# Length of a "month" when reporting the tested period
MONTH = timedelta(days=30)


@dataclass
class BacktestRequest:
    """Parameters of one backtest run."""

    asset: str
    timeframe: str
    strategy: str
    start_date: Union[datetime, str, None] = None
    end_date: Union[datetime, str, None] = None
    target_roi_percent: Optional[float] = None


@dataclass
class BacktestReport:
    """Backtest result plus the effective request parameters."""

    asset: str
    symbol: str
    timeframe: str
    strategy: str
    start_date: datetime
    end_date: datetime
    period_months: float
    candles: int
    result: BacktestResult

    def to_dict(self) -> dict[str, Any]:
        return {
            "asset": self.asset,
            "symbol": self.symbol,
            "timeframe": self.timeframe,
            "strategy": self.strategy,
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "period_months": self.period_months,
            "candles": self.candles,
            **self.result.to_dict(),
        }

    def summary(self) -> str:
        header = (
            f"{self.symbol} {self.timeframe} / {self.strategy}\n"
            f"{self.start_date:%Y-%m-%d %H:%M} -> {self.end_date:%Y-%m-%d %H:%M} "
            f"({self.period_months} months, {self.candles} candles)"
        )
        return f"{header}\n\n{self.result.summary()}"


def trading_pair(asset: str, quote_currency: str = "USDT") -> str:
    """BTC -> BTCUSDT; symbols that already end in the quote are kept."""
    symbol = asset.strip().upper()
    if not symbol:
        raise ValueError("Asset must not be empty")
    quote = quote_currency.upper()
    if symbol.endswith(quote) and symbol != quote:
        return symbol
    return symbol + quote


class BacktestService:
    """
    Wires repository, assembler, registry and simulator together.

    Example:
        >>> service = BacktestService.from_settings(get_settings())
        >>> report = await service.run_backtest(BacktestRequest("BTC", "4h", "btc-spot"))
        >>> print(report.summary())
    """

    def __init__(
        self,
        repository: CandleRepository,
        assembler: Optional[HistoricalRangeAssembler] = None,
        registry: Optional[StrategyRegistry] = None,
        config: Optional[BacktestConfig] = None,
        quote_currency: str = "USDT",
        clock: Callable[[], datetime] = utc_now,
        history_size: int = 50,
    ):
        if history_size < 1:
            raise ValueError(f"history_size must be >= 1, got {history_size}")
        self.repository = repository
        self.assembler = assembler or HistoricalRangeAssembler(repository, clock=clock)
        self.registry = registry or default_registry()
        self.config = config or BacktestConfig()
        self.quote_currency = quote_currency
        self._history: deque[BacktestReport] = deque(maxlen=history_size)

    @classmethod
    def from_settings(cls, settings: Settings) -> "BacktestService":
        """Build a service from application settings."""
        repository = CandleRepository(
            base_url=settings.klines_url,
            request_timeout=settings.request_timeout_seconds,
            retry_policy=RetryPolicy(
                max_attempts=settings.max_fetch_attempts,
                base_delay=settings.retry_base_delay_seconds,
                backoff_factor=settings.retry_backoff_factor,
                jitter=settings.retry_jitter_seconds,
                max_delay=settings.retry_max_delay_seconds,
                default_rate_limit_wait=settings.rate_limit_default_wait_seconds,
                max_rate_limit_waits=settings.max_rate_limit_waits,
            ),
            cache_ttl=settings.cache_ttl_seconds,
            cache_max_entries=settings.cache_max_entries,
            cache_eviction_margin=settings.cache_eviction_margin,
            coalesce_window=settings.coalesce_window_seconds,
        )
        assembler = HistoricalRangeAssembler(
            repository,
            batch_size=settings.history_batch_size,
            batch_delay=settings.history_batch_delay_seconds,
            default_lookback=timedelta(days=settings.default_lookback_days),
            max_lookback=timedelta(days=settings.max_lookback_days),
            staleness_threshold=timedelta(hours=settings.staleness_threshold_hours),
            freshness_batch_size=settings.freshness_batch_size,
        )
        config = BacktestConfig(
            initial_balance=settings.initial_balance,
            fee_percent=settings.fee_percent,
            sizing_mode=settings.sizing_mode,
            position_fraction_percent=settings.position_fraction_percent,
            max_open_positions=settings.max_open_positions,
            max_lookback=settings.max_lookback_candles,
        )
        return cls(
            repository,
            assembler=assembler,
            config=config,
            quote_currency=settings.quote_currency,
            history_size=settings.backtest_history_size,
        )

    async def aclose(self) -> None:
        await self.repository.aclose()

    async def fetch_candles(
        self,
        symbol: str,
        interval: Union[str, Interval],
        limit: int = 500,
        end_time: Optional[int] = None,
    ) -> list[Candle]:
        """Fetch the latest (or end_time-bounded) candles through the cached repository."""
        return await self.repository.fetch(symbol, interval, limit, end_time=end_time)

    async def run_backtest(self, request: BacktestRequest) -> BacktestReport:
        """
        Run one backtest.

        Args:
            request: Asset, timeframe, strategy name, optional dates and ROI floor

        Returns:
            BacktestReport

        Raises:
            UnknownStrategyError: Strategy name is not registered
            InvalidDateRangeError: A date could not be parsed
            ValueError: Unknown timeframe
            NoDataError / FetchError: Market data could not be assembled
        """
        strategy = self.registry.create(request.strategy)
        interval = Interval.parse(request.timeframe)
        symbol = trading_pair(request.asset, self.quote_currency)
        start, end = self.assembler.resolve_range(request.start_date, request.end_date)

        log = logger.bind(symbol=symbol, timeframe=interval.value, strategy=strategy.name)
        log.info("backtest_requested", start=start.isoformat(), end=end.isoformat())

        candles = await self.assembler.assemble(symbol, interval, start, end)

        config = replace(self._run_config(), target_roi_percent=request.target_roi_percent)
        result = BacktestSimulator(config).run(candles, strategy)

        report = BacktestReport(
            asset=request.asset.strip().upper(),
            symbol=symbol,
            timeframe=interval.value,
            strategy=strategy.name,
            start_date=start,
            end_date=end,
            period_months=round((end - start) / MONTH, 2),
            candles=len(candles),
            result=result,
        )
        log.info(
            "backtest_report_ready",
            trades=result.total_trades,
            total_roi=round(result.total_roi, 2),
            period_months=report.period_months,
        )
        self._history.append(report)
        return report

    def history(self, limit: int = 10) -> list[BacktestReport]:
        """Most recent reports, oldest first, at most `limit` of them."""
        if limit <= 0:
            return []
        return list(self._history)[-limit:]

    async def run_roi_sweep(
        self,
        request: BacktestRequest,
        target_rois: list[float],
    ) -> list[RoiSweepResult]:
        """
        Assemble the request's candles once and rerun the strategy per target ROI.

        The request's own target_roi_percent is ignored; each entry of
        `target_rois` is used as the floor in turn.
        """
        self.registry.create(request.strategy)
        interval = Interval.parse(request.timeframe)
        symbol = trading_pair(request.asset, self.quote_currency)
        start, end = self.assembler.resolve_range(request.start_date, request.end_date)
        logger.info(
            "roi_sweep_requested",
            symbol=symbol,
            timeframe=interval.value,
            strategy=request.strategy,
            targets=len(target_rois),
        )

        candles = await self.assembler.assemble(symbol, interval, start, end)

        def strategy_factory() -> Strategy:
            return self.registry.create(request.strategy)

        return sweep_target_roi(candles, strategy_factory, target_rois, self._run_config())

    def _run_config(self) -> BacktestConfig:
        # Every strategy starts on the same candle: the largest warm-up registered
        if self.config.warmup is not None:
            return self.config
        return replace(self.config, warmup=self.registry.max_min_window())
