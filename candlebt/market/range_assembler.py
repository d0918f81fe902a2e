"""
Historical range assembly by backward pagination.

The quote source returns at most one batch of candles per request, so a
date range is assembled by walking backwards from the end of the range:

    cursor = end
    while cursor > start:
        batch = fetch(limit=batch_size, end_time=cursor)
        prepend batch; cursor = oldest open_time in batch

The walk stops on an empty batch, a batch that does not move the cursor
(end of available history) or once enough points were collected. The
result is filtered to [start, end], de-duplicated by open_time and sorted.
Because the newest candles may still be missing from a cached or lagging
page, a stale result (newest point older than the staleness threshold) is
topped up with one fetch of the latest candles.
"""

import asyncio
import math
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Optional, Union

import structlog

from candlebt.market.candle_repository import CandleRepository
from candlebt.market.errors import FetchError, InvalidDateRangeError, NoDataError
from candlebt.market.models import Candle, Interval, to_epoch_ms

logger = structlog.get_logger(__name__)

DateLike = Union[datetime, str, None]

# Newest point older than this is reported as stale data
STALE_DATA_WARNING = timedelta(days=7)

# Consecutive points further apart than this many intervals count as a gap
GAP_TOLERANCE = 1.5

# Collection stops once this share of the expected point count is reached
OVERFETCH_FACTOR = 1.1


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_date(value: DateLike, field: str = "date") -> Optional[datetime]:
    """
    Parse a request date into an aware UTC datetime.

    Accepts datetimes (naive values are taken as UTC), ISO-8601 strings
    (a trailing "Z" is allowed) and None.

    Raises:
        InvalidDateRangeError: If a string cannot be parsed
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as e:
            raise InvalidDateRangeError(f"Invalid {field} format: {value!r}") from e
    else:
        raise InvalidDateRangeError(f"Invalid {field} type: {type(value).__name__}")

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def find_gaps(candles: list[Candle], interval: Interval) -> list[tuple[datetime, datetime]]:
    """Return (before, after) open_time pairs where the series skips candles."""
    limit = interval.duration * GAP_TOLERANCE
    return [
        (prev.open_time, curr.open_time)
        for prev, curr in zip(candles, candles[1:])
        if curr.open_time - prev.open_time > limit
    ]


class HistoricalRangeAssembler:
    """
    Assemble a gap-checked, ascending candle series for a date range.

    Example:
        >>> assembler = HistoricalRangeAssembler(repository)
        >>> candles = await assembler.assemble("BTCUSDT", "4h", start, end)
    """

    def __init__(
        self,
        repository: CandleRepository,
        batch_size: int = 1000,
        batch_delay: float = 1.0,
        default_lookback: timedelta = timedelta(days=30),
        max_lookback: timedelta = timedelta(days=730),
        staleness_threshold: timedelta = timedelta(hours=2),
        freshness_batch_size: int = 100,
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Initialize the assembler.

        Args:
            repository: Candle source
            batch_size: Candles per backward page
            batch_delay: Seconds to wait between page fetches
            default_lookback: Range used when start is missing or not before end
            max_lookback: Oldest accepted start, measured back from now
            staleness_threshold: Newest-candle age that triggers a freshness fetch
            freshness_batch_size: Candles requested by the freshness fetch
            clock: Wall clock returning aware UTC datetimes
            sleep: Awaitable used for the inter-batch delay
        """
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")
        if max_lookback < default_lookback:
            raise ValueError("max_lookback must cover default_lookback")

        self.repository = repository
        self.batch_size = batch_size
        self.batch_delay = batch_delay
        self.default_lookback = default_lookback
        self.max_lookback = max_lookback
        self.staleness_threshold = staleness_threshold
        self.freshness_batch_size = freshness_batch_size
        self._clock = clock
        self._sleep = sleep

    def resolve_range(self, start: DateLike = None, end: DateLike = None) -> tuple[datetime, datetime]:
        """
        Clamp a requested range to what can be fetched.

        - end defaults to now and is never in the future
        - a missing start, or one not before end, becomes end - default lookback
        - start is never older than now - max lookback

        Raises:
            InvalidDateRangeError: If a date string cannot be parsed
        """
        now = self._clock()
        start_dt = parse_date(start, "start date")
        end_dt = parse_date(end, "end date")

        if end_dt is None or end_dt > now:
            end_dt = now
        if start_dt is None or start_dt >= end_dt:
            start_dt = end_dt - self.default_lookback

        horizon = now - self.max_lookback
        if start_dt < horizon:
            logger.info("history_start_clamped", requested=start_dt.isoformat(), horizon=horizon.isoformat())
            start_dt = horizon
        if start_dt >= end_dt:
            start_dt = max(horizon, end_dt - self.default_lookback)
        return start_dt, end_dt

    def expected_points(self, start: datetime, end: datetime, interval: Interval) -> int:
        """Number of candles that fit in [start, end]."""
        return max(1, math.ceil((end - start) / interval.duration))

    async def assemble(
        self,
        symbol: str,
        interval: Union[str, Interval],
        start: DateLike = None,
        end: DateLike = None,
    ) -> list[Candle]:
        """
        Assemble the candles of a date range.

        Args:
            symbol: Trading pair, e.g. "BTCUSDT"
            interval: Interval token or Interval
            start: Range start (clamped, see resolve_range)
            end: Range end (clamped, see resolve_range)

        Returns:
            Candles sorted ascending, unique by open_time, within [start, end]

        Raises:
            NoDataError: Nothing remained after filtering
            FetchError: A page fetch failed
            InvalidDateRangeError: A date could not be parsed
        """
        interval = Interval.parse(interval)
        start_dt, end_dt = self.resolve_range(start, end)
        start_ms, end_ms = to_epoch_ms(start_dt), to_epoch_ms(end_dt)
        max_points = self.expected_points(start_dt, end_dt, interval)

        logger.info(
            "history_assembly_starting",
            symbol=symbol,
            interval=interval.value,
            start=start_dt.isoformat(),
            end=end_dt.isoformat(),
            expected_points=max_points,
        )

        batches: list[list[Candle]] = []
        collected = 0
        cursor = end_ms
        while cursor > start_ms and collected < max_points * OVERFETCH_FACTOR:
            if batches:
                await self._sleep(self.batch_delay)

            batch = await self.repository.fetch(symbol, interval, self.batch_size, end_time=cursor)
            if not batch:
                logger.info("history_batch_empty", symbol=symbol, cursor=cursor)
                break

            batches.append(batch)
            collected += len(batch)
            oldest = batch[0].open_time_ms
            logger.debug(
                "history_batch_fetched",
                symbol=symbol,
                count=len(batch),
                oldest=batch[0].open_time.isoformat(),
                collected=collected,
            )
            if oldest >= cursor:
                # No earlier history available
                break
            cursor = oldest

        candles = self._normalize(
            (candle for batch in reversed(batches) for candle in batch),
            start_ms,
            end_ms,
        )

        if candles and len(candles) < max_points:
            candles = await self._repair_freshness(symbol, interval, candles, start_ms, end_ms)

        if not candles:
            raise NoDataError(
                f"No {interval.value} candles for {symbol} between "
                f"{start_dt.isoformat()} and {end_dt.isoformat()}"
            )

        self._check_quality(symbol, interval, candles)
        logger.info(
            "history_assembly_complete",
            symbol=symbol,
            interval=interval.value,
            count=len(candles),
            first=candles[0].open_time.isoformat(),
            last=candles[-1].open_time.isoformat(),
        )
        return candles

    async def _repair_freshness(
        self,
        symbol: str,
        interval: Interval,
        candles: list[Candle],
        start_ms: int,
        end_ms: int,
    ) -> list[Candle]:
        age = self._clock() - candles[-1].open_time
        if age <= self.staleness_threshold:
            return candles

        logger.info("history_freshness_fetch", symbol=symbol, newest_age_hours=round(age.total_seconds() / 3600, 2))
        try:
            latest = await self.repository.fetch(symbol, interval, self.freshness_batch_size)
        except FetchError as e:
            logger.warning("history_freshness_fetch_failed", symbol=symbol, error=str(e))
            return candles

        merged = self._normalize(candles + latest, start_ms, end_ms)
        logger.info("history_freshness_merged", symbol=symbol, added=len(merged) - len(candles))
        return merged

    @staticmethod
    def _normalize(candles, start_ms: int, end_ms: int) -> list[Candle]:
        """Filter to [start, end], keep the first candle per open_time, sort ascending."""
        unique: dict[int, Candle] = {}
        for candle in candles:
            ts = candle.open_time_ms
            if start_ms <= ts <= end_ms and ts not in unique:
                unique[ts] = candle
        return [unique[ts] for ts in sorted(unique)]

    def _check_quality(self, symbol: str, interval: Interval, candles: list[Candle]) -> None:
        gaps = find_gaps(candles, interval)
        if gaps:
            logger.warning(
                "history_gaps_detected",
                symbol=symbol,
                interval=interval.value,
                gaps=len(gaps),
                first_gap=gaps[0][0].isoformat(),
            )
        age = self._clock() - candles[-1].open_time
        if age > STALE_DATA_WARNING:
            logger.warning("history_data_stale", symbol=symbol, newest=candles[-1].open_time.isoformat())
