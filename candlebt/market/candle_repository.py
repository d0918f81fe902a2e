"""
Candle repository: cached, coalesced and retried access to the quote source.

Every fetch goes through three layers:

1. Cache - a live entry for (symbol, interval, limit, end_time) is returned
   without touching the network.
2. Coalescing - concurrent misses for the same key share one in-flight
   request while it is younger than the coalescing window.
3. Retry - transient failures back off exponentially with jitter; HTTP 429
   waits for the server's Retry-After without consuming an attempt.

Malformed payloads fail immediately. Once the attempt budget is spent the
last failure is wrapped in FatalFetchError.
"""

import asyncio
import random
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Awaitable, Callable, NamedTuple, Optional, Union

import httpx
import structlog
from tenacity import AsyncRetrying, retry_if_exception_type

from candlebt.market.candle_cache import CacheKey, CandleCache
from candlebt.market.errors import (
    DataValidationError,
    FatalFetchError,
    RateLimitedError,
    TransientFetchError,
)
from candlebt.market.models import Candle, Interval, parse_rows

logger = structlog.get_logger(__name__)

MAX_LIMIT = 1000

Sleep = Callable[[float], Awaitable[None]]


def log_retry(retry_state) -> None:
    """Log retry attempts for debugging."""
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "candle_fetch_retry",
        attempt=retry_state.attempt_number,
        wait=f"{retry_state.next_action.sleep:.1f}s",
        rate_limited=isinstance(exc, RateLimitedError),
        error=str(exc) if exc else "unknown",
    )


@dataclass(frozen=True)
class RetryPolicy:
    """Backoff parameters for one fetch call."""

    max_attempts: int = 3
    base_delay: float = 1.5
    backoff_factor: float = 1.5
    jitter: float = 0.5
    max_delay: float = 15.0
    default_rate_limit_wait: float = 60.0
    max_rate_limit_waits: int = 5

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.max_rate_limit_waits < 0:
            raise ValueError(f"max_rate_limit_waits must be >= 0, got {self.max_rate_limit_waits}")

    def backoff(self, failures: int, rng: random.Random) -> float:
        """Delay after the given number of counted failures."""
        delay = self.base_delay * self.backoff_factor ** (failures - 1)
        delay += rng.uniform(0, self.jitter)
        return min(delay, self.max_delay)


class _AttemptBudget:
    """
    Failure counters for a single fetch call.

    The attempt body records each failure; tenacity's stop and wait hooks
    only read the counters, so their call order does not matter.
    """

    def __init__(self, policy: RetryPolicy, rng: random.Random):
        self.policy = policy
        self.rng = rng
        self.failures = 0
        self.rate_limit_waits = 0

    def record(self, error: TransientFetchError) -> None:
        if isinstance(error, RateLimitedError):
            self.rate_limit_waits += 1
        else:
            self.failures += 1

    def exhausted(self, retry_state) -> bool:
        return (
            self.failures >= self.policy.max_attempts
            or self.rate_limit_waits > self.policy.max_rate_limit_waits
        )

    def next_wait(self, retry_state) -> float:
        error = retry_state.outcome.exception()
        if isinstance(error, RateLimitedError):
            return error.retry_after
        return self.policy.backoff(self.failures, self.rng)


def _retrieve_exception(task: "asyncio.Task[list[Candle]]") -> None:
    # Marks a failure as seen when every awaiting caller was cancelled
    if not task.cancelled():
        task.exception()


class _InFlight(NamedTuple):
    task: "asyncio.Task[list[Candle]]"
    started_at: float


@dataclass
class CacheStats:
    """Snapshot of repository cache and request counters."""

    size: int
    max_size: int
    hits: int
    misses: int
    coalesced: int
    network_calls: int
    in_flight: int
    evictions: int

    @property
    def hit_rate(self) -> float:
        lookups = self.hits + self.misses
        return self.hits / lookups if lookups else 0.0


class CandleRepository:
    """
    Async candle source backed by the klines REST endpoint.

    Example:
        >>> async with CandleRepository() as repo:
        ...     candles = await repo.fetch("BTCUSDT", "1h", limit=500)
    """

    def __init__(
        self,
        base_url: str = "https://api.binance.com/api/v3/klines",
        client: Optional[httpx.AsyncClient] = None,
        request_timeout: float = 8.0,
        retry_policy: Optional[RetryPolicy] = None,
        cache_ttl: float = 30.0,
        cache_max_entries: int = 5,
        cache_eviction_margin: int = 1,
        coalesce_window: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Sleep = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ):
        """
        Initialize the repository.

        Args:
            base_url: Klines endpoint
            client: Shared HTTP client (created and owned here if None)
            request_timeout: Upper bound for one network attempt in seconds
            retry_policy: Backoff parameters (defaults match the public API limits)
            cache_ttl: Seconds a fetched series stays fresh
            cache_max_entries: Maximum number of cached series
            cache_eviction_margin: Extra entries evicted when the cache is full
            coalesce_window: Seconds an in-flight request may be shared
            clock: Monotonic clock for cache and coalescing ages
            sleep: Awaitable used for backoff waits
            rng: Random source for jitter
        """
        if request_timeout <= 0:
            raise ValueError(f"request_timeout must be positive, got {request_timeout}")

        self.base_url = base_url
        self.request_timeout = request_timeout
        self.retry_policy = retry_policy or RetryPolicy()
        self.coalesce_window = coalesce_window

        self._client = client
        self._owns_client = client is None
        self._clock = clock
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._cache = CandleCache(
            maxsize=cache_max_entries,
            ttl=cache_ttl,
            timer=clock,
            eviction_margin=cache_eviction_margin,
        )
        self._in_flight: dict[CacheKey, _InFlight] = {}

        self._hits = 0
        self._misses = 0
        self._coalesced = 0
        self._network_calls = 0

    async def __aenter__(self) -> "CandleRepository":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the HTTP client if this repository created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def fetch(
        self,
        symbol: str,
        interval: Union[str, Interval],
        limit: int = 500,
        end_time: Optional[int] = None,
    ) -> list[Candle]:
        """
        Fetch up to `limit` candles ending at `end_time`.

        Args:
            symbol: Trading pair, e.g. "BTCUSDT"
            interval: Interval token or Interval
            limit: Number of candles (1-1000)
            end_time: Inclusive upper bound in epoch milliseconds, None for latest

        Returns:
            Candles in ascending open_time order. The list is a fresh copy.

        Raises:
            FatalFetchError: Retries exhausted
            DataValidationError: Payload could not be parsed
        """
        interval = Interval.parse(interval)
        if not 1 <= limit <= MAX_LIMIT:
            raise ValueError(f"limit must be between 1 and {MAX_LIMIT}, got {limit}")

        key = CacheKey(symbol.upper(), interval.value, limit, end_time)

        entry = self._cache.lookup(key)
        if entry is not None:
            self._hits += 1
            logger.debug("candle_cache_hit", symbol=key.symbol, interval=key.interval, limit=limit)
            return list(entry.data)
        self._misses += 1

        now = self._clock()
        in_flight = self._in_flight.get(key)
        if in_flight is not None and now - in_flight.started_at < self.coalesce_window:
            self._coalesced += 1
            logger.debug("candle_request_coalesced", symbol=key.symbol, interval=key.interval)
            return list(await asyncio.shield(in_flight.task))

        task = asyncio.ensure_future(self._fetch_and_store(key))
        task.add_done_callback(_retrieve_exception)
        self._in_flight[key] = _InFlight(task=task, started_at=now)
        return list(await asyncio.shield(task))

    def stats(self) -> CacheStats:
        """Current cache and request counters."""
        return CacheStats(
            size=len(self._cache),
            max_size=int(self._cache.maxsize),
            hits=self._hits,
            misses=self._misses,
            coalesced=self._coalesced,
            network_calls=self._network_calls,
            in_flight=len(self._in_flight),
            evictions=self._cache.evictions,
        )

    def trim_cache(self, target_size: int = 0) -> int:
        """Shrink the cache, e.g. under memory pressure. Returns entries removed."""
        return self._cache.trim(target_size)

    def clear_cache(self) -> None:
        """Drop all cached series and reset counters."""
        self._cache.clear()
        self._cache.evictions = 0
        self._hits = 0
        self._misses = 0
        self._coalesced = 0
        self._network_calls = 0
        logger.info("candle_cache_cleared")

    async def _fetch_and_store(self, key: CacheKey) -> list[Candle]:
        try:
            candles = await self._fetch_with_retry(key)
            # Empty answers are not cached so the next call asks again
            if candles:
                self._cache.store(key, candles)
            return candles
        finally:
            current = self._in_flight.get(key)
            if current is not None and current.task is asyncio.current_task():
                del self._in_flight[key]

    async def _fetch_with_retry(self, key: CacheKey) -> list[Candle]:
        budget = _AttemptBudget(self.retry_policy, self._rng)
        retrying = AsyncRetrying(
            stop=budget.exhausted,
            wait=budget.next_wait,
            retry=retry_if_exception_type(TransientFetchError),
            before_sleep=log_retry,
            sleep=self._sleep,
            reraise=True,
        )

        candles: list[Candle] = []
        try:
            async for attempt in retrying:
                with attempt:
                    try:
                        candles = await self._request(key)
                    except TransientFetchError as e:
                        budget.record(e)
                        raise
        except TransientFetchError as e:
            logger.error(
                "candle_fetch_failed",
                symbol=key.symbol,
                interval=key.interval,
                failures=budget.failures,
                rate_limit_waits=budget.rate_limit_waits,
                error=str(e),
            )
            raise FatalFetchError(
                f"Fetching {key.symbol} {key.interval} failed after "
                f"{budget.failures + budget.rate_limit_waits} attempts: {e}",
                attempts=budget.failures + budget.rate_limit_waits,
            ) from e

        logger.debug(
            "candles_fetched",
            symbol=key.symbol,
            interval=key.interval,
            count=len(candles),
            end_time=key.end_time,
        )
        return candles

    async def _request(self, key: CacheKey) -> list[Candle]:
        params: dict[str, Union[str, int]] = {
            "symbol": key.symbol,
            "interval": key.interval,
            "limit": key.limit,
        }
        if key.end_time is not None:
            params["endTime"] = key.end_time

        client = self._get_client()
        self._network_calls += 1
        try:
            response = await asyncio.wait_for(
                client.get(self.base_url, params=params),
                timeout=self.request_timeout,
            )
        except asyncio.TimeoutError as e:
            raise TransientFetchError(
                f"Request timed out after {self.request_timeout:g}s"
            ) from e
        except httpx.TransportError as e:
            raise TransientFetchError(f"Network error: {e}") from e

        if response.status_code == 429:
            raise RateLimitedError(self._retry_after(response))
        if not response.is_success:
            raise TransientFetchError(
                f"HTTP {response.status_code} from quote source",
                status_code=response.status_code,
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise DataValidationError("Quote source returned a non-JSON body") from e
        return parse_rows(payload)

    def _retry_after(self, response: httpx.Response) -> float:
        """Seconds to wait from a Retry-After header (delta-seconds or HTTP date)."""
        header = response.headers.get("Retry-After")
        if not header:
            return self.retry_policy.default_rate_limit_wait
        try:
            return max(0.0, float(header))
        except ValueError:
            pass
        try:
            retry_at = parsedate_to_datetime(header)
        except (TypeError, ValueError):
            return self.retry_policy.default_rate_limit_wait
        if retry_at.tzinfo is None:
            retry_at = retry_at.replace(tzinfo=timezone.utc)
        return max(0.0, (retry_at - datetime.now(timezone.utc)).total_seconds())

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.request_timeout)
            self._owns_client = True
        return self._client
