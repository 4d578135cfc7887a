import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Tuple

from src.engine.errors import DataUnavailableError
from src.engine.rsi import compute_rsi_series
from src.models.candle_models import OHLCVBar, Ticker, closes_of
from src.providers.market_data import MarketDataProvider
from src.utils.instruments import normalize_symbol

logger = logging.getLogger("market_feed")


@dataclass(frozen=True)
class FeedResult:
    data: Any
    stale: bool
    fetched_at: float

    @property
    def as_of(self) -> datetime:
        return datetime.fromtimestamp(self.fetched_at, tz=timezone.utc)


@dataclass
class _CacheEntry:
    value: Any
    fetched_at: float


class MarketDataFeed:
    """Read-through cache in front of a MarketDataProvider.

    Fresh entries are served without touching the provider. When the
    provider fails, the last good value is returned flagged stale; with
    nothing cached the failure surfaces as DataUnavailableError.
    """

    def __init__(self, provider: MarketDataProvider, ticker_ttl: float = 15.0, ohlcv_ttl: float = 60.0,
                 rsi_ttl: float = 60.0, rsi_period: int = 14, clock: Callable[[], float] = time.time):
        self.provider = provider
        self.ttl = {"ticker": ticker_ttl, "ohlcv": ohlcv_ttl, "rsi": rsi_ttl}
        self.rsi_period = rsi_period
        self._clock = clock
        self._cache: Dict[Tuple[str, str], _CacheEntry] = {}
        self._locks: Dict[Tuple[str, str], asyncio.Lock] = {}

    async def get_ticker(self, symbol: str) -> FeedResult:
        symbol = normalize_symbol(symbol)
        return await self._read("ticker", symbol, lambda: self.provider.fetch_ticker(symbol))

    async def get_ohlcv(self, symbol: str) -> FeedResult:
        symbol = normalize_symbol(symbol)
        return await self._read("ohlcv", symbol, lambda: self._fetch_bars(symbol))

    async def get_rsi(self, symbol: str) -> FeedResult:
        symbol = normalize_symbol(symbol)
        key = ("rsi", symbol)
        entry = self._cache.get(key)
        if entry is not None and self._is_fresh("rsi", entry):
            return FeedResult(entry.value, False, entry.fetched_at)
        bars = await self.get_ohlcv(symbol)
        rsi = compute_rsi_series(closes_of(bars.data), self.rsi_period)
        points = [{"time": b.time, "rsi": value} for b, value in zip(bars.data, rsi)]
        if not bars.stale:
            self._cache[key] = _CacheEntry(points, bars.fetched_at)
        return FeedResult(points, bars.stale, bars.fetched_at)

    def invalidate(self, symbol: str = None):
        if symbol is None:
            self._cache.clear()
            return
        symbol = normalize_symbol(symbol)
        for key in [k for k in self._cache if k[1] == symbol]:
            del self._cache[key]

    async def _fetch_bars(self, symbol: str) -> List[OHLCVBar]:
        bars = await self.provider.fetch_ohlcv(symbol)
        if not bars:
            raise DataUnavailableError(f"Provider returned no bars for {symbol}")
        return bars

    async def _read(self, kind: str, symbol: str, fetch: Callable[[], Awaitable[Any]]) -> FeedResult:
        key = (kind, symbol)
        entry = self._cache.get(key)
        if entry is not None and self._is_fresh(kind, entry):
            return FeedResult(entry.value, False, entry.fetched_at)

        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            # another caller may have refreshed while we waited
            entry = self._cache.get(key)
            if entry is not None and self._is_fresh(kind, entry):
                return FeedResult(entry.value, False, entry.fetched_at)
            try:
                value = await fetch()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                if entry is not None:
                    logger.warning("%s fetch failed for %s, serving cached value from %.0fs ago: %s",
                                   kind, symbol, self._clock() - entry.fetched_at, e)
                    return FeedResult(entry.value, True, entry.fetched_at)
                raise DataUnavailableError(f"No {kind} data available for {symbol}: {e}") from e
            entry = _CacheEntry(value, self._clock())
            self._cache[key] = entry
            return FeedResult(value, False, entry.fetched_at)

    def _is_fresh(self, kind: str, entry: _CacheEntry) -> bool:
        return (self._clock() - entry.fetched_at) < self.ttl[kind]


def ticker_payload(result: FeedResult) -> Dict[str, Any]:
    ticker: Ticker = result.data
    payload = ticker.to_dict()
    payload["stale"] = result.stale
    payload["asOf"] = result.as_of.isoformat()
    return payload
