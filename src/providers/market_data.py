import asyncio
import logging
from typing import List, Optional

import ccxt

from src.models.candle_models import OHLCVBar, Ticker

logger = logging.getLogger("market_data")


class MarketDataProvider:
    """Contract the feed needs from an upstream market-data source."""

    async def fetch_ticker(self, symbol: str) -> Ticker:
        raise NotImplementedError

    async def fetch_ohlcv(self, symbol: str) -> List[OHLCVBar]:
        raise NotImplementedError

    async def close(self):
        """Release any resources."""


class CcxtMarketData(MarketDataProvider):
    """Public market data from a ccxt exchange (no credentials needed)."""

    def __init__(self, exchange_id: str = "coinbase", timeframe: str = "1h", limit: int = 200,
                 timeout_ms: int = 15000, client: Optional[ccxt.Exchange] = None):
        self.exchange_id = exchange_id
        self.timeframe = timeframe
        self.limit = limit
        if client is not None:
            self.client = client
        else:
            exchange_cls = getattr(ccxt, exchange_id, None)
            if exchange_cls is None:
                raise ValueError(f"Unknown ccxt exchange id '{exchange_id}'")
            self.client = exchange_cls({"enableRateLimit": True, "timeout": timeout_ms})
        logger.info("Market data provider ready exchange=%s timeframe=%s", exchange_id, timeframe)

    async def fetch_ticker(self, symbol: str) -> Ticker:
        loop = asyncio.get_running_loop()
        raw = await loop.run_in_executor(None, lambda: self.client.fetch_ticker(symbol))
        return Ticker.from_ccxt(symbol, raw)

    async def fetch_ohlcv(self, symbol: str) -> List[OHLCVBar]:
        loop = asyncio.get_running_loop()
        rows = await loop.run_in_executor(
            None,
            lambda: self.client.fetch_ohlcv(symbol, timeframe=self.timeframe, limit=self.limit)
        )
        bars = [OHLCVBar.from_ccxt(r) for r in rows or []]
        bars.sort(key=lambda b: b.time)
        logger.debug("Fetched %d %s bars for %s", len(bars), self.timeframe, symbol)
        return bars
