import asyncio
from collections import Counter
from typing import Dict, List, Optional

from src.models.bot_models import StrategyParams
from src.models.candle_models import OHLCVBar, Ticker
from src.providers.exchange import Exchange
from src.providers.market_data import MarketDataProvider

# fast=2 / slow=4 crossover fixture: BUY on bar 4 (RSI ~69.2), SELL on bar 5 (RSI ~77.8)
CLOSES = [100, 101, 103, 99, 105, 110, 108, 120]
BUY_CLOSES = CLOSES[:5]
SELL_CLOSES = CLOSES[:6]
TEST_PARAMS = StrategyParams(ema_fast=2, ema_slow=4, rsi_period=14, rsi_threshold=45, rsi_overbought=70)


def make_bars(closes, start: int = 1_700_000_000, step: int = 3600) -> List[OHLCVBar]:
    return [OHLCVBar(time=start + i * step, open=c, high=c, low=c, close=c, volume=1.0)
            for i, c in enumerate(closes)]


class FakeMarketData(MarketDataProvider):
    """In-memory provider. Set `gate` to hold every fetch until the event fires."""

    def __init__(self):
        self.bars: Dict[str, List[OHLCVBar]] = {}
        self.prices: Dict[str, float] = {}
        self.fail = False
        self.gate: Optional[asyncio.Event] = None
        self.waiting = 0
        self.calls = Counter()
        self.requested: List[str] = []

    def set_series(self, symbol: str, closes, price: float = None):
        self.bars[symbol] = make_bars(closes)
        self.prices[symbol] = float(price if price is not None else closes[-1])

    async def _maybe_block(self):
        if self.gate is not None:
            self.waiting += 1
            await self.gate.wait()

    async def fetch_ticker(self, symbol: str) -> Ticker:
        self.calls[("ticker", symbol)] += 1
        await self._maybe_block()
        if self.fail or symbol not in self.prices:
            raise ConnectionError(f"provider down for {symbol}")
        return Ticker(symbol=symbol, price=self.prices[symbol])

    async def fetch_ohlcv(self, symbol: str) -> List[OHLCVBar]:
        self.calls[("ohlcv", symbol)] += 1
        self.requested.append(symbol)
        await self._maybe_block()
        if self.fail or symbol not in self.bars:
            raise ConnectionError(f"provider down for {symbol}")
        return list(self.bars[symbol])


class FakeExchange(Exchange):
    """Replays a script: exceptions are raised, dicts become orders (filled defaults to the request).

    Set `gate` to hold every order until the event fires.
    """

    def __init__(self, script=None, free_balance: float = 0.0):
        self.script = list(script or [])
        self.free_balance = free_balance
        self.orders = []
        self.gate: Optional[asyncio.Event] = None
        self.waiting = 0

    async def place_order(self, symbol: str, side: str, amount: float):
        self.orders.append((symbol, side, amount))
        if self.gate is not None:
            self.waiting += 1
            await self.gate.wait()
        step = self.script.pop(0) if self.script else {}
        if isinstance(step, Exception):
            raise step
        order = {"id": f"o{len(self.orders)}", "status": "closed", "filled": amount, "average": None, "fee": 0.0}
        order.update(step)
        return order

    async def fetch_free_balance(self, currency: str) -> float:
        return self.free_balance


