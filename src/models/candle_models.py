"""
Market data models shared by the feed, indicators and strategy.
"""
from dataclasses import dataclass
from typing import Any, Dict, List, Sequence


@dataclass(frozen=True)
class OHLCVBar:
	"""One OHLCV interval. `time` is the interval start in unix seconds."""
	time: int
	open: float
	high: float
	low: float
	close: float
	volume: float = 0.0

	@classmethod
	def from_ccxt(cls, row: Sequence[Any]) -> "OHLCVBar":
		# ccxt rows are [ms, open, high, low, close, volume]
		return cls(
			time=int(row[0]) // 1000,
			open=float(row[1]),
			high=float(row[2]),
			low=float(row[3]),
			close=float(row[4]),
			volume=float(row[5]) if len(row) > 5 and row[5] is not None else 0.0,
		)

	def to_dict(self) -> Dict[str, Any]:
		return {
			"time": self.time,
			"open": self.open,
			"high": self.high,
			"low": self.low,
			"close": self.close,
			"volume": self.volume,
		}


@dataclass(frozen=True)
class Ticker:
	"""24h rolling ticker snapshot."""
	symbol: str
	price: float
	change24h: float = 0.0
	high24h: float = 0.0
	low24h: float = 0.0
	volume24h: float = 0.0

	@classmethod
	def from_ccxt(cls, symbol: str, raw: Dict[str, Any]) -> "Ticker":
		price = raw.get("last") or raw.get("close")
		if price is None:
			raise ValueError(f"ticker for {symbol} has no last price")
		return cls(
			symbol=symbol,
			price=float(price),
			change24h=float(raw.get("percentage") or 0.0),
			high24h=float(raw.get("high") or 0.0),
			low24h=float(raw.get("low") or 0.0),
			volume24h=float(raw.get("baseVolume") or 0.0),
		)

	def to_dict(self) -> Dict[str, Any]:
		return {
			"price": self.price,
			"change24h": self.change24h,
			"high24h": self.high24h,
			"low24h": self.low24h,
			"volume24h": self.volume24h,
		}


def closes_of(bars: List[OHLCVBar]) -> List[float]:
	return [b.close for b in bars]
