"""
Bot, signal, ledger and log models for the execution engine.
"""
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from src.engine.errors import InvalidConfigError
from src.utils.instruments import normalize_symbol, resolve_watchlist


class BotState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPED = "stopped"
    KILLED = "killed"


class Direction(str, Enum):
    BUY = "buy"
    SELL = "sell"
    HOLD = "hold"


class LogLevel(str, Enum):
    INFO = "info"
    WARN = "warn"
    ERROR = "error"
    SUCCESS = "success"


@dataclass(frozen=True)
class RiskProfile:
    """Entry size plus the protective exits for one risk appetite.

    All three are fractions: `size` of the balance committed per entry,
    `stop_loss` and `take_profit` of the entry price.
    """
    size: float
    stop_loss: float
    take_profit: float

    def to_dict(self) -> Dict[str, Any]:
        return {"size": self.size, "stopLoss": self.stop_loss, "takeProfit": self.take_profit}


RISK_PROFILES: Dict[str, RiskProfile] = {
    "safe": RiskProfile(size=0.03, stop_loss=0.008, take_profit=0.025),
    "balanced": RiskProfile(size=0.07, stop_loss=0.015, take_profit=0.06),
    "aggressive": RiskProfile(size=0.15, stop_loss=0.02, take_profit=0.12),
}


@dataclass(frozen=True)
class StrategyParams:
    ema_fast: int = 9
    ema_slow: int = 21
    rsi_period: int = 14
    rsi_threshold: float = 45.0
    rsi_overbought: float = 70.0

    def __post_init__(self):
        if self.ema_fast < 1 or self.ema_slow < 1:
            raise InvalidConfigError("EMA periods must be >= 1")
        if self.ema_fast >= self.ema_slow:
            raise InvalidConfigError(f"emaFast ({self.ema_fast}) must be below emaSlow ({self.ema_slow})")
        if self.rsi_period < 1:
            raise InvalidConfigError("rsiPeriod must be >= 1")
        if not 0 <= self.rsi_threshold < self.rsi_overbought <= 100:
            raise InvalidConfigError(
                f"Require 0 <= rsiThreshold ({self.rsi_threshold}) < rsiOverbought ({self.rsi_overbought}) <= 100"
            )


@dataclass(frozen=True)
class BotConfig:
    """Immutable, versioned snapshot of everything a user can edit on a bot.

    The controller swaps whole snapshots; a tick reads one reference at its
    start so it never sees a half-applied update.
    """
    symbol: str
    watchlist: Tuple[str, ...] = ()
    is_live_mode: bool = False
    params: StrategyParams = field(default_factory=StrategyParams)
    risk_profile: str = "safe"
    trailing_stop: bool = False
    version: int = 1

    def __post_init__(self):
        if self.risk_profile not in RISK_PROFILES:
            raise InvalidConfigError(
                f"Unknown risk profile '{self.risk_profile}', expected one of {sorted(RISK_PROFILES)}"
            )

    @classmethod
    def create(cls, symbol: str, watchlist=None, **kwargs) -> "BotConfig":
        symbol = normalize_symbol(symbol)
        resolved = resolve_watchlist(watchlist) if watchlist is not None else []
        if symbol not in resolved:
            resolved.insert(0, symbol)
        return cls(symbol=symbol, watchlist=tuple(resolved), **kwargs)

    def evolve(self, **changes) -> "BotConfig":
        """Return the next version with `changes` applied and validated."""
        param_keys = {"ema_fast", "ema_slow", "rsi_period", "rsi_threshold", "rsi_overbought"}
        param_changes = {k: changes.pop(k) for k in list(changes) if k in param_keys}
        if "symbol" in changes:
            changes["symbol"] = normalize_symbol(changes["symbol"])
        if "watchlist" in changes:
            changes["watchlist"] = tuple(resolve_watchlist(changes["watchlist"]))
        params = replace(self.params, **param_changes) if param_changes else self.params
        return replace(self, params=params, version=self.version + 1, **changes)

    @property
    def profile(self) -> RiskProfile:
        return RISK_PROFILES[self.risk_profile]

    @property
    def position_fraction(self) -> float:
        return self.profile.size

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "watchlist": list(self.watchlist),
            "isLiveMode": self.is_live_mode,
            "emaFast": self.params.ema_fast,
            "emaSlow": self.params.ema_slow,
            "rsiPeriod": self.params.rsi_period,
            "rsiThreshold": self.params.rsi_threshold,
            "rsiOverbought": self.params.rsi_overbought,
            "riskProfile": self.risk_profile,
            "trailingStop": self.trailing_stop,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BotConfig":
        params = StrategyParams(
            ema_fast=int(data.get("emaFast", 9)),
            ema_slow=int(data.get("emaSlow", 21)),
            rsi_period=int(data.get("rsiPeriod", 14)),
            rsi_threshold=float(data.get("rsiThreshold", 45.0)),
            rsi_overbought=float(data.get("rsiOverbought", 70.0)),
        )
        return cls(
            symbol=normalize_symbol(data["symbol"]),
            watchlist=tuple(resolve_watchlist(data.get("watchlist") or [])),
            is_live_mode=bool(data.get("isLiveMode", False)),
            params=params,
            risk_profile=data.get("riskProfile", "safe"),
            trailing_stop=bool(data.get("trailingStop", False)),
            version=int(data.get("version", 1)),
        )


@dataclass(frozen=True)
class Signal:
    """Derived trading decision; only ever persisted through the log."""
    symbol: str
    direction: Direction
    timestamp: datetime
    basis: Dict[str, Any] = field(default_factory=dict)
    reason: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "direction": self.direction.value,
            "timestamp": self.timestamp.isoformat(),
            "basis": dict(self.basis),
            "reason": self.reason,
        }


@dataclass
class Position:
    symbol: str
    entry_price: float
    size: float
    cost: float
    opened_at: datetime
    # highest mark since entry, anchors the trailing stop
    high_water: float = 0.0

    def __post_init__(self):
        if self.high_water < self.entry_price:
            self.high_water = self.entry_price

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "entryPrice": self.entry_price,
            "size": self.size,
            "cost": self.cost,
            "openedAt": self.opened_at.isoformat(),
            "highWaterMark": self.high_water,
        }


@dataclass(frozen=True)
class EquityPoint:
    timestamp: datetime
    balance: float

    def to_dict(self) -> Dict[str, Any]:
        return {"timestamp": self.timestamp.isoformat(), "balance": self.balance}


@dataclass(frozen=True)
class FillResult:
    symbol: str
    direction: Direction
    price: float
    size: float
    fee: float = 0.0
    slippage: float = 0.0
    pnl: Optional[float] = None
    order_id: Optional[str] = None
    partial: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "direction": self.direction.value,
            "price": self.price,
            "size": self.size,
            "fee": self.fee,
            "slippage": self.slippage,
            "pnl": self.pnl,
            "orderId": self.order_id,
            "partial": self.partial,
        }


@dataclass(frozen=True)
class ClosedTrade:
    symbol: str
    entry_price: float
    exit_price: float
    size: float
    pnl: float
    fees: float
    opened_at: datetime
    closed_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "entryPrice": self.entry_price,
            "exitPrice": self.exit_price,
            "size": self.size,
            "pnl": self.pnl,
            "fees": self.fees,
            "openedAt": self.opened_at.isoformat(),
            "closedAt": self.closed_at.isoformat(),
        }


@dataclass(frozen=True)
class LogEntry:
    id: int
    timestamp: datetime
    level: LogLevel
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "level": self.level.value,
            "message": self.message,
        }

