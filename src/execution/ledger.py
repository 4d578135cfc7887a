import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from src.engine.errors import LiveModeResetForbidden
from src.models.bot_models import (RISK_PROFILES, ClosedTrade, Direction, EquityPoint,
                                   FillResult, Position)
from src.services.event_log import EventLog
from src.services.risk_manager import Sizer, fixed_fraction_sizer

logger = logging.getLogger("ledger")


class AccountLedger:
    """Balance, open position and equity curve for one bot.

    Mutated only through apply_fill (execution), reconcile (live sync),
    mark (high-water tracking) and reset (paper only). apply_fill simulates
    slippage and fees from the configured rates unless the caller passes the
    venue's actual fee.
    """

    def __init__(self, starting_capital: float = 10000.0, live_mode: bool = False,
                 sizer: Optional[Sizer] = None, fee_rate: float = 0.0, slippage_rate: float = 0.0,
                 log: Optional[EventLog] = None, clock: Optional[Callable[[], datetime]] = None):
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.live_mode = live_mode
        self.sizer = sizer or fixed_fraction_sizer(RISK_PROFILES["safe"].size)
        self.fee_rate = fee_rate
        self.slippage_rate = slippage_rate
        self.log = log
        self.starting_capital = float(starting_capital)
        self.balance = float(starting_capital)
        self.position: Optional[Position] = None
        self.equity_curve: List[EquityPoint] = []
        self.trades: List[ClosedTrade] = []
        self.total_fees = 0.0
        self.total_slippage = 0.0
        self.started_at = self._clock()
        self._append_equity(self.balance)

    @property
    def is_flat(self) -> bool:
        return self.position is None

    def equity(self, mark_price: Optional[float] = None) -> float:
        if self.position is None:
            return self.balance
        price = mark_price if mark_price is not None else self.position.entry_price
        return self.balance + self.position.size * price

    def mark(self, price: float):
        """Raise the open position's high-water mark to `price`."""
        if self.position is not None and price > self.position.high_water:
            self.position.high_water = price

    def apply_fill(self, direction: Direction, price: float, size: Optional[float] = None,
                   symbol: Optional[str] = None, fee: Optional[float] = None,
                   order_id: Optional[str] = None) -> Optional[FillResult]:
        direction = Direction(direction)
        if direction is Direction.HOLD:
            return None
        if price <= 0:
            raise ValueError(f"Fill price must be positive, got {price}")
        if direction is Direction.BUY:
            if self.position is not None:
                self._warn(f"Ignoring buy: position already open on {self.position.symbol}")
                return None
            return self._open(price, size, symbol, fee, order_id)
        if self.position is None:
            self._warn(f"Ignoring sell on {symbol or 'account'}: no open position")
            return None
        return self._close(price, size, fee, order_id)

    def _open(self, price, size, symbol, fee, order_id) -> Optional[FillResult]:
        simulated = fee is None
        fill_price = price * (1 + self.slippage_rate) if simulated else price
        if size is None:
            size = self.sizer(self.balance, fill_price)
        if simulated:
            # keep cost plus fee within the available balance
            affordable = self.balance / (fill_price * (1 + self.fee_rate))
            size = min(size, affordable)
        if size <= 0:
            self._warn(f"Ignoring buy on {symbol}: balance {self.balance:.2f} too small")
            return None
        cost = size * fill_price
        fee_paid = cost * self.fee_rate if simulated else float(fee)
        slippage = size * (fill_price - price)
        self.balance -= cost + fee_paid
        self.total_fees += fee_paid
        self.total_slippage += slippage
        self.position = Position(symbol=symbol or "", entry_price=fill_price, size=size,
                                 cost=cost + fee_paid, opened_at=self._clock())
        return FillResult(symbol=self.position.symbol, direction=Direction.BUY, price=fill_price,
                          size=size, fee=fee_paid, slippage=slippage, order_id=order_id)

    def _close(self, price, size, fee, order_id) -> FillResult:
        pos = self.position
        simulated = fee is None
        fill_price = price * (1 - self.slippage_rate) if simulated else price
        closing = pos.size if size is None else min(size, pos.size)
        proceeds = closing * fill_price
        fee_paid = proceeds * self.fee_rate if simulated else float(fee)
        slippage = closing * (price - fill_price)
        cost_share = pos.cost * (closing / pos.size)
        pnl = proceeds - fee_paid - cost_share
        self.balance += proceeds - fee_paid
        self.total_fees += fee_paid
        self.total_slippage += slippage
        now = self._clock()
        self.trades.append(ClosedTrade(symbol=pos.symbol, entry_price=pos.entry_price, exit_price=fill_price,
                                       size=closing, pnl=pnl, fees=fee_paid, opened_at=pos.opened_at,
                                       closed_at=now))
        partial = closing < pos.size
        if partial:
            pos.size -= closing
            pos.cost -= cost_share
        else:
            self.position = None
        self._append_equity(self.balance)
        return FillResult(symbol=pos.symbol, direction=Direction.SELL, price=fill_price, size=closing,
                          fee=fee_paid, slippage=slippage, pnl=pnl, order_id=order_id, partial=partial)

    def reset(self, starting_capital: float):
        if self.live_mode:
            raise LiveModeResetForbidden("Paper reset is not allowed while the bot is in live mode")
        if starting_capital <= 0:
            raise ValueError(f"Starting capital must be positive, got {starting_capital}")
        self.starting_capital = float(starting_capital)
        self.balance = float(starting_capital)
        self.position = None
        self.trades = []
        self.total_fees = 0.0
        self.total_slippage = 0.0
        self.started_at = self._clock()
        # reset is the only path allowed to truncate the curve
        self.equity_curve = []
        self._append_equity(self.balance)
        if self.log is not None:
            self.log.info(f"Paper account reset with starting capital {starting_capital:,.2f}")

    def reconcile(self, balance: float):
        """Adopt the exchange-reported free balance in live mode."""
        previous = self.balance
        self.balance = float(balance)
        self._append_equity(self.balance)
        logger.info("Ledger reconciled balance %.2f -> %.2f", previous, self.balance)

    def stats(self) -> Dict[str, Any]:
        wins = [t.pnl for t in self.trades if t.pnl > 0]
        losses = [t.pnl for t in self.trades if t.pnl <= 0]
        gross_profit = sum(wins)
        gross_loss = abs(sum(losses))
        total = len(self.trades)
        total_pnl = self.equity() - self.starting_capital
        if gross_loss > 0:
            profit_factor = gross_profit / gross_loss
        else:
            profit_factor = None if gross_profit > 0 else 0.0
        return {
            "startingCapital": self.starting_capital,
            "currentBalance": self.balance,
            "totalPnL": total_pnl,
            "totalReturn": (total_pnl / self.starting_capital * 100) if self.starting_capital else 0.0,
            "totalFees": self.total_fees,
            "totalSlippage": self.total_slippage,
            "winCount": len(wins),
            "lossCount": len(losses),
            "winRate": (len(wins) / total * 100) if total else 0.0,
            # None stands for an unbounded factor (profits, no losses)
            "profitFactor": profit_factor,
            "bestTrade": max((t.pnl for t in self.trades), default=0.0),
            "worstTrade": min((t.pnl for t in self.trades), default=0.0),
            "totalTrades": total,
            "simulatedFeeRate": self.fee_rate,
            "simulatedSlippageRate": self.slippage_rate,
            "startedAt": self.started_at.isoformat() if self.started_at else None,
            "position": self.position.to_dict() if self.position else None,
        }

    def _append_equity(self, balance: float):
        now = self._clock()
        if self.equity_curve and now < self.equity_curve[-1].timestamp:
            now = self.equity_curve[-1].timestamp
        self.equity_curve.append(EquityPoint(timestamp=now, balance=balance))

    def _warn(self, message: str):
        if self.log is not None:
            self.log.warn(message)
        else:
            logger.warning(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "startingCapital": self.starting_capital,
            "balance": self.balance,
            "position": self.position.to_dict() if self.position else None,
            "equityCurve": [p.to_dict() for p in self.equity_curve],
            "trades": [t.to_dict() for t in self.trades],
            "totalFees": self.total_fees,
            "totalSlippage": self.total_slippage,
            "startedAt": self.started_at.isoformat(),
            "liveMode": self.live_mode,
        }

    def load_dict(self, data: Dict[str, Any]):
        """Restore state saved by to_dict."""
        self.starting_capital = float(data["startingCapital"])
        self.balance = float(data["balance"])
        pos = data.get("position")
        self.position = Position(
            symbol=pos["symbol"], entry_price=float(pos["entryPrice"]), size=float(pos["size"]),
            cost=float(pos["cost"]), opened_at=datetime.fromisoformat(pos["openedAt"]),
            high_water=float(pos.get("highWaterMark", 0.0)),
        ) if pos else None
        self.equity_curve = [EquityPoint(datetime.fromisoformat(p["timestamp"]), float(p["balance"]))
                             for p in data.get("equityCurve", [])]
        self.trades = [ClosedTrade(
            symbol=t["symbol"], entry_price=float(t["entryPrice"]), exit_price=float(t["exitPrice"]),
            size=float(t["size"]), pnl=float(t["pnl"]), fees=float(t["fees"]),
            opened_at=datetime.fromisoformat(t["openedAt"]), closed_at=datetime.fromisoformat(t["closedAt"]),
        ) for t in data.get("trades", [])]
        self.total_fees = float(data.get("totalFees", 0.0))
        self.total_slippage = float(data.get("totalSlippage", 0.0))
        self.started_at = datetime.fromisoformat(data["startedAt"])
        self.live_mode = bool(data.get("liveMode", False))
