"""Bot registry and dependency providers for FastAPI routes."""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Union

from fastapi import HTTPException

from src.config import settings
from src.execution.execution import ExecutionAdapter
from src.execution.ledger import AccountLedger
from src.models.bot_models import BotConfig, BotState, StrategyParams
from src.persistence.db import Database
from src.services.bot_controller import BotController
from src.services.event_log import EventLog
from src.services.market_feed import MarketDataFeed
from src.services.risk_manager import fixed_fraction_sizer

logger = logging.getLogger("registry")


class BotRegistry:
    """Owns every BotController plus the shared feed, store and live executor."""

    def __init__(self) -> None:
        self._bots: Dict[int, BotController] = {}
        self._next_id = 1
        self._persisted_log_ids: Dict[int, int] = {}
        self.feed: Optional[MarketDataFeed] = None
        self.db: Optional[Database] = None
        self.live_executor: Optional[ExecutionAdapter] = None
        self.controller_options: Dict[str, Any] = {}

    def configure(self, feed: MarketDataFeed, db: Optional[Database] = None,
                  live_executor: Optional[ExecutionAdapter] = None, **controller_options) -> None:
        self.feed = feed
        self.db = db
        self.live_executor = live_executor
        self.controller_options = controller_options

    @property
    def configured(self) -> bool:
        return self.feed is not None

    def require_feed(self) -> MarketDataFeed:
        if self.feed is None:
            raise HTTPException(status_code=503, detail="Market data feed not available")
        return self.feed

    async def create_bot(self, symbol: Optional[str] = None, watchlist: Optional[Union[str, List[str]]] = None,
                         risk_profile: Optional[str] = None, trailing_stop: bool = False,
                         starting_capital: Optional[float] = None,
                         **param_overrides) -> BotController:
        params = StrategyParams(
            ema_fast=param_overrides.get("ema_fast", settings.EMA_FAST),
            ema_slow=param_overrides.get("ema_slow", settings.EMA_SLOW),
            rsi_period=param_overrides.get("rsi_period", settings.RSI_PERIOD),
            rsi_threshold=param_overrides.get("rsi_threshold", settings.RSI_THRESHOLD),
            rsi_overbought=param_overrides.get("rsi_overbought", settings.RSI_OVERBOUGHT),
        )
        config = BotConfig.create(
            symbol or settings.DEFAULT_SYMBOL,
            watchlist if watchlist is not None else settings.default_watchlist,
            params=params,
            risk_profile=risk_profile or settings.DEFAULT_RISK_PROFILE,
            trailing_stop=trailing_stop,
        )
        bot_id = self._next_id
        capital = starting_capital if starting_capital is not None else settings.DEFAULT_STARTING_CAPITAL
        controller = self._build(bot_id, config, starting_capital=capital)
        self._next_id += 1
        self._bots[bot_id] = controller
        controller.log.info(f"Bot created for {config.symbol} with {capital:,.2f} paper capital")
        await self._persist(controller)
        logger.info("Created bot %s (%s)", bot_id, config.symbol)
        return controller

    def get(self, bot_id: int) -> BotController:
        controller = self._bots.get(bot_id)
        if controller is None:
            raise HTTPException(status_code=404, detail=f"Bot {bot_id} not found")
        return controller

    def bots(self) -> List[BotController]:
        return [self._bots[k] for k in sorted(self._bots)]

    async def restore(self, auto_start: bool = False) -> int:
        """Rebuild controllers from the store. Bots that were running resume only with auto_start."""
        if self.db is None or not self.configured:
            return 0
        restored = 0
        for record in await self.db.load_bots():
            bot_id = record["id"]
            if bot_id in self._bots:
                continue
            try:
                config = BotConfig.from_dict(record["config"])
            except Exception as e:
                logger.error(f"Skipping bot {bot_id}, stored config is invalid: {e}")
                continue
            was_running = record["state"] == BotState.RUNNING.value
            state = BotState.STOPPED if was_running else BotState(record["state"])
            controller = self._build(bot_id, config, state=state)
            entries = await self.db.load_logs(bot_id)
            controller.log.restore(entries)
            self._persisted_log_ids[bot_id] = controller.log.last_id
            payload = await self.db.load_ledger(bot_id)
            if payload:
                controller.ledger.load_dict(payload)
                controller.risk.reset(controller.ledger.equity())
            self._bots[bot_id] = controller
            self._next_id = max(self._next_id, bot_id + 1)
            restored += 1
            if was_running and auto_start:
                await controller.start()
        logger.info("Restored %d bots from the store", restored)
        return restored

    async def shutdown(self) -> None:
        for controller in self.bots():
            try:
                await controller.shutdown()
                await self._persist(controller)
            except Exception as e:  # pragma: no cover
                logger.error(f"Failed to shut down bot {controller.bot_id}: {e}")
        if self.feed is not None:
            await self.feed.provider.close()
        if self.db is not None:
            await self.db.disconnect()

    def all_status(self) -> Dict[str, Any]:
        bots = self.bots()
        return {
            "feed": "ready" if self.configured else "unavailable",
            "persistence": bool(self.db is not None and self.db.connected),
            "liveTrading": self.live_executor is not None,
            "bots": [c.status() for c in bots],
            "running": sum(1 for c in bots if c.is_running),
        }

    def _build(self, bot_id: int, config: BotConfig, starting_capital: float = None,
               state: BotState = BotState.IDLE) -> BotController:
        if self.feed is None:
            raise HTTPException(status_code=503, detail="Market data feed not available")
        log = EventLog(bot_id)
        ledger = AccountLedger(
            starting_capital=starting_capital if starting_capital is not None else settings.DEFAULT_STARTING_CAPITAL,
            live_mode=config.is_live_mode,
            sizer=fixed_fraction_sizer(config.position_fraction),
            fee_rate=settings.PAPER_FEE_RATE,
            slippage_rate=settings.PAPER_SLIPPAGE_RATE,
            log=log,
        )
        return BotController(bot_id, config, self.feed, live_executor=self.live_executor, ledger=ledger,
                             log=log, state=state, on_change=self._persist, **self.controller_options)

    async def _persist(self, controller: BotController) -> None:
        if self.db is None:
            return
        bot_id = controller.bot_id
        await self.db.save_bot(bot_id, controller.state.value, controller.config.to_dict())
        await self.db.save_ledger(bot_id, controller.ledger.to_dict())
        after = self._persisted_log_ids.get(bot_id, 0)
        fresh = controller.log.entries(after_id=after, limit=0)
        if fresh:
            await self.db.append_logs(bot_id, fresh)
            self._persisted_log_ids[bot_id] = fresh[-1].id


bot_registry = BotRegistry()

# FastAPI dependency providers

def get_bot_registry() -> BotRegistry:
    return bot_registry

__all__ = ["BotRegistry", "bot_registry", "get_bot_registry"]
