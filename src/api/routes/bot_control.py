"""Bot lifecycle, paper account and backtest routes."""
from typing import List, Optional, Union

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from src.api.dependencies.services import BotRegistry, get_bot_registry
from src.config import settings
from src.engine.backtest import run_backtest
from src.engine.errors import (ConfigConflictError, DataUnavailableError, EngineError, ExecutionError,
                               InsufficientDataError, InvalidConfigError, InvalidTransition,
                               LiveModeResetForbidden, LiveTradingUnavailable, PositionOpenError)
from src.models.bot_models import LogLevel

router = APIRouter(prefix="/api/bot", tags=["bots"])


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CreateBotRequest(CamelModel):
    symbol: Optional[str] = None
    watchlist: Optional[Union[str, List[str]]] = None
    ema_fast: Optional[int] = None
    ema_slow: Optional[int] = None
    rsi_period: Optional[int] = None
    rsi_threshold: Optional[float] = None
    rsi_overbought: Optional[float] = None
    risk_profile: Optional[str] = None
    trailing_stop: Optional[bool] = None
    starting_capital: Optional[float] = Field(None, gt=0)


class UpdateBotRequest(CamelModel):
    is_running: Optional[bool] = None
    is_live_mode: Optional[bool] = None
    symbol: Optional[str] = None
    watchlist: Optional[Union[str, List[str]]] = None
    ema_fast: Optional[int] = None
    ema_slow: Optional[int] = None
    rsi_period: Optional[int] = None
    rsi_threshold: Optional[float] = None
    rsi_overbought: Optional[float] = None
    risk_profile: Optional[str] = None
    trailing_stop: Optional[bool] = None
    expected_version: Optional[int] = None


class ResetPaperRequest(CamelModel):
    starting_capital: float = Field(settings.DEFAULT_STARTING_CAPITAL, gt=0)


class BacktestRequest(CamelModel):
    risk_profile: Optional[str] = None
    trailing_stop: Optional[bool] = None
    starting_capital: float = Field(settings.DEFAULT_STARTING_CAPITAL, gt=0)


_STATUS_CODES = [
    (InvalidConfigError, 422),
    (InsufficientDataError, 422),
    (InvalidTransition, 409),
    (ConfigConflictError, 409),
    (PositionOpenError, 409),
    (LiveModeResetForbidden, 409),
    (LiveTradingUnavailable, 409),
    (DataUnavailableError, 503),
    (ExecutionError, 502),
]


def engine_http_error(e: EngineError) -> HTTPException:
    for exc_type, code in _STATUS_CODES:
        if isinstance(e, exc_type):
            return HTTPException(status_code=code, detail=str(e))
    return HTTPException(status_code=500, detail=str(e))


@router.post("", status_code=201)
async def create_bot(request: CreateBotRequest, registry: BotRegistry = Depends(get_bot_registry)):
    overrides = request.model_dump(exclude_none=True, exclude={"symbol", "watchlist", "risk_profile",
                                                               "trailing_stop", "starting_capital"})
    try:
        controller = await registry.create_bot(
            symbol=request.symbol,
            watchlist=request.watchlist,
            risk_profile=request.risk_profile,
            trailing_stop=bool(request.trailing_stop),
            starting_capital=request.starting_capital,
            **overrides,
        )
    except EngineError as e:
        raise engine_http_error(e)
    return controller.status()


@router.get("/{bot_id}")
async def get_bot(bot_id: int, registry: BotRegistry = Depends(get_bot_registry)):
    return registry.get(bot_id).status()


@router.patch("/{bot_id}")
async def update_bot(bot_id: int, request: UpdateBotRequest, registry: BotRegistry = Depends(get_bot_registry)):
    controller = registry.get(bot_id)
    changes = request.model_dump(exclude_unset=True)
    is_running = changes.pop("is_running", None)
    expected_version = changes.pop("expected_version", None)
    changes = {k: v for k, v in changes.items() if v is not None}
    try:
        if changes or expected_version is not None:
            await controller.update_config(expected_version=expected_version, **changes)
        if is_running is True:
            await controller.start()
        elif is_running is False:
            await controller.stop()
    except EngineError as e:
        raise engine_http_error(e)
    return controller.status()


@router.post("/{bot_id}/kill")
async def kill_bot(bot_id: int, registry: BotRegistry = Depends(get_bot_registry)):
    controller = registry.get(bot_id)
    try:
        changed = await controller.kill()
    except EngineError as e:
        raise engine_http_error(e)
    status = controller.status()
    status["changed"] = changed
    return status


@router.post("/{bot_id}/paper/reset")
async def reset_paper(bot_id: int, request: ResetPaperRequest, registry: BotRegistry = Depends(get_bot_registry)):
    controller = registry.get(bot_id)
    try:
        await controller.reset_paper(request.starting_capital)
    except EngineError as e:
        raise engine_http_error(e)
    return controller.ledger.stats()


@router.get("/{bot_id}/paper/stats")
async def paper_stats(bot_id: int, registry: BotRegistry = Depends(get_bot_registry)):
    return registry.get(bot_id).ledger.stats()


@router.get("/{bot_id}/equity")
async def equity_curve(bot_id: int, registry: BotRegistry = Depends(get_bot_registry)):
    ledger = registry.get(bot_id).ledger
    return {"points": [p.to_dict() for p in ledger.equity_curve]}


@router.get("/{bot_id}/trades")
async def closed_trades(bot_id: int, limit: int = Query(100, ge=1, le=1000),
                        registry: BotRegistry = Depends(get_bot_registry)):
    trades = registry.get(bot_id).ledger.trades[-limit:]
    return {"trades": [t.to_dict() for t in reversed(trades)]}


@router.get("/{bot_id}/logs")
async def bot_logs(bot_id: int, after_id: Optional[int] = Query(None, alias="afterId", ge=0),
                   limit: int = Query(100, ge=1, le=1000), level: Optional[LogLevel] = None,
                   registry: BotRegistry = Depends(get_bot_registry)):
    log = registry.get(bot_id).log
    if after_id is None:
        entries = log.entries(limit=limit, level=level)
        has_more = False
    else:
        # one extra entry tells whether the page stops short of the newest
        entries = log.entries(after_id=after_id, limit=limit + 1, level=level)
        has_more = len(entries) > limit
        entries = entries[:limit]
    last_id = entries[-1].id if has_more else log.last_id
    return {"entries": [e.to_dict() for e in entries], "lastId": last_id, "hasMore": has_more}


@router.post("/{bot_id}/backtest")
async def backtest(bot_id: int, request: Optional[BacktestRequest] = None,
                   registry: BotRegistry = Depends(get_bot_registry)):
    request = request or BacktestRequest()
    controller = registry.get(bot_id)
    config = controller.config
    feed = registry.require_feed()
    try:
        bars = await feed.get_ohlcv(config.symbol)
        result = run_backtest(
            bars.data,
            config.params,
            risk_profile=request.risk_profile or config.risk_profile,
            trailing_stop=config.trailing_stop if request.trailing_stop is None else request.trailing_stop,
            starting_capital=request.starting_capital,
            fee_rate=settings.PAPER_FEE_RATE,
            slippage_rate=settings.PAPER_SLIPPAGE_RATE,
        )
    except EngineError as e:
        raise engine_http_error(e)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    result.update({"botId": bot_id, "symbol": config.symbol, "stale": bars.stale})
    return result

__all__ = ["router", "engine_http_error"]
