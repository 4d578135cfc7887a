"""Cached market data reads (ticker, candles, RSI) for the dashboard."""
from fastapi import APIRouter, Depends

from src.api.dependencies.services import BotRegistry, get_bot_registry
from src.api.routes.bot_control import engine_http_error
from src.engine.errors import EngineError
from src.services.market_feed import ticker_payload

router = APIRouter(prefix="/api/market", tags=["market"])


@router.get("/{symbol:path}/ticker")
async def ticker(symbol: str, registry: BotRegistry = Depends(get_bot_registry)):
    feed = registry.require_feed()
    try:
        result = await feed.get_ticker(symbol)
    except EngineError as e:
        raise engine_http_error(e)
    payload = ticker_payload(result)
    payload["symbol"] = result.data.symbol
    return payload


@router.get("/{symbol:path}/ohlcv")
async def ohlcv(symbol: str, registry: BotRegistry = Depends(get_bot_registry)):
    feed = registry.require_feed()
    try:
        result = await feed.get_ohlcv(symbol)
    except EngineError as e:
        raise engine_http_error(e)
    return {
        "bars": [b.to_dict() for b in result.data],
        "stale": result.stale,
        "asOf": result.as_of.isoformat(),
    }


@router.get("/{symbol:path}/rsi")
async def rsi(symbol: str, registry: BotRegistry = Depends(get_bot_registry)):
    feed = registry.require_feed()
    try:
        result = await feed.get_rsi(symbol)
    except EngineError as e:
        raise engine_http_error(e)
    return {
        "period": feed.rsi_period,
        "points": result.data,
        "stale": result.stale,
        "asOf": result.as_of.isoformat(),
    }

__all__ = ["router"]
