import logging
import re
from typing import List, Union

from src.engine.errors import InvalidConfigError

logger = logging.getLogger(__name__)

# Trading pairs are addressed as BASE/QUOTE, e.g. BTC/USDT
_SYMBOL_RE = re.compile(r"^[A-Z0-9]{1,20}/[A-Z0-9]{1,20}$")


def normalize_symbol(symbol: str) -> str:
    """Upper-case and validate a single BASE/QUOTE symbol."""
    if not isinstance(symbol, str):
        raise InvalidConfigError(f"Symbol must be a string, got {type(symbol).__name__}")
    normalized = symbol.strip().upper().replace("-", "/")
    if not _SYMBOL_RE.match(normalized):
        raise InvalidConfigError(f"Invalid symbol '{symbol}', expected BASE/QUOTE form such as BTC/USDT")
    return normalized


def resolve_watchlist(input_data: Union[str, List[str], None]) -> List[str]:
    """
    Resolve a watchlist from various input formats.

    Args:
        input_data: Can be:
            - String: "BTC/USDT" or comma-separated symbols "BTC/USDT,ETH/USDT"
            - List: ["BTC/USDT", "eth/usdt"]

    Returns:
        Ordered list of unique normalized symbols; first occurrence wins.
    """
    if not input_data:
        return []

    if isinstance(input_data, str):
        items = [s for s in input_data.split(",")]
    else:
        items = list(input_data)

    result: List[str] = []
    for item in items:
        if isinstance(item, str) and not item.strip():
            continue
        symbol = normalize_symbol(item)
        if symbol in result:
            logger.debug("Dropping duplicate watchlist symbol %s", symbol)
            continue
        result.append(symbol)
    return result


def quote_asset(symbol: str) -> str:
    return symbol.split("/", 1)[1]
