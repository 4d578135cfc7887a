import asyncio
import logging
from typing import Any, Dict, Optional

import ccxt

logger = logging.getLogger("exchange")


class ExchangeNetworkError(Exception):
    """Transient venue failure; the order may be retried."""


class ExchangeRejectedError(Exception):
    """The venue refused the order; retrying will not help."""


class Exchange:
    """Order placement contract used by the live executor.

    place_order returns a dict with at least: id, status, filled, average, fee.
    """

    async def place_order(self, symbol: str, side: str, amount: float) -> Dict[str, Any]:
        raise NotImplementedError

    async def fetch_free_balance(self, currency: str) -> float:
        raise NotImplementedError


class CcxtExchange(Exchange):
    def __init__(self, exchange_id: str, api_key: str, api_secret: str, password: str = "",
                 timeout_ms: int = 15000, client: Optional[ccxt.Exchange] = None):
        if client is not None:
            self.client = client
        else:
            exchange_cls = getattr(ccxt, exchange_id, None)
            if exchange_cls is None:
                raise ValueError(f"Unknown ccxt exchange id '{exchange_id}'")
            params = {
                "apiKey": api_key,
                "secret": api_secret,
                "enableRateLimit": True,
                "timeout": timeout_ms,
            }
            if password:
                params["password"] = password
            self.client = exchange_cls(params)
        self.exchange_id = exchange_id
        logger.info("Live exchange client initialized (%s)", exchange_id)

    async def place_order(self, symbol: str, side: str, amount: float) -> Dict[str, Any]:
        """Place a market order and normalise the ccxt order structure."""
        loop = asyncio.get_running_loop()
        try:
            order = await loop.run_in_executor(
                None,
                lambda: self.client.create_order(symbol, "market", side, amount)
            )
        except ccxt.NetworkError as e:
            raise ExchangeNetworkError(str(e)) from e
        except ccxt.ExchangeError as e:
            raise ExchangeRejectedError(str(e)) from e
        fee = order.get("fee") or {}
        logger.info("Order placed %s %s amount=%s id=%s status=%s", side, symbol, amount,
                    order.get("id"), order.get("status"))
        return {
            "id": order.get("id"),
            "status": order.get("status"),
            "filled": float(order.get("filled") or 0.0),
            "average": order.get("average") or order.get("price"),
            "fee": float(fee.get("cost") or 0.0),
        }

    async def fetch_free_balance(self, currency: str) -> float:
        loop = asyncio.get_running_loop()
        try:
            balance = await loop.run_in_executor(None, self.client.fetch_balance)
        except ccxt.NetworkError as e:
            raise ExchangeNetworkError(str(e)) from e
        except ccxt.ExchangeError as e:
            raise ExchangeRejectedError(str(e)) from e
        return float((balance.get("free") or {}).get(currency) or 0.0)
