import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import ccxt
import ccxt.async_support as ccxt_async

from config import Config
from trading.errors import ExchangeCallFailed

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Capabilities:
    positions: bool = False
    leverage: bool = False
    sandbox: bool = False

    @classmethod
    def probe(cls, exchange) -> "Capabilities":
        """Определяется один раз при создании клиента по exchange.has / exchange.urls"""
        has = getattr(exchange, "has", None) or {}
        urls = getattr(exchange, "urls", None) or {}
        return cls(
            positions=bool(has.get("fetchPositions")),
            leverage=bool(has.get("setLeverage")),
            sandbox=bool(urls.get("test")),
        )


def build_exchange(config: Config):
    exchange_class = getattr(ccxt_async, config.exchange_id, None)
    if exchange_class is None:
        raise ValueError(f"Exchange class not found in ccxt: {config.exchange_id}")
    return exchange_class({
        "apiKey": config.api_key,
        "secret": config.api_secret,
        "password": config.api_password or None,
        "enableRateLimit": True,
        "timeout": int(config.request_timeout * 1000),
        "options": {"defaultType": config.exchange_type},
    })


class ExchangeClient:
    def __init__(self, config: Config, exchange=None):
        self.config = config
        self.exchange = exchange if exchange is not None else build_exchange(config)
        self.capabilities = Capabilities.probe(self.exchange)
        logger.info(f"Exchange {config.exchange_id} ({config.exchange_type}) capabilities: {self.capabilities}")

        if config.sandbox:
            self._enable_sandbox()

    @property
    def exchange_id(self) -> str:
        return self.config.exchange_id

    @property
    def markets(self) -> Dict[str, Any]:
        return getattr(self.exchange, "markets", None) or {}

    def _enable_sandbox(self):
        if not self.capabilities.sandbox:
            logger.warning(f"Sandbox requested but {self.exchange_id} has no test endpoints, staying live")
            return
        try:
            self.exchange.set_sandbox_mode(True)
            logger.info(f"Sandbox mode enabled for {self.exchange_id}")
        except ccxt.BaseError as e:
            logger.warning(f"Could not enable sandbox mode: {e}")

    async def load_markets(self) -> Dict[str, Any]:
        try:
            return await self.exchange.load_markets(True)
        except ccxt.BaseError as e:
            raise ExchangeCallFailed("load_markets failed", detail=str(e)) from e

    async def fetch_balance(self) -> Dict[str, Any]:
        try:
            return await self.exchange.fetch_balance()
        except ccxt.BaseError as e:
            logger.error(f"Balance error: {e}")
            raise ExchangeCallFailed("fetch_balance failed", detail=str(e)) from e

    async def fetch_ticker(self, symbol: str) -> Dict[str, Any]:
        try:
            return await self.exchange.fetch_ticker(symbol)
        except ccxt.BaseError as e:
            raise ExchangeCallFailed(f"fetch_ticker failed for {symbol}", detail=str(e)) from e

    def amount_to_precision(self, symbol: str, amount: float) -> str:
        try:
            return self.exchange.amount_to_precision(symbol, amount)
        except ccxt.BaseError as e:
            raise ExchangeCallFailed(f"amount_to_precision failed for {symbol}", detail=str(e)) from e

    async def create_market_order(
        self,
        symbol: str,
        side: str,
        amount: float,
        price: Optional[float] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        try:
            return await self.exchange.create_order(symbol, "market", side, amount, price, params or {})
        except ccxt.BaseError as e:
            raise ExchangeCallFailed(f"create_order {side} failed for {symbol}", detail=str(e)) from e

    async def set_leverage(self, leverage: float, symbol: str) -> Any:
        if not self.capabilities.leverage:
            raise ExchangeCallFailed(f"setLeverage is not supported by {self.exchange_id}")
        try:
            return await self.exchange.set_leverage(leverage, symbol)
        except ccxt.BaseError as e:
            raise ExchangeCallFailed(f"set_leverage failed for {symbol}", detail=str(e)) from e

    async def fetch_positions(self, symbols: List[str]) -> List[Dict[str, Any]]:
        if not self.capabilities.positions:
            raise ExchangeCallFailed(f"fetchPositions is not supported by {self.exchange_id}")
        try:
            return await self.exchange.fetch_positions(symbols)
        except ccxt.BaseError as e:
            raise ExchangeCallFailed(f"fetch_positions failed for {symbols}", detail=str(e)) from e

    async def fetch_open_orders(self, symbol: str) -> List[Dict[str, Any]]:
        try:
            return await self.exchange.fetch_open_orders(symbol)
        except ccxt.BaseError as e:
            raise ExchangeCallFailed(f"fetch_open_orders failed for {symbol}", detail=str(e)) from e

    async def close(self):
        try:
            await self.exchange.close()
        except Exception as e:
            logger.warning(f"Error closing exchange session: {e}")
