# app/trading/order_executor.py - размещение рыночных ордеров через ccxt
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional

from config import Config
from trading.errors import ExchangeCallFailed, OrderFailed
from trading.exchange_client import ExchangeClient
from trading.models import Action, BestEffort, SizingResult

logger = logging.getLogger(__name__)


@dataclass
class OrderResult:
    success: bool
    message: str
    symbol: str
    side: str
    amount: Decimal
    order: Optional[Dict[str, Any]] = None
    order_id: Optional[str] = None
    warnings: List[str] = field(default_factory=list)


class OrderExecutor:
    def __init__(self, client: ExchangeClient, config: Config):
        self.client = client
        self.config = config

    async def set_leverage_if_needed(self, symbol: str) -> BestEffort[bool]:
        """Плечо выставляется по возможности; ошибка не мешает ордеру"""
        if not self.config.leverage_active:
            return BestEffort(False)
        if not self.client.capabilities.leverage:
            logger.info(f"setLeverage not available on {self.client.exchange_id}, skipping explicit leverage")
            return BestEffort(False, warning="setLeverage not supported by exchange")
        try:
            await self.client.set_leverage(self.config.leverage, symbol)
            logger.info(f"setLeverage {symbol} => {self.config.leverage}")
            return BestEffort(True)
        except ExchangeCallFailed as e:
            logger.warning(f"setLeverage failed (non-fatal): {e.detail or e.message}")
            return BestEffort(False, warning=f"setLeverage failed: {e.detail or e.message}")

    async def place_market_order(
        self,
        symbol: str,
        side: str,
        amount: Decimal,
        reduce_only: bool = False,
        price: Optional[Decimal] = None,
    ) -> Dict[str, Any]:
        params = {"reduceOnly": True} if reduce_only else {}
        try:
            order = await self.client.create_market_order(
                symbol,
                side,
                float(amount),
                float(price) if price is not None else None,
                params,
            )
        except ExchangeCallFailed as e:
            logger.error(f"create_order {side.upper()} {symbol} failed: {e.detail}")
            raise OrderFailed(f"{side} order for {symbol} failed", detail=e.detail) from e
        logger.info(f"{side.upper()} order response: {order}")
        return order

    async def _diagnostics(self, symbol: str, side: str) -> List[str]:
        """Состояние после сделки - только для логов"""
        warnings = []
        try:
            open_orders = await self.client.fetch_open_orders(symbol)
            logger.info(f"Open orders after {side}: {open_orders}")
        except ExchangeCallFailed as e:
            warnings.append(f"fetch_open_orders failed: {e.detail or e.message}")

        if self.client.capabilities.positions:
            try:
                positions = await self.client.fetch_positions([symbol])
                logger.info(f"Positions after {side}: {positions}")
            except ExchangeCallFailed as e:
                warnings.append(f"fetch_positions failed: {e.detail or e.message}")

        try:
            balance = await self.client.fetch_balance()
            logger.info(f"Balance after {side} (free): {balance.get('free')}")
        except ExchangeCallFailed as e:
            warnings.append(f"fetch_balance failed: {e.detail or e.message}")

        for w in warnings:
            logger.warning(w)
        return warnings

    async def execute(self, sizing: SizingResult, action: Action) -> OrderResult:
        side = action.value
        amount = sizing.amount_for(action)
        reduce_only = action == Action.SELL and sizing.reduce_only
        warnings = list(sizing.warnings)

        leverage = await self.set_leverage_if_needed(sizing.symbol)
        if leverage.warning:
            warnings.append(leverage.warning)

        # спотовым биржам с покупкой "на сумму" нужна цена для расчёта cost
        price = sizing.price if action == Action.BUY and self.config.exchange_type == "spot" else None

        logger.info(f"Executing {side} {sizing.symbol}: amount={amount}, reduce_only={reduce_only}")
        order = await self.place_market_order(sizing.symbol, side, amount, reduce_only=reduce_only, price=price)

        warnings.extend(await self._diagnostics(sizing.symbol, side))

        return OrderResult(
            success=True,
            message=f"{side.upper()} {sizing.symbol} placed",
            symbol=sizing.symbol,
            side=side,
            amount=amount,
            order=order,
            order_id=(order or {}).get("id"),
            warnings=warnings,
        )
