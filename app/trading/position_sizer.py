# app/trading/position_sizer.py - расчёт объёма ордера "на всё"
import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional, Tuple

from config import Config
from trading.errors import ExchangeCallFailed, PriceUnavailable
from trading.exchange_client import ExchangeClient
from trading.market_cache import MarketCache
from trading.models import BestEffort, MarketInfo, SizingResult

logger = logging.getLogger(__name__)


def to_decimal(value: Any) -> Decimal:
    if value is None:
        return Decimal(0)
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return Decimal(0)


def free_balance(balance: Dict[str, Any], asset: Optional[str]) -> Decimal:
    """Свободный остаток (total только если free не пришёл вовсе); 0 если валюты нет в ответе"""
    if not asset:
        return Decimal(0)
    entry = balance.get(asset) or {}
    if not isinstance(entry, dict):
        return Decimal(0)
    free = entry.get("free")
    return to_decimal(free if free is not None else entry.get("total"))


def pick_price(ticker: Optional[Dict[str, Any]]) -> Optional[Decimal]:
    """last -> close -> bid"""
    if not ticker:
        return None
    price = ticker.get("last") or ticker.get("close") or ticker.get("bid")
    if not price:
        return None
    return to_decimal(price)


def split_symbol(symbol: str) -> Tuple[str, str]:
    base, _, quote = symbol.partition("/")
    return base, quote.split(":", 1)[0]


def raw_amounts(
    free_quote: Decimal,
    free_base: Decimal,
    price: Decimal,
    safety_buffer: Decimal,
    leverage: Decimal = Decimal(1),
) -> Tuple[Decimal, Decimal]:
    buy = free_quote * safety_buffer * leverage / price
    sell = free_base * safety_buffer
    return buy, sell


def enforce_minimum(amount: Decimal, minimum: Optional[Decimal]) -> Decimal:
    """Объём меньше минимального лота биржи обнуляется (торговать нечем), а не считается ошибкой"""
    if minimum and Decimal(0) < amount < minimum:
        return Decimal(0)
    return amount


class PositionSizer:
    def __init__(self, client: ExchangeClient, markets: MarketCache, config: Config):
        self.client = client
        self.markets = markets
        self.config = config
        self.safety_buffer = to_decimal(config.safety_buffer)
        self.leverage = to_decimal(config.leverage)

        self.use_positions = config.sell_sizing == "position"
        if self.use_positions and not client.capabilities.positions:
            logger.warning(
                f"SELL_SIZING=position but {client.exchange_id} has no fetchPositions, "
                f"sells will be sized from free balance"
            )
            self.use_positions = False

    def _leverage_factor(self) -> Decimal:
        if self.config.exchange_type == "swap" and self.config.use_leverage_for_swaps:
            return self.leverage
        return Decimal(1)

    async def _fetch_price(self, symbol: str) -> Decimal:
        try:
            ticker = await self.client.fetch_ticker(symbol)
        except ExchangeCallFailed as e:
            logger.warning(f"fetch_ticker failed for {symbol}: {e.detail}")
            raise PriceUnavailable(f"Cannot fetch price for symbol {symbol}", detail=e.detail) from e
        price = pick_price(ticker)
        if price is None or price <= 0:
            raise PriceUnavailable(f"Cannot fetch price for symbol {symbol}")
        return price

    def _round(self, market_key: Optional[str], amount: Decimal) -> BestEffort[Decimal]:
        if market_key is None or amount <= 0:
            return BestEffort(amount)
        try:
            return BestEffort(Decimal(self.client.amount_to_precision(market_key, float(amount))))
        except Exception as e:
            # округление не критично - оставляем сырой объём
            logger.warning(f"Precision rounding failed for {market_key} amount {amount}: {e}")
            return BestEffort(amount, warning=f"precision rounding failed for {amount}: {e}")

    async def _position_amount(self, symbol: str) -> BestEffort[Optional[Decimal]]:
        try:
            positions = await self.client.fetch_positions([symbol])
        except ExchangeCallFailed as e:
            logger.warning(f"fetch_positions failed for {symbol}: {e.detail or e.message}")
            return BestEffort(None, warning=f"positions fetch failed: {e.detail or e.message}")

        for p in positions or []:
            if p.get("symbol") != symbol or p.get("side") != "long":
                continue
            contracts = abs(to_decimal(p.get("contracts")))
            if contracts > 0:
                return BestEffort(contracts)
        return BestEffort(None)

    async def compute(self, symbol: str) -> SizingResult:
        warnings = []

        market_key = self.markets.resolve(symbol)
        market: Optional[MarketInfo] = self.markets.get(market_key) if market_key else None
        if market is not None:
            resolved = market.key
            base, quote = market.base or "", market.quote or ""
        else:
            resolved = symbol
            base, quote = split_symbol(symbol)
            logger.info(f"No market metadata for {symbol}, using literal split {base}/{quote}")

        balance = await self.client.fetch_balance()
        free_quote = free_balance(balance, quote)
        free_base = free_balance(balance, base)

        price = await self._fetch_price(resolved)

        raw_buy, raw_sell = raw_amounts(free_quote, free_base, price, self.safety_buffer, self._leverage_factor())

        sell_source = "balance"
        if self.use_positions:
            position = await self._position_amount(resolved)
            if position.warning:
                warnings.append(position.warning)
            if position.value:
                raw_sell = position.value
                sell_source = "position"

        buy = self._round(market_key, raw_buy)
        sell = self._round(market_key, raw_sell)
        warnings.extend(w for w in (buy.warning, sell.warning) if w)

        minimum = market.min_amount if market is not None else None
        buy_amount = enforce_minimum(buy.value, minimum)
        sell_amount = enforce_minimum(sell.value, minimum)

        return SizingResult(
            symbol=resolved,
            base=base,
            quote=quote,
            price=price,
            buy_amount=buy_amount,
            sell_amount=sell_amount,
            free_quote=free_quote,
            free_base=free_base,
            raw_buy_amount=raw_buy,
            raw_sell_amount=raw_sell,
            market=market,
            sell_source=sell_source,
            warnings=warnings,
        )
