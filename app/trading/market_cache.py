# app/trading/market_cache.py
import asyncio
import logging
from typing import Any, Dict, List, Optional

from trading.errors import ExchangeCallFailed, MarketLoadFailed
from trading.exchange_client import ExchangeClient
from trading.models import MarketInfo

logger = logging.getLogger(__name__)


def _symbol_variants(symbol: str) -> set:
    return {
        symbol,
        symbol.replace("/", ""),
        symbol.replace("/", "-"),
        symbol.replace("/", "").replace("-", ""),
    }


class MarketCache:
    """
    Снимок метаданных рынков биржи.
    Пока ready=False, каждый запрос через ensure_ready() запускает новую загрузку
    (1 + retries попыток с фиксированной паузой).
    """

    def __init__(self, client: ExchangeClient, retries: int = 3, retry_delay: float = 2.0,
                 preferred_type: Optional[str] = None):
        self.client = client
        self.retries = retries
        self.retry_delay = retry_delay
        self.preferred_type = preferred_type
        self.ready = False
        self._markets: Dict[str, Dict[str, Any]] = {}
        self._lock = asyncio.Lock()

    @property
    def markets(self) -> Dict[str, Dict[str, Any]]:
        return self._markets

    async def _load_once(self):
        try:
            markets = await self.client.load_markets()
        except ExchangeCallFailed as e:
            raise MarketLoadFailed("Failed to load markets", detail=e.detail or e.message) from e
        self._markets = dict(markets or self.client.markets)
        self.ready = True
        logger.info(f"Markets loaded for {self.client.exchange_id}: {len(self._markets)} symbols")

    async def _load_with_retry(self) -> bool:
        attempts = self.retries + 1
        for attempt in range(1, attempts + 1):
            try:
                await self._load_once()
                return True
            except MarketLoadFailed as e:
                logger.error(f"Failed to load markets (attempt {attempt}/{attempts}): {e.detail}")
                if attempt < attempts:
                    logger.info(f"Retrying load_markets in {self.retry_delay}s...")
                    await asyncio.sleep(self.retry_delay)
        logger.error("Markets still not loaded, will retry on next request")
        return False

    async def refresh(self) -> bool:
        """Принудительная перезагрузка; при неудаче старый снимок сохраняется"""
        async with self._lock:
            return await self._load_with_retry()

    async def ensure_ready(self) -> bool:
        async with self._lock:
            if self.ready:
                return True
            return await self._load_with_retry()

    def get(self, key: str) -> Optional[MarketInfo]:
        market = self._markets.get(key)
        if market is None:
            return None
        return MarketInfo.from_ccxt(key, market)

    def resolve(self, symbol: str) -> Optional[str]:
        """
        Находит ключ рынка для канонического символа.
        Пробует символ без "/", с "-" вместо "/", без обоих, а также с суффиксом
        расчётной валюты (BTC/USDT -> BTC/USDT:USDT). Из нескольких совпадений
        предпочитается рынок с типом preferred_type.
        """
        if not self._markets:
            return None

        direct = self._markets.get(symbol)
        if direct is not None and self._type_matches(direct):
            return symbol

        candidates = _symbol_variants(symbol)
        if ":" not in symbol and "/" in symbol:
            quote = symbol.split("/", 1)[1]
            candidates |= _symbol_variants(f"{symbol}:{quote}")

        matches = [k for k in self._markets if k in candidates or k.replace("/", "") in candidates]
        if not matches:
            return None

        preferred = next((k for k in matches if self._type_matches(self._markets[k])), None)
        return preferred or matches[0]

    def _type_matches(self, market: Dict[str, Any]) -> bool:
        if not self.preferred_type:
            return True
        return market.get("type") == self.preferred_type

    def listing(self) -> List[Dict[str, Any]]:
        return [MarketInfo.from_ccxt(k, m).to_dict() for k, m in self._markets.items()]
