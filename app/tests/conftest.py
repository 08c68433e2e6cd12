from decimal import Decimal, ROUND_DOWN

import ccxt
import pytest
import pytest_asyncio

from config import Config
from trading.exchange_client import ExchangeClient
from trading.market_cache import MarketCache


def _market(key, base, quote, type_, amount_precision=0.0001, min_amount=0.001):
    return {
        "id": key.replace("/", "").split(":")[0],
        "symbol": key,
        "base": base,
        "quote": quote,
        "type": type_,
        "precision": {"amount": amount_precision, "price": 0.1},
        "limits": {"amount": {"min": min_amount, "max": None}},
    }


DEFAULT_MARKETS = {
    "BTC/USDT": _market("BTC/USDT", "BTC", "USDT", "spot"),
    "BTC/USDT:USDT": _market("BTC/USDT:USDT", "BTC", "USDT", "swap"),
    "ETH/USDT": _market("ETH/USDT", "ETH", "USDT", "spot", amount_precision=0.001, min_amount=0.01),
}


class FakeExchange:
    """In-memory stand-in for a ccxt async exchange."""

    def __init__(self, markets=None, balance=None, tickers=None, positions=None, has=None, urls=None):
        self._markets_data = DEFAULT_MARKETS if markets is None else markets
        self.markets = {}
        self.balance = balance if balance is not None else {
            "USDT": {"free": 1000.0, "used": 0.0, "total": 1000.0},
            "BTC": {"free": 0.5, "used": 0.0, "total": 0.5},
            "free": {"USDT": 1000.0, "BTC": 0.5},
        }
        self.tickers = tickers if tickers is not None else {
            "BTC/USDT": {"last": 50000.0, "close": 50000.0, "bid": 49990.0},
            "BTC/USDT:USDT": {"last": 50000.0, "close": 50000.0, "bid": 49990.0},
            "ETH/USDT": {"last": 2500.0},
        }
        self.positions = positions or []
        self.has = has if has is not None else {"fetchPositions": True, "setLeverage": True}
        self.urls = urls if urls is not None else {"api": {}, "test": {"rest": "https://sandbox.example"}}

        self.load_failures = 0
        self.load_calls = 0
        self.balance_error = None
        self.ticker_error = None
        self.order_error = None
        self.leverage_error = None
        self.precision_error = None
        self.sandbox = False
        self.closed = False
        self.orders = []
        self.leverage_calls = []

    async def load_markets(self, reload=False):
        self.load_calls += 1
        if self.load_failures > 0:
            self.load_failures -= 1
            raise ccxt.NetworkError("bitget GET https://api.bitget.com/api/v2/markets 503")
        self.markets = dict(self._markets_data)
        return self.markets

    async def fetch_balance(self):
        if self.balance_error:
            raise self.balance_error
        return self.balance

    async def fetch_ticker(self, symbol):
        if self.ticker_error:
            raise self.ticker_error
        if symbol not in self.tickers:
            raise ccxt.BadSymbol(f"bitget does not have market symbol {symbol}")
        return self.tickers[symbol]

    def amount_to_precision(self, symbol, amount):
        if self.precision_error:
            raise self.precision_error
        step = Decimal(str(self.markets[symbol]["precision"]["amount"]))
        result = Decimal(str(amount)).quantize(step, rounding=ROUND_DOWN)
        if result == 0:
            raise ccxt.InvalidOrder(f"amount of {symbol} must be greater than minimum amount precision of {step}")
        return str(result)

    async def create_order(self, symbol, type, side, amount, price=None, params=None):
        if self.order_error:
            raise self.order_error
        order = {
            "id": f"order-{len(self.orders) + 1}",
            "symbol": symbol,
            "type": type,
            "side": side,
            "amount": amount,
            "price": price,
            "reduceOnly": bool((params or {}).get("reduceOnly")),
            "status": "closed",
        }
        self.orders.append(order)
        return order

    async def set_leverage(self, leverage, symbol):
        self.leverage_calls.append((leverage, symbol))
        if self.leverage_error:
            raise self.leverage_error
        return {"symbol": symbol, "leverage": leverage}

    async def fetch_positions(self, symbols=None):
        return [p for p in self.positions if symbols is None or p["symbol"] in symbols]

    async def fetch_open_orders(self, symbol=None):
        return []

    def set_sandbox_mode(self, enabled):
        self.sandbox = enabled

    async def close(self):
        self.closed = True


def make_config(**overrides):
    values = {
        "exchange_id": "bitget",
        "exchange_type": "spot",
        "api_key": "key",
        "api_secret": "secret",
        "markets_retry_delay": 0,
    }
    values.update(overrides)
    return Config(**values)


@pytest.fixture
def fake_exchange():
    return FakeExchange()


@pytest.fixture
def config():
    return make_config()


@pytest.fixture
def client(config, fake_exchange):
    return ExchangeClient(config, exchange=fake_exchange)


@pytest_asyncio.fixture
async def ready_markets(client):
    markets = MarketCache(client, retries=0, retry_delay=0, preferred_type=client.config.exchange_type)
    await markets.refresh()
    return markets
