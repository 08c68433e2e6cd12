from decimal import Decimal

import ccxt
import pytest

from conftest import FakeExchange, make_config
from trading.errors import OrderFailed
from trading.exchange_client import ExchangeClient
from trading.models import Action, SizingResult
from trading.order_executor import OrderExecutor


def _sizing(symbol="BTC/USDT:USDT", buy="0.02", sell="0.5", sell_source="balance", warnings=None):
    return SizingResult(
        symbol=symbol,
        base="BTC",
        quote="USDT",
        price=Decimal("50000"),
        buy_amount=Decimal(buy),
        sell_amount=Decimal(sell),
        free_quote=Decimal("1000"),
        free_base=Decimal("0.5"),
        raw_buy_amount=Decimal(buy),
        raw_sell_amount=Decimal(sell),
        sell_source=sell_source,
        warnings=list(warnings or []),
    )


def _executor(exchange=None, **config_overrides):
    exchange = exchange or FakeExchange()
    config = make_config(**config_overrides)
    return OrderExecutor(ExchangeClient(config, exchange=exchange), config), exchange


@pytest.mark.asyncio
async def test_execute_returns_order_verbatim():
    executor, exchange = _executor(exchange_type="swap")
    result = await executor.execute(_sizing(), Action.BUY)

    assert result.success
    assert result.order is exchange.orders[0]
    assert result.order_id == "order-1"
    assert exchange.orders[0]["side"] == "buy"
    assert exchange.orders[0]["amount"] == 0.02
    assert exchange.orders[0]["price"] is None
    assert result.warnings == []


@pytest.mark.asyncio
async def test_spot_buy_passes_reference_price():
    executor, exchange = _executor(exchange_type="spot")
    await executor.execute(_sizing(symbol="BTC/USDT"), Action.BUY)
    assert exchange.orders[0]["price"] == 50000.0


@pytest.mark.asyncio
async def test_position_sized_sell_is_reduce_only():
    executor, exchange = _executor(exchange_type="swap")
    await executor.execute(_sizing(sell="0.3", sell_source="position"), Action.SELL)
    assert exchange.orders[0]["reduceOnly"] is True

    await executor.execute(_sizing(), Action.SELL)
    assert exchange.orders[1]["reduceOnly"] is False


@pytest.mark.asyncio
async def test_order_failure_carries_exchange_detail():
    exchange = FakeExchange()
    exchange.order_error = ccxt.InsufficientFunds("bitget {\"code\":\"43012\",\"msg\":\"Insufficient balance\"}")
    executor, _ = _executor(exchange)

    with pytest.raises(OrderFailed) as exc:
        await executor.execute(_sizing(), Action.BUY)
    assert "Insufficient balance" in exc.value.detail
    assert exc.value.status == 500


@pytest.mark.asyncio
async def test_leverage_set_before_swap_order():
    executor, exchange = _executor(exchange_type="swap", use_leverage_for_swaps=True, leverage=3)
    result = await executor.execute(_sizing(), Action.BUY)
    assert exchange.leverage_calls == [(3.0, "BTC/USDT:USDT")]
    assert result.warnings == []


@pytest.mark.asyncio
async def test_leverage_failure_is_not_fatal():
    exchange = FakeExchange()
    exchange.leverage_error = ccxt.ExchangeError("leverage locked")
    executor, _ = _executor(exchange, exchange_type="swap", use_leverage_for_swaps=True, leverage=3)

    result = await executor.execute(_sizing(), Action.BUY)
    assert result.success
    assert len(exchange.orders) == 1
    assert any("leverage locked" in w for w in result.warnings)


@pytest.mark.asyncio
async def test_leverage_skipped_when_unsupported_or_disabled():
    exchange = FakeExchange(has={"fetchPositions": True, "setLeverage": False})
    executor, _ = _executor(exchange, exchange_type="swap", use_leverage_for_swaps=True, leverage=3)
    outcome = await executor.set_leverage_if_needed("BTC/USDT:USDT")
    assert outcome.value is False and outcome.warning

    executor, exchange = _executor(exchange_type="swap", use_leverage_for_swaps=True, leverage=1)
    outcome = await executor.set_leverage_if_needed("BTC/USDT:USDT")
    assert outcome.ok and outcome.value is False
    assert exchange.leverage_calls == []


@pytest.mark.asyncio
async def test_diagnostic_failures_become_warnings():
    exchange = FakeExchange()
    executor, _ = _executor(exchange)

    async def broken_balance():
        raise ccxt.NetworkError("connection reset")

    exchange.fetch_balance = broken_balance
    result = await executor.execute(_sizing(), Action.SELL)
    assert result.success
    assert any("connection reset" in w for w in result.warnings)


@pytest.mark.asyncio
async def test_sizing_warnings_are_carried_over():
    executor, _ = _executor()
    result = await executor.execute(_sizing(warnings=["precision rounding failed for 0.02"]), Action.BUY)
    assert result.warnings == ["precision rounding failed for 0.02"]
