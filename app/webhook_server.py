# app/webhook_server.py - приём сигналов TradingView и отправка рыночных ордеров через ccxt
import asyncio
import hashlib
import hmac
import logging
import sys
from collections import defaultdict
from decimal import Decimal
from typing import Dict, Optional

from aiohttp import web, web_request
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from config import Config
from trading.duplicate_guard import DuplicateGuard
from trading.errors import (
    CredentialsMissing,
    ExchangeCallFailed,
    MarketTypeMismatch,
    QuantityTooSmall,
    RelayError,
    RequestTimedOut,
    Unauthorized,
)
from trading.exchange_client import ExchangeClient
from trading.market_cache import MarketCache
from trading.models import Signal
from trading.order_executor import OrderExecutor, OrderResult
from trading.position_sizer import PositionSizer
from trading.signal_parser import parse_signal
from utils.telegram_notifications import TelegramNotifier

logger = logging.getLogger(__name__)

SERVICE_NAME = "ccxt-webhook-relay"

CONFIG_KEY = web.AppKey("config", Config)
CLIENT_KEY = web.AppKey("client", ExchangeClient)
MARKETS_KEY = web.AppKey("markets", MarketCache)
SIZER_KEY = web.AppKey("sizer", PositionSizer)
EXECUTOR_KEY = web.AppKey("executor", OrderExecutor)
DUPLICATES_KEY = web.AppKey("duplicates", DuplicateGuard)
NOTIFIER_KEY = web.AppKey("notifier", TelegramNotifier)
LOCKS_KEY = web.AppKey("symbol_locks", dict)
SCHEDULER_KEY = web.AppKey("scheduler", AsyncIOScheduler)

UNRESOLVED_LOCK_KEY = "*"


def verify_signature(secret: str, payload: bytes, signature: str):
    """HMAC-SHA256 от сырого тела запроса; без WEBHOOK_SECRET проверка отключена"""
    if not secret:
        return
    signature = (signature or "").strip()
    if not signature:
        raise Unauthorized("Missing webhook signature", code="missing_signature")
    if signature.startswith("sha256="):
        signature = signature[7:]
    expected = hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()
    if not hmac.compare_digest(expected.encode(), signature.lower().encode()):
        raise Unauthorized("Invalid webhook signature", code="invalid_signature")


def _check_market_type(config: Config, sizing):
    market = sizing.market
    if config.exchange_type == "swap" and market is not None and market.type != "swap":
        logger.error(f"Refusing to place order: {sizing.symbol} is {market.type}, expected swap")
        raise MarketTypeMismatch(f"Market {sizing.symbol} is not a swap market", marketType=market.type)


async def process_signal(app: web.Application, signal: Signal) -> OrderResult:
    config = app[CONFIG_KEY]
    if not config.has_credentials:
        raise CredentialsMissing("API keys not set in environment")

    markets = app[MARKETS_KEY]
    await markets.ensure_ready()
    # нераспознанные символы делят общий замок: замков не больше, чем рынков, плюс один
    lock_key = markets.resolve(signal.symbol) or UNRESOLVED_LOCK_KEY

    # баланс -> расчёт -> ордер под одним замком на символ, чтобы два сигнала не потратили один и тот же баланс
    async with app[LOCKS_KEY][lock_key]:
        sizing = await app[SIZER_KEY].compute(signal.symbol)
        logger.info(f"Webhook: {signal.action.value} {sizing.symbol} computed: {sizing.to_dict()}")

        _check_market_type(config, sizing)

        qty = sizing.amount_for(signal.action)
        if qty <= Decimal(str(config.min_order_amount)):
            logger.error(f"Computed {signal.action.value} size too small or invalid: {qty} (min {config.min_order_amount})")
            raise QuantityTooSmall(f"Computed {signal.action.value} size too small", qty=str(qty))

        return await app[EXECUTOR_KEY].execute(sizing, signal.action)


async def handle_webhook(request: web_request.Request):
    app = request.app
    config = app[CONFIG_KEY]
    notifier = app[NOTIFIER_KEY]
    signal = None
    try:
        body = await request.read()
        verify_signature(config.webhook_secret, body, request.headers.get(config.webhook_header, ""))

        signal = parse_signal(body, request.content_type, config.default_symbol)

        if app[DUPLICATES_KEY].check_and_record(DuplicateGuard.key_for(body)):
            logger.info("Duplicate webhook ignored")
            return web.json_response({"ok": True, "duplicate": True})

        try:
            result = await asyncio.wait_for(process_signal(app, signal), timeout=config.request_timeout)
        except asyncio.TimeoutError:
            raise RequestTimedOut(f"Signal processing exceeded {config.request_timeout}s")

        await notifier.notify(f"✅ {result.side.upper()} {result.symbol}: {result.amount} (order {result.order_id})")
        return web.json_response({
            "status": "ok",
            "action": result.side,
            "symbol": result.symbol,
            "amount": str(result.amount),
            "order": result.order,
            "warnings": result.warnings,
        })

    except RelayError as e:
        if e.status >= 500:
            logger.error(f"Webhook failed: {e.code}: {e.message} {e.detail or ''}")
            if signal is not None:
                await notifier.notify(f"❌ {signal.action.value.upper()} {signal.symbol}: {e.message} {e.detail or ''}")
        else:
            logger.warning(f"Webhook rejected: {e.code}: {e.message}")
        return web.json_response(e.to_response(), status=e.status)

    except Exception as e:
        logger.error(f"Webhook handler error: {e}", exc_info=True)
        return web.json_response({"error": "internal_error", "message": "Internal server error"}, status=500)


async def handle_root(request: web_request.Request):
    return web.Response(text=f"{request.app[CONFIG_KEY].exchange_id} Bot LIVE")


async def handle_health(request: web_request.Request):
    return web.json_response({
        "status": "healthy",
        "service": SERVICE_NAME,
        "markets_ready": request.app[MARKETS_KEY].ready,
    })


async def handle_markets(request: web_request.Request):
    markets = request.app[MARKETS_KEY]
    ready = await markets.ensure_ready()
    listing = markets.listing()
    return web.json_response({"ready": ready, "count": len(listing), "markets": listing})


async def handle_balance(request: web_request.Request):
    try:
        balances = await request.app[CLIENT_KEY].fetch_balance()
        return web.json_response({"balances": balances})
    except ExchangeCallFailed as e:
        logger.error(f"Balance request error: {e.detail or e.message}")
        return web.json_response(e.to_response(), status=e.status)


async def _load_markets_on_startup(markets: MarketCache):
    try:
        await markets.ensure_ready()
    except Exception as e:
        logger.error(f"Startup market load error: {e}", exc_info=True)


async def init_app(app: web.Application):
    """
    Жизненный цикл приложения: загрузка рынков в фоне и планировщик обновления при старте,
    остановка планировщика и закрытие сессии ccxt при завершении.
    """
    startup_task = asyncio.create_task(_load_markets_on_startup(app[MARKETS_KEY]))

    scheduler = app.get(SCHEDULER_KEY)
    if scheduler is not None:
        scheduler.start()
        logger.info(f"Markets refresh scheduled every {app[CONFIG_KEY].markets_refresh_minutes} min")

    yield

    if scheduler is not None and scheduler.running:
        scheduler.shutdown(wait=False)
    if not startup_task.done():
        startup_task.cancel()
        try:
            await startup_task
        except asyncio.CancelledError:
            pass
    await app[CLIENT_KEY].close()


def create_app(
    config: Optional[Config] = None,
    client: Optional[ExchangeClient] = None,
    notifier: Optional[TelegramNotifier] = None,
) -> web.Application:
    config = config or Config.from_env()
    client = client or ExchangeClient(config)
    markets = MarketCache(
        client,
        retries=config.markets_load_retries,
        retry_delay=config.markets_retry_delay,
        preferred_type=config.exchange_type,
    )
    locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    app = web.Application()
    app[CONFIG_KEY] = config
    app[CLIENT_KEY] = client
    app[MARKETS_KEY] = markets
    app[SIZER_KEY] = PositionSizer(client, markets, config)
    app[EXECUTOR_KEY] = OrderExecutor(client, config)
    app[DUPLICATES_KEY] = DuplicateGuard()
    app[NOTIFIER_KEY] = notifier or TelegramNotifier(config.bot_token, config.chat_id)
    app[LOCKS_KEY] = locks

    if config.markets_refresh_minutes > 0:
        scheduler = AsyncIOScheduler()
        scheduler.add_job(
            markets.refresh,
            IntervalTrigger(minutes=config.markets_refresh_minutes),
            id="markets_refresh",
            replace_existing=True,
        )
        app[SCHEDULER_KEY] = scheduler

    app.router.add_get("/", handle_root)
    app.router.add_get("/health", handle_health)
    app.router.add_get("/markets", handle_markets)
    app.router.add_get("/balance", handle_balance)
    app.router.add_post("/webhook", handle_webhook)

    app.cleanup_ctx.append(init_app)
    return app


def main():
    config = Config.from_env()
    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    if not config.has_credentials:
        logger.warning("EXCHANGE_KEY / EXCHANGE_SECRET not set, trading will fail until set")

    try:
        app = create_app(config)
    except ValueError as e:
        logger.error(f"Failed to init exchange: {e}")
        sys.exit(1)

    logger.info(f"Starting webhook server on {config.host}:{config.port} ({config.exchange_id} {config.exchange_type})")
    web.run_app(app, host=config.host, port=config.port)


if __name__ == "__main__":
    main()
