# app/config.py
import os
from typing import Literal, Mapping, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

load_dotenv()

# поле конфига -> переменная окружения
_ENV_VARS = {
    "exchange_id": "EXCHANGE_ID",
    "exchange_type": "EXCHANGE_TYPE",
    "api_key": "EXCHANGE_KEY",
    "api_secret": "EXCHANGE_SECRET",
    "api_password": "EXCHANGE_PASSPHRASE",
    "safety_buffer": "SAFETY_BUFFER",
    "min_order_amount": "MIN_ORDER_AMOUNT",
    "default_symbol": "DEFAULT_SYMBOL",
    "sandbox": "SANDBOX",
    "use_leverage_for_swaps": "USE_LEVERAGE_FOR_SWAPS",
    "leverage": "LEVERAGE",
    "webhook_secret": "WEBHOOK_SECRET",
    "webhook_header": "WEBHOOK_HEADER",
    "host": "WEBHOOK_HOST",
    "port": "PORT",
    "sell_sizing": "SELL_SIZING",
    "markets_load_retries": "MARKETS_LOAD_RETRIES",
    "markets_retry_delay": "MARKETS_RETRY_DELAY",
    "markets_refresh_minutes": "MARKETS_REFRESH_MINUTES",
    "request_timeout": "REQUEST_TIMEOUT",
    "bot_token": "BOT_TOKEN",
    "chat_id": "TG_CHAT_ID",
    "log_level": "LOG_LEVEL",
}


class Config(BaseModel):
    exchange_id: str = "bitget"
    exchange_type: Literal["spot", "swap"] = "swap"
    api_key: str = ""
    api_secret: str = ""
    api_password: str = ""

    # 1.0 = 100% свободного баланса уходит в ордер
    safety_buffer: float = Field(default=1.0, gt=0, le=1)
    min_order_amount: float = Field(default=0.00000001, ge=0)
    default_symbol: str = "BTC/USDT:USDT"
    sandbox: bool = False

    use_leverage_for_swaps: bool = False
    leverage: float = 1.0

    webhook_secret: str = ""
    webhook_header: str = "x-webhook-signature"
    host: str = "0.0.0.0"
    port: int = Field(default=3000, ge=1, le=65535)

    # объём продажи: по свободному балансу базовой валюты или по открытой long-позиции
    sell_sizing: Literal["balance", "position"] = "balance"

    markets_load_retries: int = Field(default=3, ge=0)
    markets_retry_delay: float = Field(default=2.0, ge=0)
    markets_refresh_minutes: int = Field(default=0, ge=0)
    request_timeout: float = Field(default=30.0, gt=0)

    bot_token: Optional[str] = None
    chat_id: Optional[str] = None
    log_level: str = "INFO"

    @field_validator("exchange_type", "sell_sizing", mode="before")
    @classmethod
    def _lower(cls, value):
        return value.strip().lower() if isinstance(value, str) else value

    @field_validator("leverage")
    @classmethod
    def _leverage_positive(cls, value: float) -> float:
        return value if value > 0 else 1.0

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        return value.strip().upper()

    @property
    def has_credentials(self) -> bool:
        return bool(self.api_key and self.api_secret)

    @property
    def telegram_enabled(self) -> bool:
        return bool(self.bot_token and self.chat_id)

    @property
    def leverage_active(self) -> bool:
        return self.exchange_type == "swap" and self.use_leverage_for_swaps and self.leverage > 1

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Config":
        """Собирает конфиг из переменных окружения; пустые значения игнорируются."""
        environ = os.environ if environ is None else environ
        data = {}
        for field_name, var in _ENV_VARS.items():
            value = environ.get(var)
            if value is None or value.strip() == "":
                continue
            data[field_name] = value.strip()
        return cls(**data)
