# app/trading/errors.py
from typing import Any, Dict, Optional


class RelayError(Exception):
    """Базовая ошибка релея: несёт HTTP-статус и код для ответа вебхука."""

    status = 500
    code = "internal_error"

    def __init__(self, message: str, detail: Optional[str] = None, **extra: Any):
        super().__init__(message)
        self.message = message
        self.detail = detail
        self.extra = extra

    def to_response(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.code, "message": self.message}
        if self.detail:
            body["detail"] = self.detail
        body.update(self.extra)
        return body


class MalformedSignal(RelayError):
    status = 400
    code = "malformed_signal"


class Unauthorized(RelayError):
    status = 401
    code = "invalid_signature"

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        if code:
            self.code = code


class PriceUnavailable(RelayError):
    status = 400
    code = "price_unavailable"


class QuantityTooSmall(RelayError):
    status = 400
    code = "quantity_too_small"


class MarketTypeMismatch(RelayError):
    status = 400
    code = "market_type_mismatch"


class CredentialsMissing(RelayError):
    status = 500
    code = "credentials_missing"


class ExchangeCallFailed(RelayError):
    status = 500
    code = "exchange_error"


class OrderFailed(RelayError):
    status = 500
    code = "order_failed"


class MarketLoadFailed(RelayError):
    status = 503
    code = "markets_not_ready"


class RequestTimedOut(RelayError):
    status = 504
    code = "timeout"
