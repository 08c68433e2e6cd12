# app/trading/signal_parser.py
import json
from typing import Any, Optional

from trading.errors import MalformedSignal
from trading.models import Action, Signal


def normalize_symbol(raw: Any) -> str:
    """
    Приводит тикер к виду BASE/QUOTE:
    "btcusdt" -> "BTC/USDT", "eth-usdt" -> "ETH/USDT", "sol_usdt" -> "SOL/USDT"
    """
    # upper() до проверки длины: некоторые символы при upper() становятся длиннее ("ß" -> "SS")
    s = "" if raw is None else str(raw).strip().upper()
    if not s:
        raise MalformedSignal("Missing symbol")
    s = s.replace("-", "/").replace("_", "/")
    if "/" not in s and len(s) >= 6:
        s = s[:3] + "/" + s[3:]
    return s


def _parse_action(raw: Any) -> Action:
    action = str(raw or "").strip().lower()
    try:
        return Action(action)
    except ValueError:
        raise MalformedSignal("Action must be buy or sell", action=action or None)


def _resolve_symbol(raw: Any, default_symbol: str) -> str:
    if raw is None or not str(raw).strip():
        if not default_symbol or not default_symbol.strip():
            raise MalformedSignal("Missing symbol")
        return normalize_symbol(default_symbol)
    return normalize_symbol(raw)


def parse_signal(body: bytes, content_type: Optional[str], default_symbol: str) -> Signal:
    """
    Разбирает тело вебхука: JSON {"action": "buy", "symbol": "BTCUSDT"}
    или свободный текст "buy BTCUSDT" / "sell".
    """
    try:
        text = body.decode("utf-8").strip()
    except UnicodeDecodeError:
        raise MalformedSignal("Payload is not valid UTF-8")
    if not text:
        raise MalformedSignal("Empty payload")

    try:
        payload = json.loads(text)
    except json.JSONDecodeError:
        if (content_type or "").lower().startswith("application/json"):
            raise MalformedSignal("Invalid JSON")
        payload = None

    if payload is None:
        # свободный текст: первое слово - действие, второе (необязательно) - символ
        parts = text.split()
        action = _parse_action(parts[0])
        symbol = _resolve_symbol(parts[1] if len(parts) > 1 else None, default_symbol)
        return Signal(action=action, symbol=symbol)

    if not isinstance(payload, dict):
        raise MalformedSignal("Payload must be a JSON object or 'buy|sell SYMBOL' text")

    action = _parse_action(payload.get("action"))
    symbol = _resolve_symbol(payload.get("symbol"), default_symbol)
    return Signal(action=action, symbol=symbol)
