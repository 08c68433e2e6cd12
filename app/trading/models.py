from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Generic, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict

T = TypeVar("T")


class Action(str, Enum):
    BUY = "buy"
    SELL = "sell"


class Signal(BaseModel):
    model_config = ConfigDict(frozen=True)

    action: Action
    symbol: str


@dataclass
class BestEffort(Generic[T]):
    """Результат необязательного шага: значение плюс предупреждение вместо исключения."""
    value: T
    warning: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.warning is None


@dataclass
class MarketInfo:
    key: str
    id: Optional[str]
    base: Optional[str]
    quote: Optional[str]
    type: Optional[str]
    precision: Dict[str, Any] = field(default_factory=dict)
    limits: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_ccxt(cls, key: str, market: Dict[str, Any]) -> "MarketInfo":
        return cls(
            key=key,
            id=market.get("id"),
            base=market.get("base"),
            quote=market.get("quote"),
            type=market.get("type"),
            precision=market.get("precision") or {},
            limits=market.get("limits") or {},
        )

    @property
    def min_amount(self) -> Optional[Decimal]:
        amount_limits = self.limits.get("amount") or {}
        minimum = amount_limits.get("min")
        if not minimum:
            return None
        return Decimal(str(minimum))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "id": self.id,
            "base": self.base,
            "quote": self.quote,
            "type": self.type,
            "precision": self.precision,
            "limits": self.limits,
        }


@dataclass
class SizingResult:
    symbol: str
    base: str
    quote: str
    price: Decimal
    buy_amount: Decimal
    sell_amount: Decimal
    free_quote: Decimal
    free_base: Decimal
    raw_buy_amount: Decimal
    raw_sell_amount: Decimal
    market: Optional[MarketInfo] = None
    sell_source: str = "balance"
    warnings: List[str] = field(default_factory=list)

    @property
    def reduce_only(self) -> bool:
        return self.sell_source == "position"

    def amount_for(self, action: Action) -> Decimal:
        return self.buy_amount if action == Action.BUY else self.sell_amount

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "base": self.base,
            "quote": self.quote,
            "price": str(self.price),
            "buy_amount": str(self.buy_amount),
            "sell_amount": str(self.sell_amount),
            "free_quote": str(self.free_quote),
            "free_base": str(self.free_base),
            "raw_buy_amount": str(self.raw_buy_amount),
            "raw_sell_amount": str(self.raw_sell_amount),
            "sell_source": self.sell_source,
        }
