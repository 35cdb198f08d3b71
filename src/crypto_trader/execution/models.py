from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from uuid import uuid4


class OrderSide(str, Enum):
    BUY = "BUY"
    SELL = "SELL"

    @property
    def sign(self) -> int:
        return 1 if self is OrderSide.BUY else -1


class OrderType(str, Enum):
    MARKET = "MARKET"


@dataclass(frozen=True, slots=True)
class Order:
    side: OrderSide
    symbol: str
    quantity: float
    type: OrderType = OrderType.MARKET
    client_order_id: str = field(default_factory=lambda: str(uuid4()))


@dataclass(frozen=True, slots=True)
class Fill:
    order_id: str
    price: float
    quantity: float
    timestamp: datetime
