from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Mapping, Optional, Tuple

from crypto_trader.execution.models import OrderSide


@dataclass(frozen=True, slots=True)
class Position:
    symbol: str
    side: OrderSide
    entry_price: float
    quantity: float
    opened_at: datetime

    def unrealized_pnl(self, mark_price: float) -> float:
        return (mark_price - self.entry_price) * self.quantity * self.side.sign


@dataclass(frozen=True, slots=True)
class TradeRecord:
    timestamp: datetime
    side: OrderSide
    price: float
    quantity: float
    realized_pnl: Optional[float] = None  # None for opening fills


@dataclass(frozen=True, slots=True)
class BalanceDrift:
    asset: str
    ledger_amount: float
    exchange_amount: float

    @property
    def delta(self) -> float:
        return self.exchange_amount - self.ledger_amount


@dataclass(frozen=True, slots=True)
class PortfolioState:
    symbol: str
    balances: Mapping[str, float]
    position: Optional[Position]
    realized_pnl: float
    trade_history: Tuple[TradeRecord, ...]
    drifts: Tuple[BalanceDrift, ...] = ()

    @property
    def closed_trades(self) -> Tuple[TradeRecord, ...]:
        return tuple(t for t in self.trade_history if t.realized_pnl is not None)

    @property
    def winning_trades(self) -> int:
        return sum(1 for t in self.closed_trades if t.realized_pnl > 0)

    @property
    def losing_trades(self) -> int:
        return sum(1 for t in self.closed_trades if t.realized_pnl <= 0)

    @property
    def win_rate(self) -> float:
        closed = len(self.closed_trades)
        return self.winning_trades / closed * 100 if closed else 0.0

    @property
    def largest_win(self) -> float:
        return max((t.realized_pnl for t in self.closed_trades if t.realized_pnl > 0), default=0.0)

    @property
    def largest_loss(self) -> float:
        return min((t.realized_pnl for t in self.closed_trades if t.realized_pnl < 0), default=0.0)
