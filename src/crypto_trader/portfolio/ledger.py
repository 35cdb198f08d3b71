"""In-memory portfolio ledger: balances, the open position and realized P&L."""

from __future__ import annotations

import logging
import math
from dataclasses import replace
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional

from crypto_trader.config.models import Config
from crypto_trader.errors import LedgerError
from crypto_trader.execution.models import Order, OrderSide
from crypto_trader.portfolio.models import BalanceDrift, PortfolioState, Position, TradeRecord

logger = logging.getLogger(__name__)


class PortfolioLedger:
    """Single-writer ledger reconciled against, never replaced by, exchange balances."""

    def __init__(
        self,
        symbol: str,
        base_asset: str,
        quote_asset: str,
        balances: Mapping[str, float] | None = None,
        abs_tolerance: float = 1e-8,
        rel_tolerance: float = 1e-3,
    ) -> None:
        self._symbol = symbol
        self._base = base_asset
        self._quote = quote_asset
        self._abs_tol = abs_tolerance
        self._rel_tol = rel_tolerance
        self._balances: Dict[str, float] = {asset: float(amount) for asset, amount in (balances or {}).items()}
        if any(amount < 0 for amount in self._balances.values()):
            raise LedgerError("Initial balances must not be negative")
        self._balances.setdefault(base_asset, 0.0)
        self._balances.setdefault(quote_asset, 0.0)
        self._position: Optional[Position] = None
        self._realized_pnl = 0.0
        self._history: List[TradeRecord] = []
        self._drifts: tuple[BalanceDrift, ...] = ()

    @classmethod
    def from_config(cls, config: Config, balances: Mapping[str, float] | None = None) -> "PortfolioLedger":
        return cls(
            symbol=config.data.symbol,
            base_asset=config.base_asset,
            quote_asset=config.data.quote_asset,
            balances=balances,
            abs_tolerance=config.risk.reconcile_abs_tolerance,
            rel_tolerance=config.risk.reconcile_rel_tolerance,
        )

    @property
    def position(self) -> Optional[Position]:
        return self._position

    @property
    def realized_pnl(self) -> float:
        return self._realized_pnl

    def balance(self, asset: str) -> float:
        return self._balances.get(asset, 0.0)

    @property
    def available_quote(self) -> float:
        return self.balance(self._quote)

    def apply_fill(
        self,
        order: Order,
        fill_price: float,
        fill_qty: float,
        timestamp: datetime | None = None,
    ) -> TradeRecord:
        if fill_price <= 0 or fill_qty <= 0:
            raise LedgerError(f"Invalid fill {fill_qty} @ {fill_price}")
        timestamp = timestamp or datetime.now(tz=timezone.utc)
        if self._position is None:
            record = self._open(order, fill_price, fill_qty, timestamp)
        else:
            record = self._close(order, fill_price, fill_qty, timestamp)
        self._history.append(record)
        return record

    def _open(self, order: Order, price: float, qty: float, timestamp: datetime) -> TradeRecord:
        if order.side is not OrderSide.BUY:
            raise LedgerError("No open position to sell; short positions are not supported")
        notional = price * qty
        new_quote = self._debit(self._quote, notional)
        self._balances[self._quote] = new_quote
        self._balances[self._base] = self.balance(self._base) + qty
        self._position = Position(
            symbol=self._symbol,
            side=order.side,
            entry_price=price,
            quantity=qty,
            opened_at=timestamp,
        )
        logger.info("Opened %s %.8f %s @ %.2f", order.side.value, qty, self._symbol, price)
        return TradeRecord(timestamp=timestamp, side=order.side, price=price, quantity=qty)

    def _close(self, order: Order, price: float, qty: float, timestamp: datetime) -> TradeRecord:
        position = self._position
        assert position is not None
        if order.side is position.side:
            raise LedgerError("A position is already open; averaging in is not allowed")
        if qty > position.quantity + self._abs_tol:
            raise LedgerError(f"Fill quantity {qty} exceeds open position {position.quantity}")

        new_base = self._debit(self._base, qty)
        self._balances[self._base] = new_base
        self._balances[self._quote] = self.balance(self._quote) + price * qty

        pnl = (price - position.entry_price) * qty * position.side.sign
        self._realized_pnl += pnl
        remaining = position.quantity - qty
        self._position = replace(position, quantity=remaining) if remaining > self._abs_tol else None
        logger.info(
            "Closed %.8f %s @ %.2f (entry %.2f) realized P&L %.2f",
            qty,
            self._symbol,
            price,
            position.entry_price,
            pnl,
        )
        return TradeRecord(timestamp=timestamp, side=order.side, price=price, quantity=qty, realized_pnl=pnl)

    def _debit(self, asset: str, amount: float) -> float:
        remaining = self.balance(asset) - amount
        if remaining < -self._abs_tol:
            raise LedgerError(f"{asset} balance would go negative ({remaining:.8f})")
        return max(remaining, 0.0)

    def reconcile(self, exchange_balances: Mapping[str, float]) -> list[BalanceDrift]:
        drifts: list[BalanceDrift] = []
        for asset in sorted(set(self._balances) | set(exchange_balances)):
            ledger_amount = self.balance(asset)
            exchange_amount = float(exchange_balances.get(asset, 0.0))
            if math.isclose(ledger_amount, exchange_amount, rel_tol=self._rel_tol, abs_tol=self._abs_tol):
                continue
            drift = BalanceDrift(asset=asset, ledger_amount=ledger_amount, exchange_amount=exchange_amount)
            logger.warning(
                "Reconciliation drift on %s: ledger=%.8f exchange=%.8f delta=%.8f",
                asset,
                ledger_amount,
                exchange_amount,
                drift.delta,
            )
            drifts.append(drift)
        self._drifts = tuple(drifts)
        return drifts

    def unrealized_pnl(self, mark_price: float) -> float:
        return self._position.unrealized_pnl(mark_price) if self._position else 0.0

    def total_value(self, mark_price: float) -> float:
        return self.balance(self._quote) + self.balance(self._base) * mark_price

    def snapshot(self) -> PortfolioState:
        return PortfolioState(
            symbol=self._symbol,
            balances=MappingProxyType(dict(self._balances)),
            position=self._position,
            realized_pnl=self._realized_pnl,
            trade_history=tuple(self._history),
            drifts=self._drifts,
        )
