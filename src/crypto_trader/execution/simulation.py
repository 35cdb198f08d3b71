"""Paper-trading exchange that fills market orders at the last mark price."""

from __future__ import annotations

import logging
import math
from datetime import datetime, timezone
from typing import Dict, Optional

from crypto_trader.config.models import ExchangeConfig
from crypto_trader.data.provider_base import TimeProvider
from crypto_trader.errors import ExchangeRejected, RejectionKind
from crypto_trader.execution.exchange_base import Exchange
from crypto_trader.execution.models import Fill, Order, OrderSide, OrderType

logger = logging.getLogger(__name__)

# float rounding on price * quantity
_DUST_REL_TOL = 1e-9


class SimulatedExchange(Exchange):
    def __init__(
        self,
        config: ExchangeConfig,
        base_asset: str,
        quote_asset: str,
        time_provider: Optional[TimeProvider] = None,
    ) -> None:
        self._cfg = config
        self._base = base_asset
        self._quote = quote_asset
        self._time = time_provider
        self._balances: Dict[str, float] = {quote_asset: config.initial_balance, base_asset: 0.0}
        self._marks: Dict[str, float] = {}

    def update_mark(self, symbol: str, price: float) -> None:
        if price <= 0:
            raise ValueError(f"Mark price must be positive, got {price}")
        self._marks[symbol] = price

    async def get_balances(self) -> Dict[str, float]:
        return dict(self._balances)

    async def place_order(self, order: Order) -> Fill:
        if order.type is not OrderType.MARKET:
            raise ExchangeRejected(RejectionKind.INVALID_ORDER, f"Unsupported order type {order.type}")
        if order.quantity <= 0:
            raise ExchangeRejected(RejectionKind.INVALID_ORDER, f"Quantity must be positive, got {order.quantity}")
        mark = self._marks.get(order.symbol)
        if mark is None:
            raise ExchangeRejected(RejectionKind.CONNECTIVITY, f"No price available for {order.symbol}")

        price = self._apply_slippage(order.side, mark)
        notional = price * order.quantity
        if order.side is OrderSide.BUY:
            available = self._balances.get(self._quote, 0.0)
            if notional > available and not math.isclose(notional, available, rel_tol=_DUST_REL_TOL):
                raise ExchangeRejected(
                    RejectionKind.INSUFFICIENT_BALANCE,
                    f"Need {notional:.2f} {self._quote}, have {available:.2f}",
                )
            self._balances[self._quote] = max(available - notional, 0.0)
            self._balances[self._base] = self._balances.get(self._base, 0.0) + order.quantity
        else:
            if order.quantity > self._balances.get(self._base, 0.0):
                raise ExchangeRejected(
                    RejectionKind.INSUFFICIENT_BALANCE,
                    f"Need {order.quantity:.8f} {self._base}, have {self._balances.get(self._base, 0.0):.8f}",
                )
            self._balances[self._base] -= order.quantity
            self._balances[self._quote] = self._balances.get(self._quote, 0.0) + notional

        logger.info(
            "[SIM] %s %.8f %s @ %.2f (%s)",
            order.side.value,
            order.quantity,
            order.symbol,
            price,
            order.client_order_id,
        )
        return Fill(
            order_id=order.client_order_id,
            price=price,
            quantity=order.quantity,
            timestamp=self._time.now() if self._time else datetime.now(tz=timezone.utc),
        )

    def _apply_slippage(self, side: OrderSide, price: float) -> float:
        return price * (1 + side.sign * self._cfg.slippage_bps / 10_000)
