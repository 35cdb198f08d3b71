"""Per-cycle BUY/SELL/HOLD decision and its application.

``decide`` is a pure transition over ``DecisionState``; ``DecisionEngine``
owns the state and carries a decision through the limiter, the exchange and
the ledger. Placing an order and booking its fill run as one shielded task,
so a cycle abandoned at its deadline still books what the exchange executed.
"""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import replace
from datetime import datetime
from typing import Optional

from crypto_trader.ai.models import RecommendationSource
from crypto_trader.errors import ExchangeRejected, LedgerError, PersistenceFailure
from crypto_trader.execution.exchange_base import Exchange
from crypto_trader.execution.limiter import TradeLimiter
from crypto_trader.execution.models import Order, OrderSide
from crypto_trader.portfolio.ledger import PortfolioLedger
from crypto_trader.strategy.models import (
    CycleOutcome,
    Decision,
    DecisionInputs,
    DecisionReason,
    DecisionState,
)

logger = logging.getLogger(__name__)

QUANTITY_DECIMALS = 8


def decide(state: DecisionState, inputs: DecisionInputs) -> Decision:
    if not inputs.can_trade:
        return Decision("HOLD", DecisionReason.DAILY_LIMIT, message="Daily trade limit reached")
    if state is DecisionState.POSITION_OPEN:
        return _decide_exit(inputs)
    return _decide_entry(inputs)


def _decide_exit(inputs: DecisionInputs) -> Decision:
    position = inputs.position
    if position is None:
        return Decision("HOLD", DecisionReason.NO_SIGNAL, message="No open position to manage")
    rec = inputs.recommendation
    price = inputs.price
    # Stop-loss is checked first so it wins when both levels are crossed.
    if price <= rec.stop_loss:
        return Decision(
            "SELL",
            DecisionReason.STOP_LOSS,
            position.quantity,
            f"Price {price:.2f} at or below stop-loss {rec.stop_loss:.2f}",
        )
    if price >= rec.take_profit:
        return Decision(
            "SELL",
            DecisionReason.TAKE_PROFIT,
            position.quantity,
            f"Price {price:.2f} at or above take-profit {rec.take_profit:.2f}",
        )
    if rec.action.is_sell:
        return Decision(
            "SELL",
            DecisionReason.ADVISOR_SELL,
            position.quantity,
            f"Advisor says {rec.action.value} ({rec.source.value})",
        )
    return Decision("HOLD", DecisionReason.NO_SIGNAL, message="Holding open position")


def _decide_entry(inputs: DecisionInputs) -> Decision:
    rec = inputs.recommendation
    indicators = inputs.indicators
    if rec.action.is_buy:
        reason = DecisionReason.ADVISOR_BUY
    elif indicators.rsi < inputs.oversold:
        reason = DecisionReason.RSI_OVERSOLD
    elif indicators.crossed_up:
        reason = DecisionReason.SMA_CROSS_UP
    else:
        return Decision("HOLD", DecisionReason.NO_SIGNAL, message="No entry signal")

    if reason is not DecisionReason.ADVISOR_BUY and rec.source is RecommendationSource.AI and rec.action.is_sell:
        return Decision(
            "HOLD",
            DecisionReason.ADVISOR_VETO,
            message=f"{reason.value} ignored, advisor says {rec.action.value}",
        )

    if inputs.price <= 0:
        return Decision("HOLD", DecisionReason.NO_SIGNAL, message="No valid price")
    # Notional at the worst expected fill stays within the quote budget.
    worst_price = inputs.price * (1 + inputs.slippage_bps / 10_000)
    quantity = _round_down(inputs.position_fraction * inputs.available_quote / worst_price)
    if quantity <= 0:
        return Decision("HOLD", DecisionReason.INSUFFICIENT_BALANCE, message="No quote balance to buy with")
    return Decision("BUY", reason, quantity, f"Entry on {reason.value} at {inputs.price:.2f}")


def _round_down(quantity: float, decimals: int = QUANTITY_DECIMALS) -> float:
    scale = 10**decimals
    return math.floor(quantity * scale) / scale


class DecisionEngine:
    def __init__(
        self,
        symbol: str,
        exchange: Exchange,
        limiter: TradeLimiter,
        ledger: PortfolioLedger,
    ) -> None:
        self._symbol = symbol
        self._exchange = exchange
        self._limiter = limiter
        self._ledger = ledger
        self._state = DecisionState.POSITION_OPEN if ledger.position else DecisionState.IDLE
        self._in_flight: Optional[asyncio.Task[CycleOutcome]] = None

    @property
    def state(self) -> DecisionState:
        return self._state

    @property
    def order_in_flight(self) -> bool:
        return self._in_flight is not None and not self._in_flight.done()

    async def execute(self, inputs: DecisionInputs, now: datetime) -> CycleOutcome:
        if self.order_in_flight:
            decision = Decision("HOLD", DecisionReason.ORDER_IN_FLIGHT, message="Previous order still settling")
            logger.warning("Order from an abandoned cycle has not settled yet, holding")
            return CycleOutcome(action="HOLD", message=decision.message, decision=decision)
        if inputs.can_trade and not self._limiter.can_trade(now):
            inputs = replace(inputs, can_trade=False)
        decision = decide(self._state, inputs)
        if decision.action == "HOLD":
            return CycleOutcome(action="HOLD", message=decision.message, decision=decision)

        side = OrderSide.BUY if decision.action == "BUY" else OrderSide.SELL
        try:
            self._limiter.checkpoint()
        except PersistenceFailure as exc:
            logger.error("Order aborted, trade state is not writable: %s", exc)
            return CycleOutcome(action="ABORTED", message=str(exc), decision=decision)

        order = Order(side=side, symbol=self._symbol, quantity=decision.quantity)
        # Once sent, the order is booked even if the caller is cancelled.
        self._in_flight = asyncio.create_task(self._place_and_book(order, decision, now))
        return await asyncio.shield(self._in_flight)

    async def drain(self) -> None:
        """Wait for an order whose cycle was abandoned to finish booking."""
        if self._in_flight is not None and not self._in_flight.done():
            await asyncio.wait({self._in_flight})

    async def _place_and_book(self, order: Order, decision: Decision, now: datetime) -> CycleOutcome:
        try:
            fill = await self._exchange.place_order(order)
        except ExchangeRejected as exc:
            logger.warning("Order %s rejected: %s", order.client_order_id, exc)
            return CycleOutcome(action="REJECTED", message=str(exc), decision=decision)

        trade = None
        try:
            trade = self._ledger.apply_fill(order, fill.price, fill.quantity, fill.timestamp)
        except LedgerError as exc:
            logger.error("Fill %s could not be booked: %s", fill.order_id, exc)
        try:
            self._limiter.record_trade(order.side, now)
        except PersistenceFailure as exc:
            logger.critical("Trade executed but trade state was not persisted: %s", exc)
        self._state = DecisionState.POSITION_OPEN if self._ledger.position else DecisionState.IDLE

        return CycleOutcome(
            action=decision.action,
            message=f"{decision.message} | filled {fill.quantity:.8f} @ {fill.price:.2f}",
            decision=decision,
            fill=fill,
            trade=trade,
        )
