import asyncio
import logging
import os
from dataclasses import replace
from datetime import timedelta

import pytest

from conftest import T0, SlowFillExchange, make_recommendation
from crypto_trader.ai.models import AdvisorAction, RecommendationSource
from crypto_trader.config.models import ExchangeConfig
from crypto_trader.data.models import IndicatorSet
from crypto_trader.errors import ExchangeRejected, RejectionKind
from crypto_trader.execution.exchange_base import Exchange
from crypto_trader.execution.limiter import TradeLimiter
from crypto_trader.execution.models import Order, OrderSide
from crypto_trader.execution.simulation import SimulatedExchange
from crypto_trader.portfolio.ledger import PortfolioLedger
from crypto_trader.portfolio.models import Position
from crypto_trader.strategy.decision import DecisionEngine, decide
from crypto_trader.strategy.models import DecisionInputs, DecisionReason, DecisionState

NEUTRAL = IndicatorSet(sma_short=100.0, sma_long=100.0, rsi=50.0)
OPEN_POSITION = Position(symbol="BTCUSDT", side=OrderSide.BUY, entry_price=100.0, quantity=5.0, opened_at=T0)


def _inputs(**overrides) -> DecisionInputs:
    values = dict(
        price=100.0,
        indicators=NEUTRAL,
        recommendation=make_recommendation(),
        can_trade=True,
        position=None,
        available_quote=10_000.0,
        position_fraction=0.10,
        oversold=30.0,
    )
    values.update(overrides)
    return DecisionInputs(**values)


class RejectingExchange(Exchange):
    def __init__(self):
        self.orders = []

    async def place_order(self, order):
        self.orders.append(order)
        raise ExchangeRejected(RejectionKind.RATE_LIMIT, "slow down")

    async def get_balances(self):
        return {}


class TestDecide:
    def test_advisor_buy_sizes_by_fraction(self):
        decision = decide(DecisionState.IDLE, _inputs(recommendation=make_recommendation(AdvisorAction.BUY)))
        assert decision.action == "BUY"
        assert decision.reason is DecisionReason.ADVISOR_BUY
        assert decision.quantity == pytest.approx(10.0)

    def test_buy_is_sized_at_worst_expected_fill(self):
        rec = make_recommendation(AdvisorAction.BUY)
        decision = decide(DecisionState.IDLE, _inputs(recommendation=rec, position_fraction=1.0, slippage_bps=5))
        assert decision.quantity == pytest.approx(10_000.0 / 100.05)
        assert decision.quantity * 100.05 <= 10_000.0

    def test_rsi_oversold_buys(self):
        decision = decide(DecisionState.IDLE, _inputs(indicators=IndicatorSet(100.0, 100.0, 25.0)))
        assert (decision.action, decision.reason) == ("BUY", DecisionReason.RSI_OVERSOLD)

    def test_sma_cross_buys(self):
        crossing = IndicatorSet(101.0, 100.0, 50.0, prev_sma_short=99.0, prev_sma_long=100.0)
        decision = decide(DecisionState.IDLE, _inputs(indicators=crossing))
        assert (decision.action, decision.reason) == ("BUY", DecisionReason.SMA_CROSS_UP)

    def test_no_signal_holds(self):
        assert decide(DecisionState.IDLE, _inputs()).action == "HOLD"

    def test_ai_sell_vetoes_indicator_buy(self):
        rec = make_recommendation(AdvisorAction.STRONG_SELL, source=RecommendationSource.AI)
        decision = decide(DecisionState.IDLE, _inputs(indicators=IndicatorSet(100.0, 100.0, 25.0), recommendation=rec))
        assert (decision.action, decision.reason) == ("HOLD", DecisionReason.ADVISOR_VETO)

    def test_fallback_sell_does_not_veto(self):
        rec = make_recommendation(AdvisorAction.SELL, source=RecommendationSource.FALLBACK)
        decision = decide(DecisionState.IDLE, _inputs(indicators=IndicatorSet(100.0, 100.0, 25.0), recommendation=rec))
        assert decision.action == "BUY"

    def test_daily_limit_beats_any_signal(self):
        decision = decide(
            DecisionState.IDLE,
            _inputs(recommendation=make_recommendation(AdvisorAction.STRONG_BUY), can_trade=False),
        )
        assert (decision.action, decision.reason) == ("HOLD", DecisionReason.DAILY_LIMIT)

    def test_stop_loss_wins_over_take_profit(self):
        rec = make_recommendation(stop_loss=105.0, take_profit=95.0)
        decision = decide(DecisionState.POSITION_OPEN, _inputs(position=OPEN_POSITION, recommendation=rec))
        assert (decision.action, decision.reason) == ("SELL", DecisionReason.STOP_LOSS)
        assert decision.quantity == 5.0

    def test_take_profit(self):
        rec = make_recommendation(stop_loss=90.0, take_profit=120.0)
        decision = decide(DecisionState.POSITION_OPEN, _inputs(price=121.0, position=OPEN_POSITION, recommendation=rec))
        assert decision.reason is DecisionReason.TAKE_PROFIT

    def test_advisor_sell_exits(self):
        rec = make_recommendation(AdvisorAction.SELL)
        decision = decide(DecisionState.POSITION_OPEN, _inputs(position=OPEN_POSITION, recommendation=rec))
        assert decision.reason is DecisionReason.ADVISOR_SELL

    def test_open_position_never_averages(self):
        rec = make_recommendation(AdvisorAction.STRONG_BUY)
        decision = decide(DecisionState.POSITION_OPEN, _inputs(position=OPEN_POSITION, recommendation=rec))
        assert decision.action == "HOLD"

    def test_no_quote_balance(self):
        rec = make_recommendation(AdvisorAction.BUY)
        decision = decide(DecisionState.IDLE, _inputs(recommendation=rec, available_quote=0.0))
        assert decision.reason is DecisionReason.INSUFFICIENT_BALANCE


@pytest.fixture
def limiter(tmp_path):
    return TradeLimiter(tmp_path / "state.json", max_trades_per_day=2, now=T0)


@pytest.fixture
def ledger(balances):
    return PortfolioLedger("BTCUSDT", "BTC", "USDT", balances)


@pytest.fixture
def exchange():
    venue = SimulatedExchange(ExchangeConfig(), base_asset="BTC", quote_asset="USDT")
    venue.update_mark("BTCUSDT", 100.0)
    return venue


def _live_inputs(engine_ledger, rec, limiter, now, price=100.0):
    return _inputs(
        price=price,
        recommendation=rec,
        can_trade=limiter.can_trade(now),
        position=engine_ledger.position,
        available_quote=engine_ledger.available_quote,
    )


class TestDecisionEngine:
    def test_round_trip_updates_state(self, exchange, limiter, ledger):
        engine = DecisionEngine("BTCUSDT", exchange, limiter, ledger)
        buy = make_recommendation(AdvisorAction.BUY)
        outcome = asyncio.run(engine.execute(_live_inputs(ledger, buy, limiter, T0), T0))
        assert outcome.action == "BUY"
        assert engine.state is DecisionState.POSITION_OPEN
        assert ledger.position.quantity == pytest.approx(10.0)
        assert limiter.state.count == 1

        sell = make_recommendation(AdvisorAction.SELL)
        outcome = asyncio.run(engine.execute(_live_inputs(ledger, sell, limiter, T0), T0))
        assert outcome.action == "SELL"
        assert outcome.trade.realized_pnl == pytest.approx(0.0)
        assert engine.state is DecisionState.IDLE
        assert limiter.state.count == 2

    def test_never_a_third_order_per_day(self, exchange, limiter, ledger):
        engine = DecisionEngine("BTCUSDT", exchange, limiter, ledger)
        buy = make_recommendation(AdvisorAction.STRONG_BUY)
        sell = make_recommendation(AdvisorAction.STRONG_SELL)
        actions = []
        for hour, rec in enumerate([buy, sell, buy, sell, buy]):
            now = T0 + timedelta(hours=hour)
            # Stale can_trade in the inputs must not bypass the limiter.
            inputs = _inputs(recommendation=rec, position=ledger.position, available_quote=ledger.available_quote)
            actions.append(asyncio.run(engine.execute(inputs, now)).action)
        assert actions == ["BUY", "SELL", "HOLD", "HOLD", "HOLD"]
        assert limiter.state.count == 2

        tomorrow = T0 + timedelta(days=1)
        outcome = asyncio.run(engine.execute(_live_inputs(ledger, buy, limiter, tomorrow), tomorrow))
        assert outcome.action == "BUY"

    def test_rejection_changes_nothing(self, limiter, ledger, caplog):
        venue = RejectingExchange()
        engine = DecisionEngine("BTCUSDT", venue, limiter, ledger)
        with caplog.at_level(logging.WARNING):
            outcome = asyncio.run(
                engine.execute(_live_inputs(ledger, make_recommendation(AdvisorAction.BUY), limiter, T0), T0)
            )
        assert outcome.action == "REJECTED"
        assert len(venue.orders) == 1
        assert limiter.state.count == 0
        assert ledger.position is None
        assert engine.state is DecisionState.IDLE
        assert "rejected" in caplog.text

    def test_unwritable_state_aborts_before_ordering(self, limiter, ledger, monkeypatch):
        venue = RejectingExchange()
        engine = DecisionEngine("BTCUSDT", venue, limiter, ledger)

        def broken_replace(src, dst):
            raise OSError("read-only filesystem")

        monkeypatch.setattr(os, "replace", broken_replace)
        outcome = asyncio.run(
            engine.execute(_live_inputs(ledger, make_recommendation(AdvisorAction.BUY), limiter, T0), T0)
        )
        assert outcome.action == "ABORTED"
        assert venue.orders == []
        assert limiter.state.count == 0

    def test_starts_in_position_open_when_ledger_holds_one(self, exchange, limiter, ledger):
        ledger.apply_fill(Order(side=OrderSide.BUY, symbol="BTCUSDT", quantity=1.0), 100.0, 1.0, T0)
        assert DecisionEngine("BTCUSDT", exchange, limiter, ledger).state is DecisionState.POSITION_OPEN

    def test_full_allocation_fits_after_slippage(self, limiter, ledger):
        venue = SimulatedExchange(ExchangeConfig(slippage_bps=5), base_asset="BTC", quote_asset="USDT")
        venue.update_mark("BTCUSDT", 100.0)
        engine = DecisionEngine("BTCUSDT", venue, limiter, ledger)
        rec = make_recommendation(AdvisorAction.STRONG_BUY)
        inputs = replace(_live_inputs(ledger, rec, limiter, T0), position_fraction=1.0, slippage_bps=5)
        outcome = asyncio.run(engine.execute(inputs, T0))
        assert outcome.action == "BUY"
        assert outcome.fill.price == pytest.approx(100.05)
        assert outcome.fill.price * outcome.fill.quantity <= 10_000.0
        assert ledger.position is not None


class TestUnsettledOrders:
    def test_abandoned_cycles_never_exceed_the_cap(self, exchange, limiter, ledger):
        venue = SlowFillExchange(exchange, delay=0.5)
        engine = DecisionEngine("BTCUSDT", venue, limiter, ledger)
        buy = make_recommendation(AdvisorAction.STRONG_BUY)
        sell = make_recommendation(AdvisorAction.STRONG_SELL)

        async def scenario():
            outcomes = []
            for _ in range(4):
                rec = sell if ledger.position else buy
                try:
                    outcome = await asyncio.wait_for(
                        engine.execute(_live_inputs(ledger, rec, limiter, T0), T0), timeout=0.1
                    )
                except asyncio.TimeoutError:
                    outcome = None
                outcomes.append(outcome)
                await engine.drain()
            return outcomes

        outcomes = asyncio.run(scenario())
        assert outcomes[:2] == [None, None]
        assert [outcome.action for outcome in outcomes[2:]] == ["HOLD", "HOLD"]
        assert len(venue.orders) == 2
        assert limiter.state.count == 2
        assert ledger.position is None
        assert engine.state is DecisionState.IDLE

    def test_holds_while_an_order_is_settling(self, exchange, limiter, ledger):
        venue = SlowFillExchange(exchange, delay=0.5)
        engine = DecisionEngine("BTCUSDT", venue, limiter, ledger)
        buy = make_recommendation(AdvisorAction.BUY)

        async def scenario():
            with pytest.raises(asyncio.TimeoutError):
                await asyncio.wait_for(engine.execute(_live_inputs(ledger, buy, limiter, T0), T0), timeout=0.1)
            assert engine.order_in_flight
            held = await engine.execute(_live_inputs(ledger, buy, limiter, T0), T0)
            await engine.drain()
            return held

        held = asyncio.run(scenario())
        assert held.action == "HOLD"
        assert held.decision.reason is DecisionReason.ORDER_IN_FLIGHT
        assert len(venue.orders) == 1
        assert limiter.state.count == 1
        assert engine.state is DecisionState.POSITION_OPEN
        assert not engine.order_in_flight
