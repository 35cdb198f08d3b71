from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Sequence

import pytest

from crypto_trader.ai.models import AdvisorAction, AdvisorRecommendation, RecommendationSource
from crypto_trader.data.models import Candle, IndicatorSet, MarketSnapshot, PivotLevels
from crypto_trader.data.provider_base import MarketDataSource, TimeProvider
from crypto_trader.execution.exchange_base import Exchange
from crypto_trader.execution.models import Fill, Order

T0 = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


def make_candles(
    closes: Sequence[float], start: datetime = T0, interval: timedelta = timedelta(hours=1)
) -> List[Candle]:
    return [
        Candle(
            timestamp=start + i * interval,
            open=close,
            high=close + 1.0,
            low=close - 1.0,
            close=close,
        )
        for i, close in enumerate(closes)
    ]


def make_snapshot(closes: Sequence[float], symbol: str = "BTCUSDT") -> MarketSnapshot:
    candles = make_candles(closes, start=T0 - timedelta(hours=len(closes)))
    return MarketSnapshot(
        symbol=symbol,
        current_price=closes[-1],
        as_of=T0,
        window_12h=candles[-12:],
        window_24h=candles[-24:],
        window_48h=candles[-48:],
    )


def make_recommendation(
    action: AdvisorAction = AdvisorAction.HOLD,
    source: RecommendationSource = RecommendationSource.FALLBACK,
    stop_loss: float = 90.0,
    take_profit: float = 120.0,
) -> AdvisorRecommendation:
    return AdvisorRecommendation(
        action=action,
        confidence=50.0,
        stop_loss=stop_loss,
        take_profit=take_profit,
        buy_target=95.0,
        sell_target=110.0,
        reasoning="test",
        source=source,
        generated_at=T0,
    )


class FixedClock(TimeProvider):
    def __init__(self, now: datetime = T0) -> None:
        self.current = now

    def now(self) -> datetime:
        return self.current


class StaticMarketData(MarketDataSource):
    def __init__(self, snapshot: MarketSnapshot, delay: float = 0.0) -> None:
        self.snapshot = snapshot
        self.delay = delay
        self.calls = 0

    async def fetch_snapshot(self, symbol: str) -> MarketSnapshot:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        return self.snapshot


class SlowFillExchange(Exchange):
    """Executes on arrival but confirms the fill only after ``delay``."""

    def __init__(self, venue: Exchange, delay: float) -> None:
        self.venue = venue
        self.delay = delay
        self.orders: List[Order] = []

    async def place_order(self, order: Order) -> Fill:
        fill = await self.venue.place_order(order)
        self.orders.append(order)
        await asyncio.sleep(self.delay)
        return fill

    async def get_balances(self) -> Dict[str, float]:
        return await self.venue.get_balances()

    def update_mark(self, symbol: str, price: float) -> None:
        self.venue.update_mark(symbol, price)


@pytest.fixture
def neutral_indicators() -> IndicatorSet:
    return IndicatorSet(sma_short=100.0, sma_long=100.0, rsi=50.0, prev_sma_short=100.0, prev_sma_long=100.0)


@pytest.fixture
def pivots() -> PivotLevels:
    return PivotLevels(pp=100.0, r1=110.0, r2=120.0, s1=90.0, s2=80.0)


@pytest.fixture
def balances() -> Dict[str, float]:
    return {"USDT": 10_000.0, "BTC": 0.0}
