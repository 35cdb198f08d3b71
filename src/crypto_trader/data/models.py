from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Sequence


@dataclass(frozen=True, slots=True)
class Candle:
    timestamp: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0


@dataclass(frozen=True, slots=True)
class MarketSnapshot:
    symbol: str
    current_price: float
    as_of: datetime
    window_12h: Sequence[Candle]
    window_24h: Sequence[Candle]
    window_48h: Sequence[Candle]
    candle_interval: timedelta = timedelta(hours=1)
    price_change_24h_pct: float = 0.0

    def window(self, label: str) -> Sequence[Candle]:
        return {
            "12h": self.window_12h,
            "24h": self.window_24h,
            "48h": self.window_48h,
        }[label]

    def high(self, label: str) -> float | None:
        candles = self.window(label)
        return max(c.high for c in candles) if candles else None

    def low(self, label: str) -> float | None:
        candles = self.window(label)
        return min(c.low for c in candles) if candles else None


@dataclass(frozen=True, slots=True)
class PivotLevels:
    pp: float
    r1: float
    r2: float
    s1: float
    s2: float


@dataclass(frozen=True, slots=True)
class IndicatorSet:
    sma_short: float
    sma_long: float
    rsi: float
    prev_sma_short: float | None = None
    prev_sma_long: float | None = None

    @property
    def trend(self) -> str:
        if self.sma_short > self.sma_long:
            return "bullish"
        if self.sma_short < self.sma_long:
            return "bearish"
        return "flat"

    @property
    def crossed_up(self) -> bool:
        if self.prev_sma_short is None or self.prev_sma_long is None:
            return False
        return self.prev_sma_short <= self.prev_sma_long and self.sma_short > self.sma_long

    @property
    def crossed_down(self) -> bool:
        if self.prev_sma_short is None or self.prev_sma_long is None:
            return False
        return self.prev_sma_short >= self.prev_sma_long and self.sma_short < self.sma_long
