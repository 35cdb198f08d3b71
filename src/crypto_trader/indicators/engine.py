from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Sequence

import pandas as pd

from crypto_trader.config.models import IndicatorConfig
from crypto_trader.data.models import Candle, IndicatorSet, MarketSnapshot, PivotLevels
from crypto_trader.errors import InsufficientData


def compute_sma(candles: Sequence[Candle], period: int) -> float:
    if period < 1:
        raise ValueError("SMA period must be positive")
    if len(candles) < period:
        raise InsufficientData(f"SMA({period})", period, len(candles))
    closes = _closes(candles)
    return float(closes.rolling(period).mean().iloc[-1])


def compute_rsi(candles: Sequence[Candle], period: int = 14) -> float:
    """Wilder RSI over the closes; needs ``period + 1`` candles."""
    if len(candles) < period + 1:
        raise InsufficientData(f"RSI({period})", period + 1, len(candles))
    delta = _closes(candles).diff().dropna()
    avg_gain = _wilder_average(delta.clip(lower=0), period)
    avg_loss = _wilder_average(-delta.clip(upper=0), period)
    if avg_loss == 0:
        return 100.0 if avg_gain > 0 else 50.0
    rs = avg_gain / avg_loss
    return min(max(100.0 - 100.0 / (1.0 + rs), 0.0), 100.0)


def compute_pivot_levels(high: float, low: float, close: float) -> PivotLevels:
    pp = (high + low + close) / 3
    spread = high - low
    return PivotLevels(
        pp=pp,
        r1=2 * pp - low,
        r2=pp + spread,
        s1=2 * pp - high,
        s2=pp - spread,
    )


def closed_candles(
    candles: Sequence[Candle], as_of: datetime, interval: timedelta
) -> list[Candle]:
    return [candle for candle in candles if candle.timestamp + interval <= as_of]


@dataclass(slots=True)
class IndicatorEngine:
    sma_short: int = 10
    sma_long: int = 20
    rsi_period: int = 14
    indicator_window: str = "48h"
    pivot_window: str = "24h"

    @classmethod
    def from_config(cls, config: IndicatorConfig) -> "IndicatorEngine":
        return cls(
            sma_short=config.sma_short,
            sma_long=config.sma_long,
            rsi_period=config.rsi_period,
            indicator_window=config.indicator_window,
            pivot_window=config.pivot_window,
        )

    def compute(self, snapshot: MarketSnapshot) -> IndicatorSet:
        candles = list(snapshot.window(self.indicator_window))
        sma_short = compute_sma(candles, self.sma_short)
        sma_long = compute_sma(candles, self.sma_long)
        rsi = compute_rsi(candles, self.rsi_period)

        prev_short: float | None = None
        prev_long: float | None = None
        previous = candles[:-1]
        if len(previous) >= max(self.sma_short, self.sma_long):
            prev_short = compute_sma(previous, self.sma_short)
            prev_long = compute_sma(previous, self.sma_long)

        return IndicatorSet(
            sma_short=sma_short,
            sma_long=sma_long,
            rsi=rsi,
            prev_sma_short=prev_short,
            prev_sma_long=prev_long,
        )

    def pivots(self, snapshot: MarketSnapshot) -> PivotLevels:
        closed = closed_candles(
            snapshot.window(self.pivot_window), snapshot.as_of, snapshot.candle_interval
        )
        if not closed:
            raise InsufficientData(f"pivot({self.pivot_window})", 1, 0)
        return compute_pivot_levels(
            high=max(c.high for c in closed),
            low=min(c.low for c in closed),
            close=closed[-1].close,
        )


def _closes(candles: Sequence[Candle]) -> pd.Series:
    return pd.Series([candle.close for candle in candles], dtype="float64")


def _wilder_average(series: pd.Series, period: int) -> float:
    # Seed with the simple mean of the first window, then smooth with alpha = 1/period.
    seed = series.iloc[:period].mean()
    smoothed = pd.concat([pd.Series([seed]), series.iloc[period:]], ignore_index=True)
    return float(smoothed.ewm(alpha=1 / period, adjust=False).mean().iloc[-1])
