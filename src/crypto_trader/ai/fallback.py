from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from crypto_trader.ai.models import AdvisorAction, AdvisorRecommendation, RecommendationSource
from crypto_trader.config.models import AiConfig, IndicatorConfig
from crypto_trader.data.models import IndicatorSet, PivotLevels


@dataclass(slots=True)
class FallbackCalculator:
    """Rule-based targets used whenever the AI backend gives no usable answer."""

    oversold: float = 30.0
    overbought: float = 70.0
    confidence: float = 50.0

    @classmethod
    def from_config(cls, indicators: IndicatorConfig, ai: AiConfig) -> "FallbackCalculator":
        return cls(
            oversold=indicators.rsi_oversold,
            overbought=indicators.rsi_overbought,
            confidence=ai.fallback_confidence,
        )

    def calculate(
        self, indicators: IndicatorSet, pivots: PivotLevels, now: datetime
    ) -> AdvisorRecommendation:
        action = self._action(indicators)
        return AdvisorRecommendation(
            action=action,
            confidence=min(max(self.confidence, 0.0), 100.0),
            stop_loss=pivots.s2,
            take_profit=pivots.r2,
            buy_target=pivots.s1,
            sell_target=pivots.r1,
            reasoning=self._reasoning(indicators, action),
            source=RecommendationSource.FALLBACK,
            generated_at=now,
            levels=pivots,
        )

    def _action(self, indicators: IndicatorSet) -> AdvisorAction:
        trend = indicators.trend
        if indicators.rsi < self.oversold:
            return AdvisorAction.STRONG_BUY if trend == "bullish" else AdvisorAction.BUY
        if indicators.rsi > self.overbought:
            return AdvisorAction.STRONG_SELL if trend == "bearish" else AdvisorAction.SELL
        if indicators.crossed_up:
            return AdvisorAction.BUY
        if indicators.crossed_down:
            return AdvisorAction.SELL
        return AdvisorAction.HOLD

    def _reasoning(self, indicators: IndicatorSet, action: AdvisorAction) -> str:
        reasons = []
        if indicators.rsi < self.oversold:
            reasons.append("RSI indicates oversold conditions")
        elif indicators.rsi > self.overbought:
            reasons.append("RSI indicates overbought conditions")
        if indicators.crossed_up:
            reasons.append("short SMA crossed above long SMA")
        elif indicators.crossed_down:
            reasons.append("short SMA crossed below long SMA")
        elif indicators.trend != "flat":
            reasons.append(f"SMA shows {indicators.trend} trend")
        if not reasons:
            return f"{action.value} on mixed signals"
        return "; ".join(reasons)
