from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from crypto_trader.data.models import PivotLevels


class AdvisorAction(str, Enum):
    STRONG_BUY = "STRONG_BUY"
    BUY = "BUY"
    HOLD = "HOLD"
    SELL = "SELL"
    STRONG_SELL = "STRONG_SELL"

    @property
    def is_buy(self) -> bool:
        return self in (AdvisorAction.BUY, AdvisorAction.STRONG_BUY)

    @property
    def is_sell(self) -> bool:
        return self in (AdvisorAction.SELL, AdvisorAction.STRONG_SELL)


class RecommendationSource(str, Enum):
    AI = "AI"
    FALLBACK = "FALLBACK"


@dataclass(frozen=True, slots=True)
class AdvisorRecommendation:
    action: AdvisorAction
    confidence: float  # 0-100
    stop_loss: float
    take_profit: float
    buy_target: float
    sell_target: float
    reasoning: str
    source: RecommendationSource
    generated_at: datetime
    levels: Optional[PivotLevels] = None

    def __post_init__(self) -> None:
        if not 0.0 <= self.confidence <= 100.0:
            raise ValueError(f"confidence out of range: {self.confidence}")
