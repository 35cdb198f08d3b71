from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Literal, Optional

from crypto_trader.ai.models import AdvisorRecommendation
from crypto_trader.data.models import IndicatorSet
from crypto_trader.execution.models import Fill
from crypto_trader.portfolio.models import Position, TradeRecord

DecisionAction = Literal["BUY", "SELL", "HOLD"]
OutcomeAction = Literal["BUY", "SELL", "HOLD", "REJECTED", "ABORTED"]


class DecisionState(str, Enum):
    IDLE = "IDLE"
    POSITION_OPEN = "POSITION_OPEN"


class DecisionReason(str, Enum):
    ADVISOR_BUY = "advisor_buy"
    RSI_OVERSOLD = "rsi_oversold"
    SMA_CROSS_UP = "sma_cross_up"
    STOP_LOSS = "stop_loss"
    TAKE_PROFIT = "take_profit"
    ADVISOR_SELL = "advisor_sell"
    DAILY_LIMIT = "daily_limit"
    ADVISOR_VETO = "advisor_veto"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    ORDER_IN_FLIGHT = "order_in_flight"
    NO_SIGNAL = "no_signal"


@dataclass(frozen=True, slots=True)
class DecisionInputs:
    price: float
    indicators: IndicatorSet
    recommendation: AdvisorRecommendation
    can_trade: bool
    position: Optional[Position]
    available_quote: float
    position_fraction: float = 0.10
    oversold: float = 30.0
    slippage_bps: float = 0.0


@dataclass(frozen=True, slots=True)
class Decision:
    action: DecisionAction
    reason: DecisionReason
    quantity: float = 0.0
    message: str = ""


@dataclass(slots=True)
class CycleOutcome:
    action: OutcomeAction
    message: str
    decision: Optional[Decision] = None
    fill: Optional[Fill] = None
    trade: Optional[TradeRecord] = None
