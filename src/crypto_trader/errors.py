"""Exception hierarchy shared by the trading components."""

from __future__ import annotations

from enum import Enum


class TradingError(Exception):
    """Base class for every error raised by the trading core."""


class InsufficientData(TradingError):
    """Too few candles to compute an indicator."""

    def __init__(self, indicator: str, required: int, available: int) -> None:
        super().__init__(
            f"{indicator} needs {required} candles, only {available} available"
        )
        self.indicator = indicator
        self.required = required
        self.available = available


class MarketDataUnavailable(TradingError):
    """The market-data collaborator could not produce a snapshot."""


class AdvisorUnavailable(TradingError):
    """The AI backend timed out, was unreachable or answered garbage."""


class RejectionKind(str, Enum):
    INSUFFICIENT_BALANCE = "insufficient_balance"
    RATE_LIMIT = "rate_limit"
    CONNECTIVITY = "connectivity"
    INVALID_ORDER = "invalid_order"


class ExchangeRejected(TradingError):
    """An order was not executed; nothing about it may be booked."""

    def __init__(self, kind: RejectionKind, reason: str) -> None:
        super().__init__(f"{kind.value}: {reason}")
        self.kind = kind
        self.reason = reason


class PersistenceFailure(TradingError):
    """The daily trade state could not be written to disk."""


class LedgerError(TradingError):
    """A fill would violate a ledger invariant (negative balance, second position)."""
