from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime

from .models import MarketSnapshot


class MarketDataSource(ABC):
    @abstractmethod
    async def fetch_snapshot(self, symbol: str) -> MarketSnapshot:
        """Return candle windows and the current price; raise MarketDataUnavailable on failure."""
        raise NotImplementedError

    async def close(self) -> None:
        return None


class TimeProvider(ABC):
    @abstractmethod
    def now(self) -> datetime:
        raise NotImplementedError
