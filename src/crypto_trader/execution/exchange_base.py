from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Dict

from crypto_trader.execution.models import Fill, Order


class Exchange(ABC):
    @abstractmethod
    async def place_order(self, order: Order) -> Fill:
        """Execute ``order`` or raise ExchangeRejected; a rejection means nothing was executed."""
        raise NotImplementedError

    @abstractmethod
    async def get_balances(self) -> Dict[str, float]:
        raise NotImplementedError

    def update_mark(self, symbol: str, price: float) -> None:
        """Live venues price market orders themselves; paper venues need the last price."""
        return None

    async def close(self) -> None:
        return None
