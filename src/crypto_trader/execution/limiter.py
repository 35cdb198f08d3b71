"""Per-UTC-day trade cap with crash-safe persistence.

The counter lives in a small JSON file that is rewritten through a temporary
file and ``os.replace`` so a reader never sees a half-written state. The file
is read once at startup; after that the in-memory ``DailyTradeState`` is
authoritative and every change to it is written back synchronously.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from contextlib import suppress
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Mapping

from crypto_trader.errors import PersistenceFailure
from crypto_trader.execution.models import OrderSide

logger = logging.getLogger(__name__)


def utc_date(moment: datetime) -> date:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).date()


@dataclass(frozen=True, slots=True)
class DailyTradeState:
    utc_date: date
    count: int
    last_reset_date: date

    @classmethod
    def fresh(cls, today: date) -> "DailyTradeState":
        return cls(utc_date=today, count=0, last_reset_date=today)

    def rolled_over(self, today: date) -> "DailyTradeState":
        return DailyTradeState(utc_date=today, count=0, last_reset_date=today)

    def incremented(self) -> "DailyTradeState":
        return DailyTradeState(
            utc_date=self.utc_date,
            count=self.count + 1,
            last_reset_date=self.last_reset_date,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "date": self.utc_date.isoformat(),
            "count": self.count,
            "last_reset_date": self.last_reset_date.isoformat(),
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "DailyTradeState":
        day = date.fromisoformat(payload["date"])
        count = int(payload["count"])
        if count < 0:
            raise ValueError("count must not be negative")
        last_reset = date.fromisoformat(payload.get("last_reset_date", payload["date"]))
        return cls(utc_date=day, count=count, last_reset_date=last_reset)


@dataclass(frozen=True, slots=True)
class TradeLimitStatus:
    date: date
    trades_executed: int
    trades_remaining: int
    max_trades_per_day: int
    can_trade: bool
    next_trading_day: date | None


class TradeLimiter:
    def __init__(self, state_file: str | Path, max_trades_per_day: int = 2, now: datetime | None = None) -> None:
        if max_trades_per_day < 0:
            raise ValueError("max_trades_per_day must not be negative")
        self._path = Path(state_file)
        self._max = max_trades_per_day
        self._state = self._load(utc_date(now or datetime.now(tz=timezone.utc)))

    @property
    def state(self) -> DailyTradeState:
        return self._state

    @property
    def max_trades_per_day(self) -> int:
        return self._max

    def reset_if_new_day(self, now: datetime) -> bool:
        today = utc_date(now)
        if today <= self._state.last_reset_date:
            return False
        rolled = self._state.rolled_over(today)
        self._persist(rolled)
        self._state = rolled
        logger.info("New UTC trading day %s, trade count reset", today.isoformat())
        return True

    def can_trade(self, now: datetime) -> bool:
        try:
            self.reset_if_new_day(now)
        except PersistenceFailure as exc:
            logger.error("Blocking trades, day rollover could not be persisted: %s", exc)
            return False
        return self._state.count < self._max

    def record_trade(self, side: OrderSide, now: datetime | None = None) -> DailyTradeState:
        now = now or datetime.now(tz=timezone.utc)
        today = utc_date(now)
        if today > self._state.last_reset_date:
            self._state = self._state.rolled_over(today)
        if self._state.count >= self._max:
            raise ValueError(f"Daily trade limit of {self._max} already reached")
        # In memory first so the cap holds for this process even if the write fails.
        self._state = self._state.incremented()
        logger.info(
            "Trade recorded: %s. Trades today: %d/%d",
            side.value,
            self._state.count,
            self._max,
        )
        self._persist(self._state)
        return self._state

    def checkpoint(self) -> None:
        self._persist(self._state)

    def status(self, now: datetime) -> TradeLimitStatus:
        today = utc_date(now)
        state = self._state
        executed = state.count if today <= state.last_reset_date else 0
        can_trade = executed < self._max
        return TradeLimitStatus(
            date=today,
            trades_executed=executed,
            trades_remaining=max(self._max - executed, 0),
            max_trades_per_day=self._max,
            can_trade=can_trade,
            next_trading_day=None if can_trade else today + timedelta(days=1),
        )

    def _load(self, today: date) -> DailyTradeState:
        if not self._path.exists():
            state = DailyTradeState.fresh(today)
            logger.info("No trade state at %s, starting fresh for %s", self._path, today.isoformat())
            self._persist(state)
            return state
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
            state = DailyTradeState.from_dict(payload)
        except (OSError, ValueError, KeyError, TypeError) as exc:
            # Unknown count: block until the next UTC day rather than risk exceeding the cap.
            logger.error("Unreadable trade state %s (%s); blocking trades for %s", self._path, exc, today)
            return DailyTradeState(utc_date=today, count=self._max, last_reset_date=today)
        logger.info(
            "Loaded trade state for %s: %d trade(s) executed",
            state.utc_date.isoformat(),
            state.count,
        )
        return state

    def _persist(self, state: DailyTradeState) -> None:
        directory = self._path.parent
        tmp_name: str | None = None
        try:
            directory.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=directory,
                prefix=f".{self._path.name}.",
                suffix=".tmp",
                delete=False,
            ) as fh:
                tmp_name = fh.name
                json.dump(state.to_dict(), fh, indent=2)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_name, self._path)
            tmp_name = None
        except OSError as exc:
            raise PersistenceFailure(f"Cannot write trade state to {self._path}: {exc}") from exc
        finally:
            if tmp_name is not None:
                with suppress(OSError):
                    os.unlink(tmp_name)
