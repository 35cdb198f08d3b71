from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Optional

from crypto_trader.ai.advisor import AdvisorBridge
from crypto_trader.ai.models import AdvisorRecommendation
from crypto_trader.config.models import Config
from crypto_trader.data.models import IndicatorSet, MarketSnapshot, PivotLevels
from crypto_trader.data.provider_base import MarketDataSource, TimeProvider
from crypto_trader.data.providers import SystemTimeProvider
from crypto_trader.errors import InsufficientData, MarketDataUnavailable, TradingError
from crypto_trader.execution.exchange_base import Exchange
from crypto_trader.execution.limiter import TradeLimiter
from crypto_trader.indicators.engine import IndicatorEngine
from crypto_trader.monitoring.report import ReportRenderer
from crypto_trader.portfolio.ledger import PortfolioLedger
from crypto_trader.portfolio.models import PortfolioState
from crypto_trader.strategy.decision import DecisionEngine
from crypto_trader.strategy.models import CycleOutcome, DecisionInputs

logger = logging.getLogger(__name__)


class TradingOrchestrator:
    def __init__(
        self,
        config: Config,
        market_data: MarketDataSource,
        indicator_engine: IndicatorEngine,
        advisor: AdvisorBridge,
        exchange: Exchange,
        ledger: PortfolioLedger,
        limiter: TradeLimiter,
        decision_engine: DecisionEngine,
        reporter: ReportRenderer | None = None,
        time_provider: TimeProvider | None = None,
    ) -> None:
        self._config = config
        self._market_data = market_data
        self._indicator_engine = indicator_engine
        self._advisor = advisor
        self._exchange = exchange
        self._ledger = ledger
        self._limiter = limiter
        self._engine = decision_engine
        self._reporter = reporter
        self._time = time_provider or SystemTimeProvider()
        self._lock = asyncio.Lock()
        self._tasks: list[asyncio.Task] = []
        self._running = False
        self._last_recommendation: Optional[AdvisorRecommendation] = None
        self._last_advice_at: Optional[datetime] = None

    @property
    def last_recommendation(self) -> Optional[AdvisorRecommendation]:
        return self._last_recommendation

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._tasks = [asyncio.create_task(self._cycle_loop(), name="trading-cycle")]

    async def run_forever(self) -> None:
        await self.start()
        await self.wait_until_stopped()

    async def stop(self) -> None:
        self._running = False
        for task in self._tasks:
            task.cancel()
        try:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        finally:
            self._tasks.clear()
        await self._engine.drain()

    async def wait_until_stopped(self) -> None:
        if not self._tasks:
            return
        try:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        except asyncio.CancelledError:
            pass

    async def _cycle_loop(self) -> None:
        interval = self._config.scheduler.cycle_interval_seconds
        while self._running:
            try:
                await self.tick()
            except Exception as exc:
                logger.exception("Trading cycle failed: %s", exc)
            await asyncio.sleep(interval)

    async def tick(self) -> CycleOutcome | None:
        """Run one cycle under the deadline unless a previous one is still in flight."""
        if self._lock.locked():
            logger.info("Previous cycle still running, skipping this tick")
            return None
        async with self._lock:
            deadline = self._config.scheduler.cycle_deadline_seconds
            try:
                return await asyncio.wait_for(self.run_cycle(), timeout=deadline)
            except asyncio.TimeoutError:
                logger.warning("Cycle exceeded its %.0fs deadline and was abandoned", deadline)
                if self._engine.order_in_flight:
                    logger.warning("An order was already sent and will be booked when it settles")
                return None

    async def run_cycle(self) -> CycleOutcome | None:
        now = self._time.now()
        symbol = self._config.data.symbol
        snapshot, balances, advisor_healthy = await asyncio.gather(
            self._market_data.fetch_snapshot(symbol),
            self._exchange.get_balances(),
            self._probe_advisor(now),
            return_exceptions=True,
        )
        if isinstance(snapshot, (MarketDataUnavailable, InsufficientData)):
            log = logger.info if isinstance(snapshot, InsufficientData) else logger.warning
            log("Skipping cycle, no usable market data: %s", snapshot)
            return None
        if isinstance(snapshot, BaseException):
            raise snapshot
        if isinstance(balances, TradingError):
            logger.warning("Exchange balances unavailable, reconciliation skipped: %s", balances)
        elif isinstance(balances, BaseException):
            raise balances
        else:
            self._ledger.reconcile(balances)

        try:
            indicators = self._indicator_engine.compute(snapshot)
            pivots = self._indicator_engine.pivots(snapshot)
        except InsufficientData as exc:
            logger.info("Skipping cycle: %s", exc)
            return None

        price = snapshot.current_price
        self._exchange.update_mark(symbol, price)
        portfolio = self._ledger.snapshot()
        recommendation = await self._recommendation(
            snapshot, indicators, pivots, portfolio, advisor_healthy is True, now
        )

        inputs = DecisionInputs(
            price=price,
            indicators=indicators,
            recommendation=recommendation,
            can_trade=self._limiter.can_trade(now),
            position=self._ledger.position,
            available_quote=self._ledger.available_quote,
            position_fraction=self._config.risk.position_fraction,
            oversold=self._config.indicators.rsi_oversold,
            slippage_bps=self._config.exchange.slippage_bps,
        )
        outcome = await self._engine.execute(inputs, now)
        if outcome.action != "HOLD":
            logger.info("Execution: %s | %s", outcome.action, outcome.message)

        if self._reporter is not None:
            self._reporter.render(
                portfolio=self._ledger.snapshot(),
                price=price,
                as_of=now,
                indicators=indicators,
                pivots=pivots,
                recommendation=recommendation,
                limit_status=self._limiter.status(now),
                outcome=outcome,
            )
        return outcome

    def _advice_due(self, now: datetime) -> bool:
        if self._last_advice_at is None:
            return True
        elapsed = (now - self._last_advice_at).total_seconds()
        return elapsed >= self._config.ai.refresh_seconds

    async def _probe_advisor(self, now: datetime) -> bool:
        if not self._advice_due(now):
            return False
        try:
            return await self._advisor.health_check()
        except Exception:
            logger.exception("Advisor health check failed")
            return False

    async def _recommendation(
        self,
        snapshot: MarketSnapshot,
        indicators: IndicatorSet,
        pivots: PivotLevels,
        portfolio: PortfolioState,
        advisor_healthy: bool,
        now: datetime,
    ) -> AdvisorRecommendation:
        if self._last_recommendation is not None and not self._advice_due(now):
            return self._last_recommendation
        if self._advisor.enabled and not advisor_healthy:
            logger.warning("AI backend is not reachable, using fallback targets")
        recommendation = await self._advisor.get_recommendation(
            snapshot, indicators, pivots, portfolio, use_backend=advisor_healthy
        )
        self._last_recommendation = recommendation
        self._last_advice_at = now
        return recommendation
