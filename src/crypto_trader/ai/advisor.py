"""AI advisor with deterministic fallback.

``AdvisorBridge.get_recommendation`` has two explicit paths: one bounded
attempt against the LLM backend that yields raw text or ``None``, then a
field-by-field parse that fills every gap from the rule-based calculator.
It always returns a recommendation; ``source`` says which path produced it.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

from crypto_trader.ai.base import LLMBackend
from crypto_trader.ai.fallback import FallbackCalculator
from crypto_trader.ai.models import AdvisorRecommendation
from crypto_trader.ai.parser import parse_response
from crypto_trader.ai.prompt import build_prompt
from crypto_trader.config.models import AiConfig
from crypto_trader.data.models import IndicatorSet, MarketSnapshot, PivotLevels
from crypto_trader.errors import AdvisorUnavailable
from crypto_trader.portfolio.models import PortfolioState

logger = logging.getLogger(__name__)


class AdvisorBridge:
    def __init__(
        self,
        backend: LLMBackend | None,
        config: AiConfig,
        fallback: FallbackCalculator,
    ) -> None:
        self._backend = backend
        self._cfg = config
        self._fallback = fallback

    @property
    def enabled(self) -> bool:
        return self._backend is not None and self._cfg.enabled

    async def health_check(self) -> bool:
        if not self.enabled:
            return False
        assert self._backend is not None
        try:
            return await asyncio.wait_for(
                self._backend.health_check(), timeout=self._cfg.health_timeout_seconds
            )
        except asyncio.TimeoutError:
            logger.warning("AI backend health check timed out")
            return False

    async def get_recommendation(
        self,
        snapshot: MarketSnapshot,
        indicators: IndicatorSet,
        pivots: PivotLevels,
        portfolio: PortfolioState,
        use_backend: bool = True,
    ) -> AdvisorRecommendation:
        now = datetime.now(tz=timezone.utc)
        fallback = self._fallback.calculate(indicators, pivots, now)
        if not (use_backend and self.enabled):
            return fallback

        raw = await self._attempt(build_prompt(snapshot, indicators, pivots, portfolio))
        if raw is None:
            return fallback
        recommendation = parse_response(raw, fallback)
        if recommendation is None:
            logger.warning("AI response had no recognisable fields, using fallback targets")
            return fallback
        logger.info(
            "AI recommendation %s @ %.0f%% confidence",
            recommendation.action.value,
            recommendation.confidence,
        )
        return recommendation

    async def _attempt(self, prompt: str) -> Optional[str]:
        assert self._backend is not None
        try:
            return await asyncio.wait_for(
                self._backend.generate(prompt, self._cfg.model),
                timeout=self._cfg.timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning("AI analysis timed out after %.0fs, using fallback", self._cfg.timeout_seconds)
        except AdvisorUnavailable as exc:
            logger.warning("AI analysis failed (%s), using fallback", exc)
        except Exception:
            logger.exception("Unexpected AI backend failure, using fallback")
        return None
