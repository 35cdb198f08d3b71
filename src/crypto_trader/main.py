from __future__ import annotations

import argparse
import asyncio
import logging

from rich.logging import RichHandler

from crypto_trader.ai.advisor import AdvisorBridge
from crypto_trader.ai.fallback import FallbackCalculator
from crypto_trader.ai.ollama_client import OllamaBackend
from crypto_trader.config.loader import load_config
from crypto_trader.config.models import Config
from crypto_trader.data.coingecko import CoinGeckoMarketData
from crypto_trader.data.providers import SystemTimeProvider
from crypto_trader.execution.limiter import TradeLimiter
from crypto_trader.execution.simulation import SimulatedExchange
from crypto_trader.indicators.engine import IndicatorEngine
from crypto_trader.monitoring.report import ReportRenderer
from crypto_trader.portfolio.ledger import PortfolioLedger
from crypto_trader.scheduler.orchestrator import TradingOrchestrator
from crypto_trader.strategy.decision import DecisionEngine

logger = logging.getLogger(__name__)


async def run_app(config: Config, once: bool = False, run_minutes: float | None = None) -> None:
    time_provider = SystemTimeProvider()
    market_data = CoinGeckoMarketData(config.data, time_provider=time_provider)
    backend = OllamaBackend(config.ai) if config.ai.enabled else None
    advisor = AdvisorBridge(
        backend,
        config.ai,
        FallbackCalculator.from_config(config.indicators, config.ai),
    )
    exchange = SimulatedExchange(
        config.exchange,
        base_asset=config.base_asset,
        quote_asset=config.data.quote_asset,
        time_provider=time_provider,
    )
    ledger = PortfolioLedger.from_config(config, await exchange.get_balances())
    limiter = TradeLimiter(config.risk.state_file, config.risk.max_trades_per_day)
    orchestrator = TradingOrchestrator(
        config=config,
        market_data=market_data,
        indicator_engine=IndicatorEngine.from_config(config.indicators),
        advisor=advisor,
        exchange=exchange,
        ledger=ledger,
        limiter=limiter,
        decision_engine=DecisionEngine(config.data.symbol, exchange, limiter, ledger),
        reporter=ReportRenderer(config.scheduler.report_path),
        time_provider=time_provider,
    )

    logger.info(
        "Trading %s on %s exchange, max %d trade(s) per UTC day",
        config.data.symbol,
        config.exchange.name,
        config.risk.max_trades_per_day,
    )
    try:
        if once:
            await orchestrator.tick()
        elif run_minutes is not None:
            await orchestrator.start()
            await asyncio.sleep(run_minutes * 60)
        else:
            await orchestrator.run_forever()
    finally:
        await orchestrator.stop()
        await market_data.close()
        if backend is not None:
            await backend.close()
        await exchange.close()


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Single-pair crypto trader with AI advisor")
    parser.add_argument("--config", help="Path to a YAML, TOML or JSON config file")
    parser.add_argument("--once", action="store_true", help="Run a single cycle and exit")
    parser.add_argument(
        "--minutes",
        type=float,
        default=None,
        help="Stop after this many minutes instead of running until interrupted",
    )
    parser.add_argument("--log-level", default="INFO", help="Logging level")
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(name)s - %(message)s",
        handlers=[RichHandler(rich_tracebacks=True)],
    )
    config = load_config(args.config)
    try:
        asyncio.run(run_app(config, once=args.once, run_minutes=args.minutes))
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")


if __name__ == "__main__":
    main()
