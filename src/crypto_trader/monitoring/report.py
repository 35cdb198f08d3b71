"""Portfolio status report rendered with Rich."""

from __future__ import annotations

import io
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Mapping, Optional

from rich.console import Console, Group
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from crypto_trader.ai.models import AdvisorRecommendation
from crypto_trader.data.models import IndicatorSet, PivotLevels
from crypto_trader.execution.limiter import TradeLimitStatus
from crypto_trader.portfolio.models import PortfolioState
from crypto_trader.strategy.models import CycleOutcome

logger = logging.getLogger(__name__)


def _kv_table(title: str, rows: Mapping[str, Any]) -> Table:
    table = Table(title=title, show_header=False, show_lines=False, expand=True)
    table.add_column(justify="right", style="bold")
    table.add_column(ratio=1)
    for key, value in rows.items():
        table.add_row(key, str(value))
    return table


class ReportRenderer:
    _ACTION_STYLES = {
        "BUY": "green",
        "SELL": "red",
        "HOLD": "cyan",
        "REJECTED": "yellow",
        "ABORTED": "yellow",
    }

    def __init__(self, report_path: str | Path | None = None, console: Console | None = None) -> None:
        self._path = Path(report_path) if report_path else None
        self._console = console or Console()

    def render(
        self,
        portfolio: PortfolioState,
        price: float,
        as_of: datetime,
        indicators: IndicatorSet,
        pivots: PivotLevels,
        recommendation: AdvisorRecommendation,
        limit_status: TradeLimitStatus,
        outcome: Optional[CycleOutcome] = None,
    ) -> None:
        """Print the report and, when a path is configured, write it as plain text."""
        body = self._build(portfolio, price, as_of, indicators, pivots, recommendation, limit_status, outcome)
        self._console.print(body)
        if self._path is not None:
            self._write(body)

    def _build(
        self,
        portfolio: PortfolioState,
        price: float,
        as_of: datetime,
        indicators: IndicatorSet,
        pivots: PivotLevels,
        recommendation: AdvisorRecommendation,
        limit_status: TradeLimitStatus,
        outcome: Optional[CycleOutcome],
    ) -> Panel:
        market = _kv_table(
            "Market",
            {
                "Price": f"${price:,.2f}",
                "SMA short / long": f"{indicators.sma_short:,.2f} / {indicators.sma_long:,.2f} ({indicators.trend})",
                "RSI": f"{indicators.rsi:.2f}",
                "Pivots": (
                    f"S2 {pivots.s2:,.2f} | S1 {pivots.s1:,.2f} | PP {pivots.pp:,.2f} | "
                    f"R1 {pivots.r1:,.2f} | R2 {pivots.r2:,.2f}"
                ),
            },
        )
        advice_rows: dict[str, Any] = {
            "Action": f"{recommendation.action.value} @ {recommendation.confidence:.0f}%",
            "Buy / Sell target": f"{recommendation.buy_target:,.2f} / {recommendation.sell_target:,.2f}",
            "Stop-loss / Take-profit": f"{recommendation.stop_loss:,.2f} / {recommendation.take_profit:,.2f}",
        }
        levels = recommendation.levels
        if levels is not None and levels != pivots:
            advice_rows["Support / Resistance"] = (
                f"S2 {levels.s2:,.2f} | S1 {levels.s1:,.2f} | PP {levels.pp:,.2f} | "
                f"R1 {levels.r1:,.2f} | R2 {levels.r2:,.2f}"
            )
        advice_rows["Reasoning"] = escape(recommendation.reasoning)
        advice = _kv_table(f"Advisor ({recommendation.source.value})", advice_rows)

        balances = Table(title="Balances", expand=True)
        balances.add_column("Asset")
        balances.add_column("Amount", justify="right")
        for asset, amount in sorted(portfolio.balances.items()):
            balances.add_row(asset, f"{amount:,.8g}")

        position = portfolio.position
        account_rows: dict[str, Any] = {
            "Position": (
                f"{position.side.value} {position.quantity:.8f} @ {position.entry_price:,.2f}"
                if position
                else "none"
            ),
            "Unrealized P&L": f"{position.unrealized_pnl(price):,.2f}" if position else "0.00",
            "Realized P&L": f"{portfolio.realized_pnl:,.2f}",
            "Closed trades": (
                f"{len(portfolio.closed_trades)} (won {portfolio.winning_trades}, "
                f"lost {portfolio.losing_trades}, win rate {portfolio.win_rate:.1f}%)"
            ),
            "Largest win / loss": f"{portfolio.largest_win:,.2f} / {portfolio.largest_loss:,.2f}",
            "Trades today": (
                f"{limit_status.trades_executed}/{limit_status.max_trades_per_day}"
                + ("" if limit_status.can_trade else f", next window {limit_status.next_trading_day}")
            ),
        }
        for drift in portfolio.drifts:
            account_rows[f"Drift {drift.asset}"] = (
                f"ledger {drift.ledger_amount:,.8g} vs exchange {drift.exchange_amount:,.8g}"
            )
        account = _kv_table("Account", account_rows)

        parts: list[Any] = [market, advice, balances, account]
        if outcome is not None:
            style = self._ACTION_STYLES.get(outcome.action, "white")
            parts.append(f"[bold {style}]{outcome.action}[/bold {style}] {escape(outcome.message)}")
        return Panel(
            Group(*parts),
            title=f"[bold]{portfolio.symbol} status {as_of:%Y-%m-%d %H:%M:%S %Z}",
        )

    def _write(self, body: Panel) -> None:
        assert self._path is not None
        buffer = Console(file=io.StringIO(), record=True, width=100, color_system=None)
        buffer.print(body)
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text(buffer.export_text(), encoding="utf-8")
        except OSError as exc:
            logger.warning("Could not write status report to %s: %s", self._path, exc)
