"""Prompt assembly for the AI advisor."""

from __future__ import annotations

from crypto_trader.data.models import IndicatorSet, MarketSnapshot, PivotLevels
from crypto_trader.portfolio.models import PortfolioState


def _fmt(value: float | None) -> str:
    return f"${value:,.2f}" if value is not None else "n/a"


def _rsi_condition(rsi: float) -> str:
    if rsi > 70:
        return "OVERBOUGHT"
    if rsi < 30:
        return "OVERSOLD"
    return "NEUTRAL"


def build_prompt(
    snapshot: MarketSnapshot,
    indicators: IndicatorSet,
    pivots: PivotLevels,
    portfolio: PortfolioState,
) -> str:
    price = snapshot.current_price
    ranges = ", ".join(
        f"{label}: {_fmt(snapshot.low(label))} - {_fmt(snapshot.high(label))}"
        for label in ("12h", "24h", "48h")
    )
    balances = ", ".join(f"{asset} {amount:,.8g}" for asset, amount in sorted(portfolio.balances.items())) or "none"

    position = portfolio.position
    if position is None:
        position_info = "No open position"
    else:
        pnl_pct = (price - position.entry_price) / position.entry_price * 100
        position_info = (
            f"{position.side.value} {position.quantity:.8g} @ {_fmt(position.entry_price)}, "
            f"unrealized {pnl_pct:+.2f}%"
        )

    return f"""You are a crypto trading analyst focused on support and resistance.

MARKET DATA FOR {snapshot.symbol}:
- Current price: {_fmt(price)}
- 24h change: {snapshot.price_change_24h_pct:+.2f}%
- Ranges (low - high): {ranges}
- SMA short: {indicators.sma_short:,.2f}, SMA long: {indicators.sma_long:,.2f}, trend {indicators.trend.upper()}
- RSI(14): {indicators.rsi:.2f} ({_rsi_condition(indicators.rsi)})

PIVOT LEVELS (prior closed period):
- R2 {_fmt(pivots.r2)} | R1 {_fmt(pivots.r1)} | PP {_fmt(pivots.pp)} | S1 {_fmt(pivots.s1)} | S2 {_fmt(pivots.s2)}

ACCOUNT:
- Balances: {balances}
- Position: {position_info}

Answer in EXACTLY this format, one field per line:
RECOMMENDATION: STRONG_BUY|BUY|HOLD|SELL|STRONG_SELL
CONFIDENCE: 0-100
STOP_LOSS: price
TAKE_PROFIT: price
BUY_TARGET: price near support
SELL_TARGET: price near resistance
SUPPORT: S1 price
STRONG_SUPPORT: S2 price
RESISTANCE: R1 price
STRONG_RESISTANCE: R2 price
PIVOT: pivot point price
REASONING: two or three sentences

Stop-loss belongs below strong support, take-profit near or above resistance.
Give dollar prices, not percentages, and provide targets even for HOLD."""
