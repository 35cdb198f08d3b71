"""Configuration models for the trading bot."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field


class DataConfig(BaseModel):
    symbol: str = "BTCUSDT"
    quote_asset: str = "USDT"
    base_url: str = "https://api.coingecko.com/api/v3"
    timeout_seconds: float = 30.0
    retry_attempts: int = 3
    candle_minutes: int = 60


class IndicatorConfig(BaseModel):
    sma_short: int = Field(default=10, ge=1)
    sma_long: int = Field(default=20, ge=1)
    rsi_period: int = Field(default=14, ge=2)
    rsi_oversold: float = 30.0
    rsi_overbought: float = 70.0
    indicator_window: Literal["12h", "24h", "48h"] = "48h"
    pivot_window: Literal["12h", "24h", "48h"] = "24h"


class AiConfig(BaseModel):
    enabled: bool = True
    base_url: str = "http://localhost:11434"
    model: str = "mistral"
    timeout_seconds: float = 120.0
    health_timeout_seconds: float = 5.0
    retry_attempts: int = 1
    temperature: float = 0.3
    num_predict: int = 1000
    refresh_seconds: int = 300
    fallback_confidence: float = Field(default=50.0, ge=0.0, le=100.0)


class RiskConfig(BaseModel):
    max_trades_per_day: int = Field(default=2, ge=0)
    position_fraction: float = Field(default=0.10, gt=0.0, le=1.0)
    state_file: str = "trade_state.json"
    reconcile_abs_tolerance: float = 1e-8
    reconcile_rel_tolerance: float = 1e-3


class ExchangeConfig(BaseModel):
    name: str = "simulation"
    initial_balance: float = Field(default=10_000.0, ge=0.0)
    slippage_bps: float = Field(default=0.0, ge=0.0)


class SchedulerConfig(BaseModel):
    cycle_interval_seconds: float = 30.0
    cycle_deadline_seconds: float = 240.0
    report_path: str | None = "portfolio_status.txt"


class Config(BaseModel):
    data: DataConfig = Field(default_factory=DataConfig)
    indicators: IndicatorConfig = Field(default_factory=IndicatorConfig)
    ai: AiConfig = Field(default_factory=AiConfig)
    risk: RiskConfig = Field(default_factory=RiskConfig)
    exchange: ExchangeConfig = Field(default_factory=ExchangeConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)

    @property
    def base_asset(self) -> str:
        symbol = self.data.symbol.upper()
        quote = self.data.quote_asset.upper()
        if symbol.endswith(quote) and len(symbol) > len(quote):
            return symbol[: -len(quote)]
        return symbol


def default_config() -> Config:
    return Config()
