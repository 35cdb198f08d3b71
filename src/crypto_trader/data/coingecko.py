"""CoinGecko market-data source with retry."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, List

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from crypto_trader.config.models import DataConfig
from crypto_trader.data.models import Candle, MarketSnapshot
from crypto_trader.data.provider_base import MarketDataSource, TimeProvider
from crypto_trader.data.providers import SystemTimeProvider
from crypto_trader.errors import MarketDataUnavailable

logger = logging.getLogger(__name__)

_COIN_IDS = {
    "BTC": "bitcoin",
    "ETH": "ethereum",
    "BNB": "binancecoin",
    "XRP": "ripple",
    "ADA": "cardano",
    "SOL": "solana",
    "DOT": "polkadot",
    "DOGE": "dogecoin",
    "MATIC": "matic-network",
    "LTC": "litecoin",
    "AVAX": "avalanche-2",
    "LINK": "chainlink",
    "ATOM": "cosmos",
    "UNI": "uniswap",
    "XLM": "stellar",
}


def coin_id_for(symbol: str) -> str:
    upper = symbol.upper()
    for suffix in ("USDT", "USD"):
        if upper.endswith(suffix) and len(upper) > len(suffix):
            upper = upper[: -len(suffix)]
            break
    return _COIN_IDS.get(upper, "bitcoin")


class CoinGeckoMarketData(MarketDataSource):
    """Build hourly 12h/24h/48h candle windows from CoinGecko's public API."""

    def __init__(
        self,
        config: DataConfig,
        time_provider: TimeProvider | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._cfg = config
        self._time = time_provider or SystemTimeProvider()
        self._client = httpx.AsyncClient(
            base_url=config.base_url,
            timeout=config.timeout_seconds,
            headers={"Accept": "application/json"},
            transport=transport,
        )

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            retry=retry_if_exception_type(httpx.HTTPError),
            wait=wait_exponential(multiplier=1, min=1, max=8),
            stop=stop_after_attempt(self._cfg.retry_attempts),
            reraise=True,
        )

    async def fetch_snapshot(self, symbol: str) -> MarketSnapshot:
        coin_id = coin_id_for(symbol)
        try:
            market = await self._get_json(
                "/coins/markets",
                {"vs_currency": "usd", "ids": coin_id, "sparkline": "false"},
            )
            chart = await self._get_json(
                f"/coins/{coin_id}/market_chart",
                {"vs_currency": "usd", "days": 2},
            )
        except httpx.HTTPError as exc:
            raise MarketDataUnavailable(f"CoinGecko request failed for {coin_id}: {exc}") from exc

        if not market:
            raise MarketDataUnavailable(f"No market data found for {coin_id}")
        try:
            ticker = market[0]
            current_price = float(ticker["current_price"])
            change_pct = float(ticker.get("price_change_percentage_24h") or 0.0)
            candles = self._parse_chart(chart)
        except (KeyError, IndexError, TypeError, ValueError) as exc:
            raise MarketDataUnavailable(f"Malformed CoinGecko payload for {coin_id}: {exc}") from exc

        logger.debug("Fetched %d hourly candles for %s", len(candles), coin_id)
        return MarketSnapshot(
            symbol=symbol,
            current_price=current_price,
            as_of=self._time.now(),
            window_12h=tuple(candles[-12:]),
            window_24h=tuple(candles[-24:]),
            window_48h=tuple(candles[-48:]),
            candle_interval=timedelta(minutes=self._cfg.candle_minutes),
            price_change_24h_pct=change_pct,
        )

    async def _get_json(self, path: str, params: dict[str, Any]) -> Any:
        async for attempt in self._retrying():
            with attempt:
                response = await self._client.get(path, params=params)
                response.raise_for_status()
                return response.json()
        raise RuntimeError("Unreachable _get_json")

    @staticmethod
    def _parse_chart(chart: dict[str, Any]) -> List[Candle]:
        # CoinGecko only returns [ms, price] points; consecutive points form pseudo-OHLC candles.
        prices = chart["prices"]
        volumes = {int(row[0]): float(row[1]) for row in chart.get("total_volumes", [])}
        candles: List[Candle] = []
        for current, nxt in zip(prices, prices[1:]):
            open_price = float(current[1])
            close_price = float(nxt[1])
            candles.append(
                Candle(
                    timestamp=datetime.fromtimestamp(current[0] / 1000, tz=timezone.utc),
                    open=open_price,
                    high=max(open_price, close_price),
                    low=min(open_price, close_price),
                    close=close_price,
                    volume=volumes.get(int(current[0]), 0.0),
                )
            )
        if prices:
            last = prices[-1]
            price = float(last[1])
            candles.append(
                Candle(
                    timestamp=datetime.fromtimestamp(last[0] / 1000, tz=timezone.utc),
                    open=price,
                    high=price,
                    low=price,
                    close=price,
                    volume=volumes.get(int(last[0]), 0.0),
                )
            )
        return candles

    async def close(self) -> None:
        await self._client.aclose()
