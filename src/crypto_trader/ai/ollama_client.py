"""Ollama backend for the AI advisor."""

from __future__ import annotations

import logging
from typing import Any, Dict

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_fixed

from crypto_trader.ai.base import LLMBackend
from crypto_trader.config.models import AiConfig
from crypto_trader.errors import AdvisorUnavailable

logger = logging.getLogger(__name__)


class OllamaBackend(LLMBackend):
    """Call a local Ollama server's generate endpoint."""

    def __init__(self, config: AiConfig, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._cfg = config
        self._client = httpx.AsyncClient(
            base_url=config.base_url,
            timeout=config.timeout_seconds,
            transport=transport,
        )

    async def health_check(self) -> bool:
        try:
            response = await self._client.get("/api/tags", timeout=self._cfg.health_timeout_seconds)
        except httpx.HTTPError as exc:
            logger.warning("Cannot reach Ollama at %s: %s", self._cfg.base_url, exc)
            return False
        if response.is_success:
            return True
        logger.warning("Ollama responded with status %s", response.status_code)
        return False

    async def generate(self, prompt: str, model: str) -> str:
        request_body: Dict[str, Any] = {
            "model": model,
            "prompt": prompt,
            "stream": False,
            "options": {
                "temperature": self._cfg.temperature,
                "num_predict": self._cfg.num_predict,
            },
        }
        try:
            async for attempt in self._retrying():
                with attempt:
                    response = await self._client.post("/api/generate", json=request_body)
                    response.raise_for_status()
                    data = response.json()
                    return str(data["response"])
        except httpx.HTTPError as exc:
            raise AdvisorUnavailable(f"Ollama request failed: {exc}") from exc
        except (KeyError, TypeError, ValueError) as exc:
            raise AdvisorUnavailable(f"Malformed Ollama response: {exc}") from exc
        raise AdvisorUnavailable("Ollama retries exhausted")

    async def close(self) -> None:
        await self._client.aclose()

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            retry=retry_if_exception_type(httpx.TransportError),
            wait=wait_fixed(2),
            stop=stop_after_attempt(max(self._cfg.retry_attempts, 1)),
            reraise=True,
        )
