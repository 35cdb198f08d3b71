from __future__ import annotations

from abc import ABC, abstractmethod


class LLMBackend(ABC):
    @abstractmethod
    async def generate(self, prompt: str, model: str) -> str:
        """Return the raw completion text; raise AdvisorUnavailable on failure."""
        raise NotImplementedError

    async def health_check(self) -> bool:
        return True

    async def close(self) -> None:
        return None
