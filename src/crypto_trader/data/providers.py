from __future__ import annotations

from datetime import datetime, timezone

from .provider_base import TimeProvider


class SystemTimeProvider(TimeProvider):
    def now(self) -> datetime:
        return datetime.now(tz=timezone.utc)
