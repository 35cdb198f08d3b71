"""Top-level package for the single-pair pivot/AI trading bot."""

__all__ = [
    "config",
    "data",
    "indicators",
    "ai",
    "strategy",
    "execution",
    "portfolio",
    "scheduler",
    "monitoring",
]
