from __future__ import annotations

import json
import os
import tomllib
from pathlib import Path
from typing import Any, Callable, Mapping

import yaml

from crypto_trader.config.models import Config

CONFIG_ENV_PREFIX = "TRADER_"

# env suffix -> (section, field, parser)
_ENV_FIELDS: dict[str, tuple[str, str, Callable[[str], Any]]] = {
    "SYMBOL": ("data", "symbol", str),
    "MAX_TRADES_PER_DAY": ("risk", "max_trades_per_day", int),
    "POSITION_FRACTION": ("risk", "position_fraction", float),
    "STATE_FILE": ("risk", "state_file", str),
    "OLLAMA_URL": ("ai", "base_url", str),
    "OLLAMA_MODEL": ("ai", "model", str),
    "AI_ENABLED": ("ai", "enabled", lambda raw: raw.strip().lower() in {"1", "true", "yes"}),
    "REPORT_PATH": ("scheduler", "report_path", str),
    "INITIAL_BALANCE": ("exchange", "initial_balance", float),
}


def load_config(path: str | Path | None = None, env_prefix: str = CONFIG_ENV_PREFIX) -> Config:
    payload: dict[str, Any] = {}
    if path:
        payload = dict(_read_file(Path(path)))
    payload = _apply_env_overrides(payload, env_prefix=env_prefix)
    return Config.model_validate(payload)


def _read_file(path: Path) -> Mapping[str, Any]:
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")
    suffix = path.suffix.lower()
    if suffix in {".yaml", ".yml"}:
        return yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    if suffix in {".toml", ".tml"}:
        with path.open("rb") as fh:
            return tomllib.load(fh)
    if suffix == ".json":
        with path.open("r", encoding="utf-8") as fh:
            return json.load(fh)
    raise ValueError(f"Unsupported config format: {path.suffix}")


def _apply_env_overrides(payload: dict[str, Any], env_prefix: str) -> dict[str, Any]:
    merged = {key: dict(value) if isinstance(value, Mapping) else value for key, value in payload.items()}
    for suffix, (section, field, parse) in _ENV_FIELDS.items():
        raw = os.getenv(f"{env_prefix}{suffix}")
        if raw is None:
            continue
        try:
            value = parse(raw)
        except ValueError:
            continue
        if not isinstance(merged.get(section), dict):
            merged[section] = {}
        merged[section][field] = value
    return merged
