"""Field-by-field parsing of advisor responses.

Both the labelled-line format requested by the prompt and a JSON object are
accepted. Every field that is missing or invalid takes the value of the
deterministic fallback recommendation; a response in which no field can be
recognised at all is treated as unparsable.
"""

from __future__ import annotations

import json
import re
from dataclasses import replace
from typing import Any, Dict, Optional

from crypto_trader.ai.models import AdvisorAction, AdvisorRecommendation, RecommendationSource
from crypto_trader.data.models import PivotLevels

_LABELS = {
    "action": r"RECOMMENDATION|ACTION",
    "confidence": r"CONFIDENCE",
    "stop_loss": r"STOP[ _]LOSS",
    "take_profit": r"TAKE[ _]PROFIT",
    "buy_target": r"BUY[ _]TARGET",
    "sell_target": r"SELL[ _]TARGET",
    "reasoning": r"REASONING",
}

_LEVEL_LABELS = {
    "s2": r"STRONG[ _]SUPPORT",
    "s1": r"(?<!STRONG.)SUPPORT",
    "r2": r"STRONG[ _]RESISTANCE",
    "r1": r"(?<!STRONG.)RESISTANCE",
    "pp": r"PIVOT(?:[ _]POINT)?",
}

_JSON_KEYS = {
    "recommendation": "action",
    "action": "action",
    "confidence": "confidence",
    "stop_loss": "stop_loss",
    "take_profit": "take_profit",
    "buy_target": "buy_target",
    "sell_target": "sell_target",
    "reasoning": "reasoning",
}

_LEVEL_KEYS = {
    "strong_support": "s2",
    "support": "s1",
    "strong_resistance": "r2",
    "resistance": "r1",
    "pivot": "pp",
    "pivot_point": "pp",
}

_NUMBER = re.compile(r"-?\d[\d,]*(?:\.\d+)?|-?\.\d+")

_PRICE_FIELDS = ("stop_loss", "take_profit", "buy_target", "sell_target")

_LEVEL_NAMES = ("pp", "r1", "r2", "s1", "s2")


def parse_response(text: str, fallback: AdvisorRecommendation) -> Optional[AdvisorRecommendation]:
    raw_fields = _extract_json(text) or _extract_labelled(text)
    updates: Dict[str, Any] = {}

    action = parse_action(raw_fields.get("action"))
    if action is not None:
        updates["action"] = action

    confidence = parse_number(raw_fields.get("confidence"))
    if confidence is not None:
        updates["confidence"] = min(max(confidence, 0.0), 100.0)

    for name in _PRICE_FIELDS:
        price = parse_number(raw_fields.get(name))
        if price is not None and price > 0:
            updates[name] = price

    reasoning = raw_fields.get("reasoning")
    if isinstance(reasoning, str) and reasoning.strip():
        updates["reasoning"] = reasoning.strip()

    levels = _parse_levels(raw_fields, fallback.levels)
    if levels is not None:
        updates["levels"] = levels

    if not updates:
        return None
    return replace(fallback, source=RecommendationSource.AI, **updates)


def parse_action(raw: Any) -> Optional[AdvisorAction]:
    if raw is None:
        return None
    token = re.sub(r"[^A-Z_ ]", "", str(raw).upper()).strip().replace(" ", "_")
    for action in (
        AdvisorAction.STRONG_BUY,
        AdvisorAction.STRONG_SELL,
        AdvisorAction.BUY,
        AdvisorAction.SELL,
        AdvisorAction.HOLD,
    ):
        if token.startswith(action.value):
            return action
    return None


def parse_number(raw: Any) -> Optional[float]:
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        return float(raw)
    match = _NUMBER.search(str(raw))
    if not match:
        return None
    try:
        return float(match.group(0).replace(",", ""))
    except ValueError:
        return None


def _parse_levels(raw_fields: Dict[str, Any], base: Optional[PivotLevels]) -> Optional[PivotLevels]:
    found: Dict[str, float] = {}
    for name in _LEVEL_NAMES:
        price = parse_number(raw_fields.get(name))
        if price is not None and price > 0:
            found[name] = price
    if not found:
        return None
    if base is None:
        # nothing to fill the gaps from
        return PivotLevels(**found) if len(found) == len(_LEVEL_NAMES) else None
    return replace(base, **found)


def _extract_labelled(text: str) -> Dict[str, str]:
    fields: Dict[str, str] = {}
    for name, label in {**_LABELS, **_LEVEL_LABELS}.items():
        match = re.search(rf"\b(?:{label})\b\s*[:=]\s*(.+)", text, flags=re.IGNORECASE)
        if match:
            fields[name] = match.group(1).strip()
    return fields


def _extract_json(text: str) -> Dict[str, Any]:
    start, end = text.find("{"), text.rfind("}")
    if start == -1 or end <= start:
        return {}
    try:
        payload = json.loads(text[start : end + 1])
    except json.JSONDecodeError:
        return {}
    if not isinstance(payload, dict):
        return {}
    fields: Dict[str, Any] = {}
    for key, value in payload.items():
        key = str(key).strip().lower()
        name = _JSON_KEYS.get(key) or _LEVEL_KEYS.get(key)
        if name and name not in fields:
            fields[name] = value
    return fields
