"""Coerce image-analysis replies into ``AnalysisResult``.

Replies arrive as structured fields, as JSON embedded in a fenced code block,
as JSON somewhere in free text, or as plain prose. Each strategy below returns
a result or ``None``; the first result wins.
"""

from __future__ import annotations

import json
import re
from typing import Any, Callable, List, Mapping, Optional, Sequence

from healthlab.core.models import AnalysisResult

FIELD_ALIASES = {
    "summary": ("summary", "overview"),
    "foods": ("foods", "recommended_foods"),
    "exercises": ("exercises", "recommended_exercises"),
    "disclaimer": ("disclaimer", "note"),
}
TEXT_KEYS = ("text", "result", "raw")

_FENCED_BLOCK = re.compile(r"```(?:json)?\s*([\s\S]*?)```", re.IGNORECASE)
_ANY_FENCE = re.compile(r"```[\s\S]*?```")
_LIST_SPLIT = re.compile(r"\n|•|-\s")
_LIST_MARKERS = "-*•"


def _pick(payload: Mapping[str, Any], concern: str) -> Any:
    for key in FIELD_ALIASES[concern]:
        value = payload.get(key)
        if value is not None:
            return value
    return None


def _optional_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    return value if isinstance(value, str) else str(value)


def to_list(value: Any) -> List[str]:
    """Coerce a list-ish field into a list of non-empty strings."""
    if isinstance(value, str):
        items = (piece.strip().lstrip(_LIST_MARKERS).strip() for piece in _LIST_SPLIT.split(value))
        return [item for item in items if item]
    if isinstance(value, Sequence) and not isinstance(value, (bytes, bytearray)):
        return [item if isinstance(item, str) else str(item) for item in value if item]
    return []


def from_fields(payload: Mapping[str, Any]) -> AnalysisResult:
    return AnalysisResult(
        summary=_optional_text(_pick(payload, "summary")),
        foods=to_list(_pick(payload, "foods")),
        exercises=to_list(_pick(payload, "exercises")),
        disclaimer=_optional_text(_pick(payload, "disclaimer")),
    )


def _reply_text(raw: Any) -> str:
    if isinstance(raw, str):
        return raw
    if isinstance(raw, Mapping):
        for key in TEXT_KEYS:
            value = raw.get(key)
            if isinstance(value, str) and value:
                return value
    return ""


def _parse_object(candidate: str) -> Optional[Mapping[str, Any]]:
    try:
        parsed = json.loads(candidate)
    except ValueError:
        return None
    return parsed if isinstance(parsed, Mapping) else None


def structured_strategy(raw: Any) -> Optional[AnalysisResult]:
    if not isinstance(raw, Mapping):
        return None
    if all(_pick(raw, concern) is None for concern in FIELD_ALIASES):
        return None
    return from_fields(raw)


def fenced_strategy(raw: Any) -> Optional[AnalysisResult]:
    text = _reply_text(raw)
    match = _FENCED_BLOCK.search(text)
    candidate = match.group(1) if match else text
    parsed = _parse_object(candidate.strip()) if candidate.strip() else None
    return from_fields(parsed) if parsed is not None else None


def brace_span_strategy(raw: Any) -> Optional[AnalysisResult]:
    text = _reply_text(raw)
    match = _FENCED_BLOCK.search(text)
    candidate = match.group(1) if match else text
    start = candidate.find("{")
    end = candidate.rfind("}")
    if start == -1 or end <= start:
        return None
    parsed = _parse_object(candidate[start : end + 1])
    return from_fields(parsed) if parsed is not None else None


def plain_text_strategy(raw: Any) -> AnalysisResult:
    plain = _ANY_FENCE.sub("", _reply_text(raw)).strip()
    return AnalysisResult(summary=plain or None)


STRATEGIES: Sequence[Callable[[Any], Optional[AnalysisResult]]] = (
    structured_strategy,
    fenced_strategy,
    brace_span_strategy,
)


def normalize_analysis(raw: Any) -> AnalysisResult:
    """Normalize a provider reply; timestamps and notes are left to the caller."""
    if isinstance(raw, AnalysisResult):
        raw = {
            "summary": raw.summary,
            "foods": raw.foods,
            "exercises": raw.exercises,
            "disclaimer": raw.disclaimer,
        }
    for strategy in STRATEGIES:
        result = strategy(raw)
        if result is not None:
            return result
    return plain_text_strategy(raw)
