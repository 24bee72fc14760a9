"""Normalization of raw classifier answers into core records.

Model output is free-form text that is supposed to hold JSON or a single
word. Everything here is tolerant: malformed numbers become 0, scores are
clamped into [0, 1], and vocabulary answers outside the closed lists fall
back to the defaults instead of leaking into stored complaints.
"""

from __future__ import annotations

import json
import re
from typing import Any, Iterable, Optional

from core.errors import ClassifierUnavailable
from core.models import CategorySimilarity, ImageSimilarity, IntentAnalysis, TextSimilarity, clamp_unit
from core.taxonomy import (
    COMPLAINT_TYPES,
    DEPARTMENTS,
    FALLBACK_CATEGORY,
    FALLBACK_DEPARTMENT,
    FALLBACK_PRIORITY,
    INTENTS,
    PRIORITIES,
)

DEFAULT_ETHICS_SCORE = 7


def _first_json_block(text: str) -> str:
    """Extract the first JSON object block from free-form text."""

    start = text.find("{")
    end = text.rfind("}")
    if start != -1 and end != -1 and end > start:
        return text[start : end + 1]
    return text


def safe_json_loads(raw_text: str) -> dict[str, Any]:
    """Parse JSON robustly, tolerating leading/trailing noise or code fences."""

    cleaned = (raw_text or "").strip()
    cleaned = re.sub(r"^```[a-zA-Z0-9_-]*", "", cleaned).strip()
    cleaned = re.sub(r"```$", "", cleaned).strip()
    try:
        payload = json.loads(cleaned)
    except json.JSONDecodeError:
        try:
            payload = json.loads(_first_json_block(cleaned))
        except json.JSONDecodeError as exc:
            raise ClassifierUnavailable("Classifier returned non-JSON output") from exc
    if not isinstance(payload, dict):
        raise ClassifierUnavailable("Classifier returned JSON that is not an object")
    return payload


def coerce_score(value: Any) -> float:
    """Any numeric-looking value as a [0, 1] score; anything else is 0."""

    if isinstance(value, bool):
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if number != number:
        return 0.0
    return clamp_unit(number)


def coerce_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if value in {"true", "True", "yes", "1", 1}:
        return True
    return False


def coerce_str(value: Any, default: str = "") -> str:
    if value is None:
        return default
    text = str(value).strip()
    return text or default


def text_similarity_from(payload: dict[str, Any]) -> TextSimilarity:
    return TextSimilarity(
        score=coerce_score(payload.get("score")),
        reasoning=coerce_str(payload.get("reasoning"), "No reasoning provided"),
        problem_match=coerce_bool(payload.get("problem_match", payload.get("problemMatch"))),
        severity_match=coerce_bool(payload.get("severity_match", payload.get("severityMatch"))),
        infrastructure_match=coerce_bool(
            payload.get("infrastructure_match", payload.get("infrastructureMatch"))
        ),
    )


def image_similarity_from(payload: dict[str, Any]) -> ImageSimilarity:
    return ImageSimilarity(
        score=coerce_score(payload.get("score")),
        reasoning=coerce_str(payload.get("reasoning"), "No reasoning provided"),
        same_location=coerce_bool(payload.get("same_location", payload.get("sameLocation"))),
        same_problem=coerce_bool(payload.get("same_problem", payload.get("sameProblem"))),
    )


def category_similarity_from(payload: dict[str, Any]) -> CategorySimilarity:
    return CategorySimilarity(
        score=coerce_score(payload.get("score")),
        same_type=coerce_bool(payload.get("same_type", payload.get("sameType"))),
        reasoning=coerce_str(payload.get("reasoning"), "No reasoning provided"),
    )


def intent_from(payload: dict[str, Any]) -> IntentAnalysis:
    """Build an IntentAnalysis; unknown intents collapse to ``other``."""

    intent = coerce_str(payload.get("intent"), "other").lower()
    if intent not in INTENTS:
        intent = "other"
    confidence = payload.get("confidence")
    return IntentAnalysis(
        intent=intent,
        context=coerce_str(payload.get("context"), "general")[:50],
        state=coerce_str(payload.get("state"), "new_conversation"),
        confidence=coerce_score(confidence) if confidence is not None else 0.8,
        language=coerce_str(payload.get("language"), "auto"),
    )


def _match_vocabulary(answer: Any, vocabulary: Iterable[str]) -> Optional[str]:
    text = coerce_str(answer).strip("\"'. ").lower()
    if not text:
        return None
    for entry in vocabulary:
        if entry.lower() == text:
            return entry
    return None


def normalize_department(answer: Any) -> str:
    return _match_vocabulary(answer, DEPARTMENTS) or FALLBACK_DEPARTMENT


def normalize_priority(answer: Any) -> str:
    return _match_vocabulary(answer, PRIORITIES) or FALLBACK_PRIORITY


def normalize_category(answer: Any) -> str:
    return _match_vocabulary(answer, COMPLAINT_TYPES) or FALLBACK_CATEGORY


def parse_ethics_score(answer: Any) -> int:
    """First integer in the answer clamped into [1, 10]; 7 when there is none."""

    match = re.search(r"\d+", coerce_str(answer))
    if match is None:
        return DEFAULT_ETHICS_SCORE
    return max(1, min(10, int(match.group(0))))
