"""Keyword intent heuristic used when the classifier cannot answer."""

from __future__ import annotations

import re
from typing import Iterable

from core.models import IntentAnalysis

_STATUS_KEYWORDS = (
    "my complaint",
    "complaint status",
    "track complaint",
    "check complaint",
    "ticket status",
    "ticket id",
    "complaint list",
    "check status",
    "track my issue",
    "complaint update",
)
_COMPLAINT_KEYWORDS = (
    "problem",
    "issue",
    "complaint",
    "broken",
    "not working",
    "dirty",
    "garbage",
    "water",
    "road",
    "street light",
    "drainage",
    "sewage",
    "pothole",
    "leak",
)
_QUERY_KEYWORDS = ("how", "what", "when", "where", "information", "office", "timing", "procedure")
_GREETING_WORDS = ("hello", "hi", "hey")
_GREETING_PHRASES = ("good morning", "good evening")


def keyword_intent(text: str) -> IntentAnalysis:
    """Guess the intent of a message from keywords alone.

    Status phrases win over complaint words so "my complaint about water"
    is a status query.
    """

    lowered = (text or "").lower()
    if _contains_any(lowered, _STATUS_KEYWORDS):
        return IntentAnalysis(intent="complaint_status", context="status_inquiry", state="status_inquiry", confidence=0.9)
    if _contains_any(lowered, _COMPLAINT_KEYWORDS):
        return IntentAnalysis(intent="complaint", context="municipal_issue", confidence=0.7)
    words = set(re.findall(r"[a-z]+", lowered))
    if words.intersection(_QUERY_KEYWORDS):
        return IntentAnalysis(intent="query", context="information_request", state="information_seeking", confidence=0.7)
    if words.intersection(_GREETING_WORDS) or _contains_any(lowered, _GREETING_PHRASES):
        return IntentAnalysis(intent="greeting", context="welcome", confidence=0.8)
    return IntentAnalysis()


def _contains_any(text: str, keywords: Iterable[str]) -> bool:
    return any(keyword in text for keyword in keywords)
