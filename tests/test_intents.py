from __future__ import annotations

import pytest

from core.intents import keyword_intent


@pytest.mark.parametrize(
    "text, expected",
    [
        ("What is my complaint status?", "complaint_status"),
        ("There is a pothole on the road", "complaint"),
        ("Water leaking near the main signal, pipe burst", "complaint"),
        ("When does the office open", "query"),
        ("hi", "greeting"),
        ("Good morning team", "greeting"),
        ("thanks", "other"),
        ("", "other"),
    ],
)
def test_keyword_intent(text: str, expected: str) -> None:
    assert keyword_intent(text).intent == expected


def test_status_phrase_wins_over_complaint_words() -> None:
    assert keyword_intent("Any update on my complaint about the water leak?").intent == "complaint_status"
