from __future__ import annotations

import pytest

from core.reputation import ReputationTracker, blend_ethical_score
from fakes import InMemoryReporters


def test_good_message_raises_established_score() -> None:
    new_score = blend_ethical_score(7.5, 10, 10)

    assert 7.5 < new_score <= 10
    assert new_score == 8.3


def test_first_message_moves_score_quickly() -> None:
    assert blend_ethical_score(7.5, 1, 3) == 3.4
    assert blend_ethical_score(7.5, 1, 8) == 8.0


def test_missing_history_counts_as_one_message() -> None:
    assert blend_ethical_score(7.5, 0, 3) == blend_ethical_score(7.5, 1, 3)
    assert blend_ethical_score(7.5, -4, 9) == blend_ethical_score(7.5, 1, 9)


def test_veteran_score_barely_moves() -> None:
    assert blend_ethical_score(7.5, 200, 10) == pytest.approx(7.6)
    assert blend_ethical_score(7.5, 200, 1) == pytest.approx(7.3)


def test_score_is_clamped() -> None:
    assert blend_ethical_score(1.0, 0, 0) == 1.0
    assert blend_ethical_score(10.0, 5, 15) == 10.0


def test_tracker_creates_unknown_reporter_and_persists() -> None:
    reporters = InMemoryReporters()
    tracker = ReputationTracker(reporters)

    score = tracker.record_message_score("reporter-1", 8)

    assert score == 8.0
    assert reporters.get_reporter("reporter-1").ethical_score == 8.0
    assert reporters.get_reporter("reporter-1").total_messages == 1
