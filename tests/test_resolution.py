from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from core.resolution import estimate_resolution_hours, resolution_deadline


@pytest.mark.parametrize(
    "department, priority, hours",
    [
        ("Electricity", "emergency", 3),
        ("Water Supply", "high", 12),
        ("Roads & Infrastructure", "medium", 72),
        ("Building & Planning", "low", 252),
        ("Traffic & Transport", "unknown", 24),
        ("Unknown Department", "medium", 48),
    ],
)
def test_estimate_resolution_hours(department: str, priority: str, hours: int) -> None:
    assert estimate_resolution_hours(department, priority) == hours


def test_resolution_deadline() -> None:
    start = datetime(2024, 6, 1, tzinfo=timezone.utc)

    assert resolution_deadline(start, 36) == start + timedelta(hours=36)
