"""Expected time-to-resolution lookup."""

from __future__ import annotations

import math
from datetime import datetime, timedelta

DEFAULT_BASE_HOURS = 48

DEPARTMENT_BASE_HOURS = {
    "Water Supply": 24,
    "Waste Management": 48,
    "Roads & Infrastructure": 72,
    "Health & Sanitation": 24,
    "Building & Planning": 168,
    "Electricity": 12,
    "Parks & Recreation": 48,
    "Traffic & Transport": 24,
    "Property Tax": 72,
    "General Administration": 48,
}

PRIORITY_MULTIPLIERS = {
    "emergency": 0.25,
    "high": 0.5,
    "medium": 1.0,
    "low": 1.5,
}


def estimate_resolution_hours(department: str, priority: str) -> int:
    """Base hours for the department scaled by priority, rounded up."""

    base = DEPARTMENT_BASE_HOURS.get(department, DEFAULT_BASE_HOURS)
    multiplier = PRIORITY_MULTIPLIERS.get(priority, 1.0)
    return math.ceil(base * multiplier)


def resolution_deadline(start: datetime, hours: int) -> datetime:
    return start + timedelta(hours=hours)
