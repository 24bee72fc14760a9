"""Core configuration dataclasses.

We keep config parsing outside the core, but these dataclasses define the
shape the core expects so adapters and app layers can build safely.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Tuple

from core.taxonomy import FALLBACK_CATEGORY, FALLBACK_DEPARTMENT, FALLBACK_PRIORITY


@dataclass(frozen=True)
class SimilarityWeights:
    """Relative weight of each similarity signal in the aggregate score."""

    text: float = 0.35
    location: float = 0.30
    image: float = 0.20
    recency: float = 0.10
    category: float = 0.05

    def __post_init__(self) -> None:
        values = self.as_dict().values()
        if any(value < 0 for value in values):
            raise ValueError("Similarity weights must be non-negative")
        if not math.isclose(sum(values), 1.0, abs_tol=1e-9):
            raise ValueError(f"Similarity weights must sum to 1.0, got {sum(values)}")

    def as_dict(self) -> dict[str, float]:
        return {
            "text": self.text,
            "location": self.location,
            "image": self.image,
            "recency": self.recency,
            "category": self.category,
        }

    def without_image(self) -> "SimilarityWeights":
        """Spread the image weight proportionally over the other four signals."""

        remaining = 1.0 - self.image
        if remaining <= 0:
            raise ValueError("Cannot redistribute image weight when it is the only signal")
        scale = 1.0 / remaining
        return SimilarityWeights(
            text=self.text * scale,
            location=self.location * scale,
            image=0.0,
            recency=self.recency * scale,
            # Absorb float drift so the four weights still sum to exactly 1.0.
            category=1.0 - (self.text + self.location + self.recency) * scale,
        )


@dataclass(frozen=True)
class SimilarityConfig:
    """Duplicate detection settings for the similarity engine."""

    weights: SimilarityWeights = field(default_factory=SimilarityWeights)
    open_statuses: Tuple[str, ...] = ("active", "in_progress", "open")
    candidate_window_days: int = 30
    candidate_limit: int = 50
    short_circuit_km: float = 0.2
    max_parallel: int = 5
    latency_budget_seconds: float = 8.0
    redistribute_missing_image_weight: bool = True


@dataclass(frozen=True)
class LifecycleConfig:
    """Complaint lifecycle settings."""

    fallback_department: str = FALLBACK_DEPARTMENT
    fallback_priority: str = FALLBACK_PRIORITY
    fallback_category: str = FALLBACK_CATEGORY
    complaint_id_prefix: str = "CMP"
    ticket_id_length: int = 8
    ticket_creation_attempts: int = 3
    status_listing_limit: int = 25


@dataclass(frozen=True)
class RateLimitConfig:
    """Per-reporter sliding window limits for inbound reports."""

    window_seconds: float = 60.0
    max_messages: int = 20
