"""Duplicate detection across open complaints (core domain).

Five analyzers each produce a score in [0, 1]:
- text: classifier comparison of the two descriptions
- location: haversine distance tiers, boosted by address overlap
- image: classifier comparison, only when both sides carry an image
- recency: age of the candidate complaint
- category: classifier comparison of the issue types

An analyzer never raises. Missing input or a classifier failure yields a
zero score with a reason, and the weighted aggregate is computed from
whatever signal is left.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from core.config import SimilarityConfig, SimilarityWeights
from core.errors import ClassifierUnavailable
from core.geo import address_similarity, distance_between
from core.identifiers import mask_identity
from core.models import (
    CategorySimilarity,
    Complaint,
    DuplicateCheckResult,
    ImageSimilarity,
    Location,
    LocationProximity,
    NewReport,
    RecencyRelevance,
    SimilarityBreakdown,
    SimilarityVerdict,
    TextSimilarity,
    clamp_unit,
)
from core.ports import ClassifierPort, ComplaintRepositoryPort

LOGGER = logging.getLogger(__name__)

PROXIMITY_KM = 0.2
ADDRESS_BOOST_THRESHOLD = 0.8
ADDRESS_BOOST = 0.2

# (max distance km, score, label)
_DISTANCE_TIERS = (
    (0.05, 0.95, "Very close proximity"),
    (0.1, 0.85, "Close proximity"),
    (0.2, 0.7, "Nearby"),
    (0.5, 0.4, "Same area"),
    (1.0, 0.2, "Same locality"),
)

# (max age hours, score, label)
_RECENCY_TIERS = (
    (24, 1.0, "Same day complaint"),
    (72, 0.8, "Within 3 days"),
    (168, 0.6, "Within 1 week"),
    (720, 0.3, "Within 1 month"),
)
_OLD_RECENCY_SCORE = 0.1


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def analyze_location(new_location: Optional[Location], existing_location: Optional[Location]) -> LocationProximity:
    """Score how close two reports are on the ground."""

    if new_location is None or existing_location is None:
        return LocationProximity(reasoning="One or both locations missing")

    distance = distance_between(new_location, existing_location)
    overlap = address_similarity(new_location.address, existing_location.address)

    score = 0.0
    reasoning = f"Different areas: {distance:.2f}km apart"
    for max_km, tier_score, label in _DISTANCE_TIERS:
        if distance <= max_km:
            score = tier_score
            if max_km < 1.0:
                reasoning = f"{label}: {round(distance * 1000)}m apart"
            else:
                reasoning = f"{label}: {distance:.2f}km apart"
            break

    if overlap > ADDRESS_BOOST_THRESHOLD:
        score = min(1.0, score + ADDRESS_BOOST)
        reasoning += " + similar addresses"

    return LocationProximity(
        score=clamp_unit(score),
        reasoning=reasoning,
        distance_km=distance,
        within_proximity=distance <= PROXIMITY_KM,
        address_similarity=overlap,
    )


def analyze_recency(created_at: Optional[datetime], now: datetime) -> RecencyRelevance:
    """Score how recently the candidate complaint was filed."""

    if created_at is None:
        return RecencyRelevance(reasoning="Creation time missing")
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)

    hours = max(0.0, (now - created_at).total_seconds() / 3600)
    for max_hours, score, label in _RECENCY_TIERS:
        if hours <= max_hours:
            return RecencyRelevance(score=score, reasoning=label, hours_since=hours)
    return RecencyRelevance(score=_OLD_RECENCY_SCORE, reasoning="Old complaint", hours_since=hours)


def weighted_score(breakdown: SimilarityBreakdown, weights: SimilarityWeights) -> float:
    """Weighted sum of the five analyzer scores."""

    total = (
        breakdown.text.score * weights.text
        + breakdown.location.score * weights.location
        + breakdown.image.score * weights.image
        + breakdown.recency.score * weights.recency
        + breakdown.category.score * weights.category
    )
    return clamp_unit(total)


def decide_duplicate_status(
    score: float,
    text: TextSimilarity,
    location: LocationProximity,
    image: ImageSimilarity,
) -> bool:
    """Apply the override rules in order; the first that holds wins."""

    if score >= 0.85:
        return True
    if score >= 0.75 and location.within_proximity:
        return True
    if text.score >= 0.85 and location.score >= 0.70:
        return True
    if location.score >= 0.90 and text.score >= 0.60:
        return True
    if image.score >= 0.80 and location.score >= 0.60:
        return True
    return score >= 0.80


def compute_confidence(
    score: float,
    text: TextSimilarity,
    location: LocationProximity,
    image: ImageSimilarity,
) -> float:
    """The aggregate score, boosted when several strong signals agree."""

    strong_indicators = sum((text.score >= 0.8, location.within_proximity, image.score >= 0.7))
    if strong_indicators >= 2:
        return min(1.0, score + 0.1)
    return clamp_unit(score)


def build_explanation(breakdown: SimilarityBreakdown, score: float) -> str:
    """Human-readable summary of one verdict."""

    lines = [
        f"Similarity analysis (score: {score * 100:.1f}%)",
        f"Text: {breakdown.text.score * 100:.1f}% - {breakdown.text.reasoning}",
        f"Location: {breakdown.location.score * 100:.1f}% - {breakdown.location.reasoning}",
    ]
    if breakdown.image.score > 0:
        lines.append(f"Images: {breakdown.image.score * 100:.1f}% - {breakdown.image.reasoning}")
    lines.append(f"Timing: {breakdown.recency.score * 100:.1f}% - {breakdown.recency.reasoning}")
    lines.append(
        f"Type: {breakdown.category.score * 100:.1f}% - same category: "
        f"{'yes' if breakdown.category.same_type else 'no'}"
    )
    return "\n".join(lines)


@dataclass(frozen=True)
class _CandidateScore:
    complaint: Complaint
    verdict: Optional[SimilarityVerdict]
    skipped: bool = False


class SimilarityEngine:
    """Combines the five analyzers into duplicate verdicts."""

    def __init__(
        self,
        classifier: ClassifierPort,
        repository: ComplaintRepositoryPort,
        config: Optional[SimilarityConfig] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._classifier = classifier
        self._repository = repository
        self._config = config or SimilarityConfig()
        self._clock = clock

    async def evaluate(
        self,
        report: NewReport,
        candidate: Complaint,
        now: Optional[datetime] = None,
    ) -> SimilarityVerdict:
        """Compare one new report against one candidate complaint."""

        now = now or self._clock()
        text, image, category = await asyncio.gather(
            self._analyze_text(report.text, candidate.description),
            self._analyze_image(report.image_ref, candidate.image_ref),
            self._analyze_category(report.text, candidate.description),
        )
        breakdown = SimilarityBreakdown(
            text=text,
            location=analyze_location(report.location, candidate.location),
            image=image,
            recency=analyze_recency(candidate.created_at, now),
            category=category,
        )

        weights = self._config.weights
        both_images = bool(report.image_ref and candidate.image_ref)
        if self._config.redistribute_missing_image_weight and not both_images:
            weights = weights.without_image()

        score = weighted_score(breakdown, weights)
        return SimilarityVerdict(
            score=score,
            is_duplicate=decide_duplicate_status(score, text, breakdown.location, image),
            confidence=compute_confidence(score, text, breakdown.location, image),
            breakdown=breakdown,
            weights=weights.as_dict(),
            explanation=build_explanation(breakdown, score),
        )

    async def find_duplicate(self, report: NewReport) -> DuplicateCheckResult:
        """Scan the open candidate pool for the best duplicate match.

        Never raises: any unexpected failure is reported as "not duplicate" so
        complaint registration is never blocked by the detector.
        """

        try:
            return await self._find_duplicate(report)
        except Exception as exc:
            LOGGER.exception("Duplicate check failed for %s; treating report as unique", mask_identity(report.reporter))
            return DuplicateCheckResult(is_duplicate=False, error=str(exc) or type(exc).__name__)

    async def _find_duplicate(self, report: NewReport) -> DuplicateCheckResult:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._config.latency_budget_seconds
        now = self._clock()

        candidates = self._repository.query_candidate_complaints(
            status_in=self._config.open_statuses,
            created_after=now - timedelta(days=self._config.candidate_window_days),
            limit=self._config.candidate_limit,
            exclude_created_by=report.reporter,
        )
        # Own complaints never count, whatever the store returns.
        candidates = [c for c in candidates if c.created_by != report.reporter][: self._config.candidate_limit]
        if not candidates:
            LOGGER.info("No open complaints to compare for %s", mask_identity(report.reporter))
            return DuplicateCheckResult(is_duplicate=False)

        department = await self._report_department(report, max(0.0, deadline - loop.time()))

        semaphore = asyncio.Semaphore(self._config.max_parallel)
        tasks = [
            asyncio.ensure_future(self._score_candidate(report, candidate, department, semaphore, now))
            for candidate in candidates
        ]
        done, pending = await asyncio.wait(tasks, timeout=max(0.0, deadline - loop.time()))
        timed_out = bool(pending)
        if pending:
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            LOGGER.warning(
                "Duplicate check hit its %.1fs budget with %s of %s candidates unscored",
                self._config.latency_budget_seconds,
                len(pending),
                len(tasks),
            )

        # Walk in candidate order (newest first) so ties go to the newest complaint.
        scored = [task.result() for task in tasks if task in done and task.result() is not None]
        evaluated = [item for item in scored if not item.skipped and item.verdict is not None]
        skipped = sum(1 for item in scored if item.skipped)

        highest_score = max((item.verdict.score for item in evaluated), default=0.0)
        best: Optional[_CandidateScore] = None
        for item in evaluated:
            if item.verdict.is_duplicate and (best is None or item.verdict.score > best.verdict.score):
                best = item

        if best is None:
            LOGGER.info(
                "No duplicate for %s (checked=%s, skipped=%s, highest=%.3f)",
                mask_identity(report.reporter),
                len(evaluated),
                skipped,
                highest_score,
            )
            return DuplicateCheckResult(
                is_duplicate=False,
                highest_score=highest_score,
                candidates_checked=len(evaluated),
                candidates_skipped=skipped,
                timed_out=timed_out,
            )

        LOGGER.info(
            "Duplicate of %s detected for %s (score=%.3f, confidence=%.3f)",
            best.complaint.id,
            mask_identity(report.reporter),
            best.verdict.score,
            best.verdict.confidence,
        )
        return DuplicateCheckResult(
            is_duplicate=True,
            complaint=best.complaint,
            verdict=best.verdict,
            highest_score=highest_score,
            candidates_checked=len(evaluated),
            candidates_skipped=skipped,
            timed_out=timed_out,
        )

    async def _report_department(self, report: NewReport, timeout: float) -> Optional[str]:
        """Department of the new report, or None when it cannot be determined in time."""

        if not report.text.strip():
            return None
        try:
            return await asyncio.wait_for(self._classifier.categorize_department(report.text), timeout=timeout)
        except (ClassifierUnavailable, asyncio.TimeoutError) as exc:
            # Without a department we cannot short-circuit; every candidate is compared.
            LOGGER.warning("Department categorization failed, comparing every candidate: %s", exc)
            return None

    def should_skip(self, report: NewReport, candidate: Complaint, department: Optional[str]) -> bool:
        """Cheap pre-filter: different department and not within the short-circuit radius."""

        if department is None or candidate.department == department:
            return False
        return distance_between(report.location, candidate.location) > self._config.short_circuit_km

    async def _score_candidate(
        self,
        report: NewReport,
        candidate: Complaint,
        department: Optional[str],
        semaphore: asyncio.Semaphore,
        now: datetime,
    ) -> Optional[_CandidateScore]:
        if self.should_skip(report, candidate, department):
            LOGGER.debug(
                "Skipping %s: department %s differs from %s and locations are not close",
                candidate.id,
                candidate.department,
                department,
            )
            return _CandidateScore(complaint=candidate, verdict=None, skipped=True)
        async with semaphore:
            try:
                verdict = await self.evaluate(report, candidate, now)
            except Exception:
                LOGGER.warning("Similarity evaluation failed for %s, skipping it", candidate.id, exc_info=True)
                return None
        LOGGER.debug(
            "Candidate %s scored %.3f (duplicate=%s)",
            candidate.id,
            verdict.score,
            verdict.is_duplicate,
        )
        return _CandidateScore(complaint=candidate, verdict=verdict)

    async def _analyze_text(self, new_text: str, existing_text: str) -> TextSimilarity:
        if not new_text.strip() or not existing_text.strip():
            return TextSimilarity(reasoning="One or both descriptions missing")
        try:
            result = await self._classifier.compare_text(new_text, existing_text)
        except ClassifierUnavailable as exc:
            LOGGER.warning("Text comparison failed: %s", exc)
            return TextSimilarity(reasoning="Text analysis failed")
        return replace(result, score=clamp_unit(result.score))

    async def _analyze_image(self, new_ref: Optional[str], existing_ref: Optional[str]) -> ImageSimilarity:
        if not new_ref or not existing_ref:
            return ImageSimilarity(reasoning="One or both images missing")
        try:
            result = await self._classifier.compare_images(new_ref, existing_ref)
        except ClassifierUnavailable as exc:
            LOGGER.warning("Image comparison failed: %s", exc)
            return ImageSimilarity(reasoning="Image analysis failed")
        return replace(result, score=clamp_unit(result.score))

    async def _analyze_category(self, new_text: str, existing_text: str) -> CategorySimilarity:
        if not new_text.strip() or not existing_text.strip():
            return CategorySimilarity(reasoning="One or both descriptions missing")
        try:
            result = await self._classifier.compare_category(new_text, existing_text)
        except ClassifierUnavailable as exc:
            LOGGER.warning("Category comparison failed: %s", exc)
            return CategorySimilarity(reasoning="Type analysis failed")
        return replace(result, score=clamp_unit(result.score))
