"""Core inbound report pipeline.

This module is transport-agnostic. The transport hands over a parsed
NewReport and receives a ProcessingOutcome describing what happened, from
which it composes its own reply. Order of operations:
1) Per-reporter rate limit
2) Reporter bookkeeping (first contact, message counter)
3) Bot-mode check (human agents take over when disabled)
4) Location-only reports go to the lifecycle's location handling
5) Reputation update and intent analysis run side by side
6) Complaints (or photo reports) are registered, status queries listed
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from core.errors import ClassifierUnavailable, RepositoryWriteConflict, StateConflict
from core.identifiers import mask_identity
from core.intents import keyword_intent
from core.lifecycle import ComplaintLifecycle
from core.models import Complaint, IntentAnalysis, NewReport, ProcessingOutcome
from core.ports import ClassifierPort, ReporterStorePort
from core.rate_limit import SlidingWindowRateLimiter
from core.reputation import ReputationTracker

LOGGER = logging.getLogger(__name__)

OUTCOME_RATE_LIMITED = "rate_limited"
OUTCOME_HUMAN_HANDOFF = "human_handoff"
OUTCOME_LOCATION_CONFIRMED = "location_confirmed"
OUTCOME_LOCATION_ACKNOWLEDGED = "location_acknowledged"
OUTCOME_DUPLICATE = "duplicate"
OUTCOME_DRAFT_CREATED = "draft_created"
OUTCOME_STATUS = "status"
OUTCOME_IGNORED = "ignored"

COMPLAINT_INTENTS = {"complaint"}
STATUS_INTENTS = {"complaint_status"}


class ReportProcessor:
    """Orchestrates rate limiting, reputation, intent routing and the lifecycle."""

    def __init__(
        self,
        lifecycle: ComplaintLifecycle,
        classifier: ClassifierPort,
        reporters: ReporterStorePort,
        reputation: ReputationTracker,
        rate_limiter: SlidingWindowRateLimiter,
    ) -> None:
        self._lifecycle = lifecycle
        self._classifier = classifier
        self._reporters = reporters
        self._reputation = reputation
        self._rate_limiter = rate_limiter

    async def handle(self, report: NewReport) -> ProcessingOutcome:
        """Process one inbound report through the core pipeline."""

        identity = report.reporter
        if not self._rate_limiter.allow(identity):
            LOGGER.warning("Rate limit exceeded for %s", mask_identity(identity))
            return ProcessingOutcome(kind=OUTCOME_RATE_LIMITED, reporter=identity)

        reporter = self._reporters.register_message(identity)
        if not reporter.bot_mode:
            LOGGER.info("Bot mode disabled for %s; leaving report to staff", mask_identity(identity))
            return ProcessingOutcome(kind=OUTCOME_HUMAN_HANDOFF, reporter=identity)

        # A bare location is the follow-up step of an earlier draft.
        if report.location is not None and not report.text.strip() and not report.image_ref:
            outcome = await self._lifecycle.submit_location(
                identity,
                report.location.latitude,
                report.location.longitude,
                address=report.location.address,
                name=report.location.name,
            )
            kind = OUTCOME_LOCATION_CONFIRMED if outcome.confirmed else OUTCOME_LOCATION_ACKNOWLEDGED
            return ProcessingOutcome(kind=kind, reporter=identity, location=outcome)

        intent = IntentAnalysis(intent="complaint") if not report.text.strip() else None
        if intent is None:
            _, intent = await asyncio.gather(
                self._update_reputation(identity, report.text),
                self._analyze_intent(report.text),
            )

        if intent.intent in STATUS_INTENTS:
            complaints = tuple(self._lifecycle.reporter_complaints(identity))
            return ProcessingOutcome(kind=OUTCOME_STATUS, reporter=identity, intent=intent, complaints=complaints)

        # Photos are only ever sent to report a problem.
        if intent.intent in COMPLAINT_INTENTS or report.image_ref:
            registration = await self._lifecycle.register_report(report, intent)
            kind = OUTCOME_DUPLICATE if registration.is_duplicate else OUTCOME_DRAFT_CREATED
            return ProcessingOutcome(kind=kind, reporter=identity, registration=registration, intent=intent)

        LOGGER.debug("Intent %s for %s is not handled by the core", intent.intent, mask_identity(identity))
        return ProcessingOutcome(kind=OUTCOME_IGNORED, reporter=identity, intent=intent)

    def cancel(self, identity: str, complaint_id: str) -> Complaint:
        """Cancel one of the reporter's own draft complaints."""

        complaint = self._lifecycle.get_complaint(complaint_id)
        if complaint.created_by != identity:
            raise StateConflict(f"Complaint {complaint_id} was not filed by this reporter")
        return self._lifecycle.cancel(complaint_id)

    async def _analyze_intent(self, text: str) -> IntentAnalysis:
        try:
            return await self._classifier.analyze_intent(text)
        except ClassifierUnavailable as exc:
            LOGGER.warning("Intent analysis failed, falling back to keywords: %s", exc)
            return keyword_intent(text)

    async def _update_reputation(self, identity: str, text: str) -> Optional[float]:
        # Side channel: a failure here must never affect the report itself.
        try:
            message_score = await self._classifier.score_ethics(text)
        except ClassifierUnavailable as exc:
            LOGGER.warning("Ethics scoring failed for %s: %s", mask_identity(identity), exc)
            return None
        try:
            return self._reputation.record_message_score(identity, message_score)
        except RepositoryWriteConflict as exc:
            LOGGER.warning("Could not store ethical score for %s: %s", mask_identity(identity), exc)
            return None
