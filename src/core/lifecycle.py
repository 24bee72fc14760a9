"""Complaint lifecycle state machine.

draft -> active (location received, ticket issued) or draft -> cancelled.
Both targets are terminal for these transitions; anything attempted on a
complaint that already left ``draft`` is rejected with StateConflict.

Activation and ticket creation form one logical unit. When the ticket
insert keeps failing after the complaint was activated, the complaint is
parked on a pending ``ticket_creation`` step (still 60%) under its reserved
ticket id, and ``reconcile_pending_tickets`` issues the ticket later. The
same pass links tickets whose row landed but whose complaint update did not.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import datetime, timezone
from typing import AsyncIterator, Callable, Optional

from core.config import LifecycleConfig
from core.errors import (
    DuplicateIdentifier,
    GeocoderUnavailable,
    InvalidLocation,
    NotFound,
    RepositoryWriteConflict,
    StateConflict,
)
from core.followup import FollowUpRegistry
from core.geo import validate_coordinates
from core.identifiers import generate_complaint_id, generate_ticket_id, mask_identity
from core.models import (
    COMPLAINT_ACTIVE,
    COMPLAINT_CANCELLED,
    COMPLAINT_DRAFT,
    PERCENT_CONFIRMED,
    PERCENT_RESOLVED,
    PERCENT_TICKETED,
    TICKET_CLOSED,
    TICKET_OPEN,
    TICKET_RESOLVED,
    TICKET_STATUS_ORDER,
    Complaint,
    ConfirmationResult,
    IntentAnalysis,
    Location,
    LocationOutcome,
    NewReport,
    RegistrationResult,
    Ticket,
    TicketUpdate,
    Workflow,
)
from core.ports import ClassifierPort, ComplaintRepositoryPort, GeocoderPort
from core.resolution import estimate_resolution_hours, resolution_deadline
from core.similarity import SimilarityEngine

LOGGER = logging.getLogger(__name__)

STEP_TICKET_CREATION = "ticket_creation"
PHOTO_ONLY_DESCRIPTION = "(photo report without description)"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class _ReporterLocks:
    """One asyncio.Lock per reporter, dropped once nobody holds or awaits it."""

    def __init__(self) -> None:
        self._entries: dict[str, list] = {}

    @asynccontextmanager
    async def hold(self, identity: str) -> AsyncIterator[None]:
        entry = self._entries.get(identity)
        if entry is None:
            entry = self._entries[identity] = [asyncio.Lock(), 0]
        entry[1] += 1
        try:
            async with entry[0]:
                yield
        finally:
            entry[1] -= 1
            if entry[1] == 0:
                del self._entries[identity]

    def __len__(self) -> int:
        return len(self._entries)


class ComplaintLifecycle:
    """Sole owner of Complaint and Ticket state transitions."""

    def __init__(
        self,
        classifier: ClassifierPort,
        repository: ComplaintRepositoryPort,
        geocoder: GeocoderPort,
        similarity: SimilarityEngine,
        followups: FollowUpRegistry,
        config: Optional[LifecycleConfig] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._classifier = classifier
        self._repository = repository
        self._geocoder = geocoder
        self._similarity = similarity
        self._followups = followups
        self._config = config or LifecycleConfig()
        self._clock = clock
        self._locks = _ReporterLocks()

    async def register_report(self, report: NewReport, intent: Optional[IntentAnalysis] = None) -> RegistrationResult:
        """Join an existing complaint when the report is a duplicate, otherwise open a draft."""

        duplicate = await self._similarity.find_duplicate(report)
        if duplicate.is_duplicate and duplicate.complaint is not None:
            self._followups.attach(duplicate.complaint, report.reporter)
            complaint = self._repository.get_complaint(duplicate.complaint.id) or duplicate.complaint
            return RegistrationResult(complaint=complaint, duplicate=duplicate)

        complaint = await self.create_draft(report, intent)
        return RegistrationResult(complaint=complaint, duplicate=duplicate)

    async def create_draft(self, report: NewReport, intent: Optional[IntentAnalysis] = None) -> Complaint:
        """Persist a new draft complaint awaiting its location."""

        description = report.text.strip() or PHOTO_ONLY_DESCRIPTION
        department, priority, category = await self._classify(description)
        now = self._clock()
        complaint = Complaint(
            id=generate_complaint_id(self._config.complaint_id_prefix, now),
            description=description,
            department=department,
            priority=priority,
            category=category,
            created_by=report.reporter,
            status=COMPLAINT_DRAFT,
            created_at=now,
            updated_at=now,
            workflow=Workflow.start(now),
            estimated_resolution_hours=estimate_resolution_hours(department, priority),
            follow_up_users=frozenset({report.reporter}),
            image_ref=report.image_ref,
            requires_location_sharing=True,
            intent=intent.intent if intent else None,
        )
        self._repository.put_complaint(complaint)
        LOGGER.info(
            "Draft complaint %s created for %s (%s / %s / %s, ~%sh)",
            complaint.id,
            mask_identity(report.reporter),
            department,
            priority,
            category,
            complaint.estimated_resolution_hours,
        )
        return complaint

    def get_complaint(self, complaint_id: str) -> Complaint:
        """Return a complaint or raise NotFound."""

        return self._require_complaint(complaint_id)

    def pending_complaint(self, identity: str) -> Optional[Complaint]:
        """The reporter's most recent draft that still waits for a location."""

        return self._repository.find_pending_complaint(identity)

    async def submit_location(
        self,
        identity: str,
        latitude: Optional[float],
        longitude: Optional[float],
        address: Optional[str] = None,
        name: Optional[str] = None,
    ) -> LocationOutcome:
        """Confirm the reporter's pending draft, or acknowledge a standalone location."""

        try:
            validate_coordinates(latitude, longitude)
        except InvalidLocation as exc:
            LOGGER.info("Location from %s treated as acknowledgment: %s", mask_identity(identity), exc)
            return LocationOutcome(confirmed=False, reason=str(exc))

        latitude, longitude = float(latitude), float(longitude)
        resolved_address = address or await self._resolve_address(latitude, longitude)
        location = Location(latitude=latitude, longitude=longitude, address=resolved_address, name=name)

        async with self._locks.hold(identity):
            pending = self.pending_complaint(identity)
            if pending is None:
                LOGGER.info("No pending complaint for %s; location acknowledged", mask_identity(identity))
                return LocationOutcome(confirmed=False, address=resolved_address, reason="no pending complaint")
            try:
                confirmation = await self.confirm(pending.id, location)
            except StateConflict as exc:
                # Another worker confirmed it between our lookup and the write.
                LOGGER.info("Pending complaint %s was confirmed elsewhere: %s", pending.id, exc)
                return LocationOutcome(confirmed=False, address=resolved_address, reason=str(exc))

        return LocationOutcome(confirmed=True, address=resolved_address, confirmation=confirmation)

    async def confirm(self, complaint_id: str, location: Location) -> ConfirmationResult:
        """Activate a draft complaint with its location and issue the linked ticket."""

        complaint = self._require_complaint(complaint_id)
        self._require_draft(complaint, "confirm")
        if not location.address:
            location = replace(location, address=await self._resolve_address(location.latitude, location.longitude))

        now = self._clock()
        activated = replace(
            complaint,
            status=COMPLAINT_ACTIVE,
            location=location,
            requires_location_sharing=False,
            ticket_id=generate_ticket_id(self._config.ticket_id_length, now),
            confirmed_at=now,
            updated_at=now,
            workflow=complaint.workflow.advance("location_confirmed", PERCENT_CONFIRMED, now),
        )
        try:
            self._repository.update_complaint(
                activated,
                expected_status=COMPLAINT_DRAFT,
                expected_location_pending=complaint.requires_location_sharing,
            )
        except RepositoryWriteConflict:
            self._raise_if_left_draft(complaint_id, "confirm")
            raise

        LOGGER.info("Complaint %s confirmed at %s", complaint_id, location.address)
        return self._issue_ticket(activated, now)

    def cancel(self, complaint_id: str) -> Complaint:
        """Cancel a complaint that is still a draft."""

        complaint = self._require_complaint(complaint_id)
        self._require_draft(complaint, "cancel")

        now = self._clock()
        cancelled = replace(
            complaint,
            status=COMPLAINT_CANCELLED,
            requires_location_sharing=False,
            cancelled_at=now,
            updated_at=now,
            workflow=complaint.workflow.cancel(now),
        )
        try:
            self._repository.update_complaint(cancelled, expected_status=COMPLAINT_DRAFT)
        except RepositoryWriteConflict:
            self._raise_if_left_draft(complaint_id, "cancel")
            raise
        LOGGER.info("Complaint %s cancelled", complaint_id)
        return cancelled

    def reporter_complaints(self, identity: str) -> list[Complaint]:
        """Non-cancelled complaints of a reporter, newest first."""

        complaints = self._repository.list_reporter_complaints(identity, self._config.status_listing_limit)
        return [c for c in complaints if c.status != COMPLAINT_CANCELLED]

    def reconcile_pending_tickets(self) -> list[Ticket]:
        """Finish ticketing for active complaints left behind by a failed write.

        A complaint without a ticket row gets one issued; a complaint whose
        ticket row exists but was never linked gets the ticketed update again.
        """

        issued: list[Ticket] = []
        for complaint in self._repository.list_ticket_pending_complaints():
            now = self._clock()
            existing = self._repository.find_ticket_by_complaint(complaint.id)
            if existing is not None:
                result = self._link_ticket(complaint, existing, now)
            else:
                result = self._issue_ticket(complaint, now)
            if not result.ticket_pending:
                issued.append(result.ticket)
        if issued:
            LOGGER.info("Reconciliation issued %s ticket(s)", len(issued))
        return issued

    def add_ticket_update(self, ticket_id: str, message: str, author: str, status: Optional[str] = None) -> Ticket:
        """Append to a ticket's log, optionally moving its status forward."""

        ticket = self._repository.get_ticket(ticket_id)
        if ticket is None:
            raise NotFound(f"Ticket {ticket_id} not found")
        if status is not None:
            if status not in TICKET_STATUS_ORDER:
                raise StateConflict(f"Unknown ticket status: {status}")
            if TICKET_STATUS_ORDER.index(status) < TICKET_STATUS_ORDER.index(ticket.status):
                raise StateConflict(f"Ticket {ticket_id} cannot move from {ticket.status} to {status}")

        now = self._clock()
        updated = replace(
            ticket,
            status=status or ticket.status,
            updated_at=now,
            updates=ticket.updates + (TicketUpdate(message=message, author=author, recorded_at=now, status=status),),
        )
        self._repository.update_ticket(updated, expected_status=ticket.status)

        if updated.status in (TICKET_RESOLVED, TICKET_CLOSED):
            self._mark_complaint_resolved(updated.complaint_id, now)
        return updated

    async def _classify(self, description: str) -> tuple[str, str, str]:
        results = await asyncio.gather(
            self._classifier.categorize_department(description),
            self._classifier.assess_priority(description),
            self._classifier.categorize_type(description),
            return_exceptions=True,
        )
        fallbacks = (
            ("department", self._config.fallback_department),
            ("priority", self._config.fallback_priority),
            ("category", self._config.fallback_category),
        )
        values = []
        for result, (label, fallback) in zip(results, fallbacks):
            if isinstance(result, Exception):
                LOGGER.warning("Could not determine %s, using %r: %s", label, fallback, result)
                values.append(fallback)
            elif isinstance(result, BaseException):
                raise result
            else:
                values.append(result or fallback)
        return values[0], values[1], values[2]

    async def _resolve_address(self, latitude: float, longitude: float) -> str:
        try:
            return await self._geocoder.reverse_geocode(latitude, longitude)
        except GeocoderUnavailable as exc:
            LOGGER.warning("Reverse geocoding failed for %s, %s: %s", latitude, longitude, exc)
            return f"Location: {latitude}, {longitude}"

    def _issue_ticket(self, complaint: Complaint, now: datetime) -> ConfirmationResult:
        ticket = self._put_ticket_with_retries(complaint, now)
        if ticket is None:
            parked = replace(complaint, updated_at=now, workflow=complaint.workflow.await_step(STEP_TICKET_CREATION))
            self._repository.update_complaint(parked, expected_status=COMPLAINT_ACTIVE)
            LOGGER.error("Complaint %s is active without a ticket; left for reconciliation", complaint.id)
            return ConfirmationResult(complaint=parked, ticket=None)

        LOGGER.info("Ticket %s issued for complaint %s", ticket.ticket_id, complaint.id)
        return self._link_ticket(complaint, ticket, now)

    def _link_ticket(self, complaint: Complaint, ticket: Ticket, now: datetime) -> ConfirmationResult:
        ticketed = replace(
            complaint,
            ticket_id=ticket.ticket_id,
            updated_at=now,
            workflow=complaint.workflow.advance(
                "ticket_created", PERCENT_TICKETED, now, next_pending="department_assignment"
            ),
        )
        try:
            self._repository.update_complaint(ticketed, expected_status=COMPLAINT_ACTIVE)
        except RepositoryWriteConflict as exc:
            # The ticket row exists; reconciliation links it later.
            LOGGER.error(
                "Ticket %s exists but complaint %s was not updated; left for reconciliation: %s",
                ticket.ticket_id,
                complaint.id,
                exc,
            )
            return ConfirmationResult(complaint=complaint, ticket=ticket)
        return ConfirmationResult(complaint=ticketed, ticket=ticket)

    def _put_ticket_with_retries(self, complaint: Complaint, now: datetime) -> Optional[Ticket]:
        ticket_id = complaint.ticket_id or generate_ticket_id(self._config.ticket_id_length, now)
        attempts = max(1, self._config.ticket_creation_attempts)
        for attempt in range(1, attempts + 1):
            ticket = self._build_ticket(complaint, ticket_id, now)
            try:
                self._repository.put_ticket(ticket)
                return ticket
            except DuplicateIdentifier:
                existing = self._repository.find_ticket_by_complaint(complaint.id)
                if existing is not None:
                    return existing
                ticket_id = generate_ticket_id(self._config.ticket_id_length, now)
                LOGGER.warning("Ticket id collision for %s, retrying with %s", complaint.id, ticket_id)
            except RepositoryWriteConflict as exc:
                LOGGER.warning(
                    "Ticket creation for %s failed (attempt %s/%s): %s", complaint.id, attempt, attempts, exc
                )
        return None

    def _build_ticket(self, complaint: Complaint, ticket_id: str, now: datetime) -> Ticket:
        start = complaint.confirmed_at or now
        return Ticket(
            ticket_id=ticket_id,
            complaint_id=complaint.id,
            created_by=complaint.created_by,
            department=complaint.department,
            priority=complaint.priority,
            category=complaint.category,
            description=complaint.description,
            status=TICKET_OPEN,
            estimated_resolution=resolution_deadline(start, complaint.estimated_resolution_hours),
            created_at=now,
            updated_at=now,
            location=complaint.location,
            follow_up_users=frozenset(complaint.follow_up_users | {complaint.created_by}),
        )

    def _mark_complaint_resolved(self, complaint_id: str, now: datetime) -> None:
        complaint = self._repository.get_complaint(complaint_id)
        if complaint is None or complaint.workflow.completion_percentage >= PERCENT_RESOLVED:
            return
        resolved = replace(
            complaint,
            updated_at=now,
            workflow=complaint.workflow.advance("resolved", PERCENT_RESOLVED, now),
        )
        self._repository.update_complaint(resolved, expected_status=complaint.status)

    def _require_complaint(self, complaint_id: str) -> Complaint:
        complaint = self._repository.get_complaint(complaint_id)
        if complaint is None:
            raise NotFound(f"Complaint {complaint_id} not found")
        return complaint

    @staticmethod
    def _require_draft(complaint: Complaint, action: str) -> None:
        if complaint.status != COMPLAINT_DRAFT:
            raise StateConflict(f"Cannot {action} complaint {complaint.id} in status {complaint.status}")

    def _raise_if_left_draft(self, complaint_id: str, action: str) -> None:
        current = self._repository.get_complaint(complaint_id)
        if current is not None and current.status != COMPLAINT_DRAFT:
            raise StateConflict(f"Cannot {action} complaint {complaint_id} in status {current.status}")
