from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Optional, Sequence

from core.errors import ClassifierUnavailable, DuplicateIdentifier, GeocoderUnavailable, RepositoryWriteConflict
from core.models import (
    COMPLAINT_DRAFT,
    PERCENT_TICKETED,
    CategorySimilarity,
    Complaint,
    ImageSimilarity,
    IntentAnalysis,
    Location,
    Reporter,
    TextSimilarity,
    Ticket,
    Workflow,
)

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


class FakeClassifier:
    def __init__(
        self,
        *,
        text_score: float = 0.0,
        image_score: float = 0.0,
        category_score: float = 0.0,
        department: str = "Water Supply",
        priority: str = "high",
        category: str = "Water Supply Issues",
        intent: str = "complaint",
        ethics: int = 8,
        delay: float = 0.0,
        fail: Sequence[str] = (),
    ) -> None:
        self.text_score = text_score
        self.image_score = image_score
        self.category_score = category_score
        self.department = department
        self.priority = priority
        self.category = category
        self.intent = intent
        self.ethics = ethics
        self.delay = delay
        self.fail = set(fail)
        self.calls: list[str] = []

    async def _call(self, name: str) -> None:
        self.calls.append(name)
        if self.delay:
            await asyncio.sleep(self.delay)
        if name in self.fail:
            raise ClassifierUnavailable(f"{name} unavailable")

    def count(self, name: str) -> int:
        return self.calls.count(name)

    async def analyze_intent(self, text: str) -> IntentAnalysis:
        await self._call("analyze_intent")
        return IntentAnalysis(intent=self.intent, confidence=0.9)

    async def compare_text(self, new_text: str, existing_text: str) -> TextSimilarity:
        await self._call("compare_text")
        return TextSimilarity(score=self.text_score, reasoning="fake", problem_match=self.text_score > 0.5)

    async def compare_images(self, new_ref: str, existing_ref: str) -> ImageSimilarity:
        await self._call("compare_images")
        return ImageSimilarity(score=self.image_score, reasoning="fake")

    async def compare_category(self, new_text: str, existing_text: str) -> CategorySimilarity:
        await self._call("compare_category")
        return CategorySimilarity(score=self.category_score, same_type=self.category_score > 0.5)

    async def categorize_department(self, text: str) -> str:
        await self._call("categorize_department")
        return self.department

    async def assess_priority(self, text: str) -> str:
        await self._call("assess_priority")
        return self.priority

    async def categorize_type(self, text: str) -> str:
        await self._call("categorize_type")
        return self.category

    async def score_ethics(self, text: str) -> int:
        await self._call("score_ethics")
        return self.ethics


class FakeGeocoder:
    def __init__(self, address: Optional[str] = "MG Road, Pune", fail: bool = False) -> None:
        self.address = address
        self.fail = fail
        self.calls = 0

    async def reverse_geocode(self, latitude: float, longitude: float) -> str:
        self.calls += 1
        if self.fail:
            raise GeocoderUnavailable("geocoder down")
        return self.address


class InMemoryRepository:
    """Complaint/ticket store with the same conditional semantics as the SQLite adapter."""

    def __init__(self) -> None:
        self.complaints: dict[str, Complaint] = {}
        self.tickets: dict[str, Ticket] = {}
        self.ticket_failures = 0
        self.ticket_collisions = 0
        self.ticket_link_failures = 0
        self.candidate_queries: list[dict] = []

    def query_candidate_complaints(
        self,
        status_in: Sequence[str],
        created_after: datetime,
        limit: int,
        exclude_created_by: Optional[str],
    ) -> list[Complaint]:
        self.candidate_queries.append(
            {"status_in": tuple(status_in), "created_after": created_after, "limit": limit}
        )
        matches = [
            c
            for c in self.complaints.values()
            if c.status in status_in and c.created_at > created_after and c.created_by != exclude_created_by
        ]
        matches.sort(key=lambda c: c.created_at, reverse=True)
        return matches[:limit]

    def get_complaint(self, complaint_id: str) -> Optional[Complaint]:
        return self.complaints.get(complaint_id)

    def find_pending_complaint(self, created_by: str) -> Optional[Complaint]:
        pending = [
            c
            for c in self.complaints.values()
            if c.created_by == created_by and c.status == COMPLAINT_DRAFT and c.requires_location_sharing
        ]
        return max(pending, key=lambda c: c.created_at, default=None)

    def list_reporter_complaints(self, created_by: str, limit: int) -> list[Complaint]:
        own = [c for c in self.complaints.values() if c.created_by == created_by]
        own.sort(key=lambda c: c.created_at, reverse=True)
        return own[:limit]

    def list_ticket_pending_complaints(self) -> list[Complaint]:
        linked = {t.complaint_id: t.ticket_id for t in self.tickets.values()}
        pending = [
            c
            for c in self.complaints.values()
            if c.status == "active"
            and (
                linked.get(c.id) is None
                or c.ticket_id != linked[c.id]
                or c.workflow.completion_percentage < PERCENT_TICKETED
            )
        ]
        return sorted(pending, key=lambda c: c.created_at)

    def put_complaint(self, complaint: Complaint) -> None:
        if complaint.id in self.complaints:
            raise DuplicateIdentifier(complaint.id)
        self.complaints[complaint.id] = complaint

    def update_complaint(
        self,
        complaint: Complaint,
        expected_status: Optional[str] = None,
        expected_location_pending: Optional[bool] = None,
    ) -> None:
        stored = self.complaints.get(complaint.id)
        if stored is None:
            raise RepositoryWriteConflict(complaint.id)
        if expected_status is not None and stored.status != expected_status:
            raise RepositoryWriteConflict(f"{complaint.id} is {stored.status}")
        if expected_location_pending is not None and stored.requires_location_sharing != expected_location_pending:
            raise RepositoryWriteConflict(f"{complaint.id} location state changed")
        if (
            self.ticket_link_failures
            and complaint.workflow.completion_percentage >= PERCENT_TICKETED > stored.workflow.completion_percentage
        ):
            self.ticket_link_failures -= 1
            raise RepositoryWriteConflict("store hiccup")
        self.complaints[complaint.id] = replace(
            complaint, follow_up_users=complaint.follow_up_users | stored.follow_up_users
        )

    def add_complaint_follower(self, complaint_id: str, identity: str) -> None:
        stored = self.complaints[complaint_id]
        self.complaints[complaint_id] = replace(stored, follow_up_users=stored.follow_up_users | {identity})

    def put_ticket(self, ticket: Ticket) -> None:
        if self.ticket_failures:
            self.ticket_failures -= 1
            raise RepositoryWriteConflict("ticket store unavailable")
        if self.ticket_collisions:
            self.ticket_collisions -= 1
            raise DuplicateIdentifier(ticket.ticket_id)
        if ticket.ticket_id in self.tickets or any(
            t.complaint_id == ticket.complaint_id for t in self.tickets.values()
        ):
            raise DuplicateIdentifier(ticket.ticket_id)
        self.tickets[ticket.ticket_id] = ticket

    def get_ticket(self, ticket_id: str) -> Optional[Ticket]:
        return self.tickets.get(ticket_id)

    def find_ticket_by_complaint(self, complaint_id: str) -> Optional[Ticket]:
        for ticket in self.tickets.values():
            if ticket.complaint_id == complaint_id:
                return ticket
        return None

    def update_ticket(self, ticket: Ticket, expected_status: Optional[str] = None) -> None:
        stored = self.tickets.get(ticket.ticket_id)
        if stored is None:
            raise RepositoryWriteConflict(ticket.ticket_id)
        if expected_status is not None and stored.status != expected_status:
            raise RepositoryWriteConflict(f"{ticket.ticket_id} is {stored.status}")
        self.tickets[ticket.ticket_id] = replace(
            ticket, follow_up_users=ticket.follow_up_users | stored.follow_up_users
        )

    def add_ticket_follower(self, ticket_id: str, identity: str) -> None:
        stored = self.tickets[ticket_id]
        self.tickets[ticket_id] = replace(stored, follow_up_users=stored.follow_up_users | {identity})


class InMemoryReporters:
    def __init__(self) -> None:
        self.reporters: dict[str, Reporter] = {}

    def get_reporter(self, identity: str) -> Optional[Reporter]:
        return self.reporters.get(identity)

    def register_message(self, identity: str) -> Reporter:
        reporter = self.reporters.get(identity)
        if reporter is None:
            reporter = Reporter(identity=identity, total_messages=1)
        else:
            reporter = replace(reporter, total_messages=reporter.total_messages + 1)
        self.reporters[identity] = reporter
        return reporter

    def set_ethical_score(self, identity: str, score: float) -> None:
        self.reporters[identity] = replace(self.reporters[identity], ethical_score=score)

    def set_bot_mode(self, identity: str, enabled: bool) -> None:
        self.reporters[identity] = replace(self.reporters[identity], bot_mode=enabled)


def make_complaint(
    complaint_id: str = "CMP-20240601-AAAAAA",
    *,
    description: str = "Water leaking near the main signal",
    department: str = "Water Supply",
    created_by: str = "reporter-1",
    status: str = "active",
    age: timedelta = timedelta(hours=2),
    location: Optional[Location] = None,
    image_ref: Optional[str] = None,
    ticket_id: Optional[str] = None,
) -> Complaint:
    created_at = NOW - age
    return Complaint(
        id=complaint_id,
        description=description,
        department=department,
        priority="high",
        category="Water Supply Issues",
        created_by=created_by,
        status=status,
        created_at=created_at,
        updated_at=created_at,
        workflow=Workflow.start(created_at),
        estimated_resolution_hours=12,
        follow_up_users=frozenset({created_by}),
        location=location,
        image_ref=image_ref,
        requires_location_sharing=status == COMPLAINT_DRAFT,
        ticket_id=ticket_id,
    )
