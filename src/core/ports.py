"""Ports (interfaces) used by the core.

Ports define the minimal contracts for the classification service, the
complaint/ticket store, the reporter store and the geocoder so that the core
can be reused with different backends.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional, Protocol, Sequence

from core.models import (
    CategorySimilarity,
    Complaint,
    ImageSimilarity,
    IntentAnalysis,
    Reporter,
    TextSimilarity,
    Ticket,
)


class ClassifierPort(Protocol):
    """Structured judgments over report text and images.

    Implementations raise ClassifierUnavailable on any failure and return
    already-normalized records.
    """

    async def analyze_intent(self, text: str) -> IntentAnalysis:
        ...

    async def compare_text(self, new_text: str, existing_text: str) -> TextSimilarity:
        ...

    async def compare_images(self, new_ref: str, existing_ref: str) -> ImageSimilarity:
        ...

    async def compare_category(self, new_text: str, existing_text: str) -> CategorySimilarity:
        ...

    async def categorize_department(self, text: str) -> str:
        ...

    async def assess_priority(self, text: str) -> str:
        ...

    async def categorize_type(self, text: str) -> str:
        ...

    async def score_ethics(self, text: str) -> int:
        ...


class GeocoderPort(Protocol):
    """Coordinates to address resolution."""

    async def reverse_geocode(self, latitude: float, longitude: float) -> str:
        ...


class ComplaintRepositoryPort(Protocol):
    """Complaint and ticket persistence required by the core.

    Writes are atomic per entity. Conditional updates raise
    RepositoryWriteConflict when the stored row no longer matches the
    expectation; inserts raise DuplicateIdentifier on key collisions.
    """

    def query_candidate_complaints(
        self,
        status_in: Sequence[str],
        created_after: datetime,
        limit: int,
        exclude_created_by: Optional[str],
    ) -> list[Complaint]:
        ...

    def get_complaint(self, complaint_id: str) -> Optional[Complaint]:
        ...

    def find_pending_complaint(self, created_by: str) -> Optional[Complaint]:
        ...

    def list_reporter_complaints(self, created_by: str, limit: int) -> list[Complaint]:
        ...

    def list_ticket_pending_complaints(self) -> list[Complaint]:
        """Active complaints whose ticket row is missing or not yet linked, oldest first."""
        ...

    def put_complaint(self, complaint: Complaint) -> None:
        ...

    def update_complaint(
        self,
        complaint: Complaint,
        expected_status: Optional[str] = None,
        expected_location_pending: Optional[bool] = None,
    ) -> None:
        ...

    def add_complaint_follower(self, complaint_id: str, identity: str) -> None:
        ...

    def put_ticket(self, ticket: Ticket) -> None:
        ...

    def get_ticket(self, ticket_id: str) -> Optional[Ticket]:
        ...

    def find_ticket_by_complaint(self, complaint_id: str) -> Optional[Ticket]:
        ...

    def update_ticket(self, ticket: Ticket, expected_status: Optional[str] = None) -> None:
        ...

    def add_ticket_follower(self, ticket_id: str, identity: str) -> None:
        ...


class ReporterStorePort(Protocol):
    """Reporter persistence required by the core."""

    def get_reporter(self, identity: str) -> Optional[Reporter]:
        ...

    def register_message(self, identity: str) -> Reporter:
        """Create the reporter on first contact, otherwise bump total_messages."""
        ...

    def set_ethical_score(self, identity: str, score: float) -> None:
        ...

    def set_bot_mode(self, identity: str, enabled: bool) -> None:
        ...
