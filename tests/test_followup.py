from __future__ import annotations

from datetime import timedelta

from core.followup import FollowUpRegistry
from core.models import Ticket
from fakes import NOW, InMemoryRepository, make_complaint


def _ticket(complaint_id: str) -> Ticket:
    return Ticket(
        ticket_id="TKT00001",
        complaint_id=complaint_id,
        created_by="reporter-1",
        department="Water Supply",
        priority="high",
        category="Water Supply Issues",
        description="Pipe burst",
        status="open",
        estimated_resolution=NOW + timedelta(hours=12),
        created_at=NOW,
        updated_at=NOW,
        follow_up_users=frozenset({"reporter-1"}),
    )


def test_attach_adds_to_complaint_and_ticket() -> None:
    repository = InMemoryRepository()
    complaint = make_complaint(ticket_id="TKT00001")
    repository.put_complaint(complaint)
    repository.put_ticket(_ticket(complaint.id))
    registry = FollowUpRegistry(repository)

    ticket = registry.attach(complaint, "reporter-2")
    registry.attach(complaint, "reporter-2")

    assert ticket.ticket_id == "TKT00001"
    assert repository.get_complaint(complaint.id).follow_up_users == frozenset({"reporter-1", "reporter-2"})
    assert repository.get_ticket("TKT00001").follow_up_users == frozenset({"reporter-1", "reporter-2"})
    assert repository.get_complaint(complaint.id).created_by == "reporter-1"


def test_attach_without_ticket_only_touches_complaint() -> None:
    repository = InMemoryRepository()
    complaint = make_complaint(status="draft")
    repository.put_complaint(complaint)

    assert FollowUpRegistry(repository).attach(complaint, "reporter-2") is None
    assert "reporter-2" in repository.get_complaint(complaint.id).follow_up_users


def test_followers_include_ticket_members() -> None:
    repository = InMemoryRepository()
    complaint = make_complaint(ticket_id="TKT00001")
    repository.put_complaint(complaint)
    repository.put_ticket(_ticket(complaint.id))
    repository.add_ticket_follower("TKT00001", "reporter-9")
    registry = FollowUpRegistry(repository)

    assert registry.followers(complaint.id) == frozenset({"reporter-1", "reporter-9"})
    assert registry.followers("CMP-missing") == frozenset()
