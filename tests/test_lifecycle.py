from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from core.config import LifecycleConfig, SimilarityConfig
from core.errors import NotFound, StateConflict
from core.followup import FollowUpRegistry
from core.lifecycle import STEP_TICKET_CREATION, ComplaintLifecycle
from core.models import Location, NewReport, Ticket
from core.similarity import SimilarityEngine
from fakes import NOW, FakeClassifier, FakeGeocoder, InMemoryRepository, make_complaint

P = Location(latitude=18.5204, longitude=73.8567)


def _lifecycle(
    classifier: FakeClassifier | None = None,
    repository: InMemoryRepository | None = None,
    geocoder: FakeGeocoder | None = None,
) -> tuple[ComplaintLifecycle, InMemoryRepository]:
    classifier = classifier or FakeClassifier()
    repository = repository or InMemoryRepository()
    similarity = SimilarityEngine(classifier, repository, SimilarityConfig(), clock=lambda: NOW)
    lifecycle = ComplaintLifecycle(
        classifier=classifier,
        repository=repository,
        geocoder=geocoder or FakeGeocoder(),
        similarity=similarity,
        followups=FollowUpRegistry(repository),
        config=LifecycleConfig(),
        clock=lambda: NOW,
    )
    return lifecycle, repository


def _draft(lifecycle: ComplaintLifecycle, reporter: str = "reporter-1", text: str = "Pipe burst on MG Road"):
    return asyncio.run(lifecycle.create_draft(NewReport(reporter=reporter, text=text)))


def test_create_draft_classifies_and_awaits_location() -> None:
    lifecycle, repository = _lifecycle()

    complaint = _draft(lifecycle)

    assert complaint.status == "draft"
    assert complaint.requires_location_sharing is True
    assert complaint.workflow.completion_percentage == 30
    assert complaint.workflow.step == "location_required"
    assert (complaint.department, complaint.priority, complaint.category) == (
        "Water Supply",
        "high",
        "Water Supply Issues",
    )
    assert complaint.estimated_resolution_hours == 12
    assert complaint.follow_up_users == frozenset({"reporter-1"})
    assert complaint.id.startswith("CMP-20240601-")
    assert repository.get_complaint(complaint.id) == complaint


def test_create_draft_falls_back_when_classifier_fails() -> None:
    classifier = FakeClassifier(fail=["categorize_department", "assess_priority", "categorize_type"])
    lifecycle, _ = _lifecycle(classifier)

    complaint = _draft(lifecycle)

    assert complaint.department == "General Administration"
    assert complaint.priority == "medium"
    assert complaint.category == "General Services"
    assert complaint.estimated_resolution_hours == 48


def test_photo_only_report_gets_placeholder_description() -> None:
    lifecycle, _ = _lifecycle()

    complaint = asyncio.run(lifecycle.create_draft(NewReport(reporter="reporter-1", image_ref="https://img/1.jpg")))

    assert complaint.description == "(photo report without description)"
    assert complaint.image_ref == "https://img/1.jpg"


def test_location_confirms_draft_and_issues_ticket() -> None:
    lifecycle, repository = _lifecycle()
    draft = _draft(lifecycle)

    outcome = asyncio.run(lifecycle.submit_location("reporter-1", P.latitude, P.longitude))

    assert outcome.confirmed is True
    assert outcome.address == "MG Road, Pune"
    complaint = repository.get_complaint(draft.id)
    ticket = outcome.confirmation.ticket
    assert complaint.status == "active"
    assert complaint.requires_location_sharing is False
    assert complaint.ticket_id == ticket.ticket_id
    assert complaint.workflow.completion_percentage == 70
    assert complaint.location.address == "MG Road, Pune"
    steps = {entry.step: entry.status for entry in complaint.workflow.steps}
    assert steps["location_required"] == "completed"
    assert steps["location_confirmed"] == "completed"
    assert steps["ticket_created"] == "completed"
    assert steps["department_assignment"] == "pending"
    assert ticket.status == "open"
    assert ticket.complaint_id == draft.id
    assert ticket.estimated_resolution == NOW + timedelta(hours=12)
    assert "reporter-1" in ticket.follow_up_users
    assert len(ticket.ticket_id) >= 8


def test_location_without_pending_draft_is_acknowledged() -> None:
    lifecycle, repository = _lifecycle()

    outcome = asyncio.run(lifecycle.submit_location("reporter-1", P.latitude, P.longitude))

    assert outcome.confirmed is False
    assert outcome.reason == "no pending complaint"
    assert repository.tickets == {}


def test_invalid_location_leaves_draft_untouched() -> None:
    lifecycle, repository = _lifecycle()
    draft = _draft(lifecycle)

    outcome = asyncio.run(lifecycle.submit_location("reporter-1", 0.0, 0.0))

    assert outcome.confirmed is False
    assert repository.get_complaint(draft.id).status == "draft"


def test_geocoder_failure_uses_coordinate_address() -> None:
    lifecycle, repository = _lifecycle(geocoder=FakeGeocoder(fail=True))
    draft = _draft(lifecycle)

    outcome = asyncio.run(lifecycle.submit_location("reporter-1", 18.52, 73.85))

    assert outcome.confirmed is True
    assert repository.get_complaint(draft.id).location.address == "Location: 18.52, 73.85"


def test_shared_address_skips_geocoder() -> None:
    geocoder = FakeGeocoder()
    lifecycle, _ = _lifecycle(geocoder=geocoder)
    _draft(lifecycle)

    outcome = asyncio.run(lifecycle.submit_location("reporter-1", P.latitude, P.longitude, address="Near City Hall"))

    assert outcome.address == "Near City Hall"
    assert geocoder.calls == 0


def test_concurrent_locations_create_one_ticket() -> None:
    lifecycle, repository = _lifecycle()
    _draft(lifecycle)

    async def both():
        return await asyncio.gather(
            lifecycle.submit_location("reporter-1", P.latitude, P.longitude),
            lifecycle.submit_location("reporter-1", P.latitude, P.longitude),
        )

    outcomes = asyncio.run(both())

    assert sorted(outcome.confirmed for outcome in outcomes) == [False, True]
    assert len(repository.tickets) == 1
    assert len(lifecycle._locks) == 0


def test_cancel_draft_and_cancel_again() -> None:
    lifecycle, repository = _lifecycle()
    draft = _draft(lifecycle)

    cancelled = lifecycle.cancel(draft.id)

    assert cancelled.status == "cancelled"
    assert cancelled.workflow.completion_percentage == 0
    assert cancelled.cancelled_at == NOW
    assert repository.find_pending_complaint("reporter-1") is None
    with pytest.raises(StateConflict):
        lifecycle.cancel(draft.id)


def test_confirm_after_cancel_is_conflict() -> None:
    lifecycle, _ = _lifecycle()
    draft = _draft(lifecycle)
    lifecycle.cancel(draft.id)

    with pytest.raises(StateConflict):
        asyncio.run(lifecycle.confirm(draft.id, P))


def test_cancel_active_complaint_is_conflict() -> None:
    lifecycle, _ = _lifecycle()
    draft = _draft(lifecycle)
    asyncio.run(lifecycle.submit_location("reporter-1", P.latitude, P.longitude))

    with pytest.raises(StateConflict):
        lifecycle.cancel(draft.id)


def test_unknown_complaint_is_not_found() -> None:
    lifecycle, _ = _lifecycle()

    with pytest.raises(NotFound):
        lifecycle.cancel("CMP-missing")
    with pytest.raises(NotFound):
        asyncio.run(lifecycle.confirm("CMP-missing", P))


def test_ticket_failure_parks_complaint_until_reconciled() -> None:
    lifecycle, repository = _lifecycle()
    draft = _draft(lifecycle)
    repository.ticket_failures = 3

    outcome = asyncio.run(lifecycle.submit_location("reporter-1", P.latitude, P.longitude))

    assert outcome.confirmed is True
    assert outcome.confirmation.ticket_pending is True
    parked = repository.get_complaint(draft.id)
    assert parked.status == "active"
    assert parked.workflow.step == STEP_TICKET_CREATION
    assert parked.workflow.completion_percentage == 60
    assert repository.list_ticket_pending_complaints() == [parked]

    issued = lifecycle.reconcile_pending_tickets()

    assert [ticket.ticket_id for ticket in issued] == [parked.ticket_id]
    reconciled = repository.get_complaint(draft.id)
    assert reconciled.workflow.completion_percentage == 70
    assert repository.list_ticket_pending_complaints() == []
    assert lifecycle.reconcile_pending_tickets() == []


def test_failed_ticket_link_is_reconciled() -> None:
    lifecycle, repository = _lifecycle()
    draft = _draft(lifecycle)
    repository.ticket_link_failures = 1

    outcome = asyncio.run(lifecycle.submit_location("reporter-1", P.latitude, P.longitude))

    ticket = outcome.confirmation.ticket
    assert outcome.confirmed is True
    assert ticket is not None
    assert outcome.confirmation.ticket_pending is True
    stranded = repository.get_complaint(draft.id)
    assert stranded.status == "active"
    assert stranded.workflow.completion_percentage == 60
    assert repository.list_ticket_pending_complaints() == [stranded]

    reconciled_tickets = lifecycle.reconcile_pending_tickets()

    assert [t.ticket_id for t in reconciled_tickets] == [ticket.ticket_id]
    assert list(repository.tickets) == [ticket.ticket_id]
    complaint = repository.get_complaint(draft.id)
    assert complaint.ticket_id == ticket.ticket_id
    assert complaint.workflow.completion_percentage == 70
    assert repository.list_ticket_pending_complaints() == []


def test_ticket_id_collision_allocates_new_id() -> None:
    lifecycle, repository = _lifecycle()
    draft = _draft(lifecycle)
    repository.ticket_collisions = 1

    outcome = asyncio.run(lifecycle.submit_location("reporter-1", P.latitude, P.longitude))

    ticket = outcome.confirmation.ticket
    assert ticket is not None
    assert repository.get_complaint(draft.id).ticket_id == ticket.ticket_id
    assert list(repository.tickets) == [ticket.ticket_id]


def test_ticket_updates_move_forward_and_resolve_complaint() -> None:
    lifecycle, repository = _lifecycle()
    draft = _draft(lifecycle)
    ticket = asyncio.run(lifecycle.submit_location("reporter-1", P.latitude, P.longitude)).confirmation.ticket

    lifecycle.add_ticket_update(ticket.ticket_id, "Crew dispatched", "staff", status="in_progress")
    resolved = lifecycle.add_ticket_update(ticket.ticket_id, "Pipe replaced", "staff", status="resolved")

    assert resolved.status == "resolved"
    assert [update.message for update in resolved.updates] == ["Crew dispatched", "Pipe replaced"]
    assert repository.get_complaint(draft.id).workflow.completion_percentage == 100
    with pytest.raises(StateConflict):
        lifecycle.add_ticket_update(ticket.ticket_id, "Reopen", "staff", status="open")
    with pytest.raises(NotFound):
        lifecycle.add_ticket_update("NOPE", "hello", "staff")


def test_duplicate_report_joins_existing_complaint() -> None:
    repository = InMemoryRepository()
    classifier = FakeClassifier(text_score=0.95, category_score=1.0)
    lifecycle, _ = _lifecycle(classifier, repository)
    existing = make_complaint(location=P, created_by="reporter-1", ticket_id="TKT00001")
    repository.put_complaint(existing)
    repository.put_ticket(
        Ticket(
            ticket_id="TKT00001",
            complaint_id=existing.id,
            created_by="reporter-1",
            department=existing.department,
            priority=existing.priority,
            category=existing.category,
            description=existing.description,
            status="open",
            estimated_resolution=NOW + timedelta(hours=12),
            created_at=NOW,
            updated_at=NOW,
            follow_up_users=frozenset({"reporter-1"}),
        )
    )

    result = asyncio.run(
        lifecycle.register_report(NewReport(reporter="reporter-2", text="Water leaking near signal", location=P))
    )

    assert result.is_duplicate is True
    assert result.complaint.id == existing.id
    assert result.complaint.follow_up_users == frozenset({"reporter-1", "reporter-2"})
    assert result.complaint.department == existing.department
    assert repository.get_ticket("TKT00001").follow_up_users == frozenset({"reporter-1", "reporter-2"})
    assert len(repository.complaints) == 1


def test_unique_report_becomes_draft() -> None:
    repository = InMemoryRepository()
    lifecycle, _ = _lifecycle(FakeClassifier(text_score=0.1), repository)
    repository.put_complaint(make_complaint(location=P, created_by="reporter-1"))

    result = asyncio.run(lifecycle.register_report(NewReport(reporter="reporter-2", text="Streetlight out", location=P)))

    assert result.is_duplicate is False
    assert result.complaint.status == "draft"
    assert len(repository.complaints) == 2


def test_reporter_complaints_hide_cancelled() -> None:
    lifecycle, _ = _lifecycle()
    kept = _draft(lifecycle, text="first")
    dropped = _draft(lifecycle, text="second")
    lifecycle.cancel(dropped.id)

    listed = lifecycle.reporter_complaints("reporter-1")

    assert [complaint.id for complaint in listed] == [kept.id]
