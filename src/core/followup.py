"""Follow-up membership for duplicate reporters."""

from __future__ import annotations

import logging
from typing import Optional

from core.identifiers import mask_identity
from core.models import Complaint, Ticket
from core.ports import ComplaintRepositoryPort

LOGGER = logging.getLogger(__name__)


class FollowUpRegistry:
    """Attach reporters to an existing complaint and its ticket for future broadcasts.

    Membership is a set union: it never replaces the original reporter and
    never touches department, priority or category.
    """

    def __init__(self, repository: ComplaintRepositoryPort) -> None:
        self._repository = repository

    def attach(self, complaint: Complaint, identity: str) -> Optional[Ticket]:
        """Add ``identity`` to the complaint and, when present, its linked ticket."""

        self._repository.add_complaint_follower(complaint.id, identity)

        ticket = None
        if complaint.ticket_id:
            ticket = self._repository.get_ticket(complaint.ticket_id)
        if ticket is None:
            ticket = self._repository.find_ticket_by_complaint(complaint.id)
        if ticket is not None:
            self._repository.add_ticket_follower(ticket.ticket_id, identity)

        LOGGER.info(
            "Added %s to follow-up of %s%s",
            mask_identity(identity),
            complaint.id,
            f" / {ticket.ticket_id}" if ticket else "",
        )
        return ticket

    def followers(self, complaint_id: str) -> frozenset[str]:
        """Everyone who should hear about updates to a complaint."""

        complaint = self._repository.get_complaint(complaint_id)
        if complaint is None:
            return frozenset()
        members = set(complaint.follow_up_users) | {complaint.created_by}
        ticket = self._repository.find_ticket_by_complaint(complaint_id)
        if ticket is not None:
            members |= ticket.follow_up_users
        return frozenset(members)
