"""SQLite storage adapter.

Implements the core ComplaintRepositoryPort and ReporterStorePort using a
simple SQLite database. Nested values (location, workflow, followers, ticket
updates) are stored as JSON text; timestamps as ISO-8601 UTC strings so that
string comparison follows chronological order.
"""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime, timezone
from typing import Any, Iterable, Optional, Sequence

from core.errors import DuplicateIdentifier, RepositoryWriteConflict
from core.models import (
    COMPLAINT_ACTIVE,
    COMPLAINT_DRAFT,
    PERCENT_TICKETED,
    Complaint,
    Location,
    Reporter,
    Ticket,
    TicketUpdate,
    Workflow,
    WorkflowStep,
)


def _to_text(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _from_text(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _location_to_json(location: Optional[Location]) -> Optional[str]:
    if location is None:
        return None
    return json.dumps(
        {
            "latitude": location.latitude,
            "longitude": location.longitude,
            "address": location.address,
            "name": location.name,
        }
    )


def _location_from_json(raw: Optional[str]) -> Optional[Location]:
    if not raw:
        return None
    data = json.loads(raw)
    return Location(
        latitude=float(data["latitude"]),
        longitude=float(data["longitude"]),
        address=data.get("address"),
        name=data.get("name"),
    )


def _workflow_to_json(workflow: Workflow) -> str:
    return json.dumps(
        {
            "step": workflow.step,
            "completion_percentage": workflow.completion_percentage,
            "steps": [
                {"step": entry.step, "status": entry.status, "recorded_at": _to_text(entry.recorded_at)}
                for entry in workflow.steps
            ],
        }
    )


def _workflow_from_json(raw: str) -> Workflow:
    data = json.loads(raw)
    return Workflow(
        step=data["step"],
        completion_percentage=int(data["completion_percentage"]),
        steps=tuple(
            WorkflowStep(entry["step"], entry["status"], _from_text(entry.get("recorded_at")))
            for entry in data.get("steps", [])
        ),
    )


def _followers_to_json(followers: Iterable[str]) -> str:
    return json.dumps(sorted(followers))


def _followers_from_json(raw: Optional[str]) -> frozenset[str]:
    return frozenset(json.loads(raw)) if raw else frozenset()


def _updates_to_json(updates: Iterable[TicketUpdate]) -> str:
    return json.dumps(
        [
            {
                "message": update.message,
                "author": update.author,
                "recorded_at": _to_text(update.recorded_at),
                "status": update.status,
            }
            for update in updates
        ]
    )


def _updates_from_json(raw: Optional[str]) -> tuple[TicketUpdate, ...]:
    if not raw:
        return ()
    return tuple(
        TicketUpdate(
            message=entry["message"],
            author=entry["author"],
            recorded_at=_from_text(entry["recorded_at"]),
            status=entry.get("status"),
        )
        for entry in json.loads(raw)
    )


class SQLiteStorage:
    """Thin SQLite wrapper that satisfies the repository and reporter store contracts."""

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, timeout=10)
        conn.row_factory = sqlite3.Row
        return conn

    def init_db(self) -> None:
        """Create tables if they do not exist.

        Tables:
        - complaints: one row per complaint, nested values as JSON text
        - tickets: one row per ticket, at most one per complaint
        - reporters: per-identity reputation and message counters
        """

        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS complaints (
                    id TEXT PRIMARY KEY,
                    description TEXT NOT NULL,
                    department TEXT NOT NULL,
                    priority TEXT NOT NULL,
                    category TEXT NOT NULL,
                    created_by TEXT NOT NULL,
                    status TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    workflow TEXT NOT NULL,
                    estimated_resolution_hours INTEGER NOT NULL,
                    follow_up_users TEXT NOT NULL,
                    location TEXT,
                    image_ref TEXT,
                    requires_location_sharing INTEGER NOT NULL,
                    ticket_id TEXT,
                    intent TEXT,
                    confirmed_at TEXT,
                    cancelled_at TEXT
                )
                """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_complaints_status_created ON complaints (status, created_at)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_complaints_created_by ON complaints (created_by, created_at)"
            )
            # complaint_id is UNIQUE so a retried insert can never produce a second ticket.
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS tickets (
                    ticket_id TEXT PRIMARY KEY,
                    complaint_id TEXT NOT NULL UNIQUE,
                    created_by TEXT NOT NULL,
                    department TEXT NOT NULL,
                    priority TEXT NOT NULL,
                    category TEXT NOT NULL,
                    description TEXT NOT NULL,
                    status TEXT NOT NULL,
                    estimated_resolution TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    location TEXT,
                    assigned_to TEXT,
                    updates TEXT NOT NULL,
                    follow_up_users TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS reporters (
                    identity TEXT PRIMARY KEY,
                    ethical_score REAL NOT NULL,
                    total_messages INTEGER NOT NULL,
                    bot_mode INTEGER NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )

    # Complaints

    def query_candidate_complaints(
        self,
        status_in: Sequence[str],
        created_after: datetime,
        limit: int,
        exclude_created_by: Optional[str],
    ) -> list[Complaint]:
        """Newest-first complaints in the given statuses created after ``created_after``."""

        if not status_in:
            return []
        placeholders = ", ".join("?" for _ in status_in)
        query = f"SELECT * FROM complaints WHERE status IN ({placeholders}) AND created_at > ?"
        params: list[Any] = [*status_in, _to_text(created_after)]
        if exclude_created_by is not None:
            query += " AND created_by != ?"
            params.append(exclude_created_by)
        query += " ORDER BY created_at DESC LIMIT ?"
        params.append(int(limit))
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._complaint_from_row(row) for row in rows]

    def get_complaint(self, complaint_id: str) -> Optional[Complaint]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM complaints WHERE id = ?", (complaint_id,)).fetchone()
        return self._complaint_from_row(row) if row else None

    def find_pending_complaint(self, created_by: str) -> Optional[Complaint]:
        """Most recent draft of a reporter that still requires a location."""

        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT * FROM complaints
                WHERE created_by = ? AND status = ? AND requires_location_sharing = 1
                ORDER BY created_at DESC
                LIMIT 1
                """,
                (created_by, COMPLAINT_DRAFT),
            ).fetchone()
        return self._complaint_from_row(row) if row else None

    def list_reporter_complaints(self, created_by: str, limit: int) -> list[Complaint]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM complaints WHERE created_by = ? ORDER BY created_at DESC LIMIT ?",
                (created_by, int(limit)),
            ).fetchall()
        return [self._complaint_from_row(row) for row in rows]

    def list_ticket_pending_complaints(self) -> list[Complaint]:
        """Active complaints whose ticket row is missing or not yet linked, oldest first."""

        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT c.*, t.ticket_id AS linked_ticket_id FROM complaints c
                LEFT JOIN tickets t ON t.complaint_id = c.id
                WHERE c.status = ?
                ORDER BY c.created_at ASC
                """,
                (COMPLAINT_ACTIVE,),
            ).fetchall()
        pending = []
        for row in rows:
            complaint = self._complaint_from_row(row)
            if (
                row["linked_ticket_id"] is None
                or complaint.ticket_id != row["linked_ticket_id"]
                or complaint.workflow.completion_percentage < PERCENT_TICKETED
            ):
                pending.append(complaint)
        return pending

    def put_complaint(self, complaint: Complaint) -> None:
        """Insert a new complaint; raises DuplicateIdentifier on id collision."""

        values = self._complaint_values(complaint)
        columns = ", ".join(values)
        placeholders = ", ".join("?" for _ in values)
        try:
            with self._connect() as conn:
                conn.execute(f"INSERT INTO complaints ({columns}) VALUES ({placeholders})", list(values.values()))
        except sqlite3.IntegrityError as exc:
            raise DuplicateIdentifier(f"Complaint {complaint.id} already exists") from exc
        except sqlite3.OperationalError as exc:
            raise RepositoryWriteConflict(f"Could not store complaint {complaint.id}: {exc}") from exc

    def update_complaint(
        self,
        complaint: Complaint,
        expected_status: Optional[str] = None,
        expected_location_pending: Optional[bool] = None,
    ) -> None:
        """Overwrite a complaint when the stored row still matches the expectations.

        Followers are merged with the stored set so that a concurrent
        follow-up is never dropped by a whole-row write.
        """

        try:
            with self._connect() as conn:
                conn.execute("BEGIN IMMEDIATE")
                row = conn.execute(
                    "SELECT status, requires_location_sharing, follow_up_users FROM complaints WHERE id = ?",
                    (complaint.id,),
                ).fetchone()
                if row is None:
                    raise RepositoryWriteConflict(f"Complaint {complaint.id} does not exist")
                if expected_status is not None and row["status"] != expected_status:
                    raise RepositoryWriteConflict(
                        f"Complaint {complaint.id} is {row['status']}, expected {expected_status}"
                    )
                if (
                    expected_location_pending is not None
                    and bool(row["requires_location_sharing"]) != expected_location_pending
                ):
                    raise RepositoryWriteConflict(f"Complaint {complaint.id} location state changed")

                values = self._complaint_values(complaint)
                values["follow_up_users"] = _followers_to_json(
                    complaint.follow_up_users | _followers_from_json(row["follow_up_users"])
                )
                values.pop("id")
                assignments = ", ".join(f"{column} = ?" for column in values)
                conn.execute(
                    f"UPDATE complaints SET {assignments} WHERE id = ?",
                    [*values.values(), complaint.id],
                )
        except sqlite3.OperationalError as exc:
            raise RepositoryWriteConflict(f"Could not update complaint {complaint.id}: {exc}") from exc

    def add_complaint_follower(self, complaint_id: str, identity: str) -> None:
        """Set-union a follower into a complaint."""

        self._add_follower("complaints", "id", complaint_id, identity)

    # Tickets

    def put_ticket(self, ticket: Ticket) -> None:
        """Insert a new ticket; raises DuplicateIdentifier on ticket or complaint collision."""

        values = self._ticket_values(ticket)
        columns = ", ".join(values)
        placeholders = ", ".join("?" for _ in values)
        try:
            with self._connect() as conn:
                conn.execute(f"INSERT INTO tickets ({columns}) VALUES ({placeholders})", list(values.values()))
        except sqlite3.IntegrityError as exc:
            raise DuplicateIdentifier(f"Ticket {ticket.ticket_id} collides with an existing ticket") from exc
        except sqlite3.OperationalError as exc:
            raise RepositoryWriteConflict(f"Could not store ticket {ticket.ticket_id}: {exc}") from exc

    def get_ticket(self, ticket_id: str) -> Optional[Ticket]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM tickets WHERE ticket_id = ?", (ticket_id,)).fetchone()
        return self._ticket_from_row(row) if row else None

    def find_ticket_by_complaint(self, complaint_id: str) -> Optional[Ticket]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM tickets WHERE complaint_id = ?", (complaint_id,)).fetchone()
        return self._ticket_from_row(row) if row else None

    def update_ticket(self, ticket: Ticket, expected_status: Optional[str] = None) -> None:
        """Overwrite a ticket when its stored status still matches ``expected_status``."""

        try:
            with self._connect() as conn:
                conn.execute("BEGIN IMMEDIATE")
                row = conn.execute(
                    "SELECT status, follow_up_users FROM tickets WHERE ticket_id = ?",
                    (ticket.ticket_id,),
                ).fetchone()
                if row is None:
                    raise RepositoryWriteConflict(f"Ticket {ticket.ticket_id} does not exist")
                if expected_status is not None and row["status"] != expected_status:
                    raise RepositoryWriteConflict(
                        f"Ticket {ticket.ticket_id} is {row['status']}, expected {expected_status}"
                    )
                values = self._ticket_values(ticket)
                values["follow_up_users"] = _followers_to_json(
                    ticket.follow_up_users | _followers_from_json(row["follow_up_users"])
                )
                values.pop("ticket_id")
                assignments = ", ".join(f"{column} = ?" for column in values)
                conn.execute(
                    f"UPDATE tickets SET {assignments} WHERE ticket_id = ?",
                    [*values.values(), ticket.ticket_id],
                )
        except sqlite3.OperationalError as exc:
            raise RepositoryWriteConflict(f"Could not update ticket {ticket.ticket_id}: {exc}") from exc

    def add_ticket_follower(self, ticket_id: str, identity: str) -> None:
        """Set-union a follower into a ticket."""

        self._add_follower("tickets", "ticket_id", ticket_id, identity)

    # Reporters

    def get_reporter(self, identity: str) -> Optional[Reporter]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM reporters WHERE identity = ?", (identity,)).fetchone()
        return self._reporter_from_row(row) if row else None

    def register_message(self, identity: str) -> Reporter:
        """Create the reporter on first contact, otherwise bump total_messages."""

        now = _to_text(datetime.now(timezone.utc))
        default = Reporter(identity=identity)
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO reporters (identity, ethical_score, total_messages, bot_mode, created_at, updated_at)
                VALUES (?, ?, 1, ?, ?, ?)
                ON CONFLICT(identity) DO UPDATE SET
                    total_messages = total_messages + 1,
                    updated_at = excluded.updated_at
                """,
                (identity, default.ethical_score, int(default.bot_mode), now, now),
            )
            row = conn.execute("SELECT * FROM reporters WHERE identity = ?", (identity,)).fetchone()
        return self._reporter_from_row(row)

    def set_ethical_score(self, identity: str, score: float) -> None:
        self._update_reporter(identity, "ethical_score", float(score))

    def set_bot_mode(self, identity: str, enabled: bool) -> None:
        self._update_reporter(identity, "bot_mode", int(bool(enabled)))

    def _update_reporter(self, identity: str, column: str, value: Any) -> None:
        now = _to_text(datetime.now(timezone.utc))
        with self._connect() as conn:
            cur = conn.execute(
                f"UPDATE reporters SET {column} = ?, updated_at = ? WHERE identity = ?",
                (value, now, identity),
            )
            if cur.rowcount == 0:
                raise RepositoryWriteConflict(f"Reporter {identity} does not exist")

    def _add_follower(self, table: str, key_column: str, key: str, identity: str) -> None:
        # BEGIN IMMEDIATE takes the write lock before the read, so concurrent
        # unions serialize instead of overwriting each other.
        try:
            with self._connect() as conn:
                conn.execute("BEGIN IMMEDIATE")
                row = conn.execute(
                    f"SELECT follow_up_users FROM {table} WHERE {key_column} = ?",
                    (key,),
                ).fetchone()
                if row is None:
                    raise RepositoryWriteConflict(f"No row {key} in {table}")
                followers = _followers_from_json(row["follow_up_users"])
                if identity in followers:
                    return
                conn.execute(
                    f"UPDATE {table} SET follow_up_users = ?, updated_at = ? WHERE {key_column} = ?",
                    (_followers_to_json(followers | {identity}), _to_text(datetime.now(timezone.utc)), key),
                )
        except sqlite3.OperationalError as exc:
            raise RepositoryWriteConflict(f"Could not add follower to {key}: {exc}") from exc

    @staticmethod
    def _complaint_values(complaint: Complaint) -> dict[str, Any]:
        return {
            "id": complaint.id,
            "description": complaint.description,
            "department": complaint.department,
            "priority": complaint.priority,
            "category": complaint.category,
            "created_by": complaint.created_by,
            "status": complaint.status,
            "created_at": _to_text(complaint.created_at),
            "updated_at": _to_text(complaint.updated_at),
            "workflow": _workflow_to_json(complaint.workflow),
            "estimated_resolution_hours": complaint.estimated_resolution_hours,
            "follow_up_users": _followers_to_json(complaint.follow_up_users),
            "location": _location_to_json(complaint.location),
            "image_ref": complaint.image_ref,
            "requires_location_sharing": int(complaint.requires_location_sharing),
            "ticket_id": complaint.ticket_id,
            "intent": complaint.intent,
            "confirmed_at": _to_text(complaint.confirmed_at),
            "cancelled_at": _to_text(complaint.cancelled_at),
        }

    @staticmethod
    def _complaint_from_row(row: sqlite3.Row) -> Complaint:
        return Complaint(
            id=row["id"],
            description=row["description"],
            department=row["department"],
            priority=row["priority"],
            category=row["category"],
            created_by=row["created_by"],
            status=row["status"],
            created_at=_from_text(row["created_at"]),
            updated_at=_from_text(row["updated_at"]),
            workflow=_workflow_from_json(row["workflow"]),
            estimated_resolution_hours=int(row["estimated_resolution_hours"]),
            follow_up_users=_followers_from_json(row["follow_up_users"]),
            location=_location_from_json(row["location"]),
            image_ref=row["image_ref"],
            requires_location_sharing=bool(row["requires_location_sharing"]),
            ticket_id=row["ticket_id"],
            intent=row["intent"],
            confirmed_at=_from_text(row["confirmed_at"]),
            cancelled_at=_from_text(row["cancelled_at"]),
        )

    @staticmethod
    def _ticket_values(ticket: Ticket) -> dict[str, Any]:
        return {
            "ticket_id": ticket.ticket_id,
            "complaint_id": ticket.complaint_id,
            "created_by": ticket.created_by,
            "department": ticket.department,
            "priority": ticket.priority,
            "category": ticket.category,
            "description": ticket.description,
            "status": ticket.status,
            "estimated_resolution": _to_text(ticket.estimated_resolution),
            "created_at": _to_text(ticket.created_at),
            "updated_at": _to_text(ticket.updated_at),
            "location": _location_to_json(ticket.location),
            "assigned_to": ticket.assigned_to,
            "updates": _updates_to_json(ticket.updates),
            "follow_up_users": _followers_to_json(ticket.follow_up_users),
        }

    @staticmethod
    def _ticket_from_row(row: sqlite3.Row) -> Ticket:
        return Ticket(
            ticket_id=row["ticket_id"],
            complaint_id=row["complaint_id"],
            created_by=row["created_by"],
            department=row["department"],
            priority=row["priority"],
            category=row["category"],
            description=row["description"],
            status=row["status"],
            estimated_resolution=_from_text(row["estimated_resolution"]),
            created_at=_from_text(row["created_at"]),
            updated_at=_from_text(row["updated_at"]),
            location=_location_from_json(row["location"]),
            assigned_to=row["assigned_to"],
            updates=_updates_from_json(row["updates"]),
            follow_up_users=_followers_from_json(row["follow_up_users"]),
        )

    @staticmethod
    def _reporter_from_row(row: sqlite3.Row) -> Reporter:
        return Reporter(
            identity=row["identity"],
            ethical_score=float(row["ethical_score"]),
            total_messages=int(row["total_messages"]),
            bot_mode=bool(row["bot_mode"]),
        )
