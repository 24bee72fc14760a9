"""Core domain models.

These dataclasses are shared across the core and adapters to avoid tight
coupling to any store-, provider- or transport-specific types. Records are
frozen; state changes produce a new instance via ``dataclasses.replace``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Tuple

COMPLAINT_DRAFT = "draft"
COMPLAINT_ACTIVE = "active"
COMPLAINT_CANCELLED = "cancelled"

TICKET_OPEN = "open"
TICKET_IN_PROGRESS = "in_progress"
TICKET_RESOLVED = "resolved"
TICKET_CLOSED = "closed"
TICKET_STATUS_ORDER = (TICKET_OPEN, TICKET_IN_PROGRESS, TICKET_RESOLVED, TICKET_CLOSED)

STEP_COMPLETED = "completed"
STEP_PENDING = "pending"

PERCENT_DRAFT = 30
PERCENT_CONFIRMED = 60
PERCENT_TICKETED = 70
PERCENT_RESOLVED = 100
PERCENT_CANCELLED = 0


def clamp_unit(value: float) -> float:
    """Clamp a score into [0, 1]."""

    return max(0.0, min(1.0, float(value)))


@dataclass(frozen=True)
class Location:
    """A geocoordinate with an optional human-readable address."""

    latitude: float
    longitude: float
    address: Optional[str] = None
    name: Optional[str] = None


@dataclass(frozen=True)
class WorkflowStep:
    """One entry of a complaint's progress log."""

    step: str
    status: str
    recorded_at: Optional[datetime]


@dataclass(frozen=True)
class Workflow:
    """Progress indicator over a complaint's lifecycle stages."""

    step: str
    completion_percentage: int
    steps: Tuple[WorkflowStep, ...] = ()

    @classmethod
    def start(cls, recorded_at: datetime) -> "Workflow":
        """Workflow of a freshly registered draft awaiting its location."""

        return cls(
            step="location_required",
            completion_percentage=PERCENT_DRAFT,
            steps=(
                WorkflowStep("complaint_registered", STEP_COMPLETED, recorded_at),
                WorkflowStep("ai_processed", STEP_COMPLETED, recorded_at),
                WorkflowStep("location_required", STEP_PENDING, None),
            ),
        )

    def advance(
        self,
        step: str,
        percentage: int,
        recorded_at: datetime,
        next_pending: Optional[str] = None,
    ) -> "Workflow":
        """Complete every pending entry, record ``step`` and optionally queue the next one."""

        if percentage < self.completion_percentage:
            raise ValueError(
                f"Workflow cannot move backwards ({self.completion_percentage} -> {percentage})"
            )
        steps = [
            WorkflowStep(entry.step, STEP_COMPLETED, recorded_at) if entry.status == STEP_PENDING else entry
            for entry in self.steps
        ]
        if not any(entry.step == step for entry in steps):
            steps.append(WorkflowStep(step, STEP_COMPLETED, recorded_at))
        if next_pending:
            steps.append(WorkflowStep(next_pending, STEP_PENDING, None))
        return Workflow(step=step, completion_percentage=percentage, steps=tuple(steps))

    def await_step(self, step: str) -> "Workflow":
        """Park the workflow on a pending step without changing the percentage."""

        steps = self.steps
        if not any(entry.step == step and entry.status == STEP_PENDING for entry in steps):
            steps = steps + (WorkflowStep(step, STEP_PENDING, None),)
        return Workflow(step=step, completion_percentage=self.completion_percentage, steps=steps)

    def cancel(self, recorded_at: datetime) -> "Workflow":
        # Cancellation is the only transition allowed to lower the percentage.
        steps = tuple(entry for entry in self.steps if entry.status != STEP_PENDING)
        return Workflow(
            step="cancelled",
            completion_percentage=PERCENT_CANCELLED,
            steps=steps + (WorkflowStep("cancelled", STEP_COMPLETED, recorded_at),),
        )


@dataclass(frozen=True)
class Complaint:
    """A citizen-submitted civic issue report."""

    id: str
    description: str
    department: str
    priority: str
    category: str
    created_by: str
    status: str
    created_at: datetime
    updated_at: datetime
    workflow: Workflow
    estimated_resolution_hours: int
    follow_up_users: frozenset[str] = frozenset()
    location: Optional[Location] = None
    image_ref: Optional[str] = None
    requires_location_sharing: bool = True
    ticket_id: Optional[str] = None
    intent: Optional[str] = None
    confirmed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None


@dataclass(frozen=True)
class TicketUpdate:
    """Append-only ticket log entry."""

    message: str
    author: str
    recorded_at: datetime
    status: Optional[str] = None


@dataclass(frozen=True)
class Ticket:
    """Work-tracking record created once a complaint is confirmed."""

    ticket_id: str
    complaint_id: str
    created_by: str
    department: str
    priority: str
    category: str
    description: str
    status: str
    estimated_resolution: datetime
    created_at: datetime
    updated_at: datetime
    location: Optional[Location] = None
    assigned_to: Optional[str] = None
    updates: Tuple[TicketUpdate, ...] = ()
    follow_up_users: frozenset[str] = frozenset()


@dataclass(frozen=True)
class Reporter:
    """Identified citizen sending reports."""

    identity: str
    ethical_score: float = 7.5
    total_messages: int = 0
    bot_mode: bool = True


@dataclass(frozen=True)
class NewReport:
    """Inbound report as handed over by the transport layer."""

    reporter: str
    text: str = ""
    image_ref: Optional[str] = None
    location: Optional[Location] = None


@dataclass(frozen=True)
class IntentAnalysis:
    """Structured intent judgment from the classifier."""

    intent: str = "other"
    context: str = "general"
    state: str = "new_conversation"
    confidence: float = 0.5
    language: str = "auto"


@dataclass(frozen=True)
class TextSimilarity:
    score: float = 0.0
    reasoning: str = "Not analysed"
    problem_match: bool = False
    severity_match: bool = False
    infrastructure_match: bool = False


@dataclass(frozen=True)
class ImageSimilarity:
    score: float = 0.0
    reasoning: str = "Not analysed"
    same_location: bool = False
    same_problem: bool = False


@dataclass(frozen=True)
class CategorySimilarity:
    score: float = 0.0
    same_type: bool = False
    reasoning: str = "Not analysed"


@dataclass(frozen=True)
class LocationProximity:
    score: float = 0.0
    reasoning: str = "Not analysed"
    distance_km: Optional[float] = None
    within_proximity: bool = False
    address_similarity: float = 0.0


@dataclass(frozen=True)
class RecencyRelevance:
    score: float = 0.0
    reasoning: str = "Not analysed"
    hours_since: Optional[float] = None


@dataclass(frozen=True)
class SimilarityBreakdown:
    """Per-analyzer results behind one verdict."""

    text: TextSimilarity
    location: LocationProximity
    image: ImageSimilarity
    recency: RecencyRelevance
    category: CategorySimilarity


@dataclass(frozen=True)
class SimilarityVerdict:
    """Outcome of comparing one new report with one candidate complaint."""

    score: float
    is_duplicate: bool
    confidence: float
    breakdown: SimilarityBreakdown
    weights: dict[str, float]
    explanation: str


@dataclass(frozen=True)
class DuplicateCheckResult:
    """Outcome of scanning the candidate pool for one new report."""

    is_duplicate: bool
    complaint: Optional[Complaint] = None
    verdict: Optional[SimilarityVerdict] = None
    highest_score: float = 0.0
    candidates_checked: int = 0
    candidates_skipped: int = 0
    timed_out: bool = False
    error: Optional[str] = None


@dataclass(frozen=True)
class RegistrationResult:
    """Result of registering a new report."""

    complaint: Complaint
    duplicate: DuplicateCheckResult

    @property
    def is_duplicate(self) -> bool:
        return self.duplicate.is_duplicate


@dataclass(frozen=True)
class ConfirmationResult:
    """Result of attaching a location to a draft complaint."""

    complaint: Complaint
    ticket: Optional[Ticket]

    @property
    def ticket_pending(self) -> bool:
        """True until the ticket exists and the complaint points at it at the ticketed stage."""

        if self.ticket is None:
            return True
        return (
            self.complaint.ticket_id != self.ticket.ticket_id
            or self.complaint.workflow.completion_percentage < PERCENT_TICKETED
        )


@dataclass(frozen=True)
class LocationOutcome:
    """What happened to an inbound location."""

    confirmed: bool
    address: Optional[str] = None
    confirmation: Optional[ConfirmationResult] = None
    reason: Optional[str] = None


@dataclass(frozen=True)
class ProcessingOutcome:
    """Result of one inbound report, for the transport to phrase a reply."""

    kind: str
    reporter: str
    registration: Optional[RegistrationResult] = None
    location: Optional[LocationOutcome] = None
    intent: Optional[IntentAnalysis] = None
    complaints: Tuple[Complaint, ...] = field(default_factory=tuple)
