"""Application entry point for the civictriage command line."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Optional

from art import tprint
from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table

import settings
from adapters.gemini_classifier import GeminiClassifier
from adapters.google_geocoder import GoogleGeocoder
from adapters.sqlite_storage import SQLiteStorage
from core.config import LifecycleConfig, RateLimitConfig, SimilarityConfig, SimilarityWeights
from core.errors import TriageError
from core.followup import FollowUpRegistry
from core.lifecycle import ComplaintLifecycle
from core.models import Complaint, Location, NewReport, ProcessingOutcome, Ticket
from core.processor import ReportProcessor
from core.rate_limit import SlidingWindowRateLimiter
from core.reputation import ReputationTracker
from core.similarity import SimilarityEngine

NAME = "CIVICTRIAGE"
FONT = "tarty-1"

console = Console()


def _print_banner() -> None:
    tprint(NAME, FONT, space=1)


class _RedactingFormatter(logging.Formatter):
    def __init__(self, secrets: list[str], fmt: str, datefmt: Optional[str] = None) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt)
        self._secrets = [secret for secret in secrets if secret]

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        for secret in self._secrets:
            message = message.replace(secret, "***")
        return message


def _collect_redaction_values(config: dict) -> list[str]:
    redact_cfg = config.get("redact", {}) if config else {}
    if not redact_cfg.get("enabled", False):
        return []
    values = []
    for name in redact_cfg.get("patterns", []):
        value = os.getenv(name)
        if value:
            values.append(value)
    return sorted(set(values), key=len, reverse=True)


def _configure_logging() -> None:
    config = settings.LOGGING or {}
    if not config.get("enabled", False):
        return

    level_name = str(config.get("level", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)

    fmt = "%(asctime)s %(levelname)s %(name)s: %(message)s"
    datefmt = "%Y-%m-%d %H:%M:%S"
    secrets = _collect_redaction_values(config)
    formatter = _RedactingFormatter(secrets, fmt=fmt, datefmt=datefmt)

    handlers: list[logging.Handler] = []

    if config.get("console", True):
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    file_cfg = config.get("file", {})
    if file_cfg.get("enabled", False):
        path = file_cfg.get("path", "logs/civictriage.log")
        if not os.path.isabs(path):
            path = os.path.join(settings.PROJECT_ROOT, path)
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        max_bytes = int(file_cfg.get("max_bytes", 5 * 1024 * 1024))
        backup_count = int(file_cfg.get("backup_count", 5))
        file_handler = RotatingFileHandler(
            path,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    if not handlers:
        return

    logging.basicConfig(level=level, handlers=handlers)


def _similarity_config() -> SimilarityConfig:
    weights = SimilarityWeights(**settings.SIMILARITY_WEIGHTS) if settings.SIMILARITY_WEIGHTS else SimilarityWeights()
    return SimilarityConfig(
        weights=weights,
        open_statuses=settings.OPEN_STATUSES,
        candidate_window_days=settings.CANDIDATE_WINDOW_DAYS,
        candidate_limit=settings.CANDIDATE_LIMIT,
        short_circuit_km=settings.SHORT_CIRCUIT_KM,
        max_parallel=settings.MAX_PARALLEL,
        latency_budget_seconds=settings.LATENCY_BUDGET_SECONDS,
        redistribute_missing_image_weight=settings.REDISTRIBUTE_MISSING_IMAGE_WEIGHT,
    )


def _lifecycle_config() -> LifecycleConfig:
    return LifecycleConfig(
        complaint_id_prefix=settings.COMPLAINT_ID_PREFIX,
        ticket_id_length=settings.TICKET_ID_LENGTH,
        ticket_creation_attempts=settings.TICKET_CREATION_ATTEMPTS,
        status_listing_limit=settings.STATUS_LISTING_LIMIT,
    )


def _storage() -> SQLiteStorage:
    storage = SQLiteStorage(settings.DB_PATH)
    storage.init_db()
    return storage


def _classifier() -> GeminiClassifier:
    return GeminiClassifier(model=settings.GEMINI_MODEL, image_timeout_seconds=settings.PROVIDER_TIMEOUT_SECONDS)


def _build_lifecycle(storage: SQLiteStorage, classifier: GeminiClassifier) -> ComplaintLifecycle:
    geocoder = GoogleGeocoder(timeout_seconds=settings.PROVIDER_TIMEOUT_SECONDS)
    similarity = SimilarityEngine(classifier, storage, _similarity_config())
    return ComplaintLifecycle(
        classifier=classifier,
        repository=storage,
        geocoder=geocoder,
        similarity=similarity,
        followups=FollowUpRegistry(storage),
        config=_lifecycle_config(),
    )


def _build_processor(storage: SQLiteStorage) -> ReportProcessor:
    classifier = _classifier()
    lifecycle = _build_lifecycle(storage, classifier)
    rate_limiter = SlidingWindowRateLimiter(
        RateLimitConfig(
            window_seconds=settings.RATE_LIMIT_WINDOW_SECONDS,
            max_messages=settings.RATE_LIMIT_MAX_MESSAGES,
        )
    )
    return ReportProcessor(
        lifecycle=lifecycle,
        classifier=classifier,
        reporters=storage,
        reputation=ReputationTracker(storage),
        rate_limiter=rate_limiter,
    )


def _complaint_table(complaints: list[Complaint], title: str) -> Table:
    table = Table(title=title)
    table.add_column("Complaint")
    table.add_column("Status")
    table.add_column("Progress", justify="right")
    table.add_column("Department")
    table.add_column("Priority")
    table.add_column("Ticket")
    table.add_column("Created")
    for complaint in complaints:
        table.add_row(
            complaint.id,
            complaint.status,
            f"{complaint.workflow.completion_percentage}%",
            complaint.department,
            complaint.priority,
            complaint.ticket_id or "-",
            complaint.created_at.strftime("%Y-%m-%d %H:%M"),
        )
    return table


def _ticket_table(tickets: list[Ticket], title: str) -> Table:
    table = Table(title=title)
    table.add_column("Ticket")
    table.add_column("Complaint")
    table.add_column("Status")
    table.add_column("Department")
    table.add_column("Due")
    table.add_column("Followers", justify="right")
    for ticket in tickets:
        table.add_row(
            ticket.ticket_id,
            ticket.complaint_id,
            ticket.status,
            ticket.department,
            ticket.estimated_resolution.strftime("%Y-%m-%d %H:%M"),
            str(len(ticket.follow_up_users)),
        )
    return table


def _print_outcome(outcome: ProcessingOutcome) -> None:
    console.print(f"[bold]Outcome:[/bold] {outcome.kind}")
    if outcome.registration is not None:
        registration = outcome.registration
        console.print(_complaint_table([registration.complaint], "Complaint"))
        verdict = registration.duplicate.verdict
        if verdict is not None:
            console.print(verdict.explanation)
        if registration.duplicate.timed_out:
            console.print("[yellow]Duplicate check ran out of time; result is best effort.[/yellow]")
    if outcome.location is not None:
        _print_location(outcome.location.confirmed, outcome.location.address, outcome.location.reason)
        confirmation = outcome.location.confirmation
        if confirmation is not None:
            console.print(_complaint_table([confirmation.complaint], "Confirmed complaint"))
            if confirmation.ticket is not None:
                console.print(_ticket_table([confirmation.ticket], "Ticket"))
            else:
                console.print("[yellow]Ticket creation is pending; run 'reconcile' later.[/yellow]")
    if outcome.complaints:
        console.print(_complaint_table(list(outcome.complaints), "Your complaints"))


def _print_location(confirmed: bool, address: Optional[str], reason: Optional[str]) -> None:
    if confirmed:
        console.print(f"[green]Location confirmed:[/green] {address}")
    else:
        console.print(f"Location acknowledged ({reason}): {address or '-'}")


def _report(args: argparse.Namespace) -> None:
    storage = _storage()
    processor = _build_processor(storage)
    location = None
    if args.lat is not None and args.lon is not None:
        location = Location(latitude=args.lat, longitude=args.lon)
    report = NewReport(reporter=args.reporter, text=args.text, image_ref=args.image, location=location)
    outcome = asyncio.run(processor.handle(report))
    _print_outcome(outcome)


def _location(args: argparse.Namespace) -> None:
    storage = _storage()
    lifecycle = _build_lifecycle(storage, _classifier())
    outcome = asyncio.run(lifecycle.submit_location(args.reporter, args.lat, args.lon, address=args.address))
    _print_location(outcome.confirmed, outcome.address, outcome.reason)
    if outcome.confirmation is not None and outcome.confirmation.ticket is not None:
        console.print(_ticket_table([outcome.confirmation.ticket], "Ticket"))


def _cancel(args: argparse.Namespace) -> None:
    storage = _storage()
    cancelled = _build_processor(storage).cancel(args.reporter, args.complaint_id)
    console.print(_complaint_table([cancelled], "Cancelled"))


def _status(args: argparse.Namespace) -> None:
    storage = _storage()
    lifecycle = _build_lifecycle(storage, _classifier())
    console.print(_complaint_table(lifecycle.reporter_complaints(args.reporter), f"Complaints of {args.reporter}"))


def _update_ticket(args: argparse.Namespace) -> None:
    storage = _storage()
    lifecycle = _build_lifecycle(storage, _classifier())
    ticket = lifecycle.add_ticket_update(args.ticket_id, args.message, args.author, status=args.status)
    console.print(_ticket_table([ticket], "Updated ticket"))
    followers = FollowUpRegistry(storage).followers(ticket.complaint_id)
    console.print(f"Update recorded for {len(followers)} follower(s): {', '.join(sorted(followers))}")


def _reconcile(args: argparse.Namespace) -> None:
    storage = _storage()
    lifecycle = _build_lifecycle(storage, _classifier())
    issued = lifecycle.reconcile_pending_tickets()
    if not issued:
        console.print("No complaints are waiting for a ticket.")
        return
    console.print(_ticket_table(issued, "Reconciled tickets"))


def _bot_mode(args: argparse.Namespace) -> None:
    storage = _storage()
    if storage.get_reporter(args.reporter) is None:
        storage.register_message(args.reporter)
    storage.set_bot_mode(args.reporter, args.mode == "on")
    console.print(f"Automated handling for {args.reporter}: {args.mode}")


def _init_db(args: argparse.Namespace) -> None:
    _storage()
    console.print(f"Database ready at {settings.DB_PATH}")


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(prog="civictriage")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("init-db", help="Create the SQLite tables").set_defaults(func=_init_db)

    report = subparsers.add_parser("report", help="Submit a report as a citizen")
    report.add_argument("reporter")
    report.add_argument("text", nargs="?", default="")
    report.add_argument("--image", default=None, help="Image URL or local path")
    report.add_argument("--lat", type=float, default=None)
    report.add_argument("--lon", type=float, default=None)
    report.set_defaults(func=_report)

    location = subparsers.add_parser("location", help="Share a location for the pending draft")
    location.add_argument("reporter")
    location.add_argument("lat", type=float)
    location.add_argument("lon", type=float)
    location.add_argument("--address", default=None)
    location.set_defaults(func=_location)

    cancel = subparsers.add_parser("cancel", help="Cancel one of your draft complaints")
    cancel.add_argument("reporter")
    cancel.add_argument("complaint_id")
    cancel.set_defaults(func=_cancel)

    status = subparsers.add_parser("status", help="List a reporter's complaints")
    status.add_argument("reporter")
    status.set_defaults(func=_status)

    update = subparsers.add_parser("update-ticket", help="Append a staff update to a ticket")
    update.add_argument("ticket_id")
    update.add_argument("message")
    update.add_argument("--status", default=None, choices=["open", "in_progress", "resolved", "closed"])
    update.add_argument("--author", default="staff")
    update.set_defaults(func=_update_ticket)

    subparsers.add_parser("reconcile", help="Issue tickets that failed after activation").set_defaults(
        func=_reconcile
    )

    bot_mode = subparsers.add_parser("bot-mode", help="Toggle automated handling for a reporter")
    bot_mode.add_argument("reporter")
    bot_mode.add_argument("mode", choices=["on", "off"])
    bot_mode.set_defaults(func=_bot_mode)

    args = parser.parse_args(argv)
    load_dotenv()
    _print_banner()
    _configure_logging()
    try:
        args.func(args)
    except TriageError as exc:
        logging.getLogger(__name__).error("%s failed: %s", args.command, exc)
        console.print(f"[red]{exc}[/red]")
        raise SystemExit(1) from exc


if __name__ == "__main__":
    main()
