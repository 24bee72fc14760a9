"""Helpers for complaint/ticket identifiers and reporter identities."""

from __future__ import annotations

import secrets
from datetime import datetime, timezone
from typing import Optional

BASE36_ALPHABET = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"
HEX_ALPHABET = "0123456789ABCDEF"
# Random tail kept even when the timestamp alone fills the requested length.
MIN_RANDOM_CHARS = 4


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(BASE36_ALPHABET[remainder])
    return "".join(reversed(digits))


def _random_chars(count: int, alphabet: str) -> str:
    return "".join(secrets.choice(alphabet) for _ in range(count))


def generate_ticket_id(length: int = 8, now: Optional[datetime] = None) -> str:
    """Return a base-36 millisecond timestamp followed by random base-36 characters."""

    now = now or datetime.now(timezone.utc)
    timestamp = _to_base36(int(now.timestamp() * 1000))
    random_count = max(MIN_RANDOM_CHARS, length - len(timestamp))
    return timestamp + _random_chars(random_count, BASE36_ALPHABET)


def generate_complaint_id(prefix: str = "CMP", now: Optional[datetime] = None) -> str:
    """Return ``<prefix>-YYYYMMDD-XXXXXX`` with a random hex tail."""

    now = now or datetime.now(timezone.utc)
    return f"{prefix}-{now.strftime('%Y%m%d')}-{_random_chars(6, HEX_ALPHABET)}"


def mask_identity(identity: Optional[str]) -> str:
    """Hide all but the last four characters of a reporter identity for logs."""

    if not identity:
        return "unknown"
    if len(identity) <= 4:
        return "*" * len(identity)
    return "*" * (len(identity) - 4) + identity[-4:]
