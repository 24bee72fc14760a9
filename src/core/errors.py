"""Domain errors raised across the core and translated to by adapters."""

from __future__ import annotations


class TriageError(Exception):
    """Base class for every error the core raises on purpose."""


class ClassifierUnavailable(TriageError):
    """The classification service failed or returned unusable output."""


class GeocoderUnavailable(TriageError):
    """Reverse geocoding could not produce an address."""


class RepositoryWriteConflict(TriageError):
    """A conditional write matched no row, or the store rejected the write."""


class DuplicateIdentifier(RepositoryWriteConflict):
    """An insert collided with an existing primary key."""


class InvalidLocation(TriageError):
    """Coordinates are missing or implausible."""


class StateConflict(TriageError):
    """The requested transition is not allowed from the current state."""


class NotFound(TriageError):
    """The referenced complaint or ticket does not exist."""
