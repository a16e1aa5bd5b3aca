"""Error types shared by the client and the proxy."""

from __future__ import annotations


class TutorError(Exception):
    """Base class for ocepa-tutor errors."""


class StorageError(TutorError):
    """Persisted chat state could not be read or written."""


class CorruptSnapshotError(StorageError):
    """The saved conversation snapshot is not valid JSON for the data model."""


class StreamFailure(TutorError):
    """The remote collaborator failed to produce a reply.

    Covers network errors, non-2xx statuses and missing or malformed bodies.
    User cancellation is never reported this way.
    """

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ConfigurationError(TutorError):
    """Required proxy configuration (e.g. the provider API key) is missing."""
